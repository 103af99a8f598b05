from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, Field


class Plan(str, Enum):
    FREE = "free"
    PLUS = "plus"
    PRO = "pro"
    STUDIO = "studio"


class CameraMove(str, Enum):
    ZOOM_IN = "zoom-in"
    ZOOM_OUT = "zoom-out"
    PAN_LEFT = "pan-left"
    PAN_RIGHT = "pan-right"
    STATIC = "static"


class TransitionKind(str, Enum):
    FADE = "fade"
    WIPE_LEFT = "wipe-left"
    WIPE_RIGHT = "wipe-right"
    CIRCLE_OPEN = "circle-open"
    DISSOLVE = "dissolve"
    NONE = "none"


class Scene(BaseModel):
    duration: float = Field(default=3, gt=0, le=60)
    camera: CameraMove = CameraMove.STATIC
    transition: TransitionKind = TransitionKind.FADE


class Resolution(BaseModel):
    width: int
    height: int

    @property
    def size(self) -> str:
        return f"{self.width}x{self.height}"


class AssetRef(BaseModel):
    bucket: str
    path: str
    checksum: str = ""


class LocalEncode(BaseModel):
    kind: Literal["local"] = "local"

    @property
    def tag(self) -> str:
        return "ffmpeg"


class RemoteCompose(BaseModel):
    kind: Literal["remote_compose"] = "remote_compose"
    model: str

    @property
    def tag(self) -> str:
        return f"fal:{self.model}"


class RemoteImageToVideo(BaseModel):
    kind: Literal["remote_image_to_video"] = "remote_image_to_video"
    model: str
    prompt: str

    @property
    def tag(self) -> str:
        return f"fal:{self.model}"


class RemoteTextToVideo(BaseModel):
    kind: Literal["remote_text_to_video"] = "remote_text_to_video"
    model: str
    prompt: str

    @property
    def tag(self) -> str:
        return f"fal:{self.model}"


Engine = Annotated[
    Union[LocalEncode, RemoteCompose, RemoteImageToVideo, RemoteTextToVideo],
    Field(discriminator="kind"),
]


class ResolvedAssets(BaseModel):
    project_id: str
    images: List[Optional[AssetRef]] = Field(default_factory=list)
    narration: AssetRef
    captions: Optional[AssetRef] = None
    music: Optional[AssetRef] = None

    @property
    def available_images(self) -> List[AssetRef]:
        return [ref for ref in self.images if ref is not None]


class RenderManifest(BaseModel):
    v: int = 1
    engine: str
    plan: Plan
    size: str
    resolution: dict[str, int]
    aspect_ratio: Optional[str] = Field(default=None, serialization_alias="aspectRatio")
    export_preset: Optional[str] = Field(default=None, serialization_alias="exportPreset")
    subtitles: bool = True
    prompt: Optional[str] = None
    scenes: List[dict[str, Any]] = Field(default_factory=list)
    inputs: dict[str, Any] = Field(default_factory=dict)


class RenderOutcome(BaseModel):
    video_url: str
    cached: bool
    engine: str
    published: bool
    manifest_hash: Optional[str] = None
    duration_seconds: Optional[float] = None
    captions: Optional[bool] = None
