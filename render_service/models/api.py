from __future__ import annotations

from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .domain import Scene


class RenderRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    project_id: str = Field(..., validation_alias=AliasChoices("projectId", "project_id"))
    scenes: Optional[List[Scene]] = None
    narration_path: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("gsAudioPath", "narrationPath", "narration_path"),
    )
    captions_path: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("srtPath", "captionsPath", "captions_path"),
    )
    music_path: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("gsMusicPath", "musicPath", "music_path"),
    )
    engine: Optional[str] = None
    publish: bool = False
    force: bool = False
    plan: Optional[str] = None
    target_width: Optional[int] = Field(default=None, gt=0, validation_alias=AliasChoices("targetW", "target_width"))
    target_height: Optional[int] = Field(default=None, gt=0, validation_alias=AliasChoices("targetH", "target_height"))
    aspect_ratio: Optional[str] = Field(default=None, validation_alias=AliasChoices("aspectRatio", "aspect_ratio"))
    export_preset: Optional[str] = Field(default=None, validation_alias=AliasChoices("exportPreset", "export_preset"))
    no_subtitles: bool = Field(default=False, validation_alias=AliasChoices("noSubtitles", "no_subtitles"))
    prompt: Optional[str] = None

    @field_validator("project_id")
    @classmethod
    def validate_project_id(cls, value: str) -> str:
        value = value.strip().strip("/")
        if not value or "/" in value or value in {".", ".."}:
            raise ValueError("projectId must be a single non-empty path segment")
        return value

    @field_validator("scenes")
    @classmethod
    def validate_scenes(cls, value: Optional[List[Scene]]) -> Optional[List[Scene]]:
        if value is not None and not value:
            raise ValueError("scenes must contain at least one scene")
        return value


class RenderResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    video_url: str = Field(serialization_alias="videoUrl")
    cached: bool
    engine: str
    published: bool
    manifest_hash: Optional[str] = Field(default=None, serialization_alias="manifestHash")
    duration_seconds: Optional[float] = Field(default=None, serialization_alias="durationSeconds")
    captions: Optional[bool] = None


class ErrorResponse(BaseModel):
    code: str
    message: str
    details: Optional[Any] = None
    request_id: Optional[str] = Field(default=None, serialization_alias="requestId")


class CacheClearRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    project_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("projectId", "project_id"))
    manifest_hash: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("manifestHash", "manifest_hash", "cacheId"),
    )


class CacheClearResponse(BaseModel):
    deleted: List[str] = Field(default_factory=list)


class CacheTierStats(BaseModel):
    hits: int = 0
    misses: int = 0
    writes: int = 0
    write_failures: int = 0


class CacheStatusResponse(BaseModel):
    final: CacheTierStats
    manifest: CacheTierStats
    objects: int
    bytes: int


class HealthResponse(BaseModel):
    status: str
    service: str
    engine: str
    storage: str
