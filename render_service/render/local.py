from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import List, Optional, Sequence

from render_service.errors import EncodeError, InvalidArgumentError
from render_service.models.domain import Plan, Resolution, Scene
from render_service.render.audio import AudioMixer
from render_service.render.clips import ClipSynthesizer
from render_service.render.ffmpeg import FFmpegRunner, encode_options
from render_service.render.transitions import Segment, TransitionComposer
from render_service.services.assets import LocalAssets


@dataclass
class LocalRenderResult:
    path: str
    duration: float
    captions: bool
    scenes_rendered: int


class LocalRenderer:
    """Sequential ffmpeg pipeline: clips, transitions, then audio and overlays."""

    def __init__(
        self,
        runner: FFmpegRunner,
        overlap: float = 0.75,
        watermark_text: str = "",
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.log = logger or logging.getLogger(__name__)
        self.clips = ClipSynthesizer(runner)
        self.composer = TransitionComposer(runner, overlap=overlap, logger=self.log)
        self.mixer = AudioMixer(runner)
        self.watermark_text = watermark_text

    def render(
        self,
        scenes: Sequence[Scene],
        assets: LocalAssets,
        resolution: Resolution,
        plan: Plan,
        workdir: str,
        export_preset: str | None = None,
        subtitles: bool = True,
    ) -> LocalRenderResult:
        segments: List[Segment] = []
        for index, scene in enumerate(scenes):
            image = assets.images[index] if index < len(assets.images) else None
            if image is None:
                continue
            clip_path = os.path.join(workdir, f"clip-{index}.mp4")
            self.clips.synthesize(image, scene, resolution, clip_path, index)
            segments.append(Segment(path=clip_path, duration=float(scene.duration), transition=scene.transition))
        if not segments:
            raise InvalidArgumentError("no scene images available to render")

        joined_path = os.path.join(workdir, "joined.mp4")
        transition_plan = self.composer.compose(segments, joined_path)

        options = encode_options(export_preset)
        watermark = self.watermark_text if plan == Plan.FREE and self.watermark_text else None
        output_path = os.path.join(workdir, "final.mp4")
        captions_path = assets.captions if subtitles else None
        captions_burned = captions_path is not None
        try:
            self.mixer.mix(
                joined_path,
                assets.narration,
                output_path,
                options,
                music_path=assets.music,
                captions_path=captions_path,
                watermark=watermark,
            )
        except EncodeError as exc:
            if captions_path is None:
                raise
            self.log.warning(
                "caption overlay failed, retrying without captions",
                extra={"details": exc.details},
            )
            self.mixer.mix(
                joined_path,
                assets.narration,
                output_path,
                options,
                music_path=assets.music,
                watermark=watermark,
            )
            captions_burned = False
        return LocalRenderResult(
            path=output_path,
            duration=transition_plan.total_duration,
            captions=captions_burned,
            scenes_rendered=len(segments),
        )
