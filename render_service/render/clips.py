"""Per-scene clip synthesis.

Each scene image becomes a fixed-length segment at the target resolution
with one of five motion effects. All segments share frame rate, pixel
format and sample aspect ratio so they can be chained by ``xfade``.
"""

from __future__ import annotations

from typing import List

from render_service.models.domain import CameraMove, Resolution, Scene
from render_service.render.ffmpeg import FPS, INTERMEDIATE_OPTIONS, FFmpegRunner

MAX_ZOOM = 1.3
ZOOM_PER_SECOND = 0.1
PAN_ZOOM = 1.1
PAN_AMPLITUDE = 50


def _fill(resolution: Resolution) -> str:
    w, h = resolution.width, resolution.height
    return f"scale={w}:{h}:force_original_aspect_ratio=increase,crop={w}:{h},setsar=1"


def _zoompan(resolution: Resolution, zoom: str, x: str, y: str) -> str:
    return (
        f"{_fill(resolution)},"
        f"zoompan=z='{zoom}':d=1:x='{x}':y='{y}':s={resolution.size}:fps={FPS},"
        "setsar=1,format=yuv420p"
    )


def motion_filter(camera: CameraMove, resolution: Resolution, duration: float) -> str:
    seconds = f"(on/{FPS})"
    centre_x = "iw/2-(iw/zoom/2)"
    centre_y = "ih/2-(ih/zoom/2)"
    if camera == CameraMove.ZOOM_IN:
        return _zoompan(resolution, f"min(1+{ZOOM_PER_SECOND}*{seconds},{MAX_ZOOM})", centre_x, centre_y)
    if camera == CameraMove.ZOOM_OUT:
        remaining = f"({duration:g}-{seconds})"
        return _zoompan(
            resolution,
            f"max(min(1+{ZOOM_PER_SECOND}*{remaining},{MAX_ZOOM}),1)",
            centre_x,
            centre_y,
        )
    if camera in (CameraMove.PAN_LEFT, CameraMove.PAN_RIGHT):
        sign = "-" if camera == CameraMove.PAN_LEFT else "+"
        x = f"max(0,min(iw-iw/zoom,{centre_x}{sign}{PAN_AMPLITUDE}*sin({seconds})))"
        return _zoompan(resolution, f"{PAN_ZOOM}", x, centre_y)
    w, h = resolution.width, resolution.height
    return (
        f"scale={w}:{h}:force_original_aspect_ratio=decrease,"
        f"pad={w}:{h}:(ow-iw)/2:(oh-ih)/2,setsar=1,fps={FPS},format=yuv420p"
    )


class ClipSynthesizer:
    def __init__(self, runner: FFmpegRunner) -> None:
        self.runner = runner

    def build_command(self, image_path: str, scene: Scene, resolution: Resolution, output_path: str) -> List[str]:
        duration = f"{scene.duration:g}"
        return self.runner.command(
            "-loop", "1",
            "-framerate", str(FPS),
            "-t", duration,
            "-i", image_path,
            "-vf", motion_filter(scene.camera, resolution, scene.duration),
            "-t", duration,
            "-r", str(FPS),
            "-an",
            *INTERMEDIATE_OPTIONS,
            output_path,
        )

    def synthesize(self, image_path: str, scene: Scene, resolution: Resolution, output_path: str, index: int) -> str:
        self.runner.run(self.build_command(image_path, scene, resolution, output_path), step=f"clip {index}")
        return output_path
