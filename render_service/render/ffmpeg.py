from __future__ import annotations

import logging
import subprocess
from typing import List, Optional, Sequence

from render_service.errors import ConfigError, EncodeError

FPS = 30
STDERR_TAIL_LINES = 20

_BASE_OPTIONS = ["-c:v", "libx264", "-pix_fmt", "yuv420p", "-movflags", "+faststart"]

_PRESET_OPTIONS: dict[str, List[str]] = {
    "youtube": [
        "-preset", "slow", "-crf", "18", "-profile:v", "high", "-level", "4.1",
        "-b:v", "8000k", "-maxrate", "10000k", "-bufsize", "20000k",
    ],
    "tiktok": [
        "-preset", "medium", "-crf", "20", "-profile:v", "main", "-level", "4.0",
        "-b:v", "5000k", "-maxrate", "6000k", "-bufsize", "12000k",
    ],
    "square": [
        "-preset", "medium", "-crf", "22", "-profile:v", "main", "-level", "3.1",
        "-b:v", "4000k", "-maxrate", "5000k", "-bufsize", "10000k",
    ],
}
_DEFAULT_PRESET = ["-preset", "medium", "-crf", "22"]

# intermediate segments favour speed; quality is decided by the final pass
INTERMEDIATE_OPTIONS = ["-c:v", "libx264", "-pix_fmt", "yuv420p", "-preset", "veryfast", "-crf", "18"]


def encode_options(preset: str | None) -> List[str]:
    return [*_BASE_OPTIONS, *_PRESET_OPTIONS.get((preset or "").lower(), _DEFAULT_PRESET)]


def escape_filter_value(value: str) -> str:
    """Escape a value placed inside single quotes in a filter graph."""
    return value.replace("\\", "/").replace(":", "\\:").replace("'", "\\'")


class FFmpegRunner:
    def __init__(self, binary: str = "ffmpeg", logger: Optional[logging.Logger] = None) -> None:
        self.binary = binary
        self.log = logger or logging.getLogger(__name__)

    def command(self, *args: str) -> List[str]:
        return [self.binary, "-hide_banner", "-y", *args]

    def run(self, cmd: Sequence[str], step: str) -> None:
        self.log.debug("ffmpeg step starting", extra={"step": step, "cmd": " ".join(cmd)})
        try:
            result = subprocess.run(list(cmd), capture_output=True, text=True)
        except FileNotFoundError as exc:
            raise ConfigError("ffmpeg binary not found", details={"binary": self.binary}) from exc
        if result.returncode != 0:
            tail = "\n".join((result.stderr or "").strip().splitlines()[-STDERR_TAIL_LINES:])
            self.log.warning(
                "ffmpeg step failed",
                extra={"step": step, "returncode": result.returncode},
            )
            raise EncodeError(
                f"ffmpeg failed during {step}",
                details={"step": step, "returncode": result.returncode, "stderr": tail},
            )
