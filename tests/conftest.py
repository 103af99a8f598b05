import io
from typing import List, Tuple

import pytest
from PIL import Image

from render_service.clients.s3_storage import S3StorageClient
from render_service.config import Settings
from render_service.errors import EncodeError
from render_service.render.ffmpeg import FFmpegRunner
from render_service.services.render_service import RenderService

SRT = "1\n00:00:00,000 --> 00:00:02,000\nHello there\n\n2\n00:00:02,000 --> 00:00:05,000\nSecond line\n"


class RecordingRunner(FFmpegRunner):
    """Stands in for ffmpeg: records commands and writes a dummy output file."""

    def __init__(self, fail_steps: Tuple[str, ...] = ()) -> None:
        super().__init__("ffmpeg")
        self.commands: List[Tuple[str, List[str]]] = []
        self.fail_steps = set(fail_steps)

    def run(self, cmd, step):
        self.commands.append((step, list(cmd)))
        if step in self.fail_steps:
            raise EncodeError(f"ffmpeg failed during {step}", details={"step": step, "stderr": "boom"})
        with open(cmd[-1], "wb") as f:
            f.write(f"rendered:{step}".encode())

    def steps(self) -> List[str]:
        return [step for step, _ in self.commands]

    def command_for(self, step: str) -> List[str]:
        for name, cmd in self.commands:
            if name == step:
                return cmd
        raise KeyError(step)


def png_bytes(color=(200, 30, 30)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (64, 36), color).save(buf, format="PNG")
    return buf.getvalue()


def seed_project(storage: S3StorageClient, project_id: str, scenes: int = 2, music: bool = False) -> None:
    for index in range(scenes):
        storage.upload_bytes(f"{project_id}/scene-{index}-still.png", png_bytes(), "image/png")
    storage.upload_bytes(f"{project_id}/narration.mp3", b"narration-audio", "audio/mpeg")
    storage.upload_bytes(f"{project_id}/captions.srt", SRT.encode("utf-8"), "text/plain")
    if music:
        storage.upload_bytes(f"{project_id}/music.wav", b"music-audio", "audio/wav")


def render_payload(project_id: str = "p1", **overrides):
    payload = {
        "projectId": project_id,
        "scenes": [
            {"duration": 3, "camera": "static", "transition": "fade"},
            {"duration": 3, "camera": "static", "transition": "none"},
        ],
        "gsAudioPath": f"gs://movie-inputs/{project_id}/narration.mp3",
        "srtPath": f"gs://movie-inputs/{project_id}/captions.srt",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def scratch(tmp_path):
    path = tmp_path / "scratch"
    path.mkdir()
    return path


@pytest.fixture
def settings(scratch):
    return Settings(
        _env_file=None,
        s3_bucket="movie-inputs",
        scratch_root=str(scratch),
        retry_max=3,
        retry_base_delay_ms=0,
        fal_poll_interval_ms=10,
        fal_timeout_ms=1000,
    )


@pytest.fixture
def storage():
    return S3StorageClient(bucket="movie-inputs", access_key=None, secret_key=None)


@pytest.fixture
def runner():
    return RecordingRunner()


@pytest.fixture
def service(settings, storage, runner):
    return RenderService(settings=settings, input_storage=storage, output_storage=storage, runner=runner)
