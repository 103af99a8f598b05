import json

import httpx
import pytest

from render_service.clients.fal import FalQueueClient
from render_service.errors import InvalidArgumentError, ProviderDownloadError, ProviderError
from render_service.models.domain import RemoteCompose, RemoteImageToVideo, RemoteTextToVideo, Resolution, Scene
from render_service.services.assets import RemoteAssets
from render_service.services.remote import RemoteDispatcher, build_provider_request, extract_output_url
from render_service.services.retry import RetryExecutor

MODEL = "fal-ai/ffmpeg-api/compose"
QUEUE = "https://queue.fal.run"


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.now += seconds


def _provider(statuses, result=None, video=b"remote-video", download_status=200):
    calls = {"status": 0, "submit": []}

    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if request.method == "POST":
            calls["submit"].append(json.loads(request.content))
            assert request.headers["Authorization"] == "Key secret"
            return httpx.Response(200, json={"request_id": "req-1"})
        if url.endswith("/status"):
            index = min(calls["status"], len(statuses) - 1)
            calls["status"] += 1
            return httpx.Response(200, json=statuses[index])
        if url.endswith("/requests/req-1"):
            return httpx.Response(200, json=result or {"video": {"url": "https://cdn.example/out.mp4"}})
        if url == "https://cdn.example/out.mp4":
            return httpx.Response(download_status, content=video)
        return httpx.Response(404)

    return httpx.MockTransport(handler), calls


def _dispatcher(transport, clock, timeout_ms=10_000):
    client = FalQueueClient(api_key="secret", base_url=QUEUE, transport=transport)
    retry = RetryExecutor(max_attempts=2, base_delay_ms=0, sleep=lambda _: None)
    return RemoteDispatcher(
        client,
        retry,
        poll_interval_ms=3000,
        timeout_ms=timeout_ms,
        sleep=clock.sleep,
        clock=clock,
    )


def test_completed_job_is_downloaded(tmp_path):
    clock = FakeClock()
    transport, calls = _provider([{"status": "IN_QUEUE"}, {"status": "IN_PROGRESS"}, {"status": "COMPLETED"}])

    path = _dispatcher(transport, clock).dispatch(MODEL, {"scenes": []}, str(tmp_path))

    assert open(path, "rb").read() == b"remote-video"
    assert calls["status"] == 3
    assert clock.now == pytest.approx(6.0)


def test_job_that_never_finishes_times_out(tmp_path):
    clock = FakeClock()
    transport, calls = _provider([{"status": "IN_PROGRESS"}])

    with pytest.raises(ProviderError) as info:
        _dispatcher(transport, clock, timeout_ms=9000).dispatch(MODEL, {}, str(tmp_path))

    assert info.value.message == "provider render timed out"
    assert calls["status"] == 4


def test_terminal_failure_status_is_provider_error(tmp_path):
    transport, _ = _provider([{"status": "FAILED", "error": "model exploded"}])

    with pytest.raises(ProviderError) as info:
        _dispatcher(transport, FakeClock()).dispatch(MODEL, {}, str(tmp_path))

    assert info.value.code == "PROVIDER_FAILURE"
    assert info.value.details["error"] == "model exploded"
    assert "model exploded" not in info.value.message


def test_missing_output_url_is_provider_error(tmp_path):
    transport, _ = _provider([{"status": "COMPLETED"}], result={"logs": []})

    with pytest.raises(ProviderError, match="no output url"):
        _dispatcher(transport, FakeClock()).dispatch(MODEL, {}, str(tmp_path))


def test_failed_download_is_retried_then_reported(tmp_path):
    transport, _ = _provider([{"status": "COMPLETED_WITH_WARNINGS"}], download_status=503)

    with pytest.raises(ProviderDownloadError) as info:
        _dispatcher(transport, FakeClock()).dispatch(MODEL, {}, str(tmp_path))

    assert info.value.code == "PROVIDER_DOWNLOAD_FAILED"


@pytest.mark.parametrize(
    "result, expected",
    [
        ({"output_url": "a"}, "a"),
        ({"result": {"url": "b"}}, "b"),
        ({"data": {"url": "c"}}, "c"),
        ({"output": {"url": "d"}}, "d"),
        ({"video": {"url": "e"}}, "e"),
        ({"video": "not-a-dict"}, None),
    ],
)
def test_output_url_lookup(result, expected):
    assert extract_output_url(result) == expected


def _remote_assets():
    return RemoteAssets(
        images=[None, "https://signed/scene-1.png"],
        narration="https://signed/narration.mp3",
        captions="https://signed/captions.srt",
        music=None,
    )


def test_compose_request_carries_per_scene_timing():
    scenes = [Scene(duration=3, camera="pan-left", transition="fade"), Scene(duration=4, camera="zoom-in", transition="none")]

    model, body = build_provider_request(
        RemoteCompose(model=MODEL), scenes, _remote_assets(), Resolution(width=1280, height=720), 0.75
    )

    assert model == MODEL
    assert body["scenes"] == [
        {"image_url": "https://signed/scene-1.png", "duration": 4.0, "camera": "zoom-in", "transition": "none"}
    ]
    assert body["resolution"] == {"width": 1280, "height": 720}
    assert "music_url" not in body
    assert body["captions_url"] == "https://signed/captions.srt"


def test_compose_request_without_captions_omits_caption_url():
    assets = RemoteAssets(images=["https://signed/scene-0.png"], narration="https://signed/narration.mp3")

    _, body = build_provider_request(
        RemoteCompose(model=MODEL), [Scene(duration=3)], assets, Resolution(width=854, height=480), 0.75
    )

    assert "captions_url" not in body
    assert body["narration_url"] == "https://signed/narration.mp3"


def test_image_to_video_uses_first_available_image_and_prompt():
    scenes = [Scene(duration=3), Scene(duration=5)]

    model, body = build_provider_request(
        RemoteImageToVideo(model="fal-ai/veo3/fast/image-to-video", prompt="slow push in"),
        scenes,
        _remote_assets(),
        Resolution(width=854, height=480),
        0.75,
    )

    assert model == "fal-ai/veo3/fast/image-to-video"
    assert body == {
        "prompt": "slow push in",
        "image_url": "https://signed/scene-1.png",
        "duration": 8.0,
        "resolution": "854x480",
    }


def test_text_to_video_sends_no_images():
    _, body = build_provider_request(
        RemoteTextToVideo(model="t2v", prompt="city at night"),
        [Scene(duration=3)],
        _remote_assets(),
        Resolution(width=854, height=480),
        0.75,
    )
    assert "image_url" not in body
    assert body["prompt"] == "city at night"


def test_image_to_video_without_images_is_invalid():
    assets = RemoteAssets(images=[None], narration="n", captions="c")
    with pytest.raises(InvalidArgumentError):
        build_provider_request(
            RemoteImageToVideo(model="m", prompt="p"), [Scene()], assets, Resolution(width=854, height=480), 0.75
        )
