from __future__ import annotations

import logging
import os
import time
from typing import Any, Callable, List, Optional, Sequence, Tuple

import httpx

from render_service.clients.fal import FalQueueClient, QueueHandle
from render_service.errors import InvalidArgumentError, ProviderDownloadError, ProviderError
from render_service.models.domain import (
    Engine,
    RemoteCompose,
    RemoteImageToVideo,
    RemoteTextToVideo,
    Resolution,
    Scene,
)
from render_service.services.assets import RemoteAssets
from render_service.services.retry import RetryExecutor

SUCCESS_STATUSES = {"COMPLETED", "COMPLETED_WITH_WARNINGS"}
FAILURE_STATUSES = {"FAILED", "ERROR", "CANCELLED"}
OUTPUT_URL_PATHS = (
    ("output_url",),
    ("result", "url"),
    ("data", "url"),
    ("output", "url"),
    ("video", "url"),
)


def extract_output_url(result: dict[str, Any]) -> Optional[str]:
    for path in OUTPUT_URL_PATHS:
        node: Any = result
        for part in path:
            node = node.get(part) if isinstance(node, dict) else None
        if isinstance(node, str) and node:
            return node
    return None


def build_provider_request(
    engine: Engine,
    scenes: Sequence[Scene],
    assets: RemoteAssets,
    resolution: Resolution,
    overlap: float,
) -> Tuple[str, dict[str, Any]]:
    """Provider model id and request body for a remote engine."""
    total = sum(float(scene.duration) for scene in scenes)
    if isinstance(engine, RemoteCompose):
        entries: List[dict[str, Any]] = []
        for index, scene in enumerate(scenes):
            image_url = assets.images[index] if index < len(assets.images) else None
            if not image_url:
                continue
            entries.append(
                {
                    "image_url": image_url,
                    "duration": float(scene.duration),
                    "camera": scene.camera.value,
                    "transition": scene.transition.value,
                }
            )
        if not entries:
            raise InvalidArgumentError("no scene images available to render")
        payload: dict[str, Any] = {
            "scenes": entries,
            "narration_url": assets.narration,
            "resolution": {"width": resolution.width, "height": resolution.height},
            "transition_duration": overlap,
            "output_format": "mp4",
        }
        if assets.music:
            payload["music_url"] = assets.music
        if assets.captions:
            payload["captions_url"] = assets.captions
        return engine.model, payload
    if isinstance(engine, RemoteImageToVideo):
        image_url = next((url for url in assets.images if url), None)
        if not image_url:
            raise InvalidArgumentError("no scene image available for image-to-video")
        return engine.model, {
            "prompt": engine.prompt,
            "image_url": image_url,
            "duration": total,
            "resolution": resolution.size,
        }
    if isinstance(engine, RemoteTextToVideo):
        return engine.model, {
            "prompt": engine.prompt,
            "duration": total,
            "resolution": resolution.size,
        }
    raise InvalidArgumentError(f"engine {engine.kind} is not a remote engine")


class RemoteDispatcher:
    def __init__(
        self,
        client: FalQueueClient,
        retry: RetryExecutor,
        poll_interval_ms: int = 3000,
        timeout_ms: int = 600_000,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.client = client
        self.retry = retry
        self.poll_interval = poll_interval_ms / 1000.0
        self.timeout = timeout_ms / 1000.0
        self._sleep = sleep
        self._clock = clock
        self.log = logger or logging.getLogger(__name__)

    def dispatch(self, model: str, payload: dict[str, Any], workdir: str) -> str:
        """Submit, wait for completion and download the output into ``workdir``."""
        try:
            handle = self.client.submit(model, payload)
        except (httpx.HTTPError, ValueError) as exc:
            raise ProviderError("provider rejected the render request", details={"model": model, "error": str(exc)}) from exc
        result = self.wait(handle)
        url = extract_output_url(result)
        if not url:
            raise ProviderError(
                "provider returned no output url",
                details={"model": model, "request_id": handle.request_id},
            )
        destination = os.path.join(workdir, "remote.mp4")
        try:
            self.retry.run(lambda: self.client.download(url, destination), label="provider download")
        except (httpx.HTTPError, OSError) as exc:
            raise ProviderDownloadError(
                details={"model": model, "request_id": handle.request_id, "error": str(exc)},
            ) from exc
        self.log.info(
            "provider output downloaded",
            extra={"model": model, "request_id": handle.request_id},
        )
        return destination

    def wait(self, handle: QueueHandle) -> dict[str, Any]:
        deadline = self._clock() + self.timeout
        while True:
            try:
                status = self.retry.run(lambda: self.client.status(handle), label="provider status")
            except (httpx.HTTPError, ValueError) as exc:
                raise ProviderError(
                    "provider status check failed",
                    details={"request_id": handle.request_id, "error": str(exc)},
                ) from exc
            state = str(status.get("status") or "").upper()
            if state in SUCCESS_STATUSES:
                try:
                    return self.retry.run(lambda: self.client.result(handle), label="provider result")
                except (httpx.HTTPError, ValueError) as exc:
                    raise ProviderError(
                        "provider result fetch failed",
                        details={"request_id": handle.request_id, "error": str(exc)},
                    ) from exc
            if state in FAILURE_STATUSES:
                raise ProviderError(
                    "provider reported a failed render",
                    details={"request_id": handle.request_id, "status": state, "error": status.get("error")},
                )
            if self._clock() >= deadline:
                raise ProviderError(
                    "provider render timed out",
                    details={"request_id": handle.request_id, "status": state, "timeout_seconds": self.timeout},
                )
            self.log.debug("provider render pending", extra={"request_id": handle.request_id, "status": state})
            self._sleep(self.poll_interval)
