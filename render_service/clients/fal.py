from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx


@dataclass(frozen=True)
class QueueHandle:
    model: str
    request_id: str
    status_url: str
    response_url: str


class FalQueueClient:
    """Minimal client for the fal.ai queue REST API (submit, status, result)."""

    def __init__(
        self,
        api_key: str | None,
        base_url: str = "https://queue.fal.run",
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self.log = logger or logging.getLogger(__name__)

    def enabled(self) -> bool:
        return bool(self.api_key)

    def submit(self, model: str, payload: dict[str, Any]) -> QueueHandle:
        if not self.enabled():
            raise RuntimeError("fal client is not configured")
        url = f"{self.base_url}/{model.strip('/')}"
        with self._client() as client:
            response = client.post(url, json=payload)
            response.raise_for_status()
            data = response.json()
        request_id = data.get("request_id")
        if not request_id:
            raise ValueError("fal submit response has no request_id")
        base = f"{url}/requests/{request_id}"
        handle = QueueHandle(
            model=model,
            request_id=request_id,
            status_url=data.get("status_url") or f"{base}/status",
            response_url=data.get("response_url") or base,
        )
        self.log.info("fal request submitted", extra={"model": model, "request_id": request_id})
        return handle

    def status(self, handle: QueueHandle) -> dict[str, Any]:
        with self._client() as client:
            response = client.get(handle.status_url)
            response.raise_for_status()
            return response.json()

    def result(self, handle: QueueHandle) -> dict[str, Any]:
        with self._client() as client:
            response = client.get(handle.response_url)
            response.raise_for_status()
            return response.json()

    def download(self, url: str, destination: str) -> str:
        timeout = httpx.Timeout(connect=10.0, read=max(self.timeout, 60.0), write=10.0, pool=10.0)
        with httpx.Client(timeout=timeout, transport=self._transport, follow_redirects=True) as client:
            with client.stream("GET", url) as resp:
                resp.raise_for_status()
                with open(destination, "wb") as f:
                    for chunk in resp.iter_bytes():
                        if chunk:
                            f.write(chunk)
        return destination

    def _client(self) -> httpx.Client:
        return httpx.Client(
            timeout=self.timeout,
            transport=self._transport,
            headers={"Authorization": f"Key {self.api_key}", "Content-Type": "application/json"},
        )
