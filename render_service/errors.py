"""Error taxonomy for the render service.

Every failure that reaches the HTTP layer is a ``RenderError`` subclass with a
stable machine-readable ``code``. Provider and ffmpeg output is only ever
carried in ``details`` so callers get a clean ``message``.
"""

from __future__ import annotations

from typing import Any


class RenderError(Exception):
    code: str = "INTERNAL"
    status_code: int = 500
    message: str = "An unexpected error occurred"
    retryable: bool = False

    def __init__(
        self,
        message: str | None = None,
        *,
        details: Any = None,
        code: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self.message = message or self.__class__.message
        self.details = details
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        super().__init__(self.message)

    def to_payload(self, request_id: str | None) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details is not None:
            payload["details"] = self.details
        payload["requestId"] = request_id
        return payload


class InvalidArgumentError(RenderError):
    code = "INVALID_ARGUMENT"
    status_code = 400
    message = "Invalid request"


class UnauthorizedError(RenderError):
    code = "UNAUTHORIZED"
    status_code = 401
    message = "Missing or invalid credentials"


class NotFoundError(RenderError):
    code = "NOT_FOUND"
    status_code = 404
    message = "Resource not found"


class ConfigError(RenderError):
    """Required backend credentials or model identifiers are missing."""

    code = "CONFIG"
    status_code = 500
    message = "Render backend is not configured"


class EncodeError(RenderError):
    """The local ffmpeg pipeline exited abnormally."""

    code = "FFMPEG_FAILURE"
    status_code = 500
    message = "Video encoding failed"


class ProviderError(RenderError):
    """Terminal failure, timeout or malformed result from the remote provider."""

    code = "PROVIDER_FAILURE"
    status_code = 502
    message = "Remote render provider failed"
    retryable = True


class ProviderDownloadError(ProviderError):
    code = "PROVIDER_DOWNLOAD_FAILED"
    message = "Failed to download provider output"


class StorageError(RenderError):
    code = "STORAGE_FAILURE"
    status_code = 500
    message = "Object storage operation failed"
    retryable = True


class InternalError(RenderError):
    code = "INTERNAL"
    status_code = 500
    message = "Internal server error"
