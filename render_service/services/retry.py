from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Tuple, Type, TypeVar

from render_service.errors import RenderError

T = TypeVar("T")


class RetryExecutor:
    """Runs whole-object operations with bounded exponential backoff.

    Delay before attempt ``n + 1`` is ``base_delay_ms * 2 ** (n - 1)``. The
    exception raised by the final attempt propagates unchanged. Render errors
    that are not marked ``retryable`` (validation, missing objects) fail
    immediately.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay_ms: int = 1000,
        sleep: Callable[[float], None] = time.sleep,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.max_attempts = max(1, int(max_attempts))
        self.base_delay_ms = max(0, int(base_delay_ms))
        self._sleep = sleep
        self.log = logger or logging.getLogger(__name__)

    def delay_for(self, attempt: int) -> float:
        return self.base_delay_ms * (2 ** (attempt - 1)) / 1000.0

    def run(
        self,
        operation: Callable[[], T],
        label: str = "operation",
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    ) -> T:
        attempt = 1
        while True:
            try:
                return operation()
            except retry_on as exc:
                if not self._is_transient(exc) or attempt >= self.max_attempts:
                    raise
                delay = self.delay_for(attempt)
                self.log.warning(
                    "transient failure, retrying",
                    extra={
                        "operation": label,
                        "attempt": attempt,
                        "max_attempts": self.max_attempts,
                        "delay_seconds": delay,
                        "error": str(exc),
                    },
                )
                self._sleep(delay)
                attempt += 1

    def _is_transient(self, exc: BaseException) -> bool:
        if isinstance(exc, RenderError):
            return exc.retryable
        return True
