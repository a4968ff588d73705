from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ecs_exporter.core.errors import TransientAPIError

logger = structlog.get_logger()

T = TypeVar("T")


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "api_call_retry",
        operation=getattr(exc, "operation", None),
        code=getattr(exc, "code", None),
        attempt=retry_state.attempt_number,
        sleep=retry_state.next_action.sleep if retry_state.next_action else None,
        error=str(exc),
    )


class RetryPolicy:
    """Exponential backoff for TransientAPIError; anything else fails at once."""

    def __init__(
        self,
        max_attempts: int = 4,
        backoff_base: float = 0.5,
        backoff_max: float = 8.0,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._sleep = sleep

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            retry=retry_if_exception_type(TransientAPIError),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_base, max=self.backoff_max),
            before_sleep=_log_retry,
            sleep=self._sleep,
            reraise=True,
        )

    async def call(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        result: Any = None
        async for attempt in self._retrying():
            with attempt:
                result = await fn(*args, **kwargs)
        return result
