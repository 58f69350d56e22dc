import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from tenacity import RetryCallState, retry, stop_after_attempt, wait_fixed


logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryScheduler:
    """Bounded retries with a fixed delay between attempts.

    Exhausting the attempts is not an error: `execute` returns the caller's
    neutral `default` instead of raising.
    """

    def __init__(
        self,
        max_attempts: int,
        delay_ms: int,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if delay_ms < 0:
            raise ValueError("delay_ms must be >= 0")
        self._max_attempts = max_attempts
        self._delay_ms = delay_ms
        self._sleep = sleep

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        default: T,
        context: Optional[Dict[str, Any]] = None,
        max_attempts: Optional[int] = None,
        delay_ms: Optional[int] = None,
    ) -> T:
        ctx = dict(context or {})
        trace_id = ctx.pop("trace_id", "")
        attempts = max_attempts or self._max_attempts
        delay_s = (self._delay_ms if delay_ms is None else delay_ms) / 1000.0

        def log_attempt(state: RetryCallState) -> None:
            exc = state.outcome.exception() if state.outcome else None
            logger.warning(
                "Attempt failed",
                extra={
                    "trace_id": trace_id,
                    **ctx,
                    "attempt": state.attempt_number,
                    "max_attempts": attempts,
                    "error": repr(exc),
                },
            )

        def give_up(state: RetryCallState) -> T:
            logger.error(
                "Retries exhausted, using default",
                extra={"trace_id": trace_id, **ctx, "attempts": state.attempt_number},
            )
            return default

        @retry(
            stop=stop_after_attempt(attempts),
            wait=wait_fixed(delay_s),
            sleep=self._sleep,
            after=log_attempt,
            retry_error_callback=give_up,
        )
        async def attempt() -> T:
            # operation may be a plain callable returning an awaitable
            return await operation()

        return await attempt()
