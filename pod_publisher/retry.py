from __future__ import annotations

from typing import Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .errors import is_retryable_error
from .logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def _log_retry(label: str, attempts: int) -> Callable[[RetryCallState], None]:
    def _before_sleep(state: RetryCallState) -> None:
        error = state.outcome.exception() if state.outcome else None
        logger.warning(
            "retrying operation",
            label=label,
            attempt=state.attempt_number,
            max_attempts=attempts,
            delay=state.next_action.sleep if state.next_action else None,
            error=str(error),
        )

    return _before_sleep


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    label: str,
    *,
    attempts: int = 3,
    base_delay: float = 1.0,
    should_retry: Callable[[BaseException], bool] = is_retryable_error,
) -> T:
    """Await ``fn`` with exponential backoff, re-raising the last error when exhausted."""
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(1, attempts)),
        wait=wait_exponential(multiplier=base_delay, min=base_delay, max=base_delay * 2 ** max(0, attempts - 1)),
        retry=retry_if_exception(should_retry),
        before_sleep=_log_retry(label, attempts),
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            return await fn()
    raise AssertionError("unreachable")  # pragma: no cover
