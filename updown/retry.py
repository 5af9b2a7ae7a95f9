"""
RetryPolicy — bounded exponential backoff around fallible async calls.

Every price fetch and order submission the engine makes is wrapped in a
policy. Delays grow as ``initial_delay * multiplier ** attempt``; a
retryability predicate decides which failures are worth another attempt,
everything else propagates on the first raise.

Usage::

    policy = RetryPolicy(attempts=3, initial_delay=0.5)
    price = await policy.call(exchange.get_price, token_id, Side.BUY)
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from updown.errors import is_retryable

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "retrying_external_call",
        fn=getattr(retry_state.fn, "__qualname__", str(retry_state.fn)),
        attempt=retry_state.attempt_number,
        sleep_s=round(retry_state.next_action.sleep, 3)
        if retry_state.next_action
        else 0,
        error=str(exc),
        error_type=type(exc).__name__,
    )


@dataclass
class RetryPolicy:
    """Retry configuration for one class of external call.

    Attributes:
        attempts: Total attempts including the first one.
        initial_delay: Seconds to wait before the first retry.
        multiplier: Backoff base; delay before retry ``n`` is
            ``initial_delay * multiplier ** (n - 1)``.
        max_delay: Upper bound on a single wait.
        is_retryable: Predicate deciding whether an exception is retried.
        sleep: Awaitable sleep, injectable for tests.
    """

    attempts: int = 3
    initial_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0
    is_retryable: Callable[[BaseException], bool] = is_retryable
    sleep: Callable[[float], Awaitable[Any]] = field(default=asyncio.sleep, repr=False)

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(max(1, self.attempts)),
            wait=wait_exponential(
                multiplier=self.initial_delay,
                exp_base=self.multiplier,
                max=self.max_delay,
            ),
            retry=retry_if_exception(self.is_retryable),
            before_sleep=_log_retry,
            sleep=self.sleep,
            reraise=True,
        )

    async def call(
        self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any
    ) -> T:
        """Run ``fn(*args, **kwargs)`` under this policy.

        Raises the last exception once attempts are exhausted, or the first
        non-retryable exception immediately.
        """
        return await self._retrying()(fn, *args, **kwargs)
