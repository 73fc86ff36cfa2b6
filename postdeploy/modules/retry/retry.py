"""RetryPolicy: fixed count, fixed interval retries with tenacity.

Only restart-class control-plane calls are retried. One-shot calls
(trigger sync, auto-swap, run-from-package) fail fast and propagate.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from tenacity import AsyncRetrying, RetryCallState, stop_after_attempt, wait_fixed

logger = logging.getLogger("postdeploy.retry")

T = TypeVar("T")

RESTART_RETRY_COUNT = 5
RESTART_RETRY_INTERVAL_MS = 5 * 1000


@dataclass(frozen=True)
class RetryOutcome(Generic[T]):
    """Result of a successful retried action."""
    result: T
    attempt_count: int


class RetryPolicy:
    """
    Invokes an async action up to max_attempts times.

    The interval between attempts does not grow. The last failure is
    re-raised unchanged once all attempts are spent.

    Example:
        policy = RetryPolicy(max_attempts=5, interval_ms=5000)
        outcome = await policy.attempt(lambda: client.post(path, request_id))
    """

    def __init__(
        self,
        max_attempts: int,
        interval_ms: int,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        """Initialize with attempt count and interval.

        Args:
            max_attempts: Total number of tries, not the number of retries
            interval_ms: Delay between two attempts in milliseconds
            sleep: Sleep coroutine, replaceable in tests
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if interval_ms < 0:
            raise ValueError("interval_ms must be >= 0")
        self.max_attempts = max_attempts
        self.interval_ms = interval_ms
        self._sleep = sleep or asyncio.sleep

    @classmethod
    def for_restart(cls) -> "RetryPolicy":
        return cls(RESTART_RETRY_COUNT, RESTART_RETRY_INTERVAL_MS)

    async def attempt(
        self,
        action: Callable[[], Awaitable[T]],
        tracer: Optional[logging.Logger] = None,
    ) -> RetryOutcome[T]:
        """
        Run action until it succeeds or attempts are exhausted.

        Returns:
            RetryOutcome carrying the action result and the attempt count

        Raises:
            Exception: The last failure of the action, unchanged
        """
        tracer = tracer or logger
        attempt_count = 0

        def _before_sleep(retry_state: RetryCallState) -> None:
            tracer.debug(
                "Attempt #%d failed with %s, retrying in %dms",
                retry_state.attempt_number,
                retry_state.outcome.exception() if retry_state.outcome else None,
                self.interval_ms,
            )

        retrying = AsyncRetrying(
            sleep=self._sleep,
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.interval_ms / 1000),
            before_sleep=_before_sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    attempt_count = attempt.retry_state.attempt_number
                    result = await action()
        except Exception as e:
            tracer.debug("Giving up after %d attempts: %s", attempt_count, e)
            raise

        return RetryOutcome(result=result, attempt_count=attempt_count)
