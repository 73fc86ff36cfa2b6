"""
Liveness markers.

Advisory files read by whichever process runs next or by an external
stall detector. Writes and deletes are best effort: failures are logged
and never propagated. Callers are responsible for running only one
orchestration at a time; writers do not lock.
"""

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Awaitable, Callable, Optional, Set, Union

logger = logging.getLogger("postdeploy.marker")

AUTO_SWAP_LOCK_VALIDITY = timedelta(minutes=2)
DEFAULT_TRACKING_TIMEOUT = timedelta(minutes=30)
DEFAULT_UPDATE_INTERVAL = timedelta(seconds=10)


def _safe_execute(action: Callable[[], None], description: str, tracer: logging.Logger) -> bool:
    """Run a filesystem action, logging and swallowing OS errors."""
    try:
        action()
        return True
    except OSError as e:
        tracer.warning("Fail to %s.  %s", description, e)
        return False


class AutoSwapLock:
    """
    Empty sentinel file marking an auto-swap in progress.

    There is no clear step: the lock deactivates once it is older than
    the validity window.
    """

    def __init__(
        self,
        path: Union[str, Path],
        validity: timedelta = AUTO_SWAP_LOCK_VALIDITY,
        tracer: Optional[logging.Logger] = None,
    ):
        self.path = Path(path)
        self.validity = validity
        self.tracer = tracer or logger

    def write(self, tracer: Optional[logging.Logger] = None) -> bool:
        """Create or refresh the sentinel. Returns False if the write failed."""
        def _write() -> None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text("")

        return _safe_execute(_write, f"write {self.path}", tracer or self.tracer)

    def is_active(self, now: Optional[datetime] = None) -> bool:
        """Check if the sentinel exists and was written within the window."""
        now = now or datetime.now(UTC)
        try:
            mtime = self.path.stat().st_mtime
        except FileNotFoundError:
            return False
        except OSError as e:
            self.tracer.warning("Fail to read %s.  %s", self.path, e)
            return False

        last_write = datetime.fromtimestamp(mtime, tz=UTC)
        return last_write + self.validity >= now


class PendingOperationMarker:
    """
    Heartbeat file for a long-running operation.

    While the tracked task runs, the marker is rewritten with the start
    timestamp every interval. If the task finishes the marker is removed;
    if tracking times out the stale marker stays behind for the stall
    detector to find.
    """

    def __init__(
        self,
        path: Union[str, Path],
        is_managed_environment: bool,
        interval: timedelta = DEFAULT_UPDATE_INTERVAL,
        tracer: Optional[logging.Logger] = None,
    ):
        """
        Initialize marker.

        Args:
            path: Marker file location
            is_managed_environment: No marker is kept when False
            interval: Delay between two marker rewrites
            tracer: Logger for best-effort failures
        """
        self.path = Path(path)
        self.is_managed_environment = is_managed_environment
        self.interval = interval
        self.tracer = tracer or logger
        self._running: Set[asyncio.Future] = set()

    @staticmethod
    def effective_timeout(timeout: Optional[timedelta]) -> timedelta:
        """Cap the tracking timeout at the default."""
        if timeout is None or timeout <= timedelta(0) or timeout >= DEFAULT_TRACKING_TIMEOUT:
            return DEFAULT_TRACKING_TIMEOUT
        return timeout

    async def track(
        self,
        task: Union[asyncio.Future, Awaitable],
        timeout: Optional[timedelta] = None,
    ) -> asyncio.Future:
        """
        Keep the marker fresh until task completes or timeout elapses.

        A coroutine is scheduled before anything else, so it runs even
        when no marker is kept. The task is never cancelled and its
        outcome is not raised here.

        Returns:
            The scheduled future. It is done when the task completed
            while tracked; not done when tracking timed out or the marker
            is disabled. Callers await it for the task's result.
        """
        future = asyncio.ensure_future(task)
        # The loop only keeps weak references to tasks
        self._running.add(future)
        future.add_done_callback(self._running.discard)

        if not self.is_managed_environment:
            return future

        timeout = self.effective_timeout(timeout)
        start = datetime.now(UTC)
        stamp = start.isoformat()

        while not future.done() and start + timeout >= datetime.now(UTC):
            _safe_execute(lambda: self.path.write_text(stamp), f"write {self.path}", self.tracer)

            delay = asyncio.ensure_future(asyncio.sleep(self.interval.total_seconds()))
            done, _ = await asyncio.wait({delay, future}, return_when=asyncio.FIRST_COMPLETED)
            if future in done:
                delay.cancel()

        if future.done():
            _safe_execute(lambda: self.path.unlink(missing_ok=True), f"delete {self.path}", self.tracer)
        else:
            self.tracer.warning("Operation started at %s still pending after %s", stamp, timeout)
        return future
