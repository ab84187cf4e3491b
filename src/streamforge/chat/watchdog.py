"""Liveness detection for provider streams."""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Optional

from streamforge.config.settings import settings
from streamforge.utils.logger import logger
from streamforge.utils.structured_logging import log_stream_stall


@dataclass(frozen=True)
class StallNotice:
    """Reported to the stall callback each time the inactivity window elapses."""
    attempt: int
    max_retries: int
    idle_seconds: float
    exhausted: bool


class StreamRecoveryWatchdog:
    """
    Timer that reports stalls without acting on them.

    Call touch() on every received chunk. When no touch arrives within
    ``timeout`` seconds the on_stall callback gets a StallNotice; once a
    notice is ``exhausted`` (more stalls than ``max_retries``) the watchdog
    stops firing. Restart or abort is the caller's decision.
    """

    def __init__(
        self,
        timeout: float = None,
        max_retries: int = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.timeout = timeout if timeout is not None else settings.STREAM_STALL_TIMEOUT_SECONDS
        self.max_retries = max_retries if max_retries is not None else settings.STREAM_STALL_MAX_RETRIES
        self._clock = clock
        self._last_activity = clock()
        self._on_stall: Optional[Callable[[StallNotice], None]] = None
        self._task: Optional[asyncio.Task] = None
        self.stall_count = 0
        self.stopped = False
        self.paused = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, on_stall: Callable[[StallNotice], None]) -> None:
        """Arm the timer; must be called from inside a running event loop."""
        if self.stopped:
            raise RuntimeError("Watchdog cannot be restarted after stop()")
        self._on_stall = on_stall
        self._last_activity = self._clock()
        self._task = asyncio.get_running_loop().create_task(self._watch())
        logger.debug(f"Stream watchdog started: timeout={self.timeout}s, max_retries={self.max_retries}")

    def touch(self) -> None:
        self._last_activity = self._clock()

    def pause(self) -> None:
        """Suspend stall detection while no provider stream is open (tools running)."""
        self.paused = True

    def resume(self) -> None:
        """Resume stall detection with a full window from now."""
        self.paused = False
        self.touch()

    def stop(self) -> None:
        """Disarm the timer. Safe to call any number of times."""
        if self.stopped:
            return
        self.stopped = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        logger.debug(f"Stream watchdog stopped after {self.stall_count} stall(s)")

    async def _watch(self) -> None:
        while True:
            idle = 0.0 if self.paused else self._clock() - self._last_activity
            remaining = self.timeout - idle
            if remaining > 0:
                await asyncio.sleep(remaining)
                continue

            self.stall_count += 1
            notice = StallNotice(
                attempt=self.stall_count,
                max_retries=self.max_retries,
                idle_seconds=idle,
                exhausted=self.stall_count > self.max_retries,
            )
            log_stream_stall(
                attempt=notice.attempt,
                max_retries=notice.max_retries,
                idle_seconds=notice.idle_seconds,
                exhausted=notice.exhausted,
            )
            # Re-arm from now so a restarted segment gets a full window
            self._last_activity = self._clock()
            self._on_stall(notice)
            if notice.exhausted:
                return
