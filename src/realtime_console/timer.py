"""Elapsed-session timer."""

import asyncio
import logging
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)


def format_timer(total_seconds: int) -> str:
    """Format whole seconds as MM:SS."""
    minutes, seconds = divmod(max(0, total_seconds), 60)
    return f"{minutes:02d}:{seconds:02d}"


class SessionTimer:
    """Counts elapsed seconds while a session is active.

    A background task ticks every ``interval_s`` and notifies ``on_tick``
    with the elapsed whole seconds. The elapsed value freezes on stop().
    """

    def __init__(
        self,
        interval_s: float = 1.0,
        on_tick: Callable[[int], None] | None = None,
    ) -> None:
        self.interval_s = interval_s
        self.on_tick = on_tick
        self._task: asyncio.Task[None] | None = None
        self._started: float | None = None
        self._stopped_elapsed = 0.0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def elapsed_seconds(self) -> int:
        if self._started is None:
            return int(self._stopped_elapsed)
        return int(time.monotonic() - self._started)

    def start(self) -> None:
        """Restart from zero. Must be called from a running event loop."""
        self.stop()
        self._stopped_elapsed = 0.0
        self._started = time.monotonic()
        self._task = asyncio.create_task(self._run())

    def stop(self) -> None:
        """Cancel the tick task and freeze the elapsed time."""
        if self._started is not None:
            self._stopped_elapsed = time.monotonic() - self._started
            self._started = None
        if self._task is not None:
            self._task.cancel()
            self._task = None

    def display(self) -> str:
        return format_timer(self.elapsed_seconds)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            if self.on_tick is not None:
                try:
                    self.on_tick(self.elapsed_seconds)
                except Exception:
                    logger.exception("Timer tick callback failed")
