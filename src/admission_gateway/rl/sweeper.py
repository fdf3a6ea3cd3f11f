"""Background purge of expired window records."""

import asyncio
from typing import Callable, Optional

from ..core.logging import get_logger
from .limiter import now_ms
from .store import WindowStore

logger = get_logger(__name__)


class Sweeper:
    """
    Periodically removes expired records from a WindowStore.

    Correctness never depends on it (every check re-validates expiry); it
    only bounds memory when keys are unbounded, e.g. raw client IPs.
    """

    def __init__(
        self,
        store: WindowStore,
        interval_seconds: float = 60.0,
        clock: Optional[Callable[[], int]] = None,
        name: str = "default"
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self._store = store
        self._interval = interval_seconds
        self._clock = clock or now_ms
        self._name = name
        self._task: Optional[asyncio.Task] = None
        self.total_removed = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self):
        """Start the sweep loop."""
        if self._task is None:
            self._task = asyncio.create_task(self._sweep_loop())
            logger.debug("Sweeper started", policy=self._name, interval_seconds=self._interval)

    async def stop(self):
        """Cancel the sweep loop and wait for it to finish."""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.debug("Sweeper stopped", policy=self._name)

    def sweep_once(self) -> int:
        removed = self._store.sweep(self._clock())
        self.total_removed += removed
        if removed:
            logger.debug(
                "Swept expired rate limit windows",
                policy=self._name,
                removed=removed,
                remaining=len(self._store)
            )
        return removed

    async def _sweep_loop(self):
        while True:
            try:
                await asyncio.sleep(self._interval)
                self.sweep_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in rate limit sweep loop: {e}", policy=self._name)
