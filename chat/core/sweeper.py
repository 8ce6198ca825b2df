from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import List, Optional

from chat.core.history import HistoryStore


logger = logging.getLogger(__name__)


class HistorySweeper:
    """Background task that evicts expired history records on a fixed interval.

    Owned by the application lifespan: ``start()`` at startup, ``stop()`` at
    shutdown. It shares nothing with request handling except the store.
    """

    def __init__(
        self,
        store: HistoryStore,
        interval_seconds: float,
        max_age_seconds: Optional[float] = None,
    ):
        self.store = store
        self.interval_seconds = interval_seconds
        self.max_age_seconds = max_age_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name="history-sweeper")
        logger.info("History sweeper started: interval=%ss", self.interval_seconds)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("History sweeper stopped")

    async def run_once(self) -> List[str]:
        try:
            removed = await self.store.sweep_expired(self.max_age_seconds)
        except Exception:
            logger.exception("History sweep failed")
            return []
        if removed:
            logger.info("History sweep removed %s record(s)", len(removed))
        return removed

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            await self.run_once()
