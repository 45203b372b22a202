"""
Retention sweep: periodically purges receipts older than ``retention_days``.

Runs as one asyncio task for the lifetime of the plugin.  The blocking
delete runs in a worker thread so request handling is not stalled.  A
failed sweep is logged and retried at the next tick.
"""

import asyncio
import logging

from readreceipts.config import ConfigurationHolder
from readreceipts.store import ReceiptStore

logger = logging.getLogger(__name__)


class RetentionSweeper:
    def __init__(self, store: ReceiptStore, config: ConfigurationHolder, interval: float = 86_400) -> None:
        self.store = store
        self.config = config
        self.interval = interval
        self._stop = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stop = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name="readreceipts-retention")
        logger.debug("Retention sweep started (interval=%ss)", self.interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        self._stop.set()
        await task
        logger.debug("Retention sweep stopped")

    async def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                await self.run_once()

    async def run_once(self) -> int:
        """Run one sweep with the current retention setting.

        Returns the number of rows removed (0 when the plugin or retention
        is disabled, or the sweep failed).
        """
        cfg = self.config.get()
        days = cfg.retention_days
        if not cfg.enable or days <= 0:
            return 0
        try:
            return await asyncio.to_thread(self.store.cleanup_older_than, days)
        except Exception as exc:
            logger.error("Failed to cleanup old receipts (retention_days=%s): %s", days, exc)
            return 0
