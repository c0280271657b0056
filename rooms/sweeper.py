import asyncio
import logging
from typing import Optional

from .store import RoomStore

logger = logging.getLogger(__name__)


class ReclamationSweeper:
    """Periodically deletes members that have been offline past the retention window."""

    def __init__(self, store: Optional[RoomStore] = None, interval_s: float = 300, retention_s: float = 3600):
        self.store = store or RoomStore()
        self.interval_s = interval_s
        self.retention_s = retention_s
        self._running = False
        self._in_flight = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            logger.warning("Reclamation sweeper already running")
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            f"Reclamation sweeper started (every {self.interval_s:.0f}s, "
            f"retention {self.retention_s:.0f}s)"
        )

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Reclamation sweeper stopped")

    async def run_once(self) -> Optional[int]:
        """Run a single sweep. Returns rows removed, or None if skipped."""
        if self._in_flight:
            logger.warning("Previous sweep still running, skipping")
            return None

        self._in_flight = True
        try:
            removed = await self.store.purge_offline_members(self.retention_s)
        finally:
            self._in_flight = False

        if removed:
            logger.info(f"Cleaned up {removed} inactive users")
        return removed

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.interval_s)
                if not self._running:
                    break
                await self.run_once()
            except asyncio.CancelledError:
                logger.debug("Reclamation sweeper loop cancelled")
                break
            except Exception as e:
                logger.error(f"Error cleaning up users: {e}")
