"""Periodic sweep of expired entries in the backing store.

Reads already discard expired entries lazily; this keeps the in-memory
store from holding keys nobody reads again. Redis expires keys natively,
so the sweep is a no-op there.
"""
import asyncio
from typing import Optional

from core.config import Settings
from core.logging import get_logger
from core.store import KeyValueStore

logger = get_logger(__name__)


class CleanupService:
    """Background task that purges expired keys on a fixed interval."""

    def __init__(self, store: KeyValueStore, settings: Settings):
        self.store = store
        self.settings = settings
        self.interval = settings.cleanup_interval
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the cleanup service background task."""
        if self._running:
            logger.warning("Cleanup service already running")
            return
        self._running = True
        self._task = asyncio.create_task(self._cleanup_loop())
        logger.info("Cleanup service started", interval=self.interval, backend=self.store.backend)

    async def stop(self) -> None:
        """Stop the cleanup service gracefully."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Cleanup service stopped")

    async def _cleanup_loop(self) -> None:
        """Main cleanup loop - runs at configured interval."""
        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                logger.error("Cleanup failed", error=str(e))
            await asyncio.sleep(self.interval)

    async def run_once(self) -> int:
        """Run one sweep and return the number of expired keys removed."""
        removed = await self.store.cleanup_expired()
        if removed:
            logger.info("Cleanup completed", expired_keys=removed)
        return removed
