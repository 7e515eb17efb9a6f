"""Periodic cache sweep for the long-running server.

Reads stay lazy (core.cache decides staleness per lookup); this task only
keeps stale entries from piling up in either tier.
"""
import asyncio
import time
from typing import Optional, TYPE_CHECKING

from core.logging import get_logger, log_execution_time

if TYPE_CHECKING:
    from core.config import Settings
    from core.cache import CacheService

logger = get_logger(__name__)


class CacheSweeper:
    """Background task calling CacheService.sweep() every CACHE_SWEEP_INTERVAL seconds."""

    def __init__(self, cache: "CacheService", settings: "Settings"):
        self.cache = cache
        self.settings = settings
        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._sweep_loop())
        logger.info("Cache sweeper started", interval=self.settings.cache_sweep_interval)

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Cache sweeper stopped")

    async def _sweep_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.settings.cache_sweep_interval)
            try:
                await self.run_once()
            except Exception as e:
                logger.error("Cache sweep failed", error=str(e))

    async def run_once(self) -> int:
        started = time.time()
        removed = await self.cache.sweep()
        if removed > 0:
            log_execution_time(logger, "cache_sweep", started, time.time(), removed=removed)
        return removed
