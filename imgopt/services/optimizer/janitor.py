"""Background service sweeping the variant cache."""

import asyncio
import contextlib

from imgopt.services.optimizer.cache import CacheStore
from imgopt.utils.logger import logger


class CacheJanitorService:
    """Periodic removal of expired and oversized variant cache entries.

    Eviction on the request path is lazy; the janitor is optional and only
    reclaims disk space held by entries nobody asks for again. Runs an
    ``asyncio.Task`` loop that calls ``evict_expired()`` and
    ``evict_by_size()`` every ``interval`` seconds.
    """

    def __init__(
        self,
        store: CacheStore,
        interval: int = 3600,
        max_cache_size_bytes: int | None = None,
    ):
        """Initialize the janitor.

        Args:
            store: Cache to sweep
            interval: Seconds between sweeps
            max_cache_size_bytes: Disk size limit, None for unbounded
        """
        self._store = store
        self.interval = interval
        self.max_cache_size_bytes = max_cache_size_bytes
        self.is_running = False
        self._task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        """Start the background sweep loop."""
        if self.is_running:
            logger.warning("Cache janitor already running")
            return

        self.is_running = True
        self._task = asyncio.create_task(self._sweep_loop())
        logger.info(f"Cache janitor started (interval: {self.interval}s)")

    async def stop(self) -> None:
        """Stop the background sweep loop."""
        self.is_running = False
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.info("Cache janitor stopped")

    async def _sweep_loop(self) -> None:
        while self.is_running:
            try:
                await self.sweep_once()
                await asyncio.sleep(self.interval)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in cache janitor sweep: {e}")
                await asyncio.sleep(min(self.interval, 60))

    def _sweep_sync(self) -> tuple[int, int]:
        expired = self._store.evict_expired()
        by_size = self._store.evict_by_size(self.max_cache_size_bytes)
        return expired, by_size

    async def sweep_once(self) -> tuple[int, int]:
        """Run both eviction passes off the event loop thread.

        Returns:
            Tuple of (expired_count, size_evicted_count)
        """
        expired, by_size = await asyncio.to_thread(self._sweep_sync)
        if expired or by_size:
            logger.info(f"Cache janitor: removed {expired} expired, {by_size} by size")
        else:
            logger.debug("Cache janitor: nothing to remove")
        return expired, by_size
