"""Bounded worker pools for origin fetches and transcodes."""

import asyncio
import functools
from collections.abc import AsyncIterator, Awaitable, Callable
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from typing import Any, TypeVar

from imgopt.exceptions import PoolSaturatedError
from imgopt.utils.logger import logger

T = TypeVar("T")


class WorkerPool:
    """Runs work with a concurrency ceiling and a bounded wait queue.

    Callers beyond ``max_concurrency`` wait in FIFO order; once ``max_queue``
    callers are already waiting, new callers fail fast with
    ``PoolSaturatedError`` instead of piling up unbounded work.

    Args:
        name: Pool name used in logs and stats
        max_concurrency: Maximum number of tasks running at once
        max_queue: Maximum number of tasks waiting for a slot
        threaded: Whether to back the pool with its own thread executor for
            blocking (CPU-bound) callables
    """

    def __init__(
        self,
        name: str,
        max_concurrency: int,
        max_queue: int,
        threaded: bool = False,
    ):
        if max_concurrency < 1:
            raise ValueError(f"Pool '{name}' needs max_concurrency >= 1, got {max_concurrency}")
        if max_queue < 0:
            raise ValueError(f"Pool '{name}' needs max_queue >= 0, got {max_queue}")

        self.name = name
        self.max_concurrency = max_concurrency
        self.max_queue = max_queue
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._executor: ThreadPoolExecutor | None = (
            ThreadPoolExecutor(max_workers=max_concurrency, thread_name_prefix=f"imgopt-{name}")
            if threaded
            else None
        )
        self._active = 0
        self._queued = 0
        self._completed = 0
        self._rejected = 0

    @property
    def active(self) -> int:
        return self._active

    @property
    def queued(self) -> int:
        return self._queued

    @asynccontextmanager
    async def _slot(self) -> AsyncIterator[None]:
        """Acquire a concurrency slot, waiting in the bounded queue if needed."""
        if self._semaphore.locked() and self._queued >= self.max_queue:
            self._rejected += 1
            logger.warning(f"Worker pool '{self.name}' saturated: {self._queued} queued")
            raise PoolSaturatedError(self.name, self.max_queue)

        self._queued += 1
        try:
            await self._semaphore.acquire()
        finally:
            self._queued -= 1

        self._active += 1
        try:
            yield
        finally:
            self._active -= 1
            self._completed += 1
            self._semaphore.release()

    async def run(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run an async callable inside a pool slot.

        Args:
            fn: Zero-argument coroutine function

        Returns:
            The coroutine's result

        Raises:
            PoolSaturatedError: If the wait queue is full
        """
        async with self._slot():
            return await fn()

    async def run_sync(self, fn: Callable[..., T], *args: Any) -> T:
        """Run a blocking callable on the pool's executor inside a pool slot.

        Args:
            fn: Blocking callable
            *args: Positional arguments for ``fn``

        Returns:
            The callable's result

        Raises:
            PoolSaturatedError: If the wait queue is full
        """
        async with self._slot():
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._executor, functools.partial(fn, *args))

    def stats(self) -> dict[str, Any]:
        """Get pool statistics."""
        return {
            "name": self.name,
            "active": self._active,
            "queued": self._queued,
            "completed": self._completed,
            "rejected": self._rejected,
            "max_concurrency": self.max_concurrency,
            "max_queue": self.max_queue,
        }

    def shutdown(self) -> None:
        """Stop the executor; queued executor jobs are cancelled."""
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            logger.debug(f"Worker pool '{self.name}' executor shut down")
