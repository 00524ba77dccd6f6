"""Request coalescing: at most one in-flight build per cache key."""

import asyncio
from typing import TypeVar

from imgopt.types import BuildFn
from imgopt.utils.logger import logger

T = TypeVar("T")


class RequestCoalescer:
    """Deduplicates concurrent builds of the same cache key.

    The first caller for a key starts the build as its own task; callers that
    arrive while it runs await the same future and receive the same result or
    exception. The key is released as soon as the build settles, so a later
    caller starts a fresh build.

    The in-flight mapping is only mutated on the event loop between awaits,
    so no lock is needed.
    """

    def __init__(self) -> None:
        self._in_flight: dict[str, asyncio.Future] = {}
        self._started = 0
        self._joined = 0

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def is_building(self, key: str) -> bool:
        return key in self._in_flight

    async def begin_or_join(self, key: str, build_fn: BuildFn[T]) -> T:
        """Run ``build_fn`` for ``key`` or join the build already running.

        Cancelling a caller (e.g. on client disconnect) does not cancel the
        build; other waiters still receive its outcome.

        Args:
            key: Cache key identifying the work
            build_fn: Zero-argument coroutine function producing the result

        Returns:
            The build result shared by every caller

        Raises:
            Exception: Whatever the build raised, re-raised in every caller
        """
        future = self._in_flight.get(key)
        if future is not None:
            self._joined += 1
            logger.debug(f"Joining in-flight build for {key[:12]}")
        else:
            future = asyncio.ensure_future(build_fn())
            self._in_flight[key] = future
            self._started += 1
            future.add_done_callback(lambda f, k=key: self._settle(k, f))

        return await asyncio.shield(future)

    def _settle(self, key: str, future: asyncio.Future) -> None:
        """Release the key once its build completes."""
        if self._in_flight.get(key) is future:
            del self._in_flight[key]
        if future.cancelled():
            return
        # Mark the exception retrieved so an unobserved failure is not reported
        # as "never retrieved" once every waiter is gone
        error = future.exception()
        if error is not None:
            logger.debug(f"Build for {key[:12]} failed: {type(error).__name__}")

    def stats(self) -> dict[str, int]:
        return {
            "in_flight": len(self._in_flight),
            "started": self._started,
            "joined": self._joined,
        }
