"""Two-tier variant cache — disk artifacts with a bounded in-memory hot tier."""

import asyncio
import hashlib
import json
import os
import tempfile
import time
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from cachetools import TLRUCache
from pydantic import ValidationError

from imgopt.exceptions import CacheWriteError
from imgopt.services.optimizer.models import (
    MISS,
    CacheControl,
    CacheEntry,
    Expired,
    Fresh,
    LookupResult,
    ResolvedParams,
    Validators,
)
from imgopt.types import Clock
from imgopt.utils.logger import logger

# Bump to invalidate every existing entry when the key or artifact layout changes
CACHE_KEY_VERSION = "1"

# Temp files older than this are leftovers of interrupted writes
_STALE_TEMP_SECONDS = 3600


def cache_key(source: str, validator: str | None, params: ResolvedParams) -> str:
    """Derive the cache key of a variant.

    Pure function of the source identity, its validator and the resolved
    parameters: no randomness, no time dependence.

    Args:
        source: Resolved absolute source string
        validator: Origin validator (ETag or Last-Modified), None when unavailable
        params: Normalized request parameters

    Returns:
        Hex SHA-256 digest
    """
    parts = (
        CACHE_KEY_VERSION,
        source,
        validator or "",
        str(params.bucket_width),
        params.output_format,
        str(params.quality),
    )
    return hashlib.sha256("\x00".join(parts).encode()).hexdigest()


def compute_ttl(cache_control: CacheControl, minimum_ttl: int) -> int:
    """Freshness lifetime of a variant built from an origin response.

    Precedence: ``s-maxage``, then ``max-age``, then the configured floor.
    The floor is only used when the origin sent neither directive.

    Args:
        cache_control: Directives parsed from the origin response
        minimum_ttl: Floor applied when the origin supplies no freshness

    Returns:
        TTL in seconds
    """
    if cache_control.s_maxage is not None:
        return cache_control.s_maxage
    if cache_control.max_age is not None:
        return cache_control.max_age
    return minimum_ttl


@dataclass(slots=True)
class MemoryVariant:
    """Hot-tier copy of a cached variant."""

    entry: CacheEntry
    data: bytes = field(repr=False)


class CacheStore:
    """Variant cache: disk (persistent across restarts) + memory (hot variants).

    Layout::

        base_dir/
        ├── <key>.bin    # variant bytes
        └── <key>.json   # content type, created/expires timestamps, validators

    Both files are written temp-then-rename; the metadata rename is the commit
    point, so readers see a complete entry or none at all. Eviction is lazy:
    entries are only inspected or removed on access, or by an explicit sweep.
    """

    def __init__(
        self,
        base_dir: Path,
        memory_max_entries: int = 128,
        clock: Clock = time.time,
    ):
        """Initialize the cache.

        Args:
            base_dir: Root directory for cached variants
            memory_max_entries: Maximum number of variants kept in memory (0 disables)
            clock: Source of the current time, seconds since the epoch
        """
        self._base_dir = Path(base_dir)
        self._clock = clock
        self._memory: TLRUCache[str, MemoryVariant] | None = None
        if memory_max_entries > 0:
            self._memory = TLRUCache(
                maxsize=memory_max_entries,
                ttu=lambda _key, value, _now: value.entry.expires_at,
                timer=clock,
            )

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def _data_path(self, key: str) -> Path:
        return self._base_dir / f"{key}.bin"

    def _meta_path(self, key: str) -> Path:
        return self._base_dir / f"{key}.json"

    # ------------------------------------------------------------------
    # Public async API
    # ------------------------------------------------------------------

    async def lookup(self, key: str) -> LookupResult:
        """Classify a key as Fresh, Expired or Miss.

        Args:
            key: Cache key

        Returns:
            ``Fresh(entry)``, ``Expired(entry)`` or ``MISS``
        """
        if self._memory is not None:
            cached = self._memory.get(key)
            if cached is not None:
                return Fresh(cached.entry)

        entry = await asyncio.to_thread(self._load_metadata, key)
        if entry is None:
            return MISS
        if entry.is_expired(self._clock()):
            return Expired(entry)
        return Fresh(entry)

    async def read(self, entry: CacheEntry) -> bytes | None:
        """Read the bytes of an entry returned by ``lookup``.

        Args:
            entry: Entry to read

        Returns:
            Variant bytes, or None if the artifact disappeared since lookup
        """
        if self._memory is not None:
            cached = self._memory.get(entry.key)
            if cached is not None:
                return cached.data

        try:
            data = await asyncio.to_thread(entry.path.read_bytes)
        except FileNotFoundError:
            logger.warning(f"Cache artifact vanished after lookup: {entry.key[:12]}")
            return None

        if self._memory is not None and not entry.is_expired(self._clock()):
            self._memory[entry.key] = MemoryVariant(entry=entry, data=data)
        return data

    async def put(
        self,
        key: str,
        data: bytes,
        content_type: str,
        ttl: int,
        *,
        source: str = "",
        validators: Validators | None = None,
    ) -> CacheEntry:
        """Store a variant, replacing any prior entry for the key.

        Args:
            key: Cache key
            data: Variant bytes
            content_type: Media type of ``data``
            ttl: Freshness lifetime in seconds (``expires_at = now + ttl``)
            source: Source identity, recorded for diagnostics
            validators: Origin validators, recorded in the metadata

        Returns:
            The committed CacheEntry

        Raises:
            CacheWriteError: If the entry cannot be written to disk
        """
        now = self._clock()
        entry = CacheEntry(
            key=key,
            content_type=content_type,
            created_at=now,
            expires_at=now + max(ttl, 0),
            path=self._data_path(key),
            size_bytes=len(data),
            source=source,
            validators=validators or Validators(),
        )

        if self._memory is not None:
            self._memory.pop(key, None)
        try:
            await asyncio.to_thread(self._write_entry, entry, data)
        except OSError as e:
            logger.error(f"Failed to write cache entry {key[:12]}: {e}")
            raise CacheWriteError(f"Cannot persist cache entry {key}: {e}") from e

        if self._memory is not None and ttl > 0:
            self._memory[key] = MemoryVariant(entry=entry, data=data)
        logger.debug(f"Cached {key[:12]} ({len(data)} bytes, ttl={ttl}s)")
        return entry

    async def evict(self, key: str) -> bool:
        """Delete an entry. Idempotent.

        Args:
            key: Cache key

        Returns:
            True if an entry existed
        """
        if self._memory is not None:
            self._memory.pop(key, None)
        removed = await asyncio.to_thread(self._remove, key)
        if removed:
            logger.debug(f"Evicted cache entry {key[:12]}")
        return removed

    # ------------------------------------------------------------------
    # Disk operations (synchronous, call via to_thread)
    # ------------------------------------------------------------------

    def _load_metadata(self, key: str, repair: bool = False) -> CacheEntry | None:
        """Load an entry's metadata from disk.

        Entries with unreadable metadata or a missing artifact read as absent.
        Only the sweeps pass ``repair=True`` to delete them. Lookups and stats
        never touch the files, since a concurrent ``put`` may be mid-write.

        Args:
            key: Cache key
            repair: Remove broken entries instead of only skipping them

        Returns:
            CacheEntry, or None if absent or broken
        """
        meta_path = self._meta_path(key)
        try:
            raw = meta_path.read_bytes()
        except FileNotFoundError:
            return None

        try:
            entry = CacheEntry.model_validate({**json.loads(raw), "path": self._data_path(key)})
        except (json.JSONDecodeError, ValidationError) as e:
            if repair:
                logger.warning(f"Discarding unreadable cache metadata {meta_path.name}: {e}")
                self._remove(key)
            return None

        if not entry.path.exists():
            if repair:
                logger.warning(f"Cache artifact missing for {key[:12]}, discarding metadata")
                self._remove(key)
            return None
        return entry

    def _write_entry(self, entry: CacheEntry, data: bytes) -> None:
        """Write an entry atomically, removing the previous one first."""
        self._base_dir.mkdir(parents=True, exist_ok=True)
        self._remove(entry.key)

        self._atomic_write(entry.path, data)
        metadata = entry.model_dump(mode="json", exclude={"path"})
        try:
            self._atomic_write(self._meta_path(entry.key), json.dumps(metadata).encode())
        except OSError:
            entry.path.unlink(missing_ok=True)
            raise

    def _atomic_write(self, path: Path, payload: bytes) -> None:
        """Write to a temp file in the same directory, then rename over ``path``."""
        fd, tmp_name = tempfile.mkstemp(dir=self._base_dir, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(payload)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _remove(self, key: str) -> bool:
        """Remove metadata first (un-commit), then the artifact."""
        existed = False
        for path in (self._meta_path(key), self._data_path(key)):
            try:
                path.unlink()
                existed = True
            except FileNotFoundError:
                continue
        return existed

    def _iter_entries(self, repair: bool = True) -> Iterator[CacheEntry]:
        """Yield every committed entry on disk."""
        if not self._base_dir.exists():
            return
        for meta_path in self._base_dir.glob("*.json"):
            entry = self._load_metadata(meta_path.stem, repair=repair)
            if entry is not None:
                yield entry

    def _sweep_temp_files(self) -> int:
        """Remove temp files left behind by interrupted writes."""
        removed = 0
        cutoff = self._clock() - _STALE_TEMP_SECONDS
        for tmp in self._base_dir.glob(".*.tmp"):
            try:
                if tmp.stat().st_mtime < cutoff:
                    tmp.unlink()
                    removed += 1
            except FileNotFoundError:
                continue
        return removed

    # ------------------------------------------------------------------
    # Sweeps (synchronous; used by the janitor and the CLI)
    # ------------------------------------------------------------------

    def evict_expired(self) -> int:
        """Remove all expired entries.

        Returns:
            Number of entries removed
        """
        if not self._base_dir.exists():
            return 0

        now = self._clock()
        removed = 0
        for entry in list(self._iter_entries()):
            if entry.is_expired(now):
                if self._memory is not None:
                    self._memory.pop(entry.key, None)
                self._remove(entry.key)
                removed += 1

        self._sweep_temp_files()
        if removed > 0:
            logger.info(f"Evicted {removed} expired cache entries")
        return removed

    def evict_by_size(self, max_bytes: int | None) -> int:
        """Remove oldest entries until the cache fits in ``max_bytes``.

        Args:
            max_bytes: Size limit; None means unbounded

        Returns:
            Number of entries removed
        """
        if max_bytes is None:
            return 0

        entries = sorted(self._iter_entries(), key=lambda e: e.created_at)
        total_size = sum(e.size_bytes for e in entries)
        if total_size <= max_bytes:
            return 0

        removed = 0
        for entry in entries:
            if total_size <= max_bytes:
                break
            if self._memory is not None:
                self._memory.pop(entry.key, None)
            self._remove(entry.key)
            total_size -= entry.size_bytes
            removed += 1

        if removed > 0:
            logger.info(f"Evicted {removed} cache entries by size (target: {max_bytes} bytes)")
        return removed

    def clear(self) -> int:
        """Remove every entry.

        Returns:
            Number of entries removed
        """
        if self._memory is not None:
            self._memory.clear()
        count = 0
        for entry in list(self._iter_entries()):
            self._remove(entry.key)
            count += 1
        logger.info(f"Cleared all {count} cache entries")
        return count

    def stats(self) -> dict[str, Any]:
        """Get cache statistics."""
        entries = list(self._iter_entries(repair=False))
        now = self._clock()
        total_size = sum(e.size_bytes for e in entries)
        return {
            "total_entries": len(entries),
            "expired_entries": sum(1 for e in entries if e.is_expired(now)),
            "total_size_bytes": total_size,
            "total_size_mb": round(total_size / (1024 * 1024), 2),
            "memory_entries": len(self._memory) if self._memory is not None else 0,
        }

    async def shutdown(self) -> None:
        """Drop the memory tier."""
        if self._memory is not None:
            self._memory.clear()
        logger.info("Variant cache shutdown complete")
