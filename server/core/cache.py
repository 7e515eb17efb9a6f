"""TTL cache for upstream payloads.

Entries are addressed by (namespace, category, key) and expire lazily: a
read decides staleness from created_at and ttl_seconds, nothing is evicted
on a timer here (see core.cleanup.CacheSweeper for the periodic sweep).
A stale entry and a missing entry look the same to callers, who re-fetch
upstream and call set() again. Upstream errors are never cached.

Memory is the primary tier. When a Database is given the entries are also
written through to the cache_entries table so they survive restarts.
"""

import asyncio
import json
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, NamedTuple, Optional, Tuple, TYPE_CHECKING

from core.config import Settings
from core.logging import get_logger, log_cache_operation
from models.cache import CacheEntry

if TYPE_CHECKING:
    from core.database import Database

logger = get_logger(__name__)

Address = Tuple[str, str, str]


@dataclass(frozen=True)
class CacheRecord:
    """Immutable cached payload."""
    namespace: str
    category: str
    key: str
    payload: Any
    created_at: float
    ttl_seconds: int

    def is_fresh(self, now: float) -> bool:
        return now - self.created_at < self.ttl_seconds


class CacheLookup(NamedTuple):
    payload: Any
    cached: bool
    created_at: float


def _entry_id(address: Address) -> str:
    return ":".join(address)


class CacheService:
    """Lazy-expiry TTL cache with optional SQLite write-through."""

    def __init__(self, settings: Settings, database: Optional["Database"] = None,
                 clock: Callable[[], float] = time.time):
        self.settings = settings
        self.database = database
        self.use_database = database is not None and settings.cache_persistent
        self.max_entries = settings.cache_max_entries
        self._clock = clock
        self._entries: Dict[Address, CacheRecord] = {}
        self._stats: Dict[str, Dict[str, int]] = defaultdict(lambda: {"hits": 0, "misses": 0, "sets": 0})

    async def startup(self):
        """Initialize cache."""
        if self.use_database:
            logger.info("Using in-memory cache with SQLite write-through")
        else:
            logger.info("Using in-memory cache")

    async def shutdown(self):
        """Drop the memory tier."""
        self._entries.clear()

    def ttl_for(self, namespace: str) -> int:
        """Default TTL for a namespace, falling back to CACHE_TTL."""
        return self.settings.cache_namespace_ttls.get(namespace, self.settings.cache_ttl)

    async def get(self, namespace: str, category: str, key: str) -> Optional[CacheRecord]:
        """Return the entry if present and fresh, otherwise None. Never raises."""
        address = (namespace, category, str(key))
        try:
            record = self._entries.get(address)
            if record is None and self.use_database:
                record = await self._load(address)
                if record is not None and address not in self._entries:
                    self._entries[address] = record

            if record is not None and record.is_fresh(self._clock()):
                self._stats[namespace]["hits"] += 1
                log_cache_operation(logger, "get", _entry_id(address), hit=True)
                return record

            self._stats[namespace]["misses"] += 1
            log_cache_operation(logger, "get", _entry_id(address), hit=False)
            return None

        except Exception as e:
            logger.error("Cache get failed", key=_entry_id(address), error=str(e))
            return None

    async def set(self, namespace: str, category: str, key: str, payload: Any,
                  ttl_seconds: Optional[int] = None) -> None:
        """Overwrite the entry at this address. A non-positive TTL stores nothing."""
        ttl = self.ttl_for(namespace) if ttl_seconds is None else ttl_seconds
        address = (namespace, category, str(key))
        if ttl <= 0:
            return

        try:
            record = CacheRecord(
                namespace=namespace,
                category=category,
                key=str(key),
                payload=payload,
                created_at=self._clock(),
                ttl_seconds=ttl,
            )
            self._entries[address] = record
            self._stats[namespace]["sets"] += 1
            log_cache_operation(logger, "set", _entry_id(address), ttl=ttl)

            if len(self._entries) > self.max_entries:
                self._evict()

            if self.use_database:
                await self.database.set_cache_entry(CacheEntry(
                    id=_entry_id(address),
                    namespace=namespace,
                    category=category,
                    key=str(key),
                    payload=json.dumps(payload, default=str),
                    ttl_seconds=ttl,
                    created_at=record.created_at,
                ))

        except Exception as e:
            logger.error("Cache set failed", key=_entry_id(address), error=str(e))

    async def get_or_fetch(self, namespace: str, category: str, key: str,
                           fetch: Callable[[], Awaitable[Any]],
                           ttl_seconds: Optional[int] = None) -> CacheLookup:
        """Memoize an upstream call.

        Errors raised by fetch propagate to the caller and leave the cache
        untouched. The cache write is shielded so an abandoned request still
        stores what it fetched.
        """
        record = await self.get(namespace, category, key)
        if record is not None:
            return CacheLookup(record.payload, True, record.created_at)

        payload = await fetch()
        await asyncio.shield(self.set(namespace, category, key, payload, ttl_seconds))
        return CacheLookup(payload, False, self._clock())

    async def delete(self, namespace: str, category: str, key: str) -> bool:
        """Delete one entry."""
        address = (namespace, category, str(key))
        try:
            deleted = self._entries.pop(address, None) is not None
            if self.use_database:
                await self.database.delete_cache_entry(_entry_id(address))
            log_cache_operation(logger, "delete", _entry_id(address), deleted=deleted)
            return deleted
        except Exception as e:
            logger.error("Cache delete failed", key=_entry_id(address), error=str(e))
            return False

    async def clear(self, namespace: Optional[str] = None) -> int:
        """Drop every entry, or every entry in one namespace."""
        try:
            doomed = [a for a in self._entries if namespace is None or a[0] == namespace]
            for address in doomed:
                del self._entries[address]
            if self.use_database:
                await self.database.delete_cache_namespace(namespace)
            log_cache_operation(logger, "clear", namespace or "*", deleted=len(doomed))
            return len(doomed)
        except Exception as e:
            logger.error("Cache clear failed", namespace=namespace, error=str(e))
            return 0

    async def sweep(self) -> int:
        """Remove stale entries from both tiers. Returns memory entries removed."""
        now = self._clock()
        stale = [a for a, r in list(self._entries.items()) if not r.is_fresh(now)]
        for address in stale:
            # A concurrent set may have refreshed it since the scan.
            record = self._entries.get(address)
            if record is not None and not record.is_fresh(now):
                del self._entries[address]
        if self.use_database:
            await self.database.cleanup_expired_cache(now)
        return len(stale)

    def stats(self) -> Dict[str, Any]:
        """Entry count plus hit/miss counters per namespace."""
        per_namespace: Dict[str, Dict[str, int]] = {}
        for namespace, counters in self._stats.items():
            per_namespace[namespace] = dict(counters)
        for namespace, _, _ in self._entries:
            per_namespace.setdefault(namespace, {"hits": 0, "misses": 0, "sets": 0})
            per_namespace[namespace]["entries"] = per_namespace[namespace].get("entries", 0) + 1
        return {
            "entries": len(self._entries),
            "max_entries": self.max_entries,
            "persistent": self.use_database,
            "namespaces": per_namespace,
        }

    def _evict(self) -> None:
        """Bring the memory tier back under max_entries, stale entries first."""
        now = self._clock()
        for address in [a for a, r in self._entries.items() if not r.is_fresh(now)]:
            del self._entries[address]

        overflow = len(self._entries) - self.max_entries
        if overflow > 0:
            oldest = sorted(self._entries.items(), key=lambda item: item[1].created_at)[:overflow]
            for address, _ in oldest:
                del self._entries[address]
            logger.debug("Cache evicted oldest entries", count=overflow)

    async def _load(self, address: Address) -> Optional[CacheRecord]:
        row = await self.database.get_cache_entry(_entry_id(address))
        if row is None:
            return None
        return CacheRecord(
            namespace=row.namespace,
            category=row.category,
            key=row.key,
            payload=json.loads(row.payload),
            created_at=row.created_at,
            ttl_seconds=row.ttl_seconds,
        )
