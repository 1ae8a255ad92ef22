"""TTL- and size-bounded result cache with snapshot persistence."""
from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, TypeVar

from ..models import CacheEntry
from ..stores.kv import KeyValueStore
from .cancellation import CancellationToken

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TTL_SECONDS = 300.0
DEFAULT_MAX_ENTRIES = 100
DEFAULT_SNAPSHOT_KEY = "autofillCache"


class ResultCache:
    """In-memory cache whose entries expire after ``ttl`` seconds.

    Expired entries count as misses even while they are still stored; they are
    evicted lazily by :meth:`get`/:meth:`has` and in bulk by :meth:`cleanup`.
    Once the store grows past ``max_entries`` the oldest entries (by insertion
    timestamp) are evicted first.
    """

    def __init__(
        self,
        *,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        store: Optional[KeyValueStore] = None,
        snapshot_key: str = DEFAULT_SNAPSHOT_KEY,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self._entries: Dict[str, CacheEntry] = {}
        self._max_entries = max_entries
        self._default_ttl = default_ttl
        self._store = store
        self._snapshot_key = snapshot_key
        self._clock = clock

    @property
    def max_entries(self) -> int:
        return self._max_entries

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.has(key)

    def keys(self) -> List[str]:
        return list(self._entries)

    def entry(self, key: str) -> Optional[CacheEntry]:
        """Return the live :class:`CacheEntry` for ``key`` or ``None``."""

        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._entries[key]
            logger.debug("Evicted expired cache entry", extra={"key": key})
            return None
        return entry

    def get(self, key: str, default: Any = None) -> Any:
        entry = self.entry(key)
        return default if entry is None else entry.payload

    def has(self, key: str) -> bool:
        return self.entry(key) is not None

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> CacheEntry:
        entry = CacheEntry(
            key=key,
            payload=value,
            timestamp=self._clock(),
            ttl=self._default_ttl if ttl is None else ttl,
        )
        self._entries.pop(key, None)
        self._entries[key] = entry
        if len(self._entries) > self._max_entries:
            self.cleanup()
        return entry

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def cleanup(self) -> int:
        """Drop expired entries, then the oldest ones until under the size limit."""

        now = self._clock()
        removed = 0
        for key, entry in list(self._entries.items()):
            if entry.is_expired(now):
                del self._entries[key]
                removed += 1

        overflow = len(self._entries) - self._max_entries
        if overflow > 0:
            oldest = sorted(self._entries.values(), key=lambda item: item.timestamp)[:overflow]
            for entry in oldest:
                del self._entries[entry.key]
            removed += len(oldest)

        if removed:
            logger.debug("Cache cleanup removed %d entries", removed)
        return removed

    def stats(self) -> Dict[str, int]:
        now = self._clock()
        expired = sum(1 for entry in self._entries.values() if entry.is_expired(now))
        return {
            "total": len(self._entries),
            "expired": expired,
            "active": len(self._entries) - expired,
            "max_entries": self._max_entries,
        }

    async def clear(self) -> None:
        self._entries.clear()
        if self._store is None:
            return
        try:
            await self._store.delete(self._snapshot_key)
        except Exception as exc:
            logger.warning(f"Failed to remove cache snapshot: {exc}", exc_info=exc)

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        return {key: entry.to_dict() for key, entry in self._entries.items()}

    def restore(self, snapshot: Any) -> int:
        """Load entries from a snapshot mapping, skipping ones already expired."""

        if not isinstance(snapshot, dict):
            return 0
        now = self._clock()
        loaded = 0
        for key, raw in snapshot.items():
            if not isinstance(raw, dict):
                continue
            try:
                entry = CacheEntry(
                    key=str(key),
                    payload=raw.get("payload"),
                    timestamp=float(raw["timestamp"]),
                    ttl=float(raw.get("ttl", self._default_ttl)),
                )
            except (KeyError, TypeError, ValueError):
                continue
            if entry.is_expired(now):
                continue
            self._entries[entry.key] = entry
            loaded += 1
        if len(self._entries) > self._max_entries:
            self.cleanup()
        return loaded

    async def persist_snapshot(self) -> bool:
        """Write every entry to the key/value store. Failures are logged, not raised."""

        if self._store is None:
            return False
        try:
            payload = json.dumps(self.snapshot(), default=str)
            await self._store.set(self._snapshot_key, payload)
        except Exception as exc:
            logger.warning(f"Failed to persist cache snapshot: {exc}", exc_info=exc)
            return False
        return True

    async def load_snapshot(self) -> int:
        """Restore entries from the key/value store; returns how many were loaded."""

        if self._store is None:
            return 0
        try:
            raw = await self._store.get(self._snapshot_key)
            if not raw:
                return 0
            loaded = self.restore(json.loads(raw))
        except Exception as exc:
            logger.warning(f"Failed to load cache snapshot: {exc}", exc_info=exc)
            return 0
        logger.info("Loaded %d cache entries from snapshot", loaded)
        return loaded


def request_key(field_types: Iterable[str]) -> str:
    """De-duplication key for a batch of field types."""

    return ",".join(sorted(set(field_types)))


@dataclass
class _PendingRequest:
    task: "asyncio.Future[Any]"
    waiters: int = 0


class InFlightRequests:
    """Coalesce concurrent requests that share a key into one awaited task."""

    def __init__(self) -> None:
        self._pending: Dict[str, _PendingRequest] = {}

    def __contains__(self, key: object) -> bool:
        return key in self._pending

    def __len__(self) -> int:
        return len(self._pending)

    async def run(
        self,
        key: str,
        factory: Callable[[], Awaitable[T]],
        *,
        token: Optional[CancellationToken] = None,
    ) -> T:
        pending = self._pending.get(key)
        if pending is None:
            pending = _PendingRequest(task=asyncio.ensure_future(factory()))
            self._pending[key] = pending
            pending.task.add_done_callback(lambda _task, key=key, pending=pending: self._forget(key, pending))
        else:
            logger.debug("Joining in-flight request", extra={"key": key})

        pending.waiters += 1
        try:
            shared = asyncio.shield(pending.task)
            if token is None:
                return await shared
            return await token.guard(shared)
        finally:
            pending.waiters -= 1
            if pending.waiters == 0 and not pending.task.done():
                logger.debug("Cancelling abandoned request", extra={"key": key})
                pending.task.cancel()

    def _forget(self, key: str, pending: _PendingRequest) -> None:
        if self._pending.get(key) is pending:
            del self._pending[key]


__all__ = [
    "DEFAULT_MAX_ENTRIES",
    "DEFAULT_SNAPSHOT_KEY",
    "DEFAULT_TTL_SECONDS",
    "InFlightRequests",
    "ResultCache",
    "request_key",
]
