"""In-process TTL cache shared by the credential provider and the resolver.

A thin wrapper over ``cachetools.TLRUCache`` so every entry carries its own
TTL.  Entries expire lazily on read and are also dropped by
``purge_expired``, which the app lifespan calls periodically so entries that
are written once and never read again do not accumulate.  An optional
``max_entries`` bound evicts the least recently used entry on overflow.

Not thread-safe.  All callers run on the single asyncio event loop and no
method awaits, so a read-modify-write never interleaves with another task.
"""

import logging
import math
import time
from typing import Any, Callable, NamedTuple

from cachetools import TLRUCache

logger = logging.getLogger("cache")


class _Entry(NamedTuple):
    value: Any
    ttl: float


def _time_to_use(key, entry: _Entry, now: float) -> float:
    return now + entry.ttl


class TTLCache:
    def __init__(
        self,
        name: str,
        max_entries: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.max_entries = max_entries
        self._entries = TLRUCache(
            maxsize=math.inf if max_entries is None else max_entries,
            ttu=_time_to_use,
            timer=clock,
        )

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        return entry.value if entry is not None else None

    def set(self, key: str, value: Any, ttl: float):
        self._entries[key] = _Entry(value, ttl)

    def pop(self, key: str) -> Any | None:
        entry = self._entries.pop(key, None)
        return entry.value if entry is not None else None

    def purge_expired(self) -> int:
        """Drop every expired entry. Returns the number removed."""
        removed = len(self._entries.expire())
        if removed:
            logger.debug("%s cache: purged %d expired entries", self.name, removed)
        return removed

    def clear(self):
        self._entries.clear()
