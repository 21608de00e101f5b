"""
Module that implements the time-bounded directory lookup cache.

Resolving a path takes one LOOKUP call per path component, which adds up quickly for
deep trees. The cache remembers the results of looking up directories by (parent
handle, name) for a fixed time, so that repeatedly resolving paths below the same
directories only costs round trips for the last component.

Only directories are cached. Regular files are much more likely to be replaced and
are always the last component of a path anyway, so caching them barely saves calls.

Expiry is both lazy and periodic. A lookup ignores an entry once it has expired, even
if it's still stored, and a janitor thread periodically deletes expired entries so the
cache doesn't grow without bounds. Entries are also invalidated explicitly by any
operation that may have made them stale.

An invalidation can race with a lookup that is still waiting for the server, which
would then store the result it got from before the change. To prevent that, every
invalidation bumps a generation counter. Callers read the generation before asking the
server and pass it along when inserting, and the insert is dropped if the generation
has moved on in the meantime.
"""

from __future__ import annotations

from dataclasses import dataclass
import itertools
import threading
import time
from typing import Callable, Dict, Optional

import fasteners

import nfsvolume.constants as constants
from nfsvolume.logger import log
from nfsvolume.structures import Attributes, FileHandle


@dataclass(frozen=True)
class CacheEntry:
    """Cached result of looking up a directory, valid until the expiry time."""

    handle: FileHandle
    attr: Attributes
    expire: float


class EntryCache:
    """
    Two-level mapping of parent directory handle and name to a cached lookup.

    All access goes through a reader-writer lock, so the cache can be shared by any
    number of threads. Critical sections only ever touch the mapping itself.

    The clock is a function returning the current time in seconds. It defaults to the
    monotonic clock and can be replaced for testing.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        """Instantiate an empty cache."""
        self._clock = clock
        self._lock = fasteners.ReaderWriterLock()

        self._entries: Dict[FileHandle, Dict[str, CacheEntry]] = {}
        self._generation = 0

    def __len__(self) -> int:
        """Return the number of stored entries, including expired ones."""
        with self._lock.read_lock():
            return sum(len(bucket) for bucket in self._entries.values())

    @property
    def generation(self) -> int:
        """Return the number of invalidations so far."""
        with self._lock.read_lock():
            return self._generation

    def lookup(self, parent: FileHandle, name: str) -> Optional[CacheEntry]:
        """Return the entry for the name in the parent directory if it hasn't expired."""
        with self._lock.read_lock():
            entry = self._entries.get(parent, {}).get(name)

        if entry is not None and self._clock() < entry.expire:
            return entry
        else:
            return None

    def insert(
        self,
        parent: FileHandle,
        name: str,
        handle: FileHandle,
        attr: Attributes,
        ttl: float,
        generation: Optional[int] = None,
    ) -> bool:
        """
        Store the lookup of a directory for the specified time in seconds.

        If a generation is given, the entry is only stored if nothing was invalidated
        since that generation was read.

        Returns whether the entry was stored, which is only the case for directories.
        """
        if not attr.is_dir:
            return False

        entry = CacheEntry(handle=handle, attr=attr, expire=self._clock() + ttl)

        with self._lock.write_lock():
            if generation is not None and generation != self._generation:
                return False

            self._entries.setdefault(parent, {})[name] = entry

        return True

    def invalidate(self, parent: FileHandle, name: str) -> None:
        """Delete the entry for the name in the parent directory, if there is one."""
        with self._lock.write_lock():
            self._generation += 1

            bucket = self._entries.get(parent)

            if bucket is not None:
                bucket.pop(name, None)

                if not bucket:
                    del self._entries[parent]

    def sweep(self, limit: int = constants.DEFAULT_SWEEP_LIMIT) -> int:
        """
        Delete expired entries, inspecting no more than the specified number.

        Parent directories without any remaining entries are dropped as well. Inspected
        entries and parents are moved to the back of the mapping, so that consecutive
        sweeps work their way through a cache that is larger than the limit instead of
        inspecting the same entries over and over.

        Returns the number of deleted entries.
        """
        now = self._clock()

        inspected = 0
        removed = 0

        with self._lock.write_lock():
            for parent in list(itertools.islice(self._entries, limit)):
                if inspected >= limit:
                    break

                bucket = self._entries.pop(parent)

                for name in list(itertools.islice(bucket, limit - inspected)):
                    entry = bucket.pop(name)
                    inspected += 1

                    if now >= entry.expire:
                        removed += 1
                    else:
                        bucket[name] = entry

                if bucket:
                    self._entries[parent] = bucket

        return removed


class Janitor:
    """Background thread that periodically sweeps expired entries from a cache."""

    def __init__(
        self,
        cache: EntryCache,
        interval: float = constants.DEFAULT_SWEEP_INTERVAL,
        limit: int = constants.DEFAULT_SWEEP_LIMIT,
    ) -> None:
        """Instantiate a janitor for the cache, it needs to be started separately."""
        self._cache = cache
        self._interval = interval
        self._limit = limit

        self._stopped = threading.Event()
        self._thread = threading.Thread(
            target=self._run, name="nfsvolume-janitor", daemon=True
        )

    @property
    def running(self) -> bool:
        return self._thread.is_alive()

    def start(self) -> None:
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        """Signal the janitor to stop and wait for its thread to exit."""
        self._stopped.set()

        if self._thread.is_alive():
            self._thread.join(timeout)

    def _run(self) -> None:
        while not self._stopped.wait(self._interval):
            removed = self._cache.sweep(self._limit)

            if removed > 0:
                log.debug(f"janitor: removed {removed} expired cache entries")
