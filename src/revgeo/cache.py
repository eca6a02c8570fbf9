"""
Bounded, time-limited cache of resolved addresses.

Entries are keyed by the exact GeoPoint. Capacity eviction removes the
single oldest insertion (FIFO, not LRU). Expired entries are removed
lazily on lookup and by a background trim thread that starts on the first
insert.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .models import GeoPoint, ResolvedAddress

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    address: ResolvedAddress
    inserted_at: float


class ReverseGeocodeCache:
    """
    Thread-safe address cache for one provider.

    Args:
        name: Owner name, used in log messages and the trim thread name
        max_size: Maximum number of entries (must be > 0)
        max_age_s: Entries this old or older are treated as absent
        trim_interval_s: Seconds between background sweeps (<= 0 disables the thread)
        clock: Time source, monotonic seconds
    """

    def __init__(
        self,
        name: str,
        max_size: int,
        max_age_s: float = 20 * 60,
        trim_interval_s: float = 10 * 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size <= 0:
            raise ValueError("max_size must be > 0 (a disabled cache is not created)")
        if max_age_s <= 0:
            raise ValueError("max_age_s must be > 0")
        self.name = name
        self.max_size = max_size
        self.max_age_s = max_age_s
        self.trim_interval_s = trim_interval_s
        self._clock = clock

        self._entries: OrderedDict[GeoPoint, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()

        self._trim_thread: Optional[threading.Thread] = None
        self._trim_started = False
        self._stop_event = threading.Event()

        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.inserted_at >= self.max_age_s

    def get(self, point: GeoPoint) -> Optional[ResolvedAddress]:
        """Return the cached address for point, or None on a miss."""
        if not point.is_valid():
            return None
        with self._lock:
            entry = self._entries.get(point)
            if entry is None:
                self._misses += 1
                return None
            if self._is_expired(entry, self._clock()):
                del self._entries[point]
                self._expirations += 1
                self._misses += 1
                return None
            self._hits += 1
            return entry.address

    def put(self, point: GeoPoint, address: ResolvedAddress) -> None:
        """Insert or replace; at capacity the oldest entry is evicted first."""
        if not point.is_valid() or address is None:
            return
        with self._lock:
            if point in self._entries:
                del self._entries[point]
            elif len(self._entries) >= self.max_size:
                oldest, _ = self._entries.popitem(last=False)
                self._evictions += 1
                logger.debug(f"[{self.name}] cache full, evicted {oldest}")
            self._entries[point] = CacheEntry(address=address, inserted_at=self._clock())
        self._start_trim_thread()

    def trim(self) -> int:
        """Remove every expired entry. Returns the number removed."""
        with self._lock:
            now = self._clock()
            expired = [p for p, e in self._entries.items() if self._is_expired(e, now)]
            for point in expired:
                del self._entries[point]
            self._expirations += len(expired)
            remaining = len(self._entries)
        if expired:
            logger.debug(f"[{self.name}] trimmed {len(expired)} expired entries, {remaining} remain")
        return len(expired)

    # -------------------------------------------------------------------------
    # Background trim
    # -------------------------------------------------------------------------

    def _start_trim_thread(self) -> None:
        if self.trim_interval_s <= 0:
            return
        with self._lock:
            if self._trim_started or self._stop_event.is_set():
                return
            self._trim_started = True
            self._trim_thread = threading.Thread(
                target=self._trim_loop,
                name=f"revgeo-cache-trim-{self.name}",
                daemon=True,
            )
        self._trim_thread.start()
        logger.info(f"[{self.name}] started cache trim thread (every {self.trim_interval_s}s)")

    def _trim_loop(self) -> None:
        while not self._stop_event.wait(self.trim_interval_s):
            try:
                self.trim()
            except Exception as e:
                logger.error(f"[{self.name}] cache trim failed: {e}")

    def is_trim_running(self) -> bool:
        return self._trim_thread is not None and self._trim_thread.is_alive()

    def stop(self, timeout: Optional[float] = 1.0) -> None:
        """Stop the trim thread for good. The cache stays usable."""
        self._stop_event.set()
        thread = self._trim_thread
        if thread is not None and thread.is_alive():
            thread.join(timeout)
            logger.info(f"[{self.name}] stopped cache trim thread")

    # -------------------------------------------------------------------------
    # Administration
    # -------------------------------------------------------------------------

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "name": self.name,
                "size": len(self._entries),
                "max_size": self.max_size,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "expirations": self._expirations,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, point: object) -> bool:
        with self._lock:
            return point in self._entries
