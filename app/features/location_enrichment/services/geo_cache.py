"""Process-local IP -> Location cache with LRU size bound and TTL expiry."""

import time
from collections import OrderedDict
from collections.abc import Callable

from app.features.location_enrichment.domain import Location


class GeoCache:
    """
    Bounded cache for resolved locations.

    Not shared across processes and not locked; the event loop is the only
    writer, and a duplicate lookup on a concurrent miss is acceptable.
    """

    def __init__(
        self,
        max_size: int = 10_000,
        ttl_seconds: float | None = 86_400,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, Location]] = OrderedDict()

    def get(self, ip: str) -> Location | None:
        entry = self._entries.get(ip)
        if entry is None:
            return None

        stored_at, location = entry
        if self.ttl_seconds is not None and self._clock() - stored_at >= self.ttl_seconds:
            del self._entries[ip]
            return None

        self._entries.move_to_end(ip)
        return location

    def set(self, ip: str, location: Location) -> None:
        self._entries[ip] = (self._clock(), location)
        self._entries.move_to_end(ip)
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, ip: str) -> bool:
        return self.get(ip) is not None
