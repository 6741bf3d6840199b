"""In-memory TTL cache for read-heavy aggregate queries.

Entries are advisory: they may be stale for up to their TTL and are never
consulted when deciding whether a write is allowed.
"""
import time


class TTLCache:
    """Key to value mapping whose entries expire after a fixed TTL.

    Args:
        ttl: Default lifetime of an entry in seconds.
        clock: Callable returning the current time in seconds.
    """

    def __init__(self, ttl=300, clock=time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries = {}

    def set(self, key, value, ttl=None):
        expiry = self._clock() + (ttl if ttl is not None else self.ttl)
        self._entries[key] = (value, expiry)

    def get(self, key, default=None):
        entry = self._entries.get(key)
        if entry is None:
            return default
        value, expiry = entry
        if self._clock() > expiry:
            del self._entries[key]
            return default
        return value

    def delete(self, key):
        self._entries.pop(key, None)

    def clear(self):
        self._entries.clear()

    def get_or_set(self, key, fetch_fn, ttl=None):
        """Return the cached value, computing and storing it on a miss."""
        sentinel = object()
        value = self.get(key, sentinel)
        if value is not sentinel:
            return value
        value = fetch_fn()
        self.set(key, value, ttl)
        return value

    def get_stats(self):
        now = self._clock()
        expired = sum(1 for _, expiry in self._entries.values() if now > expiry)
        return {
            'total': len(self._entries),
            'valid': len(self._entries) - expired,
            'expired': expired,
            'ttl': self.ttl
        }

    def __len__(self):
        return len(self._entries)
