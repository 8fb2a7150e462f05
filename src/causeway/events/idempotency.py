"""Bounded, TTL-based record of already-processed keys.

Used for two things: emit-side ``idempotency_key`` deduplication in the
in-process provider, and consumer-side skipping of event ids the Redis
provider has already handled (an entry pushed onto a queue twice).
"""

from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable

DEFAULT_MAX_SIZE = 10_000
DEFAULT_TTL_SECONDS = 3600.0


class EventIdempotency:
    """Insertion-ordered set of keys with expiry.

    When ``max_size`` is exceeded the oldest key is evicted first. Expired
    keys are pruned lazily on every write.

    Example:
        >>> seen = EventIdempotency(ttl=60)
        >>> seen.is_processed("evt-1")
        False
        >>> seen.mark_processed("evt-1")
        >>> seen.is_processed("evt-1")
        True
    """

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_SIZE,
        ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self.max_size = max_size
        self.ttl = ttl
        self._clock = clock
        self._keys: OrderedDict[str, float] = OrderedDict()

    def __len__(self) -> int:
        return len(self._keys)

    def is_processed(self, key: str) -> bool:
        expires_at = self._keys.get(key)
        if expires_at is None:
            return False
        if expires_at <= self._clock():
            del self._keys[key]
            return False
        return True

    def mark_processed(self, key: str) -> None:
        self._prune()
        self._keys[key] = self._clock() + self.ttl
        self._keys.move_to_end(key)
        while len(self._keys) > self.max_size:
            self._keys.popitem(last=False)

    def claim(self, key: str) -> bool:
        """Mark ``key`` processed; False if it already was."""
        if self.is_processed(key):
            return False
        self.mark_processed(key)
        return True

    def clear(self) -> None:
        self._keys.clear()

    def _prune(self) -> None:
        # keys are ordered by expiry since the ttl is fixed
        now = self._clock()
        while self._keys:
            key, expires_at = next(iter(self._keys.items()))
            if expires_at > now:
                break
            del self._keys[key]


__all__ = ["EventIdempotency"]
