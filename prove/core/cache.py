from __future__ import annotations

import time
from collections import OrderedDict
from typing import Callable, Generic, Hashable, TypeVar


V = TypeVar("V")


class TTLCache(Generic[V]):
    """Bounded cache with per-entry expiry.

    Owned by whoever constructs it and passed explicitly to consumers; there is no
    module-level instance. Least recently inserted entries are evicted first once
    `capacity` is reached.
    """

    def __init__(self, *, capacity: int = 128, ttl_s: float = 300.0, clock: Callable[[], float] = time.monotonic) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        if ttl_s <= 0:
            raise ValueError("ttl_s must be > 0")
        self.capacity = capacity
        self.ttl_s = ttl_s
        self._clock = clock
        self._entries: OrderedDict[Hashable, tuple[float, V]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: Hashable) -> V | None:
        hit = self._entries.get(key)
        if hit is None:
            return None
        expires_at, value = hit
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def put(self, key: Hashable, value: V) -> None:
        if key in self._entries:
            del self._entries[key]
        while len(self._entries) >= self.capacity:
            self._entries.popitem(last=False)
        self._entries[key] = (self._clock() + self.ttl_s, value)

    def get_or_load(self, key: Hashable, loader: Callable[[], V]) -> V:
        value = self.get(key)
        if value is None:
            value = loader()
            self.put(key, value)
        return value
