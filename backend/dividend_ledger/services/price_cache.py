"""Injectable cache for close-price lookups."""

from __future__ import annotations

import time
from datetime import date
from decimal import Decimal
from typing import Callable, MutableMapping, Protocol


class PriceCache(Protocol):
    """Cache contract used by price-on-date lookups."""

    def get(self, symbol: str, day: date) -> Decimal | None:
        ...

    def put(self, symbol: str, day: date, close: Decimal) -> None:
        ...

    def invalidate(self, symbol: str) -> None:
        ...


class TTLPriceCache:
    """In-memory close cache with per-entry expiry and per-symbol invalidation."""

    def __init__(self, ttl_seconds: float, *, clock: Callable[[], float] = time.monotonic):
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: MutableMapping[tuple[str, date], tuple[float, Decimal]] = {}

    def get(self, symbol: str, day: date) -> Decimal | None:
        key = (symbol, day)
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, close = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return close

    def put(self, symbol: str, day: date, close: Decimal) -> None:
        if self._ttl <= 0:
            return
        self._entries[(symbol, day)] = (self._clock() + self._ttl, close)

    def invalidate(self, symbol: str) -> None:
        for key in [key for key in self._entries if key[0] == symbol]:
            del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)


__all__ = ["PriceCache", "TTLPriceCache"]
