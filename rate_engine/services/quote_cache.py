"""
Rate Resolution Engine - Quote Cache

Short-lived, thread-safe memo of resolved quotes. Entries are never
updated in place: a fresh resolution replaces the entry, expiry is checked
lazily on access, and clear() drops everything.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from rate_engine.core.config import settings
from rate_engine.schemas.models import Quote, normalize_postal_code

logger = logging.getLogger('rate_engine.quote_cache')

CacheKey = Tuple


@dataclass(frozen=True)
class CacheEntry:
    quote: Quote
    expires_at: float


class QuoteCache:
    """TTL cache keyed by normalized postal code, weight and quantity."""

    def __init__(
        self,
        ttl_seconds: Optional[float] = None,
        include_quantity: Optional[bool] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = settings.QUOTE_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self.include_quantity = (
            settings.QUOTE_CACHE_KEY_INCLUDES_QUANTITY if include_quantity is None else include_quantity
        )
        self._clock = clock
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._lock = threading.Lock()

    def make_key(self, postal_code: str, weight: float, quantity: int = 1, **options) -> CacheKey:
        # Raw values, not coerced: 1.5 must never hit the entry cached for quantity 1
        key = [normalize_postal_code(postal_code), weight]
        if self.include_quantity:
            key.append(quantity)
        # Dimensions and merchandise value change the price, so they belong in the key when given
        extras = tuple(sorted((name, value) for name, value in options.items() if value is not None))
        if extras:
            key.append(extras)
        return tuple(key)

    def get(self, postal_code: str, weight: float, quantity: int = 1, **options) -> Optional[Quote]:
        key = self.make_key(postal_code, weight, quantity, **options)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at <= self._clock():
                del self._entries[key]
                logger.debug(f"Cache entry expired for {key}")
                return None
        logger.debug(f"Cache hit for {key}")
        return entry.quote

    def put(self, postal_code: str, weight: float, quantity: int, quote: Quote, **options) -> None:
        key = self.make_key(postal_code, weight, quantity, **options)
        with self._lock:
            self._entries[key] = CacheEntry(quote=quote, expires_at=self._clock() + self.ttl_seconds)

    def clear(self) -> None:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.info(f"Quote cache cleared ({count} entries)")

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
