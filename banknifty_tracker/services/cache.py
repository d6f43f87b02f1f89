"""
In-process response cache for Bank Nifty Tracker.
Short-TTL memoization of whole quote batches and single quotes, longer-TTL
memoization of per-symbol supplementary data.
"""

import time
from typing import Callable, Dict, Optional, Sequence, Tuple

from cachetools import TTLCache

from ..api.schemas import Quote, QuoteBatch, SupplementaryData
from ..core.logging_config import create_logger

logger = create_logger(__name__)


class CacheService:
    """Three independent TTL domains. Failed fetches are never stored."""

    def __init__(
        self,
        batch_ttl: float = 5,
        quote_ttl: float = 5,
        supplementary_ttl: float = 300,
        maxsize: int = 256,
        timer: Callable[[], float] = time.monotonic
    ):
        self.batch_ttl = batch_ttl
        self.quote_ttl = quote_ttl
        self.supplementary_ttl = supplementary_ttl
        self._batches: TTLCache = TTLCache(maxsize=8, ttl=batch_ttl, timer=timer)
        self._quotes: TTLCache = TTLCache(maxsize=maxsize, ttl=quote_ttl, timer=timer)
        self._supplementary: TTLCache = TTLCache(maxsize=maxsize, ttl=supplementary_ttl, timer=timer)

    @staticmethod
    def batch_key(symbols: Sequence[str]) -> Tuple[str, ...]:
        return tuple(s.upper() for s in symbols)

    # Batch caching

    def get_batch(self, symbols: Sequence[str]) -> Optional[QuoteBatch]:
        batch = self._batches.get(self.batch_key(symbols))
        if batch is not None:
            logger.debug("Cache hit for quote batch", extra={"symbols": len(symbols)})
            # Hand out a copy so callers cannot mutate the cached snapshot
            return dict(batch)
        return None

    def set_batch(self, symbols: Sequence[str], batch: QuoteBatch) -> None:
        if not batch:
            return
        self._batches[self.batch_key(symbols)] = dict(batch)
        logger.debug("Stored quote batch in cache", extra={
            "symbols": len(batch),
            "ttl": self.batch_ttl
        })

    # Single quote caching

    def get_quote(self, symbol: str) -> Optional[Quote]:
        return self._quotes.get(symbol.upper())

    def set_quote(self, quote: Quote) -> None:
        if not quote.has_price:
            return
        self._quotes[quote.symbol] = quote

    # Supplementary data caching

    def get_supplementary(self, symbol: str) -> Optional[SupplementaryData]:
        return self._supplementary.get(symbol.upper())

    def set_supplementary(self, symbol: str, data: SupplementaryData) -> None:
        self._supplementary[symbol.upper()] = data

    def clear(self) -> None:
        self._batches.clear()
        self._quotes.clear()
        self._supplementary.clear()

    def stats(self) -> Dict[str, float]:
        return {
            "batches": len(self._batches),
            "quotes": len(self._quotes),
            "supplementary": len(self._supplementary),
            "batch_ttl": self.batch_ttl,
            "quote_ttl": self.quote_ttl,
            "supplementary_ttl": self.supplementary_ttl
        }
