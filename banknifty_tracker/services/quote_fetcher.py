"""
Quote fetching for Bank Nifty Tracker.
Reconciles the NSE bulk snapshot, per-symbol Yahoo quotes and NSE supplementary
data into one batch per cycle.
"""

import asyncio
from typing import Dict, List, Optional, Sequence, Tuple

from ..api.schemas import Constituent, Quote, QuoteBatch, SupplementaryData
from ..core.config import MarketConfig
from ..core.logging_config import create_logger
from ..providers.base import ProviderError, SessionExpiredError, SessionUnavailableError
from ..providers.nse_provider import NSEProvider
from ..providers.yfinance_provider import YFinanceProvider
from .cache import CacheService

logger = create_logger(__name__)

NO_PRICE_ERROR = "No price available from any source"


def merge_quote(
    symbol: str,
    price_quote: Optional[Quote],
    supplementary: Optional[SupplementaryData],
    error: Optional[str] = None
) -> Quote:
    """
    Merge a price quote with supplementary data.

    Price fields always come from ``price_quote``. Issued size, market cap and
    the 52-week range prefer ``supplementary`` and fall back to whatever the
    price source carried. Market cap is derived from issued size and live price
    only when no source supplied one.
    """
    if price_quote is None:
        base = Quote(symbol=symbol, error=error or NO_PRICE_ERROR)
    else:
        base = price_quote

    supplementary = supplementary or SupplementaryData()

    issued_size = supplementary.issued_size if supplementary.issued_size is not None else base.issued_size
    market_cap = supplementary.market_cap if supplementary.market_cap is not None else base.market_cap
    if market_cap is None and issued_size is not None and base.live_price is not None:
        market_cap = issued_size * base.live_price

    high = supplementary.fifty_two_week_high
    low = supplementary.fifty_two_week_low

    return base.copy(update={
        'symbol': symbol,
        'issued_size': issued_size,
        'market_cap': market_cap,
        'fifty_two_week_high': high if high is not None else base.fifty_two_week_high,
        'fifty_two_week_low': low if low is not None else base.fifty_two_week_low,
    })


class QuoteFetcher:
    """Batch and single-symbol quote retrieval with deterministic fallback order."""

    def __init__(
        self,
        primary: NSEProvider,
        secondary: YFinanceProvider,
        cache: CacheService,
        issued_shares: Optional[Dict[str, int]] = None
    ):
        self.primary = primary
        self.secondary = secondary
        self.cache = cache
        self.issued_shares = issued_shares if issued_shares is not None else MarketConfig.ISSUED_SHARES

    async def fetch_batch(self, constituents: Sequence[Constituent]) -> Optional[QuoteBatch]:
        """
        Fetch one quote per constituent.

        Returns a batch keyed by every constituent symbol, or None when no
        symbol produced a price. Only complete batches are cached.
        """
        symbols = [c.symbol for c in constituents]
        if not symbols:
            return None

        cached = self.cache.get_batch(symbols)
        if cached is not None:
            return cached

        primary_quotes, session_available = await self._fetch_primary(symbols)

        prices, supplementary = await asyncio.gather(
            asyncio.gather(*(self._fetch_price(symbol, primary_quotes) for symbol in symbols)),
            asyncio.gather(*(self._fetch_supplementary(symbol, session_available) for symbol in symbols))
        )

        batch: QuoteBatch = {}
        for symbol, (price_quote, error), extra in zip(symbols, prices, supplementary):
            batch[symbol] = merge_quote(symbol, price_quote, extra, error)

        succeeded = sum(1 for quote in batch.values() if quote.has_price)
        if succeeded == 0:
            logger.warning("Quote batch failed for every symbol", extra={"symbols": symbols})
            return None

        self.cache.set_batch(symbols, batch)
        logger.info("Fetched quote batch", extra={
            "requested": len(symbols),
            "successful": succeeded,
            "from_primary": len(primary_quotes)
        })
        return batch

    async def fetch_one(self, symbol: str) -> Quote:
        """Secondary-only single quote; failures come back as a Quote with ``error`` set."""
        symbol = symbol.upper().strip()
        cached = self.cache.get_quote(symbol)
        if cached is not None:
            return cached

        try:
            quote = await self.secondary.get_quote(symbol)
        except ProviderError as e:
            logger.warning("Single quote fetch failed", extra={"symbol": symbol, "error": str(e)})
            return Quote(symbol=symbol, error=str(e))

        self.cache.set_quote(quote)
        logger.info("Fetched single quote", extra={"symbol": symbol, "price": quote.live_price})
        return quote

    async def fetch_index(self) -> Optional[Quote]:
        """Current index level, or None when the source is unavailable."""
        cached = self.cache.get_quote(MarketConfig.INDEX_SYMBOL)
        if cached is not None:
            return cached

        try:
            quote = await self.secondary.get_index_quote()
        except ProviderError as e:
            logger.warning("Index fetch failed", extra={"error": str(e)})
            return None

        self.cache.set_quote(quote)
        return quote

    async def _fetch_primary(self, symbols: List[str]) -> Tuple[Dict[str, Quote], bool]:
        """One bulk NSE request. Returns (quotes, whether an NSE session could be acquired)."""
        try:
            return await self.primary.get_bulk_quotes(symbols), True
        except SessionUnavailableError as e:
            logger.warning("NSE session unavailable, skipping NSE this cycle", extra={"error": str(e)})
            return {}, False
        except SessionExpiredError as e:
            logger.warning("NSE session rejected, re-handshaking", extra={"error": str(e)})
        except ProviderError as e:
            logger.warning("NSE bulk quote request failed", extra={"error": str(e)})
        return {}, True

    async def _fetch_price(
        self,
        symbol: str,
        primary_quotes: Dict[str, Quote]
    ) -> Tuple[Optional[Quote], Optional[str]]:
        quote = primary_quotes.get(symbol)
        if quote is not None:
            return quote, None

        try:
            return await self.secondary.get_quote(symbol), None
        except ProviderError as e:
            logger.warning("Secondary quote failed", extra={"symbol": symbol, "error": str(e)})
            return None, str(e)

    async def _fetch_supplementary(self, symbol: str, session_available: bool) -> Optional[SupplementaryData]:
        cached = self.cache.get_supplementary(symbol)
        if cached is not None:
            return cached

        if session_available:
            try:
                data = await self.primary.get_supplementary(symbol)
            except ProviderError as e:
                logger.debug("Supplementary lookup failed, using issued share table", extra={
                    "symbol": symbol,
                    "error": str(e)
                })
            else:
                if data.issued_size is None and symbol in self.issued_shares:
                    data = data.copy(update={'issued_size': float(self.issued_shares[symbol])})
                self.cache.set_supplementary(symbol, data)
                return data

        issued = self.issued_shares.get(symbol)
        if issued is None:
            return None
        return SupplementaryData(issued_size=float(issued))
