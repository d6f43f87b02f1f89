"""
Yahoo Finance data provider implementation.
Secondary source: per-symbol chart metadata for NSE listings and the Bank Nifty index.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional
import asyncio
from concurrent.futures import ThreadPoolExecutor

import yfinance as yf

from .base import BaseDataProvider, ProviderError, DataNotFoundError, to_float
from ..api.schemas import DataSource, Quote
from ..core.config import MarketConfig
from ..core.logging_config import create_logger

logger = create_logger(__name__)


def parse_chart_meta(symbol: str, meta: Dict[str, Any]) -> Quote:
    """Build a Quote from Yahoo chart metadata."""
    return Quote(
        symbol=symbol,
        live_price=to_float(meta.get('regularMarketPrice')),
        previous_close=to_float(meta.get('chartPreviousClose')) or to_float(meta.get('previousClose')),
        day_high=to_float(meta.get('regularMarketDayHigh')),
        day_low=to_float(meta.get('regularMarketDayLow')),
        volume=to_float(meta.get('regularMarketVolume')),
        currency=meta.get('currency') or 'INR',
        market_state=meta.get('marketState'),
        fifty_two_week_high=to_float(meta.get('fiftyTwoWeekHigh')),
        fifty_two_week_low=to_float(meta.get('fiftyTwoWeekLow')),
        fetched_at=datetime.now(timezone.utc),
        source=DataSource.YAHOO
    )


class YFinanceProvider(BaseDataProvider):
    """
    Yahoo Finance provider backed by the yfinance library.

    yfinance does its own HTTP, so only the name, timeout and error taxonomy
    of BaseDataProvider are used here; the httpx client is never opened.
    Work runs on a thread pool and each call holds one worker slot, so the
    timeout covers the fetch itself and not time spent queued behind others.
    """

    def __init__(self, timeout: float = 8.0, max_workers: int = 4):
        super().__init__(name="yahoo", timeout=timeout)
        self._executor = ThreadPoolExecutor(max_workers=max_workers)
        self._slots = asyncio.Semaphore(max_workers)

    def to_yahoo_symbol(self, symbol: str) -> str:
        """NSE symbols are listed on Yahoo with a ``.NS`` suffix; index tickers start with ``^``."""
        symbol = symbol.upper().strip()
        if symbol.startswith('^') or symbol.endswith(MarketConfig.YAHOO_SUFFIX):
            return symbol
        return f"{symbol}{MarketConfig.YAHOO_SUFFIX}"

    async def disconnect(self) -> None:
        await super().disconnect()
        self._executor.shutdown(wait=False)

    async def get_quote(self, symbol: str) -> Quote:
        """Get a quote for one NSE symbol; raises ProviderError when Yahoo has no price."""
        yahoo_symbol = self.to_yahoo_symbol(symbol)
        meta = await self._run_sync(yahoo_symbol)
        quote = parse_chart_meta(symbol, meta)
        if not quote.has_price:
            raise DataNotFoundError("No price in chart metadata", self.name, symbol)

        logger.debug("Retrieved quote from Yahoo Finance", extra={
            "provider": self.name,
            "symbol": symbol,
            "price": quote.live_price
        })
        return quote

    async def get_index_quote(self) -> Quote:
        """Current Bank Nifty index level."""
        meta = await self._run_sync(MarketConfig.YAHOO_INDEX_SYMBOL)
        quote = parse_chart_meta(MarketConfig.INDEX_SYMBOL, meta)
        if not quote.has_price:
            raise DataNotFoundError("No index value in chart metadata", self.name, MarketConfig.INDEX_SYMBOL)
        return quote

    async def _run_sync(self, yahoo_symbol: str) -> Dict[str, Any]:
        loop = asyncio.get_running_loop()
        # Wait for a free worker first; the slot is returned when the thread finishes
        await self._slots.acquire()
        try:
            job = self._executor.submit(self._fetch_chart_meta_sync, yahoo_symbol)
        except RuntimeError as e:
            # Executor already shut down
            self._slots.release()
            raise ProviderError(f"Provider {self.name} is closed: {str(e)}", self.name, yahoo_symbol)
        job.add_done_callback(lambda _: loop.call_soon_threadsafe(self._slots.release))

        try:
            return await asyncio.wait_for(asyncio.wrap_future(job), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise ProviderError(f"Request timeout for {self.name}", self.name, yahoo_symbol)
        except ProviderError:
            raise
        except Exception as e:
            logger.warning("Failed to fetch chart metadata", extra={
                "provider": self.name,
                "symbol": yahoo_symbol,
                "error": str(e)
            })
            raise ProviderError(f"Failed to fetch {yahoo_symbol}: {str(e)}", self.name, yahoo_symbol)

    def _fetch_chart_meta_sync(self, yahoo_symbol: str) -> Dict[str, Any]:
        """Synchronous function to fetch chart metadata using yfinance."""
        ticker = yf.Ticker(yahoo_symbol)
        ticker.history(period="5d", interval="1d", timeout=self.timeout, raise_errors=True)
        meta = ticker.history_metadata
        if not meta:
            raise DataNotFoundError("Empty chart metadata", self.name, yahoo_symbol)
        return meta
