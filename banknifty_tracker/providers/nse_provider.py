"""
NSE India data provider implementation.
Primary source: bulk index quotes, index membership and per-symbol supplementary data.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from .base import BaseDataProvider, DataNotFoundError, SessionExpiredError, SessionUnavailableError, to_float
from .nse_session import NSESessionManager
from ..api.schemas import Constituent, DataSource, Quote, SupplementaryData
from ..core.config import MarketConfig
from ..core.logging_config import create_logger

logger = create_logger(__name__)


def parse_nse_row(row: Dict[str, Any], market_state: Optional[str] = None) -> Optional[Quote]:
    """Build a Quote from one ``equity-stockIndices`` row; None when the row has no price."""
    symbol = row.get('symbol')
    price = to_float(row.get('lastPrice'))
    if not symbol or price is None:
        return None

    return Quote(
        symbol=symbol,
        live_price=price,
        previous_close=to_float(row.get('previousClose')),
        day_high=to_float(row.get('dayHigh')),
        day_low=to_float(row.get('dayLow')),
        volume=to_float(row.get('totalTradedVolume')),
        currency='INR',
        market_state=market_state,
        fifty_two_week_high=to_float(row.get('yearHigh')),
        fifty_two_week_low=to_float(row.get('yearLow')),
        fetched_at=datetime.now(timezone.utc),
        source=DataSource.NSE
    )


def parse_nse_supplementary(payload: Dict[str, Any]) -> SupplementaryData:
    """Extract issued size, market cap and 52-week range from a ``quote-equity`` payload."""
    security_info = payload.get('securityInfo') or {}
    price_info = payload.get('priceInfo') or {}
    week_high_low = price_info.get('weekHighLow') or {}

    issued_size = to_float(security_info.get('issuedSize'))
    last_price = to_float(price_info.get('lastPrice'))
    market_cap = issued_size * last_price if issued_size and last_price else None

    return SupplementaryData(
        issued_size=issued_size,
        market_cap=market_cap,
        fifty_two_week_high=to_float(week_high_low.get('max')),
        fifty_two_week_low=to_float(week_high_low.get('min'))
    )


class NSEProvider(BaseDataProvider):
    """NSE India provider. Every call rides on a session from the session manager."""

    def __init__(
        self,
        session_manager: NSESessionManager,
        base_url: str = MarketConfig.NSE_BASE_URL,
        index_name: str = MarketConfig.INDEX_NAME,
        timeout: float = 10.0,
        supplementary_timeout: float = 5.0,
        retry_count: int = 1,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        super().__init__(
            name="nse",
            base_url=base_url,
            timeout=timeout,
            retry_count=retry_count,
            rate_limit_per_minute=120,
            transport=transport
        )
        self.session_manager = session_manager
        self.index_name = index_name
        self.supplementary_timeout = supplementary_timeout

    async def _session_request(
        self,
        path: str,
        params: Dict[str, Any],
        referer: str,
        timeout: Optional[float] = None,
        symbol: Optional[str] = None
    ) -> Any:
        session = await self.session_manager.acquire_session()
        if session is None:
            raise SessionUnavailableError("NSE session unavailable", self.name, symbol)

        try:
            return await self._make_request(
                method="GET",
                url=f"{self.base_url}{path}",
                params=params,
                headers={'Referer': referer, 'Cookie': session.cookie_header()},
                timeout=timeout,
                symbol=symbol
            )
        except SessionExpiredError:
            self.session_manager.invalidate()
            raise

    async def get_index_snapshot(self) -> Dict[str, Any]:
        """Fetch the raw ``equity-stockIndices`` payload for the tracked index."""
        payload = await self._session_request(
            MarketConfig.NSE_INDEX_PATH,
            params={'index': self.index_name},
            referer=f"{self.base_url}/market-data/live-equity-market?symbol={self.index_name}"
        )
        if not isinstance(payload, dict) or not isinstance(payload.get('data'), list):
            raise DataNotFoundError("NSE index payload has no data", self.name)
        return payload

    async def get_bulk_quotes(self, symbols: List[str]) -> Dict[str, Quote]:
        """Quotes for every requested symbol present in one index snapshot."""
        payload = await self.get_index_snapshot()

        market_status = payload.get('marketStatus') or {}
        market_state = market_status.get('marketStatus') if isinstance(market_status, dict) else None
        wanted = {s.upper() for s in symbols}

        quotes = {}
        for row in payload['data']:
            if not isinstance(row, dict) or row.get('symbol') == self.index_name:
                continue
            quote = parse_nse_row(row, market_state)
            if quote is not None and quote.symbol in wanted:
                quotes[quote.symbol] = quote

        logger.info("Retrieved bulk quotes from NSE", extra={
            "provider": self.name,
            "requested": len(symbols),
            "successful": len(quotes)
        })
        return quotes

    async def get_constituents(self) -> List[Constituent]:
        """Official index membership, index row excluded."""
        payload = await self.get_index_snapshot()
        constituents = []
        for row in payload['data']:
            symbol = row.get('symbol') if isinstance(row, dict) else None
            if not symbol or symbol == self.index_name:
                continue
            constituents.append(Constituent(
                symbol=symbol,
                name=MarketConfig.SYMBOL_NAMES.get(symbol, symbol)
            ))
        return constituents

    async def get_supplementary(self, symbol: str) -> SupplementaryData:
        """Issued size, market cap and 52-week range for one symbol."""
        payload = await self._session_request(
            MarketConfig.NSE_QUOTE_PATH,
            params={'symbol': symbol},
            referer=f"{self.base_url}/get-quotes/equity?symbol={symbol}",
            timeout=self.supplementary_timeout,
            symbol=symbol
        )
        if not isinstance(payload, dict):
            raise DataNotFoundError("NSE quote payload is not an object", self.name, symbol)
        return parse_nse_supplementary(payload)
