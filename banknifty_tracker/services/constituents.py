"""
Index membership tracking for Bank Nifty Tracker.
The active list keeps its curated order; differences from the official NSE
membership are only reported, never applied.
"""

import asyncio
from typing import List, Optional, Sequence

from ..api.schemas import Constituent, ConstituentDiff
from ..core.config import MarketConfig
from ..core.logging_config import create_logger
from ..providers.base import ProviderError
from ..providers.nse_provider import NSEProvider
from .multiplier_store import MultiplierStore

logger = create_logger(__name__)


class ConstituentTracker:
    """Holds the ordered active constituent list."""

    def __init__(
        self,
        provider: NSEProvider,
        store: MultiplierStore,
        constituents: Optional[Sequence[Constituent]] = None,
        min_constituents: int = MarketConfig.MIN_CONSTITUENTS,
        refresh_interval: float = 86400
    ):
        self.provider = provider
        self.store = store
        self.min_constituents = min_constituents
        self.refresh_interval = refresh_interval
        if constituents is None:
            constituents = [Constituent(symbol=s, name=n) for s, n in MarketConfig.DEFAULT_CONSTITUENTS]
        self._active: List[Constituent] = list(constituents)
        self.last_diff: Optional[ConstituentDiff] = None

    def get_constituents(self) -> List[Constituent]:
        return list(self._active)

    def find(self, symbol: str) -> Optional[Constituent]:
        symbol = symbol.strip().upper()
        for constituent in self._active:
            if constituent.symbol == symbol:
                return constituent
        return None

    async def refresh(self) -> ConstituentDiff:
        """Compare the active list with the official membership and report the difference."""
        try:
            official = await self.provider.get_constituents()
        except ProviderError as e:
            logger.warning("Could not fetch index constituents", extra={"error": str(e)})
            return self._record(ConstituentDiff(fetched=False, count=len(self._active)))

        if len(official) < self.min_constituents:
            logger.warning("Index constituent list failed sanity check, keeping current list", extra={
                "received": len(official),
                "minimum": self.min_constituents
            })
            return self._record(ConstituentDiff(fetched=False, count=len(self._active)))

        current = {c.symbol for c in self._active}
        latest = {c.symbol for c in official}
        added = [c.symbol for c in official if c.symbol not in current]
        removed = [c.symbol for c in self._active if c.symbol not in latest]

        if added:
            logger.warning("New stocks in index", extra={"symbols": added})
        if removed:
            logger.warning("Stocks removed from index", extra={"symbols": removed})

        self.store.ensure_defaults(c.symbol for c in official)

        logger.info("Checked index constituents", extra={
            "official": len(official),
            "active": len(self._active)
        })
        return self._record(ConstituentDiff(
            fetched=True,
            added=added,
            removed=removed,
            count=len(self._active)
        ))

    def _record(self, diff: ConstituentDiff) -> ConstituentDiff:
        self.last_diff = diff
        return diff

    async def run(self, shutdown_event: asyncio.Event) -> None:
        """Background loop: refresh at startup, then once per interval."""
        logger.info("Starting constituent refresh loop", extra={"interval": self.refresh_interval})

        while not shutdown_event.is_set():
            try:
                await self.refresh()
            except Exception as e:
                logger.error("Error in constituent refresh loop", extra={"error": str(e)})

            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=self.refresh_interval)
                break
            except asyncio.TimeoutError:
                continue
