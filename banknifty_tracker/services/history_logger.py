"""
Historical divergence logging for Bank Nifty Tracker.

During market hours the logger periodically compares the Bank Nifty index with
the multiplier-weighted sum of constituent prices and keeps the most recent
points in a bounded log.
"""

import asyncio
import statistics
from collections import deque
from datetime import datetime, time as dt_time, timezone
from typing import Callable, Deque, List, Optional, Tuple
from zoneinfo import ZoneInfo

from ..api.schemas import HistoricalPoint, HistoryStats, QuoteBatch
from ..core.logging_config import create_logger
from .constituents import ConstituentTracker
from .multiplier_store import MultiplierStore
from .quote_fetcher import QuoteFetcher

logger = create_logger(__name__)


def compute_total(batch: QuoteBatch, multiplier_for: Callable[[str], float]) -> float:
    """Sum of price x multiplier; symbols without a price are left out."""
    return sum(
        quote.live_price * multiplier_for(symbol)
        for symbol, quote in batch.items()
        if quote.live_price is not None
    )


def compute_stats(points: List[HistoricalPoint]) -> HistoryStats:
    """Mean/min/max percent difference and index vs total correlation over all points."""
    if not points:
        return HistoryStats(count=0)

    percents = [float(p.percent_difference) for p in points]
    correlation = None
    if len(points) >= 2:
        try:
            correlation = statistics.correlation(
                [p.index_value for p in points],
                [p.computed_total for p in points]
            )
        except statistics.StatisticsError:
            # Constant series
            correlation = None

    return HistoryStats(
        count=len(points),
        mean_percent_difference=round(statistics.fmean(percents), 4),
        min_percent_difference=min(percents),
        max_percent_difference=max(percents),
        correlation=round(correlation, 6) if correlation is not None else None
    )


class HistoryLogger:
    """Idle outside the daily market window, logging inside it."""

    def __init__(
        self,
        fetcher: QuoteFetcher,
        store: MultiplierStore,
        tracker: ConstituentTracker,
        market_open: Tuple[int, int] = (9, 15),
        market_close: Tuple[int, int] = (15, 30),
        timezone_name: str = "Asia/Kolkata",
        interval: float = 300,
        startup_delay: float = 10,
        max_points: int = 1000,
        weekdays_only: bool = True,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.fetcher = fetcher
        self.store = store
        self.tracker = tracker
        self.market_open = dt_time(*market_open)
        self.market_close = dt_time(*market_close)
        self.tz = ZoneInfo(timezone_name)
        self.interval = interval
        self.startup_delay = startup_delay
        self.max_points = max_points
        self.weekdays_only = weekdays_only
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._points: Deque[HistoricalPoint] = deque(maxlen=max_points)
        self.last_logged_at: Optional[datetime] = None

    def is_active(self, now: Optional[datetime] = None) -> bool:
        """Whether ``now`` falls inside the daily logging window."""
        local = (now or self._clock()).astimezone(self.tz)
        if self.weekdays_only and local.weekday() >= 5:
            return False
        return self.market_open <= local.time() <= self.market_close

    async def load(self) -> int:
        """Restore retained points from persistence."""
        documents = await self.store.load_history()
        self._points.clear()
        for document in documents[-self.max_points:]:
            try:
                self._points.append(HistoricalPoint(**document))
            except (TypeError, ValueError) as e:
                logger.warning("Skipping malformed history point", extra={"error": str(e)})
        logger.info("Loaded history", extra={"points": len(self._points)})
        return len(self._points)

    async def tick(self, now: Optional[datetime] = None) -> Optional[HistoricalPoint]:
        """Record one point if inside the window and both the index and the batch are available."""
        now = now or self._clock()
        if not self.is_active(now):
            return None

        constituents = self.tracker.get_constituents()
        index_quote, batch = await asyncio.gather(
            self.fetcher.fetch_index(),
            self.fetcher.fetch_batch(constituents)
        )

        if index_quote is None or index_quote.live_price is None:
            logger.warning("Skipping history tick, index value unavailable")
            return None
        if batch is None:
            logger.warning("Skipping history tick, quote batch unavailable")
            return None

        self.store.ensure_defaults(batch.keys())
        total = compute_total(batch, self.store.get_multiplier)
        point = HistoricalPoint.build(now, index_quote.live_price, total)
        self.append(point)
        await self.store.append_history(point.to_document(), self.max_points)

        logger.info("Logged history point", extra={
            "index_value": point.index_value,
            "computed_total": point.computed_total,
            "percent_difference": point.percent_difference
        })
        return point

    def append(self, point: HistoricalPoint) -> None:
        """Append a point, evicting the oldest once the cap is reached."""
        self._points.append(point)
        self.last_logged_at = point.timestamp

    def read_log(self) -> Tuple[List[HistoricalPoint], HistoryStats]:
        points = list(self._points)
        return points, compute_stats(points)

    async def run(self, shutdown_event: asyncio.Event) -> None:
        """Background loop: startup grace period, then one tick per interval."""
        logger.info("Starting history logger", extra={
            "interval": self.interval,
            "startup_delay": self.startup_delay
        })

        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=self.startup_delay)
            return
        except asyncio.TimeoutError:
            pass

        while not shutdown_event.is_set():
            try:
                await self.tick()
            except Exception as e:
                logger.error("Error in history logger loop", extra={"error": str(e)})

            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=self.interval)
                break
            except asyncio.TimeoutError:
                continue
