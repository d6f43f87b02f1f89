"""
Tracker service for Bank Nifty Tracker.
Builds and owns every service object and runs the background tasks.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List

from ..core.config import MarketConfig, Settings
from ..core.logging_config import create_logger
from ..providers.base import DEFAULT_HEADERS
from ..providers.nse_provider import NSEProvider
from ..providers.nse_session import NSESessionManager
from ..providers.yfinance_provider import YFinanceProvider
from .cache import CacheService
from .constituents import ConstituentTracker
from .history_logger import HistoryLogger
from .multiplier_store import MultiplierStore
from .persistence import FileBackend, PersistenceError, RedisBackend
from .quote_fetcher import QuoteFetcher

logger = create_logger(__name__)


class TrackerService:
    """Service container constructed once per process and handed to the HTTP layer."""

    def __init__(
        self,
        settings: Settings,
        session_manager: NSESessionManager,
        primary: NSEProvider,
        secondary: YFinanceProvider,
        cache: CacheService,
        store: MultiplierStore,
        fetcher: QuoteFetcher,
        tracker: ConstituentTracker,
        history: HistoryLogger
    ):
        self.settings = settings
        self.session_manager = session_manager
        self.primary = primary
        self.secondary = secondary
        self.cache = cache
        self.store = store
        self.fetcher = fetcher
        self.tracker = tracker
        self.history = history
        self.started_at = datetime.now(timezone.utc)
        self._running_tasks: List[asyncio.Task] = []
        self._shutdown_event = asyncio.Event()

    @classmethod
    def from_settings(cls, settings: Settings) -> "TrackerService":
        """Wire the default object graph from configuration."""
        session_manager = NSESessionManager(
            base_url=MarketConfig.NSE_BASE_URL,
            validity_seconds=settings.session_validity_seconds,
            timeout=settings.primary_timeout,
            headers=dict(DEFAULT_HEADERS)
        )
        primary = NSEProvider(
            session_manager,
            timeout=settings.primary_timeout,
            supplementary_timeout=settings.supplementary_timeout,
            retry_count=settings.upstream_retries
        )
        secondary = YFinanceProvider(timeout=settings.secondary_timeout)
        cache = CacheService(
            batch_ttl=settings.batch_cache_ttl,
            quote_ttl=settings.quote_cache_ttl,
            supplementary_ttl=settings.supplementary_cache_ttl
        )
        store = MultiplierStore(
            file_backend=FileBackend(
                settings.get_multipliers_file(),
                settings.get_metadata_file(),
                settings.get_history_file()
            ),
            redis_backend=RedisBackend(settings.redis_url) if settings.redis_url else None,
            pin_override=settings.multiplier_pin,
            default_pin=settings.default_pin
        )
        fetcher = QuoteFetcher(primary, secondary, cache)
        tracker = ConstituentTracker(primary, store, refresh_interval=settings.constituent_refresh_interval)
        market_open, market_close = settings.get_market_window()
        history = HistoryLogger(
            fetcher,
            store,
            tracker,
            market_open=market_open,
            market_close=market_close,
            timezone_name=settings.market_timezone,
            interval=settings.history_interval,
            startup_delay=settings.history_startup_delay,
            max_points=settings.history_max_points,
            weekdays_only=settings.history_weekdays_only
        )
        return cls(settings, session_manager, primary, secondary, cache, store, fetcher, tracker, history)

    async def initialize(self) -> None:
        """Connect backends and load persisted state."""
        logger.info("Initializing tracker service")

        if self.store.redis_backend is not None:
            try:
                await self.store.redis_backend.connect()
            except PersistenceError as e:
                logger.error("Redis unavailable, using file storage", extra={"error": str(e)})
        else:
            logger.warning("Redis not configured, using file-based storage", extra={
                "path": self.settings.get_storage_dir()
            })

        await self.store.load()
        self.store.ensure_defaults(MarketConfig.BUFFER_SYMBOLS)
        self.store.ensure_defaults(c.symbol for c in self.tracker.get_constituents())
        await self.history.load()
        await self.store.start()

        logger.info("Tracker service initialized", extra={
            "constituents": len(self.tracker.get_constituents()),
            "storage": "redis" if self.store.redis_backend is not None else "file"
        })

    async def start_background_tasks(self) -> None:
        """Start constituent refresh and history logging loops."""
        self._running_tasks.append(asyncio.create_task(self.tracker.run(self._shutdown_event)))
        self._running_tasks.append(asyncio.create_task(self.history.run(self._shutdown_event)))
        logger.info("Background tasks started", extra={"tasks": len(self._running_tasks)})

    async def shutdown(self) -> None:
        logger.info("Shutting down tracker service")
        self._shutdown_event.set()

        for task in self._running_tasks:
            if not task.done():
                task.cancel()
        if self._running_tasks:
            await asyncio.gather(*self._running_tasks, return_exceptions=True)
        self._running_tasks = []

        await self.store.stop()

        for provider in (self.primary, self.secondary):
            try:
                await provider.disconnect()
            except Exception as e:
                logger.warning("Error disconnecting provider", extra={
                    "provider": provider.name,
                    "error": str(e)
                })

        if self.store.redis_backend is not None:
            await self.store.redis_backend.disconnect()

        logger.info("Tracker service shutdown complete")

    async def get_stocks(self) -> List[Dict[str, Any]]:
        """Every constituent with its quote and multiplier, batch first then one by one."""
        constituents = self.tracker.get_constituents()
        self.store.ensure_defaults(c.symbol for c in constituents)

        batch = await self.fetcher.fetch_batch(constituents)
        if batch is None:
            logger.info("Falling back to individual stock fetches")
            quotes = await asyncio.gather(*(self.fetcher.fetch_one(c.symbol) for c in constituents))
            batch = {quote.symbol: quote for quote in quotes}

        rows = []
        for constituent in constituents:
            row = {"symbol": constituent.symbol, "name": constituent.name}
            quote = batch.get(constituent.symbol)
            if quote is not None:
                row.update(quote.dict(exclude={"symbol"}))
            row["multiplier"] = self.store.get_multiplier(constituent.symbol)
            rows.append(row)
        return rows

    def are_background_tasks_running(self) -> bool:
        if not self._running_tasks:
            return False
        return any(not task.done() for task in self._running_tasks)

    async def health(self) -> Dict[str, Any]:
        redis_status = "not configured"
        if self.store.redis_backend is not None:
            redis_status = "connected" if await self.store.redis_backend.health_check() else "unavailable"
        return {
            "status": "ok",
            "redis": redis_status,
            "background_tasks_running": self.are_background_tasks_running(),
            "uptime_seconds": (datetime.now(timezone.utc) - self.started_at).total_seconds(),
            "last_successful_save": self.store.last_successful_save,
            "last_history_point": self.history.last_logged_at,
            "history_active": self.history.is_active(),
            "cache": self.cache.stats()
        }

