"""
Multiplier storage for Bank Nifty Tracker.
Owns the only mutable copy of the multiplier map and its metadata; saves are
queued and written to Redis, or to local JSON files when Redis is unavailable.
"""

import asyncio
import math
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from ..api.schemas import StoreMetadata
from ..core.logging_config import create_logger
from .persistence import FileBackend, PersistenceError, RedisBackend

logger = create_logger(__name__)

DEFAULT_MULTIPLIER = 1.0


class InvalidInputError(ValueError):
    """Rejected multiplier value or missing PIN."""
    pass


def parse_multiplier(value: Any) -> float:
    """Parse a multiplier; must be a finite, non-negative number."""
    if value is None or isinstance(value, bool):
        raise InvalidInputError(f"Invalid multiplier value: {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidInputError(f"Invalid multiplier value: {value!r}")
    if not math.isfinite(number) or number < 0:
        raise InvalidInputError(f"Invalid multiplier value: {value!r}")
    return number


class MultiplierStore:
    """Multiplier map + metadata with a Redis-first, file-fallback persistence strategy."""

    def __init__(
        self,
        file_backend: FileBackend,
        redis_backend: Optional[RedisBackend] = None,
        pin_override: Optional[str] = None,
        default_pin: str = "1234",
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.file_backend = file_backend
        self.redis_backend = redis_backend
        self.pin_override = pin_override
        self.default_pin = default_pin
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._multipliers: Dict[str, float] = {}
        # PIN as stored; the override is applied on top and never written back
        self._stored_pin = default_pin
        self._last_saved_at: Optional[datetime] = None

        self.last_successful_save: Optional[datetime] = None
        self.last_save_backend: Optional[str] = None
        self.loaded_from: Optional[str] = None

        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None

    # Loading

    async def load(self) -> Tuple[Dict[str, float], StoreMetadata]:
        """Load state from Redis, else from local files, else defaults."""
        documents = None

        if self.redis_backend is not None:
            try:
                documents = await self.redis_backend.read_state()
                self.loaded_from = self.redis_backend.name
            except PersistenceError as e:
                logger.error("Error loading from Redis, falling back to file", extra={"error": str(e)})

        if documents is None:
            try:
                documents = await self.file_backend.read_state()
                self.loaded_from = self.file_backend.name
            except PersistenceError as e:
                logger.error("Error loading from file, using defaults", extra={"error": str(e)})
                documents = (None, None)
                self.loaded_from = None

        multipliers_doc, metadata_doc = documents
        self._multipliers = self._parse_multipliers(multipliers_doc)

        if isinstance(metadata_doc, dict):
            stored = StoreMetadata.from_document(metadata_doc, self.default_pin)
            self._stored_pin = stored.pin
            self._last_saved_at = stored.last_saved_at
        else:
            self._stored_pin = self.default_pin
            self._last_saved_at = None

        logger.info("Loaded multipliers", extra={
            "source": self.loaded_from,
            "count": len(self._multipliers),
            "pin_override": self.pin_override is not None
        })
        return self.snapshot(), self.metadata

    def _parse_multipliers(self, document: Any) -> Dict[str, float]:
        if not isinstance(document, dict):
            return {}
        multipliers = {}
        for symbol, value in document.items():
            try:
                multipliers[str(symbol).upper()] = parse_multiplier(value)
            except InvalidInputError:
                logger.warning("Skipping invalid stored multiplier", extra={"symbol": symbol, "value": value})
        return multipliers

    # Reads

    @property
    def pin(self) -> str:
        return self.pin_override or self._stored_pin

    @property
    def metadata(self) -> StoreMetadata:
        return StoreMetadata(last_saved_at=self._last_saved_at, pin=self.pin)

    @property
    def last_saved_at(self) -> Optional[datetime]:
        return self._last_saved_at

    def snapshot(self) -> Dict[str, float]:
        return dict(self._multipliers)

    def get_multiplier(self, symbol: str) -> float:
        return self._multipliers.get(symbol.upper(), DEFAULT_MULTIPLIER)

    def verify_pin(self, candidate: Optional[str]) -> bool:
        """Plain equality against the effective PIN."""
        if candidate is None:
            return False
        return str(candidate) == self.pin

    # Mutations

    def ensure_defaults(self, symbols: Iterable[str]) -> List[str]:
        """Give every symbol without an entry the default multiplier. Explicit zeros are kept."""
        added = []
        for symbol in symbols:
            symbol = symbol.upper()
            if symbol not in self._multipliers:
                self._multipliers[symbol] = DEFAULT_MULTIPLIER
                added.append(symbol)
        if added:
            logger.info("Initialized default multipliers", extra={"symbols": added})
        return added

    def set(self, symbol: str, value: Any) -> float:
        """Validate and set one multiplier, then queue a save."""
        if not symbol or not str(symbol).strip():
            raise InvalidInputError("Symbol is required")
        number = parse_multiplier(value)
        self._multipliers[symbol.strip().upper()] = number
        self._request_save()
        return number

    def set_many(self, values: Dict[str, Any]) -> Dict[str, float]:
        """Apply every valid entry; invalid ones are skipped. Returns what was applied."""
        applied = {}
        for symbol, value in values.items():
            if not symbol or not str(symbol).strip():
                continue
            try:
                number = parse_multiplier(value)
            except InvalidInputError:
                logger.warning("Skipping invalid multiplier", extra={"symbol": symbol, "value": value})
                continue
            key = str(symbol).strip().upper()
            self._multipliers[key] = number
            applied[key] = number
        if applied:
            self._request_save()
        return applied

    # Saving

    async def save(self) -> Optional[str]:
        """Write state to Redis, else to local files. Returns the backend used, None if both failed."""
        now = self._clock()
        self._last_saved_at = now
        multipliers = self.snapshot()
        metadata = StoreMetadata(last_saved_at=now, pin=self._stored_pin).to_document()

        backends = [b for b in (self.redis_backend, self.file_backend) if b is not None]
        for backend in backends:
            try:
                await backend.write_state(multipliers, metadata)
            except PersistenceError as e:
                logger.error("Error saving multipliers", extra={"backend": backend.name, "error": str(e)})
                continue
            self.last_successful_save = now
            self.last_save_backend = backend.name
            logger.info("Multipliers saved", extra={"backend": backend.name, "count": len(multipliers)})
            return backend.name

        logger.error("Multipliers kept in memory only, every backend failed")
        return None

    def _request_save(self) -> None:
        if self._queue is None:
            return
        # A save still waiting in the queue will snapshot this change too
        if self._queue.empty():
            self._queue.put_nowait(self._clock())

    async def start(self) -> None:
        """Start the background save worker."""
        if self._worker is not None and not self._worker.done():
            return
        self._queue = asyncio.Queue()
        self._worker = asyncio.create_task(self._save_worker())

    async def _save_worker(self) -> None:
        while True:
            await self._queue.get()
            try:
                await self.save()
            except Exception as e:
                logger.error("Unexpected error in save worker", extra={"error": str(e)})
            finally:
                self._queue.task_done()

    async def flush(self) -> None:
        """Wait until every queued save has been processed."""
        if self._queue is not None:
            await self._queue.join()

    async def stop(self) -> None:
        """Drain pending saves and stop the worker."""
        await self.flush()
        if self._worker is not None:
            self._worker.cancel()
            await asyncio.gather(self._worker, return_exceptions=True)
            self._worker = None
        self._queue = None

    # History persistence

    async def append_history(self, point: Dict[str, Any], cap: int) -> Optional[str]:
        """Append one history point to the first backend that accepts it."""
        backends = [b for b in (self.redis_backend, self.file_backend) if b is not None]
        for backend in backends:
            try:
                await backend.append_history(point, cap)
                return backend.name
            except PersistenceError as e:
                logger.error("Error saving history point", extra={"backend": backend.name, "error": str(e)})
        return None

    async def load_history(self) -> List[Dict[str, Any]]:
        backends = [b for b in (self.redis_backend, self.file_backend) if b is not None]
        for backend in backends:
            try:
                return await backend.read_history()
            except PersistenceError as e:
                logger.error("Error loading history", extra={"backend": backend.name, "error": str(e)})
        return []
