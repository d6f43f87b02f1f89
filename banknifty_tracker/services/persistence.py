"""
Persistence backends for Bank Nifty Tracker.
Redis is the durable store; two JSON documents on local disk are the fallback.
"""

import asyncio
import json
import os
from typing import Any, Dict, List, Optional, Tuple

import redis.asyncio as redis

from ..core.config import MarketConfig
from ..core.logging_config import create_logger

logger = create_logger(__name__)

StateDocuments = Tuple[Optional[Dict[str, Any]], Optional[Dict[str, Any]]]


class PersistenceError(Exception):
    """Raised when a backend cannot read or write state."""

    def __init__(self, message: str, backend: str):
        self.message = message
        self.backend = backend
        super().__init__(self.message)


def _decode(value: Any) -> Optional[Any]:
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8")
    if isinstance(value, str):
        return json.loads(value)
    return value


class RedisBackend:
    """Durable backend: multipliers and metadata as JSON strings, history as a capped list."""

    name = "redis"

    def __init__(
        self,
        url: Optional[str] = None,
        client: Optional[Any] = None,
        keys: Optional[Dict[str, str]] = None
    ):
        self.url = url
        self._redis = client
        self.keys = keys or MarketConfig.REDIS_KEYS

    async def connect(self) -> None:
        """Initialize the Redis client and verify it answers."""
        if self._redis is None:
            if not self.url:
                raise PersistenceError("Redis URL is not configured", self.name)
            self._redis = redis.from_url(self.url, decode_responses=True, socket_timeout=5)
        try:
            await self._redis.ping()
        except Exception as e:
            raise PersistenceError(f"Redis ping failed: {str(e)}", self.name) from e
        logger.info("Connected to Redis for persistent storage")

    async def disconnect(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            logger.info("Disconnected from Redis")

    async def health_check(self) -> bool:
        try:
            if self._redis is None:
                return False
            await self._redis.ping()
            return True
        except Exception as e:
            logger.warning("Redis health check failed", extra={"error": str(e)})
            return False

    def _client(self) -> Any:
        if self._redis is None:
            raise PersistenceError("Redis is not connected", self.name)
        return self._redis

    async def read_state(self) -> StateDocuments:
        client = self._client()
        try:
            multipliers, metadata = await asyncio.gather(
                client.get(self.keys['multipliers']),
                client.get(self.keys['metadata'])
            )
            return _decode(multipliers), _decode(metadata)
        except Exception as e:
            raise PersistenceError(f"Redis read failed: {str(e)}", self.name) from e

    async def write_state(self, multipliers: Dict[str, float], metadata: Dict[str, Any]) -> None:
        client = self._client()
        try:
            await asyncio.gather(
                client.set(self.keys['multipliers'], json.dumps(multipliers)),
                client.set(self.keys['metadata'], json.dumps(metadata))
            )
        except Exception as e:
            raise PersistenceError(f"Redis write failed: {str(e)}", self.name) from e

    async def append_history(self, point: Dict[str, Any], cap: int) -> None:
        client = self._client()
        key = self.keys['history']
        try:
            await client.rpush(key, json.dumps(point))
            await client.ltrim(key, -cap, -1)
        except Exception as e:
            raise PersistenceError(f"Redis history append failed: {str(e)}", self.name) from e

    async def read_history(self) -> List[Dict[str, Any]]:
        client = self._client()
        try:
            entries = await client.lrange(self.keys['history'], 0, -1)
            return [_decode(entry) for entry in entries]
        except Exception as e:
            raise PersistenceError(f"Redis history read failed: {str(e)}", self.name) from e


class FileBackend:
    """Local fallback: ``multipliers.json``, ``metadata.json`` and ``history.json``."""

    name = "file"

    def __init__(self, multipliers_path: str, metadata_path: str, history_path: str):
        self.multipliers_path = multipliers_path
        self.metadata_path = metadata_path
        self.history_path = history_path

    async def read_state(self) -> StateDocuments:
        loop = asyncio.get_running_loop()
        multipliers = await loop.run_in_executor(None, self._read_json, self.multipliers_path)
        metadata = await loop.run_in_executor(None, self._read_json, self.metadata_path)
        return multipliers, metadata

    async def write_state(self, multipliers: Dict[str, float], metadata: Dict[str, Any]) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._write_json, self.multipliers_path, multipliers)
        await loop.run_in_executor(None, self._write_json, self.metadata_path, metadata)

    async def append_history(self, point: Dict[str, Any], cap: int) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._append_history_sync, point, cap)

    async def read_history(self) -> List[Dict[str, Any]]:
        loop = asyncio.get_running_loop()
        history = await loop.run_in_executor(None, self._read_json, self.history_path)
        return history if isinstance(history, list) else []

    def _append_history_sync(self, point: Dict[str, Any], cap: int) -> None:
        history = self._read_json(self.history_path)
        if not isinstance(history, list):
            history = []
        history.append(point)
        self._write_json(self.history_path, history[-cap:])

    def _read_json(self, path: str) -> Optional[Any]:
        if not os.path.exists(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as fh:
                return json.load(fh)
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Failed to read {path}: {str(e)}", self.name) from e

    def _write_json(self, path: str, document: Any) -> None:
        try:
            directory = os.path.dirname(path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            tmp_path = f"{path}.tmp"
            with open(tmp_path, "w", encoding="utf-8") as fh:
                json.dump(document, fh, indent=2)
            os.replace(tmp_path, path)
        except OSError as e:
            raise PersistenceError(f"Failed to write {path}: {str(e)}", self.name) from e
