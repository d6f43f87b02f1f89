"""Shared fixtures and test doubles."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Dict, List, Optional, Union

import pytest

from banknifty_tracker.api.schemas import Constituent, DataSource, Quote, SupplementaryData
from banknifty_tracker.providers.base import ProviderError
from banknifty_tracker.services.cache import CacheService
from banknifty_tracker.services.persistence import FileBackend


class FakeClock:
    """Monotonic clock for TTL caches."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRedis:
    """The handful of redis.asyncio calls the persistence layer uses, kept in memory."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.values: Dict[str, str] = {}
        self.lists: Dict[str, List[str]] = {}

    def _check(self):
        if self.fail:
            raise ConnectionError("redis down")

    async def ping(self):
        self._check()
        return True

    async def get(self, key):
        self._check()
        return self.values.get(key)

    async def set(self, key, value):
        self._check()
        self.values[key] = value
        return True

    async def rpush(self, key, value):
        self._check()
        self.lists.setdefault(key, []).append(value)
        return len(self.lists[key])

    async def ltrim(self, key, start, end):
        self._check()
        items = self.lists.get(key, [])
        length = len(items)
        start = max(length + start, 0) if start < 0 else start
        end = length + end if end < 0 else end
        self.lists[key] = items[start:end + 1]
        return True

    async def lrange(self, key, start, end):
        self._check()
        items = self.lists.get(key, [])
        end = len(items) if end == -1 else end + 1
        return items[start:end]

    async def aclose(self):
        return None


def make_quote(symbol: str, price: Optional[float], source: DataSource = DataSource.YAHOO, **fields) -> Quote:
    return Quote(symbol=symbol, live_price=price, source=source, currency="INR", **fields)


class StubPrimary:
    """NSE stand-in: scripted bulk quotes, supplementary data and membership."""

    name = "nse"

    def __init__(
        self,
        bulk: Optional[Dict[str, Quote]] = None,
        bulk_error: Union[bool, Exception] = False,
        supplementary: Optional[Dict[str, SupplementaryData]] = None,
        constituents: Optional[List[Constituent]] = None
    ):
        self.bulk = bulk or {}
        self.bulk_error = bulk_error
        self.supplementary = supplementary or {}
        self.constituents = constituents
        self.bulk_calls = 0
        self.supplementary_calls: List[str] = []

    async def get_bulk_quotes(self, symbols):
        self.bulk_calls += 1
        if isinstance(self.bulk_error, Exception):
            raise self.bulk_error
        if self.bulk_error:
            raise ProviderError("bulk down", self.name)
        return {s: q for s, q in self.bulk.items() if s in symbols}

    async def get_supplementary(self, symbol):
        self.supplementary_calls.append(symbol)
        if symbol not in self.supplementary:
            raise ProviderError("no supplementary", self.name, symbol)
        return self.supplementary[symbol]

    async def get_constituents(self):
        if self.constituents is None:
            raise ProviderError("constituents down", self.name)
        return list(self.constituents)

    async def disconnect(self):
        return None


class StubSecondary:
    """Yahoo stand-in: scripted per-symbol prices and index value."""

    name = "yahoo"

    def __init__(self, prices: Optional[Dict[str, float]] = None, index_value: Optional[float] = None):
        self.prices = prices or {}
        self.index_value = index_value
        self.calls: List[str] = []

    async def get_quote(self, symbol):
        self.calls.append(symbol)
        if symbol not in self.prices:
            raise ProviderError("no quote", self.name, symbol)
        return make_quote(symbol, self.prices[symbol], previous_close=self.prices[symbol] - 1)

    async def get_index_quote(self):
        self.calls.append("BANKNIFTY")
        if self.index_value is None:
            raise ProviderError("no index", self.name)
        return make_quote("BANKNIFTY", self.index_value)

    async def disconnect(self):
        return None


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return CacheService(batch_ttl=5, quote_ttl=5, supplementary_ttl=300, timer=clock)


@pytest.fixture
def file_backend(tmp_path):
    return FileBackend(
        str(tmp_path / "multipliers.json"),
        str(tmp_path / "metadata.json"),
        str(tmp_path / "history.json")
    )


@pytest.fixture
def fixed_now():
    return datetime(2026, 10, 19, 5, 0, tzinfo=timezone.utc)  # Monday 10:30 IST


def read_json(path):
    with open(path, "r", encoding="utf-8") as fh:
        return json.load(fh)
