"""Tests for divergence history logging."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from banknifty_tracker.api.schemas import Constituent, HistoricalPoint
from banknifty_tracker.services.constituents import ConstituentTracker
from banknifty_tracker.services.history_logger import HistoryLogger, compute_stats, compute_total
from banknifty_tracker.services.multiplier_store import MultiplierStore
from banknifty_tracker.services.quote_fetcher import QuoteFetcher

from conftest import StubPrimary, StubSecondary, make_quote, read_json

HDFC = Constituent(symbol="HDFCBANK", name="HDFC Bank")
SBIN = Constituent(symbol="SBIN", name="State Bank of India")


def make_logger(file_backend, cache, primary, secondary, max_points=1000):
    store = MultiplierStore(file_backend)
    tracker = ConstituentTracker(primary, store, constituents=[HDFC, SBIN])
    fetcher = QuoteFetcher(primary, secondary, cache, issued_shares={})
    return HistoryLogger(fetcher, store, tracker, max_points=max_points)


def point(minute, index_value, total):
    ts = datetime(2026, 10, 19, 4, minute, tzinfo=timezone.utc)
    return HistoricalPoint.build(ts, index_value, total)


def test_point_differences_are_formatted():
    p = point(0, 1000, 1010)
    assert p.absolute_difference == "10.00"
    assert p.percent_difference == "1.0000"


def test_negative_difference():
    p = point(0, 1000, 987.654)
    assert p.absolute_difference == "-12.35"
    assert p.percent_difference == "-1.2346"


def test_compute_total_skips_unpriced_symbols():
    batch = {
        "HDFCBANK": make_quote("HDFCBANK", 100.0),
        "SBIN": make_quote("SBIN", None, error="down")
    }
    multipliers = {"HDFCBANK": 2.0, "SBIN": 5.0}
    assert compute_total(batch, multipliers.get) == 200.0


def test_stats_over_points():
    points = [point(0, 1000, 1010), point(5, 1010, 1030), point(10, 1020, 1020)]
    stats = compute_stats(points)
    assert stats.count == 3
    assert stats.min_percent_difference == 0.0
    assert stats.max_percent_difference == pytest.approx(1.9802)
    assert stats.correlation is not None
    assert -1 <= stats.correlation <= 1


def test_stats_single_point_has_no_correlation():
    stats = compute_stats([point(0, 1000, 1010)])
    assert stats.count == 1
    assert stats.mean_percent_difference == 1.0
    assert stats.correlation is None


def test_stats_empty():
    assert compute_stats([]).count == 0


def test_window_open_on_weekday(file_backend, cache, fixed_now):
    history = make_logger(file_backend, cache, StubPrimary(), StubSecondary())
    assert history.is_active(fixed_now)
    # 09:15 and 15:30 IST are both inside
    assert history.is_active(datetime(2026, 10, 19, 3, 45, tzinfo=timezone.utc))
    assert history.is_active(datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc))
    assert not history.is_active(datetime(2026, 10, 19, 3, 44, tzinfo=timezone.utc))
    assert not history.is_active(datetime(2026, 10, 19, 10, 1, tzinfo=timezone.utc))


def test_window_closed_on_weekend(file_backend, cache, fixed_now):
    history = make_logger(file_backend, cache, StubPrimary(), StubSecondary())
    saturday = fixed_now - timedelta(days=2)
    assert not history.is_active(saturday)


def test_tick_records_point(file_backend, cache, fixed_now):
    primary = StubPrimary(bulk={"HDFCBANK": make_quote("HDFCBANK", 600.0), "SBIN": make_quote("SBIN", 410.0)})
    history = make_logger(file_backend, cache, primary, StubSecondary(index_value=1000.0))

    recorded = asyncio.run(history.tick(fixed_now))

    assert recorded.computed_total == 1010.0
    assert recorded.percent_difference == "1.0000"
    points, _ = history.read_log()
    assert points == [recorded]
    assert history.store.snapshot() == {"HDFCBANK": 1.0, "SBIN": 1.0}
    stored = read_json(file_backend.history_path)
    assert stored[0]["percent_difference"] == "1.0000"


def test_tick_outside_window_does_nothing(file_backend, cache, fixed_now):
    secondary = StubSecondary(index_value=1000.0)
    history = make_logger(file_backend, cache, StubPrimary(), secondary)

    evening = fixed_now + timedelta(hours=8)
    assert asyncio.run(history.tick(evening)) is None
    assert secondary.calls == []


def test_tick_skipped_when_index_unavailable(file_backend, cache, fixed_now):
    primary = StubPrimary(bulk={"HDFCBANK": make_quote("HDFCBANK", 600.0)})
    history = make_logger(file_backend, cache, primary, StubSecondary())

    assert asyncio.run(history.tick(fixed_now)) is None
    assert history.read_log()[0] == []


def test_tick_skipped_when_batch_unavailable(file_backend, cache, fixed_now):
    history = make_logger(file_backend, cache, StubPrimary(bulk_error=True), StubSecondary(index_value=1000.0))

    assert asyncio.run(history.tick(fixed_now)) is None
    assert history.read_log()[0] == []


def test_log_is_capped(file_backend, cache):
    history = make_logger(file_backend, cache, StubPrimary(), StubSecondary(), max_points=1000)
    start = datetime(2026, 10, 19, 4, 0, tzinfo=timezone.utc)
    for i in range(1001):
        history.append(HistoricalPoint.build(start + timedelta(seconds=i), 1000, 1000 + i))

    points, stats = history.read_log()
    assert len(points) == 1000
    assert stats.count == 1000
    assert points[0].timestamp == start + timedelta(seconds=1)


def test_load_restores_persisted_points(file_backend, cache, fixed_now):
    primary = StubPrimary(bulk={"HDFCBANK": make_quote("HDFCBANK", 600.0), "SBIN": make_quote("SBIN", 410.0)})
    history = make_logger(file_backend, cache, primary, StubSecondary(index_value=1000.0))
    asyncio.run(history.tick(fixed_now))

    restored = make_logger(file_backend, cache, StubPrimary(), StubSecondary())
    assert asyncio.run(restored.load()) == 1
    points, _ = restored.read_log()
    assert points[0].timestamp == fixed_now
    assert points[0].absolute_difference == "10.00"
