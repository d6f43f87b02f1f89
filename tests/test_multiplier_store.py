"""Tests for the multiplier store and its persistence fallbacks."""

import asyncio
import json
import math
from datetime import datetime, timezone

import pytest

from banknifty_tracker.services.multiplier_store import InvalidInputError, MultiplierStore, parse_multiplier
from banknifty_tracker.services.persistence import RedisBackend

from conftest import FakeRedis, read_json

SAVED_AT = datetime(2026, 10, 19, 5, 0, tzinfo=timezone.utc)


def make_store(file_backend, redis_client=None, **kwargs):
    redis_backend = RedisBackend(client=redis_client) if redis_client is not None else None
    return MultiplierStore(file_backend, redis_backend, clock=lambda: SAVED_AT, **kwargs)


@pytest.mark.parametrize("value", [-1, "abc", None, True, math.inf, float("nan")])
def test_parse_multiplier_rejects(value):
    with pytest.raises(InvalidInputError):
        parse_multiplier(value)


def test_parse_multiplier_accepts_numeric_strings_and_zero():
    assert parse_multiplier("2.5") == 2.5
    assert parse_multiplier(0) == 0.0


def test_set_save_and_reload_from_file(file_backend):
    store = make_store(file_backend)

    async def scenario():
        await store.load()
        store.set("hdfcbank", 2.5)
        backend = await store.save()
        reloaded = make_store(file_backend)
        await reloaded.load()
        return backend, reloaded

    backend, reloaded = asyncio.run(scenario())
    assert backend == "file"
    assert reloaded.get_multiplier("HDFCBANK") == 2.5
    assert reloaded.last_saved_at == SAVED_AT
    assert read_json(file_backend.multipliers_path) == {"HDFCBANK": 2.5}


def test_invalid_value_leaves_map_unchanged(file_backend):
    store = make_store(file_backend)
    asyncio.run(store.load())
    store.set("SBIN", 3)

    with pytest.raises(InvalidInputError):
        store.set("SBIN", -1)
    assert store.get_multiplier("SBIN") == 3.0


def test_set_many_skips_invalid_entries(file_backend):
    store = make_store(file_backend)
    asyncio.run(store.load())

    applied = store.set_many({"sbin": 2, "PNB": "x", "": 4, "AXISBANK": -3, "ICICIBANK": "1.5"})
    assert applied == {"SBIN": 2.0, "ICICIBANK": 1.5}
    assert "PNB" not in store.snapshot()


def test_unknown_symbol_defaults_to_one(file_backend):
    store = make_store(file_backend)
    asyncio.run(store.load())
    assert store.get_multiplier("YESBANK") == 1.0


def test_ensure_defaults_keeps_explicit_zero(file_backend):
    store = make_store(file_backend)
    asyncio.run(store.load())
    store.set("SBIN", 0)

    added = store.ensure_defaults(["SBIN", "PNB"])
    assert added == ["PNB"]
    assert store.get_multiplier("SBIN") == 0.0
    assert store.get_multiplier("PNB") == 1.0


def test_pin_override_wins_and_is_not_persisted(file_backend):
    with open(file_backend.metadata_path, "w", encoding="utf-8") as fh:
        json.dump({"lastSavedAt": None, "pin": "4321"}, fh)
    store = make_store(file_backend, pin_override="9999")

    async def scenario():
        await store.load()
        store.set("SBIN", 2)
        await store.save()

    asyncio.run(scenario())
    assert store.verify_pin("9999")
    assert not store.verify_pin("4321")
    assert read_json(file_backend.metadata_path)["pin"] == "4321"


def test_default_pin_without_metadata(file_backend):
    store = make_store(file_backend)
    asyncio.run(store.load())
    assert store.verify_pin("1234")
    assert not store.verify_pin(None)
    assert not store.verify_pin("")


def test_metadata_document_layout(file_backend):
    store = make_store(file_backend)

    async def scenario():
        await store.load()
        await store.save()

    asyncio.run(scenario())
    assert read_json(file_backend.metadata_path) == {"lastSavedAt": SAVED_AT.isoformat(), "pin": "1234"}


def test_legacy_last_saved_key_is_read(file_backend):
    with open(file_backend.metadata_path, "w", encoding="utf-8") as fh:
        json.dump({"lastSaved": "2026-01-02T03:04:05Z", "pin": "1111"}, fh)
    store = make_store(file_backend)
    asyncio.run(store.load())

    assert store.last_saved_at == datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    assert store.pin == "1111"


def test_redis_preferred_for_save_and_load(file_backend):
    redis_client = FakeRedis()
    store = make_store(file_backend, redis_client)

    async def scenario():
        await store.load()
        store.set("SBIN", 4)
        backend = await store.save()
        reloaded = make_store(file_backend, redis_client)
        await reloaded.load()
        return backend, reloaded

    backend, reloaded = asyncio.run(scenario())
    assert backend == "redis"
    assert reloaded.loaded_from == "redis"
    assert reloaded.get_multiplier("SBIN") == 4.0
    assert json.loads(redis_client.values["bank_nifty_multipliers"]) == {"SBIN": 4.0}


def test_redis_failure_falls_back_to_file(file_backend):
    redis_client = FakeRedis(fail=True)
    store = make_store(file_backend, redis_client)

    async def scenario():
        await store.load()
        store.set("SBIN", 5)
        return await store.save()

    assert asyncio.run(scenario()) == "file"
    assert store.loaded_from == "file"
    assert store.last_save_backend == "file"
    assert read_json(file_backend.multipliers_path) == {"SBIN": 5.0}


def test_queued_saves_are_flushed(file_backend):
    store = make_store(file_backend)

    async def scenario():
        await store.load()
        await store.start()
        store.set("SBIN", 2)
        store.set("PNB", 3)
        await store.stop()

    asyncio.run(scenario())
    assert store.last_successful_save == SAVED_AT
    assert read_json(file_backend.multipliers_path) == {"SBIN": 2.0, "PNB": 3.0}


def test_history_persisted_with_cap(file_backend):
    redis_client = FakeRedis()
    store = make_store(file_backend, redis_client)

    async def scenario():
        for i in range(5):
            await store.append_history({"n": i}, cap=3)
        return await store.load_history()

    assert asyncio.run(scenario()) == [{"n": 2}, {"n": 3}, {"n": 4}]
