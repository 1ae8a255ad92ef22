"""Tests for the result cache and in-flight request coalescing."""
from __future__ import annotations

import asyncio
import json

import pytest

from fieldmatch.matching.cache import InFlightRequests, ResultCache, request_key
from fieldmatch.matching.cancellation import CancellationToken, MatchCancelledError
from fieldmatch.stores.kv import MemoryKeyValueStore


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class BrokenStore:
    async def get(self, key):
        raise OSError("disk unavailable")

    async def set(self, key, value):
        raise OSError("disk unavailable")

    async def delete(self, key):
        raise OSError("disk unavailable")


def test_size_limit_evicts_oldest_entries():
    clock = FakeClock()
    cache = ResultCache(max_entries=3, default_ttl=300, clock=clock)

    for index in range(4):
        clock.now += 1
        cache.set(f"key{index}", index)

    assert len(cache) <= 3
    assert not cache.has("key0")
    assert cache.get("key3") == 3


def test_entry_older_than_ttl_is_a_miss():
    clock = FakeClock()
    cache = ResultCache(default_ttl=300, clock=clock)
    cache.set("data_email", ["a"])

    clock.now += 300
    assert cache.has("data_email")

    clock.now += 1
    assert cache.get("data_email") is None
    assert not cache.has("data_email")
    assert len(cache) == 0


def test_cleanup_drops_expired_before_oldest():
    clock = FakeClock()
    cache = ResultCache(max_entries=2, default_ttl=10, clock=clock)
    cache.set("short", 1, ttl=1)
    clock.now += 1
    cache.set("old", 2)
    clock.now += 5
    cache.set("new", 3)

    assert cache.keys() == ["old", "new"]
    assert cache.stats() == {"total": 2, "expired": 0, "active": 2, "max_entries": 2}


def test_overwrite_refreshes_timestamp():
    clock = FakeClock()
    cache = ResultCache(default_ttl=10, clock=clock)
    cache.set("k", 1)
    clock.now += 8
    cache.set("k", 2)
    clock.now += 8

    assert cache.get("k") == 2


@pytest.mark.asyncio
async def test_snapshot_round_trip_skips_expired_entries():
    clock = FakeClock()
    store = MemoryKeyValueStore()
    cache = ResultCache(default_ttl=60, store=store, snapshot_key="autofillCache", clock=clock)
    cache.set("fresh", {"records": 1})
    cache.set("stale", "x", ttl=5)

    assert await cache.persist_snapshot()
    assert set(json.loads(store.values["autofillCache"])) == {"fresh", "stale"}

    clock.now += 10
    restored = ResultCache(default_ttl=60, store=store, snapshot_key="autofillCache", clock=clock)
    loaded = await restored.load_snapshot()

    assert loaded == 1
    assert restored.get("fresh") == {"records": 1}
    assert not restored.has("stale")


@pytest.mark.asyncio
async def test_clear_removes_snapshot():
    store = MemoryKeyValueStore({"autofillCache": "{}"})
    cache = ResultCache(store=store)
    cache.set("k", 1)

    await cache.clear()

    assert len(cache) == 0
    assert "autofillCache" not in store.values


@pytest.mark.asyncio
async def test_persistence_failures_are_no_ops():
    cache = ResultCache(store=BrokenStore())
    cache.set("k", 1)

    assert await cache.persist_snapshot() is False
    assert await cache.load_snapshot() == 0
    await cache.clear()
    assert cache.get("k") is None


@pytest.mark.asyncio
async def test_corrupt_snapshot_is_ignored():
    store = MemoryKeyValueStore({"autofillCache": "not json"})

    assert await ResultCache(store=store).load_snapshot() == 0


def test_request_key_is_order_independent():
    assert request_key(["phone", "email", "phone"]) == request_key(["email", "phone"]) == "email,phone"


@pytest.mark.asyncio
async def test_in_flight_requests_share_one_call():
    requests = InFlightRequests()
    release = asyncio.Event()
    calls = []

    async def factory():
        calls.append(1)
        await release.wait()
        return ["record"]

    first = asyncio.ensure_future(requests.run("email", factory))
    second = asyncio.ensure_future(requests.run("email", factory))
    await asyncio.sleep(0)
    assert "email" in requests

    release.set()
    assert await first == ["record"]
    assert await second == ["record"]
    assert calls == [1]

    await asyncio.sleep(0)
    assert len(requests) == 0


@pytest.mark.asyncio
async def test_cancelled_waiter_leaves_shared_request_running():
    requests = InFlightRequests()
    release = asyncio.Event()

    async def factory():
        await release.wait()
        return "done"

    token = CancellationToken()
    abandoned = asyncio.ensure_future(requests.run("email", factory, token=token))
    kept = asyncio.ensure_future(requests.run("email", factory))
    await asyncio.sleep(0)

    token.cancel()
    with pytest.raises(MatchCancelledError):
        await abandoned

    release.set()
    assert await kept == "done"


@pytest.mark.asyncio
async def test_last_waiter_leaving_cancels_request():
    requests = InFlightRequests()
    started = asyncio.Event()
    cancelled = []

    async def factory():
        started.set()
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.append(True)
            raise

    token = CancellationToken()
    waiter = asyncio.ensure_future(requests.run("phone", factory, token=token))
    await started.wait()

    token.cancel("superseded")
    with pytest.raises(MatchCancelledError):
        await waiter
    await asyncio.sleep(0)

    assert cancelled == [True]
    assert "phone" not in requests
