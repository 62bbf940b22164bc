"""Tests for the single-use, time-limited result store."""

import string
import threading
import time

import pytest

from clarity_scripts import result_store
from clarity_scripts.result_store import ResultStore, StoreConfig, TokenCollisionError


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return ResultStore(StoreConfig(ttl_seconds=600, sweep_interval_seconds=300), clock=clock)


class TestSingleUse:
    """A stored result can be taken exactly once."""

    def test_second_get_returns_none(self, store):
        store.put("T1", {"files": 3}, b"zip-bytes")

        first = store.get("T1")
        assert first is not None
        assert first.report == {"files": 3}
        assert first.archive_bytes == b"zip-bytes"
        assert store.get("T1") is None
        assert len(store) == 0

    def test_unknown_token(self, store):
        assert store.get("never-issued") is None

    def test_collision_keeps_original(self, store):
        store.put("T1", {"v": 1}, b"a")
        with pytest.raises(TokenCollisionError):
            store.put("T1", {"v": 2}, b"b")
        assert store.get("T1").report == {"v": 1}

    def test_token_reusable_after_take(self, store):
        store.put("T1", {}, b"a")
        store.get("T1")
        store.put("T1", {}, b"b")
        assert store.get("T1").archive_bytes == b"b"


class TestExpiry:
    """Records disappear once their time-to-live has elapsed."""

    def test_reachable_until_ttl(self, store, clock):
        store.put("T1", {}, b"a")
        clock.advance(599.999)
        assert store.get("T1") is not None

    def test_gone_at_ttl(self, store, clock):
        store.put("T1", {}, b"a")
        clock.advance(600)
        assert store.get("T1") is None
        assert "T1" not in store

    def test_sweep_evicts_only_expired(self, store, clock):
        store.put("old", {}, b"a")
        clock.advance(400)
        store.put("fresh", {}, b"b")
        clock.advance(200)

        assert store.sweep() == 1
        assert "old" not in store
        assert "fresh" in store
        assert store.sweep() == 0

    def test_sweep_on_empty_store(self, store):
        assert store.sweep() == 0


class TestTokens:
    def test_put_new_returns_hex_token(self, store):
        token = store.put_new({}, b"a")
        assert len(token) == 64
        assert set(token) <= set(string.hexdigits.lower())
        assert token in store

    def test_put_new_regenerates_on_collision(self, store, monkeypatch):
        store.put("taken", {}, b"a")
        tokens = iter(["taken", "taken", "free"])
        monkeypatch.setattr(result_store, "new_token", lambda: next(tokens))

        assert store.put_new({}, b"b") == "free"
        assert store.get("taken").archive_bytes == b"a"

    def test_put_new_gives_up(self, store, monkeypatch):
        store.put("taken", {}, b"a")
        monkeypatch.setattr(result_store, "new_token", lambda: "taken")
        with pytest.raises(TokenCollisionError):
            store.put_new({}, b"b")


class TestConcurrency:
    """Concurrent readers and the sweep never double-serve a record."""

    def test_concurrent_gets_serve_once(self, store):
        for _ in range(50):
            store.put("T1", {}, b"a")
            barrier = threading.Barrier(8)
            hits = []

            def take():
                barrier.wait()
                if store.get("T1") is not None:
                    hits.append(1)

            threads = [threading.Thread(target=take) for _ in range(8)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()
            assert len(hits) == 1

    def test_sweep_and_get_remove_once(self, clock):
        store = ResultStore(StoreConfig(ttl_seconds=10), clock=clock)
        for i in range(200):
            store.put(f"T{i}", {}, b"a")
        clock.advance(10)

        evicted = []
        getter = threading.Thread(target=lambda: [store.get(f"T{i}") for i in range(200)])
        sweeper = threading.Thread(target=lambda: evicted.append(store.sweep()))
        getter.start()
        sweeper.start()
        getter.join()
        sweeper.join()

        assert len(store) == 0
        assert 0 <= evicted[0] <= 200

    def test_fresh_records_survive_concurrent_sweep(self, clock):
        store = ResultStore(StoreConfig(ttl_seconds=10), clock=clock)
        for i in range(100):
            store.put(f"T{i}", {}, b"a")

        sweeper = threading.Thread(target=lambda: [store.sweep() for _ in range(20)])
        sweeper.start()
        served = [store.get(f"T{i}") for i in range(100)]
        sweeper.join()

        assert all(r is not None for r in served)


class TestBackgroundSweep:
    def test_sweeper_thread_evicts(self, clock):
        store = ResultStore(StoreConfig(ttl_seconds=5, sweep_interval_seconds=0.01), clock=clock)
        store.put("T1", {}, b"a")
        clock.advance(5)

        store.start()
        try:
            deadline = time.monotonic() + 5
            while len(store) and time.monotonic() < deadline:
                time.sleep(0.01)
        finally:
            store.stop()

        assert len(store) == 0

    def test_start_is_idempotent_and_stop_joins(self, store):
        store.start()
        thread = store._thread
        store.start()
        assert store._thread is thread
        store.stop()
        assert store._thread is None
        assert not thread.is_alive()


class TestStoreConfig:
    def test_defaults(self):
        cfg = StoreConfig()
        assert cfg.ttl_seconds == 600
        assert cfg.sweep_interval_seconds == 300

    def test_from_env(self):
        cfg = StoreConfig.from_env({"CLARITY_RESULT_TTL_SECONDS": "30", "CLARITY_SWEEP_INTERVAL_SECONDS": "5"})
        assert cfg.ttl_seconds == 30.0
        assert cfg.sweep_interval_seconds == 5.0

    @pytest.mark.parametrize("kwargs", [{"ttl_seconds": 0}, {"sweep_interval_seconds": -1}])
    def test_rejects_non_positive(self, kwargs):
        with pytest.raises(ValueError):
            StoreConfig(**kwargs)
