"""
Tests for cache.py
Covers CacheEntry, staleness policy and DomainStore writer/observer semantics
"""

import threading

import pytest

from cache import (
    EMPTY_ENTRY,
    CacheEntry,
    DomainStore,
    FreshnessPolicy,
    ResourceClass,
    is_stale,
)
from config import Config


class TestStaleness:
    """Tests for the pure staleness check"""

    def test_never_fetched_is_stale(self):
        assert is_stale(EMPTY_ENTRY, 30000, 10**9)

    def test_boundary(self):
        """Exactly window ms old is fresh, one more ms is stale"""
        entry = CacheEntry(payload=1, last_updated=1000)
        assert not is_stale(entry, 500, 1500)
        assert is_stale(entry, 500, 1501)

    def test_deterministic(self):
        entry = CacheEntry(payload=1, last_updated=1000)
        results = {is_stale(entry, 100, 1050) for _ in range(10)}
        assert results == {False}
        assert entry == CacheEntry(payload=1, last_updated=1000)

    def test_policy_windows(self):
        policy = FreshnessPolicy.from_config(Config)
        assert policy.window_for(ResourceClass.BLOCK_INFO) == 15000
        assert policy.window_for(ResourceClass.TRANSACTIONS) == 20000
        assert policy.window_for(ResourceClass.ACCOUNT) == 60000
        assert policy.window_for(ResourceClass.AGGREGATES) == 30000
        assert policy.window_for(ResourceClass.TRANSACTION_DETAIL) == 300000

    def test_policy_default_window(self):
        policy = FreshnessPolicy({ResourceClass.ACCOUNT: 10}, default_window=77)
        assert policy.window_for(ResourceClass.AGGREGATES) == 77
        assert policy.window_for(None) == 77
        entry = CacheEntry(payload=1, last_updated=100)
        assert not policy.is_stale(entry, None, 177)
        assert policy.is_stale(entry, None, 178)


class TestDomainStore:
    """Tests for the per-domain store"""

    @pytest.fixture
    def store(self):
        return DomainStore("account")

    def test_missing_key_is_empty(self, store):
        assert store.get("0x1") is EMPTY_ENTRY
        assert store.last_updated == 0
        assert store.error is None

    def test_single_writer(self, store):
        store.acquire_writer()
        with pytest.raises(RuntimeError):
            store.acquire_writer()

    def test_begin_fetch_keeps_payload(self, store):
        writer = store.acquire_writer()
        writer.commit("k", {"v": 1}, now=10)

        assert writer.begin_fetch("k") is True
        entry = store.get("k")
        assert entry.is_loading
        assert entry.payload == {"v": 1}
        assert entry.last_updated == 10
        assert store.is_loading

    def test_begin_fetch_dedup(self, store):
        writer = store.acquire_writer()
        assert writer.begin_fetch("k") is True
        assert writer.begin_fetch("k") is False
        assert store.get_stats()["dropped"] == 1

    def test_commit_clears_error(self, store):
        writer = store.acquire_writer()
        writer.begin_fetch("k")
        writer.fail("k", "timeout")
        assert store.get("k").error == "timeout"

        writer.begin_fetch("k")
        writer.commit("k", [1, 2], now=50)
        entry = store.get("k")
        assert entry == CacheEntry(payload=[1, 2], is_loading=False, error=None, last_updated=50)

    def test_fail_retains_payload_and_timestamp(self, store):
        writer = store.acquire_writer()
        writer.commit("k", "old", now=20)
        writer.begin_fetch("k")
        writer.fail("k", "boom")

        entry = store.get("k")
        assert entry.payload == "old"
        assert entry.last_updated == 20
        assert entry.error == "boom"
        assert not entry.is_loading
        assert store.error == "boom"

    def test_entries_are_replaced_not_mutated(self, store):
        writer = store.acquire_writer()
        writer.commit("k", "a", now=1)
        before = store.get("k")
        writer.begin_fetch("k")
        writer.commit("k", "b", now=2)
        assert before.payload == "a"
        assert before.last_updated == 1

    def test_key_and_domain_observers(self, store):
        writer = store.acquire_writer()
        key_events, domain_events = [], []
        store.subscribe(lambda d, k, e: key_events.append((k, e.payload)), key="a")
        store.subscribe(lambda d, k, e: domain_events.append((d, k)))

        writer.commit("a", 1, now=1)
        writer.commit("b", 2, now=1)

        assert key_events == [("a", 1)]
        assert domain_events == [("account", "a"), ("account", "b")]

    def test_observer_sees_complete_entry(self, store):
        writer = store.acquire_writer()
        seen = []
        store.subscribe(lambda d, k, e: seen.append(store.get(k)), key="a")
        writer.commit("a", {"balance": 5}, now=9)
        assert seen[0].payload == {"balance": 5}
        assert seen[0].last_updated == 9

    def test_unsubscribe(self, store):
        writer = store.acquire_writer()
        events = []
        unsubscribe = store.subscribe(lambda d, k, e: events.append(k))
        unsubscribe()
        unsubscribe()
        writer.commit("a", 1, now=1)
        assert events == []

    def test_failing_observer_does_not_block_others(self, store):
        writer = store.acquire_writer()
        events = []

        def broken(d, k, e):
            raise ValueError("observer bug")

        store.subscribe(broken)
        store.subscribe(lambda d, k, e: events.append(k))
        writer.commit("a", 1, now=1)
        assert events == ["a"]

    def test_concurrent_readers_see_whole_entries(self, store):
        """Readers on other threads never see a payload without its timestamp"""
        writer = store.acquire_writer()
        torn = []

        def reader():
            for _ in range(2000):
                entry = store.get("k")
                if entry.payload is not None and entry.payload != entry.last_updated:
                    torn.append(entry)

        threads = [threading.Thread(target=reader) for _ in range(4)]
        for t in threads:
            t.start()
        for i in range(1, 2000):
            writer.commit("k", i, now=i)
        for t in threads:
            t.join()

        assert torn == []

    def test_stats_and_clear(self, store):
        writer = store.acquire_writer()
        writer.commit("a", 1, now=1)
        writer.begin_fetch("b")
        writer.fail("b", "x")

        stats = store.get_stats()
        assert stats["size"] == 2
        assert stats["errors"] == 1
        assert stats["commits"] == 1
        assert stats["failures"] == 1
        assert sorted(store.keys()) == ["a", "b"]

        writer.clear()
        assert store.keys() == []
        assert store.snapshot() == {}

    def test_clear_keeps_in_flight_keys(self, store):
        writer = store.acquire_writer()
        writer.commit("a", 1, now=1)
        writer.begin_fetch("a")
        writer.commit("b", 2, now=1)

        writer.clear()
        assert store.keys() == ["a"]
        assert store.get("a") == CacheEntry(is_loading=True)
        assert store.get("b") is EMPTY_ENTRY
        assert writer.begin_fetch("a") is False
        assert store.get_stats()["dropped"] == 1

        writer.commit("a", 3, now=2)
        assert store.get("a").payload == 3

    def test_clear_notifies_observers(self, store):
        writer = store.acquire_writer()
        writer.commit("a", 1, now=1)
        writer.begin_fetch("b")
        events = []
        store.subscribe(lambda d, k, e: events.append((k, e)))

        writer.clear()
        assert events == [("a", EMPTY_ENTRY), ("b", CacheEntry(is_loading=True))]
