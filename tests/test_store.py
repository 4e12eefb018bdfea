"""Tests for the capability stores."""

import threading

import pytest

from portal_forge.registry.store import InMemoryCapabilityStore, SqliteCapabilityStore


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        yield InMemoryCapabilityStore()
    else:
        s = SqliteCapabilityStore(str(tmp_path / "capabilities.db"))
        yield s
        s.close()


class TestCompareAndSwap:
    def test_missing_key(self, store):
        assert store.get("orders-api") is None
        assert store.keys() == []

    def test_first_write_requires_absent_key(self, store):
        assert store.compare_and_swap("orders-api", None, "v1")
        assert not store.compare_and_swap("orders-api", None, "v1-again")
        stored = store.get("orders-api")
        assert stored.value == "v1"
        assert stored.version == 1

    def test_update_requires_current_version(self, store):
        store.compare_and_swap("orders-api", None, "v1")
        assert store.compare_and_swap("orders-api", 1, "v2")
        assert not store.compare_and_swap("orders-api", 1, "stale")
        stored = store.get("orders-api")
        assert stored.value == "v2"
        assert stored.version == 2

    def test_update_of_absent_key_fails(self, store):
        assert not store.compare_and_swap("orders-api", 3, "v4")
        assert store.get("orders-api") is None

    def test_keys_keep_insertion_order(self, store):
        for key in ("b-svc", "a-svc", "c-svc"):
            store.compare_and_swap(key, None, key)
        store.compare_and_swap("a-svc", 1, "updated")
        assert store.keys() == ["b-svc", "a-svc", "c-svc"]

    def test_exactly_one_concurrent_writer_wins(self, store):
        store.compare_and_swap("orders-api", None, "v1")
        results = []
        barrier = threading.Barrier(8)

        def writer(n):
            barrier.wait()
            results.append(store.compare_and_swap("orders-api", 1, f"writer-{n}"))

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert results.count(True) == 1
        assert store.get("orders-api").version == 2

    def test_delete_requires_current_version(self, store):
        store.compare_and_swap("orders-api", None, "v1")
        store.compare_and_swap("orders-api", 1, "v2")
        assert not store.delete("orders-api", 1)
        assert store.get("orders-api").value == "v2"
        assert store.delete("orders-api", 2)
        assert store.get("orders-api") is None
        assert store.keys() == []
        assert not store.delete("orders-api", 2)


class TestSqlitePersistence:
    def test_data_survives_reopen(self, tmp_path):
        path = str(tmp_path / "capabilities.db")
        first = SqliteCapabilityStore(path)
        first.compare_and_swap("orders-api", None, "v1")
        first.close()

        second = SqliteCapabilityStore(path)
        assert second.get("orders-api").value == "v1"
        assert second.keys() == ["orders-api"]
        second.close()
