from __future__ import annotations

import threading
from pathlib import Path

import pytest

from otm_importer.state.store import JsonFileStore, MemoryStore


@pytest.fixture(params=["memory", "file"])
def store(request, clock, tmp_path: Path):
    if request.param == "memory":
        return MemoryStore(clock=clock)
    return JsonFileStore(tmp_path / "state", clock=clock)


def test_set_get_delete(store):
    store.set("ctx:a", {"token": "t1", "n": [1, 2]})
    assert store.get("ctx:a") == {"token": "t1", "n": [1, 2]}
    store.delete("ctx:a")
    assert store.get("ctx:a") is None
    store.delete("ctx:a")  # deleting twice is fine


def test_ttl_expiry(store, clock):
    store.set("ctx:a", "v", ttl_seconds=60)
    clock.advance(59)
    assert store.get("ctx:a") == "v"
    clock.advance(1)
    assert store.get("ctx:a") is None


def test_pop_is_take_once(store):
    store.set("draft:x", {"rows": {}})
    assert store.pop("draft:x") == {"rows": {}}
    assert store.pop("draft:x") is None


def test_pop_skips_expired(store, clock):
    store.set("draft:x", "v", ttl_seconds=5)
    clock.advance(5)
    assert store.pop("draft:x") is None


def test_concurrent_pop_hands_value_to_one_reader(store):
    for round_no in range(20):
        store.set("draft:x", {"round": round_no})
        barrier = threading.Barrier(6)
        got: list[object] = []

        def take() -> None:
            barrier.wait()
            value = store.pop("draft:x")
            if value is not None:
                got.append(value)

        threads = [threading.Thread(target=take) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert got == [{"round": round_no}]


def test_keys_by_prefix_skip_expired(store, clock):
    store.set("ctx:a", 1)
    store.set("ctx:b", 2, ttl_seconds=5)
    store.set("draft:c", 3)
    clock.advance(10)
    assert store.keys("ctx:") == ["ctx:a"]
    assert store.keys() == ["ctx:a", "draft:c"]


def test_memory_store_returns_copies(clock):
    store = MemoryStore(clock=clock)
    value = {"rows": {"1": {"major1_correct": "5"}}}
    store.set("k", value)
    value["rows"]["1"]["major1_correct"] = "6"
    got = store.get("k")
    got["rows"].clear()
    assert store.get("k") == {"rows": {"1": {"major1_correct": "5"}}}


def test_file_store_survives_new_instance(clock, tmp_path: Path):
    JsonFileStore(tmp_path / "state", clock=clock).set("ctx:cli", {"token": "abc"}, ttl_seconds=100)
    assert JsonFileStore(tmp_path / "state", clock=clock).get("ctx:cli") == {"token": "abc"}


def test_file_store_drops_corrupt_file(clock, tmp_path: Path):
    store = JsonFileStore(tmp_path / "state", clock=clock)
    store.set("ctx:cli", {"token": "abc"})
    path = store._path("ctx:cli")
    path.write_text("{not json", encoding="utf-8")
    assert store.get("ctx:cli") is None
    assert not path.exists()


def test_file_store_keys_on_missing_directory(clock, tmp_path: Path):
    assert JsonFileStore(tmp_path / "nothing", clock=clock).keys() == []
