from __future__ import annotations

from signalcore.cache import IndexCache
from signalcore.index_builder import build_index
from signalcore.schemas import SignalRecord


class _BrokenRedis:
    def get(self, key):
        raise ConnectionError("redis down")

    def set(self, key, value):
        raise ConnectionError("redis down")

    def delete(self, key):
        raise ConnectionError("redis down")


def test_index_round_trips_through_cache(fake_redis) -> None:
    cache = IndexCache(client=fake_redis, key="k")
    index = build_index([SignalRecord(filename="a.md", concepts=["x"], category="science")])

    cache.save(index)

    assert cache.load() == index
    cache.clear()
    assert cache.load() is None


def test_corrupt_entry_is_ignored(fake_redis) -> None:
    fake_redis.set("k", "{not json")

    assert IndexCache(client=fake_redis, key="k").load() is None


def test_backend_errors_only_log() -> None:
    cache = IndexCache(client=_BrokenRedis(), key="k")

    assert cache.load() is None
    cache.save(build_index([]))
    cache.clear()
