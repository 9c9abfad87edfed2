import threading

from flowkit.cache import EngineCache


def test_unbounded_when_capacity_non_positive():
    cache = EngineCache(0)
    for i, key in enumerate("abcde"):
        cache.set(key, i)
    assert len(cache) == 5


def test_negative_capacity_is_unbounded():
    cache = EngineCache(-3)
    for i in range(10):
        cache.set(str(i), i)
    assert len(cache) == 10
    assert cache.get("0") == 0


def test_lru_eviction():
    cache = EngineCache(3)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.set("c", 3)
    assert cache.get("a") == 1  # touch "a" so it becomes MRU
    cache.set("d", 4)
    assert "b" not in cache
    assert cache.get("b") is None
    assert cache.get("a") == 1
    assert len(cache) == 3


def test_set_overwrites():
    cache = EngineCache(2)
    cache.set("a", 1)
    cache.set("a", 2)
    assert len(cache) == 1
    assert cache.get("a") == 2


def test_overwrite_refreshes_recency():
    cache = EngineCache(2)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.set("a", 10)
    cache.set("c", 3)
    assert "b" not in cache
    assert cache.get("a") == 10
    assert cache.get("c") == 3


def test_delete_idempotent():
    cache = EngineCache(4)
    cache.set("a", 1)
    cache.delete("a")
    cache.delete("a")
    assert cache.get("a") is None
    assert len(cache) == 0


def test_delete_at_capacity_frees_slot():
    cache = EngineCache(2)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.delete("a")
    cache.set("c", 3)
    assert len(cache) == 2
    assert cache.get("b") == 2
    assert cache.get("c") == 3


def test_contains_does_not_touch_order():
    cache = EngineCache(2)
    cache.set("a", 1)
    cache.set("b", 2)
    assert "a" in cache
    cache.set("c", 3)
    assert "a" not in cache
    assert "b" in cache


def test_capacity_property():
    assert EngineCache(7).capacity == 7
    assert EngineCache().capacity == 0


def test_concurrent_sets_respect_capacity():
    cache = EngineCache(5)

    def worker(offset):
        for i in range(200):
            cache.set(f"{offset}-{i}", i)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert len(cache) == 5