"""Tests for the recommendation cache stores."""

import pickle
import threading
import time
from datetime import timedelta

import joblib
import pytest

from storerec.exceptions import CacheUnavailableError, InvalidAlgorithmError
from storerec.recommender.cache import (
    FileRecommendationCache,
    InMemoryRecommendationCache,
    build_cache,
)
from storerec.recommender.models import (
    Algorithm,
    RecommendationCacheEntry,
    ScoredProduct,
)

from conftest import NOW, FakeClock

PRODUCTS = [ScoredProduct("P2", 0.9), ScoredProduct("P3", 0.5)]


@pytest.fixture(params=["memory", "file"])
def any_cache(request, tmp_path, clock):
    """Run the shared contract against both stores."""
    if request.param == "memory":
        return InMemoryRecommendationCache(clock=clock)
    return FileRecommendationCache(str(tmp_path / "cache"), clock=clock)


def test_put_then_get_returns_entry(any_cache):
    entry = any_cache.put("U1", Algorithm.HYBRID, PRODUCTS)

    loaded = any_cache.get("U1", Algorithm.HYBRID)

    assert loaded == entry
    assert loaded.products == tuple(PRODUCTS)
    assert loaded.generated_at == NOW
    assert loaded.expires_at == NOW + timedelta(hours=24)


def test_get_missing_key_returns_none(any_cache):
    assert any_cache.get("U1", Algorithm.HYBRID) is None


def test_entries_are_keyed_by_user_and_algorithm(any_cache):
    any_cache.put("U1", Algorithm.HYBRID, PRODUCTS)

    assert any_cache.get("U1", Algorithm.TRENDING) is None
    assert any_cache.get("U2", Algorithm.HYBRID) is None


def test_entry_expires_exactly_at_ttl(any_cache, clock):
    any_cache.put("U1", Algorithm.HYBRID, PRODUCTS)

    clock.advance(timedelta(hours=23, minutes=59))
    assert any_cache.get("U1", Algorithm.HYBRID) is not None

    clock.advance(timedelta(minutes=1))
    assert any_cache.get("U1", Algorithm.HYBRID) is None


def test_put_replaces_previous_entry(any_cache, clock):
    any_cache.put("U1", Algorithm.HYBRID, PRODUCTS)
    clock.advance(timedelta(hours=1))

    new_products = [ScoredProduct("P9", 1.0)]
    any_cache.put("U1", Algorithm.HYBRID, new_products)

    loaded = any_cache.get("U1", Algorithm.HYBRID)
    assert loaded.products == tuple(new_products)
    assert loaded.generated_at == NOW + timedelta(hours=1)


def test_invalidate_single_algorithm(any_cache):
    any_cache.put("U1", Algorithm.HYBRID, PRODUCTS)
    any_cache.put("U1", Algorithm.TRENDING, PRODUCTS)

    assert any_cache.invalidate("U1", Algorithm.HYBRID) == 1
    assert any_cache.get("U1", Algorithm.HYBRID) is None
    assert any_cache.get("U1", Algorithm.TRENDING) is not None


def test_invalidate_all_algorithms(any_cache):
    for algorithm in Algorithm:
        any_cache.put("U1", algorithm, PRODUCTS)
    any_cache.put("U2", Algorithm.HYBRID, PRODUCTS)

    assert any_cache.invalidate("U1") == len(Algorithm)
    assert any_cache.invalidate("U1") == 0
    assert any_cache.get("U2", Algorithm.HYBRID) is not None


def test_sweep_expired_removes_only_expired(any_cache, clock):
    any_cache.put("old", Algorithm.HYBRID, PRODUCTS)
    clock.advance(timedelta(hours=12))
    any_cache.put("new", Algorithm.HYBRID, PRODUCTS)
    clock.advance(timedelta(hours=12))

    assert any_cache.sweep_expired() == 1
    assert any_cache.get("new", Algorithm.HYBRID) is not None
    assert any_cache.sweep_expired() == 0


def test_algorithm_names_are_parsed(any_cache):
    any_cache.put("U1", "hybrid", PRODUCTS)

    assert any_cache.get("U1", Algorithm.HYBRID) is not None

    with pytest.raises(InvalidAlgorithmError):
        any_cache.get("U1", "RANDOM")


def test_memory_cache_drops_expired_entries_on_read(cache, clock):
    cache.put("U1", Algorithm.HYBRID, PRODUCTS)
    assert len(cache) == 1

    clock.advance(timedelta(days=2))
    cache.get("U1", Algorithm.HYBRID)

    assert len(cache) == 0


def test_file_cache_persists_across_instances(tmp_path):
    clock = FakeClock()
    first = FileRecommendationCache(str(tmp_path), clock=clock)
    first.put("U1", Algorithm.TRENDING, PRODUCTS)

    second = FileRecommendationCache(str(tmp_path), clock=clock)

    assert second.get("U1", Algorithm.TRENDING).products == tuple(PRODUCTS)
    assert not list(tmp_path.glob("*.tmp"))


def test_file_cache_stores_parallel_arrays(tmp_path, clock):
    cache = FileRecommendationCache(str(tmp_path), clock=clock)
    cache.put("U1", Algorithm.HYBRID, PRODUCTS)

    (path,) = tmp_path.glob("*.joblib")
    record = joblib.load(path)

    assert record["products"] == ["P2", "P3"]
    assert record["scores"] == [0.9, 0.5]
    assert record["algorithm"] == "HYBRID"


def test_file_cache_discards_malformed_record(tmp_path, clock):
    cache = FileRecommendationCache(str(tmp_path), clock=clock)
    cache.put("U1", Algorithm.HYBRID, PRODUCTS)
    (path,) = tmp_path.glob("*.joblib")

    joblib.dump({"products": ["P1", "P2"], "scores": [1.0]}, path)

    assert cache.get("U1", Algorithm.HYBRID) is None


def test_file_cache_unavailable_raises(tmp_path, clock):
    not_a_dir = tmp_path / "blocker"
    not_a_dir.write_text("occupied")
    cache = FileRecommendationCache(str(not_a_dir), clock=clock)

    with pytest.raises(CacheUnavailableError) as exc_info:
        cache.put("U1", Algorithm.HYBRID, PRODUCTS)
    assert exc_info.value.status_code == 503

    with pytest.raises(CacheUnavailableError):
        cache.get("U1", Algorithm.HYBRID)


def test_entry_record_rejects_mismatched_arrays():
    record = {
        "user_id": "U1",
        "algorithm": "HYBRID",
        "products": ["P1", "P2"],
        "scores": [1.0],
        "generated_at": NOW,
        "expires_at": NOW,
    }

    with pytest.raises(ValueError):
        RecommendationCacheEntry.from_record(record)


def test_build_cache_backends(tmp_path):
    assert isinstance(build_cache("memory"), InMemoryRecommendationCache)
    assert isinstance(
        build_cache("file", str(tmp_path)), FileRecommendationCache
    )

    with pytest.raises(ValueError):
        build_cache("file")
    with pytest.raises(ValueError):
        build_cache("redis")


def test_file_cache_removes_temp_file_when_dump_fails(tmp_path, clock, monkeypatch):
    def failing_dump(value, handle):
        raise pickle.PicklingError("cannot pickle")

    monkeypatch.setattr(joblib, "dump", failing_dump)
    cache = FileRecommendationCache(str(tmp_path), clock=clock)

    with pytest.raises(pickle.PicklingError):
        cache.put("U1", Algorithm.HYBRID, PRODUCTS)

    assert not list(tmp_path.glob("*.tmp"))
    assert not list(tmp_path.glob("*.joblib"))


def test_file_cache_expiry_delete_does_not_drop_concurrent_put(tmp_path, clock):
    fresh_products = [ScoredProduct("P9", 1.0)]

    class SlowDeleteCache(FileRecommendationCache):
        """Starts a competing put right before unlinking the expired file."""

        writer = None

        def _delete(self, key):
            if self.writer is None:
                self.writer = threading.Thread(
                    target=self.put, args=("U1", Algorithm.HYBRID, fresh_products)
                )
                self.writer.start()
                time.sleep(0.1)
            return super()._delete(key)

    cache = SlowDeleteCache(str(tmp_path), clock=clock)
    cache.put("U1", Algorithm.HYBRID, PRODUCTS)
    clock.advance(timedelta(hours=25))

    assert cache.get("U1", Algorithm.HYBRID) is None
    cache.writer.join(timeout=5)

    loaded = cache.get("U1", Algorithm.HYBRID)
    assert loaded is not None
    assert loaded.products == tuple(fresh_products)
