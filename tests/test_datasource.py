"""Tests for the interaction data sources and their retry behaviour."""

from datetime import timedelta

import pandas as pd
import pytest

from storerec.exceptions import DataSourceUnavailableError
from storerec.recommender.datasource import (
    CsvDataSource,
    InMemoryDataSource,
    build_data_source,
    derive_popularity_stats,
)
from storerec.recommender.models import InteractionType

from conftest import NOW, PURCHASE, RATING, VIEW, build_catalog, interaction


class FlakyDataSource(InMemoryDataSource):
    """Fails the first ``failures`` user lookups with a connection error."""

    def __init__(self, failures, **kwargs):
        super().__init__(**kwargs)
        self.failures = failures
        self.attempts = 0

    def _fetch_user_interactions(self, user_id):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise ConnectionError("connection reset")
        return super()._fetch_user_interactions(user_id)


def write_csv_dataset(data_dir, with_counters=False):
    products = pd.DataFrame(
        [
            {"product_id": "P1", "category_id": "sneakers", "brand_id": "nike",
             "tags": "canvas|classic", "price": 800000},
            {"product_id": "P2", "category_id": "boots", "brand_id": None,
             "tags": None, "price": None},
        ]
    )
    if with_counters:
        products["view_count"] = [10, 2]
        products["purchase_count"] = [4, 0]
    products.to_csv(data_dir / "products.csv", index=False)

    interactions = pd.DataFrame(
        [
            {"user_id": "U1", "product_id": "P1", "type": "purchase",
             "value": 2, "timestamp": "2026-02-20T10:00:00Z"},
            {"user_id": "U1", "product_id": "P2", "type": "VIEW",
             "value": None, "timestamp": "2026-02-25T10:00:00Z"},
            {"user_id": "U2", "product_id": "P1", "type": "RATING",
             "value": 4, "timestamp": "2026-02-27T10:00:00Z"},
        ]
    )
    interactions.to_csv(data_dir / "interactions.csv", index=False)


# ===== In-memory source =====


def test_user_interactions_are_chronological(data_source):
    history = data_source.fetch_user_interactions("U1")

    assert [i.product_id for i in history] == ["P1", "P4"]
    assert data_source.fetch_user_interactions("missing") == []


def test_catalog_lookup_by_ids(data_source):
    assert len(data_source.fetch_product_catalog_attributes()) == 6

    subset = data_source.fetch_product_catalog_attributes(["P1", "P9"])
    assert list(subset) == ["P1"]


def test_product_interactions_cover_all_users(data_source):
    found = data_source.fetch_product_interactions(["P2"])

    assert sorted(i.user_id for i in found) == ["U2", "U3"]


def test_recent_interactions_are_strictly_newer(data_source):
    since = NOW - timedelta(days=15)

    recent = data_source.fetch_recent_interactions(since)

    assert {i.user_id for i in recent} == {"U1", "U4"}
    assert all(i.timestamp > since for i in recent)


def test_derive_popularity_stats():
    stats = derive_popularity_stats(
        [
            interaction("U1", "P1", VIEW, 1),
            interaction("U2", "P1", VIEW, 1),
            interaction("U1", "P1", PURCHASE, 1, value=3),
            interaction("U1", "P1", RATING, 1, value=4),
            interaction("U2", "P1", RATING, 1, value=2),
        ]
    )

    assert stats["P1"].view_count == 2
    assert stats["P1"].purchase_count == 3
    assert stats["P1"].average_rating == pytest.approx(3.0)
    assert stats["P1"].total == 5


# ===== Retry =====


def test_transient_error_is_retried_once():
    source = FlakyDataSource(
        failures=1,
        interactions=[interaction("U1", "P1", VIEW, 1)],
        products=build_catalog(),
        backoff_factor=0.0,
    )

    history = source.fetch_user_interactions("U1")

    assert len(history) == 1
    assert source.attempts == 2


def test_persistent_error_raises_unavailable():
    source = FlakyDataSource(failures=5, backoff_factor=0.0)

    with pytest.raises(DataSourceUnavailableError) as exc_info:
        source.fetch_user_interactions("U1")

    assert source.attempts == 2
    assert exc_info.value.status_code == 503
    assert exc_info.value.details["operation"] == "fetch_user_interactions"
    assert exc_info.value.details["error_type"] == "ConnectionError"


def test_non_transient_errors_are_not_retried():
    class BuggySource(InMemoryDataSource):
        calls = 0

        def _fetch_global_popularity_stats(self):
            BuggySource.calls += 1
            raise KeyError("bug")

    with pytest.raises(KeyError):
        BuggySource(backoff_factor=0.0).fetch_global_popularity_stats()
    assert BuggySource.calls == 1


# ===== CSV source =====


def test_csv_source_loads_interactions_and_catalog(tmp_path):
    write_csv_dataset(tmp_path)
    source = CsvDataSource(str(tmp_path), backoff_factor=0.0)

    history = source.fetch_user_interactions("U1")
    catalog = source.fetch_product_catalog_attributes()

    assert [i.type for i in history] == [InteractionType.PURCHASE, InteractionType.VIEW]
    assert history[0].value == 2.0
    assert history[1].value == 1.0
    assert history[0].timestamp.tzinfo is not None

    assert catalog["P1"].tags == frozenset({"canvas", "classic"})
    assert catalog["P1"].price == 800000.0
    assert catalog["P2"].brand_id is None
    assert catalog["P2"].tags == frozenset()
    assert catalog["P2"].price is None


def test_csv_source_derives_popularity_when_counters_missing(tmp_path):
    write_csv_dataset(tmp_path)
    source = CsvDataSource(str(tmp_path), backoff_factor=0.0)

    stats = source.fetch_global_popularity_stats()

    assert stats["P1"].purchase_count == 2
    assert stats["P1"].average_rating == pytest.approx(4.0)


def test_csv_source_reads_popularity_counters(tmp_path):
    write_csv_dataset(tmp_path, with_counters=True)
    source = CsvDataSource(str(tmp_path), backoff_factor=0.0)

    stats = source.fetch_global_popularity_stats()

    assert stats["P1"].view_count == 10
    assert stats["P1"].purchase_count == 4
    assert stats["P2"].total == 2


def append_interaction(data_dir, user_id):
    extra = pd.DataFrame(
        [{"user_id": user_id, "product_id": "P2", "type": "VIEW",
          "value": 1, "timestamp": "2026-02-28T10:00:00Z"}]
    )
    extra.to_csv(data_dir / "interactions.csv", mode="a", header=False, index=False)


class CountingCsvDataSource(CsvDataSource):
    loads = 0

    def _load(self):
        self.loads += 1
        return super()._load()


def test_csv_source_sees_new_interactions_without_refresh(tmp_path):
    write_csv_dataset(tmp_path)
    source = CsvDataSource(str(tmp_path), backoff_factor=0.0)
    assert source.fetch_user_interactions("U3") == []

    append_interaction(tmp_path, "U3")

    history = source.fetch_user_interactions("U3")
    assert [i.product_id for i in history] == ["P2"]


def test_csv_source_sees_catalog_changes_without_refresh(tmp_path):
    write_csv_dataset(tmp_path)
    source = CsvDataSource(str(tmp_path), backoff_factor=0.0)
    assert set(source.fetch_product_catalog_attributes()) == {"P1", "P2"}

    products = pd.read_csv(tmp_path / "products.csv", dtype={"product_id": str})
    new_product = pd.DataFrame([{"product_id": "P3", "category_id": "sandals"}])
    pd.concat([products, new_product], ignore_index=True).to_csv(
        tmp_path / "products.csv", index=False
    )

    assert set(source.fetch_product_catalog_attributes()) == {"P1", "P2", "P3"}


def test_csv_source_keeps_snapshot_while_files_unchanged(tmp_path):
    write_csv_dataset(tmp_path)
    source = CountingCsvDataSource(str(tmp_path), backoff_factor=0.0)

    source.fetch_user_interactions("U1")
    source.fetch_product_catalog_attributes()
    source.fetch_global_popularity_stats()
    assert source.loads == 1

    append_interaction(tmp_path, "U3")
    source.fetch_user_interactions("U3")
    assert source.loads == 2


def test_csv_source_refresh_forces_reload(tmp_path):
    write_csv_dataset(tmp_path)
    source = CountingCsvDataSource(str(tmp_path), backoff_factor=0.0)
    source.fetch_user_interactions("U1")

    source.refresh()
    source.fetch_user_interactions("U1")

    assert source.loads == 2


def test_csv_source_missing_files_is_unavailable(tmp_path):
    source = build_data_source(str(tmp_path / "nowhere"), backoff_factor=0.0)

    with pytest.raises(DataSourceUnavailableError):
        source.fetch_product_catalog_attributes()
