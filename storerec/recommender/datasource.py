"""Interaction data sources.

The scoring engine only reads from these: per-user interaction history,
catalog attributes, popularity counters, and the cross-user lookups needed
for co-occurrence and trending. Every public fetch gets one retry with
exponential backoff on transient connectivity errors; if that also fails the
error surfaces as DataSourceUnavailableError.
"""

import logging
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import backoff
import pandas as pd

from storerec.exceptions import DataSourceUnavailableError
from storerec.recommender.models import (
    Interaction,
    InteractionType,
    PopularityStats,
    ProductAttributes,
)

# Configure module logger
logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (ConnectionError, TimeoutError, OSError)

DEFAULT_MAX_TRIES = 2
DEFAULT_BACKOFF_FACTOR = 0.2

INTERACTIONS_FILENAME = "interactions.csv"
PRODUCTS_FILENAME = "products.csv"
TAG_SEPARATOR = "|"


def _log_backoff(details: Dict[str, Any]) -> None:
    logger.warning(
        "Transient data source error, retrying",
        extra={
            "operation": details["target"].__name__,
            "tries": details["tries"],
            "wait_seconds": round(details["wait"], 3),
        },
    )


class InteractionDataSource(ABC):
    """Read-only access to interactions and catalog data."""

    def __init__(
        self,
        max_tries: int = DEFAULT_MAX_TRIES,
        backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
    ):
        self.max_tries = max_tries
        self.backoff_factor = backoff_factor

    def _call(self, operation: str, fn: Callable, *args: Any) -> Any:
        retrying = backoff.on_exception(
            backoff.expo,
            TRANSIENT_ERRORS,
            max_tries=self.max_tries,
            factor=self.backoff_factor,
            jitter=backoff.full_jitter,
            on_backoff=_log_backoff,
        )(fn)
        try:
            return retrying(*args)
        except TRANSIENT_ERRORS as e:
            logger.error(
                "Data source unavailable",
                extra={"operation": operation, "error": str(e)},
            )
            raise DataSourceUnavailableError(operation, e) from e

    def fetch_user_interactions(self, user_id: str) -> List[Interaction]:
        """Return a user's interactions, most recent last."""
        return self._call(
            "fetch_user_interactions", self._fetch_user_interactions, user_id
        )

    def fetch_product_catalog_attributes(
        self, product_ids: Optional[Iterable[str]] = None
    ) -> Dict[str, ProductAttributes]:
        """Return catalog attributes for the given products, or all if None."""
        ids = None if product_ids is None else list(product_ids)
        return self._call(
            "fetch_product_catalog_attributes", self._fetch_product_catalog_attributes, ids
        )

    def fetch_global_popularity_stats(self) -> Dict[str, PopularityStats]:
        """Return all-time popularity counters keyed by product id."""
        return self._call(
            "fetch_global_popularity_stats", self._fetch_global_popularity_stats
        )

    def fetch_product_interactions(
        self, product_ids: Iterable[str]
    ) -> List[Interaction]:
        """Return every user's interactions with the given products."""
        return self._call(
            "fetch_product_interactions",
            self._fetch_product_interactions,
            list(product_ids),
        )

    def fetch_recent_interactions(self, since: datetime) -> List[Interaction]:
        """Return interactions of all users newer than ``since``."""
        return self._call(
            "fetch_recent_interactions", self._fetch_recent_interactions, since
        )

    @abstractmethod
    def _fetch_user_interactions(self, user_id: str) -> List[Interaction]:
        ...

    @abstractmethod
    def _fetch_product_catalog_attributes(
        self, product_ids: Optional[List[str]]
    ) -> Dict[str, ProductAttributes]:
        ...

    @abstractmethod
    def _fetch_global_popularity_stats(self) -> Dict[str, PopularityStats]:
        ...

    @abstractmethod
    def _fetch_product_interactions(
        self, product_ids: List[str]
    ) -> List[Interaction]:
        ...

    @abstractmethod
    def _fetch_recent_interactions(self, since: datetime) -> List[Interaction]:
        ...


def derive_popularity_stats(
    interactions: Iterable[Interaction],
) -> Dict[str, PopularityStats]:
    """Aggregate view, purchase and rating counters from raw interactions."""
    views: Dict[str, int] = defaultdict(int)
    purchases: Dict[str, int] = defaultdict(int)
    ratings: Dict[str, List[float]] = defaultdict(list)

    for interaction in interactions:
        pid = interaction.product_id
        if interaction.type == InteractionType.VIEW:
            views[pid] += 1
        elif interaction.type == InteractionType.PURCHASE:
            purchases[pid] += int(max(1, interaction.value))
        elif interaction.type == InteractionType.RATING:
            ratings[pid].append(interaction.value)

    product_ids = set(views) | set(purchases) | set(ratings)
    return {
        pid: PopularityStats(
            product_id=pid,
            view_count=views[pid],
            purchase_count=purchases[pid],
            average_rating=(
                sum(ratings[pid]) / len(ratings[pid]) if ratings[pid] else 0.0
            ),
        )
        for pid in product_ids
    }


class InMemoryDataSource(InteractionDataSource):
    """Data source over in-process collections.

    Used by tests and as the backing store of the CSV source once loaded.
    """

    def __init__(
        self,
        interactions: Iterable[Interaction] = (),
        products: Iterable[ProductAttributes] = (),
        popularity: Optional[Dict[str, PopularityStats]] = None,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self._interactions = sorted(interactions, key=lambda i: i.timestamp)
        self._products = {p.product_id: p for p in products}
        self._by_user: Dict[str, List[Interaction]] = defaultdict(list)
        self._by_product: Dict[str, List[Interaction]] = defaultdict(list)
        for interaction in self._interactions:
            self._by_user[interaction.user_id].append(interaction)
            self._by_product[interaction.product_id].append(interaction)
        self._popularity = (
            popularity
            if popularity is not None
            else derive_popularity_stats(self._interactions)
        )

    def _fetch_user_interactions(self, user_id: str) -> List[Interaction]:
        return list(self._by_user.get(user_id, []))

    def _fetch_product_catalog_attributes(
        self, product_ids: Optional[List[str]]
    ) -> Dict[str, ProductAttributes]:
        if product_ids is None:
            return dict(self._products)
        return {
            pid: self._products[pid] for pid in product_ids if pid in self._products
        }

    def _fetch_global_popularity_stats(self) -> Dict[str, PopularityStats]:
        return dict(self._popularity)

    def _fetch_product_interactions(
        self, product_ids: List[str]
    ) -> List[Interaction]:
        found: List[Interaction] = []
        for pid in product_ids:
            found.extend(self._by_product.get(pid, []))
        return sorted(found, key=lambda i: i.timestamp)

    def _fetch_recent_interactions(self, since: datetime) -> List[Interaction]:
        return [i for i in self._interactions if i.timestamp > since]


class CsvDataSource(InteractionDataSource):
    """Data source backed by ``interactions.csv`` and ``products.csv``.

    interactions.csv columns: user_id, product_id, type, timestamp and an
    optional value. products.csv columns: product_id plus optional
    category_id, brand_id, tags (``|`` separated), price, view_count,
    purchase_count, average_rating. When the popularity columns are missing
    the counters are derived from the interactions.

    Files are read lazily on first use and reread whenever either file's
    modification time or size changes, or after refresh().
    """

    def __init__(self, data_dir: str, **kwargs: Any):
        super().__init__(**kwargs)
        self.data_dir = Path(data_dir)
        self._lock = threading.Lock()
        self._loaded: Optional[InMemoryDataSource] = None
        self._loaded_signature: Optional[Tuple[Tuple[int, int], ...]] = None

    def refresh(self) -> None:
        """Drop the loaded snapshot so the next fetch rereads the files."""
        with self._lock:
            self._loaded = None
            self._loaded_signature = None

    def _file_signature(self) -> Tuple[Tuple[int, int], ...]:
        signature = []
        for filename in (INTERACTIONS_FILENAME, PRODUCTS_FILENAME):
            stat = (self.data_dir / filename).stat()
            signature.append((stat.st_mtime_ns, stat.st_size))
        return tuple(signature)

    def _snapshot(self) -> InMemoryDataSource:
        with self._lock:
            signature = self._file_signature()
            if self._loaded is None or signature != self._loaded_signature:
                if self._loaded is not None:
                    logger.info(
                        "Interaction data changed on disk, reloading",
                        extra={"data_dir": str(self.data_dir)},
                    )
                self._loaded = self._load()
                self._loaded_signature = signature
            return self._loaded

    def _load(self) -> InMemoryDataSource:
        interactions_path = self.data_dir / INTERACTIONS_FILENAME
        products_path = self.data_dir / PRODUCTS_FILENAME

        logger.info(f"Loading interaction data from {self.data_dir}")

        interactions_df = pd.read_csv(
            interactions_path, dtype={"user_id": str, "product_id": str}
        )
        missing = {"user_id", "product_id", "type", "timestamp"} - set(
            interactions_df.columns
        )
        if missing:
            raise ValueError(f"{interactions_path} missing required columns: {missing}")
        if "value" not in interactions_df.columns:
            interactions_df["value"] = 1.0
        interactions_df["value"] = interactions_df["value"].fillna(1.0)
        interactions_df["timestamp"] = pd.to_datetime(
            interactions_df["timestamp"], utc=True
        )

        interactions = [
            Interaction(
                user_id=row.user_id,
                product_id=row.product_id,
                type=InteractionType(str(row.type).upper()),
                timestamp=row.timestamp.to_pydatetime(),
                value=float(row.value),
            )
            for row in interactions_df.itertuples(index=False)
        ]

        products_df = pd.read_csv(
            products_path,
            dtype={"product_id": str, "category_id": str, "brand_id": str, "tags": str},
        )
        products = [
            self._row_to_attributes(row) for row in products_df.to_dict("records")
        ]

        popularity = None
        counter_columns = {"view_count", "purchase_count"}
        if counter_columns.issubset(products_df.columns):
            popularity = self._popularity_from_frame(products_df)

        logger.info(
            "Interaction data loaded",
            extra={
                "num_interactions": len(interactions),
                "num_products": len(products),
                "num_users": int(interactions_df["user_id"].nunique()),
            },
        )

        return InMemoryDataSource(
            interactions=interactions, products=products, popularity=popularity
        )

    @staticmethod
    def _row_to_attributes(row: Dict[str, Any]) -> ProductAttributes:
        def clean(value: Any) -> Optional[Any]:
            return None if pd.isna(value) else value

        tags = clean(row.get("tags"))
        price = clean(row.get("price"))
        return ProductAttributes(
            product_id=row["product_id"],
            category_id=clean(row.get("category_id")),
            brand_id=clean(row.get("brand_id")),
            tags=frozenset(
                t.strip() for t in tags.split(TAG_SEPARATOR) if t.strip()
            )
            if tags
            else frozenset(),
            price=float(price) if price is not None else None,
        )

    @staticmethod
    def _popularity_from_frame(frame: pd.DataFrame) -> Dict[str, PopularityStats]:
        frame = frame.copy()
        if "average_rating" not in frame.columns:
            frame["average_rating"] = 0.0
        frame[["view_count", "purchase_count", "average_rating"]] = frame[
            ["view_count", "purchase_count", "average_rating"]
        ].fillna(0)
        return {
            row.product_id: PopularityStats(
                product_id=row.product_id,
                view_count=int(row.view_count),
                purchase_count=int(row.purchase_count),
                average_rating=float(row.average_rating),
            )
            for row in frame.itertuples(index=False)
        }

    def _fetch_user_interactions(self, user_id: str) -> List[Interaction]:
        return self._snapshot()._fetch_user_interactions(user_id)

    def _fetch_product_catalog_attributes(
        self, product_ids: Optional[List[str]]
    ) -> Dict[str, ProductAttributes]:
        return self._snapshot()._fetch_product_catalog_attributes(product_ids)

    def _fetch_global_popularity_stats(self) -> Dict[str, PopularityStats]:
        return self._snapshot()._fetch_global_popularity_stats()

    def _fetch_product_interactions(
        self, product_ids: List[str]
    ) -> List[Interaction]:
        return self._snapshot()._fetch_product_interactions(product_ids)

    def _fetch_recent_interactions(self, since: datetime) -> List[Interaction]:
        return self._snapshot()._fetch_recent_interactions(since)


def build_data_source(
    data_dir: str,
    max_tries: int = DEFAULT_MAX_TRIES,
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
) -> CsvDataSource:
    """Create the CSV-backed source used by the API and CLI."""
    return CsvDataSource(
        data_dir, max_tries=max_tries, backoff_factor=backoff_factor
    )

