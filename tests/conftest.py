"""Shared fixtures for StoreRec tests.

Provides a controllable clock and a small shoe-store catalog with a handful
of users whose histories exercise every scoring strategy.
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List

import pytest

# Add project root to Python path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from storerec.api.metrics import metrics_service
from storerec.config import Settings
from storerec.recommender.cache import InMemoryRecommendationCache
from storerec.recommender.datasource import InMemoryDataSource
from storerec.recommender.models import Interaction, InteractionType, ProductAttributes
from storerec.recommender.scoring import ScoringEngine
from storerec.recommender.service import RecommendationService

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


def interaction(
    user_id: str,
    product_id: str,
    type_: InteractionType,
    days_ago: float,
    value: float = 1.0,
) -> Interaction:
    return Interaction(
        user_id=user_id,
        product_id=product_id,
        type=type_,
        timestamp=NOW - timedelta(days=days_ago),
        value=value,
    )


PURCHASE = InteractionType.PURCHASE
VIEW = InteractionType.VIEW
RATING = InteractionType.RATING


def build_catalog() -> List[ProductAttributes]:
    return [
        ProductAttributes("P1", "sneakers", "nike", frozenset({"canvas"}), 800_000),
        ProductAttributes("P2", "sneakers", "nike", frozenset({"canvas"}), 900_000),
        ProductAttributes("P3", "boots", "timberland", frozenset({"leather"}), 2_500_000),
        ProductAttributes("P4", "sneakers", "adidas", frozenset({"lightweight"}), 1_200_000),
        ProductAttributes("P5", "sandals", "birkenstock", frozenset({"leather"}), 1_800_000),
        ProductAttributes("P6", "running", "asics", frozenset({"lightweight"}), 2_000_000),
    ]


def build_interactions() -> List[Interaction]:
    return [
        # U1: bought P1, browsed P4
        interaction("U1", "P1", PURCHASE, 20),
        interaction("U1", "P4", VIEW, 10),
        # U2 and U3 share P1 with U1
        interaction("U2", "P1", PURCHASE, 30),
        interaction("U2", "P2", PURCHASE, 30),
        interaction("U2", "P3", PURCHASE, 30),
        interaction("U3", "P1", PURCHASE, 30),
        interaction("U3", "P2", PURCHASE, 30),
        interaction("U3", "P5", VIEW, 30),
        # U4: heavy recent browsing of P6
        *[interaction("U4", "P6", VIEW, 0.1 * i) for i in range(1, 6)],
        # U5: only overlaps with U3
        interaction("U5", "P5", PURCHASE, 15),
    ]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(retry_backoff_factor=0.0)


@pytest.fixture
def data_source() -> InMemoryDataSource:
    return InMemoryDataSource(
        interactions=build_interactions(),
        products=build_catalog(),
        backoff_factor=0.0,
    )


@pytest.fixture
def engine(data_source, settings, clock) -> ScoringEngine:
    return ScoringEngine(data_source, settings, clock=clock)


@pytest.fixture
def cache(clock) -> InMemoryRecommendationCache:
    return InMemoryRecommendationCache(clock=clock)


@pytest.fixture
def service(engine, cache) -> RecommendationService:
    return RecommendationService(engine=engine, cache=cache)


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics_service.reset()
    yield
    metrics_service.reset()
