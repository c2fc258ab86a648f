"""Data model for the recommendation core.

Interactions, catalog attributes and popularity counters come from the
interaction data source; scored products and cache entries are produced here.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Sequence, Tuple

from storerec.exceptions import InvalidAlgorithmError


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class Algorithm(str, Enum):
    """Recommendation strategies the engine can run."""

    COLLABORATIVE = "COLLABORATIVE"
    CONTENT_BASED = "CONTENT_BASED"
    TRENDING = "TRENDING"
    HYBRID = "HYBRID"

    @classmethod
    def parse(cls, value: Any) -> "Algorithm":
        """Parse an algorithm name, case-insensitively.

        Raises:
            InvalidAlgorithmError: If the value names no known algorithm.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                pass
        raise InvalidAlgorithmError(value, allowed=[a.value for a in cls])

    @classmethod
    def from_type(cls, value: str) -> "Algorithm":
        """Map a storefront ``type`` alias to an algorithm.

        Unknown aliases resolve to HYBRID, the personalised default.
        """
        return _TYPE_ALIASES.get(value.strip().lower(), cls.HYBRID)


_TYPE_ALIASES = {
    "personalized": Algorithm.HYBRID,
    "trending": Algorithm.TRENDING,
    "similar": Algorithm.CONTENT_BASED,
    "collaborative": Algorithm.COLLABORATIVE,
}


class InteractionType(str, Enum):
    """Kinds of user interaction with a product."""

    VIEW = "VIEW"
    PURCHASE = "PURCHASE"
    RATING = "RATING"


@dataclass(frozen=True)
class Interaction:
    """A single, immutable user interaction with a product."""

    user_id: str
    product_id: str
    type: InteractionType
    timestamp: datetime
    value: float = 1.0


@dataclass(frozen=True)
class ProductAttributes:
    """Catalog attributes used for content similarity."""

    product_id: str
    category_id: Optional[str] = None
    brand_id: Optional[str] = None
    tags: FrozenSet[str] = field(default_factory=frozenset)
    price: Optional[float] = None


@dataclass(frozen=True)
class PopularityStats:
    """All-time aggregate counters for a product."""

    product_id: str
    view_count: int = 0
    purchase_count: int = 0
    average_rating: float = 0.0

    @property
    def total(self) -> int:
        return self.view_count + self.purchase_count


@dataclass(frozen=True)
class ScoredProduct:
    """A product id with its recommendation score."""

    product_id: str
    score: float

    def to_dict(self) -> Dict[str, Any]:
        return {"productId": self.product_id, "score": self.score}


def rank_scores(
    scores: Dict[str, float], limit: Optional[int] = None
) -> List["ScoredProduct"]:
    """Order a score mapping into ScoredProducts.

    Descending by score, ties broken by product id ascending so identical
    inputs always produce the same ordering. Negative scores are clipped to 0.
    """
    ranked = sorted(
        ((pid, max(0.0, float(score))) for pid, score in scores.items()),
        key=lambda item: (-item[1], item[0]),
    )
    if limit is not None:
        ranked = ranked[:limit]
    return [ScoredProduct(product_id=pid, score=score) for pid, score in ranked]


@dataclass(frozen=True)
class RecommendationCacheEntry:
    """Most recent scored list for one (user, algorithm) pair.

    Entries are immutable: a recomputation produces a new entry that replaces
    the previous one whole.
    """

    user_id: str
    algorithm: Algorithm
    products: Tuple[ScoredProduct, ...]
    generated_at: datetime
    expires_at: datetime

    @classmethod
    def create(
        cls,
        user_id: str,
        algorithm: Algorithm,
        products: Sequence[ScoredProduct],
        generated_at: datetime,
        ttl: timedelta,
    ) -> "RecommendationCacheEntry":
        return cls(
            user_id=user_id,
            algorithm=algorithm,
            products=tuple(products),
            generated_at=generated_at,
            expires_at=generated_at + ttl,
        )

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def to_record(self) -> Dict[str, Any]:
        """Persisted layout: products and scores as parallel arrays."""
        return {
            "user_id": self.user_id,
            "algorithm": self.algorithm.value,
            "products": [p.product_id for p in self.products],
            "scores": [p.score for p in self.products],
            "generated_at": self.generated_at,
            "expires_at": self.expires_at,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "RecommendationCacheEntry":
        products = record["products"]
        scores = record["scores"]
        if len(products) != len(scores):
            raise ValueError(
                f"Corrupt cache record: {len(products)} products but {len(scores)} scores"
            )
        return cls(
            user_id=record["user_id"],
            algorithm=Algorithm.parse(record["algorithm"]),
            products=tuple(
                ScoredProduct(product_id=pid, score=float(score))
                for pid, score in zip(products, scores)
            ),
            generated_at=record["generated_at"],
            expires_at=record["expires_at"],
        )
