"""Recommendation service façade.

Public entry point for recommendations: validates the request, serves fresh
cache entries, and otherwise runs the scoring engine and caches the result.
Cache outages never fail a request; the service logs a warning and computes
fresh results instead.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from storerec.config import DEFAULT_LIMIT, MAX_LIMIT
from storerec.exceptions import CacheUnavailableError
from storerec.recommender.cache import RecommendationCache
from storerec.recommender.models import (
    Algorithm,
    Interaction,
    InteractionType,
    RecommendationCacheEntry,
    ScoredProduct,
)
from storerec.recommender.scoring import ScoringEngine

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_ALGORITHM = Algorithm.HYBRID

# Entries that depend on the user's own history
PERSONALISED_ALGORITHMS = (
    Algorithm.COLLABORATIVE,
    Algorithm.CONTENT_BASED,
    Algorithm.HYBRID,
)

# Interactions that change a user's profile enough to recompute
MATERIAL_INTERACTIONS = (InteractionType.PURCHASE, InteractionType.RATING)


@dataclass
class RecommendationResult:
    """Outcome of a recommendation request.

    Attributes:
        products: Scored products, best first.
        cached: True when served from a fresh cache entry.
        algorithm: Algorithm that was requested.
        success: Always True; failures raise instead.
    """

    products: List[ScoredProduct]
    cached: bool
    algorithm: Algorithm
    success: bool = field(default=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "products": [p.to_dict() for p in self.products],
            "cached": self.cached,
            "algorithm": self.algorithm.value,
        }


class RecommendationService:
    """Orchestrates cache lookups and scoring.

    Args:
        engine: Scoring engine used on cache misses.
        cache: Recommendation cache store.
        on_lookup: Optional callback receiving True for a cache hit and False
            for a miss, used for metrics.
    """

    def __init__(
        self,
        engine: ScoringEngine,
        cache: RecommendationCache,
        on_lookup: Optional[Callable[[bool], None]] = None,
    ):
        self.engine = engine
        self.cache = cache
        self.on_lookup = on_lookup

    def get_recommendations(
        self,
        user_id: str,
        algorithm: Any = DEFAULT_ALGORITHM,
        limit: int = DEFAULT_LIMIT,
    ) -> RecommendationResult:
        """Get up to ``limit`` recommendations for a user.

        Args:
            user_id: Identity of the requesting user.
            algorithm: Algorithm enum member or name.
            limit: Number of products to return, 1 to 50.

        Returns:
            RecommendationResult tagged with whether it came from the cache.

        Raises:
            InvalidAlgorithmError: If the algorithm is not recognised.
            ValueError: If limit is outside 1..50.
            DataSourceUnavailableError: If scoring cannot read its inputs.
        """
        start_time = time.time()
        algorithm = Algorithm.parse(algorithm)
        if not 1 <= limit <= MAX_LIMIT:
            raise ValueError(f"limit must be between 1 and {MAX_LIMIT}, got {limit}")

        # An empty entry predates catalog products and is never served
        entry = self._cache_get(user_id, algorithm)
        if entry is not None and entry.products:
            self._record_lookup(True)
            logger.info(
                "Recommendation cache hit",
                extra={"user_id": user_id, "algorithm": algorithm.value},
            )
            return RecommendationResult(
                products=list(entry.products[:limit]),
                cached=True,
                algorithm=algorithm,
            )

        self._record_lookup(False)
        logger.info(
            "Recommendation cache miss",
            extra={"user_id": user_id, "algorithm": algorithm.value},
        )

        # Score the full page size so later requests with any limit can hit
        products = self.engine.score(user_id, algorithm, MAX_LIMIT)
        if products:
            self._cache_put(user_id, algorithm, products)

        logger.info(
            "Recommendations generated",
            extra={
                "user_id": user_id,
                "algorithm": algorithm.value,
                "num_recommendations": min(limit, len(products)),
                "total_time_ms": round((time.time() - start_time) * 1000, 2),
            },
        )
        return RecommendationResult(
            products=products[:limit],
            cached=False,
            algorithm=algorithm,
        )

    def invalidate(self, user_id: str, algorithm: Optional[Any] = None) -> int:
        """Drop cached entries for a user; returns how many were removed."""
        if algorithm is not None:
            algorithm = Algorithm.parse(algorithm)
        try:
            return self.cache.invalidate(user_id, algorithm)
        except CacheUnavailableError as e:
            logger.warning(
                "Cache unavailable, nothing invalidated",
                extra={"user_id": user_id, "error": e.message},
            )
            return 0

    def record_interaction(self, interaction: Interaction) -> int:
        """Invalidate personalised entries after a material interaction.

        Purchases and ratings reshape the user's profile; views do not.
        Trending entries do not depend on the user and are kept.
        """
        if interaction.type not in MATERIAL_INTERACTIONS:
            return 0
        return sum(
            self.invalidate(interaction.user_id, algorithm)
            for algorithm in PERSONALISED_ALGORITHMS
        )

    def _record_lookup(self, hit: bool) -> None:
        if self.on_lookup is not None:
            self.on_lookup(hit)

    def _cache_get(
        self, user_id: str, algorithm: Algorithm
    ) -> Optional[RecommendationCacheEntry]:
        try:
            return self.cache.get(user_id, algorithm)
        except CacheUnavailableError as e:
            logger.warning(
                "Cache unavailable, computing fresh recommendations",
                extra={"user_id": user_id, "algorithm": algorithm.value, "error": e.message},
            )
            return None

    def _cache_put(
        self, user_id: str, algorithm: Algorithm, products: List[ScoredProduct]
    ) -> None:
        try:
            self.cache.put(user_id, algorithm, products)
        except CacheUnavailableError as e:
            logger.warning(
                "Cache unavailable, recommendations not stored",
                extra={"user_id": user_id, "algorithm": algorithm.value, "error": e.message},
            )
