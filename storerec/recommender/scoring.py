"""Scoring engine for product recommendations.

One scorer per algorithm: trending, content-based, collaborative and hybrid.
Personalised scorers raise InsufficientDataError when the user's history
cannot support them; the engine catches it and falls back to trending, which
covers the whole catalog.
"""

import logging
import math
import time
from abc import ABC, abstractmethod
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Set

import numpy as np
from scipy.sparse import csr_matrix
from sklearn.feature_extraction import DictVectorizer
from sklearn.metrics.pairwise import cosine_similarity

from storerec.config import DEFAULT_LIMIT, Settings
from storerec.exceptions import InsufficientDataError
from storerec.recommender.datasource import InteractionDataSource
from storerec.recommender.models import (
    Algorithm,
    Interaction,
    InteractionType,
    ProductAttributes,
    ScoredProduct,
    rank_scores,
    utc_now,
)

# Configure module logger
logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def decay(age: timedelta, half_life: timedelta) -> float:
    """Exponential half-life decay, 1.0 for age <= 0."""
    seconds = max(0.0, age.total_seconds())
    return 0.5 ** (seconds / half_life.total_seconds())


def interaction_weight(interaction: Interaction, settings: Settings) -> float:
    """Weight of one interaction before recency decay.

    Purchases scale with quantity; ratings scale with stars out of five.
    """
    base = settings.type_weights()[interaction.type.value]
    if interaction.type == InteractionType.PURCHASE:
        return base * max(1.0, interaction.value)
    if interaction.type == InteractionType.RATING:
        return base * min(max(interaction.value, 0.0), 5.0) / 5.0
    return base


def purchased_products(interactions: List[Interaction]) -> Set[str]:
    return {
        i.product_id for i in interactions if i.type == InteractionType.PURCHASE
    }


def normalize_scores(scores: Dict[str, float]) -> Dict[str, float]:
    """Scale scores into [0, 1] by dividing by the maximum.

    An empty or all-zero mapping stays all zero.
    """
    if not scores:
        return {}
    max_score = max(scores.values())
    if max_score <= 0:
        return {pid: 0.0 for pid in scores}
    return {pid: max(0.0, score) / max_score for pid, score in scores.items()}


class Scorer(ABC):
    """Common scoring capability: map a user to product scores."""

    algorithm: Algorithm

    def __init__(
        self,
        data_source: InteractionDataSource,
        settings: Settings,
        clock: Clock = utc_now,
    ):
        self.data_source = data_source
        self.settings = settings
        self.clock = clock

    @abstractmethod
    def score(self, user_id: str) -> Dict[str, float]:
        """Return unordered, non-negative scores keyed by product id."""


class TrendingScorer(Scorer):
    """Recency-decayed popularity across all users.

    Every catalog product is seeded with a small score from its all-time
    counters, then recent interactions add ``weight * decay(age)``.
    """

    algorithm = Algorithm.TRENDING

    def score(self, user_id: str) -> Dict[str, float]:
        now = self.clock()
        catalog = self.data_source.fetch_product_catalog_attributes()
        if not catalog:
            logger.warning("Catalog is empty, no trending products")
            return {}

        popularity = self.data_source.fetch_global_popularity_stats()
        factor = self.settings.popularity_base_factor
        scores: Dict[str, float] = {}
        for pid in catalog:
            stats = popularity.get(pid)
            if stats is None:
                scores[pid] = 0.0
                continue
            scores[pid] = factor * (
                self.settings.purchase_weight * stats.purchase_count
                + self.settings.rating_weight * stats.average_rating / 5.0
                + self.settings.view_weight * stats.view_count
            )

        since = now - timedelta(days=self.settings.trending_window_days)
        half_life = timedelta(hours=self.settings.trending_half_life_hours)
        recent = self.data_source.fetch_recent_interactions(since)
        for interaction in recent:
            if interaction.product_id not in scores:
                continue
            scores[interaction.product_id] += interaction_weight(
                interaction, self.settings
            ) * decay(now - interaction.timestamp, half_life)

        logger.debug(
            "Computed trending scores",
            extra={"num_products": len(scores), "num_recent": len(recent)},
        )
        return scores


class ContentBasedScorer(Scorer):
    """Similarity between catalog attributes and the user's taste profile.

    The profile is the interaction-weighted sum of the one-hot attribute
    vectors (category, brand, tags, price tier) of products the user touched.
    """

    algorithm = Algorithm.CONTENT_BASED

    def _features(self, product: ProductAttributes) -> Dict[str, float]:
        features: Dict[str, float] = {}
        if product.category_id:
            features[f"category={product.category_id}"] = 1.0
        if product.brand_id:
            features[f"brand={product.brand_id}"] = 1.0
        for tag in product.tags:
            features[f"tag={tag}"] = 1.0
        tier = self.settings.price_tier(product.price)
        if tier:
            features[f"price_tier={tier}"] = 1.0
        return features

    def score(self, user_id: str) -> Dict[str, float]:
        history = self.data_source.fetch_user_interactions(user_id)
        if not history:
            raise InsufficientDataError(
                self.algorithm.value, user_id, "no interaction history"
            )

        catalog = self.data_source.fetch_product_catalog_attributes()
        product_ids = sorted(catalog)
        index = {pid: idx for idx, pid in enumerate(product_ids)}

        now = self.clock()
        half_life = timedelta(days=self.settings.profile_half_life_days)
        weights = np.zeros(len(product_ids))
        for interaction in history:
            idx = index.get(interaction.product_id)
            if idx is None:
                continue
            weights[idx] += interaction_weight(interaction, self.settings) * decay(
                now - interaction.timestamp, half_life
            )

        if not np.any(weights > 0):
            raise InsufficientDataError(
                self.algorithm.value, user_id, "no history with catalog products"
            )

        vectorizer = DictVectorizer(sparse=True)
        item_features = vectorizer.fit_transform(
            [self._features(catalog[pid]) for pid in product_ids]
        )
        if item_features.shape[1] == 0:
            raise InsufficientDataError(
                self.algorithm.value, user_id, "catalog has no attributes"
            )

        profile = np.asarray(item_features.T.dot(weights)).reshape(1, -1)
        similarities = cosine_similarity(profile, item_features)[0]

        owned = purchased_products(history)
        scores = {
            pid: max(0.0, float(similarities[idx]))
            for pid, idx in index.items()
            if pid not in owned
        }
        if not scores:
            raise InsufficientDataError(
                self.algorithm.value, user_id, "every catalog product already purchased"
            )

        logger.debug(
            "Computed content-based scores",
            extra={
                "user_id": user_id,
                "num_features": item_features.shape[1],
                "num_candidates": len(scores),
            },
        )
        return scores


class CollaborativeScorer(Scorer):
    """Co-occurrence collaborative filtering.

    Neighbours are users who interacted with any product the target user
    interacted with. Candidate products are scored by neighbour similarity
    times the neighbour's interaction weight, divided by log(e + popularity)
    so best-sellers do not dominate.
    """

    algorithm = Algorithm.COLLABORATIVE

    def _weights_by_product(self, interactions: List[Interaction]) -> Dict[str, float]:
        weights: Dict[str, float] = defaultdict(float)
        for interaction in interactions:
            weights[interaction.product_id] += interaction_weight(
                interaction, self.settings
            )
        return weights

    def score(self, user_id: str) -> Dict[str, float]:
        history = self.data_source.fetch_user_interactions(user_id)
        if not history:
            raise InsufficientDataError(
                self.algorithm.value, user_id, "no interaction history"
            )
        own_weights = self._weights_by_product(history)

        co_interactions = self.data_source.fetch_product_interactions(
            sorted(own_weights)
        )
        overlap: Dict[str, Set[str]] = defaultdict(set)
        for interaction in co_interactions:
            if interaction.user_id != user_id:
                overlap[interaction.user_id].add(interaction.product_id)

        if len(overlap) < self.settings.min_neighbours:
            raise InsufficientDataError(
                self.algorithm.value,
                user_id,
                f"only {len(overlap)} comparable users, "
                f"need {self.settings.min_neighbours}",
            )

        neighbours = sorted(overlap, key=lambda u: (-len(overlap[u]), u))[
            : self.settings.max_neighbours
        ]
        neighbour_weights = [
            self._weights_by_product(self.data_source.fetch_user_interactions(u))
            for u in neighbours
        ]

        # Row 0 is the target user, rows 1.. are neighbours
        all_rows = [own_weights] + neighbour_weights
        product_ids = sorted({pid for row in all_rows for pid in row})
        col_index = {pid: idx for idx, pid in enumerate(product_ids)}
        rows, cols, data = [], [], []
        for row_idx, row in enumerate(all_rows):
            for pid, weight in row.items():
                rows.append(row_idx)
                cols.append(col_index[pid])
                data.append(weight)
        matrix = csr_matrix(
            (data, (rows, cols)),
            shape=(len(all_rows), len(product_ids)),
            dtype=np.float64,
        )

        similarities = cosine_similarity(matrix[0], matrix[1:])[0]
        raw_scores = np.asarray(matrix[1:].T.dot(similarities)).ravel()

        catalog = self.data_source.fetch_product_catalog_attributes(product_ids)
        popularity = self.data_source.fetch_global_popularity_stats()
        owned = purchased_products(history)

        scores: Dict[str, float] = {}
        for pid, idx in col_index.items():
            if pid in owned or pid not in catalog or raw_scores[idx] <= 0:
                continue
            stats = popularity.get(pid)
            total = stats.total if stats is not None else 0
            scores[pid] = float(raw_scores[idx]) / math.log(math.e + total)

        if not scores:
            raise InsufficientDataError(
                self.algorithm.value, user_id, "similar users offered no new products"
            )

        logger.debug(
            "Computed collaborative scores",
            extra={
                "user_id": user_id,
                "num_neighbours": len(neighbours),
                "num_candidates": len(scores),
            },
        )
        return scores


def score_with_fallback(
    scorer: Scorer, fallback: Scorer, user_id: str
) -> Dict[str, float]:
    """Run a scorer, degrading to the fallback on insufficient data."""
    try:
        return scorer.score(user_id)
    except InsufficientDataError as e:
        logger.info(
            "Falling back to trending",
            extra={
                "user_id": user_id,
                "algorithm": scorer.algorithm.value,
                "reason": e.details.get("reason"),
            },
        )
        return fallback.score(user_id)


class HybridScorer(Scorer):
    """Weighted blend of collaborative and content-based scores.

    The two sub-scorings run concurrently and share no state. Each result is
    normalised to [0, 1] before combining.
    """

    algorithm = Algorithm.HYBRID

    def __init__(
        self,
        collaborative: Scorer,
        content: Scorer,
        trending: Scorer,
        settings: Settings,
        clock: Clock = utc_now,
    ):
        super().__init__(trending.data_source, settings, clock)
        self.collaborative = collaborative
        self.content = content
        self.trending = trending

        # Normalize weights
        total_weight = (
            settings.hybrid_collaborative_weight + settings.hybrid_content_weight
        )
        if total_weight <= 0:
            raise ValueError("Hybrid weights must sum to a positive value")
        self.collaborative_weight = settings.hybrid_collaborative_weight / total_weight
        self.content_weight = settings.hybrid_content_weight / total_weight

    def score(self, user_id: str) -> Dict[str, float]:
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="hybrid") as pool:
            collaborative_future = pool.submit(
                score_with_fallback, self.collaborative, self.trending, user_id
            )
            content_future = pool.submit(
                score_with_fallback, self.content, self.trending, user_id
            )
            collaborative_scores = normalize_scores(collaborative_future.result())
            content_scores = normalize_scores(content_future.result())

        owned = purchased_products(self.data_source.fetch_user_interactions(user_id))
        combined = {
            pid: self.collaborative_weight * collaborative_scores.get(pid, 0.0)
            + self.content_weight * content_scores.get(pid, 0.0)
            for pid in set(collaborative_scores) | set(content_scores)
            if pid not in owned
        }

        if not combined:
            logger.info(
                "Hybrid blend empty after exclusions, using trending",
                extra={"user_id": user_id},
            )
            return self.trending.score(user_id)
        return combined


class ScoringEngine:
    """Computes ranked recommendations with one strategy per algorithm."""

    def __init__(
        self,
        data_source: InteractionDataSource,
        settings: Optional[Settings] = None,
        clock: Clock = utc_now,
    ):
        self.data_source = data_source
        self.settings = settings or Settings()
        self.clock = clock

        trending = TrendingScorer(data_source, self.settings, clock)
        collaborative = CollaborativeScorer(data_source, self.settings, clock)
        content = ContentBasedScorer(data_source, self.settings, clock)
        self.scorers: Dict[Algorithm, Scorer] = {
            Algorithm.TRENDING: trending,
            Algorithm.COLLABORATIVE: collaborative,
            Algorithm.CONTENT_BASED: content,
            Algorithm.HYBRID: HybridScorer(
                collaborative, content, trending, self.settings, clock
            ),
        }

        missing = set(Algorithm) - set(self.scorers)
        if missing:
            raise RuntimeError(f"No scorer registered for: {sorted(m.value for m in missing)}")

    def score(
        self,
        user_id: str,
        algorithm: Algorithm,
        limit: int = DEFAULT_LIMIT,
    ) -> List[ScoredProduct]:
        """Return up to ``limit`` products ordered by score, then product id."""
        start_time = time.time()
        algorithm = Algorithm.parse(algorithm)

        scores = score_with_fallback(
            self.scorers[algorithm], self.scorers[Algorithm.TRENDING], user_id
        )
        ranked = rank_scores(scores, limit)

        logger.info(
            "Recommendations scored",
            extra={
                "user_id": user_id,
                "algorithm": algorithm.value,
                "num_recommendations": len(ranked),
                "scoring_time_ms": round((time.time() - start_time) * 1000, 2),
            },
        )
        return ranked
