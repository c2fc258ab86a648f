"""Runtime settings for StoreRec.

Scoring constants are tunable parameters rather than fixed requirements, so
they are collected here with their defaults. Values can be overridden through
``STOREREC_*`` environment variables (plus ``LOG_LEVEL``).
"""

import logging
import os
from dataclasses import dataclass, field, fields
from typing import Dict, Optional, Tuple

# Configure module logger
logger = logging.getLogger(__name__)

ENV_PREFIX = "STOREREC_"

DEFAULT_LIMIT = 10
MAX_LIMIT = 50


@dataclass
class Settings:
    """Tunable constants for scoring, caching and the API.

    Attributes:
        purchase_weight: Interaction weight for purchases (per unit bought).
        rating_weight: Interaction weight for ratings.
        view_weight: Interaction weight for views.
        trending_window_days: How far back trending looks at interactions.
        trending_half_life_hours: Half-life of the trending recency decay.
        popularity_base_factor: Scale applied to all-time popularity counters
            when seeding trending scores.
        profile_half_life_days: Half-life for content profile recency decay.
        max_neighbours: Most similar users kept by collaborative filtering.
        min_neighbours: Fewest comparable users collaborative filtering needs.
        hybrid_collaborative_weight: HYBRID weight of collaborative scores.
        hybrid_content_weight: HYBRID weight of content-based scores.
        price_bands: Upper price bound for each price tier, ascending.
        data_dir: Directory holding interactions.csv and products.csv.
        cache_backend: "memory" or "file".
        cache_dir: Directory used by the file cache backend.
        cache_sweep_interval_seconds: Period of the expired-cache sweep.
        retry_max_tries: Attempts per data-source call (1 retry by default).
        retry_backoff_factor: Base delay for the retry backoff, in seconds.
        log_level: Root log level for the API.
    """

    purchase_weight: float = 5.0
    rating_weight: float = 3.0
    view_weight: float = 1.0
    trending_window_days: float = 7.0
    trending_half_life_hours: float = 72.0
    popularity_base_factor: float = 0.01
    profile_half_life_days: float = 30.0
    max_neighbours: int = 20
    min_neighbours: int = 2
    hybrid_collaborative_weight: float = 0.6
    hybrid_content_weight: float = 0.4
    price_bands: Tuple[Tuple[str, float], ...] = field(
        default_factory=lambda: (
            ("budget", 500_000.0),
            ("mid", 1_500_000.0),
            ("premium", 4_000_000.0),
            ("luxury", float("inf")),
        )
    )
    data_dir: str = "data"
    cache_backend: str = "memory"
    cache_dir: str = ".cache/recommendations"
    cache_sweep_interval_seconds: float = 3600.0
    retry_max_tries: int = 2
    retry_backoff_factor: float = 0.2
    log_level: str = "INFO"

    def type_weights(self) -> Dict[str, float]:
        """Map interaction type names to their weights."""
        return {
            "PURCHASE": self.purchase_weight,
            "RATING": self.rating_weight,
            "VIEW": self.view_weight,
        }

    def price_tier(self, price: Optional[float]) -> Optional[str]:
        """Return the price tier name for a price, or None if unknown."""
        if price is None:
            return None
        for name, upper in self.price_bands:
            if price < upper:
                return name
        return self.price_bands[-1][0]

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "Settings":
        """Build settings from environment variables.

        Every scalar field can be set with ``STOREREC_<FIELD_NAME>``; the
        log level also honours plain ``LOG_LEVEL``.
        """
        environ = os.environ if environ is None else environ
        overrides = {}

        for f in fields(cls):
            if f.name == "price_bands":
                continue
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            default = getattr(cls, f.name, None)
            try:
                if isinstance(default, bool):
                    overrides[f.name] = raw.lower() in ("1", "true", "yes")
                elif isinstance(default, int):
                    overrides[f.name] = int(raw)
                elif isinstance(default, float):
                    overrides[f.name] = float(raw)
                else:
                    overrides[f.name] = raw
            except ValueError:
                logger.warning(
                    "Ignoring invalid setting",
                    extra={"setting": f.name, "value": raw},
                )

        if "log_level" not in overrides and environ.get("LOG_LEVEL"):
            overrides["log_level"] = environ["LOG_LEVEL"]

        return cls(**overrides)
