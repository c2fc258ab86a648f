"""Background maintenance for the recommendation cache.

Expired entries are never served, but they still occupy the store until
something removes them. The sweep deletes them periodically.
"""

import logging
import threading
from typing import Any, Dict, Optional

from storerec.exceptions import CacheUnavailableError
from storerec.recommender.cache import RecommendationCache

# Configure module logger
logger = logging.getLogger(__name__)


def clear_expired_cache(cache: RecommendationCache) -> Dict[str, Any]:
    """Delete expired recommendation cache entries once.

    Returns:
        Dictionary with ``success`` and either ``deleted_count`` or ``error``.
    """
    logger.info("Clearing expired recommendation cache")
    try:
        deleted = cache.sweep_expired()
    except CacheUnavailableError as e:
        logger.error(
            "Expired cache sweep failed",
            extra={"error": e.message, "error_type": type(e).__name__},
        )
        return {"success": False, "error": e.message}

    logger.info("Expired cache sweep finished", extra={"deleted_count": deleted})
    return {"success": True, "deleted_count": deleted}


class CacheSweeper:
    """Runs clear_expired_cache on a daemon thread at a fixed interval."""

    def __init__(self, cache: RecommendationCache, interval_seconds: float):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.cache = cache
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="cache-sweeper", daemon=True
        )
        self._thread.start()
        logger.info(
            "Cache sweeper started",
            extra={"interval_seconds": self.interval_seconds},
        )

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Cache sweeper stopped")

    def _run(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            clear_expired_cache(self.cache)
