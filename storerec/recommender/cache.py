"""Time-bounded recommendation cache.

Holds the latest scored list per (user, algorithm) for 24 hours. Expiry is
checked at read time, so an entry past ``expires_at`` is never served even if
the store still holds it. Entries are immutable and replaced whole, so a
concurrent reader sees either the old entry or the new one.
"""

import logging
import os
import pickle
import tempfile
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from hashlib import sha1
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import joblib

from storerec.exceptions import CacheUnavailableError
from storerec.recommender.models import (
    Algorithm,
    RecommendationCacheEntry,
    ScoredProduct,
    utc_now,
)

# Configure module logger
logger = logging.getLogger(__name__)

CacheKey = Tuple[str, Algorithm]

CACHE_FILE_SUFFIX = ".joblib"


class RecommendationCache(ABC):
    """Base cache implementing the TTL contract over a key/entry store."""

    TTL = timedelta(hours=24)

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self.clock = clock

    def get(
        self, user_id: str, algorithm: Algorithm
    ) -> Optional[RecommendationCacheEntry]:
        """Return the fresh entry for the key, or None if absent or expired."""
        key = (user_id, Algorithm.parse(algorithm))
        entry = self._load(key)
        if entry is None:
            return None
        if entry.is_expired(self.clock()):
            logger.debug(
                "Dropping expired cache entry",
                extra={"user_id": user_id, "algorithm": key[1].value},
            )
            self._delete_if_expired(key)
            return None
        return entry

    def put(
        self,
        user_id: str,
        algorithm: Algorithm,
        products: Sequence[ScoredProduct],
    ) -> RecommendationCacheEntry:
        """Store a new entry for the key, replacing any previous one."""
        algorithm = Algorithm.parse(algorithm)
        entry = RecommendationCacheEntry.create(
            user_id=user_id,
            algorithm=algorithm,
            products=products,
            generated_at=self.clock(),
            ttl=self.TTL,
        )
        self._store((user_id, algorithm), entry)
        return entry

    def invalidate(self, user_id: str, algorithm: Optional[Algorithm] = None) -> int:
        """Remove one or all of a user's entries. Returns how many were removed."""
        if algorithm is not None:
            algorithm = Algorithm.parse(algorithm)
            algorithms: Iterable[Algorithm] = [algorithm]
        else:
            algorithms = list(Algorithm)
        removed = sum(1 for a in algorithms if self._delete((user_id, a)))
        logger.info(
            "Invalidated recommendation cache",
            extra={
                "user_id": user_id,
                "algorithm": algorithm.value if algorithm is not None else "ALL",
                "removed": removed,
            },
        )
        return removed

    def sweep_expired(self) -> int:
        """Delete every expired entry. Returns the number deleted."""
        deleted = 0
        for key in self._keys():
            if self._delete_if_expired(key):
                deleted += 1
        return deleted

    def _delete_if_expired(self, key: CacheKey) -> bool:
        entry = self._load(key)
        if entry is not None and entry.is_expired(self.clock()):
            return self._delete(key)
        return False

    @abstractmethod
    def _load(self, key: CacheKey) -> Optional[RecommendationCacheEntry]:
        ...

    @abstractmethod
    def _store(self, key: CacheKey, entry: RecommendationCacheEntry) -> None:
        ...

    @abstractmethod
    def _delete(self, key: CacheKey) -> bool:
        ...

    @abstractmethod
    def _keys(self) -> List[CacheKey]:
        ...


class InMemoryRecommendationCache(RecommendationCache):
    """Process-local cache store."""

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        super().__init__(clock)
        self._lock = threading.Lock()
        self._entries: Dict[CacheKey, RecommendationCacheEntry] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _load(self, key: CacheKey) -> Optional[RecommendationCacheEntry]:
        with self._lock:
            return self._entries.get(key)

    def _store(self, key: CacheKey, entry: RecommendationCacheEntry) -> None:
        with self._lock:
            self._entries[key] = entry

    def _delete(self, key: CacheKey) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def _keys(self) -> List[CacheKey]:
        with self._lock:
            return list(self._entries)

    def _delete_if_expired(self, key: CacheKey) -> bool:
        # Check and delete under one lock so a concurrent put is never dropped
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.is_expired(self.clock()):
                del self._entries[key]
                return True
            return False


class FileRecommendationCache(RecommendationCache):
    """Cache store persisting one joblib file per (user, algorithm).

    Each file holds the record layout with parallel ``products`` and
    ``scores`` arrays. Writes go to a temporary file in the same directory
    and are moved into place with os.replace. Replacement and expiry deletion
    share a lock, so an expired file is never unlinked after a fresh entry
    took its place within this process.
    """

    def __init__(self, cache_dir: str, clock: Callable[[], datetime] = utc_now):
        super().__init__(clock)
        self.cache_dir = Path(cache_dir)
        self._lock = threading.Lock()

    def _path(self, key: CacheKey) -> Path:
        user_id, algorithm = key
        digest = sha1(user_id.encode("utf-8")).hexdigest()
        return self.cache_dir / f"{digest}_{algorithm.value}{CACHE_FILE_SUFFIX}"

    def _load(self, key: CacheKey) -> Optional[RecommendationCacheEntry]:
        return self._read(self._path(key), "get")

    def _read(self, path: Path, operation: str) -> Optional[RecommendationCacheEntry]:
        try:
            record = joblib.load(path)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise CacheUnavailableError(operation, e) from e
        except (EOFError, pickle.UnpicklingError) as e:
            logger.warning(
                "Discarding unreadable cache file",
                extra={"path": str(path), "error": str(e)},
            )
            return None

        try:
            return RecommendationCacheEntry.from_record(record)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(
                "Discarding unreadable cache record",
                extra={"path": str(path), "error": str(e)},
            )
            return None

    def _store(self, key: CacheKey, entry: RecommendationCacheEntry) -> None:
        tmp_path = None
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.cache_dir, suffix=".tmp")
            with os.fdopen(fd, "wb") as handle:
                joblib.dump(entry.to_record(), handle)
            with self._lock:
                os.replace(tmp_path, self._path(key))
            tmp_path = None
        except OSError as e:
            raise CacheUnavailableError("put", e) from e
        finally:
            # Set to None once the file has been moved into place
            if tmp_path is not None and os.path.exists(tmp_path):
                os.unlink(tmp_path)

    def _delete_if_expired(self, key: CacheKey) -> bool:
        # A put replacing the file waits until the expiry check and unlink finish
        with self._lock:
            entry = self._load(key)
            if entry is not None and entry.is_expired(self.clock()):
                return self._delete(key)
            return False

    def _delete(self, key: CacheKey) -> bool:
        try:
            self._path(key).unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise CacheUnavailableError("invalidate", e) from e

    def _keys(self) -> List[CacheKey]:
        if not self.cache_dir.exists():
            return []
        keys: List[CacheKey] = []
        try:
            paths = sorted(self.cache_dir.glob(f"*{CACHE_FILE_SUFFIX}"))
        except OSError as e:
            raise CacheUnavailableError("sweep", e) from e
        for path in paths:
            entry = self._read(path, "sweep")
            if entry is not None:
                keys.append((entry.user_id, entry.algorithm))
        return keys


def build_cache(
    backend: str,
    cache_dir: Optional[str] = None,
    clock: Callable[[], datetime] = utc_now,
) -> RecommendationCache:
    """Create a cache for the configured backend ("memory" or "file")."""
    if backend == "memory":
        return InMemoryRecommendationCache(clock=clock)
    if backend == "file":
        if not cache_dir:
            raise ValueError("cache_dir is required for the file cache backend")
        return FileRecommendationCache(cache_dir, clock=clock)
    raise ValueError(f"Unknown cache backend: {backend}")
