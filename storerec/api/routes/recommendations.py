"""Recommendation endpoints for the StoreRec API.

This module provides the endpoint serving personalised product
recommendations and the endpoint dropping a user's cached results.
Authentication happens upstream; the gateway forwards the caller's identity
in the ``X-User-Id`` header.
"""

import logging
import threading
import time
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from storerec.api.metrics import metrics_service
from storerec.config import DEFAULT_LIMIT, MAX_LIMIT, Settings
from storerec.exceptions import StoreRecException
from storerec.recommender.cache import build_cache
from storerec.recommender.datasource import build_data_source
from storerec.recommender.models import Algorithm
from storerec.recommender.scoring import ScoringEngine
from storerec.recommender.service import DEFAULT_ALGORITHM, RecommendationService

# Configure module logger
logger = logging.getLogger(__name__)

# Create API router
router = APIRouter(
    prefix="/recommendations",
    tags=["recommendations"],
)

# Service shared by all requests, built on first use
_service: Optional[RecommendationService] = None
_service_lock = threading.Lock()


class ScoredProductResponse(BaseModel):
    """A recommended product and its score."""

    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(..., alias="productId", description="Product ID")
    score: float = Field(..., ge=0, description="Recommendation score")


class RecommendationResponse(BaseModel):
    """Response model for recommendation requests.

    Attributes:
        success: Always true for a served request.
        products: Recommended products, best first.
        cached: Whether the list came from the 24 hour cache.
        algorithm: Algorithm used.
    """

    success: bool = Field(default=True)
    products: List[ScoredProductResponse] = Field(
        ..., description="Recommended products ordered by score"
    )
    cached: bool = Field(..., description="Served from cache")
    algorithm: str = Field(..., description="Algorithm used")


class InvalidationResponse(BaseModel):
    """Response model for cache invalidation."""

    success: bool = Field(default=True)
    invalidated: int = Field(..., description="Number of cache entries removed")


def build_service(settings: Settings) -> RecommendationService:
    """Wire the data source, scoring engine and cache from settings."""
    data_source = build_data_source(
        settings.data_dir,
        max_tries=settings.retry_max_tries,
        backoff_factor=settings.retry_backoff_factor,
    )
    cache = build_cache(settings.cache_backend, settings.cache_dir)
    return RecommendationService(
        engine=ScoringEngine(data_source, settings),
        cache=cache,
        on_lookup=metrics_service.record_cache_lookup,
    )


def get_recommendation_service() -> RecommendationService:
    """Return the shared recommendation service, creating it if needed."""
    global _service

    if _service is None:
        with _service_lock:
            if _service is None:
                settings = Settings.from_env()
                logger.info(
                    "Building recommendation service",
                    extra={
                        "data_dir": settings.data_dir,
                        "cache_backend": settings.cache_backend,
                    },
                )
                _service = build_service(settings)
    return _service


def get_current_user_id(
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
) -> str:
    """Read the authenticated user id forwarded by the gateway."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return x_user_id.strip()


@router.get("", response_model=RecommendationResponse)
def get_recommendations(
    algorithm: Optional[str] = Query(
        default=None,
        description="HYBRID, COLLABORATIVE, CONTENT_BASED or TRENDING",
    ),
    type_: Optional[str] = Query(
        default=None,
        alias="type",
        description="Storefront alias: personalized, trending, similar, collaborative",
    ),
    limit: int = Query(default=DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    user_id: str = Depends(get_current_user_id),
    service: RecommendationService = Depends(get_recommendation_service),
) -> RecommendationResponse:
    """Get product recommendations for the current user.

    ``algorithm`` wins over ``type`` when both are given; with neither the
    HYBRID algorithm is used.

    Example:
        GET /recommendations?algorithm=TRENDING&limit=5
        Returns the five hottest products of the past week.
    """
    start_time = time.time()

    if algorithm is not None:
        selected = algorithm
    elif type_ is not None:
        selected = Algorithm.from_type(type_)
    else:
        selected = DEFAULT_ALGORITHM

    try:
        result = service.get_recommendations(user_id, selected, limit)
    except StoreRecException:
        raise
    except Exception as e:
        logger.error(
            f"Error generating recommendations for user {user_id}: {e}",
            exc_info=True,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to generate recommendations: {str(e)}",
        )

    metrics_service.record_request((time.time() - start_time) * 1000)
    return RecommendationResponse(**result.to_dict())


@router.delete("/cache", response_model=InvalidationResponse)
def invalidate_recommendations(
    algorithm: Optional[str] = Query(
        default=None, description="Only drop this algorithm's entry"
    ),
    user_id: str = Depends(get_current_user_id),
    service: RecommendationService = Depends(get_recommendation_service),
) -> InvalidationResponse:
    """Drop the current user's cached recommendations.

    Called after a material change to the user's history, such as a new
    purchase, so the next request recomputes.
    """
    removed = service.invalidate(user_id, algorithm)
    return InvalidationResponse(invalidated=removed)
