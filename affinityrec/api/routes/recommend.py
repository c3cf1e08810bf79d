"""Recommendation endpoints for the AffinityRec API.

This module exposes personalized recommendations for a user and the
feedback endpoint that feeds the behavior learner.
"""

import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from affinityrec.api.metrics import metrics_service
from affinityrec.config import get_settings
from affinityrec.exceptions import InvalidFeedbackError, ItemNotFoundError
from affinityrec.recommender.engine import (
    PersonalizationEngine,
    RecommendationResult,
    build_engine,
)
from affinityrec.recommender.learner import LearningOutcome
from affinityrec.recommender.models import RecommendationContext, SessionContext

# Configure module logger
logger = logging.getLogger(__name__)

# Create API router
router = APIRouter(
    prefix="/recommend",
    tags=["recommendations"],
)

# Engine shared by all requests, built lazily from settings
_engine: Optional[PersonalizationEngine] = None


def get_engine() -> PersonalizationEngine:
    """Return the shared engine, building it on first use."""
    global _engine

    if _engine is None:
        logger.info("Building personalization engine from settings")
        _engine = build_engine(get_settings())
    return _engine


def set_engine(engine: Optional[PersonalizationEngine]) -> None:
    """Replace the shared engine. Passing None forces a rebuild on next use."""
    global _engine
    _engine = engine


class ReasonResponse(BaseModel):
    type: str
    strength: float
    description: str


class RecommendedItemResponse(BaseModel):
    """One recommended item with its scores and reasons."""

    item_id: str = Field(..., description="Catalog item ID")
    category: str
    provider: str
    relevance_score: float = Field(..., ge=0.0, le=1.0)
    confidence_score: float = Field(..., ge=0.0, le=1.0)
    diversity_factor: float
    contextual_boost: float
    reasons: List[ReasonResponse]


class RecommendationMetadataResponse(BaseModel):
    total_candidates: int
    processing_time_ms: float
    diversity_score: float
    average_confidence: float
    strategy_counts: Dict[str, int]
    failed_strategies: List[str]


class RecommendationResponse(BaseModel):
    """Response model for recommendation requests.

    Attributes:
        user_id: The user the recommendations were generated for.
        recommendations: Ranked recommended items.
        metadata: Request statistics.
    """

    user_id: str = Field(..., description="User ID for recommendations")
    recommendations: List[RecommendedItemResponse]
    metadata: RecommendationMetadataResponse


class FeedbackRequest(BaseModel):
    item_id: str = Field(..., description="Item the user interacted with")
    interaction_type: str = Field(
        ..., description="view, like, bookmark, generate, share or download"
    )
    engagement_level: int = Field(..., description="Engagement from 1 to 10")
    session_duration_seconds: Optional[float] = Field(default=None, ge=0)
    device_type: Optional[str] = None
    referral_source: Optional[str] = None


class AffinityDeltaResponse(BaseModel):
    kind: str
    key: str
    delta: int


class InsightResponse(BaseModel):
    type: str
    description: str
    confidence: float


class FeedbackResponse(BaseModel):
    user_id: str
    item_id: str
    accepted: bool = True
    affinity_deltas: List[AffinityDeltaResponse]
    insights: List[InsightResponse]
    actionable_recommendations: List[str]


def _to_response(result: RecommendationResult) -> RecommendationResponse:
    metadata = result.metadata
    return RecommendationResponse(
        user_id=result.user_id,
        recommendations=[
            RecommendedItemResponse(
                item_id=rec.item.id,
                category=rec.item.category,
                provider=rec.item.provider,
                relevance_score=rec.relevance_score,
                confidence_score=rec.confidence_score,
                diversity_factor=rec.diversity_factor,
                contextual_boost=rec.contextual_boost,
                reasons=[
                    ReasonResponse(
                        type=reason.type.value,
                        strength=reason.strength,
                        description=reason.description,
                    )
                    for reason in rec.reasons
                ],
            )
            for rec in result.recommendations
        ],
        metadata=RecommendationMetadataResponse(
            total_candidates=metadata.total_candidates,
            processing_time_ms=round(metadata.processing_time_ms, 2),
            diversity_score=metadata.diversity_score,
            average_confidence=metadata.average_confidence,
            strategy_counts=metadata.strategy_counts,
            failed_strategies=list(metadata.failed_strategies),
        ),
    )


@router.get("/{user_id}", response_model=RecommendationResponse)
async def get_recommendations(
    user_id: str,
    max_results: Optional[int] = Query(default=None, ge=0),
    exclude: List[str] = Query(default=[]),
    current_category: Optional[str] = None,
    viewed: List[str] = Query(default=[]),
    engine: PersonalizationEngine = Depends(get_engine),
) -> RecommendationResponse:
    """Get personalized recommendations for a user.

    Args:
        user_id: User to generate recommendations for.
        max_results: Number of recommendations to return (default from
            settings, bounded by ``MAX_RESULTS_LIMIT``).
        exclude: Item IDs to leave out; repeat the parameter for several.
        current_category: Category the user is browsing right now.
        viewed: Item IDs viewed in the current session.

    Returns:
        RecommendationResponse with ranked items, their reasons and metadata.

    Raises:
        HTTPException: 422 if ``max_results`` exceeds the configured limit.
        RecommendationTimeoutError: If scoring misses its deadline (504).

    Example:
        GET /recommend/u1?max_results=5&current_category=anime
    """
    settings = get_settings()
    if max_results is None:
        max_results = settings.DEFAULT_MAX_RESULTS
    if max_results > settings.MAX_RESULTS_LIMIT:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"max_results must be <= {settings.MAX_RESULTS_LIMIT}",
        )

    logger.info(f"Generating recommendations for user {user_id}, max_results={max_results}")

    context = RecommendationContext(
        max_results=max_results,
        exclude_item_ids=frozenset(exclude),
        session_context=SessionContext(
            current_category=current_category,
            items_viewed=tuple(viewed),
        ),
    )
    result = await engine.get_recommendations(user_id, context)

    metrics_service.record_recommendation(
        result.metadata.processing_time_ms,
        failed_strategies=result.metadata.failed_strategies,
    )
    return _to_response(result)


@router.post(
    "/{user_id}/feedback",
    response_model=FeedbackResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def post_feedback(
    user_id: str,
    feedback: FeedbackRequest,
    background_tasks: BackgroundTasks,
    engine: PersonalizationEngine = Depends(get_engine),
) -> FeedbackResponse:
    """Record an interaction and learn from it.

    The affinity deltas are persisted after the response is sent.

    Raises:
        InvalidFeedbackError: Unknown interaction type or engagement outside
            1-10 (422).
        ItemNotFoundError: Item not in the catalog (404).
    """
    try:
        outcome: LearningOutcome = await engine.record_feedback(
            user_id,
            feedback.item_id,
            feedback.interaction_type,
            feedback.engagement_level,
            session_duration_seconds=feedback.session_duration_seconds,
            device_type=feedback.device_type,
            referral_source=feedback.referral_source,
        )
    except (InvalidFeedbackError, ItemNotFoundError):
        metrics_service.record_feedback(accepted=False)
        raise

    metrics_service.record_feedback(accepted=True)
    background_tasks.add_task(engine.drain)

    summary = outcome.to_dict()
    return FeedbackResponse(
        user_id=user_id,
        item_id=feedback.item_id,
        affinity_deltas=[AffinityDeltaResponse(**d) for d in summary["affinity_deltas"]],
        insights=[InsightResponse(**i) for i in summary["insights"]],
        actionable_recommendations=summary["actionable_recommendations"],
    )
