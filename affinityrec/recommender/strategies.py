"""Recommendation strategies.

Five independent scorers run over the same candidate snapshot. Each one is a
pure function of the profile, the candidates and the request context, and
returns at most ``limit`` recommendations sorted by relevance.
"""

import logging
from abc import ABC, abstractmethod
from collections import Counter
from typing import Dict, List, Optional, Sequence

import numpy as np
from sklearn.metrics.pairwise import cosine_similarity
from sklearn.preprocessing import MultiLabelBinarizer

from affinityrec.recommender.models import (
    CandidateItem,
    PersonalizedRecommendation,
    ReasonType,
    RecommendationReason,
    ScoringContext,
)
from affinityrec.recommender.profile import UserProfile

# Configure module logger
logger = logging.getLogger(__name__)

# Share of max_results each strategy may contribute, in percent
STRATEGY_SHARES: Dict[str, int] = {
    "content_based": 40,
    "collaborative": 30,
    "contextual": 15,
    "trending": 10,
    "exploration": 5,
}

# Normalization ceilings for popularity signals
MAX_LIKES = 5000
MAX_DOWNLOADS = 200000
MAX_DISCUSSIONS = 300
MAX_GENERATED = 100000

TRENDING_LIKES_THRESHOLD = 1000
MIN_DIVERSITY_FACTOR = 0.1


def bucket_limits(max_results: int) -> Dict[str, int]:
    """Per-strategy result limits for a request, each share rounded up.

    Example:
        >>> bucket_limits(20)
        {'content_based': 8, 'collaborative': 6, 'contextual': 3, 'trending': 2, 'exploration': 1}
    """
    return {
        name: -(-max_results * share // 100)
        for name, share in STRATEGY_SHARES.items()
    }


def _top(recommendations: List[PersonalizedRecommendation], limit: int) -> List[PersonalizedRecommendation]:
    recommendations.sort(key=lambda rec: rec.relevance_score, reverse=True)
    return recommendations[: max(0, limit)]


def category_shares(candidates: Sequence[CandidateItem]) -> Dict[str, float]:
    if not candidates:
        return {}
    counts = Counter(item.category for item in candidates)
    return {category: count / len(candidates) for category, count in counts.items()}


def diversity_factor(item: CandidateItem, shares: Dict[str, float]) -> float:
    """How rare the item's category is in the candidate set."""
    return max(MIN_DIVERSITY_FACTOR, 1 - shares.get(item.category, 0.0))


def tag_similarity(preferred_tags, item_tags) -> float:
    """Share of item tags that contain one of the preferred tags.

    Matching is a case-insensitive substring test, normalized by the larger
    of the two tag sets.
    """
    if not item_tags or not preferred_tags:
        return 0.0
    preferred = [tag.lower() for tag in preferred_tags]
    matching = [
        tag for tag in item_tags if any(pref in tag.lower() for pref in preferred)
    ]
    return len(matching) / max(len(item_tags), len(preferred))


def popularity_score(item: CandidateItem) -> float:
    likes = min(1.0, item.like_count / MAX_LIKES)
    downloads = min(1.0, item.download_count / MAX_DOWNLOADS)
    return (likes + downloads) / 2


def engagement_score(item: CandidateItem) -> float:
    discussions = min(1.0, item.discussion_count / MAX_DISCUSSIONS)
    generated = min(1.0, item.generated_count / MAX_GENERATED)
    return (discussions + generated) / 2


def recent_view_similarity(
    candidates: Sequence[CandidateItem], viewed: Sequence[CandidateItem]
) -> np.ndarray:
    """Max tag cosine similarity of each candidate to the viewed items.

    Comparisons of an item with itself are ignored. Returns zeros when
    nothing was viewed or no item carries tags.
    """
    similarities = np.zeros(len(candidates))
    if not candidates or not viewed:
        return similarities

    binarizer = MultiLabelBinarizer()
    binarizer.fit([sorted(item.tags) for item in list(candidates) + list(viewed)])
    if len(binarizer.classes_) == 0:
        return similarities

    candidate_matrix = binarizer.transform([sorted(item.tags) for item in candidates])
    viewed_matrix = binarizer.transform([sorted(item.tags) for item in viewed])
    matrix = cosine_similarity(candidate_matrix, viewed_matrix)

    viewed_ids = [item.id for item in viewed]
    for row, item in enumerate(candidates):
        for col, viewed_id in enumerate(viewed_ids):
            if viewed_id == item.id:
                matrix[row, col] = 0.0

    return matrix.max(axis=1)


class RecommendationStrategy(ABC):
    """Base class for all scoring strategies."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Strategy name, used for bucket limits, logging and metadata."""

    @abstractmethod
    def score(
        self,
        profile: UserProfile,
        candidates: Sequence[CandidateItem],
        limit: int,
        context: Optional[ScoringContext] = None,
    ) -> List[PersonalizedRecommendation]:
        """Score candidates for a user.

        Args:
            profile: Snapshot of the user's profile.
            candidates: Snapshot of the filtered candidate set.
            limit: Maximum number of recommendations to return.
            context: Session and time information for the request.

        Returns:
            At most ``limit`` recommendations, highest relevance first.
        """


class ContentBasedStrategy(RecommendationStrategy):
    """Matches item attributes against the user's preferences and affinities."""

    name = "content_based"

    def score(self, profile, candidates, limit, context=None):
        shares = category_shares(candidates)
        recommendations = []

        for item in candidates:
            reasons = []
            relevance = 0.0

            category_affinity = profile.category_affinity(item.category)
            if category_affinity > 0.3:
                relevance += category_affinity * 0.4
                reasons.append(RecommendationReason(
                    type=ReasonType.CATEGORY_AFFINITY,
                    strength=category_affinity,
                    description=f"Matches your interest in {item.category}",
                ))

            if profile.has_provider_affinity(item.provider):
                relevance += 0.2
                reasons.append(RecommendationReason(
                    type=ReasonType.PROVIDER_PREFERENCE,
                    strength=0.8,
                    description=f"From {item.provider}, which you've enjoyed before",
                ))

            quality_alignment = profile.quality_alignment(item.quality_rating)
            if quality_alignment > 0.5:
                relevance += quality_alignment * 0.3
                reasons.append(RecommendationReason(
                    type=ReasonType.QUALITY_MATCH,
                    strength=quality_alignment,
                    description="Quality level matches your preferences",
                ))

            similarity = tag_similarity(profile.preferences.preferred_tags, item.tags)
            if similarity > 0.4:
                relevance += similarity * 0.1
                reasons.append(RecommendationReason(
                    type=ReasonType.CONTENT_BASED,
                    strength=similarity,
                    description="Similar features to items you've liked",
                ))

            if relevance > 0.2 and reasons:
                recommendations.append(PersonalizedRecommendation(
                    item=item,
                    relevance_score=relevance,
                    confidence_score=min(0.9, relevance + 0.1),
                    reasons=tuple(reasons),
                    diversity_factor=diversity_factor(item, shares),
                ))

        return _top(recommendations, limit)


class CollaborativeStrategy(RecommendationStrategy):
    """Community popularity and engagement as a stand-in for similar users.

    There is no user-user similarity here; the aggregate signals of the item
    are used directly and confidence is discounted accordingly.
    """

    name = "collaborative"

    def score(self, profile, candidates, limit, context=None):
        shares = category_shares(candidates)
        recommendations = []

        for item in candidates:
            reasons = []
            relevance = 0.0

            popularity = popularity_score(item)
            if popularity > 0.6:
                relevance += popularity * 0.3
                reasons.append(RecommendationReason(
                    type=ReasonType.SIMILAR_USERS,
                    strength=popularity,
                    description="Highly rated by users with similar preferences",
                ))

            engagement = engagement_score(item)
            if engagement > 0.5:
                relevance += engagement * 0.4
                reasons.append(RecommendationReason(
                    type=ReasonType.COLLABORATIVE_FILTERING,
                    strength=engagement,
                    description="Popular among active community members",
                ))

            if relevance > 0.3 and reasons:
                recommendations.append(PersonalizedRecommendation(
                    item=item,
                    relevance_score=relevance,
                    confidence_score=relevance * 0.8,
                    reasons=tuple(reasons),
                    diversity_factor=diversity_factor(item, shares),
                ))

        return _top(recommendations, limit)


class ContextualStrategy(RecommendationStrategy):
    """Boosts items that fit the current session and time of day."""

    name = "contextual"

    def score(self, profile, candidates, limit, context=None):
        context = context or ScoringContext()
        shares = category_shares(candidates)
        time_boost = profile.time_context_boost(context.current_hour)
        view_similarities = recent_view_similarity(candidates, context.viewed_items)
        current_category = context.session.current_category
        recommendations = []

        for index, item in enumerate(candidates):
            reasons = []
            relevance = 0.0
            contextual_boost = 0.0

            if time_boost > 0.7:
                contextual_boost += time_boost * 0.2
                reasons.append(RecommendationReason(
                    type=ReasonType.TIME_CONTEXT,
                    strength=time_boost,
                    description="Perfect timing for your typical usage pattern",
                ))

            if current_category is not None and current_category == item.category:
                contextual_boost += 0.3
                relevance += 0.4
                reasons.append(RecommendationReason(
                    type=ReasonType.BEHAVIORAL_PATTERN,
                    strength=0.8,
                    description="Continues your current browsing session",
                ))

            similarity = float(view_similarities[index])
            if similarity > 0.5:
                relevance += similarity * 0.3
                reasons.append(RecommendationReason(
                    type=ReasonType.BEHAVIORAL_PATTERN,
                    strength=similarity,
                    description="Similar to items you've recently explored",
                ))

            if (relevance > 0.2 or contextual_boost > 0.1) and reasons:
                recommendations.append(PersonalizedRecommendation(
                    item=item,
                    relevance_score=relevance + contextual_boost,
                    confidence_score=min(0.95, relevance + contextual_boost + 0.1),
                    reasons=tuple(reasons),
                    diversity_factor=diversity_factor(item, shares),
                    contextual_boost=contextual_boost,
                ))

        return _top(recommendations, limit)


class TrendingStrategy(RecommendationStrategy):
    """Featured or widely liked items, ranked by community activity."""

    name = "trending"

    def score(self, profile, candidates, limit, context=None):
        shares = category_shares(candidates)
        trending = sorted(
            (
                item
                for item in candidates
                if item.featured or item.like_count > TRENDING_LIKES_THRESHOLD
            ),
            key=lambda item: item.like_count + 0.1 * item.generated_count,
            reverse=True,
        )

        return [
            PersonalizedRecommendation(
                item=item,
                relevance_score=0.6,
                confidence_score=0.7,
                reasons=(RecommendationReason(
                    type=ReasonType.TRENDING,
                    strength=0.8,
                    description="Trending in the community right now",
                ),),
                diversity_factor=diversity_factor(item, shares),
            )
            for item in trending[: max(0, limit)]
        ]


class ExplorationStrategy(RecommendationStrategy):
    """Surfaces under-explored categories for users willing to explore."""

    name = "exploration"

    MIN_WILLINGNESS = 0.3

    def score(self, profile, candidates, limit, context=None):
        willingness = profile.exploration_willingness()
        if willingness < self.MIN_WILLINGNESS:
            # User prefers familiar content
            return []

        unexplored = [
            item for item in candidates if profile.category_affinity(item.category) < 0.3
        ]

        return [
            PersonalizedRecommendation(
                item=item,
                relevance_score=willingness * 0.6,
                confidence_score=0.5,
                reasons=(RecommendationReason(
                    type=ReasonType.EXPLORATION,
                    strength=willingness,
                    description=f"Discover something new in {item.category}",
                ),),
                diversity_factor=1.0,
            )
            for item in unexplored[: max(0, limit)]
        ]


def default_strategies() -> List[RecommendationStrategy]:
    return [
        ContentBasedStrategy(),
        CollaborativeStrategy(),
        ContextualStrategy(),
        TrendingStrategy(),
        ExplorationStrategy(),
    ]
