"""User profile value types.

A profile is an immutable snapshot of what we know about one user:
declared and learned preferences, behavior metrics and per-category /
per-provider affinity scores. Changes are expressed as functions that
return a new profile, never by mutating an existing one.

Score ranges are enforced on construction, so every write path clamps.
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple

from affinityrec.recommender.models import AffinityKind
from affinityrec.recommender.utils import clamp, round_half_up

# Configure module logger
logger = logging.getLogger(__name__)

MAX_PREFERRED_CATEGORIES = 5
MAX_PREFERRED_PROVIDERS = 3

# Cold-start defaults
DEFAULT_QUALITY_THRESHOLD = 70.0
DEFAULT_EXPLORATION_SCORE = 20.0
DEFAULT_SESSION_DURATION_SECONDS = 600.0
DEFAULT_ACTIVE_HOUR = 14

SESSION_DURATION_CEILING_SECONDS = 600.0
INTERACTION_CEILING = 100

# Added to category affinity by complexity level
EXPERIENCE_BOOST = {
    "beginner": 0.0,
    "intermediate": 0.05,
    "advanced": 0.1,
}
PREFERRED_CATEGORY_BOOST = 0.2
PROVIDER_AFFINITY_THRESHOLD = 60.0


class SpeedPreference(str, Enum):
    FAST = "fast"
    BALANCED = "balanced"
    QUALITY = "quality"


class ComplexityLevel(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class ExpertiseLevel(str, Enum):
    NOVICE = "novice"
    INTERMEDIATE = "intermediate"
    EXPERT = "expert"
    POWER_USER = "power_user"


def _ordered_unique(values, limit: int) -> Tuple[str, ...]:
    """Keep first occurrences, then keep the newest ``limit`` entries."""
    seen: List[str] = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return tuple(seen[-limit:]) if limit else ()


def _clamp_scores(scores: Dict[str, float]) -> Dict[str, float]:
    return {key: clamp(float(value), 0.0, 100.0) for key, value in scores.items()}


@dataclass(frozen=True)
class UserPreferences:
    preferred_categories: Tuple[str, ...] = ()
    preferred_providers: Tuple[str, ...] = ()
    preferred_tags: FrozenSet[str] = frozenset()
    quality_threshold: float = DEFAULT_QUALITY_THRESHOLD
    speed_preference: SpeedPreference = SpeedPreference.BALANCED
    complexity_level: ComplexityLevel = ComplexityLevel.BEGINNER

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "preferred_categories",
            _ordered_unique(self.preferred_categories, MAX_PREFERRED_CATEGORIES),
        )
        object.__setattr__(
            self,
            "preferred_providers",
            _ordered_unique(self.preferred_providers, MAX_PREFERRED_PROVIDERS),
        )
        object.__setattr__(self, "preferred_tags", frozenset(self.preferred_tags))
        object.__setattr__(
            self, "quality_threshold", clamp(float(self.quality_threshold), 0.0, 100.0)
        )
        object.__setattr__(
            self, "speed_preference", SpeedPreference(self.speed_preference)
        )
        object.__setattr__(
            self, "complexity_level", ComplexityLevel(self.complexity_level)
        )


@dataclass(frozen=True)
class BehaviorMetrics:
    exploration_score: float = DEFAULT_EXPLORATION_SCORE
    average_session_duration_seconds: float = DEFAULT_SESSION_DURATION_SECONDS
    most_active_hour_of_day: int = DEFAULT_ACTIVE_HOUR
    total_interactions: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "exploration_score", clamp(float(self.exploration_score), 0.0, 100.0)
        )
        object.__setattr__(
            self,
            "average_session_duration_seconds",
            max(0.0, float(self.average_session_duration_seconds)),
        )
        object.__setattr__(
            self,
            "most_active_hour_of_day",
            int(clamp(int(self.most_active_hour_of_day), 0, 23)),
        )
        object.__setattr__(
            self, "total_interactions", max(0, int(self.total_interactions))
        )


@dataclass(frozen=True)
class EngagementScores:
    category_affinities: Dict[str, float] = field(default_factory=dict)
    provider_affinities: Dict[str, float] = field(default_factory=dict)
    quality_appreciation: float = 50.0
    diversity_index: float = 0.0

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "category_affinities", _clamp_scores(self.category_affinities)
        )
        object.__setattr__(
            self, "provider_affinities", _clamp_scores(self.provider_affinities)
        )
        object.__setattr__(
            self,
            "quality_appreciation",
            clamp(float(self.quality_appreciation), 0.0, 100.0),
        )
        object.__setattr__(
            self, "diversity_index", clamp(float(self.diversity_index), 0.0, 1.0)
        )


@dataclass(frozen=True)
class RecommendationProfileContext:
    primary_interests: Tuple[str, ...]
    quality_expectation: str
    exploration_willingness: str
    time_constraint: str


@dataclass(frozen=True)
class UserProfile:
    """Preferences, behavior metrics and affinities for one user."""

    user_id: str
    preferences: UserPreferences = field(default_factory=UserPreferences)
    behavior_metrics: BehaviorMetrics = field(default_factory=BehaviorMetrics)
    engagement_scores: EngagementScores = field(default_factory=EngagementScores)

    def engagement_level(self) -> int:
        """Overall engagement as an integer percentage.

        Averages session duration (capped at 10 minutes), exploration score
        and interaction count (capped at 100) with equal weights.
        """
        metrics = self.behavior_metrics
        session_weight = min(
            metrics.average_session_duration_seconds / SESSION_DURATION_CEILING_SECONDS,
            1.0,
        )
        exploration_weight = metrics.exploration_score / 100
        interaction_weight = min(metrics.total_interactions / INTERACTION_CEILING, 1.0)
        return round_half_up(
            (session_weight + exploration_weight + interaction_weight) * 100 / 3
        )

    def expertise_level(self) -> ExpertiseLevel:
        interactions = self.behavior_metrics.total_interactions
        diversity = self.engagement_scores.diversity_index

        if interactions < 10:
            return ExpertiseLevel.NOVICE
        if interactions < 50 or diversity < 0.3:
            return ExpertiseLevel.INTERMEDIATE
        if interactions < 200 or diversity < 0.6:
            return ExpertiseLevel.EXPERT
        return ExpertiseLevel.POWER_USER

    def recommendation_context(self) -> RecommendationProfileContext:
        """Summarize the profile into coarse tiers used for explanations."""
        affinities = self.engagement_scores.category_affinities
        top_categories = tuple(
            category
            for category, _ in sorted(
                affinities.items(), key=lambda entry: entry[1], reverse=True
            )[:3]
        )

        threshold = self.preferences.quality_threshold
        if threshold > 80:
            quality_expectation = "high"
        elif threshold > 60:
            quality_expectation = "medium"
        else:
            quality_expectation = "flexible"

        exploration = self.behavior_metrics.exploration_score
        if exploration > 70:
            exploration_willingness = "adventurous"
        elif exploration > 40:
            exploration_willingness = "moderate"
        else:
            exploration_willingness = "conservative"

        speed = self.preferences.speed_preference
        if speed == SpeedPreference.FAST:
            time_constraint = "quick"
        elif speed == SpeedPreference.QUALITY:
            time_constraint = "detailed"
        else:
            time_constraint = "standard"

        return RecommendationProfileContext(
            primary_interests=top_categories,
            quality_expectation=quality_expectation,
            exploration_willingness=exploration_willingness,
            time_constraint=time_constraint,
        )

    # Scoring helpers, all on a 0-1 scale

    def category_affinity(self, category: str) -> float:
        base = self.engagement_scores.category_affinities.get(category, 0.0) / 100
        preference_boost = (
            PREFERRED_CATEGORY_BOOST
            if category in self.preferences.preferred_categories
            else 0.0
        )
        experience_boost = EXPERIENCE_BOOST[self.preferences.complexity_level.value]
        return min(1.0, base + preference_boost + experience_boost)

    def has_provider_affinity(self, provider: str) -> bool:
        return (
            provider in self.preferences.preferred_providers
            or self.engagement_scores.provider_affinities.get(provider, 0.0)
            > PROVIDER_AFFINITY_THRESHOLD
        )

    def quality_alignment(self, quality_rating: float) -> float:
        difference = abs(quality_rating - self.preferences.quality_threshold)
        return max(0.0, 1 - difference / 50)

    def time_context_boost(self, current_hour: int) -> float:
        difference = abs(current_hour - self.behavior_metrics.most_active_hour_of_day)
        return max(0.0, 1 - difference / 12)

    def exploration_willingness(self) -> float:
        return self.behavior_metrics.exploration_score / 100

    def affinity(self, kind: AffinityKind, key: str) -> float:
        """Raw 0-100 affinity score for a category or provider."""
        scores = self.engagement_scores
        table = (
            scores.category_affinities
            if kind == AffinityKind.CATEGORY
            else scores.provider_affinities
        )
        return table.get(key, 0.0)


def cold_start_profile(user_id: str) -> UserProfile:
    """Default profile for a user we have never seen.

    Affinities are empty and exploration is conservative, so scoring
    degrades to trending and popularity signals.
    """
    logger.debug(f"Creating cold-start profile for user {user_id}")
    return UserProfile(user_id=user_id)


def with_affinity_delta(
    profile: UserProfile, kind: AffinityKind, key: str, delta: int
) -> UserProfile:
    """Return a copy of ``profile`` with ``delta`` added to one affinity."""
    scores = profile.engagement_scores
    if kind == AffinityKind.CATEGORY:
        table = dict(scores.category_affinities)
        table[key] = clamp(table.get(key, 0.0) + delta, 0.0, 100.0)
        scores = replace(scores, category_affinities=table)
    else:
        table = dict(scores.provider_affinities)
        table[key] = clamp(table.get(key, 0.0) + delta, 0.0, 100.0)
        scores = replace(scores, provider_affinities=table)
    return replace(profile, engagement_scores=scores)


def with_preferences(
    profile: UserProfile, preferences: Optional[UserPreferences]
) -> UserProfile:
    if preferences is None:
        return profile
    return replace(profile, preferences=preferences)
