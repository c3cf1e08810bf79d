"""Behavior learning from interaction feedback.

Turns each interaction event into insights about the user, integer affinity
deltas for the item's category and provider, and an updated preference set.
The learner only keeps a bounded, per-user window of recent interactions;
the durable history lives in the affinity store.
"""

import hashlib
import logging
import threading
from collections import deque
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Deque, Dict, Iterable, List, Optional, Tuple

import numpy as np

from affinityrec.exceptions import InvalidFeedbackError
from affinityrec.recommender.models import (
    AffinityKind,
    CandidateItem,
    InteractionEvent,
    InteractionType,
)
from affinityrec.recommender.profile import (
    MAX_PREFERRED_CATEGORIES,
    MAX_PREFERRED_PROVIDERS,
    UserPreferences,
    UserProfile,
    cold_start_profile,
    with_affinity_delta,
    with_preferences,
)
from affinityrec.recommender.utils import (
    BoundedUserDict,
    Clock,
    SystemClock,
    round_half_up,
)

# Configure module logger
logger = logging.getLogger(__name__)

# Window bounds
DEFAULT_WINDOW_SIZE = 1000
DEFAULT_WINDOW_DAYS = 30
DEFAULT_MAX_USERS = 10000
RECENT_OUTCOMES_KEPT = 3

# Base affinity weight per interaction type
BASE_WEIGHTS: Dict[InteractionType, float] = {
    InteractionType.VIEW: 0.1,
    InteractionType.LIKE: 0.3,
    InteractionType.BOOKMARK: 0.5,
    InteractionType.GENERATE: 0.7,
    InteractionType.SHARE: 0.4,
    InteractionType.DOWNLOAD: 0.6,
}
ENGAGEMENT_MULTIPLIER = 1.5

MIN_ENGAGEMENT = 1
MAX_ENGAGEMENT = 10

# Preference update thresholds
CATEGORY_PREFERENCE_BOOST = 0.3
PROVIDER_PREFERENCE_BOOST = 0.4
QUALITY_THRESHOLD_STEP = 5
QUALITY_THRESHOLD_CAP = 95

# Recommendations are only surfaced for insights above this confidence
ACTIONABLE_CONFIDENCE = 0.6

# Number of categories at which the diversity index saturates
DIVERSITY_SATURATION = 5


class InsightType(str, Enum):
    CATEGORY_PREFERENCE = "category_preference"
    PROVIDER_AFFINITY = "provider_affinity"
    QUALITY_THRESHOLD = "quality_threshold"
    USAGE_PATTERN = "usage_pattern"


@dataclass(frozen=True)
class ObservedInteraction:
    """An event joined with the attributes of the item it touched."""

    event: InteractionEvent
    category: str
    provider: str


@dataclass(frozen=True)
class BehaviorInsight:
    type: InsightType
    description: str
    confidence: float
    actionable_recommendation: str


@dataclass(frozen=True)
class AffinityDelta:
    """Integer change to one affinity score.

    ``delta_id`` is derived from the event, so a retried persist of the same
    delta carries the same id.
    """

    kind: AffinityKind
    key: str
    delta: int
    delta_id: str


@dataclass(frozen=True)
class LearningOutcome:
    user_id: str
    boost: float
    updated_preferences: UserPreferences
    affinity_deltas: Tuple[AffinityDelta, ...]
    insights: Tuple[BehaviorInsight, ...]
    actionable_recommendations: Tuple[str, ...]

    @property
    def deltas_by_key(self) -> Dict[Tuple[AffinityKind, str], int]:
        return {(delta.kind, delta.key): delta.delta for delta in self.affinity_deltas}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "boost": self.boost,
            "affinity_deltas": [
                {"kind": d.kind.value, "key": d.key, "delta": d.delta}
                for d in self.affinity_deltas
            ],
            "insights": [
                {
                    "type": insight.type.value,
                    "description": insight.description,
                    "confidence": insight.confidence,
                }
                for insight in self.insights
            ],
            "actionable_recommendations": list(self.actionable_recommendations),
        }


def validate_feedback(interaction_type: Any, engagement_level: Any) -> Tuple[InteractionType, int]:
    """Validate raw feedback input.

    Values are rejected, never clamped.

    Args:
        interaction_type: One of the ``InteractionType`` values.
        engagement_level: Integer from 1 to 10.

    Returns:
        Tuple of the parsed interaction type and engagement level.

    Raises:
        InvalidFeedbackError: If either value is out of its allowed domain.
    """
    try:
        parsed_type = InteractionType(interaction_type)
    except ValueError:
        allowed = ", ".join(t.value for t in InteractionType)
        raise InvalidFeedbackError(
            "interaction_type", interaction_type, f"must be one of: {allowed}"
        )

    if isinstance(engagement_level, bool) or not isinstance(engagement_level, int):
        raise InvalidFeedbackError(
            "engagement_level", engagement_level, "must be an integer"
        )
    if not MIN_ENGAGEMENT <= engagement_level <= MAX_ENGAGEMENT:
        raise InvalidFeedbackError(
            "engagement_level",
            engagement_level,
            f"must be between {MIN_ENGAGEMENT} and {MAX_ENGAGEMENT}",
        )

    return parsed_type, engagement_level


def compute_affinity_boost(interaction_type: InteractionType, engagement_level: int) -> float:
    """Affinity boost in [0, 1] for one interaction.

    Example:
        >>> round(compute_affinity_boost(InteractionType.VIEW, 5), 3)
        0.075
    """
    base_weight = BASE_WEIGHTS[InteractionType(interaction_type)]
    return min(1.0, base_weight * (engagement_level / 10) * ENGAGEMENT_MULTIPLIER)


def boost_to_points(boost: float) -> int:
    """Convert a 0-1 boost to the integer points added to a 0-100 score."""
    return round_half_up(boost * 100)


def compute_delta_id(event: InteractionEvent, kind: AffinityKind, key: str) -> str:
    digest = hashlib.sha1(f"{event.event_key}|{kind.value}|{key}".encode("utf-8"))
    return digest.hexdigest()


def compute_affinity_deltas(event: InteractionEvent, item: CandidateItem) -> Tuple[AffinityDelta, ...]:
    """Deltas for the item's category and provider. Pure function of inputs."""
    points = boost_to_points(
        compute_affinity_boost(event.interaction_type, event.engagement_level)
    )
    return (
        AffinityDelta(
            kind=AffinityKind.CATEGORY,
            key=item.category,
            delta=points,
            delta_id=compute_delta_id(event, AffinityKind.CATEGORY, item.category),
        ),
        AffinityDelta(
            kind=AffinityKind.PROVIDER,
            key=item.provider,
            delta=points,
            delta_id=compute_delta_id(event, AffinityKind.PROVIDER, item.provider),
        ),
    )


def update_preferences(
    preferences: UserPreferences,
    event: InteractionEvent,
    item: CandidateItem,
    boost: float,
) -> UserPreferences:
    """Compute the next preference set after one interaction."""
    categories = list(preferences.preferred_categories)
    if boost > CATEGORY_PREFERENCE_BOOST and item.category not in categories:
        categories.append(item.category)

    providers = list(preferences.preferred_providers)
    if boost > PROVIDER_PREFERENCE_BOOST and item.provider not in providers:
        providers.append(item.provider)

    quality_threshold = preferences.quality_threshold
    if event.engagement_level >= 8 and item.quality_rating > quality_threshold:
        quality_threshold = min(QUALITY_THRESHOLD_CAP, quality_threshold + QUALITY_THRESHOLD_STEP)

    return replace(
        preferences,
        preferred_categories=tuple(categories[-MAX_PREFERRED_CATEGORIES:]),
        preferred_providers=tuple(providers[-MAX_PREFERRED_PROVIDERS:]),
        quality_threshold=quality_threshold,
    )


def _modal_hour(timestamps: Iterable[datetime]) -> Optional[Tuple[int, int]]:
    hours = [ts.hour for ts in timestamps]
    if not hours:
        return None
    counts = np.bincount(hours, minlength=24)
    hour = int(np.argmax(counts))
    return hour, int(counts[hour])


def _diversity_index(categories: List[str]) -> float:
    """Normalized entropy of the category mix, saturating at 5 categories."""
    if not categories:
        return 0.0
    _, counts = np.unique(categories, return_counts=True)
    probabilities = counts / counts.sum()
    entropy = float(-(probabilities * np.log(probabilities)).sum())
    return min(1.0, entropy / np.log(DIVERSITY_SATURATION))


def apply_outcome(
    profile: UserProfile,
    outcome: LearningOutcome,
    window: Iterable[ObservedInteraction] = (),
) -> UserProfile:
    """Return the profile refreshed with a learning outcome.

    Applies the affinity deltas and updated preferences, counts the
    interaction, and recomputes the window-derived behavior metrics.
    """
    refreshed = with_preferences(profile, outcome.updated_preferences)
    for delta in outcome.affinity_deltas:
        refreshed = with_affinity_delta(refreshed, delta.kind, delta.key, delta.delta)

    observed = list(window)
    metrics = refreshed.behavior_metrics
    changes: Dict[str, Any] = {"total_interactions": metrics.total_interactions + 1}

    modal = _modal_hour(o.event.timestamp for o in observed)
    if modal is not None:
        changes["most_active_hour_of_day"] = modal[0]

    durations = [
        o.event.session_duration_seconds
        for o in observed
        if o.event.session_duration_seconds is not None
    ]
    if durations:
        changes["average_session_duration_seconds"] = float(np.mean(durations))

    scores = refreshed.engagement_scores
    if observed:
        scores = replace(
            scores, diversity_index=_diversity_index([o.category for o in observed])
        )

    return replace(
        refreshed,
        behavior_metrics=replace(metrics, **changes),
        engagement_scores=scores,
    )


class BehaviorLearner:
    """Learns user affinities from a bounded window of interactions.

    One learner serves many users; each user has an independent window of
    at most ``window_size`` events no older than ``window_days``. Windows of
    the ``max_users`` most recently active users are kept; an evicted user
    is reseeded from durable history on their next interaction.
    """

    def __init__(
        self,
        clock: Optional[Clock] = None,
        window_size: int = DEFAULT_WINDOW_SIZE,
        window_days: int = DEFAULT_WINDOW_DAYS,
        max_users: int = DEFAULT_MAX_USERS,
    ):
        self.clock = clock or SystemClock()
        self.window_size = window_size
        self.window_days = window_days
        self._windows: Dict[str, Deque[ObservedInteraction]] = BoundedUserDict(max_users)
        self._outcomes: Dict[str, Deque[LearningOutcome]] = BoundedUserDict(max_users)
        self._lock = threading.Lock()

        logger.info(
            f"Initialized BehaviorLearner: window_size={window_size}, "
            f"window_days={window_days}"
        )

    def has_window(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self._windows

    def seed(self, user_id: str, history: Iterable[ObservedInteraction]) -> int:
        """Load durable history into an empty window. Returns events kept."""
        with self._lock:
            window = self._window_for(user_id)
            for observed in sorted(history, key=lambda o: o.event.timestamp):
                window.append(observed)
            self._evict_expired(window)
            return len(window)

    def forget(self, user_id: str) -> None:
        """Drop the user's window so it is reseeded from durable history."""
        with self._lock:
            self._windows.pop(user_id, None)

    def window(self, user_id: str) -> List[ObservedInteraction]:
        with self._lock:
            window = self._windows.get(user_id)
            if window is None:
                return []
            self._evict_expired(window)
            return list(window)

    def record_interaction(
        self,
        event: InteractionEvent,
        item: CandidateItem,
        profile: Optional[UserProfile] = None,
    ) -> LearningOutcome:
        """Record one interaction and learn from it.

        Args:
            event: The validated interaction event.
            item: Catalog item the event refers to.
            profile: Current profile of the user; a cold-start profile is
                assumed when omitted.

        Returns:
            LearningOutcome with updated preferences, affinity deltas and the
            insights that fired.
        """
        profile = profile or cold_start_profile(event.user_id)

        with self._lock:
            window = self._window_for(event.user_id)
            window.append(
                ObservedInteraction(
                    event=event, category=item.category, provider=item.provider
                )
            )
            self._evict_expired(window)
            observed = list(window)

        insights = [
            insight
            for insight in (
                self._category_insight(observed, item),
                self._provider_insight(observed, item),
                self._quality_insight(event, item),
                self._usage_insight(observed, event),
            )
            if insight is not None
        ]

        boost = compute_affinity_boost(event.interaction_type, event.engagement_level)
        outcome = LearningOutcome(
            user_id=event.user_id,
            boost=boost,
            updated_preferences=update_preferences(profile.preferences, event, item, boost),
            affinity_deltas=compute_affinity_deltas(event, item),
            insights=tuple(insights),
            actionable_recommendations=tuple(
                insight.actionable_recommendation
                for insight in insights
                if insight.confidence > ACTIONABLE_CONFIDENCE
            ),
        )

        with self._lock:
            history = self._outcomes.setdefault(
                event.user_id, deque(maxlen=RECENT_OUTCOMES_KEPT)
            )
            history.append(outcome)

        logger.debug(
            "Recorded interaction",
            extra={
                "user_id": event.user_id,
                "item_id": event.item_id,
                "interaction_type": event.interaction_type.value,
                "boost": round(boost, 4),
                "num_insights": len(insights),
                "window_size": len(observed),
            },
        )
        return outcome

    def recent_insights(self, user_id: str, limit: int = 5) -> List[BehaviorInsight]:
        """Highest-confidence insights from the last few outcomes."""
        with self._lock:
            outcomes = list(self._outcomes.get(user_id, ()))
        insights = [insight for outcome in outcomes for insight in outcome.insights]
        insights.sort(key=lambda insight: insight.confidence, reverse=True)
        return insights[:limit]

    def interaction_history(self, user_id: str, days: int = DEFAULT_WINDOW_DAYS) -> List[InteractionEvent]:
        cutoff = self.clock.now() - timedelta(days=days)
        return [o.event for o in self.window(user_id) if o.event.timestamp >= cutoff]

    # Window management (callers hold the lock)

    def _window_for(self, user_id: str) -> Deque[ObservedInteraction]:
        window = self._windows.get(user_id)
        if window is None:
            window = deque(maxlen=self.window_size)
            self._windows[user_id] = window
        return window

    def _evict_expired(self, window: Deque[ObservedInteraction]) -> None:
        cutoff = self.clock.now() - timedelta(days=self.window_days)
        while window and window[0].event.timestamp < cutoff:
            window.popleft()

    # Insights

    def _category_insight(
        self, observed: List[ObservedInteraction], item: CandidateItem
    ) -> Optional[BehaviorInsight]:
        matching = [o.event.engagement_level for o in observed if o.category == item.category]
        if len(matching) < 3:
            return None

        avg_engagement = float(np.mean(matching))
        if avg_engagement <= 7:
            return None

        return BehaviorInsight(
            type=InsightType.CATEGORY_PREFERENCE,
            description=f"Strong preference detected for {item.category} items",
            confidence=min(0.9, avg_engagement / 10),
            actionable_recommendation=(
                f"Increase {item.category} recommendations by 30%"
            ),
        )

    def _provider_insight(
        self, observed: List[ObservedInteraction], item: CandidateItem
    ) -> Optional[BehaviorInsight]:
        matching = [o.event.engagement_level for o in observed if o.provider == item.provider]
        if len(matching) < 2:
            return None

        avg_engagement = float(np.mean(matching[-5:]))
        if avg_engagement <= 6:
            return None

        return BehaviorInsight(
            type=InsightType.PROVIDER_AFFINITY,
            description=f"Growing affinity for {item.provider} items",
            confidence=min(0.8, avg_engagement / 10),
            actionable_recommendation=(
                f"Prioritize {item.provider} items in recommendations"
            ),
        )

    def _quality_insight(
        self, event: InteractionEvent, item: CandidateItem
    ) -> Optional[BehaviorInsight]:
        if event.engagement_level >= 8 and item.quality_rating > 80:
            return BehaviorInsight(
                type=InsightType.QUALITY_THRESHOLD,
                description="High engagement with premium quality items detected",
                confidence=0.7,
                actionable_recommendation=(
                    "Adjust quality threshold to favor higher-rated items"
                ),
            )
        return None

    def _usage_insight(
        self, observed: List[ObservedInteraction], event: InteractionEvent
    ) -> Optional[BehaviorInsight]:
        cutoff = self.clock.now() - timedelta(days=7)
        recent = [o.event.timestamp for o in observed if o.event.timestamp > cutoff]
        if len(recent) < 5:
            return None

        hour = event.timestamp.hour
        modal_hour, occurrences = _modal_hour(recent)
        if modal_hour != hour or occurrences < 3:
            return None

        return BehaviorInsight(
            type=InsightType.USAGE_PATTERN,
            description=f"Peak usage detected around {hour}:00",
            confidence=0.6,
            actionable_recommendation=(
                f"Optimize recommendations for {hour}:00 usage context"
            ),
        )
