"""Tests for the user profile value types and scoring helpers."""

import pytest

from affinityrec.recommender.models import AffinityKind
from affinityrec.recommender.profile import (
    BehaviorMetrics,
    ComplexityLevel,
    EngagementScores,
    ExpertiseLevel,
    SpeedPreference,
    UserPreferences,
    UserProfile,
    cold_start_profile,
    with_affinity_delta,
)


def make_profile(**sections) -> UserProfile:
    return UserProfile(user_id="u1", **sections)


def test_cold_start_defaults():
    """Unknown users start with empty affinities and conservative exploration."""
    profile = cold_start_profile("new-user")

    assert profile.user_id == "new-user"
    assert profile.engagement_scores.category_affinities == {}
    assert profile.engagement_scores.provider_affinities == {}
    assert profile.preferences.quality_threshold == 70.0
    assert profile.exploration_willingness() < 0.3
    assert profile.expertise_level() == ExpertiseLevel.NOVICE


def test_engagement_level_is_integer_percentage():
    profile = cold_start_profile("u1")
    # Session weight 1.0, exploration 0.2, interactions 0.0
    assert profile.engagement_level() == 40

    busy = make_profile(
        behavior_metrics=BehaviorMetrics(
            exploration_score=100,
            average_session_duration_seconds=1200,
            total_interactions=500,
        )
    )
    assert busy.engagement_level() == 100


def test_scores_are_clamped_on_construction():
    scores = EngagementScores(
        category_affinities={"anime": 150, "portrait": -5},
        provider_affinities={"flux": 101},
        quality_appreciation=400,
        diversity_index=1.7,
    )

    assert scores.category_affinities == {"anime": 100.0, "portrait": 0.0}
    assert scores.provider_affinities == {"flux": 100.0}
    assert scores.quality_appreciation == 100.0
    assert scores.diversity_index == 1.0

    preferences = UserPreferences(quality_threshold=120)
    assert preferences.quality_threshold == 100.0

    metrics = BehaviorMetrics(exploration_score=-10, most_active_hour_of_day=30)
    assert metrics.exploration_score == 0.0
    assert metrics.most_active_hour_of_day == 23


def test_preferred_lists_are_bounded_keeping_newest():
    preferences = UserPreferences(
        preferred_categories=("a", "b", "c", "d", "e", "f", "g"),
        preferred_providers=("p1", "p2", "p2", "p3", "p4"),
    )

    assert preferences.preferred_categories == ("c", "d", "e", "f", "g")
    assert preferences.preferred_providers == ("p2", "p3", "p4")


@pytest.mark.parametrize(
    "interactions,diversity,expected",
    [
        (5, 0.9, ExpertiseLevel.NOVICE),
        (30, 0.9, ExpertiseLevel.INTERMEDIATE),
        (300, 0.2, ExpertiseLevel.INTERMEDIATE),
        (100, 0.5, ExpertiseLevel.EXPERT),
        (300, 0.5, ExpertiseLevel.EXPERT),
        (300, 0.8, ExpertiseLevel.POWER_USER),
    ],
)
def test_expertise_level(interactions, diversity, expected):
    profile = make_profile(
        behavior_metrics=BehaviorMetrics(total_interactions=interactions),
        engagement_scores=EngagementScores(diversity_index=diversity),
    )
    assert profile.expertise_level() == expected


def test_recommendation_context_tiers():
    profile = make_profile(
        preferences=UserPreferences(
            quality_threshold=85, speed_preference=SpeedPreference.FAST
        ),
        behavior_metrics=BehaviorMetrics(exploration_score=50),
        engagement_scores=EngagementScores(
            category_affinities={"anime": 90, "portrait": 40, "fantasy": 70, "sci-fi": 10}
        ),
    )

    context = profile.recommendation_context()

    assert context.primary_interests == ("anime", "fantasy", "portrait")
    assert context.quality_expectation == "high"
    assert context.exploration_willingness == "moderate"
    assert context.time_constraint == "quick"


def test_category_affinity_combines_boosts():
    profile = make_profile(
        preferences=UserPreferences(
            preferred_categories=("anime",),
            complexity_level=ComplexityLevel.ADVANCED,
        ),
        engagement_scores=EngagementScores(category_affinities={"anime": 50, "fantasy": 95}),
    )

    assert profile.category_affinity("anime") == pytest.approx(0.8)
    assert profile.category_affinity("fantasy") == pytest.approx(1.0)
    assert profile.category_affinity("unknown") == pytest.approx(0.1)


def test_provider_affinity_threshold():
    profile = make_profile(
        preferences=UserPreferences(preferred_providers=("dall-e",)),
        engagement_scores=EngagementScores(provider_affinities={"flux": 61, "imagen": 60}),
    )

    assert profile.has_provider_affinity("dall-e")
    assert profile.has_provider_affinity("flux")
    assert not profile.has_provider_affinity("imagen")
    assert not profile.has_provider_affinity("midjourney")


def test_quality_alignment_and_time_boost():
    profile = cold_start_profile("u1")

    assert profile.quality_alignment(70) == pytest.approx(1.0)
    assert profile.quality_alignment(95) == pytest.approx(0.5)
    assert profile.quality_alignment(10) == 0.0

    # Most active hour defaults to 14
    assert profile.time_context_boost(14) == pytest.approx(1.0)
    assert profile.time_context_boost(20) == pytest.approx(0.5)
    assert profile.time_context_boost(2) == 0.0


def test_with_affinity_delta_returns_new_clamped_profile():
    profile = make_profile(
        engagement_scores=EngagementScores(category_affinities={"anime": 95})
    )

    updated = with_affinity_delta(profile, AffinityKind.CATEGORY, "anime", 20)
    lowered = with_affinity_delta(profile, AffinityKind.PROVIDER, "flux", -10)

    assert updated.affinity(AffinityKind.CATEGORY, "anime") == 100.0
    assert lowered.affinity(AffinityKind.PROVIDER, "flux") == 0.0
    # Original is untouched
    assert profile.affinity(AffinityKind.CATEGORY, "anime") == 95.0
