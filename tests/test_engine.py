"""Tests for the personalization engine.

Covers the end-to-end recommendation flow, per-strategy failure isolation,
the scoring deadline, and the feedback loop into the affinity store.
"""

import asyncio
import time
from datetime import datetime, timezone

import pytest

from affinityrec.exceptions import (
    InvalidFeedbackError,
    ItemNotFoundError,
    RecommendationTimeoutError,
)
from affinityrec.recommender.catalog import InMemoryCatalog
from affinityrec.recommender.engine import PersonalizationEngine
from affinityrec.recommender.models import (
    AffinityKind,
    CandidateItem,
    ReasonType,
    RecommendationContext,
    SessionContext,
)
from affinityrec.recommender.profile import (
    BehaviorMetrics,
    EngagementScores,
    UserPreferences,
    UserProfile,
)
from affinityrec.recommender.store import InMemoryAffinityStore
from affinityrec.recommender.strategies import RecommendationStrategy, default_strategies
from affinityrec.recommender.utils import FixedClock

# 2 AM, away from the default most active hour
NOW = datetime(2024, 5, 1, 2, 0, tzinfo=timezone.utc)


class BrokenStrategy(RecommendationStrategy):
    name = "broken"

    def score(self, profile, candidates, limit, context=None):
        raise RuntimeError("scorer exploded")


class SlowStrategy(RecommendationStrategy):
    name = "slow"

    def score(self, profile, candidates, limit, context=None):
        time.sleep(0.5)
        return []


def make_catalog_items():
    items = [
        CandidateItem(id="featured-1", category="fantasy", provider="midjourney", featured=True, quality_rating=30),
        CandidateItem(id="popular-1", category="portrait", provider="dall-e", like_count=3000, quality_rating=30),
    ]
    items += [
        CandidateItem(
            id=f"anime-{i}",
            category="anime",
            provider="flux",
            quality_rating=70 - i,
            tags=frozenset({"neon"}),
        )
        for i in range(8)
    ]
    items += [
        CandidateItem(id=f"land-{i}", category="landscape", provider="imagen", quality_rating=40)
        for i in range(4)
    ]
    return items


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def store(clock):
    return InMemoryAffinityStore(clock=clock)


@pytest.fixture
def catalog():
    return InMemoryCatalog(make_catalog_items())


@pytest.fixture
def engine(catalog, store, clock):
    return PersonalizationEngine(catalog=catalog, store=store, clock=clock)


def assert_valid_response(recs, max_results):
    ids = [rec.item.id for rec in recs]
    assert len(ids) == len(set(ids))
    assert len(recs) <= max_results
    for rec in recs:
        assert rec.reasons
        assert 0.0 <= rec.relevance_score <= 1.0
        assert 0.0 <= rec.confidence_score <= 1.0


@pytest.mark.asyncio
async def test_cold_start_returns_trending_items(engine):
    result = await engine.get_recommendations("new-user")

    by_id = {rec.item.id: rec for rec in result.recommendations}
    assert "featured-1" in by_id
    assert ReasonType.TRENDING in by_id["featured-1"].reason_types
    assert_valid_response(result.recommendations, 20)
    assert result.metadata.total_candidates == len(make_catalog_items())
    assert result.metadata.failed_strategies == ()


@pytest.mark.asyncio
@pytest.mark.parametrize("max_results", [0, 1, 3, 7, 20])
async def test_size_bound_and_uniqueness(engine, max_results):
    context = RecommendationContext(
        max_results=max_results,
        session_context=SessionContext(current_category="anime"),
    )

    result = await engine.get_recommendations("u1", context)

    assert_valid_response(result.recommendations, max_results)
    if max_results == 0:
        assert result.recommendations == []


@pytest.mark.asyncio
async def test_excluded_items_never_returned(engine):
    context = RecommendationContext(exclude_item_ids={"featured-1", "popular-1"})

    result = await engine.get_recommendations("u1", context)

    ids = {rec.item.id for rec in result.recommendations}
    assert not ids & {"featured-1", "popular-1"}


@pytest.mark.asyncio
async def test_empty_catalog_returns_empty_list(store, clock):
    engine = PersonalizationEngine(catalog=InMemoryCatalog(), store=store, clock=clock)

    result = await engine.get_recommendations("u1")

    assert result.recommendations == []
    assert result.metadata.total_candidates == 0


@pytest.mark.asyncio
async def test_generate_recommendations_with_explicit_profile(engine, catalog):
    explorer = UserProfile(
        user_id="u1",
        behavior_metrics=BehaviorMetrics(exploration_score=90),
        engagement_scores=EngagementScores(category_affinities={"anime": 90}),
    )

    recs = await engine.generate_recommendations(
        explorer, RecommendationContext(max_results=20), await catalog.list_candidates()
    )

    reason_types = {t for rec in recs for t in rec.reason_types}
    assert ReasonType.CATEGORY_AFFINITY in reason_types
    assert ReasonType.EXPLORATION in reason_types
    assert sum(1 for rec in recs if rec.item.category == "anime") <= 5


@pytest.mark.asyncio
async def test_failing_strategy_is_isolated(catalog, store, clock):
    engine = PersonalizationEngine(
        catalog=catalog,
        store=store,
        clock=clock,
        strategies=default_strategies() + [BrokenStrategy()],
    )

    result = await engine.get_recommendations("u1")

    assert result.recommendations
    assert result.metadata.failed_strategies == ("broken",)
    assert result.metadata.strategy_counts["broken"] == 0
    assert result.metadata.strategy_counts["trending"] >= 1


@pytest.mark.asyncio
async def test_deadline_raises_timeout(catalog, store, clock):
    engine = PersonalizationEngine(
        catalog=catalog,
        store=store,
        clock=clock,
        strategies=[SlowStrategy()],
    )

    with pytest.raises(RecommendationTimeoutError) as exc_info:
        await engine.get_recommendations("u1", RecommendationContext(deadline_seconds=0.05))

    assert exc_info.value.status_code == 504


@pytest.mark.asyncio
async def test_store_outage_falls_back_to_cold_start(engine, store):
    store.available = False

    result = await engine.get_recommendations("u1")

    assert "featured-1" in {rec.item.id for rec in result.recommendations}


# Feedback


@pytest.mark.asyncio
async def test_feedback_updates_cache_and_store(engine, store):
    outcome = await engine.record_feedback("u1", "anime-0", "view", 5)
    await engine.drain()

    assert outcome.deltas_by_key[(AffinityKind.CATEGORY, "anime")] == 8
    assert engine.cached_profile("u1").affinity(AffinityKind.CATEGORY, "anime") == 8.0
    assert store.get_record("u1", AffinityKind.CATEGORY, "anime").score == 8.0
    assert store.get_record("u1", AffinityKind.PROVIDER, "flux").score == 8.0
    assert len(await store.get_interaction_history("u1", since_days=1)) == 1
    assert engine.pending_tasks == 0

    stored = await store.get_profile("u1")
    assert stored.behavior_metrics.total_interactions == 1


@pytest.mark.asyncio
async def test_feedback_shapes_later_recommendations(engine, store):
    for _ in range(3):
        await engine.record_feedback("u1", "anime-0", "view", 5)
    await engine.drain()

    # Repeats within one clock tick are distinct interactions
    record = store.get_record("u1", AffinityKind.CATEGORY, "anime")
    assert record.score == 24.0
    assert record.interaction_count == 3
    assert engine.cached_profile("u1").affinity(AffinityKind.CATEGORY, "anime") == 24.0

    for _ in range(3):
        await engine.record_feedback("u1", "anime-0", "generate", 10)
    await engine.drain()

    result = await engine.get_recommendations("u1")

    anime = [rec for rec in result.recommendations if rec.item.category == "anime"]
    assert anime
    assert ReasonType.CATEGORY_AFFINITY in anime[0].reason_types


@pytest.mark.asyncio
async def test_invalid_feedback_is_rejected(engine, store):
    with pytest.raises(InvalidFeedbackError):
        await engine.record_feedback("u1", "anime-0", "view", 11)
    with pytest.raises(InvalidFeedbackError):
        await engine.record_feedback("u1", "anime-0", "swipe", 5)

    assert engine.cached_profile("u1") is None
    assert engine.pending_tasks == 0


@pytest.mark.asyncio
async def test_feedback_for_unknown_item(engine):
    with pytest.raises(ItemNotFoundError) as exc_info:
        await engine.record_feedback("u1", "missing", "view", 5)

    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_feedback_survives_store_outage(engine, store):
    store.available = False

    outcome = await engine.record_feedback("u1", "anime-0", "like", 6)
    await engine.drain()

    assert outcome.affinity_deltas
    assert engine.cached_profile("u1") is None
    assert not engine.learner.has_window("u1")

    store.available = True
    assert store.get_record("u1", AffinityKind.CATEGORY, "anime") is None


@pytest.mark.asyncio
async def test_store_outage_during_feedback_keeps_stored_profile(catalog, clock):
    existing = UserProfile(
        user_id="u1",
        preferences=UserPreferences(preferred_categories=("portrait",), quality_threshold=90),
        behavior_metrics=BehaviorMetrics(total_interactions=40),
    )
    store = InMemoryAffinityStore(clock=clock, profiles=[existing])
    engine = PersonalizationEngine(catalog=catalog, store=store, clock=clock)

    store.available = False
    await engine.record_feedback("u1", "anime-0", "view", 5)
    store.available = True
    await engine.drain()

    stored = await store.get_profile("u1")
    assert stored.behavior_metrics.total_interactions == 40
    assert stored.preferences.preferred_categories == ("portrait",)
    assert stored.preferences.quality_threshold == 90
    assert engine.cached_profile("u1") is None

    # Once the store is back, learning continues from the stored profile
    await engine.record_feedback("u1", "anime-0", "view", 5)
    await engine.drain()

    stored = await store.get_profile("u1")
    assert stored.behavior_metrics.total_interactions == 41
    assert engine.cached_profile("u1").behavior_metrics.total_interactions == 41


@pytest.mark.asyncio
async def test_failed_persistence_invalidates_cached_profile(engine, store):
    await engine.record_feedback("u1", "anime-0", "view", 5)
    assert engine.cached_profile("u1") is not None

    store.available = False
    await engine.drain()
    store.available = True

    assert engine.cached_profile("u1") is None
    assert store.get_record("u1", AffinityKind.CATEGORY, "anime") is None

    result = await engine.get_recommendations("u1")
    assert result.recommendations
    assert engine.cached_profile("u1").affinity(AffinityKind.CATEGORY, "anime") == 0.0


@pytest.mark.asyncio
async def test_concurrent_feedback_for_one_user(engine, store):
    interactions = [
        ("anime-0", "view", 5),
        ("anime-1", "like", 6),
        ("anime-2", "view", 9),
        ("anime-3", "bookmark", 4),
        ("anime-4", "view", 5),
    ]

    outcomes = await asyncio.gather(
        *(
            engine.record_feedback("u1", item_id, interaction_type, engagement)
            for item_id, interaction_type, engagement in interactions
        )
    )
    await engine.drain()

    expected = min(
        100.0, sum(o.deltas_by_key[(AffinityKind.CATEGORY, "anime")] for o in outcomes)
    )
    record = store.get_record("u1", AffinityKind.CATEGORY, "anime")
    assert record.score == expected
    assert record.interaction_count == len(interactions)

    cached = engine.cached_profile("u1")
    stored = await store.get_profile("u1")
    assert cached.affinity(AffinityKind.CATEGORY, "anime") == expected
    assert cached.affinity(AffinityKind.PROVIDER, "flux") == stored.affinity(
        AffinityKind.PROVIDER, "flux"
    )
    assert stored.behavior_metrics.total_interactions == len(interactions)
    assert cached.behavior_metrics == stored.behavior_metrics
    assert len(await store.get_interaction_history("u1", since_days=1)) == len(interactions)


@pytest.mark.asyncio
async def test_profile_cache_is_bounded(catalog, store, clock):
    engine = PersonalizationEngine(
        catalog=catalog, store=store, clock=clock, max_cached_profiles=2
    )

    for user_id in ("u1", "u2", "u3"):
        await engine.get_recommendations(user_id)

    assert engine.cached_profile("u1") is None
    assert engine.cached_profile("u2") is not None
    assert engine.cached_profile("u3") is not None


@pytest.mark.asyncio
async def test_learner_window_is_seeded_from_store(catalog, clock):
    store = InMemoryAffinityStore(clock=clock)
    first = PersonalizationEngine(catalog=catalog, store=store, clock=clock)
    for _ in range(2):
        await first.record_feedback("u1", "anime-0", "view", 9)
    await first.drain()

    # A fresh engine sharing the store continues from the persisted history
    second = PersonalizationEngine(catalog=catalog, store=store, clock=clock)
    outcome = await second.record_feedback("u1", "anime-1", "view", 9)

    assert len(second.learner.window("u1")) == 3
    assert "category_preference" in {i.type.value for i in outcome.insights}
    await second.drain()

