"""Tests for the in-memory affinity store."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from affinityrec.exceptions import AffinityStoreError
from affinityrec.recommender.models import AffinityKind, InteractionEvent, InteractionType
from affinityrec.recommender.profile import (
    EngagementScores,
    UserPreferences,
    UserProfile,
)
from affinityrec.recommender.store import InMemoryAffinityStore
from affinityrec.recommender.utils import BoundedUserDict, FixedClock, check_snapshot_exists

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def store(clock):
    return InMemoryAffinityStore(clock=clock)


def make_event(timestamp, item_id="i1"):
    return InteractionEvent(
        user_id="u1",
        item_id=item_id,
        interaction_type=InteractionType.VIEW,
        engagement_level=5,
        timestamp=timestamp,
    )


@pytest.mark.asyncio
async def test_unknown_user_has_no_profile(store):
    assert await store.get_profile("nobody") is None


@pytest.mark.asyncio
async def test_apply_delta_updates_record(store):
    record = await store.apply_affinity_delta("u1", AffinityKind.CATEGORY, "anime", 8)

    assert record.score == 8.0
    assert record.interaction_count == 1
    assert record.last_interaction_at == NOW

    profile = await store.get_profile("u1")
    assert profile.engagement_scores.category_affinities == {"anime": 8.0}


@pytest.mark.asyncio
async def test_delta_ids_are_applied_exactly_once(store):
    for _ in range(3):
        await store.apply_affinity_delta(
            "u1", AffinityKind.PROVIDER, "flux", 8, delta_id="delta-1"
        )

    record = store.get_record("u1", AffinityKind.PROVIDER, "flux")
    assert record.score == 8.0
    assert record.interaction_count == 1

    await store.apply_affinity_delta("u1", AffinityKind.PROVIDER, "flux", 8, delta_id="delta-2")
    assert store.get_record("u1", AffinityKind.PROVIDER, "flux").score == 16.0


@pytest.mark.asyncio
async def test_applied_delta_ids_expire(clock):
    store = InMemoryAffinityStore(clock=clock, delta_id_retention_days=7)
    await store.apply_affinity_delta("u1", AffinityKind.CATEGORY, "anime", 8, delta_id="old")

    clock.advance(days=8)
    await store.apply_affinity_delta("u1", AffinityKind.CATEGORY, "anime", 8, delta_id="new")

    assert "old" not in store._applied_delta_ids
    assert "new" in store._applied_delta_ids


@pytest.mark.asyncio
async def test_applied_delta_ids_are_capped(clock):
    store = InMemoryAffinityStore(clock=clock, max_delta_ids=2)
    for i in range(3):
        await store.apply_affinity_delta("u1", AffinityKind.CATEGORY, "anime", 1, delta_id=f"d{i}")

    assert list(store._applied_delta_ids) == ["d1", "d2"]
    # A retry within the kept ids is still ignored
    await store.apply_affinity_delta("u1", AffinityKind.CATEGORY, "anime", 1, delta_id="d2")
    assert store.get_record("u1", AffinityKind.CATEGORY, "anime").score == 3.0


@pytest.mark.asyncio
async def test_scores_are_clamped(store):
    await store.apply_affinity_delta("u1", AffinityKind.CATEGORY, "anime", 90)
    record = await store.apply_affinity_delta("u1", AffinityKind.CATEGORY, "anime", 90)
    assert record.score == 100.0

    record = await store.apply_affinity_delta("u1", AffinityKind.CATEGORY, "anime", -250)
    assert record.score == 0.0


@pytest.mark.asyncio
async def test_save_profile_keeps_stored_affinities(store):
    await store.apply_affinity_delta("u1", AffinityKind.CATEGORY, "anime", 30)
    profile = UserProfile(
        user_id="u1",
        preferences=UserPreferences(preferred_categories=("anime",)),
        engagement_scores=EngagementScores(category_affinities={"anime": 99}),
    )

    await store.save_profile(profile)
    stored = await store.get_profile("u1")

    assert stored.preferences.preferred_categories == ("anime",)
    assert stored.engagement_scores.category_affinities == {"anime": 30.0}


@pytest.mark.asyncio
async def test_seeded_profiles_include_affinities(clock):
    profile = UserProfile(
        user_id="u1",
        engagement_scores=EngagementScores(
            category_affinities={"anime": 40}, provider_affinities={"flux": 70}
        ),
    )
    store = InMemoryAffinityStore(clock=clock, profiles=[profile])

    stored = await store.get_profile("u1")

    assert stored.engagement_scores.category_affinities == {"anime": 40.0}
    assert stored.engagement_scores.provider_affinities == {"flux": 70.0}


@pytest.mark.asyncio
async def test_interaction_history_filters_by_age(store):
    await store.append_interaction(make_event(NOW - timedelta(days=40), "old"))
    await store.append_interaction(make_event(NOW - timedelta(hours=1), "recent"))
    await store.append_interaction(make_event(NOW - timedelta(days=2), "older"))

    history = await store.get_interaction_history("u1", since_days=30)

    assert [event.item_id for event in history] == ["older", "recent"]


@pytest.mark.asyncio
async def test_unavailable_store_raises(store):
    store.available = False

    with pytest.raises(AffinityStoreError) as exc_info:
        await store.get_profile("u1")
    assert exc_info.value.status_code == 503

    with pytest.raises(AffinityStoreError):
        await store.apply_affinity_delta("u1", AffinityKind.CATEGORY, "anime", 8)


@pytest.mark.asyncio
async def test_snapshot_round_trip(store, clock, tmp_path):
    await store.apply_affinity_delta("u1", AffinityKind.CATEGORY, "anime", 8, delta_id="d1")
    await store.append_interaction(make_event(NOW))

    store.snapshot(str(tmp_path))
    assert check_snapshot_exists(str(tmp_path))

    restored = InMemoryAffinityStore.from_snapshot(str(tmp_path), clock=clock)
    profile = await restored.get_profile("u1")
    assert profile.engagement_scores.category_affinities == {"anime": 8.0}
    assert len(await restored.get_interaction_history("u1", since_days=1)) == 1

    # Applied delta ids survive the round trip
    await restored.apply_affinity_delta("u1", AffinityKind.CATEGORY, "anime", 8, delta_id="d1")
    assert restored.get_record("u1", AffinityKind.CATEGORY, "anime").score == 8.0


def test_missing_snapshot(tmp_path, clock):
    with pytest.raises(FileNotFoundError):
        InMemoryAffinityStore.from_snapshot(str(tmp_path / "missing"))

    store = InMemoryAffinityStore.from_snapshot_or_empty(str(tmp_path / "missing"), clock=clock)
    assert store.get_record("u1", AffinityKind.CATEGORY, "anime") is None


@pytest.mark.asyncio
async def test_held_locks_are_not_evicted():
    locks = BoundedUserDict(maxlen=1, can_evict=lambda lock: not lock.locked())
    held = asyncio.Lock()
    await held.acquire()

    locks["u1"] = held
    locks["u2"] = asyncio.Lock()
    assert list(locks) == ["u1", "u2"]

    held.release()
    locks["u3"] = asyncio.Lock()
    assert list(locks) == ["u3"]
