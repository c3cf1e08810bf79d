"""Affinity store interface and in-memory implementation.

The store is the durable home of user profiles, per-category and
per-provider affinity records, and the append-only interaction log.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from affinityrec.exceptions import AffinityStoreError
from affinityrec.recommender.models import AffinityKind, InteractionEvent
from affinityrec.recommender.profile import UserProfile, cold_start_profile
from affinityrec.recommender.utils import (
    BoundedUserDict,
    Clock,
    SystemClock,
    check_snapshot_exists,
    clamp,
    load_snapshot,
    save_snapshot,
)

# Configure module logger
logger = logging.getLogger(__name__)

AffinityKey = Tuple[AffinityKind, str]

# Retries of a delta are expected within this window
DELTA_ID_RETENTION_DAYS = 7
MAX_DELTA_IDS = 1000000
MAX_USER_LOCKS = 10000


@dataclass(frozen=True)
class AffinityRecord:
    """Stored affinity for one (user, kind, key)."""

    score: float = 0.0
    interaction_count: int = 0
    last_interaction_at: Optional[datetime] = None


class AffinityStore(ABC):
    """Durable per-user affinity tables and interaction log.

    Implementations raise :class:`AffinityStoreError` when the backing
    storage cannot serve a request.
    """

    @abstractmethod
    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        """Return the stored profile, or None for an unknown user."""

    @abstractmethod
    async def save_profile(self, profile: UserProfile) -> None:
        """Persist preferences and behavior metrics.

        Affinity tables are not written here; they only change through
        :meth:`apply_affinity_delta`.
        """

    @abstractmethod
    async def apply_affinity_delta(
        self,
        user_id: str,
        kind: AffinityKind,
        key: str,
        delta: int,
        delta_id: Optional[str] = None,
    ) -> AffinityRecord:
        """Add ``delta`` to one affinity score, clamped to [0, 100].

        A delta carrying a ``delta_id`` that was already applied is ignored,
        so retries are safe.
        """

    @abstractmethod
    async def append_interaction(self, event: InteractionEvent) -> None:
        """Append an event to the user's interaction log."""

    @abstractmethod
    async def get_interaction_history(
        self, user_id: str, since_days: int
    ) -> List[InteractionEvent]:
        """Events of the last ``since_days`` days, oldest first."""


class InMemoryAffinityStore(AffinityStore):
    """Process-local store with per-user write serialization.

    Set ``available`` to False to make every call raise
    :class:`AffinityStoreError`.

    Applied delta ids are remembered for ``delta_id_retention_days`` and at
    most ``max_delta_ids`` of them are kept, oldest dropped first.
    """

    def __init__(
        self,
        clock: Optional[Clock] = None,
        profiles: Optional[Iterable[UserProfile]] = None,
        delta_id_retention_days: int = DELTA_ID_RETENTION_DAYS,
        max_delta_ids: int = MAX_DELTA_IDS,
    ):
        self.clock = clock or SystemClock()
        self.available = True
        self._profiles: Dict[str, UserProfile] = {}
        self._records: Dict[str, Dict[AffinityKey, AffinityRecord]] = {}
        self._interactions: Dict[str, List[InteractionEvent]] = {}
        self.delta_id_retention = timedelta(days=delta_id_retention_days)
        self.max_delta_ids = max_delta_ids
        self._applied_delta_ids: "OrderedDict[str, datetime]" = OrderedDict()
        self._locks: Dict[str, asyncio.Lock] = BoundedUserDict(
            MAX_USER_LOCKS, can_evict=lambda lock: not lock.locked()
        )

        for profile in profiles or ():
            self._seed_profile(profile)

    def _seed_profile(self, profile: UserProfile) -> None:
        """Store a full profile, affinity tables included."""
        self._profiles[profile.user_id] = profile
        records = self._records.setdefault(profile.user_id, {})
        scores = profile.engagement_scores
        for category, score in scores.category_affinities.items():
            records[(AffinityKind.CATEGORY, category)] = AffinityRecord(score=score)
        for provider, score in scores.provider_affinities.items():
            records[(AffinityKind.PROVIDER, provider)] = AffinityRecord(score=score)

    def _check_available(self, operation: str) -> None:
        if not self.available:
            raise AffinityStoreError(operation)

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        return self._locks.setdefault(user_id, asyncio.Lock())

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        self._check_available("get_profile")

        profile = self._profiles.get(user_id)
        records = self._records.get(user_id)
        if profile is None and not records:
            return None

        profile = profile or cold_start_profile(user_id)
        categories = {}
        providers = {}
        for (kind, key), record in (records or {}).items():
            table = categories if kind == AffinityKind.CATEGORY else providers
            table[key] = record.score

        scores = replace(
            profile.engagement_scores,
            category_affinities=categories,
            provider_affinities=providers,
        )
        return replace(profile, engagement_scores=scores)

    async def save_profile(self, profile: UserProfile) -> None:
        self._check_available("save_profile")
        async with self._lock_for(profile.user_id):
            self._profiles[profile.user_id] = profile

    async def apply_affinity_delta(
        self,
        user_id: str,
        kind: AffinityKind,
        key: str,
        delta: int,
        delta_id: Optional[str] = None,
    ) -> AffinityRecord:
        self._check_available("apply_affinity_delta")
        kind = AffinityKind(kind)

        async with self._lock_for(user_id):
            records = self._records.setdefault(user_id, {})
            current = records.get((kind, key), AffinityRecord())

            if delta_id is not None and delta_id in self._applied_delta_ids:
                logger.debug(
                    "Skipping already applied affinity delta",
                    extra={"user_id": user_id, "delta_id": delta_id},
                )
                return current

            updated = AffinityRecord(
                score=clamp(current.score + delta, 0.0, 100.0),
                interaction_count=current.interaction_count + 1,
                last_interaction_at=self.clock.now(),
            )
            records[(kind, key)] = updated
            if delta_id is not None:
                self._remember_delta_id(delta_id, updated.last_interaction_at)

        return updated

    def _remember_delta_id(self, delta_id: str, applied_at: datetime) -> None:
        self._applied_delta_ids[delta_id] = applied_at
        cutoff = applied_at - self.delta_id_retention
        while self._applied_delta_ids:
            oldest_at = next(iter(self._applied_delta_ids.values()))
            if len(self._applied_delta_ids) <= self.max_delta_ids and oldest_at >= cutoff:
                break
            self._applied_delta_ids.popitem(last=False)

    async def append_interaction(self, event: InteractionEvent) -> None:
        self._check_available("append_interaction")
        async with self._lock_for(event.user_id):
            self._interactions.setdefault(event.user_id, []).append(event)

    async def get_interaction_history(
        self, user_id: str, since_days: int
    ) -> List[InteractionEvent]:
        self._check_available("get_interaction_history")
        cutoff = self.clock.now() - timedelta(days=since_days)
        events = [e for e in self._interactions.get(user_id, []) if e.timestamp >= cutoff]
        return sorted(events, key=lambda e: e.timestamp)

    def get_record(self, user_id: str, kind: AffinityKind, key: str) -> Optional[AffinityRecord]:
        return self._records.get(user_id, {}).get((AffinityKind(kind), key))

    # Snapshots

    def snapshot(self, output_dir: str) -> None:
        """Write the whole store to ``output_dir`` with joblib."""
        save_snapshot(
            {
                "profiles": dict(self._profiles),
                "records": {user: dict(table) for user, table in self._records.items()},
                "interactions": {
                    user: list(events) for user, events in self._interactions.items()
                },
                "applied_delta_ids": dict(self._applied_delta_ids),
            },
            output_dir,
        )

    @classmethod
    def from_snapshot(cls, snapshot_dir: str, clock: Optional[Clock] = None) -> "InMemoryAffinityStore":
        """Restore a store written by :meth:`snapshot`.

        Raises:
            FileNotFoundError: If no snapshot exists in ``snapshot_dir``.
        """
        state = load_snapshot(snapshot_dir)
        store = cls(clock=clock)
        store._profiles = dict(state.get("profiles", {}))
        store._records = {
            user: dict(table) for user, table in state.get("records", {}).items()
        }
        store._interactions = {
            user: list(events) for user, events in state.get("interactions", {}).items()
        }
        store._applied_delta_ids = OrderedDict(state.get("applied_delta_ids", {}))
        return store

    @classmethod
    def from_snapshot_or_empty(cls, snapshot_dir: Optional[str], clock: Optional[Clock] = None) -> "InMemoryAffinityStore":
        if snapshot_dir and check_snapshot_exists(snapshot_dir):
            return cls.from_snapshot(snapshot_dir, clock=clock)
        logger.info("Starting with an empty affinity store")
        return cls(clock=clock)
