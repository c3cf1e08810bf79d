"""Personalization engine.

Orchestrates one recommendation request: loads the profile, fetches
candidates, runs the scoring strategies concurrently under a deadline and
hands their output to the combiner. Also the entry point for feedback, which
drives the behavior learner and persists the resulting deltas in the
background.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Set, Tuple

from affinityrec.exceptions import (
    AffinityStoreError,
    ItemNotFoundError,
    RecommendationTimeoutError,
)
from affinityrec.recommender.catalog import CatalogProvider, CsvCatalog, InMemoryCatalog
from affinityrec.recommender.combiner import RecommendationCombiner, diversity_score
from affinityrec.recommender.learner import (
    BehaviorLearner,
    LearningOutcome,
    ObservedInteraction,
    apply_outcome,
    validate_feedback,
)
from affinityrec.recommender.models import (
    CandidateItem,
    InteractionEvent,
    PersonalizedRecommendation,
    RecommendationContext,
    ScoringContext,
    index_by_id,
)
from affinityrec.recommender.profile import UserProfile, cold_start_profile
from affinityrec.recommender.store import AffinityStore, InMemoryAffinityStore
from affinityrec.recommender.strategies import (
    RecommendationStrategy,
    bucket_limits,
    default_strategies,
)
from affinityrec.recommender.utils import BoundedUserDict, Clock, SystemClock

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 5.0
DEFAULT_PROFILE_CACHE_SIZE = 10000


@dataclass(frozen=True)
class RecommendationMetadata:
    total_candidates: int
    processing_time_ms: float
    diversity_score: float
    average_confidence: float
    strategy_counts: Dict[str, int] = field(default_factory=dict)
    failed_strategies: Tuple[str, ...] = ()
    generated_at: Optional[datetime] = None


@dataclass(frozen=True)
class RecommendationResult:
    user_id: str
    recommendations: List[PersonalizedRecommendation]
    metadata: RecommendationMetadata


@dataclass(frozen=True)
class _ScoringRun:
    recommendations: List[PersonalizedRecommendation]
    strategy_counts: Dict[str, int]
    failed_strategies: Tuple[str, ...]


def _is_idle(lock: asyncio.Lock) -> bool:
    return not lock.locked()


class PersonalizationEngine:
    """Hybrid multi-strategy recommender with online behavior learning.

    Args:
        catalog: Source of candidate items.
        store: Durable profile and affinity storage.
        clock: Time source; UTC wall clock by default.
        learner: Behavior learner; one sharing ``clock`` is created if omitted.
        strategies: Scoring strategies; the five default ones if omitted.
        combiner: Merges strategy output into the final list.
        default_timeout: Deadline in seconds for the scoring fan-out when the
            request does not set one.
        max_cached_profiles: How many recently active users keep a cached
            profile and their locks.
    """

    def __init__(
        self,
        catalog: CatalogProvider,
        store: AffinityStore,
        clock: Optional[Clock] = None,
        learner: Optional[BehaviorLearner] = None,
        strategies: Optional[Sequence[RecommendationStrategy]] = None,
        combiner: Optional[RecommendationCombiner] = None,
        default_timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_cached_profiles: int = DEFAULT_PROFILE_CACHE_SIZE,
    ):
        self.catalog = catalog
        self.store = store
        self.clock = clock or SystemClock()
        self.learner = learner or BehaviorLearner(clock=self.clock)
        self.strategies = list(strategies) if strategies is not None else default_strategies()
        self.combiner = combiner or RecommendationCombiner()
        self.default_timeout = default_timeout

        self._profiles: Dict[str, UserProfile] = BoundedUserDict(max_cached_profiles)
        # Held locks stay in the map until released
        self._user_locks: Dict[str, asyncio.Lock] = BoundedUserDict(
            max_cached_profiles, can_evict=_is_idle
        )
        self._persist_locks: Dict[str, asyncio.Lock] = BoundedUserDict(
            max_cached_profiles, can_evict=_is_idle
        )
        self._pending: Set[asyncio.Task] = set()

        logger.info(
            f"Initialized PersonalizationEngine: "
            f"strategies={[s.name for s in self.strategies]}, "
            f"default_timeout={default_timeout}s"
        )

    # Recommendations

    async def generate_recommendations(
        self,
        profile: UserProfile,
        context: RecommendationContext,
        candidates: Sequence[CandidateItem],
    ) -> List[PersonalizedRecommendation]:
        """Score ``candidates`` for ``profile`` and return the final list.

        Raises:
            RecommendationTimeoutError: If scoring misses the deadline.
        """
        run = await self._score(profile, context, candidates)
        return run.recommendations

    async def get_recommendations(
        self,
        user_id: str,
        context: Optional[RecommendationContext] = None,
    ) -> RecommendationResult:
        """Recommendations for a user, with request metadata.

        Unknown users get a cold-start profile. An empty catalog yields an
        empty list.
        """
        context = context or RecommendationContext()
        start_time = time.time()

        profile = await self._load_profile(user_id)
        candidates = await self.catalog.list_candidates()
        run = await self._score(profile, context, candidates)

        recommendations = run.recommendations
        processing_time_ms = (time.time() - start_time) * 1000
        average_confidence = (
            sum(rec.confidence_score for rec in recommendations) / len(recommendations)
            if recommendations
            else 0.0
        )
        metadata = RecommendationMetadata(
            total_candidates=len(candidates),
            processing_time_ms=processing_time_ms,
            diversity_score=diversity_score(recommendations),
            average_confidence=average_confidence,
            strategy_counts=run.strategy_counts,
            failed_strategies=run.failed_strategies,
            generated_at=self.clock.now(),
        )

        logger.info(
            f"Generated {len(recommendations)} recommendations for user {user_id}",
            extra={
                "user_id": user_id,
                "num_candidates": len(candidates),
                "num_recommendations": len(recommendations),
                "processing_time_ms": round(processing_time_ms, 2),
                "failed_strategies": list(run.failed_strategies),
            },
        )
        return RecommendationResult(
            user_id=user_id, recommendations=recommendations, metadata=metadata
        )

    async def _score(
        self,
        profile: UserProfile,
        context: RecommendationContext,
        candidates: Sequence[CandidateItem],
    ) -> _ScoringRun:
        by_id = index_by_id(candidates)
        filtered = [item for item in candidates if item.id not in context.exclude_item_ids]

        if context.max_results == 0 or not filtered:
            return _ScoringRun([], {s.name: 0 for s in self.strategies}, ())

        session = context.session_context
        scoring_context = ScoringContext(
            session=session,
            current_hour=self.clock.current_hour(),
            viewed_items=tuple(
                by_id[item_id] for item_id in session.items_viewed if item_id in by_id
            ),
        )
        limits = bucket_limits(context.max_results)

        async def run_strategy(strategy: RecommendationStrategy):
            limit = limits.get(strategy.name, context.max_results)
            return await asyncio.to_thread(
                strategy.score, profile, filtered, limit, scoring_context
            )

        timeout = (
            context.deadline_seconds
            if context.deadline_seconds is not None
            else self.default_timeout
        )
        try:
            results = await asyncio.wait_for(
                asyncio.gather(
                    *(run_strategy(s) for s in self.strategies),
                    return_exceptions=True,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.error(
                f"Strategy scoring timed out for user {profile.user_id}",
                extra={"user_id": profile.user_id, "timeout_seconds": timeout},
            )
            raise RecommendationTimeoutError(profile.user_id, timeout) from None

        outputs = []
        strategy_counts = {}
        failed = []
        for strategy, result in zip(self.strategies, results):
            if isinstance(result, BaseException):
                logger.error(
                    f"Strategy {strategy.name} failed: {result}",
                    exc_info=result,
                    extra={"user_id": profile.user_id, "strategy": strategy.name},
                )
                failed.append(strategy.name)
                result = []
            strategy_counts[strategy.name] = len(result)
            outputs.append(result)

        recommendations = self.combiner.combine(outputs, context.max_results)
        return _ScoringRun(recommendations, strategy_counts, tuple(failed))

    # Profiles

    async def _load_profile(self, user_id: str) -> UserProfile:
        profile, _ = await self._fetch_profile(user_id)
        return profile

    async def _fetch_profile(self, user_id: str) -> Tuple[UserProfile, bool]:
        """Return the profile and whether it reflects durable state.

        When the store is unavailable the cold-start profile is returned
        with False and nothing is cached.
        """
        cached = self._profiles.get(user_id)
        if cached is not None:
            return cached, True

        try:
            stored = await self.store.get_profile(user_id)
        except AffinityStoreError as e:
            logger.warning(
                f"Affinity store unavailable, using cold-start profile: {e}",
                extra={"user_id": user_id},
            )
            return cold_start_profile(user_id), False

        profile = stored or cold_start_profile(user_id)
        self._profiles[user_id] = profile
        return profile, True

    def cached_profile(self, user_id: str) -> Optional[UserProfile]:
        return self._profiles.get(user_id)

    def invalidate_profile(self, user_id: str) -> None:
        self._profiles.pop(user_id, None)

    # Feedback

    async def record_feedback(
        self,
        user_id: str,
        item_id: str,
        interaction_type,
        engagement_level,
        session_duration_seconds: Optional[float] = None,
        device_type: Optional[str] = None,
        referral_source: Optional[str] = None,
    ) -> LearningOutcome:
        """Learn from one interaction.

        Validation and learning happen before returning; persistence of the
        event and the affinity deltas runs as a background task. If the
        profile cannot be loaded from the store, the outcome is still
        returned but the update is neither cached nor persisted.

        Raises:
            InvalidFeedbackError: If the interaction type or engagement level
                is invalid.
            ItemNotFoundError: If the item is not in the catalog.
        """
        parsed_type, engagement = validate_feedback(interaction_type, engagement_level)

        item = await self.catalog.get_item(item_id)
        if item is None:
            raise ItemNotFoundError(item_id)

        event = InteractionEvent(
            user_id=user_id,
            item_id=item_id,
            interaction_type=parsed_type,
            engagement_level=engagement,
            timestamp=self.clock.now(),
            session_duration_seconds=session_duration_seconds,
            device_type=device_type,
            referral_source=referral_source,
        )

        async with self._user_locks.setdefault(user_id, asyncio.Lock()):
            profile, durable = await self._fetch_profile(user_id)
            if not durable:
                outcome = self.learner.record_interaction(event, item, profile)
                # The window now holds an event the store never saw
                self.learner.forget(user_id)
                logger.error(
                    "Dropped learning update, affinity store unavailable",
                    extra={"user_id": user_id, "item_id": item_id},
                )
                return outcome

            if not self.learner.has_window(user_id):
                await self._seed_window(user_id)

            outcome = self.learner.record_interaction(event, item, profile)
            refreshed = self._refresh_profile(profile, outcome)

        task = asyncio.create_task(self._persist(event, outcome, refreshed))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

        return outcome

    def _refresh_profile(self, profile: UserProfile, outcome: LearningOutcome) -> UserProfile:
        try:
            refreshed = apply_outcome(profile, outcome, self.learner.window(profile.user_id))
        except Exception as e:
            logger.warning(
                f"Profile refresh failed: {e}",
                exc_info=True,
                extra={"user_id": profile.user_id},
            )
            return profile
        self._profiles[profile.user_id] = refreshed
        return refreshed

    async def _seed_window(self, user_id: str) -> None:
        try:
            history = await self.store.get_interaction_history(
                user_id, self.learner.window_days
            )
        except AffinityStoreError as e:
            logger.warning(
                f"Could not load interaction history: {e}",
                extra={"user_id": user_id},
            )
            history = []

        observed = []
        for event in history:
            item = await self.catalog.get_item(event.item_id)
            if item is not None:
                observed.append(
                    ObservedInteraction(
                        event=event, category=item.category, provider=item.provider
                    )
                )
        kept = self.learner.seed(user_id, observed)
        logger.debug(
            "Seeded learner window",
            extra={"user_id": user_id, "window_size": kept},
        )

    async def _persist(
        self, event: InteractionEvent, outcome: LearningOutcome, profile: UserProfile
    ) -> None:
        # Tasks for one user persist in the order they were learned
        lock = self._persist_locks.setdefault(event.user_id, asyncio.Lock())
        try:
            async with lock:
                await self.store.append_interaction(event)
                for delta in outcome.affinity_deltas:
                    await self.store.apply_affinity_delta(
                        event.user_id,
                        delta.kind,
                        delta.key,
                        delta.delta,
                        delta_id=delta.delta_id,
                    )
                await self.store.save_profile(profile)
        except AffinityStoreError as e:
            logger.error(
                f"Dropped feedback persistence: {e}",
                extra={"user_id": event.user_id, "item_id": event.item_id},
            )
            # Reload from the store on the next request
            self.invalidate_profile(event.user_id)
            self.learner.forget(event.user_id)
            return

        logger.debug(
            "Persisted feedback",
            extra={
                "user_id": event.user_id,
                "num_deltas": len(outcome.affinity_deltas),
            },
        )

    async def drain(self) -> None:
        """Wait for all pending background persistence to finish."""
        while True:
            pending = [task for task in self._pending if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    @property
    def pending_tasks(self) -> int:
        return sum(1 for task in self._pending if not task.done())


def build_engine(settings) -> PersonalizationEngine:
    """Wire an engine from :class:`affinityrec.config.Settings`.

    Uses a CSV catalog when ``CATALOG_CSV_PATH`` is set (an empty catalog
    otherwise) and restores the in-memory store from
    ``AFFINITY_SNAPSHOT_PATH`` when a snapshot exists there.
    """
    clock = SystemClock()
    if settings.CATALOG_CSV_PATH:
        catalog = CsvCatalog(settings.CATALOG_CSV_PATH)
    else:
        logger.warning("CATALOG_CSV_PATH not set, serving an empty catalog")
        catalog = InMemoryCatalog()

    store = InMemoryAffinityStore.from_snapshot_or_empty(
        settings.AFFINITY_SNAPSHOT_PATH, clock=clock
    )
    learner = BehaviorLearner(
        clock=clock,
        window_size=settings.INTERACTION_WINDOW_SIZE,
        window_days=settings.INTERACTION_WINDOW_DAYS,
        max_users=settings.MAX_CACHED_USERS,
    )
    return PersonalizationEngine(
        catalog=catalog,
        store=store,
        clock=clock,
        learner=learner,
        default_timeout=settings.RECOMMENDATION_TIMEOUT_SECONDS,
        max_cached_profiles=settings.MAX_CACHED_USERS,
    )
