"""Value types shared by the recommendation core.

All types are frozen dataclasses so that candidate and profile snapshots can
be handed to concurrently running scorers without copying.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import FrozenSet, Iterable, Optional, Tuple


class InteractionType(str, Enum):
    VIEW = "view"
    LIKE = "like"
    BOOKMARK = "bookmark"
    GENERATE = "generate"
    SHARE = "share"
    DOWNLOAD = "download"


class ReasonType(str, Enum):
    CATEGORY_AFFINITY = "category_affinity"
    PROVIDER_PREFERENCE = "provider_preference"
    QUALITY_MATCH = "quality_match"
    CONTENT_BASED = "content_based"
    SIMILAR_USERS = "similar_users"
    COLLABORATIVE_FILTERING = "collaborative_filtering"
    TIME_CONTEXT = "time_context"
    BEHAVIORAL_PATTERN = "behavioral_pattern"
    TRENDING = "trending"
    EXPLORATION = "exploration"


class AffinityKind(str, Enum):
    CATEGORY = "category"
    PROVIDER = "provider"


@dataclass(frozen=True)
class CandidateItem:
    """Catalog item as seen by the recommender. Never mutated by the core."""

    id: str
    category: str
    provider: str
    quality_rating: float = 50.0
    tags: FrozenSet[str] = frozenset()
    like_count: int = 0
    download_count: int = 0
    discussion_count: int = 0
    generated_count: int = 0
    featured: bool = False
    created_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if not isinstance(self.tags, frozenset):
            object.__setattr__(self, "tags", frozenset(self.tags))


@dataclass(frozen=True)
class InteractionEvent:
    """One recorded user interaction. Append-only, never mutated."""

    user_id: str
    item_id: str
    interaction_type: InteractionType
    engagement_level: int
    timestamp: datetime
    session_duration_seconds: Optional[float] = None
    device_type: Optional[str] = None
    referral_source: Optional[str] = None
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def event_key(self) -> str:
        """Identity of the event, used to derive delta ids.

        Unique per recorded interaction even when two interactions share
        every other field, and unchanged when the same event is retried.
        """
        return f"{self.user_id}:{self.event_id}"


@dataclass(frozen=True)
class RecommendationReason:
    type: ReasonType
    strength: float
    description: str


@dataclass(frozen=True)
class PersonalizedRecommendation:
    """A scored item together with the reasons it was recommended."""

    item: CandidateItem
    relevance_score: float
    confidence_score: float
    reasons: Tuple[RecommendationReason, ...]
    diversity_factor: float = 0.0
    contextual_boost: float = 0.0

    @property
    def reason_types(self) -> Tuple[ReasonType, ...]:
        return tuple(reason.type for reason in self.reasons)


@dataclass(frozen=True)
class SessionContext:
    current_category: Optional[str] = None
    items_viewed: Tuple[str, ...] = ()
    session_duration_minutes: float = 0.0
    search_queries: Tuple[str, ...] = ()


@dataclass(frozen=True)
class RecommendationContext:
    """Caller-supplied request parameters.

    Attributes:
        max_results: Upper bound on the number of returned recommendations.
        exclude_item_ids: Items removed from the candidate set before scoring.
        session_context: What the user is doing right now.
        deadline_seconds: Optional bound on the scoring fan-out; the engine
            default applies when None.
    """

    max_results: int = 20
    exclude_item_ids: FrozenSet[str] = frozenset()
    session_context: SessionContext = field(default_factory=SessionContext)
    deadline_seconds: Optional[float] = None

    def __post_init__(self) -> None:
        if self.max_results < 0:
            raise ValueError(f"max_results must be >= 0, got {self.max_results}")
        if not isinstance(self.exclude_item_ids, frozenset):
            object.__setattr__(
                self, "exclude_item_ids", frozenset(self.exclude_item_ids)
            )


@dataclass(frozen=True)
class ScoringContext:
    """Request-scoped inputs that strategies read besides profile and items."""

    session: SessionContext = field(default_factory=SessionContext)
    current_hour: int = 12
    viewed_items: Tuple[CandidateItem, ...] = ()


def index_by_id(items: Iterable[CandidateItem]) -> dict:
    """Map item id to item, keeping the first occurrence of each id."""
    indexed = {}
    for item in items:
        indexed.setdefault(item.id, item)
    return indexed
