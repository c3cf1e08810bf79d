"""Catalog providers.

A catalog supplies the candidate items the strategies score. Items are
returned as immutable :class:`CandidateItem` snapshots.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import FrozenSet, Iterable, List, Optional

import pandas as pd

from affinityrec.recommender.models import CandidateItem

# Configure module logger
logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = {"id", "category", "provider"}
COUNT_COLUMNS = ["like_count", "download_count", "discussion_count", "generated_count"]
TAG_SEPARATOR = "|"


@dataclass(frozen=True)
class CatalogFilter:
    """Optional restrictions on the listed candidates."""

    categories: Optional[FrozenSet[str]] = None
    providers: Optional[FrozenSet[str]] = None
    min_quality: Optional[float] = None
    featured_only: bool = False
    exclude_item_ids: FrozenSet[str] = frozenset()

    def matches(self, item: CandidateItem) -> bool:
        if item.id in self.exclude_item_ids:
            return False
        if self.categories is not None and item.category not in self.categories:
            return False
        if self.providers is not None and item.provider not in self.providers:
            return False
        if self.min_quality is not None and item.quality_rating < self.min_quality:
            return False
        if self.featured_only and not item.featured:
            return False
        return True


class CatalogProvider(ABC):
    """Source of candidate items."""

    @abstractmethod
    async def list_candidates(
        self, filter: Optional[CatalogFilter] = None
    ) -> List[CandidateItem]:
        """List candidate items, optionally filtered."""

    async def get_item(self, item_id: str) -> Optional[CandidateItem]:
        for item in await self.list_candidates():
            if item.id == item_id:
                return item
        return None


class InMemoryCatalog(CatalogProvider):
    def __init__(self, items: Iterable[CandidateItem] = ()):
        self._items = list(items)
        self._by_id = {}
        for item in self._items:
            self._by_id.setdefault(item.id, item)

    def __len__(self) -> int:
        return len(self._items)

    async def list_candidates(
        self, filter: Optional[CatalogFilter] = None
    ) -> List[CandidateItem]:
        if filter is None:
            return list(self._items)
        return [item for item in self._items if filter.matches(item)]

    async def get_item(self, item_id: str) -> Optional[CandidateItem]:
        return self._by_id.get(item_id)


def _parse_tags(value) -> FrozenSet[str]:
    if not isinstance(value, str) or not value:
        return frozenset()
    return frozenset(tag.strip() for tag in value.split(TAG_SEPARATOR) if tag.strip())


def _parse_timestamp(value):
    if pd.isna(value):
        return None
    return pd.Timestamp(value).to_pydatetime()


def load_catalog_csv(csv_path: str) -> List[CandidateItem]:
    """Load catalog items from a CSV file.

    Only ``id``, ``category`` and ``provider`` are required. Missing count
    columns default to 0, ``quality_rating`` to 50 and ``featured`` to False.
    Tags are a ``|``-separated string.

    Args:
        csv_path: Path to the catalog CSV.

    Returns:
        List of candidate items in file order.

    Raises:
        FileNotFoundError: If the CSV file does not exist.
        ValueError: If required columns are missing.

    Example:
        >>> items = load_catalog_csv("data/catalog.csv")
        >>> print(f"Loaded {len(items)} items")
    """
    csv_file = Path(csv_path)
    if not csv_file.exists():
        raise FileNotFoundError(f"CSV file not found: {csv_path}")

    logger.info(f"Loading catalog from {csv_path}")
    df = pd.read_csv(csv_path, dtype={"id": str, "category": str, "provider": str, "tags": str})

    if not REQUIRED_COLUMNS.issubset(df.columns):
        missing = REQUIRED_COLUMNS - set(df.columns)
        raise ValueError(f"CSV missing required columns: {missing}")

    for column in COUNT_COLUMNS:
        if column not in df.columns:
            df[column] = 0
        df[column] = df[column].fillna(0).astype(int)

    if "quality_rating" not in df.columns:
        df["quality_rating"] = 50.0
    df["quality_rating"] = df["quality_rating"].fillna(50.0).astype(float)

    if "featured" not in df.columns:
        df["featured"] = False
    df["featured"] = df["featured"].fillna(False).astype(bool)

    if "tags" not in df.columns:
        df["tags"] = ""
    if "created_at" not in df.columns:
        df["created_at"] = None

    items = [
        CandidateItem(
            id=row["id"],
            category=row["category"],
            provider=row["provider"],
            quality_rating=float(row["quality_rating"]),
            tags=_parse_tags(row["tags"]),
            like_count=int(row["like_count"]),
            download_count=int(row["download_count"]),
            discussion_count=int(row["discussion_count"]),
            generated_count=int(row["generated_count"]),
            featured=bool(row["featured"]),
            created_at=_parse_timestamp(row["created_at"]),
        )
        for row in df.to_dict(orient="records")
    ]

    logger.info(
        f"Loaded {len(items)} catalog items",
        extra={"num_categories": df["category"].nunique()},
    )
    return items


class CsvCatalog(InMemoryCatalog):
    """Catalog loaded once from a CSV file."""

    def __init__(self, csv_path: str):
        self.csv_path = csv_path
        super().__init__(load_catalog_csv(csv_path))
