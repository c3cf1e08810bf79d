"""Merge strategy outputs into one ranked, diverse list."""

import logging
from collections import Counter
from dataclasses import replace
from typing import Dict, Iterable, List, Sequence

from affinityrec.recommender.models import PersonalizedRecommendation
from affinityrec.recommender.utils import clamp

# Configure module logger
logger = logging.getLogger(__name__)

MAX_PER_CATEGORY = 3
MIN_ACCEPTED_BEFORE_CAP = 5
FINAL_BOOST = 1.1


class RecommendationCombiner:
    """Combines per-strategy recommendations into the final response list.

    The pipeline is: merge by item id, de-duplicate, balance categories,
    apply the final boost and truncate to ``max_results``.
    """

    def __init__(
        self,
        max_per_category: int = MAX_PER_CATEGORY,
        min_accepted_before_cap: int = MIN_ACCEPTED_BEFORE_CAP,
        final_boost: float = FINAL_BOOST,
    ):
        self.max_per_category = max_per_category
        self.min_accepted_before_cap = min_accepted_before_cap
        self.final_boost = final_boost

    def combine(
        self,
        strategy_outputs: Iterable[Sequence[PersonalizedRecommendation]],
        max_results: int,
    ) -> List[PersonalizedRecommendation]:
        """Produce the final recommendation list.

        Args:
            strategy_outputs: One list per strategy, in strategy order.
            max_results: Upper bound on the returned list. 0 yields [].

        Returns:
            Recommendations with unique item ids, highest relevance first.
        """
        if max_results <= 0:
            return []

        merged = self.merge(rec for output in strategy_outputs for rec in output)
        unique = self.deduplicate(merged)
        balanced = self.balance_diversity(unique)
        boosted = [self._finalize(rec) for rec in balanced]

        logger.debug(
            "Combined strategy outputs",
            extra={
                "num_merged": len(merged),
                "num_balanced": len(balanced),
                "max_results": max_results,
            },
        )
        return boosted[:max_results]

    @staticmethod
    def merge(
        recommendations: Iterable[PersonalizedRecommendation],
    ) -> List[PersonalizedRecommendation]:
        """Merge entries for the same item.

        The first entry produced for an item is kept, with its relevance
        raised to the highest relevance seen for the item and the reasons of
        all entries appended in the order they were produced. Confidence,
        diversity factor and contextual boost stay those of the first entry.
        """
        by_id: Dict[str, PersonalizedRecommendation] = {}
        for rec in recommendations:
            existing = by_id.get(rec.item.id)
            if existing is None:
                by_id[rec.item.id] = rec
                continue

            by_id[rec.item.id] = replace(
                existing,
                relevance_score=max(existing.relevance_score, rec.relevance_score),
                reasons=existing.reasons + rec.reasons,
            )
        return list(by_id.values())

    @staticmethod
    def deduplicate(
        recommendations: Iterable[PersonalizedRecommendation],
    ) -> List[PersonalizedRecommendation]:
        seen = set()
        unique = []
        for rec in recommendations:
            if rec.item.id in seen:
                continue
            seen.add(rec.item.id)
            unique.append(rec)
        return unique

    def balance_diversity(
        self, recommendations: Sequence[PersonalizedRecommendation]
    ) -> List[PersonalizedRecommendation]:
        """Cap how many items of one category make it into the list.

        The first ``min_accepted_before_cap`` items are admitted freely; after
        that an item is only admitted while its category has fewer than
        ``max_per_category`` accepted items.
        """
        ranked = sorted(recommendations, key=lambda rec: rec.relevance_score, reverse=True)
        category_counts: Counter = Counter()
        accepted = []

        for rec in ranked:
            count = category_counts[rec.item.category]
            if count < self.max_per_category or len(accepted) < self.min_accepted_before_cap:
                accepted.append(rec)
                category_counts[rec.item.category] += 1

        return accepted

    def _finalize(self, rec: PersonalizedRecommendation) -> PersonalizedRecommendation:
        return replace(
            rec,
            relevance_score=clamp(rec.relevance_score * self.final_boost, 0.0, 1.0),
            confidence_score=clamp(rec.confidence_score, 0.0, 1.0),
        )


def diversity_score(recommendations: Sequence[PersonalizedRecommendation]) -> float:
    """Mean of the distinct-category and distinct-provider ratios.

    Example:
        >>> diversity_score([])
        1.0
    """
    if len(recommendations) < 2:
        return 1.0

    total = len(recommendations)
    categories = {rec.item.category for rec in recommendations}
    providers = {rec.item.provider for rec in recommendations}
    return (len(categories) / total + len(providers) / total) / 2
