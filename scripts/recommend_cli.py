"""CLI script for getting personalized recommendations.

Useful for testing and evaluation. Loads a catalog CSV, optionally restores
an affinity store snapshot, and prints recommendations for a user.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from affinityrec.exceptions import AffinityRecError
from affinityrec.recommender.catalog import CsvCatalog
from affinityrec.recommender.engine import PersonalizationEngine, RecommendationResult
from affinityrec.recommender.models import RecommendationContext, SessionContext
from affinityrec.recommender.store import InMemoryAffinityStore

# Setup logging
logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s: %(message)s"
)
logger = logging.getLogger(__name__)


async def get_recommendations(
    user_id: str,
    catalog_path: str,
    snapshot_dir: str = None,
    max_results: int = 10,
    current_category: str = None,
) -> RecommendationResult:
    """Build an engine from files and get recommendations for a user.

    Args:
        user_id: User to get recommendations for
        catalog_path: Catalog CSV path
        snapshot_dir: Optional directory with an affinity store snapshot
        max_results: Number of recommendations to return
        current_category: Category the user is browsing right now

    Returns:
        The engine's recommendation result
    """
    engine = PersonalizationEngine(
        catalog=CsvCatalog(catalog_path),
        store=InMemoryAffinityStore.from_snapshot_or_empty(snapshot_dir),
    )
    context = RecommendationContext(
        max_results=max_results,
        session_context=SessionContext(current_category=current_category),
    )
    return await engine.get_recommendations(user_id, context)


def main() -> None:
    """Main CLI function."""
    parser = argparse.ArgumentParser(
        description="Get personalized recommendations for a user",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/recommend_cli.py u42 --catalog data/fake_catalog.csv
  python scripts/recommend_cli.py u42 --catalog data/fake_catalog.csv --max-results 5
  python scripts/recommend_cli.py u42 --catalog data/fake_catalog.csv --category anime --explain
        """
    )

    parser.add_argument("user_id", type=str, help="User ID to get recommendations for")
    parser.add_argument(
        "--catalog",
        type=str,
        default="data/fake_catalog.csv",
        help="Catalog CSV path (default: data/fake_catalog.csv)"
    )
    parser.add_argument(
        "--snapshot-dir",
        type=str,
        default=None,
        help="Directory with an affinity store snapshot"
    )
    parser.add_argument(
        "--max-results",
        type=int,
        default=10,
        help="Number of recommendations to return (default: 10)"
    )
    parser.add_argument(
        "--category",
        type=str,
        default=None,
        help="Category the user is currently browsing"
    )
    parser.add_argument(
        "--explain",
        action="store_true",
        help="Show the reasons behind each recommendation"
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging"
    )

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.INFO)

    try:
        result = asyncio.run(
            get_recommendations(
                user_id=args.user_id,
                catalog_path=args.catalog,
                snapshot_dir=args.snapshot_dir,
                max_results=args.max_results,
                current_category=args.category,
            )
        )
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except AffinityRecError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        sys.exit(1)

    metadata = result.metadata
    print(f"\nRecommendations for user {args.user_id}:")
    for rank, rec in enumerate(result.recommendations, start=1):
        print(
            f"  {rank:>2}. {rec.item.id} [{rec.item.category} / {rec.item.provider}] "
            f"relevance={rec.relevance_score:.2f} confidence={rec.confidence_score:.2f}"
        )
        if args.explain:
            for reason in rec.reasons:
                print(f"        - {reason.type.value} ({reason.strength:.2f}): {reason.description}")

    print(f"\nCandidates: {metadata.total_candidates}")
    print(f"Diversity score: {metadata.diversity_score:.2f}")
    print(f"Processing time: {metadata.processing_time_ms:.1f} ms")
    if metadata.failed_strategies:
        print(f"Failed strategies: {', '.join(metadata.failed_strategies)}")
    print()


if __name__ == "__main__":
    main()
