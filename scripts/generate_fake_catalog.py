"""Generate a fake item catalog for testing and development.

Creates a CSV with synthetic AI-generated image items that
``affinityrec.recommender.catalog.CsvCatalog`` can load.

Example:
    Run the script directly to generate default data:
        $ python scripts/generate_fake_catalog.py

    Or import and use programmatically:
        from scripts.generate_fake_catalog import generate_fake_catalog
        df = generate_fake_catalog(num_items=200)
"""

import argparse
import random
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import pandas as pd

# Default configuration constants
DEFAULT_NUM_ITEMS = 300
DEFAULT_DAYS_BACK = 180
FEATURED_PROBABILITY = 0.05

CATEGORIES = [
    "anime",
    "portrait",
    "landscape",
    "fantasy",
    "sci-fi",
    "abstract",
    "architecture",
    "photorealistic",
]
PROVIDERS = ["stable-diffusion", "midjourney", "dall-e", "flux", "imagen"]
TAGS = [
    "vibrant",
    "dark",
    "pastel",
    "cinematic",
    "minimal",
    "detailed",
    "neon",
    "watercolor",
    "cyberpunk",
    "retro",
    "surreal",
    "moody",
]


def generate_fake_catalog(
    num_items: int = DEFAULT_NUM_ITEMS,
    end_date: Optional[datetime] = None,
    seed: Optional[int] = None,
) -> pd.DataFrame:
    """Generate a synthetic catalog.

    Popularity counts follow a heavy-tailed distribution so that only a
    handful of items pass the trending and popularity thresholds.

    Args:
        num_items: Number of items to generate. Must be positive.
        end_date: Latest creation date. Defaults to now (UTC).
        seed: Optional random seed for reproducible output.

    Returns:
        DataFrame with the catalog CSV columns, ``tags`` joined with ``|``.

    Raises:
        ValueError: If num_items is not positive.
    """
    if num_items <= 0:
        raise ValueError("num_items must be positive")

    rng = random.Random(seed)
    if end_date is None:
        end_date = datetime.now(timezone.utc)

    items = []
    for index in range(1, num_items + 1):
        popularity = rng.paretovariate(1.5)
        items.append({
            "id": f"item-{index:05d}",
            "category": rng.choice(CATEGORIES),
            "provider": rng.choice(PROVIDERS),
            "quality_rating": round(rng.uniform(30, 100), 1),
            "tags": "|".join(rng.sample(TAGS, rng.randint(1, 4))),
            "like_count": int(popularity * 150),
            "download_count": int(popularity * 5000),
            "discussion_count": int(popularity * rng.uniform(5, 20)),
            "generated_count": int(popularity * rng.uniform(1000, 4000)),
            "featured": rng.random() < FEATURED_PROBABILITY,
            "created_at": end_date - timedelta(
                days=rng.randrange(DEFAULT_DAYS_BACK),
                seconds=rng.randrange(86400),
            ),
        })

    return pd.DataFrame(items)


def main() -> None:
    """Generate a catalog and save it to data/fake_catalog.csv by default."""
    parser = argparse.ArgumentParser(description="Generate a fake item catalog")
    parser.add_argument(
        "--num-items",
        type=int,
        default=DEFAULT_NUM_ITEMS,
        help=f"Number of items to generate (default: {DEFAULT_NUM_ITEMS})",
    )
    parser.add_argument(
        "--output",
        type=str,
        default=str(Path(__file__).parent.parent / "data" / "fake_catalog.csv"),
        help="Output CSV path (default: data/fake_catalog.csv)",
    )
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    args = parser.parse_args()

    print(f"Generating {args.num_items} fake catalog items...")
    try:
        df = generate_fake_catalog(num_items=args.num_items, seed=args.seed)
    except ValueError as e:
        print(f"Error generating data: {e}")
        return

    output_path = Path(args.output)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(output_path, index=False)

    print(f"\nCatalog generated successfully!")
    print(f"Saved to: {output_path}")
    print(f"\nData preview:")
    print(df.head(10))
    print(f"\nData summary:")
    print(f"  Total items: {len(df)}")
    print(f"  Categories: {df['category'].nunique()}")
    print(f"  Providers: {df['provider'].nunique()}")
    print(f"  Featured: {int(df['featured'].sum())}")


if __name__ == "__main__":
    main()
