"""Generate fake storefront data for testing and development.

This module creates a synthetic catalog and interaction history in the CSV
layout read by ``storerec.recommender.datasource.CsvDataSource``:

    data/products.csv: product_id, category_id, brand_id, tags, price
    data/interactions.csv: user_id, product_id, type, value, timestamp

Example:
    Run the script directly to generate default data:
        $ python scripts/generate_fake_data.py

    Or import and use programmatically:
        from scripts.generate_fake_data import generate_fake_interactions
        df = generate_fake_interactions(num_users=100, num_products=200)
"""

import argparse
import random
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import pandas as pd

# Default configuration constants
DEFAULT_NUM_USERS = 50
DEFAULT_NUM_PRODUCTS = 100
DEFAULT_NUM_INTERACTIONS = 2000
DEFAULT_DAYS_BACK = 90
SECONDS_PER_DAY = 86400

CATEGORIES = ["sneakers", "boots", "sandals", "running", "formal", "kids"]
BRANDS = ["nike", "adidas", "puma", "vans", "converse", "asics"]
TAGS = ["leather", "canvas", "waterproof", "lightweight", "classic", "limited", "sale"]

# Relative frequency of each interaction type
TYPE_WEIGHTS = {"VIEW": 0.75, "PURCHASE": 0.15, "RATING": 0.10}


def generate_fake_catalog(
    num_products: int = DEFAULT_NUM_PRODUCTS,
    seed: Optional[int] = None,
) -> pd.DataFrame:
    """Generate a synthetic product catalog.

    Args:
        num_products: Number of products. Must be positive.
        seed: Optional random seed for reproducibility.

    Returns:
        DataFrame with columns product_id, category_id, brand_id, tags
        (``|`` separated) and price.
    """
    if num_products <= 0:
        raise ValueError("num_products must be positive")

    rng = random.Random(seed)
    products = []
    for idx in range(1, num_products + 1):
        products.append({
            "product_id": f"P{idx:04d}",
            "category_id": rng.choice(CATEGORIES),
            "brand_id": rng.choice(BRANDS),
            "tags": "|".join(sorted(rng.sample(TAGS, k=rng.randint(1, 3)))),
            "price": float(rng.randrange(200_000, 5_000_000, 50_000)),
        })
    return pd.DataFrame(products)


def generate_fake_interactions(
    num_users: int = DEFAULT_NUM_USERS,
    num_products: int = DEFAULT_NUM_PRODUCTS,
    num_interactions: int = DEFAULT_NUM_INTERACTIONS,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    seed: Optional[int] = None,
) -> pd.DataFrame:
    """Generate synthetic user interactions.

    Args:
        num_users: Number of unique users to simulate. Must be positive.
        num_products: Number of products, matching generate_fake_catalog.
        num_interactions: Total number of interaction records.
        start_date: Start of the timestamp range. Defaults to 90 days before
            end_date.
        end_date: End of the timestamp range. Defaults to now (UTC).
        seed: Optional random seed for reproducibility.

    Returns:
        DataFrame with columns user_id, product_id, type, value, timestamp,
        sorted by timestamp.

    Raises:
        ValueError: If any numeric parameter is non-positive or if
            start_date is not before end_date.
    """
    if num_users <= 0 or num_products <= 0 or num_interactions <= 0:
        raise ValueError(
            "num_users, num_products, and num_interactions must be positive"
        )

    if end_date is None:
        end_date = datetime.now(timezone.utc)
    if start_date is None:
        start_date = end_date - timedelta(days=DEFAULT_DAYS_BACK)
    if start_date >= end_date:
        raise ValueError("start_date must be before end_date")

    rng = random.Random(seed)
    total_seconds = int((end_date - start_date).total_seconds())
    types = list(TYPE_WEIGHTS)
    weights = list(TYPE_WEIGHTS.values())

    interactions = []
    for _ in range(num_interactions):
        interaction_type = rng.choices(types, weights=weights)[0]
        if interaction_type == "PURCHASE":
            value = rng.randint(1, 3)
        elif interaction_type == "RATING":
            value = rng.randint(1, 5)
        else:
            value = 1

        interactions.append({
            "user_id": f"U{rng.randint(1, num_users):04d}",
            "product_id": f"P{rng.randint(1, num_products):04d}",
            "type": interaction_type,
            "value": value,
            "timestamp": start_date + timedelta(seconds=rng.randrange(total_seconds)),
        })

    df = pd.DataFrame(interactions)
    return df.sort_values("timestamp").reset_index(drop=True)


def main() -> None:
    """Generate a fake dataset and save it under the data directory."""
    parser = argparse.ArgumentParser(description="Generate fake storefront data")
    parser.add_argument("--users", type=int, default=DEFAULT_NUM_USERS)
    parser.add_argument("--products", type=int, default=DEFAULT_NUM_PRODUCTS)
    parser.add_argument("--interactions", type=int, default=DEFAULT_NUM_INTERACTIONS)
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument(
        "--output-dir",
        type=str,
        default=str(Path(__file__).parent.parent / "data"),
        help="Directory to write products.csv and interactions.csv",
    )
    args = parser.parse_args()

    print(f"Generating {args.interactions} fake interactions...")
    print(f"Users: {args.users}, Products: {args.products}")

    try:
        catalog = generate_fake_catalog(args.products, seed=args.seed)
        interactions = generate_fake_interactions(
            num_users=args.users,
            num_products=args.products,
            num_interactions=args.interactions,
            seed=args.seed,
        )
    except ValueError as e:
        print(f"Error generating data: {e}")
        return

    data_dir = Path(args.output_dir)
    data_dir.mkdir(parents=True, exist_ok=True)
    catalog.to_csv(data_dir / "products.csv", index=False)
    interactions.to_csv(data_dir / "interactions.csv", index=False)

    print(f"\nData generated successfully!")
    print(f"Saved to: {data_dir}")
    print(f"\nData summary:")
    print(f"  Total interactions: {len(interactions)}")
    print(f"  By type: {interactions['type'].value_counts().to_dict()}")
    print(f"  Unique users: {interactions['user_id'].nunique()}")
    print(f"  Unique products: {interactions['product_id'].nunique()}")
    print(
        f"  Date range: {interactions['timestamp'].min()} to {interactions['timestamp'].max()}"
    )


if __name__ == "__main__":
    main()
