"""CLI script for getting product recommendations.

Useful for testing and evaluation. Scores recommendations for a user straight
from a CSV data directory and prints them to the console. No cache is used.
"""

import argparse
import logging
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from storerec.config import DEFAULT_LIMIT, MAX_LIMIT, Settings
from storerec.exceptions import StoreRecException
from storerec.recommender.datasource import build_data_source
from storerec.recommender.models import Algorithm
from storerec.recommender.scoring import ScoringEngine

# Setup logging
logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s: %(message)s"
)
logger = logging.getLogger(__name__)


def main() -> None:
    """Main CLI function."""
    parser = argparse.ArgumentParser(
        description="Get product recommendations for a user",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/predict_cli.py U0042
  python scripts/predict_cli.py U0042 --limit 5
  python scripts/predict_cli.py U0042 --algorithm TRENDING
  python scripts/predict_cli.py U0042 --data-dir data --verbose
        """
    )

    parser.add_argument("user_id", type=str, help="User ID to get recommendations for")
    parser.add_argument(
        "--limit",
        type=int,
        default=DEFAULT_LIMIT,
        help=f"Number of recommendations to return, 1-{MAX_LIMIT} (default: {DEFAULT_LIMIT})",
    )
    parser.add_argument(
        "--algorithm",
        type=str,
        choices=[a.value for a in Algorithm],
        default=Algorithm.HYBRID.value,
        help="Recommendation algorithm (default: HYBRID)",
    )
    parser.add_argument(
        "--data-dir",
        type=str,
        default="data",
        help="Directory containing products.csv and interactions.csv (default: data)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.INFO)

    if not 1 <= args.limit <= MAX_LIMIT:
        parser.error(f"--limit must be between 1 and {MAX_LIMIT}")

    settings = Settings.from_env()
    engine = ScoringEngine(build_data_source(args.data_dir), settings)

    try:
        products = engine.score(args.user_id, Algorithm.parse(args.algorithm), args.limit)
    except StoreRecException as e:
        print(f"Error: {e.message}", file=sys.stderr)
        sys.exit(1)

    print(f"\nRecommendations for user {args.user_id} (algorithm: {args.algorithm}):")
    if not products:
        print("  No products in the catalog.")
    for rank, product in enumerate(products, start=1):
        print(f"  {rank:>2}. {product.product_id}  score={product.score:.4f}")
    print()


if __name__ == "__main__":
    main()
