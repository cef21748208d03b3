#!/usr/bin/env python
# scripts/make_example_data.py
"""Write synthetic example datasets for trying the pipeline.

Usage:
    python scripts/make_example_data.py --data-dir data --seed 1
    foxrepro render -c configs/analysis.yaml
"""

import argparse
import logging

from foxrepro.synthetic import write_example_data

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def main() -> None:
    parser = argparse.ArgumentParser(description="Write synthetic fox reproduction data")
    parser.add_argument("--data-dir", default="data", help="Output directory")
    parser.add_argument("--seed", type=int, default=1, help="Random seed")
    parser.add_argument("--n-mothers", type=int, default=60, help="Mothers per population")
    args = parser.parse_args()

    paths = write_example_data(args.data_dir, seed=args.seed, n_mothers=args.n_mothers)
    logger.info(f"Wrote {len(paths)} datasets to {args.data_dir}")


if __name__ == "__main__":
    main()
