#!/usr/bin/env python3
"""
Recompute every user's rating_average / rating_count from their reviews.

Use after importing reviews or fixing review data by hand.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv
load_dotenv()

from talenthive.api.dependencies import build_services
from talenthive.utils.config_loader import load_settings


def main() -> int:
    parser = argparse.ArgumentParser(description="Recalculate user ratings from reviews.")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    services = build_services(load_settings())
    results = services.reviews.recalculate_all()
    for r in results:
        if r["rating_count"]:
            print(f"{r['user_id']}: {r['rating_average']:.1f} ({r['rating_count']} reviews)")
    print(f"Updated {len(results)} users")
    return 0


if __name__ == "__main__":
    sys.exit(main())
