#!/usr/bin/env python3
"""
Run the escrow auto-release job once:
- find transactions held in escrow past the hold period
- skip disputed ones
- release (or pay out to the freelancer's connected account) the rest

Meant for cron or manual catch-up runs; the API process also runs the job on
its own interval. Uses the same DATABASE_URL / STRIPE_SECRET_KEY settings as
the API.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv
load_dotenv()

from talenthive.api.dependencies import build_services
from talenthive.jobs.escrow_release import EscrowReleaseJob
from talenthive.utils.config_loader import load_settings


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")


def main() -> int:
    parser = argparse.ArgumentParser(description="Release escrowed payments whose hold period has elapsed.")
    parser.add_argument("--dry-run", action="store_true", help="List eligible transactions without releasing them")
    parser.add_argument("--hold-days", type=int, default=None, help="Override ESCROW_HOLD_DAYS for this run")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    setup_logging(args.verbose)
    logger = logging.getLogger("run_escrow_release")

    settings = load_settings()
    if not (settings.database_url and settings.use_postgres):
        logger.warning("DATABASE_URL/USE_POSTGRES not set; running against an empty in-memory store")

    services = build_services(settings)
    hold_days = settings.escrow_hold_days if args.hold_days is None else args.hold_days
    if hold_days < 0:
        parser.error("--hold-days must not be negative")
    job = EscrowReleaseJob(services.db, services.payments, hold_days=hold_days)

    report = asyncio.run(job.run_once(dry_run=args.dry_run))
    print(json.dumps(report.as_dict(), indent=2))
    return 1 if report.failed else 0


if __name__ == "__main__":
    sys.exit(main())
