"""
Escrow auto-release job.

Finds transactions held in escrow longer than the hold period and releases
them through PaymentController.release_transaction (paid out to the
freelancer's payout account when one is connected, otherwise `released`).

Runs once at startup and then on a fixed interval inside the API process,
or one-off from scripts/run_escrow_release.py.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from talenthive.controllers.payment_controller import PaymentController
from talenthive.error_handler import InvalidTransitionError
from talenthive.integrations.contracts.interfaces import PaymentGatewayError
from talenthive.utils.clock import as_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass
class EscrowReleaseReport:
    checked: int = 0
    released: int = 0
    failed: int = 0
    skipped: int = 0
    released_ids: List[str] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)
    dry_run: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return {
            "checked": self.checked,
            "released": self.released,
            "failed": self.failed,
            "skipped": self.skipped,
            "released_ids": list(self.released_ids),
            "failures": dict(self.failures),
            "dry_run": self.dry_run,
        }


class EscrowReleaseJob:
    def __init__(self, db, payments: PaymentController, hold_days: int = 7):
        self.db = db
        self.payments = payments
        self.hold_days = hold_days
        self._task: Optional[asyncio.Task] = None

    def cutoff(self, now: Optional[datetime] = None) -> datetime:
        return as_utc(now or utcnow()) - timedelta(days=self.hold_days)

    async def run_once(self, now: Optional[datetime] = None, dry_run: bool = False) -> EscrowReleaseReport:
        """Release every eligible transaction; one failure never stops the batch."""
        report = EscrowReleaseReport(dry_run=dry_run)
        for tx in self.db.list_held_transactions(escrowed_before=self.cutoff(now)):
            report.checked += 1

            blocked = self.payments.release_blocked_reason(tx)
            if blocked:
                logger.info("Skipping transaction %s: %s", tx.id, blocked)
                report.skipped += 1
                continue

            if dry_run:
                report.released += 1
                report.released_ids.append(tx.id)
                continue

            try:
                await self.payments.release_transaction(tx, actor="escrow-release-job")
            except InvalidTransitionError as e:
                # Released or refunded by someone else since it was listed
                logger.info("Skipping transaction %s: %s", tx.id, e)
                report.skipped += 1
            except PaymentGatewayError as e:
                logger.error("Payout failed for transaction %s: %s", tx.id, e)
                report.failed += 1
                report.failures[tx.id] = str(e)
            except Exception as e:
                logger.error("Escrow release failed for transaction %s: %s", tx.id, e, exc_info=True)
                report.failed += 1
                report.failures[tx.id] = str(e)
            else:
                report.released += 1
                report.released_ids.append(tx.id)

        logger.info(
            "Escrow release run%s: checked=%d released=%d failed=%d skipped=%d",
            " (dry run)" if dry_run else "",
            report.checked,
            report.released,
            report.failed,
            report.skipped,
        )
        return report

    async def run_forever(self, interval_hours: float = 24.0, run_on_startup: bool = True) -> None:
        if not run_on_startup:
            await asyncio.sleep(interval_hours * 3600)
        while True:
            try:
                await self.run_once()
            except Exception as e:
                logger.error("Escrow release run crashed: %s", e, exc_info=True)
            await asyncio.sleep(interval_hours * 3600)

    def start(self, interval_hours: float = 24.0, run_on_startup: bool = True) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self.run_forever(interval_hours, run_on_startup))
            logger.info("Escrow release job scheduled every %.1f hours (hold %d days)", interval_hours, self.hold_days)
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
