"""Admin analytics: platform overview and transaction statistics."""
from typing import Any, Dict
import logging

from talenthive.domain.states import ProjectStatus, TransactionStatus

logger = logging.getLogger(__name__)


class AnalyticsController:
    def __init__(self, db, cache=None, cache_ttl: int = 60):
        self.db = db
        self.cache = cache
        self.cache_ttl = cache_ttl

    def transaction_stats(self) -> Dict[str, Any]:
        stats = self.db.transaction_stats()
        by_status = stats.get("by_status") or {}
        return {
            "total_volume": stats.get("volume", 0.0),
            "total_commission": stats.get("commission", 0.0),
            "pending_count": by_status.get(TransactionStatus.PENDING.value, 0) + by_status.get(TransactionStatus.PROCESSING.value, 0),
            "escrow_count": by_status.get(TransactionStatus.HELD_IN_ESCROW.value, 0),
            "released_count": by_status.get(TransactionStatus.RELEASED.value, 0),
            "paid_out_count": by_status.get(TransactionStatus.PAID_OUT.value, 0),
            "refunded_count": by_status.get(TransactionStatus.REFUNDED.value, 0),
            "failed_count": by_status.get(TransactionStatus.FAILED.value, 0),
            "by_status": dict(by_status),
        }

    def overview(self) -> Dict[str, Any]:
        """Dashboard counters; cached briefly because every admin page load asks for them."""
        key = "analytics:overview"
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        users = self.db.count_users_by_role()
        projects = self.db.count_projects_by_status()
        contracts = self.db.count_contracts_by_status()
        tx = self.transaction_stats()
        data = {
            "users": {"total": sum(users.values()), "by_role": users},
            "projects": {
                "total": sum(projects.values()),
                "active": projects.get(ProjectStatus.IN_PROGRESS.value, 0),
                "completed": projects.get(ProjectStatus.COMPLETED.value, 0),
                "by_status": projects,
            },
            "contracts": {"total": sum(contracts.values()), "by_status": contracts},
            "revenue": tx["total_commission"],
            "transactions": tx,
        }
        if self.cache is not None:
            self.cache.set(key, data, ttl=self.cache_ttl)
        return data
