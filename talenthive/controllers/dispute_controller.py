"""Controller for disputes between contract parties and their admin triage."""
from typing import Any, Dict, List, Optional
import logging

from talenthive.controllers.serializers import dispute_to_dict
from talenthive.controllers.validation import add_error, optional_str, raise_if_errors, require_str, validate_in
from talenthive.domain.state_machine import contract_machine, dispute_machine
from talenthive.domain.states import ContractStatus, DisputeStatus, DisputeType, Priority, UserRole
from talenthive.error_handler import AppError, ForbiddenError, NotFoundError
from talenthive.utils.clock import utcnow

logger = logging.getLogger(__name__)

DISPUTE_TYPES = [t.value for t in DisputeType]
PRIORITIES = [p.value for p in Priority]
RESOLUTION_OUTCOMES = [ContractStatus.ACTIVE.value, ContractStatus.COMPLETED.value, ContractStatus.CANCELLED.value]


def _is_admin(user) -> bool:
    return user.role == UserRole.ADMIN.value


class DisputeController:
    def __init__(self, db, notifications=None, payments=None):
        self.db = db
        self.notifications = notifications
        self.payments = payments

    def _load(self, dispute_id: str):
        dispute = self.db.get_dispute(dispute_id)
        if not dispute:
            raise NotFoundError("Dispute not found")
        return dispute

    def _load_for(self, dispute_id: str, user):
        dispute = self._load(dispute_id)
        if not _is_admin(user) and user.id not in (dispute.complainant_id, dispute.respondent_id):
            raise ForbiddenError("You do not have access to this dispute")
        return dispute

    def _notify(self, user_ids, title: str, message: str, dispute_id: str, priority: str = "normal", exclude: Optional[str] = None) -> None:
        if self.notifications is None:
            return
        for uid in dict.fromkeys(u for u in user_ids if u and u != exclude):
            self.notifications.notify(uid, "dispute", title, message, link=f"/disputes/{dispute_id}", priority=priority)

    def create(self, user, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Raise a dispute. When it names a contract the caller must be a party
        to it, the other party becomes the respondent, and an active contract
        is frozen as `disputed` so no escrow is released while it is open.
        """
        errors: Dict[str, str] = {}
        title = require_str(payload, "title", errors, label="Title", max_length=200)
        description = require_str(payload, "description", errors, label="Description")
        dispute_type = validate_in(payload.get("type"), DISPUTE_TYPES, errors, "type")
        priority = validate_in(payload.get("priority") or Priority.MEDIUM.value, PRIORITIES, errors, "priority")
        evidence = payload.get("evidence") or []
        if not isinstance(evidence, list) or not all(isinstance(e, str) for e in evidence):
            add_error(errors, "evidence", "Evidence must be a list of URLs")
        raise_if_errors(errors)

        contract_id = optional_str(payload, "contract_id") or None
        transaction_id = optional_str(payload, "transaction_id") or None
        respondent_id = optional_str(payload, "respondent_id") or None
        project_id = optional_str(payload, "project_id") or None

        contract = None
        if transaction_id:
            tx = self.db.get_transaction(transaction_id)
            if not tx:
                raise NotFoundError("Transaction not found")
            if user.id not in (tx.client_id, tx.freelancer_id):
                raise ForbiddenError("You are not a party to this transaction")
            contract_id = contract_id or tx.contract_id
        if contract_id:
            contract = self.db.get_contract(contract_id)
            if not contract:
                raise NotFoundError("Contract not found")
            if user.id not in (contract.client_id, contract.freelancer_id):
                raise ForbiddenError("You are not a party to this contract")
            respondent_id = contract.freelancer_id if user.id == contract.client_id else contract.client_id
            project_id = project_id or contract.project_id
        if respondent_id == user.id:
            raise AppError("You cannot raise a dispute against yourself", 400)

        dispute = self.db.create_dispute(
            title=title,
            description=description,
            type=dispute_type,
            complainant_id=user.id,
            respondent_id=respondent_id,
            project_id=project_id,
            contract_id=contract_id,
            transaction_id=transaction_id,
            evidence=evidence,
            priority=priority,
        )

        if contract is not None and contract.status == ContractStatus.ACTIVE.value:
            contract.status = contract_machine.transition(contract.status, ContractStatus.DISPUTED).value
            self.db.save_contract(contract)
            logger.info("Contract %s disputed (dispute %s)", contract.id, dispute.id)

        admins = [a.id for a in self.db.list_users(role=UserRole.ADMIN.value)]
        self._notify(admins, "New dispute filed", f"A new {dispute_type} dispute has been filed: {title}", dispute.id, priority="high")
        self._notify([respondent_id], "A dispute was raised", f"A dispute was raised against you: {title}", dispute.id, priority="high")
        return dispute_to_dict(dispute)

    def get(self, dispute_id: str, user) -> Dict[str, Any]:
        return dispute_to_dict(self._load_for(dispute_id, user))

    def list(
        self,
        user,
        *,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        type: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Dict[str, Any]:
        errors: Dict[str, str] = {}
        if status:
            validate_in(status, [s.value for s in DisputeStatus], errors, "status")
        if priority:
            validate_in(priority, PRIORITIES, errors, "priority")
        if type:
            validate_in(type, DISPUTE_TYPES, errors, "type")
        raise_if_errors(errors)

        user_id = None if _is_admin(user) else user.id
        items = self.db.list_disputes(user_id=user_id, status=status, priority=priority, type=type)
        page, limit = max(int(page), 1), min(max(int(limit), 1), 100)
        window = items[(page - 1) * limit : page * limit]
        return {
            "disputes": [dispute_to_dict(d) for d in window],
            "pagination": {"page": page, "limit": limit, "total": len(items), "pages": (len(items) + limit - 1) // limit},
        }

    def add_message(self, dispute_id: str, user, message: Any) -> Dict[str, Any]:
        text = str(message or "").strip()
        if not text:
            raise AppError("Message is required", 400)
        dispute = self._load_for(dispute_id, user)
        if dispute_machine.is_terminal(dispute.status):
            raise AppError("Dispute is closed", 409)
        dispute.messages = list(dispute.messages or []) + [
            {
                "sender_id": user.id,
                "message": text,
                "timestamp": utcnow().isoformat(),
                "is_admin_message": _is_admin(user),
            }
        ]
        dispute = self.db.save_dispute(dispute)
        self._notify(
            [dispute.complainant_id, dispute.respondent_id, dispute.assigned_admin_id],
            "New dispute message",
            f"New message in dispute: {dispute.title}",
            dispute.id,
            exclude=user.id,
        )
        return dispute_to_dict(dispute)

    # ------------------------------------------------------------------ #
    # Admin triage
    # ------------------------------------------------------------------ #
    def assign(self, dispute_id: str, admin, assignee_id: Optional[str] = None) -> Dict[str, Any]:
        if not _is_admin(admin):
            raise ForbiddenError("Only admins can assign disputes")
        dispute = self._load(dispute_id)
        assignee = self.db.get_user(assignee_id) if assignee_id else admin
        if not assignee or assignee.role != UserRole.ADMIN.value:
            raise AppError("Disputes can only be assigned to admins", 400)
        if dispute.status == DisputeStatus.OPEN.value:
            dispute.status = dispute_machine.transition(dispute.status, DisputeStatus.IN_REVIEW).value
        dispute.assigned_admin_id = assignee.id
        dispute = self.db.save_dispute(dispute)
        logger.info("Dispute %s assigned to %s", dispute.id, assignee.id)
        return dispute_to_dict(dispute)

    async def update_status(self, dispute_id: str, admin, status: str, resolution: Optional[str] = None) -> Dict[str, Any]:
        if not _is_admin(admin):
            raise ForbiddenError("Only admins can change dispute status")
        target = dispute_machine.coerce(status)
        if target == DisputeStatus.RESOLVED:
            return await self.resolve(dispute_id, admin, resolution or "")
        dispute = self._load(dispute_id)
        dispute.status = dispute_machine.transition(dispute.status, target).value
        if resolution:
            dispute.resolution = resolution
        if target == DisputeStatus.CLOSED:
            dispute.resolved_at = dispute.resolved_at or utcnow()
            dispute.resolved_by = dispute.resolved_by or admin.id
        dispute = self.db.save_dispute(dispute)
        if target == DisputeStatus.CLOSED:
            await self._unfreeze_contract(dispute, ContractStatus.ACTIVE.value)
        self._notify(
            [dispute.complainant_id, dispute.respondent_id],
            "Dispute updated",
            f"Your dispute \"{dispute.title}\" is now {dispute.status}",
            dispute.id,
        )
        return dispute_to_dict(dispute)

    async def resolve(self, dispute_id: str, admin, resolution: str, contract_outcome: Optional[str] = None) -> Dict[str, Any]:
        """
        Resolve a dispute. A disputed contract moves to `contract_outcome`
        (default `active`) once no other open dispute references it. A
        `cancelled` outcome refunds the payments still held in escrow.
        """
        if not _is_admin(admin):
            raise ForbiddenError("Only admins can resolve disputes")
        errors: Dict[str, str] = {}
        if not str(resolution or "").strip():
            add_error(errors, "resolution", "Resolution is required")
        outcome = contract_outcome or ContractStatus.ACTIVE.value
        validate_in(outcome, RESOLUTION_OUTCOMES, errors, "contract_outcome")
        raise_if_errors(errors)

        dispute = self._load(dispute_id)
        dispute.status = dispute_machine.transition(dispute.status, DisputeStatus.RESOLVED).value
        dispute.resolution = str(resolution).strip()
        dispute.resolved_at = utcnow()
        dispute.resolved_by = admin.id
        dispute = self.db.save_dispute(dispute)
        await self._unfreeze_contract(dispute, outcome)

        logger.info("Dispute %s resolved by %s", dispute.id, admin.id)
        self._notify(
            [dispute.complainant_id, dispute.respondent_id],
            "Dispute resolved",
            f"Your dispute \"{dispute.title}\" has been resolved",
            dispute.id,
            priority="high",
        )
        return dispute_to_dict(dispute)

    async def _unfreeze_contract(self, dispute, outcome: str) -> None:
        if not dispute.contract_id:
            return
        contract = self.db.get_contract(dispute.contract_id)
        if not contract or contract.status != ContractStatus.DISPUTED.value:
            return
        if self.db.has_open_dispute(contract_id=contract.id):
            return
        contract.status = contract_machine.transition(contract.status, outcome).value
        self.db.save_contract(contract)
        logger.info("Contract %s moved to %s after dispute %s", contract.id, contract.status, dispute.id)
        if contract.status == ContractStatus.CANCELLED.value and self.payments is not None:
            await self.payments.refund_contract_escrow(
                contract.id, f"Dispute resolved: {dispute.resolution or dispute.title}", actor=dispute.resolved_by or "system"
            )

    def stats(self) -> Dict[str, int]:
        counts = {s.value: 0 for s in DisputeStatus}
        for d in self.db.list_disputes():
            counts[d.status] = counts.get(d.status, 0) + 1
        counts["total"] = sum(counts.values())
        return counts
