"""Controller for contracts and their milestones."""
from typing import Any, Dict, List, Optional
import hashlib
import logging

from talenthive.controllers.serializers import contract_to_dict, milestone_to_dict
from talenthive.controllers.validation import parse_amount, parse_milestones, raise_if_errors
from talenthive.domain.state_machine import (
    contract_amount_errors,
    contract_machine,
    ensure_contract_active,
    ensure_milestone_payable,
    milestone_machine,
)
from talenthive.domain.states import ContractStatus, MilestoneStatus, ProjectStatus, TransactionStatus, UserRole
from talenthive.error_handler import AppError, ForbiddenError, NotFoundError, ValidationFailedError
from talenthive.utils.clock import utcnow

logger = logging.getLogger(__name__)


def _is_admin(user) -> bool:
    return user.role == UserRole.ADMIN.value


class ContractController:
    def __init__(self, db, notifications=None):
        self.db = db
        self.notifications = notifications
        # PaymentController, wired after construction (it depends on this controller)
        self.payments = None

    # ------------------------------------------------------------------ #
    # Lookups
    # ------------------------------------------------------------------ #
    def load(self, contract_id: str):
        contract = self.db.get_contract(contract_id)
        if not contract:
            raise NotFoundError("Contract not found")
        return contract

    def load_for(self, contract_id: str, user):
        contract = self.load(contract_id)
        if not _is_admin(user) and user.id not in (contract.client_id, contract.freelancer_id):
            raise ForbiddenError("You are not a party to this contract")
        return contract

    @staticmethod
    def find_milestone(contract, milestone_id: str):
        for m in contract.milestones:
            if m.id == milestone_id:
                return m
        raise NotFoundError("Milestone not found")

    def get_contract(self, contract_id: str, user) -> Dict[str, Any]:
        return contract_to_dict(self.load_for(contract_id, user))

    def list_contracts(self, user, status: Optional[str] = None) -> List[Dict[str, Any]]:
        if status:
            contract_machine.coerce(status)
        user_id = None if _is_admin(user) else user.id
        return [contract_to_dict(c) for c in self.db.list_contracts(user_id=user_id, status=status)]

    # ------------------------------------------------------------------ #
    # Creation (from an accepted proposal)
    # ------------------------------------------------------------------ #
    def create_from_proposal(self, proposal, project, *, start_date=None, end_date=None, currency: str = "USD"):
        """
        Build a draft contract from an accepted proposal. A proposal without
        milestones becomes a single milestone for the full bid amount.
        """
        if self.db.get_contract_by_proposal(proposal.id):
            raise AppError("Contract already exists for this proposal", 409)

        errors: Dict[str, str] = {}
        milestones = parse_milestones(proposal.milestones or [], errors)
        raise_if_errors(errors)
        if not milestones:
            milestones = [{"title": project.title, "description": "", "amount": round(proposal.bid_amount, 2), "due_date": None}]

        amount_errors = contract_amount_errors(proposal.bid_amount, [m["amount"] for m in milestones])
        if amount_errors:
            raise ValidationFailedError({"milestones": amount_errors[0]}, message=amount_errors[0])

        start = start_date or utcnow()
        due_dates = [m["due_date"] for m in milestones if m["due_date"]]
        end = end_date or (max(due_dates) if due_dates else start)
        if end < start:
            raise ValidationFailedError({"end_date": "end_date cannot be before start_date"})

        contract = self.db.create_contract(
            project_id=project.id,
            proposal_id=proposal.id,
            client_id=project.client_id,
            freelancer_id=proposal.freelancer_id,
            title=project.title,
            description=project.description,
            total_amount=round(proposal.bid_amount, 2),
            start_date=start,
            end_date=end,
            currency=currency,
            milestones=milestones,
        )
        logger.info("Draft contract %s created from proposal %s", contract.id, proposal.id)
        return contract

    # ------------------------------------------------------------------ #
    # Signing and amendments
    # ------------------------------------------------------------------ #
    def sign(self, contract_id: str, user, ip_address: Optional[str] = None) -> Dict[str, Any]:
        contract = self.load(contract_id)
        if user.id not in (contract.client_id, contract.freelancer_id):
            raise ForbiddenError("You are not authorized to sign this contract")
        if contract.status != ContractStatus.DRAFT.value:
            raise AppError("Only draft contracts can be signed", 409)
        if any(sig.get("user_id") == user.id for sig in contract.signatures or []):
            raise AppError("You have already signed this contract", 409)

        signed_at = utcnow()
        signature = {
            "user_id": user.id,
            "signed_at": signed_at.isoformat(),
            "signature_hash": hashlib.sha256(f"{user.id}-{signed_at.timestamp()}-{ip_address or ''}".encode()).hexdigest(),
        }
        contract.signatures = list(contract.signatures or []) + [signature]

        signers = {sig.get("user_id") for sig in contract.signatures}
        fully_signed = {contract.client_id, contract.freelancer_id} <= signers
        if fully_signed:
            contract.status = contract_machine.transition(contract.status, ContractStatus.ACTIVE).value
        contract = self.db.save_contract(contract)

        other = contract.freelancer_id if user.id == contract.client_id else contract.client_id
        self._notify(
            other,
            "contract",
            "Contract activated" if fully_signed else "Contract signed",
            f"'{contract.title}' is now active." if fully_signed else f"'{contract.title}' was signed by the other party.",
            contract.id,
        )
        return {"contract": contract_to_dict(contract), "is_fully_signed": fully_signed}

    def amend_milestones(
        self,
        contract_id: str,
        user,
        milestones: List[Dict[str, Any]],
        total_amount: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Replace the milestone plan of a draft contract. Existing signatures are
        cleared so both parties sign the amended terms.
        """
        contract = self.load_for(contract_id, user)
        if contract.status != ContractStatus.DRAFT.value:
            raise AppError("Milestones can only be amended while the contract is a draft", 409)

        errors: Dict[str, str] = {}
        parsed = parse_milestones(milestones, errors)
        if not parsed and "milestones" not in errors:
            errors["milestones"] = "At least one milestone is required"
        total = contract.total_amount
        if total_amount is not None:
            total = parse_amount({"total_amount": total_amount}, "total_amount", errors)
        raise_if_errors(errors)

        amount_errors = contract_amount_errors(total, [m["amount"] for m in parsed])
        if amount_errors:
            raise ValidationFailedError({"milestones": amount_errors[0]}, message=amount_errors[0])

        contract.total_amount = total
        contract.milestones = [self.db.new_milestone(contract.id, m) for m in parsed]
        contract.signatures = []
        contract = self.db.save_contract(contract)
        logger.info("Contract %s milestones amended by %s", contract.id, user.id)
        return contract_to_dict(contract)

    # ------------------------------------------------------------------ #
    # Milestone transitions
    # ------------------------------------------------------------------ #
    def _freelancer_milestone(self, contract_id: str, milestone_id: str, user, action: str):
        contract = self.load(contract_id)
        if user.id != contract.freelancer_id:
            raise ForbiddenError(f"Only the contract's freelancer can {action} milestones")
        ensure_contract_active(contract.status, f"{action} a milestone")
        return contract, self.find_milestone(contract, milestone_id)

    def _client_milestone(self, contract_id: str, milestone_id: str, user, action: str):
        contract = self.load(contract_id)
        if user.id != contract.client_id:
            raise ForbiddenError(f"Only the contract's client can {action} milestones")
        ensure_contract_active(contract.status, f"{action} a milestone")
        return contract, self.find_milestone(contract, milestone_id)

    def start_milestone(self, contract_id: str, milestone_id: str, user) -> Dict[str, Any]:
        contract, milestone = self._freelancer_milestone(contract_id, milestone_id, user, "start")
        milestone.status = milestone_machine.transition(milestone.status, MilestoneStatus.IN_PROGRESS).value
        contract = self.db.save_contract(contract)
        return milestone_to_dict(self.find_milestone(contract, milestone_id))

    def submit_milestone(
        self,
        contract_id: str,
        milestone_id: str,
        user,
        deliverables: Optional[List[Dict[str, Any]]] = None,
        notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        contract, milestone = self._freelancer_milestone(contract_id, milestone_id, user, "submit")
        milestone.status = milestone_machine.transition(milestone.status, MilestoneStatus.SUBMITTED).value
        now = utcnow()
        milestone.submitted_at = now
        milestone.freelancer_notes = notes
        submitted = [
            {
                "title": str(d.get("title") or "Deliverable"),
                "description": str(d.get("description") or ""),
                "url": d.get("url"),
                "status": "submitted",
                "submitted_at": now.isoformat(),
            }
            for d in (deliverables or [])
            if isinstance(d, dict)
        ]
        milestone.deliverables = list(milestone.deliverables or []) + submitted
        contract = self.db.save_contract(contract)

        self._notify(
            contract.client_id,
            "milestone",
            "Milestone submitted",
            f"'{milestone.title}' was submitted for your review.",
            contract.id,
        )
        return milestone_to_dict(self.find_milestone(contract, milestone_id))

    def _review_milestone(self, contract_id: str, milestone_id: str, user, target: MilestoneStatus, feedback: Optional[str]):
        action = "approve" if target == MilestoneStatus.APPROVED else "reject"
        contract, milestone = self._client_milestone(contract_id, milestone_id, user, action)
        milestone.status = milestone_machine.transition(milestone.status, target).value
        now = utcnow()
        if target == MilestoneStatus.APPROVED:
            milestone.approved_at = now
        else:
            milestone.rejected_at = now
        milestone.client_feedback = feedback
        milestone.deliverables = [
            {**d, "status": target.value} if d.get("status") == "submitted" else d
            for d in (milestone.deliverables or [])
        ]
        contract = self.db.save_contract(contract)

        self._notify(
            contract.freelancer_id,
            "milestone",
            f"Milestone {target.value}",
            f"'{milestone.title}' was {target.value} by the client.",
            contract.id,
            priority="high" if target == MilestoneStatus.REJECTED else "normal",
        )
        if target == MilestoneStatus.APPROVED and self._funds_released(milestone_id):
            # Escrow auto-released before the client got to approve
            contract = self.mark_milestone_paid(contract.id, milestone_id)
        return milestone_to_dict(self.find_milestone(contract, milestone_id))

    def _funds_released(self, milestone_id: str) -> bool:
        released = {TransactionStatus.RELEASED.value, TransactionStatus.PAID_OUT.value}
        return any(t.status in released for t in self.db.list_transactions(milestone_id=milestone_id))

    def approve_milestone(self, contract_id: str, milestone_id: str, user, feedback: Optional[str] = None) -> Dict[str, Any]:
        return self._review_milestone(contract_id, milestone_id, user, MilestoneStatus.APPROVED, feedback)

    def reject_milestone(self, contract_id: str, milestone_id: str, user, feedback: Optional[str] = None) -> Dict[str, Any]:
        return self._review_milestone(contract_id, milestone_id, user, MilestoneStatus.REJECTED, feedback)

    def mark_milestone_paid(self, contract_id: str, milestone_id: str):
        """
        Move an approved milestone to `paid` once its escrowed funds are
        released, then complete the contract if nothing is left unpaid.
        Returns the saved contract.
        """
        contract = self.load(contract_id)
        milestone = self.find_milestone(contract, milestone_id)
        if milestone.status == MilestoneStatus.PAID.value:
            return contract
        ensure_milestone_payable(contract.status)
        milestone.status = milestone_machine.transition(milestone.status, MilestoneStatus.PAID).value
        milestone.paid_at = utcnow()
        contract = self.db.save_contract(contract)
        return self.complete_if_all_paid(contract)

    def complete_if_all_paid(self, contract):
        if contract.status != ContractStatus.ACTIVE.value or not contract.milestones:
            return contract
        if any(m.status != MilestoneStatus.PAID.value for m in contract.milestones):
            return contract
        contract.status = contract_machine.transition(contract.status, ContractStatus.COMPLETED).value
        contract = self.db.save_contract(contract)

        project = self.db.get_project(contract.project_id)
        if project and project.status == ProjectStatus.IN_PROGRESS.value:
            project.status = ProjectStatus.COMPLETED.value
            self.db.save_project(project)

        logger.info("Contract %s completed: all milestones paid", contract.id)
        for uid in (contract.client_id, contract.freelancer_id):
            self._notify(uid, "contract", "Contract completed", f"'{contract.title}' is complete.", contract.id)
        return contract

    # ------------------------------------------------------------------ #
    # Cancellation
    # ------------------------------------------------------------------ #
    async def cancel(self, contract_id: str, user, reason: Optional[str] = None) -> Dict[str, Any]:
        """Cancel a draft or active contract and refund whatever is still held in escrow for it."""
        contract = self.load(contract_id)
        if not _is_admin(user) and user.id not in (contract.client_id, contract.freelancer_id):
            raise ForbiddenError("You are not authorized to cancel this contract")
        if contract.status not in (ContractStatus.DRAFT.value, ContractStatus.ACTIVE.value):
            raise AppError("Contract cannot be cancelled in current status", 409)

        contract.status = contract_machine.transition(contract.status, ContractStatus.CANCELLED).value
        contract = self.db.save_contract(contract)
        logger.info("Contract %s cancelled by %s: %s", contract.id, user.id, reason or "no reason given")

        refunded = []
        if self.payments is not None:
            refunded = await self.payments.refund_contract_escrow(
                contract.id, reason or "Contract cancelled", actor=user.id
            )

        other = contract.freelancer_id if user.id == contract.client_id else contract.client_id
        self._notify(other, "contract", "Contract cancelled", reason or f"'{contract.title}' was cancelled.", contract.id, priority="high")
        data = contract_to_dict(contract)
        data["refunded_transaction_ids"] = refunded
        return data

    def _notify(self, user_id: str, type: str, title: str, message: str, contract_id: str, priority: str = "normal") -> None:
        if self.notifications is None:
            return
        self.notifications.notify(user_id, type, title, message, link=f"/contracts/{contract_id}", priority=priority)
