"""Controllers for project postings and proposals."""
from typing import Any, Dict, List, Optional
import logging

from talenthive.controllers.contract_controller import ContractController
from talenthive.controllers.serializers import contract_to_dict, project_to_dict, proposal_to_dict
from talenthive.controllers.validation import (
    optional_str,
    parse_amount,
    parse_milestones,
    raise_if_errors,
    require_str,
    validate_in,
)
from talenthive.domain.states import ProjectStatus, ProposalStatus, UserRole
from talenthive.error_handler import AppError, ForbiddenError, NotFoundError

logger = logging.getLogger(__name__)

PROJECT_STATUSES = [s.value for s in ProjectStatus]


class ProjectController:
    def __init__(self, db, cache, cache_ttl: int = 300):
        self.db = db
        self.cache = cache
        self.cache_ttl = cache_ttl

    def create_project(self, user, payload: Dict[str, Any]) -> Dict[str, Any]:
        if user.role != UserRole.CLIENT.value:
            raise ForbiddenError("Only clients can post projects")
        errors: Dict[str, str] = {}
        title = require_str(payload, "title", errors, label="Title", max_length=200)
        description = require_str(payload, "description", errors, label="Description")
        budget = parse_amount(payload, "budget", errors)
        raise_if_errors(errors)

        project = self.db.create_project(
            client_id=user.id,
            title=title,
            description=description,
            budget=budget,
            currency=(optional_str(payload, "currency") or "USD").upper(),
            category=optional_str(payload, "category") or None,
        )
        self.cache.delete_pattern("projects:*")
        return project_to_dict(project)

    def get_project(self, project_id: str) -> Dict[str, Any]:
        project = self.db.get_project(project_id)
        if not project:
            raise NotFoundError("Project not found")
        return project_to_dict(project)

    def list_projects(self, status: Optional[str] = None, client_id: Optional[str] = None) -> List[Dict[str, Any]]:
        if status:
            errors: Dict[str, str] = {}
            validate_in(status, PROJECT_STATUSES, errors, "status")
            raise_if_errors(errors)
        key = f"projects:{status or 'all'}:{client_id or 'all'}"
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        items = [project_to_dict(p) for p in self.db.list_projects(status=status, client_id=client_id)]
        self.cache.set(key, items, ttl=self.cache_ttl)
        return items

    def update_status(self, project_id: str, user, status: str) -> Dict[str, Any]:
        project = self.db.get_project(project_id)
        if not project:
            raise NotFoundError("Project not found")
        if user.id != project.client_id and user.role != UserRole.ADMIN.value:
            raise ForbiddenError("You can only update your own projects")
        errors: Dict[str, str] = {}
        validate_in(status, PROJECT_STATUSES, errors, "status")
        raise_if_errors(errors)
        project.status = status
        project = self.db.save_project(project)
        self.cache.delete_pattern("projects:*")
        return project_to_dict(project)


class ProposalController:
    def __init__(self, db, cache, contracts: ContractController, notifications=None, currency: str = "USD"):
        self.db = db
        self.cache = cache
        self.contracts = contracts
        self.notifications = notifications
        self.currency = currency

    def submit(self, user, project_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if user.role != UserRole.FREELANCER.value:
            raise ForbiddenError("Only freelancers can submit proposals")
        project = self.db.get_project(project_id)
        if not project:
            raise NotFoundError("Project not found")
        if project.status != ProjectStatus.OPEN.value:
            raise AppError("Project is not accepting proposals", 409)
        if any(p.status != ProposalStatus.WITHDRAWN.value for p in self.db.list_proposals(project_id=project_id, freelancer_id=user.id)):
            raise AppError("You have already submitted a proposal for this project", 409)

        errors: Dict[str, str] = {}
        cover_letter = require_str(payload, "cover_letter", errors, label="Cover letter")
        bid_amount = parse_amount(payload, "bid_amount", errors)
        milestones = parse_milestones(payload.get("milestones"), errors)
        raise_if_errors(errors)

        proposal = self.db.create_proposal(
            project_id=project_id,
            freelancer_id=user.id,
            cover_letter=cover_letter,
            bid_amount=bid_amount,
            milestones=[{**m, "due_date": m["due_date"].isoformat() if m["due_date"] else None} for m in milestones],
        )
        if self.notifications is not None:
            self.notifications.notify(
                project.client_id, "proposal", "New proposal", f"A new proposal was submitted for '{project.title}'.",
                link=f"/projects/{project.id}",
            )
        return proposal_to_dict(proposal)

    def list_for_project(self, user, project_id: str) -> List[Dict[str, Any]]:
        project = self.db.get_project(project_id)
        if not project:
            raise NotFoundError("Project not found")
        if user.role == UserRole.ADMIN.value or user.id == project.client_id:
            return [proposal_to_dict(p) for p in self.db.list_proposals(project_id=project_id)]
        return [proposal_to_dict(p) for p in self.db.list_proposals(project_id=project_id, freelancer_id=user.id)]

    def list_mine(self, user) -> List[Dict[str, Any]]:
        return [proposal_to_dict(p) for p in self.db.list_proposals(freelancer_id=user.id)]

    def withdraw(self, user, proposal_id: str) -> Dict[str, Any]:
        proposal = self.db.get_proposal(proposal_id)
        if not proposal:
            raise NotFoundError("Proposal not found")
        if proposal.freelancer_id != user.id:
            raise ForbiddenError("You can only withdraw your own proposals")
        if proposal.status != ProposalStatus.SUBMITTED.value:
            raise AppError(f"Cannot withdraw a proposal that is {proposal.status}", 409)
        proposal.status = ProposalStatus.WITHDRAWN.value
        return proposal_to_dict(self.db.save_proposal(proposal))

    def reject(self, user, proposal_id: str) -> Dict[str, Any]:
        proposal, project = self._client_proposal(user, proposal_id)
        proposal.status = ProposalStatus.REJECTED.value
        proposal = self.db.save_proposal(proposal)
        if self.notifications is not None:
            self.notifications.notify(
                proposal.freelancer_id, "proposal", "Proposal declined",
                f"Your proposal for '{project.title}' was declined.", link=f"/projects/{project.id}",
            )
        return proposal_to_dict(proposal)

    def accept(self, user, proposal_id: str) -> Dict[str, Any]:
        """
        Accept a proposal: creates the draft contract, rejects competing
        proposals and moves the project to in_progress.
        """
        proposal, project = self._client_proposal(user, proposal_id)
        if project.status != ProjectStatus.OPEN.value:
            raise AppError("Project is no longer open", 409)

        contract = self.contracts.create_from_proposal(proposal, project, currency=project.currency or self.currency)

        proposal.status = ProposalStatus.ACCEPTED.value
        proposal = self.db.save_proposal(proposal)
        for other in self.db.list_proposals(project_id=project.id, status=ProposalStatus.SUBMITTED.value):
            other.status = ProposalStatus.REJECTED.value
            self.db.save_proposal(other)

        project.status = ProjectStatus.IN_PROGRESS.value
        self.db.save_project(project)
        self.cache.delete_pattern("projects:*")

        if self.notifications is not None:
            self.notifications.notify(
                proposal.freelancer_id, "proposal", "Proposal accepted",
                f"Your proposal for '{project.title}' was accepted. Review and sign the contract.",
                link=f"/contracts/{contract.id}", priority="high",
            )
        logger.info("Proposal %s accepted; contract %s drafted", proposal.id, contract.id)
        return {"proposal": proposal_to_dict(proposal), "contract": contract_to_dict(contract)}

    def _client_proposal(self, user, proposal_id: str):
        proposal = self.db.get_proposal(proposal_id)
        if not proposal:
            raise NotFoundError("Proposal not found")
        project = self.db.get_project(proposal.project_id)
        if not project:
            raise NotFoundError("Project not found")
        if project.client_id != user.id:
            raise ForbiddenError("You can only act on proposals for your own projects")
        if proposal.status != ProposalStatus.SUBMITTED.value:
            raise AppError(f"Proposal is already {proposal.status}", 409)
        return proposal, project
