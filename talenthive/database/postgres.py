"""
Lightweight in-memory PostgresDB replacement for local development and tests.

This provides the same interface as `postgres_real.PostgresDB` so the API,
controllers and the escrow job run without a real database. It is NOT
intended for production use.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
import uuid

from talenthive.utils.clock import as_utc, utcnow


def _new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class User:
    id: str
    email: str
    first_name: str
    last_name: str
    role: str
    rating_average: float = 0.0
    rating_count: int = 0
    payout_account_id: Optional[str] = None
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class Project:
    id: str
    client_id: str
    title: str
    description: str
    budget: float
    currency: str = "USD"
    category: Optional[str] = None
    status: str = "open"
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class Proposal:
    id: str
    project_id: str
    freelancer_id: str
    cover_letter: str
    bid_amount: float
    milestones: List[Dict[str, Any]] = field(default_factory=list)
    status: str = "submitted"
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class Milestone:
    id: str
    contract_id: str
    title: str
    amount: float
    position: int = 0
    description: str = ""
    due_date: Optional[datetime] = None
    status: str = "pending"
    deliverables: List[Dict[str, Any]] = field(default_factory=list)
    submitted_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    client_feedback: Optional[str] = None
    freelancer_notes: Optional[str] = None


@dataclass
class Contract:
    id: str
    project_id: str
    proposal_id: str
    client_id: str
    freelancer_id: str
    title: str
    description: str
    total_amount: float
    start_date: datetime
    end_date: datetime
    currency: str = "USD"
    status: str = "draft"
    milestones: List[Milestone] = field(default_factory=list)
    signatures: List[Dict[str, Any]] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class Transaction:
    id: str
    contract_id: str
    client_id: str
    freelancer_id: str
    amount: float
    freelancer_amount: float
    milestone_id: Optional[str] = None
    platform_commission: float = 0.0
    processing_fee: float = 0.0
    tax: float = 0.0
    currency: str = "USD"
    status: str = "pending"
    payment_intent_id: Optional[str] = None
    charge_id: Optional[str] = None
    transfer_id: Optional[str] = None
    refund_id: Optional[str] = None
    escrowed_at: Optional[datetime] = None
    escrow_release_date: Optional[datetime] = None
    released_at: Optional[datetime] = None
    paid_out_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    description: Optional[str] = None
    transaction_metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class Dispute:
    id: str
    title: str
    description: str
    type: str
    complainant_id: str
    status: str = "open"
    priority: str = "medium"
    respondent_id: Optional[str] = None
    project_id: Optional[str] = None
    contract_id: Optional[str] = None
    transaction_id: Optional[str] = None
    evidence: List[str] = field(default_factory=list)
    messages: List[Dict[str, Any]] = field(default_factory=list)
    assigned_admin_id: Optional[str] = None
    resolution: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class SupportTicket:
    id: str
    ticket_number: str
    user_id: str
    subject: str
    category: str = "other"
    priority: str = "medium"
    status: str = "open"
    messages: List[Dict[str, Any]] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    assigned_admin_id: Optional[str] = None
    last_response_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class Review:
    id: str
    contract_id: str
    reviewer_id: str
    reviewee_id: str
    rating: int
    feedback: str = ""
    response: Optional[str] = None
    responded_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class Conversation:
    id: str
    participants: List[str]
    participants_key: str
    last_message_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class Message:
    id: str
    conversation_id: str
    sender_id: str
    content: str
    read_by: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Notification:
    id: str
    user_id: str
    type: str
    title: str
    message: str
    link: Optional[str] = None
    priority: str = "normal"
    is_read: bool = False
    created_at: datetime = field(default_factory=utcnow)


def participants_key(participants: List[str]) -> str:
    return ":".join(sorted(set(participants)))


class PostgresDB:
    """
    In-memory stand-in for the Postgres-backed data access layer.

    Records are returned by reference; `save_*` methods exist so controllers
    are written the same way for both implementations.
    """

    def __init__(self) -> None:
        self._users: Dict[str, User] = {}
        self._projects: Dict[str, Project] = {}
        self._proposals: Dict[str, Proposal] = {}
        self._contracts: Dict[str, Contract] = {}
        self._transactions: Dict[str, Transaction] = {}
        self._disputes: Dict[str, Dispute] = {}
        self._tickets: Dict[str, SupportTicket] = {}
        self._reviews: Dict[str, Review] = {}
        self._conversations: Dict[str, Conversation] = {}
        self._messages: List[Message] = []
        self._notifications: Dict[str, Notification] = {}

    # ------------------------------------------------------------------ #
    # Schema / lifecycle
    # ------------------------------------------------------------------ #
    def create_tables(self) -> None:
        """
        No-op for the in-memory implementation. Kept for compatibility
        with the startup hook in `talenthive/api/main.py`.
        """
        return None

    def ping(self) -> bool:
        return True

    # ------------------------------------------------------------------ #
    # Users
    # ------------------------------------------------------------------ #
    def create_user(self, *, email: str, first_name: str, last_name: str, role: str) -> User:
        user = User(id=_new_id(), email=email.lower(), first_name=first_name, last_name=last_name, role=role)
        self._users[user.id] = user
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        return self._users.get(str(user_id))

    def get_user_by_email(self, email: str) -> Optional[User]:
        email = (email or "").lower()
        return next((u for u in self._users.values() if u.email == email), None)

    def list_users(self, role: Optional[str] = None) -> List[User]:
        users = [u for u in self._users.values() if role is None or u.role == role]
        return sorted(users, key=lambda u: u.created_at)

    def save_user(self, user: User) -> User:
        user.updated_at = utcnow()
        self._users[user.id] = user
        return user

    def count_users_by_role(self) -> Dict[str, int]:
        return dict(Counter(u.role for u in self._users.values()))

    # ------------------------------------------------------------------ #
    # Projects & proposals
    # ------------------------------------------------------------------ #
    def create_project(
        self,
        *,
        client_id: str,
        title: str,
        description: str,
        budget: float,
        currency: str = "USD",
        category: Optional[str] = None,
    ) -> Project:
        project = Project(
            id=_new_id(),
            client_id=client_id,
            title=title,
            description=description,
            budget=float(budget),
            currency=currency,
            category=category,
        )
        self._projects[project.id] = project
        return project

    def get_project(self, project_id: str) -> Optional[Project]:
        return self._projects.get(str(project_id))

    def list_projects(self, *, status: Optional[str] = None, client_id: Optional[str] = None) -> List[Project]:
        items = [
            p
            for p in self._projects.values()
            if (status is None or p.status == status) and (client_id is None or p.client_id == client_id)
        ]
        return sorted(items, key=lambda p: p.created_at, reverse=True)

    def save_project(self, project: Project) -> Project:
        project.updated_at = utcnow()
        self._projects[project.id] = project
        return project

    def count_projects_by_status(self) -> Dict[str, int]:
        return dict(Counter(p.status for p in self._projects.values()))

    def create_proposal(
        self,
        *,
        project_id: str,
        freelancer_id: str,
        cover_letter: str,
        bid_amount: float,
        milestones: Optional[List[Dict[str, Any]]] = None,
    ) -> Proposal:
        proposal = Proposal(
            id=_new_id(),
            project_id=project_id,
            freelancer_id=freelancer_id,
            cover_letter=cover_letter,
            bid_amount=float(bid_amount),
            milestones=list(milestones or []),
        )
        self._proposals[proposal.id] = proposal
        return proposal

    def get_proposal(self, proposal_id: str) -> Optional[Proposal]:
        return self._proposals.get(str(proposal_id))

    def list_proposals(
        self,
        *,
        project_id: Optional[str] = None,
        freelancer_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[Proposal]:
        items = [
            p
            for p in self._proposals.values()
            if (project_id is None or p.project_id == project_id)
            and (freelancer_id is None or p.freelancer_id == freelancer_id)
            and (status is None or p.status == status)
        ]
        return sorted(items, key=lambda p: p.created_at)

    def save_proposal(self, proposal: Proposal) -> Proposal:
        proposal.updated_at = utcnow()
        self._proposals[proposal.id] = proposal
        return proposal

    # ------------------------------------------------------------------ #
    # Contracts & milestones
    # ------------------------------------------------------------------ #
    def create_contract(
        self,
        *,
        project_id: str,
        proposal_id: str,
        client_id: str,
        freelancer_id: str,
        title: str,
        description: str,
        total_amount: float,
        start_date: datetime,
        end_date: datetime,
        currency: str = "USD",
        milestones: Optional[List[Dict[str, Any]]] = None,
    ) -> Contract:
        contract_id = _new_id()
        contract = Contract(
            id=contract_id,
            project_id=project_id,
            proposal_id=proposal_id,
            client_id=client_id,
            freelancer_id=freelancer_id,
            title=title,
            description=description,
            total_amount=float(total_amount),
            start_date=start_date,
            end_date=end_date,
            currency=currency,
            milestones=[
                Milestone(
                    id=_new_id(),
                    contract_id=contract_id,
                    position=i,
                    title=m["title"],
                    description=m.get("description") or "",
                    amount=float(m["amount"]),
                    due_date=m.get("due_date"),
                )
                for i, m in enumerate(milestones or [])
            ],
        )
        self._contracts[contract.id] = contract
        return contract

    def get_contract(self, contract_id: str) -> Optional[Contract]:
        return self._contracts.get(str(contract_id))

    def get_contract_by_proposal(self, proposal_id: str) -> Optional[Contract]:
        return next((c for c in self._contracts.values() if c.proposal_id == proposal_id), None)

    def list_contracts(self, *, user_id: Optional[str] = None, status: Optional[str] = None) -> List[Contract]:
        items = [
            c
            for c in self._contracts.values()
            if (user_id is None or user_id in (c.client_id, c.freelancer_id)) and (status is None or c.status == status)
        ]
        return sorted(items, key=lambda c: c.created_at, reverse=True)

    def save_contract(self, contract: Contract) -> Contract:
        contract.updated_at = utcnow()
        for i, m in enumerate(contract.milestones):
            m.contract_id = contract.id
            m.position = i
        self._contracts[contract.id] = contract
        return contract

    def new_milestone(self, contract_id: str, data: Dict[str, Any]) -> Milestone:
        """Build an unsaved milestone; persisted with the next `save_contract`."""
        return Milestone(
            id=_new_id(),
            contract_id=contract_id,
            title=data["title"],
            description=data.get("description") or "",
            amount=float(data["amount"]),
            due_date=data.get("due_date"),
        )

    def count_contracts_by_status(self) -> Dict[str, int]:
        return dict(Counter(c.status for c in self._contracts.values()))

    # ------------------------------------------------------------------ #
    # Transactions
    # ------------------------------------------------------------------ #
    def create_transaction(
        self,
        *,
        contract_id: str,
        client_id: str,
        freelancer_id: str,
        amount: float,
        freelancer_amount: float,
        milestone_id: Optional[str] = None,
        platform_commission: float = 0.0,
        processing_fee: float = 0.0,
        tax: float = 0.0,
        currency: str = "USD",
        status: str = "pending",
        payment_intent_id: Optional[str] = None,
        description: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        escrowed_at: Optional[datetime] = None,
        escrow_release_date: Optional[datetime] = None,
    ) -> Transaction:
        tx = Transaction(
            id=_new_id(),
            contract_id=contract_id,
            client_id=client_id,
            freelancer_id=freelancer_id,
            amount=float(amount),
            freelancer_amount=float(freelancer_amount),
            milestone_id=milestone_id,
            platform_commission=float(platform_commission),
            processing_fee=float(processing_fee),
            tax=float(tax),
            currency=currency,
            status=status,
            payment_intent_id=payment_intent_id,
            description=description,
            transaction_metadata=dict(metadata or {}),
            escrowed_at=escrowed_at,
            escrow_release_date=escrow_release_date,
        )
        self._transactions[tx.id] = tx
        return tx

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        return self._transactions.get(str(transaction_id))

    def get_transaction_by_payment_intent(self, payment_intent_id: str) -> Optional[Transaction]:
        return next((t for t in self._transactions.values() if t.payment_intent_id == payment_intent_id), None)

    def get_transaction_by_charge(self, charge_id: str) -> Optional[Transaction]:
        return next((t for t in self._transactions.values() if t.charge_id == charge_id), None)

    def _filter_transactions(
        self,
        *,
        client_id: Optional[str] = None,
        freelancer_id: Optional[str] = None,
        contract_id: Optional[str] = None,
        milestone_id: Optional[str] = None,
        status: Optional[str] = None,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
    ) -> List[Transaction]:
        items = []
        for t in self._transactions.values():
            if client_id is not None and t.client_id != client_id:
                continue
            if freelancer_id is not None and t.freelancer_id != freelancer_id:
                continue
            if contract_id is not None and t.contract_id != contract_id:
                continue
            if milestone_id is not None and t.milestone_id != milestone_id:
                continue
            if status is not None and t.status != status:
                continue
            if created_from is not None and t.created_at < as_utc(created_from):
                continue
            if created_to is not None and t.created_at > as_utc(created_to):
                continue
            items.append(t)
        return sorted(items, key=lambda t: t.created_at, reverse=True)

    def list_transactions(self, *, limit: Optional[int] = None, offset: int = 0, **filters: Any) -> List[Transaction]:
        items = self._filter_transactions(**filters)[offset:]
        return items[:limit] if limit is not None else items

    def count_transactions(self, **filters: Any) -> int:
        return len(self._filter_transactions(**filters))

    def list_held_transactions(self, escrowed_before: datetime) -> List[Transaction]:
        cutoff = as_utc(escrowed_before)
        items = [
            t
            for t in self._transactions.values()
            if t.status == "held_in_escrow" and t.escrowed_at is not None and as_utc(t.escrowed_at) <= cutoff
        ]
        return sorted(items, key=lambda t: t.escrowed_at)

    def transition_transaction(
        self,
        transaction_id: str,
        expected_status: str,
        new_status: str,
        **fields: Any,
    ) -> Optional[Transaction]:
        """Compare-and-set: apply only when the stored status is `expected_status`."""
        tx = self._transactions.get(str(transaction_id))
        if tx is None or tx.status != expected_status:
            return None
        tx.status = new_status
        for key, value in fields.items():
            setattr(tx, key, value)
        tx.updated_at = utcnow()
        return tx

    def save_transaction(self, tx: Transaction) -> Transaction:
        tx.updated_at = utcnow()
        self._transactions[tx.id] = tx
        return tx

    def transaction_stats(self) -> Dict[str, Any]:
        excluded = {"failed", "cancelled", "refunded"}
        counted = [t for t in self._transactions.values() if t.status not in excluded]
        return {
            "volume": round(sum(t.amount for t in counted), 2),
            "commission": round(sum(t.platform_commission for t in counted), 2),
            "by_status": dict(Counter(t.status for t in self._transactions.values())),
        }

    # ------------------------------------------------------------------ #
    # Disputes
    # ------------------------------------------------------------------ #
    def create_dispute(
        self,
        *,
        title: str,
        description: str,
        type: str,
        complainant_id: str,
        respondent_id: Optional[str] = None,
        project_id: Optional[str] = None,
        contract_id: Optional[str] = None,
        transaction_id: Optional[str] = None,
        evidence: Optional[List[str]] = None,
        priority: str = "medium",
    ) -> Dispute:
        dispute = Dispute(
            id=_new_id(),
            title=title,
            description=description,
            type=type,
            complainant_id=complainant_id,
            respondent_id=respondent_id,
            project_id=project_id,
            contract_id=contract_id,
            transaction_id=transaction_id,
            evidence=list(evidence or []),
            priority=priority,
        )
        self._disputes[dispute.id] = dispute
        return dispute

    def get_dispute(self, dispute_id: str) -> Optional[Dispute]:
        return self._disputes.get(str(dispute_id))

    def list_disputes(
        self,
        *,
        user_id: Optional[str] = None,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        type: Optional[str] = None,
    ) -> List[Dispute]:
        items = [
            d
            for d in self._disputes.values()
            if (user_id is None or user_id in (d.complainant_id, d.respondent_id))
            and (status is None or d.status == status)
            and (priority is None or d.priority == priority)
            and (type is None or d.type == type)
        ]
        return sorted(items, key=lambda d: d.created_at, reverse=True)

    def has_open_dispute(self, *, contract_id: Optional[str] = None, transaction_id: Optional[str] = None) -> bool:
        for d in self._disputes.values():
            if d.status not in ("open", "in_review"):
                continue
            if transaction_id is not None and d.transaction_id == transaction_id:
                return True
            if contract_id is not None and d.contract_id == contract_id:
                return True
        return False

    def save_dispute(self, dispute: Dispute) -> Dispute:
        dispute.updated_at = utcnow()
        self._disputes[dispute.id] = dispute
        return dispute

    # ------------------------------------------------------------------ #
    # Support tickets
    # ------------------------------------------------------------------ #
    def create_support_ticket(
        self,
        *,
        user_id: str,
        subject: str,
        category: str = "other",
        priority: str = "medium",
        messages: Optional[List[Dict[str, Any]]] = None,
    ) -> SupportTicket:
        ticket = SupportTicket(
            id=_new_id(),
            ticket_number=f"TKT-{len(self._tickets) + 1:05d}",
            user_id=user_id,
            subject=subject,
            category=category,
            priority=priority,
            messages=list(messages or []),
        )
        self._tickets[ticket.id] = ticket
        return ticket

    def get_support_ticket(self, ticket_id: str) -> Optional[SupportTicket]:
        return self._tickets.get(str(ticket_id))

    def list_support_tickets(
        self,
        *,
        user_id: Optional[str] = None,
        assigned_admin_id: Optional[str] = None,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        category: Optional[str] = None,
    ) -> List[SupportTicket]:
        items = [
            t
            for t in self._tickets.values()
            if (user_id is None or t.user_id == user_id)
            and (assigned_admin_id is None or t.assigned_admin_id == assigned_admin_id)
            and (status is None or t.status == status)
            and (priority is None or t.priority == priority)
            and (category is None or t.category == category)
        ]
        return sorted(items, key=lambda t: t.created_at, reverse=True)

    def save_support_ticket(self, ticket: SupportTicket) -> SupportTicket:
        ticket.updated_at = utcnow()
        self._tickets[ticket.id] = ticket
        return ticket

    # ------------------------------------------------------------------ #
    # Reviews
    # ------------------------------------------------------------------ #
    def create_review(
        self,
        *,
        contract_id: str,
        reviewer_id: str,
        reviewee_id: str,
        rating: int,
        feedback: str = "",
    ) -> Review:
        review = Review(
            id=_new_id(),
            contract_id=contract_id,
            reviewer_id=reviewer_id,
            reviewee_id=reviewee_id,
            rating=int(rating),
            feedback=feedback,
        )
        self._reviews[review.id] = review
        return review

    def get_review(self, review_id: str) -> Optional[Review]:
        return self._reviews.get(str(review_id))

    def get_review_by_contract_and_reviewer(self, contract_id: str, reviewer_id: str) -> Optional[Review]:
        return next(
            (r for r in self._reviews.values() if r.contract_id == contract_id and r.reviewer_id == reviewer_id),
            None,
        )

    def list_reviews(self, *, reviewee_id: Optional[str] = None, contract_id: Optional[str] = None) -> List[Review]:
        items = [
            r
            for r in self._reviews.values()
            if (reviewee_id is None or r.reviewee_id == reviewee_id) and (contract_id is None or r.contract_id == contract_id)
        ]
        return sorted(items, key=lambda r: r.created_at, reverse=True)

    def save_review(self, review: Review) -> Review:
        review.updated_at = utcnow()
        self._reviews[review.id] = review
        return review

    # ------------------------------------------------------------------ #
    # Conversations & messages
    # ------------------------------------------------------------------ #
    def create_conversation(self, participants: List[str]) -> Conversation:
        members = sorted(set(participants))
        conv = Conversation(id=_new_id(), participants=members, participants_key=participants_key(members))
        self._conversations[conv.id] = conv
        return conv

    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        return self._conversations.get(str(conversation_id))

    def find_conversation(self, participants: List[str]) -> Optional[Conversation]:
        key = participants_key(participants)
        return next((c for c in self._conversations.values() if c.participants_key == key), None)

    def list_conversations(self, user_id: str) -> List[Conversation]:
        items = [c for c in self._conversations.values() if user_id in c.participants]
        return sorted(items, key=lambda c: c.last_message_at or c.created_at, reverse=True)

    def add_message(self, conversation_id: str, sender_id: str, content: str) -> Message:
        msg = Message(id=_new_id(), conversation_id=conversation_id, sender_id=sender_id, content=content, read_by=[sender_id])
        self._messages.append(msg)
        conv = self._conversations.get(conversation_id)
        if conv is not None:
            conv.last_message_at = msg.created_at
            conv.updated_at = msg.created_at
        return msg

    def list_messages(self, conversation_id: str, limit: int = 50) -> List[Message]:
        # Newest first (the list is in append order), callers reverse for display
        msgs = [m for m in reversed(self._messages) if m.conversation_id == conversation_id]
        return msgs[:limit]

    def mark_messages_read(self, conversation_id: str, user_id: str) -> int:
        updated = 0
        for m in self._messages:
            if m.conversation_id == conversation_id and user_id not in m.read_by:
                m.read_by = m.read_by + [user_id]
                updated += 1
        return updated

    def count_unread_messages(self, conversation_id: str, user_id: str) -> int:
        return sum(1 for m in self._messages if m.conversation_id == conversation_id and user_id not in m.read_by)

    # ------------------------------------------------------------------ #
    # Notifications
    # ------------------------------------------------------------------ #
    def create_notification(
        self,
        *,
        user_id: str,
        type: str,
        title: str,
        message: str,
        link: Optional[str] = None,
        priority: str = "normal",
    ) -> Notification:
        n = Notification(id=_new_id(), user_id=user_id, type=type, title=title, message=message, link=link, priority=priority)
        self._notifications[n.id] = n
        return n

    def get_notification(self, notification_id: str) -> Optional[Notification]:
        return self._notifications.get(str(notification_id))

    def list_notifications(self, user_id: str, *, unread_only: bool = False, limit: int = 20, offset: int = 0) -> List[Notification]:
        items = [n for n in self._notifications.values() if n.user_id == user_id and (not unread_only or not n.is_read)]
        items.sort(key=lambda n: n.created_at, reverse=True)
        return items[offset : offset + limit]

    def count_unread_notifications(self, user_id: str) -> int:
        return sum(1 for n in self._notifications.values() if n.user_id == user_id and not n.is_read)

    def save_notification(self, notification: Notification) -> Notification:
        self._notifications[notification.id] = notification
        return notification

    def mark_all_notifications_read(self, user_id: str) -> int:
        updated = 0
        for n in self._notifications.values():
            if n.user_id == user_id and not n.is_read:
                n.is_read = True
                updated += 1
        return updated

    def delete_notification(self, notification_id: str) -> bool:
        return self._notifications.pop(str(notification_id), None) is not None
