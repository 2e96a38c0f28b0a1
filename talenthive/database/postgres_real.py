"""
Real Postgres-backed DB for production when USE_POSTGRES and DATABASE_URL are set.
Implements the same interface as talenthive.database.postgres (in-memory stub).
"""

from __future__ import annotations

import re
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import create_engine, func, or_, select, update
from sqlalchemy.orm import Session, sessionmaker

from talenthive.database.models import (
    Base,
    Contract,
    Conversation,
    Dispute,
    Message,
    Milestone,
    Notification,
    Project,
    Proposal,
    Review,
    SupportTicket,
    Transaction,
    User,
)
from talenthive.database.postgres import participants_key
from talenthive.utils.clock import utcnow


def _normalize_connection_string(s: str) -> str:
    """Strip common mistakes: 'psql \'...\'', extra quotes, whitespace."""
    s = s.strip()
    if re.match(r"^psql\s+", s, re.IGNORECASE):
        s = re.sub(r"^psql\s+", "", s, flags=re.IGNORECASE).strip()
    if len(s) >= 2 and s[0] == s[-1] and s[0] in ("'", '"'):
        s = s[1:-1].strip()
    if s.startswith("postgres://"):
        s = "postgresql+psycopg://" + s[len("postgres://"):]
    elif s.startswith("postgresql://"):
        s = "postgresql+psycopg://" + s[len("postgresql://"):]
    return s


class PostgresDB:
    """
    Postgres data access using SQLAlchemy. Use when DATABASE_URL is set and
    USE_POSTGRES=true.
    """

    def __init__(self, connection_string: str) -> None:
        connection_string = _normalize_connection_string(connection_string)
        engine_kwargs: Dict[str, Any] = {"pool_pre_ping": True}
        if not connection_string.startswith("sqlite"):
            engine_kwargs.update(pool_size=5, max_overflow=10)
        self.engine = create_engine(connection_string, **engine_kwargs)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine, expire_on_commit=False)

    def create_tables(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    def ping(self) -> bool:
        with self._session() as s:
            s.execute(select(1))
        return True

    @contextmanager
    def _session(self) -> Session:
        s = self.SessionLocal()
        try:
            yield s
            s.commit()
        except Exception:
            s.rollback()
            raise
        finally:
            s.close()

    def _add(self, obj: Any) -> Any:
        with self._session() as s:
            s.add(obj)
            s.flush()
            s.refresh(obj)
            return obj

    def _save(self, obj: Any) -> Any:
        obj.updated_at = utcnow()
        with self._session() as s:
            return s.merge(obj)

    def _counts(self, column: Any) -> Dict[str, int]:
        with self._session() as s:
            rows = s.execute(select(column, func.count()).group_by(column)).all()
            return {str(k): int(v) for k, v in rows}

    # ------------------------------------------------------------------ #
    # Users
    # ------------------------------------------------------------------ #
    def create_user(self, *, email: str, first_name: str, last_name: str, role: str) -> User:
        return self._add(User(id=str(uuid4()), email=email.lower(), first_name=first_name, last_name=last_name, role=role))

    def get_user(self, user_id: str) -> Optional[User]:
        with self._session() as s:
            return s.get(User, str(user_id))

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._session() as s:
            stmt = select(User).where(User.email == (email or "").lower())
            return s.execute(stmt).scalar_one_or_none()

    def list_users(self, role: Optional[str] = None) -> List[User]:
        with self._session() as s:
            stmt = select(User).order_by(User.created_at.asc())
            if role:
                stmt = stmt.where(User.role == role)
            return list(s.execute(stmt).scalars().all())

    def save_user(self, user: User) -> User:
        return self._save(user)

    def count_users_by_role(self) -> Dict[str, int]:
        return self._counts(User.role)

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
        return self._add(
            Project(
                id=str(uuid4()),
                client_id=client_id,
                title=title,
                description=description,
                budget=float(budget),
                currency=currency,
                category=category,
            )
        )

    def get_project(self, project_id: str) -> Optional[Project]:
        with self._session() as s:
            return s.get(Project, str(project_id))

    def list_projects(self, *, status: Optional[str] = None, client_id: Optional[str] = None) -> List[Project]:
        with self._session() as s:
            stmt = select(Project).order_by(Project.created_at.desc())
            if status:
                stmt = stmt.where(Project.status == status)
            if client_id:
                stmt = stmt.where(Project.client_id == client_id)
            return list(s.execute(stmt).scalars().all())

    def save_project(self, project: Project) -> Project:
        return self._save(project)

    def count_projects_by_status(self) -> Dict[str, int]:
        return self._counts(Project.status)

    def create_proposal(
        self,
        *,
        project_id: str,
        freelancer_id: str,
        cover_letter: str,
        bid_amount: float,
        milestones: Optional[List[Dict[str, Any]]] = None,
    ) -> Proposal:
        return self._add(
            Proposal(
                id=str(uuid4()),
                project_id=project_id,
                freelancer_id=freelancer_id,
                cover_letter=cover_letter,
                bid_amount=float(bid_amount),
                milestones=list(milestones or []),
                status="submitted",
            )
        )

    def get_proposal(self, proposal_id: str) -> Optional[Proposal]:
        with self._session() as s:
            return s.get(Proposal, str(proposal_id))

    def list_proposals(
        self,
        *,
        project_id: Optional[str] = None,
        freelancer_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[Proposal]:
        with self._session() as s:
            stmt = select(Proposal).order_by(Proposal.created_at.asc())
            if project_id:
                stmt = stmt.where(Proposal.project_id == project_id)
            if freelancer_id:
                stmt = stmt.where(Proposal.freelancer_id == freelancer_id)
            if status:
                stmt = stmt.where(Proposal.status == status)
            return list(s.execute(stmt).scalars().all())

    def save_proposal(self, proposal: Proposal) -> Proposal:
        return self._save(proposal)

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
        contract_id = str(uuid4())
        contract = Contract(
            id=contract_id,
            project_id=project_id,
            proposal_id=proposal_id,
            client_id=client_id,
            freelancer_id=freelancer_id,
            title=title,
            description=description,
            total_amount=float(total_amount),
            currency=currency,
            start_date=start_date,
            end_date=end_date,
            status="draft",
            signatures=[],
            milestones=[
                Milestone(
                    id=str(uuid4()),
                    contract_id=contract_id,
                    position=i,
                    title=m["title"],
                    description=m.get("description") or "",
                    amount=float(m["amount"]),
                    due_date=m.get("due_date"),
                    status="pending",
                    deliverables=[],
                )
                for i, m in enumerate(milestones or [])
            ],
        )
        return self._add(contract)

    def get_contract(self, contract_id: str) -> Optional[Contract]:
        with self._session() as s:
            return s.get(Contract, str(contract_id))

    def get_contract_by_proposal(self, proposal_id: str) -> Optional[Contract]:
        with self._session() as s:
            stmt = select(Contract).where(Contract.proposal_id == proposal_id)
            return s.execute(stmt).scalar_one_or_none()

    def list_contracts(self, *, user_id: Optional[str] = None, status: Optional[str] = None) -> List[Contract]:
        with self._session() as s:
            stmt = select(Contract).order_by(Contract.created_at.desc())
            if user_id:
                stmt = stmt.where(or_(Contract.client_id == user_id, Contract.freelancer_id == user_id))
            if status:
                stmt = stmt.where(Contract.status == status)
            return list(s.execute(stmt).scalars().all())

    def save_contract(self, contract: Contract) -> Contract:
        for i, m in enumerate(contract.milestones):
            m.contract_id = contract.id
            m.position = i
        return self._save(contract)

    def new_milestone(self, contract_id: str, data: Dict[str, Any]) -> Milestone:
        """Build an unsaved milestone; persisted with the next `save_contract`."""
        return Milestone(
            id=str(uuid4()),
            contract_id=contract_id,
            title=data["title"],
            description=data.get("description") or "",
            amount=float(data["amount"]),
            due_date=data.get("due_date"),
            status="pending",
            deliverables=[],
        )

    def count_contracts_by_status(self) -> Dict[str, int]:
        return self._counts(Contract.status)

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
        return self._add(
            Transaction(
                id=str(uuid4()),
                contract_id=contract_id,
                milestone_id=milestone_id,
                client_id=client_id,
                freelancer_id=freelancer_id,
                amount=float(amount),
                platform_commission=float(platform_commission),
                processing_fee=float(processing_fee),
                tax=float(tax),
                freelancer_amount=float(freelancer_amount),
                currency=currency,
                status=status,
                payment_intent_id=payment_intent_id,
                description=description,
                transaction_metadata=dict(metadata or {}),
                escrowed_at=escrowed_at,
                escrow_release_date=escrow_release_date,
            )
        )

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        with self._session() as s:
            return s.get(Transaction, str(transaction_id))

    def get_transaction_by_payment_intent(self, payment_intent_id: str) -> Optional[Transaction]:
        with self._session() as s:
            stmt = select(Transaction).where(Transaction.payment_intent_id == payment_intent_id)
            return s.execute(stmt).scalars().first()

    def get_transaction_by_charge(self, charge_id: str) -> Optional[Transaction]:
        with self._session() as s:
            stmt = select(Transaction).where(Transaction.charge_id == charge_id)
            return s.execute(stmt).scalars().first()

    @staticmethod
    def _transaction_filters(stmt: Any, filters: Dict[str, Any]) -> Any:
        columns = {
            "client_id": Transaction.client_id,
            "freelancer_id": Transaction.freelancer_id,
            "contract_id": Transaction.contract_id,
            "milestone_id": Transaction.milestone_id,
            "status": Transaction.status,
        }
        for key, value in filters.items():
            if value is None:
                continue
            if key in columns:
                stmt = stmt.where(columns[key] == value)
            elif key == "created_from":
                stmt = stmt.where(Transaction.created_at >= value)
            elif key == "created_to":
                stmt = stmt.where(Transaction.created_at <= value)
        return stmt

    def list_transactions(self, *, limit: Optional[int] = None, offset: int = 0, **filters: Any) -> List[Transaction]:
        with self._session() as s:
            stmt = self._transaction_filters(select(Transaction), filters).order_by(Transaction.created_at.desc())
            stmt = stmt.offset(offset)
            if limit is not None:
                stmt = stmt.limit(limit)
            return list(s.execute(stmt).scalars().all())

    def count_transactions(self, **filters: Any) -> int:
        with self._session() as s:
            stmt = self._transaction_filters(select(func.count()).select_from(Transaction), filters)
            return int(s.execute(stmt).scalar_one())

    def list_held_transactions(self, escrowed_before: datetime) -> List[Transaction]:
        with self._session() as s:
            stmt = (
                select(Transaction)
                .where(Transaction.status == "held_in_escrow")
                .where(Transaction.escrowed_at.is_not(None))
                .where(Transaction.escrowed_at <= escrowed_before)
                .order_by(Transaction.escrowed_at.asc())
            )
            return list(s.execute(stmt).scalars().all())

    def transition_transaction(
        self,
        transaction_id: str,
        expected_status: str,
        new_status: str,
        **fields: Any,
    ) -> Optional[Transaction]:
        """Conditional UPDATE; returns None when another writer moved the row first."""
        with self._session() as s:
            stmt = (
                update(Transaction)
                .where(Transaction.id == str(transaction_id))
                .where(Transaction.status == expected_status)
                .values(status=new_status, updated_at=utcnow(), **fields)
                .execution_options(synchronize_session=False)
            )
            result = s.execute(stmt)
            if result.rowcount != 1:
                return None
            s.flush()
            return s.execute(
                select(Transaction).where(Transaction.id == str(transaction_id)).execution_options(populate_existing=True)
            ).scalar_one()

    def save_transaction(self, tx: Transaction) -> Transaction:
        return self._save(tx)

    def transaction_stats(self) -> Dict[str, Any]:
        excluded = ("failed", "cancelled", "refunded")
        with self._session() as s:
            volume, commission = s.execute(
                select(
                    func.coalesce(func.sum(Transaction.amount), 0.0),
                    func.coalesce(func.sum(Transaction.platform_commission), 0.0),
                ).where(Transaction.status.not_in(excluded))
            ).one()
        return {
            "volume": round(float(volume), 2),
            "commission": round(float(commission), 2),
            "by_status": self._counts(Transaction.status),
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
        return self._add(
            Dispute(
                id=str(uuid4()),
                title=title,
                description=description,
                type=type,
                status="open",
                priority=priority,
                complainant_id=complainant_id,
                respondent_id=respondent_id,
                project_id=project_id,
                contract_id=contract_id,
                transaction_id=transaction_id,
                evidence=list(evidence or []),
                messages=[],
            )
        )

    def get_dispute(self, dispute_id: str) -> Optional[Dispute]:
        with self._session() as s:
            return s.get(Dispute, str(dispute_id))

    def list_disputes(
        self,
        *,
        user_id: Optional[str] = None,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        type: Optional[str] = None,
    ) -> List[Dispute]:
        with self._session() as s:
            stmt = select(Dispute).order_by(Dispute.created_at.desc())
            if user_id:
                stmt = stmt.where(or_(Dispute.complainant_id == user_id, Dispute.respondent_id == user_id))
            if status:
                stmt = stmt.where(Dispute.status == status)
            if priority:
                stmt = stmt.where(Dispute.priority == priority)
            if type:
                stmt = stmt.where(Dispute.type == type)
            return list(s.execute(stmt).scalars().all())

    def has_open_dispute(self, *, contract_id: Optional[str] = None, transaction_id: Optional[str] = None) -> bool:
        conditions = []
        if contract_id is not None:
            conditions.append(Dispute.contract_id == contract_id)
        if transaction_id is not None:
            conditions.append(Dispute.transaction_id == transaction_id)
        if not conditions:
            return False
        with self._session() as s:
            stmt = (
                select(func.count())
                .select_from(Dispute)
                .where(Dispute.status.in_(("open", "in_review")))
                .where(or_(*conditions))
            )
            return int(s.execute(stmt).scalar_one()) > 0

    def save_dispute(self, dispute: Dispute) -> Dispute:
        return self._save(dispute)

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
        # ticket_number is unique; a concurrent insert with the same number fails loudly
        with self._session() as s:
            count = int(s.execute(select(func.count()).select_from(SupportTicket)).scalar_one())
        return self._add(
            SupportTicket(
                id=str(uuid4()),
                ticket_number=f"TKT-{count + 1:05d}",
                user_id=user_id,
                subject=subject,
                category=category,
                priority=priority,
                status="open",
                messages=list(messages or []),
                tags=[],
            )
        )

    def get_support_ticket(self, ticket_id: str) -> Optional[SupportTicket]:
        with self._session() as s:
            return s.get(SupportTicket, str(ticket_id))

    def list_support_tickets(
        self,
        *,
        user_id: Optional[str] = None,
        assigned_admin_id: Optional[str] = None,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        category: Optional[str] = None,
    ) -> List[SupportTicket]:
        with self._session() as s:
            stmt = select(SupportTicket).order_by(SupportTicket.created_at.desc())
            if user_id:
                stmt = stmt.where(SupportTicket.user_id == user_id)
            if assigned_admin_id:
                stmt = stmt.where(SupportTicket.assigned_admin_id == assigned_admin_id)
            if status:
                stmt = stmt.where(SupportTicket.status == status)
            if priority:
                stmt = stmt.where(SupportTicket.priority == priority)
            if category:
                stmt = stmt.where(SupportTicket.category == category)
            return list(s.execute(stmt).scalars().all())

    def save_support_ticket(self, ticket: SupportTicket) -> SupportTicket:
        return self._save(ticket)

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
        return self._add(
            Review(
                id=str(uuid4()),
                contract_id=contract_id,
                reviewer_id=reviewer_id,
                reviewee_id=reviewee_id,
                rating=int(rating),
                feedback=feedback,
            )
        )

    def get_review(self, review_id: str) -> Optional[Review]:
        with self._session() as s:
            return s.get(Review, str(review_id))

    def get_review_by_contract_and_reviewer(self, contract_id: str, reviewer_id: str) -> Optional[Review]:
        with self._session() as s:
            stmt = select(Review).where(Review.contract_id == contract_id).where(Review.reviewer_id == reviewer_id)
            return s.execute(stmt).scalars().first()

    def list_reviews(self, *, reviewee_id: Optional[str] = None, contract_id: Optional[str] = None) -> List[Review]:
        with self._session() as s:
            stmt = select(Review).order_by(Review.created_at.desc())
            if reviewee_id:
                stmt = stmt.where(Review.reviewee_id == reviewee_id)
            if contract_id:
                stmt = stmt.where(Review.contract_id == contract_id)
            return list(s.execute(stmt).scalars().all())

    def save_review(self, review: Review) -> Review:
        return self._save(review)

    # ------------------------------------------------------------------ #
    # Conversations & messages
    # ------------------------------------------------------------------ #
    def create_conversation(self, participants: List[str]) -> Conversation:
        members = sorted(set(participants))
        return self._add(Conversation(id=str(uuid4()), participants=members, participants_key=participants_key(members)))

    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        with self._session() as s:
            return s.get(Conversation, str(conversation_id))

    def find_conversation(self, participants: List[str]) -> Optional[Conversation]:
        with self._session() as s:
            stmt = select(Conversation).where(Conversation.participants_key == participants_key(participants))
            return s.execute(stmt).scalar_one_or_none()

    def list_conversations(self, user_id: str) -> List[Conversation]:
        with self._session() as s:
            key = Conversation.participants_key
            stmt = (
                select(Conversation)
                .where(
                    or_(
                        key == user_id,
                        key.like(f"{user_id}:%"),
                        key.like(f"%:{user_id}"),
                        key.like(f"%:{user_id}:%"),
                    )
                )
                .order_by(func.coalesce(Conversation.last_message_at, Conversation.created_at).desc())
            )
            return list(s.execute(stmt).scalars().all())

    def add_message(self, conversation_id: str, sender_id: str, content: str) -> Message:
        with self._session() as s:
            m = Message(id=str(uuid4()), conversation_id=conversation_id, sender_id=sender_id, content=content, read_by=[sender_id])
            s.add(m)
            s.flush()
            s.refresh(m)
            conv = s.get(Conversation, conversation_id)
            if conv is not None:
                conv.last_message_at = m.created_at
                conv.updated_at = m.created_at
            return m

    def list_messages(self, conversation_id: str, limit: int = 50) -> List[Message]:
        with self._session() as s:
            stmt = (
                select(Message)
                .where(Message.conversation_id == conversation_id)
                .order_by(Message.created_at.desc())
                .limit(limit)
            )
            return list(s.execute(stmt).scalars().all())

    def mark_messages_read(self, conversation_id: str, user_id: str) -> int:
        updated = 0
        with self._session() as s:
            stmt = select(Message).where(Message.conversation_id == conversation_id)
            for m in s.execute(stmt).scalars().all():
                if user_id not in (m.read_by or []):
                    m.read_by = list(m.read_by or []) + [user_id]
                    updated += 1
        return updated

    def count_unread_messages(self, conversation_id: str, user_id: str) -> int:
        return sum(1 for m in self.list_messages(conversation_id, limit=10_000) if user_id not in (m.read_by or []))

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
        return self._add(
            Notification(
                id=str(uuid4()),
                user_id=user_id,
                type=type,
                title=title,
                message=message,
                link=link,
                priority=priority,
                is_read=False,
            )
        )

    def get_notification(self, notification_id: str) -> Optional[Notification]:
        with self._session() as s:
            return s.get(Notification, str(notification_id))

    def list_notifications(self, user_id: str, *, unread_only: bool = False, limit: int = 20, offset: int = 0) -> List[Notification]:
        with self._session() as s:
            stmt = select(Notification).where(Notification.user_id == user_id)
            if unread_only:
                stmt = stmt.where(Notification.is_read.is_(False))
            stmt = stmt.order_by(Notification.created_at.desc()).offset(offset).limit(limit)
            return list(s.execute(stmt).scalars().all())

    def count_unread_notifications(self, user_id: str) -> int:
        with self._session() as s:
            stmt = (
                select(func.count())
                .select_from(Notification)
                .where(Notification.user_id == user_id)
                .where(Notification.is_read.is_(False))
            )
            return int(s.execute(stmt).scalar_one())

    def save_notification(self, notification: Notification) -> Notification:
        with self._session() as s:
            return s.merge(notification)

    def mark_all_notifications_read(self, user_id: str) -> int:
        with self._session() as s:
            result = s.execute(
                update(Notification)
                .where(Notification.user_id == user_id)
                .where(Notification.is_read.is_(False))
                .values(is_read=True)
            )
            return int(result.rowcount or 0)

    def delete_notification(self, notification_id: str) -> bool:
        with self._session() as s:
            n = s.get(Notification, str(notification_id))
            if not n:
                return False
            s.delete(n)
            return True
