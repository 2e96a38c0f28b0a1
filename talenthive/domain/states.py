from __future__ import annotations

from enum import Enum


class UserRole(str, Enum):
    CLIENT = "client"
    FREELANCER = "freelancer"
    ADMIN = "admin"


class ProjectStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ProposalStatus(str, Enum):
    SUBMITTED = "submitted"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"


class ContractStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DISPUTED = "disputed"


class MilestoneStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    PAID = "paid"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    HELD_IN_ESCROW = "held_in_escrow"
    RELEASED = "released"
    PAID_OUT = "paid_out"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class DisputeStatus(str, Enum):
    OPEN = "open"
    IN_REVIEW = "in_review"
    RESOLVED = "resolved"
    CLOSED = "closed"


class DisputeType(str, Enum):
    PROJECT = "project"
    CONTRACT = "contract"
    PAYMENT = "payment"
    USER = "user"
    OTHER = "other"


class TicketStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


class TicketCategory(str, Enum):
    TECHNICAL = "technical"
    BILLING = "billing"
    ACCOUNT = "account"
    PROJECT = "project"
    OTHER = "other"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


CONTRACT_TRANSITIONS: dict[ContractStatus, set[ContractStatus]] = {
    ContractStatus.DRAFT: {ContractStatus.ACTIVE, ContractStatus.CANCELLED},
    ContractStatus.ACTIVE: {ContractStatus.COMPLETED, ContractStatus.CANCELLED, ContractStatus.DISPUTED},
    ContractStatus.DISPUTED: {ContractStatus.ACTIVE, ContractStatus.COMPLETED, ContractStatus.CANCELLED},
    ContractStatus.COMPLETED: set(),
    ContractStatus.CANCELLED: set(),
}

MILESTONE_TRANSITIONS: dict[MilestoneStatus, set[MilestoneStatus]] = {
    MilestoneStatus.PENDING: {MilestoneStatus.IN_PROGRESS, MilestoneStatus.SUBMITTED},
    MilestoneStatus.IN_PROGRESS: {MilestoneStatus.SUBMITTED},
    MilestoneStatus.SUBMITTED: {MilestoneStatus.APPROVED, MilestoneStatus.REJECTED},
    MilestoneStatus.REJECTED: {MilestoneStatus.IN_PROGRESS, MilestoneStatus.SUBMITTED},
    MilestoneStatus.APPROVED: {MilestoneStatus.PAID},
    MilestoneStatus.PAID: set(),
}

TRANSACTION_TRANSITIONS: dict[TransactionStatus, set[TransactionStatus]] = {
    TransactionStatus.PENDING: {
        TransactionStatus.PROCESSING,
        TransactionStatus.HELD_IN_ESCROW,
        TransactionStatus.COMPLETED,
        TransactionStatus.FAILED,
        TransactionStatus.CANCELLED,
    },
    TransactionStatus.PROCESSING: {
        TransactionStatus.HELD_IN_ESCROW,
        TransactionStatus.COMPLETED,
        TransactionStatus.FAILED,
        TransactionStatus.CANCELLED,
    },
    TransactionStatus.HELD_IN_ESCROW: {
        TransactionStatus.RELEASED,
        TransactionStatus.PAID_OUT,
        TransactionStatus.REFUNDED,
    },
    TransactionStatus.RELEASED: {TransactionStatus.PAID_OUT},
    TransactionStatus.COMPLETED: {TransactionStatus.REFUNDED},
    TransactionStatus.PAID_OUT: set(),
    TransactionStatus.FAILED: set(),
    TransactionStatus.REFUNDED: set(),
    TransactionStatus.CANCELLED: set(),
}

DISPUTE_TRANSITIONS: dict[DisputeStatus, set[DisputeStatus]] = {
    DisputeStatus.OPEN: {DisputeStatus.IN_REVIEW, DisputeStatus.RESOLVED, DisputeStatus.CLOSED},
    DisputeStatus.IN_REVIEW: {DisputeStatus.RESOLVED, DisputeStatus.CLOSED, DisputeStatus.OPEN},
    DisputeStatus.RESOLVED: {DisputeStatus.CLOSED},
    DisputeStatus.CLOSED: set(),
}

# Support tickets: a resolved ticket can be reopened until it is closed.
TICKET_TRANSITIONS: dict[TicketStatus, set[TicketStatus]] = {
    TicketStatus.OPEN: {TicketStatus.IN_PROGRESS, TicketStatus.RESOLVED, TicketStatus.CLOSED},
    TicketStatus.IN_PROGRESS: {TicketStatus.OPEN, TicketStatus.RESOLVED, TicketStatus.CLOSED},
    TicketStatus.RESOLVED: {TicketStatus.OPEN, TicketStatus.CLOSED},
    TicketStatus.CLOSED: set(),
}

# Milestones in these contract states may be paid out.
PAYABLE_CONTRACT_STATES = {ContractStatus.ACTIVE, ContractStatus.COMPLETED}

ACTIVE_DISPUTE_STATES = {DisputeStatus.OPEN, DisputeStatus.IN_REVIEW}
