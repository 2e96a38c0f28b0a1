"""
Domain rules: status enums, allowed transitions and cross-entity guards.

Controllers MUST move statuses through the machines here rather than
assigning status strings directly.
"""

from .state_machine import (
    StateMachine,
    contract_amount_errors,
    contract_machine,
    dispute_machine,
    ensure_contract_active,
    ensure_milestone_payable,
    milestone_machine,
    ticket_machine,
    transaction_machine,
)
from .states import (
    ContractStatus,
    DisputeStatus,
    DisputeType,
    MilestoneStatus,
    Priority,
    ProjectStatus,
    ProposalStatus,
    TicketCategory,
    TicketStatus,
    TransactionStatus,
    UserRole,
)

__all__ = [
    "StateMachine", "contract_amount_errors", "contract_machine", "dispute_machine",
    "ensure_contract_active", "ensure_milestone_payable", "milestone_machine", "ticket_machine",
    "transaction_machine",
    "ContractStatus", "DisputeStatus", "DisputeType", "MilestoneStatus", "Priority",
    "ProjectStatus", "ProposalStatus", "TicketCategory", "TicketStatus", "TransactionStatus", "UserRole",
]
