from __future__ import annotations

import math
from enum import Enum
from typing import Generic, Iterable, TypeVar

from talenthive.domain.states import (
    CONTRACT_TRANSITIONS,
    DISPUTE_TRANSITIONS,
    MILESTONE_TRANSITIONS,
    PAYABLE_CONTRACT_STATES,
    TICKET_TRANSITIONS,
    TRANSACTION_TRANSITIONS,
    ContractStatus,
    DisputeStatus,
    MilestoneStatus,
    TicketStatus,
    TransactionStatus,
)
from talenthive.error_handler import AppError, InvalidTransitionError

S = TypeVar("S", bound=Enum)

AMOUNT_TOLERANCE = 0.01


class StateMachine(Generic[S]):
    def __init__(self, name: str, states: type[S], transitions: dict[S, set[S]]) -> None:
        self.name = name
        self.states = states
        self.transitions = transitions

    def coerce(self, value: S | str) -> S:
        try:
            return self.states(value)
        except ValueError:
            raise AppError(f"Unknown {self.name} status '{value}'", 400) from None

    def can_transition(self, current: S | str, target: S | str) -> bool:
        return self.coerce(target) in self.transitions.get(self.coerce(current), set())

    def is_terminal(self, status: S | str) -> bool:
        return not self.transitions.get(self.coerce(status))

    def transition(self, current: S | str, target: S | str) -> S:
        cur, tgt = self.coerce(current), self.coerce(target)
        if tgt not in self.transitions.get(cur, set()):
            raise InvalidTransitionError(f"Invalid {self.name} transition {cur.value} -> {tgt.value}")
        return tgt


contract_machine: StateMachine[ContractStatus] = StateMachine("contract", ContractStatus, CONTRACT_TRANSITIONS)
milestone_machine: StateMachine[MilestoneStatus] = StateMachine("milestone", MilestoneStatus, MILESTONE_TRANSITIONS)
transaction_machine: StateMachine[TransactionStatus] = StateMachine("transaction", TransactionStatus, TRANSACTION_TRANSITIONS)
dispute_machine: StateMachine[DisputeStatus] = StateMachine("dispute", DisputeStatus, DISPUTE_TRANSITIONS)
ticket_machine: StateMachine[TicketStatus] = StateMachine("support ticket", TicketStatus, TICKET_TRANSITIONS)


def ensure_milestone_payable(contract_status: ContractStatus | str) -> None:
    if ContractStatus(contract_status) not in PAYABLE_CONTRACT_STATES:
        raise InvalidTransitionError(f"Milestones cannot be paid while the contract is {ContractStatus(contract_status).value}")


def ensure_contract_active(contract_status: ContractStatus | str, action: str) -> None:
    if ContractStatus(contract_status) != ContractStatus.ACTIVE:
        raise InvalidTransitionError(f"Cannot {action} while the contract is {ContractStatus(contract_status).value}")


def contract_amount_errors(total_amount: float, milestone_amounts: Iterable[float]) -> list[str]:
    """
    Return the amount problems of a contract; empty means milestones and
    total agree.
    """
    amounts = list(milestone_amounts)
    errors: list[str] = []
    if not math.isfinite(total_amount) or not all(math.isfinite(a) for a in amounts):
        return ["amounts must be finite numbers"]
    if total_amount < 0:
        errors.append("total_amount must not be negative")
    if any(a < 0 for a in amounts):
        errors.append("milestone amounts must not be negative")
    if amounts and abs(round(sum(amounts), 2) - round(total_amount, 2)) > AMOUNT_TOLERANCE:
        errors.append(
            f"Total milestone amount {round(sum(amounts), 2):.2f} must equal contract total amount {round(total_amount, 2):.2f}"
        )
    return errors
