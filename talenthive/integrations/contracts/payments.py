"""
Payment contract: validation helpers shared by the mock and Stripe gateways.

Both clients/mocks/payments.py and clients/real_http/payments.py validate
requests with these helpers so behaviour stays consistent across environments.
"""

from typing import List

from .interfaces import GatewayEventType, PaymentIntentRequest, TransferRequest

HANDLED_EVENT_TYPES = {t.value for t in GatewayEventType}


def to_minor_units(amount: float) -> int:
    """Card processors take integer cents."""
    return int(round(float(amount) * 100))


def from_minor_units(amount: int) -> float:
    return round(int(amount) / 100.0, 2)


def validate_payment_intent_request(request: PaymentIntentRequest) -> List[str]:
    """
    Return a list of validation errors.
    Empty list means the request is valid.
    """
    errors: List[str] = []

    if request.amount is None or request.amount <= 0:
        errors.append("amount must be greater than zero")
    if not request.currency or len(request.currency) != 3:
        errors.append("currency must be a 3-letter ISO code")
    if not request.description:
        errors.append("description is required")
    return errors


def validate_transfer_request(request: TransferRequest) -> List[str]:
    errors: List[str] = []
    if request.amount is None or request.amount <= 0:
        errors.append("amount must be greater than zero")
    if not request.destination_account:
        errors.append("destination_account is required")
    if not request.currency:
        errors.append("currency is required")
    return errors


def is_handled_event(event_type: str) -> bool:
    return event_type in HANDLED_EVENT_TYPES
