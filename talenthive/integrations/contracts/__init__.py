from .interfaces import (
    GatewayEvent,
    GatewayEventType,
    GatewayIntentStatus,
    PaymentGateway,
    PaymentGatewayError,
    PaymentIntentRequest,
    PaymentIntentResult,
    RefundResult,
    TransferRequest,
    TransferResult,
)
from .payments import (
    from_minor_units,
    is_handled_event,
    to_minor_units,
    validate_payment_intent_request,
    validate_transfer_request,
)

__all__ = [
    "GatewayEvent",
    "GatewayEventType",
    "GatewayIntentStatus",
    "PaymentGateway",
    "PaymentGatewayError",
    "PaymentIntentRequest",
    "PaymentIntentResult",
    "RefundResult",
    "TransferRequest",
    "TransferResult",
    "from_minor_units",
    "is_handled_event",
    "to_minor_units",
    "validate_payment_intent_request",
    "validate_transfer_request",
]
