from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from talenthive.utils.clock import utcnow


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class GatewayIntentStatus(str, Enum):
    REQUIRES_PAYMENT_METHOD = "requires_payment_method"
    REQUIRES_CONFIRMATION = "requires_confirmation"
    REQUIRES_ACTION = "requires_action"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    CANCELED = "canceled"


class GatewayEventType(str, Enum):
    PAYMENT_SUCCEEDED = "payment_intent.succeeded"
    PAYMENT_FAILED = "payment_intent.payment_failed"
    PAYMENT_CANCELED = "payment_intent.canceled"
    CHARGE_REFUNDED = "charge.refunded"


# ---------------------------------------------------------------------------
# Shared data models
# ---------------------------------------------------------------------------

@dataclass
class PaymentIntentRequest:
    amount: float                        # major units, e.g. 1250.50 USD
    currency: str
    description: str
    customer_email: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PaymentIntentResult:
    intent_id: str
    client_secret: str
    status: GatewayIntentStatus
    amount: float
    currency: str
    charge_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TransferRequest:
    amount: float
    currency: str
    destination_account: str
    transfer_group: Optional[str] = None
    idempotency_key: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TransferResult:
    transfer_id: str
    amount: float
    currency: str
    destination_account: str
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class RefundResult:
    refund_id: str
    intent_id: str
    amount: float
    status: str


@dataclass
class GatewayEvent:
    """Verified webhook event reduced to what the payment controller needs."""
    event_id: str
    type: str
    object_id: str                       # payment intent or charge id
    payment_intent_id: Optional[str] = None
    charge_id: Optional[str] = None
    failure_message: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Gateway interface
# ---------------------------------------------------------------------------

class PaymentGatewayError(Exception):
    """The processor rejected or failed a call (declined card, transfer error, outage)."""

    def __init__(self, message: str, *, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code


class PaymentGateway(ABC):
    """Card processor abstraction. Implemented by the mock and Stripe clients."""

    @abstractmethod
    async def create_payment_intent(self, request: PaymentIntentRequest) -> PaymentIntentResult:
        pass

    @abstractmethod
    async def retrieve_payment_intent(self, intent_id: str) -> PaymentIntentResult:
        pass

    @abstractmethod
    async def transfer(self, request: TransferRequest) -> TransferResult:
        pass

    @abstractmethod
    async def refund(self, intent_id: str, amount: Optional[float] = None, reason: Optional[str] = None) -> RefundResult:
        pass

    @abstractmethod
    def construct_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Verify the webhook signature and return the decoded event payload."""
        pass
