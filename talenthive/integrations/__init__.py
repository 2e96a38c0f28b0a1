"""
Integrations layer.
This package contains all code used to communicate with the card processor:
- payment intents (card holds) for milestone funding
- transfers to freelancers' connected payout accounts
- refunds and webhook signature verification

Key rule:
- Controllers MUST NOT call the processor SDK directly.
- Controllers call a PaymentGateway (under talenthive/integrations/clients).
- The MOCK gateway is used in development and tests; the Stripe gateway is
  used when a secret key is configured.

Switching implementations:
- The selection of mock vs real clients happens in ONE place (talenthive/api/main.py).
"""

from .contracts.interfaces import (
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
from .policy.response_wrappers import IntegrationResponseError, WebhookVerificationError

__all__ = [
    "GatewayEvent", "GatewayEventType", "GatewayIntentStatus", "PaymentGateway",
    "PaymentGatewayError", "PaymentIntentRequest", "PaymentIntentResult",
    "RefundResult", "TransferRequest", "TransferResult",
    "IntegrationResponseError", "WebhookVerificationError",
]
