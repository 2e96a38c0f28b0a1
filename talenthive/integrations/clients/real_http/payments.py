"""
Stripe payment gateway.

Used when INTEGRATIONS_MODE=real (or a STRIPE_SECRET_KEY is configured and
the mode is left unset). The stripe SDK is synchronous, so calls run in a
worker thread to keep the event loop free.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Any, Dict, Optional

import stripe

from talenthive.integrations.contracts.interfaces import (
    PaymentGateway,
    PaymentGatewayError,
    PaymentIntentRequest,
    PaymentIntentResult,
    RefundResult,
    TransferRequest,
    TransferResult,
)
from talenthive.integrations.contracts.payments import (
    from_minor_units,
    to_minor_units,
    validate_payment_intent_request,
    validate_transfer_request,
)
from talenthive.integrations.policy.response_wrappers import WebhookVerificationError, normalize_payment_intent

logger = logging.getLogger(__name__)


def _as_dict(obj: Any) -> Dict[str, Any]:
    # StripeObject renders itself as recursive JSON
    if isinstance(obj, dict) and not isinstance(obj, stripe.StripeObject):
        return obj
    return json.loads(str(obj))


class StripePaymentGateway(PaymentGateway):
    def __init__(self, api_key: Optional[str] = None, webhook_secret: Optional[str] = None) -> None:
        self.api_key = api_key or os.getenv("STRIPE_SECRET_KEY", "")
        self.webhook_secret = webhook_secret or os.getenv("STRIPE_WEBHOOK_SECRET", "")
        if not self.api_key:
            raise ValueError("STRIPE_SECRET_KEY is not configured.")
        stripe.api_key = self.api_key

    async def _call(self, fn, **kwargs: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, **kwargs)
        except stripe.StripeError as e:
            logger.error("Stripe call %s failed: %s", getattr(fn, "__qualname__", fn), e)
            raise PaymentGatewayError(str(e.user_message or e), code=getattr(e, "code", None)) from e

    async def create_payment_intent(self, request: PaymentIntentRequest) -> PaymentIntentResult:
        errors = validate_payment_intent_request(request)
        if errors:
            raise PaymentGatewayError("; ".join(errors), code="invalid_request")

        params: Dict[str, Any] = {
            "amount": to_minor_units(request.amount),
            "currency": request.currency.lower(),
            "description": request.description,
            "metadata": {k: str(v) for k, v in request.metadata.items()},
            "automatic_payment_methods": {"enabled": True},
        }
        if request.customer_email:
            params["receipt_email"] = request.customer_email

        intent = await self._call(stripe.PaymentIntent.create, **params)
        return normalize_payment_intent(_as_dict(intent))

    async def retrieve_payment_intent(self, intent_id: str) -> PaymentIntentResult:
        intent = await self._call(stripe.PaymentIntent.retrieve, id=intent_id)
        return normalize_payment_intent(_as_dict(intent))

    async def transfer(self, request: TransferRequest) -> TransferResult:
        errors = validate_transfer_request(request)
        if errors:
            raise PaymentGatewayError("; ".join(errors), code="invalid_request")

        params: Dict[str, Any] = {
            "amount": to_minor_units(request.amount),
            "currency": request.currency.lower(),
            "destination": request.destination_account,
            "metadata": {k: str(v) for k, v in request.metadata.items()},
        }
        if request.transfer_group:
            params["transfer_group"] = request.transfer_group
        if request.idempotency_key:
            params["idempotency_key"] = request.idempotency_key

        transfer = _as_dict(await self._call(stripe.Transfer.create, **params))
        return TransferResult(
            transfer_id=str(transfer["id"]),
            amount=from_minor_units(transfer.get("amount", params["amount"])),
            currency=str(transfer.get("currency", request.currency)).upper(),
            destination_account=str(transfer.get("destination") or request.destination_account),
        )

    async def refund(self, intent_id: str, amount: Optional[float] = None, reason: Optional[str] = None) -> RefundResult:
        params: Dict[str, Any] = {"payment_intent": intent_id, "reason": "requested_by_customer"}
        if amount is not None:
            params["amount"] = to_minor_units(amount)
        if reason:
            params["metadata"] = {"note": reason[:500]}

        refund = _as_dict(await self._call(stripe.Refund.create, **params))
        return RefundResult(
            refund_id=str(refund["id"]),
            intent_id=intent_id,
            amount=from_minor_units(refund.get("amount", 0)),
            status=str(refund.get("status") or "pending"),
        )

    def construct_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        if not self.webhook_secret:
            raise WebhookVerificationError("STRIPE_WEBHOOK_SECRET is not configured.")
        try:
            stripe.Webhook.construct_event(payload, signature or "", self.webhook_secret)
        except stripe.SignatureVerificationError as exc:
            raise WebhookVerificationError("Invalid webhook signature") from exc
        except ValueError as exc:
            raise WebhookVerificationError("Webhook body is not valid JSON") from exc
        return json.loads(payload)
