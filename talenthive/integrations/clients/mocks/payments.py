"""
Payment gateway: MOCK client.

Purpose:
- Fake card processor used for development and tests
- Does NOT make any network calls
- Deterministic: intents start as `requires_payment_method` and only succeed
  when `mark_succeeded` is called (or `auto_succeed=True`)

Webhook bodies are verified with an HMAC-SHA256 hex signature of the raw body
when a webhook secret is configured; `sign` produces matching signatures.

Swap:
Wired in talenthive/api/main.py when INTEGRATIONS_MODE is not "real".
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import uuid
from typing import Any, Dict, Iterable, Optional

from talenthive.integrations.contracts.interfaces import (
    GatewayIntentStatus,
    PaymentGateway,
    PaymentGatewayError,
    PaymentIntentRequest,
    PaymentIntentResult,
    RefundResult,
    TransferRequest,
    TransferResult,
)
from talenthive.integrations.contracts.payments import validate_payment_intent_request, validate_transfer_request
from talenthive.integrations.policy.response_wrappers import WebhookVerificationError

logger = logging.getLogger(__name__)


class MockPaymentGateway(PaymentGateway):
    """
    Parameters
    ----------
    webhook_secret : str | None
        When set, `construct_event` requires a valid signature.
    auto_succeed : bool
        If True, new intents are created already `succeeded`.
    failing_accounts : iterable of str
        Destination accounts whose transfers raise PaymentGatewayError.
    """

    def __init__(
        self,
        webhook_secret: Optional[str] = None,
        auto_succeed: bool = False,
        failing_accounts: Iterable[str] = (),
    ) -> None:
        self._webhook_secret = webhook_secret
        self._auto_succeed = auto_succeed
        self.failing_accounts = set(failing_accounts)

        # In-memory stores (reset on restart)
        self.intents: Dict[str, PaymentIntentResult] = {}
        self.transfers: Dict[str, TransferResult] = {}
        self.refunds: Dict[str, RefundResult] = {}
        self._transfer_keys: Dict[str, TransferResult] = {}

        logger.info("[PAYMENTS MOCK] Gateway initialised (auto_succeed=%s)", auto_succeed)

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    def mark_succeeded(self, intent_id: str) -> PaymentIntentResult:
        intent = self.intents[intent_id]
        intent.status = GatewayIntentStatus.SUCCEEDED
        intent.charge_id = intent.charge_id or f"ch_mock_{uuid.uuid4().hex[:16]}"
        return intent

    def sign(self, payload: bytes) -> str:
        return hmac.new((self._webhook_secret or "").encode(), payload, hashlib.sha256).hexdigest()

    # ------------------------------------------------------------------
    # Gateway operations
    # ------------------------------------------------------------------

    async def create_payment_intent(self, request: PaymentIntentRequest) -> PaymentIntentResult:
        errors = validate_payment_intent_request(request)
        if errors:
            raise PaymentGatewayError("; ".join(errors), code="invalid_request")

        intent_id = f"pi_mock_{uuid.uuid4().hex[:16]}"
        status = GatewayIntentStatus.SUCCEEDED if self._auto_succeed else GatewayIntentStatus.REQUIRES_PAYMENT_METHOD
        intent = PaymentIntentResult(
            intent_id=intent_id,
            client_secret=f"{intent_id}_secret_{uuid.uuid4().hex[:8]}",
            status=status,
            amount=round(request.amount, 2),
            currency=request.currency.upper(),
            charge_id=f"ch_mock_{uuid.uuid4().hex[:16]}" if self._auto_succeed else None,
            metadata=dict(request.metadata),
        )
        self.intents[intent_id] = intent
        logger.info("[PAYMENTS MOCK] Intent %s created for %.2f %s", intent_id, request.amount, intent.currency)
        return intent

    async def retrieve_payment_intent(self, intent_id: str) -> PaymentIntentResult:
        intent = self.intents.get(intent_id)
        if intent is None:
            raise PaymentGatewayError(f"No such payment_intent: '{intent_id}'", code="resource_missing")
        return intent

    async def transfer(self, request: TransferRequest) -> TransferResult:
        errors = validate_transfer_request(request)
        if errors:
            raise PaymentGatewayError("; ".join(errors), code="invalid_request")
        if request.idempotency_key and request.idempotency_key in self._transfer_keys:
            return self._transfer_keys[request.idempotency_key]
        if request.destination_account in self.failing_accounts:
            raise PaymentGatewayError(
                f"Transfer to {request.destination_account} failed", code="account_invalid"
            )

        result = TransferResult(
            transfer_id=f"tr_mock_{uuid.uuid4().hex[:16]}",
            amount=round(request.amount, 2),
            currency=request.currency.upper(),
            destination_account=request.destination_account,
        )
        self.transfers[result.transfer_id] = result
        if request.idempotency_key:
            self._transfer_keys[request.idempotency_key] = result
        logger.info("[PAYMENTS MOCK] Transfer %s → %s (%.2f)", result.transfer_id, request.destination_account, request.amount)
        return result

    async def refund(self, intent_id: str, amount: Optional[float] = None, reason: Optional[str] = None) -> RefundResult:
        intent = await self.retrieve_payment_intent(intent_id)
        if intent.status != GatewayIntentStatus.SUCCEEDED:
            raise PaymentGatewayError(f"Payment intent {intent_id} has no successful charge to refund", code="charge_missing")
        result = RefundResult(
            refund_id=f"re_mock_{uuid.uuid4().hex[:16]}",
            intent_id=intent_id,
            amount=round(amount if amount is not None else intent.amount, 2),
            status="succeeded",
        )
        self.refunds[result.refund_id] = result
        logger.info("[PAYMENTS MOCK] Refund %s for %s. Reason: %s", result.refund_id, intent_id, reason)
        return result

    def construct_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        if self._webhook_secret:
            if not signature or not hmac.compare_digest(self.sign(payload), signature):
                raise WebhookVerificationError("Invalid webhook signature")
        try:
            event = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise WebhookVerificationError("Webhook body is not valid JSON") from exc
        if not isinstance(event, dict):
            raise WebhookVerificationError("Webhook body must be a JSON object")
        return event
