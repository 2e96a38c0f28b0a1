from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ValidationError

from talenthive.integrations.contracts.interfaces import GatewayEvent, GatewayIntentStatus, PaymentIntentResult
from talenthive.integrations.contracts.payments import from_minor_units


class IntegrationResponseError(ValueError):
    def __init__(self, message: str, *, payload: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.payload = payload or {}


class WebhookVerificationError(IntegrationResponseError):
    """Webhook signature or body could not be verified."""


class PaymentIntentModel(BaseModel):
    intent_id: str
    client_secret: str = ""
    status: GatewayIntentStatus
    amount: float
    currency: str
    charge_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class GatewayEventModel(BaseModel):
    event_id: str
    type: str
    object_id: str
    payment_intent_id: Optional[str] = None
    charge_id: Optional[str] = None
    failure_message: Optional[str] = None
    raw: Dict[str, Any] = Field(default_factory=dict)


def normalize_payment_intent(raw: Dict[str, Any]) -> PaymentIntentResult:
    """Map a processor PaymentIntent payload (amounts in cents) to our result type."""
    intent_id = _first_non_empty(raw, "id", "intent_id")
    amount_minor = _first_non_empty(raw, "amount")
    try:
        amount = from_minor_units(amount_minor)
    except (TypeError, ValueError) as exc:
        raise IntegrationResponseError(f"Invalid payment intent amount: {amount_minor!r}", payload=raw) from exc
    if amount <= 0:
        raise IntegrationResponseError(f"Payment intent amount must be > 0; got {amount}.", payload=raw)
    status = _map_intent_status(_first_non_empty(raw, "status", default="requires_payment_method"), raw)
    charge = raw.get("latest_charge")
    if isinstance(charge, dict):
        charge = charge.get("id")

    model = _build_model(
        PaymentIntentModel,
        {
            "intent_id": str(intent_id),
            "client_secret": str(raw.get("client_secret") or ""),
            "status": status,
            "amount": amount,
            "currency": str(_first_non_empty(raw, "currency", default="usd")).upper(),
            "charge_id": charge,
            "metadata": dict(raw.get("metadata") or {}),
        },
        raw,
    )
    return PaymentIntentResult(**model.model_dump())


def normalize_gateway_event(raw: Dict[str, Any]) -> GatewayEvent:
    """
    Reduce a verified webhook payload to a GatewayEvent.

    Intent events carry the intent as the data object; `charge.refunded`
    carries the charge, which references its intent.
    """
    event_type = str(_first_non_empty(raw, "type"))
    data = raw.get("data") or {}
    obj = data.get("object") if isinstance(data, dict) else None
    if not isinstance(obj, dict):
        raise IntegrationResponseError("Webhook event has no data.object", payload=raw)

    object_id = str(_first_non_empty(obj, "id"))
    payment_intent_id: Optional[str]
    charge_id: Optional[str]
    if event_type.startswith("charge."):
        charge_id = object_id
        payment_intent_id = obj.get("payment_intent")
    else:
        payment_intent_id = object_id
        charge_id = obj.get("latest_charge")
    if isinstance(charge_id, dict):
        charge_id = charge_id.get("id")

    error = obj.get("last_payment_error") or {}
    failure_message = error.get("message") if isinstance(error, dict) else None

    model = _build_model(
        GatewayEventModel,
        {
            "event_id": str(raw.get("id") or ""),
            "type": event_type,
            "object_id": object_id,
            "payment_intent_id": payment_intent_id,
            "charge_id": charge_id,
            "failure_message": failure_message,
            "raw": raw,
        },
        raw,
    )
    return GatewayEvent(**model.model_dump())


def _first_non_empty(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        value = data.get(key)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    if default is not None:
        return default
    raise IntegrationResponseError(f"Missing required field. Checked keys: {', '.join(keys)}", payload=data)


def _map_intent_status(raw_status: Any, raw: Dict[str, Any]) -> GatewayIntentStatus:
    value = str(raw_status or "").strip().lower()
    try:
        return GatewayIntentStatus(value)
    except ValueError:
        raise IntegrationResponseError(f"Unsupported payment intent status '{value}'.", payload=raw) from None


def _build_model(model_type, payload: Dict[str, Any], raw: Dict[str, Any]):
    try:
        return model_type(**payload)
    except ValidationError as exc:
        raise IntegrationResponseError(f"Response validation failed: {exc}", payload=raw) from exc
