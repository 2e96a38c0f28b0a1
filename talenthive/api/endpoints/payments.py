from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request, status
from pydantic import BaseModel, Field

from talenthive.api.dependencies import Services, get_current_user, get_services, ok, require_admin

router = APIRouter(tags=["Payments"])


class PaymentIntentCreateRequest(BaseModel):
    contract_id: str
    milestone_id: str


class PaymentConfirmRequest(BaseModel):
    payment_intent_id: str = Field(..., description="Intent id returned when the milestone was funded")


class RefundRequest(BaseModel):
    reason: Optional[str] = None


@router.post("/payments/intents", status_code=status.HTTP_201_CREATED)
async def create_payment_intent(
    body: PaymentIntentCreateRequest, user=Depends(get_current_user), services: Services = Depends(get_services)
):
    """
    Fund a milestone. Returns the client secret the browser uses to confirm
    the card payment with the processor.
    """
    return ok(await services.payments.create_payment_intent(user, body.contract_id, body.milestone_id))


@router.post("/payments/confirm")
async def confirm_payment(body: PaymentConfirmRequest, user=Depends(get_current_user), services: Services = Depends(get_services)):
    return ok(await services.payments.confirm_payment(body.payment_intent_id, user=user))


@router.get("/payments/balance")
async def balance(user=Depends(get_current_user), services: Services = Depends(get_services)):
    return ok(services.payments.balance(user))


@router.get("/transactions")
async def transaction_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status_filter: Optional[str] = Query(None, alias="status"),
    contract_id: Optional[str] = Query(None),
    user=Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return ok(services.payments.transaction_history(user, page=page, limit=limit, status=status_filter, contract_id=contract_id))


@router.get("/transactions/{transaction_id}")
async def get_transaction(transaction_id: str, user=Depends(get_current_user), services: Services = Depends(get_services)):
    return ok(services.payments.get_transaction(transaction_id, user))


@router.post("/transactions/{transaction_id}/release")
async def release_escrow(transaction_id: str, user=Depends(get_current_user), services: Services = Depends(get_services)):
    return ok(await services.payments.release_escrow(transaction_id, user))


@router.post("/transactions/{transaction_id}/refund")
async def refund(
    transaction_id: str, body: RefundRequest, admin=Depends(require_admin), services: Services = Depends(get_services)
):
    return ok(await services.payments.refund(transaction_id, admin, body.reason))


@router.post("/webhooks/payments", tags=["Webhooks"])
async def payment_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="Stripe-Signature"),
    services: Services = Depends(get_services),
):
    """Processor events; the raw body is needed for signature verification."""
    payload = await request.body()
    return ok(await services.payments.handle_webhook(payload, stripe_signature))


# ---------- Admin ----------
@router.get("/admin/transactions", tags=["Admin"])
async def admin_transactions(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status_filter: Optional[str] = Query(None, alias="status"),
    client_id: Optional[str] = Query(None),
    freelancer_id: Optional[str] = Query(None),
    contract_id: Optional[str] = Query(None),
    created_from: Optional[datetime] = Query(None),
    created_to: Optional[datetime] = Query(None),
    admin=Depends(require_admin),
    services: Services = Depends(get_services),
):
    return ok(
        services.payments.transaction_history(
            admin,
            page=page,
            limit=limit,
            status=status_filter,
            contract_id=contract_id,
            client_id=client_id,
            freelancer_id=freelancer_id,
            created_from=created_from,
            created_to=created_to,
        )
    )


@router.get("/admin/transactions/stats", tags=["Admin"])
async def admin_transaction_stats(admin=Depends(require_admin), services: Services = Depends(get_services)):
    return ok(services.analytics.transaction_stats())


@router.post("/admin/escrow/release", tags=["Admin"])
async def trigger_escrow_release(
    dry_run: bool = Query(False),
    admin=Depends(require_admin),
    services: Services = Depends(get_services),
):
    """Run the escrow auto-release job now instead of waiting for its next interval."""
    report = await services.escrow_job.run_once(dry_run=dry_run)
    return ok(report.as_dict())
