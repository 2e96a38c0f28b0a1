"""
Milestone payments through the card processor and the escrow ledger.

Every status change on a transaction is a compare-and-set against the status
it was read in (`db.transition_transaction`), so webhook retries, manual
releases and the auto-release job cannot apply the same move twice.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
import logging

from talenthive.controllers.contract_controller import ContractController
from talenthive.controllers.serializers import transaction_to_dict
from talenthive.domain.fees import calculate_fees
from talenthive.domain.state_machine import ensure_contract_active, transaction_machine
from talenthive.domain.states import (
    PAYABLE_CONTRACT_STATES,
    MilestoneStatus,
    TransactionStatus,
    UserRole,
)
from talenthive.error_handler import AppError, ForbiddenError, InvalidTransitionError, NotFoundError
from talenthive.integrations.contracts.interfaces import (
    GatewayEventType,
    GatewayIntentStatus,
    PaymentGateway,
    PaymentGatewayError,
    PaymentIntentRequest,
    TransferRequest,
)
from talenthive.integrations.contracts.payments import is_handled_event
from talenthive.integrations.policy.response_wrappers import (
    IntegrationResponseError,
    WebhookVerificationError,
    normalize_gateway_event,
)
from talenthive.utils.clock import utcnow
from talenthive.utils.config_loader import PlatformSettings

logger = logging.getLogger(__name__)

# A milestone with a transaction in one of these states is already funded.
FUNDED_STATES = {
    TransactionStatus.PROCESSING.value,
    TransactionStatus.HELD_IN_ESCROW.value,
    TransactionStatus.RELEASED.value,
    TransactionStatus.PAID_OUT.value,
    TransactionStatus.COMPLETED.value,
}


class PaymentController:
    def __init__(
        self,
        db,
        gateway: PaymentGateway,
        contracts: ContractController,
        platform: PlatformSettings,
        hold_days: Optional[int] = None,
        notifications=None,
    ):
        self.db = db
        self.gateway = gateway
        self.contracts = contracts
        self.platform = platform
        self.hold_days = platform.escrow_hold_days if hold_days is None else hold_days
        self.notifications = notifications

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #
    def _load(self, transaction_id: str):
        tx = self.db.get_transaction(transaction_id)
        if not tx:
            raise NotFoundError("Transaction not found")
        return tx

    def _cas(self, tx, target: TransactionStatus, **fields: Any):
        """Validate the move, then apply it only if the stored status is still `tx.status`."""
        transaction_machine.transition(tx.status, target)
        updated = self.db.transition_transaction(tx.id, tx.status, target.value, **fields)
        if updated is None:
            raise InvalidTransitionError(f"Transaction {tx.id} changed concurrently; expected {tx.status}")
        return updated

    def _notify(self, user_id: str, title: str, message: str, link: Optional[str] = None, priority: str = "normal") -> None:
        if self.notifications is not None:
            self.notifications.notify(user_id, "payment", title, message, link=link, priority=priority)

    def _push_update(self, tx) -> None:
        if self.notifications is None:
            return
        data = {"transaction_id": tx.id, "status": tx.status, "contract_id": tx.contract_id, "milestone_id": tx.milestone_id}
        for uid in (tx.client_id, tx.freelancer_id):
            self.notifications.push(uid, "payment_update", data)

    @staticmethod
    def _gateway_failure(exc: PaymentGatewayError) -> AppError:
        return AppError(f"Payment processor error: {exc}", 502, details={"code": exc.code} if exc.code else None)

    # ------------------------------------------------------------------ #
    # Funding
    # ------------------------------------------------------------------ #
    async def create_payment_intent(self, user, contract_id: str, milestone_id: str) -> Dict[str, Any]:
        """Client funds a milestone; the charge is held in escrow once it succeeds."""
        contract = self.contracts.load(contract_id)
        if user.id != contract.client_id:
            raise ForbiddenError("Only the client can make payments")
        ensure_contract_active(contract.status, "fund a milestone")
        milestone = self.contracts.find_milestone(contract, milestone_id)
        if milestone.status == MilestoneStatus.PAID.value:
            raise AppError("Milestone is already paid", 409)

        fees = calculate_fees(milestone.amount, self.platform)
        if fees.freelancer_amount <= 0:
            raise AppError(
                "Milestone amount is too small to cover platform fees", 422, details={"fees": fees.as_dict()}
            )

        for existing in self.db.list_transactions(contract_id=contract.id, milestone_id=milestone.id):
            if existing.status in FUNDED_STATES:
                raise AppError("Payment already processed for this milestone", 409)
            if existing.status == TransactionStatus.PENDING.value:
                # Superseded by the new intent
                self.db.transition_transaction(existing.id, existing.status, TransactionStatus.CANCELLED.value)

        client = self.db.get_user(contract.client_id)
        description = f"Payment for milestone '{milestone.title}' of contract {contract.id}"
        metadata = {
            "contract_id": contract.id,
            "milestone_id": milestone.id,
            "client_id": contract.client_id,
            "freelancer_id": contract.freelancer_id,
            "platform_commission": fees.platform_commission,
            "processing_fee": fees.processing_fee,
            "tax": fees.tax,
            "freelancer_amount": fees.freelancer_amount,
        }
        try:
            intent = await self.gateway.create_payment_intent(
                PaymentIntentRequest(
                    amount=fees.amount,
                    currency=contract.currency or fees.currency,
                    description=description,
                    customer_email=client.email if client else None,
                    metadata=metadata,
                )
            )
        except PaymentGatewayError as e:
            raise self._gateway_failure(e) from e

        tx = self.db.create_transaction(
            contract_id=contract.id,
            milestone_id=milestone.id,
            client_id=contract.client_id,
            freelancer_id=contract.freelancer_id,
            amount=fees.amount,
            platform_commission=fees.platform_commission,
            processing_fee=fees.processing_fee,
            tax=fees.tax,
            freelancer_amount=fees.freelancer_amount,
            currency=contract.currency or fees.currency,
            payment_intent_id=intent.intent_id,
            description=description,
            metadata={"gateway_status": intent.status.value},
        )
        logger.info("Payment intent %s created for milestone %s (tx %s)", intent.intent_id, milestone.id, tx.id)
        return {"transaction": transaction_to_dict(tx), "client_secret": intent.client_secret, "fees": fees.as_dict()}

    async def confirm_payment(self, payment_intent_id: str, charge_id: Optional[str] = None, user=None) -> Dict[str, Any]:
        """
        Move a succeeded payment into escrow. Repeated confirmations (client
        redirect plus webhook) return the already-escrowed transaction.
        """
        tx = self.db.get_transaction_by_payment_intent(payment_intent_id)
        if not tx:
            raise NotFoundError("Transaction not found")
        if user is not None and user.role != UserRole.ADMIN.value and user.id != tx.client_id:
            raise ForbiddenError("Only the paying client can confirm this payment")
        if tx.status not in (TransactionStatus.PENDING.value, TransactionStatus.PROCESSING.value):
            return transaction_to_dict(tx)

        try:
            intent = await self.gateway.retrieve_payment_intent(payment_intent_id)
        except PaymentGatewayError as e:
            raise self._gateway_failure(e) from e
        if intent.status != GatewayIntentStatus.SUCCEEDED:
            raise AppError("Payment has not succeeded", 409, details={"gateway_status": intent.status.value})

        now = utcnow()
        try:
            tx = self._cas(
                tx,
                TransactionStatus.HELD_IN_ESCROW,
                charge_id=charge_id or intent.charge_id or tx.charge_id,
                escrowed_at=now,
                escrow_release_date=now + timedelta(days=self.hold_days),
            )
        except InvalidTransitionError:
            # Lost the race to a concurrent confirmation
            return transaction_to_dict(self._load(tx.id))

        logger.info("Transaction %s held in escrow until %s", tx.id, tx.escrow_release_date)
        self._notify(
            tx.freelancer_id,
            "Milestone funded",
            f"{tx.amount:.2f} {tx.currency} is held in escrow for your milestone.",
            link=f"/contracts/{tx.contract_id}",
        )
        self._push_update(tx)
        return transaction_to_dict(tx)

    def handle_payment_failure(self, payment_intent_id: str, reason: str, target: TransactionStatus = TransactionStatus.FAILED) -> Optional[Dict[str, Any]]:
        tx = self.db.get_transaction_by_payment_intent(payment_intent_id)
        if not tx:
            raise NotFoundError("Transaction not found")
        if tx.status not in (TransactionStatus.PENDING.value, TransactionStatus.PROCESSING.value):
            return transaction_to_dict(tx)
        tx = self._cas(tx, target, failure_reason=reason)
        logger.warning("Transaction %s %s: %s", tx.id, target.value, reason)
        self._notify(tx.client_id, "Payment failed", reason, link=f"/contracts/{tx.contract_id}", priority="high")
        self._push_update(tx)
        return transaction_to_dict(tx)

    # ------------------------------------------------------------------ #
    # Escrow release
    # ------------------------------------------------------------------ #
    def release_blocked_reason(self, tx) -> Optional[str]:
        contract = self.db.get_contract(tx.contract_id)
        if contract and contract.status not in {s.value for s in PAYABLE_CONTRACT_STATES}:
            return f"contract is {contract.status}"
        if self.db.has_open_dispute(contract_id=tx.contract_id, transaction_id=tx.id):
            return "an open dispute references this payment"
        return None

    async def release_transaction(self, tx, actor: str = "system"):
        """
        Release one escrowed transaction. The row is claimed with a
        held_in_escrow -> released compare-and-set before any money moves.
        With a payout account the funds are transferred and the row moves on
        to paid_out; a failed transfer puts the row back in held_in_escrow.
        """
        now = utcnow()
        claimed = self.db.transition_transaction(
            tx.id, TransactionStatus.HELD_IN_ESCROW.value, TransactionStatus.RELEASED.value, released_at=now
        )
        if claimed is None:
            raise InvalidTransitionError(f"Transaction {tx.id} is no longer held in escrow")

        freelancer = self.db.get_user(claimed.freelancer_id)
        if freelancer and freelancer.payout_account_id and claimed.freelancer_amount > 0:
            try:
                transfer = await self.gateway.transfer(
                    TransferRequest(
                        amount=claimed.freelancer_amount,
                        currency=claimed.currency,
                        destination_account=freelancer.payout_account_id,
                        transfer_group=claimed.contract_id,
                        idempotency_key=f"escrow-release-{claimed.id}",
                        metadata={"transaction_id": claimed.id, "milestone_id": claimed.milestone_id or ""},
                    )
                )
            except Exception as e:
                # Any failure before the money moved hands the row back to escrow
                self.db.transition_transaction(
                    claimed.id,
                    TransactionStatus.RELEASED.value,
                    TransactionStatus.HELD_IN_ESCROW.value,
                    released_at=None,
                    failure_reason=f"Transfer failed: {e}",
                )
                raise
            claimed = self._cas(claimed, TransactionStatus.PAID_OUT, transfer_id=transfer.transfer_id, paid_out_at=utcnow())

        logger.info("Transaction %s %s by %s", claimed.id, claimed.status, actor)
        self._after_release(claimed)
        return claimed

    def _after_release(self, tx) -> None:
        if tx.milestone_id:
            contract = self.db.get_contract(tx.contract_id)
            if contract and contract.status in {s.value for s in PAYABLE_CONTRACT_STATES}:
                milestone = next((m for m in contract.milestones if m.id == tx.milestone_id), None)
                if milestone and milestone.status == MilestoneStatus.APPROVED.value:
                    self.contracts.mark_milestone_paid(contract.id, milestone.id)
        self._notify(
            tx.freelancer_id,
            "Payment released",
            f"{tx.freelancer_amount:.2f} {tx.currency} was released from escrow.",
            link=f"/transactions/{tx.id}",
        )
        self._push_update(tx)

    async def release_escrow(self, transaction_id: str, user) -> Dict[str, Any]:
        """Manual release by the paying client or an admin; allowed before the hold period ends."""
        tx = self._load(transaction_id)
        if user.role != UserRole.ADMIN.value and user.id != tx.client_id:
            raise ForbiddenError("Only the client or an admin can release this payment")
        if tx.status != TransactionStatus.HELD_IN_ESCROW.value:
            raise InvalidTransitionError("Transaction is not in escrow")
        blocked = self.release_blocked_reason(tx)
        if blocked:
            raise AppError(f"Release blocked: {blocked}", 409)
        try:
            tx = await self.release_transaction(tx, actor=user.id)
        except PaymentGatewayError as e:
            raise self._gateway_failure(e) from e
        return transaction_to_dict(tx)

    # ------------------------------------------------------------------ #
    # Refunds
    # ------------------------------------------------------------------ #
    async def refund(self, transaction_id: str, user, reason: Optional[str] = None) -> Dict[str, Any]:
        if user.role != UserRole.ADMIN.value:
            raise ForbiddenError("Only admins can refund payments")
        tx = self._load(transaction_id)
        try:
            tx = await self._refund_charge(tx, reason, actor=user.id)
        except PaymentGatewayError as e:
            raise self._gateway_failure(e) from e
        return transaction_to_dict(tx)

    async def _refund_charge(self, tx, reason: Optional[str], actor: str):
        transaction_machine.transition(tx.status, TransactionStatus.REFUNDED)
        if not tx.payment_intent_id:
            raise AppError("No charge found for refund", 409)
        refund = await self.gateway.refund(tx.payment_intent_id, reason=reason)

        tx = self._cas(tx, TransactionStatus.REFUNDED, refund_id=refund.refund_id, refunded_at=utcnow(), failure_reason=reason)
        logger.info("Transaction %s refunded by %s", tx.id, actor)
        self._notify(tx.client_id, "Payment refunded", f"{tx.amount:.2f} {tx.currency} was refunded.", link=f"/transactions/{tx.id}")
        self._notify(tx.freelancer_id, "Payment refunded", "A milestone payment was refunded to the client.", link=f"/transactions/{tx.id}")
        self._push_update(tx)
        return tx

    async def refund_contract_escrow(self, contract_id: str, reason: str, actor: str = "system") -> List[str]:
        """
        Refund every payment still held in escrow for a contract that ended
        without delivery. A refund the processor rejects leaves the row held;
        release stays blocked because the contract is no longer payable, so an
        admin can retry through `refund`.
        """
        contract = self.db.get_contract(contract_id)
        if contract is not None and contract.status in {s.value for s in PAYABLE_CONTRACT_STATES}:
            raise AppError(f"Contract is {contract.status}; escrow is released, not refunded", 409)

        refunded: List[str] = []
        for tx in self.db.list_transactions(contract_id=contract_id, status=TransactionStatus.HELD_IN_ESCROW.value):
            try:
                await self._refund_charge(tx, reason, actor=actor)
            except (PaymentGatewayError, AppError) as e:
                logger.error("Escrow refund failed for transaction %s: %s", tx.id, e)
                continue
            refunded.append(tx.id)
        if refunded:
            logger.info("Refunded %d escrowed payment(s) for contract %s", len(refunded), contract_id)
        return refunded

    def record_refund(self, charge_id: Optional[str], payment_intent_id: Optional[str]) -> Optional[Dict[str, Any]]:
        """Apply a processor-side refund reported by webhook."""
        tx = None
        if charge_id:
            tx = self.db.get_transaction_by_charge(charge_id)
        if tx is None and payment_intent_id:
            tx = self.db.get_transaction_by_payment_intent(payment_intent_id)
        if tx is None:
            raise NotFoundError("Transaction not found")
        if tx.status == TransactionStatus.REFUNDED.value:
            return transaction_to_dict(tx)
        tx = self._cas(tx, TransactionStatus.REFUNDED, refunded_at=utcnow())
        self._push_update(tx)
        return transaction_to_dict(tx)

    # ------------------------------------------------------------------ #
    # Webhooks
    # ------------------------------------------------------------------ #
    async def handle_webhook(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        try:
            raw = self.gateway.construct_event(payload, signature)
        except WebhookVerificationError as e:
            raise AppError(str(e), 400) from e
        try:
            event = normalize_gateway_event(raw)
        except IntegrationResponseError as e:
            raise AppError(f"Malformed webhook event: {e}", 400) from e

        if not is_handled_event(event.type):
            logger.info("Unhandled webhook event type: %s", event.type)
            return {"received": True, "type": event.type, "handled": False}

        try:
            if event.type == GatewayEventType.PAYMENT_SUCCEEDED.value:
                await self.confirm_payment(event.payment_intent_id, charge_id=event.charge_id)
            elif event.type == GatewayEventType.PAYMENT_FAILED.value:
                self.handle_payment_failure(event.payment_intent_id, event.failure_message or "Payment failed")
            elif event.type == GatewayEventType.PAYMENT_CANCELED.value:
                self.handle_payment_failure(event.payment_intent_id, "Payment canceled", target=TransactionStatus.CANCELLED)
            elif event.type == GatewayEventType.CHARGE_REFUNDED.value:
                self.record_refund(event.charge_id, event.payment_intent_id)
        except NotFoundError:
            # Not one of ours (or already purged); acknowledge so the processor stops retrying
            logger.warning("Webhook %s for unknown payment %s", event.type, event.object_id)
            return {"received": True, "type": event.type, "handled": False}

        return {"received": True, "type": event.type, "handled": True}

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #
    def get_transaction(self, transaction_id: str, user) -> Dict[str, Any]:
        tx = self._load(transaction_id)
        if user.role != UserRole.ADMIN.value and user.id not in (tx.client_id, tx.freelancer_id):
            raise ForbiddenError("You are not a party to this transaction")
        return transaction_to_dict(tx)

    def transaction_history(
        self,
        user,
        *,
        page: int = 1,
        limit: int = 20,
        status: Optional[str] = None,
        contract_id: Optional[str] = None,
        client_id: Optional[str] = None,
        freelancer_id: Optional[str] = None,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        if status:
            transaction_machine.coerce(status)
        page = max(int(page), 1)
        limit = min(max(int(limit), 1), 100)
        filters: Dict[str, Any] = {
            "status": status,
            "contract_id": contract_id,
            "created_from": created_from,
            "created_to": created_to,
        }
        if user.role == UserRole.ADMIN.value:
            filters.update(client_id=client_id, freelancer_id=freelancer_id)
        elif user.role == UserRole.CLIENT.value:
            filters["client_id"] = user.id
        else:
            filters["freelancer_id"] = user.id

        items: List[Any] = self.db.list_transactions(limit=limit, offset=(page - 1) * limit, **filters)
        total = self.db.count_transactions(**filters)
        return {
            "transactions": [transaction_to_dict(t) for t in items],
            "pagination": {"page": page, "limit": limit, "total": total, "pages": (total + limit - 1) // limit},
        }

    def balance(self, user) -> Dict[str, float]:
        """Freelancer earnings grouped by escrow stage."""
        txs = self.db.list_transactions(freelancer_id=user.id)

        def total(*states: TransactionStatus) -> float:
            wanted = {s.value for s in states}
            return round(sum(t.freelancer_amount for t in txs if t.status in wanted), 2)

        in_escrow = total(TransactionStatus.HELD_IN_ESCROW)
        available = total(TransactionStatus.RELEASED, TransactionStatus.COMPLETED)
        paid_out = total(TransactionStatus.PAID_OUT)
        return {
            "in_escrow": in_escrow,
            "available": available,
            "paid_out": paid_out,
            "total": round(in_escrow + available + paid_out, 2),
        }
