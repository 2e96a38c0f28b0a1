import json

import pytest

from talenthive.error_handler import AppError, ForbiddenError, InvalidTransitionError


def _event(event_type: str, obj: dict) -> bytes:
    return json.dumps({"id": "evt_test", "type": event_type, "data": {"object": obj}}).encode("utf-8")


@pytest.mark.asyncio
async def test_payment_intent_carries_fee_breakdown(services, make_contract, gateway):
    ctx = make_contract()
    milestone = ctx.contract.milestones[0]

    result = await services.payments.create_payment_intent(ctx.client, ctx.contract.id, milestone.id)

    tx = result["transaction"]
    assert tx["status"] == "pending"
    assert tx["amount"] == 600
    assert tx["platform_commission"] == pytest.approx(60.0)
    assert tx["processing_fee"] == pytest.approx(17.4)
    assert tx["freelancer_amount"] == pytest.approx(522.6)
    assert result["client_secret"].startswith(tx["payment_intent_id"])
    assert gateway.intents[tx["payment_intent_id"]].metadata["milestone_id"] == milestone.id


@pytest.mark.asyncio
async def test_only_the_client_funds_an_active_contract(services, make_contract):
    ctx = make_contract()
    with pytest.raises(ForbiddenError):
        await services.payments.create_payment_intent(ctx.freelancer, ctx.contract.id, ctx.contract.milestones[0].id)

    draft = make_contract(sign=False)
    with pytest.raises(InvalidTransitionError):
        await services.payments.create_payment_intent(draft.client, draft.contract.id, draft.contract.milestones[0].id)


@pytest.mark.asyncio
async def test_confirm_moves_payment_into_escrow(services, make_contract, fund_milestone):
    ctx = make_contract()
    tx = await fund_milestone(ctx)

    assert tx.status == "held_in_escrow"
    assert tx.charge_id
    assert (tx.escrow_release_date - tx.escrowed_at).days == 7

    # A repeated confirmation (redirect plus webhook) changes nothing
    again = await services.payments.confirm_payment(tx.payment_intent_id, user=ctx.client)
    assert again["status"] == "held_in_escrow"
    assert again["escrowed_at"] == tx.escrowed_at.isoformat()

    await services.notifications.drain()
    titles = [n.title for n in services.db.list_notifications(ctx.freelancer.id)]
    assert "Milestone funded" in titles


@pytest.mark.asyncio
async def test_confirm_requires_succeeded_intent(services, make_contract):
    ctx = make_contract()
    created = await services.payments.create_payment_intent(ctx.client, ctx.contract.id, ctx.contract.milestones[0].id)

    with pytest.raises(AppError) as exc:
        await services.payments.confirm_payment(created["transaction"]["payment_intent_id"], user=ctx.client)
    assert exc.value.status_code == 409
    assert exc.value.details["gateway_status"] == "requires_payment_method"


@pytest.mark.asyncio
async def test_milestone_cannot_be_funded_twice(services, make_contract, fund_milestone):
    ctx = make_contract()
    await fund_milestone(ctx)
    with pytest.raises(AppError) as exc:
        await services.payments.create_payment_intent(ctx.client, ctx.contract.id, ctx.contract.milestones[0].id)
    assert exc.value.status_code == 409


@pytest.mark.asyncio
async def test_new_intent_supersedes_pending_one(services, make_contract, db):
    ctx = make_contract()
    mid = ctx.contract.milestones[0].id
    first = await services.payments.create_payment_intent(ctx.client, ctx.contract.id, mid)
    second = await services.payments.create_payment_intent(ctx.client, ctx.contract.id, mid)

    assert db.get_transaction(first["transaction"]["id"]).status == "cancelled"
    assert db.get_transaction(second["transaction"]["id"]).status == "pending"


@pytest.mark.asyncio
async def test_webhook_success_then_refund(services, make_contract, gateway, db):
    ctx = make_contract()
    created = await services.payments.create_payment_intent(ctx.client, ctx.contract.id, ctx.contract.milestones[0].id)
    intent_id = created["transaction"]["payment_intent_id"]
    gateway.mark_succeeded(intent_id)

    body = _event("payment_intent.succeeded", {"id": intent_id, "amount": 60000, "status": "succeeded", "latest_charge": "ch_hook"})
    result = await services.payments.handle_webhook(body, gateway.sign(body))
    assert result == {"received": True, "type": "payment_intent.succeeded", "handled": True}

    tx = db.get_transaction(created["transaction"]["id"])
    assert tx.status == "held_in_escrow"
    assert tx.charge_id == "ch_hook"

    refund = _event("charge.refunded", {"id": "ch_hook", "payment_intent": intent_id})
    await services.payments.handle_webhook(refund, gateway.sign(refund))
    assert db.get_transaction(tx.id).status == "refunded"


@pytest.mark.asyncio
async def test_webhook_payment_failure(services, make_contract, gateway, db):
    ctx = make_contract()
    created = await services.payments.create_payment_intent(ctx.client, ctx.contract.id, ctx.contract.milestones[0].id)
    intent_id = created["transaction"]["payment_intent_id"]

    body = _event("payment_intent.payment_failed", {"id": intent_id, "last_payment_error": {"message": "Card declined"}})
    result = await services.payments.handle_webhook(body, gateway.sign(body))

    assert result["handled"] is True
    tx = db.get_transaction(created["transaction"]["id"])
    assert tx.status == "failed"
    assert tx.failure_reason == "Card declined"


@pytest.mark.asyncio
async def test_webhook_rejects_bad_signature(services):
    body = _event("payment_intent.succeeded", {"id": "pi_unknown"})
    with pytest.raises(AppError) as exc:
        await services.payments.handle_webhook(body, "not-a-signature")
    assert exc.value.status_code == 400


@pytest.mark.asyncio
async def test_webhook_acknowledges_unhandled_and_unknown_events(services, gateway):
    other = _event("customer.created", {"id": "cus_1"})
    assert (await services.payments.handle_webhook(other, gateway.sign(other)))["handled"] is False

    unknown = _event("payment_intent.payment_failed", {"id": "pi_not_ours"})
    assert (await services.payments.handle_webhook(unknown, gateway.sign(unknown)))["handled"] is False


@pytest.mark.asyncio
async def test_webhook_without_data_object_is_malformed(services, gateway):
    body = json.dumps({"id": "evt_1", "type": "payment_intent.succeeded", "data": {}}).encode()
    with pytest.raises(AppError) as exc:
        await services.payments.handle_webhook(body, gateway.sign(body))
    assert exc.value.status_code == 400


@pytest.mark.asyncio
async def test_manual_release_pays_approved_milestone(services, make_contract, fund_milestone, db):
    ctx = make_contract()
    tx = await fund_milestone(ctx)
    mid = ctx.contract.milestones[0].id
    services.contracts.submit_milestone(ctx.contract.id, mid, ctx.freelancer)
    services.contracts.approve_milestone(ctx.contract.id, mid, ctx.client)

    with pytest.raises(ForbiddenError):
        await services.payments.release_escrow(tx.id, ctx.freelancer)

    released = await services.payments.release_escrow(tx.id, ctx.client)
    assert released["status"] == "released"
    assert released["released_at"] is not None
    assert db.get_contract(ctx.contract.id).milestones[0].status == "paid"

    with pytest.raises(InvalidTransitionError):
        await services.payments.release_escrow(tx.id, ctx.client)


@pytest.mark.asyncio
async def test_release_transfers_to_connected_payout_account(services, make_contract, make_user, fund_milestone, gateway):
    freelancer = make_user("freelancer", payout_account_id="acct_freelancer")
    ctx = make_contract(freelancer=freelancer)
    tx = await fund_milestone(ctx)

    paid = await services.payments.release_escrow(tx.id, ctx.client)

    assert paid["status"] == "paid_out"
    transfer = gateway.transfers[paid["transfer_id"]]
    assert transfer.destination_account == "acct_freelancer"
    assert transfer.amount == pytest.approx(522.6)


@pytest.mark.asyncio
async def test_failed_transfer_keeps_funds_in_escrow(services, make_contract, make_user, fund_milestone, db):
    freelancer = make_user("freelancer", payout_account_id="acct_broken")
    ctx = make_contract(freelancer=freelancer)
    tx = await fund_milestone(ctx)

    with pytest.raises(AppError) as exc:
        await services.payments.release_escrow(tx.id, ctx.client)
    assert exc.value.status_code == 502

    stored = db.get_transaction(tx.id)
    assert stored.status == "held_in_escrow"
    assert stored.released_at is None
    assert stored.failure_reason.startswith("Transfer failed")


@pytest.mark.asyncio
async def test_release_blocked_while_disputed(services, make_contract, fund_milestone):
    ctx = make_contract()
    tx = await fund_milestone(ctx)
    services.disputes.create(
        ctx.freelancer,
        {"title": "Scope creep", "description": "Client keeps adding work", "type": "contract", "contract_id": ctx.contract.id},
    )

    with pytest.raises(AppError) as exc:
        await services.payments.release_escrow(tx.id, ctx.client)
    assert exc.value.status_code == 409
    assert "disputed" in exc.value.message


@pytest.mark.asyncio
async def test_admin_refund(services, make_contract, make_user, fund_milestone, gateway):
    ctx = make_contract()
    tx = await fund_milestone(ctx)

    with pytest.raises(ForbiddenError):
        await services.payments.refund(tx.id, ctx.client)

    refunded = await services.payments.refund(tx.id, make_user("admin"), reason="Freelancer unresponsive")
    assert refunded["status"] == "refunded"
    assert refunded["refund_id"] in gateway.refunds

    with pytest.raises(InvalidTransitionError):
        await services.payments.refund(tx.id, make_user("admin"))


@pytest.mark.asyncio
async def test_history_and_balance(services, make_contract, make_user, fund_milestone):
    ctx = make_contract()
    first = await fund_milestone(ctx, 0)
    await fund_milestone(ctx, 1)
    await services.payments.release_escrow(first.id, ctx.client)

    balance = services.payments.balance(ctx.freelancer)
    assert balance["available"] == pytest.approx(522.6)
    assert balance["in_escrow"] == pytest.approx(400 - 40 - 11.6)
    assert balance["paid_out"] == 0
    assert balance["total"] == pytest.approx(balance["available"] + balance["in_escrow"])

    history = services.payments.transaction_history(ctx.client, limit=1)
    assert history["pagination"] == {"page": 1, "limit": 1, "total": 2, "pages": 2}
    assert services.payments.transaction_history(make_user("client"))["pagination"]["total"] == 0
    assert services.payments.transaction_history(ctx.freelancer, status="released")["pagination"]["total"] == 1

    with pytest.raises(ForbiddenError):
        services.payments.get_transaction(first.id, make_user("freelancer"))


@pytest.mark.asyncio
async def test_milestone_too_small_for_fees_cannot_be_funded(services, make_contract, gateway):
    ctx = make_contract(milestones=[{"title": "Kickoff call", "amount": 1}, {"title": "Build", "amount": 999}])

    with pytest.raises(AppError) as exc:
        await services.payments.create_payment_intent(ctx.client, ctx.contract.id, ctx.contract.milestones[0].id)

    assert exc.value.status_code == 422
    assert exc.value.details["fees"]["freelancer_amount"] == 0.0
    assert gateway.intents == {}


@pytest.mark.asyncio
async def test_contract_escrow_refund_refuses_payable_contracts(services, make_contract, fund_milestone, db):
    ctx = make_contract()
    tx = await fund_milestone(ctx)

    with pytest.raises(AppError) as exc:
        await services.payments.refund_contract_escrow(ctx.contract.id, "Changed my mind")
    assert exc.value.status_code == 409
    assert db.get_transaction(tx.id).status == "held_in_escrow"
