import asyncio
from datetime import timedelta

import pytest

from talenthive.error_handler import AppError
from talenthive.integrations.contracts.interfaces import PaymentGatewayError
from talenthive.jobs.escrow_release import EscrowReleaseReport
from talenthive.utils.clock import utcnow


def _held(db, freelancer, *, days_ago: float, contract_id: str = "contract-x", amount: float = 100.0):
    """Escrowed transaction created directly in storage, `days_ago` old."""
    escrowed = utcnow() - timedelta(days=days_ago)
    return db.create_transaction(
        contract_id=contract_id,
        client_id="client-x",
        freelancer_id=freelancer.id,
        amount=amount,
        freelancer_amount=round(amount * 0.87, 2),
        status="held_in_escrow",
        payment_intent_id=f"pi_{freelancer.id[:8]}_{days_ago}",
        escrowed_at=escrowed,
        escrow_release_date=escrowed + timedelta(days=7),
    )


@pytest.mark.asyncio
async def test_releases_only_transactions_past_the_hold_period(services, make_user, db):
    freelancer = make_user("freelancer")
    old = _held(db, freelancer, days_ago=8)
    recent = _held(db, freelancer, days_ago=3)

    report = await services.escrow_job.run_once()

    assert report.checked == 1
    assert report.released_ids == [old.id]
    assert db.get_transaction(old.id).status == "released"
    assert db.get_transaction(old.id).released_at is not None
    assert db.get_transaction(recent.id).status == "held_in_escrow"


@pytest.mark.asyncio
async def test_second_run_does_not_release_twice(services, make_user, db, gateway):
    freelancer = make_user("freelancer", payout_account_id="acct_ok")
    tx = _held(db, freelancer, days_ago=10)

    first = await services.escrow_job.run_once()
    second = await services.escrow_job.run_once()

    assert first.released == 1
    assert second.checked == 0 and second.released == 0
    assert db.get_transaction(tx.id).status == "paid_out"
    assert len(gateway.transfers) == 1


@pytest.mark.asyncio
async def test_stale_listing_is_skipped(services, make_user, db, monkeypatch):
    freelancer = make_user("freelancer")
    tx = _held(db, freelancer, days_ago=9)
    listed = db.list_held_transactions(utcnow())
    # Refunded after the batch was listed
    db.transition_transaction(tx.id, "held_in_escrow", "refunded")
    monkeypatch.setattr(db, "list_held_transactions", lambda escrowed_before: listed)

    report = await services.escrow_job.run_once()

    assert report.checked == 1
    assert report.skipped == 1
    assert report.released == 0
    assert db.get_transaction(tx.id).status == "refunded"


@pytest.mark.asyncio
async def test_disputed_contract_is_skipped(services, make_contract, fund_milestone, db):
    ctx = make_contract()
    tx = await fund_milestone(ctx)
    tx.escrowed_at = utcnow() - timedelta(days=8)
    services.disputes.create(
        ctx.client,
        {"title": "Missed deadline", "description": "Nothing delivered", "type": "contract", "contract_id": ctx.contract.id},
    )

    report = await services.escrow_job.run_once()

    assert report.checked == 1
    assert report.skipped == 1
    assert report.released == 0
    assert db.get_transaction(tx.id).status == "held_in_escrow"


@pytest.mark.asyncio
async def test_dispute_on_transaction_blocks_until_resolved(services, make_contract, fund_milestone, make_user, db):
    ctx = make_contract()
    tx = await fund_milestone(ctx)
    tx.escrowed_at = utcnow() - timedelta(days=8)
    dispute = services.disputes.create(
        ctx.client,
        {"title": "Wrong amount", "description": "Charged twice", "type": "payment", "transaction_id": tx.id},
    )

    blocked = await services.escrow_job.run_once()
    assert blocked.skipped == 1

    await services.disputes.resolve(dispute["id"], make_user("admin"), "Charge was correct")
    report = await services.escrow_job.run_once()
    assert report.released_ids == [tx.id]


@pytest.mark.asyncio
async def test_transfer_failure_does_not_stop_the_batch(services, make_user, db):
    broken = make_user("freelancer", payout_account_id="acct_broken")
    healthy = make_user("freelancer")
    failing_tx = _held(db, broken, days_ago=12)
    ok_tx = _held(db, healthy, days_ago=11)

    report = await services.escrow_job.run_once()

    assert report.failed == 1
    assert report.released == 1
    assert failing_tx.id in report.failures
    assert db.get_transaction(ok_tx.id).status == "released"

    failed = db.get_transaction(failing_tx.id)
    assert failed.status == "held_in_escrow"
    assert failed.released_at is None
    assert failed.failure_reason.startswith("Transfer failed")


@pytest.mark.asyncio
async def test_auto_release_then_approval_marks_milestone_paid(services, make_contract, fund_milestone, db):
    ctx = make_contract()
    tx = await fund_milestone(ctx)
    tx.escrowed_at = utcnow() - timedelta(days=8)
    mid = ctx.contract.milestones[0].id
    services.contracts.submit_milestone(ctx.contract.id, mid, ctx.freelancer)

    report = await services.escrow_job.run_once()
    assert report.released_ids == [tx.id]
    # Not approved yet
    assert db.get_contract(ctx.contract.id).milestones[0].status == "submitted"

    approved = services.contracts.approve_milestone(ctx.contract.id, mid, ctx.client)
    assert approved["status"] == "paid"


@pytest.mark.asyncio
async def test_dry_run_changes_nothing(services, make_user, db):
    freelancer = make_user("freelancer")
    tx = _held(db, freelancer, days_ago=8)

    report = await services.escrow_job.run_once(dry_run=True)

    assert report.as_dict()["dry_run"] is True
    assert report.released_ids == [tx.id]
    assert db.get_transaction(tx.id).status == "held_in_escrow"


@pytest.mark.asyncio
async def test_cutoff_uses_configured_hold_days(services):
    now = utcnow()
    assert now - services.escrow_job.cutoff(now) == timedelta(days=7)


@pytest.mark.asyncio
async def test_transaction_escrowed_exactly_hold_days_ago_is_released(services, make_user, db):
    freelancer = make_user("freelancer")
    due = _held(db, freelancer, days_ago=5)
    not_yet = _held(db, freelancer, days_ago=5, amount=50.0)
    not_yet.escrowed_at = due.escrowed_at + timedelta(seconds=1)

    report = await services.escrow_job.run_once(now=due.escrowed_at + timedelta(days=7))

    assert report.released_ids == [due.id]
    assert db.get_transaction(not_yet.id).status == "held_in_escrow"


@pytest.mark.asyncio
async def test_cancelled_contract_is_never_released(services, make_contract, fund_milestone, gateway, db, monkeypatch):
    ctx = make_contract()
    tx = await fund_milestone(ctx)
    tx.escrowed_at = utcnow() - timedelta(days=8)

    async def processor_down(intent_id, amount=None, reason=None):
        raise PaymentGatewayError("processor unavailable")

    monkeypatch.setattr(gateway, "refund", processor_down)
    cancelled = await services.contracts.cancel(ctx.contract.id, ctx.client, reason="Budget cut")
    assert cancelled["refunded_transaction_ids"] == []

    report = await services.escrow_job.run_once()

    assert report.checked == 1
    assert report.skipped == 1
    assert report.released == 0
    assert db.get_transaction(tx.id).status == "held_in_escrow"
    with pytest.raises(AppError) as exc:
        await services.payments.release_escrow(tx.id, ctx.client)
    assert "cancelled" in exc.value.message


@pytest.mark.asyncio
async def test_cancelling_an_active_contract_refunds_instead_of_releasing(services, make_contract, fund_milestone, gateway, db):
    ctx = make_contract()
    tx = await fund_milestone(ctx)
    tx.escrowed_at = utcnow() - timedelta(days=8)

    await services.contracts.cancel(ctx.contract.id, ctx.freelancer, reason="Cannot take this on")
    report = await services.escrow_job.run_once()

    assert report.checked == 0
    assert db.get_transaction(tx.id).status == "refunded"
    assert gateway.transfers == {}
    assert len(gateway.refunds) == 1


@pytest.mark.asyncio
async def test_dispute_resolved_as_cancelled_refunds_escrow(services, make_contract, fund_milestone, make_user, db):
    ctx = make_contract()
    tx = await fund_milestone(ctx)
    tx.escrowed_at = utcnow() - timedelta(days=8)
    dispute = services.disputes.create(
        ctx.client,
        {"title": "Abandoned", "description": "Freelancer stopped replying", "type": "contract", "contract_id": ctx.contract.id},
    )

    await services.disputes.resolve(dispute["id"], make_user("admin"), "Work never delivered", contract_outcome="cancelled")

    assert db.get_contract(ctx.contract.id).status == "cancelled"
    refunded = db.get_transaction(tx.id)
    assert refunded.status == "refunded"
    assert refunded.failure_reason == "Dispute resolved: Work never delivered"
    report = await services.escrow_job.run_once()
    assert report.released == 0


@pytest.mark.asyncio
async def test_unexpected_transfer_error_keeps_funds_held_for_next_run(services, make_user, db, gateway, monkeypatch):
    freelancer = make_user("freelancer", payout_account_id="acct_ok")
    tx = _held(db, freelancer, days_ago=9)
    working_transfer = gateway.transfer

    async def malformed_response(request):
        raise KeyError("destination")

    monkeypatch.setattr(gateway, "transfer", malformed_response)
    first = await services.escrow_job.run_once()

    assert first.failed == 1
    assert tx.id in first.failures
    stored = db.get_transaction(tx.id)
    assert stored.status == "held_in_escrow"
    assert stored.released_at is None

    monkeypatch.setattr(gateway, "transfer", working_transfer)
    second = await services.escrow_job.run_once()

    assert second.released_ids == [tx.id]
    assert db.get_transaction(tx.id).status == "paid_out"


@pytest.mark.asyncio
async def test_zero_net_payment_is_released_without_a_transfer(services, make_user, db, gateway):
    freelancer = make_user("freelancer", payout_account_id="acct_ok")
    tx = _held(db, freelancer, days_ago=8, amount=1.0)
    tx.freelancer_amount = 0.0

    report = await services.escrow_job.run_once()

    assert report.released_ids == [tx.id]
    assert db.get_transaction(tx.id).status == "released"
    assert gateway.transfers == {}


def _fake_schedule(job, monkeypatch):
    """Make the scheduler's sleeps instant; record each sleep and each run."""
    real_sleep = asyncio.sleep
    sleeps, runs = [], []

    async def instant_sleep(seconds):
        sleeps.append(seconds)
        await real_sleep(0)

    async def counted_run(now=None, dry_run=False):
        runs.append(len(sleeps))
        return EscrowReleaseReport()

    monkeypatch.setattr(asyncio, "sleep", instant_sleep)
    monkeypatch.setattr(job, "run_once", counted_run)
    return real_sleep, sleeps, runs


@pytest.mark.asyncio
async def test_scheduler_runs_at_startup_then_every_interval(services, monkeypatch):
    job = services.escrow_job
    real_sleep, sleeps, runs = _fake_schedule(job, monkeypatch)

    task = job.start(interval_hours=0.001)
    assert job.start(interval_hours=0.001) is task
    while len(runs) < 3:
        await real_sleep(0)
    await job.stop()

    assert task.cancelled()
    # First run happens before any sleep
    assert runs[:3] == [0, 1, 2]
    assert sleeps[0] == pytest.approx(3.6)


@pytest.mark.asyncio
async def test_scheduler_can_wait_one_interval_before_first_run(services, monkeypatch):
    job = services.escrow_job
    real_sleep, sleeps, runs = _fake_schedule(job, monkeypatch)

    job.start(interval_hours=0.5, run_on_startup=False)
    while not runs:
        await real_sleep(0)
    await job.stop()

    assert runs[0] == 1
    assert sleeps[0] == pytest.approx(1800)
