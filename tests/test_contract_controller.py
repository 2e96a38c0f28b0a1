import pytest

from talenthive.error_handler import AppError, ForbiddenError, InvalidTransitionError, ValidationFailedError


def test_accepting_a_proposal_drafts_the_contract(services, make_contract, db):
    ctx = make_contract(sign=False)
    contract = ctx.contract

    assert contract.status == "draft"
    assert contract.total_amount == 1000
    assert [m.title for m in contract.milestones] == ["Design", "Build"]
    assert all(m.status == "pending" for m in contract.milestones)
    assert db.get_project(ctx.project_id).status == "in_progress"


def test_proposal_without_milestones_gets_a_single_milestone(make_contract):
    ctx = make_contract(sign=False, milestones=[], bid_amount=750)
    assert len(ctx.contract.milestones) == 1
    assert ctx.contract.milestones[0].amount == 750


def test_milestone_amounts_must_match_contract_total(make_contract):
    with pytest.raises(ValidationFailedError) as exc:
        make_contract(sign=False, milestones=[{"title": "Design", "amount": 600}, {"title": "Build", "amount": 300}])
    assert "milestones" in exc.value.field_errors


def test_contract_activates_once_both_parties_sign(services, make_contract):
    ctx = make_contract(sign=False)

    first = services.contracts.sign(ctx.contract.id, ctx.client)
    assert first["is_fully_signed"] is False
    assert first["contract"]["status"] == "draft"

    second = services.contracts.sign(ctx.contract.id, ctx.freelancer)
    assert second["is_fully_signed"] is True
    assert second["contract"]["status"] == "active"
    assert len(second["contract"]["signatures"]) == 2


def test_sign_rejects_outsiders_and_repeat_signatures(services, make_contract, make_user):
    ctx = make_contract(sign=False)
    with pytest.raises(ForbiddenError):
        services.contracts.sign(ctx.contract.id, make_user("client"))

    services.contracts.sign(ctx.contract.id, ctx.client)
    with pytest.raises(AppError) as exc:
        services.contracts.sign(ctx.contract.id, ctx.client)
    assert exc.value.status_code == 409


def test_amending_a_draft_clears_signatures(services, make_contract):
    ctx = make_contract(sign=False)
    services.contracts.sign(ctx.contract.id, ctx.client)

    amended = services.contracts.amend_milestones(
        ctx.contract.id,
        ctx.freelancer,
        [{"title": "Design", "amount": 200}, {"title": "Build", "amount": 500}, {"title": "Launch", "amount": 300}],
    )
    assert [m["title"] for m in amended["milestones"]] == ["Design", "Build", "Launch"]
    assert amended["signatures"] == []


def test_amendment_must_keep_amounts_consistent(services, make_contract):
    ctx = make_contract(sign=False)
    with pytest.raises(ValidationFailedError):
        services.contracts.amend_milestones(ctx.contract.id, ctx.client, [{"title": "All", "amount": 999}])

    amended = services.contracts.amend_milestones(
        ctx.contract.id, ctx.client, [{"title": "All", "amount": 1200}], total_amount=1200
    )
    assert amended["total_amount"] == 1200


def test_active_contract_milestones_cannot_be_amended(services, make_contract):
    ctx = make_contract()
    with pytest.raises(AppError) as exc:
        services.contracts.amend_milestones(ctx.contract.id, ctx.client, [{"title": "All", "amount": 1000}])
    assert exc.value.status_code == 409


def test_milestone_work_flow(services, make_contract):
    ctx = make_contract()
    mid = ctx.contract.milestones[0].id

    assert services.contracts.start_milestone(ctx.contract.id, mid, ctx.freelancer)["status"] == "in_progress"
    submitted = services.contracts.submit_milestone(
        ctx.contract.id, mid, ctx.freelancer, deliverables=[{"title": "Mockups", "url": "https://files.example.com/m.pdf"}]
    )
    assert submitted["status"] == "submitted"
    assert submitted["deliverables"][0]["status"] == "submitted"

    rejected = services.contracts.reject_milestone(ctx.contract.id, mid, ctx.client, feedback="Needs a dark theme")
    assert rejected["status"] == "rejected"
    assert rejected["deliverables"][0]["status"] == "rejected"

    services.contracts.submit_milestone(ctx.contract.id, mid, ctx.freelancer)
    approved = services.contracts.approve_milestone(ctx.contract.id, mid, ctx.client)
    assert approved["status"] == "approved"
    assert approved["approved_at"] is not None


def test_only_the_right_party_moves_milestones(services, make_contract):
    ctx = make_contract()
    mid = ctx.contract.milestones[0].id
    with pytest.raises(ForbiddenError):
        services.contracts.submit_milestone(ctx.contract.id, mid, ctx.client)

    services.contracts.submit_milestone(ctx.contract.id, mid, ctx.freelancer)
    with pytest.raises(ForbiddenError):
        services.contracts.approve_milestone(ctx.contract.id, mid, ctx.freelancer)


def test_milestones_cannot_move_on_draft_contract(services, make_contract):
    ctx = make_contract(sign=False)
    with pytest.raises(InvalidTransitionError):
        services.contracts.start_milestone(ctx.contract.id, ctx.contract.milestones[0].id, ctx.freelancer)


def test_approve_requires_submission(services, make_contract):
    ctx = make_contract()
    with pytest.raises(InvalidTransitionError):
        services.contracts.approve_milestone(ctx.contract.id, ctx.contract.milestones[0].id, ctx.client)


def test_milestone_paid_only_while_contract_payable(services, make_contract, db):
    ctx = make_contract()
    mid = ctx.contract.milestones[0].id
    services.contracts.submit_milestone(ctx.contract.id, mid, ctx.freelancer)
    services.contracts.approve_milestone(ctx.contract.id, mid, ctx.client)

    contract = db.get_contract(ctx.contract.id)
    contract.status = "disputed"
    db.save_contract(contract)
    with pytest.raises(InvalidTransitionError):
        services.contracts.mark_milestone_paid(ctx.contract.id, mid)

    contract.status = "active"
    db.save_contract(contract)
    saved = services.contracts.mark_milestone_paid(ctx.contract.id, mid)
    assert saved.milestones[0].status == "paid"
    assert saved.status == "active"


def test_contract_completes_when_every_milestone_is_paid(services, make_contract, db):
    ctx = make_contract()
    for m in ctx.contract.milestones:
        services.contracts.submit_milestone(ctx.contract.id, m.id, ctx.freelancer)
        services.contracts.approve_milestone(ctx.contract.id, m.id, ctx.client)
        services.contracts.mark_milestone_paid(ctx.contract.id, m.id)

    contract = db.get_contract(ctx.contract.id)
    assert contract.status == "completed"
    assert db.get_project(ctx.project_id).status == "completed"
    assert services.contracts.get_contract(contract.id, ctx.client)["progress"] == 100.0


@pytest.mark.asyncio
async def test_cancel_contract(services, make_contract, make_user):
    ctx = make_contract()
    with pytest.raises(ForbiddenError):
        await services.contracts.cancel(ctx.contract.id, make_user("freelancer"))

    cancelled = await services.contracts.cancel(ctx.contract.id, ctx.client, reason="Budget cut")
    assert cancelled["status"] == "cancelled"
    assert cancelled["refunded_transaction_ids"] == []
    with pytest.raises(AppError):
        await services.contracts.cancel(ctx.contract.id, ctx.client)


@pytest.mark.asyncio
async def test_cancel_refunds_payments_held_in_escrow(services, make_contract, fund_milestone, gateway, db):
    ctx = make_contract()
    tx = await fund_milestone(ctx)

    cancelled = await services.contracts.cancel(ctx.contract.id, ctx.client, reason="Project dropped")

    assert cancelled["refunded_transaction_ids"] == [tx.id]
    refunded = db.get_transaction(tx.id)
    assert refunded.status == "refunded"
    assert refunded.refund_id is not None
    assert refunded.failure_reason == "Project dropped"


@pytest.mark.parametrize("bad_amount", ["nan", "inf", float("-inf")])
def test_non_finite_milestone_amounts_are_rejected(make_contract, bad_amount):
    with pytest.raises(ValidationFailedError) as exc:
        make_contract(sign=False, milestones=[{"title": "Design", "amount": bad_amount}, {"title": "Build", "amount": 400}])
    assert "finite" in exc.value.field_errors["milestones[0].amount"]


def test_contract_visibility(services, make_contract, make_user):
    ctx = make_contract()
    admin = make_user("admin")
    assert services.contracts.get_contract(ctx.contract.id, admin)["id"] == ctx.contract.id
    with pytest.raises(ForbiddenError):
        services.contracts.get_contract(ctx.contract.id, make_user("client"))
    assert [c["id"] for c in services.contracts.list_contracts(ctx.freelancer)] == [ctx.contract.id]
