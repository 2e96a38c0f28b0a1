"""Pytest fixtures for marketplace controller, escrow and API tests."""

from types import SimpleNamespace

import pytest

from talenthive.api.dependencies import build_services
from talenthive.database.postgres import PostgresDB
from talenthive.database.redis import RedisCache
from talenthive.integrations.clients.mocks.payments import MockPaymentGateway
from talenthive.utils.config_loader import Settings
from talenthive.utils.tokens import issue_token

WEBHOOK_SECRET = "whsec_test"
TOKEN_SECRET = "test-token-secret"


@pytest.fixture
def db():
    """In-memory PostgresDB stub for tests."""
    return PostgresDB()


@pytest.fixture
def cache():
    return RedisCache()


@pytest.fixture
def gateway():
    return MockPaymentGateway(webhook_secret=WEBHOOK_SECRET, failing_accounts=["acct_broken"])


@pytest.fixture
def settings():
    return Settings(auth_token_secret=TOKEN_SECRET, stripe_webhook_secret=WEBHOOK_SECRET, escrow_hold_days=7)


@pytest.fixture
def services(settings, db, cache, gateway):
    return build_services(settings, db=db, cache=cache, gateway=gateway)


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(role: str, email: str = None, **fields):
        counter["n"] += 1
        user = db.create_user(
            email=email or f"{role}{counter['n']}@example.com",
            first_name=role.title(),
            last_name=str(counter["n"]),
            role=role,
        )
        for key, value in fields.items():
            setattr(user, key, value)
        return user

    return _make


@pytest.fixture
def token_for():
    return lambda user: issue_token(user.id, TOKEN_SECRET)


@pytest.fixture
def make_contract(services, make_user):
    """
    Build a contract the normal way: project, proposal with two milestones
    (600 + 400), acceptance, and both signatures unless `sign=False`.
    """

    def _make(sign: bool = True, client=None, freelancer=None, milestones=None, bid_amount=1000.0):
        client = client or make_user("client")
        freelancer = freelancer or make_user("freelancer")
        project = services.projects.create_project(
            client, {"title": "Marketplace redesign", "description": "New storefront", "budget": 1200}
        )
        proposal = services.proposals.submit(
            freelancer,
            project["id"],
            {
                "cover_letter": "I can build this.",
                "bid_amount": bid_amount,
                "milestones": milestones
                if milestones is not None
                else [{"title": "Design", "amount": 600}, {"title": "Build", "amount": 400}],
            },
        )
        accepted = services.proposals.accept(client, proposal["id"])
        contract_id = accepted["contract"]["id"]
        if sign:
            services.contracts.sign(contract_id, client)
            services.contracts.sign(contract_id, freelancer)
        return SimpleNamespace(
            client=client,
            freelancer=freelancer,
            project_id=project["id"],
            contract=services.db.get_contract(contract_id),
        )

    return _make


@pytest.fixture
def fund_milestone(services, gateway):
    """Fund a milestone through the gateway and move it into escrow; returns the transaction record."""

    async def _fund(ctx, milestone_index: int = 0):
        milestone = ctx.contract.milestones[milestone_index]
        created = await services.payments.create_payment_intent(ctx.client, ctx.contract.id, milestone.id)
        intent_id = created["transaction"]["payment_intent_id"]
        gateway.mark_succeeded(intent_id)
        confirmed = await services.payments.confirm_payment(intent_id, user=ctx.client)
        return services.db.get_transaction(confirmed["id"])

    return _fund
