import json

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from talenthive.api.main import create_app


@pytest.fixture
def client(services):
    # No context manager: startup (table creation, escrow scheduler) is not needed here
    return TestClient(create_app(services, start_jobs=False), raise_server_exceptions=False)


def _auth(token):
    return {"Authorization": f"Bearer {token}"}


def _register(client, role, email):
    resp = client.post(
        "/api/v1/users/register",
        json={"email": email, "first_name": role.title(), "last_name": "Tester", "role": role},
    )
    assert resp.status_code == 201
    return resp.json()["data"]


def test_health_and_root(client):
    assert client.get("/").json()["status"] == "healthy"
    health = client.get("/health").json()
    assert health["database"] == {"postgres": "connected", "redis": "connected"}
    assert health["online_users"] == 0


def test_register_rejects_admin_and_duplicates(client):
    resp = client.post(
        "/api/users/register",
        json={"email": "root@example.com", "first_name": "R", "last_name": "T", "role": "admin"},
    )
    assert resp.status_code == 422
    assert "role" in resp.json()["details"]["field_errors"]

    _register(client, "client", "dup@example.com")
    resp = client.post(
        "/api/users/register",
        json={"email": "dup@example.com", "first_name": "D", "last_name": "U", "role": "client"},
    )
    assert resp.status_code == 409


def test_requires_bearer_token(client):
    resp = client.get("/api/v1/contracts")
    assert resp.status_code == 401
    assert resp.json()["status"] == "error"
    assert client.get("/api/v1/contracts", headers=_auth("nobody.deadbeef")).status_code == 401


def test_marketplace_flow_over_http(client, gateway):
    buyer = _register(client, "client", "buyer@example.com")
    seller = _register(client, "freelancer", "seller@example.com")
    buyer_h, seller_h = _auth(buyer["token"]), _auth(seller["token"])

    project = client.post(
        "/api/v1/projects",
        json={"title": "Landing page", "description": "Marketing site", "budget": 800},
        headers=buyer_h,
    ).json()["data"]
    proposal = client.post(
        f"/api/v1/projects/{project['id']}/proposals",
        json={"cover_letter": "Happy to help", "bid_amount": 500, "milestones": [{"title": "Site", "amount": 500}]},
        headers=seller_h,
    ).json()["data"]

    accepted = client.post(f"/api/v1/proposals/{proposal['id']}/accept", headers=buyer_h)
    assert accepted.status_code == 200
    contract = accepted.json()["data"]["contract"]
    assert contract["status"] == "draft"

    # Funding a draft contract is refused
    milestone_id = contract["milestones"][0]["id"]
    resp = client.post(
        "/api/v1/payments/intents", json={"contract_id": contract["id"], "milestone_id": milestone_id}, headers=buyer_h
    )
    assert resp.status_code == 409

    client.post(f"/api/v1/contracts/{contract['id']}/sign", headers=buyer_h)
    signed = client.post(f"/api/v1/contracts/{contract['id']}/sign", headers=seller_h).json()["data"]
    assert signed["status"] == "active"

    created = client.post(
        "/api/v1/payments/intents", json={"contract_id": contract["id"], "milestone_id": milestone_id}, headers=buyer_h
    )
    assert created.status_code == 201
    intent_id = created.json()["data"]["transaction"]["payment_intent_id"]
    assert created.json()["data"]["fees"]["freelancer_amount"] == 435.5

    # Processor webhook moves the payment into escrow
    gateway.mark_succeeded(intent_id)
    body = json.dumps(
        {"id": "evt_1", "type": "payment_intent.succeeded", "data": {"object": {"id": intent_id}}}
    ).encode()
    resp = client.post("/api/v1/webhooks/payments", content=body, headers={"Stripe-Signature": gateway.sign(body)})
    assert resp.json()["data"]["handled"] is True

    history = client.get("/api/v1/transactions", headers=seller_h).json()["data"]
    assert history["transactions"][0]["status"] == "held_in_escrow"

    balance = client.get("/api/v1/payments/balance", headers=seller_h).json()["data"]
    assert balance["in_escrow"] == 435.5

    resp = client.post("/api/v1/webhooks/payments", content=body, headers={"Stripe-Signature": "bad"})
    assert resp.status_code == 400


def test_admin_endpoints(client, db, make_user, token_for):
    admin = db.create_user(email="ops@example.com", first_name="Ops", last_name="Admin", role="admin")
    member = make_user("client")

    assert client.get("/api/v1/admin/overview", headers=_auth(token_for(member))).status_code == 403

    overview = client.get("/api/v1/admin/overview", headers=_auth(token_for(admin))).json()["data"]
    assert overview["users"]["by_role"]["admin"] == 1

    report = client.post("/api/v1/admin/escrow/release?dry_run=true", headers=_auth(token_for(admin))).json()["data"]
    assert report["dry_run"] is True
    assert report["released"] == 0


def test_websocket_ping(client, make_user, token_for):
    user = make_user("freelancer")
    with client.websocket_connect(f"/ws?token={token_for(user)}") as ws:
        ws.send_json({"type": "ping"})
        assert ws.receive_json()["event"] == "pong"
        ws.send_json({"type": "dance"})
        assert ws.receive_json()["event"] == "error"


def test_websocket_requires_token(client):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/ws?token=bogus") as ws:
            ws.receive_json()


def test_support_ticket_endpoints(client, db, make_user, token_for):
    admin = db.create_user(email="help@example.com", first_name="Help", last_name="Desk", role="admin")
    member = make_user("freelancer")

    created = client.post(
        "/api/v1/support/tickets",
        json={"subject": "Payout missing", "message": "Where is my money?", "category": "billing"},
        headers=_auth(token_for(member)),
    )
    assert created.status_code == 201
    ticket = created.json()["data"]
    assert ticket["ticket_number"] == "TKT-00001"

    assert client.get("/api/v1/support/tickets/stats", headers=_auth(token_for(member))).status_code == 403
    resp = client.patch(
        f"/api/v1/support/tickets/{ticket['id']}/status", json={"status": "resolved"}, headers=_auth(token_for(admin))
    )
    assert resp.json()["data"]["status"] == "resolved"

    mine = client.get("/api/v1/support/tickets?status=resolved", headers=_auth(token_for(member))).json()["data"]
    assert [t["id"] for t in mine["tickets"]] == [ticket["id"]]
