from datetime import timedelta

import pytest

from talenthive.database.postgres import PostgresDB as MemoryDB
from talenthive.database.postgres_real import PostgresDB as SqlDB, _normalize_connection_string
from talenthive.database.redis import RedisCache
from talenthive.utils.clock import utcnow


@pytest.fixture(params=["memory", "sql"])
def storage(request, tmp_path):
    if request.param == "memory":
        return MemoryDB()
    db = SqlDB(f"sqlite:///{tmp_path / 'talenthive.db'}")
    db.create_tables()
    return db


def _tx(db, **fields):
    data = dict(contract_id="c1", client_id="u1", freelancer_id="u2", amount=100.0, freelancer_amount=87.1)
    data.update(fields)
    return db.create_transaction(**data)


def test_transition_is_compare_and_set(storage):
    tx = _tx(storage, status="held_in_escrow", escrowed_at=utcnow() - timedelta(days=8))

    moved = storage.transition_transaction(tx.id, "held_in_escrow", "released", released_at=utcnow())
    assert moved.status == "released"
    assert moved.released_at is not None

    # A second writer expecting the old status loses
    assert storage.transition_transaction(tx.id, "held_in_escrow", "released") is None
    assert storage.get_transaction(tx.id).status == "released"
    assert storage.transition_transaction("missing", "held_in_escrow", "released") is None


def test_held_transactions_listed_oldest_first(storage):
    now = utcnow()
    newer = _tx(storage, status="held_in_escrow", escrowed_at=now - timedelta(days=8), payment_intent_id="pi_new")
    older = _tx(storage, status="held_in_escrow", escrowed_at=now - timedelta(days=20), payment_intent_id="pi_old")
    _tx(storage, status="held_in_escrow", escrowed_at=now - timedelta(days=2))
    _tx(storage, status="released", escrowed_at=now - timedelta(days=30))

    held = storage.list_held_transactions(now - timedelta(days=7))
    assert [t.id for t in held] == [older.id, newer.id]
    assert storage.get_transaction_by_payment_intent("pi_old").id == older.id


def test_transaction_filters_and_stats(storage):
    _tx(storage, status="held_in_escrow", platform_commission=10.0)
    _tx(storage, status="paid_out", freelancer_id="u3", platform_commission=10.0)
    _tx(storage, status="failed", platform_commission=10.0)

    assert storage.count_transactions(freelancer_id="u2") == 2
    assert storage.count_transactions(status="paid_out") == 1
    assert len(storage.list_transactions(limit=2)) == 2

    stats = storage.transaction_stats()
    assert stats["volume"] == 200.0
    assert stats["commission"] == 20.0
    assert stats["by_status"] == {"held_in_escrow": 1, "paid_out": 1, "failed": 1}


def test_open_dispute_lookup(storage):
    dispute = storage.create_dispute(
        title="t", description="d", type="payment", complainant_id="u1", contract_id="c1", transaction_id="t1"
    )
    assert storage.has_open_dispute(contract_id="c1")
    assert storage.has_open_dispute(transaction_id="t1")
    assert not storage.has_open_dispute(contract_id="c2")

    dispute.status = "resolved"
    storage.save_dispute(dispute)
    assert not storage.has_open_dispute(contract_id="c1", transaction_id="t1")


def test_support_ticket_numbering_and_filters(storage):
    first = storage.create_support_ticket(user_id="u1", subject="Login", category="account", messages=[{"message": "hi"}])
    second = storage.create_support_ticket(user_id="u2", subject="Refund", category="billing", priority="urgent")
    assert (first.ticket_number, second.ticket_number) == ("TKT-00001", "TKT-00002")

    second.assigned_admin_id = "a1"
    second.tags = ["refund"]
    storage.save_support_ticket(second)

    assert [t.id for t in storage.list_support_tickets(user_id="u1")] == [first.id]
    assert [t.id for t in storage.list_support_tickets(assigned_admin_id="a1")] == [second.id]
    assert [t.id for t in storage.list_support_tickets(priority="urgent", category="billing")] == [second.id]
    assert storage.get_support_ticket(second.id).tags == ["refund"]
    assert storage.get_support_ticket(first.id).messages == [{"message": "hi"}]


def test_normalize_connection_string():
    assert _normalize_connection_string("  'postgres://u:p@h/db' ") == "postgresql+psycopg://u:p@h/db"
    assert _normalize_connection_string("psql postgresql://u@h/db") == "postgresql+psycopg://u@h/db"
    assert _normalize_connection_string("sqlite:///x.db") == "sqlite:///x.db"


def test_cache_ttl_and_patterns():
    cache = RedisCache(default_ttl=300)
    cache.set("projects:open:all", [1])
    cache.set("projects:all:all", [2])
    cache.set("user:1", {"id": "1"})
    cache.set("expired", "x", ttl=-1)

    assert cache.get("projects:open:all") == [1]
    assert cache.get("expired") is None
    assert cache.delete_pattern("projects:*") == 2
    assert cache.get("projects:all:all") is None
    assert cache.get("user:1") == {"id": "1"}
    cache.delete("user:1")
    assert cache.get("user:1") is None
