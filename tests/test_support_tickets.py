import pytest

from talenthive.error_handler import AppError, ForbiddenError, InvalidTransitionError, NotFoundError, ValidationFailedError


def _ticket(services, user, **extra):
    payload = {"subject": "Payout not arriving", "message": "My transfer from last week is missing", "category": "billing"}
    payload.update(extra)
    return services.support.create(user, payload)


def test_ticket_numbers_and_admin_notifications(services, make_user, db):
    admin = make_user("admin")
    user = make_user("freelancer")

    first = _ticket(services, user, priority="urgent")
    second = _ticket(services, user, subject="Cannot upload avatar", category="technical")

    assert first["ticket_number"] == "TKT-00001"
    assert second["ticket_number"] == "TKT-00002"
    assert first["status"] == "open"
    assert first["priority"] == "urgent"
    assert second["priority"] == "medium"
    assert first["messages"][0]["sender_id"] == user.id
    assert first["messages"][0]["is_admin_response"] is False
    assert first["last_response_at"] is not None

    notes = db.list_notifications(admin.id)
    assert [n.title for n in notes].count("New support ticket") == 2
    assert any(n.priority == "high" and "TKT-00001" in n.message for n in notes)


def test_ticket_validation(services, make_user):
    user = make_user("client")
    with pytest.raises(ValidationFailedError) as exc:
        services.support.create(user, {"subject": "", "message": "  ", "category": "refunds", "attachments": "x.png"})
    assert set(exc.value.field_errors) == {"subject", "message", "category", "attachments"}

    with pytest.raises(ValidationFailedError) as exc:
        services.support.create(user, {"subject": "Long", "message": "x" * 5001})
    assert "5000" in exc.value.field_errors["message"]


def test_only_owner_and_admins_see_a_ticket(services, make_user):
    owner, other, admin = make_user("client"), make_user("client"), make_user("admin")
    ticket = _ticket(services, owner)

    with pytest.raises(ForbiddenError):
        services.support.get(ticket["id"], other)
    with pytest.raises(NotFoundError):
        services.support.get("missing", owner)

    assert services.support.list(owner)["pagination"]["total"] == 1
    assert services.support.list(other)["tickets"] == []
    assert services.support.list(admin)["pagination"]["total"] == 1


def test_conversation_marks_other_side_read(services, make_user, db):
    owner, admin = make_user("client"), make_user("admin")
    ticket = _ticket(services, owner)

    # Admin opening the ticket reads the user's message
    viewed = services.support.get(ticket["id"], admin)
    assert viewed["messages"][0]["is_read"] is True

    replied = services.support.add_message(ticket["id"], admin, "We are looking into it")
    assert replied["messages"][1]["is_admin_response"] is True
    assert replied["messages"][1]["is_read"] is False
    assert any(n.title == "Support replied to your ticket" for n in db.list_notifications(owner.id))

    seen = services.support.get(ticket["id"], owner)
    assert [m["is_read"] for m in seen["messages"]] == [True, True]

    with pytest.raises(ValidationFailedError):
        services.support.add_message(ticket["id"], owner, "   ")


def test_user_reply_goes_to_assigned_admin_only(services, make_user, db):
    owner = make_user("freelancer")
    lead, backup = make_user("admin"), make_user("admin")
    ticket = _ticket(services, owner)

    assigned = services.support.assign(ticket["id"], lead)
    assert assigned["assigned_admin_id"] == lead.id
    assert assigned["status"] == "in_progress"

    services.support.add_message(ticket["id"], owner, "Any update?")

    assert any(n.title == "New reply on support ticket" for n in db.list_notifications(lead.id))
    assert not any(n.title == "New reply on support ticket" for n in db.list_notifications(backup.id))


def test_assign_rules(services, make_user):
    owner, admin = make_user("client"), make_user("admin")
    ticket = _ticket(services, owner)

    with pytest.raises(ForbiddenError):
        services.support.assign(ticket["id"], owner)
    with pytest.raises(AppError) as exc:
        services.support.assign(ticket["id"], admin, owner.id)
    assert exc.value.status_code == 400

    helper = make_user("admin")
    services.support.assign(ticket["id"], admin, helper.id)
    mine = services.support.list(helper, assigned_to_me=True)
    assert [t["id"] for t in mine["tickets"]] == [ticket["id"]]
    assert services.support.list(admin, assigned_to_me=True)["tickets"] == []


def test_status_lifecycle(services, make_user, db):
    owner, admin = make_user("client"), make_user("admin")
    ticket = _ticket(services, owner)

    with pytest.raises(ForbiddenError):
        services.support.update_status(ticket["id"], owner, "closed")
    with pytest.raises(AppError) as exc:
        services.support.update_status(ticket["id"], admin, "escalated")
    assert exc.value.status_code == 400

    resolved = services.support.update_status(ticket["id"], admin, "resolved")
    assert resolved["resolved_at"] is not None
    assert any("resolved" in n.message for n in db.list_notifications(owner.id))

    reopened = services.support.update_status(ticket["id"], admin, "open")
    assert reopened["resolved_at"] is None

    closed = services.support.update_status(ticket["id"], admin, "closed")
    assert closed["closed_at"] is not None
    with pytest.raises(InvalidTransitionError):
        services.support.update_status(ticket["id"], admin, "open")
    with pytest.raises(AppError) as exc:
        services.support.add_message(ticket["id"], owner, "Still broken")
    assert exc.value.status_code == 409


def test_tags(services, make_user):
    owner, admin = make_user("client"), make_user("admin")
    ticket = _ticket(services, owner)

    tagged = services.support.update_tags(ticket["id"], admin, ["Stripe", "payout", "stripe", " "])
    assert tagged["tags"] == ["stripe", "payout"]
    with pytest.raises(AppError):
        services.support.update_tags(ticket["id"], admin, "stripe")
    with pytest.raises(ForbiddenError):
        services.support.update_tags(ticket["id"], owner, ["vip"])


def test_stats(services, make_user):
    owner, admin = make_user("client"), make_user("admin")
    urgent = _ticket(services, owner, priority="urgent")
    _ticket(services, owner, category="account")
    done = _ticket(services, owner, category="technical", priority="urgent")
    services.support.assign(urgent["id"], admin)
    services.support.update_status(done["id"], admin, "closed")

    stats = services.support.stats()

    assert stats["total"] == 3
    assert stats["by_status"] == {"open": 1, "in_progress": 1, "resolved": 0, "closed": 1}
    assert stats["by_category"]["billing"] == 1
    assert stats["by_category"]["account"] == 1
    # The closed urgent ticket no longer counts
    assert stats["urgent_open"] == 1
    assert stats["unassigned_open"] == 1
