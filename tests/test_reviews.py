import pytest

from talenthive.controllers.review_controller import compute_rating
from talenthive.error_handler import AppError, ForbiddenError, ValidationFailedError


@pytest.fixture
def completed(make_contract, db):
    ctx = make_contract()
    contract = db.get_contract(ctx.contract.id)
    contract.status = "completed"
    db.save_contract(contract)
    return ctx


def test_compute_rating():
    assert compute_rating([4, 5, 3]) == (4.0, 3)
    assert compute_rating([5, 4]) == (4.5, 2)
    assert compute_rating([5, 5, 4]) == (4.7, 3)
    assert compute_rating([]) == (0.0, 0)


def test_review_updates_reviewee_rating(services, completed, db):
    review = services.reviews.create(
        completed.client, {"contract_id": completed.contract.id, "rating": 4, "feedback": "Solid work"}
    )

    assert review["reviewee_id"] == completed.freelancer.id
    freelancer = db.get_user(completed.freelancer.id)
    assert freelancer.rating_average == 4.0
    assert freelancer.rating_count == 1


def test_both_parties_review_each_other_once(services, completed):
    payload = {"contract_id": completed.contract.id, "rating": 5, "feedback": "Great"}
    services.reviews.create(completed.client, payload)
    services.reviews.create(completed.freelancer, payload)

    with pytest.raises(AppError) as exc:
        services.reviews.create(completed.client, payload)
    assert exc.value.status_code == 409


def test_review_rules(services, make_contract, completed, make_user):
    active = make_contract()
    with pytest.raises(AppError) as exc:
        services.reviews.create(active.client, {"contract_id": active.contract.id, "rating": 5, "feedback": "Early"})
    assert exc.value.status_code == 400

    with pytest.raises(ForbiddenError):
        services.reviews.create(make_user("client"), {"contract_id": completed.contract.id, "rating": 5, "feedback": "Hi"})

    with pytest.raises(ValidationFailedError) as exc:
        services.reviews.create(completed.client, {"contract_id": completed.contract.id, "rating": 6, "feedback": "Too good"})
    assert "rating" in exc.value.field_errors


def test_recalculate_rating_from_all_reviews(services, make_user, db, cache):
    freelancer = make_user("freelancer")
    for rating in (4, 5, 3):
        db.create_review(contract_id="c", reviewer_id="someone", reviewee_id=freelancer.id, rating=rating)
    cache.set(f"user:{freelancer.id}", {"rating_average": 0.0})

    result = services.reviews.recalculate_rating(freelancer.id)

    assert result == {"user_id": freelancer.id, "rating_average": 4.0, "rating_count": 3}
    assert cache.get(f"user:{freelancer.id}") is None
    assert services.users.get_profile(freelancer.id)["rating_average"] == 4.0


def test_recalculate_all(services, make_user, db):
    a = make_user("freelancer")
    make_user("client")
    db.create_review(contract_id="c", reviewer_id="x", reviewee_id=a.id, rating=2)

    results = {r["user_id"]: r for r in services.reviews.recalculate_all()}
    assert results[a.id]["rating_average"] == 2.0
    assert len(results) == 2


def test_only_reviewee_responds(services, completed):
    review = services.reviews.create(completed.client, {"contract_id": completed.contract.id, "rating": 3, "feedback": "Slow"})

    with pytest.raises(ForbiddenError):
        services.reviews.respond(review["id"], completed.client, "Me again")

    responded = services.reviews.respond(review["id"], completed.freelancer, "Thanks for the feedback")
    assert responded["response"] == "Thanks for the feedback"
    assert responded["responded_at"] is not None

    listed = services.reviews.list_for_user(completed.freelancer.id)
    assert listed["pagination"]["total"] == 1
