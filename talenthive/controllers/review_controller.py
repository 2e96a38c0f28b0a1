"""Controller for contract reviews and user rating aggregates."""
from typing import Any, Dict, Iterable, List, Optional, Tuple
import logging

from talenthive.controllers.serializers import review_to_dict
from talenthive.controllers.validation import parse_int_in_range, raise_if_errors, require_str
from talenthive.domain.states import ContractStatus
from talenthive.error_handler import AppError, ForbiddenError, NotFoundError
from talenthive.utils.clock import utcnow

logger = logging.getLogger(__name__)


def compute_rating(ratings: Iterable[int]) -> Tuple[float, int]:
    """Average rounded to one decimal, and the count. No ratings gives (0.0, 0)."""
    values = [int(r) for r in ratings]
    if not values:
        return 0.0, 0
    return round(sum(values) / len(values), 1), len(values)


class ReviewController:
    def __init__(self, db, cache=None, notifications=None):
        self.db = db
        self.cache = cache
        self.notifications = notifications

    def create(self, user, payload: Dict[str, Any]) -> Dict[str, Any]:
        errors: Dict[str, str] = {}
        contract_id = require_str(payload, "contract_id", errors, label="Contract")
        rating = parse_int_in_range(payload, "rating", errors, min_value=1, max_value=5)
        feedback = require_str(payload, "feedback", errors, label="Feedback", max_length=2000)
        raise_if_errors(errors)

        contract = self.db.get_contract(contract_id)
        if not contract:
            raise NotFoundError("Contract not found")
        if user.id not in (contract.client_id, contract.freelancer_id):
            raise ForbiddenError("Not authorized")
        if contract.status != ContractStatus.COMPLETED.value:
            raise AppError("Can only review completed contracts", 400)
        if self.db.get_review_by_contract_and_reviewer(contract.id, user.id):
            raise AppError("Review already submitted", 409)

        reviewee_id = contract.freelancer_id if user.id == contract.client_id else contract.client_id
        review = self.db.create_review(
            contract_id=contract.id,
            reviewer_id=user.id,
            reviewee_id=reviewee_id,
            rating=rating,
            feedback=feedback,
        )
        self.recalculate_rating(reviewee_id)
        if self.notifications is not None:
            self.notifications.notify(
                reviewee_id, "review", "New review", f"You received a {rating}-star review.", link=f"/reviews/{review.id}"
            )
        return review_to_dict(review)

    def list_for_user(self, user_id: str, page: int = 1, limit: int = 10) -> Dict[str, Any]:
        items = self.db.list_reviews(reviewee_id=user_id)
        page, limit = max(int(page), 1), min(max(int(limit), 1), 100)
        window = items[(page - 1) * limit : page * limit]
        return {
            "reviews": [review_to_dict(r) for r in window],
            "pagination": {"page": page, "limit": limit, "total": len(items), "pages": (len(items) + limit - 1) // limit},
        }

    def respond(self, review_id: str, user, response: Any) -> Dict[str, Any]:
        review = self.db.get_review(review_id)
        if not review:
            raise NotFoundError("Review not found")
        if review.reviewee_id != user.id:
            raise ForbiddenError("Not authorized")
        errors: Dict[str, str] = {}
        text = require_str({"response": response}, "response", errors, label="Response", max_length=2000)
        raise_if_errors(errors)
        review.response = text
        review.responded_at = utcnow()
        return review_to_dict(self.db.save_review(review))

    def recalculate_rating(self, user_id: str) -> Optional[Dict[str, Any]]:
        user = self.db.get_user(user_id)
        if not user:
            return None
        average, count = compute_rating(r.rating for r in self.db.list_reviews(reviewee_id=user_id))
        user.rating_average = average
        user.rating_count = count
        self.db.save_user(user)
        if self.cache is not None:
            self.cache.delete(f"user:{user_id}")
        return {"user_id": user_id, "rating_average": average, "rating_count": count}

    def recalculate_all(self) -> List[Dict[str, Any]]:
        results = []
        for user in self.db.list_users():
            result = self.recalculate_rating(user.id)
            if result is not None:
                results.append(result)
        logger.info("Recalculated ratings for %d users", len(results))
        return results
