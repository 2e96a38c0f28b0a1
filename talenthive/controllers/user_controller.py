"""Controller for accounts and profiles."""
from typing import Any, Dict, List, Optional
import logging

from talenthive.controllers.serializers import user_to_dict
from talenthive.controllers.validation import optional_str, raise_if_errors, require_str, validate_email, validate_in
from talenthive.domain.states import UserRole
from talenthive.error_handler import AppError, NotFoundError
from talenthive.utils.tokens import issue_token

logger = logging.getLogger(__name__)

SELF_SERVICE_ROLES = [UserRole.CLIENT.value, UserRole.FREELANCER.value]


class UserController:
    def __init__(self, db, cache, token_secret: str, cache_ttl: int = 300):
        self.db = db
        self.cache = cache
        self.token_secret = token_secret
        self.cache_ttl = cache_ttl

    def register(self, payload: Dict[str, Any], *, allow_admin: bool = False) -> Dict[str, Any]:
        """Create an account and return it with its bearer token."""
        errors: Dict[str, str] = {}
        email = validate_email(payload.get("email"), errors)
        first_name = require_str(payload, "first_name", errors, label="First name", max_length=100)
        last_name = require_str(payload, "last_name", errors, label="Last name", max_length=100)
        roles = SELF_SERVICE_ROLES + ([UserRole.ADMIN.value] if allow_admin else [])
        role = validate_in(payload.get("role"), roles, errors, "role")
        raise_if_errors(errors)

        if self.db.get_user_by_email(email):
            raise AppError("An account with this email already exists", 409)

        user = self.db.create_user(email=email, first_name=first_name, last_name=last_name, role=role)
        logger.info("Registered %s account %s", role, user.id)
        return {"user": user_to_dict(user), "token": issue_token(user.id, self.token_secret)}

    def get_profile(self, user_id: str) -> Dict[str, Any]:
        key = f"user:{user_id}"
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        user = self.db.get_user(user_id)
        if not user:
            raise NotFoundError("User not found")
        data = user_to_dict(user)
        self.cache.set(key, data, ttl=self.cache_ttl)
        return data

    def update_profile(self, user, payload: Dict[str, Any]) -> Dict[str, Any]:
        if "first_name" in payload or "last_name" in payload:
            errors: Dict[str, str] = {}
            if "first_name" in payload:
                user.first_name = require_str(payload, "first_name", errors, label="First name", max_length=100)
            if "last_name" in payload:
                user.last_name = require_str(payload, "last_name", errors, label="Last name", max_length=100)
            raise_if_errors(errors)
        if "payout_account_id" in payload:
            if user.role != UserRole.FREELANCER.value:
                raise AppError("Only freelancers can connect a payout account", 400)
            user.payout_account_id = optional_str(payload, "payout_account_id") or None
        user = self.db.save_user(user)
        self.cache.delete(f"user:{user.id}")
        return user_to_dict(user)

    def list_users(self, role: Optional[str] = None) -> List[Dict[str, Any]]:
        if role:
            errors: Dict[str, str] = {}
            validate_in(role, [r.value for r in UserRole], errors, "role")
            raise_if_errors(errors)
        return [user_to_dict(u) for u in self.db.list_users(role=role)]

    def set_active(self, user_id: str, is_active: bool) -> Dict[str, Any]:
        user = self.db.get_user(user_id)
        if not user:
            raise NotFoundError("User not found")
        user.is_active = bool(is_active)
        user = self.db.save_user(user)
        self.cache.delete(f"user:{user.id}")
        logger.info("User %s is_active=%s", user.id, user.is_active)
        return user_to_dict(user)
