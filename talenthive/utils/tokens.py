"""
Bearer tokens for API and WebSocket callers.

A token is `<user_id>.<hex HMAC-SHA256 of user_id>`; issuing happens at
registration, verification on every request and socket handshake.
"""
import hashlib
import hmac
from typing import Optional


def _sign(user_id: str, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), user_id.encode("utf-8"), hashlib.sha256).hexdigest()


def issue_token(user_id: str, secret: str) -> str:
    return f"{user_id}.{_sign(user_id, secret)}"


def verify_token(token: Optional[str], secret: str) -> Optional[str]:
    """Return the user id carried by a valid token, else None."""
    candidate = (token or "").strip()
    if candidate.lower().startswith("bearer "):
        candidate = candidate[7:].strip()
    user_id, sep, signature = candidate.rpartition(".")
    if not sep or not user_id or not signature:
        return None
    if not hmac.compare_digest(signature, _sign(user_id, secret)):
        return None
    return user_id
