"""Shared request validation for controller inputs.

Endpoints pass request bodies to controllers as dictionaries. These helpers
collect field errors into a dict; `raise_if_errors` turns a non-empty dict
into `ValidationFailedError` (HTTP 422 with `field_errors`).
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from talenthive.error_handler import ValidationFailedError


def _strip(v: Any) -> str:
    return ("" if v is None else str(v)).strip()


def add_error(errors: Dict[str, str], field: str, message: str) -> None:
    if field not in errors:
        errors[field] = message


def raise_if_errors(errors: Dict[str, str]) -> None:
    if errors:
        raise ValidationFailedError(errors)


def require_str(payload: Dict[str, Any], field: str, errors: Dict[str, str], *, label: Optional[str] = None, max_length: Optional[int] = None) -> str:
    value = _strip(payload.get(field))
    if not value:
        add_error(errors, field, f"{label or field} is required")
    elif max_length is not None and len(value) > max_length:
        add_error(errors, field, f"{label or field} must be at most {max_length} characters")
    return value


def optional_str(payload: Dict[str, Any], field: str) -> str:
    return _strip(payload.get(field))


def parse_amount(payload: Dict[str, Any], field: str, errors: Dict[str, str], *, required: bool = True, allow_zero: bool = False) -> float:
    raw = payload.get(field)
    if raw is None or _strip(raw) == "":
        if required:
            add_error(errors, field, f"{field} is required")
        return 0.0
    try:
        val = float(raw)
    except (TypeError, ValueError):
        add_error(errors, field, f"{field} must be a number")
        return 0.0
    if not math.isfinite(val):
        add_error(errors, field, f"{field} must be a finite number")
        return 0.0
    if val < 0 or (val == 0 and not allow_zero):
        add_error(errors, field, f"{field} must be greater than zero")
    return round(val, 2)


def parse_int_in_range(payload: Dict[str, Any], field: str, errors: Dict[str, str], *, min_value: int, max_value: int) -> int:
    raw = payload.get(field)
    try:
        val = int(str(raw))
    except (TypeError, ValueError):
        add_error(errors, field, f"{field} must be a whole number")
        return 0
    if not min_value <= val <= max_value:
        add_error(errors, field, f"{field} must be between {min_value} and {max_value}")
    return val


_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def validate_email(value: str, errors: Dict[str, str], field: str = "email") -> str:
    value = _strip(value).lower()
    if not value:
        add_error(errors, field, "Email is required")
    elif not _EMAIL_RE.match(value):
        add_error(errors, field, "Email is not valid")
    return value


def validate_in(value: Any, allowed: Iterable[str], errors: Dict[str, str], field: str, *, required: bool = True) -> str:
    s = _strip(value)
    if not s:
        if required:
            add_error(errors, field, f"{field} is required")
        return s
    allowed = list(allowed)
    if s not in allowed:
        add_error(errors, field, f"{field} must be one of: {', '.join(allowed)}")
    return s


def parse_datetime(value: Any, errors: Dict[str, str], field: str, *, required: bool = False) -> Optional[datetime]:
    """Accept ISO dates or datetimes (or datetime objects); naive values are treated as UTC."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    raw = _strip(value)
    if not raw:
        if required:
            add_error(errors, field, f"{field} is required")
        return None
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        add_error(errors, field, f"{field} must be an ISO date or datetime")
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def parse_milestones(raw: Any, errors: Dict[str, str], field: str = "milestones") -> List[Dict[str, Any]]:
    """Validate a list of `{title, description, amount, due_date}` dicts."""
    if raw is None:
        return []
    if not isinstance(raw, list):
        add_error(errors, field, f"{field} must be a list")
        return []
    milestones: List[Dict[str, Any]] = []
    for i, item in enumerate(raw):
        if not isinstance(item, dict):
            add_error(errors, f"{field}[{i}]", "milestone must be an object")
            continue
        item_errors: Dict[str, str] = {}
        title = require_str(item, "title", item_errors, label="Milestone title", max_length=200)
        amount = parse_amount(item, "amount", item_errors)
        due = parse_datetime(item.get("due_date"), item_errors, "due_date")
        for key, message in item_errors.items():
            add_error(errors, f"{field}[{i}].{key}", message)
        milestones.append(
            {
                "title": title,
                "description": optional_str(item, "description"),
                "amount": amount,
                "due_date": due,
            }
        )
    return milestones
