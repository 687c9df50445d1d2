from __future__ import annotations

import json
import math
import re
import secrets
import string
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_RE = re.compile(r"^\d{10}$")

_SHORT_CODE_ALPHABET = string.ascii_uppercase + string.digits


def utcnow() -> datetime:
    """Naive UTC timestamp (all DateTime columns are stored without tz)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def full_name(first_name: str | None, middle_name: str | None, last_name: str | None) -> str:
    return " ".join(part.strip() for part in (first_name, middle_name, last_name) if part and part.strip())


def gen_short_code(text: str, length: int = 6) -> str:
    """
    Initials of `text` followed by random upper-case alphanumerics, e.g. "Green Valley School" -> "GS7K2Q".
    """
    words = [w for w in (text or "").split(" ") if w]
    if not words:
        initials = "X0"
    elif len(words) == 1:
        initials = (words[0][0] + (words[0][1] if len(words[0]) > 1 else "X")).upper()
    else:
        initials = (words[0][0] + words[-1][0]).upper()
    suffix_len = max(length - 2, 1)
    return initials + "".join(secrets.choice(_SHORT_CODE_ALPHABET) for _ in range(suffix_len))


def parse_date(s: str | None) -> date | None:
    """Parse YYYY-MM-DD (or a full ISO timestamp) into a date."""
    if not s:
        return None
    s = str(s).strip()
    if not s:
        return None
    return parse_datetime(s).date()


def parse_datetime(s: str | None) -> datetime | None:
    """Parse an ISO date/datetime string into a naive UTC datetime. Raises ValueError on garbage."""
    if not s:
        return None
    s = str(s).strip()
    if not s:
        return None
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def parse_amount(raw: Any) -> Decimal | None:
    """Parse a money amount; returns None when missing or not a number."""
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        return None
    if not value.is_finite():
        return None
    try:
        return value.quantize(Decimal("0.01"))
    except InvalidOperation:
        # more digits than the decimal context can hold
        return None


def money(value: Decimal | float | int | None) -> float:
    if value is None:
        return 0.0
    return float(value)


def iso(value: datetime | date | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def parse_int_arg(raw: str | None, default: int, *, minimum: int = 1, maximum: int | None = None) -> int:
    try:
        value = int(raw) if raw not in (None, "") else default
    except (TypeError, ValueError):
        value = default
    value = max(value, minimum)
    if maximum is not None:
        value = min(value, maximum)
    return value


def pagination_meta(*, page: int, limit: int, total: int) -> dict:
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "currentPage": page,
        "totalPages": total_pages,
        "totalCount": total,
        "limit": limit,
        "hasNextPage": page < total_pages,
        "hasPrevPage": page > 1,
    }


def dump_json(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value, sort_keys=True, default=str)


def load_json(raw: str | None) -> Any:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return None
