"""Request payload parsing helpers."""
from __future__ import annotations

import re
from datetime import date, datetime
from typing import Iterable

from werkzeug.exceptions import BadRequest

HHMM_PATTERN = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")

CARD_FIELDS = ("card_number", "card_holder_name", "expiry_date", "cvv")


def require_fields(payload: dict, *names: str) -> None:
    missing = [name for name in names if payload.get(name) in (None, "")]
    if missing:
        raise BadRequest(f"{', '.join(missing)} {'is' if len(missing) == 1 else 'are'} required")


def parse_date(value: object, field: str = "date") -> date:
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    try:
        return datetime.strptime(str(value), "%Y-%m-%d").date()
    except (TypeError, ValueError):
        raise BadRequest(f"{field} must be in YYYY-MM-DD format") from None


def parse_hhmm(value: object, field: str = "start_time") -> str:
    """Validate a 24-hour ``HH:MM`` time and return it zero-padded."""
    match = HHMM_PATTERN.match(str(value or "").strip())
    if not match:
        raise BadRequest(f"Invalid {field} format. Use HH:MM format")
    return f"{int(match.group(1)):02d}:{match.group(2)}"


def parse_choice(value: object, choices: Iterable[str], field: str) -> str:
    choices = tuple(choices)
    if value not in choices:
        raise BadRequest(f"{field} must be one of: {', '.join(choices)}")
    return value


def parse_positive_int(value: object, field: str, minimum: int = 1) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise BadRequest(f"{field} must be an integer") from None
    if isinstance(value, bool) or number < minimum:
        raise BadRequest(f"{field} must be at least {minimum}")
    return number


def validate_card_details(method: str, payload: dict) -> None:
    """Card methods need the full set of card fields; cash needs none."""
    if method == "cash":
        return
    if not all(payload.get(name) for name in CARD_FIELDS):
        raise BadRequest("Card details are required for card payments")
    digits = re.sub(r"\D", "", str(payload["card_number"]))
    if len(digits) < 12:
        raise BadRequest("card_number is not a valid card number")
