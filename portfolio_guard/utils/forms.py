"""Parsing helpers for optional form and query fields."""
from datetime import date, datetime
from typing import Optional

from portfolio_guard.core.errors import ValidationError
from portfolio_guard.utils.datetime import as_naive_utc


def parse_optional_datetime(value: Optional[str], field: str) -> Optional[datetime]:
    """
    Parse an ISO 8601 timestamp from a form field.

    Empty values mean "not set". Aware values are converted to naive UTC.

    Raises:
        ValidationError: If the value is not ISO 8601
    """
    if value is None or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return as_naive_utc(datetime.fromisoformat(text))
    except ValueError:
        raise ValidationError(f"Invalid date: {value}", errors={field: "Must be an ISO 8601 date"})


def parse_optional_date(value: Optional[str], field: str) -> Optional[date]:
    if value is None or not value.strip():
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        raise ValidationError(f"Invalid date: {value}", errors={field: "Must be a YYYY-MM-DD date"})


def parse_optional_bool(value: Optional[str], field: str) -> Optional[bool]:
    """Parse "true"/"false" (also 1/0, yes/no, on/off) from a form field."""
    if value is None or not value.strip():
        return None
    text = value.strip().lower()
    if text in ("true", "1", "yes", "on"):
        return True
    if text in ("false", "0", "no", "off"):
        return False
    raise ValidationError(f"Invalid boolean: {value}", errors={field: "Must be true or false"})
