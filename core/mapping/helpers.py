"""Value formatting helpers shared by the mappers and sync handlers."""

import re
from datetime import date, datetime, timezone
from typing import Any, Iterable, Iterator, List, Optional, TypeVar

T = TypeVar("T")

ERP_DATE_FORMAT = "%Y-%m-%d"
PRICE_DECIMALS = 4
CARD_CODE_WIDTH = 6

_ITEM_CODE_INVALID = re.compile(r"[^a-zA-Z0-9\-_.]")
_JSON_DATE = re.compile(r"/Date\((-?\d+)(?:[+-]\d{4})?\)/")
_TAGS = re.compile(r"<[^>]+>")


def sanitize_item_code(item_code: str) -> str:
    """Keep only characters valid in an ERP item code (alphanumerics and ``-_.``)."""
    return _ITEM_CODE_INVALID.sub("", item_code or "")


def format_price(price: Any) -> float:
    """Round a price to 4 decimal places."""
    return round(float(price or 0), PRICE_DECIMALS)


def format_date(value: Any) -> str:
    """Format a date, datetime or unix timestamp as ``YYYY-MM-DD``.

    Strings are parsed as ISO dates. Anything unparseable yields today.
    """
    if isinstance(value, datetime):
        return value.strftime(ERP_DATE_FORMAT)
    if isinstance(value, date):
        return value.strftime(ERP_DATE_FORMAT)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc).strftime(ERP_DATE_FORMAT)
    if isinstance(value, str) and value:
        parsed = parse_erp_date(value)
        if parsed:
            return parsed.strftime(ERP_DATE_FORMAT)
    return datetime.utcnow().strftime(ERP_DATE_FORMAT)


def parse_erp_date(value: Optional[str]) -> Optional[datetime]:
    """Parse an ERP date: ``/Date(1700000000000)/`` or ISO 8601.

    Returns:
        Parsed datetime, or None if the value is empty or unrecognised
    """
    if not value:
        return None
    match = _JSON_DATE.search(value)
    if match:
        return datetime.fromtimestamp(int(match.group(1)) / 1000, tz=timezone.utc)
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def generate_card_code(local_id: int, prefix: str = "WEB") -> str:
    """Deterministic partner code: prefix plus a zero-padded local ID.

    >>> generate_card_code(42)
    'WEB000042'
    """
    return f"{prefix}{local_id:0{CARD_CODE_WIDTH}d}"


def strip_tags(value: Any) -> str:
    return _TAGS.sub("", str(value)).strip()


def chunked(items: Iterable[T], size: int) -> Iterator[List[T]]:
    """Yield consecutive lists of at most ``size`` items."""
    if size < 1:
        raise ValueError("Chunk size must be at least 1")
    batch: List[T] = []
    for item in items:
        batch.append(item)
        if len(batch) == size:
            yield batch
            batch = []
    if batch:
        yield batch
