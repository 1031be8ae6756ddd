"""
Free-text search over inventory records, and the date renderings it uses.
"""
from __future__ import annotations

from collections.abc import Iterable

from .models import InventoryRecord, parse_timestamp

DEFAULT_DATE_FORMAT = "%d/%m/%Y"
DEFAULT_DATETIME_FORMAT = "%d/%m/%Y, %H:%M"


def format_datetime(value: str, fmt: str = DEFAULT_DATETIME_FORMAT) -> str:
    """Render a stored timestamp in local time, or return it unchanged if unparseable."""
    try:
        return parse_timestamp(value).astimezone().strftime(fmt)
    except (ValueError, OverflowError, OSError):
        return value


def format_date(value: str, fmt: str = DEFAULT_DATE_FORMAT) -> str:
    """Render only the date part of a stored timestamp."""
    return format_datetime(value, fmt)


def matches(record: InventoryRecord, term: str, date_format: str = DEFAULT_DATE_FORMAT) -> bool:
    """Check if the lower-cased term occurs in any searchable field of record."""
    return (
        term in record.name.lower()
        or term in record.description.lower()
        or term in record.location.lower()
        or term in record.user.lower()
        or term in str(record.quantity)
        or term in format_date(record.date, date_format).lower()
    )


def filter_records(
    records: Iterable[InventoryRecord],
    query: str | None,
    date_format: str = DEFAULT_DATE_FORMAT,
) -> list[InventoryRecord]:
    """Return the records matching query, in their original order.

    An empty or whitespace-only query matches everything.
    """
    records = list(records)
    if not query or not query.strip():
        return records
    term = query.lower()
    return [record for record in records if matches(record, term, date_format)]
