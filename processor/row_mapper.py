"""Projection of calendar records into sheet rows."""
import logging
import re
from datetime import date, datetime, timezone
from typing import Any, List, Optional

from processor.models import SourceRecord

logger = logging.getLogger(__name__)

HEADER = ['id', 'title', 'start', 'end', 'description', 'location', 'attendees']

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Leading control/whitespace characters followed by a formula metacharacter
FORMULA_PATTERN = re.compile(r'^[\x00-\x20]*[=+\-@]')


def sanitize_value(value: Any) -> Any:
    """
    Escape a value that a spreadsheet would evaluate as a formula.

    Args:
        value: Cell value about to be written

    Returns:
        The value prefixed with a single quote if it is a string starting
        with '=', '+', '-' or '@' (optionally after control or whitespace
        characters), otherwise the value unchanged
    """
    if isinstance(value, str) and FORMULA_PATTERN.match(value):
        return "'" + value
    return value


def to_utc(instant: datetime) -> datetime:
    """Return an aware UTC datetime, treating naive values as UTC."""
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


def format_instant(instant: datetime) -> str:
    """
    Format an instant as ISO 8601 with millisecond precision and a Z suffix.

    Args:
        instant: Datetime to format

    Returns:
        String such as '2026-02-02T10:00:00.000Z'
    """
    instant = to_utc(instant)
    return instant.strftime('%Y-%m-%dT%H:%M:%S') + f'.{instant.microsecond // 1000:03d}Z'


def parse_instant(value: Any) -> Optional[datetime]:
    """
    Parse a cell value into an aware UTC datetime.

    Args:
        value: Datetime, date, or ISO 8601 string

    Returns:
        UTC datetime or None if the value is not a valid instant
    """
    if isinstance(value, datetime):
        return to_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if not isinstance(value, str) or not value.strip():
        return None

    text = value.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    try:
        return to_utc(datetime.fromisoformat(text))
    except ValueError:
        return None


def record_to_row(record: SourceRecord) -> List[Any]:
    """
    Project a calendar record into the sheet's column layout.

    Optional text fields default to an empty string and participants to an
    empty list; user-controlled text is sanitized before it reaches a cell.

    Args:
        record: SourceRecord from a source provider

    Returns:
        Row as [id, title, start, end, description, location, attendees]
    """
    participants = record.participants or []
    return [
        record.record_id,
        sanitize_value(record.title or ''),
        format_instant(record.start),
        format_instant(record.end),
        sanitize_value(record.description or ''),
        sanitize_value(record.location or ''),
        ','.join(participants)
    ]
