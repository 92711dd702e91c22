"""Lookup and comparison of rows already stored in the sheet."""
import logging
from datetime import date
from typing import Any, Dict, Sequence

from processor.models import IndexedRow
from processor.row_mapper import parse_instant

logger = logging.getLogger(__name__)

# Row 1 holds the header, and sheet positions are 1-based
FIRST_DATA_ROW = 2


def build_row_index(rows: Sequence[Sequence[Any]]) -> Dict[str, IndexedRow]:
    """
    Map record ids to their sheet position and stored values.

    Args:
        rows: Sheet rows below the header, in sheet order

    Returns:
        Dictionary mapping record id to IndexedRow
    """
    index = {}
    for offset, row in enumerate(rows):
        if not row or not row[0]:
            logger.debug(f"Skipping row {offset + FIRST_DATA_ROW} without an id")
            continue
        index[row[0]] = IndexedRow(
            row_position=offset + FIRST_DATA_ROW,
            values=list(row)
        )
    return index


def _cells_equal(desired: Any, stored: Any) -> bool:
    if desired == stored:
        return True

    # Sheet returned a date object for an ISO string we wrote
    if isinstance(desired, str) and isinstance(stored, date):
        desired_instant = parse_instant(desired)
        if desired_instant is not None and desired_instant == parse_instant(stored):
            return True

    # Sheet stored the escaped text without the leading quote
    if isinstance(desired, str) and desired.startswith("'") and desired[1:] == stored:
        return True

    return False


def rows_equal(desired: Sequence[Any], stored: Sequence[Any]) -> bool:
    """
    Compare a projected row with a stored row over the projected columns.

    Stored cells beyond the projected length are ignored so columns a user
    added next to the synced ones never trigger an update. Stored rows
    shorter than the projection compare unequal.

    Args:
        desired: Freshly projected row
        stored: Row values read from the sheet

    Returns:
        True if no projected column differs, False otherwise
    """
    for position, desired_value in enumerate(desired):
        if position >= len(stored):
            return False
        if not _cells_equal(desired_value, stored[position]):
            return False
    return True
