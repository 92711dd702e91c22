"""Reconciliation of calendar records against sheet rows."""
import logging
from typing import Any, List, Sequence

from processor.models import ReconcilePlan, SourceRecord, SyncResult, SyncWindow
from processor.row_index import build_row_index, rows_equal
from processor.row_mapper import HEADER, parse_instant, record_to_row

logger = logging.getLogger(__name__)

# Leading header labels that identify an existing header row
HEADER_KEY_COLUMNS = 4


def ensure_header(store) -> None:
    """
    Make sure row 1 of the sheet holds the column header.

    An empty sheet gets the header written in place. When row 1 holds
    anything else, a row is inserted above it so existing data shifts down
    intact. A header whose key columns match but whose remaining labels are
    missing is completed in place.

    Args:
        store: Tabular store to inspect and fix
    """
    data = store.read_all()

    if not data:
        logger.info("Sheet is empty, writing header row")
        store.write_range(1, 1, list(HEADER))
        return

    first_row = list(data[0] or [])
    if first_row[:HEADER_KEY_COLUMNS] != HEADER[:HEADER_KEY_COLUMNS]:
        logger.info("First row is not a header, inserting header row above it")
        store.insert_row_before(1)
        store.write_range(1, 1, list(HEADER))
    elif first_row[:len(HEADER)] != HEADER:
        logger.info("Header row is incomplete, rewriting column labels")
        store.write_range(1, 1, list(HEADER))


def _is_deletable(values: Sequence[Any], window: SyncWindow) -> bool:
    row_start = parse_instant(values[2]) if len(values) > 2 else None
    row_end = parse_instant(values[3]) if len(values) > 3 else None
    if row_start is None or row_end is None:
        return False
    return window.contains(row_start)


def plan_reconciliation(
    records: Sequence[SourceRecord],
    existing_rows: Sequence[Sequence[Any]],
    window: SyncWindow
) -> ReconcilePlan:
    """
    Diff desired records against the rows below the header.

    Args:
        records: Records the source reports for the window
        existing_rows: Current sheet rows, header excluded
        window: Window the records were fetched for

    Returns:
        ReconcilePlan with deletes in descending row position
    """
    desired = {}
    for record in records:
        desired[record.record_id] = record_to_row(record)

    existing = build_row_index(existing_rows)

    inserts = []
    updates = []
    for record_id, row in desired.items():
        indexed = existing.get(record_id)
        if indexed is None:
            inserts.append(row)
        elif not rows_equal(row, indexed.values):
            logger.debug(f"Row {indexed.row_position} for {record_id} changed")
            updates.append((indexed.row_position, row))

    deletes = []
    for record_id, indexed in existing.items():
        if record_id in desired:
            continue
        if _is_deletable(indexed.values, window):
            deletes.append(indexed.row_position)
        else:
            logger.debug(
                f"Preserving row {indexed.row_position} for {record_id}: "
                f"outside sync window or without valid dates"
            )

    return ReconcilePlan(
        inserts=tuple(inserts),
        updates=tuple(updates),
        deletes=tuple(sorted(deletes, reverse=True))
    )


def apply_plan(store, plan: ReconcilePlan) -> SyncResult:
    """
    Write a reconcile plan to the store.

    Updates overwrite only the projected columns so trailing user columns
    survive. Deletions run bottom-up after inserts and updates.

    Args:
        store: Tabular store to mutate
        plan: Plan computed by plan_reconciliation

    Returns:
        SyncResult with counts of added, updated, deleted rows
    """
    for row_position, row in plan.updates:
        store.write_range(row_position, 1, row)

    if plan.inserts:
        store.append_rows([list(row) for row in plan.inserts])

    for row_position in plan.deletes:
        store.delete_row(row_position)

    return SyncResult(
        added=len(plan.inserts),
        updated=len(plan.updates),
        deleted=len(plan.deletes)
    )


def reconcile(records: Sequence[SourceRecord], store, window: SyncWindow) -> SyncResult:
    """
    Bring the sheet in line with the records of one window.

    Args:
        records: Records the source reports for the window
        store: Tabular store to reconcile
        window: Window scoping which missing records may be deleted

    Returns:
        SyncResult with counts of added, updated, deleted rows
    """
    ensure_header(store)

    data: List[List[Any]] = store.read_all()
    body = data[1:]
    logger.info(
        f"Reconciling {len(records)} records against {len(body)} existing rows "
        f"for window {window.start.isoformat()} - {window.end.isoformat()}"
    )

    plan = plan_reconciliation(records, body, window)
    logger.info(
        f"Sync plan: {len(plan.inserts)} to add, "
        f"{len(plan.updates)} to update, "
        f"{len(plan.deletes)} to delete"
    )

    if plan.is_empty:
        return SyncResult(added=0, updated=0, deleted=0)
    return apply_plan(store, plan)
