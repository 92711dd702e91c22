"""Shared fakes for sync tests."""
import copy
from datetime import datetime, timezone

import pytest

from processor.models import SourceRecord

HEADER_ROW = ['id', 'title', 'start', 'end', 'description', 'location', 'attendees']


class FakeSheet:
    """In-memory tabular store recording every mutation."""

    def __init__(self, rows=None):
        self.rows = [list(row) for row in rows or []]
        self.operations = []

    def read_all(self):
        # Padded to the schema width, as the Sheets API store reports rows
        width = len(HEADER_ROW)
        return [copy.deepcopy(row) + [''] * (width - len(row)) for row in self.rows]

    def append_rows(self, rows):
        self.operations.append(('append', len(rows)))
        self.rows.extend(list(row) for row in rows)

    def write_range(self, row_position, col_start, values):
        self.operations.append(('write', row_position))
        while len(self.rows) < row_position:
            self.rows.append([])
        row = self.rows[row_position - 1]
        last = col_start - 1 + len(values)
        if len(row) < last:
            row.extend([''] * (last - len(row)))
        row[col_start - 1:last] = values

    def delete_row(self, row_position):
        self.operations.append(('delete', row_position))
        del self.rows[row_position - 1]

    def delete_rows(self, row_position, count):
        self.operations.append(('delete_rows', row_position, count))
        del self.rows[row_position - 1:row_position - 1 + count]

    def insert_row_before(self, row_position):
        self.operations.append(('insert', row_position))
        self.rows.insert(row_position - 1, [])

    def ids(self):
        return [row[0] for row in self.rows[1:] if row]


class FakeCalendar:
    """Source provider returning records whose start falls in the range."""

    def __init__(self, records=None, error=None):
        self.records = list(records or [])
        self.error = error
        self.calls = []

    def get_records(self, start, end):
        self.calls.append((start, end))
        if self.error:
            raise self.error
        return [r for r in self.records if start <= r.start <= end]


class DictPropertyStore:
    """Property store kept in a dict."""

    def __init__(self, values=None):
        self.values = dict(values or {})

    def get_property(self, key):
        return self.values.get(key)

    def set_property(self, key, value):
        self.values[key] = value

    def delete_property(self, key):
        self.values.pop(key, None)


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def make_record(record_id, title='Meeting', start=None, end=None, **kwargs):
    start = start or utc(2026, 2, 2, 10)
    end = end or utc(2026, 2, 2, 11)
    return SourceRecord(record_id=record_id, title=title, start=start, end=end, **kwargs)


@pytest.fixture
def header_row():
    return list(HEADER_ROW)


@pytest.fixture
def property_store():
    return DictPropertyStore()
