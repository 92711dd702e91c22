"""Unit tests for the windowed sync driver."""
from datetime import timedelta

import pytest

from processor.models import SyncOutcome
from processor.row_mapper import EPOCH
from storage.checkpoint_store import CheckpointStore
from sync.config import DriverSettings, SyncConfig
from sync.driver import WindowedSyncDriver
from conftest import HEADER_ROW, DictPropertyStore, FakeCalendar, FakeSheet, make_record, utc

NOW = utc(2026, 2, 10, 12)


@pytest.fixture
def checkpoints():
    return CheckpointStore(DictPropertyStore())


@pytest.fixture
def config():
    return SyncConfig(calendar_id='cal1', spreadsheet_id='ss1', sheet_name='Sheet1')


def make_driver(checkpoints, calendars, sheets, settings=None, now=NOW):
    """Build a driver resolving calendars and sheets by calendar id."""
    return WindowedSyncDriver(
        checkpoints=checkpoints,
        source_factory=lambda cfg: calendars.get(cfg.calendar_id),
        store_factory=lambda cfg: sheets[cfg.calendar_id],
        settings=settings or DriverSettings(window_size=timedelta(days=7)),
        clock=lambda: now
    )


class TestSyncOne:
    """Test cases for syncing one config."""

    def test_explicit_range_syncs_and_checkpoints_end(self, checkpoints, config):
        """Test an explicit range writes rows and checkpoints the range end."""
        calendar = FakeCalendar([make_record('e1')])
        sheet = FakeSheet()
        driver = make_driver(checkpoints, {'cal1': calendar}, {'cal1': sheet})

        outcome = driver.sync_one(config, '2026-02-01', '2026-02-03')

        assert outcome.status == SyncOutcome.APPLIED
        assert outcome.windows == 1
        assert outcome.added == 1
        assert sheet.ids() == ['e1']
        assert checkpoints.get('cal1') == utc(2026, 2, 3)
        assert calendar.calls == [(utc(2026, 2, 1), utc(2026, 2, 3))]

    def test_slices_range_into_windows(self, checkpoints, config):
        """Test a long range is synced window by window."""
        calendar = FakeCalendar()
        driver = make_driver(checkpoints, {'cal1': calendar}, {'cal1': FakeSheet()})

        outcome = driver.sync_one(config, '2026-01-01T00:00:00Z', '2026-01-22T00:00:00Z')

        assert outcome.windows == 3
        assert calendar.calls == [
            (utc(2026, 1, 1), utc(2026, 1, 8)),
            (utc(2026, 1, 8), utc(2026, 1, 15)),
            (utc(2026, 1, 15), utc(2026, 1, 22))
        ]

    def test_merges_small_tail_into_last_window(self, checkpoints, config):
        """Test a remainder below the merge threshold extends the previous window."""
        calendar = FakeCalendar()
        driver = make_driver(checkpoints, {'cal1': calendar}, {'cal1': FakeSheet()})

        outcome = driver.sync_one(config, '2026-01-01T00:00:00Z', '2026-01-08T00:05:00Z')

        assert outcome.windows == 1
        assert calendar.calls == [(utc(2026, 1, 1), utc(2026, 1, 8, 0, 5))]
        assert checkpoints.get('cal1') == utc(2026, 1, 8, 0, 5)

    def test_keeps_tail_above_merge_threshold(self, checkpoints, config):
        calendar = FakeCalendar()
        driver = make_driver(checkpoints, {'cal1': calendar}, {'cal1': FakeSheet()})

        outcome = driver.sync_one(config, '2026-01-01T00:00:00Z', '2026-01-08T00:30:00Z')

        assert outcome.windows == 2
        assert calendar.calls[-1] == (utc(2026, 1, 8), utc(2026, 1, 8, 0, 30))

    def test_deletion_scoped_to_each_window(self, checkpoints, config, header_row):
        """Test a row outside the synced range survives even when missing upstream."""
        sheet = FakeSheet([
            header_row,
            ['e_old', 'Old', '2025-01-15T10:00:00.000Z', '2025-01-15T11:00:00.000Z', '', '', ''],
            ['e_gone', 'Gone', '2026-02-02T09:00:00.000Z', '2026-02-02T10:00:00.000Z', '', '', '']
        ])
        driver = make_driver(checkpoints, {'cal1': FakeCalendar([make_record('e1')])}, {'cal1': sheet})

        driver.sync_one(config, '2026-02-01', '2026-02-03')

        assert sheet.ids() == ['e_old', 'e1']

    def test_iteration_cap_stops_with_partial_progress(self, checkpoints, config):
        """Test the cap leaves a checkpoint the next run resumes from."""
        settings = DriverSettings(window_size=timedelta(days=1), max_iterations=3)
        calendar = FakeCalendar()
        driver = make_driver(checkpoints, {'cal1': calendar}, {'cal1': FakeSheet()}, settings)

        outcome = driver.sync_one(config, '2026-01-01', '2026-01-10')

        assert outcome.status == SyncOutcome.PARTIAL
        assert outcome.windows == 3
        assert checkpoints.get('cal1') == utc(2026, 1, 4)

        calendar.calls.clear()
        driver.sync_one(config, end='2026-01-10')

        assert calendar.calls[0][0] == utc(2026, 1, 4)

    def test_uses_checkpoint_when_no_start_given(self, checkpoints, config):
        """Test an old checkpoint is used as the range start without rewind."""
        checkpoints.set('cal1', utc(2025, 12, 1))
        calendar = FakeCalendar()
        settings = DriverSettings(window_size=timedelta(days=30))
        driver = make_driver(checkpoints, {'cal1': calendar}, {'cal1': FakeSheet()}, settings)

        driver.sync_one(config)

        assert calendar.calls[0][0] == utc(2025, 12, 1)
        assert checkpoints.get('cal1') == NOW

    def test_rewinds_recent_checkpoint_by_one_window(self, checkpoints, config):
        """Test a checkpoint within one window of now re-scans one window back."""
        checkpoints.set('cal1', NOW - timedelta(days=2))
        calendar = FakeCalendar()
        driver = make_driver(checkpoints, {'cal1': calendar}, {'cal1': FakeSheet()})

        driver.sync_one(config)

        assert calendar.calls[0][0] == NOW - timedelta(days=9)

    def test_rewind_threshold_is_configurable(self, checkpoints, config):
        checkpoints.set('cal1', NOW - timedelta(days=2))
        calendar = FakeCalendar()
        settings = DriverSettings(window_size=timedelta(days=7), rewind_threshold=timedelta(days=1))
        driver = make_driver(checkpoints, {'cal1': calendar}, {'cal1': FakeSheet()}, settings)

        driver.sync_one(config)

        assert calendar.calls[0][0] == NOW - timedelta(days=2)

    def test_explicit_start_skips_rewind(self, checkpoints, config):
        checkpoints.set('cal1', NOW - timedelta(days=2))
        calendar = FakeCalendar()
        driver = make_driver(checkpoints, {'cal1': calendar}, {'cal1': FakeSheet()})

        driver.sync_one(config, start=NOW - timedelta(days=1))

        assert calendar.calls == [(NOW - timedelta(days=1), NOW)]

    def test_future_checkpoint_resets_to_epoch(self, checkpoints, config):
        """Test a checkpoint after the range end is cleared and re-derived."""
        checkpoints.set('cal1', utc(2030, 1, 1))
        calendar = FakeCalendar()
        settings = DriverSettings(window_size=timedelta(days=365 * 60))
        driver = make_driver(checkpoints, {'cal1': calendar}, {'cal1': FakeSheet()}, settings)

        outcome = driver.sync_one(config)

        assert calendar.calls == [(EPOCH, NOW)]
        assert outcome.checkpoint == NOW
        assert checkpoints.get('cal1') == NOW

    def test_explicit_start_after_end_is_skipped(self, checkpoints, config):
        calendar = FakeCalendar()
        driver = make_driver(checkpoints, {'cal1': calendar}, {'cal1': FakeSheet()})

        outcome = driver.sync_one(config, '2026-02-05', '2026-02-01')

        assert outcome.status == SyncOutcome.SKIPPED
        assert calendar.calls == []

    def test_unknown_calendar_is_skipped(self, checkpoints, config):
        driver = make_driver(checkpoints, {}, {'cal1': FakeSheet()})

        outcome = driver.sync_one(config)

        assert outcome.status == SyncOutcome.SKIPPED
        assert outcome.reason == 'calendar not found'

    def test_missing_spreadsheet_is_skipped(self, checkpoints):
        """Test a config without a spreadsheet never reaches the calendar or the sheet."""
        calendar = FakeCalendar([make_record('e1')])
        driver = WindowedSyncDriver(
            checkpoints=checkpoints,
            source_factory=lambda cfg: calendar,
            store_factory=lambda cfg: pytest.fail('store requested without a spreadsheet'),
            clock=lambda: NOW
        )

        outcome = driver.sync_one(SyncConfig(calendar_id='cal1'))

        assert outcome.status == SyncOutcome.SKIPPED
        assert outcome.reason == 'spreadsheet not configured'
        assert calendar.calls == []
        assert checkpoints.get('cal1') == EPOCH

    def test_invalid_explicit_timestamp_raises(self, checkpoints, config):
        driver = make_driver(checkpoints, {'cal1': FakeCalendar()}, {'cal1': FakeSheet()})
        with pytest.raises(ValueError):
            driver.sync_one(config, 'yesterday')

    def test_source_error_propagates_without_checkpoint(self, checkpoints, config):
        """Test provider errors reach the caller and leave the checkpoint alone."""
        checkpoints.set('cal1', utc(2025, 1, 1))
        calendar = FakeCalendar(error=ConnectionError('calendar unavailable'))
        driver = make_driver(checkpoints, {'cal1': calendar}, {'cal1': FakeSheet()})

        with pytest.raises(ConnectionError):
            driver.sync_one(config)

        assert checkpoints.get('cal1') == utc(2025, 1, 1)

    def test_failed_window_keeps_previous_window_checkpoint(self, checkpoints, config):
        """Test a failure mid-range keeps the checkpoint of the last applied window."""
        class FlakyCalendar(FakeCalendar):
            def get_records(self, start, end):
                if self.calls:
                    raise TimeoutError('timed out')
                return super().get_records(start, end)

        driver = make_driver(checkpoints, {'cal1': FlakyCalendar()}, {'cal1': FakeSheet()})

        with pytest.raises(TimeoutError):
            driver.sync_one(config, '2026-01-01', '2026-01-20')

        assert checkpoints.get('cal1') == utc(2026, 1, 8)

    def test_checkpoint_never_decreases_across_runs(self, checkpoints, config):
        """Test repeated runs without an explicit end keep the checkpoint monotonic."""
        checkpoints.set('cal1', utc(2025, 12, 1))
        clock = {'now': utc(2026, 1, 1)}
        driver = WindowedSyncDriver(
            checkpoints=checkpoints,
            source_factory=lambda cfg: FakeCalendar([make_record('e1')]),
            store_factory=lambda cfg: FakeSheet(),
            settings=DriverSettings(window_size=timedelta(days=30)),
            clock=lambda: clock['now']
        )

        seen = []
        for hours in [0, 1, 5, 48, 24 * 40]:
            clock['now'] = utc(2026, 1, 1) + timedelta(hours=hours)
            driver.sync_one(config)
            seen.append(checkpoints.get('cal1'))

        assert seen == sorted(seen)
        assert seen[-1] == clock['now']


class TestSyncAll:
    """Test cases for batch syncing."""

    def test_syncs_every_config(self, checkpoints, header_row):
        configs = [
            SyncConfig(calendar_id='cal1', spreadsheet_id='ss1', sheet_name='SheetA'),
            SyncConfig(calendar_id='cal2', spreadsheet_id='ss1', sheet_name='SheetB')
        ]
        sheets = {'cal1': FakeSheet([header_row]), 'cal2': FakeSheet([header_row])}
        calendars = {
            'cal1': FakeCalendar([make_record('e1')]),
            'cal2': FakeCalendar([make_record('e2')])
        }
        driver = make_driver(checkpoints, calendars, sheets)

        outcomes = driver.sync_all(configs, '2026-02-01', '2026-02-03')

        assert [o.status for o in outcomes] == [SyncOutcome.APPLIED, SyncOutcome.APPLIED]
        assert sheets['cal1'].ids() == ['e1']
        assert sheets['cal2'].ids() == ['e2']

    def test_failure_does_not_block_other_configs(self, checkpoints):
        """Test one failing calendar is reported and the rest still sync."""
        configs = [
            SyncConfig(calendar_id='broken', spreadsheet_id='ss1'),
            SyncConfig(calendar_id='cal2', spreadsheet_id='ss1')
        ]
        sheets = {'broken': FakeSheet(), 'cal2': FakeSheet()}
        calendars = {
            'broken': FakeCalendar(error=RuntimeError('quota exceeded')),
            'cal2': FakeCalendar([make_record('e2')])
        }
        driver = make_driver(checkpoints, calendars, sheets)

        outcomes = driver.sync_all(configs, '2026-02-01', '2026-02-03')

        assert outcomes[0].status == SyncOutcome.FAILED
        assert 'quota exceeded' in outcomes[0].reason
        assert outcomes[1].status == SyncOutcome.APPLIED
        assert sheets['cal2'].ids() == ['e2']
        assert checkpoints.get('broken') == EPOCH
        assert checkpoints.get('cal2') == utc(2026, 2, 3)


class TestFullResync:
    """Test cases for full resync."""

    def test_clears_rows_and_checkpoint_then_syncs(self, checkpoints, config, header_row):
        """Test a full resync rebuilds the sheet from the epoch."""
        checkpoints.set('cal1', utc(2025, 1, 1))
        sheet = FakeSheet([
            header_row,
            ['stale', 'Stale', '2001-01-01T00:00:00.000Z', '2001-01-01T01:00:00.000Z', '', '', ''],
            ['', 'human row']
        ])
        calendar = FakeCalendar([make_record('e3')])
        settings = DriverSettings(window_size=timedelta(days=365))
        driver = make_driver(checkpoints, {'cal1': calendar}, {'cal1': sheet}, settings)

        outcomes = driver.full_resync(0, [config])

        assert outcomes[0].status == SyncOutcome.APPLIED
        assert sheet.rows[0] == HEADER_ROW
        assert sheet.ids() == ['e3']
        assert ('delete_rows', 2, 2) in sheet.operations
        assert calendar.calls[0][0] == EPOCH
        assert checkpoints.get('cal1') == NOW

    def test_accepts_config_object(self, checkpoints, config):
        sheet = FakeSheet()
        driver = make_driver(
            checkpoints,
            {'cal1': FakeCalendar([make_record('e1')])},
            {'cal1': sheet},
            DriverSettings(window_size=timedelta(days=3650))
        )

        driver.full_resync(config)

        assert sheet.ids() == ['e1']

    def test_missing_spreadsheet_keeps_checkpoint(self, checkpoints):
        checkpoints.set('cal1', utc(2025, 1, 1))
        driver = make_driver(checkpoints, {'cal1': FakeCalendar()}, {})

        outcomes = driver.full_resync(0, [SyncConfig(calendar_id='cal1')])

        assert outcomes[0].status == SyncOutcome.SKIPPED
        assert outcomes[0].reason == 'spreadsheet not configured'
        assert checkpoints.get('cal1') == utc(2025, 1, 1)

    def test_invalid_index_raises(self, checkpoints, config):
        driver = make_driver(checkpoints, {}, {})
        with pytest.raises(IndexError):
            driver.full_resync(3, [config])

    def test_all_configs_isolates_failures(self, checkpoints):
        configs = [
            SyncConfig(calendar_id='broken', spreadsheet_id='ss1'),
            SyncConfig(calendar_id='cal2', spreadsheet_id='ss1')
        ]
        calendars = {
            'broken': FakeCalendar(error=RuntimeError('boom')),
            'cal2': FakeCalendar([make_record('e2')])
        }
        sheets = {'broken': FakeSheet(), 'cal2': FakeSheet()}
        driver = make_driver(
            checkpoints, calendars, sheets, DriverSettings(window_size=timedelta(days=3650))
        )

        outcomes = driver.full_resync(None, configs)

        assert [o.status for o in outcomes] == [SyncOutcome.FAILED, SyncOutcome.APPLIED]
        assert sheets['cal2'].ids() == ['e2']
