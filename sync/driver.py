"""Windowed, checkpointed sync of calendars into sheets."""
import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence, Union

from processor.models import SyncOutcome, SyncWindow
from processor.row_mapper import EPOCH, parse_instant, to_utc
from sync.config import DriverSettings, SyncConfig
from sync.reconciler import ensure_header, reconcile

logger = logging.getLogger(__name__)

InstantArg = Union[str, datetime, None]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _coerce_instant(value: InstantArg, name: str) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_utc(value)
    instant = parse_instant(value)
    if instant is None:
        raise ValueError(f"Invalid {name} timestamp: {value!r}")
    return instant


class WindowedSyncDriver:
    """
    Sync calendars into sheets one bounded time window at a time.

    The checkpoint is written after every applied window, so a run cut
    short by the host resumes where the last window ended.
    """

    def __init__(
        self,
        checkpoints,
        source_factory: Callable[[SyncConfig], object],
        store_factory: Callable[[SyncConfig], object],
        settings: Optional[DriverSettings] = None,
        clock: Callable[[], datetime] = _utc_now
    ):
        """
        Args:
            checkpoints: CheckpointStore for last synced upper bounds
            source_factory: Returns the source provider for a config, or
                None if the calendar does not exist
            store_factory: Returns the tabular store for a config
            settings: Window sizing and limits
            clock: Returns the current aware UTC datetime
        """
        self.checkpoints = checkpoints
        self.source_factory = source_factory
        self.store_factory = store_factory
        self.settings = settings or DriverSettings()
        self.clock = clock

    def sync_one(
        self,
        config: SyncConfig,
        start: InstantArg = None,
        end: InstantArg = None
    ) -> SyncOutcome:
        """
        Sync one calendar into its sheet.

        Args:
            config: SyncConfig to run
            start: Explicit range start; defaults to the checkpoint
            end: Explicit range end; defaults to now

        Returns:
            SyncOutcome describing what was applied

        Raises:
            Exception: Errors from the calendar or sheet propagate unchanged
        """
        if not config.spreadsheet_id:
            return self._unconfigured(config)

        source = self.source_factory(config)
        if source is None:
            logger.warning(f"Calendar {config.calendar_id or 'default'} not found, skipping")
            return SyncOutcome(
                status=SyncOutcome.SKIPPED,
                source_id=config.calendar_id,
                reason='calendar not found'
            )
        store = self.store_factory(config)
        return self._sync(config, source, store, start, end)

    def sync_all(
        self,
        configs: Sequence[SyncConfig],
        start: InstantArg = None,
        end: InstantArg = None
    ) -> List[SyncOutcome]:
        """
        Sync every config, isolating failures per config.

        A failed config keeps its previous checkpoint and is retried on the
        next invocation.

        Args:
            configs: SyncConfig objects to run
            start: Explicit range start applied to every config
            end: Explicit range end applied to every config

        Returns:
            One SyncOutcome per config, in config order
        """
        return [
            self._run_isolated(config, lambda cfg=config: self.sync_one(cfg, start, end))
            for config in configs
        ]

    def full_resync(
        self,
        target: Union[int, SyncConfig, None] = None,
        configs: Optional[Sequence[SyncConfig]] = None
    ) -> List[SyncOutcome]:
        """
        Clear checkpoint and synced rows, then sync from the epoch to now.

        Args:
            target: Index into configs, a SyncConfig, or None for all configs
            configs: Available configs, required when target is an index
                or None

        Returns:
            SyncOutcome list for the resynced configs

        Raises:
            IndexError: If target is an index outside configs
        """
        if isinstance(target, int):
            if not configs or not 0 <= target < len(configs):
                raise IndexError(f"No sync config at index {target}")
            return [self._full_resync_one(configs[target])]
        if target is not None:
            return [self._full_resync_one(target)]

        return [
            self._run_isolated(config, lambda cfg=config: self._full_resync_one(cfg))
            for config in configs or []
        ]

    def _run_isolated(self, config: SyncConfig, run: Callable[[], SyncOutcome]) -> SyncOutcome:
        try:
            return run()
        except Exception as e:
            logger.error(
                f"Sync failed for calendar {config.calendar_id or 'default'} "
                f"into sheet {config.sheet_name}: {e}",
                extra={'error_type': type(e).__name__},
                exc_info=True
            )
            return SyncOutcome(
                status=SyncOutcome.FAILED,
                source_id=config.calendar_id,
                reason=f"{type(e).__name__}: {e}"
            )

    def _full_resync_one(self, config: SyncConfig) -> SyncOutcome:
        if not config.spreadsheet_id:
            return self._unconfigured(config)

        source = self.source_factory(config)
        if source is None:
            logger.warning(f"Calendar {config.calendar_id or 'default'} not found, skipping resync")
            return SyncOutcome(
                status=SyncOutcome.SKIPPED,
                source_id=config.calendar_id,
                reason='calendar not found'
            )

        store = self.store_factory(config)
        self.checkpoints.clear(config.calendar_id)

        ensure_header(store)
        data_rows = len(store.read_all()) - 1
        if data_rows > 0:
            logger.info(f"Clearing {data_rows} rows from sheet {config.sheet_name}")
            store.delete_rows(2, data_rows)

        return self._sync(config, source, store, EPOCH, self.clock())

    def _unconfigured(self, config: SyncConfig) -> SyncOutcome:
        logger.warning(f"No spreadsheet configured for calendar {config.calendar_id or 'default'}, skipping")
        return SyncOutcome(
            status=SyncOutcome.SKIPPED,
            source_id=config.calendar_id,
            reason='spreadsheet not configured'
        )

    def _determine_range(
        self,
        config: SyncConfig,
        start: InstantArg,
        end: InstantArg
    ) -> Optional[SyncWindow]:
        now = self.clock()
        explicit_start = _coerce_instant(start, 'start')
        range_end = _coerce_instant(end, 'end') or now

        if explicit_start is not None:
            if explicit_start > range_end:
                return None
            return SyncWindow(explicit_start, range_end)

        range_start = self.checkpoints.get(config.calendar_id)
        if range_start > range_end:
            logger.warning(
                f"Checkpoint {range_start.isoformat()} is after range end "
                f"{range_end.isoformat()}, resetting"
            )
            self.checkpoints.clear(config.calendar_id)
            range_start = self.checkpoints.get(config.calendar_id)

        # Re-scan one window behind a recent checkpoint to catch late edits
        if now - range_start <= self.settings.effective_rewind_threshold:
            range_start = max(EPOCH, range_start - self.settings.window_size)

        return SyncWindow(range_start, range_end)

    def _sync(self, config: SyncConfig, source, store, start: InstantArg, end: InstantArg) -> SyncOutcome:
        source_id = config.calendar_id
        sync_range = self._determine_range(config, start, end)
        if sync_range is None:
            logger.warning(f"Start {start} is after end {end}, nothing to sync")
            return SyncOutcome(
                status=SyncOutcome.SKIPPED,
                source_id=source_id,
                reason='start is after end'
            )

        logger.info(
            f"Syncing calendar {source_id or 'default'} into sheet {config.sheet_name} "
            f"from {sync_range.start.isoformat()} to {sync_range.end.isoformat()}"
        )

        settings = self.settings
        outcome = SyncOutcome(status=SyncOutcome.APPLIED, source_id=source_id)
        current = sync_range.start

        while current < sync_range.end:
            if outcome.windows >= settings.max_iterations:
                logger.warning(
                    f"Reached {settings.max_iterations} windows for calendar "
                    f"{source_id or 'default'}, resuming from {current.isoformat()} next run"
                )
                outcome.status = SyncOutcome.PARTIAL
                outcome.reason = 'iteration cap reached'
                break

            chunk_end = current + settings.window_size
            window_end = min(chunk_end, sync_range.end)
            if sync_range.end - chunk_end < settings.merge_threshold:
                window_end = sync_range.end

            window = SyncWindow(current, window_end)
            records = source.get_records(window.start, window.end)
            result = reconcile(records, store, window)
            self.checkpoints.set(source_id, window_end)

            outcome.absorb(result)
            outcome.windows += 1
            outcome.checkpoint = window_end
            current = window_end

        logger.info(
            f"Sync {outcome.status} for calendar {source_id or 'default'}: "
            f"{outcome.windows} windows, {outcome.added} added, "
            f"{outcome.updated} updated, {outcome.deleted} deleted"
        )
        return outcome
