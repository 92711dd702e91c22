"""Sync configuration loaded from the environment."""
import json
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import List, Mapping, Optional

logger = logging.getLogger(__name__)

DEFAULT_SHEET_NAME = 'Sheet1'


@dataclass(frozen=True)
class SyncConfig:
    """One calendar synced into one worksheet."""
    calendar_id: Optional[str] = None
    spreadsheet_id: Optional[str] = None
    sheet_name: str = DEFAULT_SHEET_NAME

    @classmethod
    def from_dict(cls, data: Mapping) -> 'SyncConfig':
        return cls(
            calendar_id=data.get('calendarId') or None,
            spreadsheet_id=data.get('spreadsheetId') or None,
            sheet_name=data.get('sheetName') or DEFAULT_SHEET_NAME
        )


@dataclass(frozen=True)
class DriverSettings:
    """Window sizing and safety limits for the sync driver."""
    window_size: timedelta = timedelta(days=365)
    merge_threshold: timedelta = timedelta(minutes=10)
    max_iterations: int = 100
    rewind_threshold: Optional[timedelta] = None

    @property
    def effective_rewind_threshold(self) -> timedelta:
        if self.rewind_threshold is None:
            return self.window_size
        return self.rewind_threshold


def load_configs(env: Mapping[str, str]) -> List[SyncConfig]:
    """
    Build sync configurations from environment variables.

    SYNC_CONFIGS holds a JSON array of objects with calendarId,
    spreadsheetId and sheetName. When it is unset or not an array, a
    single config is built from SPREADSHEET_ID, SHEET_NAME and CALENDAR_ID.

    Args:
        env: Environment mapping, usually os.environ

    Returns:
        List of SyncConfig objects
    """
    raw = env.get('SYNC_CONFIGS')
    if raw:
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"SYNC_CONFIGS is not valid JSON, using single config: {e}")
            parsed = None

        if isinstance(parsed, list):
            return [SyncConfig.from_dict(item) for item in parsed if isinstance(item, dict)]
        logger.warning("SYNC_CONFIGS is not a JSON array, using single config")

    return [SyncConfig(
        calendar_id=env.get('CALENDAR_ID') or None,
        spreadsheet_id=env.get('SPREADSHEET_ID') or None,
        sheet_name=env.get('SHEET_NAME') or DEFAULT_SHEET_NAME
    )]


def load_settings(env: Mapping[str, str]) -> DriverSettings:
    """
    Build driver settings from environment variables.

    Args:
        env: Environment mapping, usually os.environ

    Returns:
        DriverSettings with defaults for unset variables
    """
    window_days = float(env.get('WINDOW_DAYS', '365'))
    rewind_days = env.get('REWIND_THRESHOLD_DAYS')
    return DriverSettings(
        window_size=timedelta(days=window_days),
        merge_threshold=timedelta(minutes=float(env.get('MERGE_THRESHOLD_MINUTES', '10'))),
        max_iterations=int(env.get('MAX_ITERATIONS', '100')),
        rewind_threshold=timedelta(days=float(rewind_days)) if rewind_days else None
    )
