"""AWS Lambda handler for Calendar to Sheets Sync."""
import json
import logging
import os
import time
from typing import Any, Dict

from google_api.calendar import GoogleCalendarSource
from google_api.client import GoogleApiClient, authorized_session
from google_api.sheets import GoogleSheetStore
from storage.checkpoint_store import CheckpointStore, DynamoDBPropertyStore
from processor.models import SyncOutcome
from sync.config import load_configs, load_settings
from sync.driver import WindowedSyncDriver


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def build_driver(env) -> WindowedSyncDriver:
    """
    Wire the sync driver to Google APIs and DynamoDB checkpoints.

    Args:
        env: Environment mapping, usually os.environ

    Returns:
        Configured WindowedSyncDriver
    """
    session = authorized_session(
        json.loads(env['GOOGLE_SERVICE_ACCOUNT_JSON']),
        subject=env.get('GOOGLE_DELEGATED_USER') or None
    )
    client = GoogleApiClient(
        session=session,
        timeout=int(env.get('TIMEOUT_SECONDS', '30'))
    )
    checkpoints = CheckpointStore(
        DynamoDBPropertyStore(env.get('CHECKPOINT_TABLE_NAME', 'calendar-sync-checkpoints'))
    )

    def source_factory(config):
        source = GoogleCalendarSource(client, config.calendar_id)
        return source if source.exists() else None

    def store_factory(config):
        return GoogleSheetStore(client, config.spreadsheet_id, config.sheet_name)

    return WindowedSyncDriver(
        checkpoints=checkpoints,
        source_factory=source_factory,
        store_factory=store_factory,
        settings=load_settings(env)
    )


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function for Calendar to Sheets Sync.

    Args:
        event: EventBridge event payload, optionally with action, start,
            end and config_index keys
        context: Lambda context object

    Returns:
        Response dict with statusCode and per-config outcomes
    """
    log_level = os.environ.get('LOG_LEVEL', 'INFO')
    setup_logging(log_level)
    logger = logging.getLogger(__name__)

    event = event or {}
    action = event.get('action', 'sync_all')
    start = event.get('start')
    end = event.get('end')

    start_time = time.time()
    logger.info(f"Lambda execution started", extra={'action': action})

    try:
        configs = load_configs(os.environ)
        driver = build_driver(os.environ)

        if action == 'sync_all':
            outcomes = driver.sync_all(configs, start, end)
        elif action == 'sync_one':
            index = int(event.get('config_index', 0))
            outcomes = [driver.sync_one(configs[index], start, end)]
        elif action == 'full_resync':
            outcomes = driver.full_resync(event.get('config_index'), configs)
        else:
            raise ValueError(f"Unknown action: {action}")

        duration = time.time() - start_time
        failed = [o for o in outcomes if o.status == SyncOutcome.FAILED]

        logger.info(
            f"Lambda execution completed",
            extra={
                'duration_seconds': round(duration, 2),
                'configs': len(outcomes),
                'failed': len(failed)
            }
        )

        return {
            'statusCode': 207 if failed else 200,
            'body': json.dumps({
                'message': 'Sync completed with failures' if failed else 'Sync completed successfully',
                'action': action,
                'outcomes': [o.to_dict() for o in outcomes],
                'duration_seconds': round(duration, 2)
            })
        }

    except Exception as e:
        duration = time.time() - start_time

        logger.error(
            f"Lambda execution failed: {str(e)}",
            extra={
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )

        return {
            'statusCode': 500,
            'body': json.dumps({
                'message': 'Sync failed',
                'error': str(e),
                'error_type': type(e).__name__,
                'duration_seconds': round(duration, 2)
            })
        }
