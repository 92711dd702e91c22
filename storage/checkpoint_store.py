"""Checkpoint persistence for incremental syncs."""
import logging
import math
from datetime import datetime, timedelta
from typing import Optional

import boto3
from botocore.exceptions import ClientError

from processor.row_mapper import EPOCH, to_utc

logger = logging.getLogger(__name__)


class DynamoDBPropertyStore:
    """Key/value property store backed by a DynamoDB table."""

    KEY_ATTRIBUTE = 'property_key'
    VALUE_ATTRIBUTE = 'property_value'

    def __init__(self, table_name: str):
        """
        Initialize DynamoDB client and table reference.

        Args:
            table_name: Name of the DynamoDB table
        """
        self.table_name = table_name
        self.dynamodb = boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized DynamoDBPropertyStore for table: {table_name}")

    def get_property(self, key: str) -> Optional[str]:
        """
        Read a property value.

        Args:
            key: Property key

        Returns:
            Stored string value or None if the key is absent
        """
        try:
            response = self.table.get_item(Key={self.KEY_ATTRIBUTE: key})
        except ClientError as e:
            logger.error(f"Error reading property {key}: {e}")
            raise

        item = response.get('Item')
        if item is None:
            return None
        value = item.get(self.VALUE_ATTRIBUTE)
        return None if value is None else str(value)

    def set_property(self, key: str, value: str) -> None:
        """
        Write a property value, replacing any previous one.

        Args:
            key: Property key
            value: String value to store
        """
        try:
            self.table.put_item(Item={
                self.KEY_ATTRIBUTE: key,
                self.VALUE_ATTRIBUTE: value
            })
        except ClientError as e:
            logger.error(f"Error writing property {key}: {e}")
            raise

    def delete_property(self, key: str) -> None:
        """
        Remove a property. Removing an absent key is a no-op.

        Args:
            key: Property key
        """
        try:
            self.table.delete_item(Key={self.KEY_ATTRIBUTE: key})
        except ClientError as e:
            logger.error(f"Error deleting property {key}: {e}")
            raise


class CheckpointStore:
    """Last synced upper bound per calendar, kept in a property store."""

    KEY_PREFIX = 'calendar_to_sheets_last_sync_'
    DEFAULT_SOURCE = 'default'

    def __init__(self, properties):
        """
        Args:
            properties: Object exposing get_property, set_property and
                delete_property
        """
        self.properties = properties

    def key_for(self, source_id: Optional[str]) -> str:
        return f"{self.KEY_PREFIX}{source_id or self.DEFAULT_SOURCE}"

    def get(self, source_id: Optional[str]) -> datetime:
        """
        Read the checkpoint for a calendar.

        Args:
            source_id: Calendar identity (None for the default calendar)

        Returns:
            Aware UTC datetime, or the epoch if the checkpoint is absent
            or does not hold a valid timestamp
        """
        key = self.key_for(source_id)
        raw = self.properties.get_property(key)
        if raw is None:
            return EPOCH

        try:
            millis = float(raw)
        except (TypeError, ValueError):
            millis = math.nan

        if not math.isfinite(millis):
            logger.warning(f"Ignoring invalid checkpoint {key}={raw!r}, using epoch")
            return EPOCH

        try:
            return EPOCH + timedelta(milliseconds=millis)
        except OverflowError:
            logger.warning(f"Ignoring out of range checkpoint {key}={raw!r}, using epoch")
            return EPOCH

    def set(self, source_id: Optional[str], instant: datetime) -> None:
        """
        Persist the checkpoint for a calendar as epoch milliseconds.

        Args:
            source_id: Calendar identity (None for the default calendar)
            instant: Upper bound of the last synced window
        """
        millis = (to_utc(instant) - EPOCH) // timedelta(milliseconds=1)
        self.properties.set_property(self.key_for(source_id), str(millis))
        logger.debug(f"Saved checkpoint for {source_id or self.DEFAULT_SOURCE}: {instant.isoformat()}")

    def clear(self, source_id: Optional[str]) -> None:
        """Remove the checkpoint for a calendar so the next sync starts at the epoch."""
        self.properties.delete_property(self.key_for(source_id))
        logger.info(f"Cleared checkpoint for {source_id or self.DEFAULT_SOURCE}")
