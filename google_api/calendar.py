"""Google Calendar source provider."""
import logging
from datetime import datetime
from typing import List, Optional
from urllib.parse import quote

import requests

from google_api.client import GoogleApiClient
from processor.models import SourceRecord
from processor.row_mapper import format_instant, parse_instant

logger = logging.getLogger(__name__)


class GoogleCalendarSource:
    """Reads events of one calendar through the Calendar API v3."""

    BASE_URL = "https://www.googleapis.com/calendar/v3/calendars"
    PRIMARY_CALENDAR = 'primary'
    PAGE_SIZE = 250

    def __init__(self, client: GoogleApiClient, calendar_id: Optional[str] = None):
        """
        Args:
            client: Authenticated GoogleApiClient
            calendar_id: Calendar to read (default: the primary calendar)
        """
        self.client = client
        self.calendar_id = calendar_id or self.PRIMARY_CALENDAR

    @property
    def calendar_url(self) -> str:
        return f"{self.BASE_URL}/{quote(self.calendar_id, safe='')}"

    def exists(self) -> bool:
        """
        Check that the calendar can be read.

        Returns:
            True if the calendar exists, False on a 404 response
        """
        try:
            self.client.get_json(self.calendar_url)
        except requests.HTTPError as e:
            if e.response is not None and e.response.status_code == 404:
                return False
            raise
        return True

    def get_records(self, start: datetime, end: datetime) -> List[SourceRecord]:
        """
        Fetch the calendar's events overlapping [start, end].

        Args:
            start: Range start
            end: Range end

        Returns:
            List of SourceRecord objects ordered by start time
        """
        params = {
            'timeMin': format_instant(start),
            'timeMax': format_instant(end),
            'singleEvents': 'true',
            'orderBy': 'startTime',
            'showDeleted': 'false',
            'maxResults': self.PAGE_SIZE
        }

        records = []
        while True:
            payload = self.client.get_json(f"{self.calendar_url}/events", params=params)
            for item in payload.get('items', []):
                record = self._item_to_record(item)
                if record:
                    records.append(record)

            page_token = payload.get('nextPageToken')
            if not page_token:
                break
            params = dict(params, pageToken=page_token)

        logger.info(f"Fetched {len(records)} events from calendar {self.calendar_id}")
        return records

    def _item_to_record(self, item: dict) -> Optional[SourceRecord]:
        """
        Convert a Calendar API event resource to a SourceRecord.

        Args:
            item: Event resource

        Returns:
            SourceRecord or None if the event is cancelled or malformed
        """
        if item.get('status') == 'cancelled':
            return None

        start = self._parse_event_time(item.get('start'))
        end = self._parse_event_time(item.get('end'))
        if not item.get('id') or start is None or end is None:
            logger.warning(f"Skipping malformed calendar event: {item.get('id')}")
            return None

        participants = [
            attendee['email']
            for attendee in item.get('attendees') or []
            if attendee.get('email')
        ]

        return SourceRecord(
            record_id=item['id'],
            title=item.get('summary', ''),
            start=start,
            end=end,
            description=item.get('description'),
            location=item.get('location'),
            participants=participants
        )

    def _parse_event_time(self, value: Optional[dict]) -> Optional[datetime]:
        # All-day events carry 'date' instead of 'dateTime'
        if not value:
            return None
        return parse_instant(value.get('dateTime') or value.get('date'))
