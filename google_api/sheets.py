"""Google Sheets tabular store."""
import logging
from typing import Any, List, Optional
from urllib.parse import quote

from google_api.client import GoogleApiClient
from processor.row_mapper import HEADER

logger = logging.getLogger(__name__)


def column_letter(column: int) -> str:
    """Convert a 1-based column number to its A1 letter (1 -> A, 27 -> AA)."""
    letters = ''
    while column > 0:
        column, remainder = divmod(column - 1, 26)
        letters = chr(ord('A') + remainder) + letters
    return letters


class GoogleSheetStore:
    """One worksheet of a spreadsheet, addressed by 1-based row positions."""

    BASE_URL = "https://sheets.googleapis.com/v4/spreadsheets"

    def __init__(self, client: GoogleApiClient, spreadsheet_id: str, sheet_name: str):
        """
        Args:
            client: Authenticated GoogleApiClient
            spreadsheet_id: Spreadsheet identifier
            sheet_name: Worksheet title; the first worksheet is used if no
                worksheet has this title
        """
        self.client = client
        self.spreadsheet_id = spreadsheet_id
        self.sheet_name = sheet_name
        self._sheet_id: Optional[int] = None
        self._sheet_title: Optional[str] = None

    @property
    def spreadsheet_url(self) -> str:
        return f"{self.BASE_URL}/{self.spreadsheet_id}"

    def _resolve_sheet(self) -> None:
        if self._sheet_id is not None:
            return

        metadata = self.client.get_json(
            self.spreadsheet_url,
            params={'fields': 'sheets.properties'}
        )
        sheets = [sheet.get('properties', {}) for sheet in metadata.get('sheets', [])]
        if not sheets:
            raise LookupError(f"Spreadsheet {self.spreadsheet_id} has no worksheets")

        properties = next(
            (props for props in sheets if props.get('title') == self.sheet_name),
            None
        )
        if properties is None:
            properties = sheets[0]
            logger.warning(
                f"Worksheet {self.sheet_name!r} not found, "
                f"using {properties.get('title')!r}"
            )

        self._sheet_id = properties.get('sheetId', 0)
        self._sheet_title = properties.get('title', self.sheet_name)

    def _a1(self, cells: str = '') -> str:
        self._resolve_sheet()
        title = "'" + self._sheet_title.replace("'", "''") + "'"
        return f"{title}!{cells}" if cells else title

    def _values_url(self, a1_range: str) -> str:
        return f"{self.spreadsheet_url}/values/{quote(a1_range, safe='')}"

    def _batch_update(self, requests_body: List[dict]) -> None:
        self.client.request(
            'POST',
            f"{self.spreadsheet_url}:batchUpdate",
            json_body={'requests': requests_body}
        )

    def _dimension_range(self, position: int, count: int) -> dict:
        self._resolve_sheet()
        return {
            'sheetId': self._sheet_id,
            'dimension': 'ROWS',
            'startIndex': position - 1,
            'endIndex': position - 1 + count
        }

    def read_all(self) -> List[List[Any]]:
        """
        Read every row of the worksheet, header included.

        The API omits trailing empty cells, so rows are padded to the
        header width with empty strings.

        Returns:
            List of rows
        """
        payload = self.client.get_json(
            self._values_url(self._a1()),
            params={
                'valueRenderOption': 'UNFORMATTED_VALUE',
                'dateTimeRenderOption': 'FORMATTED_STRING'
            }
        )
        rows = payload.get('values', [])
        width = len(HEADER)
        return [row + [''] * (width - len(row)) for row in rows]

    def append_rows(self, rows: List[List[Any]]) -> None:
        """Append rows after the last row of the worksheet."""
        if not rows:
            return
        self.client.request(
            'POST',
            self._values_url(self._a1('A1')) + ':append',
            params={'valueInputOption': 'RAW', 'insertDataOption': 'INSERT_ROWS'},
            json_body={'values': rows}
        )
        logger.debug(f"Appended {len(rows)} rows to {self._sheet_title}")

    def write_range(self, row_position: int, col_start: int, values: List[Any]) -> None:
        """Overwrite len(values) cells of one row starting at col_start."""
        first = column_letter(col_start)
        last = column_letter(col_start + len(values) - 1)
        a1_range = self._a1(f"{first}{row_position}:{last}{row_position}")
        self.client.request(
            'PUT',
            self._values_url(a1_range),
            params={'valueInputOption': 'RAW'},
            json_body={'range': a1_range, 'values': [values]}
        )

    def delete_row(self, row_position: int) -> None:
        self.delete_rows(row_position, 1)

    def delete_rows(self, row_position: int, count: int) -> None:
        """Delete count rows starting at row_position."""
        self._batch_update([
            {'deleteDimension': {'range': self._dimension_range(row_position, count)}}
        ])

    def insert_row_before(self, row_position: int) -> None:
        """Insert a blank row so the current row_position shifts down by one."""
        self._batch_update([
            {
                'insertDimension': {
                    'range': self._dimension_range(row_position, 1),
                    'inheritFromBefore': False
                }
            }
        ])
