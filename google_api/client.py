"""HTTP client for Google REST APIs with retry logic."""
import logging
import time
from typing import Any, Optional

import requests
from google.auth.transport.requests import AuthorizedSession
from google.oauth2 import service_account

logger = logging.getLogger(__name__)

SCOPES = [
    'https://www.googleapis.com/auth/calendar.readonly',
    'https://www.googleapis.com/auth/spreadsheets'
]


def authorized_session(service_account_info: dict, subject: Optional[str] = None) -> AuthorizedSession:
    """
    Build a requests session that mints and refreshes access tokens.

    Args:
        service_account_info: Parsed service account key file
        subject: User to impersonate with domain-wide delegation, if any

    Returns:
        AuthorizedSession for the Calendar and Sheets scopes
    """
    credentials = service_account.Credentials.from_service_account_info(
        service_account_info,
        scopes=SCOPES
    )
    if subject:
        credentials = credentials.with_subject(subject)
    logger.info(f"Using service account {service_account_info.get('client_email')}")
    return AuthorizedSession(credentials)


class GoogleApiClient:
    """Client for Google REST APIs over an authorized requests session."""

    RETRY_STATUS_CODES = {429, 500, 502, 503, 504}
    # POST appends and batch updates are not safe to replay
    RETRY_METHODS = {'GET', 'PUT'}

    def __init__(
        self,
        session: requests.Session,
        timeout: int = 30,
        max_retries: int = 3,
        base_delay: float = 1
    ):
        """
        Initialize the API client.

        Args:
            session: Session that attaches credentials to each request
            timeout: HTTP request timeout in seconds (default: 30)
            max_retries: Attempts per GET or PUT request (default: 3)
            base_delay: First retry delay in seconds, doubled per attempt
        """
        self.session = session
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_delay = base_delay

    def request(
        self,
        method: str,
        url: str,
        params: Optional[dict] = None,
        json_body: Optional[Any] = None
    ) -> requests.Response:
        """
        Send a request, retrying transient failures with exponential backoff.

        Only GET and PUT requests are retried. Any other method is sent once.

        Args:
            method: HTTP method
            url: Absolute API URL
            params: Query string parameters
            json_body: JSON request body

        Returns:
            Successful response

        Raises:
            requests.RequestException: If the request fails or all retry
                attempts are exhausted
        """
        attempts = self.max_retries if method.upper() in self.RETRY_METHODS else 1

        for attempt in range(attempts):
            try:
                response = self.session.request(
                    method,
                    url,
                    params=params,
                    json=json_body,
                    timeout=self.timeout
                )
                response.raise_for_status()
                return response

            except requests.RequestException as e:
                status = getattr(e.response, 'status_code', None)
                retryable = status is None or status in self.RETRY_STATUS_CODES
                if retryable and attempt < attempts - 1:
                    delay = self.base_delay * (2 ** attempt)
                    logger.warning(
                        f"Request failed (attempt {attempt + 1}/{attempts}): {e}. "
                        f"Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                else:
                    logger.error(f"{method} {url} failed: {e}")
                    raise

    def get_json(self, url: str, params: Optional[dict] = None) -> dict:
        return self.request('GET', url, params=params).json()
