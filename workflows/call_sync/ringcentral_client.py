"""
RingCentral Call Log Client

Fetches call-log records for a time window.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Optional, Tuple

import requests

import config
from .errors import AuthFailed, CallSyncError, SourceUnavailable
from .models import CallEvent, format_timestamp

logger = logging.getLogger(__name__)

JWT_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:jwt-bearer"
CALL_LOG_PATH = "/restapi/v1.0/account/~/call-log"


@dataclass
class MalformedRecord:
    session_id: str
    error: CallSyncError


class RingCentralClient:
    """
    Reads the account call log with the JWT grant.

    `fetch_calls` follows pagination up to `max_pages`; `truncated` is set
    when pages were left unread.
    """

    def __init__(self, timeout: Optional[float] = None, max_pages: Optional[int] = None):
        self.server = config.RC_SERVER
        self.client_id = config.RC_CLIENT_ID
        self.client_secret = config.RC_CLIENT_SECRET
        self.jwt_token = config.RC_JWT_TOKEN
        self.timeout = timeout if timeout is not None else config.HTTP_TIMEOUT_SECONDS
        self.max_pages = max_pages or config.CALL_SYNC_MAX_PAGES

        self.session = requests.Session()
        self._access_token: Optional[str] = None
        self._expires_at = 0.0
        self.truncated = False
        self.malformed: List[MalformedRecord] = []

    def authenticate(self) -> str:
        """
        Return a valid access token, requesting a new one when needed.

        Raises:
            AuthFailed: if credentials are missing or the token request fails
        """
        if self._access_token and time.time() < self._expires_at - 60:
            return self._access_token

        if not (self.client_id and self.client_secret and self.jwt_token):
            raise AuthFailed("Missing RingCentral credentials: RC_CLIENT_ID, RC_CLIENT_SECRET, RC_JWT_TOKEN")

        try:
            resp = self.session.post(
                f"{self.server}/restapi/oauth/token",
                data={"grant_type": JWT_GRANT_TYPE, "assertion": self.jwt_token},
                auth=(self.client_id, self.client_secret),
                timeout=self.timeout,
            )
            resp.raise_for_status()
            data = resp.json()
        except requests.HTTPError as e:
            raise AuthFailed(f"RingCentral token request failed: {e}", details=_body(e.response)) from e
        except (requests.RequestException, ValueError) as e:
            raise AuthFailed(f"RingCentral token request failed: {e}") from e

        self._access_token = data.get("access_token")
        if not self._access_token:
            raise AuthFailed("RingCentral token response missing access_token", details=data)
        self._expires_at = time.time() + int(data.get("expires_in", 3600))
        logger.info("✓ Authenticated with RingCentral")
        return self._access_token

    def fetch_page(
        self,
        since: datetime,
        page_size: int,
        page: int = 1,
        until: Optional[datetime] = None,
    ) -> Tuple[List[CallEvent], bool]:
        """
        One bounded call-log request. Records come back newest first.

        Unparseable records are skipped and appended to `self.malformed`.

        Returns:
            (events in received order, whether another page exists)

        Raises:
            SourceUnavailable: on transport, timeout, non-2xx or malformed responses
        """
        token = self.authenticate()
        params = {
            "dateFrom": format_timestamp(since),
            "perPage": page_size,
            "page": page,
            "view": "Detailed",
        }
        if until is not None:
            params["dateTo"] = format_timestamp(until)
        try:
            resp = self.session.get(
                f"{self.server}{CALL_LOG_PATH}",
                params=params,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            data = resp.json()
        except requests.HTTPError as e:
            raise SourceUnavailable(f"Call log request failed: {e}", details=_body(e.response)) from e
        except (requests.RequestException, ValueError) as e:
            raise SourceUnavailable(f"Call log request failed: {e}") from e

        records = data.get("records")
        if not isinstance(records, list):
            raise SourceUnavailable("Call log response missing records", details=data)

        if page == 1:
            self.malformed = []
        events = []
        for record in records:
            try:
                events.append(CallEvent.from_api(record))
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                session_id = record.get("sessionId") if isinstance(record, dict) else None
                logger.warning(f"Skipping malformed call record {session_id}: {e}")
                self.malformed.append(MalformedRecord(
                    session_id=str(session_id or "unknown"),
                    error=CallSyncError(f"Malformed call record: {e!r}", details=record),
                ))

        has_next = bool((data.get("navigation") or {}).get("nextPage"))
        return events, has_next

    def fetch_calls(self, since: datetime, page_size: int, until: Optional[datetime] = None) -> List[CallEvent]:
        """
        Fetch calls in [since, until), at most `max_pages` pages.

        Sets `truncated` when older pages were left unread; the caller
        narrows the next read with `until` set to the oldest start time seen.
        """
        self.truncated = False
        calls: List[CallEvent] = []
        page = 1
        while True:
            events, has_next = self.fetch_page(since, page_size, page, until=until)
            calls.extend(events)
            if not has_next:
                break
            if page >= self.max_pages:
                self.truncated = True
                logger.warning(f"Call log has more than {self.max_pages} pages since {format_timestamp(since)}; "
                               f"older calls left for the next pass")
                break
            page += 1
        return calls


def _body(response) -> Any:
    if response is None:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text
