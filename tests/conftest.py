"""Shared fixtures for call sync tests."""

import os

# Keep flask_app from starting the background timer on import
os.environ["CALL_SYNC_SCHEDULER_ENABLED"] = "0"

from datetime import datetime, timezone  # noqa: E402

import pytest  # noqa: E402

from workflows.call_sync.cursor import MemoryCursorStore, SyncCursor  # noqa: E402
from workflows.call_sync.errors import WriteFailed  # noqa: E402
from workflows.call_sync.models import CallEvent  # noqa: E402
from workflows.call_sync.salesforce_client import PartyMatch  # noqa: E402

START = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
INTEGRATION_USER_ID = "005INTEGRATION"


def build_record(
    session_id="s-1001",
    direction="Inbound",
    call_type="Voice",
    from_number="+1 (555) 123-4567",
    from_name="Jane Customer",
    to_number="+18005550100",
    to_name="Customer Service",
    legs=None,
    start="2024-05-01T15:30:00.000Z",
    duration=125,
    result="Accepted",
    **extra,
):
    record = {
        "sessionId": session_id,
        "direction": direction,
        "type": call_type,
        "from": {"phoneNumber": from_number, "name": from_name, "location": "Denver, CO"},
        "to": {"phoneNumber": to_number, "name": to_name},
        "startTime": start,
        "duration": duration,
        "result": result,
        "legs": legs if legs is not None else [],
    }
    record.update(extra)
    return record


@pytest.fixture
def make_record():
    """Factory for raw RingCentral call-log records."""
    return build_record


@pytest.fixture
def make_call():
    """Factory for parsed CallEvents."""
    def _make(**kwargs):
        return CallEvent.from_api(build_record(**kwargs))
    return _make


class FakeSource:
    """In-memory stand-in for RingCentralClient."""

    def __init__(self, records=None, error=None):
        self.records = records or []
        self.error = error
        self.truncated = False
        self.malformed = []
        self.fetches = []
        self.windows = []

    def authenticate(self):
        return "rc-token"

    def fetch_calls(self, since, page_size, until=None):
        self.fetches.append(since)
        self.windows.append((since, until))
        if self.error:
            raise self.error
        return [CallEvent.from_api(r) for r in self.records]

    def fetch_page(self, since, page_size, page=1, until=None):
        return self.fetch_calls(since, page_size)[:page_size], False


class FakeSalesforce:
    """In-memory stand-in for SalesforceClient that keeps created Tasks."""

    def __init__(self):
        self.integration_user_id = INTEGRATION_USER_ID
        self.tasks = []
        self.contacts = {}
        self.leads = {}
        self.users = {}
        self.fail_create = set()
        self.existence_checks = 0
        self.connects = 0

    def connect(self):
        self.connects += 1

    def find_existing_by_correlation_keys(self, keys):
        self.existence_checks += 1
        stored = [t["rcsfl__CALL_UNIQUE_ID__c"] for t in self.tasks]
        return {k for k in keys if any(k in s for s in stored)}

    def find_party_by_phone(self, kind, digits):
        table = self.contacts if kind == "Contact" else self.leads
        return table.get(digits)

    def find_user_by_name(self, name):
        return self.users.get(name)

    def create_activity(self, payload):
        if payload["CallObject"] in self.fail_create:
            raise WriteFailed("FIELD_INTEGRITY_EXCEPTION", details=[{"errorCode": "FIELD_INTEGRITY_EXCEPTION"}])
        self.tasks.append(payload)
        return f"00T{len(self.tasks):03d}"


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def crm():
    crm = FakeSalesforce()
    crm.contacts["5551234567"] = PartyMatch(id="003CONTACT", name="Jane Customer", account_id="001ACCOUNT")
    return crm


@pytest.fixture
def cursor():
    return SyncCursor(MemoryCursorStore(), initial_since=START)
