"""
Call Sync Models

Typed views of RingCentral call-log records and the results of a sync pass.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

INBOUND = "Inbound"
OUTBOUND = "Outbound"
VOICE = "Voice"


class PassState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    DEDUPLICATING = "deduplicating"
    WRITING = "writing"
    FINALIZING = "finalizing"


class Outcome(str, Enum):
    SYNCED = "synced"
    SKIPPED_EXISTING = "skipped_existing"
    SKIPPED_ALREADY_PROCESSED = "skipped_already_processed"
    SKIPPED_NON_VOICE = "skipped_non_voice"
    ERROR = "error"


def parse_timestamp(value: str) -> datetime:
    """Parse a RingCentral ISO-8601 timestamp into an aware UTC datetime."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Render a datetime the way Salesforce and RingCentral expect (UTC, ms, Z)."""
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


@dataclass(frozen=True)
class CallParty:
    phone_number: Optional[str] = None
    name: Optional[str] = None
    location: Optional[str] = None
    extension_id: Optional[str] = None
    extension_number: Optional[str] = None

    @classmethod
    def from_api(cls, data: Optional[Dict[str, Any]]) -> "CallParty":
        data = data or {}
        ext_id = data.get("extensionId")
        ext_number = data.get("extensionNumber")
        return cls(
            phone_number=data.get("phoneNumber"),
            name=data.get("name"),
            location=data.get("location"),
            extension_id=str(ext_id) if ext_id is not None else None,
            extension_number=str(ext_number) if ext_number is not None else None,
        )


@dataclass(frozen=True)
class CallLeg:
    from_party: CallParty
    to_party: CallParty

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "CallLeg":
        return cls(
            from_party=CallParty.from_api(data.get("from")),
            to_party=CallParty.from_api(data.get("to")),
        )


@dataclass(frozen=True)
class CallEvent:
    """
    One call-log record as returned by RingCentral.

    `session_id` is the correlation key: stable across re-fetches of the
    same call, and persisted on the Salesforce Task.
    """

    session_id: str
    direction: str
    call_type: str
    from_party: CallParty
    to_party: CallParty
    start_time: datetime
    duration: int = 0
    result: Optional[str] = None
    legs: Tuple[CallLeg, ...] = ()
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_api(cls, record: Dict[str, Any]) -> "CallEvent":
        legs = record.get("legs") or []
        return cls(
            session_id=str(record.get("sessionId") or ""),
            direction=record.get("direction", ""),
            call_type=record.get("type", ""),
            from_party=CallParty.from_api(record.get("from")),
            to_party=CallParty.from_api(record.get("to")),
            start_time=parse_timestamp(record["startTime"]),
            duration=int(record.get("duration") or 0),
            result=record.get("result"),
            legs=tuple(CallLeg.from_api(leg) for leg in legs if isinstance(leg, dict)),
            raw=record,
        )

    @property
    def is_inbound(self) -> bool:
        return self.direction == INBOUND

    @property
    def is_voice(self) -> bool:
        return self.call_type == VOICE

    @property
    def end_time(self) -> datetime:
        return self.start_time + timedelta(seconds=self.duration)


@dataclass
class ResolvedIdentity:
    """Who a call is linked to in Salesforce and who owns the Task."""

    owner_id: str
    who_id: Optional[str] = None
    what_id: Optional[str] = None
    record_kind: Optional[str] = None
    rep_name: Optional[str] = None
    owner_source: str = "integration_user"


@dataclass
class SyncSummary:
    """Result of one reconciliation pass. Always returned, never raised."""

    ok: bool = True
    synced: int = 0
    skipped_existing: int = 0
    skipped_already_processed: int = 0
    skipped_non_voice: int = 0
    error_details: List[Dict[str, Any]] = field(default_factory=list)
    outcomes: Dict[str, Outcome] = field(default_factory=dict)
    total: int = 0
    unique_sessions: int = 0
    last_sync_time: Optional[datetime] = None
    duration_ms: int = 0
    error: Optional[str] = None
    dropped: bool = False
    cursor_advanced: bool = False
    backlog_until: Optional[datetime] = None

    @property
    def skipped(self) -> int:
        return self.skipped_existing + self.skipped_already_processed + self.skipped_non_voice

    @property
    def errors(self) -> int:
        return len(self.error_details)

    def record(self, session_id: str, outcome: Outcome) -> None:
        self.outcomes[session_id] = outcome

    def add_error(self, session_id: str, error: Exception) -> None:
        self.outcomes[session_id] = Outcome.ERROR
        self.error_details.append({
            "sessionId": session_id,
            "error": str(error),
            "details": getattr(error, "details", None),
        })

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "ok": self.ok,
            "synced": self.synced,
            "skipped": self.skipped,
            "skippedExisting": self.skipped_existing,
            "skippedAlreadyProcessed": self.skipped_already_processed,
            "skippedNonVoice": self.skipped_non_voice,
            "errors": self.errors,
            "errorDetails": self.error_details,
            "outcomes": {key: outcome.value for key, outcome in self.outcomes.items()},
            "total": self.total,
            "uniqueSessions": self.unique_sessions,
            "lastSyncTime": format_timestamp(self.last_sync_time) if self.last_sync_time else None,
            "cursorAdvanced": self.cursor_advanced,
            "duration": f"{self.duration_ms}ms",
        }
        if self.error:
            result["error"] = self.error
        if self.dropped:
            result["dropped"] = True
        if self.backlog_until:
            result["backlogUntil"] = format_timestamp(self.backlog_until)
        return result
