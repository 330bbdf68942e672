"""
Sync Cursor Storage

Holds the "fetch calls since" watermark, plus a backlog ceiling when a pass
could not read its whole window, so repeated passes only look at new calls.

The JSON file store keeps the watermark across restarts (on Render the
filesystem persists between deployments). The session IDs handled by this
process are kept in memory only: the Salesforce existence check remains the
authority on what has been recorded, the handled set is a fast path.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Optional

from .models import format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

# Call-log start times carry millisecond precision
BOUNDARY_STEP = timedelta(milliseconds=1)


@dataclass
class CursorState:
    since: datetime
    # Set while older calls of a truncated window are still unread
    until: Optional[datetime] = None
    target: Optional[datetime] = None


class CursorStore:
    """Persistence interface for SyncCursor."""

    def load(self) -> Optional[CursorState]:
        raise NotImplementedError

    def save(self, state: CursorState) -> None:
        raise NotImplementedError


class MemoryCursorStore(CursorStore):
    """Process-local store. State is lost on restart."""

    def __init__(self):
        self.state: Optional[CursorState] = None
        self.saves = 0

    def load(self) -> Optional[CursorState]:
        if self.state is None:
            return None
        return CursorState(self.state.since, self.state.until, self.state.target)

    def save(self, state: CursorState) -> None:
        self.state = CursorState(state.since, state.until, state.target)
        self.saves += 1


def _optional_timestamp(value) -> Optional[datetime]:
    return parse_timestamp(value) if value else None


class JsonFileCursorStore(CursorStore):
    """Stores the cursor as {"since": ..., "until": ..., "target": ...} in a JSON file."""

    def __init__(self, path):
        self.path = Path(path)

    def load(self) -> Optional[CursorState]:
        logger.info(f"Loading sync cursor from: {self.path}")

        if not self.path.exists():
            logger.info("Cursor file does not exist - starting fresh")
            return None

        try:
            with open(self.path, "r") as f:
                data = json.load(f)
            state = CursorState(
                since=parse_timestamp(data["since"]),
                until=_optional_timestamp(data.get("until")),
                target=_optional_timestamp(data.get("target")),
            )
            logger.info(f"Loaded cursor since={data['since']} until={data.get('until')}")
            return state
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Error loading sync cursor, starting fresh: {e}", exc_info=True)
            return None

    def save(self, state: CursorState) -> None:
        data = {
            "since": format_timestamp(state.since),
            "until": format_timestamp(state.until) if state.until else None,
            "target": format_timestamp(state.target) if state.target else None,
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w") as f:
            json.dump(data, f, indent=2)
        tmp_path.replace(self.path)


class SyncCursor:
    """
    Forward-only watermark plus the session IDs handled so far.

    When a pass reads only the newest part of its window, `defer` records the
    oldest start time it saw as a ceiling. Later passes read [since, until)
    until a pass drains it, then `complete` moves `since` to the time the
    first of those passes started.

    Owned by a single CallReconciler; mutated only while it holds the pass lock.
    """

    def __init__(
        self,
        store: Optional[CursorStore] = None,
        initial_since: Optional[datetime] = None,
        lookback_hours: int = 24,
    ):
        self.store = store or MemoryCursorStore()
        state = self.store.load()
        if state is None:
            since = initial_since or datetime.now(timezone.utc) - timedelta(hours=lookback_hours)
            state = CursorState(since)
        self._state = state
        self._handled: Dict[str, Optional[datetime]] = {}

    def since(self) -> datetime:
        return self._state.since

    def until(self) -> Optional[datetime]:
        return self._state.until

    def advance(self, timestamp: datetime) -> bool:
        """Move the watermark forward. Returns False (and does nothing) otherwise."""
        if timestamp <= self._state.since:
            logger.debug(f"Cursor not advanced: {timestamp.isoformat()} <= {self._state.since.isoformat()}")
            return False
        self._state.since = timestamp
        self._prune()
        self._persist()
        return True

    def defer(self, oldest_fetched: datetime, pass_started: datetime) -> None:
        """Keep `since` and narrow the next read to calls older than `oldest_fetched`."""
        ceiling = oldest_fetched + BOUNDARY_STEP
        if self._state.until is not None and ceiling >= self._state.until:
            logger.warning(f"Backlog ceiling did not move ({format_timestamp(ceiling)}); "
                           f"raise CALL_SYNC_MAX_PAGES")
        if self._state.target is None:
            self._state.target = pass_started
        self._state.until = ceiling
        self._persist()

    def complete(self, pass_started: datetime) -> bool:
        """The window read by this pass is fully drained; move past it."""
        target = self._state.target or pass_started
        had_backlog = self._state.until is not None
        self._state.until = self._state.target = None
        if self.advance(target):
            return True
        if had_backlog:
            self._persist()
        return False

    def mark_handled(self, session_id: str, start_time: Optional[datetime] = None) -> None:
        self._handled[session_id] = start_time

    def is_handled(self, session_id: str) -> bool:
        return session_id in self._handled

    def _prune(self) -> None:
        # Calls that started before the watermark are never fetched again
        since = self._state.since
        self._handled = {
            key: started for key, started in self._handled.items()
            if started is not None and started >= since
        }

    def _persist(self) -> None:
        try:
            self.store.save(self._state)
        except OSError as e:
            logger.error(f"Error saving sync cursor: {e}")
