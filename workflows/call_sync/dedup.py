"""
Call Deduplication

Two independent sources of duplicates: RingCentral repeats a session within
one page (once per leg update), and overlapping windows re-fetch calls that
earlier passes already wrote.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Iterable, List, Set, Tuple

from .cursor import SyncCursor
from .models import CallEvent

logger = logging.getLogger(__name__)


@dataclass
class DedupResult:
    pending: List[Tuple[str, CallEvent]] = field(default_factory=list)
    skipped_existing: List[str] = field(default_factory=list)
    skipped_already_processed: List[str] = field(default_factory=list)


def dedupe_batch(events: Iterable[CallEvent]) -> "OrderedDict[str, CallEvent]":
    """Keep the first event seen for each session ID, in fetch order."""
    unique: "OrderedDict[str, CallEvent]" = OrderedDict()
    for event in events:
        if not event.session_id:
            logger.warning("Dropping call record without a sessionId")
            continue
        if event.session_id not in unique:
            unique[event.session_id] = event
    return unique


def filter_recorded(
    unique: "OrderedDict[str, CallEvent]",
    existing_keys: Set[str],
    cursor: SyncCursor,
) -> DedupResult:
    """
    Drop sessions already in Salesforce or already written by this process.

    The Salesforce check is authoritative and wins when both apply.
    """
    result = DedupResult()
    for session_id, event in unique.items():
        if session_id in existing_keys:
            logger.info(f"⏭️  Skipping {session_id} - already exists in Salesforce")
            result.skipped_existing.append(session_id)
        elif cursor.is_handled(session_id):
            logger.info(f"⏭️  Skipping {session_id} - already synced in memory")
            result.skipped_already_processed.append(session_id)
        else:
            result.pending.append((session_id, event))
    return result
