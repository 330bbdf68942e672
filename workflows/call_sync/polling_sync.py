"""
Polling-based Call Sync

Runs periodic passes that pull new RingCentral calls and log each completed
voice call as a Salesforce Task, exactly once per session ID.
"""

import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import config
from .cursor import JsonFileCursorStore, MemoryCursorStore, SyncCursor
from .dedup import dedupe_batch, filter_recorded
from .errors import AuthFailed, LookupFailed, SourceUnavailable, SyncInProgress
from .identity import IdentityResolver
from .models import CallEvent, Outcome, PassState, ResolvedIdentity, SyncSummary, format_timestamp
from .normalize import resolve_extension
from .ringcentral_client import RingCentralClient
from .salesforce_client import SalesforceClient

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_task_payload(call: CallEvent, identity: ResolvedIdentity) -> Dict[str, Any]:
    """Map a call onto the Task fields used by the RingCentral managed package."""
    counterpart = call.to_party.phone_number if call.is_inbound else call.from_party.phone_number
    payload = {
        # Standard Salesforce fields
        "Subject": f"{call.direction} to {counterpart}",
        "Status": "Completed",
        "ActivityDate": call.start_time.date().isoformat(),
        "Priority": "Normal",
        "TaskSubtype": "Call",
        "CallType": call.direction,
        "CallDurationInSeconds": call.duration,
        "CallDisposition": call.result,
        "CallObject": call.session_id,
        "OwnerId": identity.owner_id,

        # RingCentral's custom fields (rcsfl__ prefix)
        "rcsfl__call_start_time__c": format_timestamp(call.start_time),
        "rcsfl__call_end_time__c": format_timestamp(call.end_time),
        "rcsfl__CALL_UNIQUE_ID__c": call.session_id,
        "rcsfl__caller_name__c": call.from_party.name or None,
        "rcsfl__callee_name__c": call.to_party.name or None,
        "rcsfl__caller_location__c": call.from_party.location or None,
        "rcsfl__callee_location__c": call.to_party.location or None,
        "rcsfl__from_number__c": call.from_party.phone_number,
        "rcsfl__to_number__c": call.to_party.phone_number,
        "rcsfl__RC_Logging_Type__c": "call",
        "rc_extension__c": resolve_extension(call) or None,
    }
    if identity.who_id:
        payload["WhoId"] = identity.who_id
    if identity.what_id:
        payload["WhatId"] = identity.what_id
    return payload


class CallReconciler:
    """
    Handles polling-based synchronization from RingCentral to Salesforce.

    Only one pass runs at a time: the existence check and the create are not
    atomic, so a second trigger arriving mid-pass is dropped. The cursor is
    not advanced by a running pass, so the next tick covers its window.

    A window too large for `max_pages` is read newest first over several
    passes; `since` only moves once the oldest calls have been read.
    """

    def __init__(
        self,
        source: RingCentralClient,
        crm: SalesforceClient,
        cursor: SyncCursor,
        page_size: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.source = source
        self.crm = crm
        self.cursor = cursor
        self.resolver = IdentityResolver(crm)
        self.page_size = page_size or config.CALL_SYNC_PAGE_SIZE
        self.clock = clock
        self.state = PassState.IDLE
        self._lock = threading.Lock()

    @property
    def in_progress(self) -> bool:
        return self._lock.locked()

    def run_sync(self) -> SyncSummary:
        """
        Run one reconciliation pass.

        Returns:
            SyncSummary; never raises
        """
        if not self._lock.acquire(blocking=False):
            logger.warning("⏳ Sync already in progress - dropping this trigger")
            return SyncSummary(ok=False, dropped=True, error="sync already in progress",
                               last_sync_time=self.cursor.since())

        started = time.monotonic()
        summary = SyncSummary()
        try:
            self._run_pass(summary)
        except Exception as e:
            logger.error(f"❌ RINGCENTRAL SYNC FAILED: {e}", exc_info=True)
            summary.ok = False
            summary.error = str(e)
        finally:
            self.state = PassState.IDLE
            self._lock.release()

        summary.duration_ms = int((time.monotonic() - started) * 1000)
        summary.last_sync_time = self.cursor.since()
        summary.backlog_until = self.cursor.until()
        self._log_summary(summary)
        return summary

    def _run_pass(self, summary: SyncSummary) -> None:
        pass_started = self.clock()
        since = self.cursor.since()
        until = self.cursor.until()

        # 1. Authenticate and fetch
        self.state = PassState.FETCHING
        if until:
            logger.info(f"🔄 SYNCING RINGCENTRAL CALLS since {format_timestamp(since)} "
                        f"(backlog before {format_timestamp(until)})")
        else:
            logger.info(f"🔄 SYNCING RINGCENTRAL CALLS since {format_timestamp(since)}")
        try:
            self.source.authenticate()
            self.crm.connect()
            calls = self.source.fetch_calls(since, self.page_size, until=until)
        except (AuthFailed, SourceUnavailable) as e:
            logger.error(f"❌ RINGCENTRAL SYNC FAILED: {e}")
            summary.ok = False
            summary.error = str(e)
            return
        truncated = getattr(self.source, "truncated", False)
        summary.total = len(calls)
        logger.info(f"📞 Found {len(calls)} calls since {format_timestamp(since)}")

        for bad in getattr(self.source, "malformed", []):
            summary.add_error(bad.session_id, bad.error)

        # 2. Collapse repeats, then drop what Salesforce already has
        self.state = PassState.DEDUPLICATING
        unique = dedupe_batch(calls)
        summary.unique_sessions = len(unique)
        logger.info(f"📊 Unique sessions: {len(unique)} ({len(calls) - len(unique)} duplicates filtered)")

        try:
            existing = self.crm.find_existing_by_correlation_keys(list(unique)) if unique else set()
        except LookupFailed as e:
            logger.error(f"⚠️  Could not check existing tasks, not writing this pass: {e}")
            for session_id in unique:
                summary.add_error(session_id, e)
            summary.ok = False
            summary.error = str(e)
            self.state = PassState.FINALIZING
            return
        logger.info(f"💾 Found {len(existing)} existing tasks in Salesforce")

        dedup = filter_recorded(unique, existing, self.cursor)
        summary.skipped_existing = len(dedup.skipped_existing)
        summary.skipped_already_processed = len(dedup.skipped_already_processed)
        for session_id in dedup.skipped_existing:
            summary.record(session_id, Outcome.SKIPPED_EXISTING)
        for session_id in dedup.skipped_already_processed:
            summary.record(session_id, Outcome.SKIPPED_ALREADY_PROCESSED)

        # 3. Resolve and write, one call at a time
        self.state = PassState.WRITING
        for session_id, call in dedup.pending:
            if not call.is_voice:
                logger.info(f"⏭️  Skipping {session_id} - {call.call_type or 'unknown'} call")
                summary.skipped_non_voice += 1
                summary.record(session_id, Outcome.SKIPPED_NON_VOICE)
                continue

            try:
                task_id = self.sync_call(call)
            except Exception as e:
                logger.error(f"   ❌ Failed to sync call {session_id}: {e}")
                if getattr(e, "details", None):
                    logger.error(f"   SF Error: {e.details}")
                summary.add_error(session_id, e)
                continue

            self.cursor.mark_handled(session_id, call.start_time)
            summary.synced += 1
            summary.record(session_id, Outcome.SYNCED)
            logger.info(f"   ✓ Task created: {task_id}")

        # 4. Move the window forward, or narrow it to the calls still unread
        self.state = PassState.FINALIZING
        if truncated and calls:
            oldest = min(call.start_time for call in calls)
            self.cursor.defer(oldest, pass_started)
            logger.warning(f"Call log was truncated - next pass reads calls before {format_timestamp(oldest)}")
        elif truncated:
            logger.warning("Call log was truncated with no readable calls - keeping cursor")
        else:
            summary.cursor_advanced = self.cursor.complete(pass_started)

    def sync_call(self, call: CallEvent) -> str:
        """Resolve identities for one call and create its Task. Returns the Task ID."""
        logger.info(f"📞 Processing call {call.session_id}:")
        logger.info(f"   Direction: {call.direction}")
        logger.info(f"   From: {call.from_party.phone_number} ({call.from_party.name or 'Unknown'})")
        logger.info(f"   To: {call.to_party.phone_number} ({call.to_party.name or 'Unknown'})")
        logger.info(f"   Duration: {call.duration}s, Result: {call.result}")

        identity = self.resolver.resolve(call)
        payload = build_task_payload(call, identity)
        logger.debug(f"   Task payload: {payload}")
        return self.crm.create_activity(payload)

    def preview_mappings(self, limit: int = 5, hours_back: int = 24) -> List[Dict[str, Any]]:
        """
        Show how recent calls would map to owners and extensions, without writing.

        Shares the clients with the sync pass, so it holds the pass lock and
        never touches the cursor.

        Raises:
            SyncInProgress: if a pass is running
        """
        if not self._lock.acquire(blocking=False):
            raise SyncInProgress("sync already in progress")
        try:
            self.source.authenticate()
            self.crm.connect()
            calls, _ = self.source.fetch_page(self.clock() - timedelta(hours=hours_back), limit)
            return [self._preview_call(call) for call in calls]
        finally:
            self._lock.release()

    def _preview_call(self, call: CallEvent) -> Dict[str, Any]:
        owner_id, rep_name, owner_source = self.resolver.resolve_owner(call)
        owner_name = rep_name if owner_source == "user" else "(Integration User - Default)"

        first_leg = call.legs[0].to_party if call.legs else None
        return {
            "sessionId": call.session_id,
            "direction": call.direction,
            "type": call.call_type,
            "from": call.from_party.name or call.from_party.phone_number,
            "to": call.to_party.name or call.to_party.phone_number,
            "fromExtensionNumber": call.from_party.extension_number,
            "fromExtensionId": call.from_party.extension_id,
            "toExtensionNumber": call.to_party.extension_number,
            "toExtensionId": call.to_party.extension_id,
            "legsCount": len(call.legs),
            "firstLegToName": first_leg.name if first_leg else None,
            "firstLegToExtensionNumber": first_leg.extension_number if first_leg else None,
            "firstLegToExtensionId": first_leg.extension_id if first_leg else None,
            "salesRepName": rep_name,
            "extension": resolve_extension(call),
            "ownerAssignment": {"ownerId": owner_id, "ownerName": owner_name},
            "rawCall": call.raw,
        }

    def _log_summary(self, summary: SyncSummary) -> None:
        if summary.dropped:
            return
        status = "✓ SYNC COMPLETE" if summary.ok else "❌ SYNC FAILED"
        logger.info(f"{status} in {summary.duration_ms}ms")
        logger.info(f"   Synced: {summary.synced}")
        logger.info(f"   Skipped: {summary.skipped} (existing {summary.skipped_existing}, "
                    f"in memory {summary.skipped_already_processed}, non-voice {summary.skipped_non_voice})")
        logger.info(f"   Errors: {summary.errors}")
        logger.info(f"   Next sync from: {format_timestamp(summary.last_sync_time)}")
        if summary.backlog_until:
            logger.info(f"   Backlog: calls before {format_timestamp(summary.backlog_until)} still to read")


_reconciler: Optional[CallReconciler] = None
_reconciler_lock = threading.Lock()


def get_reconciler() -> CallReconciler:
    """Process-wide reconciler built from config."""
    global _reconciler
    with _reconciler_lock:
        if _reconciler is None:
            if config.CALL_SYNC_STATE_FILE:
                store = JsonFileCursorStore(config.CALL_SYNC_STATE_FILE)
            else:
                store = MemoryCursorStore()
            cursor = SyncCursor(store, lookback_hours=config.INITIAL_LOOKBACK_HOURS)
            _reconciler = CallReconciler(RingCentralClient(), SalesforceClient(), cursor)
        return _reconciler


def run_polling_sync() -> dict:
    """
    Convenience function to run a polling sync.

    Returns:
        Dictionary with sync statistics
    """
    return get_reconciler().run_sync().to_dict()
