"""
Call Sync Errors

Failure modes of the collaborators a reconciliation pass talks to.
"""

from typing import Any, Optional


class CallSyncError(Exception):
    """Base exception for call sync failures."""

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.details = details


class SourceUnavailable(CallSyncError):
    """Fetching the call log failed. Fatal to the pass."""


class AuthFailed(CallSyncError):
    """Token acquisition failed for RingCentral or Salesforce. Fatal to the pass."""


class LookupFailed(CallSyncError):
    """A Salesforce query errored. Treated as "not found" by the caller."""


class WriteFailed(CallSyncError):
    """Creating the Task failed. Recorded against that call only."""


class SyncInProgress(CallSyncError):
    """A reconciliation pass holds the shared clients; try again later."""
