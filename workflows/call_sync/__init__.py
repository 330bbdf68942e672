"""
RingCentral → Salesforce Call Sync Module

This module logs completed RingCentral calls as Salesforce Tasks, once per call.
"""

from .cursor import JsonFileCursorStore, MemoryCursorStore, SyncCursor
from .errors import AuthFailed, CallSyncError, LookupFailed, SourceUnavailable, SyncInProgress, WriteFailed
from .polling_sync import CallReconciler, get_reconciler, run_polling_sync
from .ringcentral_client import RingCentralClient
from .salesforce_client import SalesforceClient
from .scheduler import SyncScheduler

__all__ = [
    'CallReconciler',
    'get_reconciler',
    'run_polling_sync',
    'RingCentralClient',
    'SalesforceClient',
    'SyncCursor',
    'MemoryCursorStore',
    'JsonFileCursorStore',
    'SyncScheduler',
    'CallSyncError',
    'SourceUnavailable',
    'AuthFailed',
    'LookupFailed',
    'SyncInProgress',
    'WriteFailed',
]
