"""
Device-side offline support: submission queue, HTTP gateway and sync
coordinator. None of it needs a Flask app.
"""

from storecheck.offline.gateway import HttpChecklistGateway
from storecheck.offline.queue import ChecklistSubmission, LocalSubmissionQueue
from storecheck.offline.sync import ConnectivityMonitor, SyncCoordinator, SyncStatus

__all__ = [
    "ChecklistSubmission",
    "ConnectivityMonitor",
    "HttpChecklistGateway",
    "LocalSubmissionQueue",
    "SyncCoordinator",
    "SyncStatus",
]
