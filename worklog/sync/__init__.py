"""
Sync - reconciles the local cache against the tracker.
"""

from worklog.sync.reconciler import SyncReconciler, SyncReport, SyncScope

__all__ = ["SyncReconciler", "SyncReport", "SyncScope"]
