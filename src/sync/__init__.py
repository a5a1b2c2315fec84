"""Lease-centric sync engine module."""

from .engine import LeaseCentricSyncManager, SyncStats
from .reconciler import LeaseOutcome, LeaseReconciler, SyncError
from .selector import SelectionReason, SelectionResult, select_leases
from .transform import build_listing_drafts

__all__ = [
    "LeaseCentricSyncManager",
    "SyncStats",
    "LeaseOutcome",
    "LeaseReconciler",
    "SyncError",
    "SelectionReason",
    "SelectionResult",
    "select_leases",
    "build_listing_drafts",
]
