"""Persistent checkpoint storage module."""

from .checkpoint_store import CheckpointStore, CheckpointStoreError
from .models import LeaseCheckpoint

__all__ = ["CheckpointStore", "CheckpointStoreError", "LeaseCheckpoint"]
