"""
Persistent checkpoint models.

These models track, per lease, the last Buildium modification that was
fully reconciled into HubSpot.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..buildium.models import parse_timestamp


@dataclass
class LeaseCheckpoint:
    """
    Represents the sync checkpoint for one Buildium lease.

    Attributes:
        lease_id: Buildium lease identifier
        last_updated: LastUpdatedDateTime of the lease as last processed
        synced_at: When the checkpoint was written
    """
    lease_id: int
    last_updated: datetime
    synced_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for export."""
        return {
            "lease_id": self.lease_id,
            "last_updated": self.last_updated.isoformat(),
            "synced_at": self.synced_at.isoformat() if self.synced_at else None,
        }

    @classmethod
    def from_row(cls, row: tuple) -> "LeaseCheckpoint":
        """Create from SQLite row tuple."""
        lease_id, last_updated, synced_at = row
        return cls(
            lease_id=int(lease_id),
            last_updated=parse_timestamp(last_updated),
            synced_at=parse_timestamp(synced_at) if synced_at else None,
        )
