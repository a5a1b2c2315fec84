"""
Change selection for the sync engine.

Compares Buildium leases against stored checkpoints to decide which
leases need reconciling this run.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from typing import Iterable, Mapping, Optional

from ..buildium.models import Lease


class SelectionReason(Enum):
    """Why a lease was or was not selected."""

    # No checkpoint exists for the lease
    NO_CHECKPOINT = auto()

    # LastUpdatedDateTime is newer than the checkpoint
    SOURCE_UPDATED = auto()

    # force=True selects everything
    FORCED = auto()

    # Timestamp equal to or older than the checkpoint
    UNCHANGED = auto()


SELECTING_REASONS = (
    SelectionReason.NO_CHECKPOINT,
    SelectionReason.SOURCE_UPDATED,
    SelectionReason.FORCED,
)


@dataclass
class SelectionResult:
    """
    Result of running the change selector over a candidate list.

    Attributes:
        selected: Leases to process, in source order, limit applied
        decisions: lease id -> reason, for every distinct candidate
        truncated: Eligible leases dropped by the limit
    """
    selected: list[Lease] = field(default_factory=list)
    decisions: dict[int, SelectionReason] = field(default_factory=dict)
    truncated: int = 0

    @property
    def eligible_count(self) -> int:
        return len(self.selected) + self.truncated

    @property
    def skipped_count(self) -> int:
        return sum(1 for r in self.decisions.values() if r is SelectionReason.UNCHANGED)


def is_lease_changed(lease: Lease, checkpoint: Optional[datetime]) -> bool:
    """
    Check if a lease changed since its checkpoint.

    Comparison is by timestamp, strictly greater. Equal timestamps are
    unchanged. A lease without a modification time is only considered
    changed when it has never been checkpointed.
    """
    if checkpoint is None:
        return True
    if lease.last_updated is None:
        return False
    return lease.last_updated > checkpoint


def classify_lease(
    lease: Lease,
    checkpoint: Optional[datetime],
    force: bool = False,
) -> SelectionReason:
    """Decide why a single lease is selected or skipped."""
    if checkpoint is None:
        return SelectionReason.NO_CHECKPOINT
    if force:
        return SelectionReason.FORCED
    if is_lease_changed(lease, checkpoint):
        return SelectionReason.SOURCE_UPDATED
    return SelectionReason.UNCHANGED


def select_leases(
    leases: Iterable[Lease],
    checkpoints: Mapping[int, datetime],
    force: bool = False,
    limit: Optional[int] = None,
) -> SelectionResult:
    """
    Select the leases to process this run.

    Rules:
    - force → every candidate
    - No checkpoint → selected
    - last_updated > checkpoint → selected
    - Otherwise skipped
    - Source order is kept; a lease id appearing twice is taken once
    - limit keeps the first N eligible leases

    Args:
        leases: Candidate leases in source order
        checkpoints: lease id -> last processed LastUpdatedDateTime
        force: Select regardless of checkpoint
        limit: Maximum number of leases to select

    Returns:
        SelectionResult

    Raises:
        ValueError: If limit is negative
    """
    if limit is not None and limit < 0:
        raise ValueError(f"limit must be non-negative, got {limit}")

    result = SelectionResult()

    for lease in leases:
        if lease.id in result.decisions:
            continue

        reason = classify_lease(lease, checkpoints.get(lease.id), force)
        result.decisions[lease.id] = reason

        if reason not in SELECTING_REASONS:
            continue

        if limit is not None and len(result.selected) >= limit:
            result.truncated += 1
            continue

        result.selected.append(lease)

    return result
