"""
Error taxonomy shared by the API clients and the sync engine.

Client-level errors (TransientError, NotFoundError) describe what went
wrong talking to an external system. Lease-level errors describe what
went wrong reconciling one lease and carry whether the failure should
hold back that lease's checkpoint.
"""

from typing import Optional


class TransientError(Exception):
    """Raised when a network or rate-limit failure survives client retries."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(Exception):
    """Raised when a requested source record does not exist."""
    pass


class LeaseSyncError(Exception):
    """
    Base class for failures scoped to a single lease.

    Attributes:
        lease_id: Lease the failure belongs to
        fatal: Whether the lease's checkpoint must stay where it was
    """
    fatal = True

    def __init__(self, message: str, lease_id: Optional[int] = None):
        super().__init__(message)
        self.lease_id = lease_id


class ContactResolutionError(LeaseSyncError):
    """A tenant could not be matched to a HubSpot contact."""
    fatal = False


class AssociationWriteError(LeaseSyncError):
    """Creating or removing a contact-listing association failed."""
    fatal = False


class ListingCreationError(LeaseSyncError):
    """The batched listing create failed or rejected this lease's unit."""
    fatal = True
