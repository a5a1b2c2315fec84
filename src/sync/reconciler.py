"""
Per-lease association reconciliation.

Brings the tenant associations on one lease's listing into agreement
with the lease. All association writes are read-before-write, so
reconciling the same lease twice converges to the same edges.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from ..buildium.client import BuildiumClient
from ..buildium.models import Lease, LeaseStatus, TenantReference
from ..errors import (
    AssociationWriteError,
    ContactResolutionError,
    NotFoundError,
    TransientError,
)
from ..hubspot.client import HubSpotAPIError, HubSpotClient
from ..hubspot.models import AssociationType, Contact, Listing

logger = logging.getLogger(__name__)


@dataclass
class SyncError:
    """Represents an error recorded against one lease."""
    lease_id: int
    error_type: str
    message: str
    fatal: bool = True

    @classmethod
    def from_exception(cls, lease_id: int, error: Exception) -> "SyncError":
        """Record an exception; anything without a fatal flag is fatal."""
        return cls(
            lease_id=lease_id,
            error_type=type(error).__name__,
            message=str(error),
            fatal=getattr(error, "fatal", True),
        )


@dataclass
class LeaseOutcome:
    """What reconciling one lease did."""
    lease_id: int
    unit_id: str
    listing_id: Optional[str] = None
    listing_current: bool = False
    associations_created: int = 0
    associations_removed: int = 0
    associations_unchanged: int = 0
    errors: list[SyncError] = field(default_factory=list)

    @property
    def fatal(self) -> bool:
        return any(error.fatal for error in self.errors)


def target_association_type(status: LeaseStatus) -> AssociationType:
    """Association label a tenant should carry for a lease in this status."""
    if status.is_ended:
        return AssociationType.INACTIVE_TENANT
    if status is LeaseStatus.FUTURE:
        return AssociationType.FUTURE_TENANT
    return AssociationType.ACTIVE_TENANT


def stale_association_types(status: LeaseStatus) -> tuple[AssociationType, ...]:
    """Association labels to remove for a lease in this status."""
    if status.is_ended:
        return (AssociationType.ACTIVE_TENANT, AssociationType.FUTURE_TENANT)
    if status is LeaseStatus.ACTIVE:
        return (AssociationType.FUTURE_TENANT,)
    return ()


class LeaseReconciler:
    """
    Reconciles tenant-listing associations for one lease at a time.

    Safe to share across threads as long as two leases on the same unit
    are never reconciled at the same time; the orchestrator runs leases
    of one unit sequentially.

    Usage:
        reconciler = LeaseReconciler(buildium, hubspot)
        outcome = reconciler.reconcile(lease, listing)
    """

    def __init__(
        self,
        source: BuildiumClient,
        target: HubSpotClient,
        dry_run: bool = False,
    ):
        """
        Initialize the reconciler.

        Args:
            source: Buildium client used to resolve tenants
            target: HubSpot client used for contacts and associations
            dry_run: Count writes without issuing them
        """
        self.source = source
        self.target = target
        self.dry_run = dry_run

    def reconcile(self, lease: Lease, listing: Listing) -> LeaseOutcome:
        """
        Reconcile associations between a lease's tenants and its listing.

        Tenant and edge failures are recorded on the outcome and never
        raised. Read failures and anything unexpected propagate.

        Args:
            lease: Selected Buildium lease
            listing: The unit's listing; in dry-run it may be an uncreated draft

        Returns:
            LeaseOutcome
        """
        outcome = LeaseOutcome(lease_id=lease.id, unit_id=lease.unit_key, listing_id=listing.id)

        outcome.listing_current = listing.is_current_for(lease.last_updated)
        if outcome.listing_current:
            logger.debug(f"Listing for unit {lease.unit_key} already has lease {lease.id} data")

        target_type = target_association_type(lease.status)
        stale_types = stale_association_types(lease.status)
        seen_contacts: set[str] = set()

        for tenant_ref in lease.tenants:
            try:
                contact = self._resolve_contact(lease, tenant_ref)
            except ContactResolutionError as e:
                logger.warning(str(e))
                outcome.errors.append(SyncError.from_exception(lease.id, e))
                continue

            if contact.id in seen_contacts:
                continue
            seen_contacts.add(contact.id)

            self._reconcile_contact(lease, listing, contact, target_type, stale_types, outcome)

        logger.debug(
            f"Lease {lease.id}: {outcome.associations_created} created, "
            f"{outcome.associations_removed} removed, "
            f"{outcome.associations_unchanged} unchanged"
        )
        return outcome

    def _resolve_contact(self, lease: Lease, tenant_ref: TenantReference) -> Contact:
        """
        Match a lease tenant to a HubSpot contact by email.

        Raises:
            ContactResolutionError: Tenant missing, without email, or without a contact
        """
        try:
            tenant = self.source.get_tenant(tenant_ref.id)
        except NotFoundError:
            raise ContactResolutionError(
                f"Tenant {tenant_ref.id} on lease {lease.id} not found in Buildium",
                lease_id=lease.id,
            )

        email = tenant.normalized_email
        if email is None:
            raise ContactResolutionError(
                f"Tenant {tenant.id} on lease {lease.id} has no email",
                lease_id=lease.id,
            )

        contact = self.target.search_contact_by_email(email)
        if contact is None:
            raise ContactResolutionError(
                f"No HubSpot contact for tenant {tenant.id} ({email}) on lease {lease.id}",
                lease_id=lease.id,
            )
        return contact

    def _reconcile_contact(
        self,
        lease: Lease,
        listing: Listing,
        contact: Contact,
        target_type: AssociationType,
        stale_types: tuple[AssociationType, ...],
        outcome: LeaseOutcome,
    ) -> None:
        """Create the target edge if absent and drop stale ones."""
        if listing.id is None:
            # Listing only exists as a dry-run draft, so there is nothing to read
            existing_types: set[int] = set()
        else:
            records = self.target.get_contact_listing_associations(contact.id, listing.id)
            existing_types = {record.type_id for record in records}

        if target_type in existing_types:
            outcome.associations_unchanged += 1
        elif self._write(
            lease, "create", target_type,
            lambda: self.target.create_contact_listing_association(
                contact.id, listing.id, int(target_type)
            ),
            contact, listing, outcome,
        ):
            outcome.associations_created += 1

        for stale_type in stale_types:
            if stale_type not in existing_types:
                continue
            if self._write(
                lease, "remove", stale_type,
                lambda: self.target.remove_contact_listing_association(
                    contact.id, listing.id, int(stale_type)
                ),
                contact, listing, outcome,
            ):
                outcome.associations_removed += 1

    def _write(
        self,
        lease: Lease,
        verb: str,
        assoc_type: AssociationType,
        operation,
        contact: Contact,
        listing: Listing,
        outcome: LeaseOutcome,
    ) -> bool:
        """
        Issue one association write, or simulate it in dry-run.

        Returns:
            True if the write happened (or would have)
        """
        edge = f"{assoc_type.label} contact {contact.id} -> listing {listing.id or listing.unit_id}"

        if self.dry_run:
            logger.info(f"DRY RUN: Would {verb} {edge}")
            return True

        try:
            operation()
            return True
        except (HubSpotAPIError, TransientError) as e:
            error = AssociationWriteError(
                f"Failed to {verb} {edge}: {e}",
                lease_id=lease.id,
            )
            logger.error(str(error))
            outcome.errors.append(SyncError.from_exception(lease.id, error))
            return False
