"""
HubSpot CRM data models.

These models represent listings (object type 0-420), contacts and the
typed association edges between them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Optional

from ..buildium.models import parse_timestamp

UNIT_ID_PROPERTY = "buildium_unit_id"
LEASE_LAST_UPDATED_PROPERTY = "buildium_lease_last_updated"

# Fields compared when deciding whether an existing listing needs new lease data
LEASE_FIELDS = (
    "buildium_lease_id",
    "buildium_market_rent",
    "lease_status",
    "lease_start_date",
    "lease_end_date",
    "primary_tenant",
    "next_lease_start",
    "next_lease_id",
    "next_lease_tenant",
    LEASE_LAST_UPDATED_PROPERTY,
)


class AssociationType(IntEnum):
    """User-defined contact -> listing association labels."""
    ACTIVE_TENANT = 2
    OWNER = 4
    INACTIVE_TENANT = 6
    FUTURE_TENANT = 11

    @property
    def label(self) -> str:
        return self.name.replace("_", " ").title()


def association_label(type_id: int) -> str:
    """Human-readable name for an association type id."""
    try:
        return AssociationType(type_id).label
    except ValueError:
        return f"Type {type_id}"


class ListingAction(Enum):
    """What a batched listing write does for one unit."""
    CREATE = "create"
    UPDATE = "update"
    SKIP = "skip"


@dataclass(frozen=True)
class Contact:
    """
    Represents a HubSpot contact.

    Attributes:
        id: HubSpot record ID
        email: Primary email address
    """
    id: str
    email: Optional[str] = None

    @classmethod
    def from_api_response(cls, data: dict) -> "Contact":
        """Create Contact from HubSpot CRM object response."""
        properties = data.get("properties") or {}
        return cls(id=str(data["id"]), email=properties.get("email"))


@dataclass(frozen=True)
class AssociationRecord:
    """
    One typed association between a contact and a listing.

    Attributes:
        type_id: Association type id (2 = Active Tenant)
        category: HUBSPOT_DEFINED or USER_DEFINED
        label: Label shown in HubSpot, if any
    """
    type_id: int
    category: str = "USER_DEFINED"
    label: Optional[str] = None

    @classmethod
    def from_api_response(cls, data: dict) -> "AssociationRecord":
        return cls(
            type_id=int(data["typeId"]),
            category=data.get("category", "USER_DEFINED"),
            label=data.get("label"),
        )


@dataclass
class Listing:
    """
    Represents a HubSpot listing.

    The unit id is the unique key correlating a listing with Buildium
    leases. Drafts built from leases have no id until created.

    Attributes:
        unit_id: Buildium unit id (string, as stored in HubSpot)
        properties: Raw HubSpot property values
        id: HubSpot record ID (None for drafts)
    """
    unit_id: str
    properties: dict = field(default_factory=dict)
    id: Optional[str] = None

    @property
    def name(self) -> str:
        return self.properties.get("hs_name") or ""

    @property
    def lease_last_updated(self) -> Optional[datetime]:
        """Stored lease timestamp, or None if missing or unparseable."""
        try:
            return parse_timestamp(self.properties.get(LEASE_LAST_UPDATED_PROPERTY))
        except ValueError:
            return None

    def is_current_for(self, lease_last_updated: Optional[datetime]) -> bool:
        """Check if the stored lease timestamp is at least as new as the given one."""
        stored = self.lease_last_updated
        if stored is None or lease_last_updated is None:
            return False
        return stored >= lease_last_updated

    def lease_fields_differ(self, other: "Listing") -> bool:
        """Compare lease-derived fields against another listing."""
        for name in LEASE_FIELDS:
            if name == LEASE_LAST_UPDATED_PROPERTY:
                continue
            if str(self.properties.get(name) or "") != str(other.properties.get(name) or ""):
                return True
        return False

    def lease_update_payload(self) -> dict:
        """Properties to send when refreshing lease data on an existing listing."""
        return {name: self.properties.get(name, "") for name in LEASE_FIELDS}

    def to_api_payload(self) -> dict:
        return {"properties": dict(self.properties)}

    @classmethod
    def from_api_response(cls, data: dict) -> "Listing":
        """Create Listing from HubSpot CRM object response."""
        properties = dict(data.get("properties") or {})
        return cls(
            id=str(data["id"]),
            unit_id=str(properties.get(UNIT_ID_PROPERTY) or ""),
            properties=properties,
        )


def plan_listing_action(
    draft: Listing,
    existing: Optional[Listing],
    force: bool = False,
) -> ListingAction:
    """
    Decide what a batched write should do for one unit.

    Rules:
    - No existing listing → CREATE
    - force → UPDATE
    - Stored lease timestamp older or missing → UPDATE
    - Any lease field differs → UPDATE
    - Otherwise → SKIP
    """
    if existing is None:
        return ListingAction.CREATE

    if force:
        return ListingAction.UPDATE

    if not existing.is_current_for(draft.lease_last_updated):
        return ListingAction.UPDATE

    if draft.lease_fields_differ(existing):
        return ListingAction.UPDATE

    return ListingAction.SKIP


def plan_listing_batch(
    drafts: list[Listing],
    existing_by_unit_id: dict[str, Optional[Listing]],
    force: bool = False,
    limit: Optional[int] = None,
) -> list[tuple[ListingAction, Listing, Optional[Listing]]]:
    """
    Plan a batched listing write.

    Processing stops once `limit` creates plus updates have been planned;
    skips do not count toward the limit.

    Returns:
        (action, draft, existing) tuples in draft order
    """
    plan = []
    operations = 0

    for draft in drafts:
        if limit is not None and operations >= limit:
            break

        existing = existing_by_unit_id.get(draft.unit_id)
        action = plan_listing_action(draft, existing, force)
        plan.append((action, draft, existing))

        if action is not ListingAction.SKIP:
            operations += 1

    return plan


@dataclass(frozen=True)
class ListingOutcome:
    """Result of a batched write for one unit."""
    unit_id: str
    listing: Listing


@dataclass
class ListingBatchResult:
    """
    Outcome of create_listings_batch.

    Attributes:
        created: Listings created by this call
        updated: Existing listings whose lease data was refreshed
        skipped: Existing listings already current
        failed: unit id -> error message for rejected units
    """
    created: list[ListingOutcome] = field(default_factory=list)
    updated: list[ListingOutcome] = field(default_factory=list)
    skipped: list[ListingOutcome] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    def listings_by_unit_id(self) -> dict[str, Listing]:
        """Every listing known after the batch, keyed by unit id."""
        listings = {}
        for outcome in (*self.skipped, *self.updated, *self.created):
            listings[outcome.unit_id] = outcome.listing
        return listings
