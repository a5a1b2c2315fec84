"""
Lease to listing transformation.

Groups leases by unit and builds the HubSpot listing draft for each
unit from its current lease and its next upcoming lease.
"""

from datetime import date, datetime, timezone
from typing import Iterable, Optional

from ..buildium.models import Lease, LeaseStatus
from ..hubspot.models import LEASE_LAST_UPDATED_PROPERTY, UNIT_ID_PROPERTY, Listing


def group_leases_by_unit(leases: Iterable[Lease]) -> dict[str, list[Lease]]:
    """Group leases by unit id, keeping first-seen unit order."""
    grouped: dict[str, list[Lease]] = {}
    for lease in leases:
        grouped.setdefault(lease.unit_key, []).append(lease)
    return grouped


def _reference_lease(unit_leases: list[Lease]) -> Lease:
    for lease in unit_leases:
        if lease.status is LeaseStatus.ACTIVE:
            return lease
    return max(unit_leases, key=lambda l: l.start_date or date.min)


def _next_future_lease(unit_leases: list[Lease], today: date) -> Optional[Lease]:
    upcoming = [
        lease for lease in unit_leases
        if lease.status is LeaseStatus.FUTURE and lease.start_date and lease.start_date > today
    ]
    if not upcoming:
        return None
    return min(upcoming, key=lambda l: l.start_date)


def _iso(value: Optional[date]) -> str:
    return value.isoformat() if value else ""


def build_listing_draft(unit_leases: list[Lease], today: Optional[date] = None) -> Listing:
    """
    Build the listing draft for one unit.

    The Active lease drives the lease fields; without one, the most
    recently started lease is used for naming and address only.

    Args:
        unit_leases: Every known lease on the unit (non-empty)
        today: Reference date for picking the next lease

    Returns:
        Listing draft (no id)
    """
    if not unit_leases:
        raise ValueError("unit_leases must not be empty")

    today = today or datetime.now(timezone.utc).date()
    reference = _reference_lease(unit_leases)
    active = reference if reference.status is LeaseStatus.ACTIVE else None
    upcoming = _next_future_lease(unit_leases, today)

    property_label = reference.property_name or (
        f"Property {reference.property_id}" if reference.property_id else "Unknown Property"
    )
    unit_label = reference.unit_number or reference.unit_key

    timestamps = [l.last_updated for l in unit_leases if l.last_updated is not None]
    newest = max(timestamps) if timestamps else None

    properties = {
        UNIT_ID_PROPERTY: reference.unit_key,
        "buildium_lease_id": str(active.id) if active else "",
        "buildium_property_id": str(reference.property_id or ""),
        "hs_name": f"{property_label} - Unit {unit_label}".strip(),
        "buildium_market_rent": (
            f"{active.rent_amount:g}" if active and active.rent_amount is not None else ""
        ),
        "hs_address_1": reference.address.address_line1,
        "hs_city": reference.address.city,
        "hs_state_province": reference.address.state,
        "hs_zip": reference.address.postal_code,
        "lease_start_date": _iso(active.start_date) if active else "",
        "lease_end_date": _iso(active.end_date) if active else "",
        "lease_status": active.status.value if active else LeaseStatus.PAST.value,
        "primary_tenant": active.primary_tenant_name if active else "",
        "next_lease_start": _iso(upcoming.start_date) if upcoming else "",
        "next_lease_id": str(upcoming.id) if upcoming else "",
        "next_lease_tenant": upcoming.primary_tenant_name if upcoming else "",
        LEASE_LAST_UPDATED_PROPERTY: newest.isoformat() if newest else "",
    }

    return Listing(unit_id=reference.unit_key, properties=properties)


def build_listing_drafts(
    leases: Iterable[Lease],
    today: Optional[date] = None,
) -> list[Listing]:
    """Build one listing draft per unit, in first-seen unit order."""
    return [
        build_listing_draft(unit_leases, today)
        for unit_leases in group_leases_by_unit(leases).values()
    ]
