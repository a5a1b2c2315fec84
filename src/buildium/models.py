"""
Buildium data models.

These models represent the lease and tenant records fetched from the
Buildium API. Lease IDs are integers from Buildium and form the primary
identity; LastUpdatedDateTime is the source-of-truth change clock.
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional, Union

_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp into a timezone-aware datetime.

    Naive values are taken as UTC. Buildium sometimes returns seven
    fractional digits, which are truncated to microseconds.

    Raises:
        ValueError: If the value is not a valid timestamp
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip().replace("Z", "+00:00")
        text = _FRACTION_RE.sub(r"\1", text)
        parsed = datetime.fromisoformat(text)

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    return date.fromisoformat(str(value)[:10])


class LeaseStatus(Enum):
    """Buildium lease status values."""
    ACTIVE = "Active"
    FUTURE = "Future"
    PAST = "Past"
    EXPIRED = "Expired"
    TERMINATED = "Terminated"
    EVICTED = "Evicted"
    UNKNOWN = "Unknown"

    @classmethod
    def from_api_value(cls, value: Optional[str]) -> "LeaseStatus":
        """Map a Buildium status string, tolerating unknown values."""
        for status in cls:
            if value and status.value.lower() == str(value).lower():
                return status
        return cls.UNKNOWN

    @property
    def is_ended(self) -> bool:
        """Check if the tenancy is over."""
        return self in (
            LeaseStatus.PAST,
            LeaseStatus.EXPIRED,
            LeaseStatus.TERMINATED,
            LeaseStatus.EVICTED,
        )


@dataclass(frozen=True)
class TenantReference:
    """
    A tenant as embedded in a lease's Tenants list.

    Buildium only guarantees the ID here; name and email are filled in
    when the API includes them.
    """
    id: int
    first_name: str = ""
    last_name: str = ""
    email: Optional[str] = None

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @classmethod
    def from_api_response(cls, data: dict) -> "TenantReference":
        return cls(
            id=int(data["Id"]),
            first_name=data.get("FirstName") or "",
            last_name=data.get("LastName") or "",
            email=data.get("Email"),
        )


@dataclass(frozen=True)
class Tenant:
    """
    Represents a Buildium tenant.

    Attributes:
        id: Unique Buildium tenant ID
        email: Primary email, the matching key for HubSpot contacts
        first_name: Tenant first name
        last_name: Tenant last name
    """
    id: int
    email: Optional[str]
    first_name: str = ""
    last_name: str = ""

    @property
    def normalized_email(self) -> Optional[str]:
        """Email lowercased and stripped, or None if blank."""
        if not self.email or not self.email.strip():
            return None
        return self.email.strip().lower()

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @classmethod
    def from_api_response(cls, data: dict) -> "Tenant":
        """Create Tenant from Buildium API response."""
        return cls(
            id=int(data["Id"]),
            email=data.get("Email"),
            first_name=data.get("FirstName") or "",
            last_name=data.get("LastName") or "",
        )


@dataclass(frozen=True)
class UnitAddress:
    """Postal address of a rental unit."""
    address_line1: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""

    @classmethod
    def from_api_response(cls, data: Optional[dict]) -> "UnitAddress":
        data = data or {}
        return cls(
            address_line1=data.get("AddressLine1") or "",
            city=data.get("City") or "",
            state=data.get("State") or "",
            postal_code=data.get("PostalCode") or "",
        )


@dataclass(frozen=True)
class Lease:
    """
    Represents a Buildium lease.

    The unique identity is the lease id. The unit id correlates the lease
    with a HubSpot listing.

    Attributes:
        id: Unique lease ID within Buildium
        unit_id: Rental unit the lease covers
        property_id: Property the unit belongs to
        status: Lease status
        last_updated: Source-of-truth modification timestamp
        tenants: Tenants on the lease, in Buildium order
        start_date: Lease start
        end_date: Lease end, None for month-to-month
        property_name: Property display name, if included
        unit_number: Unit number, if included
        rent_amount: Monthly rent, if included
        address: Unit address
    """
    id: int
    unit_id: int
    property_id: Optional[int]
    status: LeaseStatus
    last_updated: Optional[datetime]
    tenants: tuple[TenantReference, ...] = ()
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    property_name: str = ""
    unit_number: str = ""
    rent_amount: Optional[float] = None
    address: UnitAddress = field(default_factory=UnitAddress)

    def __post_init__(self):
        if not isinstance(self.id, int) or self.id <= 0:
            raise ValueError(f"Lease ID must be a positive integer, got {self.id}")
        if not isinstance(self.unit_id, int) or self.unit_id <= 0:
            raise ValueError(f"Unit ID must be a positive integer, got {self.unit_id}")

    @property
    def unit_key(self) -> str:
        """Unit id as the string HubSpot stores in buildium_unit_id."""
        return str(self.unit_id)

    @property
    def primary_tenant_name(self) -> str:
        if not self.tenants:
            return ""
        return self.tenants[0].display_name

    @classmethod
    def from_api_response(cls, data: dict) -> "Lease":
        """Create Lease from Buildium API response."""
        unit = data.get("Unit") or {}
        prop = data.get("Property") or {}

        property_id = data.get("PropertyId") or unit.get("PropertyId")
        rent = (
            data.get("RentAmount")
            or data.get("TotalAmount")
            or (data.get("AccountDetails") or {}).get("Rent")
        )

        return cls(
            id=int(data["Id"]),
            unit_id=int(data["UnitId"]),
            property_id=int(property_id) if property_id else None,
            status=LeaseStatus.from_api_value(data.get("LeaseStatus")),
            last_updated=parse_timestamp(data.get("LastUpdatedDateTime")),
            tenants=tuple(
                TenantReference.from_api_response(t)
                for t in (data.get("Tenants") or [])
            ),
            start_date=_parse_date(data.get("LeaseFromDate")),
            end_date=_parse_date(data.get("LeaseToDate")),
            property_name=(
                prop.get("Name")
                or data.get("PropertyName")
                or unit.get("PropertyName")
                or ""
            ),
            unit_number=str(data.get("UnitNumber") or unit.get("UnitNumber") or ""),
            rent_amount=float(rent) if rent else None,
            address=UnitAddress.from_api_response(data.get("UnitAddress")),
        )
