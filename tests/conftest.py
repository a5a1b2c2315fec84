"""
Pytest configuration and shared fixtures.

Provides in-memory Buildium/HubSpot fakes and test data for sync testing.
"""

import os

import pytest
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Generator, Iterable, Optional
import tempfile

from src.buildium.models import Lease, LeaseStatus, Tenant, TenantReference, UnitAddress
from src.errors import NotFoundError
from src.hubspot.client import HubSpotAPIError
from src.hubspot.models import (
    AssociationRecord,
    Contact,
    Listing,
    ListingAction,
    ListingBatchResult,
    ListingOutcome,
    UNIT_ID_PROPERTY,
    plan_listing_batch,
)
from src.storage.checkpoint_store import CheckpointStore


def utc(year: int, month: int, day: int, hour: int = 0) -> datetime:
    return datetime(year, month, day, hour, tzinfo=timezone.utc)


def make_lease(
    lease_id: int,
    unit_id: int,
    last_updated: Optional[datetime] = None,
    status: LeaseStatus = LeaseStatus.ACTIVE,
    tenant_ids: Iterable[int] = (),
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    property_id: int = 77,
) -> Lease:
    """Build a lease with sensible defaults."""
    return Lease(
        id=lease_id,
        unit_id=unit_id,
        property_id=property_id,
        status=status,
        last_updated=last_updated or utc(2025, 9, 15),
        tenants=tuple(
            TenantReference(id=t, first_name=f"Tenant{t}", last_name="Smith")
            for t in tenant_ids
        ),
        start_date=start_date or date(2025, 1, 1),
        end_date=end_date,
        property_name="Maple Court",
        unit_number=f"{unit_id}A",
        rent_amount=1850.0,
        address=UnitAddress("12 Maple St", "Springfield", "IL", "62701"),
    )


# ============================================================================
# Fakes
# ============================================================================

class FakeBuildiumClient:
    """In-memory Buildium client that records every call."""

    def __init__(self, leases: Iterable[Lease] = (), tenants: Iterable[Tenant] = ()):
        self.leases = list(leases)
        self.tenants = {tenant.id: tenant for tenant in tenants}
        self.calls: list[tuple] = []
        self.property_hints: list[dict] = []

    def calls_to(self, name: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == name]

    def get_all_leases(self) -> list[Lease]:
        self.calls.append(("get_all_leases",))
        return list(self.leases)

    def get_leases_updated_since(self, timestamp: datetime) -> list[Lease]:
        self.calls.append(("get_leases_updated_since", timestamp))
        return [l for l in self.leases if l.last_updated and l.last_updated >= timestamp]

    def get_leases_by_unit_ids(self, unit_ids, property_ids=None) -> list[Lease]:
        wanted = {int(u) for u in unit_ids}
        self.calls.append(("get_leases_by_unit_ids", sorted(wanted)))
        self.property_hints.append(dict(property_ids or {}))
        return [l for l in self.leases if l.unit_id in wanted]

    def get_tenant(self, tenant_id: int) -> Tenant:
        self.calls.append(("get_tenant", tenant_id))
        if tenant_id not in self.tenants:
            raise NotFoundError(f"Tenant {tenant_id} not found")
        return self.tenants[tenant_id]


class FakeHubSpotClient:
    """
    In-memory HubSpot client that records every call.

    Associations are stored as (contact id, listing id) -> set of type ids.
    """

    def __init__(
        self,
        listings: Iterable[Listing] = (),
        contacts: Iterable[Contact] = (),
    ):
        self.listings = {listing.unit_id: listing for listing in listings}
        self.contacts = {contact.email.lower(): contact for contact in contacts}
        self.associations: dict[tuple[str, str], set[int]] = {}
        self.calls: list[tuple] = []
        self.reject_units: set[str] = set()
        self.fail_association_writes = False
        self._next_id = 9000

    def calls_to(self, name: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == name]

    def add_listing(self, unit_id: str, **properties) -> Listing:
        self._next_id += 1
        listing = Listing(
            unit_id=unit_id,
            properties={UNIT_ID_PROPERTY: unit_id, **properties},
            id=str(self._next_id),
        )
        self.listings[unit_id] = listing
        return listing

    def get_listings_by_unit_ids(self, unit_ids) -> list[Listing]:
        unit_ids = list(unit_ids)
        self.calls.append(("get_listings_by_unit_ids", unit_ids))
        return [self.listings[u] for u in unit_ids if u in self.listings]

    def search_listing_by_unit_id(self, unit_id: str) -> Optional[Listing]:
        self.calls.append(("search_listing_by_unit_id", unit_id))
        return self.listings.get(unit_id)

    def create_listings_batch(
        self,
        listings,
        dry_run=False,
        force=False,
        limit=None,
        existing_by_unit_id=None,
    ) -> ListingBatchResult:
        listings = list(listings)
        self.calls.append(("create_listings_batch", [l.unit_id for l in listings], force, limit))

        existing = dict(existing_by_unit_id or {})
        for draft in listings:
            existing.setdefault(draft.unit_id, self.listings.get(draft.unit_id))

        result = ListingBatchResult()
        for action, draft, current in plan_listing_batch(listings, existing, force, limit):
            if action is ListingAction.SKIP:
                result.skipped.append(ListingOutcome(draft.unit_id, current))
            elif draft.unit_id in self.reject_units:
                result.failed[draft.unit_id] = "listing rejected by batch create"
            elif action is ListingAction.CREATE:
                created = self.add_listing(draft.unit_id, **draft.properties)
                result.created.append(ListingOutcome(draft.unit_id, created))
            else:
                current.properties.update(draft.lease_update_payload())
                result.updated.append(ListingOutcome(draft.unit_id, current))
        return result

    def search_contact_by_email(self, email: str) -> Optional[Contact]:
        self.calls.append(("search_contact_by_email", email))
        return self.contacts.get(email.lower())

    def get_contact_listing_associations(self, contact_id, listing_id) -> list[AssociationRecord]:
        self.calls.append(("get_contact_listing_associations", contact_id, listing_id))
        types = self.associations.get((contact_id, listing_id), set())
        return [AssociationRecord(type_id=t) for t in sorted(types)]

    def create_contact_listing_association(self, contact_id, listing_id, association_type_id) -> None:
        self.calls.append(
            ("create_contact_listing_association", contact_id, listing_id, association_type_id)
        )
        if self.fail_association_writes:
            raise HubSpotAPIError("association write rejected", status_code=400)
        self.associations.setdefault((contact_id, listing_id), set()).add(association_type_id)

    def remove_contact_listing_association(self, contact_id, listing_id, association_type_id) -> None:
        self.calls.append(
            ("remove_contact_listing_association", contact_id, listing_id, association_type_id)
        )
        if self.fail_association_writes:
            raise HubSpotAPIError("association removal rejected", status_code=400)
        self.associations.get((contact_id, listing_id), set()).discard(association_type_id)


# ============================================================================
# Model Fixtures
# ============================================================================

@pytest.fixture
def sample_tenant() -> Tenant:
    """Create a sample Buildium tenant."""
    return Tenant(id=501, email="Jane.Doe@Example.com ", first_name="Jane", last_name="Doe")


@pytest.fixture
def sample_contact() -> Contact:
    """Create the HubSpot contact matching sample_tenant."""
    return Contact(id="c-501", email="jane.doe@example.com")


@pytest.fixture
def sample_lease() -> Lease:
    """Create an active lease on unit 101 with one tenant."""
    return make_lease(1001, 101, last_updated=utc(2025, 9, 15), tenant_ids=[501])


# ============================================================================
# Fake Client Fixtures
# ============================================================================

@pytest.fixture
def fake_buildium(sample_lease: Lease, sample_tenant: Tenant) -> FakeBuildiumClient:
    return FakeBuildiumClient(leases=[sample_lease], tenants=[sample_tenant])


@pytest.fixture
def fake_hubspot(sample_contact: Contact) -> FakeHubSpotClient:
    hubspot = FakeHubSpotClient(contacts=[sample_contact])
    hubspot.add_listing("101", hs_name="Maple Court - Unit 101A")
    return hubspot


# ============================================================================
# Storage Fixtures
# ============================================================================

@pytest.fixture
def temp_db_path() -> Generator[Path, None, None]:
    """Create a temporary database file."""
    with tempfile.TemporaryDirectory() as tmp:
        yield Path(tmp) / "lease_sync.db"


@pytest.fixture
def checkpoint_store(temp_db_path: Path) -> CheckpointStore:
    """Create a fresh CheckpointStore with temp database."""
    return CheckpointStore(temp_db_path)


# ============================================================================
# Environment Fixtures
# ============================================================================

ENV_VARS = (
    "BUILDIUM_BASE_URL",
    "BUILDIUM_CLIENT_ID",
    "BUILDIUM_CLIENT_SECRET",
    "HUBSPOT_BASE_URL",
    "HUBSPOT_ACCESS_TOKEN",
    "SYNC_DRY_RUN",
    "SYNC_FORCE",
    "SYNC_BATCH_SIZE",
    "SYNC_LIMIT",
    "SYNC_MAX_RETRIES",
    "SYNC_REQUEST_TIMEOUT",
    "SYNC_LOOKBACK_DAYS",
    "STORAGE_DATABASE_PATH",
    "LOG_LEVEL",
)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Remove sync variables and run from an empty directory (no stray .env)."""
    # .env loading writes os.environ directly; keep it on a throwaway copy
    monkeypatch.setattr(os, "environ", dict(os.environ))
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return monkeypatch


@pytest.fixture
def mock_env(clean_env):
    """Set a complete, valid environment."""
    clean_env.setenv("BUILDIUM_BASE_URL", "https://api.buildium.test/v1/")
    clean_env.setenv("BUILDIUM_CLIENT_ID", "client-id-123456")
    clean_env.setenv("BUILDIUM_CLIENT_SECRET", "super-secret")
    clean_env.setenv("HUBSPOT_ACCESS_TOKEN", "pat-na1-token")
    return clean_env


# ============================================================================
# API Response Fixtures
# ============================================================================

@pytest.fixture
def buildium_lease_response() -> dict:
    """Sample Buildium API lease response."""
    return {
        "Id": 1001,
        "UnitId": 101,
        "PropertyId": 77,
        "UnitNumber": "101A",
        "LeaseStatus": "Active",
        "LeaseFromDate": "2025-01-01",
        "LeaseToDate": "2025-12-31",
        "LastUpdatedDateTime": "2025-09-15T10:30:00.1234567Z",
        "Tenants": [
            {"Id": 501, "FirstName": "Jane", "LastName": "Doe"},
            {"Id": 502},
        ],
        "AccountDetails": {"Rent": 1850},
        "UnitAddress": {
            "AddressLine1": "12 Maple St",
            "City": "Springfield",
            "State": "IL",
            "PostalCode": "62701",
        },
    }


@pytest.fixture
def hubspot_listing_response() -> dict:
    """Sample HubSpot listing object response."""
    return {
        "id": "9001",
        "properties": {
            "buildium_unit_id": "101",
            "hs_name": "Maple Court - Unit 101A",
            "buildium_lease_last_updated": "2025-09-15T10:30:00+00:00",
            "lease_status": "Active",
        },
    }
