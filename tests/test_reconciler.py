"""
Unit tests for per-lease association reconciliation.
"""

import pytest

from src.buildium.models import LeaseStatus, Tenant
from src.hubspot.models import AssociationType, Contact, Listing
from src.sync.reconciler import (
    LeaseReconciler,
    SyncError,
    stale_association_types,
    target_association_type,
)
from src.errors import ContactResolutionError, ListingCreationError

from conftest import make_lease


class TestAssociationTypes:
    """Tests for status to association type mapping."""

    def test_active(self):
        assert target_association_type(LeaseStatus.ACTIVE) is AssociationType.ACTIVE_TENANT
        assert stale_association_types(LeaseStatus.ACTIVE) == (AssociationType.FUTURE_TENANT,)

    def test_unknown_treated_as_active(self):
        assert target_association_type(LeaseStatus.UNKNOWN) is AssociationType.ACTIVE_TENANT
        assert stale_association_types(LeaseStatus.UNKNOWN) == ()

    def test_future(self):
        assert target_association_type(LeaseStatus.FUTURE) is AssociationType.FUTURE_TENANT

    def test_ended(self):
        assert target_association_type(LeaseStatus.PAST) is AssociationType.INACTIVE_TENANT
        assert set(stale_association_types(LeaseStatus.EVICTED)) == {
            AssociationType.ACTIVE_TENANT,
            AssociationType.FUTURE_TENANT,
        }


class TestSyncError:
    """Tests for SyncError."""

    def test_from_non_fatal_error(self):
        error = SyncError.from_exception(1, ContactResolutionError("no contact"))
        assert error.fatal is False
        assert error.error_type == "ContactResolutionError"

    def test_from_fatal_error(self):
        assert SyncError.from_exception(1, ListingCreationError("x")).fatal is True

    def test_unexpected_errors_are_fatal(self):
        error = SyncError.from_exception(1, RuntimeError("boom"))
        assert error.fatal is True
        assert error.error_type == "RuntimeError"


class TestLeaseReconciler:
    """Tests for LeaseReconciler.reconcile."""

    @pytest.fixture
    def listing(self, fake_hubspot) -> Listing:
        return fake_hubspot.listings["101"]

    def test_creates_active_tenant_association(self, fake_buildium, fake_hubspot, sample_lease, listing):
        outcome = LeaseReconciler(fake_buildium, fake_hubspot).reconcile(sample_lease, listing)

        assert outcome.associations_created == 1
        assert outcome.errors == []
        assert fake_hubspot.calls_to("create_contact_listing_association") == [
            ("create_contact_listing_association", "c-501", listing.id, 2)
        ]

    def test_email_lookup_is_normalized(self, fake_buildium, fake_hubspot, sample_lease, listing):
        LeaseReconciler(fake_buildium, fake_hubspot).reconcile(sample_lease, listing)
        assert fake_hubspot.calls_to("search_contact_by_email") == [
            ("search_contact_by_email", "jane.doe@example.com")
        ]

    def test_idempotent(self, fake_buildium, fake_hubspot, sample_lease, listing):
        """Test that a second pass reads the edge and writes nothing."""
        reconciler = LeaseReconciler(fake_buildium, fake_hubspot)
        reconciler.reconcile(sample_lease, listing)

        second = reconciler.reconcile(sample_lease, listing)

        assert second.associations_created == 0
        assert second.associations_unchanged == 1
        assert len(fake_hubspot.calls_to("create_contact_listing_association")) == 1
        assert len(fake_hubspot.calls_to("get_contact_listing_associations")) == 2

    def test_missing_contact_is_non_fatal(self, fake_buildium, fake_hubspot, listing):
        fake_buildium.tenants[502] = Tenant(id=502, email="nobody@example.com")
        lease = make_lease(1002, 101, tenant_ids=[502, 501])

        outcome = LeaseReconciler(fake_buildium, fake_hubspot).reconcile(lease, listing)

        assert outcome.associations_created == 1
        assert len(outcome.errors) == 1
        assert outcome.errors[0].error_type == "ContactResolutionError"
        assert outcome.fatal is False

    def test_tenant_not_found_is_non_fatal(self, fake_buildium, fake_hubspot, listing):
        lease = make_lease(1002, 101, tenant_ids=[999])

        outcome = LeaseReconciler(fake_buildium, fake_hubspot).reconcile(lease, listing)

        assert outcome.errors[0].error_type == "ContactResolutionError"
        assert outcome.fatal is False

    def test_tenant_without_email(self, fake_buildium, fake_hubspot, listing):
        fake_buildium.tenants[503] = Tenant(id=503, email=None)
        lease = make_lease(1002, 101, tenant_ids=[503])

        outcome = LeaseReconciler(fake_buildium, fake_hubspot).reconcile(lease, listing)

        assert "no email" in outcome.errors[0].message
        assert fake_hubspot.calls_to("search_contact_by_email") == []

    def test_shared_contact_handled_once(self, fake_buildium, fake_hubspot, listing):
        fake_buildium.tenants[504] = Tenant(id=504, email="JANE.DOE@example.com")
        lease = make_lease(1002, 101, tenant_ids=[501, 504])

        outcome = LeaseReconciler(fake_buildium, fake_hubspot).reconcile(lease, listing)

        assert outcome.associations_created == 1
        assert len(fake_hubspot.calls_to("get_contact_listing_associations")) == 1

    def test_future_lease_uses_future_tenant(self, fake_buildium, fake_hubspot, listing):
        lease = make_lease(1002, 101, status=LeaseStatus.FUTURE, tenant_ids=[501])

        LeaseReconciler(fake_buildium, fake_hubspot).reconcile(lease, listing)

        assert fake_hubspot.associations[("c-501", listing.id)] == {11}

    def test_ended_lease_swaps_to_inactive(self, fake_buildium, fake_hubspot, listing):
        fake_hubspot.associations[("c-501", listing.id)] = {2}
        lease = make_lease(1002, 101, status=LeaseStatus.PAST, tenant_ids=[501])

        outcome = LeaseReconciler(fake_buildium, fake_hubspot).reconcile(lease, listing)

        assert outcome.associations_created == 1
        assert outcome.associations_removed == 1
        assert fake_hubspot.associations[("c-501", listing.id)] == {6}
        assert fake_hubspot.calls_to("remove_contact_listing_association") == [
            ("remove_contact_listing_association", "c-501", listing.id, 2)
        ]

    def test_ended_lease_already_inactive(self, fake_buildium, fake_hubspot, listing):
        fake_hubspot.associations[("c-501", listing.id)] = {6}
        lease = make_lease(1002, 101, status=LeaseStatus.TERMINATED, tenant_ids=[501])

        outcome = LeaseReconciler(fake_buildium, fake_hubspot).reconcile(lease, listing)

        assert outcome.associations_unchanged == 1
        assert fake_hubspot.calls_to("create_contact_listing_association") == []
        assert fake_hubspot.calls_to("remove_contact_listing_association") == []

    def test_write_failure_is_non_fatal(self, fake_buildium, fake_hubspot, sample_lease, listing):
        fake_hubspot.fail_association_writes = True

        outcome = LeaseReconciler(fake_buildium, fake_hubspot).reconcile(sample_lease, listing)

        assert outcome.associations_created == 0
        assert outcome.errors[0].error_type == "AssociationWriteError"
        assert outcome.fatal is False

    def test_removal_failure_does_not_stop_lease(self, fake_buildium, fake_hubspot, listing):
        fake_hubspot.associations[("c-501", listing.id)] = {2, 6}
        fake_hubspot.fail_association_writes = True
        lease = make_lease(1002, 101, status=LeaseStatus.EXPIRED, tenant_ids=[501])

        outcome = LeaseReconciler(fake_buildium, fake_hubspot).reconcile(lease, listing)

        assert outcome.associations_unchanged == 1
        assert outcome.associations_removed == 0
        assert [e.error_type for e in outcome.errors] == ["AssociationWriteError"]

    def test_dry_run_reads_but_does_not_write(self, fake_buildium, fake_hubspot, sample_lease, listing):
        outcome = LeaseReconciler(fake_buildium, fake_hubspot, dry_run=True).reconcile(sample_lease, listing)

        assert outcome.associations_created == 1
        assert len(fake_hubspot.calls_to("get_contact_listing_associations")) == 1
        assert fake_hubspot.calls_to("create_contact_listing_association") == []

    def test_dry_run_draft_listing_skips_reads(self, fake_buildium, fake_hubspot, sample_lease):
        draft = Listing(unit_id="101")

        outcome = LeaseReconciler(fake_buildium, fake_hubspot, dry_run=True).reconcile(sample_lease, draft)

        assert outcome.associations_created == 1
        assert fake_hubspot.calls_to("get_contact_listing_associations") == []

    def test_lease_without_tenants(self, fake_buildium, fake_hubspot, listing):
        outcome = LeaseReconciler(fake_buildium, fake_hubspot).reconcile(make_lease(1002, 101), listing)

        assert outcome.associations_created == 0
        assert outcome.errors == []
        assert fake_hubspot.calls == []

    def test_lease_turning_active_drops_future_label(self, fake_buildium, fake_hubspot, listing):
        """Test that a future lease that started ends up with only the active label."""
        fake_hubspot.associations[("c-501", listing.id)] = {11}
        lease = make_lease(1002, 101, status=LeaseStatus.ACTIVE, tenant_ids=[501])

        outcome = LeaseReconciler(fake_buildium, fake_hubspot).reconcile(lease, listing)

        assert outcome.associations_created == 1
        assert outcome.associations_removed == 1
        assert fake_hubspot.associations[("c-501", listing.id)] == {2}
        assert fake_hubspot.calls_to("remove_contact_listing_association") == [
            ("remove_contact_listing_association", "c-501", listing.id, 11)
        ]

    def test_active_lease_keeps_inactive_label(self, fake_buildium, fake_hubspot, listing):
        """Test that history from an earlier ended lease is left alone."""
        fake_hubspot.associations[("c-501", listing.id)] = {2, 6}

        outcome = LeaseReconciler(fake_buildium, fake_hubspot).reconcile(
            make_lease(1002, 101, tenant_ids=[501]), listing
        )

        assert outcome.associations_unchanged == 1
        assert fake_hubspot.associations[("c-501", listing.id)] == {2, 6}
        assert fake_hubspot.calls_to("remove_contact_listing_association") == []

    def test_outcome_records_listing_currency(self, fake_buildium, fake_hubspot, sample_lease, listing):
        reconciler = LeaseReconciler(fake_buildium, fake_hubspot)

        assert reconciler.reconcile(sample_lease, listing).listing_current is False

        listing.properties["buildium_lease_last_updated"] = sample_lease.last_updated.isoformat()
        assert reconciler.reconcile(sample_lease, listing).listing_current is True
