"""
Lease-centric sync engine.

Orchestrates the synchronization from Buildium leases to HubSpot
listings and tenant associations. Per-lease checkpoints decide what
runs; failed leases keep their checkpoint and are retried next run.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from ..buildium.client import BuildiumClient
from ..buildium.models import Lease
from ..errors import ListingCreationError
from ..hubspot.client import HubSpotClient
from ..hubspot.models import (
    Listing,
    ListingAction,
    ListingBatchResult,
    ListingOutcome,
    plan_listing_batch,
)
from ..storage.checkpoint_store import CheckpointStore
from .reconciler import LeaseOutcome, LeaseReconciler, SyncError
from .selector import select_leases
from .transform import build_listing_drafts, group_leases_by_unit

logger = logging.getLogger(__name__)

# Incremental fetches start this far before the last recorded run start
DEFAULT_LOOKBACK = timedelta(days=7)


@dataclass
class SyncStats:
    """Statistics from a sync run."""
    leases_checked: int = 0
    leases_selected: int = 0
    selected_lease_ids: list[int] = field(default_factory=list)
    leases_processed: int = 0
    listings_created: int = 0
    listings_updated: int = 0
    listings_skipped: int = 0
    associations_created: int = 0
    associations_removed: int = 0
    associations_unchanged: int = 0
    checkpoints_advanced: int = 0
    errors: list[SyncError] = field(default_factory=list)
    duration_seconds: float = 0.0
    dry_run: bool = False
    cancelled: bool = False

    @property
    def fatal_errors(self) -> list[SyncError]:
        return [e for e in self.errors if e.fatal]

    def __str__(self) -> str:
        prefix = "DRY RUN " if self.dry_run else ""
        return (
            f"{prefix}Sync complete: {self.leases_checked} leases checked, "
            f"{self.leases_selected} selected, {self.leases_processed} processed, "
            f"listings {self.listings_created} created / {self.listings_updated} updated / "
            f"{self.listings_skipped} skipped, "
            f"associations {self.associations_created} created / "
            f"{self.associations_removed} removed / {self.associations_unchanged} unchanged, "
            f"{self.checkpoints_advanced} checkpoints advanced, "
            f"{len(self.errors)} errors in {self.duration_seconds:.1f}s"
        )


class LeaseCentricSyncManager:
    """
    Orchestrates synchronization from Buildium to HubSpot.

    Core principles:
    - Only leases changed since their checkpoint are processed
    - Batches run in sequence; units within a batch run concurrently
    - One lease's failure never stops the batch or the run
    - Checkpoints are written once, after the last batch

    Usage:
        manager = LeaseCentricSyncManager(
            source=buildium_client,
            target=hubspot_client,
            checkpoint_store=store,
        )

        stats = manager.sync_leases(batch_size=50)
        print(stats)
    """

    def __init__(
        self,
        source: BuildiumClient,
        target: HubSpotClient,
        checkpoint_store: CheckpointStore,
        max_workers: Optional[int] = None,
        lookback: timedelta = DEFAULT_LOOKBACK,
    ):
        """
        Initialize the sync manager.

        Args:
            source: Configured Buildium client
            target: Configured HubSpot client
            checkpoint_store: Persistent per-lease checkpoints
            max_workers: Upper bound on concurrent units (default: batch size)
            lookback: Overlap subtracted from the last run start for incremental fetches
        """
        self.source = source
        self.target = target
        self.checkpoint_store = checkpoint_store
        self.max_workers = max_workers
        self.lookback = lookback

        self._stop_requested = threading.Event()

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested.is_set()

    def request_stop(self) -> None:
        """Stop at the next batch boundary; completed batches keep their results."""
        logger.warning("Stop requested; finishing the current batch")
        self._stop_requested.set()

    def sync_leases(
        self,
        dry_run: bool = False,
        force: bool = False,
        since_override: Optional[datetime] = None,
        batch_size: int = 50,
        limit: Optional[int] = None,
        unit_ids: Optional[Iterable[int]] = None,
    ) -> SyncStats:
        """
        Execute one sync run.

        Steps:
        1. Load checkpoints
        2. Fetch candidate leases from Buildium
        3. Select changed leases (limit applied)
        4. Process batches: listing read, batched create, associations
        5. Persist checkpoints for leases without fatal errors

        Args:
            dry_run: Compute everything, write nothing
            force: Process every candidate regardless of checkpoint
            since_override: Fetch leases updated since this time
            batch_size: Units of work per batch and worker pool size
            limit: Maximum number of leases to process
            unit_ids: Restrict the run to these Buildium units

        Returns:
            SyncStats

        Raises:
            ValueError: If batch_size or limit is out of range
        """
        if not isinstance(batch_size, int) or batch_size < 1:
            raise ValueError(f"batch_size must be a positive integer, got {batch_size}")
        if limit is not None and (not isinstance(limit, int) or limit < 0):
            raise ValueError(f"limit must be a non-negative integer, got {limit}")

        started = time.monotonic()
        run_started_at = datetime.now(timezone.utc)
        stats = SyncStats(dry_run=dry_run)
        self._stop_requested.clear()

        if dry_run:
            logger.info("DRY RUN MODE - No changes will be made")

        logger.info("Starting lease sync...")

        # Step 1: Checkpoints
        checkpoints = self.checkpoint_store.get_last_sync_timestamps()
        logger.info(f"Loaded {len(checkpoints)} lease checkpoints")

        # Step 2: Candidates (a failed fetch leaves nothing to reconcile)
        if unit_ids is not None:
            unit_ids = list(unit_ids)
        leases = self._fetch_candidates(force, since_override, unit_ids)
        stats.leases_checked = len(leases)

        # Step 3: Selection
        selection = select_leases(leases, checkpoints, force=force, limit=limit)
        stats.leases_selected = len(selection.selected)
        stats.selected_lease_ids = [lease.id for lease in selection.selected]
        logger.info(
            f"Selected {stats.leases_selected} of {stats.leases_checked} leases "
            f"({selection.skipped_count} unchanged, {selection.truncated} over limit)"
        )

        # Step 4: Batches
        reconciler = LeaseReconciler(self.source, self.target, dry_run=dry_run)
        to_checkpoint: dict[int, datetime] = {}
        batches = [
            selection.selected[i:i + batch_size]
            for i in range(0, len(selection.selected), batch_size)
        ]

        for number, batch in enumerate(batches, start=1):
            if self._stop_requested.is_set():
                logger.warning(f"Stopping before batch {number} of {len(batches)}")
                stats.cancelled = True
                break

            logger.info(f"Processing batch {number}/{len(batches)} ({len(batch)} leases)")
            outcomes = self._process_batch(batch, reconciler, stats, dry_run, force, limit, batch_size)

            for lease, outcome in zip(batch, outcomes):
                self._fold_outcome(stats, outcome)
                if outcome.fatal:
                    continue
                stats.leases_processed += 1
                if lease.last_updated is not None:
                    to_checkpoint[lease.id] = lease.last_updated

        # Step 5: Checkpoints
        if dry_run:
            logger.info(f"DRY RUN: Would advance {len(to_checkpoint)} checkpoints")
        else:
            stats.checkpoints_advanced = self.checkpoint_store.save_last_sync_timestamps(to_checkpoint)

            covered_everything = (
                unit_ids is None
                and since_override is None
                and not stats.cancelled
                and selection.truncated == 0
                and not stats.fatal_errors
            )
            if covered_everything:
                self.checkpoint_store.record_run_started_at(run_started_at)

        stats.duration_seconds = time.monotonic() - started

        logger.info(str(stats))

        if stats.errors:
            logger.warning(f"Sync completed with {len(stats.errors)} errors")
            for error in stats.errors:
                kind = "fatal" if error.fatal else "non-fatal"
                logger.warning(f"  - lease {error.lease_id} [{error.error_type}, {kind}]: {error.message}")

        return stats

    def _fetch_candidates(
        self,
        force: bool,
        since_override: Optional[datetime],
        unit_ids: Optional[list[int]],
    ) -> list[Lease]:
        """Pick the fetch strategy and load candidate leases."""
        if unit_ids is not None:
            logger.info(f"Fetching leases for {len(unit_ids)} units")
            leases = self.source.get_leases_by_unit_ids(unit_ids)
        elif since_override is not None:
            logger.info(f"Fetching leases updated since {since_override.isoformat()}")
            leases = self.source.get_leases_updated_since(since_override)
        elif force:
            logger.info("Forced run: fetching all leases")
            leases = self.source.get_all_leases()
        else:
            last_run = self.checkpoint_store.get_last_run_started_at()
            if last_run is None:
                logger.info("No previous run recorded: fetching all leases")
                leases = self.source.get_all_leases()
            else:
                since = last_run - self.lookback
                logger.info(
                    f"Fetching leases updated since {since.isoformat()} "
                    f"(last run at {last_run.isoformat()})"
                )
                leases = self.source.get_leases_updated_since(since)

        logger.info(f"Fetched {len(leases)} candidate leases from Buildium")
        return leases

    def _process_batch(
        self,
        batch: list[Lease],
        reconciler: LeaseReconciler,
        stats: SyncStats,
        dry_run: bool,
        force: bool,
        limit: Optional[int],
        batch_size: int,
    ) -> list[LeaseOutcome]:
        """
        Resolve listings for a batch and reconcile its leases.

        Returns:
            One outcome per lease, in batch order
        """
        try:
            listings, failed = self._prepare_listings(batch, stats, dry_run, force, limit)
        except Exception as e:
            logger.error(f"Failed to prepare listings for batch: {e}", exc_info=True)
            return [
                LeaseOutcome(
                    lease_id=lease.id,
                    unit_id=lease.unit_key,
                    errors=[SyncError.from_exception(lease.id, e)],
                )
                for lease in batch
            ]

        units = group_leases_by_unit(batch)
        workers = min(self.max_workers or batch_size, batch_size, len(units))
        results: dict[int, LeaseOutcome] = {}

        with ThreadPoolExecutor(max_workers=max(workers, 1)) as executor:
            futures = [
                executor.submit(
                    self._reconcile_unit,
                    reconciler,
                    unit_leases,
                    listings.get(unit_id),
                    failed.get(unit_id),
                )
                for unit_id, unit_leases in units.items()
            ]
            for future in futures:
                for outcome in future.result():
                    results[outcome.lease_id] = outcome

        return [results[lease.id] for lease in batch]

    def _prepare_listings(
        self,
        batch: list[Lease],
        stats: SyncStats,
        dry_run: bool,
        force: bool,
        limit: Optional[int],
    ) -> tuple[dict[str, Listing], dict[str, str]]:
        """
        Look up, create and refresh the listings a batch needs.

        Returns:
            (unit id -> listing, unit id -> failure message)
        """
        unit_keys = list(dict.fromkeys(lease.unit_key for lease in batch))

        found = self.target.get_listings_by_unit_ids(unit_keys)
        existing: dict[str, Optional[Listing]] = {unit_id: None for unit_id in unit_keys}
        for listing in found:
            if listing.unit_id in existing:
                existing[listing.unit_id] = listing

        # Drafts describe the whole unit, not only the selected leases
        unit_leases = self.source.get_leases_by_unit_ids(
            [lease.unit_id for lease in batch],
            property_ids={lease.unit_id: lease.property_id for lease in batch if lease.property_id},
        )
        known_ids = {lease.id for lease in unit_leases}
        unit_leases = list(unit_leases) + [lease for lease in batch if lease.id not in known_ids]
        drafts = [
            draft for draft in build_listing_drafts(unit_leases)
            if draft.unit_id in existing
        ]

        if dry_run:
            result = self._plan_listings(drafts, existing, force)
        else:
            result = self.target.create_listings_batch(
                drafts,
                dry_run=False,
                force=force,
                limit=limit,
                existing_by_unit_id=existing,
            )

        stats.listings_created += len(result.created)
        stats.listings_updated += len(result.updated)
        stats.listings_skipped += len(result.skipped)

        listings = {unit_id: listing for unit_id, listing in existing.items() if listing is not None}
        listings.update(result.listings_by_unit_id())
        return listings, dict(result.failed)

    @staticmethod
    def _plan_listings(
        drafts: list[Listing],
        existing: dict[str, Optional[Listing]],
        force: bool,
    ) -> ListingBatchResult:
        """Dry-run counterpart of create_listings_batch."""
        result = ListingBatchResult()
        for action, draft, current in plan_listing_batch(drafts, existing, force=force):
            if action is ListingAction.CREATE:
                logger.info(f"DRY RUN: Would create listing for unit {draft.unit_id}")
                result.created.append(ListingOutcome(draft.unit_id, draft))
            elif action is ListingAction.UPDATE:
                logger.info(f"DRY RUN: Would update listing {current.id} for unit {draft.unit_id}")
                result.updated.append(ListingOutcome(draft.unit_id, current))
            else:
                result.skipped.append(ListingOutcome(draft.unit_id, current))
        return result

    @staticmethod
    def _reconcile_unit(
        reconciler: LeaseReconciler,
        unit_leases: list[Lease],
        listing: Optional[Listing],
        failure: Optional[str],
    ) -> list[LeaseOutcome]:
        """Reconcile the leases of one unit, one after another."""
        outcomes = []

        for lease in unit_leases:
            errors = []
            if failure is not None:
                errors.append(SyncError.from_exception(
                    lease.id,
                    ListingCreationError(
                        f"Listing for unit {lease.unit_key} failed: {failure}",
                        lease_id=lease.id,
                    ),
                ))

            if listing is None:
                if failure is None:
                    errors.append(SyncError.from_exception(
                        lease.id,
                        ListingCreationError(
                            f"No listing for unit {lease.unit_key}",
                            lease_id=lease.id,
                        ),
                    ))
                outcomes.append(LeaseOutcome(lease.id, lease.unit_key, errors=errors))
                continue

            try:
                outcome = reconciler.reconcile(lease, listing)
            except Exception as e:
                logger.error(f"Error reconciling lease {lease.id}: {e}", exc_info=True)
                outcome = LeaseOutcome(lease.id, lease.unit_key, listing_id=listing.id)
                outcome.errors.append(SyncError.from_exception(lease.id, e))

            outcome.errors[:0] = errors
            outcomes.append(outcome)

        return outcomes

    @staticmethod
    def _fold_outcome(stats: SyncStats, outcome: LeaseOutcome) -> None:
        stats.associations_created += outcome.associations_created
        stats.associations_removed += outcome.associations_removed
        stats.associations_unchanged += outcome.associations_unchanged
        stats.errors.extend(outcome.errors)
