#!/usr/bin/env python3
"""
Buildium to HubSpot Lease Sync - Main Entry Point

Synchronizes Buildium leases to HubSpot listings and tenant associations.

Usage:
    python -m src.main                    # Incremental sync
    python -m src.main --dry-run          # Preview changes without applying
    python -m src.main --unit-id 101 102  # Only these units
    python -m src.main --status           # Show checkpoint status

Environment Variables Required:
    BUILDIUM_BASE_URL       - Buildium API root (e.g., https://api.buildium.com/v1)
    BUILDIUM_CLIENT_ID      - Buildium API client id
    BUILDIUM_CLIENT_SECRET  - Buildium API client secret
    HUBSPOT_ACCESS_TOKEN    - HubSpot private app token
"""

import argparse
import logging
import signal
import sys
from datetime import timedelta
from pathlib import Path
from typing import Optional

# Add project root to path for imports if running as script
if __name__ == "__main__" and __package__ is None:
    PROJECT_ROOT = Path(__file__).parent.parent
    sys.path.insert(0, str(PROJECT_ROOT))

from config.settings import load_settings, ConfigurationError
from src.buildium.client import BuildiumClient, BuildiumAPIError
from src.buildium.models import parse_timestamp
from src.errors import TransientError
from src.hubspot.client import HubSpotClient, HubSpotAPIError
from src.storage.checkpoint_store import CheckpointStore, CheckpointStoreError
from src.sync.engine import LeaseCentricSyncManager, SyncStats


def setup_logging(verbose: bool = False, level_name: str = "INFO") -> None:
    """
    Configure logging for the application.

    Args:
        verbose: If True, enable DEBUG level logging
        level_name: Level from configuration when not verbose
    """
    level = logging.DEBUG if verbose else getattr(logging, level_name.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
        force=True,
    )

    # Reduce noise from external libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)


def _timestamp_arg(value: str):
    try:
        return parse_timestamp(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def _non_negative_int(value: str) -> int:
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"must not be negative, got {number}")
    return number


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Sync Buildium leases to HubSpot listings",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python -m src.main                          # Incremental sync
    python -m src.main --dry-run                # Preview changes
    python -m src.main --since 2025-07-01       # Leases updated since a date
    python -m src.main --force --limit 10       # Reprocess the first 10 leases
    python -m src.main --env .env.local         # Use custom env file
        """,
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Preview changes without making any modifications",
    )

    parser.add_argument(
        "--force",
        action="store_true",
        help="Process every lease regardless of checkpoints",
    )

    parser.add_argument(
        "--since",
        type=_timestamp_arg,
        help="Only fetch leases updated since this ISO timestamp",
    )

    parser.add_argument(
        "--batch-size",
        type=_positive_int,
        help="Leases per batch and concurrent workers (default: SYNC_BATCH_SIZE)",
    )

    parser.add_argument(
        "--limit",
        type=_non_negative_int,
        help="Maximum number of leases to process (default: SYNC_LIMIT)",
    )

    parser.add_argument(
        "--unit-id",
        dest="unit_ids",
        type=_positive_int,
        nargs="+",
        help="Only sync leases on these Buildium unit ids",
    )

    parser.add_argument(
        "--status",
        action="store_true",
        help="Show checkpoint status without performing sync",
    )

    parser.add_argument(
        "--env",
        type=Path,
        help="Path to .env file (default: .env in current directory)",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose/debug logging",
    )

    return parser.parse_args(argv)


def show_status(checkpoint_store: CheckpointStore) -> None:
    """
    Display current checkpoint status.

    Args:
        checkpoint_store: Checkpoint store to query
    """
    logger = logging.getLogger(__name__)

    checkpoints = checkpoint_store.get_all()
    last_run = checkpoint_store.get_last_run_started_at()

    logger.info("=" * 50)
    logger.info("Sync Status")
    logger.info("=" * 50)
    logger.info(f"Leases checkpointed:  {len(checkpoints)}")
    logger.info(f"Last complete run:    {last_run.isoformat() if last_run else 'never'}")

    if checkpoints:
        newest = max(checkpoints, key=lambda cp: cp.last_updated)
        logger.info(f"Newest lease change:  {newest.last_updated.isoformat()} (lease {newest.lease_id})")
    logger.info("=" * 50)


def report(stats: SyncStats) -> None:
    """Log the end-of-run summary."""
    logger = logging.getLogger(__name__)

    logger.info("=" * 50)
    logger.info("Sync Summary" + (" (DRY RUN)" if stats.dry_run else ""))
    logger.info("=" * 50)
    logger.info(f"Leases checked:         {stats.leases_checked}")
    logger.info(f"Leases selected:        {stats.leases_selected}")
    logger.info(f"Leases processed:       {stats.leases_processed}")
    logger.info(f"Listings created:       {stats.listings_created}")
    logger.info(f"Listings updated:       {stats.listings_updated}")
    logger.info(f"Listings skipped:       {stats.listings_skipped}")
    logger.info(f"Associations created:   {stats.associations_created}")
    logger.info(f"Associations removed:   {stats.associations_removed}")
    logger.info(f"Associations unchanged: {stats.associations_unchanged}")
    logger.info(f"Checkpoints advanced:   {stats.checkpoints_advanced}")
    logger.info(f"Errors:                 {len(stats.errors)}")
    if stats.cancelled:
        logger.info("Run stopped early at a batch boundary")
    logger.info("=" * 50)


def install_stop_handler(manager: LeaseCentricSyncManager) -> dict:
    """
    Turn SIGINT and SIGTERM into a stop at the next batch boundary.

    A second signal while the stop is pending raises KeyboardInterrupt.

    Returns:
        Previous handlers by signal number, for restore_signal_handlers
    """
    logger = logging.getLogger(__name__)

    def signal_handler(signum, frame):
        if manager.stop_requested:
            raise KeyboardInterrupt
        logger.warning(f"Received signal {signum}")
        manager.request_stop()

    previous = {}
    for signum in (signal.SIGINT, signal.SIGTERM):
        previous[signum] = signal.getsignal(signum)
        signal.signal(signum, signal_handler)
    return previous


def restore_signal_handlers(previous: dict) -> None:
    for signum, handler in previous.items():
        signal.signal(signum, handler)


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point.

    Returns:
        Exit code (0 success, 1 error, 130 interrupted)
    """
    args = parse_args(argv)
    setup_logging(verbose=args.verbose)

    logger = logging.getLogger(__name__)

    logger.info("Buildium to HubSpot Lease Sync")
    logger.info("=" * 50)

    try:
        settings = load_settings(env_file=args.env)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        logger.error("Please check your .env file or environment variables")
        return 1

    if not args.verbose:
        setup_logging(level_name=settings.log_level)

    try:
        checkpoint_store = CheckpointStore(settings.storage.database_path)
    except CheckpointStoreError as e:
        logger.error(f"Cannot open checkpoint store: {e}")
        return 1

    if args.status:
        show_status(checkpoint_store)
        return 0

    buildium_client = None
    hubspot_client = None
    manager = None
    previous_handlers: dict = {}

    try:
        logger.info("Initializing Buildium client...")
        buildium_client = BuildiumClient(
            base_url=settings.buildium.base_url,
            client_id=settings.buildium.client_id,
            client_secret=settings.buildium.client_secret,
            timeout=settings.sync.request_timeout,
            max_retries=settings.sync.max_retries,
        )

        logger.info("Initializing HubSpot client...")
        hubspot_client = HubSpotClient(
            access_token=settings.hubspot.access_token,
            base_url=settings.hubspot.base_url,
            timeout=settings.sync.request_timeout,
            max_retries=settings.sync.max_retries,
        )

        manager = LeaseCentricSyncManager(
            source=buildium_client,
            target=hubspot_client,
            checkpoint_store=checkpoint_store,
            lookback=timedelta(days=settings.sync.lookback_days),
        )
        previous_handlers = install_stop_handler(manager)

        stats = manager.sync_leases(
            dry_run=args.dry_run or settings.sync.dry_run,
            force=args.force or settings.sync.force,
            since_override=args.since,
            batch_size=args.batch_size if args.batch_size is not None else settings.sync.batch_size,
            limit=args.limit if args.limit is not None else settings.sync.limit,
            unit_ids=args.unit_ids,
        )

        report(stats)

        if stats.cancelled:
            logger.info("Sync interrupted by user")
            return 130

        if stats.errors:
            logger.warning("Some leases had errors. Check logs above.")
            return 1

        logger.info("Sync completed successfully!")
        return 0

    except BuildiumAPIError as e:
        logger.error(f"Buildium API error: {e}")
        return 1
    except HubSpotAPIError as e:
        logger.error(f"HubSpot API error: {e}")
        return 1
    except TransientError as e:
        logger.error(f"Network error after retries: {e}")
        return 1
    except CheckpointStoreError as e:
        logger.error(f"Checkpoint store error: {e}")
        return 1
    except KeyboardInterrupt:
        if manager:
            manager.request_stop()
        logger.info("Sync interrupted by user")
        return 130
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        return 1
    finally:
        restore_signal_handlers(previous_handlers)
        if buildium_client:
            buildium_client.close()
        if hubspot_client:
            hubspot_client.close()


if __name__ == "__main__":
    sys.exit(main())
