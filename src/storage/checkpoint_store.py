"""
SQLite-based persistent checkpoint store.

Provides atomic, durable storage for per-lease sync checkpoints and the
start time of the last completed run.
"""

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Mapping, Optional

from ..buildium.models import parse_timestamp
from .models import LeaseCheckpoint

logger = logging.getLogger(__name__)


class CheckpointStoreError(Exception):
    """Raised when checkpoint store operations fail."""
    pass


class CheckpointStore:
    """
    SQLite-based persistent checkpoint store.

    Features:
    - Atomic batch upserts in a single transaction
    - Connection per operation via context manager
    - Automatic schema migration
    - Safe for scheduler-based usage

    Usage:
        store = CheckpointStore(Path("data/lease_sync.db"))

        checkpoints = store.get_last_sync_timestamps()
        store.update_last_sync_time(lease_id=123, timestamp=lease.last_updated)
    """

    SCHEMA_VERSION = 1

    CREATE_TABLE_SQL = """
        CREATE TABLE IF NOT EXISTS lease_checkpoints (
            lease_id INTEGER PRIMARY KEY,
            last_updated TEXT NOT NULL,
            synced_at TEXT
        )
    """

    CREATE_METADATA_TABLE_SQL = """
        CREATE TABLE IF NOT EXISTS _metadata (
            key TEXT PRIMARY KEY,
            value TEXT
        )
    """

    UPSERT_SQL = """
        INSERT OR REPLACE INTO lease_checkpoints (lease_id, last_updated, synced_at)
        VALUES (?, ?, ?)
    """

    LAST_RUN_KEY = "last_run_started_at"

    def __init__(self, database_path: Path):
        """
        Initialize checkpoint store.

        Args:
            database_path: Path to SQLite database file
        """
        self.database_path = Path(database_path)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)

        self._initialize_database()

        logger.info(f"Checkpoint store initialized at {self.database_path}")

    def _initialize_database(self) -> None:
        """Create tables and run migrations."""
        with self._get_connection() as conn:
            cursor = conn.cursor()

            cursor.execute(self.CREATE_METADATA_TABLE_SQL)

            cursor.execute("SELECT value FROM _metadata WHERE key = 'schema_version'")
            row = cursor.fetchone()
            current_version = int(row[0]) if row else 0

            if current_version < self.SCHEMA_VERSION:
                logger.info(f"Upgrading schema from v{current_version} to v{self.SCHEMA_VERSION}")
                cursor.execute(
                    "INSERT OR REPLACE INTO _metadata (key, value) VALUES (?, ?)",
                    ("schema_version", str(self.SCHEMA_VERSION)),
                )

            cursor.execute(self.CREATE_TABLE_SQL)
            conn.commit()

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """
        Get a database connection with proper settings.

        Yields:
            SQLite connection with WAL mode enabled

        Raises:
            CheckpointStoreError: On any SQLite failure
        """
        try:
            conn = sqlite3.connect(
                self.database_path,
                timeout=30.0,
                isolation_level="DEFERRED",
            )
        except sqlite3.Error as e:
            raise CheckpointStoreError(f"Cannot open {self.database_path}: {e}") from e

        try:
            conn.execute("PRAGMA journal_mode=WAL")
            yield conn
        except sqlite3.Error as e:
            conn.rollback()
            raise CheckpointStoreError(f"Checkpoint store operation failed: {e}") from e
        finally:
            conn.close()

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    def get(self, lease_id: int) -> Optional[LeaseCheckpoint]:
        """
        Get the checkpoint for a lease.

        Returns:
            LeaseCheckpoint if found, None otherwise
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT lease_id, last_updated, synced_at FROM lease_checkpoints WHERE lease_id = ?",
                (lease_id,),
            )
            row = cursor.fetchone()
            return LeaseCheckpoint.from_row(row) if row else None

    def get_all(self) -> list[LeaseCheckpoint]:
        """Get every checkpoint, ordered by lease id."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT lease_id, last_updated, synced_at FROM lease_checkpoints ORDER BY lease_id"
            )
            return [LeaseCheckpoint.from_row(row) for row in cursor.fetchall()]

    def get_last_sync_timestamps(self) -> dict[int, datetime]:
        """
        Load the checkpoint map.

        Returns:
            lease id -> last processed LastUpdatedDateTime
        """
        return {cp.lease_id: cp.last_updated for cp in self.get_all()}

    def save_last_sync_timestamps(self, timestamps: Mapping[int, datetime]) -> int:
        """
        Upsert many checkpoints in one transaction.

        Leases not in the mapping keep their existing checkpoints.

        Args:
            timestamps: lease id -> LastUpdatedDateTime to record

        Returns:
            Number of checkpoints written
        """
        if not timestamps:
            return 0

        synced_at = self._now().isoformat()
        rows = [
            (int(lease_id), parse_timestamp(ts).isoformat(), synced_at)
            for lease_id, ts in timestamps.items()
        ]

        with self._get_connection() as conn:
            conn.executemany(self.UPSERT_SQL, rows)
            conn.commit()

        logger.debug(f"Saved {len(rows)} lease checkpoint(s)")
        return len(rows)

    def update_last_sync_time(self, lease_id: int, timestamp: datetime) -> LeaseCheckpoint:
        """
        Record the checkpoint for a single lease.

        Args:
            lease_id: Buildium lease id
            timestamp: LastUpdatedDateTime that was processed

        Returns:
            The stored checkpoint
        """
        checkpoint = LeaseCheckpoint(
            lease_id=int(lease_id),
            last_updated=parse_timestamp(timestamp),
            synced_at=self._now(),
        )

        with self._get_connection() as conn:
            conn.execute(
                self.UPSERT_SQL,
                (
                    checkpoint.lease_id,
                    checkpoint.last_updated.isoformat(),
                    checkpoint.synced_at.isoformat(),
                ),
            )
            conn.commit()

        logger.debug(f"Saved checkpoint for lease {lease_id}")
        return checkpoint

    def record_run_started_at(self, started_at: datetime) -> None:
        """Remember when the last completed live run started."""
        with self._get_connection() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO _metadata (key, value) VALUES (?, ?)",
                (self.LAST_RUN_KEY, parse_timestamp(started_at).isoformat()),
            )
            conn.commit()

    def get_last_run_started_at(self) -> Optional[datetime]:
        """Start time of the last completed live run, if any."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT value FROM _metadata WHERE key = ?", (self.LAST_RUN_KEY,))
            row = cursor.fetchone()
            return parse_timestamp(row[0]) if row else None

    def count(self) -> int:
        """Count stored checkpoints."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) FROM lease_checkpoints")
            return cursor.fetchone()[0]

    def clear(self) -> None:
        """
        Clear all checkpoints and run metadata.

        WARNING: The next run reprocesses every lease.
        """
        with self._get_connection() as conn:
            conn.execute("DELETE FROM lease_checkpoints")
            conn.execute("DELETE FROM _metadata WHERE key = ?", (self.LAST_RUN_KEY,))
            conn.commit()

        logger.warning("All lease checkpoints cleared")
