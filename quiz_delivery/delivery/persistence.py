"""
Job Store for delivery jobs.

SQLite with WAL mode, one connection per operation so the store can be
shared between request handlers and worker threads.

Provides:
- Atomic "create unless an active job exists" guarded by a partial unique index
- Active / latest lookups per (resource_id, owner_id)
- Conditional status transitions (QUEUED -> IN_PROGRESS -> terminal)
- Last-write-wins progress counters

Any sqlite error other than the uniqueness conflict surfaces as
JobStoreUnavailableError.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from .entities import (
    ACTIVE_STATUSES,
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    DeliveryJob,
    DeliveryJobStatus,
    FailureRecord,
    JobProgress,
    now_iso,
)
from .errors import (
    DeliveryError,
    InvalidProgressError,
    InvalidTransitionError,
    JobNotFoundError,
    JobStoreUnavailableError,
)


logger = logging.getLogger(__name__)

# Seconds to wait on a locked database before giving up
SQLITE_BUSY_TIMEOUT = 30.0

# Insert attempts when the conflicting active job finishes before it can be read back
CREATE_RETRY_LIMIT = 3

_ACTIVE_STATUS_VALUES = tuple(sorted(s.value for s in ACTIVE_STATUSES))


class JobStore:
    """
    SQLite-based persistence for delivery jobs.

    - Does NOT contain delivery logic
    - Enforces status monotonicity and the counter invariant
    - Only the runner owning a job id mutates that job
    """

    def __init__(self, db_path: str | Path, create_schema: bool = True):
        """
        Initialize the job store.

        Args:
            db_path: Path to SQLite database file
            create_schema: Create tables and indexes if missing. When False the
                database must already be migrated; operations on an unmigrated
                database raise JobStoreUnavailableError.
        """
        self.db_path = str(db_path)
        if create_schema:
            self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with WAL mode enabled."""
        conn = sqlite3.connect(self.db_path, timeout=SQLITE_BUSY_TIMEOUT)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Context manager for read-only database access."""
        try:
            conn = self._get_connection()
        except sqlite3.DatabaseError as e:
            raise JobStoreUnavailableError(f"job store unavailable: {e}") from e
        try:
            yield conn
        except sqlite3.IntegrityError:
            raise
        except sqlite3.DatabaseError as e:
            raise JobStoreUnavailableError(f"job store unavailable: {e}") from e
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for a write transaction."""
        with self._connection() as conn:
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS delivery_jobs (
                    job_id TEXT PRIMARY KEY,
                    resource_id TEXT NOT NULL,
                    owner_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    total_items INTEGER NOT NULL DEFAULT 0,
                    processed_items INTEGER NOT NULL DEFAULT 0,
                    succeeded_items INTEGER NOT NULL DEFAULT 0,
                    failed_items INTEGER NOT NULL DEFAULT 0,
                    duplicate_detected INTEGER NOT NULL DEFAULT 0,
                    last_error TEXT,
                    failed_item_details TEXT NOT NULL DEFAULT '[]',
                    created_at TEXT NOT NULL,
                    started_at TEXT,
                    finished_at TEXT,
                    CHECK (processed_items = succeeded_items + failed_items),
                    CHECK (processed_items <= total_items)
                )
            """)

            # At most one QUEUED / IN_PROGRESS job per (resource, owner)
            conn.execute(f"""
                CREATE UNIQUE INDEX IF NOT EXISTS ux_delivery_jobs_active
                ON delivery_jobs (resource_id, owner_id)
                WHERE status IN ({", ".join(f"'{s}'" for s in _ACTIVE_STATUS_VALUES)})
            """)

            # Index for latest-job lookup
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_delivery_jobs_resource_created
                ON delivery_jobs (resource_id, owner_id, created_at)
            """)

    # =========================================================================
    # Row Mapping
    # =========================================================================

    def _row_to_job(self, row: sqlite3.Row) -> DeliveryJob:
        """Convert a database row to a DeliveryJob entity."""
        return DeliveryJob(
            job_id=row["job_id"],
            resource_id=row["resource_id"],
            owner_id=row["owner_id"],
            status=DeliveryJobStatus(row["status"]),
            total_items=row["total_items"],
            processed_items=row["processed_items"],
            succeeded_items=row["succeeded_items"],
            failed_items=row["failed_items"],
            duplicate_detected=bool(row["duplicate_detected"]),
            last_error=row["last_error"],
            failed_item_details=[
                FailureRecord.from_dict(d) for d in json.loads(row["failed_item_details"])
            ],
            created_at=row["created_at"],
            started_at=row["started_at"],
            finished_at=row["finished_at"],
        )

    # =========================================================================
    # Creation
    # =========================================================================

    def create_if_none_active(
        self,
        resource_id: str,
        owner_id: str,
        total_items: int,
    ) -> tuple[DeliveryJob, bool]:
        """
        Create a QUEUED job unless one is already active for the pair.

        Two concurrent callers: exactly one insert succeeds, the other hits the
        partial unique index and reads back the winner.

        Returns:
            (job, created) where created is False if an existing active job
            was returned instead
        """
        for _ in range(CREATE_RETRY_LIMIT):
            job = DeliveryJob.create(resource_id, owner_id, total_items)
            try:
                with self._transaction() as conn:
                    conn.execute(
                        """
                        INSERT INTO delivery_jobs
                        (job_id, resource_id, owner_id, status, total_items, created_at)
                        VALUES (?, ?, ?, ?, ?, ?)
                        """,
                        (
                            job.job_id,
                            job.resource_id,
                            job.owner_id,
                            job.status.value,
                            job.total_items,
                            job.created_at,
                        ),
                    )
                return job, True

            except sqlite3.IntegrityError:
                existing = self.find_active(resource_id, owner_id)
                if existing is not None:
                    logger.info(
                        f"Active delivery job {existing.job_id} already exists "
                        f"for resource {resource_id}"
                    )
                    return existing, False

                # Winner reached a terminal status before we could read it
                logger.debug(f"Active job for {resource_id} vanished, retrying insert")

        raise DeliveryError(
            f"Could not create delivery job for resource {resource_id} "
            f"after {CREATE_RETRY_LIMIT} attempts"
        )

    # =========================================================================
    # Queries
    # =========================================================================

    def get_job(self, job_id: str) -> Optional[DeliveryJob]:
        """Get a job by ID."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM delivery_jobs WHERE job_id = ?",
                (job_id,),
            ).fetchone()

        if row is None:
            return None

        return self._row_to_job(row)

    def find_active(self, resource_id: str, owner_id: str) -> Optional[DeliveryJob]:
        """Get the QUEUED or IN_PROGRESS job for the pair, if any."""
        with self._connection() as conn:
            row = conn.execute(
                f"""
                SELECT * FROM delivery_jobs
                WHERE resource_id = ? AND owner_id = ?
                AND status IN ({", ".join("?" for _ in _ACTIVE_STATUS_VALUES)})
                LIMIT 1
                """,
                (resource_id, owner_id, *_ACTIVE_STATUS_VALUES),
            ).fetchone()

        if row is None:
            return None

        return self._row_to_job(row)

    def find_latest(self, resource_id: str, owner_id: str) -> Optional[DeliveryJob]:
        """Get the most recently created job for the pair, active or not."""
        with self._connection() as conn:
            row = conn.execute(
                """
                SELECT * FROM delivery_jobs
                WHERE resource_id = ? AND owner_id = ?
                ORDER BY created_at DESC, rowid DESC
                LIMIT 1
                """,
                (resource_id, owner_id),
            ).fetchone()

        if row is None:
            return None

        return self._row_to_job(row)

    def list_active_jobs(self) -> list[DeliveryJob]:
        """List every QUEUED or IN_PROGRESS job, oldest first."""
        with self._connection() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM delivery_jobs
                WHERE status IN ({", ".join("?" for _ in _ACTIVE_STATUS_VALUES)})
                ORDER BY created_at ASC, rowid ASC
                """,
                _ACTIVE_STATUS_VALUES,
            ).fetchall()

        return [self._row_to_job(row) for row in rows]

    def count_jobs_by_status(self, status: DeliveryJobStatus) -> int:
        """Count jobs by status."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT COUNT(*) as count FROM delivery_jobs WHERE status = ?",
                (status.value,),
            ).fetchone()

        return row["count"]

    # =========================================================================
    # Mutations
    # =========================================================================

    def _raise_for_failed_update(
        self,
        conn: sqlite3.Connection,
        job_id: str,
        target: DeliveryJobStatus,
    ) -> None:
        """Explain why a conditional UPDATE touched no row."""
        row = conn.execute(
            "SELECT status FROM delivery_jobs WHERE job_id = ?",
            (job_id,),
        ).fetchone()

        if row is None:
            raise JobNotFoundError(job_id)

        raise InvalidTransitionError(job_id, row["status"], target.value)

    def mark_started(self, job_id: str) -> DeliveryJob:
        """
        Atomically transition QUEUED -> IN_PROGRESS and stamp started_at.

        Raises:
            JobNotFoundError: If job doesn't exist
            InvalidTransitionError: If job is not QUEUED
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE delivery_jobs
                SET status = ?, started_at = ?
                WHERE job_id = ? AND status = ?
                """,
                (
                    DeliveryJobStatus.IN_PROGRESS.value,
                    now_iso(),
                    job_id,
                    DeliveryJobStatus.QUEUED.value,
                ),
            )

            if cursor.rowcount == 0:
                self._raise_for_failed_update(conn, job_id, DeliveryJobStatus.IN_PROGRESS)

            row = conn.execute(
                "SELECT * FROM delivery_jobs WHERE job_id = ?",
                (job_id,),
            ).fetchone()

        return self._row_to_job(row)

    def update_progress(self, job_id: str, progress: JobProgress) -> None:
        """
        Write live counters for an IN_PROGRESS job (last write wins).

        Raises:
            InvalidProgressError: If counters break the invariant
            JobNotFoundError: If job doesn't exist
            InvalidTransitionError: If job is not IN_PROGRESS
        """
        if not progress.is_consistent():
            raise InvalidProgressError(f"Inconsistent progress for job {job_id}: {progress}")

        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE delivery_jobs
                SET processed_items = ?, succeeded_items = ?, failed_items = ?, last_error = ?
                WHERE job_id = ? AND status = ? AND ? <= total_items
                """,
                (
                    progress.processed_items,
                    progress.succeeded_items,
                    progress.failed_items,
                    progress.last_error,
                    job_id,
                    DeliveryJobStatus.IN_PROGRESS.value,
                    progress.processed_items,
                ),
            )

            if cursor.rowcount == 0:
                row = conn.execute(
                    "SELECT status, total_items FROM delivery_jobs WHERE job_id = ?",
                    (job_id,),
                ).fetchone()
                if row is not None and row["status"] == DeliveryJobStatus.IN_PROGRESS.value:
                    raise InvalidProgressError(
                        f"Processed items {progress.processed_items} exceed total "
                        f"{row['total_items']} for job {job_id}"
                    )
                self._raise_for_failed_update(conn, job_id, DeliveryJobStatus.IN_PROGRESS)

    def mark_terminal(
        self,
        job_id: str,
        status: DeliveryJobStatus,
        last_error: Optional[str] = None,
        failed_item_details: Optional[list[FailureRecord]] = None,
        progress: Optional[JobProgress] = None,
        duplicate_detected: bool = False,
    ) -> DeliveryJob:
        """
        Move a job to a terminal status and stamp finished_at.

        Args:
            job_id: Job to finish
            status: COMPLETED, COMPLETED_WITH_ERRORS or FAILED
            last_error: Final error message
            failed_item_details: Items that exhausted retries
            progress: Final counters; current counters are kept when None
            duplicate_detected: Nothing new was created

        Raises:
            InvalidTransitionError: If status is not terminal or the job
                cannot reach it from its current status
            JobNotFoundError: If job doesn't exist
        """
        if status not in TERMINAL_STATUSES:
            raise InvalidTransitionError(job_id, "?", status.value)

        if progress is not None and not progress.is_consistent():
            raise InvalidProgressError(f"Inconsistent progress for job {job_id}: {progress}")

        sources = tuple(
            source.value for source, targets in ALLOWED_TRANSITIONS.items()
            if status in targets
        )

        updates = [
            "status = ?",
            "last_error = ?",
            "failed_item_details = ?",
            "duplicate_detected = ?",
            "finished_at = ?",
        ]
        values: list = [
            status.value,
            last_error,
            json.dumps([f.to_dict() for f in failed_item_details or []], ensure_ascii=False),
            1 if duplicate_detected else 0,
            now_iso(),
        ]

        if progress is not None:
            updates.extend([
                "processed_items = ?",
                "succeeded_items = ?",
                "failed_items = ?",
            ])
            values.extend([
                progress.processed_items,
                progress.succeeded_items,
                progress.failed_items,
            ])

        values.append(job_id)
        values.extend(sources)

        with self._transaction() as conn:
            cursor = conn.execute(
                f"""
                UPDATE delivery_jobs
                SET {", ".join(updates)}
                WHERE job_id = ? AND status IN ({", ".join("?" for _ in sources)})
                """,
                values,
            )

            if cursor.rowcount == 0:
                self._raise_for_failed_update(conn, job_id, status)

            row = conn.execute(
                "SELECT * FROM delivery_jobs WHERE job_id = ?",
                (job_id,),
            ).fetchone()

        return self._row_to_job(row)
