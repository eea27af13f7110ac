# src/storecrawl/database.py
"""Persistence port for crawl jobs, results and licenses, with a local SQLite backend."""

import json
import sqlite3
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence
import logging

from storecrawl.config import settings
from storecrawl.models import (
    CrawlJob,
    CrawlResult,
    JobFilter,
    JobStatus,
    JobType,
    ProgressDelta,
    RowFailure,
    SourceSite,
)

logger = logging.getLogger(__name__)

# SQL schema
CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS crawl_jobs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_email TEXT NOT NULL,
    source_site TEXT NOT NULL,
    job_type TEXT NOT NULL,
    config TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'PENDING',
    priority INTEGER NOT NULL DEFAULT 5,
    scheduled_at TIMESTAMP,

    -- Progress
    total_items INTEGER NOT NULL DEFAULT 0,
    processed_items INTEGER NOT NULL DEFAULT 0,
    success_items INTEGER NOT NULL DEFAULT 0,
    failed_items INTEGER NOT NULL DEFAULT 0,
    skipped_items INTEGER NOT NULL DEFAULT 0,

    -- Timing
    started_at TIMESTAMP,
    completed_at TIMESTAMP,
    duration_ms INTEGER,
    estimated_remaining_ms INTEGER,

    -- Failure
    error_code TEXT,
    error_message TEXT,
    error_details TEXT,

    metadata TEXT NOT NULL DEFAULT '{}',
    created_at TIMESTAMP NOT NULL,
    updated_at TIMESTAMP NOT NULL
);

-- At most one active (PENDING or RUNNING) job per user
CREATE UNIQUE INDEX IF NOT EXISTS ux_crawl_jobs_active_user
    ON crawl_jobs(user_email) WHERE status IN ('PENDING', 'RUNNING');

CREATE INDEX IF NOT EXISTS ix_crawl_jobs_user_created
    ON crawl_jobs(user_email, created_at);

CREATE TABLE IF NOT EXISTS crawl_results (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    job_id INTEGER NOT NULL REFERENCES crawl_jobs(id),
    item_id TEXT,
    item_type TEXT NOT NULL,
    data TEXT NOT NULL,
    quality REAL NOT NULL DEFAULT 0 CHECK (quality >= 0 AND quality <= 1),
    item_order INTEGER NOT NULL,
    page_number INTEGER NOT NULL,
    created_at TIMESTAMP NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS ux_crawl_results_job_item
    ON crawl_results(job_id, item_id) WHERE item_id IS NOT NULL;

CREATE TABLE IF NOT EXISTS licenses (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_email TEXT NOT NULL UNIQUE,
    is_active INTEGER NOT NULL DEFAULT 1,
    end_date TIMESTAMP,
    created_at TIMESTAMP NOT NULL
);
"""

_JOB_UPDATABLE_COLUMNS = {
    "started_at",
    "completed_at",
    "duration_ms",
    "estimated_remaining_ms",
    "error_code",
    "error_message",
    "error_details",
    "metadata",
}

_JSON_COLUMNS = {"config", "error_details", "metadata"}


def _to_db(column: str, value: Any) -> Any:
    if value is None:
        return None
    if column in _JSON_COLUMNS:
        return json.dumps(value, ensure_ascii=False, default=str)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class AbstractCrawlStore(ABC):
    """Abstract base class defining the persistence interface."""

    @abstractmethod
    def connect(self) -> None:
        """Establish database connection."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close database connection."""
        pass

    @abstractmethod
    def create_schema(self) -> None:
        """Create the necessary database tables."""
        pass

    # -- jobs ---------------------------------------------------------------

    @abstractmethod
    def create_job(
        self,
        user_email: str,
        source_site: SourceSite,
        job_type: JobType,
        config: Dict[str, Any],
        priority: int,
        scheduled_at: Optional[datetime],
        now: datetime,
    ) -> Optional[CrawlJob]:
        """Insert a PENDING job.

        Returns:
            The created job, or None if the user already has an active job.
        """
        pass

    @abstractmethod
    def get_job(self, job_id: int) -> Optional[CrawlJob]:
        pass

    @abstractmethod
    def find_active_job(self, user_email: str) -> Optional[CrawlJob]:
        """Return the user's PENDING or RUNNING job, if any."""
        pass

    @abstractmethod
    def transition_status(
        self,
        job_id: int,
        from_statuses: Iterable[JobStatus],
        to_status: JobStatus,
        now: datetime,
        **fields: Any,
    ) -> bool:
        """Compare-and-set a job's status.

        Only flips the status when the current status is one of
        ``from_statuses``; extra ``fields`` are written in the same statement.

        Returns:
            True if the transition happened.
        """
        pass

    @abstractmethod
    def increment_progress(self, job_id: int, delta: ProgressDelta, now: datetime, **fields: Any) -> bool:
        """Increment counters of a RUNNING job.

        Returns:
            True if the job was RUNNING and its counters were updated.
        """
        pass

    @abstractmethod
    def list_jobs(self, job_filter: JobFilter) -> tuple[List[CrawlJob], int]:
        """Return one page of jobs (newest first) and the total match count."""
        pass

    @abstractmethod
    def job_status_counts(self, user_email: str) -> List[Dict[str, Any]]:
        """Return rows of status/job_type/source_site/count for a user."""
        pass

    @abstractmethod
    def job_totals(self, user_email: str) -> Dict[str, Any]:
        """Return total successful items and average duration for a user."""
        pass

    # -- results ------------------------------------------------------------

    @abstractmethod
    def insert_results(self, job_id: int, results: Sequence[CrawlResult], delta: ProgressDelta,
                       now: datetime) -> Optional[tuple[int, int, List[RowFailure]]]:
        """Insert result rows and add their counts to a RUNNING job in one transaction.

        ``delta`` carries counts settled before storage; each row's outcome
        is added to it. A failing row never rolls back its siblings. Nothing
        is written unless the job is RUNNING.

        Returns:
            Tuple of (inserted, duplicates, failures), or None if the job is not RUNNING
        """
        pass

    @abstractmethod
    def existing_item_ids(self, job_id: int, item_ids: Iterable[str]) -> set:
        pass

    @abstractmethod
    def get_results(self, job_id: int) -> List[CrawlResult]:
        """Return a job's results in traversal order (page, then item order)."""
        pass

    # -- licenses -----------------------------------------------------------

    @abstractmethod
    def get_license(self, user_email: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def save_license(self, user_email: str, is_active: bool, end_date: Optional[datetime], now: datetime) -> None:
        pass


class LocalSqliteCrawlStore(AbstractCrawlStore):
    """SQLite implementation of the persistence port."""

    def __init__(self, db_url: Optional[str] = None):
        """Initialize local SQLite database.

        Args:
            db_url: Database URL (sqlite:///path/to/db.db or sqlite:///:memory:).
                Defaults to settings.DATABASE_URL.
        """
        self.db_url = db_url or settings.DATABASE_URL
        self.db_path = self.db_url.replace("sqlite:///", "")
        self.conn: Optional[sqlite3.Connection] = None
        self.connect()
        self.create_schema()

    def connect(self) -> None:
        """Establish SQLite connection."""
        self.conn = sqlite3.connect(self.db_path)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        logger.debug(f"Connected to local SQLite database: {self.db_path}")

    def close(self) -> None:
        """Close SQLite connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.debug("Closed local SQLite connection")

    def create_schema(self) -> None:
        """Create tables and indexes if they don't exist."""
        with self.conn:
            self.conn.executescript(CREATE_TABLES_SQL)
        logger.debug("Schema verified/created for local SQLite")

    # -- row mapping ----------------------------------------------------------

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> CrawlJob:
        return CrawlJob(
            id=row["id"],
            user_email=row["user_email"],
            source_site=SourceSite(row["source_site"]),
            job_type=JobType(row["job_type"]),
            config=json.loads(row["config"]),
            status=JobStatus(row["status"]),
            priority=row["priority"],
            scheduled_at=_parse_dt(row["scheduled_at"]),
            total_items=row["total_items"],
            processed_items=row["processed_items"],
            success_items=row["success_items"],
            failed_items=row["failed_items"],
            skipped_items=row["skipped_items"],
            started_at=_parse_dt(row["started_at"]),
            completed_at=_parse_dt(row["completed_at"]),
            duration_ms=row["duration_ms"],
            estimated_remaining_ms=row["estimated_remaining_ms"],
            error_code=row["error_code"],
            error_message=row["error_message"],
            error_details=json.loads(row["error_details"]) if row["error_details"] else None,
            metadata=json.loads(row["metadata"]) if row["metadata"] else {},
            created_at=_parse_dt(row["created_at"]),
            updated_at=_parse_dt(row["updated_at"]),
        )

    @staticmethod
    def _row_to_result(row: sqlite3.Row) -> CrawlResult:
        return CrawlResult(
            id=row["id"],
            job_id=row["job_id"],
            item_id=row["item_id"],
            item_type=row["item_type"],
            data=json.loads(row["data"]),
            quality=row["quality"],
            item_order=row["item_order"],
            page_number=row["page_number"],
            created_at=_parse_dt(row["created_at"]),
        )

    # -- jobs -----------------------------------------------------------------

    def create_job(self, user_email, source_site, job_type, config, priority, scheduled_at, now):
        insert_sql = """
            INSERT INTO crawl_jobs (
                user_email, source_site, job_type, config, status, priority,
                scheduled_at, metadata, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        try:
            with self.conn:
                cursor = self.conn.execute(
                    insert_sql,
                    (
                        user_email,
                        source_site.value,
                        job_type.value,
                        _to_db("config", config),
                        JobStatus.PENDING.value,
                        priority,
                        _to_db("scheduled_at", scheduled_at),
                        "{}",
                        now.isoformat(),
                        now.isoformat(),
                    ),
                )
        except sqlite3.IntegrityError as e:
            if "UNIQUE" in str(e).upper():
                logger.debug(f"Active job already exists for {user_email}")
                return None
            raise
        return self.get_job(cursor.lastrowid)

    def get_job(self, job_id):
        cursor = self.conn.execute("SELECT * FROM crawl_jobs WHERE id = ?", (job_id,))
        row = cursor.fetchone()
        return self._row_to_job(row) if row else None

    def find_active_job(self, user_email):
        cursor = self.conn.execute(
            "SELECT * FROM crawl_jobs WHERE user_email = ? AND status IN (?, ?) ORDER BY id LIMIT 1",
            (user_email, JobStatus.PENDING.value, JobStatus.RUNNING.value),
        )
        row = cursor.fetchone()
        return self._row_to_job(row) if row else None

    def transition_status(self, job_id, from_statuses, to_status, now, **fields):
        unknown = set(fields) - _JOB_UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update job columns: {sorted(unknown)}")

        from_values = [status.value for status in from_statuses]
        assignments = ["status = ?", "updated_at = ?"]
        params: List[Any] = [to_status.value, now.isoformat()]
        for column, value in fields.items():
            assignments.append(f"{column} = ?")
            params.append(_to_db(column, value))

        placeholders = ", ".join("?" for _ in from_values)
        update_sql = (
            f"UPDATE crawl_jobs SET {', '.join(assignments)} "
            f"WHERE id = ? AND status IN ({placeholders})"
        )
        with self.conn:
            cursor = self.conn.execute(update_sql, (*params, job_id, *from_values))
        return cursor.rowcount == 1

    def _progress_update(self, delta: ProgressDelta, now: datetime, fields: Dict[str, Any]) -> tuple[str, List[Any]]:
        unknown = set(fields) - _JOB_UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update job columns: {sorted(unknown)}")

        assignments = [
            "total_items = total_items + ?",
            "processed_items = processed_items + ?",
            "success_items = success_items + ?",
            "failed_items = failed_items + ?",
            "skipped_items = skipped_items + ?",
            "updated_at = ?",
        ]
        params: List[Any] = [
            delta.total,
            delta.processed,
            delta.success,
            delta.failed,
            delta.skipped,
            now.isoformat(),
        ]
        for column, value in fields.items():
            assignments.append(f"{column} = ?")
            params.append(_to_db(column, value))

        update_sql = f"UPDATE crawl_jobs SET {', '.join(assignments)} WHERE id = ? AND status = ?"
        return update_sql, params

    def increment_progress(self, job_id, delta, now, **fields):
        update_sql, params = self._progress_update(delta, now, fields)
        with self.conn:
            cursor = self.conn.execute(update_sql, (*params, job_id, JobStatus.RUNNING.value))
        return cursor.rowcount == 1

    def _filter_clause(self, job_filter: JobFilter) -> tuple[str, List[Any]]:
        clauses: List[str] = []
        params: List[Any] = []
        if job_filter.user_email:
            clauses.append("user_email = ?")
            params.append(job_filter.user_email)
        if job_filter.status:
            clauses.append("status = ?")
            params.append(job_filter.status.value)
        if job_filter.source_site:
            clauses.append("source_site = ?")
            params.append(job_filter.source_site.value)
        if job_filter.job_type:
            clauses.append("job_type = ?")
            params.append(job_filter.job_type.value)
        if job_filter.created_from:
            clauses.append("created_at >= ?")
            params.append(job_filter.created_from.isoformat())
        if job_filter.created_to:
            clauses.append("created_at <= ?")
            params.append(job_filter.created_to.isoformat())
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, params

    def list_jobs(self, job_filter):
        where, params = self._filter_clause(job_filter)
        page = max(job_filter.page, 1)
        limit = max(job_filter.limit, 1)

        total = self.conn.execute(f"SELECT COUNT(*) FROM crawl_jobs {where}", params).fetchone()[0]
        cursor = self.conn.execute(
            f"SELECT * FROM crawl_jobs {where} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
            (*params, limit, (page - 1) * limit),
        )
        return [self._row_to_job(row) for row in cursor.fetchall()], total

    def job_status_counts(self, user_email):
        cursor = self.conn.execute(
            """
            SELECT status, job_type, source_site, COUNT(*) AS count
            FROM crawl_jobs WHERE user_email = ?
            GROUP BY status, job_type, source_site
            """,
            (user_email,),
        )
        return [dict(row) for row in cursor.fetchall()]

    def job_totals(self, user_email):
        row = self.conn.execute(
            """
            SELECT
                COALESCE(SUM(success_items), 0) AS total_success,
                AVG(CASE WHEN status IN ('COMPLETED', 'FAILED', 'CANCELLED')
                         AND started_at IS NOT NULL THEN duration_ms END) AS avg_duration
            FROM crawl_jobs WHERE user_email = ?
            """,
            (user_email,),
        ).fetchone()
        return dict(row)

    # -- results --------------------------------------------------------------

    def insert_results(self, job_id, results, delta, now):
        insert_sql = """
            INSERT INTO crawl_results (
                job_id, item_id, item_type, data, quality, item_order, page_number, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """
        inserted = 0
        duplicates = 0
        failures: List[RowFailure] = []

        with self.conn:
            # Takes the write lock, so the status cannot change before commit
            cursor = self.conn.execute(
                "UPDATE crawl_jobs SET updated_at = ? WHERE id = ? AND status = ?",
                (now.isoformat(), job_id, JobStatus.RUNNING.value),
            )
            if cursor.rowcount != 1:
                return None

            # Constraint violations abort only the failing statement, not the transaction
            for result in results:
                try:
                    self.conn.execute(
                        insert_sql,
                        (
                            job_id,
                            result.item_id,
                            result.item_type,
                            json.dumps(result.data, ensure_ascii=False, default=str),
                            result.quality,
                            result.item_order,
                            result.page_number,
                            now.isoformat(),
                        ),
                    )
                    inserted += 1
                except sqlite3.IntegrityError as e:
                    if "UNIQUE" in str(e).upper():
                        duplicates += 1
                    else:
                        failures.append(RowFailure(result.item_order, result.item_id, str(e)))
                except (sqlite3.InterfaceError, TypeError, ValueError) as e:
                    failures.append(RowFailure(result.item_order, result.item_id, str(e)))

            update_sql, params = self._progress_update(
                ProgressDelta(
                    total=delta.total,
                    processed=delta.processed + inserted + duplicates + len(failures),
                    success=delta.success + inserted,
                    failed=delta.failed + len(failures),
                    skipped=delta.skipped + duplicates,
                ),
                now,
                {},
            )
            self.conn.execute(update_sql, (*params, job_id, JobStatus.RUNNING.value))

        logger.debug(
            f"Job {job_id}: inserted {inserted} results ({duplicates} duplicates, {len(failures)} failed)"
        )
        return inserted, duplicates, failures

    def existing_item_ids(self, job_id, item_ids):
        ids = [item_id for item_id in item_ids if item_id is not None]
        if not ids:
            return set()
        found = set()
        # SQLite caps bound parameters; query in chunks
        for start in range(0, len(ids), 500):
            chunk = ids[start:start + 500]
            placeholders = ", ".join("?" for _ in chunk)
            cursor = self.conn.execute(
                f"SELECT item_id FROM crawl_results WHERE job_id = ? AND item_id IN ({placeholders})",
                (job_id, *chunk),
            )
            found.update(row["item_id"] for row in cursor.fetchall())
        return found

    def get_results(self, job_id):
        cursor = self.conn.execute(
            "SELECT * FROM crawl_results WHERE job_id = ? ORDER BY page_number, item_order, id",
            (job_id,),
        )
        return [self._row_to_result(row) for row in cursor.fetchall()]

    # -- licenses -------------------------------------------------------------

    def get_license(self, user_email):
        row = self.conn.execute(
            "SELECT * FROM licenses WHERE user_email = ?", (user_email,)
        ).fetchone()
        if not row:
            return None
        return {
            "user_email": row["user_email"],
            "is_active": bool(row["is_active"]),
            "end_date": _parse_dt(row["end_date"]),
        }

    def save_license(self, user_email, is_active, end_date, now):
        with self.conn:
            self.conn.execute(
                """
                INSERT INTO licenses (user_email, is_active, end_date, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(user_email) DO UPDATE SET
                    is_active = excluded.is_active,
                    end_date = excluded.end_date
                """,
                (user_email, int(is_active), _to_db("end_date", end_date), now.isoformat()),
            )
        logger.debug(f"Saved license for {user_email} (active={is_active})")
