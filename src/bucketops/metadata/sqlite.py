"""SQLite-backed metadata store for BucketOps.

Implements the MetadataStore protocol using aiosqlite for async access.
All tables use CREATE TABLE IF NOT EXISTS for schema idempotency. Job
metadata, event details and audit metadata are stored as JSON text.

Read paths treat a missing table as an empty result so that a store whose
schema has not been created yet still answers listings.
"""

import json
import logging
from typing import Any

import aiosqlite

from bucketops.metadata.models import (
    AuditLogEntry,
    AuditQuery,
    JobEvent,
    JobQuery,
    JobStatus,
    TransferJob,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2

_NON_TERMINAL = (JobStatus.QUEUED.value, JobStatus.RUNNING.value)


def _is_missing_table(exc: Exception) -> bool:
    return "no such table" in str(exc)


def _dumps(value: Any) -> str | None:
    return None if value is None else json.dumps(value)


def _loads(value: str | None) -> Any:
    return None if value is None else json.loads(value)


def _row_to_job(row: aiosqlite.Row) -> TransferJob:
    return TransferJob(
        job_id=row["job_id"],
        container_name=row["container_name"],
        operation_type=row["operation_type"],
        status=row["status"],
        total_items=row["total_items"],
        processed_items=row["processed_items"],
        error_count=row["error_count"],
        percentage=row["percentage"],
        started_at=row["started_at"],
        completed_at=row["completed_at"],
        created_by=row["created_by"],
        error_message=row["error_message"],
        metadata=_loads(row["metadata"]),
    )


def _row_to_audit(row: aiosqlite.Row) -> AuditLogEntry:
    return AuditLogEntry(
        id=row["id"],
        operation_type=row["operation_type"],
        container_name=row["container_name"],
        object_key=row["object_key"],
        user_email=row["user_email"],
        status=row["status"],
        timestamp=row["timestamp"],
        size_bytes=row["size_bytes"],
        destination_container=row["destination_container"],
        destination_key=row["destination_key"],
        metadata=_loads(row["metadata"]),
    )


def _job_filters(query: JobQuery) -> tuple[str, list[Any]]:
    """Build the WHERE clause for a job listing."""
    clauses = ["1=1"]
    params: list[Any] = []
    if query.status:
        # Audit-style status names are accepted as aliases.
        status = {"success": JobStatus.COMPLETED.value}.get(query.status, query.status)
        clauses.append("status = ?")
        params.append(status)
    if query.operation_type:
        clauses.append("operation_type = ?")
        params.append(query.operation_type)
    if query.container_name:
        clauses.append("container_name = ?")
        params.append(query.container_name)
    if query.created_by:
        clauses.append("created_by = ?")
        params.append(query.created_by)
    if query.start:
        clauses.append("started_at >= ?")
        params.append(query.start)
    if query.end:
        clauses.append("started_at <= ?")
        params.append(query.end)
    if query.job_id_contains:
        clauses.append("job_id LIKE ?")
        params.append(f"%{query.job_id_contains}%")
    if query.min_errors is not None:
        clauses.append("error_count >= ?")
        params.append(query.min_errors)
    return " AND ".join(clauses), params


def _audit_filters(query: AuditQuery) -> tuple[str, list[Any]]:
    """Build the WHERE clause for an audit listing."""
    clauses = ["1=1"]
    params: list[Any] = []
    if query.operation_type:
        clauses.append("operation_type = ?")
        params.append(query.operation_type)
    if query.container_name:
        clauses.append("container_name = ?")
        params.append(query.container_name)
    if query.status:
        clauses.append("status = ?")
        params.append(query.status)
    if query.user_email:
        clauses.append("user_email = ?")
        params.append(query.user_email)
    if query.start:
        clauses.append("timestamp >= ?")
        params.append(query.start)
    if query.end:
        clauses.append("timestamp <= ?")
        params.append(query.end)
    return " AND ".join(clauses), params


class SQLiteMetadataStore:
    """Metadata store backed by a local SQLite database.

    Attributes:
        db_path: Path to the SQLite database file.
        _db: The aiosqlite connection, set after init_db().
    """

    def __init__(self, db_path: str) -> None:
        """Initialize the SQLite metadata store.

        Args:
            db_path: Filesystem path to the SQLite database file.
                     Use ':memory:' for an in-memory database (useful in tests).
        """
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def init_db(self) -> None:
        """Open the database and create tables if they do not exist.

        Sets WAL journal mode, NORMAL synchronous, and a 5-second busy
        timeout. Idempotent: safe to call on every startup.
        """
        if self._db is None:
            self._db = await aiosqlite.connect(self.db_path)
            self._db.row_factory = aiosqlite.Row

            await self._db.execute("PRAGMA journal_mode = WAL")
            await self._db.execute("PRAGMA synchronous = NORMAL")
            await self._db.execute("PRAGMA busy_timeout = 5000")

        await self._create_tables()

    async def _create_tables(self) -> None:
        """Create all tables and indexes if they do not already exist."""
        assert self._db is not None

        async with self._db.execute(
            "SELECT 1 FROM sqlite_master WHERE type='table' AND name='schema_version'"
        ) as cursor:
            if await cursor.fetchone() is not None:
                await self._migrate()
                return

        await self._db.executescript("""
            CREATE TABLE IF NOT EXISTS jobs (
                job_id           TEXT PRIMARY KEY,
                container_name   TEXT,
                operation_type   TEXT NOT NULL,
                status           TEXT NOT NULL,
                total_items      INTEGER,
                processed_items  INTEGER NOT NULL DEFAULT 0,
                error_count      INTEGER NOT NULL DEFAULT 0,
                percentage       REAL NOT NULL DEFAULT 0,
                started_at       TEXT NOT NULL,
                completed_at     TEXT,
                created_by       TEXT,
                error_message    TEXT,
                metadata         TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status);
            CREATE INDEX IF NOT EXISTS idx_jobs_started ON jobs(started_at);
            CREATE INDEX IF NOT EXISTS idx_jobs_container ON jobs(container_name);

            CREATE TABLE IF NOT EXISTS job_events (
                id          INTEGER PRIMARY KEY AUTOINCREMENT,
                job_id      TEXT NOT NULL,
                event_type  TEXT NOT NULL,
                timestamp   TEXT NOT NULL,
                details     TEXT,
                user_email  TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_job_events_job ON job_events(job_id);

            CREATE TABLE IF NOT EXISTS audit_log (
                id                     INTEGER PRIMARY KEY AUTOINCREMENT,
                operation_type         TEXT NOT NULL,
                container_name         TEXT,
                object_key             TEXT,
                user_email             TEXT NOT NULL,
                status                 TEXT NOT NULL,
                timestamp              TEXT NOT NULL,
                size_bytes             INTEGER,
                destination_container  TEXT,
                destination_key        TEXT,
                metadata               TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_log(timestamp);
            CREATE INDEX IF NOT EXISTS idx_audit_operation ON audit_log(operation_type);
            CREATE INDEX IF NOT EXISTS idx_audit_container ON audit_log(container_name);

            CREATE TABLE IF NOT EXISTS container_owners (
                container_name  TEXT PRIMARY KEY,
                user_email      TEXT NOT NULL,
                created_at      TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS schema_version (
                version    INTEGER PRIMARY KEY,
                applied_at TEXT NOT NULL
            );
        """)

        now = utc_now_iso()
        await self._db.executemany(
            "INSERT OR IGNORE INTO schema_version (version, applied_at) VALUES (?, ?)",
            [(version, now) for version in range(1, SCHEMA_VERSION + 1)],
        )
        await self._db.commit()

    async def _migrate(self) -> None:
        """Upgrade a database created by an older release."""
        assert self._db is not None
        async with self._db.execute("SELECT MAX(version) FROM schema_version") as cursor:
            row = await cursor.fetchone()
        current = row[0] or 0
        if current < 2:
            async with self._db.execute("PRAGMA table_info(job_events)") as cursor:
                columns = {r["name"] for r in await cursor.fetchall()}
            if columns and "user_email" not in columns:
                await self._db.execute("ALTER TABLE job_events ADD COLUMN user_email TEXT")
            await self._db.execute(
                "INSERT OR IGNORE INTO schema_version (version, applied_at) VALUES (2, ?)",
                (utc_now_iso(),),
            )
            await self._db.commit()
            logger.info("Migrated metadata schema to version 2")

    async def close(self) -> None:
        """Close the database connection."""
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def ping(self) -> None:
        if self._db is None:
            raise RuntimeError("database connection closed")
        async with self._db.execute("SELECT 1") as cursor:
            await cursor.fetchone()

    # -- Jobs ------------------------------------------------------------------

    async def insert_job(self, job: TransferJob) -> None:
        assert self._db is not None
        await self._db.execute(
            "INSERT INTO jobs (job_id, container_name, operation_type, status, "
            "total_items, processed_items, error_count, percentage, started_at, "
            "completed_at, created_by, error_message, metadata) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                job.job_id,
                job.container_name,
                job.operation_type,
                job.status,
                job.total_items,
                job.processed_items,
                job.error_count,
                job.percentage,
                job.started_at or utc_now_iso(),
                job.completed_at,
                job.created_by,
                job.error_message,
                _dumps(job.metadata),
            ),
        )
        await self._db.commit()

    async def transition_job(
        self,
        job_id: str,
        from_statuses: tuple[str, ...],
        to_status: str,
        *,
        completed_at: str | None = None,
        processed_items: int | None = None,
        error_count: int | None = None,
        error_message: str | None = None,
        percentage: float | None = None,
    ) -> bool:
        """Guarded status change.

        The ``WHERE status IN (...)`` clause makes terminal states sticky: a
        late writer cannot reopen or overwrite a finished job.
        """
        assert self._db is not None
        sets = ["status = ?"]
        params: list[Any] = [to_status]
        if completed_at is not None:
            sets.append("completed_at = ?")
            params.append(completed_at)
        if processed_items is not None:
            sets.append("processed_items = max(processed_items, ?)")
            params.append(processed_items)
        if error_count is not None:
            sets.append("error_count = max(error_count, ?)")
            params.append(error_count)
        if error_message is not None:
            sets.append("error_message = ?")
            params.append(error_message)
        if percentage is not None:
            sets.append("percentage = max(percentage, ?)")
            params.append(percentage)

        placeholders = ", ".join("?" for _ in from_statuses)
        params.append(job_id)
        params.extend(from_statuses)
        cursor = await self._db.execute(
            f"UPDATE jobs SET {', '.join(sets)} "
            f"WHERE job_id = ? AND status IN ({placeholders})",
            params,
        )
        await self._db.commit()
        return cursor.rowcount > 0

    async def update_job_progress(
        self,
        job_id: str,
        processed_items: int,
        error_count: int,
        total_items: int | None,
        percentage: float | None,
    ) -> None:
        assert self._db is not None
        await self._db.execute(
            "UPDATE jobs SET "
            "processed_items = max(processed_items, ?), "
            "error_count = max(error_count, ?), "
            "total_items = COALESCE(?, total_items), "
            "percentage = max(percentage, COALESCE(?, percentage)) "
            f"WHERE job_id = ? AND status IN ({', '.join('?' for _ in _NON_TERMINAL)})",
            (processed_items, error_count, total_items, percentage, job_id, *_NON_TERMINAL),
        )
        await self._db.commit()

    async def set_job_metadata(self, job_id: str, metadata: dict[str, Any] | None) -> None:
        assert self._db is not None
        await self._db.execute(
            "UPDATE jobs SET metadata = ? WHERE job_id = ?",
            (_dumps(metadata), job_id),
        )
        await self._db.commit()

    async def get_job(self, job_id: str) -> TransferJob | None:
        assert self._db is not None
        try:
            async with self._db.execute(
                "SELECT * FROM jobs WHERE job_id = ?", (job_id,)
            ) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.OperationalError as exc:
            if not _is_missing_table(exc):
                raise
            return None
        return _row_to_job(row) if row is not None else None

    async def list_jobs(self, query: JobQuery) -> tuple[list[TransferJob], int]:
        assert self._db is not None
        where, params = _job_filters(query)
        direction = "DESC" if query.descending else "ASC"
        try:
            async with self._db.execute(
                f"SELECT * FROM jobs WHERE {where} "
                f"ORDER BY {query.sort_column} {direction}, job_id {direction} "
                "LIMIT ? OFFSET ?",
                (*params, query.limit, query.offset),
            ) as cursor:
                rows = await cursor.fetchall()
            async with self._db.execute(
                f"SELECT COUNT(*) FROM jobs WHERE {where}", params
            ) as cursor:
                total = (await cursor.fetchone())[0]
        except aiosqlite.OperationalError as exc:
            if not _is_missing_table(exc):
                raise
            logger.info("jobs table does not exist yet")
            return [], 0
        return [_row_to_job(r) for r in rows], total

    async def mark_stale_jobs(self, started_before: str, message: str) -> list[str]:
        assert self._db is not None
        placeholders = ", ".join("?" for _ in _NON_TERMINAL)
        async with self._db.execute(
            f"SELECT job_id FROM jobs WHERE status IN ({placeholders}) AND started_at < ?",
            (*_NON_TERMINAL, started_before),
        ) as cursor:
            stale = [row["job_id"] for row in await cursor.fetchall()]
        if not stale:
            return []
        now = utc_now_iso()
        await self._db.executemany(
            f"UPDATE jobs SET status = ?, completed_at = ?, error_message = ? "
            f"WHERE job_id = ? AND status IN ({placeholders})",
            [(JobStatus.FAILED.value, now, message, job_id, *_NON_TERMINAL) for job_id in stale],
        )
        await self._db.commit()
        return stale

    async def insert_job_event(self, event: JobEvent) -> None:
        assert self._db is not None
        await self._db.execute(
            "INSERT INTO job_events (job_id, event_type, timestamp, details, user_email) "
            "VALUES (?, ?, ?, ?, ?)",
            (
                event.job_id,
                event.event_type,
                event.timestamp,
                _dumps(event.details),
                event.user_email,
            ),
        )
        await self._db.commit()

    async def list_job_events(self, job_id: str) -> list[JobEvent]:
        assert self._db is not None
        try:
            async with self._db.execute(
                "SELECT * FROM job_events WHERE job_id = ? ORDER BY id ASC", (job_id,)
            ) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.OperationalError as exc:
            if not _is_missing_table(exc):
                raise
            return []
        return [
            JobEvent(
                id=row["id"],
                job_id=row["job_id"],
                event_type=row["event_type"],
                timestamp=row["timestamp"],
                details=_loads(row["details"]),
                user_email=row["user_email"],
            )
            for row in rows
        ]

    # -- Audit -----------------------------------------------------------------

    async def insert_audit_entry(self, entry: AuditLogEntry) -> None:
        assert self._db is not None
        await self._db.execute(
            "INSERT INTO audit_log (operation_type, container_name, object_key, "
            "user_email, status, timestamp, size_bytes, destination_container, "
            "destination_key, metadata) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                entry.operation_type,
                entry.container_name,
                entry.object_key,
                entry.user_email,
                entry.status,
                entry.timestamp or utc_now_iso(),
                entry.size_bytes,
                entry.destination_container,
                entry.destination_key,
                _dumps(entry.metadata),
            ),
        )
        await self._db.commit()

    async def list_audit_entries(self, query: AuditQuery) -> tuple[list[AuditLogEntry], int]:
        assert self._db is not None
        where, params = _audit_filters(query)
        direction = "DESC" if query.descending else "ASC"
        try:
            async with self._db.execute(
                f"SELECT * FROM audit_log WHERE {where} "
                f"ORDER BY {query.sort_column} {direction}, id {direction} "
                "LIMIT ? OFFSET ?",
                (*params, query.limit, query.offset),
            ) as cursor:
                rows = await cursor.fetchall()
            async with self._db.execute(
                f"SELECT COUNT(*) FROM audit_log WHERE {where}", params
            ) as cursor:
                total = (await cursor.fetchone())[0]
        except aiosqlite.OperationalError as exc:
            if not _is_missing_table(exc):
                raise
            logger.info("audit_log table does not exist yet")
            return [], 0
        return [_row_to_audit(r) for r in rows], total

    async def audit_summary(
        self,
        start: str | None = None,
        end: str | None = None,
        container_name: str | None = None,
    ) -> list[dict[str, Any]]:
        assert self._db is not None
        where, params = _audit_filters(
            AuditQuery(start=start, end=end, container_name=container_name)
        )
        try:
            async with self._db.execute(
                "SELECT operation_type, COUNT(*) AS count, "
                "SUM(CASE WHEN status = 'success' THEN 1 ELSE 0 END) AS success_count, "
                "SUM(CASE WHEN status = 'failed' THEN 1 ELSE 0 END) AS failed_count "
                f"FROM audit_log WHERE {where} "
                "GROUP BY operation_type ORDER BY count DESC, operation_type ASC",
                params,
            ) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.OperationalError as exc:
            if not _is_missing_table(exc):
                raise
            return []
        return [
            {
                "operation_type": row["operation_type"],
                "count": row["count"],
                "success_count": row["success_count"],
                "failed_count": row["failed_count"],
            }
            for row in rows
        ]

    # -- Container ownership ---------------------------------------------------

    async def set_container_owner(self, container_name: str, user_email: str) -> None:
        assert self._db is not None
        await self._db.execute(
            "INSERT INTO container_owners (container_name, user_email, created_at) "
            "VALUES (?, ?, ?) "
            "ON CONFLICT(container_name) DO UPDATE SET user_email = excluded.user_email",
            (container_name, user_email, utc_now_iso()),
        )
        await self._db.commit()

    async def get_container_owner(self, container_name: str) -> str | None:
        assert self._db is not None
        async with self._db.execute(
            "SELECT user_email FROM container_owners WHERE container_name = ?",
            (container_name,),
        ) as cursor:
            row = await cursor.fetchone()
        return row["user_email"] if row is not None else None

    async def delete_container_owner(self, container_name: str) -> None:
        assert self._db is not None
        await self._db.execute(
            "DELETE FROM container_owners WHERE container_name = ?", (container_name,)
        )
        await self._db.commit()

    async def rename_container_owner(self, old_name: str, new_name: str) -> None:
        assert self._db is not None
        await self._db.execute(
            "UPDATE OR REPLACE container_owners SET container_name = ? WHERE container_name = ?",
            (new_name, old_name),
        )
        await self._db.commit()
