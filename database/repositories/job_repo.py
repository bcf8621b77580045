"""Execution job repository (durable broker backed by PostgreSQL)."""

from typing import Dict, Optional

from database.connection import Database
from database.models import ExecutionJob


class JobRepository:
    """
    Durable job storage for the execution queue.

    Jobs are claimed with SELECT ... FOR UPDATE SKIP LOCKED so that each job
    is leased to one worker at a time. A lease that expires without an
    acknowledgment makes the job claimable again.
    """

    def __init__(self, db: Database):
        self.db = db

    async def enqueue(self, job: ExecutionJob, replace_finished: bool = False) -> bool:
        """
        Insert a job keyed by its deterministic id.

        Args:
            job: Job to insert
            replace_finished: Requeue an existing job that already finished

        Returns:
            True if the job was (re)queued, False if it was a duplicate
        """
        conflict = "DO NOTHING"
        if replace_finished:
            conflict = """
                DO UPDATE SET status = 'queued', attempts = 0, available_at = NOW(),
                              leased_until = NULL, last_error = NULL, updated_at = NOW()
                WHERE execution_jobs.status IN ('done', 'failed')
            """
        conn = await self.db.get_connection()
        try:
            job_id = await conn.fetchval(
                f"""
                INSERT INTO execution_jobs (id, kind, record_id, config_id, status, available_at)
                VALUES ($1, $2, $3, $4, 'queued', NOW())
                ON CONFLICT (id) {conflict}
                RETURNING id
                """,
                job.id, job.kind.value, job.record_id, job.config_id,
            )
            return job_id is not None
        finally:
            await self.db.release_connection(conn)

    async def claim(self, lease_seconds: int) -> Optional[ExecutionJob]:
        """Lease the next available job, including jobs whose lease expired."""
        conn = await self.db.get_connection()
        try:
            row = await conn.fetchrow(
                """
                UPDATE execution_jobs
                SET status = 'active', attempts = attempts + 1,
                    leased_until = NOW() + make_interval(secs => $1), updated_at = NOW()
                WHERE id = (
                    SELECT id FROM execution_jobs
                    WHERE (status = 'queued' AND available_at <= NOW())
                       OR (status = 'active' AND leased_until < NOW())
                    ORDER BY available_at
                    LIMIT 1
                    FOR UPDATE SKIP LOCKED
                )
                RETURNING *
                """,
                float(lease_seconds),
            )
            if row:
                return ExecutionJob.from_row(row)
            return None
        finally:
            await self.db.release_connection(conn)

    async def complete(self, job_id: str) -> None:
        """Acknowledge a job."""
        conn = await self.db.get_connection()
        try:
            await conn.execute(
                """
                UPDATE execution_jobs
                SET status = 'done', leased_until = NULL, updated_at = NOW()
                WHERE id = $1
                """,
                job_id,
            )
        finally:
            await self.db.release_connection(conn)

    async def retry(self, job_id: str, delay_seconds: float, error: str) -> None:
        """Put a job back in the queue after a delay."""
        conn = await self.db.get_connection()
        try:
            await conn.execute(
                """
                UPDATE execution_jobs
                SET status = 'queued', leased_until = NULL, last_error = $3,
                    available_at = NOW() + make_interval(secs => $2), updated_at = NOW()
                WHERE id = $1
                """,
                job_id, float(delay_seconds), error,
            )
        finally:
            await self.db.release_connection(conn)

    async def fail(self, job_id: str, error: str) -> None:
        """Mark a job as permanently failed."""
        conn = await self.db.get_connection()
        try:
            await conn.execute(
                """
                UPDATE execution_jobs
                SET status = 'failed', leased_until = NULL, last_error = $2, updated_at = NOW()
                WHERE id = $1
                """,
                job_id, error,
            )
        finally:
            await self.db.release_connection(conn)

    async def get(self, job_id: str) -> Optional[ExecutionJob]:
        """Get a job by id."""
        conn = await self.db.get_connection()
        try:
            row = await conn.fetchrow("SELECT * FROM execution_jobs WHERE id = $1", job_id)
            if row:
                return ExecutionJob.from_row(row)
            return None
        finally:
            await self.db.release_connection(conn)

    async def counts(self) -> Dict[str, int]:
        """Count jobs by status."""
        conn = await self.db.get_connection()
        try:
            rows = await conn.fetch("SELECT status, COUNT(*) AS n FROM execution_jobs GROUP BY status")
            return {row["status"]: row["n"] for row in rows}
        finally:
            await self.db.release_connection(conn)
