from typing import Any

import psycopg
from psycopg.rows import dict_row

from app.database.connection import get_connection
from app.database.models import JobRecord

# Key for pg_advisory_xact_lock; serializes claims so the concurrency cap holds.
CLAIM_LOCK_KEY = 7_351_002

_JOB_COLUMNS = "id, document_id, status, error_message, locked_at, created_at, updated_at"


def _to_record(row: dict[str, Any]) -> JobRecord:
    return JobRecord(
        id=row["id"],
        document_id=row["document_id"],
        status=row["status"],
        error_message=row.get("error_message"),
        locked_at=row.get("locked_at"),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


class JobRepository:
    """Database operations for the ocr_jobs table.

    Write methods take the caller's connection so they can join the caller's
    transaction; the caller commits.
    """

    def __init__(self, max_concurrency: int) -> None:
        self._max_concurrency = max_concurrency

    def enqueue(self, conn: psycopg.Connection[Any], document_id: str) -> int | None:
        """Queue an extraction; returns ``None`` if one is already pending or processing."""
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO ocr_jobs (document_id, status)
                VALUES (%s, 'pending')
                ON CONFLICT DO NOTHING
                RETURNING id
                """,
                (document_id,),
            )
            row = cur.fetchone()
        return None if row is None else int(row[0])

    def has_active_job(self, conn: psycopg.Connection[Any], document_id: str) -> bool:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT 1 FROM ocr_jobs
                WHERE document_id = %s AND status IN ('pending', 'processing')
                LIMIT 1
                """,
                (document_id,),
            )
            return cur.fetchone() is not None

    def claim_next_job(self, conn: psycopg.Connection[Any]) -> JobRecord | None:
        """Claim the oldest pending job unless the concurrency cap is reached.

        Claims are serialized with a transaction-level advisory lock; pending
        rows are selected with SELECT FOR UPDATE SKIP LOCKED.
        """
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute("SELECT pg_advisory_xact_lock(%s)", (CLAIM_LOCK_KEY,))
            cur.execute("SELECT COUNT(*) AS running FROM ocr_jobs WHERE status = 'processing'")
            count_row = cur.fetchone()
            if count_row is not None and count_row["running"] >= self._max_concurrency:
                conn.commit()
                return None

            cur.execute(
                """
                SELECT id, document_id, status
                FROM ocr_jobs
                WHERE status = 'pending'
                ORDER BY created_at, id
                LIMIT 1
                FOR UPDATE SKIP LOCKED
                """
            )
            row = cur.fetchone()

            if row is None:
                conn.commit()
                return None

            cur.execute(
                """
                UPDATE ocr_jobs
                SET status = 'processing', locked_at = NOW(), updated_at = NOW()
                WHERE id = %s
                RETURNING locked_at
                """,
                (row["id"],),
            )
            locked = cur.fetchone()
        conn.commit()

        return JobRecord(
            id=row["id"],
            document_id=row["document_id"],
            status="processing",
            locked_at=locked["locked_at"] if locked else None,
        )

    def mark_done(self, conn: psycopg.Connection[Any], job_id: int) -> bool:
        """Mark a running job as done.

        Returns ``False`` when the job is no longer ``processing``, for example
        after it was released as stale; its output must then be discarded.
        """
        cur = conn.execute(
            """
            UPDATE ocr_jobs
            SET status = 'done', error_message = NULL, updated_at = NOW()
            WHERE id = %s AND status = 'processing'
            """,
            (job_id,),
        )
        return cur.rowcount == 1

    def mark_failed(self, conn: psycopg.Connection[Any], job_id: int, error: str) -> bool:
        """Mark a job as failed; a job that already finished is left alone.

        Returns ``False`` when the job had already finished or been released.
        """
        cur = conn.execute(
            """
            UPDATE ocr_jobs
            SET status = 'failed', error_message = %s, updated_at = NOW()
            WHERE id = %s AND status IN ('pending', 'processing')
            """,
            (error, job_id),
        )
        return cur.rowcount == 1

    def release_stale_jobs(
        self, conn: psycopg.Connection[Any], stale_after_seconds: int
    ) -> list[JobRecord]:
        """Fail jobs stuck in processing longer than *stale_after_seconds*."""
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"""
                UPDATE ocr_jobs
                SET status = 'failed',
                    error_message = 'Extraction did not finish within the time limit',
                    updated_at = NOW()
                WHERE status = 'processing'
                  AND locked_at < NOW() - %s * INTERVAL '1 second'
                RETURNING {_JOB_COLUMNS}
                """,
                (stale_after_seconds,),
            )
            rows = cur.fetchall()
        return [_to_record(row) for row in rows]

    def find_by_id(self, job_id: int) -> JobRecord | None:
        """Find a job by ID. Useful for tests."""
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    f"SELECT {_JOB_COLUMNS} FROM ocr_jobs WHERE id = %s",
                    (job_id,),
                )
                row = cur.fetchone()
        return None if row is None else _to_record(row)

    def list_for_document(self, document_id: str) -> list[JobRecord]:
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    f"SELECT {_JOB_COLUMNS} FROM ocr_jobs WHERE document_id = %s ORDER BY id",
                    (document_id,),
                )
                rows = cur.fetchall()
        return [_to_record(row) for row in rows]
