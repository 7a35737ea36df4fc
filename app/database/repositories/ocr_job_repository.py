from collections.abc import Sequence
from typing import Any

import psycopg
from psycopg.rows import dict_row

from app.database.connection import get_connection
from app.database.models import OcrJobRecord

_SELECT_COLUMNS = """
    id, collection_id, document_id, status, attempts,
    error_message, locked_at, created_at, updated_at
"""


class OcrJobRepository:
    """Database operations for the ocr_jobs queue table."""

    def __init__(self, max_attempts: int) -> None:
        self._max_attempts = max_attempts

    def enqueue(self, collection_id: str, document_id: str) -> int:
        """Queue one document for OCR and return the job ID."""
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO ocr_jobs (collection_id, document_id, status, attempts)
                    VALUES (%s, %s, 'pending', 0)
                    RETURNING id
                    """,
                    (collection_id, document_id),
                )
                row = cur.fetchone()
            conn.commit()
        if row is None:
            raise RuntimeError(f"Failed to enqueue OCR job for document {document_id}")
        return int(row[0])

    def enqueue_collection(self, collection_id: str, document_ids: Sequence[str]) -> list[int]:
        """Queue several documents of one collection in a single transaction."""
        job_ids: list[int] = []
        with get_connection() as conn:
            with conn.cursor() as cur:
                for document_id in document_ids:
                    cur.execute(
                        """
                        INSERT INTO ocr_jobs (collection_id, document_id, status, attempts)
                        VALUES (%s, %s, 'pending', 0)
                        RETURNING id
                        """,
                        (collection_id, document_id),
                    )
                    row = cur.fetchone()
                    if row is not None:
                        job_ids.append(int(row[0]))
            conn.commit()
        return job_ids

    def claim_next_job(self, conn: psycopg.Connection[Any]) -> OcrJobRecord | None:
        """Claim the next pending job using SELECT FOR UPDATE SKIP LOCKED."""
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                """
                SELECT id, collection_id, document_id, status, attempts
                FROM ocr_jobs
                WHERE status = 'pending'
                  AND attempts < %s
                ORDER BY created_at
                LIMIT 1
                FOR UPDATE SKIP LOCKED
                """,
                (self._max_attempts,),
            )
            row = cur.fetchone()

        if row is None:
            return None

        conn.execute(
            """
            UPDATE ocr_jobs
            SET status = 'processing', locked_at = NOW(), updated_at = NOW()
            WHERE id = %s
            """,
            (row["id"],),
        )
        conn.commit()

        return OcrJobRecord(
            id=row["id"],
            collection_id=str(row["collection_id"]),
            document_id=str(row["document_id"]),
            status="processing",
            attempts=row["attempts"],
        )

    def mark_done(self, job_id: int) -> None:
        with get_connection() as conn:
            conn.execute(
                "UPDATE ocr_jobs SET status = 'done', updated_at = NOW() WHERE id = %s",
                (job_id,),
            )
            conn.commit()

    def mark_failed(self, job_id: int, error: str) -> None:
        """Mark a job as permanently failed."""
        with get_connection() as conn:
            conn.execute(
                """
                UPDATE ocr_jobs
                SET status = 'failed', error_message = %s, updated_at = NOW()
                WHERE id = %s
                """,
                (error, job_id),
            )
            conn.commit()

    def increment_attempts(self, job_id: int, error: str | None = None) -> None:
        """Increment attempt count and return job to pending."""
        with get_connection() as conn:
            conn.execute(
                """
                UPDATE ocr_jobs
                SET attempts = attempts + 1, status = 'pending', error_message = %s,
                    locked_at = NULL, updated_at = NOW()
                WHERE id = %s
                """,
                (error, job_id),
            )
            conn.commit()

    def find_by_id(self, job_id: int) -> OcrJobRecord | None:
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    f"SELECT {_SELECT_COLUMNS} FROM ocr_jobs WHERE id = %s",
                    (job_id,),
                )
                row = cur.fetchone()

        if row is None:
            return None

        return OcrJobRecord(
            id=row["id"],
            collection_id=str(row["collection_id"]),
            document_id=str(row["document_id"]),
            status=row["status"],
            attempts=row["attempts"],
            error_message=row["error_message"],
            locked_at=row["locked_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
