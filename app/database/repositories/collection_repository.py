from collections.abc import Sequence
from typing import Any

from psycopg import Cursor
from psycopg.rows import dict_row

from app.database.connection import get_connection
from app.database.models import DocumentCollection, FileEntry, OcrRecord
from app.fulfillment.exceptions import CollectionNotFoundError, OcrRecordNotFoundError
from app.fulfillment.models import CollectionStatus, OcrStatus, compute_collection_status


class CollectionRepository:
    """Database operations for document_collections, file_entries and ocr_data."""

    def find_collection(self, collection_id: str) -> DocumentCollection:
        """Load a collection with its member files.

        Raises:
            CollectionNotFoundError: if no collection with this ID exists.
        """
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    """
                    SELECT id, user_id, collection_status, updated_at
                    FROM document_collections
                    WHERE id = %s
                    """,
                    (collection_id,),
                )
                row = cur.fetchone()
                if row is None:
                    raise CollectionNotFoundError(f"Collection {collection_id} not found")
                cur.execute(
                    """
                    SELECT document_id, file_url, file_type, file_size, original_file_name
                    FROM file_entries
                    WHERE collection_id = %s
                    ORDER BY created_at, document_id
                    """,
                    (collection_id,),
                )
                file_rows = cur.fetchall()

        return DocumentCollection(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            status=row["collection_status"],
            updated_at=row["updated_at"],
            files=[
                FileEntry(
                    document_id=str(f["document_id"]),
                    file_url=f["file_url"],
                    file_type=f["file_type"],
                    file_size=f["file_size"] or 0,
                    original_file_name=f["original_file_name"] or "",
                )
                for f in file_rows
            ],
        )

    def find_ocr_record(self, document_id: str) -> OcrRecord:
        """Load the OCR record for a document.

        Raises:
            OcrRecordNotFoundError: if the document has no OCR record.
        """
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    """
                    SELECT id, document_id, status, extracted_text, error_message, updated_at
                    FROM ocr_data
                    WHERE document_id = %s
                    """,
                    (document_id,),
                )
                row = cur.fetchone()

        if row is None:
            raise OcrRecordNotFoundError(f"OCR data not found for document {document_id}")

        return OcrRecord(
            id=row["id"],
            document_id=str(row["document_id"]),
            status=row["status"],
            extracted_text=row["extracted_text"],
            error_message=row["error_message"],
            updated_at=row["updated_at"],
        )

    def save_ocr_record(self, record: OcrRecord) -> None:
        """Persist an OCR record's status, text and error in its own transaction."""
        with get_connection() as conn:
            with conn.cursor() as cur:
                self._update_ocr_record(cur, record)
            conn.commit()

    def save_outcome(self, record: OcrRecord, collection_id: str) -> CollectionStatus:
        """Persist an OCR record and recompute its collection's status atomically.

        The collection row is locked for the whole transaction so concurrent
        calls on sibling documents serialize their read-modify-write of the
        aggregate status against the persisted member statuses.

        Raises:
            CollectionNotFoundError: if the collection no longer exists.
            OcrRecordNotFoundError: if the OCR record no longer exists.
        """
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    "SELECT id FROM document_collections WHERE id = %s FOR UPDATE",
                    (collection_id,),
                )
                if cur.fetchone() is None:
                    raise CollectionNotFoundError(f"Collection {collection_id} not found")

                self._update_ocr_record(cur, record)

                cur.execute(
                    "SELECT document_id FROM file_entries WHERE collection_id = %s",
                    (collection_id,),
                )
                document_ids = [str(r["document_id"]) for r in cur.fetchall()]
                statuses = self._fetch_statuses(cur, document_ids)
                status = compute_collection_status(document_ids, statuses)

                cur.execute(
                    """
                    UPDATE document_collections
                    SET collection_status = %s, updated_at = NOW()
                    WHERE id = %s
                    """,
                    (status.value, collection_id),
                )
            conn.commit()
        return status

    @staticmethod
    def _update_ocr_record(cur: Cursor[Any], record: OcrRecord) -> None:
        cur.execute(
            """
            UPDATE ocr_data
            SET status = %s, extracted_text = %s, error_message = %s, updated_at = NOW()
            WHERE document_id = %s
            """,
            (
                OcrStatus(record.status).value,
                record.extracted_text,
                record.error_message,
                record.document_id,
            ),
        )
        if cur.rowcount == 0:
            raise OcrRecordNotFoundError(
                f"OCR data not found for document {record.document_id}"
            )

    @staticmethod
    def _fetch_statuses(cur: Cursor[Any], document_ids: Sequence[str]) -> dict[str, str]:
        if not document_ids:
            return {}
        cur.execute(
            "SELECT document_id, status FROM ocr_data WHERE document_id = ANY(%s)",
            (list(document_ids),),
        )
        return {str(r["document_id"]): r["status"] for r in cur.fetchall()}
