from unittest.mock import MagicMock, patch

import pytest

from app.database.models import OcrRecord
from app.database.repositories.collection_repository import CollectionRepository
from app.fulfillment.exceptions import CollectionNotFoundError, OcrRecordNotFoundError
from app.fulfillment.models import CollectionStatus

_PATCH_TARGET = "app.database.repositories.collection_repository.get_connection"


def _mock_connection(mock_get_conn: MagicMock) -> tuple[MagicMock, MagicMock]:
    """Wire up a mock connection + cursor and return (mock_conn, mock_cursor)."""
    mock_cursor = MagicMock()
    mock_cursor.rowcount = 1
    mock_conn = MagicMock()
    mock_conn.cursor.return_value.__enter__ = MagicMock(return_value=mock_cursor)
    mock_conn.cursor.return_value.__exit__ = MagicMock(return_value=False)
    mock_get_conn.return_value.__enter__ = MagicMock(return_value=mock_conn)
    mock_get_conn.return_value.__exit__ = MagicMock(return_value=False)
    return mock_conn, mock_cursor


def _record(status: str = "completed") -> OcrRecord:
    return OcrRecord(id=7, document_id="doc-1", status=status, extracted_text="text")


class TestFindCollection:
    @patch(_PATCH_TARGET)
    def test_returns_collection_with_files(self, mock_get_conn: MagicMock) -> None:
        _conn, mock_cursor = _mock_connection(mock_get_conn)
        mock_cursor.fetchone.return_value = {
            "id": "col-1",
            "user_id": "user-1",
            "collection_status": "processing",
            "updated_at": None,
        }
        mock_cursor.fetchall.return_value = [
            {
                "document_id": "doc-1",
                "file_url": "https://files.example.com/a.png",
                "file_type": "image/png",
                "file_size": 1024,
                "original_file_name": "a.png",
            },
            {
                "document_id": "doc-2",
                "file_url": None,
                "file_type": "application/pdf",
                "file_size": None,
                "original_file_name": None,
            },
        ]

        collection = CollectionRepository().find_collection("col-1")

        assert collection.id == "col-1"
        assert collection.user_id == "user-1"
        assert collection.document_ids == ["doc-1", "doc-2"]
        assert collection.files[1].file_size == 0
        assert collection.files[1].original_file_name == ""

    @patch(_PATCH_TARGET)
    def test_raises_when_missing(self, mock_get_conn: MagicMock) -> None:
        _conn, mock_cursor = _mock_connection(mock_get_conn)
        mock_cursor.fetchone.return_value = None

        with pytest.raises(CollectionNotFoundError, match="Collection col-9 not found"):
            CollectionRepository().find_collection("col-9")


class TestFindOcrRecord:
    @patch(_PATCH_TARGET)
    def test_returns_record(self, mock_get_conn: MagicMock) -> None:
        _conn, mock_cursor = _mock_connection(mock_get_conn)
        mock_cursor.fetchone.return_value = {
            "id": 7,
            "document_id": "doc-1",
            "status": "pending",
            "extracted_text": None,
            "error_message": None,
            "updated_at": None,
        }

        record = CollectionRepository().find_ocr_record("doc-1")

        assert record.id == 7
        assert record.status == "pending"

    @patch(_PATCH_TARGET)
    def test_raises_when_missing(self, mock_get_conn: MagicMock) -> None:
        _conn, mock_cursor = _mock_connection(mock_get_conn)
        mock_cursor.fetchone.return_value = None

        with pytest.raises(OcrRecordNotFoundError):
            CollectionRepository().find_ocr_record("doc-1")


class TestSaveOcrRecord:
    @patch(_PATCH_TARGET)
    def test_updates_and_commits(self, mock_get_conn: MagicMock) -> None:
        mock_conn, mock_cursor = _mock_connection(mock_get_conn)

        CollectionRepository().save_ocr_record(_record("processing"))

        sql, params = mock_cursor.execute.call_args.args
        assert "UPDATE ocr_data" in sql
        assert params == ("processing", "text", None, "doc-1")
        mock_conn.commit.assert_called_once()

    @patch(_PATCH_TARGET)
    def test_raises_when_no_row_updated(self, mock_get_conn: MagicMock) -> None:
        mock_conn, mock_cursor = _mock_connection(mock_get_conn)
        mock_cursor.rowcount = 0

        with pytest.raises(OcrRecordNotFoundError):
            CollectionRepository().save_ocr_record(_record())

        mock_conn.commit.assert_not_called()


class TestSaveOutcome:
    @patch(_PATCH_TARGET)
    def test_locks_collection_and_recomputes_from_store(self, mock_get_conn: MagicMock) -> None:
        mock_conn, mock_cursor = _mock_connection(mock_get_conn)
        mock_cursor.fetchone.return_value = {"id": "col-1"}
        mock_cursor.fetchall.side_effect = [
            [{"document_id": "doc-1"}, {"document_id": "doc-2"}],
            [
                {"document_id": "doc-1", "status": "completed"},
                {"document_id": "doc-2", "status": "failed"},
            ],
        ]

        status = CollectionRepository().save_outcome(_record(), "col-1")

        assert status is CollectionStatus.FAILED_OCR
        statements = [c.args[0] for c in mock_cursor.execute.call_args_list]
        assert "FOR UPDATE" in statements[0]
        assert "UPDATE ocr_data" in statements[1]
        assert "UPDATE document_collections" in statements[-1]
        assert mock_cursor.execute.call_args_list[-1].args[1] == ("failed_ocr", "col-1")
        mock_conn.commit.assert_called_once()

    @patch(_PATCH_TARGET)
    def test_empty_collection_is_processed(self, mock_get_conn: MagicMock) -> None:
        _conn, mock_cursor = _mock_connection(mock_get_conn)
        mock_cursor.fetchone.return_value = {"id": "col-1"}
        mock_cursor.fetchall.return_value = []

        status = CollectionRepository().save_outcome(_record(), "col-1")

        assert status is CollectionStatus.PROCESSED

    @patch(_PATCH_TARGET)
    def test_missing_collection_raises_without_commit(self, mock_get_conn: MagicMock) -> None:
        mock_conn, mock_cursor = _mock_connection(mock_get_conn)
        mock_cursor.fetchone.return_value = None

        with pytest.raises(CollectionNotFoundError):
            CollectionRepository().save_outcome(_record(), "col-1")

        mock_conn.commit.assert_not_called()
