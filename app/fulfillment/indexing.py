from abc import ABC, abstractmethod

import httpx

from app.config.settings import Settings
from app.database.models import DocumentCollection, FileEntry, OcrRecord
from app.fulfillment.exceptions import FulfillmentError
from app.logging.logger import Log


class IndexingError(FulfillmentError):
    """Raised when the search index could not be told about a document."""


class BaseIndexingNotifier(ABC):
    """Contract for telling the search index that a document has text."""

    @abstractmethod
    def notify_document_indexed(
        self, collection: DocumentCollection, file_entry: FileEntry, ocr_record: OcrRecord
    ) -> None:
        """Publish a completed OCR record for indexing.

        Raises:
            IndexingError: if the notification could not be delivered.
        """


class NullIndexingNotifier(BaseIndexingNotifier):
    """Used when no indexing webhook is configured."""

    def notify_document_indexed(
        self, collection: DocumentCollection, file_entry: FileEntry, ocr_record: OcrRecord
    ) -> None:
        Log.debug(f"Indexing disabled, skipping document {file_entry.document_id}")


class HttpIndexingNotifier(BaseIndexingNotifier):
    """POSTs a JSON payload describing the document to a webhook."""

    def __init__(
        self, url: str, timeout_seconds: int = 5, client: httpx.Client | None = None
    ) -> None:
        self._url = url
        self._timeout_seconds = timeout_seconds
        self._client = client

    def notify_document_indexed(
        self, collection: DocumentCollection, file_entry: FileEntry, ocr_record: OcrRecord
    ) -> None:
        payload = {
            "collectionId": collection.id,
            "userId": collection.user_id,
            "documentId": file_entry.document_id,
            "fileName": file_entry.original_file_name,
            "fileType": file_entry.file_type,
            "fileUrl": file_entry.file_url,
            "extractedText": ocr_record.extracted_text or "",
        }
        try:
            if self._client is not None:
                response = self._client.post(
                    self._url, json=payload, timeout=self._timeout_seconds
                )
            else:
                with httpx.Client() as client:
                    response = client.post(self._url, json=payload, timeout=self._timeout_seconds)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise IndexingError(
                f"Failed to notify indexing for document {file_entry.document_id}: {exc}"
            ) from exc
        Log.debug(f"Indexing notified for document {file_entry.document_id}")


class IndexingNotifierFactory:
    """Creates the configured indexing notifier."""

    @classmethod
    def create(cls, settings: Settings) -> BaseIndexingNotifier:
        url = settings.indexing_webhook_url.strip()
        if not url:
            return NullIndexingNotifier()
        return HttpIndexingNotifier(url, timeout_seconds=settings.indexing_timeout_seconds)
