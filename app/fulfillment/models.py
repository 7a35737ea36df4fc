from collections.abc import Mapping, Sequence
from enum import Enum


class OcrStatus(str, Enum):
    """Lifecycle of a document's OCR record."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def parse(cls, value: "OcrStatus | str | None") -> "OcrStatus | None":
        """Return the status for a stored value, or None if it is not recognised."""
        if value is None:
            return None
        try:
            return cls(value)
        except ValueError:
            return None

    @property
    def is_terminal(self) -> bool:
        return self in (OcrStatus.COMPLETED, OcrStatus.FAILED)


class CollectionStatus(str, Enum):
    """Aggregate OCR status of a collection, derived from its documents."""

    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED_OCR = "failed_ocr"


def compute_collection_status(
    document_ids: Sequence[str],
    statuses: Mapping[str, OcrStatus | str],
) -> CollectionStatus:
    """Fold member OCR statuses into the collection's aggregate status.

    A collection with no documents is PROCESSED. Members without a status
    entry, or with an unrecognised one, count as not yet terminal.
    """
    total = len(document_ids)
    if total == 0:
        return CollectionStatus.PROCESSED

    completed = 0
    failed = 0
    for document_id in document_ids:
        status = OcrStatus.parse(statuses.get(document_id))
        if status is OcrStatus.COMPLETED:
            completed += 1
        elif status is OcrStatus.FAILED:
            failed += 1

    if completed == total:
        return CollectionStatus.PROCESSED
    if completed + failed == total:
        return CollectionStatus.FAILED_OCR
    return CollectionStatus.PROCESSING
