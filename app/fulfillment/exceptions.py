class FulfillmentError(Exception):
    """Base exception for all OCR fulfillment errors."""


class NotFoundError(FulfillmentError):
    """Raised when an entity required by a fulfillment call does not exist."""


class CollectionNotFoundError(NotFoundError):
    """Raised when a document collection cannot be found in the database."""


class DocumentNotFoundError(NotFoundError):
    """Raised when a document is not a member of the given collection."""


class OcrRecordNotFoundError(NotFoundError):
    """Raised when a document has no OCR record to update."""
