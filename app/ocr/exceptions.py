from app.ocr.models import ProviderType


class OcrError(Exception):
    """Base exception for all OCR dispatch errors."""


class InvalidRequestError(OcrError):
    """Raised when an extraction request carries no usable image source."""


class ProviderUnavailableError(OcrError):
    """Raised when a provider is not enabled, not registered, or unhealthy."""

    def __init__(self, provider_type: ProviderType | None, message: str | None = None) -> None:
        self.provider_type = provider_type
        if message is None:
            name = provider_type.display_name if provider_type else "unknown"
            message = f"OCR provider is not available: {name}"
        super().__init__(message)


class QuotaExceededError(OcrError):
    """Raised before dispatch when the user's OCR allowance is exhausted."""

    def __init__(self, user_id: str | None, tier: str | None) -> None:
        self.user_id = user_id
        self.tier = tier
        super().__init__(f"OCR quota exceeded for user {user_id} (tier: {tier or 'free'})")


class OcrProcessingError(OcrError):
    """Raised by a provider for malformed requests and infrastructure failures.

    Retryable errors (timeouts, transport failures) are eligible for fallback
    to another provider; non-retryable ones are defects of the request itself.
    """

    def __init__(
        self,
        message: str,
        provider_type: ProviderType,
        document_id: str | None = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(message)
        self.provider_type = provider_type
        self.document_id = document_id
        self.retryable = retryable

    @classmethod
    def timeout(
        cls, provider_type: ProviderType, document_id: str | None = None
    ) -> "OcrProcessingError":
        return cls(
            f"OCR processing timed out ({provider_type.code})",
            provider_type,
            document_id,
            retryable=True,
        )

    @classmethod
    def unsupported_file_type(
        cls,
        mime_type: str | None,
        provider_type: ProviderType,
        document_id: str | None = None,
    ) -> "OcrProcessingError":
        return cls(
            f"Unsupported file type for OCR: {mime_type}",
            provider_type,
            document_id,
            retryable=False,
        )

    @classmethod
    def invalid_request(
        cls, provider_type: ProviderType, document_id: str | None = None
    ) -> "OcrProcessingError":
        return cls(
            "Invalid OCR request: no image data provided",
            provider_type,
            document_id,
            retryable=False,
        )
