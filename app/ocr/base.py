import asyncio
from abc import ABC, abstractmethod
from typing import ClassVar

from app.ocr.models import ExtractionRequest, ExtractionResult, ProviderType


class BaseOcrProvider(ABC):
    """Contract for all OCR provider adapters.

    Implementations must be safe for concurrent use and must not raise for
    routine extraction failures: those are returned as a failed
    ExtractionResult. Only OcrProcessingError may be raised, for malformed
    requests (non-retryable) and for timeouts or transport errors (retryable).
    """

    SUPPORTED_MIME_TYPES: ClassVar[frozenset[str]] = frozenset()

    @property
    @abstractmethod
    def provider_type(self) -> ProviderType:
        """Return the provider family implemented by this adapter."""

    @property
    def display_name(self) -> str:
        return self.provider_type.display_name

    @abstractmethod
    def extract_text(self, request: ExtractionRequest) -> ExtractionResult:
        """Extract text from the request's image source.

        Args:
            request: Extraction request with exactly one image source.

        Returns:
            ExtractionResult, with success=False for routine failures.

        Raises:
            OcrProcessingError: for invalid requests, timeouts and transport errors.
        """

    async def extract_text_async(self, request: ExtractionRequest) -> ExtractionResult:
        """Run extract_text in a worker thread; same success/failure semantics."""
        return await asyncio.to_thread(self.extract_text, request)

    def supports(self, mime_type: str | None) -> bool:
        if mime_type is None:
            return False
        return mime_type.strip().lower() in self.SUPPORTED_MIME_TYPES

    @abstractmethod
    def supported_languages(self) -> list[str]:
        """Return the static list of language codes this provider handles."""

    def is_available(self) -> bool:
        return True

    def max_file_size_bytes(self) -> int:
        """Return the payload ceiling in bytes, or -1 for no limit."""
        return -1
