from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum


class ProviderType(Enum):
    """Known OCR provider families, each with a config code and display name."""

    TESSERACT = ("tesseract", "Local Tesseract OCR")
    OPENAI_VISION = ("openai-vision", "OpenAI Vision API")

    def __init__(self, code: str, display_name: str) -> None:
        self.code = code
        self.display_name = display_name

    @classmethod
    def from_code(cls, code: str) -> "ProviderType":
        """Find a provider type by its code (case-insensitive).

        Raises:
            ValueError: if no provider matches the code.
        """
        normalized = (code or "").strip().lower()
        for member in cls:
            if member.code == normalized:
                return member
        raise ValueError(
            f"Unknown OCR provider type '{code}'. Choose from: {[m.code for m in cls]}"
        )

    def other(self) -> "ProviderType":
        """Return the other known provider family."""
        if self is ProviderType.OPENAI_VISION:
            return ProviderType.TESSERACT
        return ProviderType.OPENAI_VISION

    def __str__(self) -> str:
        return self.code


@dataclass
class ExtractionRequest:
    """Everything a provider needs to OCR one document.

    Exactly one image source must be present: ``image_url`` or a non-empty
    ``image_bytes`` payload.
    """

    mime_type: str | None = None
    image_url: str | None = None
    image_bytes: bytes | None = None
    language: str | None = None
    document_id: str | None = None
    collection_id: str | None = None
    user_id: str | None = None
    priority: int = 0
    preferred_provider: ProviderType | None = None
    fallback_allowed: bool = True
    metadata: dict[str, object] = field(default_factory=dict)

    def has_image_url(self) -> bool:
        return bool(self.image_url and self.image_url.strip())

    def has_image_bytes(self) -> bool:
        return bool(self.image_bytes)

    def has_source(self) -> bool:
        return self.has_image_url() != self.has_image_bytes()

    def with_metadata(self, key: str, value: object) -> "ExtractionRequest":
        self.metadata[key] = value
        return self


@dataclass
class ExtractionResult:
    """Outcome of a single provider invocation."""

    provider_type: ProviderType
    success: bool
    extracted_text: str | None = None
    confidence: float | None = None
    processing_time_ms: int = 0
    language_detected: str | None = None
    error_message: str | None = None
    document_id: str | None = None
    processed_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    metadata: dict[str, object] = field(default_factory=dict)

    @property
    def character_count(self) -> int:
        return len(self.extracted_text) if self.extracted_text is not None else 0

    @property
    def word_count(self) -> int:
        if not self.extracted_text or not self.extracted_text.strip():
            return 0
        return len(self.extracted_text.split())

    @classmethod
    def ok(
        cls,
        extracted_text: str,
        provider_type: ProviderType,
        processing_time_ms: int,
        *,
        document_id: str | None = None,
        confidence: float | None = None,
        language_detected: str | None = None,
    ) -> "ExtractionResult":
        return cls(
            provider_type=provider_type,
            success=True,
            extracted_text=extracted_text,
            processing_time_ms=processing_time_ms,
            document_id=document_id,
            confidence=confidence,
            language_detected=language_detected,
        )

    @classmethod
    def failed(
        cls,
        error_message: str,
        provider_type: ProviderType,
        processing_time_ms: int,
        *,
        document_id: str | None = None,
    ) -> "ExtractionResult":
        return cls(
            provider_type=provider_type,
            success=False,
            error_message=error_message or "OCR extraction failed",
            processing_time_ms=processing_time_ms,
            document_id=document_id,
        )

    def with_metadata(self, key: str, value: object) -> "ExtractionResult":
        self.metadata[key] = value
        return self
