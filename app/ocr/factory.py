from collections.abc import Callable, Iterable
from typing import ClassVar

from app.config.settings import Settings
from app.logging.logger import Log
from app.ocr.base import BaseOcrProvider
from app.ocr.exceptions import ProviderUnavailableError
from app.ocr.image_loader import ImageLoader
from app.ocr.models import ExtractionRequest, ProviderType
from app.ocr.tesseract_adapter import TesseractOcrProvider
from app.ocr.vision_adapter import OpenAIVisionOcrProvider


class ProviderRegistry:
    """Holds the registered OCR providers and resolves them by type.

    A provider is selectable only if its type is enabled in settings, it is
    registered, and it reports itself available.
    """

    def __init__(self, providers: Iterable[BaseOcrProvider], settings: Settings) -> None:
        self._settings = settings
        self._enabled = {ProviderType.from_code(code) for code in settings.enabled_provider_codes()}
        self._default_type = ProviderType.from_code(settings.ocr_default_provider)
        self._fallback_type = ProviderType.from_code(settings.ocr_fallback_provider)
        self._providers: dict[ProviderType, BaseOcrProvider] = {}
        for provider in providers:
            self._providers[provider.provider_type] = provider
            Log.debug(f"Registered OCR provider: {provider.provider_type}")
        Log.info(
            f"Provider registry initialized with {len(self._providers)} providers: "
            f"{[t.code for t in self._providers]}"
        )

    @property
    def default_type(self) -> ProviderType:
        return self._default_type

    @property
    def fallback_type(self) -> ProviderType:
        return self._fallback_type

    @property
    def fallback_enabled(self) -> bool:
        return self._settings.ocr_fallback_enabled

    def is_enabled(self, provider_type: ProviderType) -> bool:
        return provider_type in self._enabled

    def get(self, provider_type: ProviderType) -> BaseOcrProvider:
        """Return the provider for a type.

        Raises:
            ProviderUnavailableError: if disabled, unregistered or unhealthy.
        """
        provider = self.get_optional(provider_type)
        if provider is None:
            raise ProviderUnavailableError(provider_type)
        return provider

    def get_optional(self, provider_type: ProviderType) -> BaseOcrProvider | None:
        if not self.is_enabled(provider_type):
            return None
        provider = self._providers.get(provider_type)
        if provider is None or not provider.is_available():
            return None
        return provider

    def get_with_fallback(self, *provider_types: ProviderType) -> BaseOcrProvider:
        """Return the first selectable provider among the candidates, in order."""
        for provider_type in provider_types:
            provider = self.get_optional(provider_type)
            if provider is not None:
                return provider
        raise ProviderUnavailableError(
            provider_types[0] if provider_types else None,
            f"No OCR provider available from {[t.code for t in provider_types]}",
        )

    def get_default_with_fallback(self) -> BaseOcrProvider:
        if self.fallback_enabled:
            return self.get_with_fallback(self._default_type, self._fallback_type)
        return self.get(self._default_type)

    def resolve_for_request(self, request: ExtractionRequest) -> BaseOcrProvider:
        """Pick a provider honouring the request's preference and fallback flag."""
        if request.preferred_provider is not None:
            if request.fallback_allowed and self.fallback_enabled:
                return self.get_with_fallback(request.preferred_provider, self._fallback_type)
            return self.get(request.preferred_provider)
        return self.get_default_with_fallback()

    def is_provider_available(self, provider_type: ProviderType) -> bool:
        return self.get_optional(provider_type) is not None

    def available_providers(self) -> list[BaseOcrProvider]:
        return [
            provider
            for provider_type, provider in self._providers.items()
            if self.is_enabled(provider_type) and provider.is_available()
        ]

    def registered_types(self) -> list[ProviderType]:
        return list(self._providers)


def _build_tesseract(settings: Settings, image_loader: ImageLoader) -> BaseOcrProvider:
    return TesseractOcrProvider(
        image_loader=image_loader,
        language=settings.tesseract_language,
        page_seg_mode=settings.tesseract_page_seg_mode,
        ocr_engine_mode=settings.tesseract_ocr_engine_mode,
        timeout_seconds=settings.ocr_timeout_seconds,
        pdf_dpi=settings.tesseract_pdf_dpi,
        max_pdf_pages=settings.tesseract_max_pdf_pages,
        max_file_size_bytes=settings.ocr_max_file_size_bytes,
        tesseract_cmd=settings.tesseract_cmd,
    )


def _build_openai_vision(settings: Settings, image_loader: ImageLoader) -> BaseOcrProvider:
    return OpenAIVisionOcrProvider(
        api_key=settings.openai_api_key,
        model=settings.openai_model_name,
        timeout_seconds=settings.openai_timeout_seconds,
        image_loader=image_loader,
        base_url=settings.openai_base_url or None,
        max_file_size_bytes=settings.vision_max_file_size_bytes,
        max_pdf_pages=settings.vision_max_pdf_pages,
        pdf_dpi=settings.tesseract_pdf_dpi,
        cooldown_seconds=settings.vision_unavailable_cooldown_seconds,
    )


class OcrProviderFactory:
    """Creates every known OCR provider adapter from settings."""

    ADAPTERS: ClassVar[dict[ProviderType, Callable[[Settings, ImageLoader], BaseOcrProvider]]] = {
        ProviderType.TESSERACT: _build_tesseract,
        ProviderType.OPENAI_VISION: _build_openai_vision,
    }

    @classmethod
    def create_all(cls, settings: Settings) -> list[BaseOcrProvider]:
        image_loader = ImageLoader(timeout_seconds=settings.image_fetch_timeout_seconds)
        return [builder(settings, image_loader) for builder in cls.ADAPTERS.values()]


def build_provider_registry(settings: Settings) -> ProviderRegistry:
    """Build the registry once at start-up from the static adapter table."""
    return ProviderRegistry(OcrProviderFactory.create_all(settings), settings)
