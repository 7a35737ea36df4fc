from app.ocr.base import BaseOcrProvider
from app.ocr.dispatcher import OcrDispatchService
from app.ocr.factory import ProviderRegistry, build_provider_registry
from app.ocr.models import ExtractionRequest, ExtractionResult, ProviderType

__all__ = [
    "BaseOcrProvider",
    "ExtractionRequest",
    "ExtractionResult",
    "OcrDispatchService",
    "ProviderRegistry",
    "ProviderType",
    "build_provider_registry",
]
