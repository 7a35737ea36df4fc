import io
import threading
import time
from collections.abc import Callable
from typing import ClassVar

import pytesseract
from PIL import Image, UnidentifiedImageError

from app.logging.logger import Log
from app.ocr.base import BaseOcrProvider
from app.ocr.exceptions import OcrProcessingError
from app.ocr.image_loader import ImageFetchError, ImageLoader, ImageSourceError
from app.ocr.models import ExtractionRequest, ExtractionResult, ProviderType
from app.ocr.rasterizer import PdfRasterizationError, is_pdf, rasterize_pdf


class TesseractOcrProvider(BaseOcrProvider):
    """OCR provider backed by the local Tesseract engine via pytesseract.

    PDF input is rasterized page by page with PyMuPDF before recognition.
    timeout_seconds bounds the whole recognition call: every Tesseract
    subprocess gets only the time left before the shared deadline.
    """

    SUPPORTED_MIME_TYPES: ClassVar[frozenset[str]] = frozenset(
        {
            "image/png",
            "image/jpeg",
            "image/jpg",
            "image/gif",
            "image/bmp",
            "image/tiff",
            "image/webp",
            "application/pdf",
        }
    )

    SUPPORTED_LANGUAGES: ClassVar[list[str]] = [
        "eng", "deu", "fra", "spa", "ita", "por", "nld",
        "pol", "rus", "jpn", "kor", "chi_sim", "chi_tra",
    ]

    # ISO 639-1 hints -> Tesseract traineddata names
    LANGUAGE_CODES: ClassVar[dict[str, str]] = {
        "en": "eng",
        "de": "deu",
        "fr": "fra",
        "es": "spa",
        "it": "ita",
        "pt": "por",
        "nl": "nld",
        "pl": "pol",
        "ru": "rus",
        "ja": "jpn",
        "ko": "kor",
        "zh": "chi_sim",
    }

    def __init__(
        self,
        *,
        image_loader: ImageLoader,
        language: str = "eng",
        page_seg_mode: int = 3,
        ocr_engine_mode: int = 3,
        timeout_seconds: int = 60,
        pdf_dpi: int = 200,
        max_pdf_pages: int = 10,
        max_file_size_bytes: int = -1,
        tesseract_cmd: str = "",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd
        self._image_loader = image_loader
        self._language = language
        self._config = f"--psm {page_seg_mode} --oem {ocr_engine_mode}"
        self._timeout_seconds = timeout_seconds
        self._pdf_dpi = pdf_dpi
        self._max_pdf_pages = max_pdf_pages
        self._clock = clock
        self._max_file_size_bytes = max_file_size_bytes
        self._available: bool | None = None
        self._probe_lock = threading.Lock()

    @property
    def provider_type(self) -> ProviderType:
        return ProviderType.TESSERACT

    def extract_text(self, request: ExtractionRequest) -> ExtractionResult:
        start = time.perf_counter()
        if not request.has_source():
            raise OcrProcessingError.invalid_request(self.provider_type, request.document_id)
        if request.mime_type is not None and not self.supports(request.mime_type):
            raise OcrProcessingError.unsupported_file_type(
                request.mime_type, self.provider_type, request.document_id
            )

        try:
            payload = self._image_loader.load(request)
        except ImageFetchError as exc:
            raise OcrProcessingError(
                str(exc), self.provider_type, request.document_id, retryable=True
            ) from exc
        except ImageSourceError as exc:
            return self._failure(str(exc), start, request)

        limit = self.max_file_size_bytes()
        if limit >= 0 and len(payload) > limit:
            return self._failure(
                f"File size {len(payload)} exceeds the {limit} byte limit", start, request
            )

        language = self._resolve_language(request.language)
        try:
            images = self._load_images(payload, request.mime_type)
            text, confidence = self._recognize(images, language, request.document_id)
        except RuntimeError as exc:
            # pytesseract signals its subprocess timeout as a bare RuntimeError
            if "timeout" in str(exc).lower():
                raise OcrProcessingError.timeout(
                    self.provider_type, request.document_id
                ) from exc
            Log.error(f"Tesseract OCR failed for document {request.document_id}: {exc}")
            return self._failure(str(exc), start, request)
        except (
            pytesseract.TesseractError,
            PdfRasterizationError,
            UnidentifiedImageError,
            Image.DecompressionBombError,
            OSError,
        ) as exc:
            Log.error(f"Tesseract OCR failed for document {request.document_id}: {exc}")
            return self._failure(str(exc), start, request)

        elapsed_ms = _elapsed_ms(start)
        Log.debug(
            f"Tesseract OCR completed for document {request.document_id} in {elapsed_ms}ms, "
            f"extracted {len(text)} characters"
        )
        return ExtractionResult.ok(
            text,
            self.provider_type,
            elapsed_ms,
            document_id=request.document_id,
            confidence=confidence,
        ).with_metadata("language", language)

    def supported_languages(self) -> list[str]:
        return list(self.SUPPORTED_LANGUAGES)

    def is_available(self) -> bool:
        """Probe the Tesseract binary once and cache the answer."""
        if self._available is None:
            with self._probe_lock:
                if self._available is None:
                    try:
                        pytesseract.get_tesseract_version()
                        self._available = True
                    except (pytesseract.TesseractNotFoundError, OSError) as exc:
                        Log.warning(f"Tesseract binary not available: {exc}")
                        self._available = False
        return self._available

    def max_file_size_bytes(self) -> int:
        return self._max_file_size_bytes

    def _resolve_language(self, hint: str | None) -> str:
        if not hint or not hint.strip():
            return self._language
        normalized = hint.strip().lower()
        if normalized in self.SUPPORTED_LANGUAGES:
            return normalized
        return self.LANGUAGE_CODES.get(normalized, self._language)

    def _load_images(self, payload: bytes, mime_type: str | None) -> list[Image.Image]:
        if is_pdf(mime_type):
            pages = rasterize_pdf(payload, dpi=self._pdf_dpi, max_pages=self._max_pdf_pages)
        else:
            pages = [payload]
        images = []
        for page in pages:
            image = Image.open(io.BytesIO(page))
            image.load()
            images.append(image)
        return images

    def _recognize(
        self, images: list[Image.Image], language: str, document_id: str | None
    ) -> tuple[str, float | None]:
        deadline = self._clock() + self._timeout_seconds
        texts: list[str] = []
        confidences: list[float] = []
        for image in images:
            texts.append(
                pytesseract.image_to_string(
                    image,
                    lang=language,
                    config=self._config,
                    timeout=self._remaining(deadline, document_id),
                )
            )
            data = pytesseract.image_to_data(
                image,
                lang=language,
                config=self._config,
                timeout=self._remaining(deadline, document_id),
                output_type=pytesseract.Output.DICT,
            )
            confidences.extend(_word_confidences(data))
        text = "\n".join(part.strip() for part in texts).strip()
        if not confidences:
            return text, None
        return text, round(sum(confidences) / len(confidences) / 100.0, 4)

    def _remaining(self, deadline: float, document_id: str | None) -> float:
        remaining = deadline - self._clock()
        if remaining <= 0:
            raise OcrProcessingError.timeout(self.provider_type, document_id)
        return remaining

    def _failure(
        self, message: str, start: float, request: ExtractionRequest
    ) -> ExtractionResult:
        return ExtractionResult.failed(
            message,
            self.provider_type,
            _elapsed_ms(start),
            document_id=request.document_id,
        ).with_metadata("documentId", request.document_id)


def _word_confidences(data: dict[str, list[object]]) -> list[float]:
    """Return per-word confidences, skipping Tesseract's -1 layout rows."""
    values = []
    for raw_conf, word in zip(data.get("conf", []), data.get("text", []), strict=False):
        try:
            conf = float(str(raw_conf))
        except ValueError:
            continue
        if conf >= 0 and str(word).strip():
            values.append(conf)
    return values


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)
