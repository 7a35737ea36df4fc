"""Cloud OCR provider built on an OpenAI-compatible vision chat API."""

import base64
import io
import threading
import time
from typing import Any, ClassVar

import httpx
import openai
from PIL import Image, UnidentifiedImageError

from app.logging.logger import Log
from app.ocr.base import BaseOcrProvider
from app.ocr.exceptions import OcrProcessingError
from app.ocr.image_loader import ImageFetchError, ImageLoader, ImageSourceError
from app.ocr.models import ExtractionRequest, ExtractionResult, ProviderType
from app.ocr.rasterizer import PdfRasterizationError, is_pdf, rasterize_pdf

SYSTEM_PROMPT = (
    "You are an OCR engine. Transcribe all legible text in the supplied page images "
    "exactly as written, preserving reading order and line breaks. Do not summarize, "
    "translate or comment. If a page contains no text, return nothing for it."
)


class OpenAIVisionOcrProvider(BaseOcrProvider):
    """OCR provider that transcribes images with a vision-capable chat model.

    Rate-limit and server-side API errors put the provider into a cool-down
    during which is_available() reports False, so the registry routes traffic
    to another provider until the window elapses.
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
        "en", "es", "fr", "de", "it", "pt", "nl", "pl", "ru", "zh", "ja", "ko",
    ]

    # Formats the chat API accepts directly; anything else is re-encoded as PNG.
    PASSTHROUGH_MEDIA_TYPES: ClassVar[dict[str, str]] = {
        "image/png": "image/png",
        "image/jpeg": "image/jpeg",
        "image/jpg": "image/jpeg",
        "image/gif": "image/gif",
        "image/webp": "image/webp",
    }

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        timeout_seconds: int,
        image_loader: ImageLoader,
        base_url: str | None = None,
        max_file_size_bytes: int = -1,
        max_pdf_pages: int = 10,
        pdf_dpi: int = 200,
        cooldown_seconds: int = 60,
        client: openai.OpenAI | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._image_loader = image_loader
        self._max_file_size_bytes = max_file_size_bytes
        self._max_pdf_pages = max_pdf_pages
        self._pdf_dpi = pdf_dpi
        self._cooldown_seconds = cooldown_seconds
        self._unavailable_until = 0.0
        self._lock = threading.Lock()
        self._client = client or openai.OpenAI(
            api_key=api_key,
            timeout=timeout_seconds,
            base_url=base_url or None,
            max_retries=0,
        )

    @property
    def provider_type(self) -> ProviderType:
        return ProviderType.OPENAI_VISION

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

        try:
            image_parts = self._build_image_parts(payload, request.mime_type)
        except (
            PdfRasterizationError,
            UnidentifiedImageError,
            Image.DecompressionBombError,
            OSError,
        ) as exc:
            return self._failure(f"Failed to prepare image: {exc}", start, request)

        try:
            response = self._client.chat.completions.create(
                model=self._model,
                temperature=0.0,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": self._user_prompt(request)},
                            *image_parts,
                        ],
                    },
                ],
            )
        except (openai.APITimeoutError, httpx.TimeoutException) as exc:
            raise OcrProcessingError.timeout(self.provider_type, request.document_id) from exc
        except (openai.APIConnectionError, httpx.ConnectError) as exc:
            raise OcrProcessingError(
                f"Vision API network error: {exc}",
                self.provider_type,
                request.document_id,
                retryable=True,
            ) from exc
        except openai.APIStatusError as exc:
            if exc.status_code == 429 or exc.status_code >= 500:
                self._start_cooldown()
            Log.error(f"Vision API returned {exc.status_code} for document {request.document_id}")
            return self._failure(
                f"Vision API error ({exc.status_code}): {exc.message}", start, request
            )
        except openai.APIError as exc:
            return self._failure(f"Vision API error: {exc}", start, request)

        if not response.choices:
            return self._failure("Empty response from Vision API", start, request)
        content = response.choices[0].message.content
        if content is None:
            return self._failure("Vision API returned empty response", start, request)

        elapsed_ms = _elapsed_ms(start)
        text = content.strip()
        Log.debug(
            f"Vision OCR completed for document {request.document_id} in {elapsed_ms}ms, "
            f"extracted {len(text)} characters"
        )
        result = ExtractionResult.ok(
            text,
            self.provider_type,
            elapsed_ms,
            document_id=request.document_id,
        ).with_metadata("model", self._model)
        if response.usage is not None:
            result.with_metadata("totalTokens", response.usage.total_tokens)
        return result

    def supported_languages(self) -> list[str]:
        return list(self.SUPPORTED_LANGUAGES)

    def is_available(self) -> bool:
        if not self._api_key or not self._model:
            return False
        with self._lock:
            return time.monotonic() >= self._unavailable_until

    def max_file_size_bytes(self) -> int:
        return self._max_file_size_bytes

    def _start_cooldown(self) -> None:
        with self._lock:
            self._unavailable_until = time.monotonic() + self._cooldown_seconds
        Log.warning(
            f"Vision provider marked unavailable for {self._cooldown_seconds}s after API error"
        )

    def _user_prompt(self, request: ExtractionRequest) -> str:
        prompt = "Transcribe the text in the following page image(s)."
        if request.language and request.language.strip():
            prompt += f" The expected document language is '{request.language.strip()}'."
        return prompt

    def _build_image_parts(
        self, payload: bytes, mime_type: str | None
    ) -> list[dict[str, Any]]:
        if is_pdf(mime_type):
            images = [
                ("image/png", page)
                for page in rasterize_pdf(
                    payload, dpi=self._pdf_dpi, max_pages=self._max_pdf_pages
                )
            ]
        else:
            media_type = self.PASSTHROUGH_MEDIA_TYPES.get((mime_type or "").strip().lower())
            if media_type is None:
                images = [("image/png", _to_png(payload))]
            else:
                images = [(media_type, payload)]
        return [
            {
                "type": "image_url",
                "image_url": {
                    "url": f"data:{part_type};base64,{base64.b64encode(data).decode('ascii')}"
                },
            }
            for part_type, data in images
        ]

    def _failure(
        self, message: str, start: float, request: ExtractionRequest
    ) -> ExtractionResult:
        return ExtractionResult.failed(
            message,
            self.provider_type,
            _elapsed_ms(start),
            document_id=request.document_id,
        ).with_metadata("documentId", request.document_id)


def _to_png(payload: bytes) -> bytes:
    with Image.open(io.BytesIO(payload)) as image:
        buf = io.BytesIO()
        image.convert("RGB").save(buf, format="PNG")
    return buf.getvalue()


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)
