import asyncio
from unittest.mock import MagicMock, patch

import pytesseract
import pytest
from PIL import Image

from app.ocr.exceptions import OcrProcessingError
from app.ocr.image_loader import ImageFetchError, ImageLoader, ImageSourceError
from app.ocr.models import ExtractionRequest, ProviderType
from app.ocr.tesseract_adapter import TesseractOcrProvider, _word_confidences

_MODULE = "app.ocr.tesseract_adapter.pytesseract"


def _make_provider(
    loader: ImageLoader | None = None,
    max_file_size_bytes: int = -1,
    **kwargs: object,
) -> TesseractOcrProvider:
    kwargs.setdefault("clock", lambda: 0.0)
    return TesseractOcrProvider(
        image_loader=loader or ImageLoader(),
        language="eng",
        timeout_seconds=5,
        max_file_size_bytes=max_file_size_bytes,
        **kwargs,  # type: ignore[arg-type]
    )


def _data(words: list[str], confs: list[object]) -> dict[str, list[object]]:
    return {"text": list(words), "conf": list(confs)}


class TestValidation:
    def test_no_source_raises_non_retryable(self) -> None:
        provider = _make_provider()

        with pytest.raises(OcrProcessingError) as exc_info:
            provider.extract_text(ExtractionRequest(mime_type="image/png"))

        assert not exc_info.value.retryable

    def test_unsupported_mime_type_raises(self, sample_png_bytes: bytes) -> None:
        provider = _make_provider()

        with pytest.raises(OcrProcessingError, match="Unsupported file type") as exc_info:
            provider.extract_text(
                ExtractionRequest(image_bytes=sample_png_bytes, mime_type="text/plain")
            )

        assert not exc_info.value.retryable

    def test_oversized_payload_fails(self, sample_png_bytes: bytes) -> None:
        provider = _make_provider(max_file_size_bytes=10)

        result = provider.extract_text(
            ExtractionRequest(image_bytes=sample_png_bytes, mime_type="image/png", document_id="d")
        )

        assert not result.success
        assert "exceeds" in (result.error_message or "")
        assert result.metadata["documentId"] == "d"


class TestImageSource:
    def test_fetch_error_is_retryable(self) -> None:
        loader = MagicMock()
        loader.load.side_effect = ImageFetchError("timed out")
        provider = _make_provider(loader)

        with pytest.raises(OcrProcessingError) as exc_info:
            provider.extract_text(ExtractionRequest(image_url="https://x/y.png"))

        assert exc_info.value.retryable

    def test_unreadable_source_is_failed_result(self) -> None:
        loader = MagicMock()
        loader.load.side_effect = ImageSourceError("File not found: /tmp/x.png")
        provider = _make_provider(loader)

        result = provider.extract_text(ExtractionRequest(image_url="file:///tmp/x.png"))

        assert not result.success
        assert result.error_message == "File not found: /tmp/x.png"


class TestExtraction:
    @patch(f"{_MODULE}.image_to_data")
    @patch(f"{_MODULE}.image_to_string")
    def test_returns_text_and_confidence(
        self, mock_to_string: MagicMock, mock_to_data: MagicMock, sample_png_bytes: bytes
    ) -> None:
        mock_to_string.return_value = "  Hello OCR \n"
        mock_to_data.return_value = _data(["", "Hello", "OCR"], ["-1", "90", 80.0])
        provider = _make_provider()

        result = provider.extract_text(
            ExtractionRequest(image_bytes=sample_png_bytes, mime_type="image/png", language="de")
        )

        assert result.success
        assert result.provider_type is ProviderType.TESSERACT
        assert result.extracted_text == "Hello OCR"
        assert result.confidence == 0.85
        assert result.metadata["language"] == "deu"
        assert mock_to_string.call_args.kwargs["lang"] == "deu"
        assert mock_to_string.call_args.kwargs["timeout"] == 5

    @patch(f"{_MODULE}.image_to_data")
    @patch(f"{_MODULE}.image_to_string")
    def test_pdf_pages_are_rasterized(
        self,
        mock_to_string: MagicMock,
        mock_to_data: MagicMock,
        multi_page_pdf_bytes: bytes,
    ) -> None:
        mock_to_string.side_effect = ["Page one", "Page two"]
        mock_to_data.return_value = _data([], [])
        provider = _make_provider()

        result = provider.extract_text(
            ExtractionRequest(image_bytes=multi_page_pdf_bytes, mime_type="application/pdf")
        )

        assert result.extracted_text == "Page one\nPage two"
        assert result.confidence is None
        assert mock_to_string.call_count == 2

    @patch(f"{_MODULE}.image_to_string")
    def test_timeout_raises_retryable(
        self, mock_to_string: MagicMock, sample_png_bytes: bytes
    ) -> None:
        mock_to_string.side_effect = RuntimeError("Tesseract process timeout")
        provider = _make_provider()

        with pytest.raises(OcrProcessingError, match="timed out") as exc_info:
            provider.extract_text(
                ExtractionRequest(image_bytes=sample_png_bytes, mime_type="image/png")
            )

        assert exc_info.value.retryable

    @patch(f"{_MODULE}.image_to_string")
    def test_tesseract_error_is_failed_result(
        self, mock_to_string: MagicMock, sample_png_bytes: bytes
    ) -> None:
        mock_to_string.side_effect = pytesseract.TesseractError(1, "bad traineddata")
        provider = _make_provider()

        result = provider.extract_text(
            ExtractionRequest(image_bytes=sample_png_bytes, mime_type="image/png")
        )

        assert not result.success

    def test_corrupt_image_is_failed_result(self) -> None:
        provider = _make_provider()

        result = provider.extract_text(
            ExtractionRequest(image_bytes=b"not an image", mime_type="image/png")
        )

        assert not result.success

    @patch(f"{_MODULE}.image_to_string")
    def test_decompression_bomb_is_failed_result(
        self,
        mock_to_string: MagicMock,
        sample_png_bytes: bytes,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 10)
        provider = _make_provider()

        result = provider.extract_text(
            ExtractionRequest(image_bytes=sample_png_bytes, mime_type="image/png")
        )

        assert not result.success
        assert "decompression bomb" in (result.error_message or "")
        mock_to_string.assert_not_called()

    @patch(f"{_MODULE}.image_to_data")
    @patch(f"{_MODULE}.image_to_string")
    def test_pdf_page_count_is_capped(
        self,
        mock_to_string: MagicMock,
        mock_to_data: MagicMock,
        multi_page_pdf_bytes: bytes,
    ) -> None:
        mock_to_string.return_value = "Page one"
        mock_to_data.return_value = _data([], [])
        provider = _make_provider(max_pdf_pages=1)

        result = provider.extract_text(
            ExtractionRequest(image_bytes=multi_page_pdf_bytes, mime_type="application/pdf")
        )

        assert result.extracted_text == "Page one"
        assert mock_to_string.call_count == 1


class TestDeadline:
    @patch(f"{_MODULE}.image_to_data")
    @patch(f"{_MODULE}.image_to_string")
    def test_subprocesses_share_one_budget(
        self,
        mock_to_string: MagicMock,
        mock_to_data: MagicMock,
        multi_page_pdf_bytes: bytes,
    ) -> None:
        ticks = iter([100.0, 100.0, 102.0, 104.5, 106.0])
        mock_to_string.return_value = "page"
        mock_to_data.return_value = _data([], [])
        provider = _make_provider(clock=lambda: next(ticks))

        with pytest.raises(OcrProcessingError, match="timed out") as exc_info:
            provider.extract_text(
                ExtractionRequest(
                    image_bytes=multi_page_pdf_bytes,
                    mime_type="application/pdf",
                    document_id="doc-1",
                )
            )

        assert exc_info.value.retryable
        assert [c.kwargs["timeout"] for c in mock_to_string.call_args_list] == [5.0, 0.5]
        assert [c.kwargs["timeout"] for c in mock_to_data.call_args_list] == [3.0]


class TestAvailability:
    @patch(f"{_MODULE}.get_tesseract_version")
    def test_checks_binary_once(self, mock_version: MagicMock) -> None:
        provider = _make_provider()

        assert provider.is_available()
        assert provider.is_available()
        mock_version.assert_called_once()

    @patch(f"{_MODULE}.get_tesseract_version")
    def test_missing_binary_is_unavailable(self, mock_version: MagicMock) -> None:
        mock_version.side_effect = pytesseract.TesseractNotFoundError()
        provider = _make_provider()

        assert not provider.is_available()


class TestCapabilities:
    def test_supports_is_case_insensitive(self) -> None:
        provider = _make_provider()

        assert provider.supports("IMAGE/PNG")
        assert provider.supports("application/pdf")
        assert not provider.supports("text/plain")
        assert not provider.supports(None)

    def test_languages(self) -> None:
        assert "eng" in _make_provider().supported_languages()


class TestWordConfidences:
    def test_skips_layout_rows_and_blank_words(self) -> None:
        data = _data(["", "a", " ", "b", "c"], ["-1", "50", "70", "bad", 30])

        assert _word_confidences(data) == [50.0, 30.0]


class TestAsync:
    @patch(f"{_MODULE}.image_to_data")
    @patch(f"{_MODULE}.image_to_string")
    def test_extract_text_async_matches_sync(
        self, mock_to_string: MagicMock, mock_to_data: MagicMock, sample_png_bytes: bytes
    ) -> None:
        mock_to_string.return_value = "async text"
        mock_to_data.return_value = _data(["async", "text"], ["70", "90"])
        provider = _make_provider()

        result = asyncio.run(
            provider.extract_text_async(
                ExtractionRequest(image_bytes=sample_png_bytes, mime_type="image/png")
            )
        )

        assert result.success
        assert result.extracted_text == "async text"
        assert result.confidence == 0.8
