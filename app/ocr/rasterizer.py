import pymupdf

PDF_MIME_TYPE = "application/pdf"


class PdfRasterizationError(Exception):
    """Raised when PDF pages cannot be rendered to images."""


def is_pdf(mime_type: str | None) -> bool:
    return (mime_type or "").strip().lower() == PDF_MIME_TYPE


def rasterize_pdf(pdf_bytes: bytes, dpi: int = 200, max_pages: int | None = None) -> list[bytes]:
    """Render PDF pages to PNG images using PyMuPDF.

    Args:
        pdf_bytes: Raw PDF file content.
        dpi: Render resolution.
        max_pages: Optional cap on the number of leading pages rendered.

    Returns:
        One PNG payload per rendered page, in page order.

    Raises:
        PdfRasterizationError: if the document cannot be opened or rendered.
    """
    try:
        with pymupdf.open(stream=pdf_bytes, filetype="pdf") as doc:  # type: ignore[no-untyped-call]
            pages = []
            for index, page in enumerate(doc):
                if max_pages is not None and index >= max_pages:
                    break
                pages.append(page.get_pixmap(dpi=dpi).tobytes("png"))
    except Exception as exc:
        raise PdfRasterizationError(f"pymupdf rasterization failed: {exc}") from exc
    if not pages:
        raise PdfRasterizationError("PDF contains no pages")
    return pages
