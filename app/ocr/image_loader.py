from pathlib import Path
from urllib.parse import unquote, urlparse

import httpx

from app.ocr.models import ExtractionRequest


class ImageSourceError(Exception):
    """Raised when the request's image source cannot be resolved to bytes."""


class ImageFetchError(ImageSourceError):
    """Raised when a remote image source fails to download."""


class ImageLoader:
    """Resolves an extraction request's image source into raw bytes.

    Supports inline bytes, http(s) URLs and file:// URLs (local storage disk).
    """

    SUPPORTED_SCHEMES = ("http", "https", "file")

    def __init__(self, timeout_seconds: int = 30, client: httpx.Client | None = None) -> None:
        self._timeout_seconds = timeout_seconds
        self._client = client

    def load(self, request: ExtractionRequest) -> bytes:
        """Return the image payload for the request.

        Raises:
            ImageSourceError: if the source is missing, unsupported or unreadable.
            ImageFetchError: if a remote download fails (network, timeout, HTTP status).
        """
        if request.image_bytes:
            return request.image_bytes
        url = (request.image_url or "").strip()
        if not url:
            raise ImageSourceError("No image source available")

        parsed = urlparse(url)
        scheme = parsed.scheme.lower()
        if scheme not in self.SUPPORTED_SCHEMES:
            raise ImageSourceError(f"Unsupported image URL scheme '{scheme}'")
        if scheme == "file":
            return self._read_local(Path(unquote(parsed.path)))
        return self._download(url)

    def _read_local(self, path: Path) -> bytes:
        if not path.is_file():
            raise ImageSourceError(f"File not found: {path}")
        return path.read_bytes()

    def _download(self, url: str) -> bytes:
        try:
            if self._client is not None:
                response = self._client.get(url, timeout=self._timeout_seconds)
            else:
                with httpx.Client(follow_redirects=True) as client:
                    response = client.get(url, timeout=self._timeout_seconds)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise ImageFetchError(f"Timed out downloading image: {exc}") from exc
        except httpx.HTTPError as exc:
            raise ImageFetchError(f"Failed to download image: {exc}") from exc
        return response.content
