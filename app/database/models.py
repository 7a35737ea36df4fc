from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class OcrJobRecord:
    """Represents a row from the ocr_jobs table."""

    id: int
    collection_id: str
    document_id: str
    status: str
    attempts: int
    error_message: str | None = None
    locked_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class FileEntry:
    """Represents a row from the file_entries table (a collection member)."""

    document_id: str
    file_url: str | None
    file_type: str
    file_size: int = 0
    original_file_name: str = ""


@dataclass
class DocumentCollection:
    """Represents a row from the document_collections table with its files."""

    id: str
    user_id: str
    status: str
    files: list[FileEntry] = field(default_factory=list)
    updated_at: datetime | None = None

    @property
    def document_ids(self) -> list[str]:
        return [entry.document_id for entry in self.files]

    def find_file(self, document_id: str) -> FileEntry | None:
        for entry in self.files:
            if entry.document_id == document_id:
                return entry
        return None


@dataclass
class OcrRecord:
    """Represents a row from the ocr_data table."""

    id: int
    document_id: str
    status: str
    extracted_text: str | None = None
    error_message: str | None = None
    updated_at: datetime | None = None
