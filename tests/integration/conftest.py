import os
import uuid
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import psycopg
import pytest

from app.config.settings import Settings
from app.database.connection import close_pool, get_connection, init_pool
from app.database.models import DocumentCollection, FileEntry

SCHEMA_PATH = Path(__file__).parent / "schema.sql"


def _test_settings() -> Settings:
    os.environ.setdefault("DB_DATABASE", "unraveldocs_test")
    return Settings()


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    return _test_settings()


@pytest.fixture(scope="session")
def integration_pool(test_settings: Settings) -> Generator[None, None, None]:
    try:
        init_pool(test_settings)
        with get_connection() as conn:
            conn.execute(SCHEMA_PATH.read_text())
            conn.commit()
    except Exception as e:
        close_pool()
        pytest.skip(f"PostgreSQL test DB not available: {e}. Set DB_* env to run.")
    try:
        yield
    finally:
        close_pool()


@pytest.fixture
def db_conn(integration_pool: None) -> Generator[psycopg.Connection[Any], None, None]:
    with get_connection() as conn:
        yield conn


@pytest.fixture
def integration_cleanup(
    integration_pool: None,
) -> Generator[list[tuple[str, str]], None, None]:
    cleanup: list[tuple[str, str]] = []
    yield cleanup
    if not cleanup:
        return
    with get_connection() as conn:
        with conn.cursor() as cur:
            for table, key in cleanup:
                if table == "collection":
                    cur.execute("DELETE FROM ocr_jobs WHERE collection_id = %s", (key,))
                    cur.execute(
                        """
                        DELETE FROM ocr_data
                        WHERE document_id IN (
                            SELECT document_id FROM file_entries WHERE collection_id = %s
                        )
                        """,
                        (key,),
                    )
                    cur.execute("DELETE FROM document_collections WHERE id = %s", (key,))
                elif table == "quota":
                    cur.execute("DELETE FROM ocr_quota_usage WHERE user_id = %s", (key,))
        conn.commit()


@pytest.fixture
def seed_collection(
    db_conn: psycopg.Connection[Any],
    integration_cleanup: list[tuple[str, str]],
) -> Callable[..., DocumentCollection]:
    """Factory that inserts a collection whose documents each have a pending OCR record."""

    def _seed(document_count: int = 2, file_url: str | None = None) -> DocumentCollection:
        collection_id = f"col-{uuid.uuid4()}"
        user_id = f"user-{uuid.uuid4()}"
        files = [
            FileEntry(
                document_id=f"doc-{uuid.uuid4()}",
                file_url=file_url or "https://files.example.com/scan.png",
                file_type="image/png",
                file_size=1024,
                original_file_name=f"scan-{i}.png",
            )
            for i in range(document_count)
        ]
        with db_conn.cursor() as cur:
            cur.execute(
                "INSERT INTO document_collections (id, user_id) VALUES (%s, %s)",
                (collection_id, user_id),
            )
            for entry in files:
                cur.execute(
                    """
                    INSERT INTO file_entries
                    (collection_id, document_id, file_url, file_type, file_size, original_file_name)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    """,
                    (
                        collection_id,
                        entry.document_id,
                        entry.file_url,
                        entry.file_type,
                        entry.file_size,
                        entry.original_file_name,
                    ),
                )
                cur.execute(
                    "INSERT INTO ocr_data (document_id, status) VALUES (%s, 'pending')",
                    (entry.document_id,),
                )
        db_conn.commit()
        integration_cleanup.append(("collection", collection_id))
        integration_cleanup.append(("quota", user_id))
        return DocumentCollection(
            id=collection_id, user_id=user_id, status="processing", files=files
        )

    return _seed
