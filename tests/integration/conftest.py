import os
import uuid
from collections.abc import Generator
from pathlib import Path
from typing import Any

import psycopg
import pytest

from app.config.settings import Settings
from app.database.connection import close_pool, get_connection, init_pool, init_schema
from app.documents.models import Document, DocumentType, UploadedFile
from app.documents.service import DocumentService, build_document_service
from app.ocr.pattern_provider import PatternOcrProvider
from app.pdf.pdfplumber_adapter import PdfPlumberAdapter
from app.processor.processor import Processor, build_processor
from app.storage.local_disk_adapter import LocalDiskAdapter


def _test_settings() -> Settings:
    os.environ.setdefault("DB_DATABASE", "opengrains_test")
    return Settings(ocr_provider="pattern", ocr_max_concurrency=2)


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    return _test_settings()


@pytest.fixture(scope="session")
def integration_pool(test_settings: Settings) -> Generator[None, None, None]:
    try:
        init_pool(test_settings)
        init_schema()
    except Exception as e:
        pytest.skip(f"PostgreSQL test DB not available: {e}. Set DB_* env to run these tests")
    try:
        yield
    finally:
        close_pool()


@pytest.fixture
def db_conn(integration_pool: None) -> Generator[psycopg.Connection[Any], None, None]:
    with get_connection() as conn:
        yield conn


@pytest.fixture
def supplier_id(db_conn: psycopg.Connection[Any]) -> Generator[str, None, None]:
    """A supplier row; its documents, jobs, results and events are removed afterwards."""
    owner_id = f"sup-{uuid.uuid4()}"
    db_conn.execute("INSERT INTO suppliers (id, name) VALUES (%s, %s)", (owner_id, "Agro Test"))
    db_conn.commit()
    try:
        yield owner_id
    finally:
        db_conn.rollback()
        db_conn.execute("DELETE FROM documents WHERE owner_id = %s", (owner_id,))
        db_conn.execute("DELETE FROM suppliers WHERE id = %s", (owner_id,))
        db_conn.commit()


@pytest.fixture
def storage(tmp_path: Path) -> LocalDiskAdapter:
    return LocalDiskAdapter(tmp_path / "files")


@pytest.fixture
def service(
    integration_pool: None, test_settings: Settings, storage: LocalDiskAdapter
) -> DocumentService:
    return build_document_service(test_settings, storage=storage)


@pytest.fixture
def processor(
    integration_pool: None, test_settings: Settings, storage: LocalDiskAdapter
) -> Processor:
    return build_processor(
        test_settings, storage=storage, provider=PatternOcrProvider(PdfPlumberAdapter())
    )


@pytest.fixture
def upload_pdf(service: DocumentService, supplier_id: str):  # type: ignore[no-untyped-def]
    def _upload(
        content: bytes, document_type: DocumentType, filename: str = "doc.pdf"
    ) -> Document:
        file = UploadedFile(filename=filename, content=content, mime_type="application/pdf")
        return service.upload_document(supplier_id, file, document_type, "agent@example.ro")

    return _upload
