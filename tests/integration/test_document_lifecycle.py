from pathlib import Path
from unittest.mock import MagicMock

import pytest

from app.config.settings import Settings
from app.database.connection import get_connection
from app.database.repositories.document_repository import DocumentRepository
from app.database.repositories.job_repository import JobRepository
from app.documents.exceptions import (
    DocumentNotFoundError,
    ExtractionInProgressError,
    FileNotAvailableError,
    OwnerNotFoundError,
)
from app.documents.models import (
    DocumentType,
    OcrStatus,
    UploadedFile,
    UploadStatus,
    ValidationDecision,
    ValidationStatus,
)
from app.documents.service import DocumentService, build_document_service
from app.extraction.models import ConfidenceLevel
from app.ocr.base import BaseOcrProvider
from app.ocr.exceptions import ProviderTimeoutError
from app.ocr.pattern_provider import PatternOcrProvider
from app.pdf.pdfplumber_adapter import PdfPlumberAdapter
from app.processor.exceptions import JobNoLongerActiveError
from app.processor.processor import Processor, build_processor
from app.storage.exceptions import BlobNotFoundError, StorageError
from app.storage.local_disk_adapter import LocalDiskAdapter
from app.worker.job_runner import JobRunner
from app.worker.worker import Worker


class _FlakyStorage(LocalDiskAdapter):
    """Local storage whose first *failures* writes are refused."""

    def __init__(self, files_root: Path, failures: int) -> None:
        super().__init__(files_root)
        self.failures = failures

    def put(self, path: str, data: bytes, content_type: str) -> str:
        if self.failures:
            self.failures -= 1
            raise StorageError("storage unavailable")
        return super().put(path, data, content_type)


class _StallingProvider(PatternOcrProvider):
    """Pattern provider that runs *during_read* before returning its output."""

    def __init__(self, during_read) -> None:  # type: ignore[no-untyped-def]
        super().__init__(PdfPlumberAdapter())
        self._during_read = during_read

    def recognize(self, file_bytes: bytes, **kwargs):  # type: ignore[no-untyped-def]
        output = super().recognize(file_bytes, **kwargs)
        self._during_read()
        return output


def _run_next_job(processor: Processor) -> None:
    with get_connection() as conn:
        job = JobRepository(2).claim_next_job(conn)
    assert job is not None
    processor.process(job.document_id, job.id)


@pytest.mark.integration
class TestUploadAndExtract:
    def test_onrc_certificate_end_to_end(
        self, upload_pdf, processor: Processor, service: DocumentService, onrc_pdf_bytes: bytes
    ) -> None:
        document = upload_pdf(onrc_pdf_bytes, DocumentType.ONRC_CERTIFICATE)
        assert document.upload_status == UploadStatus.COMPLETED
        assert document.ocr_status == OcrStatus.PENDING

        _run_next_job(processor)

        view = service.get_document(document.id)
        assert view.document.ocr_status == OcrStatus.COMPLETED
        assert view.extraction is not None
        assert view.document.ocr_result_id == view.extraction.id
        assert view.extraction.fields["cui"] == "18547290"
        assert view.extraction.fields["trade_register_number"] == "J40/1234/2020"
        assert view.extraction.fields["business_name"] == "AGRO EXEMPLU SRL"
        assert view.extraction.overall_confidence == pytest.approx(83.0)
        assert view.extraction.confidence_level == ConfidenceLevel.MEDIUM
        assert view.requires_review is True
        assert view.extraction.provider == "pattern"

    def test_status_events_record_every_transition(
        self, upload_pdf, processor: Processor, onrc_pdf_bytes: bytes
    ) -> None:
        document = upload_pdf(onrc_pdf_bytes, DocumentType.ONRC_CERTIFICATE)
        _run_next_job(processor)

        events = DocumentRepository().list_events(document.id)

        assert [(e.track, e.from_status, e.to_status) for e in events] == [
            ("upload", None, "pending"),
            ("upload", "pending", "uploading"),
            ("upload", "uploading", "completed"),
            ("ocr", "pending", "processing"),
            ("ocr", "processing", "completed"),
        ]

    def test_stored_file_is_readable(
        self, upload_pdf, storage: LocalDiskAdapter, onrc_pdf_bytes: bytes
    ) -> None:
        document = upload_pdf(onrc_pdf_bytes, DocumentType.ONRC_CERTIFICATE)
        assert document.storage_path is not None
        assert storage.get(document.storage_path) == onrc_pdf_bytes

    def test_other_document_is_stored_but_not_queued(
        self, upload_pdf, onrc_pdf_bytes: bytes
    ) -> None:
        document = upload_pdf(onrc_pdf_bytes, DocumentType.OTHER)
        assert document.upload_status == UploadStatus.COMPLETED
        assert JobRepository(2).list_for_document(document.id) == []

    def test_worker_completes_a_job(
        self,
        upload_pdf,
        processor: Processor,
        test_settings: Settings,
        bank_statement_pdf_bytes: bytes,
    ) -> None:
        document = upload_pdf(bank_statement_pdf_bytes, DocumentType.BANK_STATEMENT)
        job_repo = JobRepository(test_settings.ocr_max_concurrency)
        worker = Worker(job_repo, JobRunner(processor, job_repo), test_settings)

        worker.run(max_jobs=1)

        stored = DocumentRepository().find_by_id(document.id)
        assert stored.ocr_status == OcrStatus.COMPLETED
        assert [job.status for job in job_repo.list_for_document(document.id)] == ["done"]
        result = DocumentRepository().find_result(stored.ocr_result_id or "")
        assert result is not None
        assert result.fields["iban"] == "RO49AAAA1B31007593840000"


@pytest.mark.integration
class TestExtractionFailure:
    def test_provider_failure_marks_document_and_job_failed(
        self,
        upload_pdf,
        test_settings: Settings,
        storage: LocalDiskAdapter,
        onrc_pdf_bytes: bytes,
    ) -> None:
        provider = MagicMock(spec=BaseOcrProvider)
        provider.name = "openai"
        provider.recognize.side_effect = ProviderTimeoutError("OCR provider timed out after 60s")
        failing = build_processor(test_settings, storage=storage, provider=provider)
        document = upload_pdf(onrc_pdf_bytes, DocumentType.ONRC_CERTIFICATE)

        with pytest.raises(ProviderTimeoutError):
            _run_next_job(failing)

        stored = DocumentRepository().find_by_id(document.id)
        assert stored.ocr_status == OcrStatus.FAILED
        assert stored.ocr_error == "OCR provider timed out after 60s"
        assert stored.ocr_result_id is None
        jobs = JobRepository(2).list_for_document(document.id)
        assert [job.status for job in jobs] == ["failed"]

    def test_failed_extraction_can_be_reprocessed(
        self,
        upload_pdf,
        service: DocumentService,
        processor: Processor,
        test_settings: Settings,
        storage: LocalDiskAdapter,
        onrc_pdf_bytes: bytes,
    ) -> None:
        provider = MagicMock(spec=BaseOcrProvider)
        provider.name = "openai"
        provider.recognize.side_effect = ProviderTimeoutError("timed out")
        document = upload_pdf(onrc_pdf_bytes, DocumentType.ONRC_CERTIFICATE)
        with pytest.raises(ProviderTimeoutError):
            _run_next_job(build_processor(test_settings, storage=storage, provider=provider))

        reprocessed = service.reprocess(document.id)
        assert reprocessed.ocr_status == OcrStatus.PROCESSING
        _run_next_job(processor)

        view = service.get_document(document.id)
        assert view.document.ocr_status == OcrStatus.COMPLETED
        assert view.document.ocr_error is None
        assert view.extraction is not None


@pytest.mark.integration
class TestReprocess:
    def test_reprocess_twice_queues_one_job(
        self, upload_pdf, service: DocumentService, processor: Processor, onrc_pdf_bytes: bytes
    ) -> None:
        document = upload_pdf(onrc_pdf_bytes, DocumentType.ONRC_CERTIFICATE)
        _run_next_job(processor)
        first_result_id = service.get_document(document.id).document.ocr_result_id

        service.reprocess(document.id)
        with pytest.raises(ExtractionInProgressError):
            service.reprocess(document.id)

        jobs = JobRepository(2).list_for_document(document.id)
        assert [job.status for job in jobs] == ["done", "pending"]
        in_flight = DocumentRepository().find_by_id(document.id)
        assert in_flight.ocr_status == OcrStatus.PROCESSING
        assert in_flight.ocr_result_id is None

        _run_next_job(processor)

        current = DocumentRepository().find_by_id(document.id)
        results = DocumentRepository().list_results(document.id)
        assert current.ocr_status == OcrStatus.COMPLETED
        assert len(results) == 2
        assert current.ocr_result_id == results[-1].id
        assert current.ocr_result_id != first_result_id

    def test_reprocess_rejected_while_job_is_queued(
        self, upload_pdf, service: DocumentService, onrc_pdf_bytes: bytes
    ) -> None:
        document = upload_pdf(onrc_pdf_bytes, DocumentType.ONRC_CERTIFICATE)
        with pytest.raises(ExtractionInProgressError):
            service.reprocess(document.id)


@pytest.mark.integration
class TestReupload:
    def test_failed_upload_then_reupload(
        self,
        integration_pool: None,
        supplier_id: str,
        test_settings: Settings,
        tmp_path: Path,
        onrc_pdf_bytes: bytes,
    ) -> None:
        flaky = _FlakyStorage(tmp_path / "files", failures=1)
        flaky_service = build_document_service(test_settings, storage=flaky)
        file = UploadedFile(
            filename="onrc.pdf", content=onrc_pdf_bytes, mime_type="application/pdf"
        )

        failed = flaky_service.upload_document(
            supplier_id, file, DocumentType.ONRC_CERTIFICATE, "agent"
        )
        assert failed.upload_status == UploadStatus.FAILED
        assert failed.upload_error == "storage unavailable"
        assert failed.upload_retryable is True
        assert JobRepository(2).list_for_document(failed.id) == []

        document = flaky_service.reupload_document(failed.id, file, "agent")

        assert document.upload_status == UploadStatus.COMPLETED
        assert document.upload_error is None
        assert document.ocr_status == OcrStatus.PENDING
        assert document.ocr_result_id is None
        assert [j.status for j in JobRepository(2).list_for_document(document.id)] == ["pending"]

    def test_reupload_replaces_result(
        self,
        upload_pdf,
        service: DocumentService,
        processor: Processor,
        storage: LocalDiskAdapter,
        onrc_pdf_bytes: bytes,
        bank_statement_pdf_bytes: bytes,
    ) -> None:
        document = upload_pdf(onrc_pdf_bytes, DocumentType.ONRC_CERTIFICATE)
        _run_next_job(processor)
        old_path = DocumentRepository().find_by_id(document.id).storage_path
        assert old_path is not None
        service.record_validation(document.id, ValidationStatus.APPROVED, "reviewer")

        file = UploadedFile(
            filename="onrc-new.pdf", content=onrc_pdf_bytes, mime_type="application/pdf"
        )
        updated = service.reupload_document(document.id, file, "agent")

        assert updated.ocr_status == OcrStatus.PENDING
        assert updated.ocr_result_id is None
        assert updated.validation_status == ValidationStatus.NOT_REVIEWED
        assert updated.filename == "onrc-new.pdf"
        if updated.storage_path != old_path:
            with pytest.raises(BlobNotFoundError):
                storage.get(old_path)


@pytest.mark.integration
class TestReviewAndOwners:
    def test_review_queue_lowest_confidence_first(
        self,
        upload_pdf,
        service: DocumentService,
        processor: Processor,
        supplier_id: str,
        onrc_pdf_bytes: bytes,
        bank_statement_pdf_bytes: bytes,
    ) -> None:
        onrc = upload_pdf(onrc_pdf_bytes, DocumentType.ONRC_CERTIFICATE)
        bank = upload_pdf(bank_statement_pdf_bytes, DocumentType.BANK_STATEMENT)
        _run_next_job(processor)
        _run_next_job(processor)

        queue = [
            view.document.id
            for view in service.list_documents_requiring_review()
            if view.document.owner_id == supplier_id
        ]
        assert queue == [bank.id, onrc.id]

        service.record_validation(bank.id, "approved", "reviewer", "checked against bank")
        queue = [
            view.document.id
            for view in service.list_documents_requiring_review()
            if view.document.owner_id == supplier_id
        ]
        assert queue == [onrc.id]

    def test_missing_required_types(
        self, upload_pdf, service: DocumentService, supplier_id: str, onrc_pdf_bytes: bytes
    ) -> None:
        assert service.missing_required_types(supplier_id) == [
            DocumentType.ONRC_CERTIFICATE,
            DocumentType.BANK_STATEMENT,
        ]
        upload_pdf(onrc_pdf_bytes, DocumentType.ONRC_CERTIFICATE)
        assert service.missing_required_types(supplier_id) == [DocumentType.BANK_STATEMENT]

    def test_delete_document_removes_row_and_file(
        self,
        upload_pdf,
        service: DocumentService,
        storage: LocalDiskAdapter,
        onrc_pdf_bytes: bytes,
    ) -> None:
        document = upload_pdf(onrc_pdf_bytes, DocumentType.ONRC_CERTIFICATE)
        assert document.storage_path is not None

        service.delete_document(document.id)

        with pytest.raises(DocumentNotFoundError):
            service.get_document(document.id)
        assert JobRepository(2).list_for_document(document.id) == []
        with pytest.raises(BlobNotFoundError):
            storage.get(document.storage_path)


@pytest.mark.integration
class TestStaleWork:
    def test_released_job_cannot_attach_its_result(
        self,
        upload_pdf,
        test_settings: Settings,
        storage: LocalDiskAdapter,
        onrc_pdf_bytes: bytes,
    ) -> None:
        document = upload_pdf(onrc_pdf_bytes, DocumentType.ONRC_CERTIFICATE)
        job_repo = JobRepository(test_settings.ocr_max_concurrency)
        with get_connection() as conn:
            job = job_repo.claim_next_job(conn)
        assert job is not None
        worker = Worker(job_repo, MagicMock(spec=JobRunner), test_settings)

        def release_while_reading() -> None:
            with get_connection() as conn:
                conn.execute(
                    "UPDATE ocr_jobs SET locked_at = NOW() - INTERVAL '2 hours' WHERE id = %s",
                    (job.id,),
                )
                conn.commit()
            worker._release_stale_work()

        slow = build_processor(
            test_settings, storage=storage, provider=_StallingProvider(release_while_reading)
        )

        with pytest.raises(JobNoLongerActiveError):
            slow.process(document.id, job.id)

        stored = DocumentRepository().find_by_id(document.id)
        assert stored.ocr_status == OcrStatus.FAILED
        assert stored.ocr_result_id is None
        assert stored.ocr_error == "Extraction did not finish within the time limit"
        stored_job = job_repo.find_by_id(job.id)
        assert stored_job is not None
        assert stored_job.status == "failed"

    def test_unfinished_upload_is_failed_and_can_be_retried(
        self,
        upload_pdf,
        service: DocumentService,
        db_conn,
        onrc_pdf_bytes: bytes,
    ) -> None:
        document = upload_pdf(onrc_pdf_bytes, DocumentType.OTHER)
        db_conn.execute(
            """
            UPDATE documents
            SET upload_status = 'uploading', storage_path = NULL,
                updated_at = NOW() - INTERVAL '1 hour'
            WHERE id = %s
            """,
            (document.id,),
        )
        db_conn.commit()

        failed = DocumentRepository().fail_stale_uploads(db_conn, 900)
        db_conn.commit()

        assert [d.id for d in failed] == [document.id]
        stored = service.get_document(document.id).document
        assert stored.upload_status == UploadStatus.FAILED
        assert stored.upload_retryable is True
        assert stored.upload_error == "Upload did not finish within the time limit"

        file = UploadedFile("doc.pdf", onrc_pdf_bytes, "application/pdf")
        assert service.reupload_document(document.id, file, "agent").upload_status == (
            UploadStatus.COMPLETED
        )

    def test_recent_upload_is_left_alone(
        self, upload_pdf, db_conn, onrc_pdf_bytes: bytes
    ) -> None:
        document = upload_pdf(onrc_pdf_bytes, DocumentType.OTHER)
        db_conn.execute(
            "UPDATE documents SET upload_status = 'uploading' WHERE id = %s", (document.id,)
        )
        db_conn.commit()

        assert DocumentRepository().fail_stale_uploads(db_conn, 900) == []
        db_conn.commit()


@pytest.mark.integration
class TestBackOffice:
    def test_download_returns_original_file(
        self, upload_pdf, service: DocumentService, onrc_pdf_bytes: bytes
    ) -> None:
        document = upload_pdf(onrc_pdf_bytes, DocumentType.ONRC_CERTIFICATE, "onrc-2024.pdf")

        file = service.download_document(document.id)

        assert file == UploadedFile("onrc-2024.pdf", onrc_pdf_bytes, "application/pdf")

    def test_failed_upload_has_nothing_to_download(
        self,
        integration_pool: None,
        supplier_id: str,
        test_settings: Settings,
        tmp_path: Path,
        onrc_pdf_bytes: bytes,
    ) -> None:
        flaky_service = build_document_service(
            test_settings, storage=_FlakyStorage(tmp_path / "files", failures=1)
        )
        file = UploadedFile("onrc.pdf", onrc_pdf_bytes, "application/pdf")
        failed = flaky_service.upload_document(
            supplier_id, file, DocumentType.ONRC_CERTIFICATE, "agent"
        )

        with pytest.raises(FileNotAvailableError):
            flaky_service.download_document(failed.id)

    def test_submit_for_review_moves_only_unreviewed(
        self, upload_pdf, service: DocumentService, onrc_pdf_bytes: bytes
    ) -> None:
        fresh = upload_pdf(onrc_pdf_bytes, DocumentType.ONRC_CERTIFICATE)
        decided = upload_pdf(onrc_pdf_bytes, DocumentType.BANK_STATEMENT)
        service.record_validation(decided.id, "approved", "reviewer")

        documents = service.submit_for_review([fresh.id, decided.id, fresh.id])

        assert [d.id for d in documents] == [fresh.id, decided.id]
        assert documents[0].validation_status == ValidationStatus.UNDER_REVIEW
        assert documents[1].validation_status == ValidationStatus.APPROVED

    def test_submit_for_review_with_unknown_id_changes_nothing(
        self, upload_pdf, service: DocumentService, onrc_pdf_bytes: bytes
    ) -> None:
        document = upload_pdf(onrc_pdf_bytes, DocumentType.ONRC_CERTIFICATE)

        with pytest.raises(DocumentNotFoundError):
            service.submit_for_review([document.id, "no-such-document"])

        stored = service.get_document(document.id).document
        assert stored.validation_status == ValidationStatus.NOT_REVIEWED

    def test_batch_validate_is_all_or_nothing(
        self, upload_pdf, service: DocumentService, onrc_pdf_bytes: bytes
    ) -> None:
        first = upload_pdf(onrc_pdf_bytes, DocumentType.ONRC_CERTIFICATE)
        second = upload_pdf(onrc_pdf_bytes, DocumentType.BANK_STATEMENT)

        with pytest.raises(DocumentNotFoundError):
            service.batch_validate(
                [
                    ValidationDecision(first.id, "approved", "reviewer"),
                    ValidationDecision("no-such-document", "approved", "reviewer"),
                ]
            )
        assert (
            service.get_document(first.id).document.validation_status
            == ValidationStatus.NOT_REVIEWED
        )

        documents = service.batch_validate(
            [
                ValidationDecision(first.id, "approved", "reviewer"),
                ValidationDecision(second.id, "rejected", "reviewer", "statement too old"),
            ]
        )

        assert [d.validation_status for d in documents] == [
            ValidationStatus.APPROVED,
            ValidationStatus.REJECTED,
        ]
        assert documents[1].validation_notes == "statement too old"
        assert documents[1].validated_by == "reviewer"

    def test_document_stats_count_new_uploads(
        self, upload_pdf, service: DocumentService, onrc_pdf_bytes: bytes
    ) -> None:
        before = service.document_stats()

        upload_pdf(onrc_pdf_bytes, DocumentType.ONRC_CERTIFICATE)
        upload_pdf(onrc_pdf_bytes, DocumentType.OTHER)
        after = service.document_stats()

        assert after.total == before.total + 2
        assert (
            after.by_type[DocumentType.ONRC_CERTIFICATE]
            == before.by_type[DocumentType.ONRC_CERTIFICATE] + 1
        )
        assert after.by_type[DocumentType.OTHER] == before.by_type[DocumentType.OTHER] + 1
        assert (
            after.by_validation_status[ValidationStatus.NOT_REVIEWED]
            == before.by_validation_status[ValidationStatus.NOT_REVIEWED] + 2
        )


@pytest.mark.integration
class TestOwnerDeletion:
    def test_deleting_supplier_row_removes_its_documents(
        self, upload_pdf, supplier_id: str, db_conn, onrc_pdf_bytes: bytes
    ) -> None:
        document = upload_pdf(onrc_pdf_bytes, DocumentType.ONRC_CERTIFICATE)

        db_conn.execute("DELETE FROM suppliers WHERE id = %s", (supplier_id,))
        db_conn.commit()

        with pytest.raises(DocumentNotFoundError):
            DocumentRepository().find_by_id(document.id)
        assert JobRepository(2).list_for_document(document.id) == []

    def test_delete_owner_removes_documents_and_files(
        self,
        upload_pdf,
        service: DocumentService,
        storage: LocalDiskAdapter,
        supplier_id: str,
        onrc_pdf_bytes: bytes,
        bank_statement_pdf_bytes: bytes,
    ) -> None:
        onrc = upload_pdf(onrc_pdf_bytes, DocumentType.ONRC_CERTIFICATE)
        bank = upload_pdf(bank_statement_pdf_bytes, DocumentType.BANK_STATEMENT)

        assert service.delete_owner(supplier_id) == 2

        assert service.list_owner_documents(supplier_id) == []
        for document in (onrc, bank):
            assert document.storage_path is not None
            with pytest.raises(BlobNotFoundError):
                storage.get(document.storage_path)
        with pytest.raises(OwnerNotFoundError):
            service.delete_owner(supplier_id)
