import time

from app.database.connection import get_connection
from app.database.repositories.document_repository import DocumentRepository
from app.database.repositories.job_repository import JobRepository
from app.documents.models import UploadStatus
from app.extraction.normalizer import FieldNormalizer
from app.logging.logger import Log
from app.ocr.base import BaseOcrProvider
from app.processor.exceptions import DocumentNotReadyError, JobNoLongerActiveError
from app.processor.pipeline import PipelineContext, PipelineStep
from app.storage.base import BaseBlobStorage


class MarkProcessingStep(PipelineStep):
    def __init__(self, doc_repo: DocumentRepository) -> None:
        self._doc_repo = doc_repo

    def run(self, context: PipelineContext) -> PipelineContext:
        with get_connection() as conn:
            context.document = self._doc_repo.start_extraction(conn, context.document_id)
            conn.commit()
        Log.info(f"Document {context.document_id} OCR processing for job {context.job_id}")
        return context


class MarkFailedStep(PipelineStep):
    def __init__(self, doc_repo: DocumentRepository, job_repo: JobRepository) -> None:
        self._doc_repo = doc_repo
        self._job_repo = job_repo

    def run(self, context: PipelineContext) -> PipelineContext:
        with get_connection() as conn:
            owned = self._job_repo.mark_failed(conn, context.job_id, context.error_message)
            if owned:
                self._doc_repo.fail_extraction(
                    conn, context.document_id, context.error_message
                )
            conn.commit()
        if not owned:
            Log.warning(
                f"Job {context.job_id} was already finished or released, "
                f"document {context.document_id} left as is"
            )
            return context
        Log.error(f"Job {context.job_id} marked as failed: {context.error_message}")
        return context


class LoadDocumentStep(PipelineStep):
    def __init__(self, doc_repo: DocumentRepository) -> None:
        self._doc_repo = doc_repo

    def run(self, context: PipelineContext) -> PipelineContext:
        document = self._doc_repo.find_by_id(context.document_id)
        if document.upload_status != UploadStatus.COMPLETED or not document.storage_path:
            raise DocumentNotReadyError(
                f"Document {document.id} has no stored file (upload {document.upload_status})"
            )
        context.document = document
        return context


class FetchBlobStep(PipelineStep):
    def __init__(self, storage: BaseBlobStorage) -> None:
        self._storage = storage

    def run(self, context: PipelineContext) -> PipelineContext:
        if context.document is None or context.document.storage_path is None:
            raise ValueError("PipelineContext.document must be loaded before fetching")
        context.raw_bytes = self._storage.get(context.document.storage_path)
        Log.info(f"Loaded {len(context.raw_bytes)} bytes for document {context.document_id}")
        return context


class RecognizeStep(PipelineStep):
    def __init__(self, provider: BaseOcrProvider, timeout_seconds: float) -> None:
        self._provider = provider
        self._timeout_seconds = timeout_seconds

    def run(self, context: PipelineContext) -> PipelineContext:
        if context.document is None:
            raise ValueError("PipelineContext.document must be set before recognition")
        started = time.monotonic()
        context.provider_output = self._provider.recognize(
            context.raw_bytes,
            mime_type=context.document.mime_type,
            document_type=context.document.document_type,
            timeout_seconds=self._timeout_seconds,
        )
        context.processing_ms = int((time.monotonic() - started) * 1000)
        Log.info(
            f"{self._provider.name} read document {context.document_id} "
            f"in {context.processing_ms} ms"
        )
        return context


class NormalizeStep(PipelineStep):
    def __init__(self, normalizer: FieldNormalizer, provider_name: str) -> None:
        self._normalizer = normalizer
        self._provider_name = provider_name

    def run(self, context: PipelineContext) -> PipelineContext:
        if context.document is None or context.provider_output is None:
            raise ValueError("PipelineContext.provider_output must be set before normalization")
        context.result = self._normalizer.normalize(
            context.provider_output,
            context.document.document_type,
            document_id=context.document_id,
            provider=self._provider_name,
            processing_ms=context.processing_ms,
        )
        return context


class PersistResultStep(PipelineStep):
    def __init__(self, doc_repo: DocumentRepository, job_repo: JobRepository) -> None:
        self._doc_repo = doc_repo
        self._job_repo = job_repo

    def run(self, context: PipelineContext) -> PipelineContext:
        if context.result is None:
            raise ValueError("PipelineContext.result must be set before persist")
        with get_connection() as conn:
            if not self._job_repo.mark_done(conn, context.job_id):
                raise JobNoLongerActiveError(
                    f"Job {context.job_id} is no longer processing, "
                    f"result for document {context.document_id} discarded"
                )
            context.document = self._doc_repo.attach_result(conn, context.result)
            conn.commit()
        Log.info(
            f"Document {context.document_id} extraction stored as {context.result.id} "
            f"(review={'yes' if context.result.requires_review else 'no'})"
        )
        return context
