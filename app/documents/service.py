"""Entry point for back-office collaborators: uploads, lookups, review and reprocessing."""

from app.config.settings import Settings
from app.database.connection import get_connection
from app.database.repositories.document_repository import DocumentRepository
from app.database.repositories.job_repository import JobRepository
from app.database.repositories.owner_repository import OwnerRepository
from app.documents.document_types import mandatory_types_for
from app.documents.exceptions import (
    ExtractionInProgressError,
    FileNotAvailableError,
    InvalidTransitionError,
    NotEligibleForOcrError,
    OwnerNotFoundError,
    ValidationError,
)
from app.documents.intake import UploadIntake
from app.documents.models import (
    Document,
    DocumentStats,
    DocumentType,
    DocumentView,
    OcrStatus,
    UploadedFile,
    UploadStatus,
    ValidationDecision,
    ValidationStatus,
)
from app.lifecycle.state_machine import Reason, Track, ocr_may_start, reprocess_sources
from app.logging.logger import Log
from app.storage.base import BaseBlobStorage
from app.storage.exceptions import StorageError
from app.storage.factory import StorageFactory

# Validation outcomes that leave a mandatory document type unsatisfied.
_UNACCEPTED_VALIDATION = frozenset(
    {ValidationStatus.REJECTED, ValidationStatus.EXPIRED, ValidationStatus.INVALID}
)


class DocumentService:
    def __init__(
        self,
        *,
        intake: UploadIntake,
        doc_repo: DocumentRepository,
        job_repo: JobRepository,
        owner_repo: OwnerRepository,
        storage: BaseBlobStorage,
    ) -> None:
        self._intake = intake
        self._doc_repo = doc_repo
        self._job_repo = job_repo
        self._owner_repo = owner_repo
        self._storage = storage

    def upload_document(
        self,
        owner_id: str,
        file: UploadedFile,
        document_type: DocumentType | str,
        uploaded_by: str,
        description: str | None = None,
    ) -> Document:
        return self._intake.submit(file, document_type, owner_id, uploaded_by, description)

    def reupload_document(
        self, document_id: str, file: UploadedFile, uploaded_by: str
    ) -> Document:
        return self._intake.resubmit(document_id, file, uploaded_by)

    def get_document(self, document_id: str) -> DocumentView:
        document = self._doc_repo.find_by_id(document_id)
        extraction = None
        if document.ocr_result_id is not None:
            extraction = self._doc_repo.find_result(document.ocr_result_id)
        return DocumentView(document=document, extraction=extraction)

    def reprocess(self, document_id: str) -> Document:
        """Queue a fresh extraction for a document.

        The previous result stops being current; the new one replaces it when
        the job completes.

        Raises:
            DocumentNotFoundError: if the document does not exist.
            NotEligibleForOcrError: for document types or files OCR cannot read.
            ExtractionInProgressError: if an extraction is already queued or running.
            InvalidTransitionError: if the upload has not completed.
        """
        with get_connection() as conn:
            document = self._doc_repo.lock(conn, document_id)
            if not document.ocr_eligible:
                raise NotEligibleForOcrError(
                    f"Document {document_id} ({document.document_type}, "
                    f"{document.mime_type}) cannot be read by OCR"
                )
            if document.ocr_status == OcrStatus.PROCESSING or self._job_repo.has_active_job(
                conn, document_id
            ):
                raise ExtractionInProgressError(
                    f"Document {document_id} has an extraction in progress"
                )
            if not ocr_may_start(document.upload_status):
                raise InvalidTransitionError(
                    f"Document {document_id} upload is {document.upload_status}, "
                    "upload the file again before reprocessing"
                )
            if document.ocr_status in reprocess_sources():
                document = self._doc_repo.transition(
                    conn,
                    document,
                    Track.OCR,
                    OcrStatus.PROCESSING,
                    Reason.REPROCESS,
                    ocr_result_id=None,
                    ocr_error=None,
                )
            job_id = self._job_repo.enqueue(conn, document_id)
            if job_id is None:
                raise ExtractionInProgressError(
                    f"Document {document_id} has an extraction in progress"
                )
            conn.commit()
        Log.info(f"Queued reprocess job {job_id} for document {document_id}")
        return document

    def list_documents_requiring_review(self) -> list[DocumentView]:
        return [
            DocumentView(document=document, extraction=extraction)
            for document, extraction in self._doc_repo.list_requiring_review()
        ]

    def record_validation(
        self,
        document_id: str,
        status: ValidationStatus | str,
        reviewer: str,
        notes: str | None = None,
    ) -> Document:
        validation_status = _parse_validation_status(status)
        return self._doc_repo.update_validation(document_id, validation_status, reviewer, notes)

    def batch_validate(self, decisions: list[ValidationDecision]) -> list[Document]:
        """Record several verdicts at once; either all are stored or none.

        Raises:
            ValidationError: if any status is unknown, before anything is written.
            DocumentNotFoundError: if any document is unknown.
        """
        parsed = [
            ValidationDecision(
                document_id=decision.document_id,
                status=_parse_validation_status(decision.status),
                reviewer=decision.reviewer,
                notes=decision.notes,
            )
            for decision in decisions
        ]
        if not parsed:
            return []
        return self._doc_repo.update_validations(parsed)

    def submit_for_review(self, document_ids: list[str]) -> list[Document]:
        if not document_ids:
            return []
        return self._doc_repo.submit_for_review(document_ids)

    def document_stats(self) -> DocumentStats:
        return self._doc_repo.stats()

    def download_document(self, document_id: str) -> UploadedFile:
        """Read back the stored file under its original name and MIME type.

        Raises:
            DocumentNotFoundError: if the document does not exist.
            FileNotAvailableError: if the upload never completed.
            StorageError: if the file cannot be read.
        """
        document = self._doc_repo.find_by_id(document_id)
        if document.upload_status != UploadStatus.COMPLETED or not document.storage_path:
            raise FileNotAvailableError(
                f"Document {document_id} has no stored file (upload {document.upload_status})"
            )
        content = self._storage.get(document.storage_path)
        return UploadedFile(
            filename=document.filename, content=content, mime_type=document.mime_type
        )

    def delete_document(self, document_id: str) -> None:
        """Delete a document with its results, jobs, audit trail and stored file."""
        document = self._doc_repo.delete(document_id)
        Log.info(f"Deleted document {document_id}")
        if document.storage_path:
            try:
                self._storage.delete(document.storage_path)
            except StorageError as exc:
                Log.warning(f"Could not delete file {document.storage_path}: {exc}")

    def list_owner_documents(self, owner_id: str) -> list[Document]:
        return self._doc_repo.list_by_owner(owner_id)

    def missing_required_types(self, owner_id: str) -> list[DocumentType]:
        """Mandatory document types the owner has no usable upload for.

        Raises:
            OwnerNotFoundError: if the owner id is unknown.
        """
        owner_kind = self._owner_repo.find_owner_kind(owner_id)
        if owner_kind is None:
            raise OwnerNotFoundError(f"Unknown owner {owner_id}")
        present = {
            document.document_type
            for document in self._doc_repo.list_by_owner(owner_id)
            if document.upload_status == UploadStatus.COMPLETED
            and document.validation_status not in _UNACCEPTED_VALIDATION
        }
        return [code for code in mandatory_types_for(owner_kind) if code not in present]

    def delete_owner(self, owner_id: str) -> int:
        """Delete a supplier or contact with all of its documents and stored files.

        Returns the number of documents removed.

        Raises:
            OwnerNotFoundError: if the owner id is unknown.
        """
        owner_kind = self._owner_repo.find_owner_kind(owner_id)
        if owner_kind is None:
            raise OwnerNotFoundError(f"Unknown owner {owner_id}")
        documents = self._doc_repo.list_by_owner(owner_id)
        if not self._owner_repo.delete(owner_id, owner_kind):
            raise OwnerNotFoundError(f"Unknown owner {owner_id}")
        Log.info(f"Deleted {owner_kind} {owner_id} with {len(documents)} documents")
        for document in documents:
            if not document.storage_path:
                continue
            try:
                self._storage.delete(document.storage_path)
            except StorageError as exc:
                Log.warning(f"Could not delete file {document.storage_path}: {exc}")
        return len(documents)


def _parse_validation_status(status: ValidationStatus | str) -> ValidationStatus:
    try:
        return ValidationStatus(status)
    except ValueError as exc:
        raise ValidationError(f"Unknown validation status '{status}'") from exc


def build_document_service(
    settings: Settings,
    *,
    storage: BaseBlobStorage | None = None,
) -> DocumentService:
    """Build a DocumentService with all required adapters."""
    storage = storage or StorageFactory.create(settings)
    doc_repo = DocumentRepository()
    job_repo = JobRepository(settings.ocr_max_concurrency)
    owner_repo = OwnerRepository()
    intake = UploadIntake(
        doc_repo=doc_repo,
        job_repo=job_repo,
        owner_repo=owner_repo,
        storage=storage,
        max_upload_size_bytes=settings.max_upload_size_bytes,
    )
    return DocumentService(
        intake=intake,
        doc_repo=doc_repo,
        job_repo=job_repo,
        owner_repo=owner_repo,
        storage=storage,
    )
