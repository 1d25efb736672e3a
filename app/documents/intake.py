"""Upload validation, blob storage and extraction enqueueing."""

import uuid
from collections.abc import Callable
from datetime import UTC, datetime

from app.database.connection import get_connection
from app.database.repositories.document_repository import DocumentRepository
from app.database.repositories.job_repository import JobRepository
from app.database.repositories.owner_repository import OwnerRepository
from app.documents.document_types import ALLOWED_MIME_TYPES, get_document_type_info
from app.documents.exceptions import ExtractionInProgressError, UploadValidationError
from app.documents.models import (
    Document,
    DocumentType,
    OcrStatus,
    OwnerKind,
    UploadedFile,
    UploadStatus,
    ValidationStatus,
)
from app.lifecycle.state_machine import Reason, Track
from app.logging.logger import Log
from app.storage.base import BaseBlobStorage, blob_path
from app.storage.exceptions import StorageError


class UploadIntake:
    """Accepts files for a supplier or contact and drives the upload track.

    Validation happens before anything is written. The blob is stored before
    the upload is marked completed, and an extraction job is queued only for
    documents OCR can read.
    """

    def __init__(
        self,
        *,
        doc_repo: DocumentRepository,
        job_repo: JobRepository,
        owner_repo: OwnerRepository,
        storage: BaseBlobStorage,
        max_upload_size_bytes: int,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._doc_repo = doc_repo
        self._job_repo = job_repo
        self._owner_repo = owner_repo
        self._storage = storage
        self._max_upload_size_bytes = max_upload_size_bytes
        self._clock = clock or (lambda: datetime.now(UTC))

    def submit(
        self,
        file: UploadedFile,
        document_type: DocumentType | str,
        owner_id: str,
        uploaded_by: str,
        description: str | None = None,
    ) -> Document:
        """Validate and store a new document.

        Returns:
            The document with ``upload_status`` completed, or failed with
            ``upload_error`` set when storage did not acknowledge the write.

        Raises:
            UploadValidationError: before any row or blob is written.
        """
        doc_type = self._parse_document_type(document_type)
        owner_kind = self._owner_repo.find_owner_kind(owner_id)
        if owner_kind is None:
            raise UploadValidationError(f"Unknown owner {owner_id}")
        self.validate(file, doc_type, owner_kind)

        document = self._doc_repo.create(
            Document(
                id=str(uuid.uuid4()),
                owner_id=owner_id,
                owner_kind=owner_kind,
                document_type=doc_type,
                filename=file.filename,
                file_size_bytes=file.size_bytes,
                mime_type=file.mime_type.lower(),
                uploaded_by=uploaded_by,
                upload_status=UploadStatus.PENDING,
                ocr_status=OcrStatus.PENDING,
                description=description,
            )
        )
        return self._store_and_enqueue(document, file)

    def resubmit(self, document_id: str, file: UploadedFile, uploaded_by: str) -> Document:
        """Replace the file of an existing document and start over.

        Raises:
            UploadValidationError: if the new file is rejected.
            ExtractionInProgressError: if an extraction is queued or running.
            DocumentNotFoundError: if the document does not exist.
        """
        existing = self._doc_repo.find_by_id(document_id)
        self.validate(file, existing.document_type, existing.owner_kind)

        with get_connection() as conn:
            document = self._doc_repo.lock(conn, document_id)
            if document.ocr_status == OcrStatus.PROCESSING or self._job_repo.has_active_job(
                conn, document_id
            ):
                raise ExtractionInProgressError(
                    f"Document {document_id} has an extraction in progress"
                )
            previous_path = document.storage_path
            document = self._doc_repo.transition(
                conn,
                document,
                Track.UPLOAD,
                UploadStatus.PENDING,
                Reason.REUPLOAD,
                filename=file.filename,
                file_size_bytes=file.size_bytes,
                mime_type=file.mime_type.lower(),
                uploaded_by=uploaded_by,
                storage_path=None,
                upload_error=None,
                upload_retryable=False,
                validation_status=ValidationStatus.NOT_REVIEWED,
                validation_notes=None,
                validated_by=None,
                validated_at=None,
            )
            document = self._doc_repo.transition(
                conn,
                document,
                Track.OCR,
                OcrStatus.PENDING,
                Reason.REUPLOAD,
                ocr_result_id=None,
                ocr_error=None,
            )
            conn.commit()

        if previous_path:
            try:
                self._storage.delete(previous_path)
            except StorageError as exc:
                Log.warning(f"Could not delete previous file {previous_path}: {exc}")
        return self._store_and_enqueue(document, file)

    def validate(
        self, file: UploadedFile, document_type: DocumentType, owner_kind: OwnerKind
    ) -> None:
        """Check size, MIME type and document type for *owner_kind*.

        Raises:
            UploadValidationError: on the first violation found.
        """
        if file.size_bytes == 0:
            raise UploadValidationError(f"File '{file.filename}' is empty")
        if file.size_bytes > self._max_upload_size_bytes:
            raise UploadValidationError(
                f"File '{file.filename}' is {file.size_bytes} bytes, "
                f"the limit is {self._max_upload_size_bytes} bytes"
            )
        mime_type = file.mime_type.lower()
        if mime_type not in ALLOWED_MIME_TYPES[owner_kind]:
            raise UploadValidationError(
                f"File type {file.mime_type} is not accepted for a {owner_kind}"
            )
        info = get_document_type_info(document_type)
        if owner_kind not in info.owner_kinds:
            raise UploadValidationError(
                f"Document type {document_type} is not used for a {owner_kind}"
            )

    def _store_and_enqueue(self, document: Document, file: UploadedFile) -> Document:
        with get_connection() as conn:
            document = self._doc_repo.transition(
                conn,
                self._doc_repo.lock(conn, document.id),
                Track.UPLOAD,
                UploadStatus.UPLOADING,
                Reason.UPLOAD_STARTED,
            )
            conn.commit()

        path = blob_path(
            document.owner_id, document.document_type, document.mime_type, self._clock()
        )
        try:
            location = self._storage.put(path, file.content, document.mime_type)
        except StorageError as exc:
            return self._fail_upload(document, str(exc))
        except Exception as exc:
            Log.exception(f"Storage adapter raised while storing document {document.id}")
            return self._fail_upload(document, f"{type(exc).__name__}: {exc}")

        with get_connection() as conn:
            document = self._doc_repo.transition(
                conn,
                self._doc_repo.lock(conn, document.id),
                Track.UPLOAD,
                UploadStatus.COMPLETED,
                Reason.UPLOAD_STORED,
                storage_path=location,
                upload_error=None,
                upload_retryable=False,
            )
            if document.ocr_eligible:
                job_id = self._job_repo.enqueue(conn, document.id)
                Log.info(f"Queued extraction job {job_id} for document {document.id}")
            else:
                Log.info(
                    f"Document {document.id} ({document.document_type}, {document.mime_type}) "
                    "is not OCR-eligible, no extraction queued"
                )
            conn.commit()
        return document

    def _fail_upload(self, document: Document, error: str) -> Document:
        with get_connection() as conn:
            document = self._doc_repo.transition(
                conn,
                self._doc_repo.lock(conn, document.id),
                Track.UPLOAD,
                UploadStatus.FAILED,
                Reason.UPLOAD_FAILED,
                upload_error=error,
                upload_retryable=True,
            )
            conn.commit()
        Log.error(f"Upload of document {document.id} failed: {error}")
        return document

    @staticmethod
    def _parse_document_type(document_type: DocumentType | str) -> DocumentType:
        try:
            return DocumentType(document_type)
        except ValueError as exc:
            raise UploadValidationError(f"Unknown document type '{document_type}'") from exc
