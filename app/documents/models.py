from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from app.extraction.models import ExtractionResult


class OwnerKind(StrEnum):
    SUPPLIER = "supplier"
    CONTACT = "contact"


class DocumentType(StrEnum):
    ONRC_CERTIFICATE = "onrc_certificate"
    FARMER_ID_CARD = "farmer_id_card"
    APIA_CERTIFICATE = "apia_certificate"
    BANK_STATEMENT = "bank_statement"
    IDENTITY_CARD = "identity_card"
    FISCAL_CERTIFICATE = "fiscal_certificate"
    VAT_CERTIFICATE = "vat_certificate"
    OTHER = "other"


class UploadStatus(StrEnum):
    PENDING = "pending"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"


class OcrStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ValidationStatus(StrEnum):
    """Set by back-office reviewers; the pipeline only stores it."""

    NOT_REVIEWED = "not_reviewed"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"
    INVALID = "invalid"


REVIEW_QUEUE_STATUSES: frozenset[ValidationStatus] = frozenset(
    {ValidationStatus.NOT_REVIEWED, ValidationStatus.UNDER_REVIEW}
)


@dataclass(frozen=True)
class UploadedFile:
    """A file as received from the caller, before it is stored."""

    filename: str
    content: bytes
    mime_type: str

    @property
    def size_bytes(self) -> int:
        return len(self.content)


@dataclass(frozen=True)
class Document:
    """Domain model for a row of the documents table."""

    id: str
    owner_id: str
    owner_kind: OwnerKind
    document_type: DocumentType
    filename: str
    file_size_bytes: int
    mime_type: str
    uploaded_by: str
    upload_status: UploadStatus
    ocr_status: OcrStatus
    validation_status: ValidationStatus = ValidationStatus.NOT_REVIEWED
    storage_path: str | None = None
    description: str | None = None
    upload_error: str | None = None
    upload_retryable: bool = False
    ocr_error: str | None = None
    ocr_result_id: str | None = None
    validation_notes: str | None = None
    validated_by: str | None = None
    validated_at: datetime | None = None
    uploaded_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_required(self) -> bool:
        from app.documents.document_types import get_document_type_info

        return get_document_type_info(self.document_type).is_mandatory_for(self.owner_kind)

    @property
    def ocr_eligible(self) -> bool:
        from app.documents.document_types import is_ocr_eligible

        return is_ocr_eligible(self.document_type, self.mime_type)


@dataclass(frozen=True)
class ValidationDecision:
    """One reviewer verdict in a batch."""

    document_id: str
    status: ValidationStatus | str
    reviewer: str
    notes: str | None = None


@dataclass(frozen=True)
class DocumentStats:
    """Back-office counters over all documents."""

    total: int
    by_validation_status: dict[ValidationStatus, int]
    by_type: dict[DocumentType, int]
    pending_review: int
    ocr_processing: int


@dataclass(frozen=True)
class DocumentView:
    """A document together with its current extraction result, if any."""

    document: Document
    extraction: "ExtractionResult | None" = None

    @property
    def requires_review(self) -> bool:
        return self.extraction is not None and self.extraction.requires_review
