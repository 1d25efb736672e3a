from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from app.documents.document_types import get_document_type_info
from app.documents.models import DocumentType

HIGH_CONFIDENCE_THRESHOLD = 90.0
MEDIUM_CONFIDENCE_THRESHOLD = 70.0


class ConfidenceLevel(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


def classify_confidence(score: float) -> ConfidenceLevel:
    """Map a 0-100 score onto the review-queue confidence bands."""
    if score >= HIGH_CONFIDENCE_THRESHOLD:
        return ConfidenceLevel.HIGH
    if score >= MEDIUM_CONFIDENCE_THRESHOLD:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


def mean_confidence(field_confidences: dict[str, float]) -> float:
    if not field_confidences:
        return 0.0
    return sum(field_confidences.values()) / len(field_confidences)


@dataclass(frozen=True)
class ExtractionIssue:
    """A hard extraction error; any issue routes the document to review."""

    code: str
    message: str
    field: str | None = None


@dataclass(frozen=True)
class ExtractionResult:
    """Normalized OCR output for exactly one document.

    ``overall_confidence``, ``confidence_level`` and ``requires_review`` are
    derived from the populated fields and errors and cannot be set directly.
    """

    id: str
    document_id: str
    document_type: DocumentType
    provider: str
    raw_text: str = ""
    fields: dict[str, object] = field(default_factory=dict)
    field_confidences: dict[str, float] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    errors: list[ExtractionIssue] = field(default_factory=list)
    processing_ms: int = 0
    processed_at: datetime | None = None
    model_version: str | None = None

    def __post_init__(self) -> None:
        if set(self.fields) != set(self.field_confidences):
            raise ValueError(
                "field_confidences must cover exactly the populated fields: "
                f"{sorted(self.fields)} != {sorted(self.field_confidences)}"
            )

    @property
    def overall_confidence(self) -> float:
        return mean_confidence(self.field_confidences)

    @property
    def confidence_level(self) -> ConfidenceLevel:
        return classify_confidence(self.overall_confidence)

    @property
    def missing_required_fields(self) -> list[str]:
        required = get_document_type_info(self.document_type).required_fields
        return [name for name in required if name not in self.fields]

    @property
    def requires_review(self) -> bool:
        return (
            self.confidence_level != ConfidenceLevel.HIGH
            or bool(self.errors)
            or bool(self.missing_required_fields)
        )
