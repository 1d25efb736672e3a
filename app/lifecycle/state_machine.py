"""Upload and OCR status tracks of a document.

The two tracks are independent. Terminal states (``completed``, ``failed``)
never block further work: an OCR failure is recovered by reprocessing and an
upload failure by a new upload of the same document.
"""

from enum import StrEnum

from app.documents.exceptions import InvalidTransitionError
from app.documents.models import OcrStatus, UploadStatus


class Track(StrEnum):
    UPLOAD = "upload"
    OCR = "ocr"


class Reason(StrEnum):
    """Why a transition happened; persisted with every audit event."""

    CREATED = "created"
    UPLOAD_STARTED = "upload_started"
    UPLOAD_STORED = "upload_stored"
    UPLOAD_FAILED = "upload_failed"
    REUPLOAD = "reupload"
    EXTRACTION_STARTED = "extraction_started"
    EXTRACTION_COMPLETED = "extraction_completed"
    EXTRACTION_FAILED = "extraction_failed"
    REPROCESS = "reprocess"
    STALE_JOB_RELEASED = "stale_job_released"


_UPLOAD_TRANSITIONS: dict[tuple[str, str], frozenset[Reason]] = {
    (UploadStatus.PENDING, UploadStatus.UPLOADING): frozenset({Reason.UPLOAD_STARTED}),
    (UploadStatus.UPLOADING, UploadStatus.COMPLETED): frozenset({Reason.UPLOAD_STORED}),
    (UploadStatus.UPLOADING, UploadStatus.FAILED): frozenset({Reason.UPLOAD_FAILED}),
    (UploadStatus.COMPLETED, UploadStatus.PENDING): frozenset({Reason.REUPLOAD}),
    (UploadStatus.FAILED, UploadStatus.PENDING): frozenset({Reason.REUPLOAD}),
}

_OCR_TRANSITIONS: dict[tuple[str, str], frozenset[Reason]] = {
    (OcrStatus.PENDING, OcrStatus.PROCESSING): frozenset({Reason.EXTRACTION_STARTED}),
    (OcrStatus.PROCESSING, OcrStatus.COMPLETED): frozenset({Reason.EXTRACTION_COMPLETED}),
    (OcrStatus.PROCESSING, OcrStatus.FAILED): frozenset(
        {Reason.EXTRACTION_FAILED, Reason.STALE_JOB_RELEASED}
    ),
    (OcrStatus.COMPLETED, OcrStatus.PROCESSING): frozenset({Reason.REPROCESS}),
    (OcrStatus.FAILED, OcrStatus.PROCESSING): frozenset({Reason.REPROCESS}),
    (OcrStatus.COMPLETED, OcrStatus.PENDING): frozenset({Reason.REUPLOAD}),
    (OcrStatus.FAILED, OcrStatus.PENDING): frozenset({Reason.REUPLOAD}),
    (OcrStatus.PENDING, OcrStatus.PENDING): frozenset({Reason.REUPLOAD}),
}

_TRANSITIONS = {Track.UPLOAD: _UPLOAD_TRANSITIONS, Track.OCR: _OCR_TRANSITIONS}


def can_transition(track: Track, current: str, target: str, reason: Reason) -> bool:
    allowed = _TRANSITIONS[track].get((str(current), str(target)))
    return allowed is not None and reason in allowed


def ensure_transition(track: Track, current: str, target: str, reason: Reason) -> None:
    """Raise unless *current* → *target* is a legal move on *track* for *reason*.

    Raises:
        InvalidTransitionError: if the transition is not in the table.
    """
    if not can_transition(track, current, target, reason):
        raise InvalidTransitionError(
            f"Illegal {track} transition {current} -> {target} ({reason})"
        )


def ocr_may_start(upload_status: str) -> bool:
    """The OCR track may leave ``pending`` only once the upload has completed."""
    return str(upload_status) == UploadStatus.COMPLETED


def reprocess_sources() -> tuple[OcrStatus, ...]:
    return tuple(
        OcrStatus(src)
        for (src, dst), reasons in _OCR_TRANSITIONS.items()
        if dst == OcrStatus.PROCESSING and Reason.REPROCESS in reasons
    )
