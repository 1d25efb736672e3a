from dataclasses import dataclass
from datetime import datetime


@dataclass
class JobRecord:
    """Represents a row from the ocr_jobs table."""

    id: int
    document_id: str
    status: str
    error_message: str | None = None
    locked_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class StatusEventRecord:
    """Represents a row from the document_status_events table."""

    document_id: str
    track: str
    from_status: str | None
    to_status: str
    reason: str
    created_at: datetime | None = None
