class DocumentError(Exception):
    """Base exception for document intake and lifecycle errors."""


class ValidationError(DocumentError):
    """Raised for bad caller input, before any state is changed."""


class UploadValidationError(ValidationError):
    """Raised when an uploaded file is rejected (size, MIME type, document type, owner)."""


class DocumentNotFoundError(DocumentError):
    """Raised when a document cannot be found in the database."""


class ExtractionInProgressError(DocumentError):
    """Raised when a document already has an extraction pending or processing."""


class NotEligibleForOcrError(ValidationError):
    """Raised when reprocessing is requested for a document OCR cannot read."""


class InvalidTransitionError(DocumentError):
    """Raised when a status change is not allowed by the lifecycle state machine."""


class OwnerNotFoundError(ValidationError):
    """Raised when an owner id matches neither a supplier nor a contact."""


class FileNotAvailableError(DocumentError):
    """Raised when a document has no stored file to read."""
