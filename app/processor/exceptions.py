class ProcessorError(Exception):
    """Base exception for extraction pipeline errors."""


class DocumentNotReadyError(ProcessorError):
    """Raised when a claimed document has no completed upload to read."""


class JobNoLongerActiveError(ProcessorError):
    """Raised when a job finishes after it was released; its output is discarded."""
