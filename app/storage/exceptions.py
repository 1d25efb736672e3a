class StorageError(Exception):
    """Raised when a blob cannot be written, read or deleted."""


class BlobNotFoundError(StorageError):
    """Raised when no blob exists at the requested location."""


class BlobExistsError(StorageError):
    """Raised when no free name is left for a new blob."""
