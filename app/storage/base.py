import posixpath
from abc import ABC, abstractmethod
from collections.abc import Iterator
from datetime import datetime

from app.documents.document_types import FILE_EXTENSIONS
from app.documents.models import DocumentType

MAX_NAME_ATTEMPTS = 20


def blob_path(
    owner_id: str,
    document_type: DocumentType,
    mime_type: str,
    uploaded_at: datetime,
) -> str:
    """Build the storage key ``{owner_id}/{document_type}/{timestamp_ms}.{ext}``."""
    extension = FILE_EXTENSIONS.get(mime_type.lower(), "bin")
    timestamp_ms = int(uploaded_at.timestamp() * 1000)
    return f"{owner_id}/{document_type}/{timestamp_ms}.{extension}"


def candidate_paths(path: str, attempts: int = MAX_NAME_ATTEMPTS) -> Iterator[str]:
    """Yield *path*, then ``{stem}-1.{ext}``, ``{stem}-2.{ext}`` and so on."""
    stem, extension = posixpath.splitext(path)
    yield path
    for suffix in range(1, attempts):
        yield f"{stem}-{suffix}{extension}"


class BaseBlobStorage(ABC):
    """Contract for all blob storage adapters."""

    @abstractmethod
    def put(self, path: str, data: bytes, content_type: str) -> str:
        """Store *data* under *path* without replacing an existing blob.

        When *path* is taken the adapter stores under the next free name from
        ``candidate_paths``.

        Returns:
            The location to persist on the document; pass it back to ``get``
            and ``delete``.

        Raises:
            BlobExistsError: if every candidate name is taken.
            StorageError: if the backend did not acknowledge the write.
        """

    @abstractmethod
    def get(self, location: str) -> bytes:
        """Return the bytes stored at *location*.

        Raises:
            BlobNotFoundError: if nothing is stored there.
            StorageError: on any other failure.
        """

    @abstractmethod
    def delete(self, location: str) -> None:
        """Remove the blob at *location*; a missing blob is not an error.

        Raises:
            StorageError: if the backend refused the delete.
        """
