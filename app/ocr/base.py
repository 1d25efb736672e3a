from abc import ABC, abstractmethod

from app.documents.models import DocumentType
from app.ocr.models import ProviderRawOutput


class BaseOcrProvider(ABC):
    """Contract for all OCR provider adapters."""

    name: str = ""

    @abstractmethod
    def recognize(
        self,
        file_bytes: bytes,
        *,
        mime_type: str,
        document_type: DocumentType,
        timeout_seconds: float,
    ) -> ProviderRawOutput:
        """Read a stored document and return the provider's raw fields.

        Args:
            file_bytes: Content of the stored blob.
            mime_type: MIME type recorded at upload.
            document_type: Tells the provider which fields to look for.
            timeout_seconds: Upper bound for the provider call.

        Returns:
            ProviderRawOutput with raw text, fields and confidences as the
            provider reported them.

        Raises:
            ProviderError: on any failure; never returns a partial result.
        """
