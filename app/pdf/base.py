from abc import ABC, abstractmethod


class BasePdfExtractor(ABC):
    """Contract for all PDF adapters."""

    @abstractmethod
    def extract(self, pdf_bytes: bytes) -> str:
        """Extract the text layer from PDF bytes.

        Returns:
            Extracted text as a single string; empty for scanned PDFs.

        Raises:
            PdfExtractionError: if the PDF cannot be opened or read.
        """

    @abstractmethod
    def render_pages(self, pdf_bytes: bytes, *, dpi: int, max_pages: int) -> list[bytes]:
        """Render the first *max_pages* pages as PNG images.

        Raises:
            PdfExtractionError: if rendering fails.
        """
