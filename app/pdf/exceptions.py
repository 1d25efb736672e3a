class PdfExtractionError(Exception):
    """Raised when text or page images cannot be read from a PDF."""
