import pymupdf

from app.pdf.base import BasePdfExtractor
from app.pdf.exceptions import PdfExtractionError


class PyMuPdfAdapter(BasePdfExtractor):
    """Reads PDFs using PyMuPDF."""

    def extract(self, pdf_bytes: bytes) -> str:
        try:
            with pymupdf.open(stream=pdf_bytes, filetype="pdf") as doc:  # type: ignore[no-untyped-call]
                pages = [page.get_text() for page in doc]
            return "\n".join(pages).strip()
        except Exception as exc:
            raise PdfExtractionError(f"pymupdf extraction failed: {exc}") from exc

    def render_pages(self, pdf_bytes: bytes, *, dpi: int, max_pages: int) -> list[bytes]:
        try:
            with pymupdf.open(stream=pdf_bytes, filetype="pdf") as doc:  # type: ignore[no-untyped-call]
                return [
                    doc[index].get_pixmap(dpi=dpi).tobytes("png")
                    for index in range(min(max_pages, doc.page_count))
                ]
        except Exception as exc:
            raise PdfExtractionError(f"pymupdf rendering failed: {exc}") from exc
