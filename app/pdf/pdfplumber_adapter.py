import io

import pdfplumber

from app.pdf.base import BasePdfExtractor
from app.pdf.exceptions import PdfExtractionError


class PdfPlumberAdapter(BasePdfExtractor):
    """Reads PDFs using pdfplumber."""

    def extract(self, pdf_bytes: bytes) -> str:
        try:
            with pdfplumber.open(io.BytesIO(pdf_bytes)) as pdf:
                pages = [page.extract_text() or "" for page in pdf.pages]
            return "\n".join(pages).strip()
        except Exception as exc:
            raise PdfExtractionError(f"pdfplumber extraction failed: {exc}") from exc

    def render_pages(self, pdf_bytes: bytes, *, dpi: int, max_pages: int) -> list[bytes]:
        images: list[bytes] = []
        try:
            with pdfplumber.open(io.BytesIO(pdf_bytes)) as pdf:
                for page in pdf.pages[:max_pages]:
                    buffer = io.BytesIO()
                    page.to_image(resolution=dpi).original.save(buffer, format="PNG")
                    images.append(buffer.getvalue())
        except Exception as exc:
            raise PdfExtractionError(f"pdfplumber rendering failed: {exc}") from exc
        return images
