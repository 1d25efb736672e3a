import io

import pytest
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas


def _pdf(*pages: list[str]) -> bytes:
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    for lines in pages:
        y = 780
        for line in lines:
            c.drawString(72, y, line)
            y -= 20
        c.showPage()
    c.save()
    return buf.getvalue()


@pytest.fixture()
def onrc_pdf_bytes() -> bytes:
    """A digitally issued ONRC registration certificate with a text layer."""
    return _pdf(
        [
            "OFICIUL NATIONAL AL REGISTRULUI COMERTULUI",
            "CERTIFICAT DE INREGISTRARE",
            "Firma: AGRO EXEMPLU SRL",
            "Cod unic de inregistrare: 18547290",
            "Nr. de ordine in Registrul Comertului: J40/1234/2020",
            "Sediu social: Str. Morii nr. 10, Bucuresti",
        ]
    )


@pytest.fixture()
def bank_statement_pdf_bytes() -> bytes:
    return _pdf(
        [
            "EXTRAS DE CONT",
            "Titular cont: AGRO EXEMPLU SRL",
            "IBAN: RO49 AAAA 1B31 0075 9384 0000",
            "Banca: Banca Exemplu",
        ]
    )


@pytest.fixture()
def multi_page_pdf_bytes() -> bytes:
    """Generate a two-page PDF with known text on each page."""
    return _pdf(["Page one content"], ["Page two content"])


@pytest.fixture()
def empty_pdf_bytes() -> bytes:
    """Generate a valid PDF with no text content (blank page)."""
    return _pdf([])
