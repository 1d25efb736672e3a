import pytest

from app.documents.models import DocumentType
from app.ocr.exceptions import ProviderError, UnsupportedContentError
from app.ocr.pattern_provider import (
    TEXT_CONFIDENCE,
    UNVALIDATED_CONFIDENCE,
    VALIDATED_CONFIDENCE,
    PatternOcrProvider,
)
from app.pdf.pdfplumber_adapter import PdfPlumberAdapter


@pytest.fixture()
def provider() -> PatternOcrProvider:
    return PatternOcrProvider(PdfPlumberAdapter())


def _recognize(
    provider: PatternOcrProvider,
    data: bytes,
    mime_type: str,
    document_type: DocumentType,
):
    return provider.recognize(
        data, mime_type=mime_type, document_type=document_type, timeout_seconds=5
    )


class TestPatternOcrProvider:
    def test_reads_onrc_certificate(
        self, provider: PatternOcrProvider, onrc_pdf_bytes: bytes
    ) -> None:
        output = _recognize(
            provider, onrc_pdf_bytes, "application/pdf", DocumentType.ONRC_CERTIFICATE
        )
        assert output.fields == {
            "cui": "18547290",
            "trade_register_number": "J40/1234/2020",
            "business_name": "AGRO EXEMPLU SRL",
            "business_type": "SRL",
            "address": "Str. Morii nr. 10, Bucuresti",
        }
        assert output.confidences["cui"] == VALIDATED_CONFIDENCE
        assert output.confidences["trade_register_number"] == VALIDATED_CONFIDENCE
        assert output.confidences["address"] == TEXT_CONFIDENCE
        assert "CERTIFICAT DE INREGISTRARE" in output.raw_text

    def test_reads_bank_statement(
        self, provider: PatternOcrProvider, bank_statement_pdf_bytes: bytes
    ) -> None:
        output = _recognize(
            provider, bank_statement_pdf_bytes, "application/pdf", DocumentType.BANK_STATEMENT
        )
        assert output.fields == {
            "iban": "RO49AAAA1B31007593840000",
            "account_holder": "AGRO EXEMPLU SRL",
            "bank_name": "Banca Exemplu",
        }
        assert output.confidences["iban"] == VALIDATED_CONFIDENCE

    def test_keeps_only_fields_of_the_document_type(
        self, provider: PatternOcrProvider, onrc_pdf_bytes: bytes
    ) -> None:
        output = _recognize(
            provider, onrc_pdf_bytes, "application/pdf", DocumentType.FISCAL_CERTIFICATE
        )
        assert set(output.fields) == {"cui", "business_name"}

    def test_invalid_identifier_gets_lower_confidence(self, provider: PatternOcrProvider) -> None:
        text = "Certificat de atestare fiscala\nCIF: 18547291\n"
        output = _recognize(
            provider, text.encode(), "text/plain", DocumentType.FISCAL_CERTIFICATE
        )
        assert output.fields == {"cui": "18547291"}
        assert output.confidences["cui"] == UNVALIDATED_CONFIDENCE

    def test_reads_vat_number(self, provider: PatternOcrProvider) -> None:
        text = "Cod de inregistrare in scopuri de TVA: RO 14399840"
        output = _recognize(provider, text.encode(), "text/plain", DocumentType.VAT_CERTIFICATE)
        assert output.fields["vat_number"] == "RO14399840"
        assert output.confidences["vat_number"] == VALIDATED_CONFIDENCE

    def test_unlabelled_business_name_from_legal_form(self, provider: PatternOcrProvider) -> None:
        text = "CEREALE SUD SA\nCUI 14399840"
        output = _recognize(provider, text.encode(), "text/plain", DocumentType.ONRC_CERTIFICATE)
        assert output.fields["business_name"] == "CEREALE SUD SA"
        assert output.fields["business_type"] == "SA"

    def test_rejects_images(self, provider: PatternOcrProvider) -> None:
        with pytest.raises(UnsupportedContentError):
            _recognize(provider, b"\x89PNG", "image/png", DocumentType.ONRC_CERTIFICATE)

    def test_scanned_pdf_without_text_raises(
        self, provider: PatternOcrProvider, empty_pdf_bytes: bytes
    ) -> None:
        with pytest.raises(ProviderError, match="no text layer"):
            _recognize(provider, empty_pdf_bytes, "application/pdf", DocumentType.ONRC_CERTIFICATE)
