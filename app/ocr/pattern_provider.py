"""Offline OCR provider that reads identifiers from a document's text layer.

It cannot read images or scanned PDFs; it is meant for digitally issued
certificates and statements, and as a deterministic provider for tests.
"""

import re

from app.documents.document_types import get_document_type_info
from app.documents.models import DocumentType
from app.extraction import romanian
from app.logging.logger import Log
from app.ocr.base import BaseOcrProvider
from app.ocr.exceptions import ProviderError, UnsupportedContentError
from app.ocr.models import ProviderRawOutput
from app.pdf.base import BasePdfExtractor
from app.pdf.exceptions import PdfExtractionError

VALIDATED_CONFIDENCE = 95.0
UNVALIDATED_CONFIDENCE = 60.0
TEXT_CONFIDENCE = 75.0

_CUI_RE = re.compile(
    r"(?:\bCUI|\bCIF|\bcod\s+fiscal|\bcod\s+unic\s+de\s+[iî]nregistrare)"
    r"\W{0,3}((?:RO)?\s?\d{2,10})\b",
    re.IGNORECASE,
)
_VAT_RE = re.compile(r"\bTVA\b\W{0,3}(RO\s?\d{2,10})\b", re.IGNORECASE)
_TRADE_REGISTER_RE = re.compile(r"\b([JFC])\s?(\d{1,2})\s?/\s?(\d{1,7})\s?/\s?(\d{4})\b")
_IBAN_RE = re.compile(r"\bRO\d{2}(?:\s?[A-Z0-9]{4}){5}\b")
_LABELLED_NAME_RE = re.compile(
    r"(?:denumire(?:a)?(?:\s+firm(?:a|ă|ei))?|firma)\s*:\s*(.+)", re.IGNORECASE
)
_ADDRESS_RE = re.compile(r"(?:sediu(?:\s+social)?|adres(?:a|ă))\s*:\s*(.+)", re.IGNORECASE)
_HOLDER_RE = re.compile(r"titular(?:\s+cont)?\s*:\s*(.+)", re.IGNORECASE)
_BANK_RE = re.compile(r"\bbanca\s*:\s*(.+)", re.IGNORECASE)


class PatternOcrProvider(BaseOcrProvider):
    """Regex extraction of CUI, ONRC number, IBAN, business name and address."""

    name = "pattern"

    def __init__(self, pdf_extractor: BasePdfExtractor) -> None:
        self._pdf_extractor = pdf_extractor

    def recognize(
        self,
        file_bytes: bytes,
        *,
        mime_type: str,
        document_type: DocumentType,
        timeout_seconds: float,
    ) -> ProviderRawOutput:
        _ = timeout_seconds
        text = romanian.fix_diacritics(self._read_text(file_bytes, mime_type.lower()))
        if not text:
            raise ProviderError("Document has no text layer to read")

        found = self._find_all(text)
        expected = get_document_type_info(document_type).expected_fields
        fields = {name: value for name, (value, _) in found.items() if name in expected}
        confidences = {name: found[name][1] for name in fields}
        Log.info(f"Pattern provider matched {len(fields)} fields for {document_type}")
        return ProviderRawOutput(raw_text=text, fields=fields, confidences=confidences)

    def _read_text(self, file_bytes: bytes, mime_type: str) -> str:
        if mime_type == "text/plain":
            return file_bytes.decode("utf-8", errors="replace").strip()
        if mime_type == "application/pdf":
            try:
                return self._pdf_extractor.extract(file_bytes)
            except PdfExtractionError as exc:
                raise ProviderError(f"Could not read PDF: {exc}") from exc
        raise UnsupportedContentError(f"Pattern provider cannot read {mime_type}")

    @staticmethod
    def _find_all(text: str) -> dict[str, tuple[str, float]]:
        found: dict[str, tuple[str, float]] = {}

        cui = _CUI_RE.search(text)
        if cui:
            value = romanian.normalize_cui(cui.group(1))
            found["cui"] = (value, _validated(romanian.is_valid_cui(value)))

        vat = _VAT_RE.search(text)
        if vat:
            value = romanian.normalize_cui(vat.group(1))
            found["vat_number"] = (value, _validated(romanian.is_valid_cui(value)))

        trade_register = _TRADE_REGISTER_RE.search(text)
        if trade_register:
            prefix, county, number, year = trade_register.groups()
            value = f"{prefix}{county}/{number}/{year}"
            found["trade_register_number"] = (
                value,
                _validated(romanian.is_valid_trade_register_number(value)),
            )

        iban = _IBAN_RE.search(text.upper())
        if iban:
            value = romanian.normalize_iban(iban.group(0))
            found["iban"] = (value, _validated(romanian.is_valid_iban(value)))

        business_name = _business_name(text)
        if business_name:
            found["business_name"] = (business_name, TEXT_CONFIDENCE)
            legal_form = romanian.legal_form_of(business_name)
            if legal_form:
                found["business_type"] = (legal_form, TEXT_CONFIDENCE)

        for name, pattern in (
            ("address", _ADDRESS_RE),
            ("account_holder", _HOLDER_RE),
            ("bank_name", _BANK_RE),
        ):
            match = pattern.search(text)
            if match and match.group(1).strip():
                found[name] = (match.group(1).strip(), TEXT_CONFIDENCE)
        return found


def _validated(valid: bool) -> float:
    return VALIDATED_CONFIDENCE if valid else UNVALIDATED_CONFIDENCE


def _business_name(text: str) -> str | None:
    labelled = _LABELLED_NAME_RE.search(text)
    if labelled and labelled.group(1).strip():
        return labelled.group(1).strip()
    for line in text.splitlines():
        candidate = line.strip()
        if candidate and romanian.legal_form_of(candidate) and ":" not in candidate:
            return candidate
    return None
