"""Maps provider output onto the canonical fields of a document type."""

import math
import re
import unicodedata
import uuid
from collections.abc import Callable
from datetime import UTC, datetime

from app.documents.document_types import get_document_type_info
from app.documents.models import DocumentType
from app.extraction import romanian
from app.extraction.models import ExtractionIssue, ExtractionResult
from app.logging.logger import Log
from app.ocr.models import ProviderRawOutput

MIN_CONFIDENCE = 0.0
MAX_CONFIDENCE = 100.0

_CANONICAL_ALIASES: dict[str, tuple[str, ...]] = {
    "business_name": (
        "company_name",
        "name_of_company",
        "denumire",
        "denumire_firma",
        "denumirea_firmei",
        "nume_firma",
        "firma",
        "societate",
    ),
    "cui": (
        "cif",
        "tax_id",
        "fiscal_code",
        "cod_fiscal",
        "cod_unic_de_inregistrare",
        "cod_unic_inregistrare",
    ),
    "trade_register_number": (
        "registration_number",
        "trade_register",
        "onrc_number",
        "nr_reg_com",
        "nr_registrul_comertului",
        "numar_de_ordine_in_registrul_comertului",
        "numar_registrul_comertului",
    ),
    "address": ("adresa", "sediu", "sediu_social", "registered_address", "domiciliu"),
    "business_type": ("legal_form", "company_type", "forma_juridica", "forma_de_organizare"),
    "farmer_name": ("nume_fermier", "numele_fermierului"),
    "farmer_id": ("farmer_number", "id_fermier", "cod_fermier"),
    "farm_location": ("localitate_ferma", "amplasare_ferma", "locatie_ferma"),
    "farm_size": ("farm_area", "suprafata_ferma", "marime_ferma"),
    "apia_id": ("apia_code", "apia_number", "cod_apia", "id_apia"),
    "land_area": ("suprafata", "suprafata_teren", "suprafata_totala", "total_area"),
    "crop_types": ("crops", "culturi", "tipuri_culturi"),
    "iban": ("cont_iban", "iban_code"),
    "account_holder": ("titular", "titular_cont", "holder_name"),
    "bank_name": ("bank", "banca", "denumire_banca"),
    "account_number": ("numar_cont", "nr_cont", "cont"),
    "id_number": ("serie_si_numar", "seria_si_numarul", "cnp", "document_number"),
    "first_name": ("prenume", "given_name"),
    "last_name": ("nume", "surname", "family_name"),
    "birth_date": ("date_of_birth", "data_nasterii", "dob"),
    "fiscal_status": ("stare_fiscala", "status_fiscal"),
    "issue_date": ("data_emiterii", "date_of_issue", "issued_on"),
    "vat_number": ("vat_id", "vat_code", "cod_tva", "cod_de_inregistrare_in_scopuri_de_tva"),
    "registration_date": ("data_inregistrarii", "registered_on"),
}

_NUMERIC_FIELDS = frozenset({"farm_size", "land_area"})
_LIST_FIELDS = frozenset({"crop_types"})

_NUMBER_RE = re.compile(r"-?\d+(?:[.,]\d+)?")


def canonical_key(name: str) -> str:
    """Fold a provider field name to ``snake_case`` ASCII.

    ``"companyName"``, ``"company-name"`` and ``"Company Name"`` all fold to
    ``"company_name"``; Romanian diacritics are dropped.
    """
    decomposed = unicodedata.normalize("NFKD", name)
    ascii_name = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    snake = re.sub(r"(?<=[a-z0-9])(?=[A-Z])", "_", ascii_name)
    return re.sub(r"[^a-z0-9]+", "_", snake.lower()).strip("_")


def _build_alias_index() -> dict[str, str]:
    index: dict[str, str] = {}
    for canonical, aliases in _CANONICAL_ALIASES.items():
        index[canonical] = canonical
        for alias in aliases:
            index[canonical_key(alias)] = canonical
    return index


_ALIAS_INDEX = _build_alias_index()


def resolve_field_name(name: str) -> str | None:
    """Return the canonical field for a provider field name, or ``None``."""
    return _ALIAS_INDEX.get(canonical_key(name))


class FieldNormalizer:
    """Turns a ``ProviderRawOutput`` into a canonical ``ExtractionResult``.

    Normalization never raises on content: unknown or misplaced fields and odd
    confidences become warnings, failed Romanian format checks become error
    issues. Both are stored on the result for the reviewer.
    """

    def __init__(self, *, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or (lambda: datetime.now(UTC))

    def normalize(
        self,
        raw: ProviderRawOutput,
        document_type: DocumentType,
        *,
        document_id: str,
        provider: str,
        processing_ms: int = 0,
    ) -> ExtractionResult:
        info = get_document_type_info(document_type)
        warnings: list[str] = list(raw.warnings)
        errors: list[ExtractionIssue] = []

        confidences = self._canonical_confidences(raw.confidences)
        fields: dict[str, object] = {}
        field_confidences: dict[str, float] = {}

        for raw_name, raw_value in raw.fields.items():
            canonical = resolve_field_name(raw_name)
            if canonical is None:
                warnings.append(f"Ignored unrecognized field '{raw_name}'")
                continue
            if canonical not in info.expected_fields:
                warnings.append(
                    f"Ignored field '{canonical}' not carried by {info.code}"
                )
                continue
            if canonical in fields:
                warnings.append(f"Duplicate value for '{canonical}' from '{raw_name}' ignored")
                continue
            value = self._clean_value(canonical, raw_value, warnings)
            if value is None:
                continue
            fields[canonical] = value
            field_confidences[canonical] = self._score(
                canonical, confidences.get(canonical), warnings
            )

        for name in info.expected_fields:
            if name in fields:
                continue
            if name in info.required_fields:
                warnings.append(f"Required field '{name}' was not extracted")
            else:
                warnings.append(f"Expected field '{name}' was not extracted")

        if not fields:
            warnings.append("No fields were extracted")

        errors.extend(self._check_formats(fields))

        result = ExtractionResult(
            id=str(uuid.uuid4()),
            document_id=document_id,
            document_type=info.code,
            provider=provider,
            raw_text=raw.raw_text,
            fields=fields,
            field_confidences=field_confidences,
            warnings=warnings,
            errors=errors,
            processing_ms=processing_ms,
            processed_at=self._clock(),
            model_version=raw.model_version,
        )
        Log.info(
            f"Normalized {len(fields)} fields for document {document_id}: "
            f"overall={result.overall_confidence:.2f} level={result.confidence_level} "
            f"warnings={len(warnings)} errors={len(errors)}"
        )
        return result

    @staticmethod
    def _canonical_confidences(raw: dict[str, object]) -> dict[str, object]:
        resolved: dict[str, object] = {}
        for name, score in raw.items():
            canonical = resolve_field_name(name)
            if canonical is not None and canonical not in resolved:
                resolved[canonical] = score
        return resolved

    @staticmethod
    def _score(name: str, raw_score: object, warnings: list[str]) -> float:
        if raw_score is None:
            warnings.append(f"No confidence reported for '{name}', scored 0")
            return MIN_CONFIDENCE
        try:
            if isinstance(raw_score, bool):
                raise TypeError("boolean confidence")
            score = float(raw_score)  # type: ignore[arg-type]
        except (TypeError, ValueError, OverflowError):
            warnings.append(f"Unreadable confidence {raw_score!r} for '{name}', scored 0")
            return MIN_CONFIDENCE
        if math.isnan(score):
            warnings.append(f"Unreadable confidence for '{name}', scored 0")
            return MIN_CONFIDENCE
        clamped = max(MIN_CONFIDENCE, min(MAX_CONFIDENCE, score))
        if clamped != score:
            warnings.append(f"Confidence {score:g} for '{name}' clamped to {clamped:g}")
        return clamped

    def _clean_value(self, name: str, value: object, warnings: list[str]) -> object | None:
        if value is None:
            return None
        if name in _LIST_FIELDS:
            return self._clean_list(value)
        if name in _NUMERIC_FIELDS:
            return self._clean_number(name, value, warnings)
        if isinstance(value, (list, dict)):
            warnings.append(f"Ignored non-text value for '{name}'")
            return None

        text = romanian.fix_diacritics(" ".join(str(value).split()))
        if not text:
            return None
        if name in ("cui", "vat_number"):
            return romanian.normalize_cui(text)
        if name == "iban":
            return romanian.normalize_iban(text)
        if name == "trade_register_number":
            return romanian.normalize_trade_register_number(text)
        if name == "business_type":
            return text.upper().replace(".", "").replace(" ", "")
        return text

    @staticmethod
    def _clean_number(name: str, value: object, warnings: list[str]) -> object | None:
        if isinstance(value, bool):
            warnings.append(f"Ignored boolean value for '{name}'")
            return None
        if isinstance(value, (int, float)):
            try:
                number = float(value)
            except OverflowError:
                number = math.inf
        else:
            text = " ".join(str(value).split())
            if not text:
                return None
            match = _NUMBER_RE.search(text)
            if match is None:
                warnings.append(
                    f"Could not read a number from '{text}' for '{name}', kept as text"
                )
                return text
            number = float(match.group(0).replace(",", "."))
        if not math.isfinite(number):
            warnings.append(f"Ignored non-finite number for '{name}'")
            return None
        return number

    @staticmethod
    def _clean_list(value: object) -> list[str] | None:
        if isinstance(value, str):
            items = re.split(r"[,;/\n]", value)
        elif isinstance(value, (list, tuple)):
            items = [str(item) for item in value if item is not None]
        else:
            items = [str(value)]
        cleaned = [romanian.fix_diacritics(" ".join(item.split())) for item in items]
        cleaned = [item for item in cleaned if item]
        return cleaned or None

    @staticmethod
    def _check_formats(fields: dict[str, object]) -> list[ExtractionIssue]:
        issues: list[ExtractionIssue] = []
        for name in ("cui", "vat_number"):
            value = fields.get(name)
            if isinstance(value, str) and not romanian.is_valid_cui(value):
                issues.append(
                    ExtractionIssue(
                        code="cui_checksum_invalid",
                        message=f"'{value}' fails the CUI control digit check",
                        field=name,
                    )
                )
        iban = fields.get("iban")
        if isinstance(iban, str) and not romanian.is_valid_iban(iban):
            issues.append(
                ExtractionIssue(
                    code="iban_invalid",
                    message=f"'{iban}' is not a valid Romanian IBAN",
                    field="iban",
                )
            )
        trade_register = fields.get("trade_register_number")
        if isinstance(trade_register, str) and not romanian.is_valid_trade_register_number(
            trade_register
        ):
            issues.append(
                ExtractionIssue(
                    code="trade_register_number_invalid",
                    message=f"'{trade_register}' is not a valid trade register number",
                    field="trade_register_number",
                )
            )
        return issues
