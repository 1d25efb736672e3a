"""Per-type document schemas and upload allow-lists.

Every document type is one entry in ``DOCUMENT_TYPES``. Intake, the field
normalizer and the review queue all read from this table, so supporting a new
document type means adding an entry here and nothing else.
"""

from dataclasses import dataclass

from app.documents.models import DocumentType, OwnerKind

_BOTH_KINDS = frozenset({OwnerKind.SUPPLIER, OwnerKind.CONTACT})
_SUPPLIER_ONLY = frozenset({OwnerKind.SUPPLIER})


@dataclass(frozen=True)
class DocumentTypeInfo:
    code: DocumentType
    name_en: str
    name_ro: str
    owner_kinds: frozenset[OwnerKind]
    ocr_enabled: bool
    expected_fields: tuple[str, ...]
    required_fields: tuple[str, ...]
    mandatory_for: frozenset[OwnerKind] = frozenset()

    def is_mandatory_for(self, owner_kind: OwnerKind) -> bool:
        return owner_kind in self.mandatory_for


DOCUMENT_TYPES: dict[DocumentType, DocumentTypeInfo] = {
    DocumentType.ONRC_CERTIFICATE: DocumentTypeInfo(
        code=DocumentType.ONRC_CERTIFICATE,
        name_en="ONRC Certificate",
        name_ro="Certificat ONRC",
        owner_kinds=_BOTH_KINDS,
        ocr_enabled=True,
        expected_fields=(
            "business_name",
            "cui",
            "trade_register_number",
            "address",
            "business_type",
        ),
        required_fields=("business_name", "cui", "trade_register_number"),
        mandatory_for=_SUPPLIER_ONLY,
    ),
    DocumentType.FARMER_ID_CARD: DocumentTypeInfo(
        code=DocumentType.FARMER_ID_CARD,
        name_en="Farmer ID Card",
        name_ro="Card de Fermier",
        owner_kinds=_BOTH_KINDS,
        ocr_enabled=True,
        expected_fields=("farmer_name", "farmer_id", "farm_location", "farm_size"),
        required_fields=("farmer_name", "farmer_id"),
    ),
    DocumentType.APIA_CERTIFICATE: DocumentTypeInfo(
        code=DocumentType.APIA_CERTIFICATE,
        name_en="APIA Certificate",
        name_ro="Certificat APIA",
        owner_kinds=_BOTH_KINDS,
        ocr_enabled=True,
        expected_fields=("apia_id", "farmer_name", "land_area", "crop_types"),
        required_fields=("apia_id",),
    ),
    DocumentType.BANK_STATEMENT: DocumentTypeInfo(
        code=DocumentType.BANK_STATEMENT,
        name_en="Bank Statement",
        name_ro="Extras de Cont",
        owner_kinds=_BOTH_KINDS,
        ocr_enabled=True,
        expected_fields=("iban", "account_holder", "bank_name", "account_number"),
        required_fields=("iban",),
        mandatory_for=_SUPPLIER_ONLY,
    ),
    DocumentType.IDENTITY_CARD: DocumentTypeInfo(
        code=DocumentType.IDENTITY_CARD,
        name_en="Identity Card",
        name_ro="Carte de Identitate",
        owner_kinds=_BOTH_KINDS,
        ocr_enabled=True,
        expected_fields=("id_number", "first_name", "last_name", "birth_date", "address"),
        required_fields=("id_number", "last_name"),
    ),
    DocumentType.FISCAL_CERTIFICATE: DocumentTypeInfo(
        code=DocumentType.FISCAL_CERTIFICATE,
        name_en="Fiscal Certificate",
        name_ro="Certificat Fiscal",
        owner_kinds=_SUPPLIER_ONLY,
        ocr_enabled=True,
        expected_fields=("cui", "business_name", "fiscal_status", "issue_date"),
        required_fields=("cui", "business_name"),
    ),
    DocumentType.VAT_CERTIFICATE: DocumentTypeInfo(
        code=DocumentType.VAT_CERTIFICATE,
        name_en="VAT Certificate",
        name_ro="Certificat TVA",
        owner_kinds=_SUPPLIER_ONLY,
        ocr_enabled=True,
        expected_fields=("vat_number", "business_name", "registration_date"),
        required_fields=("vat_number",),
    ),
    DocumentType.OTHER: DocumentTypeInfo(
        code=DocumentType.OTHER,
        name_en="Other Document",
        name_ro="Alt Document",
        owner_kinds=_BOTH_KINDS,
        ocr_enabled=False,
        expected_fields=(),
        required_fields=(),
    ),
}

_SUPPLIER_MIME_TYPES = frozenset(
    {
        "image/jpeg",
        "image/jpg",
        "image/png",
        "application/pdf",
    }
)

ALLOWED_MIME_TYPES: dict[OwnerKind, frozenset[str]] = {
    OwnerKind.SUPPLIER: _SUPPLIER_MIME_TYPES,
    OwnerKind.CONTACT: _SUPPLIER_MIME_TYPES
    | {
        "image/gif",
        "image/bmp",
        "image/webp",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "text/plain",
    },
}

# MIME types an OCR provider can read: images, PDFs and plain text.
RECOGNIZABLE_MIME_TYPES = frozenset(
    {
        "image/jpeg",
        "image/jpg",
        "image/png",
        "image/gif",
        "image/bmp",
        "image/webp",
        "application/pdf",
        "text/plain",
    }
)

FILE_EXTENSIONS: dict[str, str] = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/bmp": "bmp",
    "image/webp": "webp",
    "application/pdf": "pdf",
    "application/msword": "doc",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
    "text/plain": "txt",
}


def get_document_type_info(document_type: DocumentType | str) -> DocumentTypeInfo:
    """Return the schema for *document_type*.

    Raises:
        ValueError: if the code is not a known document type.
    """
    return DOCUMENT_TYPES[DocumentType(document_type)]


def is_ocr_eligible(document_type: DocumentType, mime_type: str) -> bool:
    return (
        get_document_type_info(document_type).ocr_enabled
        and mime_type.lower() in RECOGNIZABLE_MIME_TYPES
    )


def mandatory_types_for(owner_kind: OwnerKind) -> list[DocumentType]:
    return [info.code for info in DOCUMENT_TYPES.values() if info.is_mandatory_for(owner_kind)]
