"""Format checks for Romanian business identifiers (CUI, IBAN, ONRC number)."""

import re
from datetime import date

_CUI_WEIGHTS = (7, 5, 3, 2, 1, 7, 5, 3, 2)
_CUI_RE = re.compile(r"^(?:RO)?(\d{2,10})$")
_IBAN_RE = re.compile(r"^RO\d{2}[A-Z]{4}[A-Z0-9]{16}$")
_TRADE_REGISTER_RE = re.compile(r"^([JFC])(\d{1,2})/(\d{1,7})/(\d{4})$")
_FIRST_REGISTRATION_YEAR = 1990
_COUNTY_CODES = range(1, 53)

LEGAL_FORMS = ("SRL", "SA", "PFA", "II", "IF", "SNC", "SCS")
_LEGAL_FORM_RE = re.compile(
    r"(?<![A-Z])"
    r"(S\.?\s?R\.?\s?L|S\.?\s?A|P\.?\s?F\.?\s?A|I\.?\s?I|I\.?\s?F|S\.?\s?N\.?\s?C|S\.?\s?C\.?\s?S)"
    r"\.?(?![A-Z])"
)

# Legacy cedilla letters are still emitted by scanners and older fonts.
_CEDILLA_TO_COMMA = str.maketrans("ŞşŢţ", "ȘșȚț")


def fix_diacritics(text: str) -> str:
    return text.translate(_CEDILLA_TO_COMMA)


def compact(value: str) -> str:
    return re.sub(r"[\s.\-]", "", value).upper()


def normalize_cui(value: str) -> str:
    cleaned = compact(value)
    return cleaned.removeprefix("CUI").removeprefix("CIF").removeprefix(":")


def is_valid_cui(value: str) -> bool:
    """Check the control digit of a CUI/CIF, with or without the ``RO`` prefix."""
    match = _CUI_RE.match(normalize_cui(value))
    if match is None:
        return False
    digits = match.group(1)
    body, control = digits[:-1].rjust(9, "0"), int(digits[-1])
    total = sum(int(d) * w for d, w in zip(body, _CUI_WEIGHTS))
    expected = total * 10 % 11
    if expected == 10:
        expected = 0
    return expected == control


def normalize_iban(value: str) -> str:
    return re.sub(r"\s", "", value).upper()


def is_valid_iban(value: str) -> bool:
    """Romanian IBAN: 24 characters and ISO 13616 mod-97 checksum."""
    iban = normalize_iban(value)
    if not _IBAN_RE.match(iban):
        return False
    rearranged = iban[4:] + iban[:4]
    numeric = "".join(str(int(ch, 36)) for ch in rearranged)
    return int(numeric) % 97 == 1


def format_iban(value: str) -> str:
    """Group an IBAN in blocks of four, as printed on statements."""
    iban = normalize_iban(value)
    return " ".join(iban[i : i + 4] for i in range(0, len(iban), 4))


def normalize_trade_register_number(value: str) -> str:
    return re.sub(r"\s", "", value).upper()


def is_valid_trade_register_number(value: str, today: date | None = None) -> bool:
    """Check an ONRC number such as ``J40/1234/2020``.

    The county code must be 1-52 and the year between 1990 and the current year.
    """
    match = _TRADE_REGISTER_RE.match(normalize_trade_register_number(value))
    if match is None:
        return False
    county, year = int(match.group(2)), int(match.group(4))
    current_year = (today or date.today()).year
    return county in _COUNTY_CODES and _FIRST_REGISTRATION_YEAR <= year <= current_year


def legal_form_of(business_name: str) -> str | None:
    """Return the legal form (``SRL``, ``SA``, ...) contained in a business name."""
    match = _LEGAL_FORM_RE.search(business_name.upper())
    if match is None:
        return None
    form = re.sub(r"[\s.]", "", match.group(1))
    return form if form in LEGAL_FORMS else None
