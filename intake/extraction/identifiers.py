"""Helpers for business identifiers found on invoices (VAT id, IBAN)."""

import re

VAT_ID_SHAPE = re.compile(r"^[A-Z]{2}[0-9A-Z]{8,12}$")
IBAN_SHAPE = re.compile(r"^[A-Z]{2}\d{2}[A-Z0-9]{11,30}$")


def compact(value: str | None) -> str:
    """Uppercase and drop all whitespace and separators."""
    if not value:
        return ""
    return re.sub(r"[\s.\-/]", "", value).upper()


def is_vat_id_shape(value: str | None) -> bool:
    """Check the generic EU VAT-ID shape: country prefix plus 8-12 characters."""
    return bool(VAT_ID_SHAPE.match(compact(value)))


def is_valid_iban(value: str | None) -> bool:
    """Validate an IBAN with the ISO 13616 mod-97 checksum."""
    iban = compact(value)
    if not IBAN_SHAPE.match(iban):
        return False
    rearranged = iban[4:] + iban[:4]
    digits = "".join(str(int(ch, 36)) for ch in rearranged)
    return int(digits) % 97 == 1
