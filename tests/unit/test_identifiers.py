"""Unit tests for VAT id and IBAN helpers."""

from intake.extraction.identifiers import compact, is_valid_iban, is_vat_id_shape


def test_compact_strips_separators() -> None:
    """Test that whitespace, dots, dashes and slashes are removed."""
    assert compact(" de-123.456/789 ") == "DE123456789"
    assert compact(None) == ""


def test_vat_id_shape() -> None:
    """Test the generic EU VAT id shape check."""
    assert is_vat_id_shape("DE123456789") is True
    assert is_vat_id_shape("ATU12345678") is True
    assert is_vat_id_shape("DE1234") is False
    assert is_vat_id_shape("123456789") is False


def test_valid_iban_checksum() -> None:
    """Test a well-known valid German IBAN, with and without grouping."""
    assert is_valid_iban("DE89 3704 0044 0532 0130 00") is True
    assert is_valid_iban("DE89370400440532013000") is True


def test_invalid_iban_checksum() -> None:
    """Test that a single changed digit fails the mod-97 check."""
    assert is_valid_iban("DE89370400440532013001") is False
    assert is_valid_iban("not an iban") is False
    assert is_valid_iban(None) is False
