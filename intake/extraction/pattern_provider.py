"""Pattern-based extraction provider for German/English supplier invoices.

Deterministic and explainable: every field comes from an ordered family of
regular expressions applied to the cleaned OCR text. The provider never
fails. Fields that cannot be found keep sentinel or zero values, and the
confidence scorer reports them as unreliable.

Known limitations:
- Dates are assigned by position (first = invoice date, second = due date).
- Without Netto/Brutto labels, amounts are assigned by position
  (first = net, second = VAT, last = gross).
"""

import logging
import re
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from intake.extraction.base import (
    PATTERN_STRATEGY,
    ExtractionProvider,
    ExtractionRequest,
    ExtractionResult,
)
from intake.extraction.identifiers import compact, is_vat_id_shape
from intake.extraction.schema import (
    UNKNOWN_INVOICE_NUMBER,
    UNKNOWN_SUPPLIER,
    InvoiceHeader,
    LineItem,
    References,
    StructuredInvoiceData,
    SupplierInfo,
    TaxLine,
    TaxType,
    Totals,
)
from intake.shared.config import Settings

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
REDUCED_RATES = frozenset({Decimal("5"), Decimal("7")})

# Monetary token with two decimals; dates ("15.03.2024") and percentages are excluded.
AMOUNT = (
    r"(?<![\d.,])"
    r"(?:\d{1,3}(?:\.\d{3})+,\d{2}|\d{1,3}(?:,\d{3})+\.\d{2}|\d+[.,]\d{2})"
    r"(?![.,]?\d)(?!\s?%)"
)
AMOUNT_RE = re.compile(AMOUNT)
RATE = r"(?<![\d.,])(?P<rate>\d{1,2}(?:[.,]\d{1,2})?)\s*%"

_DISALLOWED_CHARS = re.compile(r"[^\w\s.,;:()\[\]{}€$£%@\-+*/_=|\"'!?&#§²³]")
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")
_HORIZONTAL_SPACE = re.compile(r"[ \t\f\v\xa0]+")

_NUMBER_VALUE = r"(?P<value>[A-Z0-9][A-Z0-9\-/._]*)"
_NUMBER_SEP = r"\s*[:.#]?\s*"
INVOICE_NUMBER_PATTERNS = [
    re.compile(r"Rechnungs?[\s-]*(?:nr\b\.?|nummer)" + _NUMBER_SEP + _NUMBER_VALUE, re.I),
    re.compile(r"Invoice\s*(?:no\b\.?|number\b|#)" + _NUMBER_SEP + _NUMBER_VALUE, re.I),
    re.compile(r"\b(?:Rg|Re)[\s.-]*(?:nr\b\.?|nummer)" + _NUMBER_SEP + _NUMBER_VALUE, re.I),
    re.compile(r"Beleg[\s-]*(?:nr\b\.?|nummer)" + _NUMBER_SEP + _NUMBER_VALUE, re.I),
]
BARE_NUMBER_PATTERN = re.compile(
    r"(?<![\w-])(?<!\w\s)Nr\.?" + _NUMBER_SEP + r"(?P<value>[A-Z0-9][A-Z0-9\-/]{2,})", re.I
)

DATE_RE = re.compile(r"(?<!\d)(?P<day>\d{1,2})[./-](?P<month>\d{1,2})[./-](?P<year>\d{4})(?!\d)")

LEGAL_ENTITY_RE = re.compile(
    r"(?P<name>[A-ZÄÖÜ0-9][\w &.,'+-]*?\b"
    r"(?:GmbH(?:\s*&\s*Co\.?\s*KG)?|AG|KG|OHG|UG(?:\s*\(haftungsbeschränkt\))?"
    r"|e\.\s?K\.|Ltd\.?|Inc\.?|Corp\.?))"
    r"(?=$|[\s,;:])"
)
CAPITALIZED_LINE_RE = re.compile(r"^[A-ZÄÖÜ][A-Za-zäöüÄÖÜß &.'-]{3,59}$")
_NAME_STOPWORDS = frozenset({"rechnung", "invoice", "datum", "date", "seite", "page"})

VAT_ID_LABELED_RE = re.compile(
    r"(?:USt[\s.-]*Id[\s.-]*Nr\.?|USt[\s.-]*ID|UID(?:[\s.-]*Nr\.?)?"
    r"|VAT[\s.-]*(?:ID|Reg(?:istration)?\.?\s*No\.?|No\.?))"
    r"\s*[:.]?\s*(?P<value>[A-Z]{2}(?:\s?[0-9A-Z]){8,12})(?![0-9A-Z])",
    re.I,
)
VAT_ID_BARE_RE = re.compile(
    r"\b(?:AT|BE|BG|CY|CZ|DE|DK|EE|EL|ES|FI|FR|HR|HU|IE|IT|LT|LU|LV|MT|NL|PL|PT|RO|SE|SI|SK|XI)"
    r"(?=[A-Z]{0,3}\d)[0-9A-Z]{8,12}\b"
)
IBAN_LABELED_RE = re.compile(
    r"(?i:IBAN)\s*[:.]?\s*"
    r"(?P<value>[A-Z]{2}\d{2}(?: ?[A-Z0-9]{4}){2,7}(?: ?[A-Z0-9]{1,3})?)(?![A-Z0-9])"
)
IBAN_BARE_RE = re.compile(r"\b[A-Z]{2}\d{2}[A-Z0-9]{11,30}\b")
BIC_RE = re.compile(
    r"(?i:BIC|SWIFT)(?:[\s/-]*(?i:Code))?\s*[:.]?\s*"
    r"(?P<value>[A-Z]{4}[A-Z]{2}[A-Z0-9]{2}(?:[A-Z0-9]{3})?)\b"
)
TAX_NUMBER_RE = re.compile(
    r"(?:Steuer[\s-]*Nr\.?|Steuernummer|St\.?[\s-]*Nr\.?)\s*[:.]?\s*"
    r"(?P<value>\d{2,3}\s?/\s?\d{3,4}\s?/\s?\d{4,5})",
    re.I,
)
ADDRESS_RE = re.compile(
    r"(?P<street>[A-ZÄÖÜ][\w .-]*?(?:straße|strasse|str\.|weg|platz|gasse|allee|ring|damm)"
    r"\s*\d+\s?[a-z]?)\s*[,\n]?\s*(?P<city>\d{5}[ \t]+[A-ZÄÖÜ][\w .-]+)",
    re.I,
)
PAYMENT_TERMS_PATTERNS = [
    re.compile(
        r"(?:Zahlungsziel|Zahlungsbedingungen|Zahlbar|Payment terms)\s*[:.]?\s*(?P<value>[^\n]{5,50})",
        re.I,
    ),
    re.compile(r"(?P<value>\d+\s+Tage(?:\s+netto)?)", re.I),
]
REFERENCE_PATTERNS = {
    "customer_number": re.compile(
        r"(?:Kunden[\s-]*(?:nr\b\.?|nummer)|Customer\s*(?:no\.?|number))"
        + _NUMBER_SEP
        + r"(?P<value>[A-Z0-9][A-Z0-9\-/]*)",
        re.I,
    ),
    "order_id": re.compile(
        r"(?:Bestell[\s-]*(?:nr\b\.?|nummer)|Auftrags?[\s-]*(?:nr\b\.?|nummer)"
        r"|(?:Order|PO)\s*(?:no\.?|number))"
        + _NUMBER_SEP
        + r"(?P<value>[A-Z0-9][A-Z0-9\-/]*)",
        re.I,
    ),
    "delivery_note": re.compile(
        r"(?:Lieferschein[\s-]*(?:nr\b\.?|nummer)?|LS[\s-]*Nr\.?|Delivery\s*note(?:\s*no\.?)?)"
        + _NUMBER_SEP
        + r"(?P<value>[A-Z0-9][A-Z0-9\-/]*\d[A-Z0-9\-/]*)",
        re.I,
    ),
    "project_id": re.compile(
        r"(?:Projekt[\s-]*(?:nr\b\.?|nummer)|Project\s*(?:no\.?|number))"
        + _NUMBER_SEP
        + r"(?P<value>[A-Z0-9][A-Z0-9\-/]*)",
        re.I,
    ),
}
REVERSE_CHARGE_RE = re.compile(
    r"reverse[\s-]*charge|steuerschuldnerschaft des leistungsempfängers|§\s*13b\s*UStG", re.I
)

NET_LABEL_RE = re.compile(
    r"\b(?:Netto(?:betrag|summe)?|Summe\s+netto|Zwischensumme|Subtotal|Net\s+amount)\b"
    r"[^\n\d]*?(?P<value>" + AMOUNT + ")",
    re.I,
)
GROSS_LABEL_RE = re.compile(
    r"\b(?:Brutto(?:betrag|summe)?|Gesamtbetrag|Rechnungsbetrag|Endbetrag|Endsumme|Zahlbetrag"
    r"|Zu\s+zahlen|Total|Gesamt)\b(?![^\n\d]*\bnet)"
    r"[^\n\d]*?(?P<value>" + AMOUNT + ")",
    re.I,
)

TAX_TRIPLE_RE = re.compile(
    RATE + r"[^\n\d]*?(?P<base>" + AMOUNT + r")[^\n\d]*?(?P<amount>" + AMOUNT + ")"
)
_TAX_LABEL = r"(?:MwSt|USt|VAT|Mehrwertsteuer|Umsatzsteuer)"
TAX_PAIR_PATTERNS = [
    re.compile(
        _TAX_LABEL + r"\.?[^\n\d%]*?" + RATE + r"[^\n\d]*?(?P<amount>" + AMOUNT + ")", re.I
    ),
    re.compile(RATE + r"\s*" + _TAX_LABEL + r"[^\n\d]*?(?P<amount>" + AMOUNT + ")", re.I),
]

ITEM_SECTION_OPEN_RE = re.compile(
    r"\bpos(?:ition)?\b|artikel|beschreibung|bezeichnung|menge|preis|description|\bqty\b|quantity",
    re.I,
)
ITEM_SECTION_CLOSE_RE = re.compile(r"summe|gesamt|netto|brutto|mwst|total", re.I)
ITEM_LINE_RE = re.compile(
    r"^(?:(?P<pos>\d{1,3})\s+)?(?P<description>.+?)\s+(?P<qty>\d+(?:[.,]\d+)?)\s+"
    r"(?:(?P<unit>[A-Za-zäöüÄÖÜß²³]+\.?)\s+)?"
    r"(?P<unit_price>\d+(?:\.\d{3})*[.,]\d{2,4})\s+"
    r"(?P<net>" + AMOUNT + r")\s*(?:€|EUR)?$"
)


@dataclass(frozen=True)
class AmountSummary:
    """Net/VAT/gross values found in the document text."""

    net: Decimal = Decimal("0")
    vat: Decimal = Decimal("0")
    gross: Decimal = Decimal("0")
    labeled: bool = False


def parse_amount(token: str | None) -> Decimal:
    """Parse a German or English formatted amount ("1.234,56", "1,234.56", "12,50")."""
    if not token:
        return Decimal("0")
    cleaned = re.sub(r"[^\d,.]", "", token)
    if not cleaned:
        return Decimal("0")
    last_sep = max(cleaned.rfind(","), cleaned.rfind("."))
    if last_sep == -1:
        integer, fraction = cleaned, ""
    else:
        integer, fraction = cleaned[:last_sep], cleaned[last_sep + 1 :]
    integer = re.sub(r"[,.]", "", integer) or "0"
    try:
        return Decimal(f"{integer}.{fraction or '0'}")
    except InvalidOperation:
        return Decimal("0")


def _parse_rate(token: str) -> Decimal:
    return Decimal(token.replace(",", "."))


def clean_text(text: str) -> str:
    """Normalize raw OCR text while keeping its line structure.

    Control characters are dropped, symbols that never occur on invoices are
    replaced by spaces, and runs of horizontal whitespace collapse to one
    space. Currency and punctuation symbols are preserved.
    """
    normalized = text.replace("\r\n", "\n").replace("\r", "\n")
    normalized = _CONTROL_CHARS.sub(" ", normalized)
    normalized = _DISALLOWED_CHARS.sub(" ", normalized)
    lines = (_HORIZONTAL_SPACE.sub(" ", line).strip() for line in normalized.split("\n"))
    return "\n".join(line for line in lines if line)


def extract_invoice_number(text: str) -> str:
    """Invoice number from the first matching label, else a bare 'Nr.' token."""
    for pattern in [*INVOICE_NUMBER_PATTERNS, BARE_NUMBER_PATTERN]:
        match = pattern.search(text)
        if match:
            value = match.group("value").strip(".-/_")[:40]
            if value:
                return value
    return UNKNOWN_INVOICE_NUMBER


def extract_dates(text: str) -> list[date]:
    """All valid D.M.YYYY dates in document order."""
    dates: list[date] = []
    for match in DATE_RE.finditer(text):
        try:
            dates.append(
                date(int(match.group("year")), int(match.group("month")), int(match.group("day")))
            )
        except ValueError:
            continue
    return dates


def extract_supplier_name(text: str) -> str:
    """First line naming a legal entity, else the first plausible capitalized line."""
    lines = text.split("\n")
    for line in lines:
        match = LEGAL_ENTITY_RE.search(line)
        if match:
            return match.group("name").strip(" ,.-")
    for line in lines:
        candidate = line.strip()
        first_word = candidate.split(" ", 1)[0].lower().rstrip(":.")
        if CAPITALIZED_LINE_RE.match(candidate) and first_word not in _NAME_STOPWORDS:
            return candidate
    return UNKNOWN_SUPPLIER


def extract_vat_id(text: str) -> str | None:
    """EU VAT id, preferring a labelled occurrence."""
    match = VAT_ID_LABELED_RE.search(text)
    if match and is_vat_id_shape(match.group("value")):
        return compact(match.group("value"))
    match = VAT_ID_BARE_RE.search(text)
    if match:
        return match.group(0)
    return None


def extract_iban(text: str) -> str | None:
    match = IBAN_LABELED_RE.search(text) or IBAN_BARE_RE.search(text)
    if not match:
        return None
    value = match.groupdict().get("value") or match.group(0)
    return compact(value)


def _first_value(pattern: re.Pattern[str], text: str) -> str | None:
    match = pattern.search(text)
    if not match:
        return None
    return match.group("value").strip() or None


def extract_address(text: str) -> str | None:
    match = ADDRESS_RE.search(text)
    if not match:
        return None
    return f"{match.group('street').strip()}, {match.group('city').strip()}"


def extract_payment_terms(text: str) -> str | None:
    for pattern in PAYMENT_TERMS_PATTERNS:
        value = _first_value(pattern, text)
        if value:
            return value
    return None


def detect_currency(text: str, default: str = "EUR") -> str:
    if "€" in text or re.search(r"\bEUR(?:O)?\b", text):
        return "EUR"
    if re.search(r"\bCHF\b", text):
        return "CHF"
    if "£" in text or re.search(r"\bGBP\b", text):
        return "GBP"
    if "$" in text or re.search(r"\bUSD\b", text):
        return "USD"
    return default


def extract_references(text: str) -> References | None:
    values = {field: _first_value(pattern, text) for field, pattern in REFERENCE_PATTERNS.items()}
    if not any(values.values()):
        return None
    return References(**values)


def extract_amounts(text: str, prefer_labeled: bool = True) -> AmountSummary:
    """Net, VAT and gross totals.

    Labelled Netto/Brutto values win when both are present (and
    ``prefer_labeled`` is set). Otherwise amounts are assigned by position:
    with three or more tokens the first is net, the second VAT and the last
    gross.
    """
    if prefer_labeled:
        net_match = NET_LABEL_RE.search(text)
        gross_matches = list(GROSS_LABEL_RE.finditer(text))
        if net_match and gross_matches:
            net = parse_amount(net_match.group("value"))
            gross = parse_amount(gross_matches[-1].group("value"))
            vat = gross - net if gross >= net else Decimal("0")
            return AmountSummary(net=net, vat=vat, gross=gross, labeled=True)

    amounts = [parse_amount(m.group(0)) for m in AMOUNT_RE.finditer(text)]
    if len(amounts) >= 3:
        return AmountSummary(net=amounts[0], vat=amounts[1], gross=amounts[-1])
    if len(amounts) == 2:
        return AmountSummary(net=amounts[0], gross=amounts[1])
    if len(amounts) == 1:
        return AmountSummary(net=amounts[0], gross=amounts[0])
    return AmountSummary()


def _tax_type(rate: Decimal) -> TaxType:
    if rate == 0:
        return TaxType.EXEMPT
    if rate in REDUCED_RATES:
        return TaxType.REDUCED
    return TaxType.STANDARD


def extract_tax_breakdown(text: str) -> list[TaxLine]:
    """Tax lines from 'rate% base amount' rows or labelled 'MwSt rate% amount' pairs.

    A line is accepted only when the rate lies in [0, 100] and the amount is
    positive. Each text line contributes at most one tax line.
    """
    taxes: list[TaxLine] = []
    seen: set[tuple[Decimal, Decimal]] = set()
    for line in text.split("\n"):
        rate = base = amount = None
        triple = TAX_TRIPLE_RE.search(line)
        if triple:
            rate = _parse_rate(triple.group("rate"))
            base = parse_amount(triple.group("base"))
            amount = parse_amount(triple.group("amount"))
        else:
            for pattern in TAX_PAIR_PATTERNS:
                pair = pattern.search(line)
                if pair:
                    rate = _parse_rate(pair.group("rate"))
                    amount = parse_amount(pair.group("amount"))
                    base = (
                        (amount * 100 / rate).quantize(CENT, rounding=ROUND_HALF_UP)
                        if rate > 0
                        else Decimal("0")
                    )
                    break
        if rate is None or amount is None or base is None:
            continue
        if not (0 <= rate <= 100) or amount <= 0:
            continue
        key = (rate, amount)
        if key in seen:
            continue
        seen.add(key)
        taxes.append(TaxLine(rate=rate, base=base, amount=amount, type=_tax_type(rate)))
    return taxes


def extract_line_items(text: str, default_tax_rate: Decimal = Decimal("19")) -> list[LineItem]:
    """Positions between the item table header and the totals block."""
    items: list[LineItem] = []
    in_section = False
    for line in text.split("\n"):
        if not in_section:
            if ITEM_SECTION_OPEN_RE.search(line):
                in_section = True
            continue
        if ITEM_SECTION_CLOSE_RE.search(line):
            break
        match = ITEM_LINE_RE.match(line.strip())
        if not match:
            continue
        description = match.group("description").strip()
        qty = _parse_rate(match.group("qty"))
        unit_price = parse_amount(match.group("unit_price"))
        net = parse_amount(match.group("net"))
        if len(description) <= 2 or qty <= 0 or unit_price <= 0 or net <= 0:
            continue
        discount = None
        list_price = qty * unit_price
        if list_price > net + CENT:
            discount = ((1 - net / list_price) * 100).quantize(CENT, rounding=ROUND_HALF_UP)
        items.append(
            LineItem(
                pos=int(match.group("pos")) if match.group("pos") else None,
                description=description,
                qty=qty,
                unit=match.group("unit") or "Stk",
                unit_price=unit_price,
                discount_percent=discount,
                net=net,
                tax_rate=default_tax_rate,
                tax_amount=(net * default_tax_rate / 100).quantize(CENT, rounding=ROUND_HALF_UP),
            )
        )
    return items


class PatternExtractionProvider(ExtractionProvider):
    """Regex/heuristic extraction of ``StructuredInvoiceData`` from OCR text.

    Independent of any AI backend and always available.
    """

    @property
    def provider_name(self) -> str:
        return PATTERN_STRATEGY

    def is_available(self) -> bool:
        return True

    def extract_invoice_fields(self, request: ExtractionRequest) -> ExtractionResult:
        """Extract structured invoice data; always succeeds."""
        return ExtractionResult(
            invoice_data=self.extract(request.raw_text),
            success=True,
            provider=self.provider_name,
        )

    def extract(self, raw_text: str) -> StructuredInvoiceData:
        """Build a complete record from raw text, with sentinels for unfound fields."""
        try:
            return self._extract(clean_text(raw_text or ""))
        except Exception:
            logger.exception("Pattern extraction failed, returning sentinel record")
            return StructuredInvoiceData.empty(currency=self.settings.default_currency)

    def _extract(self, text: str) -> StructuredInvoiceData:
        dates = extract_dates(text)
        amounts = extract_amounts(text, prefer_labeled=self.settings.prefer_labeled_amounts)
        taxes = extract_tax_breakdown(text)
        if not taxes:
            if REVERSE_CHARGE_RE.search(text):
                taxes = [
                    TaxLine(rate=0, base=amounts.net, amount=0, type=TaxType.REVERSE_CHARGE)
                ]
            elif amounts.vat > 0:
                rate = self.settings.default_tax_rate
                taxes = [TaxLine(rate=rate, base=amounts.net, amount=amounts.vat, type=_tax_type(rate))]
        items = extract_line_items(text, self.settings.default_tax_rate)

        data = StructuredInvoiceData(
            supplier=SupplierInfo(
                name=extract_supplier_name(text),
                vat_id=extract_vat_id(text),
                tax_number=_first_value(TAX_NUMBER_RE, text),
                iban=extract_iban(text),
                bic=_first_value(BIC_RE, text),
                address=extract_address(text),
            ),
            invoice=InvoiceHeader(
                number=extract_invoice_number(text),
                date=dates[0] if dates else None,
                due_date=dates[1] if len(dates) > 1 else None,
                currency=detect_currency(text, self.settings.default_currency),
                payment_terms=extract_payment_terms(text),
            ),
            totals=Totals(net=amounts.net, gross=amounts.gross, taxes=taxes),
            items=items or None,
            references=extract_references(text),
        )
        logger.debug(
            f"Pattern extraction: number={data.invoice.number} date={data.invoice.date} "
            f"gross={data.totals.gross} labeled_amounts={amounts.labeled} items={len(items)}"
        )
        return data
