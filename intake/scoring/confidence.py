"""Per-field confidence for an extraction result.

``score`` is a pure function of the raw text, the structured data and the
strategy that produced it. Fields whose presence check fails keep a low
score regardless of strategy; passing fields from an AI strategy get the
flat AI baseline instead of the pattern-specific value.
"""

import datetime

from intake.extraction.base import PATTERN_STRATEGY
from intake.extraction.identifiers import is_valid_iban, is_vat_id_shape
from intake.extraction.schema import (
    UNKNOWN_INVOICE_NUMBER,
    UNKNOWN_SUPPLIER,
    ConfidenceScores,
    StructuredInvoiceData,
)

AI_BASELINE = 0.9
UNCORROBORATED_AI_VALUE = 0.6
EARLIEST_PLAUSIBLE_DATE = datetime.date(2020, 1, 1)
MAX_FUTURE_DAYS = 30


def _number_score(number: str) -> tuple[bool, float, float]:
    passed = (
        number != UNKNOWN_INVOICE_NUMBER
        and len(number) >= 3
        and any(ch.isdigit() for ch in number)
    )
    return passed, 0.9, 0.3


def _date_score(value: datetime.date | None, today: datetime.date) -> tuple[bool, float, float]:
    latest = today + datetime.timedelta(days=MAX_FUTURE_DAYS)
    passed = value is not None and EARLIEST_PLAUSIBLE_DATE <= value <= latest
    return passed, 0.95, 0.2


def _supplier_name_score(name: str) -> tuple[bool, float, float]:
    if name == UNKNOWN_SUPPLIER:
        return False, 0.0, 0.1
    return True, min(0.9, 0.3 + 0.06 * len(name)), 0.1


def score(
    raw_text: str,
    data: StructuredInvoiceData,
    strategy: str = PATTERN_STRATEGY,
    today: datetime.date | None = None,
) -> ConfidenceScores:
    """Score every populated field of ``data``.

    Args:
        raw_text: OCR text of the document; AI values absent from it score lower
        data: Extraction result to score
        strategy: 'pattern' or the AI provider name
        today: Reference date for the plausibility window (defaults to today)

    Returns:
        New ConfidenceScores with ``overall`` as the mean of the field scores
    """
    today = today or datetime.date.today()
    checks: dict[str, tuple[bool, float, float]] = {
        "invoice.number": _number_score(data.invoice.number),
        "invoice.date": _date_score(data.invoice.date, today),
        "supplier.name": _supplier_name_score(data.supplier.name),
        "totals.gross": (data.totals.gross > 0, 0.85, 0.1),
    }
    if data.invoice.due_date is not None:
        issued = data.invoice.date
        checks["invoice.due_date"] = (issued is None or data.invoice.due_date >= issued, 0.85, 0.4)
    if data.supplier.vat_id:
        checks["supplier.vat_id"] = (is_vat_id_shape(data.supplier.vat_id), 0.95, 0.4)
    if data.supplier.iban:
        checks["supplier.iban"] = (is_valid_iban(data.supplier.iban), 0.9, 0.4)
    if data.totals.net > 0:
        net_plausible = data.totals.gross <= 0 or data.totals.net <= data.totals.gross
        checks["totals.net"] = (net_plausible, 0.8, 0.4)
    if data.totals.taxes:
        checks["totals.taxes"] = (True, 0.75, 0.75)

    use_ai_baseline = strategy != PATTERN_STRATEGY
    scores = {}
    for field, (passed, high, low) in checks.items():
        if not passed:
            scores[field] = low
        else:
            scores[field] = AI_BASELINE if use_ai_baseline else high
    if use_ai_baseline and raw_text.strip() and checks["invoice.number"][0]:
        haystack = "".join(raw_text.split()).upper()
        if "".join(data.invoice.number.split()).upper() not in haystack:
            scores["invoice.number"] = UNCORROBORATED_AI_VALUE
    return ConfidenceScores(scores=scores)
