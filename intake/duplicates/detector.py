"""DuplicateDetector: grade a candidate invoice against imported invoices.

Classes, strongest first:
- exact (1.0): same supplier and number, date and amount within tight tolerance
- likely (0.8): same supplier and number with diverging date/amount, or the same
  amount within a short date window
- cross_supplier (0.7): same number and amount under a different supplier
- possible (0.5): same supplier, similar amount within a wider date window

Cross-supplier detection only works once the candidate's supplier has been
resolved; without a supplier id the check is skipped.
"""

import datetime
import logging
import re
from decimal import Decimal

from intake.extraction.schema import UNKNOWN_INVOICE_NUMBER
from intake.persistence.base import InvoiceRecord, InvoiceRepository
from intake.pipeline.models import DuplicateDetail, DuplicateType, DuplicateWarning
from intake.shared.config import Settings

logger = logging.getLogger(__name__)

CONFIDENCE: dict[str, float] = {
    "exact": 1.0,
    "likely": 0.8,
    "cross_supplier": 0.7,
    "possible": 0.5,
}


def normalize_invoice_number(number: str | None) -> str:
    """Uppercase alphanumerics only, so 'RE-2024/001' equals 're 2024 001'."""
    if not number or number == UNKNOWN_INVOICE_NUMBER:
        return ""
    return re.sub(r"[^0-9A-Z]", "", number.upper())


def _date_difference(a: datetime.date | None, b: datetime.date | None) -> int | None:
    if a is None and b is None:
        return 0
    if a is None or b is None:
        return None
    return abs((a - b).days)


class DuplicateDetector:
    """Classifies a candidate against the company's imported invoices."""

    def __init__(self, invoices: InvoiceRepository, settings: Settings) -> None:
        self.invoices = invoices
        self.settings = settings

    def check(
        self,
        company_id: str,
        supplier_id: str | None,
        number: str,
        date: datetime.date | None,
        gross: Decimal,
    ) -> list[DuplicateWarning]:
        if not supplier_id:
            logger.debug("Duplicate check skipped: supplier not resolved")
            return []

        wanted_number = normalize_invoice_number(number)
        warnings = []
        for existing in self.invoices.list_invoices(company_id):
            duplicate_type = self._classify(existing, supplier_id, wanted_number, date, gross)
            if duplicate_type is None:
                continue
            warnings.append(
                DuplicateWarning(
                    existing_invoice_id=existing.id,
                    duplicate_type=duplicate_type,
                    confidence=CONFIDENCE[duplicate_type],
                    detail=DuplicateDetail(
                        existing_number=existing.invoice_number,
                        existing_date=existing.invoice_date,
                        existing_amount=existing.gross_total,
                        existing_supplier=existing.supplier_id,
                        date_difference_days=_date_difference(date, existing.invoice_date),
                        amount_difference=abs(gross - existing.gross_total),
                    ),
                )
            )

        warnings.sort(key=lambda w: (w.duplicate_type != "exact", -w.confidence))
        if warnings:
            logger.info(
                f"Invoice {number}: {len(warnings)} duplicate candidate(s), "
                f"strongest {warnings[0].duplicate_type} ({warnings[0].existing_invoice_id})"
            )
        return warnings

    def _classify(
        self,
        existing: InvoiceRecord,
        supplier_id: str,
        wanted_number: str,
        date: datetime.date | None,
        gross: Decimal,
    ) -> DuplicateType | None:
        settings = self.settings
        same_number = bool(wanted_number) and (
            wanted_number == normalize_invoice_number(existing.invoice_number)
        )
        days = _date_difference(date, existing.invoice_date)
        amount_difference = abs(gross - existing.gross_total)
        same_amount = amount_difference <= settings.exact_amount_tolerance

        if existing.supplier_id != supplier_id:
            return "cross_supplier" if same_number and same_amount else None

        if same_number:
            if days is not None and days <= settings.exact_date_tolerance_days and same_amount:
                return "exact"
            return "likely"
        if days is None:
            return None
        if same_amount and days <= settings.likely_date_window_days:
            return "likely"
        reference = max(gross, existing.gross_total)
        if (
            reference > 0
            and amount_difference / reference <= settings.possible_amount_ratio
            and days <= settings.possible_date_window_days
        ):
            return "possible"
        return None
