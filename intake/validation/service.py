"""ValidationEngine: completeness and arithmetic checks on extracted invoices.

Hard errors block the import; warnings are surfaced for review. The engine
is pure, so validating unchanged data again yields an identical result.
This supports a fix-and-retry loop after a human edits the data.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal

from intake.extraction.schema import UNKNOWN_INVOICE_NUMBER, UNKNOWN_SUPPLIER, StructuredInvoiceData
from intake.persistence.base import CompanyContext
from intake.pipeline.models import ValidationIssue, ValidationResult
from intake.shared.config import Settings

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


class ValidationEngine:
    """Checks ``StructuredInvoiceData`` against the owning company's policy."""

    def __init__(self, settings: Settings) -> None:
        self.tolerance = settings.amount_tolerance

    def validate(self, data: StructuredInvoiceData, company: CompanyContext) -> ValidationResult:
        errors: list[ValidationIssue] = []
        warnings: list[ValidationIssue] = []

        if company.require_invoice_number and data.invoice.number in ("", UNKNOWN_INVOICE_NUMBER):
            errors.append(
                ValidationIssue(
                    field="invoice.number",
                    code="MISSING_INVOICE_NUMBER",
                    message="Invoice number could not be determined",
                )
            )
        if company.require_invoice_date and data.invoice.date is None:
            errors.append(
                ValidationIssue(
                    field="invoice.date",
                    code="MISSING_INVOICE_DATE",
                    message="Invoice date could not be determined",
                )
            )
        if not company.vat_id and not company.tax_number:
            errors.append(
                ValidationIssue(
                    field="company.tax_identifiers",
                    code="MISSING_COMPANY_TAX_ID",
                    message=f"Company '{company.name}' has neither a VAT id nor a tax number",
                )
            )
        if data.totals.gross <= 0:
            errors.append(
                ValidationIssue(
                    field="totals.gross",
                    code="INVALID_GROSS_TOTAL",
                    message="Gross total must be positive",
                )
            )

        tax_total = data.tax_total
        gross_calculated = data.totals.net + tax_total
        difference = abs(data.totals.gross - gross_calculated)
        if difference > self.tolerance:
            warnings.append(
                ValidationIssue(
                    field="totals",
                    code="TOTALS_MISMATCH",
                    message=(
                        f"Gross {data.totals.gross} differs from net {data.totals.net} + "
                        f"tax {tax_total} by {difference}"
                    ),
                )
            )

        if data.invoice.due_date is None:
            warnings.append(
                ValidationIssue(
                    field="invoice.due_date", code="MISSING_DUE_DATE", message="No due date found"
                )
            )
        elif data.invoice.date is not None and data.invoice.due_date < data.invoice.date:
            warnings.append(
                ValidationIssue(
                    field="invoice.due_date",
                    code="DUE_DATE_BEFORE_INVOICE_DATE",
                    message=(
                        f"Due date {data.invoice.due_date} precedes "
                        f"invoice date {data.invoice.date}"
                    ),
                )
            )

        if company.vat_liable and data.totals.net > 0 and tax_total == 0 and not data.totals.taxes:
            warnings.append(
                ValidationIssue(
                    field="totals.taxes",
                    code="MISSING_TAX",
                    message="Company is VAT-liable but the invoice shows no tax",
                )
            )

        for index, tax in enumerate(data.totals.taxes):
            expected = (tax.base * tax.rate / 100).quantize(CENT, rounding=ROUND_HALF_UP)
            if tax.base > 0 and abs(expected - tax.amount) > self.tolerance:
                warnings.append(
                    ValidationIssue(
                        field=f"totals.taxes[{index}]",
                        code="TAX_LINE_MISMATCH",
                        message=f"{tax.rate}% of {tax.base} is {expected}, invoice states {tax.amount}",
                    )
                )

        net_from_items = None
        if data.items:
            net_from_items = sum((item.net for item in data.items), Decimal("0"))
            if abs(net_from_items - data.totals.net) > self.tolerance:
                warnings.append(
                    ValidationIssue(
                        field="items",
                        code="ITEMS_NET_MISMATCH",
                        message=f"Line items sum to {net_from_items}, net total is {data.totals.net}",
                    )
                )

        if data.supplier.name == UNKNOWN_SUPPLIER:
            warnings.append(
                ValidationIssue(
                    field="supplier.name",
                    code="UNKNOWN_SUPPLIER",
                    message="Supplier name could not be determined",
                )
            )

        result = ValidationResult(
            valid=not errors,
            errors=errors,
            warnings=warnings,
            calculated_totals={
                "net_from_items": net_from_items,
                "tax_from_breakdown": tax_total,
                "gross_calculated": gross_calculated,
            },
        )
        logger.debug(
            f"Validation for invoice {data.invoice.number}: valid={result.valid} "
            f"errors={len(errors)} warnings={len(warnings)}"
        )
        return result
