"""Prompt and response handling shared by the AI extraction providers.

The vision models are asked for a flat camelCase JSON object; this module
parses that object and maps it onto ``StructuredInvoiceData``. Any value
that cannot be mapped raises, and the calling provider reports the attempt
as failed.
"""

import datetime
import json
import re
from decimal import Decimal
from typing import Any

from intake.extraction.pattern_provider import parse_amount
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

SYSTEM_PROMPT = (
    "You are an expert in extracting data from German trade and craft invoices. "
    "Extract ALL relevant information from the invoice and return it as structured JSON. "
    "Convert German dates (DD.MM.YYYY) to YYYY-MM-DD and German numbers (1.234,56 €) "
    "to decimal numbers. Return ONLY valid JSON, no explanation."
)

RESPONSE_SCHEMA = """{
  "invoiceNumber": string|null,
  "date": "YYYY-MM-DD"|null,
  "dueDate": "YYYY-MM-DD"|null,
  "supplierName": string|null,
  "supplierVatId": string|null,
  "supplierTaxNumber": string|null,
  "supplierAddress": string|null,
  "iban": string|null,
  "bic": string|null,
  "netAmount": number|null,
  "vatRate": number|null,
  "vatAmount": number|null,
  "totalAmount": number|null,
  "currency": string|null,
  "paymentTerms": string|null,
  "customerNumber": string|null,
  "orderNumber": string|null,
  "deliveryNoteNumber": string|null,
  "projectNumber": string|null,
  "positions": [{"description": string, "quantity": number, "unit": string|null,
                 "unitPrice": number, "totalPrice": number, "vatRate": number|null}],
  "confidence": number between 0 and 1
}"""


def build_user_prompt(ocr_text: str) -> str:
    """User prompt with the response schema and the OCR text as a hint."""
    hint = f"\nRecognised text of the document, as a hint:\n{ocr_text}\n" if ocr_text else ""
    return (
        "Extract all invoice data from this document. Use null for fields that are "
        f"not clearly present.\n{hint}\nReturn the data in exactly this JSON format:\n"
        f"{RESPONSE_SCHEMA}"
    )


def parse_json_response(response_text: str) -> dict[str, Any]:
    """Extract and parse JSON from LLM response.

    Handles common LLM quirks like markdown code blocks.

    Raises:
        json.JSONDecodeError: If no valid JSON found
        ValueError: If the JSON is not an object
    """
    json_match = re.search(r"```(?:json)?\s*([\s\S]*?)```", response_text)
    if json_match:
        payload = json.loads(json_match.group(1).strip())
    else:
        json_match = re.search(r"\{[\s\S]*\}", response_text)
        payload = json.loads(json_match.group(0) if json_match else response_text.strip())
    if not isinstance(payload, dict):
        raise ValueError(f"Expected a JSON object, got {type(payload).__name__}")
    return payload


def _decimal(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"Not a number: {value!r}")
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if isinstance(value, str):
        if not re.search(r"\d", value):
            raise ValueError(f"Not a number: {value!r}")
        amount = parse_amount(value)
        return -amount if value.strip().startswith("-") else amount
    raise ValueError(f"Not a number: {value!r}")


def _date(value: Any) -> datetime.date | None:
    if not value:
        return None
    text = str(value).strip()
    try:
        return datetime.date.fromisoformat(text[:10])
    except ValueError:
        pass
    match = re.fullmatch(r"(\d{1,2})[./-](\d{1,2})[./-](\d{4})", text)
    if not match:
        raise ValueError(f"Unparseable date: {value!r}")
    day, month, year = (int(group) for group in match.groups())
    return datetime.date(year, month, day)


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def map_response(
    payload: dict[str, Any], default_currency: str = "EUR", default_tax_rate: Decimal = Decimal("19")
) -> tuple[StructuredInvoiceData, float | None]:
    """Map a camelCase AI response onto ``StructuredInvoiceData``.

    Returns:
        Tuple of (structured data, confidence reported by the model)

    Raises:
        ValueError: If a value has the wrong type or violates model constraints
    """
    net = _decimal(payload.get("netAmount"))
    gross = _decimal(payload.get("totalAmount"))
    vat = _decimal(payload.get("vatAmount"))
    rate = _decimal(payload.get("vatRate"))

    if net is None and gross is not None and vat is not None:
        net = gross - vat
    if gross is None and net is not None:
        gross = net + (vat or Decimal("0"))

    taxes = []
    if vat is not None and vat > 0:
        tax_rate = rate if rate is not None else default_tax_rate
        taxes.append(
            TaxLine(
                rate=tax_rate,
                base=net or Decimal("0"),
                amount=vat,
                type=TaxType.REDUCED if tax_rate in (Decimal("5"), Decimal("7")) else TaxType.STANDARD,
            )
        )
    elif rate == 0 and net:
        taxes.append(TaxLine(rate=0, base=net, amount=0, type=TaxType.EXEMPT))

    items = []
    for index, position in enumerate(payload.get("positions") or [], start=1):
        if not isinstance(position, dict):
            raise ValueError(f"Position {index} is not an object")
        item_net = _decimal(position.get("totalPrice", position.get("net")))
        qty = _decimal(position.get("quantity")) or Decimal("1")
        unit_price = _decimal(position.get("unitPrice"))
        if unit_price is None and item_net is not None:
            unit_price = item_net / qty
        item_rate = _decimal(position.get("vatRate"))
        items.append(
            LineItem(
                pos=index,
                description=_text(position.get("description")) or f"Position {index}",
                qty=qty,
                unit=_text(position.get("unit")),
                unit_price=unit_price or Decimal("0"),
                net=item_net if item_net is not None else qty * (unit_price or Decimal("0")),
                tax_rate=item_rate if item_rate is not None else (rate or default_tax_rate),
            )
        )

    references = References(
        project_id=_text(payload.get("projectNumber")),
        order_id=_text(payload.get("orderNumber")),
        delivery_note=_text(payload.get("deliveryNoteNumber")),
        customer_number=_text(payload.get("customerNumber")),
    )

    data = StructuredInvoiceData(
        supplier=SupplierInfo(
            name=_text(payload.get("supplierName")) or UNKNOWN_SUPPLIER,
            vat_id=_text(payload.get("supplierVatId")),
            tax_number=_text(payload.get("supplierTaxNumber")),
            iban=_text(payload.get("iban")),
            bic=_text(payload.get("bic")),
            address=_text(payload.get("supplierAddress")),
        ),
        invoice=InvoiceHeader(
            number=_text(payload.get("invoiceNumber")) or UNKNOWN_INVOICE_NUMBER,
            date=_date(payload.get("date") or payload.get("invoiceDate")),
            due_date=_date(payload.get("dueDate")),
            currency=_text(payload.get("currency")) or default_currency,
            payment_terms=_text(payload.get("paymentTerms")),
        ),
        totals=Totals(net=net or Decimal("0"), gross=gross or Decimal("0"), taxes=taxes),
        items=items or None,
        references=references if any(references.model_dump().values()) else None,
    )

    confidence = payload.get("confidence")
    if isinstance(confidence, (int, float)) and not isinstance(confidence, bool):
        confidence = min(1.0, max(0.0, float(confidence)))
    else:
        confidence = None
    return data, confidence
