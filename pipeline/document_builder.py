"""
Builds an InvoiceDocument from an extraction payload.

The extraction stage (OCR / LLM parsing, out of scope here) emits a JSON
object whose values are strings as printed on the invoice:

  {
    "supplier_name":  "Ferguson Enterprises Inc.",
    "invoice_number": "INV-10442",
    "invoice_date":   "03/15/2024",
    "po_number":      "1234567-001",
    "subtotal":       "$1,000.00",
    "gst":            "$50.00",
    "pst":            "$70.00",
    "total":          "$1,120.00",
    "is_credit":      false,
    "confidence":     0.93,
    "page_count":     1,
    "raw_text":       "...",
    "line_items": [
      {"sku": "PX-12", "description": "1/2in copper pipe", "quantity": "10",
       "unit_price": "$12.00", "total": "$120.00"}
    ]
  }

Everything is normalized here; unparseable values become None and are left
for the disposition engine to judge.
"""
import logging
from datetime import datetime
from pathlib import PurePosixPath
from typing import Any, Optional

from models.invoice import FileRef, InvoiceDocument, LineItem
from .categorizer import Categorizer
from .normalize import (
    extract_po_number,
    generate_invoice_filename,
    is_service_stock,
    normalize_vendor_name,
    parse_currency,
    parse_invoice_date,
)

logger = logging.getLogger(__name__)


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _quantity(value: Any) -> float:
    if value is None or value == "":
        return 0.0
    try:
        return float(str(value).replace(",", "").strip())
    except ValueError:
        logger.debug("Unparseable quantity %r treated as 0", value)
        return 0.0


def _build_line_item(raw: dict, categorizer: Categorizer) -> LineItem:
    description = _text(raw.get("description")) or ""
    return LineItem(
        sku=_text(raw.get("sku")),
        description=description,
        quantity=_quantity(raw.get("quantity")),
        unit_price=parse_currency(raw.get("unit_price")),
        total=parse_currency(raw.get("total")),
        category=categorizer.categorize(description),
        in_pricebook=bool(raw.get("in_pricebook", False)),
    )


def build_document(
    raw: dict,
    categorizer: Optional[Categorizer] = None,
    received_at: Optional[datetime] = None,
) -> InvoiceDocument:
    """Normalize one extraction payload into an InvoiceDocument."""
    categorizer = categorizer or Categorizer()
    raw_text = raw.get("raw_text") or ""
    supplier = _text(raw.get("supplier_name")) or ""

    po = extract_po_number(_text(raw.get("po_number"))) or extract_po_number(raw_text)
    invoice_date = parse_invoice_date(_text(raw.get("invoice_date")))

    fields: dict[str, Any] = {
        "supplier_name_raw":        supplier,
        "supplier_name_normalized": normalize_vendor_name(supplier),
        "invoice_number":           _text(raw.get("invoice_number")),
        "invoice_date":             invoice_date,
        "total_before_tax":         parse_currency(raw.get("subtotal")) or 0,
        "gst":                      parse_currency(raw.get("gst")) or 0,
        "pst":                      parse_currency(raw.get("pst")) or 0,
        "total":                    parse_currency(raw.get("total")),
        "po_number_raw":            po.raw if po else None,
        "po_number_core":           po.core if po else None,
        "is_service_stock":         bool(raw.get("is_service_stock")) or is_service_stock(raw_text),
        "is_credit":                bool(raw.get("is_credit", False)),
        "extraction_confidence":    raw.get("confidence"),
        "raw_text":                 raw_text,
        "page_count":               int(raw.get("page_count") or 1),
        "line_items": [
            _build_line_item(item, categorizer) for item in raw.get("line_items") or []
        ],
    }
    if raw.get("id"):
        fields["id"] = str(raw["id"])
    if received_at is not None:
        fields["received_at"] = received_at
    elif raw.get("received_at"):
        fields["received_at"] = raw["received_at"]
    if raw.get("source_pdf"):
        fields["source_pdf"] = FileRef.model_validate(raw["source_pdf"])

    document = InvoiceDocument(**fields)
    if raw.get("renamed_pdf"):
        document.renamed_pdf = FileRef.model_validate(raw["renamed_pdf"])
    elif document.source_pdf and renamed_pdf_name(document):
        # Same bytes under the new name
        new_path = PurePosixPath(document.source_pdf.path).with_name(renamed_pdf_name(document))
        document.renamed_pdf = document.source_pdf.model_copy(update={"path": str(new_path), "url": None})
    logger.debug(
        "Built document %s: supplier=%r invoice=%r po=%r total=%r",
        document.id, supplier, document.invoice_number, document.po_number_core, document.total,
    )
    return document


def renamed_pdf_name(document: InvoiceDocument) -> Optional[str]:
    """Target filename for the per-invoice PDF, once date and PO are known."""
    if not (document.invoice_date and document.po_number_core):
        return None
    return generate_invoice_filename(
        document.invoice_date, document.supplier_name_raw, document.po_number_core,
    )
