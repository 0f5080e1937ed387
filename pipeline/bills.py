"""
Bill creation for documents the engine let through.

auto_finalize    -> a finalized bill
draft_then_alert -> a draft bill awaiting approval
Hold dispositions never reach a BillWriter.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Protocol

from models.hold import BillRecord
from models.invoice import InvoiceDocument
from models.result import BILL_DISPOSITIONS, MatchResult
from .database import Database

logger = logging.getLogger(__name__)

_STATUS_FOR_ACTION = {
    "auto_finalize":    "finalized",
    "draft_then_alert": "draft",
}


class BillWriter(Protocol):
    def write_bill(self, document: InvoiceDocument, match: MatchResult) -> BillRecord:
        ...


class DatabaseBillWriter:
    """Records bills in the pipeline database."""

    def __init__(self, db: Database):
        self.db = db

    def write_bill(self, document: InvoiceDocument, match: MatchResult) -> BillRecord:
        if match.action not in BILL_DISPOSITIONS:
            raise ValueError(f"Disposition {match.action!r} does not produce a bill")
        bill = BillRecord(
            id=str(uuid.uuid4()),
            document_id=document.id,
            vendor_id=match.vendor_id or document.dedup_vendor_id,
            invoice_number=document.invoice_number or "",
            status=_STATUS_FOR_ACTION[match.action],
            amount=document.total or 0,
            pdf_path=document.renamed_pdf.path if document.renamed_pdf else None,
            created_at=datetime.now(timezone.utc),
        )
        self.db.insert_bill(bill)
        logger.info(
            "Bill %s recorded as %s for document %s (%d cents)",
            bill.id, bill.status, document.id, bill.amount,
        )
        return bill
