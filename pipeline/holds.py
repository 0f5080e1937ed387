"""
Hold lifecycle: create, look up, resolve (once), and summarise holds.

Holds are never deleted.  Resolution goes through a conditional UPDATE so
that two people resolving the same hold cannot both succeed.
"""
import logging
import uuid
from datetime import datetime, timezone
from statistics import mean
from typing import Optional

from models.hold import Hold
from models.invoice import InvoiceDocument
from .database import Database
from .errors import NotFoundError

logger = logging.getLogger(__name__)

SUGGESTED_ACTIONS: dict[str, list[str]] = {
    "missing_po": [
        "Confirm the PO number with the supplier",
        "Review the suggested jobs and attach the invoice to the right one",
        "Create the PO in the field-service system if it was never entered",
    ],
    "variance_exceeded": [
        "Compare invoice lines against the PO lines",
        "Ask the supplier for a corrected invoice or a credit memo",
        "Approve the overage with the job's project manager",
    ],
    "negative_quantity": [
        "Check whether the document is a credit memo or return",
        "Re-enter the document as a credit if so",
    ],
    "no_tech_truck": [
        "Assign a lead technician and truck/location to the job",
        "Re-process the invoice once the job is complete",
    ],
    "unreadable": [
        "Open the source PDF and key the missing fields manually",
        "Request a clearer copy from the supplier",
    ],
    "duplicate": [
        "Compare with the previously submitted document",
        "Discard if it is a resend; otherwise correct the invoice number",
    ],
    "no_vendor_match": [
        "Add the supplier (or an alias) to the vendor master list",
    ],
    "service_stock": [
        "Route to the shop/service stock approval process",
    ],
}


class HoldTracker:
    """Creates and resolves holds against the pipeline database."""

    def __init__(self, db: Database):
        self.db = db

    def create_hold(
        self,
        document: InvoiceDocument,
        reason: str,
        details: str,
        suggested_actions: Optional[list[str]] = None,
    ) -> Hold:
        if suggested_actions is None:
            suggested_actions = list(SUGGESTED_ACTIONS.get(reason, []))
        hold = Hold(
            id=str(uuid.uuid4()),
            document_id=document.id,
            reason=reason,
            details=details,
            suggested_actions=suggested_actions,
            created_at=datetime.now(timezone.utc),
        )
        self.db.insert_hold(hold)
        logger.info("Hold %s created for document %s: %s", hold.id, document.id, reason)
        return hold

    def resolve_hold(self, hold_id: str, resolved_by: str, resolution: str) -> Hold:
        """
        Resolve an open hold.  Raises NotFoundError if the hold does not
        exist or has already been resolved.
        """
        if not resolved_by or not resolved_by.strip():
            raise ValueError("resolved_by is required")
        changed = self.db.mark_hold_resolved(
            hold_id, datetime.now(timezone.utc), resolved_by.strip(), resolution,
        )
        if not changed:
            existing = self.db.get_hold(hold_id)
            if existing is None:
                raise NotFoundError(f"Hold {hold_id} not found")
            raise NotFoundError(
                f"Hold {hold_id} is already resolved (by {existing.resolved_by})"
            )
        logger.info("Hold %s resolved by %s", hold_id, resolved_by)
        return self.db.get_hold(hold_id)

    def get_hold(self, hold_id: str) -> Hold:
        hold = self.db.get_hold(hold_id)
        if hold is None:
            raise NotFoundError(f"Hold {hold_id} not found")
        return hold

    def list_holds(self, reason: Optional[str] = None, unresolved: bool = False) -> list[Hold]:
        return self.db.list_holds(reason=reason, unresolved=unresolved)

    def hold_stats(self) -> dict:
        """Counts of all / open / resolved holds and mean time to resolve."""
        all_counts = self.db.hold_counts_by_reason()
        open_counts = self.db.hold_counts_by_reason(unresolved_only=True)
        durations = self.db.resolved_hold_durations()
        total = sum(all_counts.values())
        unresolved = sum(open_counts.values())
        return {
            "total": total,
            "unresolved": unresolved,
            "resolved": total - unresolved,
            "by_reason": open_counts,
            "avg_resolution_hours": round(mean(durations), 2) if durations else None,
        }
