from datetime import datetime, timezone
from pydantic import BaseModel, Field, model_validator
from typing import Optional, List, Literal

from .purchase_order import JobSuggestion


Disposition = Literal[
    "auto_finalize",        # bill finalized without human review
    "draft_then_alert",     # bill drafted, human alerted before finalization
    "hold_for_review",
    "non_job_stock_hold",   # service / shop stock, separate hold track
]

HOLD_DISPOSITIONS = frozenset({"hold_for_review", "non_job_stock_hold"})
BILL_DISPOSITIONS = frozenset({"auto_finalize", "draft_then_alert"})

HoldReason = Literal[
    "missing_po",
    "variance_exceeded",
    "negative_quantity",
    "no_tech_truck",
    "unreadable",
    "duplicate",
    "no_vendor_match",
    "service_stock",
]

HOLD_REASONS: tuple[str, ...] = (
    "missing_po",
    "variance_exceeded",
    "negative_quantity",
    "no_tech_truck",
    "unreadable",
    "duplicate",
    "no_vendor_match",
    "service_stock",
)

ReasonCode = Literal[
    # Hold reasons
    "missing_po",
    "variance_exceeded",
    "negative_quantity",
    "no_tech_truck",
    "unreadable",
    "duplicate",
    "no_vendor_match",
    "service_stock",
    # Informational / non-blocking
    "variance_review",
    "variance_within_tolerance",
    "totals_mismatch",
]

SeverityLevel = Literal["error", "warning", "info"]


class Reason(BaseModel):
    """One rule that fired while evaluating a document."""
    code: ReasonCode
    severity: SeverityLevel                 # error = blocks, warning = alert, info = note
    description: str                        # Human-readable, enough to act on


class MatchResult(BaseModel):
    """
    Outcome of evaluating one document against its PO lookup.

    reasons holds every rule that fired, in evaluation order; hold_reason is
    the one that decided a hold disposition.
    """
    document_id: str
    po_found: bool = False
    po_number: Optional[str] = None
    po_id: Optional[str] = None
    job_id: Optional[str] = None
    lead_tech_id: Optional[str] = None
    truck_location_id: Optional[str] = None
    vendor_id: Optional[str] = None
    variance: int = 0                       # billed - ordered, cents
    action: Disposition
    hold_reason: Optional[HoldReason] = None
    reasons: List[Reason] = Field(default_factory=list)
    suggestions: Optional[List[JobSuggestion]] = None
    evaluated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="after")
    def _reasons_required_unless_finalized(self) -> "MatchResult":
        if self.action != "auto_finalize" and not self.reasons:
            raise ValueError(f"disposition {self.action!r} requires at least one reason")
        if self.action in HOLD_DISPOSITIONS and self.hold_reason is None:
            raise ValueError(f"disposition {self.action!r} requires a hold_reason")
        return self

    @property
    def reason_codes(self) -> List[str]:
        return [r.code for r in self.reasons]

    @property
    def is_hold(self) -> bool:
        return self.action in HOLD_DISPOSITIONS

    @property
    def blocking_reasons(self) -> List[Reason]:
        return [r for r in self.reasons if r.severity == "error"]
