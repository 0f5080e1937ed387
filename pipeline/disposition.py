"""
Disposition engine: decides what happens to one parsed invoice.

Rules, in precedence order (the first blocking rule decides, but every rule
that fires is recorded as a reason):

  1. unreadable         missing invoice number / total / line items, or low
                        extraction confidence              -> hold_for_review
  2. service_stock      shop/service stock, not job-bound  -> non_job_stock_hold
  3. duplicate          dedup key already seen in window   -> hold_for_review
  4. missing_po         no PO extracted, or PO not found   -> hold_for_review
  5. negative_quantity  credit lines on a non-credit doc   -> hold_for_review
  6. no_tech_truck      PO job has no lead tech / truck    -> hold_for_review
  7. variance           within tolerance                   -> auto_finalize
                        within tolerance * band multiplier -> draft_then_alert
                        beyond                             -> hold_for_review

Identity and readability gates come before the money gate: comparing
against a missing or wrong PO means nothing.

The engine is pure.  PO lookups and dedup reservations are made by the
processor beforehand and passed in as resolved values.
"""
from typing import Optional

from models.invoice import InvoiceDocument
from models.purchase_order import BASIS_PRIORITY, JobSuggestion, POLookupResult
from models.result import MatchResult, Reason
from .dedup import DedupCheck
from .normalize import format_currency, is_service_stock
from .variance import calculate_variance, classify_variance

DEFAULT_VARIANCE_CENTS = 2500
DEFAULT_DRAFT_BAND_MULTIPLIER = 2.0
DEFAULT_MIN_CONFIDENCE = 0.5


def rank_suggestions(suggestions: list[JobSuggestion]) -> list[JobSuggestion]:
    """Highest confidence first; ties go name > address > date_amount."""
    return sorted(
        suggestions,
        key=lambda s: (-s.confidence, BASIS_PRIORITY[s.basis], s.job_id),
    )


class DispositionEngine:
    """
    Classifies an InvoiceDocument into a MatchResult.

    Usage:
        engine = DispositionEngine.from_config(config)
        result = engine.evaluate(document, lookup, dedup)
    """

    def __init__(
        self,
        variance_cents: int = DEFAULT_VARIANCE_CENTS,
        draft_band_multiplier: float = DEFAULT_DRAFT_BAND_MULTIPLIER,
        min_extraction_confidence: float = DEFAULT_MIN_CONFIDENCE,
    ):
        if variance_cents <= 0:
            raise ValueError(f"variance_cents must be positive, got {variance_cents}")
        if draft_band_multiplier < 1:
            raise ValueError(f"draft_band_multiplier must be >= 1, got {draft_band_multiplier}")
        self.variance_cents = variance_cents
        self.draft_band_multiplier = draft_band_multiplier
        self.min_extraction_confidence = min_extraction_confidence

    @classmethod
    def from_config(cls, config) -> "DispositionEngine":
        return cls(
            variance_cents=config.variance_cents,
            draft_band_multiplier=config.draft_band_multiplier,
            min_extraction_confidence=config.min_extraction_confidence,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def evaluate(
        self,
        document: InvoiceDocument,
        lookup: Optional[POLookupResult],
        dedup: Optional[DedupCheck] = None,
    ) -> MatchResult:
        """Run every rule and return the disposition with all reasons."""
        found = lookup is not None and lookup.found

        blocking = [
            ("hold_for_review",    self._check_readable(document)),
            ("non_job_stock_hold", self._check_service_stock(document)),
            ("hold_for_review",    self._check_duplicate(dedup)),
            ("hold_for_review",    self._check_po(document, lookup)),
            ("hold_for_review",    self._check_quantities(document)),
            ("hold_for_review",    self._check_tech_truck(lookup)),
        ]

        reasons: list[Reason] = [r for _, r in blocking if r is not None]
        notes: list[Reason] = []

        if not document.totals_consistent():
            notes.append(Reason(
                code="totals_mismatch",
                severity="info",
                description=(
                    f"Invoice total {format_currency(document.total)} does not equal "
                    f"subtotal + GST + PST ({format_currency(document.computed_total)})"
                ),
            ))
        if document.vendor_id is None:
            notes.append(Reason(
                code="no_vendor_match",
                severity="info",
                description=(
                    f"Supplier '{document.supplier_name_raw}' is not in the vendor master; "
                    f"using '{document.supplier_name_normalized}' as its identity"
                ),
            ))

        variance = 0
        band = None
        if found and document.total is not None:
            variance = calculate_variance(document.total, lookup.ordered_total)
            band = classify_variance(variance, self.variance_cents, self.draft_band_multiplier)
            variance_reason = self._variance_reason(variance, band, lookup.ordered_total)
            if variance_reason is not None:
                reasons.append(variance_reason)

        action, hold_reason = "auto_finalize", None
        decided = next(((a, r) for a, r in blocking if r is not None), None)
        if decided is not None:
            action, hold_reason = decided[0], decided[1].code
        elif band == "draft_band":
            action = "draft_then_alert"
        elif band == "exceeded":
            action, hold_reason = "hold_for_review", "variance_exceeded"

        suggestions = None
        if "missing_po" in (r.code for r in reasons) and lookup is not None and lookup.suggestions:
            suggestions = rank_suggestions(lookup.suggestions)

        return MatchResult(
            document_id=document.id,
            po_found=found,
            po_number=lookup.po_number if found else document.po_number_core,
            po_id=lookup.po_id if found else None,
            job_id=lookup.job_id if found else None,
            lead_tech_id=lookup.lead_tech_id if found else None,
            truck_location_id=lookup.truck_location_id if found else None,
            vendor_id=document.vendor_id or (lookup.vendor_id if found else None),
            variance=variance,
            action=action,
            hold_reason=hold_reason,
            reasons=reasons + notes,
            suggestions=suggestions,
        )

    # ------------------------------------------------------------------
    # Correctness gates
    # ------------------------------------------------------------------

    def _check_readable(self, doc: InvoiceDocument) -> Optional[Reason]:
        missing = []
        if not (doc.invoice_number and doc.invoice_number.strip()):
            missing.append("invoice number")
        if doc.total is None:
            missing.append("total")
        if not doc.line_items:
            missing.append("line items")

        low_confidence = (
            doc.extraction_confidence is not None
            and doc.extraction_confidence < self.min_extraction_confidence
        )
        if not missing and not low_confidence:
            return None

        parts = []
        if missing:
            parts.append(f"missing {', '.join(missing)}")
        if low_confidence:
            parts.append(
                f"extraction confidence {doc.extraction_confidence:.2f} below "
                f"{self.min_extraction_confidence:.2f}"
            )
        return Reason(
            code="unreadable",
            severity="error",
            description=f"Document could not be read reliably: {'; '.join(parts)}",
        )

    def _check_service_stock(self, doc: InvoiceDocument) -> Optional[Reason]:
        if is_service_stock(doc.raw_text):
            detail = "Document is marked as service/shop stock"
        elif doc.po_number_core is None and doc.is_service_stock:
            detail = "Document carries no PO and is flagged as non-job stock"
        else:
            return None
        return Reason(code="service_stock", severity="error", description=detail)

    def _check_duplicate(self, dedup: Optional[DedupCheck]) -> Optional[Reason]:
        if dedup is None or not dedup.is_duplicate:
            return None
        seen = f" first seen {dedup.first_seen_at}" if dedup.first_seen_at else ""
        return Reason(
            code="duplicate",
            severity="error",
            description=(
                f"Invoice already submitted as document {dedup.prior_document_id}{seen} "
                f"(key {dedup.key})"
            ),
        )

    def _check_po(
        self,
        doc: InvoiceDocument,
        lookup: Optional[POLookupResult],
    ) -> Optional[Reason]:
        if doc.po_number_core is None:
            return Reason(
                code="missing_po",
                severity="error",
                description="No PO number found on the invoice",
            )
        if lookup is None or not lookup.found:
            return Reason(
                code="missing_po",
                severity="error",
                description=(
                    f"PO {doc.po_number_raw or doc.po_number_core} was not found "
                    f"in the field-service system"
                ),
            )
        return None

    def _check_quantities(self, doc: InvoiceDocument) -> Optional[Reason]:
        if doc.is_credit or not doc.has_negative_quantity:
            return None
        negative = [i + 1 for i, item in enumerate(doc.line_items) if item.quantity < 0]
        lines = ", ".join(str(n) for n in negative)
        return Reason(
            code="negative_quantity",
            severity="error",
            description=(
                f"Line(s) {lines} have a negative quantity but the document "
                f"is not marked as a credit or return"
            ),
        )

    def _check_tech_truck(self, lookup: Optional[POLookupResult]) -> Optional[Reason]:
        if lookup is None or not lookup.found or not lookup.job_id:
            return None
        missing = []
        if not lookup.lead_tech_id:
            missing.append("lead technician")
        if not lookup.truck_location_id:
            missing.append("truck/location")
        if not missing:
            return None
        return Reason(
            code="no_tech_truck",
            severity="error",
            description=(
                f"Job {lookup.job_id} on PO {lookup.po_number} has no "
                f"{' or '.join(missing)} assigned"
            ),
        )

    # ------------------------------------------------------------------
    # Financial gate
    # ------------------------------------------------------------------

    def _variance_reason(self, variance: int, band: str, ordered: int) -> Optional[Reason]:
        tolerance = format_currency(self.variance_cents)
        if band == "within_tolerance":
            if variance == 0:
                return None
            return Reason(
                code="variance_within_tolerance",
                severity="info",
                description=(
                    f"Variance {format_currency(variance)} against PO total "
                    f"{format_currency(ordered)} is within {tolerance}"
                ),
            )
        if band == "draft_band":
            return Reason(
                code="variance_review",
                severity="warning",
                description=(
                    f"Variance {format_currency(variance)} against PO total "
                    f"{format_currency(ordered)} exceeds {tolerance}; bill drafted for approval"
                ),
            )
        return Reason(
            code="variance_exceeded",
            severity="error",
            description=(
                f"Variance {format_currency(variance)} against PO total "
                f"{format_currency(ordered)} exceeds the review limit "
                f"{format_currency(int(self.variance_cents * self.draft_band_multiplier))}"
            ),
        )


def evaluate(
    document: InvoiceDocument,
    lookup: Optional[POLookupResult],
    config,
    dedup: Optional[DedupCheck] = None,
) -> MatchResult:
    """Evaluate one document with the thresholds from a Config snapshot."""
    return DispositionEngine.from_config(config).evaluate(document, lookup, dedup)
