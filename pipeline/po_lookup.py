"""
Purchase Order lookup.

The disposition engine never talks to the field-service system itself; the
processor asks a POLookup for a definitive answer first.  CsvPOLookup is the
file-backed implementation, loading from two CSV files:

  - purchase_orders.csv   (PO records, keyed by the 7-8 digit core)
  - jobs.csv              (open jobs, used to suggest candidates when the
                           invoice PO cannot be resolved)
"""
import csv
import logging
from datetime import date
from pathlib import Path
from typing import Optional, Protocol

from rapidfuzz import fuzz

from models.invoice import InvoiceDocument
from models.purchase_order import Job, JobSuggestion, POLookupResult, PurchaseOrder
from .disposition import rank_suggestions
from .errors import LookupUnavailableError
from .normalize import extract_po_number, parse_currency

logger = logging.getLogger(__name__)

MAX_SUGGESTIONS = 5
TEXT_FUZZY_THRESHOLD = 80       # minimum partial_ratio for name / address hits
DATE_WINDOW_DAYS = 14
AMOUNT_TOLERANCE_PCT = 0.10


class POLookup(Protocol):
    def lookup(self, document: InvoiceDocument) -> POLookupResult:
        """Resolve the document's PO, or raise LookupUnavailableError."""
        ...


def _opt(row: dict, key: str) -> Optional[str]:
    return (row.get(key) or "").strip() or None


class CsvPOLookup:
    """
    Loads POs and jobs from CSV and resolves invoice PO numbers.

    CSV formats:
      purchase_orders.csv:
        po_number, po_id, vendor_id, job_id, lead_tech_id, truck_location_id, total

      jobs.csv:
        job_id, customer_name, address, job_date, amount

    A missing purchase_orders.csv means the system is unreachable: lookup()
    raises LookupUnavailableError, and retries re-read the file.
    """

    def __init__(
        self,
        po_csv: str | Path,
        jobs_csv: str | Path,
        max_suggestions: int = MAX_SUGGESTIONS,
    ):
        self.po_csv = Path(po_csv)
        self.jobs_csv = Path(jobs_csv)
        self.max_suggestions = max_suggestions
        self.purchase_orders: dict[str, PurchaseOrder] = {}
        self.jobs: list[Job] = []
        self._loaded = False
        self._load()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _load(self) -> None:
        if not self.po_csv.exists():
            logger.warning("PO CSV not found: %s; PO lookups unavailable", self.po_csv)
            return

        with open(self.po_csv, newline="", encoding="utf-8") as f:
            for row in csv.DictReader(f):
                ref = extract_po_number(row.get("po_number"))
                total = parse_currency(row.get("total"))
                if ref is None or total is None:
                    logger.warning("Skipping malformed PO row: %s", row.get("po_number"))
                    continue
                po = PurchaseOrder(
                    po_number=ref.core,
                    po_id=_opt(row, "po_id"),
                    vendor_id=_opt(row, "vendor_id"),
                    job_id=_opt(row, "job_id"),
                    lead_tech_id=_opt(row, "lead_tech_id"),
                    truck_location_id=_opt(row, "truck_location_id"),
                    total=total,
                )
                self.purchase_orders[po.po_number] = po

        if self.jobs_csv.exists():
            with open(self.jobs_csv, newline="", encoding="utf-8") as f:
                for row in csv.DictReader(f):
                    self.jobs.append(Job(
                        job_id=row["job_id"].strip(),
                        customer_name=_opt(row, "customer_name"),
                        address=_opt(row, "address"),
                        job_date=_opt(row, "job_date"),
                        amount=parse_currency(row.get("amount")),
                    ))
        else:
            logger.info("No jobs CSV found at %s; job suggestions disabled", self.jobs_csv)

        self._loaded = True
        logger.info("Loaded %d POs and %d jobs", len(self.purchase_orders), len(self.jobs))

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def lookup(self, document: InvoiceDocument) -> POLookupResult:
        if not self._loaded:
            self._load()
            if not self._loaded:
                raise LookupUnavailableError(f"PO source {self.po_csv} is not available")

        core = document.po_number_core
        po = self.purchase_orders.get(core) if core else None
        if po is not None:
            logger.info("PO %s found (job=%s)", core, po.job_id)
            return POLookupResult.from_po(po)

        if core:
            logger.info("PO number '%s' not found in loaded POs", core)
        suggestions = self.suggest_jobs(document)
        return POLookupResult.not_found(suggestions)

    def suggest_jobs(self, document: InvoiceDocument) -> list[JobSuggestion]:
        """Candidate jobs for a document whose PO could not be resolved."""
        best: dict[str, JobSuggestion] = {}
        for job in self.jobs:
            for suggestion in self._score_job(job, document):
                current = best.get(job.job_id)
                if current is None or suggestion.confidence > current.confidence:
                    best[job.job_id] = suggestion
        ranked = rank_suggestions(list(best.values()))
        return ranked[: self.max_suggestions]

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def _score_job(self, job: Job, document: InvoiceDocument) -> list[JobSuggestion]:
        text = document.raw_text.lower()
        hits: list[JobSuggestion] = []

        if text and job.customer_name:
            score = fuzz.partial_ratio(job.customer_name.lower(), text)
            if score >= TEXT_FUZZY_THRESHOLD:
                hits.append(JobSuggestion(job_id=job.job_id, confidence=round(score / 100, 4), basis="name"))

        if text and job.address:
            score = fuzz.partial_ratio(job.address.lower(), text)
            if score >= TEXT_FUZZY_THRESHOLD:
                hits.append(JobSuggestion(job_id=job.job_id, confidence=round(score / 100, 4), basis="address"))

        confidence = _date_amount_confidence(job, document)
        if confidence is not None:
            hits.append(JobSuggestion(job_id=job.job_id, confidence=confidence, basis="date_amount"))

        return hits


def _date_amount_confidence(job: Job, document: InvoiceDocument) -> Optional[float]:
    """
    Score a job whose date is within DATE_WINDOW_DAYS of the invoice date and
    whose amount is within AMOUNT_TOLERANCE_PCT of the invoice total.  An exact
    date and amount scores 1.0, the edge of both windows 0.0.
    """
    if not (job.job_date and job.amount and document.invoice_date and document.total):
        return None
    try:
        days = abs((date.fromisoformat(job.job_date) - date.fromisoformat(document.invoice_date)).days)
    except ValueError:
        return None
    pct = abs(document.total - job.amount) / abs(job.amount)
    if days > DATE_WINDOW_DAYS or pct > AMOUNT_TOLERANCE_PCT:
        return None
    confidence = 1 - 0.5 * (days / DATE_WINDOW_DAYS) - 0.5 * (pct / AMOUNT_TOLERANCE_PCT)
    return round(max(0.0, min(1.0, confidence)), 4)
