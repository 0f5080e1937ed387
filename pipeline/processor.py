"""
Main pipeline orchestrator.

DocumentProcessor ties the collaborators around the (pure) disposition
engine into a single process() call:

  1. VendorMatcher    -- identify the vendor from the master list
  2. POLookup         -- resolve the PO (wrapped in the retry policy)
  3. Database         -- atomically reserve the dedup key
  4. DispositionEngine -- decide auto_finalize / draft / hold
  5. Persist the match, then create a hold or a bill
  6. Notifier         -- alert on holds and drafted variances

The engine only runs once the PO lookup has given a definitive answer; if
the lookup stays unavailable after every retry, LookupUnavailableError
propagates and nothing is evaluated.
"""
import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

from config import Config
from models.hold import BillRecord, Hold
from models.invoice import InvoiceDocument
from models.result import BILL_DISPOSITIONS, MatchResult
from .bills import BillWriter, DatabaseBillWriter
from .categorizer import Categorizer, LLMCategoryClassifier
from .database import Database
from .dedup import DedupCheck, dedup_key
from .disposition import DispositionEngine
from .document_builder import build_document
from .holds import HoldTracker
from .notifier import Notifier, TeamsNotifier
from .po_lookup import CsvPOLookup, POLookup
from .vendor_matcher import VendorMatcher

logger = logging.getLogger(__name__)


class ProcessingOutcome(BaseModel):
    """Everything produced for one document."""
    document: InvoiceDocument
    match: MatchResult
    hold: Optional[Hold] = None
    bill: Optional[BillRecord] = None


class BatchResult(BaseModel):
    outcomes: list[ProcessingOutcome] = Field(default_factory=list)
    failures: dict[str, str] = Field(default_factory=dict)   # filename -> error


def build_categorizer(config: Config) -> Categorizer:
    """Keyword categorizer, fronted by the LLM classifier when enabled."""
    if config.ai_categorization_enabled:
        return Categorizer(LLMCategoryClassifier(
            model=config.llm_model,
            base_url=config.llm_base_url,
            api_key=config.llm_api_key,
        ))
    return Categorizer()


class DocumentProcessor:
    """
    Orchestrates the invoice matching pipeline for parsed documents.

    Every collaborator can be injected; anything left out is built from the
    config (CSV-backed PO lookup, database bill writer, Teams notifier).
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        db: Optional[Database] = None,
        po_lookup: Optional[POLookup] = None,
        bill_writer: Optional[BillWriter] = None,
        notifier: Optional[Notifier] = None,
        vendor_matcher: Optional[VendorMatcher] = None,
        categorizer: Optional[Categorizer] = None,
    ):
        self.config = config or Config.load()
        self.config.ensure_output_dir()

        self.db = db or Database(self.config.db_path)
        self.po_lookup = po_lookup or CsvPOLookup(
            self.config.po_csv,
            self.config.jobs_csv,
            max_suggestions=self.config.max_job_suggestions,
        )
        self.bill_writer = bill_writer or DatabaseBillWriter(self.db)
        self.notifier = notifier or TeamsNotifier.from_config(self.config)
        self.vendor_matcher = vendor_matcher or VendorMatcher(
            self.config.vendors_csv,
            fuzzy_threshold=self.config.vendor_fuzzy_threshold,
        )
        self.categorizer = categorizer or build_categorizer(self.config)

        self.engine = DispositionEngine.from_config(self.config)
        self.holds = HoldTracker(self.db)
        self.retry = self.config.retry_policy()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def process(self, document: InvoiceDocument) -> ProcessingOutcome:
        """Run one parsed document through matching and disposition."""
        logger.info(
            "=== Processing document %s (%s / %s) ===",
            document.id, document.supplier_name_raw or "?", document.invoice_number or "?",
        )

        logger.info("Step 1/5: Matching vendor")
        document = self._match_vendor(document)
        self.db.upsert_document(document)

        logger.info("Step 2/5: Looking up PO %s", document.po_number_core or "(none)")
        lookup = self.retry.call(self.po_lookup.lookup, document)

        logger.info("Step 3/5: Checking for duplicate submission")
        dedup = self._reserve_dedup_key(document)

        logger.info("Step 4/5: Evaluating disposition")
        match = self.engine.evaluate(document, lookup, dedup)
        self.db.save_match(match)

        logger.info("Step 5/5: Applying disposition %s", match.action)
        hold = bill = None
        prior_bills = self.db.list_bills(document.id)
        open_holds = self.db.list_holds(document_id=document.id, unresolved=True)
        if prior_bills:
            # A document is billed at most once
            logger.warning(
                "Document %s already billed (%s); nothing written", document.id, prior_bills[0].id,
            )
            bill = prior_bills[0]
        elif match.is_hold and open_holds:
            logger.warning(
                "Document %s already on hold %s; nothing written", document.id, open_holds[0].id,
            )
            hold = open_holds[0]
        elif match.is_hold:
            hold = self.holds.create_hold(document, match.hold_reason, _hold_details(match))
            self._notify("hold_created", document, hold)
        elif match.action in BILL_DISPOSITIONS:
            bill = self.bill_writer.write_bill(document, match)
            if match.action == "draft_then_alert":
                self._notify("variance_alert", document, match)

        logger.info(
            "Done: document=%s action=%s reasons=%s variance=%d",
            document.id, match.action, match.reason_codes, match.variance,
        )
        return ProcessingOutcome(document=document, match=match, hold=hold, bill=bill)

    def process_file(self, path: str | Path) -> ProcessingOutcome:
        """Load an extraction JSON payload, build the document and process it."""
        path = Path(path)
        with open(path, encoding="utf-8") as f:
            raw = json.load(f)
        document = build_document(raw, self.categorizer)
        return self.process(document)

    def process_batch(self, directory: str | Path) -> BatchResult:
        """
        Process every *.json payload in a directory.  A failing file is
        logged and recorded in the audit log; the batch carries on.
        """
        directory = Path(directory)
        files = sorted(directory.glob("*.json"))
        result = BatchResult()
        if not files:
            logger.warning("No extraction files found in %s", directory)
            return result

        logger.info("Batch processing %d document(s) from %s", len(files), directory)
        for i, path in enumerate(files, 1):
            logger.info("[%d/%d] %s", i, len(files), path.name)
            try:
                result.outcomes.append(self.process_file(path))
            except Exception as e:
                logger.error("Failed to process %s: %s", path.name, e, exc_info=True)
                result.failures[path.name] = str(e)
                self.db.log_audit(
                    "file", path.name, "processing_failed", detail={"error": str(e)},
                )

        logger.info(
            "Batch complete: %d processed, %d failed",
            len(result.outcomes), len(result.failures),
        )
        return result

    def check_setup(self) -> dict:
        """Verify that data files and connections are ready."""
        status = {}
        status["vendors_csv"] = {
            "path": str(self.config.vendors_csv),
            "exists": self.config.vendors_csv.exists(),
            "count": len(self.vendor_matcher.vendors),
        }
        po_count = len(getattr(self.po_lookup, "purchase_orders", {}))
        status["po_csv"] = {
            "path": str(self.config.po_csv),
            "exists": self.config.po_csv.exists(),
            "count": po_count,
        }
        status["jobs_csv"] = {
            "path": str(self.config.jobs_csv),
            "exists": self.config.jobs_csv.exists(),
        }
        status["database"] = {
            "path": str(self.config.db_path),
            "exists": self.config.db_path.exists(),
        }
        status["teams_webhook"] = {
            "ok": bool(self.config.teams_webhook_url),
            "note": None if self.config.teams_webhook_url else "notifications are logged only",
        }
        status["ai_categorization"] = {"enabled": self.config.ai_categorization_enabled}
        return status

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _match_vendor(self, document: InvoiceDocument) -> InvoiceDocument:
        if document.vendor_id is not None:
            return document
        matched = self.vendor_matcher.match(document.supplier_name_raw)
        if matched is None:
            logger.info("No vendor match for %r", document.supplier_name_raw)
            return document
        return document.model_copy(update={"vendor_id": matched.vendor_id})

    def _reserve_dedup_key(self, document: InvoiceDocument) -> Optional[DedupCheck]:
        vendor = document.dedup_vendor_id
        if not (vendor and document.invoice_number and document.invoice_number.strip()):
            return None
        check = self.db.reserve_dedup_key(
            dedup_key(vendor, document.invoice_number),
            document.id,
            document.received_at,
            self.config.dedupe_window_days,
        )
        if check.is_duplicate:
            logger.warning(
                "Duplicate of document %s (key %s)", check.prior_document_id, check.key,
            )
        return check

    def _notify(self, event: str, document: InvoiceDocument, subject) -> None:
        try:
            getattr(self.notifier, event)(document, subject)
        except Exception as e:
            logger.error("Notifier %s failed for document %s: %s", event, document.id, e)


def _hold_details(match: MatchResult) -> str:
    return "; ".join(r.description for r in match.blocking_reasons)


def prune_expired(db: Database, retention_years: int, now: Optional[datetime] = None) -> int:
    """Drop dedup anchors older than the retention period."""
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=365 * retention_years)
    return db.prune_dedup_keys(cutoff)
