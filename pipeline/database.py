"""
SQLite persistence layer for the accounts-payable pipeline.

One database file (output/apmatch.db) holds:

  - documents       every parsed invoice (full InvoiceDocument as JSON)
  - match_results   latest disposition per document
  - holds           blocked documents; never deleted, resolved at most once
  - bills           finalized / drafted bills handed to the field-service system
  - dedup_keys      first-seen anchors for duplicate detection
  - audit_log       append-only trail of every state change

Duplicate detection relies on the store, not on in-process locks:
reserve_dedup_key() runs inside BEGIN IMMEDIATE, so of two processes racing
on the same key exactly one inserts the anchor and the other sees it.
"""
import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from models.hold import BillRecord, Hold
from models.invoice import InvoiceDocument
from models.result import MatchResult
from .dedup import DedupCheck

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    id                TEXT PRIMARY KEY,
    supplier_name     TEXT,
    vendor_key        TEXT,              -- vendor id, else normalized supplier name
    invoice_number    TEXT,
    invoice_date      TEXT,
    total             INTEGER,           -- cents
    po_number         TEXT,
    received_at       TEXT NOT NULL,     -- ISO-8601 UTC
    stored_at         TEXT NOT NULL,
    data              TEXT NOT NULL      -- InvoiceDocument serialised as JSON
);

CREATE INDEX IF NOT EXISTS idx_documents_stored_at ON documents (stored_at DESC);
CREATE INDEX IF NOT EXISTS idx_documents_vendor    ON documents (vendor_key);

CREATE TABLE IF NOT EXISTS match_results (
    document_id       TEXT PRIMARY KEY REFERENCES documents (id),
    action            TEXT NOT NULL,
    hold_reason       TEXT,
    variance          INTEGER NOT NULL DEFAULT 0,
    po_found          INTEGER NOT NULL DEFAULT 0,
    evaluated_at      TEXT NOT NULL,
    data              TEXT NOT NULL      -- MatchResult serialised as JSON
);

CREATE TABLE IF NOT EXISTS holds (
    id                TEXT PRIMARY KEY,
    document_id       TEXT NOT NULL,
    reason            TEXT NOT NULL,
    details           TEXT NOT NULL,
    suggested_actions TEXT NOT NULL DEFAULT '[]',
    created_at        TEXT NOT NULL,
    resolved_at       TEXT,
    resolved_by       TEXT,
    resolution        TEXT
);

CREATE INDEX IF NOT EXISTS idx_holds_document ON holds (document_id);
CREATE INDEX IF NOT EXISTS idx_holds_reason   ON holds (reason);
CREATE INDEX IF NOT EXISTS idx_holds_created  ON holds (created_at DESC);

CREATE TABLE IF NOT EXISTS bills (
    id                TEXT PRIMARY KEY,
    document_id       TEXT NOT NULL,
    vendor_id         TEXT NOT NULL,
    invoice_number    TEXT NOT NULL,
    status            TEXT NOT NULL,     -- finalized | draft | held
    amount            INTEGER NOT NULL,
    external_bill_id  TEXT,
    pdf_path          TEXT,
    created_at        TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_bills_created ON bills (created_at DESC);

CREATE TABLE IF NOT EXISTS dedup_keys (
    dedup_key         TEXT NOT NULL,
    document_id       TEXT NOT NULL,
    first_seen_at     TEXT NOT NULL,     -- received_at of the anchoring document
    UNIQUE (dedup_key, first_seen_at)
);

CREATE INDEX IF NOT EXISTS idx_dedup_key ON dedup_keys (dedup_key, first_seen_at);

CREATE TABLE IF NOT EXISTS audit_log (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    entity_type TEXT    NOT NULL,   -- document | hold | bill | file
    entity_id   TEXT    NOT NULL,
    timestamp   TEXT    NOT NULL,   -- ISO-8601 UTC
    action      TEXT    NOT NULL,   -- stored | evaluated | hold_created | hold_resolved |
                                    -- bill_recorded | processing_failed
    actor       TEXT    NOT NULL DEFAULT 'system',
    detail      TEXT                -- optional JSON blob with action-specific context
);

CREATE INDEX IF NOT EXISTS idx_audit_entity    ON audit_log (entity_type, entity_id);
CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_log (timestamp DESC);
"""


def _iso(dt: datetime) -> str:
    """Fixed-width UTC timestamp so string comparison orders correctly."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _now() -> str:
    return _iso(datetime.now(timezone.utc))


class Database:
    """Thin wrapper around an SQLite database file for pipeline state."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    @contextmanager
    def _conn(self, immediate: bool = False):
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        if immediate:
            # Take the write lock up front: read-then-insert must be atomic
            conn.isolation_level = None
            conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._conn() as conn:
            conn.executescript(_SCHEMA)
        logger.debug("Database schema ready: %s", self.db_path)

    # ------------------------------------------------------------------
    # Documents and match results
    # ------------------------------------------------------------------

    def upsert_document(self, document: InvoiceDocument) -> None:
        """Insert or replace a parsed document."""
        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO documents (
                    id, supplier_name, vendor_key, invoice_number, invoice_date,
                    total, po_number, received_at, stored_at, data
                ) VALUES (
                    :id, :supplier_name, :vendor_key, :invoice_number, :invoice_date,
                    :total, :po_number, :received_at, :stored_at, :data
                )
                ON CONFLICT(id) DO UPDATE SET
                    supplier_name  = excluded.supplier_name,
                    vendor_key     = excluded.vendor_key,
                    invoice_number = excluded.invoice_number,
                    invoice_date   = excluded.invoice_date,
                    total          = excluded.total,
                    po_number      = excluded.po_number,
                    received_at    = excluded.received_at,
                    data           = excluded.data
                """,
                {
                    "id":             document.id,
                    "supplier_name":  document.supplier_name_raw,
                    "vendor_key":     document.dedup_vendor_id,
                    "invoice_number": document.invoice_number,
                    "invoice_date":   document.invoice_date,
                    "total":          document.total,
                    "po_number":      document.po_number_raw,
                    "received_at":    _iso(document.received_at),
                    "stored_at":      _now(),
                    "data":           document.model_dump_json(),
                },
            )
        self.log_audit("document", document.id, "stored")

    def get_document(self, document_id: str) -> Optional[InvoiceDocument]:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT data FROM documents WHERE id=?", (document_id,)
            ).fetchone()
        return InvoiceDocument.model_validate_json(row["data"]) if row else None

    def save_match(self, match: MatchResult) -> None:
        """Store the latest disposition for a document (re-evaluation replaces it)."""
        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO match_results (
                    document_id, action, hold_reason, variance, po_found, evaluated_at, data
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(document_id) DO UPDATE SET
                    action       = excluded.action,
                    hold_reason  = excluded.hold_reason,
                    variance     = excluded.variance,
                    po_found     = excluded.po_found,
                    evaluated_at = excluded.evaluated_at,
                    data         = excluded.data
                """,
                (
                    match.document_id,
                    match.action,
                    match.hold_reason,
                    match.variance,
                    int(match.po_found),
                    _iso(match.evaluated_at),
                    match.model_dump_json(),
                ),
            )
        self.log_audit(
            "document", match.document_id, "evaluated",
            detail={"action": match.action, "reasons": match.reason_codes},
        )

    def get_match(self, document_id: str) -> Optional[MatchResult]:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT data FROM match_results WHERE document_id=?", (document_id,)
            ).fetchone()
        return MatchResult.model_validate_json(row["data"]) if row else None

    # ------------------------------------------------------------------
    # Deduplication
    # ------------------------------------------------------------------

    def reserve_dedup_key(
        self,
        key: str,
        document_id: str,
        received_at: datetime,
        window_days: int,
    ) -> DedupCheck:
        """
        Atomically check for and claim a dedup key.

        If an anchor for key was first seen less than window_days either side
        of received_at, the document is a duplicate of the anchoring document.
        Whichever copy is reserved first wins, regardless of receive order.
        Otherwise this document becomes a new anchor.  Re-checking the same
        document is never a duplicate of itself.
        """
        received = _iso(received_at)
        window = timedelta(days=window_days)
        lower = _iso(received_at - window)
        upper = _iso(received_at + window)

        with self._conn(immediate=True) as conn:
            own = conn.execute(
                "SELECT first_seen_at FROM dedup_keys WHERE dedup_key=? AND document_id=?",
                (key, document_id),
            ).fetchone()
            if own is not None:
                return DedupCheck(key=key, is_duplicate=False, first_seen_at=own["first_seen_at"])

            anchor = conn.execute(
                """SELECT document_id, first_seen_at FROM dedup_keys
                   WHERE dedup_key = ? AND first_seen_at > ? AND first_seen_at < ?
                   ORDER BY first_seen_at ASC LIMIT 1""",
                (key, lower, upper),
            ).fetchone()
            if anchor is not None:
                return DedupCheck(
                    key=key,
                    is_duplicate=True,
                    prior_document_id=anchor["document_id"],
                    first_seen_at=anchor["first_seen_at"],
                )

            try:
                conn.execute(
                    "INSERT INTO dedup_keys (dedup_key, document_id, first_seen_at) VALUES (?, ?, ?)",
                    (key, document_id, received),
                )
            except sqlite3.IntegrityError:
                # Same key, same instant: the other document got there first
                prior = conn.execute(
                    "SELECT document_id FROM dedup_keys WHERE dedup_key=? AND first_seen_at=?",
                    (key, received),
                ).fetchone()
                return DedupCheck(
                    key=key,
                    is_duplicate=True,
                    prior_document_id=prior["document_id"] if prior else None,
                    first_seen_at=received,
                )

        return DedupCheck(key=key, is_duplicate=False, first_seen_at=received)

    def prune_dedup_keys(self, older_than: datetime) -> int:
        """Drop dedup anchors first seen before older_than. Returns rows removed."""
        with self._conn() as conn:
            conn.execute("DELETE FROM dedup_keys WHERE first_seen_at < ?", (_iso(older_than),))
            removed = conn.execute("SELECT changes()").fetchone()[0]
        logger.info("Pruned %d dedup key(s) first seen before %s", removed, older_than.date())
        return removed

    # ------------------------------------------------------------------
    # Holds
    # ------------------------------------------------------------------

    def insert_hold(self, hold: Hold) -> None:
        with self._conn() as conn:
            conn.execute(
                """INSERT INTO holds (
                       id, document_id, reason, details, suggested_actions, created_at
                   ) VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    hold.id,
                    hold.document_id,
                    hold.reason,
                    hold.details,
                    json.dumps(hold.suggested_actions),
                    _iso(hold.created_at),
                ),
            )
        self.log_audit(
            "hold", hold.id, "hold_created",
            detail={"document_id": hold.document_id, "reason": hold.reason},
        )

    def mark_hold_resolved(
        self,
        hold_id: str,
        resolved_at: datetime,
        resolved_by: str,
        resolution: str,
    ) -> bool:
        """
        Resolve an unresolved hold.  Returns False if the hold does not exist
        or was already resolved; the row is never touched twice.
        """
        with self._conn() as conn:
            conn.execute(
                """UPDATE holds SET resolved_at=?, resolved_by=?, resolution=?
                   WHERE id=? AND resolved_at IS NULL""",
                (_iso(resolved_at), resolved_by, resolution, hold_id),
            )
            changed = conn.execute("SELECT changes()").fetchone()[0]
        if changed:
            self.log_audit(
                "hold", hold_id, "hold_resolved", actor=resolved_by,
                detail={"resolution": resolution},
            )
        return changed > 0

    def get_hold(self, hold_id: str) -> Optional[Hold]:
        with self._conn() as conn:
            row = conn.execute("SELECT * FROM holds WHERE id=?", (hold_id,)).fetchone()
        return _row_to_hold(row) if row else None

    def list_holds(
        self,
        reason: Optional[str] = None,
        unresolved: bool = False,
        document_id: Optional[str] = None,
        limit: int = 500,
    ) -> list[Hold]:
        """Holds newest-first, optionally filtered."""
        clauses: list[str] = []
        params: list = []
        if reason:
            clauses.append("reason = ?")
            params.append(reason)
        if unresolved:
            clauses.append("resolved_at IS NULL")
        if document_id:
            clauses.append("document_id = ?")
            params.append(document_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)

        with self._conn() as conn:
            rows = conn.execute(
                f"SELECT * FROM holds {where} ORDER BY created_at DESC LIMIT ?",
                params,
            ).fetchall()
        return [_row_to_hold(r) for r in rows]

    def hold_counts_by_reason(
        self,
        unresolved_only: bool = False,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> dict[str, int]:
        clauses: list[str] = []
        params: list = []
        if unresolved_only:
            clauses.append("resolved_at IS NULL")
        if since is not None:
            clauses.append("created_at >= ?")
            params.append(_iso(since))
        if until is not None:
            clauses.append("created_at < ?")
            params.append(_iso(until))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._conn() as conn:
            rows = conn.execute(
                f"SELECT reason, COUNT(*) AS n FROM holds {where} GROUP BY reason",
                params,
            ).fetchall()
        return {r["reason"]: r["n"] for r in rows}

    def resolved_hold_durations(self) -> list[float]:
        """Hours between creation and resolution for every resolved hold."""
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT created_at, resolved_at FROM holds WHERE resolved_at IS NOT NULL"
            ).fetchall()
        return [
            (datetime.fromisoformat(r["resolved_at"]) - datetime.fromisoformat(r["created_at"]))
            .total_seconds() / 3600
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Bills
    # ------------------------------------------------------------------

    def insert_bill(self, bill: BillRecord) -> None:
        with self._conn() as conn:
            conn.execute(
                """INSERT INTO bills (
                       id, document_id, vendor_id, invoice_number, status, amount,
                       external_bill_id, pdf_path, created_at
                   ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    bill.id, bill.document_id, bill.vendor_id, bill.invoice_number,
                    bill.status, bill.amount, bill.external_bill_id, bill.pdf_path,
                    _iso(bill.created_at),
                ),
            )
        self.log_audit(
            "bill", bill.id, "bill_recorded",
            detail={"document_id": bill.document_id, "status": bill.status},
        )

    def list_bills(self, document_id: Optional[str] = None) -> list[BillRecord]:
        sql = "SELECT * FROM bills"
        params: tuple = ()
        if document_id:
            sql += " WHERE document_id = ?"
            params = (document_id,)
        with self._conn() as conn:
            rows = conn.execute(sql + " ORDER BY created_at DESC", params).fetchall()
        return [BillRecord.model_validate(dict(r)) for r in rows]

    # ------------------------------------------------------------------
    # Reporting queries
    # ------------------------------------------------------------------

    def document_totals_between(self, since: datetime, until: datetime) -> list[dict]:
        """(vendor_key, total) for every document stored in [since, until)."""
        with self._conn() as conn:
            rows = conn.execute(
                """SELECT vendor_key, total FROM documents
                   WHERE stored_at >= ? AND stored_at < ?""",
                (_iso(since), _iso(until)),
            ).fetchall()
        return [dict(r) for r in rows]

    def count_bills_between(self, since: datetime, until: datetime, status: str) -> int:
        with self._conn() as conn:
            row = conn.execute(
                """SELECT COUNT(*) FROM bills
                   WHERE status = ? AND created_at >= ? AND created_at < ?""",
                (status, _iso(since), _iso(until)),
            ).fetchone()
        return row[0]

    def count_failures_between(self, since: datetime, until: datetime) -> int:
        with self._conn() as conn:
            row = conn.execute(
                """SELECT COUNT(*) FROM audit_log
                   WHERE action = 'processing_failed' AND timestamp >= ? AND timestamp < ?""",
                (_iso(since), _iso(until)),
            ).fetchone()
        return row[0]

    def nonzero_variances(self) -> list[dict]:
        """Match results with a variance, joined to their document."""
        with self._conn() as conn:
            rows = conn.execute(
                """SELECT m.document_id, m.variance, d.supplier_name, d.invoice_number, d.total
                   FROM match_results m JOIN documents d ON d.id = m.document_id
                   WHERE m.variance != 0"""
            ).fetchall()
        return [dict(r) for r in rows]

    # ------------------------------------------------------------------
    # Audit log
    # ------------------------------------------------------------------

    def log_audit(
        self,
        entity_type: str,
        entity_id: str,
        action: str,
        actor: str = "system",
        detail: Optional[dict] = None,
    ) -> None:
        """Append one entry to the audit log."""
        with self._conn() as conn:
            conn.execute(
                """INSERT INTO audit_log (entity_type, entity_id, timestamp, action, actor, detail)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    entity_type,
                    entity_id,
                    _now(),
                    action,
                    actor,
                    json.dumps(detail) if detail is not None else None,
                ),
            )

    def get_audit_log(self, entity_type: str, entity_id: str) -> list[dict]:
        """Return all audit entries for one entity, oldest first."""
        with self._conn() as conn:
            rows = conn.execute(
                """SELECT id, timestamp, action, actor, detail
                   FROM audit_log WHERE entity_type = ? AND entity_id = ?
                   ORDER BY timestamp ASC, id ASC""",
                (entity_type, entity_id),
            ).fetchall()
        return [dict(r) for r in rows]


def _row_to_hold(row: sqlite3.Row) -> Hold:
    data = dict(row)
    data["suggested_actions"] = json.loads(data.get("suggested_actions") or "[]")
    return Hold.model_validate(data)
