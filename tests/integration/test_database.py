"""
Integration tests for database operations.
"""
import json
from datetime import datetime, timedelta, timezone

import pytest

from models.hold import BillRecord, Hold
from pipeline.disposition import DispositionEngine

RECEIVED = datetime(2024, 3, 15, 9, 0, tzinfo=timezone.utc)


@pytest.mark.integration
class TestDocumentsAndMatches:
    """Documents and match results round-trip through SQLite."""

    def test_upsert_and_get_document(self, test_db, make_document):
        doc = make_document()
        test_db.upsert_document(doc)

        stored = test_db.get_document(doc.id)
        assert stored == doc

    def test_upsert_replaces(self, test_db, make_document):
        doc = make_document()
        test_db.upsert_document(doc)
        test_db.upsert_document(doc.model_copy(update={"total": 12000}))
        assert test_db.get_document(doc.id).total == 12000

    def test_missing_document(self, test_db):
        assert test_db.get_document("nope") is None

    def test_save_and_get_match(self, test_db, make_document, found_lookup):
        doc = make_document()
        test_db.upsert_document(doc)
        match = DispositionEngine().evaluate(doc, found_lookup())
        test_db.save_match(match)

        stored = test_db.get_match(doc.id)
        assert stored.action == "auto_finalize"
        assert stored.variance == 50


@pytest.mark.integration
class TestDedupReservation:
    """Atomic insert-if-absent of dedup keys."""

    def test_first_reservation_is_not_duplicate(self, test_db):
        check = test_db.reserve_dedup_key("V-100:inv-100", "doc-1", RECEIVED, 90)
        assert check.is_duplicate is False
        assert check.prior_document_id is None

    def test_second_within_window_is_duplicate(self, test_db):
        test_db.reserve_dedup_key("V-100:inv-100", "doc-1", RECEIVED, 90)
        check = test_db.reserve_dedup_key(
            "V-100:inv-100", "doc-2", RECEIVED + timedelta(days=3), 90,
        )
        assert check.is_duplicate is True
        assert check.prior_document_id == "doc-1"

    def test_outside_window_starts_new_anchor(self, test_db):
        test_db.reserve_dedup_key("V-100:inv-100", "doc-1", RECEIVED, 90)
        later = RECEIVED + timedelta(days=91)

        check = test_db.reserve_dedup_key("V-100:inv-100", "doc-2", later, 90)
        assert check.is_duplicate is False

        again = test_db.reserve_dedup_key("V-100:inv-100", "doc-3", later + timedelta(days=1), 90)
        assert again.prior_document_id == "doc-2"

    def test_window_is_anchored_on_first_seen(self, test_db):
        """Test a string of resends does not extend the window."""
        test_db.reserve_dedup_key("k", "doc-1", RECEIVED, 90)
        test_db.reserve_dedup_key("k", "doc-2", RECEIVED + timedelta(days=80), 90)
        check = test_db.reserve_dedup_key("k", "doc-3", RECEIVED + timedelta(days=95), 90)
        assert check.is_duplicate is False

    def test_later_copy_reserved_first(self, test_db):
        """Test the earlier copy is still caught when the later one is reserved first."""
        test_db.reserve_dedup_key("k", "doc-late", RECEIVED + timedelta(days=3), 90)

        check = test_db.reserve_dedup_key("k", "doc-early", RECEIVED, 90)

        assert check.is_duplicate is True
        assert check.prior_document_id == "doc-late"

    def test_future_anchor_beyond_window_is_ignored(self, test_db):
        test_db.reserve_dedup_key("k", "doc-late", RECEIVED + timedelta(days=90), 90)
        assert test_db.reserve_dedup_key("k", "doc-early", RECEIVED, 90).is_duplicate is False

    def test_same_document_is_not_its_own_duplicate(self, test_db):
        test_db.reserve_dedup_key("k", "doc-1", RECEIVED, 90)
        assert test_db.reserve_dedup_key("k", "doc-1", RECEIVED, 90).is_duplicate is False

    def test_same_instant_race(self, test_db):
        """Test the second of two documents received at the same instant loses."""
        test_db.reserve_dedup_key("k", "doc-1", RECEIVED, 90)
        check = test_db.reserve_dedup_key("k", "doc-2", RECEIVED, 90)
        assert check.is_duplicate is True
        assert check.prior_document_id == "doc-1"

    def test_prune(self, test_db):
        test_db.reserve_dedup_key("old", "doc-1", RECEIVED - timedelta(days=2000), 90)
        test_db.reserve_dedup_key("new", "doc-2", RECEIVED, 90)

        removed = test_db.prune_dedup_keys(RECEIVED - timedelta(days=1000))

        assert removed == 1
        assert test_db.reserve_dedup_key("new", "doc-3", RECEIVED, 90).is_duplicate is True


@pytest.mark.integration
class TestHoldsAndBills:
    """Hold and bill rows."""

    def _hold(self, hold_id="hold-1", reason="missing_po", document_id="doc-1"):
        return Hold(
            id=hold_id,
            document_id=document_id,
            reason=reason,
            details="No PO number found on the invoice",
            suggested_actions=["Confirm the PO number with the supplier"],
            created_at=RECEIVED,
        )

    def test_insert_and_get_hold(self, test_db):
        test_db.insert_hold(self._hold())
        hold = test_db.get_hold("hold-1")
        assert hold.reason == "missing_po"
        assert hold.suggested_actions == ["Confirm the PO number with the supplier"]
        assert hold.is_resolved is False

    def test_mark_resolved_only_once(self, test_db):
        test_db.insert_hold(self._hold())
        assert test_db.mark_hold_resolved("hold-1", RECEIVED, "jdoe", "fixed") is True
        assert test_db.mark_hold_resolved("hold-1", RECEIVED, "asmith", "again") is False
        assert test_db.get_hold("hold-1").resolved_by == "jdoe"

    def test_list_holds_filters(self, test_db):
        test_db.insert_hold(self._hold("h1", "missing_po"))
        test_db.insert_hold(self._hold("h2", "duplicate"))
        test_db.mark_hold_resolved("h1", RECEIVED, "jdoe", "fixed")

        assert {h.id for h in test_db.list_holds()} == {"h1", "h2"}
        assert [h.id for h in test_db.list_holds(reason="duplicate")] == ["h2"]
        assert [h.id for h in test_db.list_holds(unresolved=True)] == ["h2"]

    def test_insert_bill(self, test_db):
        bill = BillRecord(
            id="bill-1", document_id="doc-1", vendor_id="V-100", invoice_number="INV-100",
            status="finalized", amount=11000, created_at=RECEIVED,
        )
        test_db.insert_bill(bill)
        assert test_db.list_bills("doc-1") == [bill]


@pytest.mark.integration
class TestAuditLog:
    """Every state change leaves an audit row."""

    def test_document_audit_trail(self, test_db, make_document, found_lookup):
        doc = make_document()
        test_db.upsert_document(doc)
        test_db.save_match(DispositionEngine().evaluate(doc, found_lookup()))

        entries = test_db.get_audit_log("document", doc.id)
        assert [e["action"] for e in entries] == ["stored", "evaluated"]
        assert json.loads(entries[1]["detail"])["action"] == "auto_finalize"

    def test_resolution_records_actor(self, test_db):
        test_db.insert_hold(Hold(
            id="h1", document_id="doc-1", reason="duplicate", details="dup",
            created_at=RECEIVED,
        ))
        test_db.mark_hold_resolved("h1", RECEIVED, "jdoe", "discarded resend")

        entries = test_db.get_audit_log("hold", "h1")
        assert [e["action"] for e in entries] == ["hold_created", "hold_resolved"]
        assert entries[1]["actor"] == "jdoe"
