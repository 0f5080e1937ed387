"""
Integration tests for daily summary and variance reports.
"""
from datetime import date, datetime, timezone

import pytest

from pipeline.reports import daily_summary, variance_analysis


@pytest.fixture
def processed(processor, make_document):
    """One finalized, one drafted and one held document."""
    processor.process(make_document(invoice_number="INV-1"))
    processor.process(make_document(invoice_number="INV-2", total_before_tax=13000, total=14000))
    processor.process(make_document(invoice_number="INV-3", po_number_raw=None, po_number_core=None))
    return processor


@pytest.mark.integration
class TestDailySummary:
    """Tests for daily_summary."""

    def test_counts(self, processed, test_db):
        report = daily_summary(test_db, datetime.now(timezone.utc).date())

        assert report["processed"] == 3
        assert report["finalized"] == 1
        assert report["drafted"] == 1
        assert report["held"] == 1
        assert report["failed"] == 0
        assert report["success_rate"] == pytest.approx(33.3)
        assert report["total_amount"] == "$360.00"
        assert report["hold_reasons"] == {"missing_po": 1}
        assert report["top_vendors"] == [{"vendor": "V-100", "amount": "$360.00"}]

    def test_other_day_is_empty(self, processed, test_db):
        report = daily_summary(test_db, date(2000, 1, 1))
        assert report["processed"] == 0
        assert report["success_rate"] == 0.0
        assert report["total_amount"] == "$0.00"


@pytest.mark.integration
class TestVarianceAnalysis:
    """Tests for variance_analysis."""

    def test_variances(self, processed, test_db):
        report = variance_analysis(test_db, threshold_cents=2500)

        assert report["count"] == 2
        assert report["over_threshold"] == 1
        assert report["total_variance"] == "$31.00"
        assert report["average_variance"] == "$15.50"
        assert [r["variance"] for r in report["top"]] == ["$30.50", "$0.50"]

    def test_empty(self, test_db):
        report = variance_analysis(test_db)
        assert report["count"] == 0
        assert report["top"] == []
