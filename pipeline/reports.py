"""
Operational reports over the pipeline database.
"""
import logging
from collections import Counter
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from .database import Database
from .normalize import format_currency

logger = logging.getLogger(__name__)

TOP_VENDORS = 5
TOP_VARIANCES = 10


def _day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def daily_summary(db: Database, day: Optional[date] = None) -> dict:
    """
    Activity for one UTC day: documents processed, bills finalized and
    drafted, holds created (by reason), failures, and the money involved.
    """
    day = day or datetime.now(timezone.utc).date()
    since, until = _day_bounds(day)

    documents = db.document_totals_between(since, until)
    finalized = db.count_bills_between(since, until, "finalized")
    drafted = db.count_bills_between(since, until, "draft")
    hold_reasons = db.hold_counts_by_reason(since=since, until=until)
    failures = db.count_failures_between(since, until)

    processed = len(documents)
    total_amount = sum(d["total"] or 0 for d in documents)

    by_vendor: Counter = Counter()
    for d in documents:
        by_vendor[d["vendor_key"] or "unknown"] += d["total"] or 0

    return {
        "date": day.isoformat(),
        "processed": processed,
        "finalized": finalized,
        "drafted": drafted,
        "held": sum(hold_reasons.values()),
        "failed": failures,
        "success_rate": round(finalized / processed * 100, 1) if processed else 0.0,
        "total_amount": format_currency(total_amount),
        "top_vendors": [
            {"vendor": vendor, "amount": format_currency(amount)}
            for vendor, amount in by_vendor.most_common(TOP_VENDORS)
        ],
        "hold_reasons": dict(sorted(hold_reasons.items(), key=lambda kv: (-kv[1], kv[0]))),
    }


def variance_analysis(db: Database, threshold_cents: int = 2500) -> dict:
    """Every evaluated document with a non-zero variance, largest first."""
    rows = db.nonzero_variances()
    rows.sort(key=lambda r: abs(r["variance"]), reverse=True)

    total = sum(r["variance"] for r in rows)
    over = [r for r in rows if abs(r["variance"]) > threshold_cents]

    return {
        "count": len(rows),
        "over_threshold": len(over),
        "threshold": format_currency(threshold_cents),
        "total_variance": format_currency(total),
        "average_variance": format_currency(round(total / len(rows))) if rows else format_currency(0),
        "top": [
            {
                "document_id": r["document_id"],
                "supplier": r["supplier_name"],
                "invoice_number": r["invoice_number"],
                "total": format_currency(r["total"] or 0),
                "variance": format_currency(r["variance"]),
            }
            for r in rows[:TOP_VARIANCES]
        ],
    }
