"""
Pytest configuration and shared fixtures for the apmatch test suite.
"""
import json
import os
import shutil
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Generator

import pytest

PROJECT_ROOT = Path(__file__).parent.parent
os.chdir(PROJECT_ROOT)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for test files."""
    tmp_path = tempfile.mkdtemp(prefix="apmatch_test_")
    yield Path(tmp_path)
    shutil.rmtree(tmp_path, ignore_errors=True)


@pytest.fixture
def sample_vendors_csv(temp_dir: Path) -> Path:
    """Create a sample vendor master CSV file."""
    csv_path = temp_dir / "vendors.csv"
    content = """id,name,aliases
V-100,Ace Supply Inc,ACE SUPPLY|Ace Plumbing Supply
V-200,Ferguson Enterprises LLC,Ferguson
V-300,Vincent Mechanical Supply,"""
    csv_path.write_text(content)
    return csv_path


@pytest.fixture
def sample_po_csv(temp_dir: Path) -> Path:
    """Create a sample purchase orders CSV file."""
    csv_path = temp_dir / "purchase_orders.csv"
    content = """po_number,po_id,vendor_id,job_id,lead_tech_id,truck_location_id,total
1234567,PO-1,V-100,J-1,T-1,TRK-1,$109.50
2345678,PO-2,V-200,J-2,,TRK-2,$500.00
3456789,PO-3,V-100,,,,"$1,000.00"
12345678,PO-4,V-300,J-4,T-4,TRK-4,$50.00"""
    csv_path.write_text(content)
    return csv_path


@pytest.fixture
def sample_jobs_csv(temp_dir: Path) -> Path:
    """Create a sample jobs CSV file."""
    csv_path = temp_dir / "jobs.csv"
    content = """job_id,customer_name,address,job_date,amount
J-10,Henderson Residence,42 Maple Street,2024-03-10,$110.00
J-11,Oakridge Mall,900 Commerce Blvd,2024-01-02,$5000.00
J-12,Lakeview Dental,17 Harbour Road,2024-03-14,$300.00"""
    csv_path.write_text(content)
    return csv_path


@pytest.fixture
def test_config(temp_dir: Path, sample_vendors_csv, sample_po_csv, sample_jobs_csv) -> "Config":
    """Provide a test configuration with isolated directories and no retry delays."""
    from config import Config

    return Config.load(
        settings_file=temp_dir / "pipeline_settings.json",
        output_dir=temp_dir / "output",
        db_path=temp_dir / "output" / "apmatch.db",
        vendors_csv=sample_vendors_csv,
        po_csv=sample_po_csv,
        jobs_csv=sample_jobs_csv,
        teams_webhook_url=None,
        ai_categorization_enabled=False,
        retry_base_delay=0.0,
        retry_max_attempts=3,
    )


@pytest.fixture
def test_db(test_config) -> "Database":
    """Provide a test database instance."""
    from pipeline.database import Database
    return Database(test_config.db_path)


@pytest.fixture
def make_document() -> Callable[..., "InvoiceDocument"]:
    """
    Factory for InvoiceDocument.  The defaults describe a clean invoice:
    Ace Supply, INV-100, PO 1234567, 100.00 + 5.00 GST + 5.00 PST = 110.00.
    """
    from models.invoice import InvoiceDocument, LineItem

    def _make(**overrides) -> InvoiceDocument:
        fields = {
            "supplier_name_raw": "Ace Supply Inc",
            "supplier_name_normalized": "acesupply",
            "vendor_id": "V-100",
            "invoice_number": "INV-100",
            "invoice_date": "2024-03-15",
            "received_at": datetime(2024, 3, 15, 9, 0, tzinfo=timezone.utc),
            "total_before_tax": 10000,
            "gst": 500,
            "pst": 500,
            "total": 11000,
            "po_number_raw": "1234567",
            "po_number_core": "1234567",
            "extraction_confidence": 0.95,
            "raw_text": "ACE SUPPLY INC  Invoice INV-100  PO 1234567",
            "line_items": [
                LineItem(description="1/2in copper pipe", quantity=10,
                         unit_price=1000, total=10000, category="PH"),
            ],
        }
        fields.update(overrides)
        return InvoiceDocument(**fields)

    return _make


@pytest.fixture
def found_lookup() -> Callable[..., "POLookupResult"]:
    """Factory for a found PO lookup (ordered 109.50, job with tech and truck)."""
    from models.purchase_order import POLookupResult

    def _make(**overrides) -> POLookupResult:
        fields = {
            "found": True,
            "po_number": "1234567",
            "po_id": "PO-1",
            "ordered_total": 10950,
            "job_id": "J-1",
            "lead_tech_id": "T-1",
            "truck_location_id": "TRK-1",
            "vendor_id": "V-100",
        }
        fields.update(overrides)
        return POLookupResult(**fields)

    return _make


@pytest.fixture
def sample_extraction_payload() -> dict:
    """Return a sample extraction payload as the OCR stage writes it."""
    return {
        "supplier_name": "ACE SUPPLY",
        "invoice_number": "INV-2001",
        "invoice_date": "03/15/2024",
        "po_number": "PO# 1234567-001",
        "subtotal": "$100.00",
        "gst": "$5.00",
        "pst": "$5.00",
        "total": "$110.00",
        "confidence": 0.92,
        "page_count": 1,
        "received_at": "2024-03-15T09:00:00+00:00",
        "raw_text": "Ace Supply Inc\nInvoice INV-2001\nPO# 1234567-001\nTotal $110.00",
        "line_items": [
            {
                "sku": "CU-050",
                "description": "1/2in copper pipe",
                "quantity": "10",
                "unit_price": "$10.00",
                "total": "$100.00",
            }
        ],
    }


@pytest.fixture
def payload_dir(temp_dir: Path, sample_extraction_payload: dict) -> Path:
    """A directory with two good payloads and one malformed file."""
    directory = temp_dir / "extracted"
    directory.mkdir()
    (directory / "a_invoice.json").write_text(json.dumps(sample_extraction_payload))
    second = dict(sample_extraction_payload, invoice_number="INV-2002", po_number="", raw_text="")
    (directory / "b_invoice.json").write_text(json.dumps(second))
    (directory / "c_broken.json").write_text("{not json")
    return directory


class RecordingNotifier:
    """Notifier double that remembers every call."""

    def __init__(self):
        self.holds = []
        self.variances = []

    def hold_created(self, document, hold):
        self.holds.append((document, hold))

    def variance_alert(self, document, match):
        self.variances.append((document, match))


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def processor(test_config, test_db, notifier) -> "DocumentProcessor":
    """A DocumentProcessor wired to the sample CSVs and a recording notifier."""
    from pipeline.processor import DocumentProcessor
    return DocumentProcessor(test_config, db=test_db, notifier=notifier)


# Configure pytest markers
def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
