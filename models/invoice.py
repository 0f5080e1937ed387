import re
import uuid
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator


Category = Literal["PH", "HVAC", "UNKNOWN"]
CATEGORIES: tuple[str, ...] = ("PH", "HVAC", "UNKNOWN")

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_PO_CORE = re.compile(r"^\d{7,8}$")
_SHA256 = re.compile(r"^[a-f0-9]{64}$")


class FileRef(BaseModel):
    """A stored PDF (the split source page range or the renamed copy)."""
    path: str
    url: Optional[str] = None
    size: int = Field(ge=0)
    sha256: str

    @field_validator("sha256")
    @classmethod
    def _check_sha256(cls, v: str) -> str:
        if not _SHA256.match(v):
            raise ValueError("sha256 must be 64 lowercase hex characters")
        return v


class LineItem(BaseModel):
    """A single billed line on a supplier invoice. Money is integer cents."""
    sku: Optional[str] = None
    description: str = ""
    quantity: float = 0             # negative for credits / returns
    unit_price: Optional[int] = None
    total: Optional[int] = None
    category: Category = "UNKNOWN"
    in_pricebook: bool = False


class InvoiceDocument(BaseModel):
    """
    One parsed supplier invoice, as handed over by the extraction stage.

    All money fields are integer cents.  Required fields are Optional here on
    purpose: a partially-read document must still be representable so that
    the disposition engine can route it to an 'unreadable' hold.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))

    supplier_name_raw: str = ""
    supplier_name_normalized: str = ""
    vendor_id: Optional[str] = None         # set once matched to the vendor master

    invoice_number: Optional[str] = None    # "Vendor Document #"
    invoice_date: Optional[str] = None      # YYYY-MM-DD
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    total_before_tax: int = 0
    gst: int = 0
    pst: int = 0
    total: Optional[int] = None

    po_number_raw: Optional[str] = None     # may carry a -001 release suffix
    po_number_core: Optional[str] = None    # 7-8 digits

    is_service_stock: bool = False
    is_credit: bool = False                 # explicitly a credit memo / return
    extraction_confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    raw_text: str = ""

    line_items: List[LineItem] = Field(default_factory=list)
    page_count: int = Field(default=1, ge=1)
    source_pdf: Optional[FileRef] = None
    renamed_pdf: Optional[FileRef] = None

    @field_validator("invoice_date")
    @classmethod
    def _check_invoice_date(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not _ISO_DATE.match(v):
            raise ValueError("invoice_date must be YYYY-MM-DD")
        return v

    @field_validator("po_number_core")
    @classmethod
    def _check_po_core(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not _PO_CORE.match(v):
            raise ValueError("po_number_core must be 7 or 8 digits")
        return v

    @field_validator("received_at")
    @classmethod
    def _ensure_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    @property
    def dedup_vendor_id(self) -> str:
        """Vendor identity used in the dedup key: master id, else normalized name."""
        return self.vendor_id or self.supplier_name_normalized

    @property
    def computed_total(self) -> int:
        return self.total_before_tax + self.gst + self.pst

    def totals_consistent(self) -> bool:
        """True when total == total_before_tax + gst + pst (or total is unknown)."""
        return self.total is None or self.total == self.computed_total

    @property
    def has_negative_quantity(self) -> bool:
        return any(item.quantity < 0 for item in self.line_items)
