from datetime import datetime
from pydantic import BaseModel, Field
from typing import Optional, List, Literal

from .result import HoldReason


class Hold(BaseModel):
    """
    A document blocked from automatic processing.

    Holds are never deleted.  Resolution is a one-way transition:
    resolved_at / resolved_by / resolution are set together, exactly once.
    """
    id: str
    document_id: str
    reason: HoldReason
    details: str
    suggested_actions: List[str] = Field(default_factory=list)
    created_at: datetime
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolution: Optional[str] = None

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None


BillStatus = Literal["finalized", "draft", "held"]


class BillRecord(BaseModel):
    """A bill created (or drafted) in the field-service system for a document."""
    id: str
    document_id: str
    vendor_id: str
    invoice_number: str
    status: BillStatus
    amount: int                              # cents
    external_bill_id: Optional[str] = None
    pdf_path: Optional[str] = None
    created_at: datetime
