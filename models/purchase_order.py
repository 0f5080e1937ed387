from pydantic import BaseModel, Field, model_validator
from typing import Literal, Optional, List


SuggestionBasis = Literal["name", "address", "date_amount"]

# Tie-break order when two suggestions carry the same confidence
BASIS_PRIORITY: dict[str, int] = {"name": 0, "address": 1, "date_amount": 2}


class JobSuggestion(BaseModel):
    """A fuzzy job candidate offered when the PO could not be resolved."""
    job_id: str
    confidence: float = Field(ge=0.0, le=1.0)
    basis: SuggestionBasis


class PurchaseOrder(BaseModel):
    """
    A Purchase Order as held by the field-service system.
    po_number is the 7-8 digit core used as the lookup key.
    """
    po_number: str
    po_id: Optional[str] = None
    vendor_id: Optional[str] = None
    job_id: Optional[str] = None
    lead_tech_id: Optional[str] = None
    truck_location_id: Optional[str] = None
    total: int                               # ordered total, cents


class Job(BaseModel):
    """A field-service job, used only to rank suggestions."""
    job_id: str
    customer_name: Optional[str] = None
    address: Optional[str] = None
    job_date: Optional[str] = None           # YYYY-MM-DD
    amount: Optional[int] = None             # cents


class POLookupResult(BaseModel):
    """
    Definitive answer from the PO lookup collaborator.

    A lookup that could not reach the field-service system is not a result:
    the collaborator raises LookupUnavailableError instead.
    """
    found: bool
    po_number: Optional[str] = None
    po_id: Optional[str] = None
    ordered_total: Optional[int] = None
    job_id: Optional[str] = None
    lead_tech_id: Optional[str] = None
    truck_location_id: Optional[str] = None
    vendor_id: Optional[str] = None
    suggestions: List[JobSuggestion] = Field(default_factory=list)

    @model_validator(mode="after")
    def _found_needs_total(self) -> "POLookupResult":
        if self.found and self.ordered_total is None:
            raise ValueError("a found PO must carry its ordered_total")
        return self

    @classmethod
    def not_found(cls, suggestions: Optional[List[JobSuggestion]] = None) -> "POLookupResult":
        return cls(found=False, suggestions=suggestions or [])

    @classmethod
    def from_po(cls, po: PurchaseOrder) -> "POLookupResult":
        return cls(
            found=True,
            po_number=po.po_number,
            po_id=po.po_id,
            ordered_total=po.total,
            job_id=po.job_id,
            lead_tech_id=po.lead_tech_id,
            truck_location_id=po.truck_location_id,
            vendor_id=po.vendor_id,
        )
