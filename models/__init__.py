from .invoice import InvoiceDocument, LineItem, FileRef, Category, CATEGORIES
from .purchase_order import PurchaseOrder, Job, POLookupResult, JobSuggestion
from .vendor import Vendor, MatchedVendor
from .result import MatchResult, Reason, Disposition, HoldReason, HOLD_REASONS
from .hold import Hold, BillRecord

__all__ = [
    "InvoiceDocument", "LineItem", "FileRef", "Category", "CATEGORIES",
    "PurchaseOrder", "Job", "POLookupResult", "JobSuggestion",
    "Vendor", "MatchedVendor",
    "MatchResult", "Reason", "Disposition", "HoldReason", "HOLD_REASONS",
    "Hold", "BillRecord",
]
