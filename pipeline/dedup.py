"""
Duplicate-submission detection.

The key is vendor identity + invoice number with case and whitespace
removed from the invoice number.  Whether a key has been seen inside the
window is decided by the database (Database.reserve_dedup_key), which does
an atomic insert-if-absent so two racing documents cannot both pass.
"""
import re
from typing import Optional

from pydantic import BaseModel

KEY_SEPARATOR = ":"

_WHITESPACE = re.compile(r"\s+")


def dedup_key(vendor_id: str, invoice_number: str) -> str:
    """dedup_key("V1", "INV 001") == dedup_key("V1", "inv001") == "V1:inv001"."""
    return f"{vendor_id}{KEY_SEPARATOR}{_WHITESPACE.sub('', invoice_number.lower())}"


class DedupCheck(BaseModel):
    """Outcome of reserving a dedup key for one document."""
    key: str
    is_duplicate: bool
    prior_document_id: Optional[str] = None
    first_seen_at: Optional[str] = None     # ISO-8601, anchor of the window
