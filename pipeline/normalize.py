"""
Normalization helpers shared by every stage.

  - Vendor names -> equality keys
  - Free text    -> PO number (raw + 7-8 digit core)
  - Date strings -> ISO YYYY-MM-DD
  - Money        -> integer cents (and back to "$12.34" for display)

Money is integer cents everywhere in the pipeline; floats never leave this
module.
"""
import re
from datetime import date
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import NamedTuple, Optional, Union

# Corporate designators dropped from vendor names.  Matched as whole words
# only: "Vincent Supply" keeps its "inc".
CORPORATE_SUFFIXES = frozenset({"inc", "corp", "ltd", "llc", "limited", "corporation"})

PO_NUMBER_PATTERN = re.compile(r"\b\d{7,8}(?:-\d{1,3})?\b")
PO_CORE_PATTERN = re.compile(r"^\d{7,8}$")
_PO_SUFFIX = re.compile(r"-\d+$")

# Tried in order; the first pattern found anywhere in the text wins.
_DATE_PATTERNS = [
    (re.compile(r"(\d{4})-(\d{2})-(\d{2})"), "ymd"),
    (re.compile(r"(\d{2})/(\d{2})/(\d{4})"), "mdy"),
    (re.compile(r"(\d{2})-(\d{2})-(\d{4})"), "mdy"),
]

_SERVICE_STOCK_PATTERNS = [
    re.compile(r"service\s*stock", re.IGNORECASE),
    re.compile(r"stock\s*order", re.IGNORECASE),
    re.compile(r"inventory\s*stock", re.IGNORECASE),
    re.compile(r"shop\s*stock", re.IGNORECASE),
]

_CURRENCY_JUNK = re.compile(r"[^\d.\-]")
_LEADING_NUMBER = re.compile(r"-?(?:\d+\.?\d*|\.\d+)")


class PONumber(NamedTuple):
    raw: str     # as printed, e.g. "1234567-001"
    core: str    # release suffix removed, e.g. "1234567"


def normalize_vendor_name(name: Optional[str]) -> str:
    """
    Reduce a vendor name to an equality key.

    Lowercases, drops corporate designators (whole words), and strips every
    non-alphanumeric character.  "Ace Supply Inc." and "ACE SUPPLY" both
    become "acesupply".  A name made only of designators keeps its first word
    so it never collapses to an empty key.
    """
    if not name:
        return ""
    tokens = re.findall(r"[a-z0-9]+", name.lower())
    kept = [t for t in tokens if t not in CORPORATE_SUFFIXES] or tokens[:1]
    return "".join(kept)


def extract_po_number(text: Optional[str]) -> Optional[PONumber]:
    """
    Return the first PO reference in text, or None.

    A PO is 7-8 digits, optionally followed by "-" and a 1-3 digit
    line/release suffix.  Only the first match is used.
    """
    if not text:
        return None
    match = PO_NUMBER_PATTERN.search(text)
    if not match:
        return None
    raw = match.group(0)
    core = _PO_SUFFIX.sub("", raw)
    if not PO_CORE_PATTERN.match(core):
        return None
    return PONumber(raw=raw, core=core)


def parse_invoice_date(text: Optional[str]) -> Optional[str]:
    """
    Find a date in text and return it as YYYY-MM-DD.

    Tries ISO, then MM/DD/YYYY, then MM-DD-YYYY.  Day/month ambiguity is not
    resolved: the first pattern that matches a real calendar date wins.
    """
    if not text:
        return None
    for pattern, order in _DATE_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        if order == "ymd":
            year, month, day = match.groups()
        else:
            month, day, year = match.groups()
        try:
            return date(int(year), int(month), int(day)).isoformat()
        except ValueError:
            continue
    return None


def parse_currency(text: Union[str, int, float, None]) -> Optional[int]:
    """
    Parse a printed amount into integer cents, or None if there is no number.

    Everything except digits, "-" and "." is discarded first, so "$1,234.50"
    and "1234.5 CAD" both give 123450.  Half-cents round away from zero.
    """
    if text is None:
        return None
    cleaned = _CURRENCY_JUNK.sub("", str(text))
    match = _LEADING_NUMBER.match(cleaned)
    if not match:
        return None
    try:
        amount = Decimal(match.group(0))
    except InvalidOperation:
        return None
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_currency(cents: int) -> str:
    """Render integer cents for humans: 123450 -> "$1234.50"."""
    sign = "-" if cents < 0 else ""
    whole, frac = divmod(abs(cents), 100)
    return f"{sign}${whole}.{frac:02d}"


def is_service_stock(text: Optional[str]) -> bool:
    """True when text marks the order as service / shop stock (no job)."""
    if not text:
        return False
    return any(p.search(text) for p in _SERVICE_STOCK_PATTERNS)


def generate_invoice_filename(invoice_date: str, supplier: str, po_number: str) -> str:
    """Filename for the renamed per-invoice PDF: DATE_SUPPLIER_PO<po>.pdf."""
    date_str = invoice_date[:10]
    clean_supplier = re.sub(r"[^a-zA-Z0-9]", "_", supplier)[:30]
    return f"{date_str}_{clean_supplier}_PO{po_number}.pdf"
