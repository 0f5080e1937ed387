"""
Vendor matching module.

Identifies the invoice supplier against the vendor master list using two
strategies in priority order:
  1. Normalized name exact match (name or any alias)
  2. Fuzzy name match (using rapidfuzz)
"""
import csv
import logging
from pathlib import Path
from typing import Optional

from rapidfuzz import fuzz

from models.vendor import MatchedVendor, Vendor
from .normalize import normalize_vendor_name

logger = logging.getLogger(__name__)

# Minimum fuzzy score (0-100) to accept a name match
FUZZY_THRESHOLD = 85


class VendorMatcher:
    """
    Loads the vendor master list from CSV and matches supplier names.

    CSV format (vendors.csv):
      id, name, aliases
      aliases: pipe-separated alternative names, e.g. "Ferguson|Ferguson Enterprises"
    """

    def __init__(self, vendors_csv: str | Path, fuzzy_threshold: int = FUZZY_THRESHOLD):
        self.fuzzy_threshold = fuzzy_threshold
        self.vendors: list[Vendor] = []
        self._by_key: dict[str, Vendor] = {}
        self._load(Path(vendors_csv))

    def _load(self, path: Path) -> None:
        if not path.exists():
            logger.warning("Vendors CSV not found: %s; vendor matching disabled", path)
            return
        with open(path, newline="", encoding="utf-8") as f:
            for row in csv.DictReader(f):
                aliases_raw = row.get("aliases") or ""
                vendor = Vendor(
                    id=row["id"].strip(),
                    name=row["name"].strip(),
                    aliases=[a.strip() for a in aliases_raw.split("|") if a.strip()],
                )
                self.vendors.append(vendor)
                for name in vendor.all_names:
                    key = normalize_vendor_name(name)
                    if key:
                        self._by_key.setdefault(key, vendor)
        logger.info("Loaded %d vendors from %s", len(self.vendors), path.name)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def match(self, supplier_name: Optional[str]) -> Optional[MatchedVendor]:
        """
        Return the best MatchedVendor for a raw supplier name, or None if
        no vendor could be identified.
        """
        if not self.vendors:
            return None

        key = normalize_vendor_name(supplier_name)
        if not key:
            logger.debug("Document has no supplier name; skipping vendor match")
            return None

        vendor = self._by_key.get(key)
        if vendor is not None:
            logger.info("Vendor matched by name: %s -> %s", supplier_name, vendor.name)
            return MatchedVendor(
                vendor_id=vendor.id,
                vendor_name=vendor.name,
                match_method="name_exact",
                confidence=1.0,
            )

        return self._fuzzy_name_match(key)

    def _fuzzy_name_match(self, key: str) -> Optional[MatchedVendor]:
        """Use rapidfuzz to find the best name match above the threshold."""
        best_score = 0.0
        best_vendor: Optional[Vendor] = None

        for candidate, vendor in self._by_key.items():
            score = fuzz.token_sort_ratio(key, candidate)
            if score > best_score:
                best_score = score
                best_vendor = vendor

        if best_vendor is not None and best_score >= self.fuzzy_threshold:
            logger.info(
                "Vendor fuzzy matched: '%s' -> '%s' (score=%d)",
                key, best_vendor.name, best_score,
            )
            return MatchedVendor(
                vendor_id=best_vendor.id,
                vendor_name=best_vendor.name,
                match_method="name_fuzzy",
                confidence=round(best_score / 100.0, 4),
            )

        logger.debug("Best fuzzy match score was %d (threshold=%d)", best_score, self.fuzzy_threshold)
        return None
