from pydantic import BaseModel
from typing import List


class Vendor(BaseModel):
    """
    A known vendor from the vendor master list.
    aliases is a list of alternative names / trading names used for matching.
    """
    id: str
    name: str
    aliases: List[str] = []

    @property
    def all_names(self) -> List[str]:
        """Return the canonical name plus all aliases for matching."""
        return [self.name] + self.aliases


class MatchedVendor(BaseModel):
    """The vendor from the master list matched against a document."""
    vendor_id: str
    vendor_name: str
    match_method: str                       # "name_exact" or "name_fuzzy"
    confidence: float                       # 0-1
