"""
Billed-vs-ordered variance.  All amounts are integer cents.
"""
from typing import Literal

VarianceBand = Literal["within_tolerance", "draft_band", "exceeded"]


def calculate_variance(billed: int, ordered: int) -> int:
    """Signed variance: positive when the supplier billed more than ordered."""
    return billed - ordered


def is_within_variance(billed: int, ordered: int, max_variance: int) -> bool:
    return abs(calculate_variance(billed, ordered)) <= max_variance


def classify_variance(variance: int, tolerance: int, draft_band_multiplier: float) -> VarianceBand:
    """
    Place a variance in one of three bands:
      |v| <= tolerance                         -> within_tolerance
      |v| <= tolerance * draft_band_multiplier -> draft_band
      otherwise                                -> exceeded
    """
    magnitude = abs(variance)
    if magnitude <= tolerance:
        return "within_tolerance"
    if magnitude <= tolerance * draft_band_multiplier:
        return "draft_band"
    return "exceeded"
