from .categorizer import Categorizer, categorize_item
from .dedup import DedupCheck, dedup_key
from .disposition import DispositionEngine, evaluate
from .errors import ConfigError, LookupUnavailableError, NotFoundError, PipelineError
from .normalize import (
    extract_po_number,
    format_currency,
    normalize_vendor_name,
    parse_currency,
    parse_invoice_date,
)
from .variance import calculate_variance, is_within_variance

__all__ = [
    "Categorizer", "categorize_item", "DedupCheck", "dedup_key",
    "DispositionEngine", "evaluate", "ConfigError", "LookupUnavailableError",
    "NotFoundError", "PipelineError", "extract_po_number", "format_currency",
    "normalize_vendor_name", "parse_currency", "parse_invoice_date",
    "calculate_variance", "is_within_variance",
]
