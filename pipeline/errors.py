"""
Exception kinds raised by the pipeline.

Extraction defects and duplicate submissions are NOT errors: they come back
from the disposition engine as hold dispositions.  Only contract violations
and collaborator outages are raised.
"""


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class ConfigError(PipelineError, ValueError):
    """Malformed configuration (unknown key, out-of-range value)."""


class NotFoundError(PipelineError, LookupError):
    """A referenced record does not exist or is no longer in the required state."""


class LookupUnavailableError(PipelineError):
    """
    An external collaborator (PO lookup, field-service API) could not give a
    definitive answer.  Retryable; the engine is never invoked until the
    lookup succeeds.
    """
