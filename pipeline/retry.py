"""
Retry policy applied by the processor around external collaborator calls.

The delay before attempt n+1 is base_delay * multiplier**(n-1), so with the
defaults (1s, x2) the waits are 1s, 2s, 4s, 8s.  The last error is re-raised
once max_attempts is exhausted.
"""
import logging
from dataclasses import dataclass
from typing import Callable, TypeVar

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .errors import LookupUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 5
    base_delay: float = 1.0
    multiplier: float = 2.0
    retry_on: tuple[type[BaseException], ...] = (LookupUnavailableError,)

    def call(self, fn: Callable[..., T], *args, **kwargs) -> T:
        """Invoke fn, retrying on the configured exception types."""
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.base_delay, exp_base=self.multiplier, min=0),
            retry=retry_if_exception_type(self.retry_on),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        return retrying(fn, *args, **kwargs)
