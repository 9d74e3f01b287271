"""Error types raised by kubeitest.

Lookups that find nothing return ``None`` rather than raising.  Rejections
from the API server surface as ``kubernetes_asyncio`` ``ApiException`` and
are not wrapped.
"""

from __future__ import annotations


class KubeITestError(Exception):
    """Base class for kubeitest errors."""


class WaitTimeoutError(KubeITestError, TimeoutError):
    """Raised when a bounded wait does not observe its target in time.

    Attributes:
        description: What was being waited for.
        timeout: The deadline in seconds.
        last_observed: The last value seen before the deadline (if any).
    """

    def __init__(self, description: str, timeout: float, last_observed: object | None = None) -> None:
        self.description = description
        self.timeout = timeout
        self.last_observed = last_observed
        message = f"Timed out after {timeout:g}s waiting for {description}"
        if last_observed is not None:
            message += f" (last observed: {last_observed})"
        super().__init__(message)


class SpecDecodeError(KubeITestError, ValueError):
    """Raised when a textual specification or payload cannot be decoded."""


class ConsistencyCheckError(KubeITestError, AssertionError):
    """Raised when a read-only consistency check on cluster pods fails."""
