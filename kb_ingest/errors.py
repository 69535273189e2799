"""
Error taxonomy for calls to the external generation service.

Every failure of a generation call is reduced to one ``ErrorKind``. The kind
decides whether retrying can help:

- ``auth``        bad credentials; never retried
- ``rate_limit``  provider throttling; retried with backoff
- ``token_limit`` input or output too large; never retried, needs a smaller input
- ``transient``   5xx, network and timeout failures; retried with backoff
- ``unknown``     anything else; retried conservatively
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    TOKEN_LIMIT = "token_limit"
    TRANSIENT = "transient"
    UNKNOWN = "unknown"


NON_RETRYABLE_KINDS = frozenset({ErrorKind.AUTH, ErrorKind.TOKEN_LIMIT})


class IngestError(Exception):
    """Base class for ingestion errors."""


class GenerationError(IngestError):
    """Raised by generation adapters, optionally carrying an HTTP status code."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class BreakerOpenError(IngestError):
    """Raised when the circuit breaker rejects a call without attempting it."""

    def __init__(self, name: str, retry_in_s: float) -> None:
        self.name = name
        self.retry_in_s = retry_in_s
        super().__init__(
            f"Circuit breaker '{name}' open, retry in {math.ceil(max(retry_in_s, 0.0))}s"
        )


class CallTimeoutError(IngestError):
    """Raised when an external call does not finish within the caller's deadline."""


class MalformedResponseError(IngestError):
    """Raised when a generation response cannot be parsed as JSON."""


class StoreError(IngestError):
    """Raised when chunk, index or manifest output cannot be written or read."""


_AUTH_MARKERS = ("api key", "unauthorized", "forbidden")
_RATE_LIMIT_MARKERS = ("rate limit", "too many requests", "quota")
_TOKEN_LIMIT_MARKERS = ("token", "context length", "maximum context", "content too large")


def status_code_of(err: BaseException) -> Optional[int]:
    """Find an HTTP status code attached to an exception, if any."""
    for attr in ("status_code", "status", "http_status"):
        value = getattr(err, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    response = getattr(err, "response", None)
    value = getattr(response, "status_code", None)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def classify_error(err: BaseException) -> ErrorKind:
    """
    Classify a failed external call.

    Status codes are checked together with message substrings, in order of
    specificity: auth, rate limit, token limit, then 5xx.
    """
    message = str(err).lower()
    status = status_code_of(err)

    if status in (401, 403) or any(marker in message for marker in _AUTH_MARKERS):
        return ErrorKind.AUTH
    if status == 429 or any(marker in message for marker in _RATE_LIMIT_MARKERS):
        return ErrorKind.RATE_LIMIT
    if status == 413 or any(marker in message for marker in _TOKEN_LIMIT_MARKERS):
        return ErrorKind.TOKEN_LIMIT
    if status is not None and status >= 500:
        return ErrorKind.TRANSIENT
    if isinstance(err, (CallTimeoutError, ConnectionError, TimeoutError)):
        return ErrorKind.TRANSIENT
    return ErrorKind.UNKNOWN


def is_retryable(kind: ErrorKind) -> bool:
    """Whether a failure of this kind may be retried."""
    return kind not in NON_RETRYABLE_KINDS
