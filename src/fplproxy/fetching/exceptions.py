"""
Exceptions raised by the fetching package.

Upstream failures are classified into specific exception types so the retry
loop can react to them (rate limit wait vs. standard backoff). None of these
leave the resilient fetcher except UpstreamUnavailable, which carries the last
classified error once all retries are exhausted.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Classification of a failed upstream attempt."""
    RATE_LIMITED = 'rate_limited'
    SERVER_ERROR = 'server_error'
    FORBIDDEN = 'forbidden'
    HTTP_ERROR = 'http_error'
    MALFORMED_RESPONSE = 'malformed_response'
    TRANSPORT_FAILURE = 'transport_failure'
    CANCELLED = 'cancelled'
    UNAVAILABLE = 'unavailable'


# Kinds an end user may safely retry later
TRANSIENT_KINDS = frozenset({
    ErrorKind.RATE_LIMITED,
    ErrorKind.SERVER_ERROR,
    ErrorKind.FORBIDDEN,
    ErrorKind.MALFORMED_RESPONSE,
    ErrorKind.TRANSPORT_FAILURE,
})


class UpstreamError(Exception):
    """
    Base class for a single failed upstream attempt.

    Attributes:
        message: Explanation of the error
        status: HTTP status code, None if no response was received
        url: Upstream URL of the failed attempt
    """
    kind = ErrorKind.HTTP_ERROR

    def __init__(self, message: str, status: Optional[int] = None,
                 url: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.url = url

    def __str__(self):
        if self.status is not None:
            return f"{self.message} (HTTP {self.status})"
        return self.message


class UpstreamRateLimited(UpstreamError):
    """Upstream answered 429. retry_after_ms is None when no usable header was sent."""
    kind = ErrorKind.RATE_LIMITED

    def __init__(self, message: str, status: Optional[int] = 429,
                 url: Optional[str] = None, retry_after_ms: Optional[float] = None):
        super().__init__(message, status, url)
        self.retry_after_ms = retry_after_ms


class UpstreamServerError(UpstreamError):
    """Upstream answered with a 5xx status."""
    kind = ErrorKind.SERVER_ERROR


class UpstreamForbidden(UpstreamError):
    """Upstream answered 403, often intermittently from bot detection."""
    kind = ErrorKind.FORBIDDEN


class UpstreamHTTPError(UpstreamError):
    """Any other HTTP error status."""
    kind = ErrorKind.HTTP_ERROR


class MalformedResponse(UpstreamError):
    """A response arrived but is not JSON or lacks the expected top-level shape."""
    kind = ErrorKind.MALFORMED_RESPONSE


class TransportFailure(UpstreamError):
    """Network or timeout error, no HTTP response at all."""
    kind = ErrorKind.TRANSPORT_FAILURE


class RequestCancelled(Exception):
    """
    The caller signalled cancellation of an in-flight fetch.

    This is control flow, not a failure: the resilient fetcher turns it into
    a FetchCancelled result and never counts or records it.
    """
    kind = ErrorKind.CANCELLED


class UpstreamUnavailable(Exception):
    """
    Raised when every retry against the upstream failed.

    Attributes:
        url: Upstream URL that could not be fetched
        last_error: The classified error of the final attempt
        attempts: Number of attempts made
    """
    kind = ErrorKind.UNAVAILABLE

    def __init__(self, url: str, last_error: UpstreamError, attempts: int):
        super().__init__(
            f"Failed to fetch {url} after {attempts} attempts: {last_error}"
        )
        self.url = url
        self.last_error = last_error
        self.attempts = attempts

    @property
    def status(self) -> Optional[int]:
        """HTTP status of the last attempt, if any."""
        return self.last_error.status

    @property
    def retryable(self) -> bool:
        """True if the end user may retry later with a reasonable chance of success."""
        return self.last_error.kind in TRANSIENT_KINDS

    def to_error_body(self, error: Optional[str] = None) -> dict:
        """Build the JSON body a routing layer returns with an HTTP 500."""
        return {
            'error': error or 'Failed to fetch data from the FPL API',
            'details': str(self.last_error),
            'status': self.status,
            'retryable': self.retryable
        }
