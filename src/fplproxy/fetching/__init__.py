"""
fplproxy Fetching Package

This package provides the infrastructure for fetching data from the FPL API,
including caching, retries with backoff, rate limit handling, HTTP client
management and error tracking.

Components:
- constants: Common constants for timeouts, cache durations, retries, etc.
- cache_manager: TTL cache with per resource family TTLs
- http_client: Async HTTP client with header profile and error classification
- rate_limit_manager: Retry-After parsing and rate limit tracking
- resilient_fetcher: Cache-first fetching with the retry loop
- error_tracker: Attempt counters and rolling error log
- cancellation: Cooperative cancellation of in-flight fetches
"""

from .constants import (
    FPL_API_BASE_URL,
    UPSTREAM_TIMEOUT,
    DEFAULT_MAX_RETRIES,
    DEFAULT_BASE_DELAY_MS,
    LIVE_BASE_DELAY_MS,
    ERROR_BUFFER_SIZE
)

from .cache_manager import CacheEntry, CacheKey, CacheManager, ResourceFamily, TTLPolicy
from .cancellation import SupersedingRequests, until_cancelled
from .error_tracker import ErrorRecord, ErrorTracker
from .exceptions import (
    ErrorKind,
    MalformedResponse,
    RequestCancelled,
    TransportFailure,
    UpstreamError,
    UpstreamForbidden,
    UpstreamHTTPError,
    UpstreamRateLimited,
    UpstreamServerError,
    UpstreamUnavailable
)
from .headers import HeaderProfile
from .http_client import HttpClientManager
from .rate_limit_manager import RateLimitManager, parse_retry_after_ms
from .resilient_fetcher import ResilientFetcher, ResourceDescriptor, RetryPolicy
from .results import FetchCancelled, FetchFailed, FetchResult, FetchSuccess

__all__ = [
    'FPL_API_BASE_URL',
    'UPSTREAM_TIMEOUT',
    'DEFAULT_MAX_RETRIES',
    'DEFAULT_BASE_DELAY_MS',
    'LIVE_BASE_DELAY_MS',
    'ERROR_BUFFER_SIZE',
    'CacheEntry',
    'CacheKey',
    'CacheManager',
    'ResourceFamily',
    'TTLPolicy',
    'SupersedingRequests',
    'until_cancelled',
    'ErrorRecord',
    'ErrorTracker',
    'ErrorKind',
    'MalformedResponse',
    'RequestCancelled',
    'TransportFailure',
    'UpstreamError',
    'UpstreamForbidden',
    'UpstreamHTTPError',
    'UpstreamRateLimited',
    'UpstreamServerError',
    'UpstreamUnavailable',
    'HeaderProfile',
    'HttpClientManager',
    'RateLimitManager',
    'parse_retry_after_ms',
    'ResilientFetcher',
    'ResourceDescriptor',
    'RetryPolicy',
    'FetchCancelled',
    'FetchFailed',
    'FetchResult',
    'FetchSuccess'
]
