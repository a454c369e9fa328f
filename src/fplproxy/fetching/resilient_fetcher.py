"""
Resilient fetcher: cache first, then a retried upstream call.

This class consolidates the caching, backoff, rate limit handling and error
tracking for every upstream resource:

1. Serve a fresh cache entry if there is one
2. Otherwise call the upstream, retrying with exponential backoff and jitter
3. Wait for Retry-After on 429 instead of backing off
4. Write successful payloads through to the cache
5. Count attempts and keep a rolling log of failures
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, Union
import logging

from .cache_manager import CacheKey, CacheManager
from .cancellation import raise_if_cancelled, until_cancelled
from .constants import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_BASE_DELAY_MS,
    DEFAULT_JITTER_MAX_MS,
    RATE_LIMIT_FALLBACK_WAIT_MS,
    RATE_LIMIT_MIN_WAIT_MS
)
from .error_tracker import ErrorTracker
from .exceptions import (
    ErrorKind,
    MalformedResponse,
    RequestCancelled,
    UpstreamError,
    UpstreamRateLimited,
    UpstreamUnavailable
)
from .http_client import HttpClientManager
from .results import FetchCancelled, FetchFailed, FetchResult, FetchSuccess

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResourceDescriptor:
    """
    Describes one upstream call.

    Attributes:
        url: Fully formed upstream URL
        method: HTTP method; only GET responses are cached
        body: JSON body for non-GET requests
        label: Resource name used in logs and error records
        expected_fields: Top-level fields that must be present and hold arrays
        expect_array: The whole document must be a JSON array
        base_delay_ms: Overrides the policy base delay for this call site
        relay_url: Same resource behind a relay, tried once before the
            retried direct call
    """
    url: str
    method: str = 'GET'
    body: Any = None
    label: str = ''
    expected_fields: Tuple[str, ...] = ()
    expect_array: bool = False
    base_delay_ms: Optional[float] = None
    relay_url: Optional[str] = None

    @property
    def resource(self) -> str:
        return self.label or self.url

    def validate(self, payload: Any):
        """Raise MalformedResponse if ``payload`` lacks the expected shape."""
        if payload is None:
            raise MalformedResponse("Empty response body", url=self.url)
        if self.expect_array:
            if not isinstance(payload, list):
                raise MalformedResponse(
                    f"Expected a JSON array, got {type(payload).__name__}", url=self.url)
            return
        if not self.expected_fields:
            return
        if not isinstance(payload, dict):
            raise MalformedResponse(
                f"Expected a JSON object, got {type(payload).__name__}", url=self.url)
        for field_name in self.expected_fields:
            if not isinstance(payload.get(field_name), list):
                raise MalformedResponse(
                    f"Invalid response structure: '{field_name}' missing or not an array",
                    url=self.url)


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff parameters of the retry loop (all delays in milliseconds)."""
    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay_ms: float = DEFAULT_BASE_DELAY_MS
    jitter_max_ms: float = DEFAULT_JITTER_MAX_MS
    rate_limit_fallback_ms: float = RATE_LIMIT_FALLBACK_WAIT_MS
    rate_limit_min_ms: float = RATE_LIMIT_MIN_WAIT_MS

    def __post_init__(self):
        if self.max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {self.max_retries}")
        for name in ('base_delay_ms', 'jitter_max_ms',
                     'rate_limit_fallback_ms', 'rate_limit_min_ms'):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0, got {getattr(self, name)}")

    def backoff_ms(self, attempt: int, rng: random.Random,
                   base_delay_ms: Optional[float] = None) -> float:
        """
        Exponential backoff with jitter for a zero-based attempt index.

        Returns:
            ``base * 2**attempt + uniform(0, jitter_max_ms)``
        """
        base = self.base_delay_ms if base_delay_ms is None else base_delay_ms
        jitter = rng.uniform(0, self.jitter_max_ms) if self.jitter_max_ms > 0 else 0.0
        return base * (2 ** attempt) + jitter

    def rate_limit_wait_ms(self, retry_after_ms: Optional[float]) -> float:
        """Wait after a 429: Retry-After if sent, else the fallback, never below the minimum."""
        wait = self.rate_limit_fallback_ms if retry_after_ms is None else retry_after_ms
        return max(wait, self.rate_limit_min_ms)


class ResilientFetcher:
    """
    Fetches upstream resources through the TTL cache with retries.

    All collaborators are injected so tests can construct isolated instances
    with a fake transport, a recording sleep and a seeded random generator.
    """

    def __init__(
        self,
        cache: CacheManager,
        http_client: Optional[HttpClientManager] = None,
        retry_policy: Optional[RetryPolicy] = None,
        error_tracker: Optional[ErrorTracker] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None
    ):
        self.cache = cache
        self.http_client = http_client or HttpClientManager()
        self.retry_policy = retry_policy or RetryPolicy()
        self.error_tracker = error_tracker or ErrorTracker()
        self._sleep = sleep
        self._rng = rng or random.Random()

    async def get(
        self,
        descriptor: ResourceDescriptor,
        cache_key: Optional[CacheKey] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> FetchResult:
        """
        Get a resource, preferring a fresh cache entry.

        Args:
            descriptor: Upstream call to make on a cache miss
            cache_key: Key to read and write; None bypasses the cache
            cancel_event: Set by the caller to abandon the fetch

        Returns:
            FetchSuccess, FetchCancelled or FetchFailed
        """
        use_cache = cache_key is not None and descriptor.method == 'GET'
        if use_cache:
            entry = self.cache.lookup(cache_key)
            if entry is not None:
                logger.info("Cache hit for %s", cache_key)
                return FetchSuccess(entry.payload, from_cache=True)

        self.error_tracker.record_attempt()
        try:
            payload = None
            if descriptor.relay_url:
                payload = await self._fetch_via_relay(descriptor, cancel_event)
            if payload is None:
                payload = await self._fetch_with_retry(descriptor, cancel_event)
        except RequestCancelled as e:
            self.error_tracker.record_cancelled()
            logger.info("Fetch of %s cancelled: %s", descriptor.resource, e)
            return FetchCancelled(reason=str(e))
        except UpstreamError as e:
            failure = UpstreamUnavailable(descriptor.url, e, self.retry_policy.max_retries)
            self.error_tracker.record_failure(failure, descriptor.resource)
            return FetchFailed(failure)

        if use_cache:
            self.cache.put(cache_key, payload)
            logger.info("Updated cache for %s", cache_key)
        self.error_tracker.record_success()
        return FetchSuccess(payload, from_cache=False)

    async def fetch(
        self,
        url: str,
        cache_key: Union[CacheKey, str, None] = None,
        method: str = 'GET',
        body: Any = None,
        expected_fields: Tuple[str, ...] = (),
        cancel_event: Optional[asyncio.Event] = None
    ) -> Any:
        """
        Fetch ``url`` and return the payload.

        ``cache_key`` may be given in its string form, e.g. ``'entry:123'``.

        Returns:
            The JSON payload, or None if the caller cancelled

        Raises:
            UpstreamUnavailable: every retry failed
            ValueError: a string cache key without a known family prefix
        """
        if isinstance(cache_key, str):
            cache_key = CacheKey.parse(cache_key)
        descriptor = ResourceDescriptor(
            url=url, method=method, body=body,
            label=str(cache_key) if cache_key is not None else '',
            expected_fields=tuple(expected_fields)
        )
        result = await self.get(descriptor, cache_key, cancel_event)
        if isinstance(result, FetchFailed):
            raise result.error
        if isinstance(result, FetchCancelled):
            return None
        return result.payload

    async def _fetch_via_relay(self, descriptor: ResourceDescriptor,
                               cancel_event: Optional[asyncio.Event]) -> Any:
        """
        One plain attempt against the relay.

        Returns:
            The validated payload, None if the relay failed

        Raises:
            RequestCancelled: cancel_event was set
        """
        raise_if_cancelled(cancel_event)
        logger.info("Fetching %s via relay %s", descriptor.resource, descriptor.relay_url)
        try:
            payload = await until_cancelled(
                self.http_client.get_json(descriptor.relay_url, descriptor.method, descriptor.body),
                cancel_event
            )
            descriptor.validate(payload)
        except UpstreamError as e:
            logger.warning("Relay fetch failed for %s, falling back to direct fetch: %s",
                           descriptor.resource, e,
                           extra={'url': descriptor.relay_url, 'resource': descriptor.resource,
                                  'outcome': e.kind.value, 'status': e.status,
                                  'error': e.message})
            return None
        logger.info("Successful relay fetch for %s", descriptor.resource)
        return payload

    async def _fetch_with_retry(self, descriptor: ResourceDescriptor,
                                cancel_event: Optional[asyncio.Event]) -> Any:
        """
        Run the retry loop.

        Raises:
            RequestCancelled: cancel_event was set
            UpstreamError: the final attempt failed
        """
        policy = self.retry_policy
        last_error: Optional[UpstreamError] = None

        for attempt in range(policy.max_retries):
            raise_if_cancelled(cancel_event)
            is_final = attempt == policy.max_retries - 1
            log_fields = {'url': descriptor.url, 'resource': descriptor.resource,
                          'attempt': attempt + 1, 'max_retries': policy.max_retries}
            logger.info("Fetch attempt %d/%d for %s", attempt + 1, policy.max_retries,
                        descriptor.url, extra={**log_fields, 'outcome': 'started'})
            try:
                payload = await until_cancelled(
                    self.http_client.get_json(descriptor.url, descriptor.method, descriptor.body),
                    cancel_event
                )
                descriptor.validate(payload)
            except UpstreamError as e:
                last_error = e
                logger.warning("Fetch attempt %d/%d failed for %s: %s",
                               attempt + 1, policy.max_retries, descriptor.url, e,
                               extra={**log_fields, 'outcome': e.kind.value,
                                      'status': e.status, 'error': e.message})
                if is_final:
                    break
                await self._wait_after_failure(e, attempt, descriptor, cancel_event)
                continue

            logger.info("Successful fetch for %s", descriptor.url,
                        extra={**log_fields, 'outcome': 'success'})
            return payload

        raise last_error

    async def _wait_after_failure(self, error: UpstreamError, attempt: int,
                                  descriptor: ResourceDescriptor,
                                  cancel_event: Optional[asyncio.Event]):
        policy = self.retry_policy
        if isinstance(error, UpstreamRateLimited):
            delay_ms = policy.rate_limit_wait_ms(error.retry_after_ms)
            logger.info("Rate limited, waiting %.0fms before retrying %s",
                        delay_ms, descriptor.url)
        else:
            if error.kind == ErrorKind.FORBIDDEN:
                logger.warning("Forbidden access for %s, retrying with a different user agent",
                               descriptor.url)
            elif error.kind == ErrorKind.SERVER_ERROR:
                logger.warning("Server error for %s, status: %s", descriptor.url, error.status)
            delay_ms = policy.backoff_ms(attempt, self._rng, descriptor.base_delay_ms)
            logger.info("Waiting %.0fms before retry", delay_ms)

        raise_if_cancelled(cancel_event)
        await until_cancelled(self._sleep(delay_ms / 1000), cancel_event)

    def get_error_tracker_status(self) -> dict:
        """Counters, success rate and recent errors for a health endpoint."""
        return self.error_tracker.get_status()
