""" fplproxy Core Module

This module wires the proxy together from the configuration.

It owns the process-wide state (cache, counters, error log) and exposes:
  - fetch() for the routing layer
  - named FPL resources via the endpoint catalogue
  - the administrative surface (invalidate, clear, status, health)

Create one FplProxy at process start and pass it to whatever needs it.
"""
import asyncio
import datetime
import logging
import random
import time
from typing import Any, Awaitable, Callable, Optional, Union

import httpx
import pytz

from .endpoints import FplEndpoints
from .fetching.cache_manager import CacheKey, CacheManager, TTLPolicy
from .fetching.cancellation import SupersedingRequests
from .fetching.constants import (
    FPL_API_BASE_URL,
    UPSTREAM_TIMEOUT,
    DEFAULT_MAX_RETRIES,
    DEFAULT_BASE_DELAY_MS,
    LIVE_BASE_DELAY_MS,
    DEFAULT_JITTER_MAX_MS,
    RATE_LIMIT_FALLBACK_WAIT_MS,
    RATE_LIMIT_MIN_WAIT_MS,
    ERROR_BUFFER_SIZE
)
from .fetching.error_tracker import ErrorTracker
from .fetching.headers import HeaderProfile
from .fetching.http_client import HttpClientManager
from .fetching.resilient_fetcher import ResilientFetcher, RetryPolicy
from .fetching.results import FetchResult

DEFAULT_TIMEZONE = 'Europe/London'

logger = logging.getLogger(__name__)


class FplProxy:
    """ Caching, retrying proxy core in front of the FPL API """

    def __init__(self, configdict: Optional[dict] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
                 rng: Optional[random.Random] = None,
                 clock: Optional[Callable[[], float]] = None):
        """Initialize the proxy with configuration.

        Args:
            configdict: Loaded configuration, see load_config()
            transport: httpx transport, replaced by tests
            sleep: Awaitable sleep used for backoff waits
            rng: Random generator for jitter and User-Agent rotation
            clock: Time source of the cache
        """
        self.config = configdict or {}
        self._setup_timezone(self.config)
        rng = rng or random.Random()

        cache_config = self.config.get('cache') or {}
        ttl_policy = TTLPolicy(cache_config.get('ttl'))
        self.cache = CacheManager(ttl_policy, clock=clock or time.time)

        upstream_config = self.config.get('upstream') or {}
        fetch_config = self.config.get('fetch') or {}
        self.endpoints = FplEndpoints(
            upstream_config.get('base_url', FPL_API_BASE_URL),
            live_base_delay_ms=float(fetch_config.get('live_base_delay_ms', LIVE_BASE_DELAY_MS)),
            relay_url=upstream_config.get('relay_url')
        )
        self.header_profile = HeaderProfile.from_config(self.config.get('headers'))
        self.http_client = HttpClientManager(
            header_profile=self.header_profile,
            timeout=float(upstream_config.get('timeout', UPSTREAM_TIMEOUT)),
            transport=transport,
            rng=rng
        )

        diagnostics_config = self.config.get('diagnostics') or {}
        self.error_tracker = ErrorTracker(
            capacity=int(diagnostics_config.get('error_buffer_size', ERROR_BUFFER_SIZE)),
            timezone=self.timezone
        )

        self.retry_policy = self._create_retry_policy(fetch_config)
        self.fetcher = ResilientFetcher(
            cache=self.cache,
            http_client=self.http_client,
            retry_policy=self.retry_policy,
            error_tracker=self.error_tracker,
            sleep=sleep,
            rng=rng
        )
        self.superseding = SupersedingRequests()
        self.started_at = datetime.datetime.now(self.timezone)

        logger.info("FPL proxy initialized (upstream: %s, max_retries: %d, "
                    "header profile: %s, ttl: %s)",
                    self.endpoints.base_url, self.retry_policy.max_retries,
                    self.header_profile.version, ttl_policy.as_dict())

    def _setup_timezone(self, config):
        """Setup timezone configuration."""
        tzstring = config.get('timezone', DEFAULT_TIMEZONE)
        try:
            self.timezone = pytz.timezone(tzstring)
        except pytz.UnknownTimeZoneError as e:
            raise RuntimeError(
                f"Config Entry timezone {tzstring} not valid. Try e.g. 'Europe/London'"
            ) from e

    @staticmethod
    def _create_retry_policy(fetch_config: dict) -> RetryPolicy:
        return RetryPolicy(
            max_retries=int(fetch_config.get('max_retries', DEFAULT_MAX_RETRIES)),
            base_delay_ms=float(fetch_config.get('base_delay_ms', DEFAULT_BASE_DELAY_MS)),
            jitter_max_ms=float(fetch_config.get('jitter_max_ms', DEFAULT_JITTER_MAX_MS)),
            rate_limit_fallback_ms=float(
                fetch_config.get('rate_limit_fallback_ms', RATE_LIMIT_FALLBACK_WAIT_MS)),
            rate_limit_min_ms=float(
                fetch_config.get('rate_limit_min_ms', RATE_LIMIT_MIN_WAIT_MS))
        )

    async def fetch(self, url: str, cache_key: Union[CacheKey, str, None] = None,
                    method: str = 'GET', body: Any = None,
                    cancel_event: Optional[asyncio.Event] = None) -> Any:
        """Fetch an upstream URL through cache and retries.

        Returns:
            The JSON payload, None if cancelled

        Raises:
            UpstreamUnavailable: all retries failed
        """
        return await self.fetcher.fetch(url, cache_key, method, body,
                                        cancel_event=cancel_event)

    async def get_resource(self, name: str, *args,
                           cancel_event: Optional[asyncio.Event] = None,
                           supersede: bool = False) -> FetchResult:
        """Fetch a named FPL resource, e.g. ``get_resource('live', 12)``.

        With ``supersede``, a later superseding call for the same cache key
        cancels this one and this one returns FetchCancelled.
        """
        resource = self.endpoints.resolve(name, *args)
        if not supersede:
            return await self.fetcher.get(resource.descriptor, resource.cache_key, cancel_event)

        if cancel_event is not None:
            raise ValueError("cancel_event and supersede cannot be combined")
        key = resource.cache_key.name
        cancel_event = self.superseding.begin(key)
        try:
            return await self.fetcher.get(resource.descriptor, resource.cache_key, cancel_event)
        finally:
            self.superseding.finish(key, cancel_event)

    def invalidate(self, pattern: str = '') -> int:
        """Remove cache entries whose key contains ``pattern`` (all if empty)."""
        return self.cache.invalidate(pattern)

    def clear_all(self) -> int:
        return self.cache.clear_all()

    def get_error_tracker_status(self) -> dict:
        status = self.fetcher.get_error_tracker_status()
        status['using_relay'] = self.endpoints.relay_url is not None
        return status

    def reset_error_tracker(self):
        self.error_tracker.reset()

    def get_health(self) -> dict:
        """Status document for a health/debug endpoint."""
        return {
            'status': 'ok',
            'timestamp': datetime.datetime.now(self.timezone).isoformat(),
            'started_at': self.started_at.isoformat(),
            'upstream': self.endpoints.base_url,
            'relay': self.endpoints.relay_url,
            'header_profile': self.header_profile.version,
            'cache_stats': self.cache.get_stats(),
            'http_stats': self.http_client.get_stats(),
            'rate_limits': self.http_client.rate_limit_manager.get_all_rate_limits(),
            'error_tracker': self.get_error_tracker_status()
        }

    async def shutdown(self):
        """Cancel superseding fetches and close the upstream connection pool."""
        logger.info("Shutting down FPL proxy")
        self.superseding.cancel_all()
        await self.http_client.aclose()
