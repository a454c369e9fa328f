"""
HTTP client manager for the FPL API.

This module performs single upstream attempts: it applies the timeout and
header profile, and classifies every failure into the fetching exception
taxonomy. Retrying is left to the resilient fetcher.
"""

import time
import random
from typing import Any, Optional
from urllib.parse import urlsplit
import logging

import httpx

from .constants import (
    UPSTREAM_TIMEOUT,
    RATE_LIMIT_STATUS_CODE,
    FORBIDDEN_STATUS_CODE
)
from .exceptions import (
    MalformedResponse,
    TransportFailure,
    UpstreamForbidden,
    UpstreamHTTPError,
    UpstreamRateLimited,
    UpstreamServerError
)
from .headers import HeaderProfile
from .rate_limit_manager import RateLimitManager, parse_retry_after_ms

logger = logging.getLogger(__name__)


class HttpClientManager:
    """
    Shared async HTTP client for all upstream calls.

    Features:
    - One lazily created httpx.AsyncClient with a fixed timeout
    - Browser-like headers from a versioned HeaderProfile
    - Classification of HTTP and transport failures
    - Request logging and metrics
    """

    def __init__(
        self,
        header_profile: Optional[HeaderProfile] = None,
        timeout: float = UPSTREAM_TIMEOUT,
        rate_limit_manager: Optional[RateLimitManager] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        rng: Optional[random.Random] = None
    ):
        self.header_profile = header_profile or HeaderProfile()
        self.timeout = timeout
        self.rate_limit_manager = rate_limit_manager or RateLimitManager()
        self._transport = transport
        self._rng = rng or random.Random()
        self._client: Optional[httpx.AsyncClient] = None
        self._stats = {
            'requests_made': 0,
            'requests_failed': 0,
            'rate_limits_hit': 0
        }

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                follow_redirects=True
            )
        return self._client

    async def request(self, url: str, method: str = 'GET',
                      body: Any = None) -> httpx.Response:
        """
        Make one request and raise a classified error on failure.

        Args:
            url: Fully formed upstream URL
            method: HTTP method
            body: JSON body for non-GET requests

        Returns:
            Response with a 2xx/3xx status

        Raises:
            UpstreamRateLimited: HTTP 429
            UpstreamForbidden: HTTP 403
            UpstreamServerError: HTTP 5xx
            UpstreamHTTPError: any other HTTP error status
            TransportFailure: network error, timeout or redirect loop
            MalformedResponse: body could not be decoded
        """
        headers = self.header_profile.build(self._rng)
        kwargs = {}
        if method != 'GET' and body is not None:
            kwargs['json'] = body

        start_time = time.time()
        try:
            response = await self._get_client().request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            self._stats['requests_failed'] += 1
            raise TransportFailure(f"Request timed out after {self.timeout}s: {e}", url=url) from e
        except httpx.TransportError as e:
            self._stats['requests_failed'] += 1
            raise TransportFailure(f"Request failed: {e}", url=url) from e
        except httpx.DecodingError as e:
            self._stats['requests_failed'] += 1
            raise MalformedResponse(f"Response body could not be decoded: {e}", url=url) from e
        except httpx.RequestError as e:
            # e.g. TooManyRedirects
            self._stats['requests_failed'] += 1
            raise TransportFailure(f"Request failed: {e}", url=url) from e

        duration = time.time() - start_time
        self._stats['requests_made'] += 1
        logger.debug("%s %s completed in %.2fs (status: %d)",
                     method, url, duration, response.status_code)

        status = response.status_code
        if status < 400:
            return response

        self._stats['requests_failed'] += 1
        if status == RATE_LIMIT_STATUS_CODE:
            self._stats['rate_limits_hit'] += 1
            retry_after_ms = parse_retry_after_ms(response.headers)
            self.rate_limit_manager.record(urlsplit(url).netloc, retry_after_ms)
            raise UpstreamRateLimited("Rate limit exceeded", status, url,
                                      retry_after_ms=retry_after_ms)
        if status == FORBIDDEN_STATUS_CODE:
            raise UpstreamForbidden("Forbidden", status, url)
        if status >= 500:
            raise UpstreamServerError("Server error", status, url)
        raise UpstreamHTTPError(f"Unexpected response {response.reason_phrase}", status, url)

    async def get_json(self, url: str, method: str = 'GET', body: Any = None) -> Any:
        """Make one request and decode the JSON body.

        Raises:
            MalformedResponse: body is not valid JSON
        """
        response = await self.request(url, method, body)
        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponse(f"Response is not valid JSON: {e}",
                                    response.status_code, url) from e

    def get_stats(self) -> dict:
        return dict(self._stats)

    async def aclose(self):
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
