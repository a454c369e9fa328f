"""
Rate limit header parsing and tracking.

This module turns upstream rate limit headers into a wait time and keeps a
record of the most recent rate limit per upstream host, so the health
endpoint can report when the upstream last pushed back.
"""

import time
import datetime
import email.utils
import math
import threading
import logging
from typing import Optional, Dict, Any, Mapping

from .constants import RATE_LIMIT_HEADERS

logger = logging.getLogger(__name__)


def _parse_seconds(value: str) -> Optional[float]:
    """Delta seconds as a finite number, e.g. ``2`` or ``1.5``; None otherwise."""
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if math.isfinite(seconds) else None


def parse_retry_after_ms(headers: Mapping[str, str],
                         now: Optional[float] = None) -> Optional[float]:
    """
    Parse rate limit information from HTTP response headers.

    ``Retry-After`` may hold delta-seconds or an HTTP date. The reset headers
    hold an epoch timestamp or an ISO date.

    Args:
        headers: Response headers (case-insensitive mapping)
        now: Current epoch time, defaults to time.time()

    Returns:
        Milliseconds to wait, or None if no usable header was found
    """
    if now is None:
        now = time.time()

    for header_name in RATE_LIMIT_HEADERS:
        value = headers.get(header_name)
        if value is None:
            continue
        value = value.strip()
        try:
            if header_name == 'Retry-After':
                seconds = _parse_seconds(value)
                if seconds is not None:
                    return max(0.0, seconds * 1000)
                retry_at = email.utils.parsedate_to_datetime(value)
                return max(0.0, (retry_at.timestamp() - now) * 1000)

            if value.isdigit():
                return max(0.0, (int(value) - now) * 1000)
            reset_at = datetime.datetime.fromisoformat(value)
            if reset_at.tzinfo is None:
                reset_at = reset_at.replace(tzinfo=datetime.timezone.utc)
            return max(0.0, (reset_at.timestamp() - now) * 1000)
        except (ValueError, TypeError) as e:
            logger.warning("Failed to parse %s header '%s': %s", header_name, value, e)

    return None


# pylint: disable=too-few-public-methods
class RateLimitInfo:
    """Information about a rate limit event."""

    def __init__(self, retry_after_ms: Optional[float], created_at: Optional[float] = None):
        self.retry_after_ms = retry_after_ms  # None if upstream sent no hint
        self.created_at = created_at if created_at is not None else time.time()


class RateLimitManager:
    """
    Tracks the most recent 429 seen per upstream host.

    Tracking is informational only: waits are decided by the retry loop of
    each call, no request is blocked here.
    """

    def __init__(self):
        self._rate_limits: Dict[str, RateLimitInfo] = {}
        self._lock = threading.Lock()
        self.rate_limits_hit = 0

    def record(self, host: str, retry_after_ms: Optional[float]) -> RateLimitInfo:
        """Remember a rate limit answer from ``host``."""
        info = RateLimitInfo(retry_after_ms)
        with self._lock:
            self._rate_limits[host] = info
            self.rate_limits_hit += 1
        logger.warning("Rate limit recorded for %s: retry after %s ms",
                       host, retry_after_ms if retry_after_ms is not None else 'unknown')
        return info

    def clear_all(self):
        """Clear all rate limits."""
        with self._lock:
            self._rate_limits.clear()
        logger.info("All rate limits cleared")

    def get_all_rate_limits(self) -> Dict[str, Dict[str, Any]]:
        """Get information about all recorded rate limits."""
        current_time = time.time()
        result = {}

        with self._lock:
            for host, info in self._rate_limits.items():
                remaining = None
                if info.retry_after_ms is not None:
                    remaining = max(0.0, info.created_at + info.retry_after_ms / 1000 - current_time)
                result[host] = {
                    'retry_after_ms': info.retry_after_ms,
                    'remaining_seconds': remaining,
                    'created_at': info.created_at
                }

        return result
