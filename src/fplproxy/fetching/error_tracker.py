"""
Attempt counters and a rolling log of recent upstream errors.

Kept independent of the log output so a health/debug endpoint can inspect
recent failures cheaply.
"""

import datetime
import threading
from collections import deque
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import logging

import pytz

from .constants import ERROR_BUFFER_SIZE
from .exceptions import UpstreamUnavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ErrorRecord:
    """One failed fetch, as kept in the ring buffer."""
    timestamp: datetime.datetime
    resource: str
    message: str
    http_status: Optional[int]
    error_kind: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': self.timestamp.isoformat(),
            'resource': self.resource,
            'message': self.message,
            'http_status': self.http_status,
            'error_kind': self.error_kind
        }


class ErrorTracker:
    """
    Process-lifetime counters of upstream fetches plus the last N errors.

    Counters only grow; reset() is the explicit administrative way back to
    zero. Each mutation happens under a lock and is applied as a whole.
    """

    def __init__(self, capacity: int = ERROR_BUFFER_SIZE, timezone=None):
        if capacity < 1:
            raise ValueError(f"Error buffer capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self.timezone = timezone or pytz.utc
        self._lock = threading.Lock()
        self.total_attempts = 0
        self.successful_attempts = 0
        self.failed_attempts = 0
        self.cancelled_attempts = 0
        self._last_errors: deque = deque(maxlen=capacity)

    def record_attempt(self):
        with self._lock:
            self.total_attempts += 1

    def record_success(self):
        with self._lock:
            self.successful_attempts += 1

    def record_cancelled(self):
        with self._lock:
            self.cancelled_attempts += 1

    def record_failure(self, error: UpstreamUnavailable, resource: str) -> ErrorRecord:
        """Count a failed fetch and append it to the ring buffer."""
        last_error = error.last_error
        record = ErrorRecord(
            timestamp=datetime.datetime.now(self.timezone),
            resource=resource,
            message=str(last_error),
            http_status=last_error.status,
            error_kind=last_error.kind.value
        )
        with self._lock:
            self.failed_attempts += 1
            self._last_errors.append(record)
        logger.error("FPL API fetch error for %s: %s", resource, record.message,
                     extra={'resource': resource, 'status': record.http_status,
                            'error_kind': record.error_kind})
        return record

    @property
    def last_errors(self) -> List[ErrorRecord]:
        with self._lock:
            return list(self._last_errors)

    def get_status(self) -> Dict[str, Any]:
        """Aggregate counters, success percentage and recent errors."""
        with self._lock:
            success_rate = 0.0
            if self.total_attempts > 0:
                success_rate = round(self.successful_attempts / self.total_attempts * 100, 2)
            return {
                'total_attempts': self.total_attempts,
                'successful_attempts': self.successful_attempts,
                'failed_attempts': self.failed_attempts,
                'cancelled_attempts': self.cancelled_attempts,
                'success_rate': success_rate,
                'last_errors': [record.to_dict() for record in self._last_errors]
            }

    def reset(self):
        """Reset counters and drop recorded errors."""
        with self._lock:
            self.total_attempts = 0
            self.successful_attempts = 0
            self.failed_attempts = 0
            self.cancelled_attempts = 0
            self._last_errors.clear()
        logger.info("Error tracker reset")
