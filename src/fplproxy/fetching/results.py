"""Outcomes of a resilient fetch."""

from dataclasses import dataclass
from typing import Any, Union

from .exceptions import ErrorKind, UpstreamUnavailable


@dataclass(frozen=True)
class FetchSuccess:
    """Payload from the cache or from the upstream."""
    payload: Any
    from_cache: bool = False
    ok = True


@dataclass(frozen=True)
class FetchCancelled:
    """The caller cancelled the fetch. Not a failure."""
    reason: str = 'cancelled'
    ok = False


@dataclass(frozen=True)
class FetchFailed:
    """Every retry failed."""
    error: UpstreamUnavailable
    ok = False

    @property
    def kind(self) -> ErrorKind:
        """Kind of the last underlying error."""
        return self.error.last_error.kind

    @property
    def detail(self) -> str:
        return str(self.error.last_error)


FetchResult = Union[FetchSuccess, FetchCancelled, FetchFailed]
