from .__pkginfo__ import __version__

from .core import FplProxy
from .endpoints import FplEndpoints, Resource
from .fetching import (
    CacheKey,
    ResourceFamily,
    FetchCancelled,
    FetchFailed,
    FetchSuccess,
    UpstreamUnavailable
)

__all__ = [
    '__version__',
    'FplProxy',
    'FplEndpoints',
    'Resource',
    'CacheKey',
    'ResourceFamily',
    'FetchCancelled',
    'FetchFailed',
    'FetchSuccess',
    'UpstreamUnavailable',
]
