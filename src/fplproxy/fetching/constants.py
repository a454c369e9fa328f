"""
Constants for the fplproxy fetching infrastructure.

This module defines the upstream endpoint, timeout values, retry parameters
and cache durations used by the cache and the resilient fetcher.

Cache Strategy Overview:
- Cache TTL is chosen per resource family, not globally
- Reference data (bootstrap, fixtures) changes at most once per gameweek cycle
- Live gameweek data changes during matches and gets the shortest TTL
- Per-manager snapshots sit in between
"""

# Upstream
FPL_API_BASE_URL = "https://fantasy.premierleague.com/api"
UPSTREAM_TIMEOUT = 15  # seconds, per attempt

# Retry and backoff constants (in milliseconds unless noted)
DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY_MS = 1000
LIVE_BASE_DELAY_MS = 500        # live data is polled, keep retries snappy
DEFAULT_JITTER_MAX_MS = 300     # random jitter added to every backoff wait

# Rate limit (429) handling
RATE_LIMIT_FALLBACK_WAIT_MS = 60000  # used when Retry-After is missing
RATE_LIMIT_MIN_WAIT_MS = 1000

# Cache TTL constants (in seconds) - how long data stays fresh, per family
BOOTSTRAP_CACHE_TTL = 3600   # 1 hour
FIXTURES_CACHE_TTL = 3600    # 1 hour
PLAYER_CACHE_TTL = 1800      # 30 minutes
LEAGUE_CACHE_TTL = 1800      # 30 minutes
ENTRY_CACHE_TTL = 300        # 5 minutes
LIVE_CACHE_TTL = 60          # 1 minute

# Diagnostics
ERROR_BUFFER_SIZE = 10

# Gameweek bounds of a Premier League season
MIN_GAMEWEEK = 1
MAX_GAMEWEEK = 38

# HTTP status codes
RATE_LIMIT_STATUS_CODE = 429
FORBIDDEN_STATUS_CODE = 403

# Common headers for rate limit detection, in order of preference
RATE_LIMIT_HEADERS = [
    'Retry-After',
    'X-RateLimit-Reset',
    'RateLimit-Reset',
    'X-Rate-Limit-Reset'
]
