"""
Request header profiles for the FPL API.

The FPL API rejects requests without plausible browser headers in some
deployments (403 from its bot detection). The headers are kept in a
versioned profile so they can be updated from configuration without
touching the retry logic. One User-Agent of the pool is picked per attempt.
"""

import random
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Tuple

DEFAULT_USER_AGENTS = (
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36',
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 '
    '(KHTML, like Gecko) Version/16.0 Safari/605.1.15',
    'Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36',
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:124.0) Gecko/20100101 Firefox/124.0',
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 10.15; rv:124.0) Gecko/20100101 Firefox/124.0',
)

DEFAULT_BASE_HEADERS = {
    'Accept': 'application/json',
    'Accept-Language': 'en-US,en;q=0.9',
    'Referer': 'https://fantasy.premierleague.com/',
    'Origin': 'https://fantasy.premierleague.com',
    'Cache-Control': 'no-cache',
    'Pragma': 'no-cache',
}


@dataclass(frozen=True)
class HeaderProfile:
    """Browser-like headers sent with every upstream attempt.

    Attributes:
        version: Profile version, logged at startup; bump it whenever the
            headers change
        user_agents: Pool of User-Agent strings
        base_headers: Headers sent unchanged on every request
    """
    version: str = '2024.04'
    user_agents: Tuple[str, ...] = DEFAULT_USER_AGENTS
    base_headers: Mapping[str, str] = field(default_factory=lambda: dict(DEFAULT_BASE_HEADERS))

    def __post_init__(self):
        if not self.user_agents:
            raise ValueError('HeaderProfile needs at least one User-Agent')

    def build(self, rng: Optional[random.Random] = None) -> Dict[str, str]:
        """Headers for one attempt, with a User-Agent picked from the pool."""
        rng = rng or random
        headers = dict(self.base_headers)
        headers['User-Agent'] = rng.choice(self.user_agents)
        return headers

    @classmethod
    def from_config(cls, config: Optional[dict]) -> 'HeaderProfile':
        """Create a profile from the ``headers`` section of the config.

        ``extra`` headers are merged over the defaults, ``user_agents``
        replaces the default pool.
        """
        config = config or {}
        base_headers = dict(DEFAULT_BASE_HEADERS)
        base_headers.update(config.get('extra') or {})
        user_agents = tuple(config.get('user_agents') or DEFAULT_USER_AGENTS)
        return cls(
            version=str(config.get('version', cls.version)),
            user_agents=user_agents,
            base_headers=base_headers
        )
