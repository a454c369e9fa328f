"""FPL API endpoint catalogue.

Maps a resource name and its parameters to the upstream URL, the
family-tagged cache key and the response shape that marks a valid answer.
"""

import logging
from typing import Callable, Dict, NamedTuple, Optional

from .fetching.cache_manager import CacheKey, ResourceFamily
from .fetching.constants import (
    FPL_API_BASE_URL,
    LIVE_BASE_DELAY_MS,
    MIN_GAMEWEEK,
    MAX_GAMEWEEK
)
from .fetching.resilient_fetcher import ResourceDescriptor

logger = logging.getLogger(__name__)


class Resource(NamedTuple):
    descriptor: ResourceDescriptor
    cache_key: CacheKey


def _positive_id(value, name: str = 'id') -> int:
    """Validate an FPL id: a positive integer, also accepted as a digit string."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid {name} parameter: must be an integer")
    if isinstance(value, str):
        if not value.isdigit():
            raise ValueError(f"Invalid {name} parameter: must be an integer")
        value = int(value)
    if not isinstance(value, int) or value < 1:
        raise ValueError(f"Invalid {name} parameter: must be a positive integer")
    return value


def _gameweek(value) -> int:
    gameweek = _positive_id(value, 'gameweek')
    if not MIN_GAMEWEEK <= gameweek <= MAX_GAMEWEEK:
        raise ValueError(
            f"Invalid gameweek parameter: must be an integer between "
            f"{MIN_GAMEWEEK} and {MAX_GAMEWEEK}"
        )
    return gameweek


class FplEndpoints:
    """Builds Resources for the FPL API endpoints the proxy serves."""

    def __init__(self, base_url: str = FPL_API_BASE_URL,
                 live_base_delay_ms: float = LIVE_BASE_DELAY_MS,
                 relay_url: Optional[str] = None):
        self.base_url = base_url.rstrip('/')
        self.relay_url = relay_url.rstrip('/') if relay_url else None
        self.live_base_delay_ms = live_base_delay_ms
        self._by_name: Dict[str, Callable[..., Resource]] = {
            'bootstrap': self.bootstrap,
            'live': self.live,
            'entry': self.entry,
            'history': self.entry_history,
            'picks': self.entry_picks,
            'transfers': self.entry_transfers,
            'player': self.element_summary,
            'fixtures': self.fixtures,
            'league': self.league_standings,
        }

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path}/"

    def _relay(self, path: str, query: str = '') -> Optional[str]:
        """Relay URL of the same resource, None without a configured relay."""
        if self.relay_url is None:
            return None
        return f"{self.relay_url}/fpl-proxy/{path}/{query}"

    @property
    def names(self) -> list:
        return sorted(self._by_name)

    def resolve(self, name: str, *args) -> Resource:
        """Look up a resource by name, e.g. ``resolve('picks', 123, 5)``."""
        try:
            builder = self._by_name[name]
        except KeyError as e:
            raise ValueError(
                f"Unknown resource '{name}', expected one of: {', '.join(self.names)}"
            ) from e
        try:
            return builder(*args)
        except TypeError as e:
            raise ValueError(f"Wrong parameters for resource '{name}': {e}") from e

    def bootstrap(self) -> Resource:
        """Static reference data: players, teams and gameweeks."""
        return Resource(
            ResourceDescriptor(
                url=self._url('bootstrap-static'),
                relay_url=self._relay('bootstrap-static'),
                label='bootstrap',
                expected_fields=('elements', 'teams', 'events')
            ),
            CacheKey.build(ResourceFamily.BOOTSTRAP)
        )

    def live(self, gameweek) -> Resource:
        gameweek = _gameweek(gameweek)
        key = CacheKey.build(ResourceFamily.LIVE, gameweek)
        return Resource(
            ResourceDescriptor(
                url=self._url(f'event/{gameweek}/live'),
                relay_url=self._relay(f'event/{gameweek}/live'),
                label=key.name,
                expected_fields=('elements',),
                base_delay_ms=self.live_base_delay_ms
            ),
            key
        )

    def entry(self, manager_id) -> Resource:
        manager_id = _positive_id(manager_id)
        key = CacheKey.build(ResourceFamily.ENTRY, manager_id)
        return Resource(
            ResourceDescriptor(url=self._url(f'entry/{manager_id}'), label=key.name,
                               relay_url=self._relay(f'entry/{manager_id}')),
            key
        )

    def entry_history(self, manager_id) -> Resource:
        manager_id = _positive_id(manager_id)
        key = CacheKey.build(ResourceFamily.ENTRY, manager_id, 'history')
        return Resource(
            ResourceDescriptor(
                url=self._url(f'entry/{manager_id}/history'),
                relay_url=self._relay(f'entry/{manager_id}/history'),
                label=key.name,
                expected_fields=('current',)
            ),
            key
        )

    def entry_picks(self, manager_id, gameweek) -> Resource:
        manager_id = _positive_id(manager_id)
        gameweek = _gameweek(gameweek)
        key = CacheKey.build(ResourceFamily.ENTRY, manager_id, 'picks', gameweek)
        return Resource(
            ResourceDescriptor(
                url=self._url(f'entry/{manager_id}/event/{gameweek}/picks'),
                relay_url=self._relay(f'entry/{manager_id}/event/{gameweek}/picks'),
                label=key.name,
                expected_fields=('picks',)
            ),
            key
        )

    def entry_transfers(self, manager_id) -> Resource:
        manager_id = _positive_id(manager_id)
        key = CacheKey.build(ResourceFamily.ENTRY, manager_id, 'transfers')
        return Resource(
            ResourceDescriptor(
                url=self._url(f'entry/{manager_id}/transfers'),
                relay_url=self._relay(f'entry/{manager_id}/transfers'),
                label=key.name,
                expect_array=True
            ),
            key
        )

    def element_summary(self, player_id) -> Resource:
        player_id = _positive_id(player_id)
        key = CacheKey.build(ResourceFamily.PLAYER, player_id)
        return Resource(
            ResourceDescriptor(
                url=self._url(f'element-summary/{player_id}'),
                relay_url=self._relay(f'element-summary/{player_id}'),
                label=key.name,
                expected_fields=('fixtures', 'history')
            ),
            key
        )

    def fixtures(self, gameweek: Optional[int] = None) -> Resource:
        """All fixtures of the season, or only those of one gameweek."""
        if gameweek is None:
            query = ''
            key = CacheKey.build(ResourceFamily.FIXTURES)
        else:
            gameweek = _gameweek(gameweek)
            query = f"?event={gameweek}"
            key = CacheKey.build(ResourceFamily.FIXTURES, gameweek)
        return Resource(
            ResourceDescriptor(
                url=self._url('fixtures') + query,
                relay_url=self._relay('fixtures', query),
                label=key.name,
                expect_array=True
            ),
            key
        )

    def league_standings(self, league_id) -> Resource:
        league_id = _positive_id(league_id, 'league id')
        key = CacheKey.build(ResourceFamily.LEAGUE, league_id)
        return Resource(
            ResourceDescriptor(
                url=self._url(f'leagues-classic/{league_id}/standings'),
                relay_url=self._relay(f'leagues-classic/{league_id}/standings'),
                label=key.name
            ),
            key
        )
