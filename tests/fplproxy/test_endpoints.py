"""Tests for the FPL endpoint catalogue"""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(
    os.path.dirname(__file__), '..', '..', 'src'))

from fplproxy.endpoints import FplEndpoints
from fplproxy.fetching.cache_manager import ResourceFamily

BASE = 'https://fantasy.premierleague.com/api'


@pytest.fixture
def endpoints():
    return FplEndpoints(BASE + '/')


class TestFplEndpoints:
    """Test URL, cache key and validation of each resource"""

    @pytest.mark.parametrize('name,args,url,key,family', [
        ('bootstrap', (), f'{BASE}/bootstrap-static/', 'bootstrap', ResourceFamily.BOOTSTRAP),
        ('live', (12,), f'{BASE}/event/12/live/', 'live:12', ResourceFamily.LIVE),
        ('entry', (123,), f'{BASE}/entry/123/', 'entry:123', ResourceFamily.ENTRY),
        ('history', (123,), f'{BASE}/entry/123/history/', 'entry:123:history',
         ResourceFamily.ENTRY),
        ('picks', (123, 5), f'{BASE}/entry/123/event/5/picks/', 'entry:123:picks:5',
         ResourceFamily.ENTRY),
        ('transfers', (123,), f'{BASE}/entry/123/transfers/', 'entry:123:transfers',
         ResourceFamily.ENTRY),
        ('player', (301,), f'{BASE}/element-summary/301/', 'player:301', ResourceFamily.PLAYER),
        ('fixtures', (), f'{BASE}/fixtures/', 'fixtures', ResourceFamily.FIXTURES),
        ('fixtures', (7,), f'{BASE}/fixtures/?event=7', 'fixtures:7', ResourceFamily.FIXTURES),
        ('league', (314,), f'{BASE}/leagues-classic/314/standings/', 'league:314',
         ResourceFamily.LEAGUE),
    ])
    def test_resolve(self, endpoints, name, args, url, key, family):
        resource = endpoints.resolve(name, *args)
        assert resource.descriptor.url == url
        assert resource.cache_key.name == key
        assert resource.cache_key.family == family
        assert resource.descriptor.method == 'GET'

    def test_digit_strings_accepted(self, endpoints):
        assert endpoints.resolve('picks', '123', '5').cache_key.name == 'entry:123:picks:5'

    def test_expected_shapes(self, endpoints):
        assert endpoints.bootstrap().descriptor.expected_fields == ('elements', 'teams', 'events')
        assert endpoints.live(1).descriptor.expected_fields == ('elements',)
        assert endpoints.entry_history(1).descriptor.expected_fields == ('current',)
        assert endpoints.entry_picks(1, 1).descriptor.expected_fields == ('picks',)
        assert endpoints.element_summary(1).descriptor.expected_fields == ('fixtures', 'history')
        assert endpoints.fixtures().descriptor.expect_array
        assert endpoints.entry_transfers(1).descriptor.expect_array

    def test_live_uses_shorter_base_delay(self):
        assert FplEndpoints(BASE).live(3).descriptor.base_delay_ms == 500
        assert FplEndpoints(BASE, live_base_delay_ms=250).live(3).descriptor.base_delay_ms == 250
        assert FplEndpoints(BASE).bootstrap().descriptor.base_delay_ms is None

    @pytest.mark.parametrize('gameweek', [0, 39, -1, 'abc', True, 2.5])
    def test_invalid_gameweek(self, endpoints, gameweek):
        with pytest.raises(ValueError):
            endpoints.live(gameweek)

    @pytest.mark.parametrize('manager_id', [0, -5, 'x1', None, False])
    def test_invalid_manager_id(self, endpoints, manager_id):
        with pytest.raises(ValueError):
            endpoints.entry(manager_id)

    def test_unknown_resource(self, endpoints):
        with pytest.raises(ValueError, match='Unknown resource'):
            endpoints.resolve('weather')

    def test_wrong_parameter_count(self, endpoints):
        with pytest.raises(ValueError, match='Wrong parameters'):
            endpoints.resolve('picks', 123)

    def test_names(self, endpoints):
        assert endpoints.names == sorted(['bootstrap', 'live', 'entry', 'history', 'picks',
                                          'transfers', 'player', 'fixtures', 'league'])

    def test_relay_urls(self):
        endpoints = FplEndpoints(BASE, relay_url='https://relay.test/')
        assert endpoints.live(12).descriptor.relay_url == \
            'https://relay.test/fpl-proxy/event/12/live/'
        assert endpoints.fixtures(7).descriptor.relay_url == \
            'https://relay.test/fpl-proxy/fixtures/?event=7'
        assert endpoints.entry(5).descriptor.relay_url == 'https://relay.test/fpl-proxy/entry/5/'

    def test_no_relay_configured(self, endpoints):
        assert endpoints.bootstrap().descriptor.relay_url is None
