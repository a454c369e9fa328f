"""Tests for the FplProxy core"""

import asyncio
import os
import sys

import httpx
import pytest
import pytz
from unittest.mock import AsyncMock, patch

sys.path.insert(0, os.path.join(
    os.path.dirname(__file__), '..', '..', 'src'))

from fplproxy.core import FplProxy
from fplproxy.fetching.cache_manager import CacheKey, ResourceFamily
from fplproxy.fetching.exceptions import UpstreamUnavailable
from fplproxy.fetching.results import FetchCancelled, FetchFailed, FetchSuccess

BASE = 'https://fpl.test/api'
LIVE_PAYLOAD = {'elements': [{'id': 1, 'stats': {'total_points': 6}}]}


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class StubRng:
    def uniform(self, a, b):
        return 0.0

    def choice(self, seq):
        return seq[0]


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


class TestFplProxy:
    """Test wiring and the administrative surface"""

    @pytest.fixture
    def config(self):
        return {
            'timezone': 'Europe/London',
            'upstream': {'base_url': BASE},
            'fetch': {},
            'cache': {},
            'diagnostics': {},
            'headers': {}
        }

    @pytest.fixture
    def upstream(self):
        requests = []

        def handler(request):
            requests.append(request)
            path = request.url.path
            if path.endswith('/live/'):
                return httpx.Response(200, json=LIVE_PAYLOAD)
            if path.startswith('/api/entry/'):
                return httpx.Response(200, json={'id': 123, 'name': 'Team'})
            return httpx.Response(503)

        handler.requests = requests
        return handler

    def make_proxy(self, config, handler, **kwargs):
        kwargs.setdefault('sleep', RecordingSleep())
        kwargs.setdefault('clock', FakeClock())
        return FplProxy(config, transport=httpx.MockTransport(handler), rng=StubRng(), **kwargs)

    def run(self, proxy, coro):
        async def runner():
            try:
                return await coro
            finally:
                await proxy.shutdown()
        return asyncio.run(runner())

    def test_defaults(self):
        proxy = FplProxy()
        assert proxy.timezone == pytz.timezone('Europe/London')
        assert proxy.endpoints.base_url == 'https://fantasy.premierleague.com/api'
        assert proxy.retry_policy.max_retries == 3
        assert proxy.retry_policy.base_delay_ms == 1000
        assert proxy.retry_policy.jitter_max_ms == 300
        assert proxy.http_client.timeout == 15
        assert proxy.error_tracker.capacity == 10
        assert proxy.cache.ttl_policy.as_dict()['live'] == 60

    def test_config_overrides(self, config):
        config['fetch'] = {'max_retries': 5, 'base_delay_ms': 200, 'live_base_delay_ms': 100}
        config['cache'] = {'ttl': {'live': 30}}
        config['diagnostics'] = {'error_buffer_size': 3}
        config['upstream']['timeout'] = 5
        config['headers'] = {'version': 'custom'}

        proxy = FplProxy(config)

        assert proxy.retry_policy.max_retries == 5
        assert proxy.retry_policy.base_delay_ms == 200
        assert proxy.endpoints.live(1).descriptor.base_delay_ms == 100
        assert proxy.cache.ttl_policy.as_dict()['live'] == 30
        assert proxy.error_tracker.capacity == 3
        assert proxy.http_client.timeout == 5
        assert proxy.header_profile.version == 'custom'

    def test_invalid_timezone(self, config):
        config['timezone'] = 'Mars/Olympus'
        with pytest.raises(RuntimeError, match='timezone'):
            FplProxy(config)

    def test_invalid_retry_config(self, config):
        config['fetch'] = {'max_retries': 0}
        with pytest.raises(ValueError):
            FplProxy(config)

    def test_get_resource_caches(self, config, upstream):
        proxy = self.make_proxy(config, upstream)

        async def scenario():
            first = await proxy.get_resource('live', 12)
            second = await proxy.get_resource('live', '12')
            return first, second

        first, second = self.run(proxy, scenario())

        assert first == FetchSuccess(LIVE_PAYLOAD, from_cache=False)
        assert second == FetchSuccess(LIVE_PAYLOAD, from_cache=True)
        assert len(upstream.requests) == 1
        assert str(upstream.requests[0].url) == f'{BASE}/event/12/live/'

    def test_expired_entry_is_refetched(self, config, upstream):
        clock = FakeClock()
        proxy = self.make_proxy(config, upstream, clock=clock)

        async def scenario():
            await proxy.get_resource('entry', 123)
            clock.now += 301
            return await proxy.get_resource('entry', 123)

        result = self.run(proxy, scenario())

        assert result.from_cache is False
        assert len(upstream.requests) == 2

    def test_get_resource_rejects_bad_parameters(self, config, upstream):
        proxy = self.make_proxy(config, upstream)
        with pytest.raises(ValueError):
            self.run(proxy, proxy.get_resource('live', 40))
        assert upstream.requests == []

    def test_failure_is_tracked(self, config, upstream):
        sleep = RecordingSleep()
        proxy = self.make_proxy(config, upstream, sleep=sleep)

        result = self.run(proxy, proxy.get_resource('bootstrap'))

        assert isinstance(result, FetchFailed)
        assert sleep.delays == [1.0, 2.0]
        status = proxy.get_error_tracker_status()
        assert status['failed_attempts'] == 1
        assert status['last_errors'][0]['resource'] == 'bootstrap'
        assert status['last_errors'][0]['http_status'] == 503

        proxy.reset_error_tracker()
        assert proxy.get_error_tracker_status()['failed_attempts'] == 0

    def test_live_uses_shorter_backoff(self, config):
        responses = [httpx.Response(503), httpx.Response(200, json=LIVE_PAYLOAD)]
        sleep = RecordingSleep()
        proxy = self.make_proxy(config, lambda request: responses.pop(0), sleep=sleep)

        result = self.run(proxy, proxy.get_resource('live', 3))

        assert isinstance(result, FetchSuccess)
        assert sleep.delays == [0.5]

    def test_fetch_raises_when_unavailable(self, config, upstream):
        proxy = self.make_proxy(config, upstream)
        with pytest.raises(UpstreamUnavailable):
            self.run(proxy, proxy.fetch(f'{BASE}/bootstrap-static/',
                                        CacheKey.build(ResourceFamily.BOOTSTRAP)))

    def test_fetch_cancelled(self, config, upstream):
        proxy = self.make_proxy(config, upstream)

        async def scenario():
            cancel = asyncio.Event()
            cancel.set()
            fetched = await proxy.fetch(f'{BASE}/entry/1/', cancel_event=cancel)
            result = await proxy.get_resource('entry', 1, cancel_event=cancel)
            return fetched, result

        fetched, result = self.run(proxy, scenario())

        assert fetched is None
        assert isinstance(result, FetchCancelled)
        assert upstream.requests == []

    def test_invalidate(self, config, upstream):
        proxy = self.make_proxy(config, upstream)
        proxy.cache.put(CacheKey.build(ResourceFamily.ENTRY, 123), {})
        proxy.cache.put(CacheKey.build(ResourceFamily.ENTRY, 123, 'history'), {})
        proxy.cache.put(CacheKey.build(ResourceFamily.LIVE, 1), {})

        assert proxy.invalidate('entry:123') == 2
        assert proxy.clear_all() == 1
        assert proxy.invalidate() == 0

    def test_health(self, config, upstream):
        proxy = self.make_proxy(config, upstream)
        self.run(proxy, proxy.get_resource('live', 1))

        health = proxy.get_health()

        assert health['status'] == 'ok'
        assert health['upstream'] == BASE
        assert health['header_profile'] == '2024.04'
        assert health['cache_stats']['keys'] == 1
        assert health['http_stats']['requests_made'] == 1
        assert health['rate_limits'] == {}
        assert health['error_tracker']['successful_attempts'] == 1

    def test_shutdown_closes_http_client(self, config, upstream):
        proxy = self.make_proxy(config, upstream)

        with patch.object(proxy.http_client, 'aclose', new_callable=AsyncMock) as aclose:
            asyncio.run(proxy.shutdown())

        aclose.assert_awaited_once()

    def test_fetch_with_string_key(self, config, upstream):
        proxy = self.make_proxy(config, upstream)

        async def scenario():
            await proxy.fetch(f'{BASE}/entry/123/', 'entry:123')
            return await proxy.fetch(f'{BASE}/entry/123/', 'entry:123')

        assert self.run(proxy, scenario()) == {'id': 123, 'name': 'Team'}
        assert len(upstream.requests) == 1
        assert proxy.invalidate('entry:123') == 1

    def test_newer_request_supersedes_older(self, config):
        calls = []

        async def handler(request):
            calls.append(request)
            if len(calls) == 1:
                await asyncio.sleep(3600)
            return httpx.Response(200, json=LIVE_PAYLOAD)

        proxy = self.make_proxy(config, handler)

        async def scenario():
            older = asyncio.ensure_future(proxy.get_resource('live', 12, supersede=True))
            while not calls:
                await asyncio.sleep(0)
            newer = await proxy.get_resource('live', 12, supersede=True)
            return await older, newer

        older, newer = self.run(proxy, scenario())

        assert isinstance(older, FetchCancelled)
        assert newer == FetchSuccess(LIVE_PAYLOAD, from_cache=False)
        assert len(calls) == 2
        assert len(proxy.superseding) == 0
        status = proxy.get_error_tracker_status()
        assert status['cancelled_attempts'] == 1
        assert status['failed_attempts'] == 0
        assert status['last_errors'] == []

    def test_supersede_does_not_touch_other_keys(self, config, upstream):
        proxy = self.make_proxy(config, upstream)

        async def scenario():
            return await asyncio.gather(
                proxy.get_resource('live', 12, supersede=True),
                proxy.get_resource('live', 13, supersede=True)
            )

        results = self.run(proxy, scenario())

        assert all(isinstance(result, FetchSuccess) for result in results)

    def test_supersede_excludes_cancel_event(self, config, upstream):
        proxy = self.make_proxy(config, upstream)

        async def scenario():
            return await proxy.get_resource('live', 1, cancel_event=asyncio.Event(),
                                            supersede=True)

        with pytest.raises(ValueError):
            self.run(proxy, scenario())

    def test_relay_first_then_direct(self, config):
        requests = []

        def handler(request):
            requests.append(str(request.url))
            if request.url.host == 'relay.test':
                return httpx.Response(503)
            return httpx.Response(200, json=LIVE_PAYLOAD)

        config['upstream']['relay_url'] = 'https://relay.test/'
        proxy = self.make_proxy(config, handler)

        result = self.run(proxy, proxy.get_resource('live', 12))

        assert result == FetchSuccess(LIVE_PAYLOAD, from_cache=False)
        assert requests == ['https://relay.test/fpl-proxy/event/12/live/',
                            f'{BASE}/event/12/live/']
        assert proxy.get_error_tracker_status()['using_relay'] is True
        assert proxy.get_health()['relay'] == 'https://relay.test'

    def test_no_relay_by_default(self, config, upstream):
        proxy = self.make_proxy(config, upstream)
        assert proxy.get_error_tracker_status()['using_relay'] is False
        assert proxy.endpoints.live(1).descriptor.relay_url is None
