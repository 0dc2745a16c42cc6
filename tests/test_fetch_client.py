import asyncio
import json
import logging

import httpx
import pytest

from mindshare.data_models.leaderboard import LeaderboardWindow
from mindshare.services.fetch_client import FetchSource
from mindshare.utils.exceptions import UpstreamUnavailableError

from conftest import make_payload


def ok(payload):
    return lambda request: httpx.Response(200, json=payload)


def status(code):
    return lambda request: httpx.Response(code, json={'error': 'unavailable'})


async def test_direct_success_is_live_and_cached(fetch_client, upstream, cache):
    upstream.route("direct.test", ok(make_payload()))

    result = await fetch_client.acquire(LeaderboardWindow.DAYS_7)

    assert result.is_live is True
    assert result.source == "direct"
    assert result.failed_attempts == []
    assert cache.get(LeaderboardWindow.DAYS_7).payload == make_payload()

    request = upstream.calls[0]
    assert request.url.params['ticker'] == "THEORIQ"
    assert request.url.params['window'] == "7d"
    assert request.headers['accept'] == "application/json"


@pytest.mark.parametrize("window", list(LeaderboardWindow))
async def test_second_acquire_within_ttl_hits_cache(fetch_client, upstream, window):
    upstream.route("direct.test", ok(make_payload()))

    await fetch_client.acquire(window)
    second = await fetch_client.acquire(window)

    assert len(upstream.calls) == 1
    assert second.from_cache is True
    assert second.payload == make_payload()


async def test_use_cache_false_always_fetches(fetch_client, upstream):
    upstream.route("direct.test", ok(make_payload()))

    await fetch_client.acquire(LeaderboardWindow.DAYS_7)
    await fetch_client.acquire(LeaderboardWindow.DAYS_7, use_cache=False)

    assert len(upstream.calls) == 2


async def test_primary_timeout_then_503_then_passthrough_success(fetch_client, upstream, caplog):
    async def slow(request):
        await asyncio.sleep(5)
        return httpx.Response(200, json=make_payload())

    fallback_payload = make_payload(total_participants=7)
    upstream.route("direct.test", slow)
    upstream.route("proxy.test", status(503))
    upstream.route("relay.test", ok({'contents': json.dumps(fallback_payload)}))

    with caplog.at_level(logging.WARNING, logger="mindshare.services.fetch_client"):
        result = await fetch_client.acquire(LeaderboardWindow.DAYS_7)

    assert result.payload == fallback_payload
    assert result.is_live is True
    assert result.source == "fallback-2"
    assert [a.source for a in result.failed_attempts] == ["direct", "fallback-1"]
    assert "timed out" in result.failed_attempts[0].reason
    assert result.failed_attempts[1].reason == "HTTP 503"

    warnings = [r for r in caplog.records
                if r.name == "mindshare.services.fetch_client" and r.levelno == logging.WARNING]
    assert len(warnings) == 2


async def test_path_fallback_keys_window_in_path(fetch_client, upstream):
    upstream.route("direct.test", status(500))
    upstream.route("proxy.test", ok(make_payload()))

    result = await fetch_client.acquire(LeaderboardWindow.DAYS_30)

    assert result.source == "fallback-1"
    assert upstream.calls_to("proxy.test")[0].url.path == "/api/theoriq/30d"


async def test_passthrough_encodes_target_url(fetch_client, upstream):
    upstream.route("direct.test", status(500))
    upstream.route("proxy.test", status(502))
    upstream.route("relay.test", ok(make_payload()))

    await fetch_client.acquire(LeaderboardWindow.DAYS_7)

    relay_request = upstream.calls_to("relay.test")[0]
    assert relay_request.url.params['url'] == fetch_client.target_url(LeaderboardWindow.DAYS_7)


async def test_structurally_invalid_payload_falls_through(fetch_client, upstream):
    upstream.route("direct.test", ok({'unexpected': True}))
    upstream.route("proxy.test", ok(make_payload()))

    result = await fetch_client.acquire(LeaderboardWindow.DAYS_7)

    assert result.source == "fallback-1"
    assert "community_mindshare" in result.failed_attempts[0].reason


async def test_transport_error_falls_through(fetch_client, upstream):
    def broken(request):
        raise httpx.ConnectError("connection refused", request=request)

    upstream.route("direct.test", broken)
    upstream.route("proxy.test", ok(make_payload()))

    result = await fetch_client.acquire(LeaderboardWindow.DAYS_7)
    assert result.source == "fallback-1"
    assert "ConnectError" in result.failed_attempts[0].reason


async def test_all_sources_exhausted(fetch_client, upstream, cache):
    upstream.route("direct.test", status(500))
    upstream.route("proxy.test", status(503))
    upstream.route("relay.test", lambda request: httpx.Response(200, text="<html>not json</html>"))

    with pytest.raises(UpstreamUnavailableError) as exc_info:
        await fetch_client.acquire(LeaderboardWindow.DAYS_7)

    assert len(exc_info.value.attempts) == 3
    assert exc_info.value.code == "upstream_unavailable"
    assert len(cache) == 0


async def test_no_stale_substitution_but_explicit_cache_read(fetch_client, upstream, cache):
    cache.put(LeaderboardWindow.DAYS_7, make_payload(), "direct")
    cache.ttl = 0
    upstream.route("direct.test", status(500))

    with pytest.raises(UpstreamUnavailableError):
        await fetch_client.acquire(LeaderboardWindow.DAYS_7)

    stale = fetch_client.cached(LeaderboardWindow.DAYS_7)
    assert stale.from_cache is True
    assert stale.payload == make_payload()


async def test_concurrent_acquires_share_one_fetch(fetch_client, upstream):
    release = asyncio.Event()

    async def gated(request):
        await release.wait()
        return httpx.Response(200, json=make_payload())

    upstream.route("direct.test", gated)

    first = asyncio.create_task(fetch_client.acquire(LeaderboardWindow.DAYS_7))
    second = asyncio.create_task(fetch_client.acquire(LeaderboardWindow.DAYS_7))
    await asyncio.sleep(0.01)
    release.set()
    results = await asyncio.gather(first, second)

    assert len(upstream.calls) == 1
    assert results[0].payload == results[1].payload


async def test_invalidation_during_fetch_keeps_cache_empty(fetch_client, upstream, cache):
    release = asyncio.Event()

    async def gated(request):
        await release.wait()
        return httpx.Response(200, json=make_payload())

    upstream.route("direct.test", gated)

    task = asyncio.create_task(fetch_client.acquire(LeaderboardWindow.DAYS_7))
    await asyncio.sleep(0.01)
    fetch_client.invalidate()
    release.set()
    result = await task

    assert result.is_live is True
    assert cache.get(LeaderboardWindow.DAYS_7) is None


async def test_api_key_only_sent_to_direct_source(cache, http_client, upstream):
    from mindshare.services.fetch_client import MindshareFetchClient
    from conftest import DIRECT_URL, PATH_PROXY_URL

    client = MindshareFetchClient(
        cache, client=http_client, direct_url=DIRECT_URL,
        fallback_sources=[('path', PATH_PROXY_URL)], timeout=0.5,
        api_key="secret", api_key_header="x-api-key",
    )
    upstream.route("direct.test", status(401))
    upstream.route("proxy.test", ok(make_payload()))

    await client.acquire(LeaderboardWindow.DAYS_7)

    assert upstream.calls_to("direct.test")[0].headers['x-api-key'] == "secret"
    assert 'x-api-key' not in upstream.calls_to("proxy.test")[0].headers


def test_passthrough_unwraps_dict_envelope():
    source = FetchSource(name="fallback", kind="passthrough", base_url="https://relay.test/?")
    assert source.unwrap({'contents': {'community_mindshare': {}}}) == {'community_mindshare': {}}
    assert source.unwrap({'community_mindshare': {}}) == {'community_mindshare': {}}
