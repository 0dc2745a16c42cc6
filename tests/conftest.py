"""
Shared fixtures for the mindshare tracker tests.

The upstream API is replaced by httpx.MockTransport and every test gets its
own SQLite file under pytest's tmp_path.
"""

import os

os.environ.setdefault('LOG_TO_FILE', 'false')

import httpx
import pytest

from mindshare.database.database import Database
from mindshare.database.snapshot_store import SnapshotStore
from mindshare.services.fetch_client import MindshareFetchClient
from mindshare.services.leaderboard_cache import LeaderboardCache

DIRECT_URL = "https://direct.test/api/v1/community_mindshare"
PATH_PROXY_URL = "https://proxy.test/api/theoriq"
PASSTHROUGH_URL = "https://relay.test/get?url="


def make_payload(total_participants=100, total_activities=500, top_impressions=10000,
                 top_engagements=2000, entry_count=3):
    """Build an upstream-shaped payload with contiguous ranks."""
    entries = [
        {
            'rank': str(rank),
            'username': f"user{rank}",
            'mindshare': str(round(0.5 / rank, 4)),
            'tweet_counts': str(40 - rank),
            'total_impressions': str(5000 // rank),
            'total_likes': str(900 // rank),
        }
        for rank in range(1, entry_count + 1)
    ]
    return {
        'community_mindshare': {
            'total_unique_yappers': total_participants,
            'total_unique_tweets': total_activities,
            'top_250_yapper_impressions': top_impressions,
            'top_250_yapper_likes': top_engagements,
            'top_250_yappers': entries,
        }
    }


class UpstreamStub:
    """Routes requests by host and counts them."""

    def __init__(self):
        self.calls = []
        self.handlers = {}

    def route(self, host, handler):
        self.handlers[host] = handler

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        handler = self.handlers.get(request.url.host)
        if handler is None:
            return httpx.Response(404, json={'error': 'no route'})
        response = handler(request)
        if hasattr(response, '__await__'):
            response = await response
        return response

    def calls_to(self, host):
        return [call for call in self.calls if call.url.host == host]


@pytest.fixture
def upstream():
    return UpstreamStub()


@pytest.fixture
async def http_client(upstream):
    client = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    yield client
    await client.aclose()


@pytest.fixture
def cache():
    return LeaderboardCache(ttl_seconds=300)


@pytest.fixture
def fetch_client(cache, http_client):
    return MindshareFetchClient(
        cache,
        client=http_client,
        direct_url=DIRECT_URL,
        ticker="THEORIQ",
        fallback_sources=[('path', PATH_PROXY_URL), ('passthrough', PASSTHROUGH_URL)],
        timeout=0.5,
        diagnostic_timeout=1.0,
        api_key="",
    )


@pytest.fixture
async def database(tmp_path):
    db = Database(f"sqlite:///{tmp_path / 'mindshare_test.db'}")
    await db.initialize()
    yield db
    await db.close()


@pytest.fixture
def store(database):
    return SnapshotStore(database, timezone_name='UTC')
