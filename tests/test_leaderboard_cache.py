from mindshare.data_models.leaderboard import LeaderboardWindow
from mindshare.services.leaderboard_cache import LeaderboardCache


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def test_entry_expires_after_ttl():
    clock = FakeClock()
    cache = LeaderboardCache(ttl_seconds=300, clock=clock)
    cache.put(LeaderboardWindow.DAYS_7, {'a': 1}, "direct")

    clock.now += 299
    assert cache.get(LeaderboardWindow.DAYS_7).payload == {'a': 1}

    clock.now += 1
    assert cache.get(LeaderboardWindow.DAYS_7) is None
    # Stale data is still reachable when asked for explicitly
    assert cache.get(LeaderboardWindow.DAYS_7, allow_stale=True).payload == {'a': 1}


def test_windows_are_cached_independently():
    cache = LeaderboardCache(ttl_seconds=300, clock=FakeClock())
    cache.put(LeaderboardWindow.DAYS_7, {'w': '7d'}, "direct")
    assert cache.get(LeaderboardWindow.DAYS_30) is None


def test_invalidate_clears_everything():
    cache = LeaderboardCache(ttl_seconds=300, clock=FakeClock())
    cache.put(LeaderboardWindow.DAYS_7, {}, "direct")
    cache.put(LeaderboardWindow.DAYS_30, {}, "direct")

    cache.invalidate()
    assert len(cache) == 0


def test_invalidate_single_window():
    cache = LeaderboardCache(ttl_seconds=300, clock=FakeClock())
    cache.put(LeaderboardWindow.DAYS_7, {}, "direct")
    cache.put(LeaderboardWindow.DAYS_30, {}, "direct")

    cache.invalidate(LeaderboardWindow.DAYS_7)
    assert cache.get(LeaderboardWindow.DAYS_7) is None
    assert cache.get(LeaderboardWindow.DAYS_30) is not None


def test_put_from_before_invalidation_is_dropped():
    cache = LeaderboardCache(ttl_seconds=300, clock=FakeClock())
    generation = cache.generation
    cache.invalidate()

    assert cache.put(LeaderboardWindow.DAYS_7, {}, "direct", generation=generation) is False
    assert cache.get(LeaderboardWindow.DAYS_7) is None
    assert cache.put(LeaderboardWindow.DAYS_7, {}, "direct", generation=cache.generation) is True
