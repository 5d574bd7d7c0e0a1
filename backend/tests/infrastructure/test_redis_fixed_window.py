import redis

from app.core.config import settings
from app.infrastructure.ratelimit.redis_fixed_window import RedisFixedWindowLimiter
from tests.conftest import FakeRedis


def test_allows_up_to_max_then_blocks_with_window_ttl(fake_redis):
    limiter = RedisFixedWindowLimiter(fake_redis, prefix="sync:push:rl", max_requests=2, window_sec=60, env="test")

    assert limiter.hit("7") == (True, 0)
    assert limiter.hit("7") == (True, 0)
    assert limiter.hit("7") == (False, 60_000)
    # 其它用户互不影响
    assert limiter.hit("8") == (True, 0)
    assert set(fake_redis.counts) == {"sync:push:rl:test:7", "sync:push:rl:test:8"}


def test_reloads_script_after_noscript(fake_redis):
    class FlakyRedis(FakeRedis):
        failed = False

        def evalsha(self, sha, numkeys, key, window_ms):
            if not self.failed:
                self.failed = True
                raise redis.exceptions.NoScriptError("NOSCRIPT No matching script")
            return super().evalsha(sha, numkeys, key, window_ms)

    client = FlakyRedis()
    limiter = RedisFixedWindowLimiter(client, prefix="p", max_requests=1, window_sec=1)

    assert limiter.hit("u") == (True, 0)
    assert client.loaded == 2


def test_from_settings_without_redis_url_returns_none(monkeypatch):
    monkeypatch.setattr(settings, "REDIS_URL", None)
    monkeypatch.setattr(settings, "CELERY_BROKER_URL", None)
    assert RedisFixedWindowLimiter.from_settings() is None
