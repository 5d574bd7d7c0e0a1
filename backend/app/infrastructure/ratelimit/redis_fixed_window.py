# app/infrastructure/ratelimit/redis_fixed_window.py
from __future__ import annotations
import logging
from typing import Optional, Tuple

import redis


logger = logging.getLogger(__name__)


"""
固定窗口计数限流（多进程/多机共享），用于 push-to-store 的按用户限流。
    key: {prefix}:{env}:{user_id}

    hit() 原子步骤（Lua）：
      1) INCR 计数
      2) 首次计数时 PEXPIRE 设置窗口长度
      3) 返回 {count, pttl}；count > max 即拒绝
    进程内 dict 在多实例部署下不可靠，所以计数放在 Redis。
"""
class RedisFixedWindowLimiter:

    LUA_SCRIPT = """
    local key = KEYS[1]
    local window_ms = tonumber(ARGV[1])

    local count = redis.call('INCR', key)
    if count == 1 then
        redis.call('PEXPIRE', key, window_ms)
    end
    local ttl = redis.call('PTTL', key)
    if ttl < 0 then
        -- 兜底：key 存在但没有过期时间（例如之前 PEXPIRE 未执行），补上
        redis.call('PEXPIRE', key, window_ms)
        ttl = window_ms
    end
    return {count, ttl}
    """


    def __init__(self, client, *, prefix: str, max_requests: int, window_sec: int, env: str = "dev"):
        self.r = client
        self.prefix = prefix
        self.env = env
        self.max_requests = max(1, int(max_requests))
        self.window_ms = max(1, int(window_sec)) * 1000
        self._sha = self.r.script_load(self.LUA_SCRIPT)


    """
       从 settings 读取 Redis URL / 阈值 / 窗口 / 前缀构造 limiter；没配置 Redis 返回 None。
    """
    @classmethod
    def from_settings(cls) -> Optional["RedisFixedWindowLimiter"]:
        from app.core.config import settings

        url = settings.redis_for_counters
        if not url:
            logger.warning("push.ratelimit.disabled reason=no_redis_url")
            return None

        client = redis.from_url(url, decode_responses=True)
        return cls(
            client,
            prefix=settings.PUSH_RL_KEY_PREFIX,
            max_requests=settings.PUSH_RATE_LIMIT_MAX,
            window_sec=settings.PUSH_RATE_LIMIT_WINDOW_SEC,
            env=settings.ENVIRONMENT,
        )


    def key_for(self, subject: str) -> str:
        return f"{self.prefix}:{self.env}:{subject}"


    """
        执行 Lua（带 NOSCRIPT 兜底重载）。
    """
    def _eval(self, key: str) -> Tuple[int, int]:
        try:
            res = self.r.evalsha(self._sha, 1, key, self.window_ms)
        except redis.exceptions.NoScriptError:
            # Redis 重启后脚本缓存丢失，重载再试一次
            self._sha = self.r.script_load(self.LUA_SCRIPT)
            res = self.r.evalsha(self._sha, 1, key, self.window_ms)
        return int(res[0]), int(res[1])


    """
        记一次请求；返回 (allowed, retry_after_ms)。
        - allowed=True：窗口内未超限
        - allowed=False：建议 retry_after_ms 毫秒后再试（窗口剩余时间）
    """
    def hit(self, subject: str) -> Tuple[bool, int]:
        count, ttl_ms = self._eval(self.key_for(subject))
        if count > self.max_requests:
            logger.info("push.ratelimit.blocked subject=%s count=%s ttl_ms=%s", subject, count, ttl_ms)
            return False, max(0, ttl_ms)
        return True, 0
