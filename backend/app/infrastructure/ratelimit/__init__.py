"""
  Rate limit infrastructure utilities.
  Expose the public limiter(s) here so callers can do:
     from app.infrastructure.ratelimit import RedisFixedWindowLimiter
"""
from .redis_fixed_window import RedisFixedWindowLimiter

__all__ = ["RedisFixedWindowLimiter"]
