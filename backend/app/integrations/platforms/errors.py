"""
   平台集成层（WooCommerce / Shopify / WordPress）专用异常类型。
   读接口（导入、心跳）在重试用尽后抛出；写接口（适配器）不抛，统一转成 SyncResult。
"""

from __future__ import annotations
from typing import Optional


# 429 限流 + 网关类 5xx 一定可重试；其余 5xx 也按瞬时故障处理
RETRYABLE_STATUSES = frozenset({429, 502, 503, 504})

# 平台明确报出的"重复 SKU"：不改数据重试也不会成功
PERMANENT_ERROR_CODES = frozenset({"product_invalid_sku"})


def is_retryable_status(status: int) -> bool:
    return status in RETRYABLE_STATUSES or status >= 500


class PlatformError(Exception):
    """Base for all platform errors."""
    retryable: bool = False


class PlatformHttpError(PlatformError):
    """Non-2xx response (after retries for read calls)."""

    def __init__(self, status: int, message: str, *, code: Optional[str] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.code = code or ""
        self.body = body or ""
        self.retryable = is_retryable_status(status) and self.code not in PERMANENT_ERROR_CODES


class PlatformTimeoutError(PlatformError):
    """Request exceeded its hard timeout; always retryable."""
    retryable = True


class PlatformNetworkError(PlatformError):
    """Connection reset / DNS / TLS failures; retryable."""
    retryable = True


class PlatformPayloadError(PlatformError):
    """Unexpected/invalid response payload shape or content."""


class UnsupportedPlatformError(PlatformError):
    """No adapter/client registered for the store's platform."""


class CredentialsError(PlatformError):
    """Store connection missing, or credentials incomplete/invalid."""
