"""
  Platform integration primitives shared by the WooCommerce / Shopify / WordPress packages.
"""
from .base import PlatformAdapter, SyncResult
from .errors import (
    PlatformError,
    PlatformHttpError,
    PlatformTimeoutError,
    PlatformNetworkError,
    PlatformPayloadError,
    UnsupportedPlatformError,
    CredentialsError,
)
from .registry import get_adapter, register_adapter

__all__ = [
    "PlatformAdapter", "SyncResult",
    "PlatformError", "PlatformHttpError", "PlatformTimeoutError", "PlatformNetworkError",
    "PlatformPayloadError", "UnsupportedPlatformError", "CredentialsError",
    "get_adapter", "register_adapter",
]
