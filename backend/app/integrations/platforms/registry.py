"""
   平台 → 适配器工厂 的注册表。
   新平台只需 register_adapter，不用改 worker 的分派逻辑。
"""

from __future__ import annotations
import logging
from typing import Callable, Dict

from app.integrations.platforms.base import PlatformAdapter
from app.integrations.platforms.errors import UnsupportedPlatformError

logger = logging.getLogger(__name__)

# factory(shop_url, credentials, **kwargs) -> PlatformAdapter
AdapterFactory = Callable[..., PlatformAdapter]

_ADAPTERS: Dict[str, AdapterFactory] = {}


def register_adapter(platform: str, factory: AdapterFactory) -> None:
    key = (platform or "").strip().lower()
    if not key:
        raise ValueError("platform key is required")
    if key in _ADAPTERS and _ADAPTERS[key] is not factory:
        logger.warning("adapter.registry.override platform=%s", key)
    _ADAPTERS[key] = factory


def registered_platforms() -> list[str]:
    _ensure_builtin_adapters()
    return sorted(_ADAPTERS)


def get_adapter(platform: str, shop_url: str, credentials, **kwargs) -> PlatformAdapter:
    _ensure_builtin_adapters()
    key = (platform or "").strip().lower()
    factory = _ADAPTERS.get(key)
    if factory is None:
        raise UnsupportedPlatformError(f"unsupported platform: {platform!r}")
    return factory(shop_url, credentials, **kwargs)


def _ensure_builtin_adapters() -> None:
    # 延迟导入：各平台模块在 import 时自注册，避免循环依赖
    if "woocommerce" not in _ADAPTERS:
        import app.integrations.woocommerce.adapter  # noqa: F401
    if "shopify" not in _ADAPTERS:
        import app.integrations.shopify.adapter  # noqa: F401
