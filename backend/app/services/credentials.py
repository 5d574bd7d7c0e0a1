"""
   店铺凭据归一化：connection 记录 → 单一的强类型凭据。

   credentials_encrypted 的历史形状并不统一：
     - 可能是 JSON 字符串，也可能已经是对象；
     - 键名有多套别名（consumer_key / api_key、wp_username / username ...）；
     - 部分老记录只在 connection.api_key / api_secret 列里有值。
   这里一次解析完，业务代码拿到的永远是 WooCommerceCredentials / ShopifyCredentials / WordPressCredentials。
"""

from __future__ import annotations
import logging
import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union
from urllib.parse import urlparse

from app.db.model.store import PlatformConnection, StorePlatform
from app.integrations.platforms.errors import CredentialsError, UnsupportedPlatformError
from app.utils.serialization import parse_json_maybe

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WooCommerceCredentials:
    consumer_key: str
    consumer_secret: str

    @property
    def uses_query_auth(self) -> bool:
        # ck_ 开头的是 WooCommerce REST key，走 query 参数；否则走 Basic
        return self.consumer_key.startswith("ck_")


@dataclass(frozen=True)
class ShopifyCredentials:
    access_token: str


@dataclass(frozen=True)
class WordPressCredentials:
    username: str
    app_password: str


StoreCredentials = Union[WooCommerceCredentials, ShopifyCredentials, WordPressCredentials]


_ALIASES = {
    "consumer_key": ("consumer_key", "api_key", "consumerKey"),
    "consumer_secret": ("consumer_secret", "api_secret", "consumerSecret"),
    "access_token": ("access_token", "accessToken", "api_key"),
    "wp_username": ("wp_username", "username", "wpUsername"),
    "wp_app_password": ("wp_app_password", "app_password", "wpAppPassword", "application_password"),
}


def _blob(connection: PlatformConnection) -> Mapping[str, Any]:
    raw = parse_json_maybe(getattr(connection, "credentials_encrypted", None))
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        logger.warning("credentials.blob.unexpected_shape type=%s", type(raw).__name__)
        return {}
    return raw


def _pick(blob: Mapping[str, Any], field: str) -> str:
    for key in _ALIASES[field]:
        value = blob.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def resolve_credentials(platform: str, connection: Optional[PlatformConnection]) -> StoreCredentials:
    """按平台解析主凭据；缺失时抛 CredentialsError（worker 视为永久失败）。"""
    if connection is None:
        raise CredentialsError("store connection not found")

    key = (platform or "").strip().lower()
    blob = _blob(connection)

    if key == StorePlatform.WOOCOMMERCE:
        consumer_key = _pick(blob, "consumer_key") or (connection.api_key or "").strip()
        consumer_secret = _pick(blob, "consumer_secret") or (connection.api_secret or "").strip()
        if not consumer_key or not consumer_secret:
            raise CredentialsError("woocommerce consumer key/secret missing")
        return WooCommerceCredentials(consumer_key=consumer_key, consumer_secret=consumer_secret)

    if key == StorePlatform.SHOPIFY:
        token = _pick(blob, "access_token") or (connection.api_key or "").strip()
        if not token:
            raise CredentialsError("shopify access token missing")
        return ShopifyCredentials(access_token=token)

    raise UnsupportedPlatformError(f"unsupported platform: {platform!r}")


def resolve_wordpress_credentials(connection: Optional[PlatformConnection]) -> Optional[WordPressCredentials]:
    """WooCommerce 店铺的博客凭据（WordPress 应用密码）；没配置返回 None。"""
    if connection is None:
        return None
    blob = _blob(connection)
    username = _pick(blob, "wp_username")
    app_password = _pick(blob, "wp_app_password")
    if not username or not app_password:
        return None
    return WordPressCredentials(username=username, app_password=app_password)


# ---------- URL ----------
_LOCALHOST = {"localhost", "127.0.0.1"}


def normalize_store_url(url: Optional[str]) -> str:
    """
    WooCommerce/WordPress 站点根地址：去尾部斜杠，强制 https（本地 http://localhost 除外）。
    """
    text = (url or "").strip().rstrip("/")
    if not text:
        raise CredentialsError("store url missing")
    if "://" not in text:
        text = "https://" + text
    parsed = urlparse(text)
    if parsed.scheme == "http" and (parsed.hostname or "") in _LOCALHOST:
        return text
    if parsed.scheme != "https" or not parsed.hostname:
        raise CredentialsError("store url must use https")
    return text


_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)


def normalize_shopify_domain(shop_url: Optional[str]) -> str:
    """'my-shop' / 'https://my-shop.myshopify.com/' → 'my-shop.myshopify.com'"""
    text = _SCHEME_RE.sub("", (shop_url or "").strip()).rstrip("/")
    if not text:
        raise CredentialsError("shopify shop url missing")
    text = text.split("/", 1)[0]
    if ".myshopify.com" not in text:
        text = f"{text}.myshopify.com"
    return text
