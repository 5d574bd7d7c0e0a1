"""
Shopify 写适配器：GraphQL productUpdate
  - 只映射 dirty 字段；input 只剩 id 时不发请求；
  - userErrors 是业务校验失败，不可重试；顶层 errors 里 THROTTLED 可重试；HTTP 层按状态码归类。
"""
from __future__ import annotations
import logging
from typing import Any, Dict, Iterable, Optional

import requests

from app.core.config import settings
from app.core.logging import truncate_for_log
from app.integrations.platforms.base import PlatformAdapter, SyncResult
from app.integrations.platforms.errors import PlatformError, is_retryable_status
from app.integrations.platforms.http_client import PlatformHttpClient
from app.integrations.platforms.registry import register_adapter
from app.integrations.shopify.graphql_queries import PRODUCT_UPDATE
from app.integrations.shopify.payload_utils import build_shopify_input, has_changes, snapshot_from_product
from app.integrations.shopify.shopify_client import ShopifyClient
from app.services.credentials import ShopifyCredentials

logger = logging.getLogger(__name__)


class ShopifyAdapter(PlatformAdapter):

    platform = "shopify"

    def __init__(
        self,
        shop_url: str,
        credentials: ShopifyCredentials,
        *,
        http: Optional[PlatformHttpClient] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        http = http or PlatformHttpClient(session=session, read_timeout=settings.PLATFORM_HTTP_TIMEOUT, max_retries=0)
        self.client = ShopifyClient(shop_url, credentials, http=http)


    def update_product(self, platform_product_id: str, payload: Dict[str, Any], dirty_fields: Iterable[str]) -> SyncResult:
        product_input = build_shopify_input(platform_product_id, payload, dirty_fields)
        if not has_changes(product_input):
            logger.info("shopify.update.noop product=%s", platform_product_id)
            return SyncResult.noop()

        try:
            resp = self.client.http.send_once(
                "POST", self.client.endpoint,
                headers=self.client.auth_headers(),
                json={"query": PRODUCT_UPDATE, "variables": {"input": product_input}},
            )
        except PlatformError as e:
            logger.warning("shopify.update.network_error product=%s err=%s", platform_product_id, e)
            return SyncResult.fail(str(e), retryable=e.retryable)

        if not resp.ok:
            text = resp.text or ""
            retryable = is_retryable_status(resp.status_code)
            logger.warning(
                "shopify.update.http_error product=%s status=%s retryable=%s body=%s",
                platform_product_id, resp.status_code, retryable, truncate_for_log(text),
            )
            return SyncResult.fail(f"Shopify API error {resp.status_code}: {text[:200]}", retryable=retryable)

        try:
            data = resp.json()
        except ValueError:
            return SyncResult.fail("Shopify API returned a non-JSON response", retryable=True)

        if data.get("errors"):
            errors = data["errors"] if isinstance(data["errors"], list) else [data["errors"]]
            codes = {str(((e or {}).get("extensions") or {}).get("code") or "") for e in errors if isinstance(e, dict)}
            msgs = [str(e.get("message") or "") for e in errors if isinstance(e, dict)]
            # 限流以 HTTP 200 + THROTTLED 返回，按暂时性错误处理
            throttled = ("THROTTLED" in codes) or any("throttle" in m.lower() for m in msgs)
            transient = throttled or ("INTERNAL_SERVER_ERROR" in codes)
            logger.warning(
                "shopify.update.gql_errors product=%s retryable=%s codes=%s errors=%s",
                platform_product_id, transient, sorted(c for c in codes if c), data["errors"],
            )
            if throttled:
                return SyncResult.fail("Shopify API throttled", retryable=True)
            return SyncResult.fail("Shopify GraphQL errors", retryable=transient)

        result = (data.get("data") or {}).get("productUpdate") or {}
        user_errors = result.get("userErrors") or []
        if user_errors:
            msg = "; ".join(str(e.get("message") or "") for e in user_errors)
            logger.warning("shopify.update.user_errors product=%s errors=%s", platform_product_id, user_errors)
            return SyncResult.fail(msg or "Shopify userErrors", retryable=False)

        logger.info("shopify.update.ok product=%s fields=%s", platform_product_id, sorted(k for k in product_input if k != "id"))
        return SyncResult.ok(snapshot_from_product(result.get("product")))


def _factory(shop_url: str, credentials: ShopifyCredentials, **kwargs) -> ShopifyAdapter:
    return ShopifyAdapter(shop_url, credentials, **kwargs)


register_adapter("shopify", _factory)
