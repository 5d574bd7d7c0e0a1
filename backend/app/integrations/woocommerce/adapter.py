"""
WooCommerce 写适配器：PUT /wp-json/wc/v3/products/{id}
  - 只发一次（不在这里重试），结果统一转成 SyncResult，由队列决定重试/死信；
  - 429/5xx、超时、网络异常 → retryable；其它 4xx → 永久失败；
  - product_invalid_sku（重复 SKU）无论状态码都是永久失败。
"""
from __future__ import annotations
import logging
from typing import Any, Dict, Iterable, Optional

import requests

from app.core.config import settings
from app.core.logging import truncate_for_log
from app.integrations.platforms.base import PlatformAdapter, SyncResult
from app.integrations.platforms.errors import PERMANENT_ERROR_CODES, PlatformError, is_retryable_status
from app.integrations.platforms.http_client import PlatformHttpClient, error_code_from_body
from app.integrations.platforms.registry import register_adapter
from app.integrations.woocommerce.client import WooCommerceClient
from app.integrations.woocommerce.payload import build_woo_payload
from app.services.credentials import WooCommerceCredentials

logger = logging.getLogger(__name__)


class WooCommerceAdapter(PlatformAdapter):

    platform = "woocommerce"

    def __init__(
        self,
        shop_url: str,
        credentials: WooCommerceCredentials,
        *,
        http: Optional[PlatformHttpClient] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        http = http or PlatformHttpClient(session=session, read_timeout=settings.PLATFORM_HTTP_TIMEOUT, max_retries=0)
        self.client = WooCommerceClient(shop_url, credentials, http=http)


    def update_product(self, platform_product_id: str, payload: Dict[str, Any], dirty_fields: Iterable[str]) -> SyncResult:
        body = build_woo_payload(payload, dirty_fields)
        if not body:
            logger.info("woo.update.noop product=%s", platform_product_id)
            return SyncResult.noop()

        url = self.client.api_url(f"products/{platform_product_id}")
        try:
            resp = self.client.http.send_once(
                "PUT", url, json=body,
                headers={"Content-Type": "application/json"},
                **self.client.auth_kwargs(),
            )
        except PlatformError as e:
            # 超时 / 网络异常：可重试
            logger.warning("woo.update.network_error product=%s err=%s", platform_product_id, e)
            return SyncResult.fail(str(e), retryable=e.retryable)

        if not resp.ok:
            text = resp.text or ""
            code = error_code_from_body(text)
            retryable = is_retryable_status(resp.status_code) and code not in PERMANENT_ERROR_CODES
            logger.warning(
                "woo.update.http_error product=%s status=%s code=%s retryable=%s body=%s",
                platform_product_id, resp.status_code, code, retryable, truncate_for_log(text),
            )
            return SyncResult.fail(f"WooCommerce API error {resp.status_code}: {text[:200]}", retryable=retryable)

        try:
            snapshot = resp.json()
        except ValueError:
            snapshot = None
        logger.info("woo.update.ok product=%s fields=%s", platform_product_id, sorted(body.keys()))
        return SyncResult.ok(snapshot if isinstance(snapshot, dict) else None)


def _factory(shop_url: str, credentials: WooCommerceCredentials, **kwargs) -> WooCommerceAdapter:
    return WooCommerceAdapter(shop_url, credentials, **kwargs)


register_adapter("woocommerce", _factory)
