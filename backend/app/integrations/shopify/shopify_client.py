"""面向 Admin GraphQL 的轻量 Client（按店铺实例化），只放同步需要的方法"""
from __future__ import annotations

import logging, time
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests

from app.core.config import settings
from app.integrations.platforms.errors import PlatformPayloadError
from app.integrations.platforms.http_client import PlatformHttpClient
from app.integrations.platforms.paging import cap_at_modified_boundary, needs_more
from app.integrations.shopify.graphql_queries import PRODUCTS_UPDATED_SINCE, SHOP_PING, updated_since_filter
from app.services.credentials import ShopifyCredentials, normalize_shopify_domain
from app.utils.clock import iso_utc


logger = logging.getLogger(__name__)


def _updated_at(node: Dict[str, Any]) -> Any:
    return node.get("updatedAt")


class ShopifyClient:

    def __init__(
        self,
        shop_url: str,
        credentials: ShopifyCredentials,
        *,
        http: Optional[PlatformHttpClient] = None,
        session: Optional[requests.Session] = None,
        read_timeout: Optional[int] = None,
    ) -> None:
        self.shop_domain = normalize_shopify_domain(shop_url)
        self.credentials = credentials
        self.http = http or PlatformHttpClient(session=session, read_timeout=read_timeout)


    # ---------------- 基础：端点 & 认证 ----------------
    @property
    def endpoint(self) -> str:
        # graphql.json 表示走 GraphQL Admin API
        return f"https://{self.shop_domain}/admin/api/{settings.SHOPIFY_API_VERSION}/graphql.json"


    def auth_headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "X-Shopify-Access-Token": self.credentials.access_token,
        }


    '''
    通用 GraphQL POST（读接口用）
        - HTTP 429/5xx/网络异常的退避重试交给 PlatformHttpClient.request；
        - 顶层 GraphQL errors 视为硬错误（语法/权限问题），直接抛 PlatformPayloadError；
        - 返回完整 data（上层自己从 data[...] 取需要的节点）
    '''
    def _post_graphql(self, query: str, variables: Optional[dict] = None, *, op_name: str = "") -> dict:
        payload = {"query": query, "variables": variables or {}}
        start = time.perf_counter()
        resp = self.http.request("POST", self.endpoint, op=op_name, headers=self.auth_headers(), json=payload)
        data = self.http.as_json(resp)
        latency_ms = int((time.perf_counter() - start) * 1000)

        if not isinstance(data, dict):
            raise PlatformPayloadError(f"{op_name}: GraphQL response is not an object")
        if data.get("errors"):
            logger.error("shopify.graphql.gql_errors op=%s latency_ms=%s errors=%s", op_name, latency_ms, data["errors"])
            raise PlatformPayloadError(f"{op_name}: GraphQL top-level errors")

        # 不打印 query 全文，避免日志过大；仅打 op_name / 变量键
        logger.info("shopify.graphql.ok op=%s latency_ms=%s vars=%s", op_name, latency_ms, list(payload["variables"].keys()))
        return data


    # 基础连通性探测（验证 token/域名/版本是否正确）
    def ping(self) -> dict:
        return self._post_graphql(SHOP_PING, op_name="shop.ping")


    def list_products_updated_since(
        self,
        since: datetime,
        *,
        max_products: Optional[int] = None,
        page_size: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """心跳：products(query: "updated_at:>'ISO'") 游标翻页，按 updatedAt 边界封顶。"""
        cap = max_products or settings.HEARTBEAT_MAX_PRODUCTS
        first = page_size or settings.HEARTBEAT_SHOPIFY_PAGE_SIZE
        nodes: List[Dict[str, Any]] = []
        cursor: Optional[str] = None

        while needs_more(nodes, cap, _updated_at):
            data = self._post_graphql(
                PRODUCTS_UPDATED_SINCE,
                {"query": updated_since_filter(iso_utc(since)), "first": first, "after": cursor},
                op_name="products.updated_since",
            )
            conn = (data.get("data") or {}).get("products") or {}
            edges = conn.get("edges") or []
            for edge in edges:
                nodes.append(edge.get("node") or {})
                cursor = edge.get("cursor")
            if not edges or not (conn.get("pageInfo") or {}).get("hasNextPage"):
                break
        return cap_at_modified_boundary(nodes, cap, _updated_at)


    def close(self) -> None:
        self.http.close()
