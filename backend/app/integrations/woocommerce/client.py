"""
WooCommerce REST v3 读接口（导入 / 心跳用）
  - 认证：ck_ 开头的 key 走 consumer_key/consumer_secret 查询参数，否则 HTTP Basic；
  - 所有读请求都走 PlatformHttpClient.request（429/5xx/网络异常指数退避，用尽后抛 PlatformError）；
  - 分页排序用 id asc（稳定键），避免长时间导入时 date_modified 漂移造成跨页重复/遗漏。
"""
from __future__ import annotations
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import requests

from app.core.config import settings
from app.integrations.platforms.errors import PlatformError, PlatformPayloadError
from app.integrations.platforms.http_client import PlatformHttpClient, header_int
from app.integrations.platforms.paging import cap_at_modified_boundary, needs_more
from app.services.credentials import WooCommerceCredentials, normalize_store_url
from app.utils.clock import iso_utc

logger = logging.getLogger(__name__)


def _woo_modified(p: Dict[str, Any]) -> Any:
    return p.get("date_modified_gmt") or p.get("date_modified")


class WooCommerceClient:

    def __init__(
        self,
        shop_url: str,
        credentials: WooCommerceCredentials,
        *,
        http: Optional[PlatformHttpClient] = None,
        session: Optional[requests.Session] = None,
        read_timeout: Optional[int] = None,
    ) -> None:
        self.base_url = normalize_store_url(shop_url)
        self.credentials = credentials
        self.http = http or PlatformHttpClient(
            session=session,
            read_timeout=read_timeout or settings.IMPORT_REQUEST_TIMEOUT,
        )


    # ---------- 基础 ----------
    def api_url(self, path: str) -> str:
        return f"{self.base_url}/wp-json/wc/v3/{path.lstrip('/')}"


    def auth_kwargs(self, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """组装 params/auth；写接口（适配器）也复用这里。"""
        query = dict(params or {})
        kwargs: Dict[str, Any] = {}
        if self.credentials.uses_query_auth:
            query["consumer_key"] = self.credentials.consumer_key
            query["consumer_secret"] = self.credentials.consumer_secret
        else:
            kwargs["auth"] = (self.credentials.consumer_key, self.credentials.consumer_secret)
        kwargs["params"] = query
        return kwargs


    def _get(self, path: str, params: Optional[Dict[str, Any]] = None, *, op: str) -> Tuple[Any, Dict[str, str]]:
        return self.http.get_json(self.api_url(path), op=op, **self.auth_kwargs(params))


    def _get_list(self, path: str, params: Optional[Dict[str, Any]] = None, *, op: str) -> Tuple[List[Dict[str, Any]], Dict[str, str]]:
        data, headers = self._get(path, params, op=op)
        if not isinstance(data, list):
            raise PlatformPayloadError(f"{op}: expected a JSON list, got {type(data).__name__}")
        return data, headers


    # ---------- 计数（发现阶段）----------
    def count_products(self) -> int:
        """per_page=1 的轻量请求，只读 X-WP-Total。"""
        _, headers = self._get_list("products", {"per_page": 1, "status": "any"}, op="woo.count_products")
        return header_int(headers, "X-WP-Total")


    def count_categories(self) -> int:
        _, headers = self._get_list("products/categories", {"per_page": 1}, op="woo.count_categories")
        return header_int(headers, "X-WP-Total")


    def detect_seo_plugin(self) -> str:
        """
        看 /wp-json/ 的 namespaces：yoast/v1 → yoast；rankmath/v1 → rankmath；否则 none。
        探测失败不影响导入，降级为 none。
        """
        try:
            data, _ = self.http.get_json(f"{self.base_url}/wp-json/", op="woo.detect_seo", **self.auth_kwargs())
        except PlatformError as e:
            logger.warning("woo.detect_seo.failed base=%s err=%s", self.base_url, e)
            return "none"
        namespaces = data.get("namespaces") if isinstance(data, dict) else None
        namespaces = namespaces or []
        if "yoast/v1" in namespaces:
            return "yoast"
        if "rankmath/v1" in namespaces:
            return "rankmath"
        return "none"


    # ---------- 列表 ----------
    def list_products_page(self, page: int, per_page: Optional[int] = None) -> List[Dict[str, Any]]:
        params = {
            "page": page,
            "per_page": per_page or settings.IMPORT_PRODUCTS_PER_PAGE,
            "status": "any",
            "orderby": "id",
            "order": "asc",
        }
        data, _ = self._get_list("products", params, op="woo.list_products")
        return data


    def list_categories(self, per_page: int = 100) -> List[Dict[str, Any]]:
        """整店分类（通常很少），按 X-WP-TotalPages 翻页拉完。"""
        out: List[Dict[str, Any]] = []
        page = 1
        while True:
            data, headers = self._get_list(
                "products/categories",
                {"page": page, "per_page": per_page, "orderby": "id", "order": "asc"},
                op="woo.list_categories",
            )
            out.extend(data)
            total_pages = header_int(headers, "X-WP-TotalPages", 1)
            if page >= total_pages or not data:
                break
            page += 1
        return out


    def list_variations(self, product_id: str, *, max_pages: Optional[int] = None) -> List[Dict[str, Any]]:
        """一个可变商品的全部变体；页数封顶，防止异常数据拖垮单个分片。"""
        limit = max_pages or settings.IMPORT_MAX_VARIATION_PAGES
        out: List[Dict[str, Any]] = []
        page = 1
        while page <= limit:
            data, headers = self._get_list(
                f"products/{product_id}/variations",
                {"page": page, "per_page": 100, "orderby": "id", "order": "asc"},
                op="woo.list_variations",
            )
            out.extend(data)
            total_pages = header_int(headers, "X-WP-TotalPages", 1)
            if page >= total_pages or not data:
                break
            page += 1
        else:
            logger.warning("woo.variations.page_cap product=%s pages=%s", product_id, limit)
        return out


    def list_modified_since(self, since: datetime, *, max_products: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        心跳：modified_after + orderby=modified asc；总数封顶 HEARTBEAT_MAX_PRODUCTS。
        按修改时间升序，只在时间戳边界处截断（见 platforms/paging），游标推进到返回的最后一条，下一轮接着拉。
        """
        cap = max_products or settings.HEARTBEAT_MAX_PRODUCTS
        out: List[Dict[str, Any]] = []
        page = 1
        while needs_more(out, cap, _woo_modified):
            data, headers = self._get_list(
                "products",
                {
                    "modified_after": iso_utc(since),
                    "per_page": 100,
                    "page": page,
                    "orderby": "modified",
                    "order": "asc",
                },
                op="woo.list_modified",
            )
            out.extend(data)
            total_pages = header_int(headers, "X-WP-TotalPages", 1)
            if page >= total_pages or not data:
                break
            page += 1
        return cap_at_modified_boundary(out, cap, _woo_modified)


    def close(self) -> None:
        self.http.close()
