"""
WordPress REST (wp/v2) 客户端：博客文章导入与推送
  - 认证：用户名 + 应用密码（HTTP Basic）；
  - 列表请求带 _embed，作者 / 特色图 / 分类标签在同一次请求里带回来，避免 N+1。
"""
from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional

import requests

from app.core.config import settings
from app.core.logging import truncate_for_log
from app.integrations.platforms.errors import PlatformHttpError, PlatformPayloadError
from app.integrations.platforms.http_client import PlatformHttpClient, error_code_from_body, header_int
from app.services.credentials import WordPressCredentials, normalize_store_url

logger = logging.getLogger(__name__)


_STATUS_MAP = {"draft": "draft", "published": "publish", "publish": "publish"}


class WordPressClient:

    def __init__(
        self,
        site_url: str,
        credentials: WordPressCredentials,
        *,
        http: Optional[PlatformHttpClient] = None,
        session: Optional[requests.Session] = None,
        read_timeout: Optional[int] = None,
    ) -> None:
        self.base_url = normalize_store_url(site_url)
        self.credentials = credentials
        self.http = http or PlatformHttpClient(
            session=session,
            read_timeout=read_timeout or settings.IMPORT_REQUEST_TIMEOUT,
        )


    def api_url(self, path: str) -> str:
        return f"{self.base_url}/wp-json/wp/v2/{path.lstrip('/')}"


    @property
    def auth(self) -> tuple:
        return (self.credentials.username, self.credentials.app_password)


    # ---------- 读 ----------
    def count_posts(self) -> int:
        _, headers = self.http.get_json(
            self.api_url("posts"), op="wp.count_posts", auth=self.auth, params={"per_page": 1, "status": "any"},
        )
        return header_int(headers, "X-WP-Total")


    def list_posts_page(self, page: int, per_page: Optional[int] = None) -> List[Dict[str, Any]]:
        data, _ = self.http.get_json(
            self.api_url("posts"),
            op="wp.list_posts",
            auth=self.auth,
            params={
                "page": page,
                "per_page": per_page or settings.IMPORT_PRODUCTS_PER_PAGE,
                "status": "any",
                "orderby": "id",
                "order": "asc",
                "_embed": 1,
            },
        )
        if not isinstance(data, list):
            raise PlatformPayloadError("wp.list_posts: expected a JSON list")
        return data


    # ---------- 写 ----------
    def update_post(self, post_id: str, article: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        PUT /wp/v2/posts/{id}；只发有值的字段。
        返回平台响应；没有可推送的字段返回 None（调用方记为跳过）。
        非 2xx 抛 PlatformHttpError（push 只发一次，不做重试）。
        """
        body = build_post_update(article)
        if not body:
            return None
        resp = self.http.send_once(
            "PUT", self.api_url(f"posts/{post_id}"),
            auth=self.auth, json=body, headers={"Content-Type": "application/json"},
        )
        if not resp.ok:
            raise PlatformHttpError(
                resp.status_code, f"wp.update_post failed with HTTP {resp.status_code}",
                code=error_code_from_body(resp.text or ""), body=truncate_for_log(resp.text),
            )
        data = self.http.as_json(resp)
        return data if isinstance(data, dict) else {}


    def close(self) -> None:
        self.http.close()


def build_post_update(article: Dict[str, Any]) -> Dict[str, Any]:
    body: Dict[str, Any] = {}
    for key in ("title", "slug", "content", "excerpt"):
        if article.get(key):
            body[key] = article[key]
    if article.get("status"):
        body["status"] = _STATUS_MAP.get(str(article["status"]).lower(), "draft")
    return body
