from __future__ import annotations

import re
from typing import Any, Dict, Iterable, Optional

from app.integrations.platforms.base import present_dirty_fields
from app.utils.clock import parse_datetime
from app.utils.serialization import to_float, to_int


_GID_PREFIX = "gid://shopify/Product/"
_GID_TAIL_RE = re.compile(r"/(\d+)$")


def to_product_gid(platform_product_id: Any) -> str:
    """'123' → 'gid://shopify/Product/123'；已是 gid 原样返回。"""
    text = str(platform_product_id or "").strip()
    if text.startswith("gid://"):
        return text
    return f"{_GID_PREFIX}{text}"


def numeric_id(gid: Any) -> str:
    text = str(gid or "")
    m = _GID_TAIL_RE.search(text)
    return m.group(1) if m else text


def _status(value: Any) -> str:
    return "ACTIVE" if str(value or "").lower() in ("publish", "published", "active") else "DRAFT"


def build_shopify_input(platform_product_id: Any, payload: Dict[str, Any], dirty_fields: Iterable[str]) -> Dict[str, Any]:
    """
    dirty 字段 → ProductInput。返回值总是带 id；只有 id 时调用方应当 no-op。
    """
    fields = present_dirty_fields(payload, dirty_fields)
    data: Dict[str, Any] = {"id": to_product_gid(platform_product_id)}
    seo: Dict[str, Any] = {}

    for name in fields:
        value = payload.get(name)
        if name in ("title", "name"):
            data["title"] = value
        elif name in ("slug", "handle"):
            data["handle"] = value
        elif name == "description":
            data["descriptionHtml"] = value or ""
        elif name == "status":
            data["status"] = _status(value)
        elif name in ("seo_title", "meta_title"):
            seo["title"] = value
        elif name in ("seo_description", "meta_description"):
            seo["description"] = value
        elif name == "seo" and isinstance(value, dict):
            if "title" in value:
                seo["title"] = value.get("title")
            if "description" in value:
                seo["description"] = value.get("description")

    if seo:
        data["seo"] = seo
    return data


def has_changes(product_input: Dict[str, Any]) -> bool:
    return any(key != "id" for key in product_input)


def snapshot_from_product(product: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """productUpdate 返回的 product → 本地快照字段名"""
    if not isinstance(product, dict):
        return None
    seo = product.get("seo") or {}
    out: Dict[str, Any] = {"id": numeric_id(product.get("id"))}
    if "title" in product:
        out["title"] = product.get("title")
    if "handle" in product:
        out["slug"] = product.get("handle")
    if "descriptionHtml" in product:
        out["description"] = product.get("descriptionHtml")
    if "status" in product:
        out["status"] = "publish" if product.get("status") == "ACTIVE" else "draft"
    if seo:
        out["seo_title"] = seo.get("title")
        out["seo_description"] = seo.get("description")
    if product.get("updatedAt"):
        out["date_modified"] = product.get("updatedAt")
    return out


def map_heartbeat_product(node: Dict[str, Any]) -> Dict[str, Any]:
    """与 WooCommerce 的心跳映射同形：{"id", "date_modified", "content", "raw"}"""
    edges = ((node.get("variants") or {}).get("edges") or [])
    variant = (edges[0].get("node") if edges else None) or {}
    seo = node.get("seo") or {}
    qty = to_int(variant.get("inventoryQuantity"))
    content = {
        "title": node.get("title") or "",
        "description": node.get("descriptionHtml"),
        "sku": variant.get("sku"),
        "price": to_float(variant.get("price")),
        "regular_price": to_float(variant.get("compareAtPrice")),
        "stock_quantity": qty,
        "stock_status": "instock" if (qty or 0) > 0 else "outofstock",
        "seo_title": seo.get("title"),
        "seo_description": seo.get("description"),
    }
    return {
        "id": numeric_id(node.get("id")),
        "date_modified": parse_datetime(node.get("updatedAt")),
        "content": content,
        "raw": node,
    }
