"""
领域映射（纯函数）：WooCommerce REST 返回的字典 → 本地表字段。
  - transform_woo_product：商品 → products 行（metadata / snapshot / working 三层）
  - transform_woo_category：分类 → product_categories 行
  - normalize_variation：变体 → 可编辑字段子集（写进父商品的 variations 列表）
  - map_heartbeat_product：心跳用的精简映射（只取会被覆盖的内容字段 + 修改时间）
"""
from __future__ import annotations
import re
from typing import Any, Dict, List, Optional

from app.utils.clock import now_utc, parse_datetime
from app.utils.serialization import calc_content_hash, to_float, to_int


_TAG_RE = re.compile(r"<[^>]*>")
_WS_RE = re.compile(r"\s+")


def extract_clean_excerpt(html: Optional[str], max_length: int = 160) -> Optional[str]:
    """去 HTML 标签后截断到 max_length，在单词边界处加省略号。"""
    if not html:
        return None
    text = _WS_RE.sub(" ", _TAG_RE.sub(" ", html)).strip()
    if not text:
        return None
    if len(text) <= max_length:
        return text
    truncated = text[:max_length]
    last_space = truncated.rfind(" ")
    return (truncated[:last_space] if last_space > 0 else truncated) + "..."


def meta_value(raw: Dict[str, Any], key: str) -> Optional[str]:
    for item in raw.get("meta_data") or []:
        if isinstance(item, dict) and item.get("key") == key:
            value = item.get("value")
            if isinstance(value, str) and value.strip():
                return value.strip()
    return None


def _seo(raw: Dict[str, Any], seo_plugin: str) -> Dict[str, Any]:
    """
    SEO 优先级：Yoast meta → Rank Math meta → AIOSEO meta → 短描述摘要
    """
    title = meta_value(raw, "_yoast_wpseo_title") or meta_value(raw, "rank_math_title")
    description, source = None, "none"
    for key, name in (
        ("_yoast_wpseo_metadesc", "yoast"),
        ("rank_math_description", "rankmath"),
        ("_aioseo_description", "aioseo"),
    ):
        description = meta_value(raw, key)
        if description:
            source = name
            break

    if not description and raw.get("short_description"):
        description = extract_clean_excerpt(raw.get("short_description"))
        source = "excerpt" if description else "none"

    return {
        "title": title or raw.get("name") or "",
        "description": description or "",
        "plugin": source if source not in ("none", "excerpt") else seo_plugin,
        "description_source": source,
    }


def _images(raw: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [
        {"id": img.get("id"), "src": img.get("src"), "name": img.get("name") or None, "alt": img.get("alt") or None}
        for img in raw.get("images") or []
        if isinstance(img, dict)
    ]


def _terms(values: Any) -> List[Dict[str, Any]]:
    return [
        {"id": t.get("id"), "name": t.get("name"), "slug": t.get("slug")}
        for t in values or []
        if isinstance(t, dict)
    ]


# ========= 商品 =========
def build_content_snapshot(raw: Dict[str, Any], seo: Dict[str, Any], variations: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    """编辑器用到的字段集合；working_content 与 store_snapshot_content 导入时取同一份。"""
    images = _images(raw)
    return {
        "title": raw.get("name") or "",
        "slug": raw.get("slug") or "",
        "description": raw.get("description") or "",
        "short_description": raw.get("short_description") or "",
        "sku": raw.get("sku") or "",
        "regular_price": raw.get("regular_price") or "",
        "sale_price": raw.get("sale_price") or "",
        "on_sale": bool(raw.get("on_sale") or False),
        "stock": raw.get("stock_quantity"),
        "stock_status": raw.get("stock_status") or "instock",
        "manage_stock": bool(raw.get("manage_stock") or False),
        "product_type": raw.get("type"),
        "status": raw.get("status") or "publish",
        "catalog_visibility": raw.get("catalog_visibility") or "visible",
        "featured": bool(raw.get("featured") or False),
        "weight": raw.get("weight") or "",
        "dimensions": raw.get("dimensions") or None,
        "tax_status": raw.get("tax_status") or "taxable",
        "tax_class": raw.get("tax_class") or "",
        "images": images,
        "image_url": images[0]["src"] if images else None,
        "categories": _terms(raw.get("categories")),
        "tags": _terms(raw.get("tags")),
        "attributes": [
            {
                "id": a.get("id"),
                "name": a.get("name"),
                "options": a.get("options") or [],
                "visible": a.get("visible", True),
                "variation": a.get("variation", False),
            }
            for a in raw.get("attributes") or []
            if isinstance(a, dict)
        ],
        "variations": variations or [],
        "seo": {"title": seo["title"], "description": seo["description"], "plugin": seo["plugin"]},
    }


def transform_woo_product(
    raw: Dict[str, Any],
    store_id: str,
    seo_plugin: str = "none",
    *,
    variations: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """
    输入: /wc/v3/products 的一条商品
    输出: products 表的一行（键为列名，直接喂给 upsert）
    """
    seo = _seo(raw, seo_plugin)
    content = build_content_snapshot(raw, seo, variations)
    now = now_utc()

    metadata = dict(raw)
    metadata.pop("_links", None)
    metadata["seo"] = seo
    if variations is not None:
        metadata["variations_detailed"] = variations

    images = content["images"]
    return {
        "store_id": store_id,
        "platform_product_id": str(raw.get("id")),
        "title": raw.get("name"),
        "slug": raw.get("slug"),
        "sku": raw.get("sku") or None,
        "status": raw.get("status"),
        "product_type": raw.get("type"),
        "regular_price": to_float(raw.get("regular_price")),
        "sale_price": to_float(raw.get("sale_price")),
        "stock": to_int(raw.get("stock_quantity")),
        "stock_status": raw.get("stock_status"),
        "image_url": images[0]["src"] if images else None,
        "seo_title": seo["title"] or None,
        "seo_description": seo["description"] or None,
        "metadata": metadata,
        "store_snapshot_content": content,
        "working_content": content,
        "dirty_fields_content": [],
        "sync_status": "synced",
        "sync_source": "import",
        "content_hash": calc_content_hash(content),
        "store_last_modified_at": parse_datetime(raw.get("date_modified_gmt") or raw.get("date_modified")),
        "working_content_updated_at": now,
        "store_content_updated_at": now,
        "last_synced_at": now,
    }


def is_variable_product(raw: Dict[str, Any]) -> bool:
    return raw.get("type") == "variable" and bool(raw.get("variations"))


# ========= 分类 =========
def transform_woo_category(raw: Dict[str, Any], store_id: str) -> Dict[str, Any]:
    image = raw.get("image") if isinstance(raw.get("image"), dict) else None
    parent = raw.get("parent") or 0
    metadata = {
        "id": raw.get("id"),
        "name": raw.get("name"),
        "slug": raw.get("slug"),
        "parent": parent,
        "description": raw.get("description") or "",
        "display": raw.get("display") or "default",
        "menu_order": raw.get("menu_order") or 0,
        "count": raw.get("count") or 0,
        "image": image,
        "yoast_head_json": raw.get("yoast_head_json"),
    }
    return {
        "store_id": store_id,
        "external_id": str(raw.get("id")),
        "name": raw.get("name") or "",
        "slug": raw.get("slug"),
        "description": raw.get("description") or "",
        "parent_external_id": str(parent) if parent else None,
        "image_url": image.get("src") if image else None,
        "product_count": to_int(raw.get("count")) or 0,
        "metadata": metadata,
        "last_synced_at": now_utc(),
    }


# ========= 变体 =========
def normalize_variation(raw: Dict[str, Any]) -> Dict[str, Any]:
    image = raw.get("image") if isinstance(raw.get("image"), dict) else None
    return {
        "id": raw.get("id"),
        "sku": raw.get("sku") or None,
        "regular_price": raw.get("regular_price") or None,
        "sale_price": raw.get("sale_price") or None,
        "price": raw.get("price") or None,
        "on_sale": bool(raw.get("on_sale") or False),
        "manage_stock": bool(raw.get("manage_stock") or False),
        "stock_quantity": raw.get("stock_quantity"),
        "stock_status": raw.get("stock_status") or "instock",
        "weight": raw.get("weight") or None,
        "dimensions": raw.get("dimensions") or None,
        "status": raw.get("status") or "publish",
        "description": raw.get("description") or None,
        "image": {"id": image.get("id"), "src": image.get("src"), "alt": image.get("alt") or None} if image else None,
        "attributes": [
            {"id": a.get("id"), "name": a.get("name"), "option": a.get("option")}
            for a in raw.get("attributes") or []
            if isinstance(a, dict)
        ],
    }


# ========= 心跳 =========
def map_heartbeat_product(raw: Dict[str, Any]) -> Dict[str, Any]:
    """
    返回 {"id", "date_modified", "content"}；content 是心跳会覆盖到本地的字段。
    date_modified 优先用 *_gmt（本身就是 UTC，只是不带时区后缀）。
    """
    content = {
        "title": raw.get("name") or "",
        "description": raw.get("description"),
        "short_description": raw.get("short_description"),
        "sku": raw.get("sku"),
        "price": to_float(raw.get("price")),
        "regular_price": to_float(raw.get("regular_price")),
        "sale_price": to_float(raw.get("sale_price")),
        "stock_quantity": raw.get("stock_quantity"),
        "stock_status": raw.get("stock_status"),
        "seo_title": meta_value(raw, "_yoast_wpseo_title") or meta_value(raw, "rank_math_title"),
        "seo_description": meta_value(raw, "_yoast_wpseo_metadesc") or meta_value(raw, "rank_math_description"),
    }
    return {
        "id": str(raw.get("id")),
        "date_modified": parse_datetime(raw.get("date_modified_gmt") or raw.get("date_modified")),
        "content": content,
        "raw": raw,
    }
