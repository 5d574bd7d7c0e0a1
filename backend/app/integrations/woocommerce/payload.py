"""
dirty 字段 → WooCommerce REST 局部更新体（纯函数）
  - 只处理 dirty 列表里且 payload 中确实存在的字段，从不发整条记录；
  - SEO 同时写 Yoast 与 Rank Math 两套 meta key（目标站点装哪个都能生效）；
  - 映射不出任何字段时返回 {}，由适配器直接 no-op。
"""
from __future__ import annotations
from typing import Any, Dict, Iterable, List, Optional

from app.integrations.platforms.base import present_dirty_fields


# SEO 字段 → 两个插件各自的 meta key
SEO_TITLE_KEYS = ("_yoast_wpseo_title", "rank_math_title")
SEO_DESCRIPTION_KEYS = ("_yoast_wpseo_metadesc", "rank_math_description")
SEO_FOCUS_KEYWORD_KEYS = ("_yoast_wpseo_focuskw", "rank_math_focus_keyword")

# 本地状态名 → WooCommerce 状态名
_STATUS_MAP = {"published": "publish", "active": "publish"}

# 直接透传（同名）的字段
_PASSTHROUGH = ("description", "short_description", "sku", "slug", "stock_status", "manage_stock")


def _price(value: Any) -> str:
    # WooCommerce 的价格字段是字符串
    if value is None:
        return ""
    return str(value)


def _id_list(values: Any) -> List[Dict[str, Any]]:
    """[{id: 12, name: ...}] / [12, "13"] → [{"id": 12}, {"id": 13}]"""
    out: List[Dict[str, Any]] = []
    for item in values or []:
        raw = item.get("id") if isinstance(item, dict) else item
        try:
            out.append({"id": int(raw)})
        except (TypeError, ValueError):
            continue
    return out


def _images(values: Any) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for img in values or []:
        if not isinstance(img, dict):
            continue
        entry: Dict[str, Any] = {}
        if img.get("id"):
            entry["id"] = img["id"]
        elif img.get("src"):
            entry["src"] = img["src"]
        else:
            continue
        if img.get("alt"):
            entry["alt"] = img["alt"]
        out.append(entry)
    return out


def _dimensions(value: Any) -> Optional[Dict[str, str]]:
    if not isinstance(value, dict):
        return None
    return {k: str(value[k]) for k in ("length", "width", "height") if value.get(k) not in (None, "")}


def _set_meta(meta: Dict[str, Any], keys: Iterable[str], value: Any) -> None:
    for key in keys:
        meta[key] = "" if value is None else value


def build_woo_payload(payload: Dict[str, Any], dirty_fields: Iterable[str]) -> Dict[str, Any]:
    """把 dirty 字段翻译成 PUT /products/{id} 的请求体。"""
    fields = present_dirty_fields(payload, dirty_fields)
    body: Dict[str, Any] = {}
    meta: Dict[str, Any] = {}

    for name in fields:
        value = payload.get(name)

        if name in ("title", "name"):
            body["name"] = value
        elif name in _PASSTHROUGH:
            body[name] = value
        elif name == "regular_price":
            body["regular_price"] = _price(value)
        elif name == "sale_price":
            body["sale_price"] = _price(value)          # 空串 = 取消促销价
        elif name in ("stock", "stock_quantity"):
            body["stock_quantity"] = value
        elif name == "status":
            body["status"] = _STATUS_MAP.get(str(value or "").lower(), value)
        elif name == "categories":
            body["categories"] = _id_list(value)
        elif name == "tags":
            body["tags"] = _id_list(value)
        elif name == "images":
            body["images"] = _images(value)
        elif name == "weight":
            body["weight"] = "" if value is None else str(value)
        elif name == "dimensions":
            dims = _dimensions(value)
            if dims is not None:
                body["dimensions"] = dims

        # ---- SEO（双写）----
        elif name == "seo":
            if isinstance(value, dict):
                if "title" in value:
                    _set_meta(meta, SEO_TITLE_KEYS, value.get("title"))
                if "description" in value:
                    _set_meta(meta, SEO_DESCRIPTION_KEYS, value.get("description"))
                if "focus_keyword" in value:
                    _set_meta(meta, SEO_FOCUS_KEYWORD_KEYS, value.get("focus_keyword"))
        elif name in ("seo_title", "meta_title"):
            _set_meta(meta, SEO_TITLE_KEYS, value)
        elif name in ("seo_description", "meta_description"):
            _set_meta(meta, SEO_DESCRIPTION_KEYS, value)
        elif name == "focus_keyword":
            _set_meta(meta, SEO_FOCUS_KEYWORD_KEYS, value)
        # 其它未知字段：忽略，不去碰平台上我们不理解的东西

    if meta:
        body["meta_data"] = [{"key": k, "value": v} for k, v in meta.items()]
    return body
