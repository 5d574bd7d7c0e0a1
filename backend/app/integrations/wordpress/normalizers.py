"""
WordPress post（带 _embed）→ blog_articles 行
"""
from __future__ import annotations
from typing import Any, Dict, List, Optional

from app.utils.clock import now_utc, parse_datetime


def _rendered(value: Any) -> str:
    if isinstance(value, dict):
        return str(value.get("rendered") or "")
    return str(value or "")


def _terms(group: Any) -> List[Dict[str, Any]]:
    return [
        {"id": t.get("id"), "name": t.get("name"), "slug": t.get("slug"), "taxonomy": t.get("taxonomy")}
        for t in group or []
        if isinstance(t, dict)
    ]


def _seo(post: Dict[str, Any], seo_plugin: str) -> Dict[str, str]:
    yoast = post.get("yoast_head_json")
    if isinstance(yoast, dict):
        return {"title": yoast.get("title") or "", "description": yoast.get("description") or ""}
    if seo_plugin == "rankmath":
        return {"title": post.get("rank_math_title") or "", "description": post.get("rank_math_description") or ""}
    return {"title": "", "description": ""}


def transform_wp_post(post: Dict[str, Any], store_id: str, seo_plugin: str = "none") -> Dict[str, Any]:
    """
    _embedded 里：
      - wp:featuredmedia[0].source_url → 特色图
      - wp:term[0] 分类，wp:term[1] 标签
      - author[0].name → 作者
    """
    embedded = post.get("_embedded") or {}

    media = (embedded.get("wp:featuredmedia") or [None])[0]
    featured_image: Optional[str] = media.get("source_url") if isinstance(media, dict) else None

    term_groups = embedded.get("wp:term") or []
    categories = _terms(term_groups[0]) if len(term_groups) > 0 else []
    tags = _terms(term_groups[1]) if len(term_groups) > 1 else []

    author = (embedded.get("author") or [None])[0]
    author_name = author.get("name") if isinstance(author, dict) else None

    seo = _seo(post, seo_plugin)
    title = _rendered(post.get("title"))
    content = _rendered(post.get("content"))
    excerpt = _rendered(post.get("excerpt"))
    status = post.get("status") or "draft"

    snapshot = {
        "title": title,
        "slug": post.get("slug") or "",
        "content": content,
        "excerpt": excerpt,
        "status": status,
        "seo_title": seo["title"],
        "seo_description": seo["description"],
        "featured_image_url": featured_image,
    }
    metadata = {
        "source": "wordpress_sync",
        "wordpress_id": post.get("id"),
        "link": post.get("link"),
        "taxonomies": {"categories": categories, "tags": tags},
        "yoast_head_json": post.get("yoast_head_json"),
        "modified": post.get("modified_gmt") or post.get("modified"),
        "date_gmt": post.get("date_gmt"),
    }
    now = now_utc()
    return {
        "store_id": store_id,
        "wordpress_post_id": str(post.get("id")),
        "title": title,
        "slug": post.get("slug"),
        "content": content,
        "excerpt": excerpt,
        "status": status,
        "author_name": author_name,
        "featured_image_url": featured_image,
        "categories": [c["name"] for c in categories if c.get("name")],
        "tags": [t["name"] for t in tags if t.get("name")],
        "published_at": parse_datetime(post.get("date_gmt") or post.get("date")) if status == "publish" else None,
        "metadata": metadata,
        "store_snapshot_content": snapshot,
        "working_content": snapshot,
        "dirty_fields_content": [],
        "sync_status": "synced",
        "working_content_updated_at": now,
        "store_content_updated_at": now,
        "last_synced_at": now,
    }
