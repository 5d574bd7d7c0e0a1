"""
  分片计划（纯函数，无 IO）
    - products / posts：每页一个分片，page_number 从 1 开始，最后一页装余数
    - categories：整店一个分片（分类数量通常很少）
    - variations：不在这里规划，由 products 分片处理时按可变商品逐个追加
"""
from __future__ import annotations
import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from app.db.model.import_job import ChunkType


IMPORT_TYPES = ("products", "categories", "variations", "posts")


@dataclass(frozen=True)
class ImportOptions:
    include_categories: bool = True
    include_variations: bool = True
    include_posts: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return {
            "categories": self.include_categories,
            "variations": self.include_variations,
            "posts": self.include_posts,
        }


def parse_import_types(types: Optional[Iterable[str] | str]) -> ImportOptions:
    """
    None → 默认（商品 + 分类 + 变体）；"all" → 全部；否则按列出的类型。
    商品本身总是导入（分类/变体都挂在商品上）。
    """
    if types is None:
        return ImportOptions()
    if isinstance(types, str):
        types = [types]
    wanted = {str(t).strip().lower() for t in types if t}
    unknown = wanted - set(IMPORT_TYPES) - {"all"}
    if unknown:
        raise ValueError(f"unknown import types: {sorted(unknown)}")
    if not wanted or "all" in wanted:
        return ImportOptions(include_categories=True, include_variations=True, include_posts=True)
    return ImportOptions(
        include_categories="categories" in wanted,
        include_variations="variations" in wanted,
        include_posts="posts" in wanted,
    )


def page_item_counts(total: int, per_page: int) -> List[int]:
    """237 条、每页 50 → [50, 50, 50, 50, 37]"""
    if total <= 0:
        return []
    if per_page <= 0:
        raise ValueError("per_page must be positive")
    pages = math.ceil(total / per_page)
    counts = [per_page] * pages
    counts[-1] = total - per_page * (pages - 1)
    return counts


def _page_plans(chunk_type: str, total: int, per_page: int) -> List[Dict[str, Any]]:
    return [
        {"chunk_type": chunk_type, "page_number": idx, "items_total": n}
        for idx, n in enumerate(page_item_counts(total, per_page), start=1)
    ]


def plan_chunks(
    *,
    total_products: int,
    total_categories: int,
    total_posts: int,
    per_page: int,
    options: ImportOptions,
    can_import_posts: bool,
) -> List[Dict[str, Any]]:
    plans = _page_plans(ChunkType.PRODUCTS, total_products, per_page)
    if options.include_categories and total_categories > 0:
        plans.append({"chunk_type": ChunkType.CATEGORIES, "page_number": 1, "items_total": total_categories})
    if options.include_posts and can_import_posts:
        plans.extend(_page_plans(ChunkType.POSTS, total_posts, per_page))
    return plans
