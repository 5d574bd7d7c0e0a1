# product / category / article database repository

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.base import new_uuid
from app.db.model.product import BlogArticle, Product, ProductCategory, ProductSyncStatus
from app.db.model.store import Store
from app.db.upsert import execute_upsert, prepare_bulk_payload
from app.utils.clock import now_utc
from app.utils.serialization import calc_content_hash


logger = logging.getLogger(__name__)


'''
  导入 upsert 时覆盖的列（列名，不是 ORM 属性名）。
  id / created_at 只在首次插入时写；重放同一分片只会覆盖这些列，不会产生重复行。
'''
PRODUCT_UPSERT_COLUMNS = [
    "title", "slug", "sku", "status", "product_type",
    "regular_price", "sale_price", "stock", "stock_status", "image_url",
    "seo_title", "seo_description",
    "metadata", "store_snapshot_content", "working_content", "dirty_fields_content",
    "sync_status", "sync_source", "content_hash",
    "store_last_modified_at", "working_content_updated_at", "store_content_updated_at", "last_synced_at",
    "updated_at",
]

CATEGORY_UPSERT_COLUMNS = [
    "name", "slug", "description", "parent_external_id", "image_url", "product_count",
    "metadata", "last_synced_at", "updated_at",
]

ARTICLE_UPSERT_COLUMNS = [
    "title", "slug", "content", "excerpt", "status", "author_name", "featured_image_url",
    "categories", "tags", "published_at",
    "metadata", "store_snapshot_content", "working_content", "dirty_fields_content", "sync_status",
    "working_content_updated_at", "store_content_updated_at", "last_synced_at",
    "updated_at",
]


def _with_row_defaults(rows: Iterable[dict]) -> List[dict]:
    now = now_utc()
    out = []
    for row in rows:
        r = dict(row)
        r.setdefault("id", new_uuid())
        r.setdefault("created_at", now)
        r["updated_at"] = now
        out.append(r)
    return out


def _upsert(db: Session, table, rows: List[dict], *, key: str, conflict_keys: List[str],
            update_columns: List[str], label: str) -> Tuple[int, int]:
    """去重 → upsert → 提交；返回 (写入数, 丢弃的重复数)。"""
    payload, dropped = prepare_bulk_payload(rows, key=key)
    if dropped:
        logger.warning("%s.upsert.duplicates dropped=%s kept=%s", label, dropped, len(payload))
    if not payload:
        return 0, dropped
    execute_upsert(
        db, table, _with_row_defaults(payload),
        conflict_keys=conflict_keys, update_columns=update_columns,
    )
    db.commit()
    return len(payload), dropped


# ========= 导入 upsert =========
def upsert_products(db: Session, rows: List[dict]) -> Tuple[int, int]:
    return _upsert(
        db, Product.__table__, rows,
        key="platform_product_id",
        conflict_keys=["store_id", "platform_product_id"],
        update_columns=PRODUCT_UPSERT_COLUMNS,
        label="products",
    )


def upsert_categories(db: Session, rows: List[dict]) -> Tuple[int, int]:
    return _upsert(
        db, ProductCategory.__table__, rows,
        key="external_id",
        conflict_keys=["store_id", "external_id"],
        update_columns=CATEGORY_UPSERT_COLUMNS,
        label="categories",
    )


def upsert_articles(db: Session, rows: List[dict]) -> Tuple[int, int]:
    return _upsert(
        db, BlogArticle.__table__, rows,
        key="wordpress_post_id",
        conflict_keys=["store_id", "wordpress_post_id"],
        update_columns=ARTICLE_UPSERT_COLUMNS,
        label="articles",
    )


# ========= 查询 =========
def get_by_platform_id(db: Session, store_id: str, platform_product_id: str) -> Optional[Product]:
    stmt = select(Product).where(
        Product.store_id == store_id,
        Product.platform_product_id == str(platform_product_id),
    )
    return db.scalars(stmt).first()


def load_by_platform_ids(db: Session, store_id: str, platform_ids: Iterable[str]) -> Dict[str, Product]:
    ids = list({str(i) for i in platform_ids if i not in (None, "")})
    if not ids:
        return {}
    stmt = select(Product).where(Product.store_id == store_id, Product.platform_product_id.in_(ids))
    return {p.platform_product_id: p for p in db.scalars(stmt)}


def load_owned_products(db: Session, product_ids: List[str], tenant_id: int) -> List[Tuple[Product, Store]]:
    """按归属过滤（stores.tenant_id == 调用方）；不属于调用方的 id 直接不返回。"""
    if not product_ids:
        return []
    stmt = (
        select(Product, Store)
        .join(Store, Store.id == Product.store_id)
        .where(Product.id.in_(product_ids), Store.tenant_id == tenant_id)
    )
    return [(p, s) for p, s in db.execute(stmt).all()]


def load_owned_articles(db: Session, article_ids: List[str], tenant_id: int) -> List[Tuple[BlogArticle, Store]]:
    if not article_ids:
        return []
    stmt = (
        select(BlogArticle, Store)
        .join(Store, Store.id == BlogArticle.store_id)
        .where(BlogArticle.id.in_(article_ids), Store.tenant_id == tenant_id)
    )
    return [(a, s) for a, s in db.execute(stmt).all()]


# ========= 变体 =========
def apply_variations(db: Session, store_id: str, woo_product_id: str,
                     raw_variations: List[Dict[str, Any]], normalized: List[Dict[str, Any]]) -> bool:
    """
    变体同时写进 working_content 和 store_snapshot_content（两层一致，刚导入的变体不会被当成 dirty）；
    metadata.variants 保存平台原始数据。商品还没导入时返回 False。
    """
    product = get_by_platform_id(db, store_id, woo_product_id)
    if product is None:
        logger.warning("products.variations.missing_parent store=%s woo_id=%s", store_id, woo_product_id)
        return False

    now = now_utc()
    product.platform_metadata = {
        **(product.platform_metadata or {}),
        "variants": raw_variations,
        "variations_synced_at": now.isoformat(),
    }
    product.working_content = {**(product.working_content or {}), "variations": normalized}
    snapshot = {**(product.store_snapshot_content or {}), "variations": normalized}
    product.store_snapshot_content = snapshot
    product.dirty_fields_content = [f for f in (product.dirty_fields_content or []) if f != "variations"]
    product.content_hash = calc_content_hash(snapshot)
    product.variations_synced_at = now
    product.updated_at = now
    db.commit()
    return True


# ========= 远端覆盖本地 =========
def apply_remote_content(product: Product, remote: Dict[str, Any], *, source: str,
                         remote_modified_at: Optional[datetime] = None) -> Dict[str, Any]:
    """
    平台覆盖本地（心跳拉取 / 推送成功后都走这里）：
      snapshot = 旧 snapshot 叠加远端内容，working = snapshot，dirty 清空，状态 synced。
    不提交；返回新的 snapshot。
    """
    now = now_utc()
    snapshot = {**(product.store_snapshot_content or {}), **(remote or {})}
    product.store_snapshot_content = snapshot
    product.working_content = dict(snapshot)
    product.dirty_fields_content = []
    product.sync_status = ProductSyncStatus.SYNCED
    product.sync_source = source
    product.content_hash = calc_content_hash(snapshot)
    product.last_synced_at = now
    product.store_content_updated_at = now
    if remote_modified_at is not None:
        product.store_last_modified_at = remote_modified_at
    product.updated_at = now

    # 平铺列跟着内容走，列表页直接读列
    if "title" in remote:
        product.title = remote.get("title")
    if "sku" in remote:
        product.sku = remote.get("sku") or None
    if "stock_status" in remote:
        product.stock_status = remote.get("stock_status")
    if "seo_title" in remote:
        product.seo_title = remote.get("seo_title")
    if "seo_description" in remote:
        product.seo_description = remote.get("seo_description")
    return snapshot
