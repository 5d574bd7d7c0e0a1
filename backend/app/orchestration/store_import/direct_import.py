"""
  直连模式（小目录）：一次调用内把全部商品 / 分类 / 文章拉完写完，不落分片。
  变体在这里内联拉取（商品少，时间预算够用）。
  每批 upsert 后立即提交计数，UI 轮询能看到进度。
"""
from __future__ import annotations
import logging
import math
from typing import Any, Dict, List

from app.core.config import settings
from app.db.model.import_job import SyncLogType
from app.integrations.platforms.errors import PlatformError
from app.integrations.woocommerce.normalizers import (
    is_variable_product,
    normalize_variation,
    transform_woo_category,
    transform_woo_product,
)
from app.integrations.wordpress.normalizers import transform_wp_post
from app.orchestration.store_import.chunk_handlers import ImportContext, dedupe_by_id, describe_error
from app.repository import import_repo, product_repo


logger = logging.getLogger(__name__)


def _batches(rows: List[Dict[str, Any]], size: int):
    for i in range(0, len(rows), size):
        yield i // size + 1, rows[i: i + size]


def run_direct_import(ctx: ImportContext, *, total_products: int, total_posts: int) -> List[str]:
    """返回错误列表（空 = 全部成功）；平台读失败直接抛给调用方。"""
    errors: List[str] = []
    per_page = settings.IMPORT_PRODUCTS_PER_PAGE
    batch_size = settings.IMPORT_UPSERT_BATCH_SIZE

    # ---------- 商品 ----------
    ctx.log("Fetching products...")
    total_pages = math.ceil(total_products / per_page) if total_products else 0
    fetched: List[Dict[str, Any]] = []
    for page in range(1, total_pages + 1):
        fetched.extend(ctx.woo.list_products_page(page, per_page))
        ctx.log(f"Fetched page {page}/{total_pages}")

    unique, dropped = dedupe_by_id(fetched)
    if dropped:
        ctx.log(f"Removed {dropped} duplicate product(s) from WooCommerce response", SyncLogType.WARNING)

    variations_synced = 0
    variations_by_id: Dict[str, List[Dict[str, Any]]] = {}
    if ctx.options.include_variations:
        for product in unique:
            if not is_variable_product(product):
                continue
            try:
                raw = ctx.woo.list_variations(str(product["id"]))
            except PlatformError as e:
                logger.warning("import.direct.variations_failed product=%s err=%s", product.get("id"), e)
                continue
            variations_by_id[str(product["id"])] = [normalize_variation(v) for v in raw]
            variations_synced += len(raw)

    rows = [
        transform_woo_product(p, ctx.store_id, ctx.seo_plugin, variations=variations_by_id.get(str(p["id"])))
        for p in unique
    ]
    saved = 0
    batches = list(_batches(rows, batch_size))
    for idx, batch in batches:
        try:
            n, _ = product_repo.upsert_products(ctx.db, batch)
        except Exception as e:
            ctx.db.rollback()
            logger.exception("import.direct.batch_failed job=%s batch=%s", ctx.job_id, idx)
            message = f"Upsert error batch {idx}: {describe_error(e)}"
            errors.append(message)
            ctx.log(f"Failed batch {idx}/{len(batches)} ({len(batch)} products): {describe_error(e)}", SyncLogType.ERROR)
            continue
        saved += n
        import_repo.increment_counters(ctx.db, ctx.job_id, synced_products=n)
        ctx.log(f"Saved {saved}/{total_products} products")

    if variations_synced:
        import_repo.increment_counters(ctx.db, ctx.job_id, synced_variations=variations_synced)

    # ---------- 分类 ----------
    if ctx.options.include_categories:
        ctx.log("Syncing categories...")
        try:
            categories, _ = dedupe_by_id(ctx.woo.list_categories())
            synced, _ = product_repo.upsert_categories(ctx.db, [transform_woo_category(c, ctx.store_id) for c in categories])
            import_repo.update_job(ctx.db, ctx.job_id, synced_categories=synced)
            ctx.log(f"Synced {synced} categories")
        except Exception as e:
            ctx.db.rollback()
            logger.exception("import.direct.categories_failed job=%s", ctx.job_id)
            errors.append(f"Categories: {describe_error(e)}")

    # ---------- 文章 ----------
    if ctx.options.include_posts and ctx.wp is not None and total_posts > 0:
        ctx.log("Syncing blog posts...")
        posts: List[Dict[str, Any]] = []
        post_pages = math.ceil(total_posts / per_page)
        for page in range(1, post_pages + 1):
            try:
                posts.extend(ctx.wp.list_posts_page(page, per_page))
            except PlatformError as e:
                # 后面的页不再拉，已拉到的照常写
                logger.warning("import.direct.posts_page_failed page=%s err=%s", page, e)
                errors.append(f"Posts page {page}: {describe_error(e)}")
                break

        unique_posts, _ = dedupe_by_id(posts)
        post_rows = [transform_wp_post(p, ctx.store_id, ctx.seo_plugin) for p in unique_posts]
        posts_saved = 0
        for idx, batch in _batches(post_rows, batch_size):
            try:
                n, _ = product_repo.upsert_articles(ctx.db, batch)
            except Exception as e:
                ctx.db.rollback()
                logger.exception("import.direct.posts_batch_failed job=%s batch=%s", ctx.job_id, idx)
                errors.append(f"Posts upsert error: {describe_error(e)}")
                ctx.log(f"Failed batch of {len(batch)} posts: {describe_error(e)}", SyncLogType.ERROR)
                continue
            posts_saved += n
            import_repo.increment_counters(ctx.db, ctx.job_id, synced_posts=n)
        ctx.log(f"Synced {posts_saved} blog posts")

    return errors
