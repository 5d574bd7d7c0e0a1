from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from app.db.model.import_job import ChunkType, ImportChunk, SyncLogType
from app.integrations.platforms.errors import PlatformError
from app.integrations.woocommerce.client import WooCommerceClient
from app.integrations.woocommerce.normalizers import (
    is_variable_product,
    normalize_variation,
    transform_woo_category,
    transform_woo_product,
)
from app.integrations.wordpress.client import WordPressClient
from app.integrations.wordpress.normalizers import transform_wp_post
from app.orchestration.store_import.chunk_planner import ImportOptions
from app.repository import import_repo, product_repo


logger = logging.getLogger(__name__)


@dataclass
class ImportContext:
    db: Session
    job_id: str
    store_id: str
    woo: WooCommerceClient
    wp: Optional[WordPressClient]
    seo_plugin: str = "none"
    options: ImportOptions = field(default_factory=ImportOptions)

    def log(self, message: str, log_type: str = SyncLogType.INFO) -> None:
        import_repo.add_log(self.db, self.job_id, message, log_type)


def describe_error(exc: Exception) -> str:
    """对外可见的错误描述：平台异常是我们自己拼的文案；其它异常只给类型名（可能带 SQL / 凭据）。"""
    if isinstance(exc, (PlatformError, ValueError)):
        return str(exc)
    return exc.__class__.__name__


def dedupe_by_id(items: List[Dict[str, Any]]) -> Tuple[List[Dict[str, Any]], int]:
    """同一页内按平台 id 去重，保留第一次出现的；返回 (去重后, 丢弃数)。"""
    seen: set[str] = set()
    unique: List[Dict[str, Any]] = []
    for item in items or []:
        key = str(item.get("id"))
        if key in seen:
            logger.warning("import.duplicate_item id=%s", key)
            continue
        seen.add(key)
        unique.append(item)
    return unique, len(items or []) - len(unique)


# ========= 单个分片 =========
'''
products 分片
    1) 按页拉（orderby=id asc，稳定分页）
    2) 页内按 id 去重，丢弃数写 warning 日志
    3) upsert（store_id, platform_product_id）
    4) 可变商品不在这里拉变体，而是各自追加一个 variations 分片
    5) 只返回条数；job 计数由 complete_chunk 随分片完成一起累加（重跑同一分片只算一次）
'''
def handle_products_chunk(ctx: ImportContext, chunk: ImportChunk) -> int:
    raw = ctx.woo.list_products_page(chunk.page_number)
    unique, dropped = dedupe_by_id(raw)
    if dropped:
        ctx.log(f"Removed {dropped} duplicate(s) on page {chunk.page_number}", SyncLogType.WARNING)

    rows = [transform_woo_product(p, ctx.store_id, ctx.seo_plugin) for p in unique]
    upserted, _ = product_repo.upsert_products(ctx.db, rows)

    if ctx.options.include_variations:
        plans = [
            import_repo.variation_plan(
                p["id"],
                product_name=p.get("name") or f"Product {p['id']}",
                expected_count=len(p.get("variations") or []),
            )
            for p in unique
            if is_variable_product(p)
        ]
        if plans:
            queued = import_repo.create_chunks(ctx.db, ctx.job_id, ctx.store_id, plans)
            logger.info("import.variations.queued job=%s page=%s queued=%s", ctx.job_id, chunk.page_number, queued)

    ctx.log(f"Processed page {chunk.page_number}: {upserted} products")
    return upserted


def handle_categories_chunk(ctx: ImportContext, chunk: ImportChunk) -> int:
    categories = ctx.woo.list_categories()
    unique, _ = dedupe_by_id(categories)
    rows = [transform_woo_category(c, ctx.store_id) for c in unique]
    synced, _ = product_repo.upsert_categories(ctx.db, rows)
    # 整店一次拉完，直接覆盖计数
    import_repo.update_job(ctx.db, ctx.job_id, synced_categories=synced)
    ctx.log(f"Synced {synced} categories")
    return synced


def handle_posts_chunk(ctx: ImportContext, chunk: ImportChunk) -> int:
    if ctx.wp is None:
        ctx.log(f"Skipped posts page {chunk.page_number}: WordPress credentials not configured", SyncLogType.WARNING)
        return 0
    posts = ctx.wp.list_posts_page(chunk.page_number)
    unique, dropped = dedupe_by_id(posts)
    if dropped:
        ctx.log(f"Removed {dropped} duplicate post(s) on page {chunk.page_number}", SyncLogType.WARNING)
    rows = [transform_wp_post(p, ctx.store_id, ctx.seo_plugin) for p in unique]
    synced, _ = product_repo.upsert_articles(ctx.db, rows)
    ctx.log(f"Processed page {chunk.page_number}: {synced} articles")
    return synced


'''
variations 分片：一个可变商品的全部变体
    - metadata.woo_product_id 指向父商品
    - 变体同时写 working + snapshot，刚导入不算 dirty
'''
def handle_variations_chunk(ctx: ImportContext, chunk: ImportChunk) -> int:
    meta = chunk.chunk_metadata or {}
    woo_product_id = meta.get("woo_product_id")
    if not woo_product_id:
        raise ValueError("Missing woo_product_id in chunk metadata")
    name = meta.get("product_name") or f"Product {woo_product_id}"

    raw = ctx.woo.list_variations(str(woo_product_id))
    synced = 0
    if raw:
        normalized = [normalize_variation(v) for v in raw]
        if product_repo.apply_variations(ctx.db, ctx.store_id, str(woo_product_id), raw, normalized):
            synced = len(raw)
    ctx.log(f'Synced {synced} variations for "{name}"')
    return synced


_HANDLERS: Dict[str, Callable[[ImportContext, ImportChunk], int]] = {
    ChunkType.PRODUCTS: handle_products_chunk,
    ChunkType.CATEGORIES: handle_categories_chunk,
    ChunkType.POSTS: handle_posts_chunk,
    ChunkType.VARIATIONS: handle_variations_chunk,
}


def process_chunk(ctx: ImportContext, chunk: ImportChunk) -> Optional[str]:
    """
    处理一个已领取的分片；成功 → completed，失败 → failed 并返回错误描述。
    分片之间互相隔离，异常不外抛。
    """
    handler = _HANDLERS.get(chunk.chunk_type)
    try:
        if handler is None:
            raise ValueError(f"unknown chunk type {chunk.chunk_type!r}")
        processed = handler(ctx, chunk)
        import_repo.complete_chunk(ctx.db, chunk, processed)
        return None
    except Exception as e:
        ctx.db.rollback()
        logger.exception(
            "import.chunk.failed job=%s chunk=%s type=%s page=%s",
            ctx.job_id, chunk.id, chunk.chunk_type, chunk.page_number,
        )
        message = describe_error(e)
        import_repo.fail_chunk(ctx.db, chunk, message)
        ctx.log(f"Chunk {chunk.chunk_type} page {chunk.page_number} failed: {message}", SyncLogType.ERROR)
        return f"Chunk {chunk.chunk_type} page {chunk.page_number}: {message}"
