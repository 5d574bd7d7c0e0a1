from __future__ import annotations
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import requests
from celery import shared_task
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.model.heartbeat import StoreHeartbeat
from app.db.model.store import PlatformConnection, Store, StorePlatform
from app.db.session import SessionLocal
from app.integrations.platforms.errors import PlatformError, UnsupportedPlatformError
from app.integrations.shopify.payload_utils import map_heartbeat_product as map_shopify_product
from app.integrations.shopify.shopify_client import ShopifyClient
from app.integrations.woocommerce.client import WooCommerceClient
from app.integrations.woocommerce.normalizers import map_heartbeat_product as map_woo_product
from app.repository import heartbeat_repo, product_repo
from app.repository.store_repo import get_store_with_connection
from app.services.credentials import resolve_credentials


logger = logging.getLogger(__name__)

# 从未检查过的店铺从这里开始拉
EPOCH = datetime(1970, 1, 1)


"""
  心跳对账（平台总是赢）
    - 到期店铺：enabled、连续失败数未到上限、last_checked_at 为空或早于 interval
    - 拉取 store_last_modified_at 之后平台侧修改过的商品（封顶 HEARTBEAT_MAX_PRODUCTS）
    - 本地不存在的商品跳过（对账不负责建新商品）
    - 本地还有 dirty 字段 → 先写一条 conflict_log，再覆盖
    - 游标 = 本轮拉到的最大平台修改时间（不用本机时钟）
    - 拉取失败：连续失败数 +1，游标不动
"""
@shared_task(name="app.orchestration.heartbeat.run_heartbeat")
def run_heartbeat(store_id: Optional[str] = None) -> Dict[str, Any]:
    return run_heartbeat_logic(store_id=store_id)


def run_heartbeat_logic(
    *,
    store_id: Optional[str] = None,
    session: Optional[requests.Session] = None,
) -> Dict[str, Any]:

    summary: Dict[str, Any] = {
        "storesChecked": 0,
        "productsUpdated": 0,
        "conflictsResolved": 0,
        "errors": 0,
        "details": [],
    }
    db: Session = SessionLocal()
    try:
        heartbeat_repo.ensure_heartbeats(db, [store_id] if store_id else None)
        if store_id:
            heartbeat_repo.force_due(db, store_id)

        due = heartbeat_repo.list_due(db, store_id=store_id)
        if not due:
            logger.info("heartbeat.idle store=%s", store_id)
            return summary

        for hb in due:
            summary["storesChecked"] += 1
            detail = check_store(db, hb, session=session)
            summary["details"].append(detail)
            if detail.get("error"):
                summary["errors"] += 1
            summary["productsUpdated"] += detail.get("productsUpdated", 0)
            summary["conflictsResolved"] += detail.get("conflicts", 0)

        logger.info(
            "heartbeat.done stores=%s updated=%s conflicts=%s errors=%s",
            summary["storesChecked"], summary["productsUpdated"], summary["conflictsResolved"], summary["errors"],
        )
        return summary
    finally:
        db.close()


def check_store(db: Session, hb: StoreHeartbeat, *, session: Optional[requests.Session] = None) -> Dict[str, Any]:
    """单个店铺：拉取 → 覆盖 → 推进游标；任何失败都只记在这个店铺上。"""
    detail: Dict[str, Any] = {"storeId": hb.store_id, "productsUpdated": 0, "conflicts": 0}
    store, conn = get_store_with_connection(db, hb.store_id)
    since = hb.store_last_modified_at or EPOCH

    try:
        if store is None or conn is None:
            raise PlatformError("store connection not found")
        detail["platform"] = store.platform
        items = fetch_remote_changes(store, conn, since, session=session)
    except PlatformError as e:
        db.rollback()
        failures = heartbeat_repo.mark_failure(db, hb, str(e))
        logger.warning("heartbeat.store.fetch_failed store=%s failures=%s err=%s", hb.store_id, failures, e)
        # 调用方只看到通用描述
        detail["error"] = "Failed to fetch store changes"
        detail["consecutiveFailures"] = failures
        return detail

    try:
        updated, conflicts, cursor = apply_remote_changes(db, store, items)
    except Exception as e:
        db.rollback()
        logger.exception("heartbeat.store.apply_failed store=%s", hb.store_id)
        heartbeat_repo.mark_failure(db, hb, f"apply failed: {e.__class__.__name__}")
        detail["error"] = "Failed to apply store changes"
        return detail

    heartbeat_repo.mark_success(db, hb, cursor=cursor, changes=updated)
    detail.update(productsUpdated=updated, conflicts=conflicts, fetched=len(items))
    logger.info(
        "heartbeat.store.ok store=%s fetched=%s updated=%s conflicts=%s cursor=%s",
        hb.store_id, len(items), updated, conflicts, cursor,
    )
    return detail


def fetch_remote_changes(
    store: Store,
    conn: PlatformConnection,
    since: datetime,
    *,
    session: Optional[requests.Session] = None,
) -> List[Dict[str, Any]]:
    """返回统一形状：[{"id", "date_modified", "content", "raw"}]"""
    credentials = resolve_credentials(store.platform, conn)
    timeout = settings.HEARTBEAT_REQUEST_TIMEOUT

    if store.platform == StorePlatform.WOOCOMMERCE:
        client = WooCommerceClient(conn.shop_url, credentials, session=session, read_timeout=timeout)
        try:
            return [map_woo_product(p) for p in client.list_modified_since(since)]
        finally:
            client.close()

    if store.platform == StorePlatform.SHOPIFY:
        client = ShopifyClient(conn.shop_url, credentials, session=session, read_timeout=timeout)
        try:
            return [map_shopify_product(n) for n in client.list_products_updated_since(since)]
        finally:
            client.close()

    raise UnsupportedPlatformError(f"heartbeat not supported for platform {store.platform!r}")


def apply_remote_changes(db: Session, store: Store, items: List[Dict[str, Any]]) -> Tuple[int, int, Optional[datetime]]:
    """
    逐条覆盖本地镜像；返回 (更新数, 冲突数, 最大平台修改时间)。
    冲突日志与覆盖同一事务，一次提交。
    """
    local = product_repo.load_by_platform_ids(db, store.id, [i["id"] for i in items])
    updated = conflicts = 0
    cursor: Optional[datetime] = None

    for item in items:
        modified = item.get("date_modified")
        if modified is not None and (cursor is None or modified > cursor):
            cursor = modified

        product = local.get(item["id"])
        if product is None:
            continue

        if product.dirty_fields_content:
            heartbeat_repo.log_store_wins_conflict(db, product, item["content"])
            conflicts += 1
            logger.info(
                "heartbeat.conflict.store_wins product=%s fields=%s",
                product.id, list(product.dirty_fields_content),
            )

        product_repo.apply_remote_content(product, item["content"], source="heartbeat", remote_modified_at=modified)
        product.platform_metadata = {**(product.platform_metadata or {}), **(item.get("raw") or {})}
        updated += 1

    db.commit()
    return updated, conflicts, cursor
