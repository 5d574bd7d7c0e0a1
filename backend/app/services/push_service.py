from __future__ import annotations
import logging
import time
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import requests
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import SyncApiError, public_message
from app.db.model.product import BlogArticle, Product, ProductSyncStatus
from app.db.model.store import PlatformConnection, Store
from app.infrastructure.ratelimit.redis_fixed_window import RedisFixedWindowLimiter
from app.integrations.platforms.base import PlatformAdapter
from app.integrations.platforms.errors import PlatformError
from app.integrations.platforms.registry import get_adapter
from app.integrations.wordpress.client import WordPressClient
from app.repository import audit_repo, product_repo
from app.repository.store_repo import get_connection
from app.services.credentials import resolve_credentials, resolve_wordpress_credentials
from app.utils.clock import iso_utc, now_utc, parse_datetime
from app.utils.serialization import calc_content_hash, to_jsonable


logger = logging.getLogger(__name__)

PUSH_TYPES = ("product", "article")

SKIP_NO_LOCAL_TIMESTAMP = "No local update timestamp"
SKIP_REMOTE_NEWER = "Remote data is newer than local data"
SKIP_NO_CHANGES = "No changes to push"


class _ItemError(Exception):
    """单条失败：code 决定对外的通用文案，detail 只进日志。"""

    def __init__(self, code: str, detail: str):
        self.code = code
        self.detail = detail
        super().__init__(detail)


# ========================== 校验 ==========================
def is_uuid4(value: Any) -> bool:
    try:
        parsed = uuid.UUID(str(value))
    except (ValueError, AttributeError, TypeError):
        return False
    return parsed.version == 4 and str(parsed) == str(value).lower()


def validate_push_request(entity_type: Any, ids: Any) -> Tuple[str, List[str]]:
    """请求级校验：任何一项不合法整个调用 400，不做部分处理。"""
    if entity_type not in PUSH_TYPES:
        raise SyncApiError("INVALID_REQUEST")
    if not isinstance(ids, list) or not ids or len(ids) > settings.PUSH_MAX_IDS:
        raise SyncApiError("INVALID_REQUEST")
    if not all(isinstance(i, str) and is_uuid4(i) for i in ids):
        raise SyncApiError("INVALID_REQUEST")
    # 去重保序
    return entity_type, list(dict.fromkeys(ids))


def enforce_rate_limit(limiter: Optional[RedisFixedWindowLimiter], user_id: Any) -> None:
    if limiter is None:
        # 没有共享计数器就不能保证限流，按配置缺失处理
        logger.error("push.ratelimit.unavailable user=%s", user_id)
        raise SyncApiError("INTERNAL_ERROR")
    allowed, retry_after_ms = limiter.hit(str(user_id))
    if not allowed:
        retry_after = max(1, (retry_after_ms + 999) // 1000)
        raise SyncApiError("RATE_LIMITED", headers={"Retry-After": str(retry_after)})


# ========================== 时间戳冲突检查 ==========================
'''
允许推送的条件（依次）：
    1) force=True
    2) 本地没有修改时间 → 跳过（无法判断新旧）
    3) 远端没有 / 无法解析修改时间 → 推
    4) 本地修改时间 + 容差 >= 远端修改时间 → 推
    5) 否则跳过："远端更新"
容差是启发式：WooCommerce 的 date_modified 是店铺本地时间且不带时区，
所以给一个宽窗口；窗口内远端确实更新的极少数情况会被误推。
'''
def check_push_allowed(
    local_updated_at: Optional[datetime],
    remote_modified: Any,
    *,
    force: bool,
    tolerance_hours: Optional[float] = None,
) -> Tuple[bool, Optional[str]]:
    if force:
        return True, None
    if local_updated_at is None:
        return False, SKIP_NO_LOCAL_TIMESTAMP

    remote_at = parse_datetime(remote_modified)
    if remote_at is None:
        return True, None

    tolerance = timedelta(hours=settings.PUSH_TIMESTAMP_TOLERANCE_HOURS if tolerance_hours is None else tolerance_hours)
    if local_updated_at + tolerance >= remote_at:
        return True, None
    return False, SKIP_REMOTE_NEWER


def remote_modified_of(entity: Any) -> Any:
    meta = entity.platform_metadata or {}
    return meta.get("date_modified") or meta.get("modified")


def fields_to_push(entity: Any, *, force: bool) -> List[str]:
    """dirty 字段；force 且没有 dirty 时推全部 working 字段。"""
    dirty = list(entity.dirty_fields_content or [])
    if dirty:
        return dirty
    if force:
        return sorted((entity.working_content or {}).keys())
    return []


def mark_pushed(entity: Any, response: Optional[Dict[str, Any]]) -> None:
    """推送成功：snapshot = working，dirty 清空；metadata 记推送时间和平台新的修改时间。不提交。"""
    now = now_utc()
    working = dict(entity.working_content or {})
    entity.store_snapshot_content = dict(working)
    entity.dirty_fields_content = []
    entity.sync_status = ProductSyncStatus.SYNCED
    entity.last_synced_at = now
    entity.store_content_updated_at = now
    entity.updated_at = now

    meta = dict(entity.platform_metadata or {})
    if response:
        meta.update(to_jsonable(response))
    meta["last_pushed_at"] = iso_utc(now)
    remote_modified = None
    if response:
        remote_modified = response.get("date_modified_gmt") or response.get("modified_gmt") or response.get("date_modified")
    meta["date_modified"] = remote_modified or iso_utc(now)
    entity.platform_metadata = meta

    if isinstance(entity, Product):
        entity.sync_source = "push"
        entity.content_hash = calc_content_hash(working)


# ========================== 入口 ==========================
'''
push-to-store
    1) 限流（按用户，Redis 固定窗口）→ 请求校验（类型 / UUIDv4 / 数量）
    2) 按归属加载（stores.tenant_id == 调用方），不属于调用方的 id 记为 not found
    3) 逐条：时间戳检查 → 推送 → 成功写回三层内容；单条失败不影响其它
    4) 写审计行，返回逐条结果
'''
def push_to_store(
    db: Session,
    *,
    user_id: int,
    entity_type: Any,
    ids: Any,
    force: bool = False,
    limiter: Optional[RedisFixedWindowLimiter] = None,
    session: Optional[requests.Session] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:

    enforce_rate_limit(limiter, user_id)
    entity_type, ids = validate_push_request(entity_type, ids)

    if entity_type == "product":
        loaded = product_repo.load_owned_products(db, ids, user_id)
        pusher = _ProductPusher(db, session=session)
    else:
        loaded = product_repo.load_owned_articles(db, ids, user_id)
        pusher = _ArticlePusher(db, session=session)

    by_id = {entity.id: (entity, store) for entity, store in loaded}
    results: List[Dict[str, Any]] = []
    delay_sec = settings.SYNC_CALL_DELAY_MS / 1000.0
    calls = 0

    try:
        for entity_id in ids:
            pair = by_id.get(entity_id)
            if pair is None:
                results.append({"id": entity_id, "success": False, "error": public_message("PRODUCT_NOT_FOUND")})
                continue
            entity, store = pair
            entry: Dict[str, Any] = {"id": entity_id, "platformId": pusher.platform_id(entity)}

            allowed, reason = check_push_allowed(
                entity.working_content_updated_at, remote_modified_of(entity), force=force,
            )
            if not allowed:
                entry.update(success=True, skipped=True, skipReason=reason)
                logger.info("push.skip %s=%s reason=%s", entity_type, entity_id, reason)
                results.append(entry)
                continue

            fields = fields_to_push(entity, force=force)
            if not fields:
                entry.update(success=True, skipped=True, skipReason=SKIP_NO_CHANGES)
                results.append(entry)
                continue

            if calls and delay_sec > 0:
                sleep(delay_sec)
            calls += 1
            try:
                response = pusher.push(entity, store, fields)
            except _ItemError as e:
                db.rollback()
                logger.warning("push.failed %s=%s code=%s detail=%s", entity_type, entity_id, e.code, e.detail)
                entry.update(success=False, error=public_message(e.code))
                results.append(entry)
                continue

            if response is None:
                entry.update(success=True, skipped=True, skipReason=SKIP_NO_CHANGES)
                results.append(entry)
                continue

            mark_pushed(entity, response)
            db.commit()
            logger.info("push.ok %s=%s fields=%s", entity_type, entity_id, fields)
            entry["success"] = True
            results.append(entry)
    finally:
        pusher.close()

    skipped = sum(1 for r in results if r.get("skipped"))
    successful = sum(1 for r in results if r.get("success") and not r.get("skipped"))
    failed = sum(1 for r in results if not r.get("success"))

    audit_repo.record_push(
        db,
        user_id=user_id,
        entity_type=entity_type,
        entity_ids=ids,
        total=len(ids),
        successful=successful,
        skipped=skipped,
        failed=failed,
        details={"force": bool(force)},
    )
    logger.info(
        "push.done user=%s type=%s total=%s ok=%s skipped=%s failed=%s",
        user_id, entity_type, len(ids), successful, skipped, failed,
    )
    return {
        "success": failed == 0,
        "type": entity_type,
        "total": len(ids),
        "successful": successful,
        "skipped": skipped,
        "failed": failed,
        "results": results,
    }


# ========================== 具体平台 ==========================
class _ProductPusher:
    """商品：走适配器注册表（按店铺平台），每个店铺一个适配器实例。"""

    def __init__(self, db: Session, *, session: Optional[requests.Session] = None):
        self.db = db
        self.session = session
        self._adapters: Dict[str, PlatformAdapter] = {}

    @staticmethod
    def platform_id(entity: Product) -> Optional[str]:
        return entity.platform_product_id

    def _adapter(self, store: Store) -> PlatformAdapter:
        if store.id in self._adapters:
            return self._adapters[store.id]
        conn = get_connection(self.db, store)
        if conn is None:
            raise _ItemError("STORE_NOT_CONFIGURED", f"store {store.id} has no connection")
        try:
            credentials = resolve_credentials(store.platform, conn)
            adapter = get_adapter(store.platform, conn.shop_url, credentials, session=self.session)
        except PlatformError as e:
            raise _ItemError("STORE_NOT_CONFIGURED", str(e)) from e
        self._adapters[store.id] = adapter
        return adapter

    def push(self, entity: Product, store: Store, fields: Iterable[str]) -> Optional[Dict[str, Any]]:
        if not entity.platform_product_id:
            raise _ItemError("SYNC_FAILED", "product has no platform id")
        result = self._adapter(store).update_product(
            entity.platform_product_id, dict(entity.working_content or {}), list(fields),
        )
        if not result.success:
            raise _ItemError("SYNC_FAILED", result.error or "unknown error")
        if result.skipped_call:
            return None
        return result.updated_snapshot or {}

    def close(self) -> None:
        for adapter in self._adapters.values():
            adapter.close()


class _ArticlePusher:
    """文章：WordPress wp/v2 posts，用连接上的 WordPress 应用密码。"""

    def __init__(self, db: Session, *, session: Optional[requests.Session] = None):
        self.db = db
        self.session = session
        self._clients: Dict[str, WordPressClient] = {}

    @staticmethod
    def platform_id(entity: BlogArticle) -> Optional[str]:
        return entity.wordpress_post_id

    def _client(self, store: Store) -> WordPressClient:
        if store.id in self._clients:
            return self._clients[store.id]
        conn: Optional[PlatformConnection] = get_connection(self.db, store)
        credentials = resolve_wordpress_credentials(conn)
        if conn is None or credentials is None:
            raise _ItemError("STORE_NOT_CONFIGURED", f"store {store.id} has no WordPress credentials")
        client = WordPressClient(conn.shop_url, credentials, session=self.session)
        self._clients[store.id] = client
        return client

    def push(self, entity: BlogArticle, store: Store, fields: Iterable[str]) -> Optional[Dict[str, Any]]:
        if not entity.wordpress_post_id:
            raise _ItemError("SYNC_FAILED", "article has no WordPress post id")
        working = entity.working_content or {}
        article = {f: working.get(f) for f in fields}
        try:
            return self._client(store).update_post(entity.wordpress_post_id, article)
        except PlatformError as e:
            raise _ItemError("SYNC_FAILED", str(e)) from e

    def close(self) -> None:
        for client in self._clients.values():
            client.close()
