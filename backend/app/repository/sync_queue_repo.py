# sync_queue (outbound push jobs) repository

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

import sqlalchemy as sa
from sqlalchemy import select, func
from sqlalchemy.orm import Session, aliased

from app.core.config import settings
from app.db.base import new_uuid
from app.db.model.product import Product, ProductSyncStatus
from app.db.model.store import Store
from app.db.model.sync_queue import SyncDirection, SyncJob, SyncJobStatus
from app.db.upsert import execute_insert_ignore
from app.utils.backoff import calc_next_delay
from app.utils.clock import now_utc
from app.utils.serialization import calc_content_hash


logger = logging.getLogger(__name__)

# claim 的事务级 advisory lock（PostgreSQL）；把"挑选 + 置 processing"串行化，
# 才能保证同一商品不会被两个并发 worker 各自领走一个 job
CLAIM_LOCK_KEY = 0x5C_0001

PERMANENT_ERROR_PREFIX = "[PERMANENT] "


# ========= 入队 =========
def enqueue_product_sync(
    db: Session,
    product_ids: Iterable[str],
    *,
    direction: str = SyncDirection.PUSH,
    priority: Optional[int] = None,
) -> int:
    """
    为有 dirty 字段、且已关联平台商品的 product 入队一条 job。
      - payload = 当前 working_content（入队时刻的值）
      - idempotency_key = "{product_id}-{direction}-{epoch秒}"，同一秒重复点击只入一条
      - 入队的商品 sync_status → pending_push
    返回真正入队的条数。
    """
    ids = [pid for pid in dict.fromkeys(product_ids or []) if pid]
    if not ids:
        return 0

    stmt = (
        select(Product, Store.platform)
        .join(Store, Store.id == Product.store_id)
        .where(Product.id.in_(ids))
    )
    epoch = int(time.time())
    rows: List[Dict[str, Any]] = []
    queued_ids: List[str] = []
    now = now_utc()

    for product, platform in db.execute(stmt).all():
        dirty = list(product.dirty_fields_content or [])
        if not product.platform_product_id or not dirty:
            logger.debug("sync_queue.enqueue.skip product=%s dirty=%s", product.id, len(dirty))
            continue
        rows.append({
            "id": new_uuid(),
            "store_id": product.store_id,
            "product_id": product.id,
            "direction": direction,
            "priority": priority or settings.SYNC_QUEUE_DEFAULT_PRIORITY,
            "dirty_fields": dirty,
            "payload": dict(product.working_content or {}),
            "platform": platform,
            "platform_product_id": product.platform_product_id,
            "status": SyncJobStatus.PENDING,
            "attempt_count": 0,
            "max_attempts": settings.SYNC_QUEUE_DEFAULT_MAX_ATTEMPTS,
            "idempotency_key": f"{product.id}-{direction}-{epoch}",
            "created_at": now,
            "updated_at": now,
        })
        queued_ids.append(product.id)

    inserted = execute_insert_ignore(db, SyncJob.__table__, rows, conflict_keys=["idempotency_key"])
    if queued_ids:
        db.execute(
            sa.update(Product)
            .where(Product.id.in_(queued_ids))
            .values(sync_status=ProductSyncStatus.PENDING_PUSH, updated_at=now)
            .execution_options(synchronize_session=False)
        )
    db.commit()
    logger.info("sync_queue.enqueue requested=%s inserted=%s", len(ids), inserted)
    return inserted


# ========= Claim =========
def claim_jobs(
    db: Session,
    limit: Optional[int] = None,
    *,
    direction: Optional[str] = None,
    now: Optional[datetime] = None,
) -> List[SyncJob]:
    """
    原子领取最多 limit 个到期的 pending job，并置为 processing。
      1) PostgreSQL 下先拿事务级 advisory lock，挑选与置位在同一把锁内完成；
      2) 候选：pending 且 next_retry_at 为空或已到期，且同商品当前没有 processing 的 job；
         FOR UPDATE SKIP LOCKED 跳过别人已锁的行；
      3) 每个商品只取优先级最高的一条；
      4) UPDATE ... WHERE status='pending' RETURNING id，真正置位成功的才算领到；
      5) 提交后按领取顺序返回。
    dead_letter / completed 永远不会被选中。
    """
    limit = limit or settings.SYNC_QUEUE_BATCH_SIZE
    now = now or now_utc()

    if db.get_bind().dialect.name == "postgresql":
        db.execute(select(func.pg_advisory_xact_lock(CLAIM_LOCK_KEY)))

    busy = aliased(SyncJob)
    product_busy = (
        select(busy.id)
        .where(busy.product_id == SyncJob.product_id, busy.status == SyncJobStatus.PROCESSING)
        .exists()
    )
    conds = [
        SyncJob.status == SyncJobStatus.PENDING,
        sa.or_(SyncJob.next_retry_at.is_(None), SyncJob.next_retry_at <= now),
        ~product_busy,
    ]
    if direction:
        conds.append(SyncJob.direction == direction)

    candidates = db.execute(
        select(SyncJob.id, SyncJob.product_id)
        .where(*conds)
        .order_by(SyncJob.priority.asc(), SyncJob.created_at.asc())
        .limit(limit * 4)
        .with_for_update(skip_locked=True, of=SyncJob)
    ).all()

    picked: List[str] = []
    seen_products: set[str] = set()
    for job_id, product_id in candidates:
        if product_id in seen_products:
            continue
        seen_products.add(product_id)
        picked.append(job_id)
        if len(picked) >= limit:
            break

    if not picked:
        db.commit()
        return []

    claimed = set(
        db.execute(
            sa.update(SyncJob)
            .where(SyncJob.id.in_(picked), SyncJob.status == SyncJobStatus.PENDING)
            .values(status=SyncJobStatus.PROCESSING, started_at=now, updated_at=now)
            .returning(SyncJob.id)
            .execution_options(synchronize_session=False)
        ).scalars()
    )
    db.commit()

    if not claimed:
        return []
    jobs = db.scalars(
        select(SyncJob).where(SyncJob.id.in_(claimed)).execution_options(populate_existing=True)
    ).all()
    order = {jid: i for i, jid in enumerate(picked)}
    jobs = sorted(jobs, key=lambda j: order.get(j.id, len(order)))
    logger.info("sync_queue.claim requested=%s claimed=%s", limit, len(jobs))
    return jobs


# ========= 状态迁移 =========
def complete_job(db: Session, job_id: str, updated_snapshot: Optional[Dict[str, Any]] = None) -> None:
    """
    推送成功：
      - job → completed
      - 被推送字段写入 store_snapshot_content，并从 dirty_fields_content 移除；
        入队之后 working 又改过的字段仍保持 dirty（下一次推送）
      - 平台返回的完整快照合并进 metadata 层
      - store_last_modified_at = now
    """
    now = now_utc()
    job = db.get(SyncJob, job_id)
    if job is None:
        logger.warning("sync_queue.complete.missing job=%s", job_id)
        return

    job.status = SyncJobStatus.COMPLETED
    job.completed_at = now
    job.last_error = None
    job.next_retry_at = None
    job.updated_at = now

    product = db.get(Product, job.product_id)
    if product is not None:
        pushed = [f for f in (job.dirty_fields or []) if f in (job.payload or {})]
        working = dict(product.working_content or {})
        snapshot = dict(product.store_snapshot_content or {})
        still_dirty: set[str] = set()
        for name in pushed:
            value = job.payload[name]
            snapshot[name] = value
            if working.get(name) != value:
                still_dirty.add(name)

        pushed_set = set(pushed) - still_dirty
        remaining = [f for f in (product.dirty_fields_content or []) if f not in pushed_set]

        product.store_snapshot_content = snapshot
        product.dirty_fields_content = remaining
        product.sync_status = ProductSyncStatus.PENDING_PUSH if remaining else ProductSyncStatus.SYNCED
        product.sync_source = "push"
        product.content_hash = calc_content_hash(snapshot)
        product.last_synced_at = now
        product.store_content_updated_at = now
        product.store_last_modified_at = now
        if updated_snapshot:
            product.platform_metadata = {**(product.platform_metadata or {}), **updated_snapshot, "last_pushed_at": now.isoformat()}
        product.updated_at = now

    db.commit()
    logger.info("sync_queue.job.completed job=%s product=%s", job_id, job.product_id)


def fail_job(db: Session, job_id: str, error: str, *, retryable: bool = True, now: Optional[datetime] = None) -> str:
    """
    失败迁移，返回新状态：
      - 不可重试 → dead_letter（错误前缀 [PERMANENT]，与重试耗尽区分）
      - attempt_count+1 >= max_attempts → dead_letter
      - 否则 → pending，next_retry_at = now + min(base * 2^attempts, cap)
    进入死信时商品 sync_status → conflict，提示需要人工处理。
    """
    now = now or now_utc()
    job = db.get(SyncJob, job_id)
    if job is None:
        logger.warning("sync_queue.fail.missing job=%s", job_id)
        return SyncJobStatus.FAILED

    attempts = int(job.attempt_count or 0) + 1
    job.attempt_count = attempts
    job.updated_at = now

    if not retryable:
        job.status = SyncJobStatus.DEAD_LETTER
        job.last_error = PERMANENT_ERROR_PREFIX + (error or "")
        job.next_retry_at = None
    elif attempts >= int(job.max_attempts or 0):
        job.status = SyncJobStatus.DEAD_LETTER
        job.last_error = error
        job.next_retry_at = None
    else:
        delay = calc_next_delay(attempts, settings.SYNC_QUEUE_BASE_DELAY_SEC, settings.SYNC_QUEUE_MAX_DELAY_SEC)
        job.status = SyncJobStatus.PENDING
        job.last_error = error
        job.next_retry_at = now + timedelta(seconds=delay)

    if job.status == SyncJobStatus.DEAD_LETTER:
        db.execute(
            sa.update(Product)
            .where(Product.id == job.product_id)
            .values(sync_status=ProductSyncStatus.CONFLICT, updated_at=now)
            .execution_options(synchronize_session=False)
        )

    db.commit()
    logger.warning(
        "sync_queue.job.failed job=%s status=%s attempt=%s/%s retryable=%s",
        job_id, job.status, attempts, job.max_attempts, retryable,
    )
    return job.status


# ========= 查询 =========
def get_job(db: Session, job_id: str) -> Optional[SyncJob]:
    return db.get(SyncJob, job_id)


def queue_stats(db: Session, store_id: Optional[str] = None) -> List[Dict[str, Any]]:
    """每个状态：条数、最早创建时间、平均尝试次数。"""
    stmt = select(
        SyncJob.status,
        func.count(SyncJob.id),
        func.min(SyncJob.created_at),
        func.avg(SyncJob.attempt_count),
    ).group_by(SyncJob.status).order_by(SyncJob.status)
    if store_id:
        stmt = stmt.where(SyncJob.store_id == store_id)
    return [
        {
            "status": status,
            "count": int(count or 0),
            "oldest": oldest,
            "avg_attempts": round(float(avg or 0), 2),
        }
        for status, count, oldest, avg in db.execute(stmt).all()
    ]


# ========= 保留策略 =========
def purge_jobs(db: Session, status: str, older_than: datetime) -> int:
    """只允许清理终态（completed / dead_letter）；pending / processing 永不删除。"""
    if status not in (SyncJobStatus.COMPLETED, SyncJobStatus.DEAD_LETTER):
        raise ValueError(f"refusing to purge non-terminal status {status!r}")
    stmt = (
        sa.delete(SyncJob)
        .where(SyncJob.status == status, func.coalesce(SyncJob.completed_at, SyncJob.updated_at) < older_than)
        .execution_options(synchronize_session=False)
    )
    res = db.execute(stmt)
    db.commit()
    return int(res.rowcount or 0)
