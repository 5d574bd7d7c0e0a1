# store_heartbeat / conflict_log repository

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import sqlalchemy as sa
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.base import new_uuid
from app.db.model.heartbeat import ConflictLogEntry, ConflictResolution, ConflictType, StoreHeartbeat
from app.db.model.product import Product
from app.db.model.store import Store
from app.db.upsert import execute_insert_ignore
from app.utils.clock import now_utc


logger = logging.getLogger(__name__)


def ensure_heartbeats(db: Session, store_ids: Optional[List[str]] = None) -> int:
    """给还没有心跳行的活跃店铺补一行（按需创建）；返回新建数。"""
    stmt = (
        select(Store.id)
        .outerjoin(StoreHeartbeat, StoreHeartbeat.store_id == Store.id)
        .where(StoreHeartbeat.id.is_(None), Store.active.is_(True))
    )
    if store_ids:
        stmt = stmt.where(Store.id.in_(store_ids))
    missing = list(db.scalars(stmt))
    if not missing:
        return 0
    now = now_utc()
    rows = [
        {
            "id": new_uuid(),
            "store_id": sid,
            "interval_minutes": settings.HEARTBEAT_INTERVAL_MINUTES,
            "enabled": True,
            "consecutive_failures": 0,
            "total_checks": 0,
            "total_changes_detected": 0,
            "created_at": now,
            "updated_at": now,
        }
        for sid in missing
    ]
    inserted = execute_insert_ignore(db, StoreHeartbeat.__table__, rows, conflict_keys=["store_id"])
    db.commit()
    logger.info("heartbeat.ensure created=%s", inserted)
    return inserted


def get_heartbeat(db: Session, store_id: str) -> Optional[StoreHeartbeat]:
    return db.scalars(select(StoreHeartbeat).where(StoreHeartbeat.store_id == store_id)).first()


def list_due(db: Session, *, now: Optional[datetime] = None, store_id: Optional[str] = None) -> List[StoreHeartbeat]:
    """
    到期 = enabled 且 consecutive_failures 未到上限，且 last_checked_at 为空或早于 now - interval。
    interval 是每行自己的 interval_minutes，逐行在 Python 里比（店铺数量不大）。
    """
    now = now or now_utc()
    stmt = (
        select(StoreHeartbeat)
        .join(Store, Store.id == StoreHeartbeat.store_id)
        .where(
            StoreHeartbeat.enabled.is_(True),
            Store.active.is_(True),
            StoreHeartbeat.consecutive_failures < settings.HEARTBEAT_MAX_CONSECUTIVE_FAILURES,
        )
        .order_by(StoreHeartbeat.last_checked_at.asc())
    )
    if store_id:
        stmt = stmt.where(StoreHeartbeat.store_id == store_id)

    due: List[StoreHeartbeat] = []
    for hb in db.scalars(stmt):
        interval = timedelta(minutes=int(hb.interval_minutes or settings.HEARTBEAT_INTERVAL_MINUTES))
        if hb.last_checked_at is None or hb.last_checked_at <= now - interval:
            due.append(hb)
    return due


def force_due(db: Session, store_id: str) -> None:
    """手动触发：清掉 last_checked_at，本轮立即到期。"""
    db.execute(
        sa.update(StoreHeartbeat)
        .where(StoreHeartbeat.store_id == store_id)
        .values(last_checked_at=None, updated_at=now_utc())
        .execution_options(synchronize_session=False)
    )
    db.commit()


def mark_success(db: Session, hb: StoreHeartbeat, *, cursor: Optional[datetime], changes: int) -> None:
    """游标只前进不后退；cursor 为 None（本轮没有变更）时保持原值。"""
    now = now_utc()
    hb.last_checked_at = now
    hb.last_successful_at = now
    if cursor is not None and (hb.store_last_modified_at is None or cursor > hb.store_last_modified_at):
        hb.store_last_modified_at = cursor
    hb.consecutive_failures = 0
    hb.last_error = None
    hb.total_checks = int(hb.total_checks or 0) + 1
    hb.total_changes_detected = int(hb.total_changes_detected or 0) + int(changes)
    hb.updated_at = now
    db.commit()


def mark_failure(db: Session, hb: StoreHeartbeat, error: str) -> int:
    """失败：游标不动，连续失败数 +1；返回新的连续失败数。"""
    now = now_utc()
    hb.last_checked_at = now
    hb.consecutive_failures = int(hb.consecutive_failures or 0) + 1
    hb.last_error = (error or "")[:2000]
    hb.total_checks = int(hb.total_checks or 0) + 1
    hb.updated_at = now
    db.commit()
    if hb.consecutive_failures >= settings.HEARTBEAT_MAX_CONSECUTIVE_FAILURES:
        logger.warning("heartbeat.store.paused store=%s failures=%s", hb.store_id, hb.consecutive_failures)
    return hb.consecutive_failures


def reset_failures(db: Session, store_id: str) -> bool:
    """人工恢复被暂停的店铺。"""
    res = db.execute(
        sa.update(StoreHeartbeat)
        .where(StoreHeartbeat.store_id == store_id)
        .values(consecutive_failures=0, last_error=None, enabled=True, updated_at=now_utc())
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return bool(res.rowcount)


# ---------- conflict_log ----------
def log_store_wins_conflict(db: Session, product: Product, remote: Dict[str, Any]) -> ConflictLogEntry:
    """
    覆盖前记录：本地 dirty 字段 + 本地 working + 远端内容。不提交，与覆盖同一事务。
    """
    entry = ConflictLogEntry(
        product_id=product.id,
        store_id=product.store_id,
        conflict_type=ConflictType.STORE_WINS,
        fields_affected=list(product.dirty_fields_content or []),
        local_values=dict(product.working_content or {}),
        store_values=dict(remote or {}),
        resolved_values=dict(remote or {}),
        resolution=ConflictResolution.AUTO_STORE_WINS,
        resolved_at=now_utc(),
    )
    db.add(entry)
    return entry


def list_conflicts(db: Session, product_id: str) -> List[ConflictLogEntry]:
    stmt = (
        select(ConflictLogEntry)
        .where(ConflictLogEntry.product_id == product_id)
        .order_by(ConflictLogEntry.created_at.asc())
    )
    return list(db.scalars(stmt))
