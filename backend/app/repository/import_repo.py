# 导入任务 / 分片 / 滚动日志 repository
# UI 轮询这些表看进度，所以这里每个写操作都立即提交

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import sqlalchemy as sa
from sqlalchemy import select, func
from sqlalchemy.orm import Session

from app.db.base import new_uuid
from app.db.model.import_job import (
    ChunkStatus,
    ChunkType,
    ImportChunk,
    ImportJobStatus,
    SyncImportJob,
    SyncLog,
    SyncLogType,
)
from app.db.upsert import execute_insert_ignore
from app.utils.clock import now_utc


logger = logging.getLogger(__name__)

# 与 sync_queue 的 claim 锁区分开
CHUNK_CLAIM_LOCK_KEY = 0x5C_0002

ACTIVE_JOB_STATUSES = (ImportJobStatus.PENDING, ImportJobStatus.DISCOVERING, ImportJobStatus.SYNCING)
FINISHED_JOB_STATUSES = (ImportJobStatus.COMPLETED, ImportJobStatus.FAILED)

# 允许通过 increment_counters 累加的列
_COUNTER_COLUMNS = {
    "synced_products", "synced_categories", "synced_posts", "synced_variations",
    "total_chunks", "completed_chunks",
}

# 分片完成时累加的计数列；categories 整店一次拉完，由 handler 直接覆盖
_CHUNK_COUNTERS = {
    ChunkType.PRODUCTS: "synced_products",
    ChunkType.POSTS: "synced_posts",
    ChunkType.VARIATIONS: "synced_variations",
}


# ========= Job =========
def create_job(db: Session, store_id: str, *, tenant_id: Optional[int], sync_type: str = "full",
               options: Optional[Dict[str, Any]] = None) -> SyncImportJob:
    job = SyncImportJob(
        store_id=store_id,
        tenant_id=tenant_id,
        sync_type=sync_type,
        status=ImportJobStatus.DISCOVERING,
        is_chunked=False,
        can_resume=False,
        options=dict(options or {}),
        started_at=now_utc(),
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    return job


def get_job(db: Session, job_id: str) -> Optional[SyncImportJob]:
    return db.get(SyncImportJob, job_id)


def find_resumable_job(db: Session, store_id: str) -> Optional[SyncImportJob]:
    """最近一个可续跑的分片任务（未强制重启时复用）。"""
    stmt = (
        select(SyncImportJob)
        .where(
            SyncImportJob.store_id == store_id,
            SyncImportJob.is_chunked.is_(True),
            SyncImportJob.can_resume.is_(True),
            SyncImportJob.status.in_(ACTIVE_JOB_STATUSES),
        )
        .order_by(SyncImportJob.started_at.desc())
        .limit(1)
    )
    return db.scalars(stmt).first()


def list_resumable_job_ids(db: Session, *, idle_before: datetime, limit: int = 20) -> List[str]:
    """续跑巡检：停在 syncing 且一段时间没有动静的分片任务。"""
    stmt = (
        select(SyncImportJob.id)
        .where(
            SyncImportJob.status == ImportJobStatus.SYNCING,
            SyncImportJob.is_chunked.is_(True),
            SyncImportJob.can_resume.is_(True),
            SyncImportJob.updated_at < idle_before,
        )
        .order_by(SyncImportJob.updated_at.asc())
        .limit(limit)
    )
    return list(db.scalars(stmt))


def update_job(db: Session, job_id: str, **values: Any) -> None:
    values.setdefault("updated_at", now_utc())
    db.execute(
        sa.update(SyncImportJob)
        .where(SyncImportJob.id == job_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    db.commit()


def _counter_update(job_id: str, deltas: Dict[str, int]):
    unknown = set(deltas) - _COUNTER_COLUMNS
    if unknown:
        raise ValueError(f"unknown counter columns: {sorted(unknown)}")
    values: Dict[str, Any] = {
        name: getattr(SyncImportJob, name) + int(delta)
        for name, delta in deltas.items()
        if delta
    }
    if not values:
        return None
    values["updated_at"] = now_utc()
    return (
        sa.update(SyncImportJob)
        .where(SyncImportJob.id == job_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )


def increment_counters(db: Session, job_id: str, **deltas: int) -> None:
    """
    计数用 SQL 端自增（col = col + n），两个 worker 同时完成分片也不会互相覆盖。
    """
    stmt = _counter_update(job_id, deltas)
    if stmt is None:
        return
    db.execute(stmt)
    db.commit()


def finish_job(db: Session, job_id: str, *, success: bool, summary: Dict[str, Any],
               errors: Iterable[str] = ()) -> None:
    errors = list(errors)
    now = now_utc()
    update_job(
        db,
        job_id,
        status=ImportJobStatus.COMPLETED if success else ImportJobStatus.FAILED,
        can_resume=False,
        completed_at=now,
        result_summary=summary,
        error_message="; ".join(errors)[:4000] if errors else None,
        updated_at=now,
    )


# ========= Chunk =========
def create_chunks(db: Session, job_id: str, store_id: str, plans: List[Dict[str, Any]]) -> int:
    """
    plans: [{"chunk_type", "page_number", "items_total", "metadata"?}]
    (job_id, chunk_type, page_number) 唯一；重复创建直接忽略，所以重放安全。
    返回新建数，并累加到 job.total_chunks。
    """
    if not plans:
        return 0
    now = now_utc()
    rows = [
        {
            "id": new_uuid(),
            "job_id": job_id,
            "store_id": store_id,
            "chunk_type": p["chunk_type"],
            "page_number": int(p["page_number"]),
            "items_total": int(p.get("items_total") or 0),
            "items_processed": 0,
            "status": ChunkStatus.PENDING,
            "metadata": dict(p.get("metadata") or {}),
            "created_at": now,
            "updated_at": now,
        }
        for p in plans
    ]
    inserted = execute_insert_ignore(
        db, ImportChunk.__table__, rows, conflict_keys=["job_id", "chunk_type", "page_number"],
    )
    db.commit()
    if inserted:
        increment_counters(db, job_id, total_chunks=inserted)
    logger.info("import.chunks.created job=%s planned=%s inserted=%s", job_id, len(rows), inserted)
    return inserted


def claim_next_chunk(db: Session, job_id: str) -> Optional[ImportChunk]:
    """
    原子领取最早的 pending 分片 → processing。
    与 sync_queue.claim_jobs 同一套：advisory lock（PG）+ SKIP LOCKED + 条件 UPDATE。
    UPDATE 没命中（被别人抢走）就再挑下一条。
    """
    is_pg = db.get_bind().dialect.name == "postgresql"
    while True:
        if is_pg:
            db.execute(select(func.pg_advisory_xact_lock(CHUNK_CLAIM_LOCK_KEY)))

        chunk_id = db.scalars(
            select(ImportChunk.id)
            .where(ImportChunk.job_id == job_id, ImportChunk.status == ChunkStatus.PENDING)
            .order_by(ImportChunk.created_at.asc(), ImportChunk.page_number.asc())
            .limit(1)
            .with_for_update(skip_locked=True)
        ).first()
        if chunk_id is None:
            db.commit()
            return None

        now = now_utc()
        claimed = db.execute(
            sa.update(ImportChunk)
            .where(ImportChunk.id == chunk_id, ImportChunk.status == ChunkStatus.PENDING)
            .values(status=ChunkStatus.PROCESSING, started_at=now, updated_at=now)
            .returning(ImportChunk.id)
            .execution_options(synchronize_session=False)
        ).scalar_one_or_none()
        db.commit()

        if claimed:
            return db.scalars(
                select(ImportChunk).where(ImportChunk.id == claimed).execution_options(populate_existing=True)
            ).one()


def complete_chunk(db: Session, chunk: ImportChunk, items_processed: int) -> bool:
    """
    processing → completed，并在同一事务里把 items_processed 累加到 job 对应计数列。
    只有仍是 processing 的分片才算数：重放（被 requeue 后重跑）或已被别人完成的分片不会重复累加。
    返回是否真的完成了这一次。
    """
    now = now_utc()
    done = db.execute(
        sa.update(ImportChunk)
        .where(ImportChunk.id == chunk.id, ImportChunk.status == ChunkStatus.PROCESSING)
        .values(status=ChunkStatus.COMPLETED, items_processed=int(items_processed), completed_at=now,
                error_message=None, updated_at=now)
        .returning(ImportChunk.id)
        .execution_options(synchronize_session=False)
    ).scalar_one_or_none()
    if done is None:
        db.commit()
        logger.warning("import.chunk.complete_skipped chunk=%s job=%s", chunk.id, chunk.job_id)
        return False

    deltas = {"completed_chunks": 1}
    column = _CHUNK_COUNTERS.get(chunk.chunk_type)
    if column:
        deltas[column] = int(items_processed)
    db.execute(_counter_update(chunk.job_id, deltas))
    db.commit()
    return True


def fail_chunk(db: Session, chunk: ImportChunk, err: Exception | str) -> None:
    now = now_utc()
    result = db.execute(
        sa.update(ImportChunk)
        .where(ImportChunk.id == chunk.id)
        .values(status=ChunkStatus.FAILED, completed_at=now, error_message=str(err)[:2000], updated_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if result.rowcount == 0:
        logger.warning("import.chunk.fail updated 0 rows: chunk=%s err=%s", chunk.id, err)


def requeue_stale_chunks(db: Session, job_id: str, started_before: datetime) -> int:
    """上一次调用被宿主强杀时，processing 分片会卡住；超过时限的放回 pending。"""
    res = db.execute(
        sa.update(ImportChunk)
        .where(
            ImportChunk.job_id == job_id,
            ImportChunk.status == ChunkStatus.PROCESSING,
            ImportChunk.started_at < started_before,
        )
        .values(status=ChunkStatus.PENDING, started_at=None, updated_at=now_utc())
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if res.rowcount:
        logger.warning("import.chunks.requeued job=%s count=%s", job_id, res.rowcount)
    return int(res.rowcount or 0)


def count_open_chunks(db: Session, job_id: str) -> int:
    stmt = select(func.count(ImportChunk.id)).where(
        ImportChunk.job_id == job_id,
        ImportChunk.status.in_((ChunkStatus.PENDING, ChunkStatus.PROCESSING)),
    )
    return int(db.scalar(stmt) or 0)


def chunk_status_counts(db: Session, job_id: str) -> Dict[str, int]:
    stmt = (
        select(ImportChunk.status, func.count(ImportChunk.id))
        .where(ImportChunk.job_id == job_id)
        .group_by(ImportChunk.status)
    )
    return {status: int(n) for status, n in db.execute(stmt).all()}


def failed_chunk_errors(db: Session, job_id: str, limit: int = 20) -> List[str]:
    stmt = (
        select(ImportChunk.chunk_type, ImportChunk.page_number, ImportChunk.error_message)
        .where(ImportChunk.job_id == job_id, ImportChunk.status == ChunkStatus.FAILED)
        .order_by(ImportChunk.completed_at.asc())
        .limit(limit)
    )
    return [f"Chunk {t} page {p}: {e or 'unknown error'}" for t, p, e in db.execute(stmt).all()]


def variation_plan(woo_product_id: Any, *, product_name: str, expected_count: int) -> Dict[str, Any]:
    """variations 分片：page_number 用 woo 商品 id，保证同一商品只会有一个分片。"""
    return {
        "chunk_type": ChunkType.VARIATIONS,
        "page_number": int(woo_product_id),
        "items_total": int(expected_count or 0),
        "metadata": {
            "woo_product_id": str(woo_product_id),
            "product_name": product_name,
            "expected_count": int(expected_count or 0),
        },
    }


# ========= 滚动日志 =========
def add_log(db: Session, job_id: Optional[str], message: str, log_type: str = SyncLogType.INFO) -> None:
    if not job_id:
        return
    db.add(SyncLog(job_id=job_id, message=message, log_type=log_type))
    db.commit()


def latest_logs(db: Session, job_id: str, limit: int = 50) -> List[SyncLog]:
    stmt = (
        select(SyncLog)
        .where(SyncLog.job_id == job_id)
        .order_by(SyncLog.created_at.desc())
        .limit(limit)
    )
    return list(db.scalars(stmt))


# ========= 保留策略 =========
def purge_finished_jobs(db: Session, older_than: datetime) -> int:
    """只删已结束的任务；分片和日志随外键级联。"""
    finished = select(SyncImportJob.id).where(
        SyncImportJob.status.in_(FINISHED_JOB_STATUSES),
        func.coalesce(SyncImportJob.completed_at, SyncImportJob.updated_at) < older_than,
    )
    ids = list(db.scalars(finished))
    if not ids:
        return 0
    # SQLite 默认不开外键，级联靠不住，显式删子表
    db.execute(sa.delete(ImportChunk).where(ImportChunk.job_id.in_(ids)).execution_options(synchronize_session=False))
    db.execute(sa.delete(SyncLog).where(SyncLog.job_id.in_(ids)).execution_options(synchronize_session=False))
    res = db.execute(sa.delete(SyncImportJob).where(SyncImportJob.id.in_(ids)).execution_options(synchronize_session=False))
    db.commit()
    return int(res.rowcount or 0)


def purge_logs(db: Session, older_than: datetime) -> int:
    res = db.execute(
        sa.delete(SyncLog).where(SyncLog.created_at < older_than).execution_options(synchronize_session=False)
    )
    db.commit()
    return int(res.rowcount or 0)
