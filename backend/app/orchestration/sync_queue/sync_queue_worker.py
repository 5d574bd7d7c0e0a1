from __future__ import annotations
import logging
import time
from typing import Any, Callable, Dict, Optional

import requests
from celery import shared_task
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import public_message
from app.db.model.store import PlatformConnection, Store
from app.db.model.sync_queue import SyncJob, SyncJobStatus
from app.db.session import SessionLocal
from app.integrations.platforms.base import PlatformAdapter, SyncResult
from app.integrations.platforms.errors import CredentialsError, UnsupportedPlatformError
from app.integrations.platforms.registry import get_adapter
from app.repository.store_repo import load_connections
from app.repository.sync_queue_repo import claim_jobs, complete_job, fail_job
from app.services.credentials import resolve_credentials


logger = logging.getLogger(__name__)


"""
  出站同步队列 worker
    - 每次调用：claim 一批（默认 SYNC_QUEUE_BATCH_SIZE）→ 串行逐个推送 → 写回状态
    - 单个 job 的失败只影响它自己，绝不中断整批
    - 同一连接两次平台调用之间固定间隔 SYNC_CALL_DELAY_MS（平台限流）
    - 连接缺失 / 凭据不全 / 平台不支持 = 永久失败，直接死信
"""
@shared_task(name="app.orchestration.sync_queue.process_sync_queue")
def process_sync_queue(limit: Optional[int] = None) -> Dict[str, Any]:
    return process_sync_queue_logic(limit=limit)


class _PermanentJobError(Exception):
    """Job cannot succeed without human correction (connection / credentials / platform)."""


def process_sync_queue_logic(
    *,
    limit: Optional[int] = None,
    session: Optional[requests.Session] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:

    summary: Dict[str, Any] = {
        "processed": 0,
        "succeeded": 0,
        "failed": 0,
        "retried": 0,
        "deadLettered": 0,
        "results": [],
    }
    db: Session = SessionLocal()
    adapters: Dict[str, PlatformAdapter] = {}
    last_call: Dict[str, float] = {}

    try:
        jobs = claim_jobs(db, limit)
        if not jobs:
            logger.info("sync_queue.worker.idle")
            return summary

        connections = load_connections(db, [j.store_id for j in jobs])
        delay_sec = settings.SYNC_CALL_DELAY_MS / 1000.0

        for job in jobs:
            summary["processed"] += 1
            entry: Dict[str, Any] = {"jobId": job.id, "productId": job.product_id, "success": False}
            try:
                store, conn = connections.get(job.store_id, (None, None))
                adapter = _adapter_for(job, store, conn, adapters, session=session)

                # 同一连接的调用间隔
                prev = last_call.get(conn.id)
                if prev is not None and delay_sec > 0:
                    wait = delay_sec - (time.monotonic() - prev)
                    if wait > 0:
                        sleep(wait)
                last_call[conn.id] = time.monotonic()

                result = adapter.update_product(job.platform_product_id, dict(job.payload or {}), list(job.dirty_fields or []))
            except _PermanentJobError as e:
                result = SyncResult.fail(str(e), retryable=False)
            except Exception as e:
                # 适配器按约定不抛；走到这里一律按瞬时故障重试
                logger.exception("sync_queue.worker.unexpected job=%s", job.id)
                result = SyncResult.fail(f"unexpected error: {e}", retryable=True)

            try:
                _apply_result(db, job, result, entry, summary)
            except Exception:
                db.rollback()
                logger.exception("sync_queue.worker.persist_failed job=%s", job.id)
                summary["failed"] += 1
                entry["error"] = public_message("INTERNAL_ERROR")

            summary["results"].append(entry)

        logger.info(
            "sync_queue.worker.done processed=%s succeeded=%s retried=%s dead=%s",
            summary["processed"], summary["succeeded"], summary["retried"], summary["deadLettered"],
        )
        return summary
    finally:
        for adapter in adapters.values():
            adapter.close()
        db.close()


def _adapter_for(
    job: SyncJob,
    store: Optional[Store],
    conn: Optional[PlatformConnection],
    cache: Dict[str, PlatformAdapter],
    *,
    session: Optional[requests.Session],
) -> PlatformAdapter:
    if store is None or conn is None or not conn.shop_url:
        raise _PermanentJobError("Store connection not found")
    if store.id in cache:
        return cache[store.id]

    platform = job.platform or store.platform
    try:
        credentials = resolve_credentials(platform, conn)
        adapter = get_adapter(platform, conn.shop_url, credentials, session=session)
    except (CredentialsError, UnsupportedPlatformError) as e:
        raise _PermanentJobError(str(e)) from e
    cache[store.id] = adapter
    return adapter


def _apply_result(db: Session, job: SyncJob, result: SyncResult, entry: Dict[str, Any], summary: Dict[str, Any]) -> None:
    job_id = job.id
    if result.success:
        complete_job(db, job_id, result.updated_snapshot)
        summary["succeeded"] += 1
        entry.update(success=True, newStatus=SyncJobStatus.COMPLETED)
        return

    new_status = fail_job(db, job_id, result.error or "unknown error", retryable=result.retryable)
    summary["failed"] += 1
    if new_status == SyncJobStatus.DEAD_LETTER:
        summary["deadLettered"] += 1
    elif new_status == SyncJobStatus.PENDING:
        summary["retried"] += 1
    # 原始平台报错只进 last_error 和日志
    entry.update(error=public_message("SYNC_FAILED"), newStatus=new_status)

