from __future__ import annotations
import logging
from datetime import timedelta
from typing import Dict

from celery import shared_task

from app.core.config import settings
from app.db.model.sync_queue import SyncJobStatus
from app.db.session import SessionLocal
from app.repository import import_repo, sync_queue_repo
from app.utils.clock import now_utc


logger = logging.getLogger(__name__)


"""
  保留策略（每天一次）：只删终态数据
    - completed 队列任务 > RETENTION_COMPLETED_JOB_DAYS
    - dead_letter 队列任务 > RETENTION_DEAD_LETTER_DAYS（留得更久，人工排查用）
    - 已结束的导入任务（连同分片、日志）> RETENTION_IMPORT_DAYS
    - sync_logs > RETENTION_LOG_DAYS
  pending / processing 永远不删
"""
@shared_task(name="app.orchestration.retention.purge_expired_sync_data")
def purge_expired_sync_data() -> Dict[str, int]:
    return purge_expired_sync_data_logic()


def purge_expired_sync_data_logic() -> Dict[str, int]:
    if not settings.RETENTION_ENABLED:
        logger.info("retention.disabled")
        return {}

    now = now_utc()
    db = SessionLocal()
    try:
        counts = {
            "sync_queue_completed": sync_queue_repo.purge_jobs(
                db, SyncJobStatus.COMPLETED, now - timedelta(days=settings.RETENTION_COMPLETED_JOB_DAYS),
            ),
            "sync_queue_dead_letter": sync_queue_repo.purge_jobs(
                db, SyncJobStatus.DEAD_LETTER, now - timedelta(days=settings.RETENTION_DEAD_LETTER_DAYS),
            ),
            "sync_jobs": import_repo.purge_finished_jobs(
                db, now - timedelta(days=settings.RETENTION_IMPORT_DAYS),
            ),
            "sync_logs": import_repo.purge_logs(
                db, now - timedelta(days=settings.RETENTION_LOG_DAYS),
            ),
        }
    finally:
        db.close()

    logger.info("retention.purged %s", " ".join(f"{k}={v}" for k, v in counts.items()))
    return counts
