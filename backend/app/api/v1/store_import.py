# 店铺导入：发起 / 续跑（同一个接口）+ 进度轮询

from __future__ import annotations
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.core.errors import SyncApiError
from app.db.session import get_db
from app.orchestration.store_import.import_pipeline import run_import
from app.repository import import_repo
from app.repository.store_repo import get_owned_store
from app.services.auth_service import get_current_user
from app.utils.clock import iso_utc


router = APIRouter(prefix="/stores/import", tags=["store-import"])


class ImportInput(BaseModel):
    storeId: str = Field(..., min_length=1, max_length=64)
    syncType: str = Field(default="full", pattern="^(full|incremental)$")
    types: Optional[List[str]] = None
    forceRestart: bool = False


'''
发起或继续导入：
    - 小目录一次做完，返回最终汇总
    - 大目录在时间预算内做一部分，返回 {status: "in_progress", canResume: true}，调用方再调一次
'''
@router.post("")
def start_import(body: ImportInput, db: Session = Depends(get_db), user=Depends(get_current_user)):
    return run_import(
        db,
        tenant_id=user.id,
        store_id=body.storeId,
        sync_type=body.syncType,
        types=body.types,
        force_restart=body.forceRestart,
    )


@router.get("/{job_id}")
def import_status(job_id: str, db: Session = Depends(get_db), user=Depends(get_current_user)):
    job = import_repo.get_job(db, job_id)
    # 不属于调用方的任务与不存在同样处理
    if job is None or get_owned_store(db, job.store_id, user.id) is None:
        raise SyncApiError("STORE_NOT_FOUND")

    logs = import_repo.latest_logs(db, job.id)
    return {
        "jobId": job.id,
        "storeId": job.store_id,
        "status": job.status,
        "isChunked": job.is_chunked,
        "canResume": job.can_resume,
        "totalProducts": job.total_products,
        "syncedProducts": job.synced_products,
        "totalCategories": job.total_categories,
        "syncedCategories": job.synced_categories,
        "totalPosts": job.total_posts,
        "syncedPosts": job.synced_posts,
        "syncedVariations": job.synced_variations,
        "totalChunks": job.total_chunks,
        "completedChunks": job.completed_chunks,
        "chunks": import_repo.chunk_status_counts(db, job.id),
        "startedAt": iso_utc(job.started_at),
        "completedAt": iso_utc(job.completed_at),
        "summary": job.result_summary,
        "logs": [
            {"type": log.log_type, "message": log.message, "createdAt": iso_utc(log.created_at)}
            for log in logs
        ],
    }
