# 出站同步队列：手动触发 worker / 入队 / 统计

from __future__ import annotations
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import SyncApiError
from app.db.session import get_db
from app.orchestration.sync_queue.sync_queue_worker import process_sync_queue, process_sync_queue_logic
from app.repository import product_repo, sync_queue_repo
from app.services.auth_service import get_current_user


router = APIRouter(prefix="/sync-queue", tags=["sync-queue"])


class ProcessInput(BaseModel):
    limit: Optional[int] = Field(default=None, ge=1, le=100)


class EnqueueInput(BaseModel):
    productIds: List[str] = Field(..., min_length=1, max_length=500)
    priority: Optional[int] = Field(default=None, ge=1, le=10)


'''
消费一批队列：
    - SYNC_TASKS_INLINE=True：当前请求内同步执行，直接返回汇总
    - 否则投递到 Celery（sync_io 队列），返回 task id
'''
@router.post("/process")
def process(body: Optional[ProcessInput] = None, user=Depends(get_current_user)):
    limit = body.limit if body else None
    if settings.SYNC_TASKS_INLINE:
        return process_sync_queue_logic(limit=limit)
    res = process_sync_queue.delay(limit)
    return {"queued": True, "taskId": res.id}


@router.post("/enqueue")
def enqueue(body: EnqueueInput, db: Session = Depends(get_db), user=Depends(get_current_user)):
    owned = [p.id for p, _ in product_repo.load_owned_products(db, body.productIds, user.id)]
    if not owned:
        raise SyncApiError("PRODUCT_NOT_FOUND")
    queued = sync_queue_repo.enqueue_product_sync(db, owned, priority=body.priority)
    return {"success": True, "requested": len(body.productIds), "queued": queued}


@router.get("/stats")
def stats(
    store_id: Optional[str] = Query(default=None, alias="storeId"),
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    return {"stats": sync_queue_repo.queue_stats(db, store_id)}
