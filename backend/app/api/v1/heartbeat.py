# 心跳对账：手动触发 / 恢复被暂停的店铺

from __future__ import annotations
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import SyncApiError
from app.db.session import get_db
from app.orchestration.heartbeat.heartbeat_task import run_heartbeat, run_heartbeat_logic
from app.repository import heartbeat_repo
from app.repository.store_repo import get_owned_store
from app.services.auth_service import get_current_user


router = APIRouter(prefix="/heartbeat", tags=["heartbeat"])


class HeartbeatInput(BaseModel):
    storeId: Optional[str] = None


@router.post("/run")
def run(
    body: Optional[HeartbeatInput] = None,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    store_id = body.storeId if body else None
    # 指定店铺时校验归属；不指定 = 跑所有到期店铺
    if store_id and get_owned_store(db, store_id, user.id) is None:
        raise SyncApiError("STORE_NOT_FOUND")
    if settings.SYNC_TASKS_INLINE:
        return run_heartbeat_logic(store_id=store_id)
    res = run_heartbeat.delay(store_id)
    return {"queued": True, "taskId": res.id}


@router.post("/{store_id}/reset")
def reset(store_id: str, db: Session = Depends(get_db), user=Depends(get_current_user)):
    if get_owned_store(db, store_id, user.id) is None:
        raise SyncApiError("STORE_NOT_FOUND")
    return {"success": heartbeat_repo.reset_failures(db, store_id)}
