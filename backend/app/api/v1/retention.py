# 保留策略：手动触发清理

from fastapi import APIRouter, Depends

from app.core.config import settings
from app.orchestration.retention.retention_task import purge_expired_sync_data, purge_expired_sync_data_logic
from app.services.auth_service import get_current_user


router = APIRouter(prefix="/retention", tags=["retention"])


@router.post("/purge")
def purge(user=Depends(get_current_user)):
    if settings.SYNC_TASKS_INLINE:
        return {"enabled": settings.RETENTION_ENABLED, "purged": purge_expired_sync_data_logic()}
    res = purge_expired_sync_data.delay()
    return {"queued": True, "taskId": res.id}
