# push-to-store：把本地编辑推到平台（商品 / 文章）

from __future__ import annotations
import logging
from typing import Any, List, Optional

import redis
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.infrastructure.ratelimit.redis_fixed_window import RedisFixedWindowLimiter
from app.services.auth_service import get_current_user
from app.services.push_service import push_to_store

logger = logging.getLogger(__name__)

router = APIRouter(tags=["push"])

_limiter: Optional[RedisFixedWindowLimiter] = None


def get_push_limiter() -> Optional[RedisFixedWindowLimiter]:
    """进程内复用一个 limiter；Redis 不可用时返回 None，由 service 按配置错误拒绝。"""
    global _limiter
    if _limiter is None:
        try:
            _limiter = RedisFixedWindowLimiter.from_settings()
        except redis.RedisError as e:
            logger.error("push.ratelimit.redis_unavailable err=%s", e.__class__.__name__)
            return None
    return _limiter


class PushInput(BaseModel):
    # 类型与 id 格式在 service 里校验，统一回 INVALID_REQUEST
    type: Any = None
    ids: Any = None
    force: bool = False


class PushItemOut(BaseModel):
    id: str
    platformId: Optional[str] = None
    success: bool
    skipped: Optional[bool] = None
    skipReason: Optional[str] = None
    error: Optional[str] = None


class PushOut(BaseModel):
    success: bool
    type: str
    total: int
    successful: int
    skipped: int
    failed: int
    results: List[PushItemOut]


@router.post("/push-to-store", response_model=PushOut, response_model_exclude_none=True)
def push(
    body: PushInput,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
    limiter: Optional[RedisFixedWindowLimiter] = Depends(get_push_limiter),
):
    return push_to_store(
        db,
        user_id=user.id,
        entity_type=body.type,
        ids=body.ids,
        force=body.force,
        limiter=limiter,
    )
