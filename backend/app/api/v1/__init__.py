from fastapi import APIRouter, Depends
from app.services.auth_service import get_current_user


# 非受保护路由
from .routes_health import router as health_router
from .auth import router as auth_router


# 需要登录的受保护路由
from .sync_queue import router as sync_queue_router
from .store_import import router as store_import_router
from .heartbeat import router as heartbeat_router
from .push import router as push_router
from .retention import router as retention_router


api_v1 = APIRouter()
api_v1.include_router(health_router)      # /health 不需要登录
api_v1.include_router(auth_router)        # /auth 登录相关

# --- 需要登录的接口 ---
protected = APIRouter(dependencies=[Depends(get_current_user)])

protected.include_router(sync_queue_router)
protected.include_router(store_import_router)
protected.include_router(heartbeat_router)
protected.include_router(push_router)
protected.include_router(retention_router)

# 把受保护路由注册进主路由
api_v1.include_router(protected)
