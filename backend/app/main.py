from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from app.core.config import settings
from app.core.errors import SyncApiError
from app.core.logging import configure_logging
from app.db.session import dispose_engine
from app.api.v1 import api_v1

configure_logging()

app = FastAPI(title=settings.PROJECT_NAME)

# 从环境读取前端白名单（逗号分隔）；"*" 会被过滤掉，永远不回显通配
origins = settings.cors_origins


app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,     # 明确白名单
    allow_credentials=True,    # Access-Control-Allow-Credentials: true
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Client-Info", "Apikey"],
    )


# Origin 校验（仅对改数据方法）
TRUSTED = set(origins)


@app.middleware("http")
async def origin_check(request: Request, call_next):
    if request.method in {"POST", "PUT", "PATCH", "DELETE"}:
        origin = request.headers.get("origin")
        # 没有 Origin（如 curl / beat / 其它服务）则放行，靠 Bearer 鉴权
        if origin and origin not in TRUSTED:
            return JSONResponse(status_code=403, content={"success": False, "error": "Bad Origin"})
    return await call_next(request)


# 调用级错误：只返回通用文案
@app.exception_handler(SyncApiError)
async def sync_api_error_handler(request: Request, exc: SyncApiError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_body(), headers=exc.headers or None)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    err = SyncApiError("INVALID_REQUEST")
    return JSONResponse(status_code=err.status_code, content=err.to_body())


app.include_router(api_v1, prefix=settings.API_PREFIX)

# 根路径健康探活（方便测试或 Docker 健康检查）
@app.get("/")
def root():
    return {
        "app": settings.PROJECT_NAME,
        "env": settings.ENVIRONMENT,
        "ok": True
    }


# shutdown 时释放连接池
@app.on_event("shutdown")
def on_shutdown():
    dispose_engine()
