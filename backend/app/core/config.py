# 环境变量和配置
# pydantic‑settings 读取 .env = core/config.py

from typing import Optional
from pydantic import SecretStr, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# 本机直接跑 uvicorn 时（不走 Docker），才会用到 model_config.env_file=".env"：
# 此时它会读取 backend/.env

class Settings(BaseSettings):

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_prefix="",
        case_sensitive=False,
    )

    # ========= project config =========
    PROJECT_NAME: str = "Store Sync Hub"
    ENVIRONMENT: str = "dev"
    API_PREFIX: str = "/api/v1"


    # ========= 登录 / 鉴权 / CORS =========
    SECRET_KEY: SecretStr = Field(SecretStr("CHANGE_ME"), alias="SECRET_KEY")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(480, alias="ACCESS_TOKEN_EXPIRE_MINUTES")   # 8h
    COOKIE_NAME: str = Field("access_token", alias="COOKIE_NAME")
    COOKIE_DOMAIN: Optional[str] = Field(None, alias="COOKIE_DOMAIN")
    # 逗号分隔的前端白名单；不允许 "*"
    BACKEND_CORS_ORIGINS: str = Field(
        "http://localhost:3000,http://localhost:3001,https://flowz.app,https://www.flowz.app,https://app.flowz.app",
        alias="BACKEND_CORS_ORIGINS",
    )


    # ========= Database =========
    DATABASE_URL: str = Field(
        default="postgresql+psycopg://sync_user:sync_pass@db:5432/store_sync",
        alias="DATABASE_URL",
    )
    DB_POOL_SIZE: int = Field(10, alias="DB_POOL_SIZE")
    DB_MAX_OVERFLOW: int = Field(20, alias="DB_MAX_OVERFLOW")


    # ========= Redis / Celery =========
    REDIS_URL: Optional[str] = Field(None, alias="REDIS_URL")
    CELERY_BROKER_URL: Optional[str] = Field(None, alias="CELERY_BROKER_URL")
    CELERY_RESULT_BACKEND: Optional[str] = Field(None, alias="CELERY_RESULT_BACKEND")
    CELERY_TIMEZONE: str = Field("UTC", alias="CELERY_TIMEZONE")
    SYNC_TASKS_INLINE: bool = Field(default=False, alias="SYNC_TASKS_INLINE")    # True=当前进程同步执行（调试）


    # ========= 出站同步队列 =========
    SYNC_QUEUE_BATCH_SIZE: int = Field(10, ge=1, le=100, alias="SYNC_QUEUE_BATCH_SIZE")
    SYNC_QUEUE_BASE_DELAY_SEC: int = Field(1, ge=1, alias="SYNC_QUEUE_BASE_DELAY_SEC")
    SYNC_QUEUE_MAX_DELAY_SEC: int = Field(300, ge=1, alias="SYNC_QUEUE_MAX_DELAY_SEC")        # 5 分钟封顶
    SYNC_QUEUE_DEFAULT_MAX_ATTEMPTS: int = Field(5, ge=1, alias="SYNC_QUEUE_DEFAULT_MAX_ATTEMPTS")
    SYNC_QUEUE_DEFAULT_PRIORITY: int = Field(5, ge=1, le=10, alias="SYNC_QUEUE_DEFAULT_PRIORITY")
    SYNC_CALL_DELAY_MS: int = Field(200, ge=0, alias="SYNC_CALL_DELAY_MS")                   # 同一连接两次调用之间的间隔


    # ========= 平台 HTTP =========
    PLATFORM_CONNECT_TIMEOUT: int = Field(10, ge=1, alias="PLATFORM_CONNECT_TIMEOUT")
    PLATFORM_HTTP_TIMEOUT: int = Field(30, ge=1, alias="PLATFORM_HTTP_TIMEOUT")
    SHOPIFY_API_VERSION: str = Field("2024-01", alias="SHOPIFY_API_VERSION")
    HTTP_USER_AGENT: str = Field("StoreSyncHub/1.0 (+python)", alias="HTTP_USER_AGENT")


    # ========= 导入（分片）=========
    IMPORT_PRODUCTS_PER_PAGE: int = Field(50, ge=1, le=100, alias="IMPORT_PRODUCTS_PER_PAGE")
    IMPORT_UPSERT_BATCH_SIZE: int = Field(25, ge=1, alias="IMPORT_UPSERT_BATCH_SIZE")
    IMPORT_MAX_RETRIES: int = Field(3, ge=0, alias="IMPORT_MAX_RETRIES")
    IMPORT_RETRY_DELAY_SEC: float = Field(2.0, ge=0, alias="IMPORT_RETRY_DELAY_SEC")
    IMPORT_REQUEST_TIMEOUT: int = Field(25, ge=1, alias="IMPORT_REQUEST_TIMEOUT")
    IMPORT_MAX_EXECUTION_SEC: int = Field(100, ge=1, alias="IMPORT_MAX_EXECUTION_SEC")      # 留出宿主硬超时的余量
    IMPORT_CHUNKED_THRESHOLD: int = Field(30, ge=0, alias="IMPORT_CHUNKED_THRESHOLD")
    IMPORT_MAX_VARIATION_PAGES: int = Field(10, ge=1, alias="IMPORT_MAX_VARIATION_PAGES")


    # ========= Heartbeat =========
    HEARTBEAT_INTERVAL_MINUTES: int = Field(15, ge=1, alias="HEARTBEAT_INTERVAL_MINUTES")
    HEARTBEAT_MAX_PRODUCTS: int = Field(100, ge=1, alias="HEARTBEAT_MAX_PRODUCTS")
    HEARTBEAT_MAX_CONSECUTIVE_FAILURES: int = Field(5, ge=1, alias="HEARTBEAT_MAX_CONSECUTIVE_FAILURES")
    HEARTBEAT_SHOPIFY_PAGE_SIZE: int = Field(50, ge=1, le=250, alias="HEARTBEAT_SHOPIFY_PAGE_SIZE")
    HEARTBEAT_REQUEST_TIMEOUT: int = Field(60, ge=1, alias="HEARTBEAT_REQUEST_TIMEOUT")


    # ========= Push-to-store =========
    PUSH_MAX_IDS: int = Field(50, ge=1, alias="PUSH_MAX_IDS")
    PUSH_RATE_LIMIT_MAX: int = Field(10, ge=1, alias="PUSH_RATE_LIMIT_MAX")                 # 每窗口最多请求数
    PUSH_RATE_LIMIT_WINDOW_SEC: int = Field(60, ge=1, alias="PUSH_RATE_LIMIT_WINDOW_SEC")
    PUSH_RL_KEY_PREFIX: str = Field("sync:push:rl", alias="PUSH_RL_KEY_PREFIX")
    # 远端 date_modified 常常没有时区信息，这里给一个宽松的容差窗口（小时）
    PUSH_TIMESTAMP_TOLERANCE_HOURS: float = Field(2.0, ge=0, alias="PUSH_TIMESTAMP_TOLERANCE_HOURS")


    # ========= 保留策略 =========
    RETENTION_ENABLED: bool = Field(True, alias="RETENTION_ENABLED")
    RETENTION_COMPLETED_JOB_DAYS: int = Field(30, ge=1, alias="RETENTION_COMPLETED_JOB_DAYS")
    RETENTION_DEAD_LETTER_DAYS: int = Field(90, ge=1, alias="RETENTION_DEAD_LETTER_DAYS")
    RETENTION_IMPORT_DAYS: int = Field(30, ge=1, alias="RETENTION_IMPORT_DAYS")
    RETENTION_LOG_DAYS: int = Field(14, ge=1, alias="RETENTION_LOG_DAYS")


    # 计数器/限流要用的 Redis 地址：优先 REDIS_URL，退回 broker
    @property
    def redis_for_counters(self) -> Optional[str]:
        return self.REDIS_URL or self.CELERY_BROKER_URL

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.BACKEND_CORS_ORIGINS.split(",") if o.strip() and o.strip() != "*"]


settings = Settings()  # 只从环境读取（含 .env）
