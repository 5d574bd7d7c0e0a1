# 队列 worker / 心跳 / 导入续跑 / 保留策略 的调度

from celery import Celery
from celery.schedules import crontab
from kombu import Exchange, Queue
from app.core.config import settings
from app.core.logging import configure_logging

configure_logging()


'''
初始化 Celery 应用/实例
   - Beat: 1 台
   - Worker: sync_io 队列并发不宜高（平台限流），maintenance 单并发即可
'''
celery_app = Celery(
    "store_sync_hub",
    broker=settings.CELERY_BROKER_URL,          # 队列位置 (Redis)
    backend=settings.CELERY_RESULT_BACKEND,     # 结果存储 (Redis)
    include=[
        "app.orchestration.sync_queue.sync_queue_worker",       # 出站同步队列
        "app.orchestration.store_import.import_pipeline",       # 店铺导入续跑
        "app.orchestration.heartbeat.heartbeat_task",           # 心跳对账
        "app.orchestration.retention.retention_task",           # 保留策略
    ],
)


'''
  通用 Celery 配置
'''
celery_app.conf.update(
    timezone=settings.CELERY_TIMEZONE,
    enable_utc=True,                             # 内部还是存 UTC
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_track_started=True,
    broker_connection_retry_on_startup=True,
    # === 容错 ===
    worker_prefetch_multiplier=1,    # 一个 worker 一次只取一个任务
    task_acks_late=True,             # 执行完再确认；worker crash 后任务回队列（claim 是原子的，重投安全）
    broker_heartbeat=30,
    broker_pool_limit=10,
)


'''
队列拆分：
   - sync_io：所有打平台 API 的任务（推送 / 导入 / 心跳），慢 I/O
   - maintenance：清理类任务，和 I/O 互不影响
'''
celery_app.conf.task_queues = (
    Queue("default", Exchange("default"), routing_key="default"),
    Queue("sync_io", Exchange("sync_io"), routing_key="sync_io"),
    Queue("maintenance", Exchange("maintenance"), routing_key="maintenance"),
)

celery_app.conf.task_default_queue = "default"

celery_app.conf.task_routes = {
    "app.orchestration.sync_queue.process_sync_queue": {"queue": "sync_io"},
    "app.orchestration.store_import.resume_import": {"queue": "sync_io"},
    "app.orchestration.store_import.resume_stalled_imports": {"queue": "default"},
    "app.orchestration.heartbeat.run_heartbeat": {"queue": "sync_io"},
    "app.orchestration.retention.purge_expired_sync_data": {"queue": "maintenance"},
}


celery_app.conf.beat_schedule = {

    # 每分钟消费一批出站队列
    "sync-queue-worker": {
        "task": "app.orchestration.sync_queue.process_sync_queue",
        "schedule": 60,
    },

    # 每 5 分钟跑一次心跳；店铺自己的 interval 决定是否到期
    "store-heartbeat": {
        "task": "app.orchestration.heartbeat.run_heartbeat",
        "schedule": 300,
    },

    # 兜底：停在半路的分片导入续跑
    "import-resume-sweep": {
        "task": "app.orchestration.store_import.resume_stalled_imports",
        "schedule": 120,
    },

    # 每天凌晨清理过期数据
    "retention-purge": {
        "task": "app.orchestration.retention.purge_expired_sync_data",
        "schedule": crontab(hour=3, minute=15),
    },
}
