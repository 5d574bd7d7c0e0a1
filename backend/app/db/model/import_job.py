from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from app.db.base import Base, JSONType, new_uuid
from app.utils.clock import now_utc


class ImportJobStatus(str):
    PENDING = "pending"
    DISCOVERING = "discovering"
    SYNCING = "syncing"
    COMPLETED = "completed"
    FAILED = "failed"


class ChunkStatus(str):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ChunkType(str):
    PRODUCTS = "products"
    CATEGORIES = "categories"
    POSTS = "posts"
    VARIATIONS = "variations"


class SyncLogType(str):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"


"""
  导入任务（一次 import 调用一行；存在可续跑任务且未强制重启时复用）
  生命周期：discovering → syncing → completed / failed
  UI 轮询 synced_* / total_* 计数展示进度，所以每次状态迁移都立刻提交
"""
class SyncImportJob(Base):

    __tablename__ = "sync_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    store_id:  Mapped[str] = mapped_column(String(36), ForeignKey("stores.id", ondelete="CASCADE"), nullable=False)
    tenant_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    sync_type: Mapped[str] = mapped_column(String(16), nullable=False, default="full")      # full / incremental
    status:    Mapped[str] = mapped_column(String(16), nullable=False, default=ImportJobStatus.PENDING)

    is_chunked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_resume: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    options:    Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)  # types / seo_plugin 等

    total_products:    Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    synced_products:   Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_categories:  Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    synced_categories: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_posts:       Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    synced_posts:      Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    synced_variations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_chunks:      Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_chunks:  Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    error_message:  Mapped[Optional[str]] = mapped_column(Text)
    result_summary: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType)

    started_at:   Mapped[datetime] = mapped_column(DateTime, nullable=False, default=now_utc)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at:   Mapped[datetime] = mapped_column(DateTime, nullable=False, default=now_utc)
    updated_at:   Mapped[datetime] = mapped_column(DateTime, nullable=False, default=now_utc, onupdate=now_utc)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending','discovering','syncing','completed','failed')",
            name="status_valid",
        ),
        Index("ix_sync_jobs_store_status", "store_id", "status", "created_at"),
    )


"""
  导入分片：一页商品 / 一页文章 / 整店分类 / 单个可变商品的全部变体
  (job_id, chunk_type, page_number) 跨续跑稳定，重复处理靠 upsert 幂等；
  variations 分片的 page_number 为其 woo_product_id，metadata 带目标商品
"""
class ImportChunk(Base):

    __tablename__ = "sync_job_chunks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    job_id:   Mapped[str] = mapped_column(String(36), ForeignKey("sync_jobs.id", ondelete="CASCADE"), nullable=False)
    store_id: Mapped[str] = mapped_column(String(36), ForeignKey("stores.id", ondelete="CASCADE"), nullable=False)

    chunk_type:  Mapped[str] = mapped_column(String(16), nullable=False)
    page_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    items_total:     Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    items_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=ChunkStatus.PENDING)
    chunk_metadata: Mapped[Dict[str, Any]] = mapped_column("metadata", JSONType, nullable=False, default=dict)

    error_message: Mapped[Optional[str]] = mapped_column(Text)
    started_at:    Mapped[Optional[datetime]] = mapped_column(DateTime)
    completed_at:  Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at:    Mapped[datetime] = mapped_column(DateTime, nullable=False, default=now_utc)
    updated_at:    Mapped[datetime] = mapped_column(DateTime, nullable=False, default=now_utc, onupdate=now_utc)

    __table_args__ = (
        CheckConstraint(
            "chunk_type IN ('products','categories','posts','variations')",
            name="chunk_type_valid",
        ),
        CheckConstraint(
            "status IN ('pending','processing','completed','failed')",
            name="status_valid",
        ),
        Index("ux_sync_job_chunks_job_type_page", "job_id", "chunk_type", "page_number", unique=True),
        Index("ix_sync_job_chunks_job_status", "job_id", "status", "created_at"),
    )


"""
  导入滚动日志：UI 轮询展示
"""
class SyncLog(Base):

    __tablename__ = "sync_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    job_id: Mapped[str] = mapped_column(String(36), ForeignKey("sync_jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    log_type: Mapped[str] = mapped_column("type", String(16), nullable=False, default=SyncLogType.INFO)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=now_utc, index=True)
