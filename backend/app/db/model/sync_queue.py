from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from app.db.base import Base, JSONType, new_uuid
from app.utils.clock import now_utc


class SyncJobStatus(str):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    DEAD_LETTER = "dead_letter"


class SyncDirection(str):
    PUSH = "push"
    PULL = "pull"


"""
  出站同步队列：一行 = 一次待推送的商品变更（at-least-once）
  状态机：pending → processing → completed | pending(重试) | dead_letter
    - attempt_count 只增不减；dead_letter 为终态，不会再被 claim
    - 同一 (store_id, product_id) 同时最多一个 processing（claim 时保证）
    - 不做物理删除（审计），只由保留策略清理
"""
class SyncJob(Base):

    __tablename__ = "sync_queue"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    store_id:   Mapped[str] = mapped_column(String(36), ForeignKey("stores.id", ondelete="CASCADE"), nullable=False)
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("products.id", ondelete="CASCADE"), nullable=False)

    direction: Mapped[str] = mapped_column(String(8), nullable=False, default=SyncDirection.PUSH)
    priority:  Mapped[int] = mapped_column(Integer, nullable=False, default=5)       # 1 最高 .. 10 最低

    dirty_fields: Mapped[List[str]]      = mapped_column(JSONType, nullable=False, default=list)
    payload:      Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)  # 入队时的 working_content

    platform:            Mapped[str] = mapped_column(String(32), nullable=False, default="woocommerce")
    platform_product_id: Mapped[str] = mapped_column(String(64), nullable=False)

    status:        Mapped[str] = mapped_column(String(16), nullable=False, default=SyncJobStatus.PENDING)
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts:  Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    last_error:    Mapped[Optional[str]] = mapped_column(Text)
    next_retry_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    idempotency_key: Mapped[Optional[str]] = mapped_column(String(255), unique=True)

    started_at:   Mapped[Optional[datetime]] = mapped_column(DateTime)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at:   Mapped[datetime] = mapped_column(DateTime, nullable=False, default=now_utc)
    updated_at:   Mapped[datetime] = mapped_column(DateTime, nullable=False, default=now_utc, onupdate=now_utc)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending','processing','completed','failed','dead_letter')",
            name="status_valid",
        ),
        CheckConstraint("direction IN ('push','pull')", name="direction_valid"),
        # claim 扫描：pending 按 priority/created_at
        Index("ix_sync_queue_status_priority", "status", "priority", "created_at"),
        Index("ix_sync_queue_next_retry", "next_retry_at"),
        Index("ix_sync_queue_store_status", "store_id", "status"),
        Index("ix_sync_queue_product_status", "product_id", "status"),
    )
