from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column
from app.db.base import Base, JSONType, new_uuid
from app.utils.clock import now_utc


"""
  店铺心跳：定时拉取平台侧变更
  store_last_modified_at 是 "changes since" 游标，只用平台自己的修改时间推进；
  consecutive_failures 达到上限后该店铺暂停，需人工重置
"""
class StoreHeartbeat(Base):

    __tablename__ = "store_heartbeat"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    store_id: Mapped[str] = mapped_column(String(36), ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, unique=True)

    last_checked_at:        Mapped[Optional[datetime]] = mapped_column(DateTime)
    last_successful_at:     Mapped[Optional[datetime]] = mapped_column(DateTime)
    store_last_modified_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    interval_minutes: Mapped[int]  = mapped_column(Integer, nullable=False, default=15)
    enabled:          Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))

    consecutive_failures: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error:           Mapped[Optional[str]] = mapped_column(Text)

    total_checks:           Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_changes_detected: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=now_utc)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=now_utc, onupdate=now_utc)

    __table_args__ = (
        Index("ix_store_heartbeat_due", "enabled", "last_checked_at"),
    )


class ConflictType(str):
    STORE_WINS = "store_wins"
    LOCAL_WINS = "local_wins"
    MERGE = "merge"
    MANUAL = "manual"


class ConflictResolution(str):
    AUTO_STORE_WINS = "auto_store_wins"
    AUTO_LOCAL_WINS = "auto_local_wins"
    MANUAL = "manual"
    MERGE = "merge"


"""
  冲突日志（只追加）：心跳拉取发现本地还有未推送的 dirty 字段时，覆盖前先记录
  这是审计轨迹，不是合并：策略固定为平台覆盖本地
"""
class ConflictLogEntry(Base):

    __tablename__ = "conflict_log"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    store_id:   Mapped[str] = mapped_column(String(36), ForeignKey("stores.id", ondelete="CASCADE"), nullable=False)

    conflict_type:   Mapped[str] = mapped_column(String(16), nullable=False, default=ConflictType.STORE_WINS)
    fields_affected: Mapped[List[str]] = mapped_column(JSONType, nullable=False, default=list)

    local_values:    Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType)
    store_values:    Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType)
    resolved_values: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType)

    resolution:  Mapped[str] = mapped_column(String(32), nullable=False, default=ConflictResolution.AUTO_STORE_WINS)
    resolved_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=now_utc)
    created_at:  Mapped[datetime] = mapped_column(DateTime, nullable=False, default=now_utc)

    __table_args__ = (
        CheckConstraint("conflict_type IN ('store_wins','local_wins','merge','manual')", name="conflict_type_valid"),
        CheckConstraint(
            "resolution IN ('auto_store_wins','auto_local_wins','manual','merge')",
            name="resolution_valid",
        ),
        Index("ix_conflict_log_product_created", "product_id", "created_at"),
        Index("ix_conflict_log_store_created", "store_id", "created_at"),
    )
