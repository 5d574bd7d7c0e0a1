from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from app.db.base import Base, JSONType, new_uuid
from app.utils.clock import now_utc


"""
  push-to-store 审计：谁、推了什么、结果计数
"""
class SyncAuditLog(Base):

    __tablename__ = "sync_audit_log"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    user_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("users.id", ondelete="SET NULL"), index=True)
    action:  Mapped[str] = mapped_column(String(32), nullable=False, default="push_to_store")
    entity_type: Mapped[str] = mapped_column(String(16), nullable=False)           # product / article
    entity_ids:  Mapped[List[str]] = mapped_column(JSONType, nullable=False, default=list)

    total:      Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    successful: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    skipped:    Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed:     Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    details:    Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=now_utc, index=True)
