from __future__ import annotations
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column
from app.db.base import Base
from app.utils.clock import now_utc


"""
  users 表：后台登录用户；stores.tenant_id 指向这里（店铺归属 = 谁能触发导入/推送）
"""
class User(Base):

    __tablename__ = "users"

    id:       Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True, index=True)
    username: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    email:    Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)
    full_name:       Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    is_active:    Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    is_superuser: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=now_utc)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=now_utc, onupdate=now_utc)
