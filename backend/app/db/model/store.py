from __future__ import annotations
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column
from app.db.base import Base, JSONType, new_uuid
from app.utils.clock import now_utc


class StorePlatform(str):
    WOOCOMMERCE = "woocommerce"
    SHOPIFY = "shopify"


"""
  平台连接记录：店铺 URL + 加密存储的凭据
  credentials_encrypted 历史上形状不固定（JSON 字符串 / 对象、多种键名），
  统一由 services.credentials.resolve_credentials 归一化，业务代码不要直接读
"""
class PlatformConnection(Base):

    __tablename__ = "platform_connections"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    platform: Mapped[str] = mapped_column(String(32), nullable=False, default=StorePlatform.WOOCOMMERCE)
    shop_url: Mapped[str] = mapped_column(String(512), nullable=False)

    credentials_encrypted: Mapped[Optional[Any]] = mapped_column(JSONType, nullable=True)
    api_key:    Mapped[Optional[str]] = mapped_column(Text, nullable=True)     # 旧字段兜底
    api_secret: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=now_utc)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=now_utc, onupdate=now_utc)


"""
  店铺：一个租户（用户）下的一个外部店铺
"""
class Store(Base):

    __tablename__ = "stores"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    tenant_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    platform: Mapped[str] = mapped_column(String(32), nullable=False, default=StorePlatform.WOOCOMMERCE)

    connection_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("platform_connections.id", ondelete="SET NULL"), nullable=True,
    )
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=now_utc)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=now_utc, onupdate=now_utc)

    __table_args__ = (
        Index("ix_stores_tenant_platform", "tenant_id", "platform"),
    )
