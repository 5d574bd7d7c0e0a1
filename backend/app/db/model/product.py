from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    DateTime, ForeignKey, Index, Integer, Numeric, String, Text, UniqueConstraint, CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column
from app.db.base import Base, JSONType, new_uuid
from app.utils.clock import now_utc


class ProductSyncStatus(str):
    SYNCED = "synced"
    PENDING_PUSH = "pending_push"
    PENDING_PULL = "pending_pull"
    CONFLICT = "conflict"
    PROCESSING = "processing"


SYNC_STATUS_VALUES = (
    ProductSyncStatus.SYNCED,
    ProductSyncStatus.PENDING_PUSH,
    ProductSyncStatus.PENDING_PULL,
    ProductSyncStatus.CONFLICT,
    ProductSyncStatus.PROCESSING,
)


"""
  本地商品镜像，三层内容：
    - platform_metadata (列名 metadata)：平台返回的完整原始快照，只读
    - store_snapshot_content：最后一次确认的平台状态，用于 diff
    - working_content：本地可编辑的当前内容
  dirty_fields_content 记录 working 与 snapshot 不一致、尚欠一次推送的字段。
  推送成功 / 心跳拉取后：snapshot = 刚同步的内容，dirty 清空（否则 UI 会误报"待推送"）
"""
class Product(Base):

    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    store_id: Mapped[str] = mapped_column(String(36), ForeignKey("stores.id", ondelete="CASCADE"), nullable=False)
    platform_product_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    title:  Mapped[Optional[str]] = mapped_column(Text)
    slug:   Mapped[Optional[str]] = mapped_column(String(255))
    sku:    Mapped[Optional[str]] = mapped_column(String(255), index=True)
    status: Mapped[Optional[str]] = mapped_column(String(32))
    product_type: Mapped[Optional[str]] = mapped_column(String(32))

    regular_price: Mapped[Optional[float]] = mapped_column(Numeric(12, 2, asdecimal=False))
    sale_price:    Mapped[Optional[float]] = mapped_column(Numeric(12, 2, asdecimal=False))
    stock:         Mapped[Optional[int]]   = mapped_column(Integer)
    stock_status:  Mapped[Optional[str]]   = mapped_column(String(32))
    image_url:     Mapped[Optional[str]]   = mapped_column(Text)

    seo_title:       Mapped[Optional[str]] = mapped_column(Text)
    seo_description: Mapped[Optional[str]] = mapped_column(Text)

    # 三层内容
    platform_metadata:      Mapped[Dict[str, Any]] = mapped_column("metadata", JSONType, nullable=False, default=dict)
    store_snapshot_content: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    working_content:        Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    dirty_fields_content:   Mapped[List[str]]      = mapped_column(JSONType, nullable=False, default=list)

    # 同步状态
    sync_status: Mapped[str] = mapped_column(String(16), nullable=False, default=ProductSyncStatus.SYNCED)
    sync_source: Mapped[Optional[str]] = mapped_column(String(16))           # import / push / heartbeat
    content_hash: Mapped[Optional[str]] = mapped_column(String(64))

    store_last_modified_at:     Mapped[Optional[datetime]] = mapped_column(DateTime)
    working_content_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    store_content_updated_at:   Mapped[Optional[datetime]] = mapped_column(DateTime)
    last_synced_at:             Mapped[Optional[datetime]] = mapped_column(DateTime)
    variations_synced_at:       Mapped[Optional[datetime]] = mapped_column(DateTime)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=now_utc)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=now_utc, onupdate=now_utc)

    __table_args__ = (
        UniqueConstraint("store_id", "platform_product_id", name="uq_products_store_platform_id"),  # upsert 幂等键
        CheckConstraint(
            "sync_status IN ('synced','pending_push','pending_pull','conflict','processing')",
            name="sync_status_valid",
        ),
        Index("ix_products_store_sync_status", "store_id", "sync_status"),
    )


"""
  商品分类（导入时整店一次拉取）
"""
class ProductCategory(Base):

    __tablename__ = "product_categories"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    store_id: Mapped[str] = mapped_column(String(36), ForeignKey("stores.id", ondelete="CASCADE"), nullable=False)
    external_id: Mapped[str] = mapped_column(String(64), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[Optional[str]] = mapped_column(String(255))
    description: Mapped[Optional[str]] = mapped_column(Text)
    parent_external_id: Mapped[Optional[str]] = mapped_column(String(64))
    image_url: Mapped[Optional[str]] = mapped_column(Text)
    product_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    platform_metadata: Mapped[Dict[str, Any]] = mapped_column("metadata", JSONType, nullable=False, default=dict)

    last_synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=now_utc)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=now_utc, onupdate=now_utc)

    __table_args__ = (
        UniqueConstraint("store_id", "external_id", name="uq_product_categories_store_external"),
    )


"""
  博客文章（WordPress posts），与商品同样的三层内容
"""
class BlogArticle(Base):

    __tablename__ = "blog_articles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    store_id: Mapped[str] = mapped_column(String(36), ForeignKey("stores.id", ondelete="CASCADE"), nullable=False)
    wordpress_post_id: Mapped[Optional[str]] = mapped_column(String(64))

    title:   Mapped[Optional[str]] = mapped_column(Text)
    slug:    Mapped[Optional[str]] = mapped_column(String(255))
    content: Mapped[Optional[str]] = mapped_column(Text)
    excerpt: Mapped[Optional[str]] = mapped_column(Text)
    status:  Mapped[Optional[str]] = mapped_column(String(32))
    author_name:        Mapped[Optional[str]] = mapped_column(String(255))
    featured_image_url: Mapped[Optional[str]] = mapped_column(Text)
    categories: Mapped[List[str]] = mapped_column(JSONType, nullable=False, default=list)
    tags:       Mapped[List[str]] = mapped_column(JSONType, nullable=False, default=list)
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    platform_metadata:      Mapped[Dict[str, Any]] = mapped_column("metadata", JSONType, nullable=False, default=dict)
    store_snapshot_content: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    working_content:        Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    dirty_fields_content:   Mapped[List[str]]      = mapped_column(JSONType, nullable=False, default=list)
    sync_status: Mapped[str] = mapped_column(String(16), nullable=False, default=ProductSyncStatus.SYNCED)

    working_content_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    store_content_updated_at:   Mapped[Optional[datetime]] = mapped_column(DateTime)
    last_synced_at:             Mapped[Optional[datetime]] = mapped_column(DateTime)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=now_utc)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=now_utc, onupdate=now_utc)

    __table_args__ = (
        UniqueConstraint("store_id", "wordpress_post_id", name="uq_blog_articles_store_post"),
    )
