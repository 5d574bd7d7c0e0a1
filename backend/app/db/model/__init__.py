# 聚合导入所有模型，供 Alembic 发现

from .user import User
from .store import Store, PlatformConnection, StorePlatform
from .product import Product, ProductCategory, BlogArticle, ProductSyncStatus
from .sync_queue import SyncJob, SyncJobStatus, SyncDirection
from .import_job import (
    SyncImportJob,
    ImportChunk,
    SyncLog,
    ImportJobStatus,
    ChunkStatus,
    ChunkType,
    SyncLogType,
)
from .heartbeat import StoreHeartbeat, ConflictLogEntry, ConflictType, ConflictResolution
from .audit import SyncAuditLog

__all__ = [
    # tenant / store
    "User", "Store", "PlatformConnection", "StorePlatform",
    # content
    "Product", "ProductCategory", "BlogArticle", "ProductSyncStatus",
    # outbound queue
    "SyncJob", "SyncJobStatus", "SyncDirection",
    # import
    "SyncImportJob", "ImportChunk", "SyncLog", "ImportJobStatus", "ChunkStatus", "ChunkType", "SyncLogType",
    # heartbeat / audit
    "StoreHeartbeat", "ConflictLogEntry", "ConflictType", "ConflictResolution", "SyncAuditLog",
]
