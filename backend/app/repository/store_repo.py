# store / platform connection repository

from __future__ import annotations

from typing import Optional, Tuple, List

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.model.store import PlatformConnection, Store


# ---------- Query ----------
def get_store(db: Session, store_id: str) -> Optional[Store]:
    return db.get(Store, store_id)


def get_owned_store(db: Session, store_id: str, tenant_id: int) -> Optional[Store]:
    """归属校验：只返回 tenant_id 匹配的店铺，否则 None（调用方统一回 404/401，不泄露存在性）。"""
    stmt = select(Store).where(Store.id == store_id, Store.tenant_id == tenant_id)
    return db.scalars(stmt).first()


def get_connection(db: Session, store: Optional[Store]) -> Optional[PlatformConnection]:
    if store is None or not store.connection_id:
        return None
    return db.get(PlatformConnection, store.connection_id)


def get_store_with_connection(db: Session, store_id: str) -> Tuple[Optional[Store], Optional[PlatformConnection]]:
    store = get_store(db, store_id)
    return store, get_connection(db, store)


def load_connections(db: Session, store_ids: List[str]) -> dict[str, Tuple[Store, Optional[PlatformConnection]]]:
    """批量取 store + connection（worker 一批 job 往往属于少数几个店铺）。"""
    if not store_ids:
        return {}
    stmt = (
        select(Store, PlatformConnection)
        .join(PlatformConnection, PlatformConnection.id == Store.connection_id, isouter=True)
        .where(Store.id.in_(set(store_ids)))
    )
    return {store.id: (store, conn) for store, conn in db.execute(stmt).all()}
