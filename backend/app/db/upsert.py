# 批量 upsert 模板（INSERT ... ON CONFLICT DO UPDATE），PostgreSQL / SQLite 通用

from __future__ import annotations

import logging
import math
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import BindParameter, ClauseElement
from sqlalchemy.orm.attributes import QueryableAttribute


logger = logging.getLogger(__name__)


def insert_for(db: Session) -> Callable:
    """按当前连接方言选 insert（两者都支持 on_conflict_do_update / do_nothing）。"""
    name = db.get_bind().dialect.name
    if name == "postgresql":
        return postgresql.insert
    if name == "sqlite":
        return sqlite.insert
    raise RuntimeError(f"upsert not supported for dialect {name!r}")


def _is_sqlalchemy_expression(value: Any) -> bool:
    if isinstance(value, (ClauseElement, BindParameter, QueryableAttribute)):
        return True
    return hasattr(value, "__clause_element__")


def clean_row_values(row: dict) -> dict:
    """
    Normalize a row so it contains plain Python values safe for a bulk VALUES clause.
    """
    clean: dict[str, Any] = {}
    for key, value in row.items():
        if _is_sqlalchemy_expression(value):
            raise ValueError(f"bulk payload field={key!r} is SQL expression ({type(value)!r}); provide plain Python value")
        if isinstance(value, Decimal) and not value.is_finite():
            value = None
        if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
            value = None
        clean[str(key)] = value
    return clean


def prepare_bulk_payload(rows: list[dict], *, key: str) -> tuple[list[dict], int]:
    """
    按 key 去重（后出现的覆盖先出现的）并清洗；返回 (rows, 丢弃的重复数)。
    平台翻页偶尔会在相邻两页返回同一条，这里兜住，避免同一条 INSERT 里冲突两次报错。
    """
    deduped: dict[str, dict] = {}
    dropped = 0
    for row in rows or []:
        identifier = row.get(key)
        if identifier in (None, ""):
            continue
        ident = str(identifier)
        if ident in deduped:
            dropped += 1
        deduped[ident] = clean_row_values(row)
    return list(deduped.values()), dropped


def execute_upsert(
    db: Session,
    table,
    rows: list[dict],
    *,
    conflict_keys: List[str],
    update_columns: List[str],
    extra_updates: Optional[Dict[str, Any]] = None,
    chunk_size: int = 500,
) -> int:
    """
    rows 的键是列名（注意 metadata 列在 ORM 上叫 platform_metadata / chunk_metadata）。
    冲突时用 excluded.xxx 覆盖旧值；不提交，由调用方决定事务边界。
    """
    if not rows:
        return 0

    insert = insert_for(db)
    # 不要把冲突键本身也更新
    update_cols = [c for c in update_columns if c not in conflict_keys]
    total = 0

    for idx in range(0, len(rows), chunk_size):
        chunk = [clean_row_values(row) for row in rows[idx: idx + chunk_size]]
        stmt = insert(table).values(chunk)
        updates = {col: stmt.excluded[col] for col in update_cols}
        if extra_updates:
            updates.update(extra_updates)
        upsert_stmt = stmt.on_conflict_do_update(index_elements=conflict_keys, set_=updates)
        res = db.execute(upsert_stmt)
        total += int(res.rowcount or 0)
    return total


def execute_insert_ignore(db: Session, table, rows: list[dict], *, conflict_keys: List[str]) -> int:
    """INSERT ... ON CONFLICT DO NOTHING；返回真正插入的行数。"""
    if not rows:
        return 0
    insert = insert_for(db)
    stmt = insert(table).values([clean_row_values(r) for r in rows]).on_conflict_do_nothing(index_elements=conflict_keys)
    res = db.execute(stmt)
    return int(res.rowcount or 0)
