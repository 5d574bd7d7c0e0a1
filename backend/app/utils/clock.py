from __future__ import annotations
from datetime import datetime, timezone
from typing import Any, Optional


def now_utc() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)  # 与 DB naive UTC 对齐


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    解析平台返回的时间（ISO8601，可能带 Z / 偏移 / 不带时区），统一转成 naive UTC。
    无法解析返回 None。不带时区的按 UTC 处理（WooCommerce 的 *_gmt 字段就是这种）。
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return to_naive_utc(parsed)


def iso_utc(value: Optional[datetime]) -> Optional[str]:
    """naive UTC → 'YYYY-MM-DDTHH:MM:SSZ'，给平台的 modified_after / updated_at 查询用。"""
    if value is None:
        return None
    return to_naive_utc(value).replace(microsecond=0).isoformat() + "Z"
