"""
   平台适配器统一接口：update_product(platform_product_id, payload, dirty_fields) -> SyncResult
   只映射 dirty 字段（从不发整条记录）；映射后为空则不发请求直接成功。
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional


@dataclass
class SyncResult:
    success: bool
    error: Optional[str] = None
    retryable: bool = True                       # False = 永久失败，直接进死信
    updated_snapshot: Optional[Dict[str, Any]] = None
    skipped_call: bool = False                   # 空 payload 的 no-op

    @classmethod
    def ok(cls, snapshot: Optional[Dict[str, Any]] = None) -> "SyncResult":
        return cls(success=True, updated_snapshot=snapshot)

    @classmethod
    def noop(cls) -> "SyncResult":
        return cls(success=True, skipped_call=True)

    @classmethod
    def fail(cls, error: str, *, retryable: bool) -> "SyncResult":
        return cls(success=False, error=error, retryable=retryable)


class PlatformAdapter(ABC):
    """One implementation per external platform; resolved through the registry."""

    platform: str = ""

    @abstractmethod
    def update_product(
        self,
        platform_product_id: str,
        payload: Dict[str, Any],
        dirty_fields: Iterable[str],
    ) -> SyncResult:
        raise NotImplementedError

    def close(self) -> None:
        client = getattr(self, "client", None)
        if client is not None:
            client.close()


def present_dirty_fields(payload: Dict[str, Any], dirty_fields: Iterable[str]) -> List[str]:
    """只保留 payload 里确实有值（键存在）的 dirty 字段，保持顺序去重。"""
    seen: set[str] = set()
    out: List[str] = []
    for name in dirty_fields or []:
        if name in seen or name not in (payload or {}):
            continue
        seen.add(name)
        out.append(name)
    return out
