"""
   对外（UI/调用方）统一的错误码与通用提示。
   平台原始报错只写服务端日志，永远不回显给调用方，避免泄露凭据或基础设施细节。
"""

from __future__ import annotations
from typing import Optional


ERROR_MESSAGES = {
    "INVALID_REQUEST": "Invalid request format",
    "UNAUTHORIZED": "Unauthorized access",
    "PRODUCT_NOT_FOUND": "Product not found or access denied",
    "STORE_NOT_FOUND": "Store not found or access denied",
    "STORE_NOT_CONFIGURED": "Store connection not configured",
    "SYNC_FAILED": "Synchronization failed",
    "RATE_LIMITED": "Too many requests. Please try again later.",
    "INTERNAL_ERROR": "An internal error occurred",
}

_STATUS_BY_CODE = {
    "INVALID_REQUEST": 400,
    "UNAUTHORIZED": 401,
    "PRODUCT_NOT_FOUND": 404,
    "STORE_NOT_FOUND": 404,
    "STORE_NOT_CONFIGURED": 400,
    "SYNC_FAILED": 502,
    "RATE_LIMITED": 429,
    "INTERNAL_ERROR": 500,
}


def public_message(code: str) -> str:
    return ERROR_MESSAGES.get(code, ERROR_MESSAGES["INTERNAL_ERROR"])


class SyncApiError(Exception):
    """Invocation-level failure; rendered as a sanitized JSON error response."""

    def __init__(self, code: str, status_code: Optional[int] = None, *, headers: Optional[dict] = None):
        if code not in ERROR_MESSAGES:
            code = "INTERNAL_ERROR"
        self.code = code
        self.status_code = status_code or _STATUS_BY_CODE[code]
        self.headers = headers or {}
        super().__init__(public_message(code))

    @property
    def message(self) -> str:
        return public_message(self.code)

    def to_body(self) -> dict:
        return {"success": False, "error": self.message, "code": self.code}
