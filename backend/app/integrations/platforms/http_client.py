"""
低层 HTTP 客户端：超时 / 重试 / 状态码归类
  - 所有外部调用都带 (connect, read) 硬超时，超时按可重试网络错误处理；
  - 读接口（导入、心跳）在 429/5xx/网络异常时指数退避重试，用尽后抛 PlatformError；
  - 写接口（队列推送）只发一次，重试交给队列的 backoff，不在这里叠加。
"""

from __future__ import annotations
import json, logging, time, requests
from typing import Any, Callable, Dict, Optional, Tuple

from app.core.config import settings
from app.core.logging import truncate_for_log
from app.integrations.platforms.errors import (
    PlatformHttpError, PlatformNetworkError, PlatformPayloadError, PlatformTimeoutError,
    is_retryable_status,
)
from app.utils.backoff import calc_retry_sleep

logger = logging.getLogger(__name__)


def error_code_from_body(text: str) -> str:
    """WooCommerce/WordPress 错误体形如 {"code": "...", "message": "..."}；非 JSON 返回空串。"""
    try:
        data = json.loads(text or "")
    except ValueError:
        return ""
    if isinstance(data, dict):
        return str(data.get("code") or "")
    return ""


class PlatformHttpClient:
    """requests.Session 的薄封装；session 可注入，测试时用假会话。"""

    def __init__(
        self,
        *,
        session: Optional[requests.Session] = None,
        connect_timeout: Optional[int] = None,
        read_timeout: Optional[int] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
        user_agent: Optional[str] = None,
    ) -> None:
        self._session = session or requests.Session()
        self.connect_timeout = connect_timeout or settings.PLATFORM_CONNECT_TIMEOUT
        self.read_timeout = read_timeout or settings.PLATFORM_HTTP_TIMEOUT
        self.max_retries = settings.IMPORT_MAX_RETRIES if max_retries is None else max(0, int(max_retries))
        self.retry_delay = settings.IMPORT_RETRY_DELAY_SEC if retry_delay is None else float(retry_delay)
        self._sleep = sleep
        self.user_agent = user_agent or settings.HTTP_USER_AGENT


    # ---------- Public ----------
    def send_once(self, method: str, url: str, **kwargs) -> requests.Response:
        """发一次请求，不做重试；只把超时/网络异常转成平台异常。HTTP 状态交给调用方判断。"""
        headers = self._headers(kwargs.pop("headers", None))
        timeout = kwargs.pop("timeout", (self.connect_timeout, self.read_timeout))
        try:
            return self._session.request(method, url, headers=headers, timeout=timeout, **kwargs)
        except requests.Timeout as e:
            raise PlatformTimeoutError(f"request timed out after {timeout}s") from e
        except requests.RequestException as e:
            raise PlatformNetworkError(f"network error: {e.__class__.__name__}") from e


    def request(self, method: str, url: str, *, op: str = "", **kwargs) -> requests.Response:
        """带重试的请求：429/5xx/网络异常退避重试；其它 4xx 直接抛不可重试的 PlatformHttpError。"""
        attempts = self.max_retries + 1
        last_exc: Optional[Exception] = None

        for attempt in range(attempts):
            start = time.perf_counter()
            try:
                resp = self.send_once(method, url, **dict(kwargs))
            except (PlatformTimeoutError, PlatformNetworkError) as e:
                last_exc = e
                logger.warning("platform.http.network_error op=%s attempt=%s/%s err=%s", op, attempt + 1, attempts, e)
                if attempt + 1 < attempts:
                    self._sleep(calc_retry_sleep(attempt, self.retry_delay))
                    continue
                raise

            latency_ms = int((time.perf_counter() - start) * 1000)
            status = resp.status_code
            if 200 <= status < 300:
                logger.debug("platform.http.ok op=%s status=%s latency_ms=%s", op, status, latency_ms)
                return resp

            body = resp.text or ""
            code = error_code_from_body(body)
            err = PlatformHttpError(
                status,
                f"{op or method} failed with HTTP {status}",
                code=code,
                body=truncate_for_log(body),
            )
            logger.warning(
                "platform.http.error op=%s status=%s code=%s latency_ms=%s attempt=%s/%s body=%s",
                op, status, code, latency_ms, attempt + 1, attempts, truncate_for_log(body, 300),
            )
            if err.retryable and is_retryable_status(status) and attempt + 1 < attempts:
                last_exc = err
                self._sleep(calc_retry_sleep(attempt, self.retry_delay))
                continue
            raise err

        # 理论上不会走到这里
        raise last_exc or PlatformNetworkError("unreachable retry loop")


    def get_json(self, url: str, *, op: str = "", **kwargs) -> Tuple[Any, Dict[str, str]]:
        """GET 并解析 JSON；同时返回响应头（WooCommerce 的 X-WP-Total / X-WP-TotalPages 在头里）。"""
        resp = self.request("GET", url, op=op, **kwargs)
        return self.as_json(resp), dict(resp.headers or {})


    @staticmethod
    def as_json(resp: requests.Response) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            text = truncate_for_log(resp.text or "", 300)
            raise PlatformPayloadError(f"non-JSON response (status={resp.status_code}): {text}") from e


    def close(self) -> None:
        self._session.close()


    # ---------- Helpers ----------
    def _headers(self, extra: Optional[Dict[str, str]]) -> Dict[str, str]:
        headers = {"Accept": "application/json", "User-Agent": self.user_agent}
        headers.update(extra or {})
        return headers


def header_int(headers: Dict[str, str], name: str, default: int = 0) -> int:
    """响应头大小写不固定（X-WP-Total / x-wp-total）。"""
    for key, value in (headers or {}).items():
        if key.lower() == name.lower():
            try:
                return int(value)
            except (TypeError, ValueError):
                return default
    return default
