from __future__ import annotations

import json
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import settings
from app.db.base import Base
from app.db.model import (  # noqa: F401  注册全部表
    BlogArticle,
    PlatformConnection,
    Product,
    Store,
    StorePlatform,
    User,
)
from app.db.model import audit, heartbeat, import_job, sync_queue  # noqa: F401
from app.utils.clock import now_utc


# 用到 SessionLocal 的任务模块：测试里统一替换成内存库
SESSION_LOCAL_MODULES = (
    "app.orchestration.sync_queue.sync_queue_worker",
    "app.orchestration.heartbeat.heartbeat_task",
    "app.orchestration.retention.retention_task",
    "app.orchestration.store_import.import_pipeline",
)


# ---------- DB ----------
@pytest.fixture
def testing_session(monkeypatch):
    """In-memory SQLite shared across connections (StaticPool), all tables created."""
    engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )
    Base.metadata.create_all(engine)

    import importlib
    for name in SESSION_LOCAL_MODULES:
        monkeypatch.setattr(importlib.import_module(name), "SessionLocal", TestingSessionLocal)

    yield TestingSessionLocal
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db(testing_session) -> Session:
    session = testing_session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def fast_settings(monkeypatch):
    """测试不等待：调用间隔 / 读重试等待清零，任务同进程执行。"""
    monkeypatch.setattr(settings, "SYNC_CALL_DELAY_MS", 0)
    monkeypatch.setattr(settings, "IMPORT_RETRY_DELAY_SEC", 0.0)
    monkeypatch.setattr(settings, "SYNC_TASKS_INLINE", True)


# ---------- 数据工厂 ----------
def make_user(db: Session, username: str = "alice") -> User:
    user = User(username=username, hashed_password="x", is_active=True, is_superuser=False)
    db.add(user)
    db.commit()
    return user


def make_store(
    db: Session,
    user: User,
    *,
    platform: str = StorePlatform.WOOCOMMERCE,
    shop_url: str = "https://shop.example.com",
    credentials: Optional[Dict[str, Any]] = None,
    with_connection: bool = True,
) -> Store:
    conn_id = None
    if with_connection:
        if credentials is None:
            credentials = (
                {"consumer_key": "ck_test", "consumer_secret": "cs_test"}
                if platform == StorePlatform.WOOCOMMERCE
                else {"access_token": "shpat_test"}
            )
        conn = PlatformConnection(platform=platform, shop_url=shop_url, credentials_encrypted=credentials)
        db.add(conn)
        db.flush()
        conn_id = conn.id
    store = Store(tenant_id=user.id, name=f"{platform} store", platform=platform, connection_id=conn_id)
    db.add(store)
    db.commit()
    return store


def make_product(
    db: Session,
    store: Store,
    *,
    platform_product_id: Optional[str] = "101",
    snapshot: Optional[Dict[str, Any]] = None,
    working: Optional[Dict[str, Any]] = None,
    dirty: Iterable[str] = (),
    metadata: Optional[Dict[str, Any]] = None,
    working_updated_at=None,
) -> Product:
    snapshot = dict(snapshot or {"title": "Old title", "regular_price": "10.00"})
    product = Product(
        store_id=store.id,
        platform_product_id=platform_product_id,
        title=(working or snapshot).get("title"),
        store_snapshot_content=snapshot,
        working_content=dict(working or snapshot),
        dirty_fields_content=list(dirty),
        platform_metadata=dict(metadata or {}),
        working_content_updated_at=working_updated_at or now_utc(),
    )
    db.add(product)
    db.commit()
    return product


# ---------- 假 HTTP ----------
class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, headers: Optional[Dict[str, str]] = None,
                 text: Optional[str] = None):
        self.status_code = status_code
        self._payload = payload
        self.headers = headers or {}
        if text is None:
            text = json.dumps(payload) if payload is not None else ""
        self.text = text

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 400

    def json(self):
        if self._payload is None:
            raise ValueError("no json body")
        return self._payload


Handler = Callable[[str, str, Dict[str, Any]], FakeResponse]


class FakeSession:
    """
    requests.Session 的替身：按 handler(method, url, kwargs) 生成响应，记录每次调用。
    """

    def __init__(self, handler: Handler):
        self.handler = handler
        self.calls: List[Tuple[str, str, Dict[str, Any]]] = []
        self.closed = False

    def request(self, method: str, url: str, **kwargs) -> FakeResponse:
        self.calls.append((method, url, kwargs))
        return self.handler(method, url, kwargs)

    def close(self) -> None:
        self.closed = True

    def calls_to(self, method: str, fragment: str) -> List[Tuple[str, str, Dict[str, Any]]]:
        return [c for c in self.calls if c[0] == method and fragment in c[1]]


class ScriptedSession(FakeSession):
    """按顺序吐出预设响应（重试 / 多次运行的场景）。"""

    def __init__(self, responses: List[FakeResponse]):
        self._responses = list(responses)
        super().__init__(self._next)

    def _next(self, method: str, url: str, kwargs: Dict[str, Any]) -> FakeResponse:
        if not self._responses:
            raise AssertionError(f"unexpected request {method} {url}")
        return self._responses.pop(0)


# ---------- 假 Redis ----------
class FakeRedis:
    """只实现固定窗口限流用到的 script_load / evalsha。"""

    def __init__(self):
        self.counts: Dict[str, int] = {}
        self.ttl_ms: Dict[str, int] = {}
        self.loaded = 0

    def script_load(self, script: str) -> str:
        self.loaded += 1
        return "sha-fixed-window"

    def evalsha(self, sha: str, numkeys: int, key: str, window_ms: int):
        self.counts[key] = self.counts.get(key, 0) + 1
        if self.counts[key] == 1:
            self.ttl_ms[key] = int(window_ms)
        return [self.counts[key], self.ttl_ms[key]]


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


class FakeWooStore:
    """
    最小的 WooCommerce REST 模拟：商品分页 / 分类 / 变体 / 根命名空间。
    fail_pages: {页码: 状态码}，该页的商品列表请求固定返回这个状态码。
    """

    def __init__(self, products: List[Dict[str, Any]], *, categories=None, variations=None,
                 namespaces=("wc/v3", "yoast/v1"), fail_pages=None, count_status: int = 200):
        self.products = products
        self.categories = categories or []
        self.variations = variations or {}
        self.namespaces = list(namespaces)
        self.fail_pages = fail_pages or {}
        self.count_status = count_status

    def __call__(self, method: str, url: str, kwargs: Dict[str, Any]) -> FakeResponse:
        params = kwargs.get("params") or {}
        path = url.split("/wp-json/", 1)[1]
        if path == "":
            return FakeResponse(200, {"namespaces": self.namespaces})
        if path == "wc/v3/products/categories":
            if params.get("per_page") == 1:
                return FakeResponse(200, self.categories[:1], {"X-WP-Total": str(len(self.categories))})
            return FakeResponse(200, self.categories, {"X-WP-TotalPages": "1"})
        if path.startswith("wc/v3/products/") and path.endswith("/variations"):
            product_id = path.split("/")[3]
            return FakeResponse(200, self.variations.get(product_id, []), {"X-WP-TotalPages": "1"})
        if path == "wc/v3/products":
            if params.get("per_page") == 1:
                if self.count_status != 200:
                    return FakeResponse(self.count_status, {"code": "woocommerce_rest_cannot_view"})
                return FakeResponse(200, self.products[:1], {"X-WP-Total": str(len(self.products))})
            page, per_page = int(params["page"]), int(params["per_page"])
            if page in self.fail_pages:
                return FakeResponse(self.fail_pages[page], text="upstream error")
            return FakeResponse(200, self.products[(page - 1) * per_page: page * per_page])
        return FakeResponse(404, {"code": "rest_no_route"})


def woo_product(pid: int, **extra) -> Dict[str, Any]:
    raw = {
        "id": pid,
        "name": f"Product {pid}",
        "slug": f"product-{pid}",
        "type": "simple",
        "status": "publish",
        "sku": f"SKU-{pid}",
        "regular_price": "19.90",
        "sale_price": "",
        "stock_quantity": 5,
        "stock_status": "instock",
        "date_modified_gmt": "2026-01-01T00:00:00",
        "meta_data": [],
    }
    raw.update(extra)
    return raw
