import uuid
from datetime import datetime, timedelta

import pytest

from app.core.config import settings
from app.core.errors import SyncApiError
from app.db.model import BlogArticle, Product, ProductSyncStatus
from app.db.model.audit import SyncAuditLog
from app.infrastructure.ratelimit.redis_fixed_window import RedisFixedWindowLimiter
from app.services import push_service
from app.services.push_service import check_push_allowed, push_to_store
from app.utils.clock import iso_utc, now_utc
from tests.conftest import FakeRedis, FakeResponse, FakeSession, make_product, make_store, make_user


def _limiter(max_requests=100):
    return RedisFixedWindowLimiter(FakeRedis(), prefix="sync:push:rl", max_requests=max_requests, window_sec=60)


def _ok_session(payload=None):
    return FakeSession(lambda m, u, kw: FakeResponse(200, payload or {"id": 101, "date_modified_gmt": "2026-06-01T00:00:00"}))


@pytest.fixture
def owner(db):
    user = make_user(db)
    return user, make_store(db, user)


def _edited(db, store, **kw):
    return make_product(
        db, store,
        snapshot={"title": "Old title", "regular_price": "10.00"},
        working={"title": "New title", "regular_price": "10.00"},
        dirty=["title"],
        **kw,
    )


# ---------- 时间戳检查 ----------
T0 = datetime(2026, 6, 1, 12, 0, 0)


@pytest.mark.parametrize(
    "local, remote, force, expected",
    [
        (T0, None, False, (True, None)),
        (T0, "not-a-date", False, (True, None)),
        (T0, "2026-06-01T13:30:00", False, (True, None)),                    # 容差内
        (T0, "2026-06-01T15:00:00", False, (False, push_service.SKIP_REMOTE_NEWER)),
        (T0, "2026-06-01T15:00:00", True, (True, None)),
        (None, "2026-06-01T10:00:00", False, (False, push_service.SKIP_NO_LOCAL_TIMESTAMP)),
        (None, None, True, (True, None)),
    ],
)
def test_check_push_allowed(local, remote, force, expected):
    assert check_push_allowed(local, remote, force=force, tolerance_hours=2) == expected


def test_tolerance_defaults_to_settings(monkeypatch):
    monkeypatch.setattr(settings, "PUSH_TIMESTAMP_TOLERANCE_HOURS", 0)
    assert check_push_allowed(T0, "2026-06-01T12:00:01", force=False)[0] is False


# ---------- 请求校验 ----------
@pytest.mark.parametrize(
    "entity_type, ids",
    [
        ("order", [str(uuid.uuid4())]),
        ("product", []),
        ("product", "not-a-list"),
        ("product", ["123"]),
        ("product", [str(uuid.uuid1())]),
        ("product", [42]),
    ],
)
def test_invalid_request_rejected_whole(db, owner, entity_type, ids):
    user, _ = owner
    with pytest.raises(SyncApiError) as exc:
        push_to_store(db, user_id=user.id, entity_type=entity_type, ids=ids, limiter=_limiter())
    assert exc.value.code == "INVALID_REQUEST"
    assert exc.value.status_code == 400


def test_too_many_ids_rejected(db, owner, monkeypatch):
    user, _ = owner
    monkeypatch.setattr(settings, "PUSH_MAX_IDS", 2)
    ids = [str(uuid.uuid4()) for _ in range(3)]
    with pytest.raises(SyncApiError):
        push_to_store(db, user_id=user.id, entity_type="product", ids=ids, limiter=_limiter())


# ---------- 限流 ----------
def test_rate_limited_after_window_quota(db, owner):
    user, store = owner
    product = _edited(db, store)
    limiter = _limiter(max_requests=1)

    push_to_store(db, user_id=user.id, entity_type="product", ids=[product.id], limiter=limiter,
                  session=_ok_session())
    with pytest.raises(SyncApiError) as exc:
        push_to_store(db, user_id=user.id, entity_type="product", ids=[product.id], limiter=limiter,
                      session=_ok_session())

    assert exc.value.code == "RATE_LIMITED"
    assert exc.value.status_code == 429
    assert exc.value.headers == {"Retry-After": "60"}


def test_missing_limiter_is_internal_error(db, owner):
    user, _ = owner
    with pytest.raises(SyncApiError) as exc:
        push_to_store(db, user_id=user.id, entity_type="product", ids=[str(uuid.uuid4())], limiter=None)
    assert exc.value.code == "INTERNAL_ERROR"


# ---------- 推送 ----------
def test_push_product_updates_snapshot_and_audits(db, owner):
    user, store = owner
    product = _edited(db, store, metadata={"date_modified": iso_utc(now_utc() - timedelta(days=1))})
    session = _ok_session()

    result = push_to_store(db, user_id=user.id, entity_type="product", ids=[product.id],
                           limiter=_limiter(), session=session)

    assert result == {
        "success": True, "type": "product", "total": 1, "successful": 1, "skipped": 0, "failed": 0,
        "results": [{"id": product.id, "platformId": "101", "success": True}],
    }
    [(method, url, kwargs)] = session.calls
    assert (method, url) == ("PUT", "https://shop.example.com/wp-json/wc/v3/products/101")
    assert kwargs["json"] == {"name": "New title"}

    db.expire_all()
    product = db.get(Product, product.id)
    assert product.store_snapshot_content == product.working_content
    assert product.dirty_fields_content == []
    assert product.sync_status == ProductSyncStatus.SYNCED
    assert product.sync_source == "push"
    assert product.platform_metadata["date_modified"] == "2026-06-01T00:00:00"
    assert "last_pushed_at" in product.platform_metadata

    [audit] = db.query(SyncAuditLog).all()
    assert (audit.user_id, audit.entity_type, audit.successful, audit.failed) == (user.id, "product", 1, 0)
    assert audit.entity_ids == [product.id]


def test_remote_newer_is_skipped_without_calling_platform(db, owner):
    user, store = owner
    product = _edited(db, store, metadata={"date_modified": iso_utc(now_utc() + timedelta(hours=5))})
    session = _ok_session()

    result = push_to_store(db, user_id=user.id, entity_type="product", ids=[product.id],
                           limiter=_limiter(), session=session)

    [item] = result["results"]
    assert item["success"] is True
    assert item["skipped"] is True
    assert item["skipReason"] == "Remote data is newer than local data"
    assert result["skipped"] == 1
    assert session.calls == []
    db.expire_all()
    assert db.get(Product, product.id).dirty_fields_content == ["title"]


def test_force_without_dirty_fields_pushes_all_working_fields(db, owner):
    user, store = owner
    product = make_product(
        db, store,
        snapshot={"title": "Same", "regular_price": "10.00"},
        metadata={"date_modified": iso_utc(now_utc() + timedelta(hours=5))},
    )
    session = _ok_session()

    result = push_to_store(db, user_id=user.id, entity_type="product", ids=[product.id], force=True,
                           limiter=_limiter(), session=session)

    assert result["successful"] == 1
    [(_, _, kwargs)] = session.calls
    assert kwargs["json"] == {"name": "Same", "regular_price": "10.00"}


def test_nothing_dirty_is_skipped(db, owner):
    user, store = owner
    product = make_product(db, store)

    result = push_to_store(db, user_id=user.id, entity_type="product", ids=[product.id],
                           limiter=_limiter(), session=_ok_session())

    assert result["results"][0]["skipReason"] == "No changes to push"


def test_missing_local_timestamp_is_skipped(db, owner):
    user, store = owner
    product = _edited(db, store)
    product.working_content_updated_at = None
    db.commit()

    result = push_to_store(db, user_id=user.id, entity_type="product", ids=[product.id],
                           limiter=_limiter(), session=_ok_session())

    assert result["results"][0]["skipReason"] == "No local update timestamp"


def test_foreign_and_failed_items_do_not_stop_the_batch(db, owner):
    user, store = owner
    mine_ok = _edited(db, store, platform_product_id="1")
    mine_bad = _edited(db, store, platform_product_id="2")
    stranger = make_user(db, "mallory")
    theirs = _edited(db, make_store(db, stranger), platform_product_id="3")

    def handler(method, url, kwargs):
        if url.endswith("/products/2"):
            return FakeResponse(400, {"code": "product_invalid_sku", "message": "Duplicate SKU SKU-2 at db host"})
        return FakeResponse(200, {"id": 1})

    result = push_to_store(db, user_id=user.id, entity_type="product",
                           ids=[mine_ok.id, mine_bad.id, theirs.id], limiter=_limiter(),
                           session=FakeSession(handler))

    by_id = {r["id"]: r for r in result["results"]}
    assert by_id[mine_ok.id]["success"] is True
    assert by_id[mine_bad.id] == {"id": mine_bad.id, "platformId": "2", "success": False,
                                  "error": "Synchronization failed"}
    assert by_id[theirs.id] == {"id": theirs.id, "success": False, "error": "Product not found or access denied"}
    assert (result["successful"], result["failed"], result["success"]) == (1, 2, False)
    db.expire_all()
    assert db.get(Product, theirs.id).dirty_fields_content == ["title"]


def test_sleeps_between_platform_calls(db, owner, monkeypatch):
    monkeypatch.setattr(settings, "SYNC_CALL_DELAY_MS", 200)
    user, store = owner
    ids = [_edited(db, store, platform_product_id=str(n)).id for n in (1, 2, 3)]
    waits = []

    push_to_store(db, user_id=user.id, entity_type="product", ids=ids, limiter=_limiter(),
                  session=_ok_session(), sleep=waits.append)

    assert waits == [0.2, 0.2]


def test_push_article_to_wordpress(db):
    user = make_user(db)
    store = make_store(db, user, credentials={
        "consumer_key": "ck_test", "consumer_secret": "cs_test",
        "wp_username": "editor", "wp_app_password": "abcd efgh",
    })
    article = BlogArticle(
        store_id=store.id,
        wordpress_post_id="77",
        title="Old",
        store_snapshot_content={"title": "Old", "content": "<p>body</p>"},
        working_content={"title": "Fresh", "content": "<p>body</p>"},
        dirty_fields_content=["title"],
        working_content_updated_at=now_utc(),
    )
    db.add(article)
    db.commit()
    session = FakeSession(lambda m, u, kw: FakeResponse(200, {"id": 77, "modified_gmt": "2026-06-02T00:00:00"}))

    result = push_to_store(db, user_id=user.id, entity_type="article", ids=[article.id],
                           limiter=_limiter(), session=session)

    assert result["successful"] == 1
    [(method, url, kwargs)] = session.calls
    assert (method, url) == ("PUT", "https://shop.example.com/wp-json/wp/v2/posts/77")
    assert kwargs["json"] == {"title": "Fresh"}
    assert kwargs["auth"] == ("editor", "abcd efgh")
    db.expire_all()
    article = db.get(BlogArticle, article.id)
    assert article.store_snapshot_content["title"] == "Fresh"
    assert article.platform_metadata["date_modified"] == "2026-06-02T00:00:00"


def test_article_without_wordpress_credentials_fails_item(db, owner):
    user, store = owner
    article = BlogArticle(store_id=store.id, wordpress_post_id="77", working_content={"title": "x"},
                          dirty_fields_content=["title"], working_content_updated_at=now_utc())
    db.add(article)
    db.commit()

    result = push_to_store(db, user_id=user.id, entity_type="article", ids=[article.id],
                           limiter=_limiter(), session=_ok_session())

    assert result["results"][0]["error"] == "Store connection not configured"
