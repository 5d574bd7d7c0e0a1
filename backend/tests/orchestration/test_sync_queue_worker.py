from sqlalchemy import update

from app.core.config import settings
from app.db.model import Product, ProductSyncStatus, SyncJob, SyncJobStatus
from app.orchestration.sync_queue.sync_queue_worker import process_sync_queue_logic
from app.repository import sync_queue_repo
from tests.conftest import FakeResponse, FakeSession, ScriptedSession, make_product, make_store, make_user


def _queued_product(db, store, ppid="101"):
    product = make_product(
        db, store,
        platform_product_id=ppid,
        snapshot={"title": "Old title", "regular_price": "10.00"},
        working={"title": "New title", "regular_price": "12.50"},
        dirty=["title", "regular_price"],
    )
    assert sync_queue_repo.enqueue_product_sync(db, [product.id]) == 1
    return product


def _only_job(db):
    db.expire_all()
    return db.query(SyncJob).one()


def _make_due(db):
    db.execute(update(SyncJob).values(next_retry_at=None))
    db.commit()


# 场景 1：推送成功，只发 dirty 字段，snapshot 跟上 working
def test_worker_pushes_dirty_fields_and_completes(db):
    store = make_store(db, make_user(db))
    product = _queued_product(db, store)
    session = FakeSession(lambda m, u, kw: FakeResponse(200, {"id": 101, "name": "New title"}))

    summary = process_sync_queue_logic(session=session)

    assert summary["processed"] == 1
    assert summary["succeeded"] == 1
    [(method, url, kwargs)] = session.calls
    assert method == "PUT"
    assert url == "https://shop.example.com/wp-json/wc/v3/products/101"
    assert kwargs["json"] == {"name": "New title", "regular_price": "12.50"}
    assert kwargs["params"]["consumer_key"] == "ck_test"
    assert session.closed

    job = _only_job(db)
    product = db.get(Product, product.id)
    assert job.status == SyncJobStatus.COMPLETED
    assert product.store_snapshot_content == {"title": "New title", "regular_price": "12.50"}
    assert product.dirty_fields_content == []
    assert product.sync_status == ProductSyncStatus.SYNCED


# 场景 2：连续 503，重试耗尽后进死信，attempt_count == max_attempts
def test_worker_dead_letters_after_repeated_503(db, monkeypatch):
    monkeypatch.setattr(settings, "SYNC_QUEUE_DEFAULT_MAX_ATTEMPTS", 3)
    store = make_store(db, make_user(db))
    product = _queued_product(db, store)
    session = ScriptedSession([FakeResponse(503, text="Service Unavailable") for _ in range(3)])

    first = process_sync_queue_logic(session=session)
    assert first["retried"] == 1
    job = _only_job(db)
    assert job.status == SyncJobStatus.PENDING
    assert job.next_retry_at is not None

    # 还没到 next_retry_at 的 job 不会被领取
    assert process_sync_queue_logic(session=session)["processed"] == 0

    _make_due(db)
    process_sync_queue_logic(session=session)
    _make_due(db)
    last = process_sync_queue_logic(session=session)

    job = _only_job(db)
    assert last["deadLettered"] == 1
    assert job.status == SyncJobStatus.DEAD_LETTER
    assert job.attempt_count == 3
    assert "503" in job.last_error
    assert db.get(Product, product.id).sync_status == ProductSyncStatus.CONFLICT
    # 对外结果不带原始平台报错
    assert all("503" not in (r.get("error") or "") for r in last["results"])

    _make_due(db)
    assert process_sync_queue_logic(session=session)["processed"] == 0


# 场景 3：重复 SKU 是永久错误，第一次就进死信
def test_worker_duplicate_sku_is_permanent(db):
    store = make_store(db, make_user(db))
    _queued_product(db, store)
    body = {"code": "product_invalid_sku", "message": "Invalid or duplicated SKU.", "data": {"status": 400}}
    session = FakeSession(lambda m, u, kw: FakeResponse(400, body))

    summary = process_sync_queue_logic(session=session)

    job = _only_job(db)
    assert summary["deadLettered"] == 1
    assert job.status == SyncJobStatus.DEAD_LETTER
    assert job.attempt_count == 1
    assert job.last_error.startswith(sync_queue_repo.PERMANENT_ERROR_PREFIX)


def test_worker_missing_connection_is_permanent_and_does_not_call_platform(db):
    store = make_store(db, make_user(db), with_connection=False)
    _queued_product(db, store)
    session = FakeSession(lambda m, u, kw: FakeResponse(200, {}))

    summary = process_sync_queue_logic(session=session)

    assert session.calls == []
    assert summary["deadLettered"] == 1
    assert _only_job(db).status == SyncJobStatus.DEAD_LETTER


def test_worker_isolates_failures_within_a_batch(db):
    store = make_store(db, make_user(db))
    ok = _queued_product(db, store, ppid="1")
    bad = _queued_product(db, store, ppid="2")

    def handler(method, url, kwargs):
        if url.endswith("/products/2"):
            return FakeResponse(500, {"code": "internal_server_error"})
        return FakeResponse(200, {"id": 1})

    summary = process_sync_queue_logic(session=FakeSession(handler))

    assert summary["processed"] == 2
    assert summary["succeeded"] == 1
    assert summary["retried"] == 1
    db.expire_all()
    statuses = {j.product_id: j.status for j in db.query(SyncJob).all()}
    assert statuses == {ok.id: SyncJobStatus.COMPLETED, bad.id: SyncJobStatus.PENDING}


def test_worker_waits_between_calls_on_same_connection(db, monkeypatch):
    monkeypatch.setattr(settings, "SYNC_CALL_DELAY_MS", 200)
    store = make_store(db, make_user(db))
    _queued_product(db, store, ppid="1")
    _queued_product(db, store, ppid="2")
    waits = []

    process_sync_queue_logic(
        session=FakeSession(lambda m, u, kw: FakeResponse(200, {"id": 1})),
        sleep=waits.append,
    )

    assert len(waits) == 1
    assert 0 < waits[0] <= 0.2


def test_worker_idle_queue_returns_empty_summary(testing_session):
    summary = process_sync_queue_logic(session=FakeSession(lambda m, u, kw: FakeResponse(200, {})))
    assert summary["processed"] == 0
    assert summary["results"] == []
