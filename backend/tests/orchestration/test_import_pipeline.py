import itertools
from types import SimpleNamespace

import pytest
from sqlalchemy import func, select

from app.core.config import Settings, settings
from app.core.errors import SyncApiError
from app.db.model import (
    ChunkStatus,
    ChunkType,
    ImportChunk,
    ImportJobStatus,
    Product,
    ProductCategory,
    SyncImportJob,
)
from app.integrations.woocommerce.client import WooCommerceClient
from app.orchestration.store_import import import_pipeline
from app.orchestration.store_import.chunk_handlers import ImportContext, handle_products_chunk
from app.orchestration.store_import.chunk_planner import ImportOptions
from app.orchestration.store_import.import_pipeline import (
    resume_import_logic,
    resume_stalled_imports_logic,
    run_import,
)
from app.repository import import_repo
from app.services.credentials import WooCommerceCredentials
from app.utils.clock import now_utc
from tests.conftest import FakeSession, FakeWooStore, make_store, make_user, woo_product


def _no_sleep(_):
    return None


def _catalog(n=5, **kw):
    products = [woo_product(i) for i in range(1, n + 1)]
    # 第 3 个是可变商品，带两个变体
    products[2] = woo_product(3, type="variable", variations=[31, 32])
    return FakeWooStore(
        products,
        categories=[{"id": 7, "name": "Chairs", "slug": "chairs"}, {"id": 8, "name": "Desks", "slug": "desks"}],
        variations={"3": [{"id": 31, "sku": "SKU-3-RED"}, {"id": 32, "sku": "SKU-3-BLUE"}]},
        **kw,
    )


@pytest.fixture
def owner(db):
    user = make_user(db)
    return user, make_store(db, user)


@pytest.fixture
def chunked(monkeypatch):
    # 5 个商品、每页 2 个 → 超过阈值走分片
    monkeypatch.setattr(settings, "IMPORT_CHUNKED_THRESHOLD", 2)
    monkeypatch.setattr(settings, "IMPORT_PRODUCTS_PER_PAGE", 2)


def _job(db, job_id):
    db.expire_all()
    return db.get(SyncImportJob, job_id)


def _count(db, model):
    db.expire_all()
    return db.scalar(select(func.count()).select_from(model))


# ---------- 直连模式 ----------
def test_direct_import_small_catalog(db, owner):
    user, store = owner
    session = FakeSession(_catalog())

    result = run_import(db, tenant_id=user.id, store_id=store.id, session=session, sleep=_no_sleep)

    assert result["success"] is True
    assert result["productsSynced"] == 5
    assert result["categoriesSynced"] == 2
    assert result["variationsSynced"] == 2
    assert result["errors"] == []
    assert _count(db, Product) == 5
    assert _count(db, ProductCategory) == 2
    assert _count(db, ImportChunk) == 0

    job = _job(db, result["jobId"])
    assert job.status == ImportJobStatus.COMPLETED
    assert job.is_chunked is False
    assert job.options["seo_plugin"] == "yoast"

    variable = db.scalars(select(Product).where(Product.platform_product_id == "3")).one()
    assert [v["sku"] for v in variable.working_content["variations"]] == ["SKU-3-RED", "SKU-3-BLUE"]
    assert variable.working_content == variable.store_snapshot_content
    assert variable.dirty_fields_content == []
    assert session.closed


def test_direct_import_without_variations_type_skips_variation_calls(db, owner):
    user, store = owner
    session = FakeSession(_catalog())

    result = run_import(db, tenant_id=user.id, store_id=store.id, types=["products"], session=session)

    assert result["variationsSynced"] == 0
    assert result["categoriesSynced"] == 0
    assert session.calls_to("GET", "/variations") == []


# ---------- 分片模式 ----------
def test_chunked_import_runs_all_chunks_within_budget(db, owner, chunked):
    user, store = owner

    result = run_import(db, tenant_id=user.id, store_id=store.id, session=FakeSession(_catalog()),
                        clock=lambda: 0.0, sleep=_no_sleep)

    assert result["success"] is True
    assert result["productsSynced"] == 5
    assert result["variationsSynced"] == 2
    job = _job(db, result["jobId"])
    assert job.is_chunked is True
    assert job.can_resume is False
    assert job.status == ImportJobStatus.COMPLETED
    # 3 页商品 + 1 个分类 + 1 个可变商品的变体
    assert import_repo.chunk_status_counts(db, job.id) == {ChunkStatus.COMPLETED: 5}
    assert job.total_chunks == 5
    assert job.completed_chunks == 5

    variation_chunk = db.scalars(
        select(ImportChunk).where(ImportChunk.job_id == job.id, ImportChunk.chunk_type == ChunkType.VARIATIONS)
    ).one()
    assert variation_chunk.page_number == 3
    assert variation_chunk.chunk_metadata["woo_product_id"] == "3"


def test_chunked_import_pauses_on_budget_and_resumes_same_job(db, owner, chunked):
    user, store = owner
    # 第一次调用：只来得及处理一个分片
    ticks = itertools.chain([0.0, 0.0], itertools.repeat(10_000.0))

    first = run_import(db, tenant_id=user.id, store_id=store.id, session=FakeSession(_catalog()),
                       clock=lambda: next(ticks), sleep=_no_sleep)

    assert first["status"] == "in_progress"
    assert first["canResume"] is True
    assert first["productsSynced"] == 2
    job = _job(db, first["jobId"])
    assert job.status == ImportJobStatus.SYNCING

    second = run_import(db, tenant_id=user.id, store_id=store.id, session=FakeSession(_catalog()),
                        clock=lambda: 0.0, sleep=_no_sleep)

    assert second["jobId"] == first["jobId"]
    assert second["success"] is True
    assert second["productsSynced"] == 5
    assert _count(db, SyncImportJob) == 1
    assert _count(db, Product) == 5


def test_chunk_replay_does_not_duplicate_products(db, owner, chunked):
    user, store = owner
    run_import(db, tenant_id=user.id, store_id=store.id, session=FakeSession(_catalog()), clock=lambda: 0.0)

    again = run_import(db, tenant_id=user.id, store_id=store.id, session=FakeSession(_catalog()),
                       force_restart=True, clock=lambda: 0.0)

    assert again["success"] is True
    assert _count(db, SyncImportJob) == 2
    assert _count(db, Product) == 5


def test_failed_chunk_is_isolated_and_reported(db, owner, chunked):
    user, store = owner
    catalog = _catalog(fail_pages={2: 500})

    result = run_import(db, tenant_id=user.id, store_id=store.id, session=FakeSession(catalog),
                        clock=lambda: 0.0, sleep=_no_sleep)

    assert result["success"] is False
    assert len(result["errors"]) == 1
    assert result["errors"][0].startswith("Chunk products page 2")
    # 第 1、3 页照常写入
    assert _count(db, Product) == 3
    job = _job(db, result["jobId"])
    assert job.status == ImportJobStatus.FAILED
    assert import_repo.chunk_status_counts(db, job.id)[ChunkStatus.FAILED] == 1


def test_stale_processing_chunk_is_requeued(db, owner, chunked):
    user, store = owner
    ticks = itertools.chain([0.0, 0.0], itertools.repeat(10_000.0))
    first = run_import(db, tenant_id=user.id, store_id=store.id, session=FakeSession(_catalog()),
                       clock=lambda: next(ticks))

    # 模拟上一次调用在处理中途被强杀
    chunk = import_repo.claim_next_chunk(db, first["jobId"])
    chunk.started_at = now_utc().replace(year=2000)
    db.commit()

    result = run_import(db, tenant_id=user.id, store_id=store.id, session=FakeSession(_catalog()),
                        clock=lambda: 0.0)

    assert result["success"] is True
    assert import_repo.count_open_chunks(db, first["jobId"]) == 0


def _pause_after_first_chunk(db, user, store):
    ticks = itertools.chain([0.0, 0.0], itertools.repeat(10_000.0))
    return run_import(db, tenant_id=user.id, store_id=store.id, session=FakeSession(_catalog()),
                      clock=lambda: next(ticks), sleep=_no_sleep)


def test_replayed_chunk_is_counted_once(db, owner, chunked):
    user, store = owner
    first = _pause_after_first_chunk(db, user, store)
    job_id = first["jobId"]

    # 场景：worker 跑完 handler（数据已写入）但没来得及 complete 就被强杀
    chunk = db.scalars(
        select(ImportChunk)
        .where(ImportChunk.job_id == job_id, ImportChunk.chunk_type == ChunkType.PRODUCTS,
               ImportChunk.status == ChunkStatus.PENDING)
        .order_by(ImportChunk.page_number.asc())
        .limit(1)
    ).one()
    chunk.status = ChunkStatus.PROCESSING
    chunk.started_at = now_utc().replace(year=2000)
    db.commit()

    woo = WooCommerceClient("https://shop.example.com",
                            WooCommerceCredentials("ck_test", "cs_test"), session=FakeSession(_catalog()))
    ctx = ImportContext(db=db, job_id=job_id, store_id=store.id, woo=woo, wp=None,
                        seo_plugin="yoast", options=ImportOptions())
    assert handle_products_chunk(ctx, chunk) == 2

    result = run_import(db, tenant_id=user.id, store_id=store.id, session=FakeSession(_catalog()),
                        clock=lambda: 0.0, sleep=_no_sleep)

    assert result["jobId"] == job_id
    assert result["success"] is True
    assert result["productsSynced"] == 5
    assert result["totalProducts"] == 5
    assert result["variationsSynced"] == 2
    job = _job(db, job_id)
    assert job.completed_chunks == job.total_chunks


def test_complete_chunk_only_counts_processing_chunk(db, owner, chunked):
    user, store = owner
    first = _pause_after_first_chunk(db, user, store)
    chunk = import_repo.claim_next_chunk(db, first["jobId"])
    before = _job(db, first["jobId"])
    products_before, completed_before = before.synced_products, before.completed_chunks

    assert import_repo.complete_chunk(db, chunk, 2) is True
    # 第二次完成（重复投递 / 被 requeue 后别人先做完）不再累加
    assert import_repo.complete_chunk(db, chunk, 2) is False

    job = _job(db, first["jobId"])
    expected = 2 if chunk.chunk_type == ChunkType.PRODUCTS else 0
    assert job.synced_products == products_before + expected
    assert job.completed_chunks == completed_before + 1


def test_chunk_claims_are_exclusive_across_sessions(db, testing_session, owner, chunked):
    user, store = owner
    first = _pause_after_first_chunk(db, user, store)
    job_id = first["jobId"]
    pending = import_repo.chunk_status_counts(db, job_id)[ChunkStatus.PENDING]

    other = testing_session()
    mine, theirs = [], []
    try:
        while True:
            a = import_repo.claim_next_chunk(db, job_id)
            b = import_repo.claim_next_chunk(other, job_id)
            if a is not None:
                mine.append(a.id)
            if b is not None:
                theirs.append(b.id)
            if a is None and b is None:
                break
        assert import_repo.claim_next_chunk(other, job_id) is None
    finally:
        other.close()

    assert mine and theirs
    assert set(mine).isdisjoint(theirs)
    assert len(mine) + len(theirs) == len(set(mine) | set(theirs)) == pending
    assert import_repo.claim_next_chunk(db, job_id) is None
    assert import_repo.chunk_status_counts(db, job_id)[ChunkStatus.PROCESSING] == pending


# ---------- 调用级错误 ----------
def test_import_rejects_foreign_store(db, owner):
    _, store = owner
    stranger = make_user(db, "mallory")
    with pytest.raises(SyncApiError) as exc:
        run_import(db, tenant_id=stranger.id, store_id=store.id, session=FakeSession(_catalog()))
    assert exc.value.code == "STORE_NOT_FOUND"


def test_import_rejects_unknown_types(db, owner):
    user, store = owner
    with pytest.raises(SyncApiError) as exc:
        run_import(db, tenant_id=user.id, store_id=store.id, types=["orders"], session=FakeSession(_catalog()))
    assert exc.value.code == "INVALID_REQUEST"


def test_import_requires_connection(db):
    user = make_user(db)
    store = make_store(db, user, with_connection=False)
    with pytest.raises(SyncApiError) as exc:
        run_import(db, tenant_id=user.id, store_id=store.id, session=FakeSession(_catalog()))
    assert exc.value.code == "STORE_NOT_CONFIGURED"


def test_discovery_failure_marks_job_failed(db, owner):
    user, store = owner
    session = FakeSession(_catalog(count_status=401))

    with pytest.raises(SyncApiError) as exc:
        run_import(db, tenant_id=user.id, store_id=store.id, session=session, sleep=_no_sleep)

    assert exc.value.code == "SYNC_FAILED"
    db.expire_all()
    job = db.scalars(select(SyncImportJob)).one()
    assert job.status == ImportJobStatus.FAILED
    assert job.can_resume is False
    assert session.closed


# ---------- 续跑 ----------
def test_resume_import_logic_finishes_paused_job(db, owner, chunked):
    user, store = owner
    ticks = itertools.chain([0.0, 0.0], itertools.repeat(10_000.0))
    first = run_import(db, tenant_id=user.id, store_id=store.id, session=FakeSession(_catalog()),
                       clock=lambda: next(ticks))

    result = resume_import_logic(first["jobId"], session=FakeSession(_catalog()), clock=lambda: 0.0)

    assert result["success"] is True
    assert result["jobId"] == first["jobId"]


def test_resume_import_logic_skips_finished_job(db, owner):
    user, store = owner
    done = run_import(db, tenant_id=user.id, store_id=store.id, session=FakeSession(_catalog()))

    assert resume_import_logic(done["jobId"]) == {
        "success": False, "jobId": done["jobId"], "status": "not_resumable",
    }


def test_resume_sweep_dispatches_idle_jobs(db, owner, chunked, monkeypatch):
    user, store = owner
    ticks = itertools.chain([0.0, 0.0], itertools.repeat(10_000.0))
    first = run_import(db, tenant_id=user.id, store_id=store.id, session=FakeSession(_catalog()),
                       clock=lambda: next(ticks))
    import_repo.update_job(db, first["jobId"], updated_at=now_utc().replace(year=2000))

    sent = []
    fake_task = SimpleNamespace(apply_async=lambda args, task_id: sent.append((args, task_id)))
    monkeypatch.setattr(import_pipeline, "resume_import", fake_task)

    summary = resume_stalled_imports_logic(inline=False)

    assert summary == {"resumed": 1, "jobIds": [first["jobId"]]}
    assert sent[0][0] == [first["jobId"]]


def test_inline_tasks_default_off():
    assert Settings.model_fields["SYNC_TASKS_INLINE"].default is False


def test_resume_sweep_task_dispatches_when_inline_disabled(db, owner, chunked, monkeypatch):
    user, store = owner
    first = _pause_after_first_chunk(db, user, store)
    import_repo.update_job(db, first["jobId"], updated_at=now_utc().replace(year=2000))

    monkeypatch.setattr(settings, "SYNC_TASKS_INLINE", False)
    sent = []
    fake_task = SimpleNamespace(apply_async=lambda args, task_id: sent.append(args))
    monkeypatch.setattr(import_pipeline, "resume_import", fake_task)

    summary = import_pipeline.resume_stalled_imports()

    assert summary["resumed"] == 1
    assert sent == [[first["jobId"]]]
    # 没有在巡检任务里直接跑：job 仍停在 syncing
    assert _job(db, first["jobId"]).status == ImportJobStatus.SYNCING
