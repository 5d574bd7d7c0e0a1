from datetime import datetime

import pytest

from app.core.config import settings
from app.db.model import ConflictLogEntry, Product, ProductSyncStatus
from app.orchestration.heartbeat.heartbeat_task import run_heartbeat_logic
from app.repository import heartbeat_repo
from tests.conftest import FakeResponse, FakeSession, FakeWooStore, make_product, make_store, make_user, woo_product


@pytest.fixture
def store(db):
    return make_store(db, make_user(db))


def _remote(*products):
    return FakeSession(FakeWooStore(list(products)))


def _reload(db, product):
    db.expire_all()
    return db.get(Product, product.id)


# 场景：本地有未推送修改，平台也改了 → 平台赢，冲突只记一条
def test_store_wins_over_dirty_local_and_logs_conflict_once(db, store):
    product = make_product(
        db, store,
        platform_product_id="101",
        snapshot={"title": "Old title", "sku": "SKU-101"},
        working={"title": "My local edit", "sku": "SKU-101"},
        dirty=["title"],
    )
    session = _remote(
        woo_product(101, name="Store title", date_modified_gmt="2026-03-01T10:00:00"),
        woo_product(999, date_modified_gmt="2026-03-02T08:00:00"),  # 本地没有，跳过
    )

    summary = run_heartbeat_logic(session=session)

    assert summary["storesChecked"] == 1
    assert summary["productsUpdated"] == 1
    assert summary["conflictsResolved"] == 1
    assert summary["errors"] == 0

    product = _reload(db, product)
    assert product.working_content["title"] == "Store title"
    assert product.store_snapshot_content["title"] == "Store title"
    assert product.dirty_fields_content == []
    assert product.sync_status == ProductSyncStatus.SYNCED
    assert product.sync_source == "heartbeat"
    assert product.store_last_modified_at == datetime(2026, 3, 1, 10, 0, 0)
    assert product.platform_metadata["name"] == "Store title"

    [conflict] = db.query(ConflictLogEntry).all()
    assert conflict.product_id == product.id
    assert conflict.fields_affected == ["title"]
    assert conflict.local_values["title"] == "My local edit"
    assert conflict.store_values["title"] == "Store title"
    assert heartbeat_repo.list_conflicts(db, product.id) == [conflict]

    # 游标取平台侧最大修改时间（包括本地不存在的商品）
    hb = heartbeat_repo.get_heartbeat(db, store.id)
    assert hb.store_last_modified_at == datetime(2026, 3, 2, 8, 0, 0)
    assert hb.consecutive_failures == 0
    assert hb.total_changes_detected == 1


def test_clean_product_is_updated_without_conflict(db, store):
    product = make_product(db, store, platform_product_id="101")

    summary = run_heartbeat_logic(session=_remote(woo_product(101, name="Renamed")))

    assert summary["conflictsResolved"] == 0
    assert db.query(ConflictLogEntry).count() == 0
    assert _reload(db, product).title == "Renamed"


def test_fetch_since_uses_stored_cursor(db, store):
    heartbeat_repo.ensure_heartbeats(db)
    hb = heartbeat_repo.get_heartbeat(db, store.id)
    hb.store_last_modified_at = datetime(2026, 2, 1, 12, 30, 0)
    db.commit()
    session = _remote()

    run_heartbeat_logic(session=session)

    [(_, _, kwargs)] = session.calls_to("GET", "/products")
    assert kwargs["params"]["modified_after"] == "2026-02-01T12:30:00Z"
    assert kwargs["params"]["orderby"] == "modified"


def test_store_not_due_until_interval_passes_unless_forced(db, store):
    assert run_heartbeat_logic(session=_remote())["storesChecked"] == 1
    assert run_heartbeat_logic(session=_remote())["storesChecked"] == 0
    # 指定店铺 = 手动触发，立即到期
    assert run_heartbeat_logic(store_id=store.id, session=_remote())["storesChecked"] == 1


def test_fetch_failure_keeps_cursor_and_counts_failures(db, store):
    heartbeat_repo.ensure_heartbeats(db)
    hb = heartbeat_repo.get_heartbeat(db, store.id)
    hb.store_last_modified_at = datetime(2026, 1, 1)
    db.commit()
    failing = FakeSession(lambda m, u, kw: FakeResponse(500, text="Internal Server Error"))

    summary = run_heartbeat_logic(store_id=store.id, session=failing)

    [detail] = summary["details"]
    assert summary["errors"] == 1
    assert detail["error"] == "Failed to fetch store changes"
    assert detail["consecutiveFailures"] == 1
    db.expire_all()
    hb = heartbeat_repo.get_heartbeat(db, store.id)
    assert hb.store_last_modified_at == datetime(2026, 1, 1)
    assert hb.consecutive_failures == 1
    assert "500" in hb.last_error


def test_store_paused_after_max_failures_until_reset(db, store, monkeypatch):
    monkeypatch.setattr(settings, "HEARTBEAT_MAX_CONSECUTIVE_FAILURES", 2)
    failing = FakeSession(lambda m, u, kw: FakeResponse(401, {"code": "woocommerce_rest_cannot_view"}))

    run_heartbeat_logic(store_id=store.id, session=failing)
    run_heartbeat_logic(store_id=store.id, session=failing)
    assert run_heartbeat_logic(store_id=store.id, session=_remote())["storesChecked"] == 0

    assert heartbeat_repo.reset_failures(db, store.id) is True
    assert run_heartbeat_logic(store_id=store.id, session=_remote())["storesChecked"] == 1


def test_missing_connection_is_reported_per_store(db):
    user = make_user(db)
    broken = make_store(db, user, with_connection=False)
    healthy = make_store(db, user)
    make_product(db, healthy, platform_product_id="5")

    summary = run_heartbeat_logic(session=_remote(woo_product(5, name="Fresh")))

    by_store = {d["storeId"]: d for d in summary["details"]}
    assert by_store[broken.id]["error"] == "Failed to fetch store changes"
    assert by_store[healthy.id]["productsUpdated"] == 1
    assert summary["errors"] == 1


def test_cursor_never_moves_backwards(db, store):
    heartbeat_repo.ensure_heartbeats(db)
    hb = heartbeat_repo.get_heartbeat(db, store.id)

    heartbeat_repo.mark_success(db, hb, cursor=datetime(2026, 5, 1), changes=1)
    heartbeat_repo.mark_success(db, hb, cursor=datetime(2026, 4, 1), changes=0)
    heartbeat_repo.mark_success(db, hb, cursor=None, changes=0)

    assert hb.store_last_modified_at == datetime(2026, 5, 1)
    assert hb.total_checks == 3
