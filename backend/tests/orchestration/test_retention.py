from datetime import timedelta

from app.core.config import settings
from app.db.model import ImportJobStatus, SyncImportJob, SyncJob, SyncJobStatus
from app.db.model.import_job import ImportChunk, SyncLog
from app.orchestration.retention.retention_task import purge_expired_sync_data_logic
from app.utils.clock import now_utc
from tests.conftest import make_product, make_store, make_user


def _queue_job(db, product, status, age_days):
    stamp = now_utc() - timedelta(days=age_days)
    job = SyncJob(
        store_id=product.store_id, product_id=product.id, platform_product_id="101",
        status=status, completed_at=stamp if status != SyncJobStatus.PENDING else None,
        created_at=stamp, updated_at=stamp,
    )
    db.add(job)
    db.commit()
    return job


def _import_job(db, store, status, age_days):
    stamp = now_utc() - timedelta(days=age_days)
    job = SyncImportJob(store_id=store.id, status=status, completed_at=stamp, created_at=stamp, updated_at=stamp)
    db.add(job)
    db.flush()
    db.add(ImportChunk(job_id=job.id, store_id=store.id, chunk_type="products"))
    db.add(SyncLog(job_id=job.id, message="done", created_at=stamp))
    db.commit()
    return job


def test_purge_only_removes_expired_terminal_rows(db):
    store = make_store(db, make_user(db))
    product = make_product(db, store)
    old_done = _queue_job(db, product, SyncJobStatus.COMPLETED, 40)
    fresh_done = _queue_job(db, product, SyncJobStatus.COMPLETED, 1)
    old_dead = _queue_job(db, product, SyncJobStatus.DEAD_LETTER, 40)       # 死信留 90 天
    ancient_dead = _queue_job(db, product, SyncJobStatus.DEAD_LETTER, 120)
    old_pending = _queue_job(db, product, SyncJobStatus.PENDING, 400)
    old_import = _import_job(db, store, ImportJobStatus.COMPLETED, 60)
    running_import = _import_job(db, store, ImportJobStatus.SYNCING, 60)

    counts = purge_expired_sync_data_logic()

    assert counts["sync_queue_completed"] == 1
    assert counts["sync_queue_dead_letter"] == 1
    assert counts["sync_jobs"] == 1
    db.expire_all()
    left = {j.id for j in db.query(SyncJob).all()}
    assert left == {fresh_done.id, old_dead.id, old_pending.id}
    assert old_done.id not in left and ancient_dead.id not in left
    assert {j.id for j in db.query(SyncImportJob).all()} == {running_import.id}
    assert db.query(ImportChunk).filter(ImportChunk.job_id == old_import.id).count() == 0


def test_purge_disabled_is_noop(db, monkeypatch):
    monkeypatch.setattr(settings, "RETENTION_ENABLED", False)
    store = make_store(db, make_user(db))
    _queue_job(db, make_product(db, store), SyncJobStatus.COMPLETED, 400)

    assert purge_expired_sync_data_logic() == {}
    assert db.query(SyncJob).count() == 1
