from __future__ import annotations
import logging
import time
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

import requests
from celery import shared_task
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import SyncApiError
from app.db.model.import_job import ImportJobStatus, SyncImportJob, SyncLogType
from app.db.model.store import StorePlatform
from app.db.session import SessionLocal
from app.integrations.platforms.errors import CredentialsError, PlatformError
from app.integrations.platforms.http_client import PlatformHttpClient
from app.integrations.woocommerce.client import WooCommerceClient
from app.integrations.wordpress.client import WordPressClient
from app.orchestration.store_import.chunk_handlers import ImportContext, process_chunk
from app.orchestration.store_import.chunk_planner import ImportOptions, parse_import_types, plan_chunks
from app.orchestration.store_import.direct_import import run_direct_import
from app.repository import import_repo
from app.repository.store_repo import get_connection, get_owned_store
from app.services.credentials import resolve_credentials, resolve_wordpress_credentials
from app.utils.clock import now_utc


logger = logging.getLogger(__name__)


"""
  调试开关：True 时续跑任务在当前进程内同步执行。
"""
def _inline_tasks_enabled() -> bool:
    return settings.SYNC_TASKS_INLINE


# ========================== 导入入口 ==========================
'''
店铺导入（一次调用）
    1) 校验归属 / 平台 / 凭据（失败 = 调用级错误，直接拒绝）
    2) 有可续跑的分片任务且未强制重启 → 复用；否则新建 job 并做发现（计数 + SEO 插件）
    3) 商品数 > IMPORT_CHUNKED_THRESHOLD → 分片模式：落分片计划，循环 claim-处理，直到没分片或时间预算用完
       否则 → 直连模式：本次调用内全部做完
    4) 分片还有剩 → can_resume=true，返回 in_progress，由调用方（UI / beat 巡检）再次调用
       做完 → 汇总计数、写结束日志、job 置 completed / failed
'''
def run_import(
    db: Session,
    *,
    tenant_id: int,
    store_id: str,
    sync_type: str = "full",
    types: Optional[List[str]] = None,
    force_restart: bool = False,
    session: Optional[requests.Session] = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:

    started = clock()
    try:
        options = parse_import_types(types)
    except ValueError as e:
        logger.info("import.reject.types store=%s err=%s", store_id, e)
        raise SyncApiError("INVALID_REQUEST")

    store = get_owned_store(db, store_id, tenant_id)
    if store is None:
        raise SyncApiError("STORE_NOT_FOUND")
    if store.platform != StorePlatform.WOOCOMMERCE:
        logger.info("import.reject.platform store=%s platform=%s", store_id, store.platform)
        raise SyncApiError("INVALID_REQUEST")

    conn = get_connection(db, store)
    try:
        if conn is None:
            raise CredentialsError("no platform connection for store")
        woo_credentials = resolve_credentials(StorePlatform.WOOCOMMERCE, conn)
        wp_credentials = resolve_wordpress_credentials(conn)
    except CredentialsError as e:
        logger.warning("import.reject.credentials store=%s err=%s", store_id, e)
        raise SyncApiError("STORE_NOT_CONFIGURED")

    http = PlatformHttpClient(session=session, read_timeout=settings.IMPORT_REQUEST_TIMEOUT, sleep=sleep)
    woo = WooCommerceClient(conn.shop_url, woo_credentials, http=http)
    wp = WordPressClient(conn.shop_url, wp_credentials, http=http) if wp_credentials else None
    if options.include_posts and wp is None:
        logger.info("import.posts.skipped store=%s reason=no_wordpress_credentials", store_id)

    job: Optional[SyncImportJob] = None if force_restart else import_repo.find_resumable_job(db, store_id)
    try:
        if job is not None:
            logger.info("import.resume job=%s store=%s", job.id, store_id)
            options = _options_from_job(job, options)
            seo_plugin = (job.options or {}).get("seo_plugin") or woo.detect_seo_plugin()
            ctx = ImportContext(db=db, job_id=job.id, store_id=store_id, woo=woo, wp=wp,
                                seo_plugin=seo_plugin, options=options)
            ctx.log("Resuming import")
        else:
            job = import_repo.create_job(db, store_id, tenant_id=tenant_id, sync_type=sync_type,
                                         options={"types": types, **options.as_dict()})
            ctx = ImportContext(db=db, job_id=job.id, store_id=store_id, woo=woo, wp=wp, options=options)
            _discover_and_plan(ctx, job)

        job = import_repo.get_job(db, job.id)
        db.refresh(job)
        if job.is_chunked:
            pending = _run_chunk_loop(ctx, started=started, clock=clock)
            if pending:
                import_repo.update_job(db, job.id, can_resume=True, status=ImportJobStatus.SYNCING)
                db.refresh(job)
                logger.info("import.budget_exhausted job=%s open_chunks=%s", job.id, pending)
                return {
                    "success": True,
                    "status": "in_progress",
                    "canResume": True,
                    "message": "Processing in progress, call again to continue",
                    "productsSynced": job.synced_products,
                    "jobId": job.id,
                }
            errors = import_repo.failed_chunk_errors(db, job.id)
        else:
            errors = run_direct_import(ctx, total_products=job.total_products, total_posts=job.total_posts)

        return _finish(ctx, job, errors)

    except PlatformError as e:
        # 发现阶段 / 直连模式的平台读失败：整个 job 失败
        logger.exception("import.failed job=%s store=%s", job.id if job else None, store_id)
        if job is not None:
            db.rollback()
            import_repo.update_job(db, job.id, status=ImportJobStatus.FAILED, can_resume=False,
                                   error_message=str(e)[:2000], completed_at=now_utc())
            import_repo.add_log(db, job.id, f"Import failed: {e}", SyncLogType.ERROR)
        raise SyncApiError("SYNC_FAILED")
    finally:
        http.close()


def _options_from_job(job: SyncImportJob, fallback: ImportOptions) -> ImportOptions:
    stored = job.options or {}
    if not stored:
        return fallback
    return ImportOptions(
        include_categories=bool(stored.get("categories", fallback.include_categories)),
        include_variations=bool(stored.get("variations", fallback.include_variations)),
        include_posts=bool(stored.get("posts", fallback.include_posts)),
    )


def _discover_and_plan(ctx: ImportContext, job: SyncImportJob) -> None:
    """发现：SEO 插件 + 各类计数；超过阈值则落分片计划。"""
    db = ctx.db
    ctx.log("Detecting SEO plugin...")
    ctx.seo_plugin = ctx.woo.detect_seo_plugin()

    ctx.log("Counting products...")
    total_products = ctx.woo.count_products()
    total_categories = ctx.woo.count_categories() if ctx.options.include_categories else 0

    total_posts = 0
    if ctx.options.include_posts and ctx.wp is not None:
        try:
            total_posts = ctx.wp.count_posts()
        except PlatformError as e:
            logger.warning("import.discover.posts_count_failed job=%s err=%s", job.id, e)

    logger.info(
        "import.discover job=%s products=%s categories=%s posts=%s seo=%s",
        job.id, total_products, total_categories, total_posts, ctx.seo_plugin,
    )
    import_repo.update_job(
        db, job.id,
        total_products=total_products,
        total_categories=total_categories,
        total_posts=total_posts,
        status=ImportJobStatus.SYNCING,
        options={**(job.options or {}), "seo_plugin": ctx.seo_plugin},
    )

    if total_products <= settings.IMPORT_CHUNKED_THRESHOLD:
        return

    plans = plan_chunks(
        total_products=total_products,
        total_categories=total_categories,
        total_posts=total_posts,
        per_page=settings.IMPORT_PRODUCTS_PER_PAGE,
        options=ctx.options,
        can_import_posts=ctx.wp is not None,
    )
    import_repo.update_job(db, job.id, is_chunked=True, can_resume=True, completed_chunks=0)
    created = import_repo.create_chunks(db, job.id, ctx.store_id, plans)
    ctx.log(f"Created {created} chunks for processing")


def _run_chunk_loop(ctx: ImportContext, *, started: float, clock: Callable[[], float]) -> int:
    """claim → 处理，直到没有分片或预算用完；当前分片总是做完再退出。返回剩余未完成分片数。"""
    budget = settings.IMPORT_MAX_EXECUTION_SEC
    import_repo.requeue_stale_chunks(ctx.db, ctx.job_id, now_utc() - timedelta(seconds=budget * 2))

    processed = 0
    while clock() - started < budget:
        chunk = import_repo.claim_next_chunk(ctx.db, ctx.job_id)
        if chunk is None:
            break
        process_chunk(ctx, chunk)
        processed += 1

    remaining = import_repo.count_open_chunks(ctx.db, ctx.job_id)
    logger.info("import.chunk_loop job=%s processed=%s remaining=%s", ctx.job_id, processed, remaining)
    return remaining


def _finish(ctx: ImportContext, job: SyncImportJob, errors: List[str]) -> Dict[str, Any]:
    db = ctx.db
    db.refresh(job)
    duration = int((now_utc() - job.started_at).total_seconds()) if job.started_at else 0
    result = {
        "success": not errors,
        "productsSynced": job.synced_products,
        "categoriesSynced": job.synced_categories,
        "postsSynced": job.synced_posts,
        "variationsSynced": job.synced_variations,
        "totalProducts": job.total_products,
        "totalPosts": job.total_posts,
        "errors": errors,
        "durationSeconds": duration,
        "jobId": job.id,
    }
    import_repo.finish_job(db, job.id, success=not errors, summary=result, errors=errors)
    ctx.log(
        f"Sync completed in {duration}s. Products: {job.synced_products}, "
        f"Categories: {job.synced_categories}, Articles: {job.synced_posts}",
        SyncLogType.SUCCESS if not errors else SyncLogType.ERROR,
    )
    logger.info("import.completed job=%s success=%s duration=%ss errors=%s", job.id, not errors, duration, len(errors))
    return result


# ========================== 续跑 ==========================
@shared_task(name="app.orchestration.store_import.resume_import")
def resume_import(job_id: str) -> Dict[str, Any]:
    return resume_import_logic(job_id)


def resume_import_logic(job_id: str, **kwargs: Any) -> Dict[str, Any]:
    db = SessionLocal()
    try:
        job = import_repo.get_job(db, job_id)
        if job is None or not job.can_resume or job.status not in (ImportJobStatus.SYNCING, ImportJobStatus.DISCOVERING):
            logger.info("import.resume.skip job=%s", job_id)
            return {"success": False, "jobId": job_id, "status": "not_resumable"}
        if job.tenant_id is None:
            logger.warning("import.resume.orphan job=%s", job_id)
            return {"success": False, "jobId": job_id, "status": "not_resumable"}
        try:
            return run_import(
                db,
                tenant_id=job.tenant_id,
                store_id=job.store_id,
                sync_type=job.sync_type,
                types=(job.options or {}).get("types"),
                force_restart=False,
                **kwargs,
            )
        except SyncApiError as e:
            logger.warning("import.resume.failed job=%s code=%s", job_id, e.code)
            return {"success": False, "jobId": job_id, "code": e.code}
    finally:
        db.close()


'''
beat 巡检：停在 syncing、can_resume 且一段时间没动静的分片任务 → 续跑
（调用方没再调用时兜底，任务不会永远停在半路）
'''
@shared_task(name="app.orchestration.store_import.resume_stalled_imports")
def resume_stalled_imports() -> Dict[str, Any]:
    return resume_stalled_imports_logic(inline=_inline_tasks_enabled())


def resume_stalled_imports_logic(*, inline: bool) -> Dict[str, Any]:
    db = SessionLocal()
    try:
        idle_before = now_utc() - timedelta(seconds=settings.IMPORT_MAX_EXECUTION_SEC)
        job_ids = import_repo.list_resumable_job_ids(db, idle_before=idle_before)
    finally:
        db.close()

    for job_id in job_ids:
        if inline:
            resume_import_logic(job_id)
        else:
            resume_import.apply_async(args=[job_id], task_id=f"resume:{job_id}:{int(time.time())}")
    logger.info("import.resume_sweep jobs=%s inline=%s", len(job_ids), inline)
    return {"resumed": len(job_ids), "jobIds": job_ids}
