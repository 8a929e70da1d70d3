"""
Reorder Analysis Worker — executes analysis jobs and refreshes demand patterns.

run_reorder_analysis:  dispatched by AnalysisOrchestrator.start_analysis
                       (API or scheduler); runs one job to completion.
refresh_demand_patterns: nightly, crontab(hour=1, minute=30); upserts monthly
                       DemandPattern rows from observed order history.

Queue: analysis
"""

import asyncio
import uuid
from datetime import datetime, timezone

import structlog
from sqlalchemy import select

from core.exceptions import NotFoundError
from db.kv_store import RedisKeyValueStore
from db.session import build_session_factory
from workers.celery_app import celery_app

logger = structlog.get_logger()


@celery_app.task(
    name="workers.reorder_analysis.run_reorder_analysis",
    bind=True,
    max_retries=2,
    default_retry_delay=60,
    acks_late=True,
)
def run_reorder_analysis(self, job_id: str):
    """
    Run one reorder analysis job.

    Product-level and run-level analysis failures are recorded on the job
    itself; only infrastructure failures (job store, database unreachable)
    trigger a retry.
    """
    run_id = self.request.id or "manual"
    logger.info("analysis_worker.started", job_id=job_id, run_id=run_id)

    async def _run():
        from core.config import get_settings
        from inventory.analysis import AnalysisOrchestrator

        settings = get_settings()
        engine, session_factory = build_session_factory(settings.database_url)
        kv = RedisKeyValueStore.from_url(settings.redis_url)
        try:
            orchestrator = AnalysisOrchestrator(session_factory, kv, settings)
            job = await orchestrator.run_analysis(uuid.UUID(job_id))
            return job.model_dump(mode="json")
        finally:
            await kv.close()
            await engine.dispose()

    try:
        summary = asyncio.run(_run())
    except NotFoundError:
        logger.warning("analysis_worker.job_missing", job_id=job_id, run_id=run_id)
        return {"status": "failed", "job_id": job_id, "reason": "job_not_found"}
    except Exception as exc:
        logger.error("analysis_worker.failed", job_id=job_id, error=str(exc), exc_info=True)
        raise self.retry(exc=exc)

    logger.info(
        "analysis_worker.completed",
        job_id=job_id,
        run_id=run_id,
        status=summary["status"],
        suggestions=summary["suggestions_count"],
    )
    return summary


@celery_app.task(
    name="workers.reorder_analysis.refresh_demand_patterns",
    bind=True,
    max_retries=2,
    default_retry_delay=300,
    acks_late=True,
)
def refresh_demand_patterns(self, product_id: str | None = None):
    """
    Recompute monthly demand patterns for one product, or all products.

    Products with synthetic (insufficient) history are skipped. Each
    product commits on its own so one bad product does not lose the rest.
    """
    run_id = self.request.id or "manual"
    logger.info("demand_patterns.refresh_started", product_id=product_id, run_id=run_id)

    async def _refresh():
        from core.config import get_settings
        from db.models import Product
        from forecasting.service import ForecastingService

        settings = get_settings()
        engine, session_factory = build_session_factory(settings.database_url)
        kv = RedisKeyValueStore.from_url(settings.redis_url)
        try:
            if product_id is not None:
                product_ids = [uuid.UUID(product_id)]
            else:
                async with session_factory() as db:
                    result = await db.execute(select(Product.product_id).order_by(Product.created_at))
                    product_ids = [row.product_id for row in result.all()]

            patterns = 0
            refreshed = 0
            errors = 0
            for pid in product_ids:
                async with session_factory() as db:
                    try:
                        written = await ForecastingService(db, kv, settings).refresh_demand_patterns(pid)
                        await db.commit()
                    except Exception as exc:
                        await db.rollback()
                        errors += 1
                        logger.error("demand_patterns.product_failed", product_id=str(pid), error=str(exc))
                        continue
                patterns += written
                refreshed += 1 if written else 0
        finally:
            await kv.close()
            await engine.dispose()

        summary = {
            "status": "success",
            "run_id": run_id,
            "products": len(product_ids),
            "products_refreshed": refreshed,
            "patterns_written": patterns,
            "errors": errors,
            "completed_at": datetime.now(timezone.utc).isoformat(),
        }
        logger.info("demand_patterns.refresh_completed", **summary)
        return summary

    try:
        return asyncio.run(_refresh())
    except Exception as exc:
        logger.error("demand_patterns.refresh_failed", error=str(exc), exc_info=True)
        raise self.retry(exc=exc)
