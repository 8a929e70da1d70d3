"""Auto-reorder control loop for Celery beat."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import structlog

from db.kv_store import RedisKeyValueStore
from db.session import build_session_factory
from workers.celery_app import celery_app, dispatch_analysis

logger = structlog.get_logger()


@celery_app.task(
    name="workers.scheduler.auto_reorder_tick",
    bind=True,
    max_retries=2,
    default_retry_delay=60,
    acks_late=True,
)
def auto_reorder_tick(self):
    """
    One tick of the periodic trigger.

    Re-reads reorder settings every tick, so enabling/disabling auto
    reorder or changing the frequency takes effect without a restart.
    """
    from core.config import get_settings
    from inventory.analysis import AnalysisOrchestrator

    run_id = self.request.id or "manual"

    async def _tick():
        settings = get_settings()
        engine, session_factory = build_session_factory(settings.database_url)
        kv = RedisKeyValueStore.from_url(settings.redis_url)
        try:
            orchestrator = AnalysisOrchestrator(session_factory, kv, settings, dispatcher=dispatch_analysis)
            job = await orchestrator.scheduled_tick()
        finally:
            await kv.close()
            await engine.dispose()

        summary = {
            "status": "triggered" if job is not None else "skipped",
            "job_id": str(job.job_id) if job is not None else None,
            "ticked_at": datetime.now(timezone.utc).isoformat(),
            "run_id": run_id,
        }
        logger.info("scheduler.tick_complete", **summary)
        return summary

    try:
        return asyncio.run(_tick())
    except Exception as exc:  # noqa: BLE001
        logger.error("scheduler.tick_failed", error=str(exc), exc_info=True)
        raise self.retry(exc=exc)
