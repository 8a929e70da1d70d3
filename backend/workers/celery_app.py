"""
Celery Application Configuration
"""

from celery import Celery
from celery.schedules import crontab

from core.config import get_settings

settings = get_settings()

ANALYSIS_TASK = "workers.reorder_analysis.run_reorder_analysis"

celery_app = Celery(
    "reorder_engine",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["workers.reorder_analysis", "workers.scheduler"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "workers.reorder_analysis.*": {"queue": "analysis"},
        "workers.scheduler.*": {"queue": "scheduler"},
    },
    # ── Celery Beat Schedule ─────────────────────────────────────────
    beat_schedule={
        # Control loop: re-reads reorder settings and starts a scope=all
        # run when analysis_frequency_hours has elapsed.
        "auto-reorder-tick": {
            "task": "workers.scheduler.auto_reorder_tick",
            "schedule": crontab(minute=f"*/{settings.scheduler_tick_minutes}"),
            "options": {"queue": "scheduler"},
        },
        "refresh-demand-patterns-nightly": {
            "task": "workers.reorder_analysis.refresh_demand_patterns",
            "schedule": crontab(hour=1, minute=30),
            "options": {"queue": "analysis"},
        },
    },
)

# Auto-discover tasks
celery_app.autodiscover_tasks(["workers"])


def dispatch_analysis(job_id) -> None:
    """Hand an analysis job to the worker pool."""
    celery_app.send_task(ANALYSIS_TASK, kwargs={"job_id": str(job_id)})
