"""
Analysis Job Orchestrator — scoped reorder analysis as asynchronous jobs.

Lifecycle (stored in the KV store under reorder:job:{id}, TTL-bounded):
  started → running → completed | failed

  1. start_analysis validates scope/target, writes the job, hands the id
     to the dispatcher (a Celery send_task in production) and returns.
  2. run_analysis (worker side) loads the settings snapshot, lists products
     in scope, analyzes them concurrently (bounded, one session each),
     inserts the new suggestions in one transaction, then auto-approves
     the eligible ones when auto reorder is enabled.
  3. scheduled_tick is the periodic control loop: it re-reads settings and
     starts a scope=all run when the configured frequency has elapsed.

Per-product failures are logged and skipped. Run-level failures are
recorded on the job and never raised to whoever triggered it.
"""

import asyncio
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Literal

import numpy as np
import structlog
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.config import Settings
from core.exceptions import ConflictError, NotFoundError, ValidationError
from db.kv_store import KeyValueStore
from db.models import Category, Product, Supplier
from forecasting.service import ForecastingService
from inventory.lifecycle import SuggestionService
from inventory.settings import ReorderSettingsSnapshot, load_settings
from inventory.stores import ProductSnapshot, ProductStore
from inventory.suggestions import SuggestionDraft, SuggestionEngine

logger = structlog.get_logger()

SCOPES = ("all", "category", "supplier", "product")
SCOPE_MODELS = {"category": Category, "supplier": Supplier, "product": Product}
LAST_SCHEDULED_RUN_KEY = "reorder:scheduler:last_run"
SCHEDULER_USER = "scheduler"

JobStatus = Literal["started", "running", "completed", "failed"]
Dispatcher = Callable[[uuid.UUID], None]


class AnalysisRequest(BaseModel):
    scope: str = "all"
    target_id: uuid.UUID | None = None
    urgency_only: bool = False


class AnalysisJob(BaseModel):
    job_id: uuid.UUID
    status: JobStatus
    scope: str
    target_id: uuid.UUID | None = None
    urgency_only: bool = False
    requested_by: str | None = None
    estimated_completion: datetime
    products_analyzed: int = 0
    suggestions_count: int = 0
    skipped_duplicates: int = 0
    failed_products: int = 0
    auto_approved: int = 0
    error: str | None = None
    started_at: datetime
    running_at: datetime | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None


class AnalysisStarted(BaseModel):
    job_id: uuid.UUID
    estimated_completion: datetime
    status: JobStatus = "started"


def job_key(job_id: uuid.UUID) -> str:
    return f"reorder:job:{job_id}"


def is_due(settings: ReorderSettingsSnapshot, last_run: datetime | None, now: datetime) -> bool:
    """Whether the periodic trigger should start a run at ``now``."""
    if not settings.auto_reorder_enabled:
        return False
    if last_run is None:
        return True
    return now - last_run >= timedelta(hours=settings.analysis_frequency_hours)


class AnalysisOrchestrator:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        kv: KeyValueStore,
        settings: Settings,
        dispatcher: Dispatcher | None = None,
        rng: np.random.Generator | None = None,
    ):
        self.session_factory = session_factory
        self.kv = kv
        self.settings = settings
        self.dispatcher = dispatcher
        self.rng = rng if rng is not None else np.random.default_rng()

    # ── Job store ────────────────────────────────────────────────────────

    async def save_job(self, job: AnalysisJob) -> None:
        await self.kv.set_json(job_key(job.job_id), job.model_dump(mode="json"), ttl_seconds=self.settings.job_ttl_seconds)

    async def get_job(self, job_id: uuid.UUID) -> AnalysisJob:
        payload = await self.kv.get_json(job_key(job_id))
        if payload is None:
            raise NotFoundError(f"Analysis job {job_id} not found or expired", job_id=str(job_id))
        return AnalysisJob.model_validate(payload)

    # ── Trigger ──────────────────────────────────────────────────────────

    async def start_analysis(
        self,
        scope: str = "all",
        target_id: uuid.UUID | None = None,
        urgency_only: bool = False,
        requested_by: str | None = None,
    ) -> AnalysisJob:
        await self._validate_scope(scope, target_id)

        now = datetime.utcnow()
        job = AnalysisJob(
            job_id=uuid.uuid4(),
            status="started",
            scope=scope,
            target_id=target_id if scope != "all" else None,
            urgency_only=urgency_only,
            requested_by=requested_by,
            estimated_completion=now + timedelta(minutes=self.settings.analysis_eta_minutes),
            started_at=now,
        )
        await self.save_job(job)
        logger.info("analysis.started", job_id=str(job.job_id), scope=scope, requested_by=requested_by)

        if self.dispatcher is not None:
            try:
                self.dispatcher(job.job_id)
            except Exception as exc:
                logger.error("analysis.dispatch_failed", job_id=str(job.job_id), exc_info=True)
                job = await self._mark_failed(job, f"dispatch failed: {exc}")
        return job

    async def _validate_scope(self, scope: str, target_id: uuid.UUID | None) -> None:
        if scope not in SCOPES:
            raise ValidationError(f"Invalid scope '{scope}'", scope=scope, allowed=list(SCOPES))
        if scope == "all":
            return
        if target_id is None:
            raise ValidationError(f"scope '{scope}' requires target_id", scope=scope)
        async with self.session_factory() as db:
            if not await ProductStore(db).exists(SCOPE_MODELS[scope], target_id):
                raise NotFoundError(f"{scope.capitalize()} {target_id} not found", scope=scope, target_id=str(target_id))

    # ── Execution ────────────────────────────────────────────────────────

    async def run_analysis(self, job_id: uuid.UUID) -> AnalysisJob:
        job = await self.get_job(job_id)
        job.status = "running"
        job.running_at = datetime.utcnow()
        await self.save_job(job)
        logger.info("analysis.running", job_id=str(job_id), scope=job.scope)

        try:
            async with self.session_factory() as db:
                reorder_settings = await load_settings(db)
                products = await ProductStore(db).list_for_analysis(job.scope, job.target_id, job.urgency_only)

            semaphore = asyncio.Semaphore(max(1, self.settings.analysis_concurrency))
            outcomes = await asyncio.gather(
                *(self._analyze_one(product, reorder_settings, semaphore) for product in products)
            )

            drafts = [draft for outcome, draft in outcomes if outcome == "draft"]
            job.products_analyzed = len(products)
            job.skipped_duplicates = sum(1 for outcome, _ in outcomes if outcome == "duplicate")
            job.failed_products = sum(1 for outcome, _ in outcomes if outcome == "failed")

            eligible = await self._persist(drafts)
            job.suggestions_count = len(drafts)

            if reorder_settings.auto_reorder_enabled and eligible:
                job.auto_approved = await self._auto_approve(eligible)

            job.status = "completed"
            job.completed_at = datetime.utcnow()
            await self.save_job(job)
        except Exception as exc:
            logger.error("analysis.failed", job_id=str(job_id), exc_info=True)
            return await self._mark_failed(job, str(exc))

        logger.info(
            "analysis.completed",
            job_id=str(job_id),
            products_analyzed=job.products_analyzed,
            suggestions=job.suggestions_count,
            skipped_duplicates=job.skipped_duplicates,
            failed_products=job.failed_products,
            auto_approved=job.auto_approved,
        )
        return job

    async def _analyze_one(
        self,
        product: ProductSnapshot,
        reorder_settings: ReorderSettingsSnapshot,
        semaphore: asyncio.Semaphore,
    ) -> tuple[str, SuggestionDraft | None]:
        async with semaphore:
            async with self.session_factory() as db:
                try:
                    forecasting = ForecastingService(db, self.kv, self.settings, self.rng)
                    engine = SuggestionEngine(db, forecasting, reorder_settings, self.settings.demand_lookback_days)
                    draft = await engine.analyze_product(product)
                    if draft is None:
                        return "no_action", None
                    if await engine.has_pending_suggestion(product.product_id):
                        logger.debug("analysis.duplicate_skipped", product_id=str(product.product_id))
                        return "duplicate", None
                    return "draft", draft
                except Exception:
                    logger.warning("analysis.product_failed", product_id=str(product.product_id), exc_info=True)
                    return "failed", None

    async def _persist(self, drafts: list[SuggestionDraft]) -> list[uuid.UUID]:
        """Insert all drafts in one transaction; returns ids eligible for auto-approval."""
        if not drafts:
            return []
        async with self.session_factory() as db:
            models = [draft.to_model() for draft in drafts]
            db.add_all(models)
            await db.commit()
            return [m.suggestion_id for m in models if m.auto_approve_eligible]

    async def _auto_approve(self, suggestion_ids: list[uuid.UUID]) -> int:
        approved = 0
        async with self.session_factory() as db:
            service = SuggestionService(db)
            for suggestion_id in suggestion_ids:
                try:
                    await service.auto_approve(suggestion_id)
                    approved += 1
                except ConflictError:
                    logger.warning("analysis.auto_approve_conflict", suggestion_id=str(suggestion_id))
        return approved

    async def _mark_failed(self, job: AnalysisJob, error: str) -> AnalysisJob:
        job.status = "failed"
        job.error = error
        job.failed_at = datetime.utcnow()
        await self.save_job(job)
        return job

    # ── Periodic trigger ─────────────────────────────────────────────────

    async def scheduled_tick(self, now: datetime | None = None) -> AnalysisJob | None:
        now = now or datetime.utcnow()
        async with self.session_factory() as db:
            reorder_settings = await load_settings(db)

        if not reorder_settings.auto_reorder_enabled:
            logger.debug("scheduler.tick_skipped", reason="auto_reorder_disabled")
            return None

        raw_last_run = await self.kv.get_json(LAST_SCHEDULED_RUN_KEY)
        last_run = datetime.fromisoformat(raw_last_run) if raw_last_run else None
        if not is_due(reorder_settings, last_run, now):
            logger.debug("scheduler.tick_skipped", reason="not_due", last_run=raw_last_run)
            return None

        job = await self.start_analysis("all", requested_by=SCHEDULER_USER)
        await self.kv.set_json(LAST_SCHEDULED_RUN_KEY, now.isoformat())
        logger.info("scheduler.analysis_triggered", job_id=str(job.job_id))
        return job
