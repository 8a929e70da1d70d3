"""
Reorder Router — demand forecasts, reorder suggestions, policies, settings.

The human-in-the-loop reorder workflow:
  1. POST /analyze queues an analysis job → poll GET /jobs/{job_id}
  2. Analysis writes pending suggestions → GET /suggestions
  3. Planner approves, rejects, or modifies → POST /suggestions/{id}/action
  4. Every action is audited → GET /suggestions/{id}/history

Domain errors (ValidationError / NotFoundError / ConflictError) are mapped
to 422 / 404 / 409 by the app-level exception handler.
"""

from typing import Literal
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_app_settings, get_current_user, get_db, get_kv_store, get_orchestrator
from core.config import Settings
from db.kv_store import KeyValueStore
from forecasting.projector import DemandForecast, ForecastOptions
from forecasting.service import ForecastingService
from inventory.analysis import AnalysisJob, AnalysisOrchestrator, AnalysisRequest, AnalysisStarted
from inventory.lifecycle import (
    ActionResult,
    HistoryResponse,
    SuggestionFilters,
    SuggestionList,
    SuggestionModification,
    SuggestionService,
)
from inventory.policy import PolicyCreate, PolicyResponse, PolicyService, PolicyUpdate
from inventory.settings import SettingsResponse, SettingsUpdate, load_settings, snapshot_response, update_settings

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/reorder", tags=["reorder"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class SuggestionActionRequest(BaseModel):
    action: str = Field(..., examples=["approve", "reject", "modify"])
    reason: str | None = Field(None, max_length=1000)
    modifications: SuggestionModification | None = None


# ─── Analysis ───────────────────────────────────────────────────────────────


@router.post("/analyze", response_model=AnalysisStarted, status_code=202)
async def start_analysis(
    body: AnalysisRequest,
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
    user: dict = Depends(get_current_user),
):
    """Queue a reorder analysis; returns immediately with a job id."""
    job = await orchestrator.start_analysis(
        scope=body.scope,
        target_id=body.target_id,
        urgency_only=body.urgency_only,
        requested_by=user.get("sub"),
    )
    return AnalysisStarted(job_id=job.job_id, estimated_completion=job.estimated_completion, status=job.status)


@router.get("/jobs/{job_id}", response_model=AnalysisJob)
async def get_job(
    job_id: UUID,
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
    user: dict = Depends(get_current_user),
):
    return await orchestrator.get_job(job_id)


# ─── Suggestions ────────────────────────────────────────────────────────────


@router.get("/suggestions", response_model=SuggestionList)
async def list_suggestions(
    urgency: Literal["critical", "high", "medium", "low", "all"] = "all",
    category_id: UUID | None = None,
    supplier_id: UUID | None = None,
    min_confidence: float = Query(0, ge=0, le=100),
    status: Literal["pending", "approved", "rejected", "ordered"] = "pending",
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    """Suggestions ordered by urgency, confidence, recency, with a summary."""
    filters = SuggestionFilters(
        urgency=urgency,
        category_id=category_id,
        supplier_id=supplier_id,
        min_confidence=min_confidence,
        status=status,
        limit=limit,
    )
    return await SuggestionService(db).get_suggestions(filters)


@router.post("/suggestions/{suggestion_id}/action", response_model=ActionResult)
async def act_on_suggestion(
    suggestion_id: UUID,
    body: SuggestionActionRequest,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    """Approve, reject, or modify a pending suggestion (at most once)."""
    return await SuggestionService(db).process_suggestion(
        suggestion_id,
        body.action,
        user_id=user.get("sub"),
        reason=body.reason,
        modifications=body.modifications,
    )


@router.get("/suggestions/{suggestion_id}/history", response_model=list[HistoryResponse])
async def suggestion_history(
    suggestion_id: UUID,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    return await SuggestionService(db).get_history(suggestion_id)


# ─── Forecasts ──────────────────────────────────────────────────────────────


@router.get("/forecast/{product_id}", response_model=DemandForecast)
async def get_forecast(
    product_id: UUID,
    horizon: int = Query(30, ge=1, le=365),
    include_confidence_intervals: bool = False,
    include_seasonality: bool = True,
    include_external_factors: bool = False,
    db: AsyncSession = Depends(get_db),
    kv: KeyValueStore = Depends(get_kv_store),
    app_settings: Settings = Depends(get_app_settings),
    user: dict = Depends(get_current_user),
):
    options = ForecastOptions(
        horizon=horizon,
        include_confidence_intervals=include_confidence_intervals,
        include_seasonality=include_seasonality,
        include_external_factors=include_external_factors,
    )
    return await ForecastingService(db, kv, app_settings).generate_forecast(product_id, options)


# ─── Policies ───────────────────────────────────────────────────────────────


@router.get("/policies", response_model=list[PolicyResponse])
async def list_policies(
    include_inactive: bool = False,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    return await PolicyService(db).list_policies(include_inactive=include_inactive)


@router.post("/policies", response_model=PolicyResponse, status_code=201)
async def create_policy(
    body: PolicyCreate,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    return await PolicyService(db).create_policy(body, created_by=user.get("sub"))


@router.patch("/policies/{policy_id}", response_model=PolicyResponse)
async def update_policy(
    policy_id: UUID,
    body: PolicyUpdate,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    return await PolicyService(db).update_policy(policy_id, body)


# ─── Settings ───────────────────────────────────────────────────────────────


@router.get("/settings", response_model=SettingsResponse)
async def get_reorder_settings(
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    return snapshot_response(await load_settings(db))


@router.put("/settings", response_model=SettingsResponse)
async def put_reorder_settings(
    body: SettingsUpdate,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    return snapshot_response(await update_settings(db, body, updated_by=user.get("sub")))


# ─── Health ─────────────────────────────────────────────────────────────────


@router.get("/health")
async def reorder_health(
    db: AsyncSession = Depends(get_db),
    kv: KeyValueStore = Depends(get_kv_store),
):
    """Database and job-store reachability."""
    checks = {"database": "ok", "job_store": "ok"}
    try:
        await db.execute(text("SELECT 1"))
    except Exception as exc:
        logger.warning("health.database_unreachable", error=str(exc))
        checks["database"] = "unavailable"
    try:
        await kv.get_json("reorder:health")
    except Exception as exc:
        logger.warning("health.job_store_unreachable", error=str(exc))
        checks["job_store"] = "unavailable"
    healthy = all(v == "ok" for v in checks.values())
    return {"status": "healthy" if healthy else "degraded", "checks": checks}
