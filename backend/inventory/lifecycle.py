"""
Suggestion Lifecycle — listing, human/system actions, and audit history.

  pending ──approve──▶ approved            history: approved     (actual = suggested)
  pending ──modify───▶ approved            history: modified     (actual = overridden)
  pending ──reject───▶ rejected            history: rejected     (actual = 0)
  pending ──system───▶ approved            history: auto_ordered (actual = suggested)

Every transition is a compare-and-swap on status='pending' (and not yet
expired), committed together with its ReorderHistory row. 'ordered' is set
by the purchasing side, never here.
"""

import uuid
from datetime import datetime
from typing import Literal

import structlog
from pydantic import BaseModel, Field
from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import ConflictError, NotFoundError, ValidationError
from db.models import Category, Product, ReorderHistory, ReorderSuggestion, Supplier
from inventory.suggestions import URGENCY_RANK

logger = structlog.get_logger()

SYSTEM_USER = "system"

ACTION_STATUS = {"approve": "approved", "reject": "rejected", "modify": "approved"}
ACTION_HISTORY = {"approve": "approved", "reject": "rejected", "modify": "modified"}


# ─── Schemas ────────────────────────────────────────────────────────────────


class SuggestionFilters(BaseModel):
    urgency: Literal["critical", "high", "medium", "low", "all"] = "all"
    category_id: uuid.UUID | None = None
    supplier_id: uuid.UUID | None = None
    min_confidence: float = Field(0, ge=0, le=100)
    status: Literal["pending", "approved", "rejected", "ordered"] = "pending"
    limit: int = Field(100, ge=1, le=500)


class SuggestionModification(BaseModel):
    quantity: int | None = Field(None, ge=1)
    supplier_id: uuid.UUID | None = None


class SuggestionResponse(BaseModel):
    suggestion_id: uuid.UUID
    product_id: uuid.UUID
    supplier_id: uuid.UUID | None
    suggested_quantity: int
    estimated_cost: float
    urgency: str
    confidence_score: float
    reason: str
    lead_time_days: int
    status: str
    policy_scope: str
    demand_source: str
    auto_approve_eligible: bool
    created_by_ai: bool
    ai_model_version: str
    created_at: datetime
    updated_at: datetime
    expires_at: datetime

    model_config = {"from_attributes": True}


class SuggestionView(SuggestionResponse):
    """Suggestion enriched with product context for review screens."""

    product_name: str
    sku: str
    category_name: str | None = None
    supplier_name: str | None = None
    current_stock: int
    min_stock: int


class SuggestionSummary(BaseModel):
    total: int = 0
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    total_estimated_cost: float = 0.0
    avg_confidence: float = 0.0


class SuggestionList(BaseModel):
    suggestions: list[SuggestionView]
    summary: SuggestionSummary


class ActionResult(BaseModel):
    success: bool
    action: str
    updated_suggestion: SuggestionResponse


class HistoryResponse(BaseModel):
    id: uuid.UUID
    suggestion_id: uuid.UUID
    product_id: uuid.UUID
    action_taken: str
    suggested_quantity: int
    actual_quantity_ordered: int
    suggested_cost: float
    actual_cost: float
    action_reason: str | None
    user_id: str | None
    accuracy_score: float | None
    created_at: datetime

    model_config = {"from_attributes": True}


# ─── Listing ────────────────────────────────────────────────────────────────


def summarize(suggestions: list[SuggestionView]) -> SuggestionSummary:
    summary = SuggestionSummary(total=len(suggestions))
    for s in suggestions:
        setattr(summary, s.urgency, getattr(summary, s.urgency) + 1)
    if suggestions:
        summary.total_estimated_cost = round(sum(s.estimated_cost for s in suggestions), 2)
        summary.avg_confidence = round(sum(s.confidence_score for s in suggestions) / len(suggestions), 1)
    return summary


class SuggestionService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_suggestions(self, filters: SuggestionFilters, now: datetime | None = None) -> SuggestionList:
        """Filtered suggestions, most urgent first, with a summary over the same set."""
        now = now or datetime.utcnow()
        urgency_rank = case(
            *[(ReorderSuggestion.urgency == level, rank) for level, rank in URGENCY_RANK.items()],
            else_=len(URGENCY_RANK),
        )
        query = (
            select(
                ReorderSuggestion,
                Product.name,
                Product.sku,
                Product.quantity,
                Product.low_stock_threshold,
                Category.name,
                Supplier.name,
            )
            .join(Product, ReorderSuggestion.product_id == Product.product_id)
            .outerjoin(Category, Product.category_id == Category.category_id)
            .outerjoin(Supplier, ReorderSuggestion.supplier_id == Supplier.supplier_id)
            .where(ReorderSuggestion.status == filters.status)
        )
        if filters.status == "pending":
            query = query.where(ReorderSuggestion.expires_at > now)
        if filters.urgency != "all":
            query = query.where(ReorderSuggestion.urgency == filters.urgency)
        if filters.category_id:
            query = query.where(Product.category_id == filters.category_id)
        if filters.supplier_id:
            query = query.where(ReorderSuggestion.supplier_id == filters.supplier_id)
        if filters.min_confidence:
            query = query.where(ReorderSuggestion.confidence_score >= filters.min_confidence)

        query = query.order_by(
            urgency_rank,
            ReorderSuggestion.confidence_score.desc(),
            ReorderSuggestion.created_at.desc(),
        ).limit(filters.limit)

        result = await self.db.execute(query)
        views = []
        for suggestion, name, sku, stock, threshold, category_name, supplier_name in result.all():
            base = SuggestionResponse.model_validate(suggestion).model_dump()
            views.append(
                SuggestionView(
                    **base,
                    product_name=name,
                    sku=sku,
                    category_name=category_name,
                    supplier_name=supplier_name,
                    current_stock=stock,
                    min_stock=threshold,
                )
            )
        return SuggestionList(suggestions=views, summary=summarize(views))

    # ── Actions ──────────────────────────────────────────────────────────

    async def process_suggestion(
        self,
        suggestion_id: uuid.UUID,
        action: str,
        user_id: str,
        reason: str | None = None,
        modifications: SuggestionModification | None = None,
    ) -> ActionResult:
        if action not in ACTION_STATUS:
            raise ValidationError(f"Unknown action '{action}'", action=action)
        if action == "modify":
            if modifications is None or (modifications.quantity is None and modifications.supplier_id is None):
                raise ValidationError("modify requires a quantity or supplier_id")

        suggestion = await self._get_or_404(suggestion_id)
        unit_price = suggestion.estimated_cost / suggestion.suggested_quantity
        original_quantity = suggestion.suggested_quantity
        original_cost = suggestion.estimated_cost

        values: dict = {"status": ACTION_STATUS[action]}
        actual_quantity = original_quantity
        actual_cost = original_cost

        if action == "reject":
            actual_quantity, actual_cost = 0, 0.0
        elif action == "modify":
            if modifications.supplier_id is not None:
                if await self.db.get(Supplier, modifications.supplier_id) is None:
                    raise NotFoundError(f"Supplier {modifications.supplier_id} not found")
                values["supplier_id"] = modifications.supplier_id
            if modifications.quantity is not None:
                actual_quantity = modifications.quantity
                actual_cost = actual_quantity * unit_price
                values["suggested_quantity"] = actual_quantity
                values["estimated_cost"] = actual_cost

        updated = await self._transition(
            suggestion,
            values,
            ReorderHistory(
                suggestion_id=suggestion.suggestion_id,
                product_id=suggestion.product_id,
                action_taken=ACTION_HISTORY[action],
                suggested_quantity=original_quantity,
                actual_quantity_ordered=actual_quantity,
                suggested_cost=original_cost,
                actual_cost=actual_cost,
                action_reason=reason,
                user_id=user_id,
            ),
        )

        logger.info(
            "suggestion.processed",
            suggestion_id=str(suggestion_id),
            action=action,
            user_id=user_id,
            actual_quantity=actual_quantity,
        )
        return ActionResult(success=True, action=action, updated_suggestion=SuggestionResponse.model_validate(updated))

    async def auto_approve(self, suggestion_id: uuid.UUID) -> ReorderSuggestion:
        """System approval of an eligible suggestion; audited as auto_ordered."""
        suggestion = await self._get_or_404(suggestion_id)
        updated = await self._transition(
            suggestion,
            {"status": "approved"},
            ReorderHistory(
                suggestion_id=suggestion.suggestion_id,
                product_id=suggestion.product_id,
                action_taken="auto_ordered",
                suggested_quantity=suggestion.suggested_quantity,
                actual_quantity_ordered=suggestion.suggested_quantity,
                suggested_cost=suggestion.estimated_cost,
                actual_cost=suggestion.estimated_cost,
                action_reason="Auto-approved within configured limits",
                user_id=SYSTEM_USER,
            ),
        )
        logger.info("suggestion.auto_approved", suggestion_id=str(suggestion_id), cost=suggestion.estimated_cost)
        return updated

    async def _transition(
        self,
        suggestion: ReorderSuggestion,
        values: dict,
        history: ReorderHistory,
    ) -> ReorderSuggestion:
        now = datetime.utcnow()
        suggestion_id, current_status = suggestion.suggestion_id, suggestion.status
        try:
            result = await self.db.execute(
                update(ReorderSuggestion)
                .where(
                    ReorderSuggestion.suggestion_id == suggestion_id,
                    ReorderSuggestion.status == "pending",
                    ReorderSuggestion.expires_at > now,
                )
                .values(**values, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await self.db.rollback()
                raise ConflictError(
                    f"Suggestion {suggestion_id} is no longer pending",
                    suggestion_id=str(suggestion_id),
                    status=current_status,
                )
            self.db.add(history)
            await self.db.commit()
        except ConflictError:
            raise
        except Exception:
            await self.db.rollback()
            logger.error("suggestion.transition_failed", suggestion_id=str(suggestion_id), exc_info=True)
            raise

        await self.db.refresh(suggestion)
        return suggestion

    # ── History ──────────────────────────────────────────────────────────

    async def get_history(self, suggestion_id: uuid.UUID) -> list[ReorderHistory]:
        await self._get_or_404(suggestion_id)
        result = await self.db.execute(
            select(ReorderHistory)
            .where(ReorderHistory.suggestion_id == suggestion_id)
            .order_by(ReorderHistory.created_at)
        )
        return list(result.scalars().all())

    async def _get_or_404(self, suggestion_id: uuid.UUID) -> ReorderSuggestion:
        suggestion = await self.db.get(ReorderSuggestion, suggestion_id)
        if suggestion is None:
            raise NotFoundError(f"Suggestion {suggestion_id} not found", suggestion_id=str(suggestion_id))
        return suggestion
