"""
Reorder Suggestion Engine — turns stock + forecast + policy into a
ranked, urgency-classified reorder suggestion.

Algorithm:
  safety_stock      = low_stock_threshold × 0.5
  lead_time_demand  = avg_order_quantity × (lead_time_days / 30)
                      (avg_order_quantity falls back to threshold × 2)
  suggested_qty     = ceil(lead_time_demand + safety_stock)
                      → preferred_order_quantity replaces it, else max caps it, min 1
  urgency           = by stock_ratio: <=0.5 critical, <=0.8 high, <=1.2 medium, else low
  confidence        = clamp(min(95, data_points × 10 + reliability × 0.5), 0, 100)

Inputs:
  - ProductStore snapshot (stock, threshold, price, supplier lead time + reliability)
  - completed-order stats over the lookback window
  - DemandForecast (stockout horizon, trend, seasonality for the reason text)
  - ResolvedPolicy (eligibility multiplier, quantity constraints, expiry)
  - ReorderSettingsSnapshot (auto-approval limits)

Outputs:
  - SuggestionDraft, persisted by the orchestrator as a pending ReorderSuggestion
"""

import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import ReorderSuggestion
from forecasting.projector import DemandForecast, ForecastOptions
from forecasting.service import ForecastingService
from inventory.policy import PolicyResolver, ResolvedPolicy
from inventory.settings import ReorderSettingsSnapshot
from inventory.stores import OrderHistoryStore, ProductSnapshot

logger = structlog.get_logger()

AI_MODEL_VERSION = "1.0.0"
ANALYSIS_HORIZON_DAYS = 30

MAX_SUGGESTED_QUANTITY = 1_000_000
MAX_ESTIMATED_COST = 10_000_000
MAX_LEAD_TIME_DAYS = 365

URGENCY_RANK = {"critical": 0, "high": 1, "medium": 2, "low": 3}


@dataclass
class SuggestionDraft:
    """A reorder suggestion computed for one product, not yet persisted."""

    product_id: uuid.UUID
    supplier_id: uuid.UUID | None
    suggested_quantity: int
    estimated_cost: float
    urgency: str
    confidence_score: float
    reason: str
    lead_time_days: int
    policy_scope: str
    demand_source: str
    auto_approve_eligible: bool
    expires_at: datetime
    created_at: datetime

    def to_model(self) -> ReorderSuggestion:
        return ReorderSuggestion(
            product_id=self.product_id,
            supplier_id=self.supplier_id,
            suggested_quantity=self.suggested_quantity,
            estimated_cost=self.estimated_cost,
            urgency=self.urgency,
            confidence_score=self.confidence_score,
            reason=self.reason,
            lead_time_days=self.lead_time_days,
            status="pending",
            policy_scope=self.policy_scope,
            demand_source=self.demand_source,
            auto_approve_eligible=self.auto_approve_eligible,
            created_by_ai=True,
            ai_model_version=AI_MODEL_VERSION,
            created_at=self.created_at,
            updated_at=self.created_at,
            expires_at=self.expires_at,
        )


def classify_urgency(stock_ratio: float) -> str:
    if stock_ratio <= 0.5:
        return "critical"
    if stock_ratio <= 0.8:
        return "high"
    if stock_ratio <= 1.2:
        return "medium"
    return "low"


def calculate_suggested_quantity(
    avg_order_quantity: float | None,
    lead_time_days: int,
    low_stock_threshold: int,
    policy: ResolvedPolicy,
) -> int:
    if avg_order_quantity is None:
        avg_order_quantity = low_stock_threshold * 2
    safety_stock = low_stock_threshold * 0.5
    lead_time_demand = avg_order_quantity * (lead_time_days / 30)
    quantity = math.ceil(lead_time_demand + safety_stock)

    if policy.preferred_order_quantity:
        quantity = policy.preferred_order_quantity
    elif policy.max_order_quantity:
        quantity = min(quantity, policy.max_order_quantity)
    return max(1, int(quantity))


def calculate_confidence(data_points: int, reliability_score: float) -> float:
    raw = min(95.0, data_points * 10 + reliability_score * 0.5)
    return float(min(100.0, max(0.0, raw)))


def is_auto_approve_eligible(
    estimated_cost: float,
    confidence: float,
    settings: ReorderSettingsSnapshot,
    policy: ResolvedPolicy,
) -> bool:
    if not settings.auto_reorder_enabled:
        return False
    if estimated_cost > settings.max_auto_approve_amount:
        return False
    if confidence < settings.default_confidence_threshold:
        return False
    if policy.auto_approve_threshold is not None and estimated_cost > policy.auto_approve_threshold:
        return False
    return True


def passes_sanity_check(quantity: float, cost: float, lead_time_days: float) -> bool:
    return (
        math.isfinite(quantity)
        and 0 < quantity <= MAX_SUGGESTED_QUANTITY
        and math.isfinite(cost)
        and 0 <= cost <= MAX_ESTIMATED_COST
        and math.isfinite(lead_time_days)
        and 0 < lead_time_days <= MAX_LEAD_TIME_DAYS
    )


def build_reason(product: ProductSnapshot, forecast: DemandForecast, policy: ResolvedPolicy) -> str:
    ratio = product.stock_ratio
    reasons = []
    if ratio <= 0.5:
        reasons.append(f"Critical stock level: {product.quantity} units against threshold {product.low_stock_threshold}")
    elif ratio < 1.0:
        reasons.append("Stock level below reorder threshold")
    else:
        reasons.append("Stock level approaching reorder threshold")

    if forecast.days_until_stockout <= policy.safety_stock_days:
        reasons.append(f"Predicted stockout in {forecast.days_until_stockout} days")
    if forecast.trend_direction == "increasing":
        reasons.append("Demand trend is increasing")
    if forecast.seasonality_factor > 1.2:
        reasons.append("Seasonal demand increase expected")
    if forecast.metadata.demand_source == "synthetic":
        reasons.append("Demand estimated from limited order history")
    reasons.append(f"Policy: {policy.scope}")
    return ". ".join(reasons)


class SuggestionEngine:
    """Computes reorder suggestions for individual products."""

    def __init__(
        self,
        db: AsyncSession,
        forecasting: ForecastingService,
        settings: ReorderSettingsSnapshot,
        lookback_days: int = 365,
    ):
        self.db = db
        self.forecasting = forecasting
        self.settings = settings
        self.lookback_days = lookback_days
        self.orders = OrderHistoryStore(db)
        self.policies = PolicyResolver(db)

    async def has_pending_suggestion(self, product_id: uuid.UUID, now: datetime | None = None) -> bool:
        now = now or datetime.utcnow()
        result = await self.db.execute(
            select(func.count(ReorderSuggestion.suggestion_id)).where(
                ReorderSuggestion.product_id == product_id,
                ReorderSuggestion.status == "pending",
                ReorderSuggestion.expires_at > now,
            )
        )
        return (result.scalar_one() or 0) > 0

    async def analyze_product(self, product: ProductSnapshot) -> SuggestionDraft | None:
        """
        Build a suggestion for one product.

        Returns None when the product is above its policy's reorder
        multiplier or the computed suggestion fails the sanity guard.
        """
        stock_ratio = product.stock_ratio
        policy = await self.policies.resolve(product)
        if stock_ratio > policy.min_stock_multiplier:
            return None

        forecast = await self.forecasting.generate_forecast(
            product.product_id,
            ForecastOptions(horizon=ANALYSIS_HORIZON_DAYS, include_seasonality=True),
            product=product,
        )

        now = datetime.utcnow()
        stats = await self.orders.order_stats(product.product_id, now - timedelta(days=self.lookback_days))
        lead_time = product.lead_time_days
        quantity = calculate_suggested_quantity(stats.avg_quantity, lead_time, product.low_stock_threshold, policy)
        estimated_cost = quantity * product.price

        if not passes_sanity_check(quantity, estimated_cost, lead_time):
            logger.error(
                "suggestion.sanity_check_failed",
                product_id=str(product.product_id),
                suggested_quantity=quantity,
                estimated_cost=estimated_cost,
                lead_time_days=lead_time,
            )
            return None

        confidence = calculate_confidence(stats.order_count, product.reliability_score)

        return SuggestionDraft(
            product_id=product.product_id,
            supplier_id=product.supplier_id,
            suggested_quantity=quantity,
            estimated_cost=estimated_cost,
            urgency=classify_urgency(stock_ratio),
            confidence_score=confidence,
            reason=build_reason(product, forecast, policy),
            lead_time_days=int(lead_time),
            policy_scope=policy.scope,
            demand_source=forecast.metadata.demand_source,
            auto_approve_eligible=is_auto_approve_eligible(estimated_cost, confidence, self.settings, policy),
            created_at=now,
            expires_at=now + timedelta(days=policy.review_frequency_days),
        )
