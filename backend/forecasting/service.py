"""
Forecasting Service — product demand forecasts with KV memoization.

Pipeline:
  ProductStore → DemandSeriesBuilder → {analyze_trend, seasonality}
  → project_demand → DemandForecast → KV cache (forecast:{id}:{options-json})

Seasonality comes from persisted monthly DemandPattern rows when the
product has them; otherwise it is recomputed from the series. Demand
patterns are refreshed nightly from observed history only.
"""

import uuid
from datetime import date, datetime, timedelta

import numpy as np
import pandas as pd
import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import Settings
from core.exceptions import NotFoundError
from db.kv_store import KeyValueStore
from db.models import DemandPattern, ReorderHistory
from forecasting.calendar import has_upcoming_holiday
from forecasting.demand_series import DemandSeries, DemandSeriesBuilder
from forecasting.projector import (
    MIN_FORECAST_POINTS,
    DemandForecast,
    ExternalFactors,
    ForecastMetadata,
    ForecastOptions,
    basic_forecast,
    confidence_intervals,
    current_seasonality_factor,
    days_until_stockout,
    forecast_confidence,
    project_demand,
)
from forecasting.seasonality import (
    MIN_MONTH_OBSERVATIONS,
    MIN_SEASONALITY_POINTS,
    SeasonalFactor,
    detect_seasonality,
    month_confidence,
)
from forecasting.trend import TrendResult, analyze_trend
from inventory.stores import OrderHistoryStore, ProductSnapshot, ProductStore

logger = structlog.get_logger()

DEFAULT_MODEL_ACCURACY = 75.0
ACCURACY_WINDOW_DAYS = 90


class ForecastingService:
    def __init__(
        self,
        db: AsyncSession,
        kv: KeyValueStore,
        settings: Settings,
        rng: np.random.Generator | None = None,
    ):
        self.db = db
        self.kv = kv
        self.settings = settings
        self.rng = rng if rng is not None else np.random.default_rng()
        self.products = ProductStore(db)
        self.orders = OrderHistoryStore(db)
        self.builder = DemandSeriesBuilder(self.orders, settings.demand_lookback_days, self.rng)

    async def generate_forecast(
        self,
        product_id: uuid.UUID,
        options: ForecastOptions | None = None,
        product: ProductSnapshot | None = None,
    ) -> DemandForecast:
        options = options or ForecastOptions(horizon=self.settings.forecast_default_horizon_days)
        cache_key = options.cache_key(product_id)

        cached = await self.kv.get_json(cache_key)
        if cached is not None:
            logger.debug("forecast.cache_hit", product_id=str(product_id))
            return DemandForecast.model_validate(cached)

        if product is None:
            product = await self.products.get(product_id)
        if product is None:
            raise NotFoundError(f"Product {product_id} not found", product_id=str(product_id))

        today = datetime.utcnow().date()
        series = await self.builder.build(product, today)

        if len(series) < MIN_FORECAST_POINTS:
            logger.warning(
                "forecast.degraded",
                product_id=str(product_id),
                data_points=len(series),
                reason="insufficient_history",
            )
            return basic_forecast(product_id, options, product.quantity, demand_source=series.kind)

        forecast = await self._project(product, series, options, today)
        await self.kv.set_json(
            cache_key,
            forecast.model_dump(mode="json"),
            ttl_seconds=self.settings.forecast_cache_ttl_seconds,
        )

        logger.info(
            "forecast.generated",
            product_id=str(product_id),
            demand_source=series.kind,
            confidence=forecast.confidence,
            avg_daily_demand=round(forecast.avg_daily_demand, 2),
            days_until_stockout=forecast.days_until_stockout,
        )
        return forecast

    async def _project(
        self,
        product: ProductSnapshot,
        series: DemandSeries,
        options: ForecastOptions,
        today: date,
    ) -> DemandForecast:
        history = series.quantities()
        trend = analyze_trend(history)
        seasonal = await self._seasonality(product.product_id, series) if options.include_seasonality else {}

        avg_daily_demand = float(history.mean())
        forecasted = project_demand(history, options.horizon, trend, seasonal, today, self.rng)

        confidence = forecast_confidence(history, trend, seasonal)
        if series.is_synthetic:
            confidence = min(confidence, float(self.settings.synthetic_confidence_cap))

        return DemandForecast(
            product_id=product.product_id,
            horizon=options.horizon,
            avg_daily_demand=avg_daily_demand,
            forecasted_demand=forecasted,
            confidence=confidence,
            trend_direction=trend.direction,
            seasonality_factor=current_seasonality_factor(seasonal, today),
            days_until_stockout=days_until_stockout(product.quantity, avg_daily_demand),
            confidence_intervals=(
                confidence_intervals(forecasted, history) if options.include_confidence_intervals else None
            ),
            external_factors=(
                await self._external_factors(product, options.horizon, today)
                if options.include_external_factors
                else None
            ),
            metadata=ForecastMetadata(
                data_points=len(series),
                demand_source=series.kind,
                model_accuracy=await self._model_accuracy(product.product_id),
                last_updated=datetime.utcnow(),
            ),
        )

    async def _seasonality(self, product_id: uuid.UUID, series: DemandSeries) -> dict[int, SeasonalFactor]:
        if len(series) < MIN_SEASONALITY_POINTS:
            return {}
        if series.kind == "observed":
            persisted = await self._persisted_seasonality(product_id, series.points[0].day)
            if persisted:
                return persisted
        return detect_seasonality(series.points)

    async def _persisted_seasonality(self, product_id: uuid.UUID, since: date) -> dict[int, SeasonalFactor]:
        """DemandPattern rows inside the window, pooled per calendar month.

        Rows built from fewer than 3 days are ignored. Several years of the
        same month are weighted by their observation counts.
        """
        result = await self.db.execute(
            select(DemandPattern).where(
                DemandPattern.product_id == product_id,
                DemandPattern.period_end >= since,
                DemandPattern.observation_count >= MIN_MONTH_OBSERVATIONS,
            )
        )
        patterns = result.scalars().all()
        if not patterns:
            return {}

        frame = pd.DataFrame(
            {
                "month": [p.period_start.month for p in patterns],
                "count": [p.observation_count for p in patterns],
                "mean": [p.avg_daily_demand for p in patterns],
                "variance": [p.demand_variance for p in patterns],
                "factor": [p.seasonality_factor for p in patterns],
            }
        )
        frame["weighted_mean"] = frame["mean"] * frame["count"]
        frame["weighted_square"] = (frame["variance"] + frame["mean"] ** 2) * frame["count"]
        frame["weighted_factor"] = frame["factor"] * frame["count"]
        pooled = frame.groupby("month")[["count", "weighted_mean", "weighted_square", "weighted_factor"]].sum()

        factors: dict[int, SeasonalFactor] = {}
        for month, row in pooled.iterrows():
            monthly_mean = row["weighted_mean"] / row["count"]
            variance = max(0.0, row["weighted_square"] / row["count"] - monthly_mean**2)
            factors[int(month)] = SeasonalFactor(
                month=int(month),
                factor=float(row["weighted_factor"] / row["count"]),
                confidence=month_confidence(float(monthly_mean), float(variance)),
            )
        return factors

    async def _external_factors(self, product: ProductSnapshot, horizon: int, today: date) -> ExternalFactors:
        now = datetime.combine(today, datetime.min.time())
        recent = await self.orders.mean_quantity_between(
            product.product_id, now - timedelta(days=30), now + timedelta(days=1)
        )
        previous = await self.orders.mean_quantity_between(
            product.product_id, now - timedelta(days=60), now - timedelta(days=30)
        )
        market_trend = recent / previous if recent and previous else 1.0

        return ExternalFactors(
            holidays=has_upcoming_holiday(today, horizon),
            promotions=await self.orders.has_active_promotion(product.product_id, product.supplier_id, today, horizon),
            market_trend=market_trend,
        )

    async def _model_accuracy(self, product_id: uuid.UUID) -> float:
        since = datetime.utcnow() - timedelta(days=ACCURACY_WINDOW_DAYS)
        result = await self.db.execute(
            select(func.avg(ReorderHistory.accuracy_score)).where(
                ReorderHistory.product_id == product_id,
                ReorderHistory.accuracy_score.is_not(None),
                ReorderHistory.created_at >= since,
            )
        )
        value = result.scalar_one_or_none()
        return float(value) if value is not None else DEFAULT_MODEL_ACCURACY

    # ── Demand pattern persistence ───────────────────────────────────────

    async def refresh_demand_patterns(self, product_id: uuid.UUID) -> int:
        """Upsert monthly DemandPattern rows from observed history.

        Returns the number of months written. Synthetic series and series
        shorter than 90 days write nothing. Caller commits.
        """
        product = await self.products.get(product_id)
        if product is None:
            raise NotFoundError(f"Product {product_id} not found", product_id=str(product_id))

        series = await self.builder.build(product)
        if series.is_synthetic or len(series) < MIN_SEASONALITY_POINTS:
            logger.debug("demand_patterns.skipped", product_id=str(product_id), demand_source=series.kind)
            return 0

        trend = analyze_trend(series.quantities())
        monthly = summarize_months(series)
        for row in monthly.itertuples(index=False):
            await self._upsert_pattern(product_id, row, trend)

        logger.info("demand_patterns.updated", product_id=str(product_id), patterns=len(monthly))
        return len(monthly)

    async def _upsert_pattern(self, product_id: uuid.UUID, row, trend: TrendResult) -> None:
        result = await self.db.execute(
            select(DemandPattern).where(
                DemandPattern.product_id == product_id,
                DemandPattern.period_start == row.period_start,
                DemandPattern.period_end == row.period_end,
            )
        )
        pattern = result.scalar_one_or_none()
        if pattern is None:
            pattern = DemandPattern(
                product_id=product_id,
                period_start=row.period_start,
                period_end=row.period_end,
            )
            self.db.add(pattern)

        pattern.observation_count = int(row.observation_count)
        pattern.avg_daily_demand = float(row.avg_daily_demand)
        pattern.peak_demand = float(row.peak_demand)
        pattern.demand_variance = float(row.demand_variance)
        pattern.seasonality_factor = float(row.seasonality_factor)
        pattern.trend_factor = signed_trend(trend)
        pattern.calculated_at = datetime.utcnow()


def signed_trend(trend: TrendResult) -> float:
    if trend.direction == "increasing":
        return trend.strength
    if trend.direction == "decreasing":
        return -trend.strength
    return 0.0


def summarize_months(series: DemandSeries) -> pd.DataFrame:
    """One row per calendar month in the series with the DemandPattern aggregates.

    Months with fewer than 3 days in the series (the partial months at
    either end of the window) are dropped.
    """
    frame = pd.DataFrame(
        {
            "day": pd.to_datetime([p.day for p in series.points]),
            "quantity": [float(p.quantity) for p in series.points],
        }
    )
    overall_mean = frame["quantity"].mean()
    frame["period"] = frame["day"].dt.to_period("M")

    grouped = frame.groupby("period")["quantity"]
    monthly = pd.DataFrame(
        {
            "observation_count": grouped.count(),
            "avg_daily_demand": grouped.mean(),
            "peak_demand": grouped.max(),
            "demand_variance": grouped.var(ddof=0),
        }
    ).reset_index()
    monthly = monthly[monthly["observation_count"] >= MIN_MONTH_OBSERVATIONS].reset_index(drop=True)

    monthly["period_start"] = monthly["period"].apply(lambda p: p.start_time.date())
    monthly["period_end"] = monthly["period"].apply(lambda p: p.end_time.date())
    monthly["seasonality_factor"] = monthly["avg_daily_demand"] / overall_mean if overall_mean > 0 else 1.0
    return monthly[
        [
            "period_start",
            "period_end",
            "observation_count",
            "avg_daily_demand",
            "peak_demand",
            "demand_variance",
            "seasonality_factor",
        ]
    ]
