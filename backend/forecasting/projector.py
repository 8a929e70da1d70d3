"""
Forecast Projector — composes base demand, trend and seasonality into a
day-by-day forecast with optional confidence bounds.

Algorithm (per future day d = 1..horizon):
  f_d = mean(history)
        × (1 + strength × 0.01 × d)      if increasing
        ÷ (1 + strength × 0.01 × d)      if decreasing
        × seasonal_factor(month(today + d))
        × (1 + (u - 0.5) × 0.10)         jitter, u ~ U[0, 1): at most ±5%
  f_d = round(max(0, f_d))

  bounds:      f_d ± 1.96σ  (σ = population std-dev of history, lower floored at 0)
  confidence:  70 + history bonus + 0.2 × trend conf + 0.1 × mean seasonal conf
               ± 10 by coefficient of variation, clamped to [50, 100]
"""

import math
import uuid
from datetime import date, datetime, timedelta

import numpy as np
from pydantic import BaseModel, Field

from forecasting.seasonality import SeasonalFactor, factor_for_month
from forecasting.trend import TrendResult

JITTER_SPREAD = 0.10  # full width; effective range ±5%
Z_95 = 1.96
STOCKOUT_SENTINEL = 999
MIN_FORECAST_POINTS = 7
BASIC_MODEL_ACCURACY = 50.0


# ── Request / response models ────────────────────────────────────────────


class ForecastOptions(BaseModel):
    horizon: int = Field(30, ge=1, le=365)
    include_confidence_intervals: bool = False
    include_seasonality: bool = True
    include_external_factors: bool = False

    def cache_key(self, product_id: uuid.UUID) -> str:
        return f"forecast:{product_id}:{self.model_dump_json()}"


class ConfidenceIntervals(BaseModel):
    lower: list[int]
    upper: list[int]


class ExternalFactors(BaseModel):
    holidays: bool = False
    promotions: bool = False
    market_trend: float = 1.0


class ForecastMetadata(BaseModel):
    data_points: int
    demand_source: str
    model_accuracy: float
    last_updated: datetime


class DemandForecast(BaseModel):
    product_id: uuid.UUID
    horizon: int
    avg_daily_demand: float
    forecasted_demand: list[int]
    confidence: float
    trend_direction: str
    seasonality_factor: float
    days_until_stockout: int
    confidence_intervals: ConfidenceIntervals | None = None
    external_factors: ExternalFactors | None = None
    metadata: ForecastMetadata


# ── Projection ───────────────────────────────────────────────────────────


def project_demand(
    history: np.ndarray,
    horizon: int,
    trend: TrendResult,
    seasonal: dict[int, SeasonalFactor],
    start: date,
    rng: np.random.Generator,
) -> list[int]:
    base = float(history.mean()) if len(history) else 0.0
    jitter = 1 + (rng.random(horizon) - 0.5) * JITTER_SPREAD

    forecast = []
    for d in range(1, horizon + 1):
        value = base
        if trend.direction != "stable":
            growth = 1 + trend.strength * 0.01 * d
            value = value * growth if trend.direction == "increasing" else value / growth
        value *= factor_for_month(seasonal, (start + timedelta(days=d)).month)
        value *= jitter[d - 1]
        forecast.append(int(round(max(0.0, value))))
    return forecast


def confidence_intervals(forecast: list[int], history: np.ndarray) -> ConfidenceIntervals:
    sigma = float(history.std()) if len(history) else 0.0
    margin = Z_95 * sigma
    return ConfidenceIntervals(
        lower=[max(0, int(round(f - margin))) for f in forecast],
        upper=[int(round(f + margin)) for f in forecast],
    )


def forecast_confidence(
    history: np.ndarray,
    trend: TrendResult,
    seasonal: dict[int, SeasonalFactor],
) -> float:
    n = len(history)
    confidence = 70.0
    if n >= 90:
        confidence += 15
    elif n >= 30:
        confidence += 10
    elif n >= 14:
        confidence += 5

    confidence += trend.confidence * 0.2
    if seasonal:
        confidence += float(np.mean([s.confidence for s in seasonal.values()])) * 0.1

    mean = float(history.mean()) if n else 0.0
    cv = float(history.std()) / mean if mean > 0 else math.inf
    if cv < 0.3:
        confidence += 10
    elif cv > 1.0:
        confidence -= 10

    return float(min(100, max(50, round(confidence))))


def days_until_stockout(current_stock: float, avg_daily_demand: float) -> int:
    if avg_daily_demand <= 0:
        return STOCKOUT_SENTINEL
    return int(math.floor(current_stock / avg_daily_demand))


def current_seasonality_factor(seasonal: dict[int, SeasonalFactor], today: date) -> float:
    return factor_for_month(seasonal, today.month)


def basic_forecast(
    product_id: uuid.UUID,
    options: ForecastOptions,
    current_stock: float,
    demand_source: str = "synthetic",
) -> DemandForecast:
    """Flat 1/day fallback used when history is too short to project."""
    return DemandForecast(
        product_id=product_id,
        horizon=options.horizon,
        avg_daily_demand=1.0,
        forecasted_demand=[1] * options.horizon,
        confidence=50.0,
        trend_direction="stable",
        seasonality_factor=1.0,
        days_until_stockout=days_until_stockout(current_stock, 1.0),
        metadata=ForecastMetadata(
            data_points=0,
            demand_source=demand_source,
            model_accuracy=BASIC_MODEL_ACCURACY,
            last_updated=datetime.utcnow(),
        ),
    )
