"""
Seasonality Detector — per-calendar-month demand multipliers.

Needs >= 90 daily points. Months with >= 3 observations emit:
  factor     = monthly_mean / overall_mean
  confidence = clamp(100 - (population_variance / monthly_mean) × 10, 50, 100)
Months absent from the result are treated as factor 1.0 by callers.
"""

from dataclasses import dataclass

import pandas as pd

MIN_SEASONALITY_POINTS = 90
MIN_MONTH_OBSERVATIONS = 3


@dataclass(frozen=True)
class SeasonalFactor:
    month: int
    factor: float
    confidence: float


def detect_seasonality(points) -> dict[int, SeasonalFactor]:
    """Month → SeasonalFactor for a sequence of DemandPoint."""
    if len(points) < MIN_SEASONALITY_POINTS:
        return {}

    frame = pd.DataFrame(
        {
            "month": [p.day.month for p in points],
            "quantity": [float(p.quantity) for p in points],
        }
    )
    overall_mean = frame["quantity"].mean()
    if overall_mean == 0:
        return {}

    stats = frame.groupby("month")["quantity"].agg(["count", "mean", lambda s: s.var(ddof=0)])
    stats.columns = ["count", "mean", "variance"]

    factors: dict[int, SeasonalFactor] = {}
    for month, row in stats.iterrows():
        if row["count"] < MIN_MONTH_OBSERVATIONS:
            continue
        monthly_mean = float(row["mean"])
        factors[int(month)] = SeasonalFactor(
            month=int(month),
            factor=monthly_mean / overall_mean,
            confidence=month_confidence(monthly_mean, float(row["variance"])),
        )
    return factors


def factor_for_month(factors: dict[int, SeasonalFactor], month: int) -> float:
    entry = factors.get(month)
    return entry.factor if entry is not None else 1.0


def month_confidence(monthly_mean: float, variance: float) -> float:
    if monthly_mean == 0:
        return 50.0
    return min(100.0, max(50.0, 100 - (variance / monthly_mean) * 10))
