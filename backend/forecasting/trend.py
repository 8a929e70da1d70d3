"""
Trend Analyzer — ordinary least squares over the daily demand series.

  slope, intercept = OLS(demand ~ day_index)
  relative_slope   = slope / mean(demand)       (0 when mean is 0)
  direction        = stable if |relative_slope| < 0.01, else sign(slope)
  strength         = min(1, |relative_slope| × 10)
  confidence       = clamp(R² × 100, 50, 100)   (R² = 0 for a constant series)
"""

from dataclasses import dataclass
from typing import Literal

import numpy as np

MIN_TREND_POINTS = 14
STABLE_RELATIVE_SLOPE = 0.01

TrendDirection = Literal["increasing", "decreasing", "stable"]


@dataclass(frozen=True)
class TrendResult:
    direction: TrendDirection
    strength: float
    confidence: float


STABLE_TREND = TrendResult(direction="stable", strength=0.0, confidence=50.0)


def analyze_trend(quantities) -> TrendResult:
    y = np.asarray(quantities, dtype=float)
    n = len(y)
    if n < MIN_TREND_POINTS:
        return STABLE_TREND

    x = np.arange(n, dtype=float)
    x_mean = x.mean()
    y_mean = y.mean()
    sxx = float(((x - x_mean) ** 2).sum())
    slope = float(((x - x_mean) * (y - y_mean)).sum() / sxx)
    intercept = y_mean - slope * x_mean

    ss_tot = float(((y - y_mean) ** 2).sum())
    if ss_tot == 0:
        r_squared = 0.0
    else:
        ss_res = float(((y - (slope * x + intercept)) ** 2).sum())
        r_squared = max(0.0, 1.0 - ss_res / ss_tot)

    relative_slope = slope / y_mean if y_mean != 0 else 0.0
    if abs(relative_slope) < STABLE_RELATIVE_SLOPE:
        direction: TrendDirection = "stable"
    else:
        direction = "increasing" if slope > 0 else "decreasing"

    return TrendResult(
        direction=direction,
        strength=min(1.0, abs(relative_slope) * 10),
        confidence=float(np.clip(r_squared * 100, 50, 100)),
    )
