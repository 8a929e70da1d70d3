"""
Tests for the Forecasting Service.

Covers:
  - Forecast shape for observed and synthetic demand
  - KV memoization by product and options
  - Unknown products
  - External factors (holidays, promotions, market trend)
  - Degraded forecast for very short windows
  - Demand pattern refresh and reuse
"""

import uuid
from datetime import date, datetime, timedelta

import numpy as np
import pytest
from sqlalchemy import func, select

from core.config import Settings
from core.exceptions import NotFoundError
from db.models import DemandPattern, Promotion, ReorderHistory
from forecasting.demand_series import build_observed_series
from forecasting.projector import ForecastOptions
from forecasting.service import ForecastingService, signed_trend, summarize_months
from forecasting.trend import TrendResult


@pytest.fixture
def service(test_db, kv_store, app_settings):
    return ForecastingService(test_db, kv_store, app_settings, rng=np.random.default_rng(99))


def _pattern(product_id, period_start, observation_count, seasonality_factor=1.0):
    return DemandPattern(
        product_id=product_id,
        period_start=period_start,
        period_end=period_start + timedelta(days=27),
        avg_daily_demand=0.5,
        peak_demand=6.0,
        demand_variance=0.2,
        observation_count=observation_count,
        seasonality_factor=seasonality_factor,
        trend_factor=0.0,
    )


# ── Generation ─────────────────────────────────────────────────────────


class TestGenerateForecast:
    async def test_observed_forecast(self, service, seeded_db):
        product = seeded_db["critical"]
        forecast = await service.generate_forecast(product.product_id, ForecastOptions(horizon=14))

        assert forecast.product_id == product.product_id
        assert forecast.horizon == 14
        assert len(forecast.forecasted_demand) == 14
        assert all(v >= 0 for v in forecast.forecasted_demand)
        assert 50 <= forecast.confidence <= 100
        assert forecast.metadata.demand_source == "observed"
        assert forecast.metadata.data_points == 365
        # 60 units over a 365 day window
        assert forecast.avg_daily_demand == pytest.approx(60 / 365)
        assert forecast.confidence_intervals is None
        assert forecast.external_factors is None

    async def test_default_horizon_from_settings(self, service, seeded_db):
        forecast = await service.generate_forecast(seeded_db["critical"].product_id)
        assert forecast.horizon == 30

    async def test_synthetic_confidence_is_capped(self, service, seeded_db):
        forecast = await service.generate_forecast(seeded_db["sparse"].product_id)
        assert forecast.metadata.demand_source == "synthetic"
        assert forecast.confidence <= 60

    async def test_confidence_intervals_when_requested(self, service, seeded_db):
        options = ForecastOptions(horizon=10, include_confidence_intervals=True)
        forecast = await service.generate_forecast(seeded_db["critical"].product_id, options)

        bounds = forecast.confidence_intervals
        assert bounds is not None
        assert len(bounds.lower) == len(bounds.upper) == 10
        for lower, value, upper in zip(bounds.lower, forecast.forecasted_demand, bounds.upper):
            assert 0 <= lower <= value <= upper

    async def test_unknown_product_raises(self, service, seeded_db):
        with pytest.raises(NotFoundError):
            await service.generate_forecast(uuid.uuid4())

    async def test_model_accuracy_defaults_then_averages(self, service, test_db, seeded_db, make_suggestion):
        product = seeded_db["critical"]
        forecast = await service.generate_forecast(product.product_id, ForecastOptions(horizon=5))
        assert forecast.metadata.model_accuracy == 75.0

        suggestion = make_suggestion(product, status="approved")
        test_db.add(suggestion)
        for score in (80.0, 90.0, None):
            test_db.add(
                ReorderHistory(
                    suggestion_id=suggestion.suggestion_id,
                    product_id=product.product_id,
                    action_taken="approved",
                    suggested_quantity=13,
                    actual_quantity_ordered=13,
                    suggested_cost=130.0,
                    actual_cost=130.0,
                    user_id="planner",
                    accuracy_score=score,
                )
            )
        await test_db.commit()

        forecast = await service.generate_forecast(product.product_id, ForecastOptions(horizon=6))
        assert forecast.metadata.model_accuracy == pytest.approx(85.0)


# ── Memoization ────────────────────────────────────────────────────────


class TestForecastCache:
    async def test_second_call_hits_cache(self, service, kv_store, seeded_db):
        product_id = seeded_db["critical"].product_id
        options = ForecastOptions(horizon=7)

        first = await service.generate_forecast(product_id, options)
        assert options.cache_key(product_id) in kv_store.keys()

        second = await service.generate_forecast(product_id, options)
        assert second == first
        assert kv_store.writes.count(options.cache_key(product_id)) == 1

    async def test_different_options_do_not_share_entries(self, service, kv_store, seeded_db):
        product_id = seeded_db["critical"].product_id
        await service.generate_forecast(product_id, ForecastOptions(horizon=7))
        await service.generate_forecast(product_id, ForecastOptions(horizon=7, include_seasonality=False))

        assert len([k for k in kv_store.keys() if k.startswith(f"forecast:{product_id}:")]) == 2

    async def test_entry_expires_after_ttl(self, service, kv_store, clock, seeded_db):
        product_id = seeded_db["critical"].product_id
        options = ForecastOptions(horizon=7)
        await service.generate_forecast(product_id, options)

        clock.advance(1801)
        assert await kv_store.get_json(options.cache_key(product_id)) is None


# ── External Factors ───────────────────────────────────────────────────


class TestExternalFactors:
    async def test_promotion_and_market_trend(self, service, test_db, seeded_db):
        product = seeded_db["critical"]
        today = date.today()
        test_db.add(
            Promotion(
                product_id=product.product_id,
                name="Spring sale",
                start_date=today + timedelta(days=2),
                end_date=today + timedelta(days=9),
            )
        )
        await test_db.commit()

        options = ForecastOptions(horizon=14, include_external_factors=True)
        forecast = await service.generate_forecast(product.product_id, options)

        factors = forecast.external_factors
        assert factors is not None
        assert factors.promotions is True
        assert factors.market_trend > 0

    async def test_no_promotion_for_other_products(self, service, seeded_db):
        options = ForecastOptions(horizon=14, include_external_factors=True)
        forecast = await service.generate_forecast(seeded_db["healthy"].product_id, options)
        assert forecast.external_factors.promotions is False

    async def test_inactive_promotion_ignored(self, service, test_db, seeded_db):
        product = seeded_db["healthy"]
        today = date.today()
        test_db.add(
            Promotion(
                product_id=product.product_id,
                name="Cancelled promo",
                start_date=today,
                end_date=today + timedelta(days=5),
                is_active=False,
            )
        )
        await test_db.commit()

        options = ForecastOptions(horizon=14, include_external_factors=True)
        forecast = await service.generate_forecast(product.product_id, options)
        assert forecast.external_factors.promotions is False


# ── Degraded Forecast ──────────────────────────────────────────────────


class TestDegradedForecast:
    async def test_short_window_returns_basic_forecast_uncached(self, test_db, kv_store, db_url, seeded_db):
        settings = Settings(app_env="test", database_url=db_url, demand_lookback_days=5)
        service = ForecastingService(test_db, kv_store, settings, rng=np.random.default_rng(1))

        forecast = await service.generate_forecast(seeded_db["critical"].product_id, ForecastOptions(horizon=5))

        assert forecast.forecasted_demand == [1] * 5
        assert forecast.confidence == 50.0
        assert forecast.days_until_stockout == 5
        assert kv_store.keys() == []


# ── Demand Patterns ────────────────────────────────────────────────────


class TestDemandPatterns:
    async def test_refresh_writes_monthly_rows(self, service, test_db, seeded_db):
        product_id = seeded_db["critical"].product_id

        written = await service.refresh_demand_patterns(product_id)
        await test_db.commit()

        count = await test_db.scalar(
            select(func.count(DemandPattern.id)).where(DemandPattern.product_id == product_id)
        )
        assert written > 0
        assert count == written

    async def test_refresh_is_idempotent(self, service, test_db, seeded_db):
        product_id = seeded_db["critical"].product_id

        first = await service.refresh_demand_patterns(product_id)
        await test_db.commit()
        second = await service.refresh_demand_patterns(product_id)
        await test_db.commit()

        count = await test_db.scalar(
            select(func.count(DemandPattern.id)).where(DemandPattern.product_id == product_id)
        )
        assert first == second == count

    async def test_synthetic_products_are_skipped(self, service, seeded_db):
        assert await service.refresh_demand_patterns(seeded_db["sparse"].product_id) == 0

    async def test_unknown_product_raises(self, service, seeded_db):
        with pytest.raises(NotFoundError):
            await service.refresh_demand_patterns(uuid.uuid4())

    async def test_persisted_patterns_drive_seasonality(self, service, test_db, seeded_db):
        product_id = seeded_db["critical"].product_id
        month_start = datetime.utcnow().date().replace(day=1)
        test_db.add(_pattern(product_id, month_start, observation_count=28, seasonality_factor=1.8))
        await test_db.commit()

        forecast = await service.generate_forecast(product_id, ForecastOptions(horizon=3))
        assert forecast.seasonality_factor == pytest.approx(1.8)

    async def test_short_series_has_no_seasonality(self, test_db, kv_store, db_url, seeded_db):
        settings = Settings(app_env="test", database_url=db_url, demand_lookback_days=60)
        service = ForecastingService(test_db, kv_store, settings, rng=np.random.default_rng(3))
        product_id = seeded_db["critical"].product_id

        assert await service.refresh_demand_patterns(product_id) == 0

        month_start = datetime.utcnow().date().replace(day=1)
        test_db.add(_pattern(product_id, month_start, observation_count=28, seasonality_factor=1.8))
        await test_db.commit()

        forecast = await service.generate_forecast(product_id, ForecastOptions(horizon=3))
        assert forecast.metadata.data_points == 60
        assert forecast.seasonality_factor == 1.0

    async def test_thin_persisted_months_are_ignored(self, service, test_db, seeded_db):
        product_id = seeded_db["critical"].product_id
        month_start = datetime.utcnow().date().replace(day=1)
        test_db.add(_pattern(product_id, month_start, observation_count=1, seasonality_factor=36.0))
        await test_db.commit()

        forecast = await service.generate_forecast(product_id, ForecastOptions(horizon=3))
        assert forecast.seasonality_factor != pytest.approx(36.0)

    async def test_persisted_months_pool_across_years(self, test_db, kv_store, db_url, seeded_db):
        settings = Settings(app_env="test", database_url=db_url, demand_lookback_days=730)
        service = ForecastingService(test_db, kv_store, settings, rng=np.random.default_rng(5))
        product_id = seeded_db["critical"].product_id

        month_start = datetime.utcnow().date().replace(day=1)
        test_db.add_all(
            [
                _pattern(product_id, month_start, observation_count=10, seasonality_factor=2.0),
                _pattern(product_id, month_start.replace(year=month_start.year - 1), observation_count=30),
                # outside the two year window
                _pattern(
                    product_id,
                    month_start.replace(year=month_start.year - 3),
                    observation_count=30,
                    seasonality_factor=9.0,
                ),
            ]
        )
        await test_db.commit()

        forecast = await service.generate_forecast(product_id, ForecastOptions(horizon=3))
        # (10 × 2.0 + 30 × 1.0) / 40
        assert forecast.seasonality_factor == pytest.approx(1.25)

    def test_summarize_months_drops_partial_months(self):
        today = date(2026, 11, 1)
        totals = {date(2026, 10, day): 2.0 for day in range(1, 32)}
        series = build_observed_series(totals, 365, today)

        monthly = summarize_months(series)

        assert (monthly["observation_count"] >= 3).all()
        assert today not in set(monthly["period_start"])
        assert date(2025, 11, 1) in set(monthly["period_start"])
        october = monthly[monthly["period_start"] == date(2026, 10, 1)].iloc[0]
        assert october["observation_count"] == 31
        assert october["avg_daily_demand"] == pytest.approx(2.0)

    def test_signed_trend(self):
        assert signed_trend(TrendResult("increasing", 0.4, 80.0)) == 0.4
        assert signed_trend(TrendResult("decreasing", 0.4, 80.0)) == -0.4
        assert signed_trend(TrendResult("stable", 0.0, 50.0)) == 0.0
