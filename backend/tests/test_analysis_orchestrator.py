"""
Tests for the Analysis Job Orchestrator.

Covers:
  - Job lifecycle started → running → completed | failed
  - Scope validation
  - Job store TTL
  - Duplicate suppression for pending suggestions
  - Auto-approval of eligible suggestions
  - Per-product and run-level failure isolation
  - The periodic trigger
"""

import uuid
from datetime import datetime, timedelta

import numpy as np
import pytest
from sqlalchemy import select

from core.exceptions import NotFoundError, ValidationError
from db.models import ReorderHistory, ReorderSettings, ReorderSuggestion
from inventory.analysis import (
    LAST_SCHEDULED_RUN_KEY,
    AnalysisOrchestrator,
    is_due,
    job_key,
)
from inventory.settings import ReorderSettingsSnapshot
from inventory.stores import ProductStore
from inventory.suggestions import SuggestionEngine


@pytest.fixture
def orchestrator(session_factory, kv_store, app_settings, dispatched):
    return AnalysisOrchestrator(
        session_factory,
        kv_store,
        app_settings,
        dispatcher=dispatched.append,
        rng=np.random.default_rng(21),
    )


async def _enable_auto_reorder(db, **overrides):
    values = dict(
        id="global",
        auto_reorder_enabled=True,
        analysis_frequency_hours=24,
        default_confidence_threshold=70.0,
        max_auto_approve_amount=1000.0,
        notification_emails=[],
    )
    values.update(overrides)
    db.add(ReorderSettings(**values))
    await db.commit()


async def _suggestions(session_factory):
    async with session_factory() as db:
        result = await db.execute(select(ReorderSuggestion))
        return list(result.scalars().all())


# ── Trigger ────────────────────────────────────────────────────────────


class TestStartAnalysis:
    async def test_job_written_and_dispatched(self, orchestrator, kv_store, dispatched, seeded_db):
        job = await orchestrator.start_analysis(requested_by="planner")

        assert job.status == "started"
        assert job.scope == "all"
        assert job.requested_by == "planner"
        assert job.estimated_completion - job.started_at == timedelta(minutes=5)
        assert dispatched == [job.job_id]
        assert job_key(job.job_id) in kv_store.keys()

        stored = await orchestrator.get_job(job.job_id)
        assert stored.status == "started"

    async def test_invalid_scope(self, orchestrator, dispatched):
        with pytest.raises(ValidationError):
            await orchestrator.start_analysis(scope="warehouse")
        assert dispatched == []

    async def test_scoped_run_requires_target(self, orchestrator):
        with pytest.raises(ValidationError):
            await orchestrator.start_analysis(scope="category")

    @pytest.mark.parametrize("scope", ["category", "supplier", "product"])
    async def test_unknown_target(self, orchestrator, seeded_db, scope):
        with pytest.raises(NotFoundError):
            await orchestrator.start_analysis(scope=scope, target_id=uuid.uuid4())

    async def test_all_scope_drops_target(self, orchestrator, seeded_db):
        job = await orchestrator.start_analysis(scope="all", target_id=uuid.uuid4())
        assert job.target_id is None

    async def test_dispatch_failure_marks_job_failed(self, session_factory, kv_store, app_settings, seeded_db):
        def broken_dispatcher(job_id):
            raise ConnectionError("broker unavailable")

        orchestrator = AnalysisOrchestrator(session_factory, kv_store, app_settings, dispatcher=broken_dispatcher)
        job = await orchestrator.start_analysis()

        assert job.status == "failed"
        assert "broker unavailable" in job.error
        assert (await orchestrator.get_job(job.job_id)).status == "failed"


class TestJobStore:
    async def test_unknown_job(self, orchestrator):
        with pytest.raises(NotFoundError):
            await orchestrator.get_job(uuid.uuid4())

    async def test_job_expires_after_ttl(self, orchestrator, clock, seeded_db):
        job = await orchestrator.start_analysis()

        clock.advance(3599)
        assert (await orchestrator.get_job(job.job_id)).job_id == job.job_id

        clock.advance(2)
        with pytest.raises(NotFoundError):
            await orchestrator.get_job(job.job_id)


# ── Execution ──────────────────────────────────────────────────────────


class TestRunAnalysis:
    async def test_completes_with_counts(self, orchestrator, session_factory, seeded_db):
        job = await orchestrator.start_analysis()
        finished = await orchestrator.run_analysis(job.job_id)

        assert finished.status == "completed"
        assert finished.running_at is not None
        assert finished.completed_at is not None
        assert finished.products_analyzed == 3
        # critical and sparse need stock; healthy does not
        assert finished.suggestions_count == 2
        assert finished.skipped_duplicates == 0
        assert finished.failed_products == 0
        assert finished.auto_approved == 0

        rows = await _suggestions(session_factory)
        assert {r.product_id for r in rows} == {seeded_db["critical"].product_id, seeded_db["sparse"].product_id}
        assert all(r.status == "pending" for r in rows)

        assert (await orchestrator.get_job(job.job_id)).status == "completed"

    async def test_product_scope(self, orchestrator, session_factory, seeded_db):
        job = await orchestrator.start_analysis(scope="product", target_id=seeded_db["critical"].product_id)
        finished = await orchestrator.run_analysis(job.job_id)

        assert finished.products_analyzed == 1
        assert finished.suggestions_count == 1

    async def test_healthy_only_scope_yields_nothing(self, orchestrator, session_factory, seeded_db):
        job = await orchestrator.start_analysis(scope="product", target_id=seeded_db["healthy"].product_id)
        finished = await orchestrator.run_analysis(job.job_id)

        assert finished.status == "completed"
        assert finished.suggestions_count == 0
        assert await _suggestions(session_factory) == []

    async def test_urgency_only_filters_products(self, orchestrator, seeded_db):
        job = await orchestrator.start_analysis(urgency_only=True)
        finished = await orchestrator.run_analysis(job.job_id)
        assert finished.products_analyzed == 2

    async def test_second_run_skips_pending_duplicates(self, orchestrator, session_factory, seeded_db):
        first = await orchestrator.start_analysis()
        await orchestrator.run_analysis(first.job_id)

        second = await orchestrator.start_analysis()
        finished = await orchestrator.run_analysis(second.job_id)

        assert finished.suggestions_count == 0
        assert finished.skipped_duplicates == 2
        assert len(await _suggestions(session_factory)) == 2

    async def test_auto_approves_eligible(self, orchestrator, session_factory, test_db, seeded_db):
        await _enable_auto_reorder(test_db)

        job = await orchestrator.start_analysis()
        finished = await orchestrator.run_analysis(job.job_id)

        # critical: $130 at 95% confidence; sparse: 50% confidence
        assert finished.auto_approved == 1

        by_product = {r.product_id: r for r in await _suggestions(session_factory)}
        assert by_product[seeded_db["critical"].product_id].status == "approved"
        assert by_product[seeded_db["sparse"].product_id].status == "pending"

        async with session_factory() as db:
            history = (await db.execute(select(ReorderHistory))).scalars().all()
        assert [h.action_taken for h in history] == ["auto_ordered"]

    async def test_per_product_failures_are_isolated(self, orchestrator, monkeypatch, seeded_db):
        original = SuggestionEngine.analyze_product
        sparse_id = seeded_db["sparse"].product_id

        async def flaky(self, product):
            if product.product_id == sparse_id:
                raise RuntimeError("forecast exploded")
            return await original(self, product)

        monkeypatch.setattr(SuggestionEngine, "analyze_product", flaky)

        job = await orchestrator.start_analysis()
        finished = await orchestrator.run_analysis(job.job_id)

        assert finished.status == "completed"
        assert finished.failed_products == 1
        assert finished.suggestions_count == 1

    async def test_run_level_failure_recorded_not_raised(self, orchestrator, monkeypatch, seeded_db):
        async def broken(self, scope="all", target_id=None, urgency_only=False):
            raise RuntimeError("database unavailable")

        monkeypatch.setattr(ProductStore, "list_for_analysis", broken)

        job = await orchestrator.start_analysis()
        finished = await orchestrator.run_analysis(job.job_id)

        assert finished.status == "failed"
        assert finished.error == "database unavailable"
        assert finished.failed_at is not None
        assert (await orchestrator.get_job(job.job_id)).status == "failed"

    async def test_run_unknown_job(self, orchestrator):
        with pytest.raises(NotFoundError):
            await orchestrator.run_analysis(uuid.uuid4())


# ── Periodic Trigger ───────────────────────────────────────────────────


class TestScheduledTrigger:
    def test_is_due(self):
        enabled = ReorderSettingsSnapshot(auto_reorder_enabled=True, analysis_frequency_hours=6)
        now = datetime(2024, 6, 1, 12, 0)

        assert is_due(enabled, None, now)
        assert is_due(enabled, now - timedelta(hours=6), now)
        assert not is_due(enabled, now - timedelta(hours=5, minutes=59), now)
        assert not is_due(ReorderSettingsSnapshot(), None, now)

    async def test_disabled_does_nothing(self, orchestrator, dispatched, seeded_db):
        assert await orchestrator.scheduled_tick() is None
        assert dispatched == []

    async def test_first_tick_starts_run_and_records_time(self, orchestrator, kv_store, dispatched, test_db, seeded_db):
        await _enable_auto_reorder(test_db)
        now = datetime(2024, 6, 1, 12, 0)

        job = await orchestrator.scheduled_tick(now)

        assert job is not None
        assert job.requested_by == "scheduler"
        assert job.scope == "all"
        assert dispatched == [job.job_id]
        assert await kv_store.get_json(LAST_SCHEDULED_RUN_KEY) == now.isoformat()

    async def test_respects_frequency(self, orchestrator, dispatched, test_db, seeded_db):
        await _enable_auto_reorder(test_db, analysis_frequency_hours=6)
        now = datetime(2024, 6, 1, 12, 0)

        assert await orchestrator.scheduled_tick(now) is not None
        assert await orchestrator.scheduled_tick(now + timedelta(hours=1)) is None
        assert await orchestrator.scheduled_tick(now + timedelta(hours=6)) is not None
        assert len(dispatched) == 2
