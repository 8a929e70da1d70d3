"""
Tests for the Reorder API endpoints.

Covers:
  - Analysis trigger (202) and job polling
  - Suggestion listing and actions, including 409 on repeat actions
  - Forecast endpoint
  - Policy and settings endpoints
  - Error mapping (422 / 404 / 409) and auth
"""

import uuid

import pytest

from api.deps import get_current_user
from api.main import app

BASE = "/api/v1/reorder"


@pytest.fixture
async def pending(test_db, seeded_db, make_suggestion):
    suggestion = make_suggestion(seeded_db["critical"])
    test_db.add(suggestion)
    await test_db.commit()
    return suggestion


# ── Analysis ───────────────────────────────────────────────────────────


class TestAnalysisEndpoints:
    async def test_analyze_returns_202_and_dispatches(self, client, dispatched, seeded_db):
        resp = await client.post(f"{BASE}/analyze", json={"scope": "all"})

        assert resp.status_code == 202
        data = resp.json()
        assert data["status"] == "started"
        assert "estimated_completion" in data
        assert dispatched == [uuid.UUID(data["job_id"])]

    async def test_job_polling(self, client, seeded_db):
        job_id = (await client.post(f"{BASE}/analyze", json={})).json()["job_id"]

        resp = await client.get(f"{BASE}/jobs/{job_id}")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "started"
        assert data["requested_by"] == "auth0|test-user-id"

    async def test_invalid_scope_is_422(self, client, dispatched):
        resp = await client.post(f"{BASE}/analyze", json={"scope": "galaxy"})
        assert resp.status_code == 422
        assert resp.json()["code"] == "validation_error"
        assert dispatched == []

    async def test_unknown_target_is_404(self, client, seeded_db):
        resp = await client.post(f"{BASE}/analyze", json={"scope": "supplier", "target_id": str(uuid.uuid4())})
        assert resp.status_code == 404
        assert resp.json()["code"] == "not_found"

    async def test_unknown_job_is_404(self, client):
        resp = await client.get(f"{BASE}/jobs/{uuid.uuid4()}")
        assert resp.status_code == 404


# ── Suggestions ────────────────────────────────────────────────────────


class TestSuggestionEndpoints:
    async def test_list(self, client, pending):
        resp = await client.get(f"{BASE}/suggestions")

        assert resp.status_code == 200
        data = resp.json()
        assert data["summary"]["total"] == 1
        assert data["summary"]["critical"] == 1
        item = data["suggestions"][0]
        assert item["suggestion_id"] == str(pending.suggestion_id)
        assert item["sku"] == "SKU-CRIT"
        assert item["supplier_name"] == "Acme Wholesale"
        assert item["current_stock"] == 5

    async def test_list_rejects_bad_filters(self, client):
        assert (await client.get(f"{BASE}/suggestions", params={"urgency": "extreme"})).status_code == 422
        assert (await client.get(f"{BASE}/suggestions", params={"min_confidence": 101})).status_code == 422

    async def test_approve_then_conflict(self, client, pending):
        # the conflict rolls back the shared session and expires `pending`
        suggestion_id = pending.suggestion_id
        url = f"{BASE}/suggestions/{suggestion_id}/action"

        first = await client.post(url, json={"action": "approve", "reason": "ok"})
        assert first.status_code == 200
        body = first.json()
        assert body["success"] is True
        assert body["updated_suggestion"]["status"] == "approved"

        second = await client.post(url, json={"action": "reject"})
        assert second.status_code == 409
        assert second.json()["code"] == "conflict"

        history = await client.get(f"{BASE}/suggestions/{suggestion_id}/history")
        assert history.status_code == 200
        rows = history.json()
        assert len(rows) == 1
        assert rows[0]["action_taken"] == "approved"
        assert rows[0]["user_id"] == "auth0|test-user-id"

    async def test_modify(self, client, pending):
        resp = await client.post(
            f"{BASE}/suggestions/{pending.suggestion_id}/action",
            json={"action": "modify", "modifications": {"quantity": 30}},
        )
        assert resp.status_code == 200
        assert resp.json()["updated_suggestion"]["suggested_quantity"] == 30

    async def test_unknown_action_is_422(self, client, pending):
        resp = await client.post(f"{BASE}/suggestions/{pending.suggestion_id}/action", json={"action": "order"})
        assert resp.status_code == 422

    async def test_unknown_suggestion_is_404(self, client, seeded_db):
        resp = await client.post(f"{BASE}/suggestions/{uuid.uuid4()}/action", json={"action": "approve"})
        assert resp.status_code == 404

        resp = await client.get(f"{BASE}/suggestions/{uuid.uuid4()}/history")
        assert resp.status_code == 404


# ── Forecasts ──────────────────────────────────────────────────────────


class TestForecastEndpoint:
    async def test_forecast(self, client, seeded_db):
        product_id = seeded_db["critical"].product_id
        resp = await client.get(
            f"{BASE}/forecast/{product_id}",
            params={"horizon": 14, "include_confidence_intervals": "true"},
        )

        assert resp.status_code == 200
        data = resp.json()
        assert data["horizon"] == 14
        assert len(data["forecasted_demand"]) == 14
        assert len(data["confidence_intervals"]["lower"]) == 14
        assert data["metadata"]["demand_source"] == "observed"

    async def test_unknown_product_is_404(self, client, seeded_db):
        resp = await client.get(f"{BASE}/forecast/{uuid.uuid4()}")
        assert resp.status_code == 404

    @pytest.mark.parametrize("horizon", [0, 366])
    async def test_horizon_out_of_range_is_422(self, client, seeded_db, horizon):
        resp = await client.get(f"{BASE}/forecast/{seeded_db['critical'].product_id}", params={"horizon": horizon})
        assert resp.status_code == 422


# ── Policies & Settings ────────────────────────────────────────────────


class TestPolicyEndpoints:
    async def test_create_list_update(self, client, seeded_db):
        created = await client.post(
            f"{BASE}/policies",
            json={"supplier_id": str(seeded_db["supplier"].supplier_id), "min_stock_multiplier": 2.0},
        )
        assert created.status_code == 201
        policy = created.json()
        assert policy["scope"] == "supplier"
        assert policy["created_by"] == "auth0|test-user-id"

        listed = await client.get(f"{BASE}/policies")
        assert [p["policy_id"] for p in listed.json()] == [policy["policy_id"]]

        patched = await client.patch(f"{BASE}/policies/{policy['policy_id']}", json={"is_active": False})
        assert patched.status_code == 200
        assert patched.json()["is_active"] is False

        assert (await client.get(f"{BASE}/policies")).json() == []
        assert len((await client.get(f"{BASE}/policies", params={"include_inactive": "true"})).json()) == 1

    async def test_multi_scope_policy_is_422(self, client, seeded_db):
        resp = await client.post(
            f"{BASE}/policies",
            json={
                "product_id": str(seeded_db["critical"].product_id),
                "category_id": str(seeded_db["category"].category_id),
            },
        )
        assert resp.status_code == 422

    async def test_empty_patch_is_422(self, client, seeded_db):
        policy_id = (await client.post(f"{BASE}/policies", json={})).json()["policy_id"]
        resp = await client.patch(f"{BASE}/policies/{policy_id}", json={})
        assert resp.status_code == 422

    async def test_patch_unknown_is_404(self, client):
        resp = await client.patch(f"{BASE}/policies/{uuid.uuid4()}", json={"safety_stock_days": 5})
        assert resp.status_code == 404


class TestSettingsEndpoints:
    async def test_defaults_then_update(self, client):
        defaults = await client.get(f"{BASE}/settings")
        assert defaults.status_code == 200
        assert defaults.json()["auto_reorder_enabled"] is False

        updated = await client.put(
            f"{BASE}/settings",
            json={"auto_reorder_enabled": True, "max_auto_approve_amount": 500},
        )
        assert updated.status_code == 200
        body = updated.json()
        assert body["auto_reorder_enabled"] is True
        assert body["max_auto_approve_amount"] == 500
        assert body["updated_by"] == "auth0|test-user-id"

    async def test_out_of_range_is_422(self, client):
        resp = await client.put(f"{BASE}/settings", json={"default_confidence_threshold": 150})
        assert resp.status_code == 422


# ── Health & Auth ──────────────────────────────────────────────────────


class TestHealthAndAuth:
    async def test_app_health(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"

    async def test_reorder_health(self, client):
        resp = await client.get(f"{BASE}/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "healthy", "checks": {"database": "ok", "job_store": "ok"}}

    async def test_invalid_token_is_401(self, client):
        app.dependency_overrides.pop(get_current_user)
        resp = await client.get(f"{BASE}/suggestions", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401
