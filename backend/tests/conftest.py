"""
Test Configuration — Fixtures for async DB, job store, test client, and seed data.

Each test gets its own temporary SQLite database file so that code paths
opening several sessions (the analysis orchestrator, workers) see the same
committed data without sharing state across tests.
"""

import time
import uuid
from datetime import datetime, timedelta

import numpy as np
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from api.deps import (
    get_app_settings,
    get_current_user,
    get_db,
    get_dispatcher,
    get_kv_store,
    get_session_factory,
)
from api.main import app
from core.config import Settings
from db.session import Base


class InMemoryKeyValueStore:
    """Dict-backed stand-in for the Redis job store, with TTL expiry."""

    def __init__(self, clock=time.monotonic):
        self.clock = clock
        self._data: dict[str, tuple[object, float | None]] = {}
        self.writes: list[str] = []

    async def get_json(self, key):
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self.clock() >= expires_at:
            del self._data[key]
            return None
        return value

    async def set_json(self, key, value, ttl_seconds=None):
        expires_at = self.clock() + ttl_seconds if ttl_seconds else None
        self._data[key] = (value, expires_at)
        self.writes.append(key)

    async def delete(self, key):
        self._data.pop(key, None)

    async def close(self):
        return None

    def keys(self):
        return list(self._data)


class FakeClock:
    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'reorder.db'}"


@pytest.fixture
async def test_engine(db_url):
    """Fresh database with all tables for one test."""
    engine = create_async_engine(db_url, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def test_db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def kv_store(clock):
    return InMemoryKeyValueStore(clock=clock)


@pytest.fixture
def app_settings(db_url):
    return Settings(app_env="test", database_url=db_url, analysis_concurrency=4)


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def dispatched():
    """Job ids handed to the dispatcher."""
    return []


@pytest.fixture
def mock_user():
    """Mock authenticated user."""
    return {"sub": "auth0|test-user-id", "email": "planner@example.com"}


@pytest.fixture
async def client(test_db, session_factory, kv_store, app_settings, dispatched, mock_user):
    """Create an async test client with dependency overrides."""

    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = lambda: mock_user
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_kv_store] = lambda: kv_store
    app.dependency_overrides[get_app_settings] = lambda: app_settings
    app.dependency_overrides[get_dispatcher] = lambda: dispatched.append

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
async def seeded_db(test_db):
    """
    Seed the test DB with a small catalog:

      critical  stock 5 / threshold 20, $10, 10 completed orders of 6 units
      healthy   stock 100 / threshold 20, $25, 10 completed orders of 4 units
      sparse    stock 8 / threshold 10, $150, 2 completed orders (synthetic demand)
    """
    from db.models import Category, Order, Product, Supplier

    category = Category(name="Office Supplies")
    other_category = Category(name="Electronics")
    supplier = Supplier(
        name="Acme Wholesale",
        contact_email="orders@acme.example",
        lead_time_days=15,
        reliability_score=80.0,
    )
    other_supplier = Supplier(name="Backup Supply", lead_time_days=10, reliability_score=60.0)
    test_db.add_all([category, other_category, supplier, other_supplier])
    await test_db.flush()

    critical = Product(
        sku="SKU-CRIT",
        name="Copy Paper A4",
        price=10.0,
        quantity=5,
        low_stock_threshold=20,
        category_id=category.category_id,
        supplier_id=supplier.supplier_id,
    )
    healthy = Product(
        sku="SKU-OK",
        name="Stapler",
        price=25.0,
        quantity=100,
        low_stock_threshold=20,
        category_id=category.category_id,
        supplier_id=supplier.supplier_id,
    )
    sparse = Product(
        sku="SKU-SPARSE",
        name="USB Hub",
        price=150.0,
        quantity=8,
        low_stock_threshold=10,
        category_id=other_category.category_id,
        supplier_id=other_supplier.supplier_id,
    )
    test_db.add_all([critical, healthy, sparse])
    await test_db.flush()

    now = datetime.utcnow()
    for day in range(1, 11):
        test_db.add(
            Order(
                product_id=critical.product_id,
                supplier_id=supplier.supplier_id,
                quantity=6,
                status="completed",
                created_at=now - timedelta(days=day * 3),
            )
        )
        test_db.add(
            Order(
                product_id=healthy.product_id,
                supplier_id=supplier.supplier_id,
                quantity=4,
                status="completed",
                created_at=now - timedelta(days=day * 2),
            )
        )
    for day in (5, 40):
        test_db.add(
            Order(
                product_id=sparse.product_id,
                supplier_id=other_supplier.supplier_id,
                quantity=3,
                status="completed",
                created_at=now - timedelta(days=day),
            )
        )
    # Non-completed orders never count as demand.
    test_db.add(Order(product_id=critical.product_id, quantity=500, status="cancelled", created_at=now))

    await test_db.commit()

    return {
        "category": category,
        "other_category": other_category,
        "supplier": supplier,
        "other_supplier": other_supplier,
        "critical": critical,
        "healthy": healthy,
        "sparse": sparse,
    }


@pytest.fixture
def make_suggestion():
    """Factory for pending suggestion rows with sensible defaults."""
    from db.models import ReorderSuggestion

    def _make(product, **overrides):
        now = datetime.utcnow()
        values = dict(
            suggestion_id=uuid.uuid4(),
            product_id=product.product_id,
            supplier_id=product.supplier_id,
            suggested_quantity=13,
            estimated_cost=130.0,
            urgency="critical",
            confidence_score=90.0,
            reason="Critical stock level",
            lead_time_days=15,
            status="pending",
            policy_scope="default",
            demand_source="observed",
            auto_approve_eligible=False,
            created_at=now,
            updated_at=now,
            expires_at=now + timedelta(days=7),
        )
        values.update(overrides)
        return ReorderSuggestion(**values)

    return _make
