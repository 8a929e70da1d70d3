"""
Read-side stores the reorder engine consumes.

  - ProductStore       current stock, threshold, price, category, supplier lead time
  - OrderHistoryStore  completed-order records for demand estimation

Both wrap an AsyncSession and return plain snapshots, so forecasting and
suggestion code never touches ORM instances that may expire mid-analysis.
"""

import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import Category, Order, Product, Promotion, Supplier

DEFAULT_LEAD_TIME_DAYS = 7
DEFAULT_RELIABILITY_SCORE = 50.0
COMPLETED = "completed"


@dataclass(frozen=True)
class ProductSnapshot:
    product_id: uuid.UUID
    sku: str
    name: str
    quantity: int
    low_stock_threshold: int
    price: float
    category_id: uuid.UUID | None = None
    category_name: str | None = None
    supplier_id: uuid.UUID | None = None
    supplier_name: str | None = None
    lead_time_days: int = DEFAULT_LEAD_TIME_DAYS
    reliability_score: float = DEFAULT_RELIABILITY_SCORE

    @property
    def stock_ratio(self) -> float:
        return self.quantity / self.low_stock_threshold


@dataclass(frozen=True)
class OrderStats:
    """Completed-order aggregate over a lookback window."""

    order_count: int
    avg_quantity: float | None


def _snapshot_query():
    return (
        select(
            Product,
            Category.name.label("category_name"),
            Supplier.name.label("supplier_name"),
            Supplier.lead_time_days,
            Supplier.reliability_score,
        )
        .outerjoin(Category, Product.category_id == Category.category_id)
        .outerjoin(Supplier, Product.supplier_id == Supplier.supplier_id)
    )


def _to_snapshot(row) -> ProductSnapshot:
    product, category_name, supplier_name, lead_time, reliability = row
    return ProductSnapshot(
        product_id=product.product_id,
        sku=product.sku,
        name=product.name,
        quantity=product.quantity,
        low_stock_threshold=product.low_stock_threshold,
        price=float(product.price or 0.0),
        category_id=product.category_id,
        category_name=category_name,
        supplier_id=product.supplier_id,
        supplier_name=supplier_name,
        lead_time_days=lead_time or DEFAULT_LEAD_TIME_DAYS,
        reliability_score=float(reliability) if reliability is not None else DEFAULT_RELIABILITY_SCORE,
    )


class ProductStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, product_id: uuid.UUID) -> ProductSnapshot | None:
        result = await self.db.execute(_snapshot_query().where(Product.product_id == product_id))
        row = result.one_or_none()
        return _to_snapshot(row) if row is not None else None

    async def list_for_analysis(
        self,
        scope: str = "all",
        target_id: uuid.UUID | None = None,
        urgency_only: bool = False,
    ) -> list[ProductSnapshot]:
        """Products in scope, lowest stock ratio first."""
        query = _snapshot_query()
        if scope == "category":
            query = query.where(Product.category_id == target_id)
        elif scope == "supplier":
            query = query.where(Product.supplier_id == target_id)
        elif scope == "product":
            query = query.where(Product.product_id == target_id)

        if urgency_only:
            query = query.where(Product.quantity <= Product.low_stock_threshold * 1.2)

        query = query.order_by((Product.quantity * 1.0) / Product.low_stock_threshold)
        result = await self.db.execute(query)
        return [_to_snapshot(row) for row in result.all()]

    async def exists(self, model, target_id: uuid.UUID) -> bool:
        return await self.db.get(model, target_id) is not None


class OrderHistoryStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def daily_totals(self, product_id: uuid.UUID, since: datetime) -> dict[date, float]:
        """Completed-order quantity per calendar day since ``since``."""
        result = await self.db.execute(
            select(Order.created_at, Order.quantity).where(
                Order.product_id == product_id,
                Order.status == COMPLETED,
                Order.created_at >= since,
            )
        )
        totals: dict[date, float] = {}
        for created_at, quantity in result.all():
            day = created_at.date()
            totals[day] = totals.get(day, 0.0) + float(quantity)
        return totals

    async def order_stats(self, product_id: uuid.UUID, since: datetime) -> OrderStats:
        result = await self.db.execute(
            select(func.count(Order.order_id), func.avg(Order.quantity)).where(
                Order.product_id == product_id,
                Order.status == COMPLETED,
                Order.created_at >= since,
            )
        )
        count, avg_quantity = result.one()
        return OrderStats(
            order_count=int(count or 0),
            avg_quantity=float(avg_quantity) if avg_quantity is not None else None,
        )

    async def mean_quantity_between(self, product_id: uuid.UUID, start: datetime, end: datetime) -> float | None:
        """Mean completed-order quantity in [start, end); None when the window is empty."""
        result = await self.db.execute(
            select(func.avg(Order.quantity)).where(
                Order.product_id == product_id,
                Order.status == COMPLETED,
                Order.created_at >= start,
                Order.created_at < end,
            )
        )
        value = result.scalar_one_or_none()
        return float(value) if value is not None else None

    async def has_active_promotion(
        self,
        product_id: uuid.UUID,
        supplier_id: uuid.UUID | None,
        start: date,
        horizon_days: int,
    ) -> bool:
        """Active promotion for the product (or its supplier) overlapping the horizon."""
        end = start + timedelta(days=horizon_days)
        owner = Promotion.product_id == product_id
        if supplier_id is not None:
            owner = owner | (Promotion.supplier_id == supplier_id)
        result = await self.db.execute(
            select(func.count(Promotion.promotion_id)).where(
                owner,
                Promotion.is_active.is_(True),
                Promotion.start_date <= end,
                Promotion.end_date >= start,
            )
        )
        return (result.scalar_one() or 0) > 0
