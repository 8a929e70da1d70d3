"""
Seed Test Data — Creates realistic demo data for development.

Creates categories, suppliers, products (a mix of healthy, low and critical
stock), ~6 months of completed orders for most products, a couple of reorder
policies, and the global reorder settings row.

Run (after `alembic upgrade head`): python scripts/seed_test_data.py
"""

import asyncio
import random
from datetime import date, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from core.config import get_settings
from db.models import Category, Order, Product, Promotion, ReorderPolicy, ReorderSettings, Supplier

settings = get_settings()

# Seed data constants
CATEGORIES = ["Office Supplies", "Electronics", "Cleaning", "Packaging", "Tech Accessories"]
SUPPLIERS = [
    ("Acme Office Wholesale", "orders@acme-office.com", 5, 92.0),
    ("Brightline Electronics", "supply@brightline.io", 14, 78.0),
    ("CleanCo Distribution", "sales@cleanco.com", 7, 65.0),
]
HISTORY_DAYS = 180


async def seed_data(seed: int = 42):
    """Create demo data for development."""
    rng = random.Random(seed)
    engine = create_async_engine(settings.database_url)
    SessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with SessionLocal() as db:
        # ── Categories ───────────────────────────────────────
        categories = [Category(name=name) for name in CATEGORIES]
        db.add_all(categories)

        # ── Suppliers ────────────────────────────────────────
        suppliers = [
            Supplier(name=name, contact_email=email, lead_time_days=lead, reliability_score=reliability)
            for name, email, lead, reliability in SUPPLIERS
        ]
        db.add_all(suppliers)
        await db.flush()

        # ── Products ─────────────────────────────────────────
        products = []
        for i in range(25):
            category = categories[i % len(categories)]
            supplier = suppliers[i % len(suppliers)]
            threshold = rng.choice([10, 20, 25, 40])
            # Every third product starts below threshold so analysis has work to do.
            stock = rng.randint(0, threshold) if i % 3 == 0 else rng.randint(threshold, threshold * 4)
            product = Product(
                sku=f"SKU-{i + 1:04d}",
                name=f"{category.name} Item #{i + 1}",
                price=round(rng.uniform(4.0, 180.0), 2),
                quantity=stock,
                low_stock_threshold=threshold,
                category_id=category.category_id,
                supplier_id=supplier.supplier_id,
            )
            db.add(product)
            products.append(product)
        await db.flush()

        # ── Completed order history ──────────────────────────
        # The last five products get almost no history and exercise the
        # synthetic-demand path.
        now = datetime.utcnow()
        order_count = 0
        for idx, product in enumerate(products):
            days_with_orders = 3 if idx >= len(products) - 5 else rng.randint(40, 120)
            base_qty = rng.randint(1, 12)
            for offset in rng.sample(range(HISTORY_DAYS), days_with_orders):
                created_at = now - timedelta(days=offset, hours=rng.randint(0, 23))
                seasonal = 1.4 if created_at.month in (11, 12) else 1.0
                db.add(
                    Order(
                        product_id=product.product_id,
                        supplier_id=product.supplier_id,
                        quantity=max(1, round(base_qty * seasonal * rng.uniform(0.6, 1.4))),
                        status="completed",
                        created_at=created_at,
                    )
                )
                order_count += 1

        # ── Policies ─────────────────────────────────────────
        db.add(ReorderPolicy(min_stock_multiplier=1.5, safety_stock_days=7, review_frequency_days=7, created_by="seed"))
        db.add(
            ReorderPolicy(
                category_id=categories[1].category_id,
                min_stock_multiplier=2.0,
                safety_stock_days=14,
                review_frequency_days=5,
                max_order_quantity=200,
                created_by="seed",
            )
        )
        db.add(
            ReorderPolicy(
                supplier_id=suppliers[0].supplier_id,
                min_stock_multiplier=1.2,
                preferred_order_quantity=50,
                auto_approve_threshold=500.0,
                created_by="seed",
            )
        )

        # ── Promotions ───────────────────────────────────────
        today = date.today()
        db.add(
            Promotion(
                product_id=products[0].product_id,
                name="Back to school",
                start_date=today + timedelta(days=3),
                end_date=today + timedelta(days=17),
            )
        )

        # ── Settings ─────────────────────────────────────────
        db.add(
            ReorderSettings(
                id="global",
                auto_reorder_enabled=False,
                analysis_frequency_hours=24,
                default_confidence_threshold=70.0,
                max_auto_approve_amount=1000.0,
                notification_emails=["purchasing@example.com"],
                updated_by="seed",
            )
        )

        await db.commit()

    await engine.dispose()
    print(
        f"Seeded {len(categories)} categories, {len(suppliers)} suppliers, "
        f"{len(products)} products, {order_count} orders"
    )


if __name__ == "__main__":
    asyncio.run(seed_data())
