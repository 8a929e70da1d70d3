"""
Initial schema - catalog and reorder engine tables

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # Primary keys are generated by the application (uuid4).

    # 1. Categories
    op.create_table(
        "categories",
        sa.Column("category_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False, unique=True),
        sa.Column("description", sa.Text),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )

    # 2. Suppliers
    op.create_table(
        "suppliers",
        sa.Column("supplier_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("contact_email", sa.String(255)),
        sa.Column("lead_time_days", sa.Integer, nullable=False, server_default="7"),
        sa.Column("reliability_score", sa.Float, nullable=False, server_default="80"),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("lead_time_days > 0", name="ck_supplier_lead_time_positive"),
        sa.CheckConstraint("reliability_score >= 0 AND reliability_score <= 100", name="ck_supplier_reliability_range"),
    )

    # 3. Products
    op.create_table(
        "products",
        sa.Column("product_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("sku", sa.String(100), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text),
        sa.Column("price", sa.Float, nullable=False, server_default="0"),
        sa.Column("quantity", sa.Integer, nullable=False, server_default="0"),
        sa.Column("low_stock_threshold", sa.Integer, nullable=False, server_default="10"),
        sa.Column("category_id", UUID(as_uuid=True), sa.ForeignKey("categories.category_id"), nullable=True),
        sa.Column("supplier_id", UUID(as_uuid=True), sa.ForeignKey("suppliers.supplier_id"), nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("price >= 0", name="ck_product_price_positive"),
        sa.CheckConstraint("quantity >= 0", name="ck_product_quantity_positive"),
        sa.CheckConstraint("low_stock_threshold > 0", name="ck_product_threshold_positive"),
    )
    op.create_index("ix_products_category", "products", ["category_id"])
    op.create_index("ix_products_supplier", "products", ["supplier_id"])

    # 4. Orders
    op.create_table(
        "orders",
        sa.Column("order_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("product_id", UUID(as_uuid=True), sa.ForeignKey("products.product_id"), nullable=False),
        sa.Column("supplier_id", UUID(as_uuid=True), sa.ForeignKey("suppliers.supplier_id"), nullable=True),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("quantity > 0", name="ck_order_quantity_positive"),
        sa.CheckConstraint("status IN ('pending', 'processing', 'completed', 'cancelled')", name="ck_order_status"),
    )
    op.create_index("ix_orders_product_status_created", "orders", ["product_id", "status", "created_at"])

    # 5. Promotions
    op.create_table(
        "promotions",
        sa.Column("promotion_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("product_id", UUID(as_uuid=True), sa.ForeignKey("products.product_id"), nullable=True),
        sa.Column("supplier_id", UUID(as_uuid=True), sa.ForeignKey("suppliers.supplier_id"), nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("start_date", sa.Date, nullable=False),
        sa.Column("end_date", sa.Date, nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("end_date >= start_date", name="ck_promo_dates_valid"),
    )
    op.create_index("ix_promotions_product_dates", "promotions", ["product_id", "start_date", "end_date"])

    # 6. Reorder Policies
    op.create_table(
        "reorder_policies",
        sa.Column("policy_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("product_id", UUID(as_uuid=True), sa.ForeignKey("products.product_id"), nullable=True),
        sa.Column("category_id", UUID(as_uuid=True), sa.ForeignKey("categories.category_id"), nullable=True),
        sa.Column("supplier_id", UUID(as_uuid=True), sa.ForeignKey("suppliers.supplier_id"), nullable=True),
        sa.Column("min_stock_multiplier", sa.Float, nullable=False, server_default="1.5"),
        sa.Column("max_order_quantity", sa.Integer),
        sa.Column("preferred_order_quantity", sa.Integer),
        sa.Column("safety_stock_days", sa.Integer, nullable=False, server_default="7"),
        sa.Column("review_frequency_days", sa.Integer, nullable=False, server_default="7"),
        sa.Column("auto_approve_threshold", sa.Float),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_by", sa.String(255)),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "(CASE WHEN product_id IS NULL THEN 0 ELSE 1 END"
            " + CASE WHEN category_id IS NULL THEN 0 ELSE 1 END"
            " + CASE WHEN supplier_id IS NULL THEN 0 ELSE 1 END) <= 1",
            name="ck_policy_single_scope",
        ),
        sa.CheckConstraint("min_stock_multiplier > 0", name="ck_policy_multiplier_positive"),
        sa.CheckConstraint("safety_stock_days > 0", name="ck_policy_safety_days_positive"),
        sa.CheckConstraint("review_frequency_days > 0", name="ck_policy_review_days_positive"),
    )
    op.create_index("ix_reorder_policies_product", "reorder_policies", ["product_id", "is_active"])
    op.create_index("ix_reorder_policies_category", "reorder_policies", ["category_id", "is_active"])
    op.create_index("ix_reorder_policies_supplier", "reorder_policies", ["supplier_id", "is_active"])

    # 7. Reorder Suggestions
    op.create_table(
        "reorder_suggestions",
        sa.Column("suggestion_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("product_id", UUID(as_uuid=True), sa.ForeignKey("products.product_id"), nullable=False),
        sa.Column("supplier_id", UUID(as_uuid=True), sa.ForeignKey("suppliers.supplier_id"), nullable=True),
        sa.Column("suggested_quantity", sa.Integer, nullable=False),
        sa.Column("estimated_cost", sa.Float, nullable=False, server_default="0"),
        sa.Column("urgency", sa.String(10), nullable=False),
        sa.Column("confidence_score", sa.Float, nullable=False),
        sa.Column("reason", sa.Text, nullable=False),
        sa.Column("lead_time_days", sa.Integer, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("policy_scope", sa.String(20), nullable=False, server_default="default"),
        sa.Column("demand_source", sa.String(20), nullable=False, server_default="observed"),
        sa.Column("auto_approve_eligible", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_by_ai", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("ai_model_version", sa.String(20), nullable=False, server_default="1.0.0"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("expires_at", sa.DateTime, nullable=False),
        sa.CheckConstraint("suggested_quantity > 0", name="ck_suggestion_quantity_positive"),
        sa.CheckConstraint("confidence_score >= 0 AND confidence_score <= 100", name="ck_suggestion_confidence_range"),
        sa.CheckConstraint("urgency IN ('critical', 'high', 'medium', 'low')", name="ck_suggestion_urgency"),
        sa.CheckConstraint("status IN ('pending', 'approved', 'rejected', 'ordered')", name="ck_suggestion_status"),
    )
    op.create_index("ix_suggestions_status_expires", "reorder_suggestions", ["status", "expires_at"])
    op.create_index("ix_suggestions_product_status", "reorder_suggestions", ["product_id", "status"])

    # 8. Reorder History (append-only)
    op.create_table(
        "reorder_history",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "suggestion_id",
            UUID(as_uuid=True),
            sa.ForeignKey("reorder_suggestions.suggestion_id"),
            nullable=False,
        ),
        sa.Column("product_id", UUID(as_uuid=True), sa.ForeignKey("products.product_id"), nullable=False),
        sa.Column("action_taken", sa.String(20), nullable=False),
        sa.Column("suggested_quantity", sa.Integer, nullable=False),
        sa.Column("actual_quantity_ordered", sa.Integer, nullable=False),
        sa.Column("suggested_cost", sa.Float, nullable=False),
        sa.Column("actual_cost", sa.Float, nullable=False),
        sa.Column("action_reason", sa.Text),
        sa.Column("user_id", sa.String(255)),
        sa.Column("accuracy_score", sa.Float),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "action_taken IN ('approved', 'rejected', 'modified', 'auto_ordered')",
            name="ck_history_action",
        ),
        sa.CheckConstraint(
            "accuracy_score IS NULL OR (accuracy_score >= 0 AND accuracy_score <= 100)",
            name="ck_history_accuracy_range",
        ),
    )
    op.create_index("ix_reorder_history_suggestion", "reorder_history", ["suggestion_id"])
    op.create_index("ix_reorder_history_product_created", "reorder_history", ["product_id", "created_at"])

    # 9. Demand Patterns
    op.create_table(
        "demand_patterns",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("product_id", UUID(as_uuid=True), sa.ForeignKey("products.product_id"), nullable=False),
        sa.Column("period_start", sa.Date, nullable=False),
        sa.Column("period_end", sa.Date, nullable=False),
        sa.Column("avg_daily_demand", sa.Float, nullable=False),
        sa.Column("peak_demand", sa.Float, nullable=False),
        sa.Column("demand_variance", sa.Float, nullable=False),
        sa.Column("observation_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("seasonality_factor", sa.Float, nullable=False, server_default="1"),
        sa.Column("trend_factor", sa.Float, nullable=False, server_default="0"),
        sa.Column("calculated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("product_id", "period_start", "period_end", name="uq_demand_pattern_period"),
    )
    op.create_index("ix_demand_patterns_product", "demand_patterns", ["product_id"])

    # 10. Reorder Settings (singleton, id='global')
    op.create_table(
        "reorder_settings",
        sa.Column("id", sa.String(20), primary_key=True, server_default="global"),
        sa.Column("auto_reorder_enabled", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("analysis_frequency_hours", sa.Integer, nullable=False, server_default="24"),
        sa.Column("default_confidence_threshold", sa.Float, nullable=False, server_default="70"),
        sa.Column("max_auto_approve_amount", sa.Float, nullable=False, server_default="1000"),
        sa.Column("notification_emails", sa.JSON, nullable=False, server_default="[]"),
        sa.Column("updated_by", sa.String(255)),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("analysis_frequency_hours > 0", name="ck_settings_frequency_positive"),
        sa.CheckConstraint(
            "default_confidence_threshold >= 0 AND default_confidence_threshold <= 100",
            name="ck_settings_confidence_range",
        ),
        sa.CheckConstraint("max_auto_approve_amount >= 0", name="ck_settings_auto_approve_positive"),
    )


def downgrade() -> None:
    tables = [
        "reorder_settings",
        "demand_patterns",
        "reorder_history",
        "reorder_suggestions",
        "reorder_policies",
        "promotions",
        "orders",
        "products",
        "suppliers",
        "categories",
    ]
    for table in tables:
        op.drop_table(table)
