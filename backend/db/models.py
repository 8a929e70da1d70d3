"""
Reorder Engine Database Models

10 tables for the inventory reorder and demand-forecasting engine.

Tables:
  Catalog (1-5, owned by the CRUD API; read-only for the engine):
  1. categories          - Product categories
  2. suppliers           - Suppliers (+ lead time, reliability score 0-100)
  3. products            - Product catalog with current stock + low-stock threshold
  4. orders              - Customer/purchase orders; 'completed' rows drive demand
  5. promotions          - Supplier-provided promotions affecting demand

  Reorder Engine (6-10):
  6. reorder_policies    - Hierarchical reorder rules (product/supplier/category/global)
  7. reorder_suggestions - AI-generated reorder suggestions awaiting action
  8. reorder_history     - Append-only audit of actions taken on suggestions
  9. demand_patterns     - Monthly demand aggregates per product
  10. reorder_settings   - Singleton engine settings (id='global')
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    types,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else str(uuid.UUID(str(value)))

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


from sqlalchemy.orm import relationship

from db.session import Base


# ─── 1. Categories ─────────────────────────────────────────────────────────


class Category(Base):
    __tablename__ = "categories"

    category_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False, unique=True)
    description = Column(Text)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    products = relationship("Product", back_populates="category")


# ─── 2. Suppliers ──────────────────────────────────────────────────────────


class Supplier(Base):
    __tablename__ = "suppliers"

    supplier_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    contact_email = Column(String(255))
    lead_time_days = Column(Integer, nullable=False, default=7)
    reliability_score = Column(Float, nullable=False, default=80.0)  # 0-100 on-time score
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("lead_time_days > 0", name="ck_supplier_lead_time_positive"),
        CheckConstraint("reliability_score >= 0 AND reliability_score <= 100", name="ck_supplier_reliability_range"),
    )

    products = relationship("Product", back_populates="supplier")


# ─── 3. Products ───────────────────────────────────────────────────────────


class Product(Base):
    __tablename__ = "products"

    product_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    sku = Column(String(100), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    price = Column(Float, nullable=False, default=0.0)
    quantity = Column(Integer, nullable=False, default=0)  # current stock on hand
    low_stock_threshold = Column(Integer, nullable=False, default=10)
    category_id = Column(GUID(), ForeignKey("categories.category_id"), nullable=True)
    supplier_id = Column(GUID(), ForeignKey("suppliers.supplier_id"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_products_category", "category_id"),
        Index("ix_products_supplier", "supplier_id"),
        CheckConstraint("price >= 0", name="ck_product_price_positive"),
        CheckConstraint("quantity >= 0", name="ck_product_quantity_positive"),
        CheckConstraint("low_stock_threshold > 0", name="ck_product_threshold_positive"),
    )

    category = relationship("Category", back_populates="products")
    supplier = relationship("Supplier", back_populates="products")


# ─── 4. Orders ─────────────────────────────────────────────────────────────


class Order(Base):
    __tablename__ = "orders"

    order_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    product_id = Column(GUID(), ForeignKey("products.product_id"), nullable=False)
    supplier_id = Column(GUID(), ForeignKey("suppliers.supplier_id"), nullable=True)
    quantity = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_orders_product_status_created", "product_id", "status", "created_at"),
        CheckConstraint("quantity > 0", name="ck_order_quantity_positive"),
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'cancelled')",
            name="ck_order_status",
        ),
    )


# ─── 5. Promotions ─────────────────────────────────────────────────────────


class Promotion(Base):
    __tablename__ = "promotions"

    promotion_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    product_id = Column(GUID(), ForeignKey("products.product_id"), nullable=True)
    supplier_id = Column(GUID(), ForeignKey("suppliers.supplier_id"), nullable=True)
    name = Column(String(255), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_promotions_product_dates", "product_id", "start_date", "end_date"),
        CheckConstraint("end_date >= start_date", name="ck_promo_dates_valid"),
    )


# ═══════════════════════════════════════════════════════════════════════════
# Reorder Engine Models (6-10)
# ═══════════════════════════════════════════════════════════════════════════


# ─── 6. Reorder Policies ──────────────────────────────────────────────────


class ReorderPolicy(Base):
    """Reorder rule at one scope level.

    At most one of product_id / category_id / supplier_id is set; none set
    means a global policy. Policies are soft-disabled with is_active.
    """

    __tablename__ = "reorder_policies"

    policy_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    product_id = Column(GUID(), ForeignKey("products.product_id"), nullable=True)
    category_id = Column(GUID(), ForeignKey("categories.category_id"), nullable=True)
    supplier_id = Column(GUID(), ForeignKey("suppliers.supplier_id"), nullable=True)
    min_stock_multiplier = Column(Float, nullable=False, default=1.5)
    max_order_quantity = Column(Integer)
    preferred_order_quantity = Column(Integer)
    safety_stock_days = Column(Integer, nullable=False, default=7)
    review_frequency_days = Column(Integer, nullable=False, default=7)
    auto_approve_threshold = Column(Float)
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(String(255))
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_reorder_policies_product", "product_id", "is_active"),
        Index("ix_reorder_policies_category", "category_id", "is_active"),
        Index("ix_reorder_policies_supplier", "supplier_id", "is_active"),
        CheckConstraint(
            "(CASE WHEN product_id IS NULL THEN 0 ELSE 1 END"
            " + CASE WHEN category_id IS NULL THEN 0 ELSE 1 END"
            " + CASE WHEN supplier_id IS NULL THEN 0 ELSE 1 END) <= 1",
            name="ck_policy_single_scope",
        ),
        CheckConstraint("min_stock_multiplier > 0", name="ck_policy_multiplier_positive"),
        CheckConstraint("safety_stock_days > 0", name="ck_policy_safety_days_positive"),
        CheckConstraint("review_frequency_days > 0", name="ck_policy_review_days_positive"),
    )

    @property
    def scope(self) -> str:
        if self.product_id is not None:
            return "product"
        if self.supplier_id is not None:
            return "supplier"
        if self.category_id is not None:
            return "category"
        return "global"


# ─── 7. Reorder Suggestions ───────────────────────────────────────────────


class ReorderSuggestion(Base):
    __tablename__ = "reorder_suggestions"

    suggestion_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    product_id = Column(GUID(), ForeignKey("products.product_id"), nullable=False)
    supplier_id = Column(GUID(), ForeignKey("suppliers.supplier_id"), nullable=True)
    suggested_quantity = Column(Integer, nullable=False)
    estimated_cost = Column(Float, nullable=False, default=0.0)
    urgency = Column(String(10), nullable=False)
    confidence_score = Column(Float, nullable=False)
    reason = Column(Text, nullable=False)
    lead_time_days = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    policy_scope = Column(String(20), nullable=False, default="default")
    demand_source = Column(String(20), nullable=False, default="observed")  # observed | synthetic
    auto_approve_eligible = Column(Boolean, nullable=False, default=False)
    created_by_ai = Column(Boolean, nullable=False, default=True)
    ai_model_version = Column(String(20), nullable=False, default="1.0.0")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    expires_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_suggestions_status_expires", "status", "expires_at"),
        Index("ix_suggestions_product_status", "product_id", "status"),
        CheckConstraint("suggested_quantity > 0", name="ck_suggestion_quantity_positive"),
        CheckConstraint("confidence_score >= 0 AND confidence_score <= 100", name="ck_suggestion_confidence_range"),
        CheckConstraint("urgency IN ('critical', 'high', 'medium', 'low')", name="ck_suggestion_urgency"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'ordered')",
            name="ck_suggestion_status",
        ),
    )

    product = relationship("Product")
    supplier = relationship("Supplier")
    history = relationship("ReorderHistory", back_populates="suggestion")


# ─── 8. Reorder History ───────────────────────────────────────────────────


class ReorderHistory(Base):
    """Audit trail for actions taken on reorder suggestions.

    Written exactly once per approve/reject/modify action, in the same
    transaction as the suggestion status change.
    """

    __tablename__ = "reorder_history"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    suggestion_id = Column(GUID(), ForeignKey("reorder_suggestions.suggestion_id"), nullable=False)
    product_id = Column(GUID(), ForeignKey("products.product_id"), nullable=False)
    action_taken = Column(String(20), nullable=False)
    suggested_quantity = Column(Integer, nullable=False)
    actual_quantity_ordered = Column(Integer, nullable=False)
    suggested_cost = Column(Float, nullable=False)
    actual_cost = Column(Float, nullable=False)
    action_reason = Column(Text)
    user_id = Column(String(255))
    accuracy_score = Column(Float)  # filled in once the order is received
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_reorder_history_suggestion", "suggestion_id"),
        Index("ix_reorder_history_product_created", "product_id", "created_at"),
        CheckConstraint(
            "action_taken IN ('approved', 'rejected', 'modified', 'auto_ordered')",
            name="ck_history_action",
        ),
        CheckConstraint(
            "accuracy_score IS NULL OR (accuracy_score >= 0 AND accuracy_score <= 100)",
            name="ck_history_accuracy_range",
        ),
    )

    suggestion = relationship("ReorderSuggestion", back_populates="history")


# ─── 9. Demand Patterns ───────────────────────────────────────────────────


class DemandPattern(Base):
    """Monthly demand aggregate for one product (observed history only)."""

    __tablename__ = "demand_patterns"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    product_id = Column(GUID(), ForeignKey("products.product_id"), nullable=False)
    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=False)
    avg_daily_demand = Column(Float, nullable=False)
    peak_demand = Column(Float, nullable=False)
    demand_variance = Column(Float, nullable=False)
    observation_count = Column(Integer, nullable=False, default=0)  # days in the period covered by the series
    seasonality_factor = Column(Float, nullable=False, default=1.0)
    trend_factor = Column(Float, nullable=False, default=0.0)  # signed trend strength
    calculated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("product_id", "period_start", "period_end", name="uq_demand_pattern_period"),
        Index("ix_demand_patterns_product", "product_id"),
    )


# ─── 10. Reorder Settings ─────────────────────────────────────────────────


class ReorderSettings(Base):
    __tablename__ = "reorder_settings"

    id = Column(String(20), primary_key=True, default="global")
    auto_reorder_enabled = Column(Boolean, nullable=False, default=False)
    analysis_frequency_hours = Column(Integer, nullable=False, default=24)
    default_confidence_threshold = Column(Float, nullable=False, default=70.0)
    max_auto_approve_amount = Column(Float, nullable=False, default=1000.0)
    notification_emails = Column(JSON, nullable=False, default=list)
    updated_by = Column(String(255))
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("analysis_frequency_hours > 0", name="ck_settings_frequency_positive"),
        CheckConstraint(
            "default_confidence_threshold >= 0 AND default_confidence_threshold <= 100",
            name="ck_settings_confidence_range",
        ),
        CheckConstraint("max_auto_approve_amount >= 0", name="ck_settings_auto_approve_positive"),
    )
