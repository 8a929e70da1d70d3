"""
Reorder Policies — hierarchical reorder rules and their resolution.

Resolution order (most specific wins):
  product > supplier > category > global > library default
Ties within one scope go to the most recently created active policy.
Policies are never deleted; they are soft-disabled with is_active=False.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime

import structlog
from pydantic import BaseModel, Field, model_validator
from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import NotFoundError, ValidationError
from db.models import Category, Product, ReorderPolicy, Supplier
from inventory.stores import ProductSnapshot

logger = structlog.get_logger()

SCOPE_RANK = {"product": 0, "supplier": 1, "category": 2, "global": 3}


@dataclass(frozen=True)
class ResolvedPolicy:
    min_stock_multiplier: float = 1.5
    safety_stock_days: int = 7
    review_frequency_days: int = 7
    max_order_quantity: int | None = None
    preferred_order_quantity: int | None = None
    auto_approve_threshold: float | None = None
    scope: str = "default"
    policy_id: uuid.UUID | None = None

    @classmethod
    def from_model(cls, policy: ReorderPolicy) -> "ResolvedPolicy":
        return cls(
            min_stock_multiplier=policy.min_stock_multiplier,
            safety_stock_days=policy.safety_stock_days,
            review_frequency_days=policy.review_frequency_days,
            max_order_quantity=policy.max_order_quantity,
            preferred_order_quantity=policy.preferred_order_quantity,
            auto_approve_threshold=policy.auto_approve_threshold,
            scope=policy.scope,
            policy_id=policy.policy_id,
        )


DEFAULT_POLICY = ResolvedPolicy()


# ─── Schemas ────────────────────────────────────────────────────────────────


class PolicyCreate(BaseModel):
    product_id: uuid.UUID | None = None
    category_id: uuid.UUID | None = None
    supplier_id: uuid.UUID | None = None
    min_stock_multiplier: float = Field(1.5, ge=0.1, le=10)
    max_order_quantity: int | None = Field(None, ge=1)
    preferred_order_quantity: int | None = Field(None, ge=1)
    safety_stock_days: int = Field(7, ge=1, le=365)
    review_frequency_days: int = Field(7, ge=1, le=30)
    auto_approve_threshold: float | None = Field(None, ge=0)

    @model_validator(mode="after")
    def single_scope(self):
        scoped = [v for v in (self.product_id, self.category_id, self.supplier_id) if v is not None]
        if len(scoped) > 1:
            raise ValueError("A policy may target at most one of product_id, category_id, supplier_id")
        return self


class PolicyUpdate(BaseModel):
    """Partial update. Only fields explicitly sent are applied."""

    min_stock_multiplier: float | None = Field(None, ge=0.1, le=10)
    max_order_quantity: int | None = Field(None, ge=1)
    preferred_order_quantity: int | None = Field(None, ge=1)
    safety_stock_days: int | None = Field(None, ge=1, le=365)
    review_frequency_days: int | None = Field(None, ge=1, le=30)
    auto_approve_threshold: float | None = Field(None, ge=0)
    is_active: bool | None = None


# Fields that may not be cleared to NULL through an update.
_REQUIRED_FIELDS = {"min_stock_multiplier", "safety_stock_days", "review_frequency_days", "is_active"}


class PolicyResponse(BaseModel):
    policy_id: uuid.UUID
    scope: str
    product_id: uuid.UUID | None
    category_id: uuid.UUID | None
    supplier_id: uuid.UUID | None
    min_stock_multiplier: float
    max_order_quantity: int | None
    preferred_order_quantity: int | None
    safety_stock_days: int
    review_frequency_days: int
    auto_approve_threshold: float | None
    is_active: bool
    created_by: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


# ─── Resolution ─────────────────────────────────────────────────────────────


def pick_policy(policies: list[ReorderPolicy]) -> ResolvedPolicy:
    """Most specific, then newest, among candidate active policies."""
    if not policies:
        return DEFAULT_POLICY
    newest_first = sorted(policies, key=lambda p: p.created_at or datetime.min, reverse=True)
    best = min(newest_first, key=lambda p: SCOPE_RANK[p.scope])
    return ResolvedPolicy.from_model(best)


class PolicyResolver:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def resolve(self, product: ProductSnapshot) -> ResolvedPolicy:
        candidates = [ReorderPolicy.product_id == product.product_id]
        if product.supplier_id is not None:
            candidates.append(ReorderPolicy.supplier_id == product.supplier_id)
        if product.category_id is not None:
            candidates.append(ReorderPolicy.category_id == product.category_id)
        candidates.append(
            and_(
                ReorderPolicy.product_id.is_(None),
                ReorderPolicy.supplier_id.is_(None),
                ReorderPolicy.category_id.is_(None),
            )
        )

        result = await self.db.execute(
            select(ReorderPolicy).where(ReorderPolicy.is_active.is_(True), or_(*candidates))
        )
        return pick_policy(list(result.scalars().all()))


# ─── CRUD ───────────────────────────────────────────────────────────────────


class PolicyService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_policy(self, payload: PolicyCreate, created_by: str | None = None) -> ReorderPolicy:
        for model, value, label in (
            (Product, payload.product_id, "Product"),
            (Category, payload.category_id, "Category"),
            (Supplier, payload.supplier_id, "Supplier"),
        ):
            if value is not None and await self.db.get(model, value) is None:
                raise NotFoundError(f"{label} {value} not found")

        policy = ReorderPolicy(**payload.model_dump(), created_by=created_by)
        self.db.add(policy)
        await self.db.commit()
        await self.db.refresh(policy)

        logger.info("policy.created", policy_id=str(policy.policy_id), scope=policy.scope, created_by=created_by)
        return policy

    async def list_policies(self, include_inactive: bool = False) -> list[ReorderPolicy]:
        query = select(ReorderPolicy)
        if not include_inactive:
            query = query.where(ReorderPolicy.is_active.is_(True))
        result = await self.db.execute(query.order_by(ReorderPolicy.created_at.desc()))
        return list(result.scalars().all())

    async def update_policy(self, policy_id: uuid.UUID, changes: PolicyUpdate) -> ReorderPolicy:
        policy = await self.db.get(ReorderPolicy, policy_id)
        if policy is None:
            raise NotFoundError(f"Policy {policy_id} not found", policy_id=str(policy_id))

        fields = changes.model_dump(exclude_unset=True)
        if not fields:
            raise ValidationError("No policy fields to update")
        for name, value in fields.items():
            if value is None and name in _REQUIRED_FIELDS:
                raise ValidationError(f"{name} cannot be cleared", field=name)
            setattr(policy, name, value)
        policy.updated_at = datetime.utcnow()

        await self.db.commit()
        await self.db.refresh(policy)

        logger.info("policy.updated", policy_id=str(policy_id), fields=sorted(fields))
        return policy
