"""
Reorder Settings — the singleton engine settings row (id='global').

Settings are loaded into an immutable ReorderSettingsSnapshot and passed
explicitly to the orchestrator and suggestion engine; nothing reads them
from a global.
"""

from dataclasses import dataclass, field
from datetime import datetime

import structlog
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import ValidationError
from db.models import ReorderSettings

logger = structlog.get_logger()

SETTINGS_ID = "global"


@dataclass(frozen=True)
class ReorderSettingsSnapshot:
    auto_reorder_enabled: bool = False
    analysis_frequency_hours: int = 24
    default_confidence_threshold: float = 70.0
    max_auto_approve_amount: float = 1000.0
    notification_emails: tuple[str, ...] = field(default_factory=tuple)
    updated_by: str | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, row: ReorderSettings) -> "ReorderSettingsSnapshot":
        return cls(
            auto_reorder_enabled=row.auto_reorder_enabled,
            analysis_frequency_hours=row.analysis_frequency_hours,
            default_confidence_threshold=row.default_confidence_threshold,
            max_auto_approve_amount=row.max_auto_approve_amount,
            notification_emails=tuple(row.notification_emails or ()),
            updated_by=row.updated_by,
            updated_at=row.updated_at,
        )


class SettingsUpdate(BaseModel):
    auto_reorder_enabled: bool | None = None
    analysis_frequency_hours: int | None = Field(None, ge=1, le=24 * 30)
    default_confidence_threshold: float | None = Field(None, ge=0, le=100)
    max_auto_approve_amount: float | None = Field(None, ge=0)
    notification_emails: list[str] | None = None


class SettingsResponse(BaseModel):
    auto_reorder_enabled: bool
    analysis_frequency_hours: int
    default_confidence_threshold: float
    max_auto_approve_amount: float
    notification_emails: list[str]
    updated_by: str | None
    updated_at: datetime | None


async def load_settings(db: AsyncSession) -> ReorderSettingsSnapshot:
    """Current settings, or the defaults when the row has never been written."""
    row = await db.get(ReorderSettings, SETTINGS_ID)
    if row is None:
        return ReorderSettingsSnapshot()
    return ReorderSettingsSnapshot.from_model(row)


async def update_settings(db: AsyncSession, changes: SettingsUpdate, updated_by: str | None) -> ReorderSettingsSnapshot:
    fields = changes.model_dump(exclude_unset=True)
    if not fields:
        raise ValidationError("No settings fields to update")
    if any(value is None for value in fields.values()):
        raise ValidationError("Settings fields cannot be cleared")

    row = await db.get(ReorderSettings, SETTINGS_ID)
    if row is None:
        row = ReorderSettings(id=SETTINGS_ID, notification_emails=[])
        db.add(row)

    for name, value in fields.items():
        setattr(row, name, value)
    row.updated_by = updated_by
    row.updated_at = datetime.utcnow()

    await db.commit()
    await db.refresh(row)

    logger.info("settings.updated", fields=sorted(fields), updated_by=updated_by)
    return ReorderSettingsSnapshot.from_model(row)


def snapshot_response(snapshot: ReorderSettingsSnapshot) -> SettingsResponse:
    return SettingsResponse(
        auto_reorder_enabled=snapshot.auto_reorder_enabled,
        analysis_frequency_hours=snapshot.analysis_frequency_hours,
        default_confidence_threshold=snapshot.default_confidence_threshold,
        max_auto_approve_amount=snapshot.max_auto_approve_amount,
        notification_emails=list(snapshot.notification_emails),
        updated_by=snapshot.updated_by,
        updated_at=snapshot.updated_at,
    )
