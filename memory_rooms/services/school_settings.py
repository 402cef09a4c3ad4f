# services/school_settings.py
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from memory_rooms.models import SchoolAISettings
from memory_rooms.schemas import AISettings, AISettingsUpdate
from memory_rooms.settings.config import settings

logger = logging.getLogger(__name__)


def default_ai_settings() -> AISettings:
    return AISettings(
        min_contributions=settings.AI_MIN_CONTRIBUTIONS,
        student_cooldown=settings.AI_STUDENT_COOLDOWN_HOURS,
    )


async def get_ai_settings(db: AsyncSession, school_id: str) -> AISettings:
    row = await db.get(SchoolAISettings, school_id)
    if row is None:
        return default_ai_settings()
    return AISettings(min_contributions=row.min_contributions, student_cooldown=row.student_cooldown_hours)


async def update_ai_settings(db: AsyncSession, school_id: str, update: AISettingsUpdate) -> AISettings:
    """Apply the provided fields only; bounds were already checked by ``AISettingsUpdate``."""
    current = await get_ai_settings(db, school_id)
    row = await db.get(SchoolAISettings, school_id)
    if row is None:
        row = SchoolAISettings(
            school_id=school_id,
            min_contributions=current.min_contributions,
            student_cooldown_hours=current.student_cooldown,
        )
        db.add(row)
    if update.min_contributions is not None:
        row.min_contributions = update.min_contributions
    if update.student_cooldown is not None:
        row.student_cooldown_hours = update.student_cooldown
    await db.commit()
    logger.info(
        "AI settings for school %s: min=%s cooldown=%sh",
        school_id, row.min_contributions, row.student_cooldown_hours,
    )
    return AISettings(min_contributions=row.min_contributions, student_cooldown=row.student_cooldown_hours)
