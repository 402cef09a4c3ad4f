# services/generation_gate.py
"""Decide whether a chapter may have its unified notes (re)generated.

Two rules, checked in order:

1. the chapter needs at least ``min_contributions`` contributions;
2. if the chapter was generated before, the requester must wait out the
   cooldown for *their own* role (student 2h, teacher 30min, admin none).

Rule 2 looks at the requesting role, not the role that produced
the last generation, so a teacher can regenerate right after a student did.

The last generation per chapter is kept in ``generation_record``: one row per
chapter, overwritten on every generation.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from memory_rooms.errors import ValidationFailed
from memory_rooms.models import GenerationRecord, Role
from memory_rooms.schemas import AISettings, GenerationDecision
from memory_rooms.settings.config import settings
from memory_rooms.utils import now_ms

logger = logging.getLogger(__name__)

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS


@dataclass(frozen=True)
class GatePolicy:
    min_contributions: int = 5
    student_cooldown_ms: int = 2 * HOUR_MS
    teacher_cooldown_ms: int = 30 * MINUTE_MS
    admin_cooldown_ms: int = 0

    @classmethod
    def from_settings(cls, ai: Optional[AISettings] = None) -> "GatePolicy":
        """Per-school settings on top of the process-wide defaults."""
        return cls(
            min_contributions=ai.min_contributions if ai else settings.AI_MIN_CONTRIBUTIONS,
            student_cooldown_ms=(ai.student_cooldown if ai else settings.AI_STUDENT_COOLDOWN_HOURS) * HOUR_MS,
            teacher_cooldown_ms=settings.AI_TEACHER_COOLDOWN_MINUTES * MINUTE_MS,
        )

    def cooldown_for(self, role: str) -> int:
        return {
            Role.student.value: self.student_cooldown_ms,
            Role.teacher.value: self.teacher_cooldown_ms,
            Role.admin.value: self.admin_cooldown_ms,
        }[role]


DEFAULT_POLICY = GatePolicy()


def _check_role(role: str) -> str:
    if role not in Role.values():
        raise ValidationFailed(f"Invalid role: {role}")
    return role


async def get_last_generation(db: AsyncSession, chapter_id: str) -> Optional[GenerationRecord]:
    return (
        await db.execute(select(GenerationRecord).where(GenerationRecord.chapter_id == chapter_id))
    ).scalars().first()


async def record_generation(
    db: AsyncSession,
    chapter_id: str,
    generated_by: str,
    generator_role: str,
    contribution_count: int,
    *,
    timestamp: Optional[int] = None,
) -> GenerationRecord:
    """Replace the chapter's generation record in a single transaction."""
    _check_role(generator_role)
    ts = now_ms() if timestamp is None else timestamp
    values = dict(
        generated_at_ms=ts,
        generated_by=str(generated_by),
        generator_role=generator_role,
        contribution_count=contribution_count,
    )

    rec = await get_last_generation(db, chapter_id)
    if rec is None:
        rec = GenerationRecord(chapter_id=chapter_id, **values)
        db.add(rec)
    else:
        for key, value in values.items():
            setattr(rec, key, value)
    try:
        await db.commit()
    except IntegrityError:
        # another request inserted the first record concurrently; overwrite it
        await db.rollback()
        rec = await get_last_generation(db, chapter_id)
        for key, value in values.items():
            setattr(rec, key, value)
        await db.commit()

    logger.info("Recorded generation for chapter %s by %s (%s)", chapter_id, generated_by, generator_role)
    return rec


async def can_generate(
    db: AsyncSession,
    chapter_id: str,
    role: str,
    contribution_count: int,
    *,
    policy: GatePolicy = DEFAULT_POLICY,
    now: Optional[int] = None,
) -> GenerationDecision:
    _check_role(role)
    if contribution_count < 0:
        raise ValidationFailed("contributionCount must not be negative")

    if contribution_count < policy.min_contributions:
        return GenerationDecision(allowed=False, reason=f"Need {policy.min_contributions} contributions")

    last = await get_last_generation(db, chapter_id)
    if last is None:
        return GenerationDecision(allowed=True)

    elapsed = (now_ms() if now is None else now) - last.generated_at_ms
    cooldown = policy.cooldown_for(role)
    if elapsed < cooldown:
        minutes = math.ceil((cooldown - elapsed) / MINUTE_MS)
        return GenerationDecision(
            allowed=False,
            reason=f"AI recently generated - try again in {minutes}min",
            retry_after_minutes=minutes,
        )
    return GenerationDecision(allowed=True)
