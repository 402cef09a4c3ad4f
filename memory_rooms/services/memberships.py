# services/memberships.py
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from memory_rooms.errors import Conflict, Forbidden, NotFound, ValidationFailed
from memory_rooms.models import Role, SchoolMembership, User
from memory_rooms.schemas import Member
from memory_rooms.services.permissions import is_demo_school

logger = logging.getLogger(__name__)


async def get_membership(db: AsyncSession, user_id: int, school_id: str) -> Optional[SchoolMembership]:
    return (await db.execute(
        select(SchoolMembership).where(
            SchoolMembership.user_id == user_id, SchoolMembership.school_id == school_id
        )
    )).scalars().first()


async def user_school_roles(db: AsyncSession, user_id: int) -> dict[str, str]:
    rows = (await db.execute(
        select(SchoolMembership.school_id, SchoolMembership.role)
        .where(SchoolMembership.user_id == user_id)
        .order_by(SchoolMembership.joined_at)
    )).all()
    return {school_id: role for school_id, role in rows}


async def add_membership(db: AsyncSession, user_id: int, school_id: str, role: str = Role.student.value) -> SchoolMembership:
    if role not in Role.values():
        raise ValidationFailed(f"Invalid role: {role}")
    if await get_membership(db, user_id, school_id):
        raise Conflict("Already a member of this school")
    m = SchoolMembership(user_id=user_id, school_id=school_id, role=role)
    db.add(m)
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise Conflict("Already a member of this school") from e
    logger.info("User %s joined school %s as %s", user_id, school_id, role)
    return m


async def join_demo_school(db: AsyncSession, user_id: int, school_id: str) -> tuple[SchoolMembership, bool]:
    """Demo members are always students; returns ``(membership, created)``."""
    existing = await get_membership(db, user_id, school_id)
    if existing:
        return existing, False
    return await add_membership(db, user_id, school_id, Role.student.value), True


async def list_members(db: AsyncSession, school_id: str) -> list[Member]:
    rows = (await db.execute(
        select(SchoolMembership, User)
        .join(User, User.id == SchoolMembership.user_id)
        .where(SchoolMembership.school_id == school_id)
        .order_by(SchoolMembership.joined_at)
    )).all()
    return [
        Member(user_id=u.id, name=u.display_name, email=u.email, role=m.role, joined_at=m.joined_at)
        for m, u in rows
    ]


async def update_member_role(
    db: AsyncSession, actor_id: int, school_id: str, target_user_id: int, new_role: str
) -> SchoolMembership:
    if new_role not in Role.values():
        raise ValidationFailed("Invalid role")
    if is_demo_school(school_id):
        raise Forbidden("This action is not available in the demo school")
    target = await get_membership(db, target_user_id, school_id)
    if target is None:
        raise NotFound("User is not a member of this school")
    if target_user_id == actor_id and target.role == Role.admin.value and new_role != Role.admin.value:
        raise ValidationFailed("Cannot change your own admin role")
    old_role, target.role = target.role, new_role
    await db.commit()
    logger.info("User %s changed role of %s in %s: %s -> %s", actor_id, target_user_id, school_id, old_role, new_role)
    return target


async def remove_member(db: AsyncSession, actor_id: int, school_id: str, target_user_id: int) -> None:
    if is_demo_school(school_id):
        raise Forbidden("This action is not available in the demo school")
    if target_user_id == actor_id:
        raise ValidationFailed("Cannot remove yourself from the school")
    target = await get_membership(db, target_user_id, school_id)
    if target is None:
        raise NotFound("User is not a member of this school")
    await db.delete(target)
    await db.commit()
    logger.info("User %s removed %s from school %s", actor_id, target_user_id, school_id)
