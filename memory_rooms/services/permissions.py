# services/permissions.py
from typing import Literal, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from memory_rooms.errors import Forbidden
from memory_rooms.models import Role, SchoolMembership
from memory_rooms.settings.config import settings

PermissionAction = Literal[
    "generate_ai_notes",
    "create_subject",
    "create_course",
    "open_admin_dashboard",
    "manage_members",
    "change_ai_settings",
    "regenerate_join_key",
    "promote_members",
    "remove_members",
    "delete_school",
]

STUDENT_ACTIONS = frozenset({"generate_ai_notes"})
TEACHER_ACTIONS = STUDENT_ACTIONS | {"create_subject", "create_course"}
ADMIN_ONLY_ACTIONS = frozenset({
    "open_admin_dashboard",
    "manage_members",
    "change_ai_settings",
    "regenerate_join_key",
    "promote_members",
    "remove_members",
    "delete_school",
})

PERMISSION_MATRIX: dict[str, frozenset] = {
    Role.student.value: STUDENT_ACTIONS,
    Role.teacher.value: frozenset(TEACHER_ACTIONS),
    Role.admin.value: frozenset(TEACHER_ACTIONS | ADMIN_ONLY_ACTIONS),
}


def is_demo_school(school_id: Optional[str]) -> bool:
    return bool(school_id) and school_id == settings.DEMO_SCHOOL_ID


def role_can(role: Optional[str], action: str) -> bool:
    return action in PERMISSION_MATRIX.get(role or "", frozenset())


def can(membership: Optional[SchoolMembership], action: str) -> bool:
    if membership is None:
        return False
    # admin tooling is disabled in the shared demo school
    if action in ADMIN_ONLY_ACTIONS and is_demo_school(membership.school_id):
        return False
    return role_can(membership.role, action)


async def require_membership(db: AsyncSession, user_id: int, school_id: Optional[str]) -> SchoolMembership:
    from memory_rooms.services.memberships import get_membership

    membership = await get_membership(db, user_id, school_id) if school_id else None
    if membership is None:
        raise Forbidden("You are not a member of this school")
    return membership


async def require_permission(
    db: AsyncSession, user_id: int, school_id: Optional[str], action: str
) -> SchoolMembership:
    membership = await require_membership(db, user_id, school_id)
    if not can(membership, action):
        if action in ADMIN_ONLY_ACTIONS and is_demo_school(school_id):
            raise Forbidden("This action is not available in the demo school")
        raise Forbidden("Permission denied")
    return membership
