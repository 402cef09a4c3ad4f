import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..errors import NotFound
from ..forum.repository import Author, ForumRepository
from ..models import Role, User
from ..routes_shared import get_author, get_repository, ok
from ..schemas import (
    AISettingsUpdate, CourseCreate, JoinSchoolRequest, RoleUpdate, SchoolCreate, SubjectCreate,
)
from ..services import memberships
from ..services.join_keys import normalize_join_key
from ..services.permissions import require_membership, require_permission
from ..services.school_settings import get_ai_settings, update_ai_settings
from ..settings.config import settings
from ..utils import require_authenticated_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/forum/schools", tags=["schools"])


# ---------- schools & membership ----------

@router.get("")
async def list_my_schools(
    db: AsyncSession = Depends(get_db),
    repo: ForumRepository = Depends(get_repository),
    user: User = Depends(require_authenticated_user),
):
    roles = await memberships.user_school_roles(db, user.id)
    return ok(await repo.list_schools(roles))


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_school(
    payload: SchoolCreate,
    db: AsyncSession = Depends(get_db),
    repo: ForumRepository = Depends(get_repository),
    user: User = Depends(require_authenticated_user),
    author: Author = Depends(get_author),
):
    school = await repo.create_school(payload.name, author, description=payload.description)
    await memberships.add_membership(db, user.id, school.id, Role.admin.value)
    return ok(school)


@router.post("/join")
async def join_school(
    payload: JoinSchoolRequest,
    db: AsyncSession = Depends(get_db),
    repo: ForumRepository = Depends(get_repository),
    user: User = Depends(require_authenticated_user),
    author: Author = Depends(get_author),
):
    key = normalize_join_key(payload.join_key)
    if key == settings.DEMO_JOIN_KEY.upper():
        return await _join_demo(db, repo, user, author)

    school = await repo.find_school_by_join_key(key)
    if school is None:
        raise NotFound("Invalid join key")
    await memberships.add_membership(db, user.id, school.id, Role.student.value)
    await repo.add_school_participant(school.id, author.id)
    school.user_role = Role.student.value
    return ok(school)


@router.post("/demo/join")
async def join_demo_school(
    db: AsyncSession = Depends(get_db),
    repo: ForumRepository = Depends(get_repository),
    user: User = Depends(require_authenticated_user),
    author: Author = Depends(get_author),
):
    return await _join_demo(db, repo, user, author)


async def _join_demo(db: AsyncSession, repo: ForumRepository, user: User, author: Author) -> dict:
    school_id = await repo.demo_school_id()
    _, created = await memberships.join_demo_school(db, user.id, school_id)
    if created:
        try:
            await repo.add_school_participant(school_id, author.id)
        except NotFound:
            logger.warning("Demo school thread %s does not exist yet; skipped participant add", school_id)
    school = await repo.get_school(school_id, Role.student.value)
    message = "Successfully joined Demo School" if created else "Already a member of Demo School"
    return ok(school, message=message)


@router.get("/{school_id}")
async def get_school(
    school_id: str,
    db: AsyncSession = Depends(get_db),
    repo: ForumRepository = Depends(get_repository),
    user: User = Depends(require_authenticated_user),
):
    membership = await require_membership(db, user.id, school_id)
    school = await repo.get_school(school_id, membership.role)
    if membership.role != Role.admin.value:
        school.join_key = None
    return ok(school)


@router.post("/{school_id}/join-key")
async def regenerate_join_key(
    school_id: str,
    db: AsyncSession = Depends(get_db),
    repo: ForumRepository = Depends(get_repository),
    user: User = Depends(require_authenticated_user),
):
    await require_permission(db, user.id, school_id, "regenerate_join_key")
    return ok({"joinKey": await repo.regenerate_join_key(school_id)})


# ---------- members ----------

@router.get("/{school_id}/members")
async def list_members(
    school_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_authenticated_user),
):
    await require_permission(db, user.id, school_id, "manage_members")
    return ok(await memberships.list_members(db, school_id))


@router.post("/{school_id}/members/{member_id}/role")
async def change_member_role(
    school_id: str,
    member_id: int,
    payload: RoleUpdate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_authenticated_user),
):
    await require_permission(db, user.id, school_id, "promote_members")
    m = await memberships.update_member_role(db, user.id, school_id, member_id, payload.new_role)
    return ok({"userId": m.user_id, "schoolId": m.school_id, "role": m.role})


@router.delete("/{school_id}/members/{member_id}")
async def remove_member(
    school_id: str,
    member_id: int,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_authenticated_user),
):
    await require_permission(db, user.id, school_id, "remove_members")
    await memberships.remove_member(db, user.id, school_id, member_id)
    return ok({"removed": member_id})


# ---------- AI settings ----------

@router.get("/{school_id}/ai-settings")
async def read_ai_settings(
    school_id: str,
    db: AsyncSession = Depends(get_db),
    repo: ForumRepository = Depends(get_repository),
    user: User = Depends(require_authenticated_user),
):
    await require_membership(db, user.id, school_id)
    school = await repo.get_school(school_id)
    return ok(await get_ai_settings(db, school_id), isDemo=school.is_demo)


@router.patch("/{school_id}/ai-settings")
async def change_ai_settings(
    school_id: str,
    payload: AISettingsUpdate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_authenticated_user),
):
    await require_permission(db, user.id, school_id, "change_ai_settings")
    return ok(await update_ai_settings(db, school_id, payload))


# ---------- subjects & courses ----------

@router.get("/{school_id}/subjects")
async def list_subjects(
    school_id: str,
    db: AsyncSession = Depends(get_db),
    repo: ForumRepository = Depends(get_repository),
    user: User = Depends(require_authenticated_user),
):
    await require_membership(db, user.id, school_id)
    return ok(await repo.list_subjects(school_id))


@router.post("/{school_id}/subjects", status_code=status.HTTP_201_CREATED)
async def create_subject(
    school_id: str,
    payload: SubjectCreate,
    db: AsyncSession = Depends(get_db),
    repo: ForumRepository = Depends(get_repository),
    user: User = Depends(require_authenticated_user),
    author: Author = Depends(get_author),
):
    await require_permission(db, user.id, school_id, "create_subject")
    subject = await repo.create_subject(
        school_id, payload.name, author, description=payload.description, color=payload.color,
    )
    return ok(subject)


async def _subject_in_school(repo: ForumRepository, school_id: str, subject_id: str):
    subject = await repo.get_subject(subject_id)
    if subject.school_id != school_id:
        raise NotFound("Subject not found")
    return subject


@router.get("/{school_id}/subjects/{subject_id}")
async def get_subject(
    school_id: str,
    subject_id: str,
    db: AsyncSession = Depends(get_db),
    repo: ForumRepository = Depends(get_repository),
    user: User = Depends(require_authenticated_user),
):
    await require_membership(db, user.id, school_id)
    return ok(await _subject_in_school(repo, school_id, subject_id))


@router.get("/{school_id}/subjects/{subject_id}/courses")
async def list_courses(
    school_id: str,
    subject_id: str,
    db: AsyncSession = Depends(get_db),
    repo: ForumRepository = Depends(get_repository),
    user: User = Depends(require_authenticated_user),
):
    await require_membership(db, user.id, school_id)
    await _subject_in_school(repo, school_id, subject_id)
    return ok(await repo.list_courses(subject_id))


@router.post("/{school_id}/subjects/{subject_id}/courses", status_code=status.HTTP_201_CREATED)
async def create_course(
    school_id: str,
    subject_id: str,
    payload: CourseCreate,
    db: AsyncSession = Depends(get_db),
    repo: ForumRepository = Depends(get_repository),
    user: User = Depends(require_authenticated_user),
    author: Author = Depends(get_author),
):
    await require_permission(db, user.id, school_id, "create_course")
    await _subject_in_school(repo, school_id, subject_id)
    course = await repo.create_course(
        subject_id, author,
        code=payload.code, title=payload.title,
        teacher=payload.teacher, term=payload.term, section=payload.section,
    )
    return ok(course)
