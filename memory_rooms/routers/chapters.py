from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..errors import NotFound
from ..forum.mappers import extended_data
from ..forum.repository import Author, ForumRepository
from ..models import User
from ..routes_shared import get_author, get_repository, ok
from ..schemas import ChapterCreate, ContributionCreate
from ..services.notes_compile import gate_decision, generate_unified_notes
from ..services.permissions import require_membership, require_permission
from ..services.school_settings import get_ai_settings
from ..utils import require_authenticated_user

router = APIRouter(prefix="/api/forum", tags=["chapters"])


# ---------- courses ----------

@router.get("/courses/{course_id}")
async def get_course(
    course_id: str,
    db: AsyncSession = Depends(get_db),
    repo: ForumRepository = Depends(get_repository),
    user: User = Depends(require_authenticated_user),
):
    course = await repo.get_course(course_id)
    await require_membership(db, user.id, course.school_id)
    return ok(course)


@router.get("/courses/{course_id}/chapters")
async def list_chapters(
    course_id: str,
    db: AsyncSession = Depends(get_db),
    repo: ForumRepository = Depends(get_repository),
    user: User = Depends(require_authenticated_user),
):
    course = await repo.get_course(course_id)
    await require_membership(db, user.id, course.school_id)
    ai = await get_ai_settings(db, course.school_id)
    return ok(await repo.list_chapters(course_id, ai.min_contributions))


@router.post("/courses/{course_id}/chapters", status_code=status.HTTP_201_CREATED)
async def create_chapter(
    course_id: str,
    payload: ChapterCreate,
    db: AsyncSession = Depends(get_db),
    repo: ForumRepository = Depends(get_repository),
    user: User = Depends(require_authenticated_user),
    author: Author = Depends(get_author),
):
    course = await repo.get_course(course_id)
    await require_membership(db, user.id, course.school_id)
    chapter = await repo.create_chapter(
        course_id, author, title=payload.title, description=payload.description, label=payload.label,
    )
    return ok(chapter)


# ---------- chapters ----------

async def _member_chapter(db: AsyncSession, repo: ForumRepository, chapter_id: str, user: User) -> tuple[dict, str]:
    """Chapter thread and its school id, for members of that school only."""
    thread = await repo.get_chapter_thread(chapter_id)
    school_id = extended_data(thread).get("schoolId")
    await require_membership(db, user.id, school_id)
    return thread, school_id


@router.get("/chapters/{chapter_id}")
async def get_chapter(
    chapter_id: str,
    db: AsyncSession = Depends(get_db),
    repo: ForumRepository = Depends(get_repository),
    user: User = Depends(require_authenticated_user),
):
    thread, school_id = await _member_chapter(db, repo, chapter_id, user)
    min_contributions = (await get_ai_settings(db, school_id)).min_contributions
    return ok(await repo.chapter_with_stats(thread, min_contributions))


@router.get("/chapters/{chapter_id}/contributions")
async def list_contributions(
    chapter_id: str,
    db: AsyncSession = Depends(get_db),
    repo: ForumRepository = Depends(get_repository),
    user: User = Depends(require_authenticated_user),
):
    await _member_chapter(db, repo, chapter_id, user)
    return ok(await repo.list_contributions(chapter_id))


@router.post("/chapters/{chapter_id}/contributions", status_code=status.HTTP_201_CREATED)
async def create_contribution(
    chapter_id: str,
    payload: ContributionCreate,
    db: AsyncSession = Depends(get_db),
    repo: ForumRepository = Depends(get_repository),
    user: User = Depends(require_authenticated_user),
    author: Author = Depends(get_author),
):
    _, school_id = await _member_chapter(db, repo, chapter_id, user)
    contribution = await repo.create_contribution(chapter_id, author, payload)
    ai = await get_ai_settings(db, school_id)
    if await repo.count_contributions(chapter_id) >= ai.min_contributions:
        await repo.advance_chapter_status(chapter_id, "AI Ready")
    return ok(contribution)


# ---------- unified notes ----------

@router.get("/chapters/{chapter_id}/notes")
async def latest_notes(
    chapter_id: str,
    db: AsyncSession = Depends(get_db),
    repo: ForumRepository = Depends(get_repository),
    user: User = Depends(require_authenticated_user),
):
    await _member_chapter(db, repo, chapter_id, user)
    return ok(await repo.get_latest_notes(chapter_id))


@router.get("/chapters/{chapter_id}/notes/versions")
async def notes_versions(
    chapter_id: str,
    db: AsyncSession = Depends(get_db),
    repo: ForumRepository = Depends(get_repository),
    user: User = Depends(require_authenticated_user),
):
    await _member_chapter(db, repo, chapter_id, user)
    return ok(await repo.list_notes_versions(chapter_id))


@router.get("/chapters/{chapter_id}/notes/versions/{version}")
async def notes_version(
    chapter_id: str,
    version: int,
    db: AsyncSession = Depends(get_db),
    repo: ForumRepository = Depends(get_repository),
    user: User = Depends(require_authenticated_user),
):
    await _member_chapter(db, repo, chapter_id, user)
    return ok(await repo.get_notes_version(chapter_id, version))


async def _chapter_role(db: AsyncSession, repo: ForumRepository, chapter_id: str, user: User) -> str:
    thread = await repo.get_chapter_thread(chapter_id)
    school_id = extended_data(thread).get("schoolId")
    if not school_id:
        raise NotFound("Chapter is not attached to a school")
    membership = await require_permission(db, user.id, school_id, "generate_ai_notes")
    return membership.role


@router.get("/chapters/{chapter_id}/generation-status")
async def generation_status(
    chapter_id: str,
    db: AsyncSession = Depends(get_db),
    repo: ForumRepository = Depends(get_repository),
    user: User = Depends(require_authenticated_user),
):
    role = await _chapter_role(db, repo, chapter_id, user)
    chapter, decision = await gate_decision(db, repo, chapter_id, role)
    return ok(decision, contributionCount=chapter.contributions, role=role)


@router.post("/chapters/{chapter_id}/generate-notes", status_code=status.HTTP_201_CREATED)
async def generate_notes(
    chapter_id: str,
    db: AsyncSession = Depends(get_db),
    repo: ForumRepository = Depends(get_repository),
    user: User = Depends(require_authenticated_user),
    author: Author = Depends(get_author),
):
    role = await _chapter_role(db, repo, chapter_id, user)
    result = await generate_unified_notes(db, repo, chapter_id, author, role)
    return ok(result.notes, contributionCount=result.contribution_count, chapterStatus=result.status)
