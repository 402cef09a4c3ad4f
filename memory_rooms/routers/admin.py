import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..forum.repository import Author, ForumRepository
from ..models import User
from ..routes_shared import get_author, get_repository, ok
from ..services.demo_school import seed_demo_school
from ..utils import require_admin_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.post("/demo-school/init")
async def init_demo_school(
    db: AsyncSession = Depends(get_db),
    repo: ForumRepository = Depends(get_repository),
    admin: User = Depends(require_admin_user),
    author: Author = Depends(get_author),
):
    logger.info("Demo school seeding requested by %s", admin.email)
    result = await seed_demo_school(db, repo, author)
    return ok({
        "schoolId": result.school_id,
        "createdSchool": result.created_school,
        "alreadySeeded": result.already_seeded,
        "subjects": result.subjects,
        "courses": result.courses,
        "chapters": result.chapters,
        "contributions": result.contributions,
        "chapterIds": result.chapter_ids,
    }, message="Demo school initialized")
