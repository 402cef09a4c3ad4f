from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..forum.repository import ForumRepository
from ..models import User
from ..routes_shared import get_repository, ok
from ..services.permissions import require_membership
from ..utils import require_authenticated_user

router = APIRouter(prefix="/api/forum", tags=["search"])


@router.get("/search")
async def search(
    q: str = Query(""),
    school_id: str = Query(..., alias="schoolId"),
    filters: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    repo: ForumRepository = Depends(get_repository),
    user: User = Depends(require_authenticated_user),
):
    await require_membership(db, user.id, school_id)
    wanted = {f.strip() for f in (filters or "").split(",") if f.strip()}
    results = await repo.search(school_id, q, wanted or None)
    return ok(results, total=len(results))
