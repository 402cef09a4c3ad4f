import logging

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..errors import NotFound
from ..forum.mappers import to_domain
from ..forum.repository import Author, ForumRepository
from ..models import Role, User
from ..routes_shared import get_author, get_repository, ok
from ..schemas import PostUpdate, ReplyCreate
from ..services.memberships import get_membership
from ..services.permissions import require_membership
from ..utils import require_authenticated_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["posts"])


async def _is_school_admin(db: AsyncSession, repo: ForumRepository, user: User, post: dict) -> bool:
    school_id = await repo.school_id_for_post(post)
    if not school_id:
        return False
    membership = await get_membership(db, user.id, school_id)
    return membership is not None and membership.role == Role.admin.value


async def _member_post(db: AsyncSession, repo: ForumRepository, user: User, post_id: str) -> dict:
    post = await repo.get_post(post_id)
    await require_membership(db, user.id, await repo.school_id_for_post(post))
    return post


# ---------- contributions & posts ----------

@router.get("/forum/contributions/{contribution_id}")
async def get_contribution(
    contribution_id: str,
    db: AsyncSession = Depends(get_db),
    repo: ForumRepository = Depends(get_repository),
    user: User = Depends(require_authenticated_user),
):
    await _member_post(db, repo, user, contribution_id)
    return ok(await repo.get_contribution(contribution_id))


@router.get("/forum/posts/{post_id}")
async def get_post(
    post_id: str,
    db: AsyncSession = Depends(get_db),
    repo: ForumRepository = Depends(get_repository),
    user: User = Depends(require_authenticated_user),
):
    item = to_domain(await _member_post(db, repo, user, post_id))
    if item is None:
        raise NotFound("Post not found")
    return ok(item)


@router.patch("/forum/posts/{post_id}")
async def edit_post(
    post_id: str,
    payload: PostUpdate,
    repo: ForumRepository = Depends(get_repository),
    user: User = Depends(require_authenticated_user),
):
    return ok(await repo.update_post_content(post_id, user.forum_user_id, payload.content))


@router.delete("/forum/posts/{post_id}")
async def delete_post(
    post_id: str,
    db: AsyncSession = Depends(get_db),
    repo: ForumRepository = Depends(get_repository),
    user: User = Depends(require_authenticated_user),
):
    post = await repo.get_post(post_id)
    moderate = not repo.is_owner(post, user.forum_user_id) and await _is_school_admin(db, repo, user, post)
    await repo.delete_post(post_id, user.forum_user_id, can_moderate=moderate)
    if moderate:
        logger.info("User %s removed post %s as school admin", user.id, post_id)
    return ok({"deleted": post_id})


# ---------- replies & helpful ----------

@router.get("/forum/posts/{post_id}/replies")
async def list_replies(
    post_id: str,
    db: AsyncSession = Depends(get_db),
    repo: ForumRepository = Depends(get_repository),
    user: User = Depends(require_authenticated_user),
):
    post = await _member_post(db, repo, user, post_id)
    return ok(await repo.list_replies(post_id, post.get("threadId")))


@router.post("/forum/posts/{post_id}/replies", status_code=201)
async def create_reply(
    post_id: str,
    payload: ReplyCreate,
    db: AsyncSession = Depends(get_db),
    repo: ForumRepository = Depends(get_repository),
    user: User = Depends(require_authenticated_user),
    author: Author = Depends(get_author),
):
    await _member_post(db, repo, user, post_id)
    return ok(await repo.create_reply(post_id, author, payload.content, anonymous=payload.anonymous))


@router.post("/forum/posts/{post_id}/helpful")
async def mark_helpful(
    post_id: str,
    db: AsyncSession = Depends(get_db),
    repo: ForumRepository = Depends(get_repository),
    user: User = Depends(require_authenticated_user),
    author: Author = Depends(get_author),
):
    await _member_post(db, repo, user, post_id)
    count = await repo.set_helpful(post_id, author.id, True)
    return ok({"helpful": True, "helpfulCount": count})


@router.delete("/forum/posts/{post_id}/helpful")
async def unmark_helpful(
    post_id: str,
    db: AsyncSession = Depends(get_db),
    repo: ForumRepository = Depends(get_repository),
    user: User = Depends(require_authenticated_user),
    author: Author = Depends(get_author),
):
    await _member_post(db, repo, user, post_id)
    count = await repo.set_helpful(post_id, author.id, False)
    return ok({"helpful": False, "helpfulCount": count})


# ---------- images ----------

@router.get("/images/{image_id}")
async def get_image(
    image_id: str,
    db: AsyncSession = Depends(get_db),
    repo: ForumRepository = Depends(get_repository),
    user: User = Depends(require_authenticated_user),
):
    post = await repo.get_image_post(image_id)
    await require_membership(db, user.id, await repo.school_id_for_post(post))
    mime, content = await repo.get_image(image_id)
    return Response(content=content, media_type=mime, headers={"Cache-Control": "private, max-age=3600"})


@router.delete("/images/{image_id}")
async def delete_image(
    image_id: str,
    db: AsyncSession = Depends(get_db),
    repo: ForumRepository = Depends(get_repository),
    user: User = Depends(require_authenticated_user),
):
    post = await repo.get_image_post(image_id)
    moderate = not repo.is_owner(post, user.forum_user_id) and await _is_school_admin(db, repo, user, post)
    await repo.delete_post(image_id, user.forum_user_id, can_moderate=moderate)
    return ok({"deleted": image_id})
