from typing import Any

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from .database import get_db
from .forum.client import ForumClient, get_forum_client
from .forum.repository import Author, ForumRepository
from .models import User
from .services.accounts import ensure_forum_author
from .utils import require_authenticated_user


def get_repository(forum: ForumClient = Depends(get_forum_client)) -> ForumRepository:
    return ForumRepository(forum)


async def get_author(
    db: AsyncSession = Depends(get_db),
    forum: ForumClient = Depends(get_forum_client),
    user: User = Depends(require_authenticated_user),
) -> Author:
    """Foru.ms identity of the current user (linked on first write)."""
    return await ensure_forum_author(db, forum, user)


def ok(data: Any, **extra: Any) -> dict:
    return {"data": data, **extra}


__all__ = ["get_repository", "get_author", "ok"]
