# services/accounts.py
import logging
import secrets

from sqlalchemy.ext.asyncio import AsyncSession

from memory_rooms.errors import UpstreamError
from memory_rooms.forum.client import ForumClient, ForumError
from memory_rooms.forum.repository import Author
from memory_rooms.models import User

logger = logging.getLogger(__name__)


def _forum_login(user: User) -> str:
    base = (user.username or (user.email or "").split("@", 1)[0] or "user").strip()
    return f"{base}-{user.id}"


async def ensure_forum_author(db: AsyncSession, forum: ForumClient, user: User) -> Author:
    """Foru.ms identity for a local user, registering one on first use.

    The forum password is random and never shown; all forum calls go through
    the service API key.
    """
    if user.forum_user_id:
        return Author(id=user.forum_user_id, name=user.display_name)

    try:
        data = await forum.register(_forum_login(user), secrets.token_urlsafe(24), email=user.email)
    except ForumError as e:
        logger.error("Foru.ms registration failed for user %s: %s", user.id, e)
        raise UpstreamError("Could not link a forum account") from e

    forum_user = data.get("user") or {}
    forum_id = forum_user.get("id") if isinstance(forum_user, dict) else None
    if not forum_id:
        raise UpstreamError("Forum registration returned no user id")

    # ``user`` may be detached (e.g. resolved by the auth dependency in another session)
    db_user = await db.get(User, user.id)
    if db_user is not None:
        db_user.forum_user_id = str(forum_id)
        await db.commit()
    user.forum_user_id = str(forum_id)
    logger.info("Linked user %s to forum account %s", user.id, forum_id)
    return Author(id=str(forum_id), name=user.display_name)
