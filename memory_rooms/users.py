import logging
from typing import Optional, Union

from fastapi import Depends, Request
from fastapi_users import FastAPIUsers, InvalidPasswordException
from fastapi_users.authentication import AuthenticationBackend, CookieTransport, JWTStrategy
from fastapi_users.db import SQLAlchemyUserDatabase
from fastapi_users.manager import BaseUserManager, IntegerIDMixin

from .database import get_db
from .models import User
from .schemas import UserCreate
from .settings.config import settings

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8

SECRET = (settings.SECRET or "").strip()
if not SECRET or SECRET == "CHANGE_ME_SECRET":
    raise RuntimeError(
        "SECRET environment variable must be set to a strong value; the default placeholder is not allowed."
    )


async def get_user_db(session=Depends(get_db)):
    yield SQLAlchemyUserDatabase(session, User)


class UserManager(IntegerIDMixin, BaseUserManager[User, int]):
    """Local accounts. The Foru.ms identity is linked lazily on the first forum write."""

    reset_password_token_secret = SECRET
    verification_token_secret = SECRET

    async def validate_password(self, password: str, user: Union[UserCreate, User]) -> None:
        if len(password) < MIN_PASSWORD_LENGTH:
            raise InvalidPasswordException(reason=f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        if user.email and user.email.split("@", 1)[0].lower() in password.lower():
            raise InvalidPasswordException(reason="Password should not contain your email")

    async def on_after_register(self, user: User, request: Optional[Request] = None):
        logger.info("User %s registered (%s)", user.id, user.username or user.email)

    async def on_after_login(self, user: User, request: Optional[Request] = None, response=None):
        logger.debug("User %s logged in", user.id)


async def get_user_manager(user_db=Depends(get_user_db)):
    yield UserManager(user_db)


# session cookie carrying a JWT; served under /auth/jwt
cookie_transport = CookieTransport(
    cookie_name="session",
    cookie_max_age=settings.SESSION_LIFETIME_SECONDS,
    cookie_secure=settings.COOKIE_SECURE,
    cookie_httponly=True,
)


def get_jwt_strategy() -> JWTStrategy:
    return JWTStrategy(secret=SECRET, lifetime_seconds=settings.SESSION_LIFETIME_SECONDS)


auth_backend = AuthenticationBackend(
    name="jwt",
    transport=cookie_transport,
    get_strategy=get_jwt_strategy,
)

fastapi_users = FastAPIUsers[User, int](get_user_manager, [auth_backend])

current_active_user = fastapi_users.current_user(active=True)
