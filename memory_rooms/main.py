import logging

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import select
from starlette.exceptions import HTTPException as StarletteHTTPException
from fastapi_users.password import PasswordHelper

from .database import init_db, async_session_maker
from .errors import RoomsError
from .forum.client import ForumClient, ForumError, close_forum_client, get_forum_client
from .routers import admin, chapters, posts, schools, search
from .schemas import UserCreate, UserRead, UserUpdate
from .settings.config import settings
from .settings.validation import check_forum_connectivity, log_validation, validate_environment
from .users import fastapi_users, auth_backend

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Class Memory Rooms")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Update for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ----------------------
# Route Includes
# ----------------------
for module in (schools, chapters, posts, search, admin):
    app.include_router(module.router)

# Authentication Routes
app.include_router(
    fastapi_users.get_auth_router(auth_backend),
    prefix="/auth/jwt",
    tags=["auth"]
)

app.include_router(
    fastapi_users.get_register_router(UserRead, UserCreate),
    prefix="/auth",
    tags=["auth"]
)

app.include_router(
    fastapi_users.get_users_router(UserRead, UserUpdate),
    prefix="/users",
    tags=["users"]
)


# -----------------------------------------------------
# Error envelope: every failure is {"error": "<message>"}
# -----------------------------------------------------
def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@app.exception_handler(RoomsError)
async def _rooms_error_handler(request: Request, exc: RoomsError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return _error(exc.status_code, exc.message)


@app.exception_handler(StarletteHTTPException)
async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail
    if isinstance(detail, dict):
        # fastapi-users reports e.g. {"code": "REGISTER_INVALID_PASSWORD", "reason": "..."}
        detail = detail.get("reason") or detail.get("code") or "Request failed"
    return _error(exc.status_code, str(detail))


@app.exception_handler(RequestValidationError)
async def _validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if not errors:
        return _error(400, "Invalid request")
    first = errors[0]
    field = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path"))
    message = first.get("msg", "Invalid request")
    # pydantic prefixes model_validator failures with "Value error, "
    message = message.removeprefix("Value error, ")
    return _error(400, f"{field}: {message}" if field else message)


@app.exception_handler(ForumError)
async def _forum_error_handler(request: Request, exc: ForumError):
    logger.error("Unhandled Foru.ms error on %s %s: %s", request.method, request.url.path, exc)
    return _error(500, "Service unavailable")


@app.exception_handler(Exception)
async def _unhandled_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error(500, "Internal server error")


# ----------------------
# Auto-create admin user
# ----------------------
async def create_admin_user():
    from .models import User
    admin_email = settings.ADMIN_EMAIL
    admin_password = settings.ADMIN_PASSWORD

    if not admin_email or not admin_password:
        logger.info("ADMIN_EMAIL or ADMIN_PASSWORD not set, skipping admin creation.")
        return

    async with async_session_maker() as session:
        result = await session.execute(select(User).where(User.email == admin_email))
        existing_admin = result.scalars().first()
        if not existing_admin:
            user = User(
                email=admin_email,
                hashed_password=PasswordHelper().hash(admin_password),
                username=settings.ADMIN_USERNAME,
                is_superuser=True,
                is_active=True,
                is_verified=True,
            )
            session.add(user)
            await session.commit()
            logger.info("Admin user created: %s", admin_email)
        else:
            logger.info("Admin user already exists: %s", admin_email)


@app.on_event("startup")
async def on_startup():
    from . import models  # Required for SQLAlchemy model detection
    log_validation(validate_environment())
    await init_db()
    await create_admin_user()


@app.on_event("shutdown")
async def on_shutdown():
    await close_forum_client()


@app.get("/api/health")
async def health(forum: ForumClient = Depends(get_forum_client)):
    probe = await check_forum_connectivity(forum)
    return {"data": {
        "status": "ok" if probe.is_connected else "degraded",
        "forum": {"connected": probe.is_connected, "error": probe.error, "responseTimeMs": probe.response_time_ms},
        "llm": settings.llm_enabled,
    }}
