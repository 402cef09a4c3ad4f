# memory_rooms/settings/validation.py
import logging
import time
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urlparse

import httpx

from .config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

KNOWN_OPENAI_MODELS = {"gpt-4", "gpt-4-turbo-preview", "gpt-4o", "gpt-4o-mini", "gpt-3.5-turbo"}
REQUIRED_VARS = ("FORUMMS_API_URL", "FORUMMS_API_KEY", "SECRET")
MIN_SECRET_LENGTH = 32


@dataclass
class ConfigValidationResult:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


@dataclass
class ConnectivityResult:
    is_connected: bool
    error: Optional[str] = None
    response_time_ms: Optional[int] = None


def _looks_like_placeholder(value: str) -> bool:
    low = value.lower()
    return "your_" in low or "_here" in low or low.startswith("change_me")


def _is_valid_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def validate_environment(cfg: Optional[Settings] = None) -> ConfigValidationResult:
    """Check the loaded settings for missing, placeholder, or malformed values.

    Numeric ranges are already enforced by the Settings model itself, so this
    only covers what pydantic cannot know about (placeholders, secret strength,
    model names).
    """
    cfg = cfg or default_settings
    result = ConfigValidationResult()

    for name in REQUIRED_VARS:
        value = (getattr(cfg, name, "") or "").strip()
        if not value:
            result.errors.append(f"Missing required environment variable: {name}")
        elif _looks_like_placeholder(value):
            result.errors.append(f"Environment variable {name} appears to be a placeholder value")

    if cfg.FORUMMS_API_URL and not _is_valid_url(cfg.FORUMMS_API_URL):
        result.errors.append("FORUMMS_API_URL must be a valid URL")
    if cfg.SECRET and len(cfg.SECRET) < MIN_SECRET_LENGTH:
        result.errors.append(f"SECRET must be at least {MIN_SECRET_LENGTH} characters long")

    if not cfg.llm_enabled:
        result.warnings.append("OPENAI_API_KEY is not set; unified notes fall back to a contribution digest")
    elif _looks_like_placeholder(cfg.OPENAI_API_KEY or ""):
        result.errors.append("Environment variable OPENAI_API_KEY appears to be a placeholder value")
    if not _is_valid_url(cfg.OPENAI_BASE_URL):
        result.errors.append("OPENAI_BASE_URL must be a valid URL")
    if cfg.OPENAI_MODEL not in KNOWN_OPENAI_MODELS:
        result.warnings.append(f'OPENAI_MODEL "{cfg.OPENAI_MODEL}" may not be supported')

    return result


async def check_forum_connectivity(client, timeout: float = 10.0) -> ConnectivityResult:
    """Probe the Foru.ms API through a ForumClient's underlying httpx client."""
    started = time.monotonic()
    try:
        r = await client.http.get("/threads", params={"limit": 1}, timeout=timeout)
    except httpx.HTTPError as e:
        return ConnectivityResult(is_connected=False, error=str(e) or e.__class__.__name__)
    elapsed = int((time.monotonic() - started) * 1000)
    if r.is_success:
        return ConnectivityResult(is_connected=True, response_time_ms=elapsed)
    return ConnectivityResult(
        is_connected=False,
        error=f"API returned status {r.status_code}",
        response_time_ms=elapsed,
    )


def log_validation(result: ConfigValidationResult) -> None:
    for msg in result.errors:
        logger.error("Config error: %s", msg)
    for msg in result.warnings:
        logger.warning("Config warning: %s", msg)
    if result.is_valid:
        logger.info("Configuration validated (%d warning(s))", len(result.warnings))
