# services/join_keys.py
import logging
import re
import secrets
from typing import Iterable

from memory_rooms.errors import ValidationFailed

logger = logging.getLogger(__name__)

# excludes the look-alikes I, O, 0 and 1
JOIN_KEY_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
JOIN_KEY_LENGTH = 6
MAX_ATTEMPTS = 10

_JOIN_KEY_RE = re.compile(r"^[A-Z0-9]{6}$")


def new_join_key(n: int = JOIN_KEY_LENGTH) -> str:
    return "".join(secrets.choice(JOIN_KEY_ALPHABET) for _ in range(n))


def unique_join_key(existing: Iterable[str], attempts: int = MAX_ATTEMPTS) -> str:
    taken = {(k or "").upper() for k in existing}
    key = ""
    for _ in range(attempts):
        key = new_join_key()
        if key not in taken:
            return key
    logger.warning("Could not find an unused join key after %d attempts; using %s anyway", attempts, key)
    return key


def normalize_join_key(raw: str) -> str:
    key = (raw or "").strip().upper()
    if not _JOIN_KEY_RE.match(key):
        raise ValidationFailed("Join key must be 6 letters or digits")
    return key
