import json
import logging
import re
from typing import Any, Optional

import httpx

from .settings.config import settings

logger = logging.getLogger(__name__)


class LLMError(RuntimeError):
    pass


def _sanitize_llm_text(out: str) -> str:
    """Unwrap code fences and drop a leading 'Here is...' preface."""
    if not out:
        return ""
    s = out.strip()
    # Prefer content inside triple backticks if present
    m = re.search(r"```(?:\w+)?\s*([\s\S]*?)```", s)
    if m and m.group(1).strip():
        s = m.group(1).strip()
    lines = [ln.rstrip() for ln in s.splitlines()]
    while lines:
        head = lines[0].strip()
        low = head.lower().rstrip(":")
        if not head or (len(head) <= 120 and (low.startswith("here is") or low.startswith("here's"))):
            lines.pop(0)
            continue
        break
    return "\n".join(lines).strip()


def extract_json_object(raw: str) -> Optional[dict[str, Any]]:
    """Parse the first JSON object in an LLM reply; ``None`` if there is none."""
    text = _sanitize_llm_text(raw)
    for candidate in (text, *re.findall(r"\{[\s\S]*\}", text)):
        try:
            data = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(data, dict):
            return data
    return None


async def chat_completion(
    system: str,
    user: str,
    *,
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
    json_mode: bool = True,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> str:
    """One non-streaming call to an OpenAI-compatible /chat/completions endpoint."""
    if not settings.llm_enabled:
        raise LLMError("OPENAI_API_KEY is not configured")

    payload: dict[str, Any] = {
        "model": settings.OPENAI_MODEL,
        "messages": [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ],
        "temperature": settings.OPENAI_TEMPERATURE if temperature is None else temperature,
        "max_tokens": max_tokens or settings.OPENAI_MAX_TOKENS,
    }
    if json_mode:
        payload["response_format"] = {"type": "json_object"}

    url = f"{settings.OPENAI_BASE_URL.rstrip('/')}/chat/completions"
    headers = {"Authorization": f"Bearer {settings.OPENAI_API_KEY}"}
    logger.debug("LLM call model=%s max_tokens=%s", payload["model"], payload["max_tokens"])
    try:
        async with httpx.AsyncClient(timeout=settings.OPENAI_TIMEOUT_SECONDS, transport=transport) as c:
            r = await c.post(url, json=payload, headers=headers)
            r.raise_for_status()
            data = r.json()
    except (httpx.HTTPError, ValueError) as e:
        raise LLMError(f"LLM request failed: {e}") from e

    try:
        content = data["choices"][0]["message"]["content"] or ""
    except (KeyError, IndexError, TypeError) as e:
        raise LLMError("LLM response had no message content") from e
    if not content.strip():
        raise LLMError("Empty response from LLM.")
    return content.strip()
