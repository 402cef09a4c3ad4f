# memory_rooms/services/notes_compile.py
from __future__ import annotations

import json
import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from memory_rooms.errors import Conflict, UpstreamError, ValidationFailed
from memory_rooms.forum.mappers import extended_data, sections_from_payload
from memory_rooms.forum.repository import Author, ForumRepository
from memory_rooms.llm_client import LLMError, chat_completion, extract_json_object
from memory_rooms.schemas import Chapter, Contribution, GenerationDecision, NotesSections, UnifiedNotes
from memory_rooms.services.generation_gate import GatePolicy, can_generate, record_generation
from memory_rooms.services.school_settings import default_ai_settings, get_ai_settings
from memory_rooms.settings.config import settings

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = """You are a study assistant that turns a class's shared lecture contributions into unified notes.
You will receive a CHAPTER block and a list of CONTRIBUTIONS written by students
(takeaways, solved examples, resources, confusions, photo captions).
Tasks:
1) Merge overlapping points; keep what the class actually wrote. Do not invent facts.
2) Turn confusions into short "common mistakes" with the correction.
3) Keep worked examples as numbered steps with a final answer.

Return STRICT JSON with keys:
{
  "overview": ["3-5 key points"],
  "keyConcepts": [{"title": "...", "explanation": "..."}],
  "definitions": [{"term": "...", "meaning": "..."}],
  "formulas": [{"formula": "...", "meaning": "...", "note": "optional"}],
  "steps": ["..."],
  "examples": [{"title": "...", "steps": ["..."], "answer": "..."}],
  "mistakes": ["..."],
  "resources": [{"title": "...", "url": "...", "why": "..."}],
  "quickRevision": ["..."]
}
"""


def _contributions_payload(contributions: list[Contribution]) -> list[dict]:
    out = []
    for c in contributions:
        item = {"type": c.type, "title": c.title or "", "content": c.content}
        if c.link:
            item["link"] = c.link.url
        if c.image:
            item["image"] = c.image.alt or "notes photo"
        out.append(item)
    return out


def build_notes_prompt(chapter: Chapter, contributions: list[Contribution]) -> str:
    return json.dumps({
        "chapter": {"title": chapter.title, "label": chapter.label, "description": chapter.description},
        "contributions": _contributions_payload(contributions),
    }, ensure_ascii=False)


def digest_notes(contributions: list[Contribution]) -> NotesSections:
    """Notes assembled straight from the contributions, used when no LLM is configured."""
    by_type: dict[str, list[Contribution]] = {}
    for c in contributions:
        by_type.setdefault(c.type, []).append(c)
    takeaways = by_type.get("takeaway", [])
    examples = by_type.get("solved_example", [])
    confusions = by_type.get("confusion", [])
    linked = [c for c in contributions if c.link]
    photos = [c for c in contributions if c.image]

    return sections_from_payload({
        "overview": [t.content or t.title for t in takeaways[:3]],
        "keyConcepts": [
            {"title": t.title or f"Concept {i + 1}", "explanation": t.content}
            for i, t in enumerate(takeaways[:4])
        ],
        "steps": ["Review the key concepts", "Practice with examples", "Ask questions about confusing topics"],
        "examples": [
            {"title": e.title or f"Example {i + 1}", "steps": [line for line in e.content.splitlines() if line.strip()]}
            for i, e in enumerate(examples[:2])
        ],
        "mistakes": [c.content or c.title for c in confusions[:3]],
        "resources": [
            {"title": r.link.title or r.title or "Resource", "url": r.link.url, "why": r.content[:120]}
            for r in linked[:3]
        ],
        "bestNotePhotos": [{"alt": p.image.alt or p.title or "Class notes", "url": p.image.url} for p in photos[:4]],
        "quickRevision": [t.title or t.content[:50] for t in takeaways[:5]],
    })


def parse_notes_response(raw: str) -> NotesSections:
    data = extract_json_object(raw)
    if data is None:
        text = (raw or "").strip()
        return NotesSections(overview=[text[:200]] if text else [])
    return sections_from_payload(data)


async def compile_notes(chapter: Chapter, contributions: list[Contribution]) -> NotesSections:
    if not settings.llm_enabled:
        logger.info("No LLM configured; building digest notes for chapter %s", chapter.id)
        return digest_notes(contributions)
    try:
        raw = await chat_completion(SYSTEM_PROMPT, build_notes_prompt(chapter, contributions))
    except LLMError as e:
        logger.exception("Notes generation failed for chapter %s", chapter.id)
        raise UpstreamError("AI generation failed. Please try again.") from e
    return parse_notes_response(raw)


# ---------- generation flow ----------

@dataclass
class GenerationResult:
    notes: UnifiedNotes
    contribution_count: int
    status: str


def raise_for_decision(decision: GenerationDecision) -> None:
    if decision.allowed:
        return
    if decision.retry_after_minutes is not None:
        raise Conflict(decision.reason)
    raise ValidationFailed(decision.reason)


async def gate_decision(
    db: AsyncSession, repo: ForumRepository, chapter_id: str, role: str
) -> tuple[Chapter, GenerationDecision]:
    thread = await repo.get_chapter_thread(chapter_id)
    school_id = extended_data(thread).get("schoolId")
    ai = await get_ai_settings(db, school_id) if school_id else default_ai_settings()
    policy = GatePolicy.from_settings(ai)
    chapter = await repo.chapter_with_stats(thread, ai.min_contributions)
    decision = await can_generate(db, chapter_id, role, chapter.contributions, policy=policy)
    return chapter, decision


async def generate_unified_notes(
    db: AsyncSession,
    repo: ForumRepository,
    chapter_id: str,
    author: Author,
    role: str,
) -> GenerationResult:
    """Gate check, compile, save as the next version, record, mark chapter Compiled."""
    chapter, decision = await gate_decision(db, repo, chapter_id, role)
    raise_for_decision(decision)

    contributions = await repo.list_contributions(chapter_id)
    sections = await compile_notes(chapter, contributions)
    notes = await repo.save_notes(
        chapter_id, author, sections,
        generator_role=role, contribution_count=len(contributions),
    )
    await record_generation(db, chapter_id, author.id, role, len(contributions))
    status = await repo.advance_chapter_status(chapter_id, "Compiled")
    return GenerationResult(notes=notes, contribution_count=len(contributions), status=status)
