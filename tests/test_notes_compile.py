import json

import httpx
import pytest

from memory_rooms.errors import Conflict, UpstreamError, ValidationFailed
from memory_rooms.llm_client import LLMError, chat_completion, extract_json_object
from memory_rooms.schemas import AISettingsUpdate, ContributionCreate
from memory_rooms.services import notes_compile
from memory_rooms.services.generation_gate import get_last_generation
from memory_rooms.services.notes_compile import (
    compile_notes, digest_notes, generate_unified_notes, parse_notes_response,
)
from memory_rooms.services.school_settings import update_ai_settings
from memory_rooms.settings.config import settings

pytestmark = pytest.mark.anyio


async def _chapter_with(repo, author, items):
    school = await repo.create_school("Northside High", author)
    subject = await repo.create_subject(school.id, "Physics", author)
    course = await repo.create_course(subject.id, author, code="PHYS101", title="Mechanics")
    chapter = await repo.create_chapter(course.id, author, title="Newton's Laws")
    for item in items:
        await repo.create_contribution(chapter.id, author, item)
    return school, chapter


CONTRIBUTIONS = [
    ContributionCreate(type="takeaway", title="First law", content="Objects keep moving unless a force acts."),
    ContributionCreate(type="solved_example", title="F = ma", content="m = 5kg, a = 2\nF = 10 N"),
    ContributionCreate(type="confusion", content="Is friction a force?"),
    ContributionCreate(type="resource", content="Good video", link_url="https://video.test/newton"),
    ContributionCreate(type="takeaway", title="Third law", content="Every action has an equal reaction."),
]


def test_extract_json_from_fenced_reply():
    raw = 'Here is the JSON:\n```json\n{"overview": ["a"]}\n```'
    assert extract_json_object(raw) == {"overview": ["a"]}
    assert extract_json_object("no json here") is None


def test_non_json_reply_becomes_overview():
    sections = parse_notes_response("Just some prose about forces.")
    assert sections.overview == ["Just some prose about forces."]


async def test_digest_without_llm(repo, author):
    _, chapter = await _chapter_with(repo, author, CONTRIBUTIONS)
    contributions = await repo.list_contributions(chapter.id)
    sections = digest_notes(contributions)
    assert {c.title for c in sections.key_concepts} == {"First law", "Third law"}
    assert sections.examples[0].steps == ["m = 5kg, a = 2", "F = 10 N"]
    assert sections.mistakes == ["Is friction a force?"]
    assert sections.resources[0].url == "https://video.test/newton"


async def test_compile_uses_llm_when_configured(monkeypatch, repo, author):
    _, chapter_ref = await _chapter_with(repo, author, CONTRIBUTIONS[:1])
    chapter = await repo.get_chapter(chapter_ref.id)
    seen = {}

    async def fake_completion(system, user, **kw):
        seen["prompt"] = json.loads(user)
        return json.dumps({"overview": ["Inertia"], "definitions": [{"term": "Force", "definition": "push or pull"}]})

    monkeypatch.setattr(settings, "OPENAI_API_KEY", "sk-test")
    monkeypatch.setattr(notes_compile, "chat_completion", fake_completion)
    sections = await compile_notes(chapter, await repo.list_contributions(chapter.id))
    assert sections.overview == ["Inertia"]
    assert sections.definitions[0].meaning == "push or pull"
    assert seen["prompt"]["chapter"]["title"] == "Newton's Laws"


async def test_llm_failure_is_upstream_error(monkeypatch, repo, author):
    _, chapter_ref = await _chapter_with(repo, author, CONTRIBUTIONS[:1])
    chapter = await repo.get_chapter(chapter_ref.id)

    async def broken(system, user, **kw):
        raise LLMError("boom")

    monkeypatch.setattr(settings, "OPENAI_API_KEY", "sk-test")
    monkeypatch.setattr(notes_compile, "chat_completion", broken)
    with pytest.raises(UpstreamError, match="AI generation failed"):
        await compile_notes(chapter, [])


async def test_chat_completion_request(monkeypatch):
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["auth"] = request.headers["Authorization"]
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": ' {"overview": []} '}}]})

    monkeypatch.setattr(settings, "OPENAI_API_KEY", "sk-test")
    monkeypatch.setattr(settings, "OPENAI_BASE_URL", "https://llm.test/v1/")
    out = await chat_completion("sys", "usr", transport=httpx.MockTransport(handler))
    assert out == '{"overview": []}'
    assert captured["url"] == "https://llm.test/v1/chat/completions"
    assert captured["auth"] == "Bearer sk-test"
    assert captured["body"]["response_format"] == {"type": "json_object"}
    assert captured["body"]["model"] == settings.OPENAI_MODEL


async def test_chat_completion_errors(monkeypatch):
    monkeypatch.setattr(settings, "OPENAI_API_KEY", "")
    with pytest.raises(LLMError, match="not configured"):
        await chat_completion("sys", "usr")

    monkeypatch.setattr(settings, "OPENAI_API_KEY", "sk-test")
    empty = httpx.MockTransport(lambda r: httpx.Response(200, json={"choices": [{"message": {"content": "  "}}]}))
    with pytest.raises(LLMError, match="Empty"):
        await chat_completion("sys", "usr", transport=empty)
    failing = httpx.MockTransport(lambda r: httpx.Response(502, json={}))
    with pytest.raises(LLMError):
        await chat_completion("sys", "usr", transport=failing)


async def test_generation_flow(db, repo, author):
    school, chapter = await _chapter_with(repo, author, CONTRIBUTIONS)

    result = await generate_unified_notes(db, repo, chapter.id, author, "student")
    assert result.notes.version == 1
    assert result.contribution_count == 5
    assert result.status == "Compiled"
    assert (await repo.get_chapter(chapter.id)).status == "Compiled"

    rec = await get_last_generation(db, chapter.id)
    assert (rec.generator_role, rec.contribution_count) == ("student", 5)

    with pytest.raises(Conflict, match="try again in 120min"):
        await generate_unified_notes(db, repo, chapter.id, author, "student")

    again = await generate_unified_notes(db, repo, chapter.id, author, "admin")
    assert again.notes.version == 2


async def test_generation_respects_school_threshold(db, repo, author):
    school, chapter = await _chapter_with(repo, author, CONTRIBUTIONS[:2])
    with pytest.raises(ValidationFailed, match="Need 5 contributions"):
        await generate_unified_notes(db, repo, chapter.id, author, "teacher")

    await update_ai_settings(db, school.id, AISettingsUpdate(min_contributions=2))
    result = await generate_unified_notes(db, repo, chapter.id, author, "teacher")
    assert result.notes.version == 1
