# memory_rooms/forum/mappers.py
"""Convert raw Foru.ms threads/posts into domain models.

Every entity carries its kind in ``extendedData.type``. Mappers copy only the
fields they know about and fall back to fixed defaults, so nothing from the
raw API payload reaches the routers unfiltered.
"""
from __future__ import annotations

import enum
import json
from typing import Any, Callable, Iterable, Optional

from ..schemas import (
    CHAPTER_STATUSES, CONTRIBUTION_TYPES,
    Chapter, Contribution, Course, ImageRef, LinkRef, NotesSections, NotesVersion,
    Reply, School, Subject, UnifiedNotes,
)

Payload = dict[str, Any]

DEFAULT_SUBJECT_COLOR = "#7EC8E3"
DEFAULT_COURSE_CODE = "COURSE"
DEFAULT_TEACHER = "TBD"
DEFAULT_TERM = "Current"
DEFAULT_SECTION = "A"
DEFAULT_CHAPTER_LABEL = "Lecture"
UNKNOWN_USER = "Unknown User"
ANONYMOUS = "Anonymous"


class EntityType(str, enum.Enum):
    school = "school"
    subject = "subject"
    course = "course"
    chapter = "chapter"
    contribution = "contribution"
    reply = "reply"
    unified_notes = "unified_notes"
    image = "image"


# older deployments wrote notes under this discriminator
LEGACY_NOTES_TYPE = "ai_notes"
NOTES_TYPES = {EntityType.unified_notes.value, LEGACY_NOTES_TYPE}

# parent-reference field in extendedData per entity kind
PARENT_FIELDS = {
    EntityType.subject: "schoolId",
    EntityType.course: "subjectId",
    EntityType.chapter: "courseId",
    EntityType.contribution: "chapterId",
    EntityType.reply: "parentPostId",
    EntityType.unified_notes: "chapterId",
    EntityType.image: "chapterId",
}


# ---------- helpers ----------

def extended_data(item: Optional[Payload]) -> Payload:
    raw = (item or {}).get("extendedData")
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            return {}
    return raw if isinstance(raw, dict) else {}


def entity_type(item: Optional[Payload]) -> Optional[str]:
    value = extended_data(item).get("type")
    return value if isinstance(value, str) else None


def is_type(item: Optional[Payload], kind: EntityType) -> bool:
    t = entity_type(item)
    if kind is EntityType.unified_notes:
        return t in NOTES_TYPES
    return t == kind.value


def parent_id(item: Payload, kind: EntityType) -> Optional[str]:
    """Parent reference from extendedData; posts fall back to their containing thread."""
    ext = extended_data(item)
    value = ext.get(PARENT_FIELDS.get(kind, ""))
    if value:
        return str(value)
    if kind in (EntityType.subject, EntityType.contribution, EntityType.unified_notes, EntityType.image):
        return _str(item.get("threadId")) or None
    if kind is EntityType.reply:
        return _str(item.get("parentId")) or None
    return None


def filter_children(items: Iterable[Payload], kind: EntityType, parent: str) -> list[Payload]:
    return [it for it in items if is_type(it, kind) and parent_id(it, kind) == parent]


def _str(value: Any, default: str = "") -> str:
    if value is None:
        return default
    s = str(value).strip()
    return s or default


def _int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes"}
    return bool(value)


def _timestamp(item: Payload) -> Optional[str]:
    value = item.get("createdAt")
    return str(value) if value else None


def parse_json_body(body: Any) -> Optional[Payload]:
    if isinstance(body, dict):
        return body
    if not isinstance(body, str) or not body.strip().startswith("{"):
        return None
    try:
        data = json.loads(body)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


# ---------- hierarchy ----------

def thread_to_school(thread: Payload, user_role: Optional[str] = None) -> School:
    ext = extended_data(thread)
    return School(
        id=_str(thread.get("id")),
        name=_str(thread.get("title"), "Untitled School"),
        description=_str(ext.get("description") or thread.get("body")),
        join_key=_str(ext.get("joinKey")) or None,
        is_demo=_bool(ext.get("isDemo")),
        created_at=_timestamp(thread),
        user_role=user_role,
    )


def post_to_subject(post: Payload) -> Subject:
    ext = extended_data(post)
    return Subject(
        id=_str(post.get("id")),
        school_id=parent_id(post, EntityType.subject) or "",
        name=_str(ext.get("name") or post.get("body"), "Untitled Subject"),
        description=_str(ext.get("description")),
        color_tag=_str(ext.get("colorTag") or ext.get("color"), DEFAULT_SUBJECT_COLOR),
        created_at=_timestamp(post),
    )


def post_to_course(post: Payload) -> Course:
    ext = extended_data(post)
    return Course(
        id=_str(post.get("id")),
        subject_id=_str(ext.get("subjectId")),
        school_id=_str(ext.get("schoolId") or post.get("threadId")),
        code=_str(ext.get("code"), DEFAULT_COURSE_CODE).upper(),
        title=_str(ext.get("title") or ext.get("name"), "Untitled Course"),
        teacher=_str(ext.get("teacher"), DEFAULT_TEACHER),
        term=_str(ext.get("term"), DEFAULT_TERM),
        section=_str(ext.get("section"), DEFAULT_SECTION),
        created_at=_timestamp(post),
    )


def stored_status(thread: Payload) -> str:
    status = extended_data(thread).get("status")
    return status if status in CHAPTER_STATUSES else CHAPTER_STATUSES[0]


def thread_to_chapter(thread: Payload, stats: Optional[dict] = None) -> Chapter:
    ext = extended_data(thread)
    stats = stats or {}
    return Chapter(
        id=_str(thread.get("id")),
        course_id=_str(ext.get("courseId")),
        school_id=_str(ext.get("schoolId")) or None,
        title=_str(thread.get("title"), "Untitled Chapter"),
        label=_str(ext.get("label"), DEFAULT_CHAPTER_LABEL),
        description=_str(ext.get("description") or thread.get("body")),
        status=stats.get("status") or stored_status(thread),
        contributions=stats.get("contributions", 0),
        resources=stats.get("resources", 0),
        photos=stats.get("photos", 0),
        has_notes=stats.get("has_notes", False),
        latest_notes_version=stats.get("latest_notes_version"),
        created_at=_timestamp(thread),
    )


# ---------- contributions ----------

def _author(item: Payload, ext: Payload, authors: Optional[dict[str, str]]) -> tuple[Optional[str], str, bool]:
    anonymous = _bool(ext.get("anonymous"))
    user_id = _str(ext.get("createdBy") or item.get("userId")) or None
    if anonymous:
        return None, ANONYMOUS, True
    name = _str(ext.get("authorName"))
    if not name and user_id and authors:
        name = _str(authors.get(user_id))
    return user_id, name or UNKNOWN_USER, False


def post_to_reply(post: Payload, authors: Optional[dict[str, str]] = None) -> Reply:
    ext = extended_data(post)
    author_id, author_name, anonymous = _author(post, ext, authors)
    return Reply(
        id=_str(post.get("id")),
        parent_id=parent_id(post, EntityType.reply) or "",
        content=_str(post.get("body")),
        author_id=author_id,
        author_name=author_name,
        anonymous=anonymous,
        created_at=_timestamp(post),
    )


def post_to_contribution(
    post: Payload,
    authors: Optional[dict[str, str]] = None,
    replies: Optional[list[Reply]] = None,
) -> Contribution:
    ext = extended_data(post)
    body = parse_json_body(post.get("body"))
    if body is None:
        body = {"content": _str(post.get("body"))}
    ctype = ext.get("contributionType")
    if ctype not in CONTRIBUTION_TYPES:
        ctype = "takeaway"

    link = None
    links = body.get("links") or ext.get("links") or []
    if isinstance(links, list) and links:
        first = links[0]
        if isinstance(first, dict) and first.get("url"):
            link = LinkRef(url=_str(first["url"]), title=_str(first.get("title")) or None)
        elif isinstance(first, str) and first.strip():
            link = LinkRef(url=first.strip())

    image = None
    image_url = _str(body.get("imageUrl"))
    if image_url:
        image = ImageRef(url=image_url, alt=_str(body.get("title") or ext.get("title")))

    author_id, author_name, anonymous = _author(post, ext, authors)
    replies = replies or []
    return Contribution(
        id=_str(post.get("id")),
        chapter_id=parent_id(post, EntityType.contribution) or "",
        type=ctype,
        title=_str(body.get("title") or ext.get("title")) or None,
        content=_str(body.get("content")),
        link=link,
        image=image,
        anonymous=anonymous,
        author_id=author_id,
        author_name=author_name,
        helpful_count=_int(post.get("helpfulCount", post.get("likeCount"))),
        reply_count=max(len(replies), _int(post.get("replyCount"))),
        replies=replies,
        created_at=_timestamp(post),
    )


# ---------- unified notes ----------

def notes_version_number(post: Payload) -> int:
    return _int(extended_data(post).get("version"), 0)


def sort_notes_posts(posts: Iterable[Payload]) -> list[Payload]:
    """Latest version first; a missing version counts as 0."""
    return sorted(posts, key=notes_version_number, reverse=True)


def post_to_notes_version(post: Payload) -> NotesVersion:
    ext = extended_data(post)
    return NotesVersion(
        id=_str(post.get("id")),
        chapter_id=parent_id(post, EntityType.unified_notes) or "",
        version=notes_version_number(post),
        generated_at=_str(ext.get("generatedAt")) or _timestamp(post),
        generated_by=_str(ext.get("generatedBy") or post.get("userId")) or None,
        generator_role=_str(ext.get("generatorRole")) or None,
        contribution_count=_int(ext.get("contributionCount")),
    )


def _str_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if not isinstance(value, list):
        return []
    return [_str(v) for v in value if _str(v)]


def _dict_list(value: Any) -> list[Payload]:
    return [v for v in value if isinstance(v, dict)] if isinstance(value, list) else []


def sections_from_payload(data: Payload) -> NotesSections:
    """Build note sections from stored or LLM-produced JSON.

    Accepts camelCase or snake_case keys and the alternate spellings models
    tend to produce (``definition`` for ``meaning``, ``solution`` for
    ``answer``...). Entries missing their primary field are dropped.
    """
    def pick(*keys: str) -> Any:
        for k in keys:
            if k in data:
                return data[k]
        return None

    key_concepts = [
        {"title": _str(c.get("title") or c.get("name") or c.get("concept")),
         "explanation": _str(c.get("explanation") or c.get("description"))}
        for c in _dict_list(pick("keyConcepts", "key_concepts"))
    ]
    definitions = [
        {"term": _str(d.get("term")), "meaning": _str(d.get("meaning") or d.get("definition"))}
        for d in _dict_list(pick("definitions"))
    ]
    formulas = [
        {"formula": _str(f.get("formula")),
         "meaning": _str(f.get("meaning") or f.get("description") or f.get("name")),
         "note": _str(f.get("note")) or None}
        for f in _dict_list(pick("formulas"))
    ]
    examples = []
    for e in _dict_list(pick("examples")):
        steps = _str_list(e.get("steps"))
        if not steps and e.get("problem"):
            steps = [_str(e["problem"])]
        examples.append({
            "title": _str(e.get("title") or e.get("problem"), "Example"),
            "steps": steps,
            "answer": _str(e.get("answer") or e.get("solution")),
        })
    resources = [
        {"title": _str(r.get("title"), _str(r.get("url"))), "url": _str(r.get("url")),
         "why": _str(r.get("why") or r.get("description") or r.get("type"))}
        for r in _dict_list(pick("resources"))
    ]
    photos = [
        {"alt": _str(p.get("alt") or p.get("caption")), "url": _str(p.get("url")) or None}
        for p in _dict_list(pick("bestNotePhotos", "best_note_photos"))
    ]

    return NotesSections(
        overview=_str_list(pick("overview")),
        key_concepts=[c for c in key_concepts if c["title"]],
        definitions=[d for d in definitions if d["term"]],
        formulas=[f for f in formulas if f["formula"]],
        steps=_str_list(pick("steps")),
        examples=examples,
        mistakes=_str_list(pick("mistakes", "commonMistakes", "common_mistakes")),
        resources=[r for r in resources if r["url"]],
        best_note_photos=photos,
        quick_revision=_str_list(pick("quickRevision", "quick_revision")),
    )


def post_to_notes(post: Payload) -> UnifiedNotes:
    meta = post_to_notes_version(post)
    body = parse_json_body(post.get("body"))
    if body is None:
        text = _str(post.get("body"))
        sections = NotesSections(overview=[text[:200]] if text else [])
    else:
        inner = body.get("sections")
        sections = sections_from_payload(inner if isinstance(inner, dict) else body)
    return UnifiedNotes(**meta.model_dump(), sections=sections)


# ---------- dispatch ----------

def post_to_image(post: Payload) -> ImageRef:
    ext = extended_data(post)
    return ImageRef(url=f"/api/images/{_str(post.get('id'))}", alt=_str(ext.get("alt") or ext.get("filename")))


MAPPERS: dict[EntityType, Callable[[Payload], Any]] = {
    EntityType.school: thread_to_school,
    EntityType.subject: post_to_subject,
    EntityType.course: post_to_course,
    EntityType.chapter: thread_to_chapter,
    EntityType.contribution: post_to_contribution,
    EntityType.reply: post_to_reply,
    EntityType.unified_notes: post_to_notes,
    EntityType.image: post_to_image,
}


def to_domain(item: Payload) -> Any:
    """Map any tagged thread/post to its domain model; ``None`` for untagged items."""
    t = entity_type(item)
    if t == LEGACY_NOTES_TYPE:
        t = EntityType.unified_notes.value
    try:
        kind = EntityType(t)
    except ValueError:
        return None
    return MAPPERS[kind](item)
