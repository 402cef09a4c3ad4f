# memory_rooms/forum/repository.py
"""Typed access to the school/subject/course/chapter hierarchy stored in Foru.ms.

Schools and chapters are threads; subjects and courses are posts inside the
school thread; contributions, replies, notes and images are posts inside the
chapter thread. The parent of every entity is recorded in ``extendedData``.
"""
from __future__ import annotations

import asyncio
import base64
import json
import logging
import re
from typing import Any, Awaitable, NamedTuple, Optional

from ..errors import Forbidden, NotFound, UpstreamError, ValidationFailed
from ..schemas import (
    CHAPTER_STATUSES, Chapter, Contribution, ContributionCreate, Course, NotesSections,
    NotesVersion, Reply, School, SearchResult, Subject, UnifiedNotes,
)
from ..services.join_keys import unique_join_key
from ..settings.config import settings
from ..utils import excerpt, slugify, utc_iso
from . import mappers
from .client import ForumClient, ForumError, ForumUnavailable, Payload
from .mappers import EntityType

logger = logging.getLogger(__name__)

HEX_COLOR_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")
DATA_URL_RE = re.compile(r"^data:([\w/+.-]+);base64,(.*)$", re.S)
STATUS_RANK = {status: i for i, status in enumerate(CHAPTER_STATUSES)}

# search filter name -> (entity kind, contribution type or None)
SEARCH_FILTERS = {
    "chapters": (EntityType.chapter, None),
    "contributions": (EntityType.contribution, None),
    "notes": (EntityType.unified_notes, None),
    "takeaways": (EntityType.contribution, "takeaway"),
    "resources": (EntityType.contribution, "resource"),
    "examples": (EntityType.contribution, "solved_example"),
    "confusions": (EntityType.contribution, "confusion"),
}


class Author(NamedTuple):
    """Foru.ms identity used as ``userId`` on writes."""
    id: str
    name: str


def derive_status(contributions: int, has_notes: bool, min_contributions: int) -> str:
    if has_notes:
        return "Compiled"
    if contributions >= min_contributions:
        return "AI Ready"
    return "Collecting"


def effective_status(stored: str, derived: str) -> str:
    """Status never moves backwards: keep whichever is further along."""
    return max(stored, derived, key=lambda s: STATUS_RANK.get(s, 0))


def chapter_stats(posts: list[Payload], stored: str, min_contributions: int) -> dict:
    contributions = [p for p in posts if mappers.is_type(p, EntityType.contribution)]
    notes_versions = [mappers.notes_version_number(p) for p in posts if mappers.is_type(p, EntityType.unified_notes)]
    kinds = [mappers.extended_data(p).get("contributionType") for p in contributions]
    photos = sum(
        1 for p, kind in zip(contributions, kinds)
        if kind == "notes_photo" or mappers.extended_data(p).get("hasImage")
    )
    has_notes = bool(notes_versions)
    derived = derive_status(len(contributions), has_notes, min_contributions)
    return {
        "contributions": len(contributions),
        "resources": kinds.count("resource"),
        "photos": photos,
        "has_notes": has_notes,
        "latest_notes_version": max(notes_versions) if has_notes else None,
        "status": effective_status(stored, derived),
    }


def _user_display_name(user: Any) -> Optional[str]:
    if not isinstance(user, dict):
        return None
    for key in ("name", "displayName", "username", "login"):
        value = user.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


class ForumRepository:
    def __init__(self, client: ForumClient):
        self.client = client

    # ---------- error translation ----------

    async def _call(self, op: Awaitable[Any], not_found: str = "Not found") -> Any:
        try:
            return await op
        except ForumUnavailable as e:
            raise UpstreamError("Forum service unavailable") from e
        except ForumError as e:
            if e.is_not_found:
                raise NotFound(not_found) from e
            logger.error("Foru.ms request failed: %s", e)
            raise UpstreamError("Forum service error") from e

    async def _thread(self, thread_id: str, kind: EntityType, label: str) -> Payload:
        if not thread_id:
            raise ValidationFailed(f"{label} id is required")
        thread = await self._call(self.client.get_thread(thread_id), f"{label} not found")
        if not mappers.is_type(thread, kind):
            raise NotFound(f"{label} not found")
        return thread

    async def _post(self, post_id: str, kind: Optional[EntityType], label: str) -> Payload:
        if not post_id:
            raise ValidationFailed(f"{label} id is required")
        post = await self._call(self.client.get_post(post_id), f"{label} not found")
        if kind is not None and not mappers.is_type(post, kind):
            raise NotFound(f"{label} not found")
        return post

    async def _thread_posts(self, thread_id: str) -> list[Payload]:
        return await self._call(self.client.get_posts_by_thread(thread_id), "Thread not found")

    async def _threads_of_type(self, kind: EntityType) -> list[Payload]:
        return await self._call(self.client.get_threads_by_type(kind.value))

    async def _author_names(self, posts: list[Payload]) -> dict[str, str]:
        """Resolve display names for authors that did not store one; failures are left out."""
        missing = set()
        for post in posts:
            ext = mappers.extended_data(post)
            uid = ext.get("createdBy") or post.get("userId")
            if uid and not ext.get("authorName") and not ext.get("anonymous"):
                missing.add(str(uid))

        async def lookup(uid: str) -> tuple[str, Optional[str]]:
            try:
                return uid, _user_display_name(await self.client.get_user(uid))
            except ForumError as e:
                logger.debug("Author lookup for %s failed: %s", uid, e)
                return uid, None

        pairs = await asyncio.gather(*(lookup(uid) for uid in sorted(missing)))
        return {uid: name for uid, name in pairs if name}

    # ---------- schools ----------

    async def get_school(self, school_id: str, user_role: Optional[str] = None) -> School:
        try:
            thread = await self._thread(school_id, EntityType.school, "School")
        except NotFound:
            # the demo school is usable before its thread has been seeded
            if school_id != settings.DEMO_SCHOOL_ID:
                raise
            return School(
                id=school_id,
                name=settings.DEMO_SCHOOL_NAME,
                join_key=settings.DEMO_JOIN_KEY,
                is_demo=True,
                user_role=user_role,
            )
        school = mappers.thread_to_school(thread, user_role)
        if school_id == settings.DEMO_SCHOOL_ID:
            school.is_demo = True
        return school

    async def list_schools(self, roles: dict[str, str]) -> list[School]:
        """Schools for a ``{school_id: role}`` map; unreachable schools are skipped."""
        async def one(school_id: str, role: str) -> Optional[School]:
            try:
                return await self.get_school(school_id, role)
            except (NotFound, UpstreamError) as e:
                logger.warning("Skipping school %s: %s", school_id, e)
                return None

        results = await asyncio.gather(*(one(sid, role) for sid, role in roles.items()))
        return [s for s in results if s is not None]

    async def find_school_by_join_key(self, join_key: str) -> Optional[School]:
        for thread in await self._threads_of_type(EntityType.school):
            if (mappers.extended_data(thread).get("joinKey") or "").upper() == join_key:
                return mappers.thread_to_school(thread)
        return None

    async def find_demo_school(self) -> Optional[School]:
        """The seeded demo school thread, or ``None`` before seeding.

        ``DEMO_SCHOOL_ID`` wins when it names a real school thread; otherwise the
        oldest school flagged ``isDemo`` or carrying ``DEMO_JOIN_KEY`` is used.
        """
        if settings.DEMO_SCHOOL_ID:
            try:
                thread = await self._thread(settings.DEMO_SCHOOL_ID, EntityType.school, "School")
            except NotFound:
                pass
            else:
                school = mappers.thread_to_school(thread)
                school.is_demo = True
                return school

        demo_key = settings.DEMO_JOIN_KEY.upper()
        candidates = [
            s for s in map(mappers.thread_to_school, await self._threads_of_type(EntityType.school))
            if s.is_demo or (s.join_key or "").upper() == demo_key
        ]
        if not candidates:
            return None
        school = min(candidates, key=lambda s: s.created_at or "")
        school.is_demo = True
        return school

    async def demo_school_id(self) -> str:
        school = await self.find_demo_school()
        return school.id if school else settings.DEMO_SCHOOL_ID

    async def _existing_join_keys(self) -> list[str]:
        return [
            str(mappers.extended_data(t).get("joinKey") or "")
            for t in await self._threads_of_type(EntityType.school)
        ]

    async def create_school(
        self,
        name: str,
        author: Author,
        *,
        description: str = "",
        join_key: Optional[str] = None,
        is_demo: bool = False,
    ) -> School:
        name = (name or "").strip()
        if len(name) < 2:
            raise ValidationFailed("School name must be at least 2 characters")
        if not join_key:
            join_key = unique_join_key(await self._existing_join_keys())
        thread = await self._call(self.client.create_thread({
            "title": name,
            "body": description or f"Welcome to {name}!",
            "userId": author.id,
            "slug": slugify(name),
            "extendedData": {
                "type": EntityType.school.value,
                "joinKey": join_key,
                "description": description,
                "isDemo": is_demo,
                "createdBy": author.id,
                "createdAt": utc_iso(),
            },
        }))
        await self._call(self.client.add_thread_participant(thread["id"], author.id))
        logger.info("Created school %s (%s)", thread["id"], name)
        return mappers.thread_to_school(thread, "admin")

    async def add_school_participant(self, school_id: str, forum_user_id: str) -> None:
        await self._call(self.client.add_thread_participant(school_id, forum_user_id), "School not found")

    async def regenerate_join_key(self, school_id: str) -> str:
        thread = await self._thread(school_id, EntityType.school, "School")
        existing = await self._existing_join_keys()
        key = unique_join_key(existing)
        ext = dict(mappers.extended_data(thread), joinKey=key)
        await self._call(self.client.update_thread(school_id, {"extendedData": ext}), "School not found")
        logger.info("Join key regenerated for school %s", school_id)
        return key

    # ---------- subjects ----------

    async def list_subjects(self, school_id: str) -> list[Subject]:
        posts = await self._thread_posts(school_id)
        subjects = [mappers.post_to_subject(p) for p in mappers.filter_children(posts, EntityType.subject, school_id)]
        return sorted(subjects, key=lambda s: s.name.lower())

    async def get_subject(self, subject_id: str) -> Subject:
        return mappers.post_to_subject(await self._post(subject_id, EntityType.subject, "Subject"))

    async def create_subject(
        self,
        school_id: str,
        name: str,
        author: Author,
        *,
        description: str = "",
        color: Optional[str] = None,
    ) -> Subject:
        if not school_id:
            raise ValidationFailed("schoolId is required")
        name = (name or "").strip()
        if not name:
            raise ValidationFailed("Subject name is required")
        color = (color or mappers.DEFAULT_SUBJECT_COLOR).strip()
        if not HEX_COLOR_RE.match(color):
            raise ValidationFailed("Color must be a hex value like #3B82F6")
        post = await self._call(self.client.create_post({
            "threadId": school_id,
            "body": name,
            "userId": author.id,
            "extendedData": {
                "type": EntityType.subject.value,
                "schoolId": school_id,
                "name": name,
                "description": description,
                "colorTag": color,
                "createdBy": author.id,
            },
        }), "School not found")
        return mappers.post_to_subject(post)

    # ---------- courses ----------

    async def list_courses(self, subject_id: str) -> list[Course]:
        subject = await self.get_subject(subject_id)
        posts = await self._thread_posts(subject.school_id)
        courses = [mappers.post_to_course(p) for p in mappers.filter_children(posts, EntityType.course, subject_id)]
        return sorted(courses, key=lambda c: (c.code, c.section))

    async def get_course(self, course_id: str) -> Course:
        return mappers.post_to_course(await self._post(course_id, EntityType.course, "Course"))

    async def create_course(
        self,
        subject_id: str,
        author: Author,
        *,
        code: str,
        title: str,
        teacher: Optional[str] = None,
        term: Optional[str] = None,
        section: Optional[str] = None,
    ) -> Course:
        if not subject_id:
            raise ValidationFailed("subjectId is required")
        code = (code or "").strip().upper()
        title = (title or "").strip()
        if not code or not title:
            raise ValidationFailed("Course code and title are required")
        subject = await self.get_subject(subject_id)
        post = await self._call(self.client.create_post({
            "threadId": subject.school_id,
            "body": f"{code}: {title}",
            "userId": author.id,
            "extendedData": {
                "type": EntityType.course.value,
                "subjectId": subject_id,
                "schoolId": subject.school_id,
                "code": code,
                "title": title,
                "teacher": (teacher or "").strip() or mappers.DEFAULT_TEACHER,
                "term": (term or "").strip() or mappers.DEFAULT_TERM,
                "section": (section or "").strip() or mappers.DEFAULT_SECTION,
                "createdBy": author.id,
            },
        }), "School not found")
        return mappers.post_to_course(post)

    # ---------- chapters ----------

    async def get_chapter_thread(self, chapter_id: str) -> Payload:
        return await self._thread(chapter_id, EntityType.chapter, "Chapter")

    async def chapter_with_stats(self, thread: Payload, min_contributions: Optional[int] = None) -> Chapter:
        if min_contributions is None:
            min_contributions = settings.AI_MIN_CONTRIBUTIONS
        posts = await self._thread_posts(thread["id"])
        stats = chapter_stats(posts, mappers.stored_status(thread), min_contributions)
        return mappers.thread_to_chapter(thread, stats)

    async def get_chapter(self, chapter_id: str, min_contributions: Optional[int] = None) -> Chapter:
        return await self.chapter_with_stats(await self.get_chapter_thread(chapter_id), min_contributions)

    async def list_chapters(self, course_id: str, min_contributions: Optional[int] = None) -> list[Chapter]:
        await self.get_course(course_id)
        threads = mappers.filter_children(await self._threads_of_type(EntityType.chapter), EntityType.chapter, course_id)
        chapters = await asyncio.gather(*(self.chapter_with_stats(t, min_contributions) for t in threads))
        return sorted(chapters, key=lambda c: c.created_at or "")

    async def create_chapter(
        self,
        course_id: str,
        author: Author,
        *,
        title: str,
        description: str = "",
        label: Optional[str] = None,
    ) -> Chapter:
        if not course_id:
            raise ValidationFailed("courseId is required")
        title = (title or "").strip()
        if not title:
            raise ValidationFailed("Chapter title is required")
        course = await self.get_course(course_id)
        thread = await self._call(self.client.create_thread({
            "title": title,
            "body": description or title,
            "userId": author.id,
            "slug": slugify(f"{course.code}-{title}"),
            "extendedData": {
                "type": EntityType.chapter.value,
                "courseId": course_id,
                "subjectId": course.subject_id,
                "schoolId": course.school_id,
                "label": (label or "").strip() or mappers.DEFAULT_CHAPTER_LABEL,
                "description": description,
                "status": "Collecting",
                "createdBy": author.id,
            },
        }))
        # separate call; a failure here leaves the thread in place
        await self._call(self.client.add_thread_participant(thread["id"], author.id))
        return mappers.thread_to_chapter(thread)

    async def advance_chapter_status(self, chapter_id: str, target: str) -> str:
        """Move the stored status forward to ``target``; never backwards."""
        if target not in STATUS_RANK:
            raise ValidationFailed(f"Unknown chapter status: {target}")
        thread = await self.get_chapter_thread(chapter_id)
        current = mappers.stored_status(thread)
        if STATUS_RANK[target] <= STATUS_RANK[current]:
            return current
        ext = dict(mappers.extended_data(thread), status=target)
        await self._call(self.client.update_thread(chapter_id, {"extendedData": ext}), "Chapter not found")
        logger.info("Chapter %s status %s -> %s", chapter_id, current, target)
        return target

    # ---------- contributions & replies ----------

    async def list_contributions(self, chapter_id: str) -> list[Contribution]:
        await self.get_chapter_thread(chapter_id)
        posts = await self._thread_posts(chapter_id)
        contributions = mappers.filter_children(posts, EntityType.contribution, chapter_id)
        replies = [p for p in posts if mappers.is_type(p, EntityType.reply)]
        authors = await self._author_names(contributions + replies)

        by_parent: dict[str, list[Reply]] = {}
        for p in sorted(replies, key=lambda r: r.get("createdAt") or ""):
            reply = mappers.post_to_reply(p, authors)
            by_parent.setdefault(reply.parent_id, []).append(reply)

        out = [mappers.post_to_contribution(p, authors, by_parent.get(str(p.get("id")), [])) for p in contributions]
        return sorted(out, key=lambda c: c.created_at or "", reverse=True)

    async def count_contributions(self, chapter_id: str) -> int:
        posts = await self._thread_posts(chapter_id)
        return len(mappers.filter_children(posts, EntityType.contribution, chapter_id))

    async def get_contribution(self, contribution_id: str) -> Contribution:
        post = await self._post(contribution_id, EntityType.contribution, "Contribution")
        replies = await self.list_replies(contribution_id, thread_id=post.get("threadId"))
        authors = await self._author_names([post])
        return mappers.post_to_contribution(post, authors, replies)

    async def create_contribution(self, chapter_id: str, author: Author, data: ContributionCreate) -> Contribution:
        if not chapter_id:
            raise ValidationFailed("chapterId is required")
        thread = await self.get_chapter_thread(chapter_id)
        chapter_ext = mappers.extended_data(thread)

        links = []
        if data.link_url:
            links.append({"url": data.link_url.strip(), "title": (data.link_title or "").strip() or None})
        body = {
            "title": data.title,
            "content": data.content,
            "imageUrl": data.image_url,
            "links": links,
            "anonymous": data.anonymous,
        }
        post = await self._call(self.client.create_post({
            "threadId": chapter_id,
            "body": json.dumps(body, ensure_ascii=False),
            "userId": author.id,
            "extendedData": {
                "type": EntityType.contribution.value,
                "chapterId": chapter_id,
                "courseId": chapter_ext.get("courseId"),
                "schoolId": chapter_ext.get("schoolId"),
                "contributionType": data.type,
                "title": data.title,
                "anonymous": data.anonymous,
                "hasImage": bool(data.image_url),
                "links": links,
                "createdBy": author.id,
                "authorName": author.name,
            },
        }), "Chapter not found")
        return mappers.post_to_contribution(post)

    async def list_replies(self, post_id: str, thread_id: Optional[str] = None) -> list[Reply]:
        if thread_id is None:
            thread_id = (await self._post(post_id, None, "Post")).get("threadId")
        posts = await self._thread_posts(str(thread_id))
        replies = mappers.filter_children(posts, EntityType.reply, post_id)
        authors = await self._author_names(replies)
        return [mappers.post_to_reply(p, authors) for p in sorted(replies, key=lambda r: r.get("createdAt") or "")]

    async def create_reply(self, post_id: str, author: Author, content: str, *, anonymous: bool = False) -> Reply:
        content = (content or "").strip()
        if not content:
            raise ValidationFailed("Reply content is required")
        parent = await self._post(post_id, None, "Post")
        post = await self._call(self.client.create_post({
            "threadId": parent.get("threadId"),
            "body": content,
            "userId": author.id,
            "parentId": post_id,
            "extendedData": {
                "type": EntityType.reply.value,
                "parentPostId": post_id,
                "anonymous": anonymous,
                "createdBy": author.id,
                "authorName": author.name,
            },
        }), "Post not found")
        return mappers.post_to_reply(post)

    async def set_helpful(self, post_id: str, forum_user_id: str, helpful: bool = True) -> int:
        await self._post(post_id, None, "Post")
        if helpful:
            await self._call(self.client.mark_post_helpful(post_id, forum_user_id), "Post not found")
        else:
            await self._call(self.client.unmark_post_helpful(post_id, forum_user_id), "Post not found")
        likes = await self._call(self.client.get_post_likes(post_id), "Post not found")
        return likes["count"]

    # ---------- generic posts ----------

    async def get_post(self, post_id: str) -> Payload:
        return await self._post(post_id, None, "Post")

    async def school_id_for_post(self, post: Payload) -> Optional[str]:
        ext = mappers.extended_data(post)
        if ext.get("schoolId"):
            return str(ext["schoolId"])
        thread_id = post.get("threadId")
        if not thread_id:
            return None
        thread = await self._call(self.client.get_thread(str(thread_id)), "Thread not found")
        if mappers.is_type(thread, EntityType.school):
            return str(thread["id"])
        return mappers.extended_data(thread).get("schoolId")

    @staticmethod
    def is_owner(post: Payload, forum_user_id: Optional[str]) -> bool:
        if not forum_user_id:
            return False
        owner = mappers.extended_data(post).get("createdBy") or post.get("userId")
        return str(owner) == str(forum_user_id)

    async def update_post_content(self, post_id: str, forum_user_id: Optional[str], content: str) -> Any:
        post = await self.get_post(post_id)
        if not self.is_owner(post, forum_user_id):
            raise Forbidden("Permission denied")
        structured = mappers.parse_json_body(post.get("body"))
        if structured is not None and mappers.is_type(post, EntityType.contribution):
            body = json.dumps(dict(structured, content=content), ensure_ascii=False)
        else:
            body = content
        updated = await self._call(self.client.update_post(post_id, {"body": body}), "Post not found")
        return mappers.to_domain({**post, **(updated or {}), "body": body})

    async def delete_post(self, post_id: str, forum_user_id: Optional[str], *, can_moderate: bool = False) -> Payload:
        post = await self.get_post(post_id)
        if not (can_moderate or self.is_owner(post, forum_user_id)):
            raise Forbidden("Permission denied")
        await self._call(self.client.delete_post(post_id), "Post not found")
        logger.info("Post %s deleted by %s", post_id, forum_user_id)
        return post

    # ---------- images ----------

    async def get_image_post(self, image_id: str) -> Payload:
        return await self._post(image_id, EntityType.image, "Image")

    async def get_image(self, image_id: str) -> tuple[str, bytes]:
        post = await self.get_image_post(image_id)
        match = DATA_URL_RE.match(post.get("body") or "")
        if not match:
            raise NotFound("Image data not found")
        try:
            return match.group(1), base64.b64decode(match.group(2))
        except ValueError as e:
            raise UpstreamError("Stored image is corrupt") from e

    # ---------- unified notes ----------

    async def _notes_posts(self, chapter_id: str) -> list[Payload]:
        posts = await self._thread_posts(chapter_id)
        return mappers.sort_notes_posts(mappers.filter_children(posts, EntityType.unified_notes, chapter_id))

    async def list_notes_versions(self, chapter_id: str) -> list[NotesVersion]:
        await self.get_chapter_thread(chapter_id)
        return [mappers.post_to_notes_version(p) for p in await self._notes_posts(chapter_id)]

    async def get_latest_notes(self, chapter_id: str) -> Optional[UnifiedNotes]:
        await self.get_chapter_thread(chapter_id)
        posts = await self._notes_posts(chapter_id)
        return mappers.post_to_notes(posts[0]) if posts else None

    async def get_notes_version(self, chapter_id: str, version: int) -> UnifiedNotes:
        await self.get_chapter_thread(chapter_id)
        for post in await self._notes_posts(chapter_id):
            if mappers.notes_version_number(post) == version:
                return mappers.post_to_notes(post)
        raise NotFound(f"Notes version {version} not found")

    async def save_notes(
        self,
        chapter_id: str,
        author: Author,
        sections: NotesSections,
        *,
        generator_role: str,
        contribution_count: int,
    ) -> UnifiedNotes:
        """Append a new notes version (max existing + 1); earlier versions are left untouched."""
        existing = await self._notes_posts(chapter_id)
        version = max((mappers.notes_version_number(p) for p in existing), default=0) + 1
        post = await self._call(self.client.create_post({
            "threadId": chapter_id,
            "body": json.dumps({"sections": sections.model_dump(by_alias=True)}, ensure_ascii=False),
            "userId": author.id,
            "extendedData": {
                "type": EntityType.unified_notes.value,
                "chapterId": chapter_id,
                "version": version,
                "generatedBy": author.id,
                "generatorRole": generator_role,
                "generatedAt": utc_iso(),
                "contributionCount": contribution_count,
            },
        }), "Chapter not found")
        logger.info("Saved notes v%d for chapter %s", version, chapter_id)
        return mappers.post_to_notes(post)

    # ---------- search ----------

    async def search(self, school_id: str, query: str, filters: Optional[set[str]] = None) -> list[SearchResult]:
        query = (query or "").strip()
        if len(query) < 2:
            raise ValidationFailed("Search query must be at least 2 characters")
        unknown = set(filters or ()) - set(SEARCH_FILTERS)
        if unknown:
            raise ValidationFailed(f"Unknown search filter: {sorted(unknown)[0]}")
        wanted = [SEARCH_FILTERS[f] for f in (filters or SEARCH_FILTERS.keys())]

        def accepts(kind: EntityType, contribution_type: Optional[str]) -> bool:
            return any(k is kind and (ct is None or ct == contribution_type) for k, ct in wanted)

        found = await self._call(self.client.search(query))
        chapters = {
            str(t["id"]): t for t in await self._threads_of_type(EntityType.chapter)
            if mappers.extended_data(t).get("schoolId") == school_id
        }

        results: list[SearchResult] = []
        for thread in found["threads"]:
            tid = str(thread.get("id"))
            if tid in chapters and accepts(EntityType.chapter, None):
                results.append(SearchResult(
                    type="chapter", id=tid, title=mappers.thread_to_chapter(thread).title,
                    excerpt=excerpt(thread.get("body") or ""), chapter_id=tid,
                    created_at=thread.get("createdAt"),
                ))
        for post in found["posts"]:
            chapter_id = str(post.get("threadId") or "")
            if chapter_id not in chapters:
                continue
            if mappers.is_type(post, EntityType.contribution):
                c = mappers.post_to_contribution(post)
                if accepts(EntityType.contribution, c.type):
                    results.append(SearchResult(
                        type="contribution", id=c.id, title=c.title or c.type.replace("_", " ").title(),
                        excerpt=excerpt(c.content), chapter_id=chapter_id, contribution_type=c.type,
                        created_at=c.created_at,
                    ))
            elif mappers.is_type(post, EntityType.unified_notes) and accepts(EntityType.unified_notes, None):
                notes = mappers.post_to_notes(post)
                title = mappers.thread_to_chapter(chapters[chapter_id]).title
                results.append(SearchResult(
                    type="notes", id=notes.id, title=f"{title} (v{notes.version})",
                    excerpt=excerpt(" ".join(notes.sections.overview)), chapter_id=chapter_id,
                    created_at=notes.generated_at,
                ))
        return results
