import base64

import pytest

from memory_rooms.errors import Forbidden, NotFound, UpstreamError, ValidationFailed
from memory_rooms.forum.repository import Author, chapter_stats, derive_status, effective_status
from memory_rooms.schemas import ContributionCreate, NotesSections
from memory_rooms.settings.config import settings

pytestmark = pytest.mark.anyio


async def _hierarchy(repo, author):
    school = await repo.create_school("Northside High", author)
    subject = await repo.create_subject(school.id, "Mathematics", author, color="#3B82F6")
    course = await repo.create_course(subject.id, author, code="math101", title="Calculus I")
    chapter = await repo.create_chapter(course.id, author, title="Limits", label="Chapter 1")
    return school, subject, course, chapter


def _takeaway(text: str, **kw) -> ContributionCreate:
    return ContributionCreate(type="takeaway", content=text, **kw)


async def test_subject_round_trip(repo, author):
    school = await repo.create_school("Northside High", author)
    created = await repo.create_subject(school.id, "Mathematics", author, description="Numbers", color="#3B82F6")
    fetched = await repo.get_subject(created.id)
    assert fetched.name == "Mathematics"
    assert fetched.color_tag == "#3B82F6"
    assert fetched.school_id == school.id
    assert fetched == created

    listed = await repo.list_subjects(school.id)
    assert [(s.id, s.name, s.color_tag) for s in listed] == [(created.id, "Mathematics", "#3B82F6")]


async def test_reads_are_idempotent(repo, author):
    _, subject, _, chapter = await _hierarchy(repo, author)
    assert await repo.get_subject(subject.id) == await repo.get_subject(subject.id)
    assert await repo.get_chapter(chapter.id) == await repo.get_chapter(chapter.id)


async def test_create_school_adds_participant_and_join_key(fake_forum, repo, author):
    school = await repo.create_school("Northside High", author)
    assert fake_forum.participants[school.id] == [author.id]
    assert len(school.join_key) == 6
    assert school.user_role == "admin"


async def test_join_key_lookup_reads_string_extended_data(fake_forum, repo):
    thread = fake_forum.add_thread("Encoded High", '{"type": "school", "joinKey": "QWERTY"}')
    school = await repo.find_school_by_join_key("QWERTY")
    assert (school.id, school.name) == (thread["id"], "Encoded High")


async def test_find_demo_school(fake_forum, repo, author, monkeypatch):
    assert await repo.find_demo_school() is None
    assert await repo.demo_school_id() == settings.DEMO_SCHOOL_ID

    first = await repo.create_school("Demo School", author, join_key="DEMO24", is_demo=True)
    await repo.create_school("Demo School copy", author, join_key="DEMO24")
    assert (await repo.find_demo_school()).id == first.id

    pinned = fake_forum.add_thread("Pinned", {"type": "school"})
    monkeypatch.setattr(settings, "DEMO_SCHOOL_ID", pinned["id"])
    found = await repo.find_demo_school()
    assert (found.id, found.is_demo) == (pinned["id"], True)


async def test_invalid_inputs_are_rejected(repo, author):
    with pytest.raises(ValidationFailed):
        await repo.create_school("N", author)
    school = await repo.create_school("Northside High", author)
    with pytest.raises(ValidationFailed, match="hex"):
        await repo.create_subject(school.id, "Art", author, color="blue")
    with pytest.raises(ValidationFailed):
        await repo.create_subject("", "Art", author)


async def test_missing_parent_is_rejected(repo, author):
    with pytest.raises(ValidationFailed):
        await repo.create_chapter("", author, title="Orphan")
    with pytest.raises(NotFound):
        await repo.create_chapter("p404", author, title="Orphan")
    with pytest.raises(NotFound):
        await repo.create_contribution("t404", author, _takeaway("x"))


async def test_wrong_entity_kind_is_not_found(repo, author):
    school, subject, _, _ = await _hierarchy(repo, author)
    with pytest.raises(NotFound):
        await repo.get_course(subject.id)
    with pytest.raises(NotFound):
        await repo.get_chapter(school.id)


async def test_hierarchy_listing(repo, author):
    school, subject, course, chapter = await _hierarchy(repo, author)
    await repo.create_subject(school.id, "Biology", author)
    assert [s.name for s in await repo.list_subjects(school.id)] == ["Biology", "Mathematics"]
    courses = await repo.list_courses(subject.id)
    assert [c.code for c in courses] == ["MATH101"]
    chapters = await repo.list_chapters(course.id)
    assert [c.id for c in chapters] == [chapter.id]
    assert chapters[0].school_id == school.id


async def test_contributions_newest_first_with_replies(repo, author):
    *_, chapter = await _hierarchy(repo, author)
    first = await repo.create_contribution(chapter.id, author, _takeaway("first"))
    second = await repo.create_contribution(chapter.id, author, _takeaway("second", anonymous=True))
    await repo.create_reply(first.id, author, "thanks!")

    listed = await repo.list_contributions(chapter.id)
    assert [c.id for c in listed] == [second.id, first.id]
    assert listed[0].author_name == "Anonymous"
    assert listed[1].reply_count == 1
    assert listed[1].replies[0].content == "thanks!"
    assert await repo.count_contributions(chapter.id) == 2


async def test_author_lookup_failure_gives_unknown_user(fake_forum, repo):
    *_, chapter = await _hierarchy(repo, Author(id="u-x", name="x"))
    stranger = fake_forum.add_user("stranger")
    fake_forum.add_post(chapter.id, "no stored name", {
        "type": "contribution", "chapterId": chapter.id, "contributionType": "takeaway",
    }, userId=stranger["id"])

    fake_forum.fail_users = True
    assert (await repo.list_contributions(chapter.id))[0].author_name == "Unknown User"
    fake_forum.fail_users = False
    assert (await repo.list_contributions(chapter.id))[0].author_name == "stranger"


async def test_status_never_moves_backwards(repo, author):
    *_, chapter = await _hierarchy(repo, author)
    assert await repo.advance_chapter_status(chapter.id, "Compiled") == "Compiled"
    assert await repo.advance_chapter_status(chapter.id, "AI Ready") == "Compiled"
    assert (await repo.get_chapter(chapter.id, min_contributions=5)).status == "Compiled"
    with pytest.raises(ValidationFailed):
        await repo.advance_chapter_status(chapter.id, "Archived")


def test_status_derivation():
    assert derive_status(2, False, 5) == "Collecting"
    assert derive_status(5, False, 5) == "AI Ready"
    assert derive_status(0, True, 5) == "Compiled"
    assert effective_status("Compiled", "Collecting") == "Compiled"
    assert effective_status("Collecting", "AI Ready") == "AI Ready"


def test_chapter_stats_counts():
    posts = [
        {"threadId": "t1", "body": '{"imageUrl": "x"}', "extendedData": {"type": "contribution", "chapterId": "t1", "contributionType": "resource"}},
        {"threadId": "t1", "body": "y", "extendedData": {"type": "contribution", "chapterId": "t1", "contributionType": "takeaway"}},
        {"threadId": "t1", "body": "{}", "extendedData": {"type": "unified_notes", "chapterId": "t1", "version": 2}},
    ]
    stats = chapter_stats(posts, "Collecting", 5)
    assert stats["contributions"] == 2
    assert stats["resources"] == 1
    assert stats["has_notes"] is True
    assert stats["latest_notes_version"] == 2
    assert stats["status"] == "Compiled"


async def test_notes_versions_append(repo, author):
    *_, chapter = await _hierarchy(repo, author)
    assert await repo.get_latest_notes(chapter.id) is None
    v1 = await repo.save_notes(chapter.id, author, NotesSections(overview=["one"]), generator_role="student", contribution_count=5)
    v2 = await repo.save_notes(chapter.id, author, NotesSections(overview=["two"]), generator_role="admin", contribution_count=6)
    assert (v1.version, v2.version) == (1, 2)

    latest = await repo.get_latest_notes(chapter.id)
    assert latest.sections.overview == ["two"]
    assert [v.version for v in await repo.list_notes_versions(chapter.id)] == [2, 1]
    assert (await repo.get_notes_version(chapter.id, 1)).sections.overview == ["one"]
    with pytest.raises(NotFound):
        await repo.get_notes_version(chapter.id, 7)


async def test_helpful_marks(repo, author):
    *_, chapter = await _hierarchy(repo, author)
    c = await repo.create_contribution(chapter.id, author, _takeaway("useful"))
    assert await repo.set_helpful(c.id, "u-a") == 1
    assert await repo.set_helpful(c.id, "u-b") == 2
    assert await repo.set_helpful(c.id, "u-a", False) == 1


async def test_post_edit_and_delete_ownership(repo, author):
    *_, chapter = await _hierarchy(repo, author)
    c = await repo.create_contribution(chapter.id, author, _takeaway("draft"))

    with pytest.raises(Forbidden):
        await repo.update_post_content(c.id, "someone-else", "hijack")
    edited = await repo.update_post_content(c.id, author.id, "final")
    assert edited.content == "final"
    assert (await repo.get_contribution(c.id)).content == "final"

    with pytest.raises(Forbidden):
        await repo.delete_post(c.id, "someone-else")
    await repo.delete_post(c.id, "someone-else", can_moderate=True)
    with pytest.raises(NotFound):
        await repo.get_contribution(c.id)


async def test_image_bytes(fake_forum, repo, author):
    *_, chapter = await _hierarchy(repo, author)
    png = b"\x89PNG\r\n"
    img = fake_forum.add_post(chapter.id, "data:image/png;base64," + base64.b64encode(png).decode(), {
        "type": "image", "chapterId": chapter.id,
    })
    assert await repo.get_image(img["id"]) == ("image/png", png)

    bad = fake_forum.add_post(chapter.id, "not a data url", {"type": "image", "chapterId": chapter.id})
    with pytest.raises(NotFound):
        await repo.get_image(bad["id"])


async def test_forum_outage_becomes_upstream_error(fake_forum, repo):
    fake_forum.offline = True
    with pytest.raises(UpstreamError):
        await repo.get_school("t1")


async def test_search_scopes_to_school(repo, author):
    school, _, course, chapter = await _hierarchy(repo, author)
    await repo.create_contribution(chapter.id, author, _takeaway("limits approach a value"))
    await repo.create_contribution(chapter.id, author, ContributionCreate(type="confusion", content="why limits?"))

    other = await repo.create_school("Southside High", author)
    o_subject = await repo.create_subject(other.id, "Maths", author)
    o_course = await repo.create_course(o_subject.id, author, code="M1", title="Other")
    o_chapter = await repo.create_chapter(o_course.id, author, title="More limits")
    await repo.create_contribution(o_chapter.id, author, _takeaway("limits elsewhere"))

    results = await repo.search(school.id, "limits")
    assert {r.chapter_id for r in results} == {chapter.id}
    assert {r.type for r in results} == {"chapter", "contribution"}

    confusions = await repo.search(school.id, "limits", {"confusions"})
    assert [r.contribution_type for r in confusions] == ["confusion"]

    with pytest.raises(ValidationFailed):
        await repo.search(school.id, "l")
    with pytest.raises(ValidationFailed):
        await repo.search(school.id, "limits", {"gossip"})
