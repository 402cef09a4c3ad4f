import pytest

from tests.conftest import create_user

pytestmark = pytest.mark.anyio

NOTES = [
    {"type": "takeaway", "title": "Limits", "content": "A limit is the value a function approaches."},
    {"type": "solved_example", "title": "Factor first", "content": "(x^2-4)/(x-2)\n= x+2\n= 4 at x=2"},
    {"type": "confusion", "content": "Limit vs continuity?", "anonymous": True},
    {"type": "resource", "content": "Great explainer", "linkUrl": "https://video.test/limits"},
    {"type": "takeaway", "title": "Squeeze", "content": "Trap a function between two others."},
]


async def _school_setup(api):
    owner = await create_user("owner@example.com", username="owner")
    pupil = await create_user("pupil@example.com", username="pupil")

    api.act_as(owner)
    r = await api.post("/api/forum/schools", json={"name": "Northside High", "description": "Go Owls"})
    assert r.status_code == 201, r.text
    school = r.json()["data"]

    r = await api.post(f"/api/forum/schools/{school['id']}/subjects", json={"name": "Mathematics", "color": "#3B82F6"})
    assert r.status_code == 201, r.text
    subject = r.json()["data"]

    r = await api.post(
        f"/api/forum/schools/{school['id']}/subjects/{subject['id']}/courses",
        json={"code": "math101", "title": "Calculus I", "teacher": "Dr. Lee"},
    )
    assert r.status_code == 201, r.text
    course = r.json()["data"]

    api.act_as(pupil)
    r = await api.post("/api/forum/schools/join", json={"joinKey": school["joinKey"].lower()})
    assert r.status_code == 200, r.text
    return owner, pupil, school, subject, course


async def test_requires_authentication(api):
    r = await api.get("/api/forum/schools")
    assert r.status_code == 401
    assert r.json() == {"error": "Not authenticated"}


async def test_school_and_membership_flow(api):
    owner, pupil, school, subject, course = await _school_setup(api)
    assert school["userRole"] == "admin"
    assert subject["colorTag"] == "#3B82F6"
    assert course["code"] == "MATH101"

    r = await api.post("/api/forum/schools/join", json={"joinKey": school["joinKey"]})
    assert r.status_code == 409
    assert r.json()["error"] == "Already a member of this school"

    r = await api.post("/api/forum/schools/join", json={"joinKey": "ZZZZZZ"})
    assert r.status_code == 404
    r = await api.post("/api/forum/schools/join", json={"joinKey": "abc"})
    assert r.status_code == 400

    r = await api.get("/api/forum/schools")
    assert [(s["name"], s["userRole"]) for s in r.json()["data"]] == [("Northside High", "student")]

    # join key is visible to admins only
    r = await api.get(f"/api/forum/schools/{school['id']}")
    assert r.json()["data"]["joinKey"] is None

    r = await api.post(f"/api/forum/schools/{school['id']}/subjects", json={"name": "Art"})
    assert r.status_code == 403
    assert r.json()["error"] == "Permission denied"

    api.act_as(owner)
    r = await api.get(f"/api/forum/schools/{school['id']}/members")
    assert [m["role"] for m in r.json()["data"]] == ["admin", "student"]

    r = await api.post(f"/api/forum/schools/{school['id']}/members/{pupil.id}/role", json={"newRole": "teacher"})
    assert r.json()["data"]["role"] == "teacher"

    r = await api.post(f"/api/forum/schools/{school['id']}/members/{owner.id}/role", json={"newRole": "student"})
    assert r.status_code == 400
    assert r.json()["error"] == "Cannot change your own admin role"

    r = await api.post(f"/api/forum/schools/{school['id']}/join-key")
    new_key = r.json()["data"]["joinKey"]
    assert len(new_key) == 6 and new_key != school["joinKey"]


async def test_ai_settings(api):
    owner, pupil, school, *_ = await _school_setup(api)
    url = f"/api/forum/schools/{school['id']}/ai-settings"

    r = await api.get(url)
    assert r.json() == {"data": {"minContributions": 5, "studentCooldown": 2}, "isDemo": False}

    r = await api.patch(url, json={"minContributions": 3})
    assert r.status_code == 403

    api.act_as(owner)
    r = await api.patch(url, json={})
    assert r.status_code == 400
    assert r.json()["error"] == "No valid settings provided"
    r = await api.patch(url, json={"minContributions": 51})
    assert r.status_code == 400
    r = await api.patch(url, json={"minContributions": 3})
    assert r.json()["data"] == {"minContributions": 3, "studentCooldown": 2}


async def test_contributions_and_generation(api):
    owner, pupil, school, subject, course = await _school_setup(api)

    r = await api.post(f"/api/forum/courses/{course['id']}/chapters", json={"title": "Limits", "label": "Chapter 1"})
    assert r.status_code == 201, r.text
    chapter_id = r.json()["data"]["id"]

    r = await api.post(f"/api/forum/chapters/{chapter_id}/contributions", json={"type": "takeaway", "content": "  "})
    assert r.status_code == 400
    assert r.json()["error"] == "Content is required"

    for item in NOTES[:4]:
        r = await api.post(f"/api/forum/chapters/{chapter_id}/contributions", json=item)
        assert r.status_code == 201, r.text

    r = await api.post(f"/api/forum/chapters/{chapter_id}/generate-notes")
    assert r.status_code == 400
    assert r.json()["error"] == "Need 5 contributions"

    r = await api.post(f"/api/forum/chapters/{chapter_id}/contributions", json=NOTES[4])
    assert r.status_code == 201

    r = await api.get(f"/api/forum/chapters/{chapter_id}")
    chapter = r.json()["data"]
    assert (chapter["status"], chapter["contributions"], chapter["resources"]) == ("AI Ready", 5, 1)

    r = await api.get(f"/api/forum/chapters/{chapter_id}/contributions")
    listed = r.json()["data"]
    assert len(listed) == 5
    anon = [c for c in listed if c["anonymous"]]
    assert anon[0]["authorName"] == "Anonymous" and anon[0]["authorId"] is None

    r = await api.get(f"/api/forum/chapters/{chapter_id}/generation-status")
    assert r.json()["data"]["allowed"] is True
    assert r.json()["contributionCount"] == 5

    assert (await api.get(f"/api/forum/chapters/{chapter_id}/notes")).json() == {"data": None}

    r = await api.post(f"/api/forum/chapters/{chapter_id}/generate-notes")
    assert r.status_code == 201, r.text
    body = r.json()
    assert body["data"]["version"] == 1
    assert body["data"]["generatorRole"] == "student"
    assert body["chapterStatus"] == "Compiled"
    assert body["data"]["sections"]["mistakes"] == ["Limit vs continuity?"]

    r = await api.post(f"/api/forum/chapters/{chapter_id}/generate-notes")
    assert r.status_code == 409
    assert r.json()["error"] == "AI recently generated - try again in 120min"

    api.act_as(owner)
    r = await api.post(f"/api/forum/chapters/{chapter_id}/generate-notes")
    assert r.status_code == 201
    assert r.json()["data"]["version"] == 2

    r = await api.get(f"/api/forum/chapters/{chapter_id}/notes/versions")
    assert [v["version"] for v in r.json()["data"]] == [2, 1]
    r = await api.get(f"/api/forum/chapters/{chapter_id}/notes/versions/1")
    assert r.json()["data"]["generatorRole"] == "student"
    r = await api.get(f"/api/forum/chapters/{chapter_id}/notes/versions/9")
    assert r.status_code == 404

    r = await api.get("/api/forum/search", params={"q": "limit", "schoolId": school["id"], "filters": "confusions"})
    assert [x["contributionType"] for x in r.json()["data"]] == ["confusion"]


async def test_posts_replies_and_moderation(api):
    owner, pupil, school, subject, course = await _school_setup(api)
    r = await api.post(f"/api/forum/courses/{course['id']}/chapters", json={"title": "Derivatives"})
    chapter_id = r.json()["data"]["id"]
    r = await api.post(f"/api/forum/chapters/{chapter_id}/contributions", json=NOTES[0])
    post_id = r.json()["data"]["id"]

    r = await api.post(f"/api/forum/posts/{post_id}/replies", json={"content": "nice"})
    assert r.status_code == 201
    r = await api.get(f"/api/forum/posts/{post_id}/replies")
    assert [x["content"] for x in r.json()["data"]] == ["nice"]

    r = await api.post(f"/api/forum/posts/{post_id}/helpful")
    assert r.json()["data"] == {"helpful": True, "helpfulCount": 1}
    r = await api.delete(f"/api/forum/posts/{post_id}/helpful")
    assert r.json()["data"]["helpfulCount"] == 0

    r = await api.patch(f"/api/forum/posts/{post_id}", json={"content": "edited"})
    assert r.json()["data"]["content"] == "edited"
    r = await api.get(f"/api/forum/contributions/{post_id}")
    assert r.json()["data"]["content"] == "edited"
    assert r.json()["data"]["replyCount"] == 1

    outsider = await create_user("out@example.com")
    api.act_as(outsider)
    r = await api.patch(f"/api/forum/posts/{post_id}", json={"content": "vandal"})
    assert r.status_code == 403
    r = await api.delete(f"/api/forum/posts/{post_id}")
    assert r.status_code == 403

    api.act_as(owner)
    r = await api.delete(f"/api/forum/posts/{post_id}")
    assert r.status_code == 200
    r = await api.get(f"/api/forum/posts/{post_id}")
    assert r.status_code == 404
    assert r.json() == {"error": "Post not found"}


async def test_demo_school(api):
    visitor = await create_user("visitor@example.com")
    api.act_as(visitor)

    r = await api.post("/api/forum/schools/join", json={"joinKey": "demo24"})
    assert r.status_code == 200
    assert r.json()["message"] == "Successfully joined Demo School"
    assert r.json()["data"]["isDemo"] is True

    r = await api.post("/api/forum/schools/demo/join")
    assert r.json()["message"] == "Already a member of Demo School"

    r = await api.get("/api/forum/schools/demo/ai-settings")
    assert r.json()["isDemo"] is True
    r = await api.patch("/api/forum/schools/demo/ai-settings", json={"minContributions": 2})
    assert r.status_code == 403


async def test_demo_seed_requires_superuser(api, fake_forum):
    api.act_as(await create_user("plain@example.com"))
    r = await api.post("/api/admin/demo-school/init")
    assert r.status_code == 403
    assert r.json() == {"error": "Admin access required"}

    api.act_as(await create_user("root@example.com", superuser=True))
    r = await api.post("/api/admin/demo-school/init")
    assert r.status_code == 200, r.text
    data = r.json()["data"]
    assert data["createdSchool"] is True
    assert (data["subjects"], data["courses"], data["chapters"], data["contributions"]) == (3, 4, 4, 8)
    school = fake_forum.threads[data["schoolId"]]
    assert school["extendedData"]["joinKey"] == "DEMO24"


async def test_upstream_outage_is_500(api, fake_forum):
    _, _, school, *_ = await _school_setup(api)
    fake_forum.offline = True
    r = await api.get(f"/api/forum/schools/{school['id']}/subjects")
    assert r.status_code == 500
    assert r.json() == {"error": "Forum service unavailable"}


async def test_register_password_policy(api):
    r = await api.post("/auth/register", json={"email": "kim@example.com", "password": "short"})
    assert r.status_code == 400
    assert r.json() == {"error": "Password must be at least 8 characters"}

    r = await api.post("/auth/register", json={"email": "kim@example.com", "password": "kim-rocks-2024"})
    assert r.status_code == 400
    assert r.json() == {"error": "Password should not contain your email"}

    r = await api.post(
        "/auth/register",
        json={"email": "kim@example.com", "password": "correct horse battery", "username": "kim"},
    )
    assert r.status_code == 201
    assert r.json()["username"] == "kim"


async def test_demo_seed_runs_once_and_join_lands_in_seeded_school(api, fake_forum):
    api.act_as(await create_user("root@example.com", superuser=True))
    first = (await api.post("/api/admin/demo-school/init")).json()["data"]
    second = (await api.post("/api/admin/demo-school/init")).json()["data"]
    assert first["createdSchool"] is True
    assert (second["schoolId"], second["createdSchool"], second["alreadySeeded"]) == (first["schoolId"], False, True)
    assert second["subjects"] == 0

    demo_threads = [t for t in fake_forum.threads.values() if t["extendedData"].get("joinKey") == "DEMO24"]
    assert len(demo_threads) == 1

    api.act_as(await create_user("visitor@example.com"))
    r = await api.post("/api/forum/schools/join", json={"joinKey": "DEMO24"})
    assert r.status_code == 200
    assert r.json()["data"]["id"] == first["schoolId"]
    assert r.json()["data"]["isDemo"] is True

    r = await api.get(f"/api/forum/schools/{first['schoolId']}/subjects")
    assert sorted(s["name"] for s in r.json()["data"]) == ["Computer Science", "Mathematics", "Physics"]

    r = await api.get(f"/api/forum/schools/{first['schoolId']}/ai-settings")
    assert r.json() == {"data": {"minContributions": 3, "studentCooldown": 1}, "isDemo": True}


async def test_chapter_content_is_visible_to_members_only(api):
    owner, pupil, school, subject, course = await _school_setup(api)
    r = await api.post(f"/api/forum/courses/{course['id']}/chapters", json={"title": "Integrals"})
    chapter_id = r.json()["data"]["id"]
    r = await api.post(f"/api/forum/chapters/{chapter_id}/contributions", json=NOTES[0])
    post_id = r.json()["data"]["id"]

    api.act_as(await create_user("stranger@example.com"))
    for url in (
        f"/api/forum/courses/{course['id']}",
        f"/api/forum/courses/{course['id']}/chapters",
        f"/api/forum/chapters/{chapter_id}",
        f"/api/forum/chapters/{chapter_id}/contributions",
        f"/api/forum/chapters/{chapter_id}/notes",
        f"/api/forum/chapters/{chapter_id}/notes/versions",
        f"/api/forum/contributions/{post_id}",
        f"/api/forum/posts/{post_id}",
        f"/api/forum/posts/{post_id}/replies",
    ):
        r = await api.get(url)
        assert r.status_code == 403, url
        assert r.json() == {"error": "You are not a member of this school"}

    r = await api.post(f"/api/forum/posts/{post_id}/replies", json={"content": "drive-by"})
    assert r.status_code == 403
    r = await api.post(f"/api/forum/posts/{post_id}/helpful")
    assert r.status_code == 403

    api.act_as(pupil)
    r = await api.get(f"/api/forum/contributions/{post_id}")
    assert r.status_code == 200
