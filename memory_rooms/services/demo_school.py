# services/demo_school.py
import logging
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from memory_rooms.forum.repository import Author, ForumRepository
from memory_rooms.schemas import AISettingsUpdate, ContributionCreate
from memory_rooms.services.school_settings import update_ai_settings
from memory_rooms.settings.config import settings

logger = logging.getLogger(__name__)

DEMO_SUBJECTS = [
    {"name": "Mathematics", "description": "Core mathematical concepts and problem solving", "color": "#3B82F6"},
    {"name": "Physics", "description": "Understanding the physical world through scientific principles", "color": "#10B981"},
    {"name": "Computer Science", "description": "Programming, algorithms, and computational thinking", "color": "#8B5CF6"},
]

DEMO_COURSES = [
    {"subject": "Mathematics", "code": "MATH101", "title": "Calculus I", "teacher": "Dr. Sarah Johnson", "term": "Fall 2024"},
    {"subject": "Mathematics", "code": "MATH201", "title": "Linear Algebra", "teacher": "Prof. Michael Chen", "term": "Spring 2024"},
    {"subject": "Physics", "code": "PHYS101", "title": "Classical Mechanics", "teacher": "Dr. Emily Rodriguez", "term": "Fall 2024"},
    {"subject": "Computer Science", "code": "CS101", "title": "Introduction to Programming", "teacher": "Prof. David Kim", "term": "Fall 2024"},
]

DEMO_CHAPTERS = [
    {"course": "MATH101", "title": "Limits and Continuity", "label": "Chapter 1",
     "description": "Understanding limits and continuous functions"},
    {"course": "MATH101", "title": "Derivatives", "label": "Chapter 2",
     "description": "Rules of differentiation and applications"},
    {"course": "PHYS101", "title": "Newton's Laws", "label": "Chapter 1",
     "description": "The three laws of motion and their applications"},
    {"course": "CS101", "title": "Variables and Data Types", "label": "Chapter 1",
     "description": "Basic programming concepts and data structures"},
]

DEMO_CONTRIBUTIONS = [
    {"chapter": "Limits and Continuity", "type": "takeaway", "title": "Key Insight on Limits",
     "content": "A limit describes how a function behaves as the input approaches a value. "
                "What happens exactly at that point does not matter."},
    {"chapter": "Limits and Continuity", "type": "solved_example", "title": "Limit Calculation Example",
     "content": "Find lim(x->2) (x^2 - 4)/(x - 2)\nFactor: (x + 2)(x - 2)/(x - 2)\nCancel: lim(x->2) (x + 2) = 4"},
    {"chapter": "Limits and Continuity", "type": "confusion", "title": "Confusion about Continuity", "anonymous": True,
     "content": "When is a function continuous versus just having a limit at a point?"},
    {"chapter": "Derivatives", "type": "takeaway", "title": "Power Rule",
     "content": "d/dx(x^n) = n*x^(n-1), for any real n."},
    {"chapter": "Derivatives", "type": "resource", "title": "Derivative Rules Cheat Sheet",
     "content": "A compact list of derivative rules for the exam.", "link_url": "https://example.com/derivative-rules"},
    {"chapter": "Newton's Laws", "type": "takeaway", "title": "Newton's First Law",
     "content": "An object keeps its state of motion unless an external force acts on it (inertia)."},
    {"chapter": "Newton's Laws", "type": "solved_example", "title": "Force Calculation",
     "content": "A 5 kg object accelerates at 2 m/s^2.\nF = ma = 5 kg * 2 m/s^2\nF = 10 N"},
    {"chapter": "Variables and Data Types", "type": "takeaway", "title": "Variable Naming",
     "content": "Prefer descriptive names like student_count over x or temp."},
]

# lower thresholds so the demo reaches "AI Ready" quickly
DEMO_AI_SETTINGS = AISettingsUpdate(min_contributions=3, student_cooldown=1)


@dataclass
class DemoSchoolSetupResult:
    school_id: str
    created_school: bool
    already_seeded: bool = False
    subjects: int = 0
    courses: int = 0
    chapters: int = 0
    contributions: int = 0
    chapter_ids: list[str] = field(default_factory=list)


async def seed_demo_school(db: AsyncSession, repo: ForumRepository, author: Author) -> DemoSchoolSetupResult:
    """Populate the demo school with sample subjects, courses, chapters and contributions.

    The school thread is created only when no demo school exists, and content is
    seeded only once: a demo school that already has subjects is left alone.
    """
    existing = await repo.find_demo_school()
    if existing is not None:
        result = DemoSchoolSetupResult(school_id=existing.id, created_school=False)
        if await repo.list_subjects(existing.id):
            result.already_seeded = True
            logger.info("Demo school %s already seeded; nothing to do", existing.id)
            return result
    else:
        school = await repo.create_school(
            settings.DEMO_SCHOOL_NAME, author,
            description="A demonstration school showcasing Class Memory Rooms features",
            join_key=settings.DEMO_JOIN_KEY,
            is_demo=True,
        )
        result = DemoSchoolSetupResult(school_id=school.id, created_school=True)
        if school.id != settings.DEMO_SCHOOL_ID:
            logger.warning("Demo school thread created as %s; set DEMO_SCHOOL_ID=%s", school.id, school.id)

    school_id = result.school_id
    subjects = {}
    for item in DEMO_SUBJECTS:
        subject = await repo.create_subject(
            school_id, item["name"], author, description=item["description"], color=item["color"],
        )
        subjects[item["name"]] = subject.id
        result.subjects += 1

    courses = {}
    for item in DEMO_COURSES:
        course = await repo.create_course(
            subjects[item["subject"]], author,
            code=item["code"], title=item["title"], teacher=item["teacher"], term=item["term"],
        )
        courses[item["code"]] = course.id
        result.courses += 1

    chapters = {}
    for item in DEMO_CHAPTERS:
        chapter = await repo.create_chapter(
            courses[item["course"]], author,
            title=item["title"], description=item["description"], label=item["label"],
        )
        chapters[item["title"]] = chapter.id
        result.chapter_ids.append(chapter.id)
        result.chapters += 1

    for item in DEMO_CONTRIBUTIONS:
        data = ContributionCreate(
            type=item["type"], title=item["title"], content=item["content"],
            link_url=item.get("link_url"), anonymous=item.get("anonymous", False),
        )
        await repo.create_contribution(chapters[item["chapter"]], author, data)
        result.contributions += 1

    await update_ai_settings(db, school_id, DEMO_AI_SETTINGS)
    logger.info(
        "Demo school %s seeded: %d subjects, %d courses, %d chapters, %d contributions",
        school_id, result.subjects, result.courses, result.chapters, result.contributions,
    )
    return result
