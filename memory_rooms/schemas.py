from datetime import datetime
from typing import Literal, Optional

from fastapi_users import schemas
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

RoleName = Literal["student", "teacher", "admin"]
ChapterStatus = Literal["Collecting", "AI Ready", "Compiled"]
ContributionType = Literal["takeaway", "notes_photo", "resource", "solved_example", "confusion"]

CONTRIBUTION_TYPES = ("takeaway", "notes_photo", "resource", "solved_example", "confusion")
CHAPTER_STATUSES = ("Collecting", "AI Ready", "Compiled")


# =========================
# USER SCHEMAS
# =========================
class UserRead(schemas.BaseUser[int]):
    username: Optional[str] = None
    forum_user_id: Optional[str] = None


class UserCreate(schemas.BaseUserCreate):
    username: Optional[str] = None


class UserUpdate(schemas.BaseUserUpdate):
    username: Optional[str] = None


# =========================
# API BASE
# =========================
class CamelModel(BaseModel):
    """JSON bodies use camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =========================
# HIERARCHY
# =========================
class School(CamelModel):
    id: str
    name: str
    description: str = ""
    join_key: Optional[str] = None
    is_demo: bool = False
    created_at: Optional[str] = None
    user_role: Optional[RoleName] = None


class Subject(CamelModel):
    id: str
    school_id: str
    name: str
    description: str = ""
    color_tag: str
    created_at: Optional[str] = None


class Course(CamelModel):
    id: str
    subject_id: str
    school_id: str
    code: str
    title: str
    teacher: str
    term: str
    section: str
    created_at: Optional[str] = None


class Chapter(CamelModel):
    id: str
    course_id: str
    school_id: Optional[str] = None
    title: str
    label: str
    description: str = ""
    status: ChapterStatus = "Collecting"
    contributions: int = 0
    resources: int = 0
    photos: int = 0
    has_notes: bool = False
    latest_notes_version: Optional[int] = None
    created_at: Optional[str] = None


# =========================
# CONTRIBUTIONS
# =========================
class LinkRef(CamelModel):
    url: str
    title: Optional[str] = None


class ImageRef(CamelModel):
    url: str
    alt: str = ""


class Reply(CamelModel):
    id: str
    parent_id: str
    content: str
    author_id: Optional[str] = None
    author_name: str
    anonymous: bool = False
    created_at: Optional[str] = None


class Contribution(CamelModel):
    id: str
    chapter_id: str
    type: ContributionType
    title: Optional[str] = None
    content: str = ""
    link: Optional[LinkRef] = None
    image: Optional[ImageRef] = None
    anonymous: bool = False
    author_id: Optional[str] = None
    author_name: str
    helpful_count: int = 0
    reply_count: int = 0
    replies: list[Reply] = Field(default_factory=list)
    created_at: Optional[str] = None


# =========================
# UNIFIED NOTES
# =========================
class KeyConcept(CamelModel):
    title: str
    explanation: str = ""


class Definition(CamelModel):
    term: str
    meaning: str = ""


class Formula(CamelModel):
    formula: str
    meaning: str = ""
    note: Optional[str] = None


class WorkedExample(CamelModel):
    title: str
    steps: list[str] = Field(default_factory=list)
    answer: str = ""


class ResourceLink(CamelModel):
    title: str
    url: str
    why: str = ""


class NotePhoto(CamelModel):
    alt: str = ""
    url: Optional[str] = None


class NotesSections(CamelModel):
    overview: list[str] = Field(default_factory=list)
    key_concepts: list[KeyConcept] = Field(default_factory=list)
    definitions: list[Definition] = Field(default_factory=list)
    formulas: list[Formula] = Field(default_factory=list)
    steps: list[str] = Field(default_factory=list)
    examples: list[WorkedExample] = Field(default_factory=list)
    mistakes: list[str] = Field(default_factory=list)
    resources: list[ResourceLink] = Field(default_factory=list)
    best_note_photos: list[NotePhoto] = Field(default_factory=list)
    quick_revision: list[str] = Field(default_factory=list)


class NotesVersion(CamelModel):
    id: str
    chapter_id: str
    version: int
    generated_at: Optional[str] = None
    generated_by: Optional[str] = None
    generator_role: Optional[str] = None
    contribution_count: int = 0


class UnifiedNotes(NotesVersion):
    sections: NotesSections = Field(default_factory=NotesSections)


# =========================
# MEMBERSHIP / SETTINGS
# =========================
class Member(CamelModel):
    user_id: int
    name: str
    email: str
    role: RoleName
    joined_at: Optional[datetime] = None


class AISettings(CamelModel):
    min_contributions: int = Field(default=5, ge=1, le=50)
    student_cooldown: int = Field(default=2, ge=0, le=24)   # hours


class AISettingsUpdate(CamelModel):
    min_contributions: Optional[int] = Field(default=None, ge=1, le=50)
    student_cooldown: Optional[int] = Field(default=None, ge=0, le=24)

    @model_validator(mode="after")
    def _require_one(self):
        if self.min_contributions is None and self.student_cooldown is None:
            raise ValueError("No valid settings provided")
        return self


class GenerationDecision(CamelModel):
    allowed: bool
    reason: Optional[str] = None
    retry_after_minutes: Optional[int] = None


class SearchResult(CamelModel):
    type: Literal["chapter", "contribution", "notes"]
    id: str
    title: str
    excerpt: str = ""
    chapter_id: Optional[str] = None
    contribution_type: Optional[ContributionType] = None
    created_at: Optional[str] = None


# =========================
# REQUEST BODIES
# =========================
class SchoolCreate(CamelModel):
    name: str = Field(min_length=2, max_length=120)
    description: str = ""


class JoinSchoolRequest(CamelModel):
    join_key: str


class RoleUpdate(CamelModel):
    new_role: RoleName


class SubjectCreate(CamelModel):
    name: str = Field(min_length=1, max_length=120)
    description: str = ""
    color: Optional[str] = None


class CourseCreate(CamelModel):
    code: str = Field(min_length=1, max_length=32)
    title: str = Field(min_length=1, max_length=200)
    teacher: Optional[str] = None
    term: Optional[str] = None
    section: Optional[str] = None


class ChapterCreate(CamelModel):
    title: str = Field(min_length=1, max_length=200)
    description: str = ""
    label: Optional[str] = None


class ContributionCreate(CamelModel):
    type: ContributionType
    title: Optional[str] = None
    content: str = ""
    link_url: Optional[str] = None
    link_title: Optional[str] = None
    image_url: Optional[str] = None
    anonymous: bool = False

    @model_validator(mode="after")
    def _require_body(self):
        if not (self.content or "").strip() and not self.image_url and not self.link_url:
            raise ValueError("Content is required")
        return self


class ReplyCreate(CamelModel):
    content: str = Field(min_length=1)
    anonymous: bool = False


class PostUpdate(CamelModel):
    content: str = Field(min_length=1)
