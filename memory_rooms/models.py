from datetime import datetime, timezone
import enum

from sqlalchemy import (
    Column, Integer, BigInteger, String, Boolean, ForeignKey, DateTime, func,
    UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship

from .database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, enum.Enum):
    student = "student"
    teacher = "teacher"
    admin = "admin"

    @classmethod
    def values(cls) -> set[str]:
        return {r.value for r in cls}


# ---------------------------
# USER MODEL
# ---------------------------
class User(Base):
    __tablename__ = "user"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(320), unique=True, index=True, nullable=False)
    username = Column(String, index=True)
    hashed_password = Column(String(1024), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    is_superuser = Column(Boolean, default=False, nullable=False)
    is_verified = Column(Boolean, default=False, nullable=False)
    # Foru.ms account linked on the user's first forum write
    forum_user_id = Column(String(64), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now())

    memberships = relationship(
        "SchoolMembership",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def display_name(self) -> str:
        if self.username:
            return self.username
        return (self.email or "").split("@", 1)[0] or "Unknown User"


# ---------------------------
# SCHOOL MEMBERSHIP
# ---------------------------
class SchoolMembership(Base):
    __tablename__ = "school_membership"

    id = Column(Integer, primary_key=True)
    user_id = Column(ForeignKey("user.id", ondelete="CASCADE"), index=True, nullable=False)
    school_id = Column(String(64), index=True, nullable=False)   # Foru.ms thread id
    role = Column(String(16), nullable=False, default=Role.student.value)  # student|teacher|admin
    joined_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)

    user = relationship("User", back_populates="memberships")

    __table_args__ = (UniqueConstraint("user_id", "school_id", name="uq_school_membership_user"),)


class SchoolAISettings(Base):
    """Per-school overrides for the AI-note generation gate."""
    __tablename__ = "school_ai_settings"

    school_id = Column(String(64), primary_key=True)
    min_contributions = Column(Integer, nullable=False, default=5)
    student_cooldown_hours = Column(Integer, nullable=False, default=2)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, server_default=func.now())


class GenerationRecord(Base):
    """Last AI-note generation per chapter. One row per chapter, replaced on each generation."""
    __tablename__ = "generation_record"

    chapter_id = Column(String(64), primary_key=True)
    generated_at_ms = Column(BigInteger, nullable=False)    # ms since epoch
    generated_by = Column(String(64), nullable=False)
    generator_role = Column(String(16), nullable=False)
    contribution_count = Column(Integer, nullable=False, default=0)

    __table_args__ = (Index("ix_generation_record_generated_at", "generated_at_ms"),)
