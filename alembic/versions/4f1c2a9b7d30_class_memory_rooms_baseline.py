"""class memory rooms baseline

Revision ID: 4f1c2a9b7d30
Revises: 
Create Date: 2025-11-02 10:14:52.118406

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4f1c2a9b7d30'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "user",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("username", sa.String()),
        sa.Column("hashed_password", sa.String(length=1024), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("is_superuser", sa.Boolean(), nullable=False),
        sa.Column("is_verified", sa.Boolean(), nullable=False),
        sa.Column("forum_user_id", sa.String(length=64)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
    )
    op.create_index("ix_user_id", "user", ["id"])
    op.create_index("ix_user_email", "user", ["email"], unique=True)
    op.create_index("ix_user_username", "user", ["username"])
    op.create_index("ix_user_forum_user_id", "user", ["forum_user_id"])

    op.create_table(
        "school_membership",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id", ondelete="CASCADE"), nullable=False),
        sa.Column("school_id", sa.String(length=64), nullable=False),
        sa.Column("role", sa.String(length=16), nullable=False),
        sa.Column("joined_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("user_id", "school_id", name="uq_school_membership_user"),
    )
    op.create_index("ix_school_membership_user_id", "school_membership", ["user_id"])
    op.create_index("ix_school_membership_school_id", "school_membership", ["school_id"])

    # gate overrides + last generation per chapter
    op.create_table(
        "school_ai_settings",
        sa.Column("school_id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("min_contributions", sa.Integer(), nullable=False),
        sa.Column("student_cooldown_hours", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
    )
    op.create_table(
        "generation_record",
        sa.Column("chapter_id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("generated_at_ms", sa.BigInteger(), nullable=False),
        sa.Column("generated_by", sa.String(length=64), nullable=False),
        sa.Column("generator_role", sa.String(length=16), nullable=False),
        sa.Column("contribution_count", sa.Integer(), nullable=False),
    )
    op.create_index("ix_generation_record_generated_at", "generation_record", ["generated_at_ms"])


def downgrade() -> None:
    op.drop_index("ix_generation_record_generated_at", table_name="generation_record")
    op.drop_table("generation_record")
    op.drop_table("school_ai_settings")
    op.drop_index("ix_school_membership_school_id", table_name="school_membership")
    op.drop_index("ix_school_membership_user_id", table_name="school_membership")
    op.drop_table("school_membership")
    op.drop_index("ix_user_forum_user_id", table_name="user")
    op.drop_index("ix_user_username", table_name="user")
    op.drop_index("ix_user_email", table_name="user")
    op.drop_index("ix_user_id", table_name="user")
    op.drop_table("user")
