"""initial_schema

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from keyholder_tracker.db.models import UTCDateTime


# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create relationship, request, invite, chastity, session, task and event tables."""

    op.create_table(
        "relationships",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("submissive_id", sa.String(length=128), nullable=False),
        sa.Column("keyholder_id", sa.String(length=128), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("permissions", sa.JSON(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=False),
        # Set only while ACTIVE; the unique constraint allows one active pairing per pair
        sa.Column("active_pair_key", sa.String(length=300), nullable=True),
        sa.Column("created_at", UTCDateTime(), nullable=False),
        sa.Column("established_at", UTCDateTime(), nullable=False),
        sa.Column("updated_at", UTCDateTime(), nullable=False),
        sa.Column("ended_at", UTCDateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("active_pair_key"),
    )
    op.create_index("ix_relationships_submissive_id", "relationships", ["submissive_id"])
    op.create_index("ix_relationships_keyholder_id", "relationships", ["keyholder_id"])

    op.create_table(
        "relationship_requests",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("from_user_id", sa.String(length=128), nullable=False),
        sa.Column("to_user_id", sa.String(length=128), nullable=False),
        sa.Column("from_role", sa.String(length=16), nullable=False),
        sa.Column("to_role", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("created_at", UTCDateTime(), nullable=False),
        sa.Column("expires_at", UTCDateTime(), nullable=False),
        sa.Column("responded_at", UTCDateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_relationship_requests_from_user_id", "relationship_requests", ["from_user_id"]
    )
    op.create_index(
        "ix_relationship_requests_to_user_id", "relationship_requests", ["to_user_id"]
    )

    op.create_table(
        "invite_codes",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("code", sa.String(length=16), nullable=False),
        sa.Column("submissive_id", sa.String(length=128), nullable=False),
        sa.Column("is_used", sa.Boolean(), nullable=False),
        sa.Column("used_by", sa.String(length=128), nullable=True),
        sa.Column("is_revoked", sa.Boolean(), nullable=False),
        sa.Column("created_at", UTCDateTime(), nullable=False),
        sa.Column("expires_at", UTCDateTime(), nullable=False),
        sa.Column("used_at", UTCDateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_invite_codes_code", "invite_codes", ["code"])
    op.create_index("ix_invite_codes_submissive_id", "invite_codes", ["submissive_id"])

    op.create_table(
        "chastity_data",
        sa.Column("relationship_id", sa.String(length=36), nullable=False),
        sa.Column("submissive_id", sa.String(length=128), nullable=False),
        sa.Column("keyholder_id", sa.String(length=128), nullable=False),
        sa.Column("current_session_id", sa.String(length=36), nullable=False),
        sa.Column("current_is_active", sa.Boolean(), nullable=False),
        sa.Column("current_start_time", UTCDateTime(), nullable=True),
        sa.Column("current_paused_at", UTCDateTime(), nullable=True),
        sa.Column("current_accumulated_pause_time", sa.Integer(), nullable=False),
        sa.Column("current_keyholder_approval_required", sa.Boolean(), nullable=False),
        sa.Column("goals", sa.JSON(), nullable=False),
        sa.Column("settings", sa.JSON(), nullable=False),
        sa.Column("revision", sa.Integer(), nullable=False),
        sa.Column("created_at", UTCDateTime(), nullable=False),
        sa.Column("updated_at", UTCDateTime(), nullable=False),
        sa.ForeignKeyConstraint(["relationship_id"], ["relationships.id"]),
        sa.PrimaryKeyConstraint("relationship_id"),
    )

    op.create_table(
        "sessions",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("relationship_id", sa.String(length=36), nullable=False),
        sa.Column("start_time", UTCDateTime(), nullable=False),
        sa.Column("end_time", UTCDateTime(), nullable=True),
        sa.Column("duration", sa.Integer(), nullable=False),
        sa.Column("accumulated_pause_time", sa.Integer(), nullable=False),
        sa.Column("events", sa.JSON(), nullable=False),
        sa.Column("goal_met", sa.Boolean(), nullable=False),
        sa.Column("keyholder_approval", sa.JSON(), nullable=False),
        sa.Column("goal_duration", sa.Integer(), nullable=True),
        sa.Column("is_hardcore_mode", sa.Boolean(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", UTCDateTime(), nullable=False),
        sa.Column("updated_at", UTCDateTime(), nullable=False),
        sa.ForeignKeyConstraint(["relationship_id"], ["relationships.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_sessions_relationship_start", "sessions", ["relationship_id", "start_time"]
    )

    op.create_table(
        "tasks",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("relationship_id", sa.String(length=36), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("assigned_by", sa.String(length=16), nullable=False),
        sa.Column("assigned_to", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("due_date", UTCDateTime(), nullable=True),
        sa.Column("consequence", sa.JSON(), nullable=True),
        sa.Column("submissive_note", sa.Text(), nullable=True),
        sa.Column("keyholder_feedback", sa.Text(), nullable=True),
        sa.Column("submitted_at", UTCDateTime(), nullable=True),
        sa.Column("approved_at", UTCDateTime(), nullable=True),
        sa.Column("completed_at", UTCDateTime(), nullable=True),
        sa.Column("deadline_notice", sa.String(length=16), nullable=False),
        sa.Column("created_at", UTCDateTime(), nullable=False),
        sa.Column("updated_at", UTCDateTime(), nullable=False),
        sa.ForeignKeyConstraint(["relationship_id"], ["relationships.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_tasks_relationship_created", "tasks", ["relationship_id", "created_at"])

    op.create_table(
        "events",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("relationship_id", sa.String(length=36), nullable=False),
        sa.Column("type", sa.String(length=64), nullable=False),
        sa.Column("timestamp", UTCDateTime(), nullable=False),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("logged_by", sa.String(length=16), nullable=False),
        sa.Column("is_private", sa.Boolean(), nullable=False),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("created_at", UTCDateTime(), nullable=False),
        sa.ForeignKeyConstraint(["relationship_id"], ["relationships.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_events_relationship_timestamp", "events", ["relationship_id", "timestamp"]
    )


def downgrade() -> None:
    """Drop all tables in reverse dependency order."""
    op.drop_index("ix_events_relationship_timestamp", table_name="events")
    op.drop_table("events")
    op.drop_index("ix_tasks_relationship_created", table_name="tasks")
    op.drop_table("tasks")
    op.drop_index("ix_sessions_relationship_start", table_name="sessions")
    op.drop_table("sessions")
    op.drop_table("chastity_data")
    op.drop_index("ix_invite_codes_submissive_id", table_name="invite_codes")
    op.drop_index("ix_invite_codes_code", table_name="invite_codes")
    op.drop_table("invite_codes")
    op.drop_index("ix_relationship_requests_to_user_id", table_name="relationship_requests")
    op.drop_index("ix_relationship_requests_from_user_id", table_name="relationship_requests")
    op.drop_table("relationship_requests")
    op.drop_index("ix_relationships_keyholder_id", table_name="relationships")
    op.drop_index("ix_relationships_submissive_id", table_name="relationships")
    op.drop_table("relationships")
