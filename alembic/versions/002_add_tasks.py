"""002 – Site tasks and their assignees.

Revision ID: 002_add_tasks
Revises: 001_initial_schema
Create Date: 2026-10-18 16:30:00.000000+02:00
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

# Revision identifiers
revision = "002_add_tasks"
down_revision = "001_initial_schema"
branch_labels = None
depends_on = None


ENUM_TYPES: list[tuple[str, list[str]]] = [
    ("task_status", ["not_started", "in_progress", "on_hold", "completed", "cancelled"]),
    ("task_priority", ["low", "medium", "high", "critical"]),
    (
        "task_category",
        [
            "planning",
            "foundation",
            "structure",
            "electrical",
            "plumbing",
            "finishing",
            "inspection",
            "other",
        ],
    ),
]


def upgrade() -> None:
    for name, values in ENUM_TYPES:
        vals = ", ".join(f"'{v}'" for v in values)
        op.execute(f"CREATE TYPE {name} AS ENUM ({vals})")

    op.execute("""
        CREATE TABLE IF NOT EXISTS tasks (
            id               UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            title            VARCHAR(100) NOT NULL,
            description      VARCHAR(1000),
            site_id          UUID NOT NULL REFERENCES sites(id) ON DELETE CASCADE,
            created_by_id    UUID NOT NULL REFERENCES users(id),
            status           task_status   NOT NULL DEFAULT 'not_started',
            priority         task_priority NOT NULL DEFAULT 'medium',
            category         task_category NOT NULL DEFAULT 'other',
            start_date       DATE,
            due_date         DATE,
            completed_date   TIMESTAMPTZ,
            estimated_hours  NUMERIC(7, 2),
            actual_hours     NUMERIC(7, 2),
            location         VARCHAR(100),
            tags             JSONB NOT NULL DEFAULT '[]'::jsonb,
            materials        JSONB NOT NULL DEFAULT '[]'::jsonb,
            created_at       TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at       TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_tasks_estimated_hours_non_negative CHECK (estimated_hours >= 0),
            CONSTRAINT ck_tasks_actual_hours_non_negative    CHECK (actual_hours >= 0)
        )
    """)
    op.create_index("ix_tasks_site_id", "tasks", ["site_id"])
    op.create_index("ix_tasks_status", "tasks", ["status"])
    op.create_index("ix_tasks_due_date", "tasks", ["due_date"])

    op.create_table(
        "task_assignments",
        sa.Column(
            "task_id",
            UUID(as_uuid=True),
            sa.ForeignKey("tasks.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "user_id",
            UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )
    op.create_index("ix_task_assignments_user_id", "task_assignments", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_task_assignments_user_id", table_name="task_assignments")
    op.drop_table("task_assignments")
    op.execute("DROP TABLE IF EXISTS tasks CASCADE")
    for name, _ in reversed(ENUM_TYPES):
        op.execute(f"DROP TYPE IF EXISTS {name}")
