"""Add recurrence columns to task_templates and template_id to tasks

Revision ID: 002
Revises: 001
Create Date: 2025-02-05

"""
from typing import Sequence, Union

from alembic import op
from sqlalchemy import text

revision: str = '002'
down_revision: Union[str, None] = '001'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    conn = op.get_bind()

    # Check existing columns
    columns = {row[1] for row in conn.execute(text("PRAGMA table_info(task_templates)")).fetchall()}

    if "recurrence_rule" not in columns:
        conn.execute(text("ALTER TABLE task_templates ADD COLUMN recurrence_rule TEXT"))
    if "is_active" not in columns:
        conn.execute(text("ALTER TABLE task_templates ADD COLUMN is_active INTEGER DEFAULT 1"))
    if "last_generated_at" not in columns:
        conn.execute(text("ALTER TABLE task_templates ADD COLUMN last_generated_at TEXT"))
    if "next_generation_at" not in columns:
        conn.execute(text("ALTER TABLE task_templates ADD COLUMN next_generation_at TEXT"))

    task_columns = {row[1] for row in conn.execute(text("PRAGMA table_info(tasks)")).fetchall()}
    if "template_id" not in task_columns:
        conn.execute(text(
            "ALTER TABLE tasks ADD COLUMN template_id TEXT REFERENCES task_templates(id) ON DELETE SET NULL"
        ))

    conn.execute(text("CREATE INDEX IF NOT EXISTS idx_tasks_template_id ON tasks(template_id)"))
    conn.execute(text("""
        CREATE INDEX IF NOT EXISTS idx_task_templates_next_generation
        ON task_templates(next_generation_at)
        WHERE is_active = 1 AND recurrence_rule IS NOT NULL
    """))


def downgrade() -> None:
    # SQLite doesn't support DROP COLUMN easily; only the indexes are removed
    conn = op.get_bind()
    conn.execute(text("DROP INDEX IF EXISTS idx_task_templates_next_generation"))
    conn.execute(text("DROP INDEX IF EXISTS idx_tasks_template_id"))
