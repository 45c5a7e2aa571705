"""Add scheduled_for to tasks and make (template_id, scheduled_for) unique

Revision ID: 004
Revises: 003
Create Date: 2026-02-21

"""
from typing import Sequence, Union

from alembic import op
from sqlalchemy import text

revision: str = '004'
down_revision: Union[str, None] = '003'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    conn = op.get_bind()

    columns = {row[1] for row in conn.execute(text("PRAGMA table_info(tasks)")).fetchall()}

    if "scheduled_for" not in columns:
        conn.execute(text("ALTER TABLE tasks ADD COLUMN scheduled_for TEXT"))

    # NULLs are distinct in SQLite, so hand-made tasks (no template) are unaffected
    conn.execute(text("""
        CREATE UNIQUE INDEX IF NOT EXISTS idx_tasks_template_scheduled_for
        ON tasks(template_id, scheduled_for)
    """))


def downgrade() -> None:
    conn = op.get_bind()
    conn.execute(text("DROP INDEX IF EXISTS idx_tasks_template_scheduled_for"))
