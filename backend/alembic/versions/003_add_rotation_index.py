"""Add last_assigned_index to task_templates for rotation assignment

Revision ID: 003
Revises: 002
Create Date: 2026-02-14

"""
from typing import Sequence, Union

from alembic import op
from sqlalchemy import text

revision: str = '003'
down_revision: Union[str, None] = '002'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    conn = op.get_bind()

    columns = {row[1] for row in conn.execute(text("PRAGMA table_info(task_templates)")).fetchall()}

    if "last_assigned_index" not in columns:
        conn.execute(text("ALTER TABLE task_templates ADD COLUMN last_assigned_index INTEGER"))


def downgrade() -> None:
    # SQLite doesn't support DROP COLUMN easily; downgrade is a no-op
    pass
