import sqlite3
import json
import os
import uuid
from datetime import datetime, timezone
from typing import Any, Optional
from contextlib import contextmanager

from dotenv import load_dotenv

from models import Task, Template

load_dotenv()

DATABASE_PATH = os.getenv("DATABASE_PATH", "fieldtasks.db")


@contextmanager
def get_db():
    """Context manager for database connections."""
    conn = sqlite3.connect(DATABASE_PATH)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def transaction():
    """
    Connection holding the database write lock for the whole block.
    Commits on success, rolls back everything written on any exception.
    """
    with get_db() as conn:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise


def init_db():
    """Initialize database by running Alembic migrations."""
    import subprocess

    # Run alembic upgrade from the backend directory
    backend_dir = os.path.dirname(os.path.abspath(__file__))
    subprocess.run(
        ["alembic", "upgrade", "head"],
        cwd=backend_dir,
        check=True
    )


def to_db_instant(value: Optional[datetime]) -> Optional[str]:
    """
    Store instants as UTC ISO strings with second precision so that
    string comparison in SQL matches chronological order.
    Naive datetimes are taken to be UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="seconds")


def from_db_instant(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _json_or_none(value: Optional[str]) -> Any:
    if value is None or value == "":
        return None
    return json.loads(value)


def _row_to_template(row) -> Template:
    """Convert a database row to a Template model."""
    return Template(
        id=row["id"],
        name=row["name"],
        default_title=row["default_title"],
        default_description=row["default_description"],
        default_division_id=row["default_division_id"],
        default_custom_fields=_json_or_none(row["default_custom_fields"]),
        is_active=bool(row["is_active"]),
        # Malformed JSON is kept as-is so the sweep can report it per template
        recurrence_rule=_load_rule(row["recurrence_rule"]),
        last_generated_at=from_db_instant(row["last_generated_at"]),
        next_generation_at=from_db_instant(row["next_generation_at"]),
        last_assigned_index=row["last_assigned_index"],
        created_at=row["created_at"],
    )


def _load_rule(raw: Optional[str]) -> Optional[dict]:
    if raw is None or raw == "":
        return None
    try:
        loaded = json.loads(raw)
    except json.JSONDecodeError:
        return {"frequency": None, "raw": raw}
    return loaded if isinstance(loaded, dict) else {"frequency": None, "raw": loaded}


def _row_to_task(row) -> Task:
    """Convert a database row to a Task model."""
    return Task(
        id=row["id"],
        title=row["title"],
        description=row["description"],
        status_id=row["status_id"],
        division_id=row["division_id"],
        template_id=row["template_id"],
        assigned_user_id=row["assigned_user_id"],
        custom_fields=_json_or_none(row["custom_fields"]),
        scheduled_for=from_db_instant(row["scheduled_for"]),
        created_at=row["created_at"],
    )


# Status operations
def create_status_db(status_id: str, name: str, is_default: bool = False) -> None:
    created_at = datetime.now(timezone.utc).isoformat()
    with get_db() as conn:
        conn.execute(
            "INSERT INTO statuses (id, name, is_default, created_at) VALUES (?, ?, ?, ?)",
            (status_id, name, int(is_default), created_at)
        )
        conn.commit()


def get_default_status_id() -> Optional[str]:
    """Get the id of the status new tasks start in, or None if none is marked default."""
    with get_db() as conn:
        row = conn.execute(
            "SELECT id FROM statuses WHERE is_default = 1 ORDER BY created_at LIMIT 1"
        ).fetchone()
        return row["id"] if row else None


# Template operations
def create_template_db(
    template_id: str,
    name: str,
    default_title: Optional[str] = None,
    default_description: Optional[str] = None,
    default_division_id: Optional[str] = None,
    default_custom_fields: Optional[dict] = None,
    recurrence_rule: Optional[dict] = None,
    is_active: bool = False,
    next_generation_at: Optional[datetime] = None,
) -> Template:
    """Create a task template.
    Templates start inactive unless is_active is set; a template only takes part
    in sweeps once it is active, has a recurrence rule and a next_generation_at.
    """
    created_at = datetime.now(timezone.utc).isoformat()
    with get_db() as conn:
        conn.execute(
            """INSERT INTO task_templates
               (id, name, default_title, default_description, default_division_id, default_custom_fields,
                recurrence_rule, is_active, next_generation_at, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                template_id,
                name,
                default_title,
                default_description,
                default_division_id,
                json.dumps(default_custom_fields) if default_custom_fields is not None else None,
                json.dumps(recurrence_rule) if recurrence_rule is not None else None,
                int(is_active),
                to_db_instant(next_generation_at),
                created_at,
            )
        )
        conn.commit()
        row = conn.execute("SELECT * FROM task_templates WHERE id = ?", (template_id,)).fetchone()
        return _row_to_template(row)


def get_template_db(template_id: str) -> Optional[Template]:
    with get_db() as conn:
        row = conn.execute("SELECT * FROM task_templates WHERE id = ?", (template_id,)).fetchone()
        if row:
            return _row_to_template(row)
    return None


def get_all_templates() -> list[Template]:
    with get_db() as conn:
        rows = conn.execute("SELECT * FROM task_templates ORDER BY name").fetchall()
        return [_row_to_template(row) for row in rows]


def _to_column_value(value: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, datetime):
        return to_db_instant(value)
    if isinstance(value, dict):
        return json.dumps(value)
    return value


def update_template_db(template_id: str, **updates) -> Optional[Template]:
    """
    Update a template with any fields provided.
    Only updates fields that differ from current values.

    Args:
        template_id: Template ID to update
        **updates: Column names and values (is_active, recurrence_rule, next_generation_at, ...)
    """
    with get_db() as conn:
        row = conn.execute("SELECT * FROM task_templates WHERE id = ?", (template_id,)).fetchone()
        if not row:
            return None

        keys = row.keys()

        # Filter updates: only include fields that differ from current values
        changes = {}
        for field, new_value in updates.items():
            if field not in keys:
                continue
            stored = _to_column_value(new_value)
            if stored != row[field]:
                changes[field] = stored

        if changes:
            set_clause = ", ".join(f"{field} = ?" for field in changes.keys())
            values = list(changes.values()) + [template_id]
            conn.execute(f"UPDATE task_templates SET {set_clause} WHERE id = ?", values)
            conn.commit()

        updated_row = conn.execute("SELECT * FROM task_templates WHERE id = ?", (template_id,)).fetchone()
        return _row_to_template(updated_row)


def get_templates_due_for_generation(now: datetime) -> list[Template]:
    """
    Get all active templates with a recurrence rule whose next_generation_at has passed.
    Ordered by due instant for stable logs; callers must not rely on it otherwise.
    """
    with get_db() as conn:
        rows = conn.execute(
            """SELECT * FROM task_templates
               WHERE is_active = 1
                 AND recurrence_rule IS NOT NULL
                 AND recurrence_rule != ''
                 AND next_generation_at IS NOT NULL
                 AND next_generation_at <= ?
               ORDER BY next_generation_at, id""",
            (to_db_instant(now),)
        ).fetchall()
        return [_row_to_template(row) for row in rows]


# Generation writes. Both take the caller's connection so they commit or roll back together.
def create_task_from_template_db(
    conn: sqlite3.Connection,
    template: Template,
    status_id: str,
    assigned_user_id: Optional[str],
    scheduled_for: Optional[datetime],
) -> Task:
    """
    Insert a new task generated from a template.
    Title falls back to the template name when default_title is empty.
    (template_id, scheduled_for) is unique, so a second insert for the same
    due instant fails instead of duplicating the task.
    """
    task_id = str(uuid.uuid4())
    created_at = datetime.now(timezone.utc).isoformat()
    title = template.default_title or template.name
    custom_fields = template.default_custom_fields

    conn.execute(
        """INSERT INTO tasks
           (id, title, description, status_id, division_id, template_id, assigned_user_id,
            custom_fields, scheduled_for, created_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            task_id,
            title,
            template.default_description,
            status_id,
            template.default_division_id,
            template.id,
            assigned_user_id,
            json.dumps(custom_fields) if custom_fields is not None else None,
            to_db_instant(scheduled_for),
            created_at,
        )
    )

    return Task(
        id=task_id,
        title=title,
        description=template.default_description,
        status_id=status_id,
        division_id=template.default_division_id,
        template_id=template.id,
        assigned_user_id=assigned_user_id,
        custom_fields=custom_fields,
        scheduled_for=from_db_instant(to_db_instant(scheduled_for)),
        created_at=created_at,
    )


def advance_template_schedule(
    conn: sqlite3.Connection,
    template_id: str,
    observed_next_generation_at: Optional[datetime],
    next_generation_at: datetime,
    generated_at: datetime,
    last_assigned_index: Optional[int],
) -> bool:
    """
    Move a template's schedule forward, but only if it still holds the
    next_generation_at this sweep observed and is still active.
    Returns False when the row changed underneath us (another sweep advanced
    it, or it was deactivated).
    """
    cursor = conn.execute(
        """UPDATE task_templates
           SET last_generated_at = ?, next_generation_at = ?, last_assigned_index = ?
           WHERE id = ? AND is_active = 1 AND next_generation_at = ?""",
        (
            to_db_instant(generated_at),
            to_db_instant(next_generation_at),
            last_assigned_index,
            template_id,
            to_db_instant(observed_next_generation_at),
        )
    )
    return cursor.rowcount == 1


# Task reads
def get_tasks_for_template(template_id: str) -> list[Task]:
    with get_db() as conn:
        rows = conn.execute(
            "SELECT * FROM tasks WHERE template_id = ? ORDER BY scheduled_for, created_at",
            (template_id,)
        ).fetchall()
        return [_row_to_task(row) for row in rows]
