"""
Shared pytest fixtures for backend tests.
Uses a per-test SQLite file for isolation.
"""
import pytest
import sqlite3
import sys
import os

# Add backend to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import database


@pytest.fixture
def test_db(monkeypatch, tmp_path):
    """
    Create an isolated test database for each test.
    Uses a temp file (not :memory:) because database.py opens new connections per operation.
    """
    db_path = str(tmp_path / "test.db")
    monkeypatch.setattr(database, "DATABASE_PATH", db_path)
    monkeypatch.setattr(database, "init_db", lambda: None)
    monkeypatch.setenv("SCHEDULE_TIMEZONE", "UTC")

    # Create tables directly (skip alembic for tests)
    conn = sqlite3.connect(db_path)
    conn.executescript("""
        CREATE TABLE statuses (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            is_default INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL
        );

        CREATE TABLE task_templates (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            default_title TEXT,
            default_description TEXT,
            default_division_id TEXT,
            default_custom_fields TEXT,
            created_at TEXT NOT NULL,
            recurrence_rule TEXT,
            is_active INTEGER DEFAULT 1,
            last_generated_at TEXT,
            next_generation_at TEXT,
            last_assigned_index INTEGER
        );

        CREATE TABLE tasks (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            description TEXT,
            status_id TEXT NOT NULL REFERENCES statuses(id),
            division_id TEXT,
            assigned_user_id TEXT,
            custom_fields TEXT,
            created_at TEXT NOT NULL,
            template_id TEXT REFERENCES task_templates(id) ON DELETE SET NULL,
            scheduled_for TEXT
        );

        CREATE UNIQUE INDEX idx_tasks_template_scheduled_for ON tasks(template_id, scheduled_for);
    """)
    conn.commit()
    conn.close()

    yield db_path


@pytest.fixture
def default_status(test_db):
    """A default status so generated tasks have somewhere to start."""
    database.create_status_db("status-open", "Open", is_default=True)
    return "status-open"


@pytest.fixture
def app_client(test_db, monkeypatch, tmp_path):
    """
    Create a test client for the FastAPI app.
    Mocks init_db to skip alembic migrations and logs to the temp dir.
    """
    from fastapi.testclient import TestClient
    import main

    monkeypatch.setenv("LOG_PATH", str(tmp_path / "logs" / "test.log"))
    monkeypatch.setattr(main, "ENVIRONMENT", "development")
    monkeypatch.setattr(main, "CRON_SECRET", "")

    with TestClient(main.app) as client:
        yield client
