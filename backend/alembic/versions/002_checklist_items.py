"""Add checklist_items table for the development checklist

Revision ID: 002
Revises: 001
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
from sqlalchemy import text

revision: str = '002'
down_revision: Union[str, None] = '001'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Initial items; ids are assigned by the table
SEED_ITEMS = [
    ("Password recovery", "medium", "auth"),
    ("Email confirmation", "medium", "auth"),
    ("JWT tokens instead of header auth", "high", "auth"),
    ("User management page for admins", "high", "users"),
    ("Project editing", "high", "projects"),
    ("Project archiving", "medium", "projects"),
    ("Task editing", "high", "tasks"),
    ("Kanban board", "high", "tasks"),
    ("Task dependencies", "medium", "tasks"),
    ("Tag management", "medium", "tags"),
    ("Comment editing", "medium", "comments"),
    ("Time tracking timer", "high", "time"),
]


def upgrade() -> None:
    conn = op.get_bind()

    result = conn.execute(
        text("SELECT name FROM sqlite_master WHERE type='table' AND name='checklist_items'")
    ).fetchone()
    if result:
        return

    conn.execute(text("""
        CREATE TABLE checklist_items (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            content TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending',
            priority TEXT NOT NULL DEFAULT 'medium',
            category TEXT NOT NULL DEFAULT 'general',
            created_at TEXT NOT NULL
        )
    """))
    for content, priority, category in SEED_ITEMS:
        conn.execute(
            text("""INSERT INTO checklist_items (content, status, priority, category, created_at)
                    VALUES (:content, 'pending', :priority, :category, datetime('now'))"""),
            {"content": content, "priority": priority, "category": category}
        )


def downgrade() -> None:
    conn = op.get_bind()
    conn.execute(text("DROP TABLE IF EXISTS checklist_items"))
