import sqlite3
import json
import os
from datetime import datetime
from typing import Optional
from contextlib import contextmanager

from models import AISettings, Chat, ChecklistItem, Project, Task, User

DATABASE_PATH = os.getenv("DATABASE_PATH", "projectmind.db")

@contextmanager
def get_db():
    """Context manager for database connections."""
    conn = sqlite3.connect(DATABASE_PATH)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()

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


# Users

def _row_to_user(row) -> User:
    return User(id=row["id"], email=row["email"], name=row["name"], role=row["role"])

def create_user_db(user_id: str, email: str, name: Optional[str] = None, role: str = "USER") -> User:
    created_at = datetime.now().isoformat()
    with get_db() as conn:
        conn.execute(
            "INSERT INTO users (id, email, name, role, created_at) VALUES (?, ?, ?, ?, ?)",
            (user_id, email, name, role, created_at)
        )
        conn.commit()
    return User(id=user_id, email=email, name=name, role=role)

def get_user_db(user_id: str) -> Optional[User]:
    with get_db() as conn:
        row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return _row_to_user(row) if row else None

def find_user_by_email_db(email: str) -> Optional[User]:
    with get_db() as conn:
        row = conn.execute("SELECT * FROM users WHERE lower(email) = ?", (email.lower(),)).fetchone()
        return _row_to_user(row) if row else None


# Projects

# owner_id is derived from the membership table
PROJECT_SELECT = """
    SELECT p.*,
           (SELECT m.user_id FROM project_members m
             WHERE m.project_id = p.id AND m.role = 'OWNER' LIMIT 1) AS owner_id
    FROM projects p
"""

def _row_to_project(row) -> Project:
    return Project(
        id=row["id"],
        title=row["title"],
        description=row["description"] or "",
        status=row["status"],
        start_date=row["start_date"],
        end_date=row["end_date"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        owner_id=row["owner_id"],
    )

def create_project_db(
    project_id: str,
    title: str,
    owner_id: str,
    description: str = "",
    status: str = "PLANNING",
    start_date: Optional[str] = None,
    end_date: Optional[str] = None
) -> Project:
    """Create a project and register owner_id as its OWNER member.
    Both rows are written in one transaction.
    """
    now = datetime.now().isoformat()
    with get_db() as conn:
        conn.execute(
            """INSERT INTO projects
               (id, title, description, status, start_date, end_date, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (project_id, title, description, status, start_date, end_date, now, now)
        )
        conn.execute(
            "INSERT INTO project_members (project_id, user_id, role) VALUES (?, ?, 'OWNER')",
            (project_id, owner_id)
        )
        conn.commit()

    return Project(
        id=project_id,
        title=title,
        description=description,
        status=status,
        start_date=start_date,
        end_date=end_date,
        created_at=now,
        updated_at=now,
        owner_id=owner_id,
    )

def get_project_db(project_id: str) -> Optional[Project]:
    with get_db() as conn:
        row = conn.execute(PROJECT_SELECT + " WHERE p.id = ?", (project_id,)).fetchone()
        return _row_to_project(row) if row else None

def get_projects_for_user(user_id: str) -> list[Project]:
    """Projects the user is a member of, most recently updated first."""
    with get_db() as conn:
        rows = conn.execute(
            PROJECT_SELECT + """
            WHERE p.id IN (SELECT project_id FROM project_members WHERE user_id = ?)
            ORDER BY p.updated_at DESC
            """,
            (user_id,)
        ).fetchall()
        return [_row_to_project(row) for row in rows]

def find_owned_project_by_title_db(user_id: str, title: str) -> Optional[Project]:
    """Exact title match among projects the user owns."""
    with get_db() as conn:
        row = conn.execute(
            PROJECT_SELECT + """
            WHERE p.title = ? AND p.id IN (
                SELECT project_id FROM project_members WHERE user_id = ? AND role = 'OWNER'
            )
            LIMIT 1
            """,
            (title, user_id)
        ).fetchone()
        return _row_to_project(row) if row else None

def find_member_project_db(user_id: str, title: Optional[str] = None) -> Optional[Project]:
    """Find a project the user belongs to.
    With a title, only an exact match is returned; without one, the oldest membership wins.
    """
    query = PROJECT_SELECT + " WHERE p.id IN (SELECT project_id FROM project_members WHERE user_id = ?)"
    params: list = [user_id]
    if title is not None:
        query += " AND p.title = ?"
        params.append(title)
    query += " ORDER BY p.created_at LIMIT 1"
    with get_db() as conn:
        row = conn.execute(query, params).fetchone()
        return _row_to_project(row) if row else None

def get_member_role_db(project_id: str, user_id: str) -> Optional[str]:
    with get_db() as conn:
        row = conn.execute(
            "SELECT role FROM project_members WHERE project_id = ? AND user_id = ?",
            (project_id, user_id)
        ).fetchone()
        return row["role"] if row else None

def get_project_members_db(project_id: str) -> list[dict]:
    """Members of a project with their display fields, owner first."""
    with get_db() as conn:
        rows = conn.execute(
            """SELECT m.user_id, m.role, u.name, u.email
               FROM project_members m JOIN users u ON u.id = m.user_id
               WHERE m.project_id = ?
               ORDER BY m.role = 'OWNER' DESC, u.email""",
            (project_id,)
        ).fetchall()
        return [dict(row) for row in rows]

def delete_project_db(project_id: str) -> bool:
    with get_db() as conn:
        conn.execute("DELETE FROM tasks WHERE project_id = ?", (project_id,))
        conn.execute("DELETE FROM project_members WHERE project_id = ?", (project_id,))
        cursor = conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
        conn.commit()
        return cursor.rowcount > 0


# Tasks

def _row_to_task(row) -> Task:
    """Convert a database row to a Task model."""
    return Task(
        id=row["id"],
        project_id=row["project_id"],
        title=row["title"],
        description=row["description"] or "",
        status=row["status"],
        priority=row["priority"],
        due_date=row["due_date"],
        estimated_hours=row["estimated_hours"],
        assignee_id=row["assignee_id"],
        created_at=row["created_at"],
        completed_at=row["completed_at"],
    )

def create_task_db(
    task_id: str,
    project_id: str,
    title: str,
    description: str = "",
    status: str = "TODO",
    priority: str = "MEDIUM",
    due_date: Optional[str] = None,
    estimated_hours: Optional[float] = None,
    assignee_id: Optional[str] = None
) -> Task:
    """Create a task inside project_id.
    due_date can be YYYY-MM-DD or a full ISO datetime.
    A task created as DONE gets completed_at stamped immediately.
    """
    created_at = datetime.now().isoformat()
    completed_at = created_at if status == "DONE" else None

    with get_db() as conn:
        conn.execute(
            """INSERT INTO tasks
               (id, project_id, title, description, status, priority, due_date, estimated_hours, assignee_id, created_at, completed_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (task_id, project_id, title, description, status, priority, due_date, estimated_hours, assignee_id, created_at, completed_at)
        )
        conn.execute("UPDATE projects SET updated_at = ? WHERE id = ?", (created_at, project_id))
        conn.commit()

    return Task(
        id=task_id,
        project_id=project_id,
        title=title,
        description=description,
        status=status,
        priority=priority,
        due_date=due_date,
        estimated_hours=estimated_hours,
        assignee_id=assignee_id,
        created_at=created_at,
        completed_at=completed_at,
    )

def get_task_db(task_id: str) -> Optional[Task]:
    with get_db() as conn:
        row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        return _row_to_task(row) if row else None

def get_tasks_for_project(project_id: str, since: Optional[str] = None) -> list[Task]:
    """Tasks of a project, optionally only those created at or after `since` (ISO string)."""
    query = "SELECT * FROM tasks WHERE project_id = ?"
    params: list = [project_id]
    if since:
        query += " AND created_at >= ?"
        params.append(since)
    query += " ORDER BY created_at"
    with get_db() as conn:
        rows = conn.execute(query, params).fetchall()
        return [_row_to_task(row) for row in rows]

def update_task_db(task_id: str, **updates) -> Optional[Task]:
    """
    Update a task with any fields provided.
    Only updates fields that differ from current values.
    Moving into DONE stamps completed_at; moving out of DONE clears it.

    Args:
        task_id: Task ID to update
        **updates: Field names and values to update (title, status, priority, due_date, ...)
    """
    with get_db() as conn:
        row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        if not row:
            return None

        keys = row.keys()

        # Filter updates: only include fields that differ from current values
        changes = {}
        for field, new_value in updates.items():
            if field not in keys or field in ("id", "created_at", "completed_at"):
                continue
            if new_value != row[field]:
                changes[field] = new_value

        if "status" in changes:
            if changes["status"] == "DONE":
                changes["completed_at"] = datetime.now().isoformat()
            elif row["status"] == "DONE":
                changes["completed_at"] = None

        # Execute UPDATE only if there are actual changes
        if changes:
            set_clause = ", ".join(f"{field} = ?" for field in changes.keys())
            values = list(changes.values()) + [task_id]
            conn.execute(f"UPDATE tasks SET {set_clause} WHERE id = ?", values)
            conn.commit()

        # Return updated task (re-fetch to get current state)
        updated_row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        return _row_to_task(updated_row)

def delete_task_db(task_id: str) -> bool:
    with get_db() as conn:
        cursor = conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
        conn.commit()
        return cursor.rowcount > 0


# AI settings

SETTINGS_FIELDS = ("provider", "base_url", "model", "api_key", "max_tokens", "temperature", "enabled")

def _row_to_settings(row) -> AISettings:
    return AISettings(
        provider=row["provider"],
        base_url=row["base_url"],
        model=row["model"],
        api_key=row["api_key"],
        max_tokens=row["max_tokens"],
        temperature=row["temperature"],
        enabled=bool(row["enabled"]),
    )

def get_ai_settings_db(user_id: str) -> AISettings:
    """Get a user's AI settings, creating the default row on first access."""
    with get_db() as conn:
        row = conn.execute("SELECT * FROM ai_settings WHERE user_id = ?", (user_id,)).fetchone()
        if row:
            return _row_to_settings(row)

    return save_ai_settings_db(user_id, {})

def save_ai_settings_db(user_id: str, updates: dict) -> AISettings:
    """Upsert a user's AI settings.
    Fields missing from `updates` keep their stored value, or the default for a new row.
    """
    now = datetime.now().isoformat()
    with get_db() as conn:
        row = conn.execute("SELECT * FROM ai_settings WHERE user_id = ?", (user_id,)).fetchone()
        current = _row_to_settings(row) if row else AISettings()
        fields = current.model_dump()
        fields.update({k: v for k, v in updates.items() if k in SETTINGS_FIELDS})
        # Empty string clears the URL
        fields["base_url"] = fields["base_url"] or None
        merged = AISettings.model_validate(fields)

        values = (
            merged.provider.value,
            merged.base_url,
            merged.model,
            merged.api_key,
            merged.max_tokens,
            merged.temperature,
            int(merged.enabled),
        )
        if row:
            conn.execute(
                """UPDATE ai_settings
                   SET provider = ?, base_url = ?, model = ?, api_key = ?, max_tokens = ?, temperature = ?, enabled = ?, updated_at = ?
                   WHERE user_id = ?""",
                values + (now, user_id)
            )
        else:
            conn.execute(
                """INSERT INTO ai_settings
                   (provider, base_url, model, api_key, max_tokens, temperature, enabled, updated_at, user_id)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                values + (now, user_id)
            )
        conn.commit()

    return merged


# Chat operations

def _row_to_chat(row) -> Chat:
    return Chat(
        id=row["id"],
        user_id=row["user_id"],
        project_id=row["project_id"],
        task_id=row["task_id"],
        title=row["title"],
        messages=json.loads(row["messages"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )

def create_chat_db(chat_id: str, user_id: str, project_id: Optional[str] = None, task_id: Optional[str] = None) -> Chat:
    """Create a new empty chat."""
    now = datetime.now().isoformat()
    with get_db() as conn:
        conn.execute(
            """INSERT INTO ai_chats (id, user_id, project_id, task_id, title, messages, created_at, updated_at)
               VALUES (?, ?, ?, ?, NULL, '[]', ?, ?)""",
            (chat_id, user_id, project_id, task_id, now, now)
        )
        conn.commit()
    return Chat(
        id=chat_id, user_id=user_id, project_id=project_id, task_id=task_id,
        messages=[], created_at=now, updated_at=now,
    )

def get_chat_db(chat_id: str, user_id: str) -> Optional[Chat]:
    """Get a chat owned by user_id."""
    with get_db() as conn:
        row = conn.execute(
            "SELECT * FROM ai_chats WHERE id = ? AND user_id = ?", (chat_id, user_id)
        ).fetchone()
        return _row_to_chat(row) if row else None

def list_chats_db(
    user_id: str,
    project_id: Optional[str] = None,
    task_id: Optional[str] = None,
    limit: int = 50
) -> list[Chat]:
    query = "SELECT * FROM ai_chats WHERE user_id = ?"
    params: list = [user_id]
    if project_id:
        query += " AND project_id = ?"
        params.append(project_id)
    if task_id:
        query += " AND task_id = ?"
        params.append(task_id)
    query += " ORDER BY updated_at DESC LIMIT ?"
    params.append(limit)
    with get_db() as conn:
        rows = conn.execute(query, params).fetchall()
        return [_row_to_chat(row) for row in rows]

def save_chat_messages_db(chat_id: str, messages: list[dict], title: Optional[str] = None):
    """Save chat messages; title is only written when given."""
    now = datetime.now().isoformat()
    messages_json = json.dumps(messages, ensure_ascii=False)
    with get_db() as conn:
        if title is not None:
            conn.execute(
                "UPDATE ai_chats SET messages = ?, updated_at = ?, title = ? WHERE id = ?",
                (messages_json, now, title, chat_id)
            )
        else:
            conn.execute(
                "UPDATE ai_chats SET messages = ?, updated_at = ? WHERE id = ?",
                (messages_json, now, chat_id)
            )
        conn.commit()

def delete_chat_db(chat_id: str, user_id: str) -> bool:
    with get_db() as conn:
        cursor = conn.execute("DELETE FROM ai_chats WHERE id = ? AND user_id = ?", (chat_id, user_id))
        conn.commit()
        return cursor.rowcount > 0


# Checklist

def _row_to_checklist_item(row) -> ChecklistItem:
    return ChecklistItem(
        id=row["id"],
        content=row["content"],
        status=row["status"],
        priority=row["priority"],
        category=row["category"],
    )

def get_checklist_items() -> list[ChecklistItem]:
    with get_db() as conn:
        rows = conn.execute("SELECT * FROM checklist_items ORDER BY category, id").fetchall()
        return [_row_to_checklist_item(row) for row in rows]

def create_checklist_item_db(content: str, priority: str = "medium", category: str = "general") -> ChecklistItem:
    now = datetime.now().isoformat()
    with get_db() as conn:
        cursor = conn.execute(
            "INSERT INTO checklist_items (content, status, priority, category, created_at) VALUES (?, 'pending', ?, ?, ?)",
            (content, priority, category, now)
        )
        conn.commit()
        return ChecklistItem(id=cursor.lastrowid, content=content, priority=priority, category=category)

def update_checklist_item_db(item_id: int, status: str) -> Optional[ChecklistItem]:
    with get_db() as conn:
        cursor = conn.execute("UPDATE checklist_items SET status = ? WHERE id = ?", (status, item_id))
        conn.commit()
        if cursor.rowcount == 0:
            return None
        row = conn.execute("SELECT * FROM checklist_items WHERE id = ?", (item_id,)).fetchone()
        return _row_to_checklist_item(row)
