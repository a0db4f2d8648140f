"""
Recognize confirmations like 'Проект "X" создан' in assistant replies and
turn them into database writes.

Recognition is plain pattern matching over free text: the first pattern that
matches wins and the result always carries the same confidence.
"""
import logging
import re
import uuid
from datetime import datetime, timedelta
from typing import Optional

from database import create_project_db, create_task_db, find_member_project_db, find_owned_project_by_title_db
from models import ActionResult, ActionType, AIAction, ProjectStatus, TaskPriority, TaskStatus

logger = logging.getLogger(__name__)

ACTION_CONFIDENCE = 0.9

# Order matters: the first match wins
PROJECT_PATTERNS = [
    re.compile(r"""проект\s+["']([^"']+)["']\s+(?:создан|создала|создал)""", re.IGNORECASE),
    re.compile(r"""создала?\s+проект\s+["']([^"']+)["']""", re.IGNORECASE),
    re.compile(r"""новый\s+проект\s+["']([^"']+)["']\s+(?:успешно\s+)?создан""", re.IGNORECASE),
    re.compile(r"""проект\s+["']([^"']+)["']\s+успешно\s+создан""", re.IGNORECASE),
]

TASK_PATTERNS = [
    re.compile(r"""задача\s+["']([^"']+)["']\s+(?:добавлена|создана|создал|создала)""", re.IGNORECASE),
    re.compile(r"""(?:добавила?\s+|создала?\s+)задачу\s+["']([^"']+)["']""", re.IGNORECASE),
    re.compile(r"""задача\s+["']([^"']+)["']\s+успешно\s+(?:добавлена|создана)""", re.IGNORECASE),
    re.compile(r"""["']([^"']+)["']\s+задача\s+(?:добавлена|создана)""", re.IGNORECASE),
]

# entity -> genitive form used in "описание проекта" / "описание задачи"
ENTITY_GENITIVE = {"проект": "проекта", "задача": "задачи"}

PRIORITY_KEYWORDS = [
    ("низкий", TaskPriority.LOW),
    ("низшая", TaskPriority.LOW),
    ("средний", TaskPriority.MEDIUM),
    ("обычный", TaskPriority.MEDIUM),
    ("высокий", TaskPriority.HIGH),
    ("важный", TaskPriority.HIGH),
    ("срочный", TaskPriority.URGENT),
    ("критический", TaskPriority.URGENT),
]

STATUS_PATTERNS = [
    re.compile(r"статус[:\s]*([^\s,]+)", re.IGNORECASE),
    re.compile(r"состояние[:\s]*([^\s,]+)", re.IGNORECASE),
]

DEADLINE_PATTERNS = [
    re.compile(r"дедлайн[:\s]*(?:на\s+)?([^\s,]+)", re.IGNORECASE),
    re.compile(r"срок[:\s]*(?:до\s+)?([^\s,]+)", re.IGNORECASE),
    re.compile(r"\b(?:ко|к)\s+([^\s,]+)", re.IGNORECASE),
]

# Case endings are spelled out so "средний" is not read as Wednesday.
# Inflected forms ("пятницу", "к среде") still match; Monday first
WEEKDAY_PATTERNS = [
    re.compile(r"понедельник"),
    re.compile(r"вторник"),
    re.compile(r"сред[аыуе]\b"),
    re.compile(r"четверг"),
    re.compile(r"пятниц[аыуе]\b"),
    re.compile(r"суббот[аыуе]\b"),
    re.compile(r"воскресень[еяю]\b"),
]

ABSOLUTE_DATE = re.compile(r"(\d{1,2})[./](\d{1,2})[./]?(\d{4})?")

PROJECT_TITLE_PATTERNS = [
    re.compile(r"""(?:в\s+|для\s+|проект\s+)["']([^"']+)["']""", re.IGNORECASE),
    re.compile(r"проект\s+([^,\s]+)", re.IGNORECASE),
]


def extract_description(text: str, entity: str) -> Optional[str]:
    """Pull a description for `entity` ("проект" or "задача") out of text."""
    genitive = ENTITY_GENITIVE[entity]
    patterns = [
        rf"""{entity}\s+[^\n]*\s+с\s+описанием[:\s]*["']([^"']+)["']""",
        rf"""описание\s+{genitive}[:\s]*["']([^"']+)["']""",
        rf"{entity}\s+[^\n]*\s+описание[:\s]*([^\n]+)",
    ]
    for pattern in patterns:
        match = re.search(pattern, text, re.IGNORECASE)
        if match and match.group(1).strip():
            return match.group(1).strip()
    return None


def extract_priority(text: str) -> TaskPriority:
    lowered = text.lower()
    for keyword, priority in PRIORITY_KEYWORDS:
        if keyword in lowered:
            return priority
    return TaskPriority.MEDIUM


def extract_status(text: str) -> Optional[str]:
    for pattern in STATUS_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1).strip().upper()
    return None


def extract_deadline(text: str, now: Optional[datetime] = None) -> Optional[datetime]:
    """
    Find a deadline in text.

    Relative words resolve against `now`: "завтра" is now + 1 day,
    "послезавтра" now + 2 days, and a weekday name is its next occurrence
    strictly after today. Absolute DD.MM[.YYYY] / DD/MM[/YYYY] dates default
    to the current year. Returns None when nothing usable is found.
    """
    now = now or datetime.now()

    for pattern in DEADLINE_PATTERNS:
        for match in pattern.finditer(text):
            date_text = match.group(1).strip().lower()

            # Check the longer word first, it contains the shorter one
            if "послезавтра" in date_text:
                return now + timedelta(days=2)
            if "завтра" in date_text:
                return now + timedelta(days=1)

            for index, weekday in enumerate(WEEKDAY_PATTERNS):
                if weekday.search(date_text):
                    days_ahead = index - now.weekday()
                    if days_ahead <= 0:
                        days_ahead += 7
                    return now + timedelta(days=days_ahead)

            date_match = ABSOLUTE_DATE.search(date_text)
            if date_match:
                day, month = int(date_match.group(1)), int(date_match.group(2))
                year = int(date_match.group(3)) if date_match.group(3) else now.year
                try:
                    return datetime(year, month, day)
                except ValueError:
                    continue

    return None


def extract_project_title(text: str) -> Optional[str]:
    for pattern in PROJECT_TITLE_PATTERNS:
        match = pattern.search(text)
        if match:
            title = match.group(1).strip().rstrip(".!?:;")
            if title:
                return title
    return None


class AIActionExecutor:
    """Parses assistant replies into AIActions and executes them."""

    @classmethod
    def parse_action_from_response(cls, ai_response: str, now: Optional[datetime] = None) -> Optional[AIAction]:
        for pattern in PROJECT_PATTERNS:
            match = pattern.search(ai_response)
            if match:
                return AIAction(
                    type=ActionType.CREATE_PROJECT,
                    data={
                        "title": match.group(1),
                        "description": extract_description(ai_response, "проект"),
                        "status": extract_status(ai_response),
                    },
                    confidence=ACTION_CONFIDENCE,
                )

        for pattern in TASK_PATTERNS:
            match = pattern.search(ai_response)
            if match:
                data = {
                    "title": match.group(1),
                    "description": extract_description(ai_response, "задача"),
                    "priority": extract_priority(ai_response).value,
                    "status": extract_status(ai_response) or TaskStatus.TODO.value,
                }
                deadline = extract_deadline(ai_response, now)
                if deadline:
                    data["due_date"] = deadline.isoformat()
                project_title = extract_project_title(ai_response)
                if project_title:
                    data["project_title"] = project_title
                return AIAction(type=ActionType.CREATE_TASK, data=data, confidence=ACTION_CONFIDENCE)

        return None

    @classmethod
    def execute_action(cls, action: AIAction, user_id: str) -> ActionResult:
        """Run a recognized action for user_id. Never raises."""
        try:
            if action.type == ActionType.CREATE_PROJECT:
                return cls._create_project(action.data, user_id)
            if action.type == ActionType.CREATE_TASK:
                return cls._create_task(action.data, user_id)
            return ActionResult(
                success=False,
                message="Unknown action type",
                error=f"Unknown action type: {action.type.value}",
            )
        except Exception as e:
            logger.exception("Failed to execute %s for user %s", action.type.value, user_id)
            return ActionResult(success=False, message="Failed to execute action", error=str(e))

    @staticmethod
    def _create_project(data: dict, user_id: str) -> ActionResult:
        title = data["title"]
        if find_owned_project_by_title_db(user_id, title):
            return ActionResult(
                success=False,
                message=f'Project "{title}" already exists',
                error="Project already exists",
            )

        status = data.get("status")
        if status not in ProjectStatus.__members__:
            status = ProjectStatus.PLANNING.value

        project = create_project_db(
            str(uuid.uuid4()),
            title,
            user_id,
            description=data.get("description") or "",
            status=status,
            start_date=datetime.now().isoformat(),
        )
        logger.info("Created project %s (%s) from assistant reply", project.id, title)
        return ActionResult(
            success=True,
            message=f'Project "{title}" created',
            data=project.model_dump(mode="json"),
        )

    @staticmethod
    def _create_task(data: dict, user_id: str) -> ActionResult:
        project_title = data.get("project_title")
        if project_title:
            project = find_member_project_db(user_id, project_title)
            if not project:
                return ActionResult(
                    success=False,
                    message=f'Project "{project_title}" not found',
                    error="Project not found",
                )
        else:
            project = find_member_project_db(user_id)
            if not project:
                return ActionResult(
                    success=False,
                    message="You have no projects to add the task to",
                    error="No projects found",
                )

        status = data.get("status")
        if status not in TaskStatus.__members__:
            status = TaskStatus.TODO.value
        priority = data.get("priority")
        if priority not in TaskPriority.__members__:
            priority = TaskPriority.MEDIUM.value

        task = create_task_db(
            str(uuid.uuid4()),
            project.id,
            data["title"],
            description=data.get("description") or "",
            status=status,
            priority=priority,
            due_date=data.get("due_date"),
            assignee_id=user_id,
        )
        logger.info("Created task %s in project %s from assistant reply", task.id, project.id)
        return ActionResult(
            success=True,
            message=f'Task "{task.title}" created in project "{project.title}"',
            data=task.model_dump(mode="json"),
        )
