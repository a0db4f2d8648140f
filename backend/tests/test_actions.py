"""
Tests for actions.py - recognizing confirmations in assistant replies and executing them.
"""
import pytest
import sqlite3
import sys
import os
from datetime import datetime

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import actions
from actions import AIActionExecutor, extract_deadline, extract_description, extract_priority, extract_project_title
from database import create_project_db, get_projects_for_user, get_tasks_for_project
from models import ActionType, AIAction

# Monday
NOW = datetime(2026, 10, 19, 12, 0)


class TestParseProjectActions:

    @pytest.mark.parametrize("text,title", [
        ('Проект "Launch" создан', "Launch"),
        ("Готово! Я создала проект 'Website' для вашей команды.", "Website"),
        ('Новый проект "Mobile App" успешно создан.', "Mobile App"),
        ('Проект "Backend" успешно создан!', "Backend"),
    ])
    def test_project_templates(self, text, title):
        action = AIActionExecutor.parse_action_from_response(text)

        assert action is not None
        assert action.type == ActionType.CREATE_PROJECT
        assert action.data["title"] == title
        assert action.confidence == 0.9

    def test_launch_example(self):
        action = AIActionExecutor.parse_action_from_response('Проект "Launch" создан')

        assert action.type == ActionType.CREATE_PROJECT
        assert action.data["title"] == "Launch"
        assert action.data["description"] is None
        assert action.data["status"] is None

    def test_project_status_extracted(self):
        action = AIActionExecutor.parse_action_from_response('Проект "CRM" создан, статус: active')
        assert action.data["status"] == "ACTIVE"

    def test_project_wins_over_task(self):
        """Project patterns are checked before task patterns."""
        text = 'Проект "Launch" создан, и задача "Kickoff" добавлена'
        action = AIActionExecutor.parse_action_from_response(text)
        assert action.type == ActionType.CREATE_PROJECT


class TestParseTaskActions:

    @pytest.mark.parametrize("text,title", [
        ('Задача "Write tests" добавлена в проект "Launch"', "Write tests"),
        ('Я добавил задачу "Fix login"', "Fix login"),
        ("Задача 'Deploy' успешно создана", "Deploy"),
        ('"Review PR" задача добавлена', "Review PR"),
    ])
    def test_task_templates(self, text, title):
        action = AIActionExecutor.parse_action_from_response(text)

        assert action is not None
        assert action.type == ActionType.CREATE_TASK
        assert action.data["title"] == title
        assert action.confidence == 0.9

    def test_task_defaults(self):
        action = AIActionExecutor.parse_action_from_response('Я добавил задачу "Fix login"')

        assert action.data["status"] == "TODO"
        assert action.data["priority"] == "MEDIUM"
        assert "due_date" not in action.data
        assert "project_title" not in action.data

    def test_task_details(self):
        text = (
            'Задача "Write tests" добавлена в проект "Launch" с описанием "Покрыть API тестами", '
            "приоритет высокий, срок: завтра"
        )
        action = AIActionExecutor.parse_action_from_response(text, now=NOW)

        assert action.data["project_title"] == "Launch"
        assert action.data["description"] == "Покрыть API тестами"
        assert action.data["priority"] == "HIGH"
        assert action.data["due_date"] == "2026-10-20T12:00:00"


class TestParseNoAction:

    @pytest.mark.parametrize("text", [
        "",
        "Привет! Чем могу помочь?",
        "Проект Launch создан",  # title is not quoted
        'Project "Launch" created',
    ])
    def test_returns_none(self, text):
        assert AIActionExecutor.parse_action_from_response(text) is None

    def test_question_still_matches_template(self):
        """Matching is lexical; a question using the template phrase is still recognized."""
        text = 'Хотите, чтобы я создал проект "Launch"? Уточните описание.'
        assert AIActionExecutor.parse_action_from_response(text).data["title"] == "Launch"


class TestExtractors:

    def test_deadline_tomorrow(self):
        assert extract_deadline("срок: завтра", now=NOW) == datetime(2026, 10, 20, 12, 0)

    def test_deadline_day_after_tomorrow(self):
        assert extract_deadline("дедлайн: послезавтра", now=NOW) == datetime(2026, 10, 21, 12, 0)

    def test_deadline_weekday_is_next_occurrence(self):
        # Friday of the same week
        assert extract_deadline("нужно сделать к пятнице", now=NOW) == datetime(2026, 10, 23, 12, 0)
        assert extract_deadline("дедлайн: воскресенье", now=NOW) == datetime(2026, 10, 25, 12, 0)

    def test_deadline_same_weekday_is_next_week(self):
        """Today's weekday resolves a week ahead, never to today."""
        assert extract_deadline("срок: понедельник", now=NOW) == datetime(2026, 10, 26, 12, 0)

    @pytest.mark.parametrize("weekday", ["понедельник", "вторник", "среда", "четверг", "пятница", "суббота", "воскресенье"])
    def test_deadline_weekday_always_in_future(self, weekday):
        deadline = extract_deadline(f"дедлайн: {weekday}", now=NOW)
        assert NOW < deadline <= datetime(2026, 10, 26, 12, 0)

    def test_deadline_absolute_dates(self):
        assert extract_deadline("срок: 15.11.2026", now=NOW) == datetime(2026, 11, 15)
        assert extract_deadline("дедлайн: 05/12", now=NOW) == datetime(2026, 12, 5)

    def test_deadline_inflected_weekdays(self):
        assert extract_deadline("нужно успеть к среде", now=NOW) == datetime(2026, 10, 21, 12, 0)
        assert extract_deadline("срок: субботу", now=NOW) == datetime(2026, 10, 24, 12, 0)

    @pytest.mark.parametrize("text", ["срок: средний", "дедлайн: среднему", "к середине месяца"])
    def test_deadline_ignores_words_sharing_weekday_stem(self, text):
        assert extract_deadline(text, now=NOW) is None

    def test_deadline_invalid_or_missing(self):
        assert extract_deadline("срок: 31.02.2026", now=NOW) is None
        assert extract_deadline("без особых условий", now=NOW) is None

    def test_priority_keywords(self):
        assert extract_priority("приоритет низкий") == "LOW"
        assert extract_priority("это срочный вопрос") == "URGENT"
        assert extract_priority("ничего особенного") == "MEDIUM"

    def test_description_patterns(self):
        assert extract_description("Описание проекта: 'Новый сайт'", "проект") == "Новый сайт"
        assert extract_description("Задача готова, описание: настроить CI", "задача") == "настроить CI"
        assert extract_description("Проект создан", "проект") is None

    def test_project_title_hint(self):
        assert extract_project_title('добавлена для "Launch"') == "Launch"
        assert extract_project_title("в проект Launch.") == "Launch"
        assert extract_project_title("без подсказок") is None


class TestExecuteAction:

    def test_create_project(self, user):
        action = AIActionExecutor.parse_action_from_response('Проект "Launch" создан')
        result = AIActionExecutor.execute_action(action, user.id)

        assert result.success is True
        assert result.data["title"] == "Launch"
        assert result.data["owner_id"] == user.id
        assert result.data["status"] == "PLANNING"

    def test_duplicate_project_rejected_without_mutation(self, user):
        create_project_db("p-1", "Launch", user.id)
        action = AIAction(type=ActionType.CREATE_PROJECT, data={"title": "Launch"}, confidence=0.9)

        result = AIActionExecutor.execute_action(action, user.id)

        assert result.success is False
        assert result.error == "Project already exists"
        assert len(get_projects_for_user(user.id)) == 1

    def test_same_title_for_another_owner_allowed(self, user, other_user):
        create_project_db("p-1", "Launch", other_user.id)
        action = AIAction(type=ActionType.CREATE_PROJECT, data={"title": "Launch"}, confidence=0.9)

        assert AIActionExecutor.execute_action(action, user.id).success is True

    def test_create_task_in_named_project(self, user):
        create_project_db("p-1", "Alpha", user.id)
        create_project_db("p-2", "Launch", user.id)
        action = AIActionExecutor.parse_action_from_response('Задача "Write tests" добавлена в проект "Launch"')

        result = AIActionExecutor.execute_action(action, user.id)

        assert result.success is True
        assert result.data["project_id"] == "p-2"
        assert result.data["assignee_id"] == user.id
        assert [t.title for t in get_tasks_for_project("p-2")] == ["Write tests"]

    def test_create_task_falls_back_to_any_project(self, user):
        create_project_db("p-1", "Alpha", user.id)
        action = AIActionExecutor.parse_action_from_response('Я добавил задачу "Fix login"')

        result = AIActionExecutor.execute_action(action, user.id)

        assert result.success is True
        assert result.data["project_id"] == "p-1"

    def test_create_task_named_project_missing(self, user):
        create_project_db("p-1", "Alpha", user.id)
        action = AIAction(
            type=ActionType.CREATE_TASK,
            data={"title": "Write tests", "project_title": "Launch"},
            confidence=0.9,
        )

        result = AIActionExecutor.execute_action(action, user.id)

        assert result.success is False
        assert result.error == "Project not found"
        assert get_tasks_for_project("p-1") == []

    def test_create_task_without_projects(self, user):
        action = AIAction(type=ActionType.CREATE_TASK, data={"title": "Orphan"}, confidence=0.9)

        result = AIActionExecutor.execute_action(action, user.id)

        assert result.success is False
        assert result.error == "No projects found"

    def test_invalid_task_status_falls_back_to_todo(self, user):
        create_project_db("p-1", "Alpha", user.id)
        action = AIAction(
            type=ActionType.CREATE_TASK,
            data={"title": "Odd", "status": "ОМ", "priority": "HUGE"},
            confidence=0.9,
        )

        result = AIActionExecutor.execute_action(action, user.id)

        assert result.data["status"] == "TODO"
        assert result.data["priority"] == "MEDIUM"

    def test_unknown_action_type(self, user):
        action = AIAction(type=ActionType.UPDATE_TASK, data={}, confidence=0.9)

        result = AIActionExecutor.execute_action(action, user.id)

        assert result.success is False
        assert result.error == "Unknown action type: update_task"

    def test_database_error_is_returned_not_raised(self, user, monkeypatch):
        def broken(*args, **kwargs):
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(actions, "find_owned_project_by_title_db", broken)
        action = AIAction(type=ActionType.CREATE_PROJECT, data={"title": "Launch"}, confidence=0.9)

        result = AIActionExecutor.execute_action(action, user.id)

        assert result.success is False
        assert result.error == "database is locked"
