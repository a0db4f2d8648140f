from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from datetime import datetime, timedelta
from typing import Optional
import json
import logging
import os
import re
import uuid
from dotenv import load_dotenv

# database and providers read their settings from the environment at import time
load_dotenv()

from models import (
    AISettings,
    AISettingsUpdate,
    AITaskDraft,
    AITaskRequest,
    ChatRequest,
    ChecklistItemCreate,
    ChecklistItemUpdate,
    ClientTestRequest,
    ConnectionTestRequest,
    ProjectCreate,
    ProviderName,
    ProjectAnalysisRequest,
    ReportRequest,
    TaskCreate,
    TaskPriority,
    TaskStatus,
    TaskUpdate,
    User,
    UserCreate,
    UserRole,
)
from database import (
    init_db,
    create_user_db,
    get_user_db,
    find_user_by_email_db,
    create_project_db,
    get_project_db,
    get_projects_for_user,
    find_owned_project_by_title_db,
    get_member_role_db,
    get_project_members_db,
    delete_project_db,
    create_task_db,
    get_task_db,
    get_tasks_for_project,
    update_task_db,
    delete_task_db,
    get_ai_settings_db,
    save_ai_settings_db,
    create_chat_db,
    get_chat_db,
    list_chats_db,
    save_chat_messages_db,
    delete_chat_db,
    get_checklist_items,
    create_checklist_item_db,
    update_checklist_item_db,
)
from providers import ProviderError, generate_ai_response, check_ai_connection
from actions import AIActionExecutor
import prompts

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()]

# Providers that cannot work without these settings
URL_PROVIDERS = (ProviderName.LM_STUDIO, ProviderName.CUSTOM)
KEY_PROVIDERS = (ProviderName.OPENAI, ProviderName.ANTHROPIC)

REPORT_PERIODS = {"week": 7, "month": 30, "quarter": 91, "year": 365}


@asynccontextmanager
async def lifespan(_app: FastAPI):
    # Startup
    init_db()
    yield
    # Shutdown (nothing to do)

app = FastAPI(title="ProjectMind", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error responses share the {"error": ...} shape

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {"loc": list(error["loc"]), "msg": error["msg"], "type": error["type"]}
        for error in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"error": "Validation error", "details": details})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# Authentication: the caller names itself with X-User-ID

def get_current_user(x_user_id: Optional[str] = Header(default=None)) -> User:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    user = get_user_db(x_user_id)
    if not user:
        raise HTTPException(status_code=401, detail="Authentication required")
    return user


def require_project_access(project_id: str, user: User):
    """Return the project if user is a member (or an admin), else raise 404/403."""
    project = get_project_db(project_id)
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    if not get_member_role_db(project_id, user.id) and user.role != UserRole.ADMIN:
        raise HTTPException(status_code=403, detail="No access to project")
    return project


def require_ai_settings(user: User) -> AISettings:
    settings = get_ai_settings_db(user.id)
    if not settings.enabled:
        raise HTTPException(status_code=400, detail="AI assistant is disabled in settings")
    return settings


def public_settings(settings: AISettings) -> dict:
    """Settings as returned to clients; the API key is masked."""
    data = settings.model_dump(mode="json")
    if settings.api_key:
        data["api_key"] = "****" + settings.api_key[-4:]
    return data


def extract_json_object(text: str) -> dict:
    """Parse the outermost {...} block of an AI reply."""
    match = re.search(r"\{[\s\S]*\}", text)
    if not match:
        raise ValueError("No JSON object found in AI response")
    return json.loads(match.group(0))


# Users

@app.post("/users", status_code=201)
def create_user(user_data: UserCreate) -> dict:
    if find_user_by_email_db(user_data.email):
        raise HTTPException(status_code=409, detail="User with this email already exists")
    return create_user_db(str(uuid.uuid4()), user_data.email, user_data.name, user_data.role.value).model_dump()


@app.get("/auth/me")
def get_me(user: User = Depends(get_current_user)) -> dict:
    return {"user": user.model_dump()}


# Projects and tasks

@app.get("/projects")
def get_projects(user: User = Depends(get_current_user)) -> list[dict]:
    return [project.model_dump() for project in get_projects_for_user(user.id)]


@app.post("/projects", status_code=201)
def create_project(project_data: ProjectCreate, user: User = Depends(get_current_user)) -> dict:
    if find_owned_project_by_title_db(user.id, project_data.title):
        raise HTTPException(status_code=409, detail=f'Project "{project_data.title}" already exists')
    return create_project_db(
        str(uuid.uuid4()),
        project_data.title,
        user.id,
        description=project_data.description or "",
        start_date=project_data.start_date,
        end_date=project_data.end_date,
    ).model_dump()


@app.get("/projects/{project_id}")
def get_project(project_id: str, user: User = Depends(get_current_user)) -> dict:
    project = require_project_access(project_id, user)
    result = project.model_dump()
    result["tasks"] = [task.model_dump() for task in get_tasks_for_project(project_id)]
    return result


@app.delete("/projects/{project_id}")
def delete_project(project_id: str, user: User = Depends(get_current_user)) -> dict:
    require_project_access(project_id, user)
    if get_member_role_db(project_id, user.id) != "OWNER" and user.role != UserRole.ADMIN:
        raise HTTPException(status_code=403, detail="Only the project owner can delete it")
    delete_project_db(project_id)
    return {"status": "deleted"}


@app.get("/projects/{project_id}/tasks")
def get_project_tasks(project_id: str, user: User = Depends(get_current_user)) -> list[dict]:
    require_project_access(project_id, user)
    return [task.model_dump() for task in get_tasks_for_project(project_id)]


@app.post("/projects/{project_id}/tasks", status_code=201)
def create_task(project_id: str, task_data: TaskCreate, user: User = Depends(get_current_user)) -> dict:
    require_project_access(project_id, user)
    return create_task_db(
        str(uuid.uuid4()),
        project_id,
        task_data.title,
        description=task_data.description or "",
        status=task_data.status.value,
        priority=task_data.priority.value,
        due_date=task_data.due_date,
        estimated_hours=task_data.estimated_hours,
        assignee_id=task_data.assignee_id,
    ).model_dump()


def get_accessible_task(task_id: str, user: User):
    task = get_task_db(task_id)
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    require_project_access(task.project_id, user)
    return task


@app.patch("/tasks/{task_id}")
def update_task(task_id: str, task_data: TaskUpdate, user: User = Depends(get_current_user)) -> dict:
    get_accessible_task(task_id, user)
    result = update_task_db(task_id, **task_data.model_dump(exclude_unset=True, mode="json"))
    if not result:
        raise HTTPException(status_code=404, detail="Task not found")
    return result.model_dump()


@app.delete("/tasks/{task_id}")
def delete_task(task_id: str, user: User = Depends(get_current_user)) -> dict:
    get_accessible_task(task_id, user)
    if not delete_task_db(task_id):
        raise HTTPException(status_code=404, detail="Task not found")
    return {"status": "deleted"}


# Checklist

@app.get("/checklist/tasks")
def get_checklist(_user: User = Depends(get_current_user)) -> list[dict]:
    return [item.model_dump() for item in get_checklist_items()]


@app.post("/checklist/tasks", status_code=201)
def create_checklist_item(item_data: ChecklistItemCreate, _user: User = Depends(get_current_user)) -> dict:
    return create_checklist_item_db(item_data.content, item_data.priority, item_data.category).model_dump()


@app.patch("/checklist/tasks/{item_id}")
def update_checklist_item(item_id: int, item_data: ChecklistItemUpdate, _user: User = Depends(get_current_user)) -> dict:
    item = update_checklist_item_db(item_id, item_data.status)
    if not item:
        raise HTTPException(status_code=404, detail="Checklist item not found")
    return item.model_dump()


# AI settings

@app.get("/ai/settings")
def get_ai_settings(user: User = Depends(get_current_user)) -> dict:
    return {"settings": public_settings(get_ai_settings_db(user.id))}


@app.put("/ai/settings")
def update_ai_settings(settings_data: AISettingsUpdate, user: User = Depends(get_current_user)) -> dict:
    changes = settings_data.model_dump(exclude_unset=True)
    current = get_ai_settings_db(user.id)
    merged = current.model_copy(update=changes)

    if "provider" in changes:
        if merged.provider in URL_PROVIDERS and not merged.base_url:
            raise HTTPException(status_code=400, detail="Base URL is required for LM Studio and custom providers")
        if merged.provider in KEY_PROVIDERS and not merged.api_key:
            raise HTTPException(status_code=400, detail="API key is required for the selected provider")

    settings = save_ai_settings_db(user.id, changes)
    logger.info("AI settings updated for user %s (provider %s)", user.id, settings.provider.value)
    return {"message": "Settings updated", "settings": public_settings(settings)}


@app.post("/ai/settings/test")
async def test_ai_settings(test_request: ConnectionTestRequest, user: User = Depends(get_current_user)) -> dict:
    """Probe the configured provider; body settings override stored ones without being saved."""
    settings = get_ai_settings_db(user.id)
    if test_request.settings:
        settings = settings.model_copy(update=test_request.settings.model_dump(exclude_unset=True))
    result = await check_ai_connection(settings, test_request.test_message)
    return result.model_dump()


@app.post("/ai/settings/client-test")
def client_test_ai_settings(test_request: ClientTestRequest, _user: User = Depends(get_current_user)) -> dict:
    """Record a connectivity test the browser ran itself (the server may not reach a local LM Studio)."""
    if not test_request.provider:
        raise HTTPException(status_code=400, detail="Provider is not specified")
    if not test_request.test_result:
        raise HTTPException(status_code=400, detail="Test result is not provided")
    if test_request.provider != ProviderName.LM_STUDIO.value:
        raise HTTPException(status_code=400, detail="Only LM Studio supports client-side testing")

    result = test_request.test_result
    success = bool(result.get("success"))
    return {
        "success": success,
        "message": "Connection to LM Studio established" if success else "Connection to LM Studio failed",
        "base_url": result.get("base_url"),
        "models": result.get("models"),
        "response": result.get("response"),
        "error": result.get("error"),
        "client_test": True,
    }


# AI chat

def build_system_prompt(user: User, project_id: Optional[str], task_id: Optional[str]) -> str:
    system_prompt = prompts.CHAT_SYSTEM_PROMPT.format(
        user_name=user.name or user.email,
        user_role=user.role.value,
        today=datetime.now().strftime("%Y-%m-%d"),
    )
    if project_id:
        project = get_project_db(project_id)
        if project:
            system_prompt += prompts.PROJECT_CONTEXT.format(
                title=project.title,
                description=project.description or "-",
                status=project.status.value,
            )
    if task_id:
        task = get_task_db(task_id)
        if task:
            system_prompt += prompts.TASK_CONTEXT.format(
                title=task.title,
                description=task.description or "-",
                status=task.status.value,
                priority=task.priority.value,
            )
    return system_prompt


@app.post("/ai/chat")
async def chat(chat_request: ChatRequest, user: User = Depends(get_current_user)) -> dict:
    """Send a message to the user's AI provider and act on what the reply confirms."""
    if chat_request.project_id:
        require_project_access(chat_request.project_id, user)
    if chat_request.task_id:
        get_accessible_task(chat_request.task_id, user)

    settings = require_ai_settings(user)

    if chat_request.chat_id:
        ai_chat = get_chat_db(chat_request.chat_id, user.id)
        if not ai_chat:
            raise HTTPException(status_code=404, detail="Chat not found")
    else:
        ai_chat = create_chat_db(str(uuid.uuid4()), user.id, chat_request.project_id, chat_request.task_id)

    messages = [m.model_dump() for m in ai_chat.messages]
    if not messages:
        messages.append({
            "role": "system",
            "content": build_system_prompt(user, chat_request.project_id, chat_request.task_id),
        })
    messages.append({"role": "user", "content": chat_request.message})

    try:
        ai_response = await generate_ai_response(settings, messages)
    except ProviderError as e:
        logger.warning("AI provider failed for chat %s: %s", ai_chat.id, e)
        messages.append({"role": "assistant", "content": prompts.CHAT_FALLBACK_MESSAGE})
        save_chat_messages_db(ai_chat.id, messages)
        return {"message": prompts.CHAT_FALLBACK_MESSAGE, "chat_id": ai_chat.id, "error": str(e)}

    messages.append({"role": "assistant", "content": ai_response.content})

    # First exchange (system, user, assistant) names the chat
    title = None
    if len(messages) == 3:
        title = chat_request.message[:50] + ("..." if len(chat_request.message) > 50 else "")
    save_chat_messages_db(ai_chat.id, messages, title)

    action_result = None
    action = AIActionExecutor.parse_action_from_response(ai_response.content)
    if action:
        logger.info("Recognized %s in reply for chat %s", action.type.value, ai_chat.id)
        action_result = AIActionExecutor.execute_action(action, user.id)

    return {
        "message": ai_response.content,
        "chat_id": ai_chat.id,
        "model": ai_response.model,
        "usage": ai_response.usage.model_dump() if ai_response.usage else None,
        "action": action_result.model_dump() if action_result else None,
    }


@app.get("/ai/chats")
def get_chats(
    project_id: Optional[str] = None,
    task_id: Optional[str] = None,
    user: User = Depends(get_current_user)
) -> dict:
    return {"chats": [c.model_dump() for c in list_chats_db(user.id, project_id, task_id)]}


@app.get("/ai/chats/{chat_id}")
def get_chat(chat_id: str, user: User = Depends(get_current_user)) -> dict:
    ai_chat = get_chat_db(chat_id, user.id)
    if not ai_chat:
        raise HTTPException(status_code=404, detail="Chat not found")
    return {"chat": ai_chat.model_dump()}


@app.delete("/ai/chats/{chat_id}")
def delete_chat(chat_id: str, user: User = Depends(get_current_user)) -> dict:
    if not delete_chat_db(chat_id, user.id):
        raise HTTPException(status_code=404, detail="Chat not found")
    return {"message": "Chat deleted"}


# AI task drafting and reports

@app.post("/ai/create-task")
async def ai_create_task(task_request: AITaskRequest, user: User = Depends(get_current_user)) -> dict:
    """Let the assistant turn a free-form request into a task; falls back to a plain task."""
    project = require_project_access(task_request.project_id, user)
    settings = require_ai_settings(user)

    prompt = prompts.TASK_DRAFT_PROMPT.format(
        project_title=project.title,
        project_description=project.description or "-",
        request=task_request.description,
        today=datetime.now().strftime("%Y-%m-%d"),
    )
    try:
        ai_response = await generate_ai_response(settings, [
            {"role": "system", "content": prompts.TASK_DRAFT_SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ])
        draft = AITaskDraft.model_validate(extract_json_object(ai_response.content))
    except (ProviderError, ValueError) as e:
        logger.warning("AI task drafting failed for project %s: %s", project.id, e)
        description = task_request.description
        task = create_task_db(
            str(uuid.uuid4()),
            project.id,
            f"Task based on: {description[:50]}{'...' if len(description) > 50 else ''}",
            description=description,
            assignee_id=user.id,
        )
        return {
            "message": "Task created (basic version)",
            "task": task.model_dump(),
            "warning": "Could not process the request with AI, a basic task was created",
            "error": str(e),
        }

    task = create_task_db(
        str(uuid.uuid4()),
        project.id,
        draft.title,
        description=draft.description,
        status=(draft.status or TaskStatus.TODO).value,
        priority=(draft.priority or TaskPriority.MEDIUM).value,
        due_date=draft.due_date,
        estimated_hours=draft.estimated_hours,
        assignee_id=user.id,
    )

    if task_request.chat_id:
        ai_chat = get_chat_db(task_request.chat_id, user.id)
        if ai_chat:
            messages = [m.model_dump() for m in ai_chat.messages]
            messages.append({
                "role": "assistant",
                "content": (
                    f'Задача "{task.title}" создана.\n'
                    f"Описание: {task.description}\n"
                    f"Приоритет: {task.priority.value}\n"
                    f"Статус: {task.status.value}\n"
                    f"Срок: {task.due_date or 'не указан'}"
                ),
            })
            save_chat_messages_db(ai_chat.id, messages)

    return {
        "message": "Task created",
        "task": task.model_dump(),
        "tags": draft.tags,
        "provider": settings.provider.value,
        "model": ai_response.model,
    }


def collect_report_data(user: User, project_id: Optional[str], period_start: datetime, now: datetime, time_range: str) -> dict:
    since = period_start.isoformat()
    projects = [get_project_db(project_id)] if project_id else get_projects_for_user(user.id)

    project_data = []
    for project in projects:
        tasks = get_tasks_for_project(project.id, since=since)
        today = now.strftime("%Y-%m-%d")
        project_data.append({
            "id": project.id,
            "title": project.title,
            "status": project.status.value,
            "tasks_count": len(tasks),
            "completed_tasks": sum(1 for t in tasks if t.status.value == "DONE"),
            "overdue_tasks": sum(
                1 for t in tasks
                if t.due_date and t.due_date[:10] < today and t.status.value != "DONE"
            ),
            "by_priority": {
                priority: sum(1 for t in tasks if t.priority.value == priority)
                for priority in ("LOW", "MEDIUM", "HIGH", "URGENT")
            },
        })

    return {
        "projects": project_data,
        "period": {"start": since, "end": now.isoformat(), "range": time_range},
    }


def fallback_report(time_range: str, now: datetime) -> dict:
    return {
        "title": f"Report for {time_range}",
        "summary": "AI report generation is temporarily unavailable",
        "generated_at": now.isoformat(),
        "period": time_range,
        "sections": [
            {
                "title": "Overview",
                "content": "This report was generated in basic mode without AI analysis",
                "insights": ["Try generating the report again later"],
            }
        ],
        "recommendations": [
            {
                "priority": "medium",
                "category": "technical issues",
                "description": "Try generating the report again later",
            }
        ],
        "metrics": {"status": "limited"},
    }


@app.post("/ai/generate-report")
async def generate_report(report_request: ReportRequest, user: User = Depends(get_current_user)) -> dict:
    if report_request.project_id:
        require_project_access(report_request.project_id, user)

    now = datetime.now()
    period_start = now - timedelta(days=REPORT_PERIODS[report_request.time_range])
    report_data = collect_report_data(user, report_request.project_id, period_start, now, report_request.time_range)
    metadata = {
        "type": report_request.report_type,
        "period": report_request.time_range,
        "project_id": report_request.project_id,
        "generated_at": now.isoformat(),
    }

    # Reports use their own sampling limits regardless of chat settings
    settings = get_ai_settings_db(user.id).model_copy(update={"temperature": 0.5, "max_tokens": 2500})
    prompt = prompts.REPORT_PROMPT.format(
        report_type=report_request.report_type,
        time_range=report_request.time_range,
        report_data=json.dumps(report_data, ensure_ascii=False, indent=2),
        today=now.strftime("%Y-%m-%d"),
        user_name=user.name or user.email,
        focus=prompts.REPORT_FOCUS[report_request.report_type],
        generated_at=now.isoformat(),
    )
    try:
        ai_response = await generate_ai_response(settings, [
            {"role": "system", "content": prompts.REPORT_SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ])
        report = extract_json_object(ai_response.content)
    except (ProviderError, ValueError) as e:
        logger.warning("AI report generation failed for user %s: %s", user.id, e)
        return {
            "success": True,
            "report": fallback_report(report_request.time_range, now),
            "warning": "Report generated without AI analysis due to a temporary error",
            "metadata": metadata,
        }

    return {"success": True, "report": report, "metadata": metadata}


def fallback_analysis(project, tasks: list, members: list[dict], now: datetime) -> dict:
    """Analysis computed from task counts alone, used when the assistant is unavailable."""
    completed = sum(1 for t in tasks if t.status.value == "DONE")
    progress = round(completed / len(tasks) * 100) if tasks else 0
    if progress > 75:
        status = "good"
    elif progress > 50:
        status = "average"
    else:
        status = "poor"

    return {
        "progress": progress,
        "status": status,
        "risks": [
            {
                "level": "medium",
                "description": "AI analysis is temporarily unavailable",
                "recommendation": "Try running the analysis again later",
            }
        ],
        "recommendations": [
            {
                "category": "planning",
                "title": "Keep working on the project",
                "description": "Focus on finishing the current tasks",
                "priority": "medium",
            }
        ],
        "timeline": {
            "estimated_completion": project.end_date or (now + timedelta(days=30)).strftime("%Y-%m-%d"),
            "delays": [],
        },
        "team": {
            "productivity": 70,
            "workload": [
                {
                    "member": member["name"] or member["email"],
                    "tasks": sum(1 for t in tasks if t.assignee_id == member["user_id"]),
                    "workload": "medium",
                }
                for member in members
            ],
        },
    }


@app.post("/ai/analyze-project")
async def analyze_project(analysis_request: ProjectAnalysisRequest, user: User = Depends(get_current_user)) -> dict:
    """Ask the assistant for a project health analysis; falls back to counts-based figures."""
    project = require_project_access(analysis_request.project_id, user)
    tasks = get_tasks_for_project(project.id)
    members = get_project_members_db(project.id)
    now = datetime.now()

    project_data = {
        "title": project.title,
        "description": project.description,
        "status": project.status.value,
        "start_date": project.start_date,
        "end_date": project.end_date,
        "created_at": project.created_at,
        "tasks": [
            {
                "title": t.title,
                "description": t.description,
                "status": t.status.value,
                "priority": t.priority.value,
                "due_date": t.due_date,
                "completed_at": t.completed_at,
                "estimated_hours": t.estimated_hours,
            }
            for t in tasks
        ],
        "members": [
            {
                "name": m["name"] or m["email"],
                "role": m["role"],
                "tasks_assigned": sum(1 for t in tasks if t.assignee_id == m["user_id"]),
            }
            for m in members
        ],
    }
    summary = {
        "title": project.title,
        "tasks_count": len(tasks),
        "completed_tasks": sum(1 for t in tasks if t.status.value == "DONE"),
        "members_count": len(members),
    }

    settings = get_ai_settings_db(user.id).model_copy(update={"temperature": 0.4, "max_tokens": 2000})
    prompt = prompts.PROJECT_ANALYSIS_PROMPT.format(
        project_data=json.dumps(project_data, ensure_ascii=False, indent=2),
        today=now.strftime("%Y-%m-%d"),
    )
    try:
        ai_response = await generate_ai_response(settings, [
            {"role": "system", "content": prompts.PROJECT_ANALYSIS_SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ])
        analysis = extract_json_object(ai_response.content)
    except (ProviderError, ValueError) as e:
        logger.warning("AI analysis failed for project %s: %s", project.id, e)
        return {
            "success": True,
            "analysis": fallback_analysis(project, tasks, members, now),
            "warning": "Analysis done without AI due to a temporary error",
            "project_data": summary,
        }

    return {"success": True, "analysis": analysis, "project_data": summary}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
