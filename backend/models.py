from enum import Enum
from pydantic import BaseModel, Field, field_validator
from typing import Any, Optional


class ProviderName(str, Enum):
    BUILTIN = "BUILTIN"
    LM_STUDIO = "LM_STUDIO"
    OPENAI = "OPENAI"
    ANTHROPIC = "ANTHROPIC"
    CUSTOM = "CUSTOM"


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    USER = "USER"


class ProjectStatus(str, Enum):
    PLANNING = "PLANNING"
    ACTIVE = "ACTIVE"
    ON_HOLD = "ON_HOLD"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class TaskStatus(str, Enum):
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    REVIEW = "REVIEW"
    DONE = "DONE"


class TaskPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class ActionType(str, Enum):
    CREATE_PROJECT = "create_project"
    CREATE_TASK = "create_task"
    UPDATE_PROJECT = "update_project"
    UPDATE_TASK = "update_task"
    UNKNOWN = "unknown"


# Users and projects

class User(BaseModel):
    id: str
    email: str
    name: Optional[str] = None
    role: UserRole = UserRole.USER

class UserCreate(BaseModel):
    email: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    name: Optional[str] = None
    role: UserRole = UserRole.USER

class Project(BaseModel):
    id: str
    title: str
    description: str = ""
    status: ProjectStatus = ProjectStatus.PLANNING
    start_date: Optional[str] = None  # ISO format datetime string
    end_date: Optional[str] = None
    created_at: str
    updated_at: str
    owner_id: Optional[str] = None

class ProjectCreate(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None

class Task(BaseModel):
    id: str
    project_id: str
    title: str
    description: str = ""
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: Optional[str] = None  # ISO format: YYYY-MM-DD or full datetime
    estimated_hours: Optional[float] = None
    assignee_id: Optional[str] = None
    created_at: str
    completed_at: Optional[str] = None

class TaskCreate(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: Optional[str] = None
    estimated_hours: Optional[float] = None
    assignee_id: Optional[str] = None

class TaskUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    due_date: Optional[str] = None
    estimated_hours: Optional[float] = None
    assignee_id: Optional[str] = None

    @field_validator("title", "status", "priority")
    @classmethod
    def reject_null(cls, value):
        # Omit a field to leave it unchanged; these columns cannot hold NULL
        if value is None:
            raise ValueError("Field cannot be null")
        return value


# Checklist

class ChecklistItem(BaseModel):
    id: int
    content: str
    status: str = "pending"  # pending | in_progress | completed
    priority: str = "medium"  # low | medium | high
    category: str = "general"

class ChecklistItemCreate(BaseModel):
    content: str = Field(min_length=1)
    priority: str = Field(default="medium", pattern="^(low|medium|high)$")
    category: str = "general"

class ChecklistItemUpdate(BaseModel):
    status: str = Field(pattern="^(pending|in_progress|completed)$")


# AI settings and provider responses

class AISettings(BaseModel):
    provider: ProviderName = ProviderName.BUILTIN
    base_url: Optional[str] = None
    model: Optional[str] = None
    api_key: Optional[str] = None
    max_tokens: int = 1000
    temperature: float = 0.7
    enabled: bool = True

class AISettingsUpdate(BaseModel):
    provider: Optional[ProviderName] = None
    base_url: Optional[str] = None
    model: Optional[str] = Field(default=None, min_length=1)
    api_key: Optional[str] = None
    max_tokens: Optional[int] = Field(default=None, ge=1, le=8000)
    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    enabled: Optional[bool] = None

    @field_validator("provider", "max_tokens", "temperature", "enabled")
    @classmethod
    def reject_null(cls, value):
        if value is None:
            raise ValueError("Field cannot be null")
        return value

    @field_validator("base_url")
    @classmethod
    def check_base_url(cls, value: Optional[str]) -> Optional[str]:
        # Empty string clears the URL
        if value and not value.startswith(("http://", "https://")):
            raise ValueError("Invalid URL format")
        return value

class Usage(BaseModel):
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None

class AIResponse(BaseModel):
    content: str
    model: Optional[str] = None
    usage: Optional[Usage] = None

class ConnectionTestResult(BaseModel):
    success: bool
    message: str
    response: Optional[str] = None
    model_info: Optional[dict[str, Any]] = None

class ConnectionTestRequest(BaseModel):
    test_message: str = "Hello! Reply with a short greeting."
    settings: Optional[AISettingsUpdate] = None

class ClientTestRequest(BaseModel):
    provider: Optional[str] = None
    test_result: Optional[dict[str, Any]] = None


# Chat

class Message(BaseModel):
    role: str  # "system", "user" or "assistant"
    content: str

class Chat(BaseModel):
    id: str
    user_id: str
    project_id: Optional[str] = None
    task_id: Optional[str] = None
    title: Optional[str] = None
    messages: list[Message] = []
    created_at: str
    updated_at: str

class ChatRequest(BaseModel):
    message: str = Field(min_length=1)
    project_id: Optional[str] = None
    task_id: Optional[str] = None
    chat_id: Optional[str] = None

class AITaskRequest(BaseModel):
    project_id: str = Field(min_length=1)
    description: str = Field(min_length=1)
    chat_id: Optional[str] = None

class AITaskDraft(BaseModel):
    """Task fields the assistant is asked to return as JSON."""
    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    priority: Optional[TaskPriority] = None
    status: Optional[TaskStatus] = None
    due_date: Optional[str] = None
    estimated_hours: Optional[float] = None
    tags: list[str] = []

class ReportRequest(BaseModel):
    project_id: Optional[str] = None
    report_type: str = Field(default="comprehensive", pattern="^(progress|team|timeline|risks|comprehensive)$")
    time_range: str = Field(default="month", pattern="^(week|month|quarter|year)$")

class ProjectAnalysisRequest(BaseModel):
    project_id: str = Field(min_length=1)


# Actions recognized in assistant replies

class AIAction(BaseModel):
    type: ActionType
    data: dict[str, Any] = {}
    confidence: float = 0.0

class ActionResult(BaseModel):
    success: bool
    message: str
    data: Optional[Any] = None
    error: Optional[str] = None
