# schemas.py — Dashboard entities and write payloads
# Rows arrive from the store with snake_case keys; the HTTP surface speaks camelCase.
from datetime import datetime
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

import durations
from models import UserRole, TaskStatus, TaskPriority, BoardStatus, LogAction, ChatRole


class Entity(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @classmethod
    def from_row(cls, row: Dict[str, Any]):
        # NULL columns fall back to the field default
        return cls.model_validate({
            k: v for k, v in row.items() if k in cls.model_fields and v is not None
        })


class Payload(Entity):
    def to_row(self) -> Dict[str, Any]:
        """Only fields the caller actually set: present replaces, absent (or null) is preserved."""
        return self.model_dump(exclude_unset=True, exclude_none=True)


def _check_duration(v: Optional[str]) -> Optional[str]:
    if v is not None and v != "" and not durations.is_valid(v):
        raise ValueError("hoursDedicated must be HH:MM with minutes between 00 and 59")
    return v


# ============================================================
# ENTITIES (read side)
# ============================================================

class User(Entity):
    id: str
    name: str
    email: str
    avatar: str = ""
    role: UserRole = UserRole.USER
    sector: str = ""


class Sector(Entity):
    id: str
    name: str


class Project(Entity):
    id: str
    name: str
    sector_id: str


class Task(Entity):
    id: str
    project_id: str
    collaborator_id: str
    sector: str = ""
    planned_activity: str = ""
    delivered_activity: str = ""
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.PENDING
    due_date: str = ""
    hours_dedicated: str = durations.ZERO
    notes: str = ""
    updated_at: Optional[datetime] = None


class Subtask(Entity):
    text: str
    completed: bool = False


class BoardTask(Entity):
    id: str
    title: str
    description: str = ""
    start_date: str = ""
    end_date: str = ""
    member_ids: List[str] = Field(default_factory=list)
    subtasks: List[Subtask] = Field(default_factory=list)
    status: BoardStatus = BoardStatus.TODO
    updated_at: Optional[datetime] = None


class ActivityLog(Entity):
    id: int
    user_id: str
    action: LogAction
    description: str
    timestamp: Optional[datetime] = None


class ChatMessage(Entity):
    id: int
    user_id: Optional[str] = None
    role: ChatRole
    content: str
    created_at: Optional[datetime] = None


class ChatTurnLock(Entity):
    is_locked: bool = False
    locked_by_user_id: Optional[str] = None
    updated_at: Optional[datetime] = None


class SystemSettings(Entity):
    logo_url: Optional[str] = None
    favicon_url: Optional[str] = None


# ============================================================
# PAYLOADS (write side)
# ============================================================

class TaskCreate(Payload):
    project_id: str = Field(..., min_length=1)
    collaborator_id: str = Field(..., min_length=1)
    sector: str = ""
    planned_activity: str = Field(..., min_length=1)
    delivered_activity: str = ""
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.PENDING
    due_date: str = ""
    hours_dedicated: str = durations.ZERO
    notes: str = ""

    @field_validator("hours_dedicated")
    @classmethod
    def check_hours(cls, v):
        return _check_duration(v)

    def to_row(self) -> Dict[str, Any]:
        # Creation writes every column, defaults included
        return self.model_dump()


class TaskUpdate(Payload):
    project_id: Optional[str] = None
    collaborator_id: Optional[str] = None
    sector: Optional[str] = None
    planned_activity: Optional[str] = None
    delivered_activity: Optional[str] = None
    priority: Optional[TaskPriority] = None
    status: Optional[TaskStatus] = None
    due_date: Optional[str] = None
    hours_dedicated: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("hours_dedicated")
    @classmethod
    def check_hours(cls, v):
        return _check_duration(v)


class QuickAddTask(Payload):
    project_id: str = Field(..., min_length=1)
    planned_activity: str = Field(..., min_length=1)
    due_date: str = Field(..., min_length=10, max_length=10)


class BoardTaskCreate(Payload):
    title: str = Field(..., min_length=1, max_length=500)
    description: str = ""
    start_date: str = ""
    end_date: str = ""
    member_ids: List[str] = Field(default_factory=list)
    subtasks: List[Subtask] = Field(default_factory=list)
    status: BoardStatus = BoardStatus.TODO

    def to_row(self) -> Dict[str, Any]:
        return self.model_dump()


class BoardTaskUpdate(Payload):
    title: Optional[str] = None
    description: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    member_ids: Optional[List[str]] = None
    subtasks: Optional[List[Subtask]] = None
    status: Optional[BoardStatus] = None


class ProfileUpdate(Payload):
    name: Optional[str] = None
    avatar: Optional[str] = None
    sector: Optional[str] = None


class UserCreate(Payload):
    name: str = Field(..., min_length=1)
    email: EmailStr
    role: UserRole = UserRole.USER
    sector: str = ""


class SectorCreate(Payload):
    name: str = Field(..., min_length=1, max_length=100)


class ProjectCreate(Payload):
    name: str = Field(..., min_length=1, max_length=200)
    sector_id: str = Field(..., min_length=1)


class ChatSend(Payload):
    content: str = Field(..., min_length=1, max_length=8000)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class PasswordChange(Payload):
    old_password: str
    new_password: str = Field(..., min_length=6)
