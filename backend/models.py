# models.py — Remote Store tables for the ITI Tech dashboard
# - String UUID primary keys for editable entities
# - Integer sequence keys for append-only rows (logs, chat)
# - Foreign keys without cascade: deleting a referenced row is rejected by the store
# - Singleton rows (chat_state, system_settings) always use id = 1

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, DateTime, JSON, Boolean, Integer,
    Enum as SQLEnum, ForeignKey, Text, Index,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()

SINGLETON_ID = 1


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


def _enum(enum_cls):
    # Persist the enum *value* (the label the dashboard shows), not the member name
    return SQLEnum(enum_cls, values_callable=lambda e: [m.value for m in e], native_enum=False)


# ============================================================
# ENUMS
# ============================================================

class UserRole(str, PyEnum):
    ADMIN = "admin"
    USER = "user"


class TaskStatus(str, PyEnum):
    PENDING = "Pendente"
    IN_PROGRESS = "Em Andamento"
    COMPLETED = "Concluído"
    BLOCKED = "Bloqueado"


class TaskPriority(str, PyEnum):
    LOW = "Baixa"
    MEDIUM = "Média"
    HIGH = "Alta"
    CRITICAL = "Crítica"


class BoardStatus(str, PyEnum):
    TODO = "TODO"
    DOING = "DOING"
    DONE = "DONE"


class LogAction(str, PyEnum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ChatRole(str, PyEnum):
    USER = "user"
    MODEL = "model"


# ============================================================
# DIRECTORY
# ============================================================

class Profile(Base):
    """Mirrored identity-provider user plus dashboard profile fields"""
    __tablename__ = "profiles"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True, index=True)
    avatar = Column(String, nullable=True)
    role = Column(_enum(UserRole), nullable=False, default=UserRole.USER)
    sector = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class Sector(Base):
    __tablename__ = "sectors"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class Project(Base):
    __tablename__ = "projects"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String, nullable=False)
    sector_id = Column(String, ForeignKey("sectors.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


# ============================================================
# WORK TRACKING
# ============================================================

class Task(Base):
    """Planned / delivered activity logged by a collaborator against a project"""
    __tablename__ = "tasks"

    id = Column(String, primary_key=True, default=new_uuid)
    project_id = Column(String, ForeignKey("projects.id"), nullable=False, index=True)
    collaborator_id = Column(String, ForeignKey("profiles.id"), nullable=False, index=True)
    sector = Column(String, nullable=True)  # Display copy of the project's sector name
    planned_activity = Column(Text, nullable=False, default="")
    delivered_activity = Column(Text, nullable=False, default="")
    priority = Column(_enum(TaskPriority), nullable=False, default=TaskPriority.MEDIUM)
    status = Column(_enum(TaskStatus), nullable=False, default=TaskStatus.PENDING)
    due_date = Column(String, nullable=True)  # YYYY-MM-DD
    hours_dedicated = Column(String, nullable=False, default="00:00")  # HH:MM
    notes = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_task_collab_due", "collaborator_id", "due_date"),
        Index("idx_task_updated", "updated_at"),
    )


class BoardTask(Base):
    """Free-standing kanban card, not tied to a project or sector"""
    __tablename__ = "board_tasks"

    id = Column(String, primary_key=True, default=new_uuid)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    start_date = Column(String, nullable=True)
    end_date = Column(String, nullable=True)
    member_ids = Column(JSON, default=list)
    subtasks = Column(JSON, default=list)  # [{"text": str, "completed": bool}]
    status = Column(_enum(BoardStatus), nullable=False, default=BoardStatus.TODO)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class ActivityLogEntry(Base):
    """Append-only audit trail"""
    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False, index=True)
    action = Column(_enum(LogAction), nullable=False)
    description = Column(Text, nullable=False)
    timestamp = Column(DateTime(timezone=True), default=utcnow, index=True)


# ============================================================
# CHAT
# ============================================================

class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=True)  # NULL for model-authored messages
    role = Column(_enum(ChatRole), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)


class ChatState(Base):
    """Singleton turn lock shared by every connected client"""
    __tablename__ = "chat_state"

    id = Column(Integer, primary_key=True, default=SINGLETON_ID)
    is_locked = Column(Boolean, nullable=False, default=False)
    locked_by_user_id = Column(String, nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class SystemSetting(Base):
    """Singleton cosmetic configuration (logo, favicon)"""
    __tablename__ = "system_settings"

    id = Column(Integer, primary_key=True, default=SINGLETON_ID)
    logo_url = Column(String, nullable=True)
    favicon_url = Column(String, nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


TABLES = {
    model.__tablename__: model.__table__
    for model in (
        Profile, Sector, Project, Task, BoardTask,
        ActivityLogEntry, ChatMessage, ChatState, SystemSetting,
    )
}
