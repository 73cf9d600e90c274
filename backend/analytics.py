"""
ITI Tech — Dashboard analytics

Pure functions over cache snapshots: personal stats, hours per project,
status distribution, collaborator load on a 44h week, weekly planning
and board progress. Nothing here performs I/O.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo

import durations
from models import TaskStatus
from schemas import Task, Project, User, BoardTask

SAO_PAULO = ZoneInfo("America/Sao_Paulo")

MAX_WEEK_HOURS = 44
HIGH_LOAD_HOURS = 40

WEEKDAY_NAMES = ["Segunda", "Terça", "Quarta", "Quinta", "Sexta"]


def _round_percent(part: int, whole: int) -> int:
    # Half-up, as the dashboard has always displayed it
    if whole <= 0:
        return 0
    return int(part * 100 / whole + 0.5)


@dataclass
class DashboardStats:
    my_hours: str
    completed: int
    pending: int
    total: int
    completion_rate: int


@dataclass
class ProjectHours:
    project_id: str
    name: str
    minutes: int
    formatted: str


@dataclass
class StatusDistribution:
    percent: int
    completed: int
    pending: int
    total: int


@dataclass
class CollaboratorLoad:
    user_id: str
    name: str
    avatar: str
    minutes: int
    percentage: float
    formatted: str
    level: str  # normal / high / overtime


@dataclass
class PlanningDay:
    date: str
    weekday: str
    is_today: bool
    tasks: List[Task] = field(default_factory=list)


def dashboard_stats(tasks: List[Task], my_hours: str) -> DashboardStats:
    """Headline numbers. Counts cover every task; `my_hours` is the caller's own total."""
    completed = sum(1 for t in tasks if t.status == TaskStatus.COMPLETED)
    return DashboardStats(
        my_hours=my_hours,
        completed=completed,
        pending=len(tasks) - completed,
        total=len(tasks),
        completion_rate=_round_percent(completed, len(tasks)),
    )


def _minutes_by(tasks: List[Task], key: str) -> Dict[str, int]:
    totals: Dict[str, int] = {}
    for t in tasks:
        minutes = durations.parse_minutes(t.hours_dedicated)
        if not minutes:
            continue
        owner = getattr(t, key)
        totals[owner] = totals.get(owner, 0) + minutes
    return totals


def hours_by_project(tasks: List[Task], projects: List[Project], limit: int = 5) -> List[ProjectHours]:
    names = {p.id: p.name for p in projects}
    rows = [
        ProjectHours(
            project_id=pid,
            name=names.get(pid, "Desconhecido"),
            minutes=minutes,
            formatted=durations.format_label(minutes),
        )
        for pid, minutes in _minutes_by(tasks, "project_id").items()
    ]
    rows.sort(key=lambda r: r.minutes, reverse=True)
    return rows[:limit]


def status_distribution(tasks: List[Task]) -> StatusDistribution:
    total = len(tasks)
    completed = sum(1 for t in tasks if t.status == TaskStatus.COMPLETED)
    return StatusDistribution(
        percent=_round_percent(completed, total),
        completed=completed,
        pending=total - completed,
        total=total,
    )


def collaborator_load(tasks: List[Task], users: List[User], max_hours: int = MAX_WEEK_HOURS) -> List[CollaboratorLoad]:
    """One row per user, busiest first. Percentage is capped at 100."""
    totals = _minutes_by(tasks, "collaborator_id")
    max_minutes = max_hours * 60
    rows = []
    for user in users:
        minutes = totals.get(user.id, 0)
        hours = minutes // 60
        if hours > max_hours:
            level = "overtime"
        elif hours > HIGH_LOAD_HOURS:
            level = "high"
        else:
            level = "normal"
        rows.append(CollaboratorLoad(
            user_id=user.id,
            name=user.name,
            avatar=user.avatar,
            minutes=minutes,
            percentage=min(minutes / max_minutes * 100, 100.0) if max_minutes else 0.0,
            formatted=durations.format_label(minutes),
            level=level,
        ))
    rows.sort(key=lambda r: r.minutes, reverse=True)
    return rows


def today_in_sao_paulo(now: Optional[datetime] = None) -> date:
    now = now or datetime.now(SAO_PAULO)
    if now.tzinfo is not None:
        now = now.astimezone(SAO_PAULO)
    return now.date()


def week_days(now: Optional[datetime] = None) -> List[str]:
    """Monday-Friday ISO dates of the current São Paulo week. Sunday closes the previous week."""
    today = today_in_sao_paulo(now)
    monday = today - timedelta(days=today.weekday())
    return [(monday + timedelta(days=i)).isoformat() for i in range(5)]


def tasks_for_date(tasks: List[Task], day: str, collaborator_id: str) -> List[Task]:
    return [t for t in tasks if t.due_date == day and t.collaborator_id == collaborator_id]


def weekly_plan(tasks: List[Task], collaborator_id: str, now: Optional[datetime] = None) -> List[PlanningDay]:
    today = today_in_sao_paulo(now).isoformat()
    return [
        PlanningDay(
            date=day,
            weekday=WEEKDAY_NAMES[i],
            is_today=day == today,
            tasks=tasks_for_date(tasks, day, collaborator_id),
        )
        for i, day in enumerate(week_days(now))
    ]


def board_progress(task: BoardTask) -> int:
    done = sum(1 for s in task.subtasks if s.completed)
    return _round_percent(done, len(task.subtasks))
