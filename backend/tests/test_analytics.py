# tests/test_analytics.py — Dashboard analytics and weekly planning
from datetime import datetime, timezone

import analytics
from models import TaskStatus
from schemas import Task, Project, User, BoardTask, Subtask


def _task(tid, project_id="p1", collaborator_id="u1", hours="00:00", **fields) -> Task:
    return Task(id=tid, project_id=project_id, collaborator_id=collaborator_id, hours_dedicated=hours, **fields)


def test_hours_by_project_top_five():
    projects = [Project(id=f"p{i}", name=f"Projeto {i}", sector_id="s") for i in range(7)]
    tasks = [_task(f"t{i}", project_id=f"p{i}", hours=f"0{i}:15") for i in range(7)]
    tasks.append(_task("bad", project_id="p0", hours="bad:data"))
    tasks.append(_task("ghost", project_id="gone", hours="10:00"))

    rows = analytics.hours_by_project(tasks, projects)

    assert len(rows) == 5
    assert rows[0].name == "Desconhecido"
    assert rows[0].formatted == "10h 00"
    assert [r.project_id for r in rows[1:]] == ["p6", "p5", "p4", "p3"]
    assert rows[1].formatted == "6h 15"


def test_status_distribution():
    tasks = [
        _task("a", status=TaskStatus.COMPLETED),
        _task("b", status=TaskStatus.COMPLETED),
        _task("c", status=TaskStatus.PENDING),
    ]
    dist = analytics.status_distribution(tasks)
    assert (dist.percent, dist.completed, dist.pending, dist.total) == (67, 2, 1, 3)
    assert analytics.status_distribution([]).percent == 0


def test_dashboard_stats():
    tasks = [_task("a", status=TaskStatus.COMPLETED), _task("b"), _task("c", status=TaskStatus.BLOCKED)]
    stats = analytics.dashboard_stats(tasks, "02:15")
    assert stats.my_hours == "02:15"
    assert (stats.completed, stats.pending, stats.total, stats.completion_rate) == (1, 2, 3, 33)


def test_collaborator_load_levels():
    users = [
        User(id="u1", name="Normal", email="n@iti.tech"),
        User(id="u2", name="Alta", email="a@iti.tech"),
        User(id="u3", name="Extra", email="e@iti.tech"),
    ]
    tasks = [
        _task("a", collaborator_id="u1", hours="10:00"),
        _task("b", collaborator_id="u2", hours="41:00"),
        _task("c", collaborator_id="u3", hours="45:30"),
    ]

    rows = analytics.collaborator_load(tasks, users)

    assert [r.user_id for r in rows] == ["u3", "u2", "u1"]
    assert [r.level for r in rows] == ["overtime", "high", "normal"]
    assert rows[0].percentage == 100.0
    assert rows[0].formatted == "45h 30"
    assert round(rows[2].percentage, 2) == round(600 / 2640 * 100, 2)


def test_week_days_monday_to_friday():
    # Wednesday 2026-10-14, 15:00 UTC = 12:00 in São Paulo
    days = analytics.week_days(datetime(2026, 10, 14, 15, 0, tzinfo=timezone.utc))
    assert days == ["2026-10-12", "2026-10-13", "2026-10-14", "2026-10-15", "2026-10-16"]


def test_sunday_belongs_to_previous_week():
    days = analytics.week_days(datetime(2026, 10, 18, 15, 0, tzinfo=timezone.utc))
    assert days[0] == "2026-10-12"


def test_week_uses_sao_paulo_date():
    # Monday 02:00 UTC is still Sunday evening in São Paulo
    days = analytics.week_days(datetime(2026, 10, 19, 2, 0, tzinfo=timezone.utc))
    assert days[0] == "2026-10-12"


def test_weekly_plan():
    tasks = [
        _task("a", due_date="2026-10-14"),
        _task("b", due_date="2026-10-14", collaborator_id="u2"),
        _task("c", due_date="2026-10-20"),
    ]
    plan = analytics.weekly_plan(tasks, "u1", datetime(2026, 10, 14, 15, 0, tzinfo=timezone.utc))
    assert [d.weekday for d in plan] == analytics.WEEKDAY_NAMES
    wednesday = plan[2]
    assert wednesday.is_today
    assert [t.id for t in wednesday.tasks] == ["a"]
    assert all(not d.tasks for d in plan if d.date != "2026-10-14")


def test_board_progress():
    card = BoardTask(id="b", title="Card", subtasks=[
        Subtask(text="1", completed=True), Subtask(text="2"), Subtask(text="3"),
    ])
    assert analytics.board_progress(card) == 33
    card.subtasks[1].completed = True
    assert analytics.board_progress(card) == 67
    assert analytics.board_progress(BoardTask(id="e", title="Vazio")) == 0
