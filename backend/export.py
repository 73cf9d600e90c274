# export.py — Task list filtering and the CSV report
from datetime import date, datetime, timezone
from typing import Iterable, List, Optional

from errors import NothingToExport
from schemas import Task, Project, User

BOM = "\ufeff"

CSV_HEADERS = [
    "Projeto",
    "Setor",
    "Colaborador",
    "Atividade Planejada",
    "Atividade Entregue",
    "Status",
    "Prioridade",
    "Data Entrega",
    "Horas",
    "Observações",
]

STATUS_ALL = "ALL"
SCOPE_ALL = "ALL"
SCOPE_MINE = "MINE"


def project_name(projects: Iterable[Project], project_id: str) -> str:
    return next((p.name for p in projects if p.id == project_id), "Projeto Desconhecido")


def filter_tasks(
    tasks: List[Task],
    projects: List[Project],
    *,
    search: str = "",
    status: str = STATUS_ALL,
    scope: str = SCOPE_ALL,
    user_id: Optional[str] = None,
) -> List[Task]:
    """Search (project name or planned activity), status and scope filters. Keeps input order."""
    needle = (search or "").lower()
    names = {p.id: p.name.lower() for p in projects}
    result = []
    for t in tasks:
        haystack = names.get(t.project_id, "projeto desconhecido")
        if needle and needle not in haystack and needle not in t.planned_activity.lower():
            continue
        if status != STATUS_ALL and t.status != status:
            continue
        if scope == SCOPE_MINE and t.collaborator_id != user_id:
            continue
        result.append(t)
    return result


def _quote(value) -> str:
    text = "" if value is None else str(getattr(value, "value", value))
    return '"' + text.replace('"', '""') + '"'


def build_csv(tasks: List[Task], projects: List[Project], users: List[User]) -> str:
    """UTF-8 report with a leading BOM. Raises NothingToExport for an empty list."""
    if not tasks:
        raise NothingToExport()

    user_names = {u.id: u.name for u in users}
    rows = [",".join(CSV_HEADERS)]
    for t in tasks:
        rows.append(",".join(_quote(v) for v in (
            project_name(projects, t.project_id),
            t.sector,
            user_names.get(t.collaborator_id, "N/A"),
            t.planned_activity,
            t.delivered_activity,
            t.status,
            t.priority,
            t.due_date,
            t.hours_dedicated,
            t.notes,
        )))
    return BOM + "\n".join(rows)


def export_filename(today: Optional[date] = None) -> str:
    today = today or datetime.now(timezone.utc).date()
    return f"iti_tech_relatorio_{today.isoformat()}.csv"
