# routers/tasks.py — Collaborator tasks: CRUD, completion toggle, hours and CSV export
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response

from auth import get_session
from cache import DashboardCache
from errors import NotFound
from export import filter_tasks, build_csv, export_filename, STATUS_ALL, SCOPE_ALL
from schemas import Task, TaskCreate, TaskUpdate, QuickAddTask

router = APIRouter(prefix="/api/v1/tasks", tags=["Tasks"])


def _filtered(cache: DashboardCache, search: str, status: str, scope: str) -> List[Task]:
    return filter_tasks(
        cache.get_tasks(), cache.get_projects(),
        search=search, status=status, scope=scope,
        user_id=cache.current_user.id,
    )


def _task_or_404(cache: DashboardCache, task_id: str) -> Task:
    task = cache.find_task(task_id)
    if task is None:
        raise NotFound("Tarefa não encontrada.")
    return task


@router.get("", response_model=List[Task])
async def list_tasks(
    search: str = "",
    status: str = STATUS_ALL,
    scope: str = SCOPE_ALL,
    cache: DashboardCache = Depends(get_session),
):
    """Most recently updated first"""
    return _filtered(cache, search, status, scope)


@router.post("", response_model=Task, status_code=201)
async def create_task(body: TaskCreate, cache: DashboardCache = Depends(get_session)):
    return await cache.create_task(body)


@router.get("/hours")
async def total_hours(
    collaborator_id: Optional[str] = Query(None, alias="collaboratorId"),
    cache: DashboardCache = Depends(get_session),
):
    return {"total": cache.calculate_total_hours(collaborator_id), "collaboratorId": collaborator_id}


@router.get("/export")
async def export_csv(
    search: str = "",
    status: str = STATUS_ALL,
    scope: str = SCOPE_ALL,
    cache: DashboardCache = Depends(get_session),
):
    content = build_csv(_filtered(cache, search, status, scope), cache.get_projects(), cache.get_users())
    return Response(
        content=content.encode("utf-8"),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{export_filename()}"'},
    )


@router.post("/quick-add", response_model=Task, status_code=201)
async def quick_add(body: QuickAddTask, cache: DashboardCache = Depends(get_session)):
    return await cache.quick_add_task(body)


@router.patch("/{task_id}", response_model=Task)
async def update_task(task_id: str, body: TaskUpdate, cache: DashboardCache = Depends(get_session)):
    await cache.update_task(task_id, body)
    return _task_or_404(cache, task_id)


@router.post("/{task_id}/toggle", response_model=Task)
async def toggle_task(task_id: str, cache: DashboardCache = Depends(get_session)):
    await cache.toggle_task_completion(task_id)
    return _task_or_404(cache, task_id)


@router.delete("/{task_id}", status_code=204)
async def delete_task(task_id: str, cache: DashboardCache = Depends(get_session)):
    await cache.delete_task(task_id)
