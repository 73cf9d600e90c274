# routers/board.py — Kanban board cards with subtasks
from typing import List

from fastapi import APIRouter, Depends

from analytics import board_progress
from auth import get_session
from cache import DashboardCache
from errors import NotFound
from models import BoardStatus
from schemas import BoardTask, BoardTaskCreate, BoardTaskUpdate

router = APIRouter(prefix="/api/v1/board", tags=["Board"])

COLUMNS = [
    {"id": BoardStatus.TODO.value, "title": "A Fazer"},
    {"id": BoardStatus.DOING.value, "title": "Em Progresso"},
    {"id": BoardStatus.DONE.value, "title": "Concluído"},
]


class BoardTaskOut(BoardTask):
    progress: int = 0


def _out(task: BoardTask) -> BoardTaskOut:
    return BoardTaskOut(**task.model_dump(), progress=board_progress(task))


def _card(cache: DashboardCache, task_id: str) -> BoardTaskOut:
    task = next((t for t in cache.get_board_tasks() if t.id == task_id), None)
    if task is None:
        raise NotFound("Card não encontrado.")
    return _out(task)


@router.get("/columns")
async def list_columns():
    return COLUMNS


@router.get("/tasks", response_model=List[BoardTaskOut])
async def list_board_tasks(cache: DashboardCache = Depends(get_session)):
    return [_out(t) for t in cache.get_board_tasks()]


@router.post("/tasks", response_model=BoardTaskOut, status_code=201)
async def create_board_task(body: BoardTaskCreate, cache: DashboardCache = Depends(get_session)):
    return _out(await cache.create_board_task(body))


@router.patch("/tasks/{task_id}", response_model=BoardTaskOut)
async def update_board_task(task_id: str, body: BoardTaskUpdate, cache: DashboardCache = Depends(get_session)):
    await cache.update_board_task(task_id, body)
    return _card(cache, task_id)


@router.delete("/tasks/{task_id}", status_code=204)
async def delete_board_task(task_id: str, cache: DashboardCache = Depends(get_session)):
    await cache.delete_board_task(task_id)


@router.post("/tasks/{task_id}/subtasks/{index}/toggle", response_model=BoardTaskOut)
async def toggle_subtask(task_id: str, index: int, cache: DashboardCache = Depends(get_session)):
    await cache.toggle_subtask(task_id, index)
    return _card(cache, task_id)
