# routers/dashboard.py — Analytics, weekly planning and the activity feed
from dataclasses import asdict
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic.alias_generators import to_camel

import analytics
from auth import get_session
from cache import DashboardCache
from schemas import ActivityLog

router = APIRouter(prefix="/api/v1", tags=["Dashboard"])


def _camel(obj) -> dict:
    return {to_camel(k): v for k, v in asdict(obj).items()}


@router.get("/dashboard")
async def dashboard(cache: DashboardCache = Depends(get_session)):
    tasks = cache.get_tasks()
    stats = analytics.dashboard_stats(tasks, cache.calculate_total_hours(cache.current_user.id))
    return {
        "stats": _camel(stats),
        "hoursByProject": [_camel(r) for r in analytics.hours_by_project(tasks, cache.get_projects())],
        "statusDistribution": _camel(analytics.status_distribution(tasks)),
        "collaboratorLoad": [_camel(r) for r in analytics.collaborator_load(tasks, cache.get_users())],
        "degraded": sorted(cache.degraded),
    }


@router.get("/planning/week")
async def weekly_planning(
    collaborator_id: Optional[str] = Query(None, alias="collaboratorId"),
    cache: DashboardCache = Depends(get_session),
):
    owner = collaborator_id or cache.current_user.id
    return [_camel(day) for day in analytics.weekly_plan(cache.get_tasks(), owner)]


@router.get("/logs", response_model=List[ActivityLog])
async def activity_logs(cache: DashboardCache = Depends(get_session)):
    """Most recent first"""
    return cache.get_logs()
