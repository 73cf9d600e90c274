# routers/catalog.py — Sectors, projects and users (mutations are admin-only)
from typing import List

from fastapi import APIRouter, Depends

from auth import get_session, require_admin
from cache import DashboardCache
from schemas import Sector, SectorCreate, Project, ProjectCreate, User, UserCreate

router = APIRouter(prefix="/api/v1", tags=["Catalog"])


# --- Sectors ---

@router.get("/sectors", response_model=List[Sector])
async def list_sectors(cache: DashboardCache = Depends(get_session)):
    return cache.get_sectors()


@router.post("/sectors", response_model=List[Sector], status_code=201)
async def create_sector(body: SectorCreate, cache: DashboardCache = Depends(require_admin)):
    await cache.create_sector(body)
    return cache.get_sectors()


@router.delete("/sectors/{sector_id}", status_code=204)
async def delete_sector(sector_id: str, cache: DashboardCache = Depends(require_admin)):
    await cache.delete_sector(sector_id)


# --- Projects ---

@router.get("/projects", response_model=List[Project])
async def list_projects(cache: DashboardCache = Depends(get_session)):
    return cache.get_projects()


@router.post("/projects", response_model=List[Project], status_code=201)
async def create_project(body: ProjectCreate, cache: DashboardCache = Depends(require_admin)):
    await cache.create_project(body)
    return cache.get_projects()


@router.delete("/projects/{project_id}", status_code=204)
async def delete_project(project_id: str, cache: DashboardCache = Depends(require_admin)):
    await cache.delete_project(project_id)


# --- Users ---

@router.get("/users", response_model=List[User])
async def list_users(cache: DashboardCache = Depends(get_session)):
    return cache.get_users()


@router.post("/users", response_model=User, status_code=201)
async def create_user(body: UserCreate, cache: DashboardCache = Depends(require_admin)):
    return await cache.create_user(body)


@router.delete("/users/{user_id}", status_code=204)
async def delete_user(user_id: str, cache: DashboardCache = Depends(require_admin)):
    await cache.delete_user(user_id)
