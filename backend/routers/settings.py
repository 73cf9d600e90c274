# routers/settings.py — Branding (logo / favicon)
from fastapi import APIRouter, Depends, UploadFile, File

from auth import get_session, require_admin
from cache import DashboardCache
from schemas import SystemSettings

router = APIRouter(prefix="/api/v1/settings", tags=["Settings"])


@router.get("", response_model=SystemSettings)
async def get_settings(cache: DashboardCache = Depends(get_session)):
    return cache.get_system_settings()


@router.post("/logo", response_model=SystemSettings)
async def upload_logo(file: UploadFile = File(...), cache: DashboardCache = Depends(require_admin)):
    await cache.upload_logo(file.filename, await file.read())
    return cache.get_system_settings()


@router.post("/favicon", response_model=SystemSettings)
async def upload_favicon(file: UploadFile = File(...), cache: DashboardCache = Depends(require_admin)):
    await cache.upload_favicon(file.filename, await file.read())
    return cache.get_system_settings()
