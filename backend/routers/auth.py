# routers/auth.py — Login, logout and the caller's own profile
from fastapi import APIRouter, Depends, Request
from fastapi.security import HTTPAuthorizationCredentials

from auth import get_session, security
from cache import DashboardCache
from schemas import LoginRequest, PasswordChange, ProfileUpdate, User

router = APIRouter(prefix="/api/v1/auth", tags=["Authentication"])


@router.post("/login")
async def login(body: LoginRequest, request: Request):
    cache = await request.app.state.sessions.login(body.email, body.password)
    return {
        "accessToken": cache.access_token,
        "tokenType": "bearer",
        "user": cache.current_user.model_dump(by_alias=True, mode="json"),
    }


@router.post("/logout", status_code=204)
async def logout(request: Request, credentials: HTTPAuthorizationCredentials = Depends(security)):
    await request.app.state.sessions.logout(credentials.credentials)


@router.get("/me", response_model=User)
async def get_me(cache: DashboardCache = Depends(get_session)):
    return cache.current_user


@router.patch("/me", response_model=User)
async def update_me(body: ProfileUpdate, cache: DashboardCache = Depends(get_session)):
    await cache.update_profile(cache.current_user.id, body)
    return cache.current_user


@router.post("/password", status_code=204)
async def change_password(body: PasswordChange, cache: DashboardCache = Depends(get_session)):
    await cache.change_password(body.old_password, body.new_password)
