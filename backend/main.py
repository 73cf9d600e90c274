# main.py — ITI Tech dashboard API
# Features:
# - Request correlation IDs + timing header
# - Error taxonomy mapped to HTTP status codes
# - Per-session caches resolved from the bearer token
# - WebSocket change notifications
# - Health check with store verification

import os
import uuid
import time
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.staticfiles import StaticFiles
from sqlalchemy import text

from ai_client import GeminiClient
from auth import GoTrueIdentityProvider, SessionRegistry
from blob_store import LocalBlobStore
from config import Settings, check_startup_config
from database import build_engine, build_session_maker, init_db, close_db
from errors import DashboardError
from realtime import ChangeFeed
from remote_store import RemoteStore
from telemetry import setup_telemetry

VERSION = "1.0.0"

logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
)
logger = logging.getLogger("iti-tech")


def create_app(
    settings: Optional[Settings] = None,
    *,
    identity_provider=None,
    ai_client=None,
    blob_store=None,
) -> FastAPI:
    """Build the application and its services. Collaborators can be injected (tests)."""
    settings = settings or Settings.from_env()

    engine = build_engine(settings.database_url, echo=settings.sql_echo)
    feed = ChangeFeed()
    store = RemoteStore(build_session_maker(engine), feed)

    if identity_provider is None and settings.supabase_url:
        identity_provider = GoTrueIdentityProvider(settings.supabase_url, settings.supabase_anon_key)
    if ai_client is None:
        ai_client = GeminiClient(
            settings.gemini_api_key, settings.gemini_model, timeout=settings.gemini_timeout_seconds,
        )
    if blob_store is None:
        blob_store = LocalBlobStore(settings.file_storage_root, settings.public_files_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"🚀 Starting ITI Tech dashboard v{VERSION}...")
        await init_db(engine)
        check_startup_config(settings)
        setup_telemetry(app, engine)
        yield
        logger.info("🛑 Shutting down ITI Tech dashboard...")
        await app.state.sessions.close_all()
        await close_db(engine)

    app = FastAPI(
        title="ITI Tech Dashboard",
        description="Team task tracking, weekly planning, kanban board and shared Gemini chat",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.config = settings
    app.state.engine = engine
    app.state.feed = feed
    app.state.store = store
    app.state.ai_client = ai_client
    app.state.sessions = SessionRegistry(
        store, settings, identity_provider=identity_provider, blob_store=blob_store,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
        expose_headers=["X-Request-ID", "Content-Disposition"],
    )

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id

        start = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{duration:.4f}s"
        logger.info(
            f"{request.method} {request.url.path} → {response.status_code} "
            f"({duration:.3f}s) [rid={request_id[:8]}]"
        )
        return response

    # ============================================================
    # EXCEPTION HANDLERS
    # ============================================================

    @app.exception_handler(DashboardError)
    async def dashboard_error_handler(request: Request, exc: DashboardError):
        return JSONResponse(
            status_code=exc.http_status,
            content={"detail": exc.message, "error": type(exc).__name__},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = [
            {
                "type": str(err.get("type", "unknown")),
                "loc": list(err.get("loc", [])),
                "msg": str(err.get("msg", "")),
            }
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=422,
            content={"detail": errors, "request_id": getattr(request.state, "request_id", None)},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "request_id": getattr(request.state, "request_id", None)},
        )

    # ============================================================
    # ROUTERS
    # ============================================================

    from routers import auth, tasks, board, catalog, chat, dashboard, settings as settings_router, websocket_router

    app.include_router(auth.router)
    app.include_router(tasks.router)
    app.include_router(board.router)
    app.include_router(catalog.router)
    app.include_router(chat.router)
    app.include_router(dashboard.router)
    app.include_router(settings_router.router)
    app.include_router(websocket_router.router)

    if settings.public_files_url.startswith("/"):
        app.mount(
            settings.public_files_url,
            StaticFiles(directory=settings.file_storage_root, check_dir=False),
            name="files",
        )

    # ============================================================
    # HEALTH
    # ============================================================

    @app.get("/health")
    async def health_check():
        """Health check with store connectivity verification"""
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            db_status = "connected"
        except Exception as e:
            db_status = f"error: {str(e)[:100]}"

        return {
            "status": "healthy" if db_status == "connected" else "degraded",
            "version": VERSION,
            "database": db_status,
            "services": {
                "auth": "operational" if identity_provider is not None else "not_configured",
                "ai": "operational" if ai_client.is_configured() else "not_configured",
                "realtime": feed.get_stats(),
                "sessions": app.state.sessions.get_stats(),
            },
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=os.getenv("ENVIRONMENT") != "production",
    )
