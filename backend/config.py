# config.py — Environment-driven settings for the ITI Tech dashboard
import os
import logging
from dataclasses import dataclass, field
from typing import List

logger = logging.getLogger("iti-tech")


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@dataclass
class Settings:
    """Runtime configuration. Built once at startup and passed to the services that need it."""
    database_url: str = "sqlite+aiosqlite:///./iti_tech.db"
    sql_echo: bool = False

    # Identity provider (Supabase GoTrue compatible)
    supabase_url: str = ""
    supabase_anon_key: str = ""
    jwt_secret_key: str = ""

    # AI Completion Service
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.5-flash"
    gemini_timeout_seconds: float = 60.0

    # Chat + cache limits
    chat_context_size: int = 10
    chat_lock_conditional: bool = False
    activity_log_limit: int = 20
    chat_history_limit: int = 100

    # Object storage
    file_storage_root: str = "./data/files"
    public_files_url: str = "/files"

    cors_origins: List[str] = field(default_factory=lambda: [
        "http://localhost:3000", "http://localhost:5173",
    ])
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            sql_echo=_env_bool("SQL_ECHO"),
            supabase_url=os.getenv("SUPABASE_URL", "").rstrip("/"),
            supabase_anon_key=os.getenv("SUPABASE_ANON_KEY", ""),
            jwt_secret_key=os.getenv("JWT_SECRET_KEY", ""),
            gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
            gemini_model=os.getenv("GEMINI_MODEL", cls.gemini_model),
            gemini_timeout_seconds=float(os.getenv("GEMINI_TIMEOUT_SECONDS", "60")),
            chat_context_size=int(os.getenv("CHAT_CONTEXT_SIZE", "10")),
            chat_lock_conditional=_env_bool("CHAT_LOCK_CONDITIONAL"),
            activity_log_limit=int(os.getenv("ACTIVITY_LOG_LIMIT", "20")),
            chat_history_limit=int(os.getenv("CHAT_HISTORY_LIMIT", "100")),
            file_storage_root=os.getenv("FILE_STORAGE_ROOT", cls.file_storage_root),
            public_files_url=os.getenv("PUBLIC_FILES_URL", cls.public_files_url).rstrip("/"),
            cors_origins=[
                origin.strip()
                for origin in os.getenv(
                    "CORS_ORIGINS", "http://localhost:3000,http://localhost:5173"
                ).split(",")
                if origin.strip()
            ],
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


def check_startup_config(settings: Settings) -> bool:
    """Log a warning for every missing critical setting. Returns True when nothing is missing."""
    warnings = []

    if not settings.jwt_secret_key or len(settings.jwt_secret_key) < 32:
        warnings.append("⚠️  JWT_SECRET_KEY is not set or too short — access tokens cannot be verified")

    if not settings.supabase_url or not settings.supabase_anon_key:
        warnings.append("⚠️  SUPABASE_URL / SUPABASE_ANON_KEY not set — login is unavailable")

    if settings.gemini_api_key:
        logger.info(f"🤖 Gemini configured: {settings.gemini_model}")
    else:
        warnings.append("⚠️  GEMINI_API_KEY not set — chat turns will only produce the fallback reply")

    for w in warnings:
        logger.warning(w)

    return len(warnings) == 0
