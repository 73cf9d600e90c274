# database.py - Async engine / session setup for the Remote Store
import logging
from sqlalchemy import event, insert, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker

from models import Base, ChatState, SystemSetting, SINGLETON_ID

logger = logging.getLogger("iti-tech.store")


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create the async engine. SQLite gets FK enforcement, other backends a connection pool."""
    if database_url.startswith("sqlite"):
        engine = create_async_engine(database_url, echo=echo, future=True)
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        return engine

    return create_async_engine(
        database_url,
        echo=echo,
        future=True,
        pool_size=20,
        max_overflow=0,
        pool_pre_ping=True,
        pool_recycle=3600,
    )


def build_session_maker(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db(engine: AsyncEngine):
    """Create tables and seed the singleton rows (chat lock, system settings)"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

        for model in (ChatState, SystemSetting):
            existing = await conn.execute(
                select(model.__table__.c.id).where(model.__table__.c.id == SINGLETON_ID)
            )
            if existing.first() is None:
                await conn.execute(insert(model.__table__).values(id=SINGLETON_ID))

    logger.info("✅ Database initialized successfully")


async def close_db(engine: AsyncEngine):
    """Close database connection pool"""
    await engine.dispose()
