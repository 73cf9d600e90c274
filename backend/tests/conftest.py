# tests/conftest.py — Shared test fixtures
import uuid
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from jose import jwt

from auth import IdentitySession
from blob_store import LocalBlobStore
from cache import DashboardCache
from config import Settings
from database import init_db, close_db
from errors import AuthFailure
from main import create_app
from models import UserRole, new_uuid

JWT_SECRET = "test-secret-key-for-unit-tests-only-min-32-chars"
ADMIN_PASSWORD = "admin-password"
MEMBER_PASSWORD = "member-password"


class FakeIdentityProvider:
    """In-memory stand-in for the GoTrue endpoint, issuing real HS256 tokens"""

    def __init__(self):
        self.accounts = {}  # email -> {"id", "password"}
        self.signed_out = []

    def register(self, user_id: str, email: str, password: str):
        self.accounts[email] = {"id": user_id, "password": password}

    @staticmethod
    def issue_token(user_id: str, expires_in: int = 3600) -> str:
        return jwt.encode(
            {
                "sub": user_id,
                "aud": "authenticated",
                "jti": str(uuid.uuid4()),
                "exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in),
            },
            JWT_SECRET,
            algorithm="HS256",
        )

    async def sign_in(self, email: str, password: str) -> IdentitySession:
        account = self.accounts.get(email)
        if account is None or account["password"] != password:
            raise AuthFailure("Invalid login credentials")
        return IdentitySession(user_id=account["id"], access_token=self.issue_token(account["id"]))

    async def sign_out(self, access_token: str) -> None:
        self.signed_out.append(access_token)

    async def update_password(self, access_token: str, new_password: str) -> None:
        user_id = jwt.decode(access_token, JWT_SECRET, algorithms=["HS256"], options={"verify_aud": False})["sub"]
        for account in self.accounts.values():
            if account["id"] == user_id:
                account["password"] = new_password
                return
        raise AuthFailure("User not found")


class FakeAIClient:
    """Records every prompt; replies with `reply` or raises `error`"""

    def __init__(self, reply: str = "Resposta do Gemini", error: Exception = None, configured: bool = True):
        self.reply = reply
        self.error = error
        self.configured = configured
        self.calls = []

    def is_configured(self) -> bool:
        return self.configured

    async def generate(self, system_instruction, parts):
        self.calls.append((system_instruction, parts))
        if self.error is not None:
            raise self.error
        return self.reply


class CountingStore:
    """Wraps a RemoteStore, counting calls and optionally failing reads per table"""

    def __init__(self, store):
        self._store = store
        self.fetches = []
        self.writes = []
        self.fail_tables = set()

    @property
    def feed(self):
        return self._store.feed

    async def fetch(self, table, **kwargs):
        self.fetches.append(table)
        if table in self.fail_tables:
            from remote_store import FetchResult
            return FetchResult.failure("connection reset")
        return await self._store.fetch(table, **kwargs)

    async def insert(self, table, values):
        self.writes.append(("insert", table))
        return await self._store.insert(table, values)

    async def update(self, table, values, *, match):
        self.writes.append(("update", table))
        return await self._store.update(table, values, match=match)

    async def delete(self, table, *, match):
        self.writes.append(("delete", table))
        return await self._store.delete(table, match=match)


async def add_profile(store, name: str, email: str, role: UserRole = UserRole.USER, sector: str = "TI") -> dict:
    return await store.insert("profiles", {
        "id": new_uuid(), "name": name, "email": email, "role": role, "sector": sector, "avatar": "",
    })


async def add_task(store, project_id: str, collaborator_id: str, **fields) -> dict:
    row = {
        "project_id": project_id,
        "collaborator_id": collaborator_id,
        "sector": "TI",
        "planned_activity": "Atividade",
        "delivered_activity": "",
        "hours_dedicated": "00:00",
        "notes": "",
        "due_date": "2026-10-14",
    }
    row.update(fields)
    return await store.insert("tasks", row)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        jwt_secret_key=JWT_SECRET,
        gemini_api_key="test-key",
        file_storage_root=str(tmp_path / "files"),
        public_files_url="/files",
    )


@pytest.fixture
def identity():
    return FakeIdentityProvider()


@pytest.fixture
def ai_client():
    return FakeAIClient()


@pytest.fixture
def blob_store(settings):
    return LocalBlobStore(settings.file_storage_root, settings.public_files_url)


@pytest_asyncio.fixture
async def app(settings, identity, ai_client, blob_store):
    application = create_app(settings, identity_provider=identity, ai_client=ai_client, blob_store=blob_store)
    await init_db(application.state.engine)
    yield application
    await application.state.sessions.close_all()
    await close_db(application.state.engine)


@pytest.fixture
def store(app):
    return app.state.store


@pytest_asyncio.fixture
async def admin(store, identity):
    row = await add_profile(store, "Ana Admin", "ana@iti.tech", role=UserRole.ADMIN)
    identity.register(row["id"], row["email"], ADMIN_PASSWORD)
    return row


@pytest_asyncio.fixture
async def member(store, identity):
    row = await add_profile(store, "Bruno Silva", "bruno@iti.tech")
    identity.register(row["id"], row["email"], MEMBER_PASSWORD)
    return row


@pytest_asyncio.fixture
async def sector(store):
    return await store.insert("sectors", {"name": "Desenvolvimento"})


@pytest_asyncio.fixture
async def project(store, sector):
    return await store.insert("projects", {"name": "Portal Interno", "sector_id": sector["id"]})


@pytest_asyncio.fixture
async def cache(store, settings, identity, blob_store, admin):
    """Admin session, initialized"""
    session = DashboardCache(store, settings, identity_provider=identity, blob_store=blob_store)
    await session.restore_session(admin["id"])
    yield session
    session.dispose()


@pytest_asyncio.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def auth_headers(user: dict) -> dict:
    return {"Authorization": f"Bearer {FakeIdentityProvider.issue_token(user['id'])}"}
