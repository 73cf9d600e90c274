# cache.py — Per-session Local Cache + Change Notifier for the ITI Tech dashboard
# Features:
# - One in-memory snapshot per collection, replaced wholesale by each fetch
# - Idempotent initialize(): one parallel batch of fetches per session
# - Subscribers notified after every refresh; late subscribers caught up on registration
# - Failed fetches keep the previous snapshot and mark the collection degraded
# - All write actions (tasks, board, catalog, profile, settings uploads) with localized errors

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Set
from urllib.parse import quote

import durations
from config import Settings
from errors import (
    AuthFailure, NotFound, ReferentialConflict, WriteFailure,
    StoreError, ForeignKeyViolation,
)
from models import (
    SINGLETON_ID, TaskStatus, TaskPriority, LogAction, ChatRole, utcnow, new_uuid,
)
from realtime import ChangeEvent
from remote_store import RemoteStore
from schemas import (
    User, Sector, Project, Task, BoardTask, ActivityLog, ChatMessage, ChatTurnLock,
    SystemSettings, TaskCreate, TaskUpdate, QuickAddTask, BoardTaskCreate,
    BoardTaskUpdate, ProfileUpdate, UserCreate, SectorCreate, ProjectCreate,
)

logger = logging.getLogger("iti-tech.cache")

Listener = Callable[[], None]

PROFILE_NOT_FOUND = "Perfil de usuário não encontrado."
WRONG_PASSWORD = "A senha atual está incorreta."
NOT_AUTHENTICATED = "Usuário não autenticado."


@dataclass(frozen=True)
class _Collection:
    attr: str
    entity: type
    order_by: Optional[str] = None
    descending: bool = False
    limit_setting: Optional[str] = None
    singleton: bool = False
    oldest_first: bool = False  # fetched newest-first, kept in chronological order


# Remote Store table -> in-memory collection
COLLECTIONS: Dict[str, _Collection] = {
    "profiles": _Collection("_users", User, order_by="created_at"),
    "sectors": _Collection("_sectors", Sector, order_by="created_at"),
    "projects": _Collection("_projects", Project, order_by="created_at"),
    "tasks": _Collection("_tasks", Task, order_by="updated_at", descending=True),
    "board_tasks": _Collection("_board_tasks", BoardTask, order_by="updated_at", descending=True),
    "activity_logs": _Collection(
        "_logs", ActivityLog, order_by="timestamp", descending=True, limit_setting="activity_log_limit",
    ),
    "chat_messages": _Collection(
        "_chat_messages", ChatMessage, order_by="created_at", descending=True,
        limit_setting="chat_history_limit", oldest_first=True,
    ),
    "chat_state": _Collection("_chat_state", ChatTurnLock, singleton=True),
    "system_settings": _Collection("_system_settings", SystemSettings, singleton=True),
}

DELETE_CONFLICTS = {
    "sectors": "Não é possível excluir este setor. Verifique se existem projetos vinculados a ele.",
    "projects": "Não é possível excluir este projeto. Verifique se existem tarefas vinculadas a ele.",
    "profiles": "Não é possível excluir este usuário. Verifique se ele possui tarefas atribuídas.",
}

DEPENDENTS = {"sectors": "projects", "projects": "tasks", "profiles": "tasks"}


class DashboardCache:
    """Explicitly constructed per session; pass the instance to whoever needs it."""

    def __init__(
        self,
        store: RemoteStore,
        config: Optional[Settings] = None,
        identity_provider=None,
        blob_store=None,
    ):
        self._store = store
        self._config = config or Settings()
        self._identity = identity_provider
        self._blobs = blob_store

        self._listeners: List[Listener] = []
        self._feed_unsubscribers: List[Callable[[], None]] = []
        self._init_task: Optional[asyncio.Task] = None
        self._ready = False
        self._degraded: Set[str] = set()

        self.current_user: Optional[User] = None
        self.access_token: Optional[str] = None
        self._reset_collections()

    def _reset_collections(self):
        self._users: List[User] = []
        self._sectors: List[Sector] = []
        self._projects: List[Project] = []
        self._tasks: List[Task] = []
        self._board_tasks: List[BoardTask] = []
        self._logs: List[ActivityLog] = []
        self._chat_messages: List[ChatMessage] = []
        self._chat_state = ChatTurnLock()
        self._system_settings = SystemSettings()

    # ============================================================
    # LIFECYCLE
    # ============================================================

    @property
    def is_ready(self) -> bool:
        return self._ready

    @property
    def degraded(self) -> FrozenSet[str]:
        """Tables whose last fetch failed; their snapshot is the last good one."""
        return frozenset(self._degraded)

    async def initialize(self) -> None:
        # Concurrent callers share the same in-flight batch
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._load_all())
        task = self._init_task
        try:
            await task
        except Exception:
            # A failed batch must not stick; the next call starts over
            if self._init_task is task:
                self._init_task = None
            raise

    async def _load_all(self) -> None:
        await asyncio.gather(*(self._refresh(table) for table in COLLECTIONS))
        self._ready = True

        feed = self._store.feed
        if feed is not None:
            for table in COLLECTIONS:
                self._feed_unsubscribers.append(feed.subscribe(table, self._on_change))

        logger.info(
            f"Cache ready for {self.current_user.email if self.current_user else 'anonymous'}"
            f" (degraded: {sorted(self._degraded) or 'none'})"
        )
        self._notify()

    async def _on_change(self, event: ChangeEvent) -> None:
        if not self._ready:
            return
        await self._refresh(event.table)
        self._notify()

    async def logout(self) -> None:
        if self._identity is not None and self.access_token:
            try:
                await self._identity.sign_out(self.access_token)
            except AuthFailure as e:
                logger.warning(f"Identity provider sign-out failed: {e.message}")

        self._teardown()
        self._notify()

    def dispose(self) -> None:
        """Drop all state and listeners. The instance should not be reused."""
        self._teardown()
        self._listeners.clear()

    def _teardown(self):
        for unsubscribe in self._feed_unsubscribers:
            unsubscribe()
        self._feed_unsubscribers.clear()
        self._init_task = None
        self._ready = False
        self._degraded.clear()
        self.current_user = None
        self.access_token = None
        self._reset_collections()

    # ============================================================
    # CHANGE NOTIFIER
    # ============================================================

    def subscribe(self, callback: Listener) -> Callable[[], None]:
        self._listeners.append(callback)
        if self._ready:
            self._deliver(callback)

        def _unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)

        return _unsubscribe

    def _notify(self) -> None:
        for callback in list(self._listeners):
            self._deliver(callback)

    @staticmethod
    def _deliver(callback: Listener) -> None:
        try:
            callback()
        except Exception as e:
            logger.error(f"Cache listener failed: {e}", exc_info=True)

    async def _refresh(self, table: str) -> bool:
        collection = COLLECTIONS.get(table)
        if collection is None:
            return False

        limit = getattr(self._config, collection.limit_setting) if collection.limit_setting else None
        match = {"id": SINGLETON_ID} if collection.singleton else None
        result = await self._store.fetch(
            table, match=match, order_by=collection.order_by, descending=collection.descending, limit=limit,
        )
        if not result.ok:
            self._degraded.add(table)
            logger.warning(f"Keeping stale {table} snapshot: {result.error}")
            return False

        if collection.singleton:
            value = collection.entity.from_row(result.rows[0]) if result.rows else collection.entity()
        else:
            value = [collection.entity.from_row(row) for row in result.rows]
            if collection.oldest_first:
                value.reverse()
        # Snapshot is swapped by reference; readers never see a partial list
        setattr(self, collection.attr, value)
        self._degraded.discard(table)
        return True

    async def _refresh_and_notify(self, *tables: str) -> None:
        for table in tables:
            await self._refresh(table)
        self._notify()

    # ============================================================
    # GETTERS (synchronous, no I/O)
    # ============================================================

    def get_users(self) -> List[User]:
        return self._users

    def get_sectors(self) -> List[Sector]:
        return self._sectors

    def get_projects(self) -> List[Project]:
        return self._projects

    def get_tasks(self) -> List[Task]:
        return self._tasks

    def get_board_tasks(self) -> List[BoardTask]:
        return self._board_tasks

    def get_logs(self) -> List[ActivityLog]:
        return self._logs

    def get_chat_messages(self) -> List[ChatMessage]:
        return self._chat_messages

    def get_chat_state(self) -> ChatTurnLock:
        return self._chat_state

    def get_system_settings(self) -> SystemSettings:
        return self._system_settings

    def find_user(self, user_id: Optional[str]) -> Optional[User]:
        return next((u for u in self._users if u.id == user_id), None)

    def find_project(self, project_id: Optional[str]) -> Optional[Project]:
        return next((p for p in self._projects if p.id == project_id), None)

    def find_task(self, task_id: str) -> Optional[Task]:
        return next((t for t in self._tasks if t.id == task_id), None)

    def calculate_total_hours(self, collaborator_id: Optional[str] = None) -> str:
        tasks = self._tasks
        if collaborator_id:
            tasks = [t for t in tasks if t.collaborator_id == collaborator_id]
        return durations.format_minutes(durations.sum_minutes(t.hours_dedicated for t in tasks))

    # ============================================================
    # SESSION
    # ============================================================

    async def authenticate(self, email: str, password: str) -> User:
        if self._identity is None:
            raise AuthFailure("Provedor de identidade não configurado.")
        session = await self._identity.sign_in(email, password)
        user = await self.restore_session(session.user_id)
        self.access_token = session.access_token
        return user

    async def restore_session(self, user_id: str) -> User:
        """Load the profile for an already-authenticated identity and initialize the cache."""
        result = await self._store.fetch("profiles", match={"id": user_id})
        if not result.ok or not result.rows:
            raise AuthFailure(PROFILE_NOT_FOUND)

        self.current_user = User.from_row(result.rows[0])
        await self.initialize()
        return self.current_user

    async def update_profile(self, user_id: str, updates: ProfileUpdate) -> None:
        values = updates.to_row()
        if values:
            rows = await self._guard("Erro ao atualizar perfil", self._store.update(
                "profiles", values, match={"id": user_id},
            ))
            if not rows:
                raise NotFound("Usuário não encontrado.")

        await self._refresh("profiles")
        if self.current_user and self.current_user.id == user_id:
            self.current_user = self.find_user(user_id) or self.current_user.model_copy(update=values)
        self._notify()

    async def change_password(self, old_password: str, new_password: str) -> None:
        if self.current_user is None or self._identity is None:
            raise AuthFailure(NOT_AUTHENTICATED)

        try:
            session = await self._identity.sign_in(self.current_user.email, old_password)
        except AuthFailure:
            raise AuthFailure(WRONG_PASSWORD) from None

        try:
            await self._identity.update_password(session.access_token, new_password)
        except AuthFailure as e:
            raise WriteFailure("Erro ao alterar senha", e.message) from e

    # ============================================================
    # TASKS
    # ============================================================

    async def create_task(self, payload: TaskCreate) -> Task:
        self._require_session()
        row = await self._guard("Erro ao criar tarefa", self._store.insert("tasks", payload.to_row()))
        await self._refresh_and_notify("tasks")
        await self._log_action(LogAction.CREATE, f"Nova tarefa: {payload.planned_activity}")
        return self.find_task(row["id"]) or Task.from_row(row)

    async def update_task(self, task_id: str, updates: TaskUpdate) -> None:
        self._require_session()
        values = {**updates.to_row(), "updated_at": utcnow()}
        rows = await self._guard("Erro ao atualizar tarefa", self._store.update(
            "tasks", values, match={"id": task_id},
        ))
        if not rows:
            raise NotFound("Tarefa não encontrada.")
        await self._refresh_and_notify("tasks")
        await self._log_action(LogAction.UPDATE, "Tarefa atualizada")

    async def delete_task(self, task_id: str) -> None:
        self._require_session()
        rows = await self._guard("Erro ao excluir tarefa", self._store.delete("tasks", match={"id": task_id}))
        if not rows:
            raise NotFound("Tarefa não encontrada.")
        await self._refresh_and_notify("tasks")
        await self._log_action(LogAction.DELETE, "Tarefa removida")

    async def toggle_task_completion(self, task_id: str) -> None:
        task = self.find_task(task_id)
        if task is None:
            raise NotFound("Tarefa não encontrada.")

        completing = task.status != TaskStatus.COMPLETED
        new_status = TaskStatus.COMPLETED if completing else TaskStatus.PENDING
        # Auto-fill only ever fills an empty delivery
        delivered = task.delivered_activity
        if completing and not delivered:
            delivered = task.planned_activity

        await self.update_task(task_id, TaskUpdate(status=new_status, delivered_activity=delivered))

    async def quick_add_task(self, payload: QuickAddTask, collaborator_id: Optional[str] = None) -> Task:
        """Weekly-planning shortcut: a pending, medium-priority task for one day."""
        owner = collaborator_id or (self.current_user.id if self.current_user else None)
        if not owner:
            raise AuthFailure(NOT_AUTHENTICATED)

        project = self.find_project(payload.project_id)
        sector = ""
        if project:
            sector = next((s.name for s in self._sectors if s.id == project.sector_id), "")

        return await self.create_task(TaskCreate(
            project_id=payload.project_id,
            collaborator_id=owner,
            sector=sector,
            planned_activity=payload.planned_activity,
            priority=TaskPriority.MEDIUM,
            status=TaskStatus.PENDING,
            due_date=payload.due_date,
            hours_dedicated=durations.ZERO,
        ))

    # ============================================================
    # BOARD
    # ============================================================

    async def create_board_task(self, payload: BoardTaskCreate) -> BoardTask:
        self._require_session()
        row = await self._guard("Erro ao criar card", self._store.insert("board_tasks", payload.to_row()))
        await self._refresh_and_notify("board_tasks")
        await self._log_action(LogAction.CREATE, f"Novo card: {payload.title}")
        return next((t for t in self._board_tasks if t.id == row["id"]), None) or BoardTask.from_row(row)

    async def update_board_task(self, task_id: str, updates: BoardTaskUpdate) -> None:
        self._require_session()
        values = {**updates.to_row(), "updated_at": utcnow()}
        rows = await self._guard("Erro ao atualizar card", self._store.update(
            "board_tasks", values, match={"id": task_id},
        ))
        if not rows:
            raise NotFound("Card não encontrado.")
        await self._refresh_and_notify("board_tasks")
        await self._log_action(LogAction.UPDATE, "Card atualizado")

    async def delete_board_task(self, task_id: str) -> None:
        self._require_session()
        rows = await self._guard("Erro ao excluir card", self._store.delete(
            "board_tasks", match={"id": task_id},
        ))
        if not rows:
            raise NotFound("Card não encontrado.")
        await self._refresh_and_notify("board_tasks")
        await self._log_action(LogAction.DELETE, "Card removido")

    async def toggle_subtask(self, task_id: str, index: int) -> None:
        task = next((t for t in self._board_tasks if t.id == task_id), None)
        if task is None:
            raise NotFound("Card não encontrado.")
        if not 0 <= index < len(task.subtasks):
            raise NotFound("Subtarefa não encontrada.")

        subtasks = [s.model_copy() for s in task.subtasks]
        subtasks[index].completed = not subtasks[index].completed
        await self.update_board_task(task_id, BoardTaskUpdate(subtasks=subtasks))

    # ============================================================
    # SECTORS / PROJECTS / USERS
    # ============================================================

    async def create_sector(self, payload: SectorCreate) -> None:
        self._require_session()
        await self._guard("Erro ao criar setor", self._store.insert("sectors", payload.to_row()))
        await self._refresh_and_notify("sectors")
        await self._log_action(LogAction.CREATE, f"Novo setor: {payload.name}")

    async def delete_sector(self, sector_id: str) -> None:
        self._require_session()
        await self._delete_referenced("sectors", sector_id, "Erro ao excluir setor")
        await self._log_action(LogAction.DELETE, "Setor removido")

    async def create_project(self, payload: ProjectCreate) -> None:
        self._require_session()
        await self._guard("Erro ao criar projeto", self._store.insert("projects", payload.to_row()))
        await self._refresh_and_notify("projects")
        await self._log_action(LogAction.CREATE, f"Novo projeto: {payload.name}")

    async def delete_project(self, project_id: str) -> None:
        self._require_session()
        await self._delete_referenced("projects", project_id, "Erro ao excluir projeto")
        await self._log_action(LogAction.DELETE, "Projeto removido")

    async def create_user(self, payload: UserCreate) -> User:
        self._require_session()
        row = {
            **payload.to_row(),
            "id": new_uuid(),
            "avatar": f"https://ui-avatars.com/api/?name={quote(payload.name)}",
        }
        await self._guard("Erro ao criar usuário", self._store.insert("profiles", row))
        await self._refresh_and_notify("profiles")
        await self._log_action(LogAction.CREATE, f"Novo usuário: {payload.name}")
        return self.find_user(row["id"]) or User.from_row(row)

    async def delete_user(self, user_id: str) -> None:
        self._require_session()
        await self._delete_referenced("profiles", user_id, "Erro ao excluir usuário")
        await self._log_action(LogAction.DELETE, "Usuário removido")

    async def _delete_referenced(self, table: str, row_id: str, prefix: str) -> None:
        try:
            rows = await self._store.delete(table, match={"id": row_id})
        except ForeignKeyViolation as e:
            logger.info(f"Delete of {table}/{row_id} blocked by {DEPENDENTS[table]}")
            raise ReferentialConflict(DELETE_CONFLICTS[table], dependent=DEPENDENTS[table]) from e
        except StoreError as e:
            raise WriteFailure(prefix, str(e)) from e
        if not rows:
            raise NotFound("Registro não encontrado.")
        await self._refresh_and_notify(table)

    # ============================================================
    # SYSTEM SETTINGS
    # ============================================================

    async def upload_logo(self, filename: str, data: bytes) -> str:
        return await self._upload_setting("logo_url", "logos", filename, data, "Erro ao enviar logo")

    async def upload_favicon(self, filename: str, data: bytes) -> str:
        return await self._upload_setting("favicon_url", "favicons", filename, data, "Erro ao enviar favicon")

    async def _upload_setting(self, column: str, folder: str, filename: str, data: bytes, prefix: str) -> str:
        if self._blobs is None:
            raise WriteFailure(prefix, "armazenamento de arquivos não configurado")
        try:
            url = await self._blobs.put(folder, filename, data)
        except OSError as e:
            raise WriteFailure(prefix, str(e)) from e

        await self._guard(prefix, self._store.update(
            "system_settings", {column: url, "updated_at": utcnow()}, match={"id": SINGLETON_ID},
        ))
        await self._refresh_and_notify("system_settings")
        return url

    # ============================================================
    # CHAT (used by the turn coordinator)
    # ============================================================

    async def append_chat_message(self, role: ChatRole, content: str, user_id: Optional[str] = None) -> None:
        await self._guard("Erro ao enviar mensagem", self._store.insert("chat_messages", {
            "user_id": user_id, "role": role, "content": content, "created_at": utcnow(),
        }))
        await self._refresh_and_notify("chat_messages")

    async def set_chat_lock(self, locked: bool, user_id: Optional[str] = None, *, conditional: bool = False) -> bool:
        """Write the singleton lock row. With `conditional`, only an unlocked row is claimed.

        Returns whether a row was written.
        """
        match: Dict[str, Any] = {"id": SINGLETON_ID}
        if conditional:
            match["is_locked"] = False
        rows = await self._guard("Erro ao atualizar estado do chat", self._store.update(
            "chat_state",
            {"is_locked": locked, "locked_by_user_id": user_id if locked else None, "updated_at": utcnow()},
            match=match,
        ))
        await self._refresh_and_notify("chat_state")
        return rows > 0

    # ============================================================
    # HELPERS
    # ============================================================

    @staticmethod
    async def _guard(prefix: str, write):
        try:
            return await write
        except StoreError as e:
            raise WriteFailure(prefix, str(e)) from e

    def _require_session(self) -> User:
        """Audited actions need an authenticated session: every one of them appends a log entry."""
        if self.current_user is None:
            raise AuthFailure(NOT_AUTHENTICATED)
        return self.current_user

    async def _log_action(self, action: LogAction, description: str) -> None:
        if self.current_user is None:
            # Session ended between the write and its log entry
            logger.warning(f"Activity log skipped, no session ({action.value}): {description}")
            return
        try:
            await self._store.insert("activity_logs", {
                "user_id": self.current_user.id,
                "action": action,
                "description": description,
                "timestamp": utcnow(),
            })
        except StoreError as e:
            # The audited write already committed
            logger.warning(f"Activity log write failed ({action.value}): {e}")
            return
        await self._refresh_and_notify("activity_logs")
