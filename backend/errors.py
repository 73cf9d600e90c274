# errors.py — Error taxonomy surfaced by the cache, chat coordinator and routers
from typing import Optional


class DashboardError(Exception):
    """Base class. `message` is written for direct display to the user."""
    http_status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthFailure(DashboardError):
    """Invalid credentials or missing profile row. Not retried."""
    http_status = 401


class NotFound(DashboardError):
    http_status = 404


class ReferentialConflict(DashboardError):
    """Delete blocked by a dependent row. Surfaced verbatim, never cascaded."""
    http_status = 409

    def __init__(self, message: str, dependent: Optional[str] = None):
        super().__init__(message)
        self.dependent = dependent


class WriteFailure(DashboardError):
    """Any other store write error, prefixed with the attempted operation."""
    http_status = 502

    def __init__(self, prefix: str, detail: str):
        super().__init__(f"{prefix}: {detail}")
        self.prefix = prefix
        self.detail = detail


class ChatBusy(DashboardError):
    """The chat turn lock is held by someone else."""
    http_status = 409

    def __init__(self, locked_by_user_id: Optional[str] = None):
        super().__init__("O chat está ocupado. Aguarde a resposta atual do Gemini.")
        self.locked_by_user_id = locked_by_user_id


class CompletionFailure(DashboardError):
    """AI Completion Service error. Converted into an apology message, never shown as an error."""
    http_status = 503


class FetchFailure(DashboardError):
    """A collection refresh failed; the previous snapshot is kept."""
    http_status = 503


class NothingToExport(DashboardError):
    http_status = 404

    def __init__(self):
        super().__init__("Não há dados para exportar com os filtros atuais.")


# --- Store-level errors (translated by the cache before reaching callers) ---

class StoreError(Exception):
    pass


class ForeignKeyViolation(StoreError):
    pass
