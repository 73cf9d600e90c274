# auth.py — Delegated authentication for the ITI Tech dashboard
# Features:
# - Password sign-in, sign-out and password change against a GoTrue (Supabase Auth) endpoint
# - HS256 access-token verification with the provider's JWT secret
# - One DashboardCache per signed-in user, dropped at logout or when its latest token expires
# - Admin-only dependency for catalog and settings mutations

import asyncio
import time
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError, ExpiredSignatureError

from cache import DashboardCache
from config import Settings
from errors import AuthFailure
from models import UserRole

logger = logging.getLogger("iti-tech.auth")

ALGORITHM = "HS256"

security = HTTPBearer()


# ============================================================
# IDENTITY PROVIDER
# ============================================================

@dataclass(frozen=True)
class IdentitySession:
    user_id: str
    access_token: str


class GoTrueIdentityProvider:
    """Minimal GoTrue REST client. Every failure surfaces as AuthFailure with a displayable message."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    def _headers(self, access_token: Optional[str] = None) -> Dict[str, str]:
        headers = {"apikey": self.api_key, "Content-Type": "application/json"}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        return headers

    async def _request(self, method: str, path: str, *, access_token: Optional[str] = None,
                       params: Optional[Dict[str, str]] = None, json: Optional[Dict[str, Any]] = None) -> Dict:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.request(
                    method, f"{self.base_url}/auth/v1{path}",
                    headers=self._headers(access_token), params=params, json=json,
                )
        except httpx.HTTPError as e:
            logger.warning(f"Identity provider unreachable: {e}")
            raise AuthFailure("Serviço de autenticação indisponível.") from e

        try:
            data = resp.json() if resp.content else {}
        except ValueError:
            data = {}
        if resp.status_code >= 400:
            message = data.get("error_description") or data.get("msg") or data.get("message") or resp.reason_phrase
            raise AuthFailure(message)
        return data

    async def sign_in(self, email: str, password: str) -> IdentitySession:
        data = await self._request(
            "POST", "/token", params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        try:
            return IdentitySession(user_id=data["user"]["id"], access_token=data["access_token"])
        except (KeyError, TypeError):
            raise AuthFailure("Resposta inválida do serviço de autenticação.") from None

    async def sign_out(self, access_token: str) -> None:
        await self._request("POST", "/logout", access_token=access_token)

    async def update_password(self, access_token: str, new_password: str) -> None:
        await self._request("PUT", "/user", access_token=access_token, json={"password": new_password})


def verify_access_token(token: str, secret: str) -> Dict[str, Any]:
    if not secret:
        raise AuthFailure("Verificação de token não configurada.")
    try:
        # GoTrue sets aud="authenticated"; the signature is what matters here
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM], options={"verify_aud": False})
    except ExpiredSignatureError:
        raise AuthFailure("Sessão expirada. Faça login novamente.") from None
    except JWTError:
        raise AuthFailure("Token inválido.") from None

    if not payload.get("sub"):
        raise AuthFailure("Token inválido.")
    return payload


# ============================================================
# SESSION REGISTRY
# ============================================================

def _token_expiry(access_token: str) -> Optional[float]:
    # Only for tokens just handed over by the identity provider
    try:
        exp = jwt.get_unverified_claims(access_token).get("exp")
    except JWTError:
        return None
    return float(exp) if exp is not None else None


class SessionRegistry:
    """One DashboardCache per signed-in user, shared by all of that user's tokens.

    Every request token is verified; a session lives until the latest token seen
    for its user expires, then it is disposed.
    """

    def __init__(self, store, config: Settings, identity_provider=None, blob_store=None):
        self.store = store
        self.config = config
        self.identity_provider = identity_provider
        self.blob_store = blob_store
        self._sessions: Dict[str, DashboardCache] = {}  # user id -> cache
        self._expires: Dict[str, Optional[float]] = {}  # user id -> latest token exp
        self._lock = asyncio.Lock()

    def new_cache(self) -> DashboardCache:
        return DashboardCache(
            self.store, self.config,
            identity_provider=self.identity_provider, blob_store=self.blob_store,
        )

    def _extend(self, user_id: str, exp: Optional[float]) -> None:
        # None means "no expiry" and wins over any timestamp
        if user_id not in self._expires:
            self._expires[user_id] = exp
        elif exp is None or self._expires[user_id] is None:
            self._expires[user_id] = None
        else:
            self._expires[user_id] = max(self._expires[user_id], exp)

    def _drop(self, user_id: str) -> Optional[DashboardCache]:
        self._expires.pop(user_id, None)
        cache = self._sessions.pop(user_id, None)
        if cache is not None:
            cache.dispose()
        return cache

    def prune(self, now: Optional[float] = None) -> int:
        """Dispose sessions whose latest token has expired. Returns how many were dropped."""
        now = time.time() if now is None else now
        expired = [uid for uid, exp in self._expires.items() if exp is not None and exp <= now]
        for user_id in expired:
            self._drop(user_id)
        if expired:
            logger.info(f"Expired sessions dropped: {len(expired)}")
        return len(expired)

    async def login(self, email: str, password: str) -> DashboardCache:
        self.prune()
        cache = self.new_cache()
        user = await cache.authenticate(email, password)
        async with self._lock:
            existing = self._sessions.get(user.id)
            if existing is not None and existing.current_user is not None:
                existing.access_token = cache.access_token
                cache.dispose()
                cache = existing
            else:
                if existing is not None:
                    existing.dispose()
                self._sessions[user.id] = cache
            self._extend(user.id, _token_expiry(cache.access_token))
        logger.info(f"Login: {user.email}")
        return cache

    async def resolve(self, access_token: str) -> DashboardCache:
        """Session for a verified token. Tokens issued before a restart get a fresh cache."""
        self.prune()
        payload = verify_access_token(access_token, self.config.jwt_secret_key)
        user_id = payload["sub"]

        async with self._lock:
            cache = self._sessions.get(user_id)
            if cache is None or cache.current_user is None:
                if cache is not None:
                    cache.dispose()
                cache = self.new_cache()
                self._sessions[user_id] = cache
                try:
                    await cache.restore_session(user_id)
                except Exception:
                    self._drop(user_id)
                    raise
            cache.access_token = access_token
            self._extend(user_id, payload.get("exp"))
        return cache

    async def logout(self, access_token: str) -> None:
        """Ends the caller's session for every token of that user."""
        payload = verify_access_token(access_token, self.config.jwt_secret_key)
        cache = self._sessions.get(payload["sub"])
        if cache is None:
            return
        email = cache.current_user.email if cache.current_user else "?"
        cache.access_token = access_token
        await cache.logout()
        self._drop(payload["sub"])
        logger.info(f"Logout: {email}")

    async def close_all(self) -> None:
        for cache in self._sessions.values():
            cache.dispose()
        self._sessions.clear()
        self._expires.clear()

    def get_stats(self) -> dict:
        return {"sessions": len(self._sessions)}


# ============================================================
# FASTAPI DEPENDENCIES
# ============================================================

async def get_session(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> DashboardCache:
    registry: SessionRegistry = request.app.state.sessions
    return await registry.resolve(credentials.credentials)


async def require_admin(cache: DashboardCache = Depends(get_session)) -> DashboardCache:
    if cache.current_user is None or cache.current_user.role != UserRole.ADMIN:
        raise HTTPException(status_code=403, detail="Acesso restrito a administradores.")
    return cache
