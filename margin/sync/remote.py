"""
Remote store client.

The backend is a PostgREST-style API (Supabase layout):
  GET  /auth/v1/user                   -> the signed-in user, 401 when signed out
  GET  /rest/v1/<table>?col=op.value   -> filtered select
  POST /rest/v1/<table>                -> insert (or upsert with Prefer: resolution=merge-duplicates)

Everything the sync modules need goes through the `RemoteStore` protocol so
tests can swap in an in-memory fake.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Protocol

import httpx

from margin.settings.config import settings
from margin.utils import format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION_CODE = "23505"


class RemoteError(RuntimeError):
    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


class UniqueViolation(RemoteError):
    """Insert rejected by a unique constraint (Postgres 23505 / HTTP 409)."""


@dataclass(frozen=True)
class RemoteUser:
    id: str
    email: Optional[str] = None


class RemoteStore(Protocol):
    async def get_current_user(self) -> Optional[RemoteUser]: ...

    async def select_since(
        self,
        table: str,
        user_id: str,
        since: Optional[datetime],
        limit: Optional[int] = None,
        order_by: str = "updated_at",
        since_column: str = "updated_at",
    ) -> List[Dict[str, Any]]: ...

    async def select_all(
        self,
        table: str,
        filters: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
    ) -> List[Dict[str, Any]]: ...

    async def upsert(self, table: str, row: Dict[str, Any], on_conflict: str = "id") -> None: ...

    async def insert(self, table: str, row: Dict[str, Any]) -> None: ...

    async def get_updated_at(self, table: str, row_id: str) -> Optional[datetime]: ...


def _literal(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return format_timestamp(value)
    return str(value)


class RestRemoteStore:
    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        access_token: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = (base_url or settings.REMOTE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.REMOTE_API_KEY
        self.access_token = access_token if access_token is not None else settings.REMOTE_ACCESS_TOKEN
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or settings.REMOTE_TIMEOUT_SECONDS,
        )

    # ---------- plumbing ----------
    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        h = {"Accept": "application/json"}
        if self.api_key:
            h["apikey"] = self.api_key
        if self.access_token:
            h["Authorization"] = f"Bearer {self.access_token}"
        if extra:
            h.update(extra)
        return h

    async def _request(self, method: str, path: str, **kw) -> httpx.Response:
        extra = kw.pop("headers", None)
        try:
            r = await self._client.request(method, path, headers=self._headers(extra), **kw)
        except httpx.HTTPError as e:
            logger.warning("Remote %s %s failed: %s", method, path, e)
            raise RemoteError(f"{method} {path} failed: {e}") from e
        if r.status_code >= 400:
            raise self._error_from(r)
        return r

    @staticmethod
    def _error_from(r: httpx.Response) -> RemoteError:
        code = None
        message = r.text or r.reason_phrase
        try:
            body = r.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            code = body.get("code")
            message = body.get("message") or body.get("msg") or message
        if r.status_code == 409 or str(code) == UNIQUE_VIOLATION_CODE or "unique" in str(message).lower():
            return UniqueViolation(message, status_code=r.status_code, code=code or UNIQUE_VIOLATION_CODE)
        return RemoteError(f"HTTP {r.status_code}: {message}", status_code=r.status_code, code=code)

    # ---------- auth ----------
    async def get_current_user(self) -> Optional[RemoteUser]:
        """Signed-out (no token, 401, 403) is None, never an exception."""
        if not self.access_token:
            return None
        try:
            r = await self._request("GET", "/auth/v1/user")
        except RemoteError as e:
            if e.status_code in (401, 403):
                return None
            raise
        data = r.json() or {}
        if not data.get("id"):
            return None
        return RemoteUser(id=str(data["id"]), email=data.get("email"))

    # ---------- reads ----------
    async def select_since(
        self,
        table: str,
        user_id: str,
        since: Optional[datetime],
        limit: Optional[int] = None,
        order_by: str = "updated_at",
        since_column: str = "updated_at",
    ) -> List[Dict[str, Any]]:
        params: List[tuple] = [("select", "*"), ("user_id", f"eq.{user_id}"), ("order", f"{order_by}.asc")]
        if since is not None:
            params.append((since_column, f"gt.{format_timestamp(since)}"))
        if limit:
            params.append(("limit", str(limit)))
        r = await self._request("GET", f"/rest/v1/{table}", params=params)
        return list(r.json() or [])

    async def select_all(
        self,
        table: str,
        filters: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        params: List[tuple] = [("select", "*")]
        for col, value in (filters or {}).items():
            params.append((col, f"eq.{_literal(value)}"))
        if order_by:
            params.append(("order", f"{order_by}.asc"))
        r = await self._request("GET", f"/rest/v1/{table}", params=params)
        return list(r.json() or [])

    async def get_updated_at(self, table: str, row_id: str) -> Optional[datetime]:
        r = await self._request(
            "GET", f"/rest/v1/{table}",
            params=[("select", "updated_at"), ("id", f"eq.{row_id}"), ("limit", "1")],
        )
        rows = r.json() or []
        if not rows:
            return None
        return parse_timestamp(rows[0].get("updated_at"))

    # ---------- writes ----------
    async def upsert(self, table: str, row: Dict[str, Any], on_conflict: str = "id") -> None:
        await self._request(
            "POST", f"/rest/v1/{table}",
            params={"on_conflict": on_conflict},
            json=row,
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
        )

    async def insert(self, table: str, row: Dict[str, Any]) -> None:
        await self._request(
            "POST", f"/rest/v1/{table}",
            json=row,
            headers={"Prefer": "return=minimal"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()


def make_remote_store() -> RestRemoteStore:
    return RestRemoteStore()
