from __future__ import annotations

import unittest
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from margin import models  # noqa: F401  registers tables
from margin.database import Base, make_engine
from margin.sync.remote import RemoteError, RemoteUser, UniqueViolation
from margin.utils import _now, format_timestamp, parse_timestamp


def iso(dt: datetime) -> str:
    return format_timestamp(dt)


def entry(tags: List[str], category: str, entry_id: Optional[str] = None) -> SimpleNamespace:
    return SimpleNamespace(id=entry_id or "-".join(tags) + ":" + category, tags=tags, category=category)


def sample_entries() -> List[SimpleNamespace]:
    return [
        entry(["morning", "quiet", "work"], "meaningful", "e1"),
        entry(["social", "morning"], "joyful", "e2"),
        entry(["work", "social"], "painful_significant", "e3"),
        entry(["evening", "alone"], "empty_numb", "e4"),
        entry(["work", "morning", "quiet"], "meaningful", "e5"),
    ]


class DbTestCase(unittest.IsolatedAsyncioTestCase):
    """Fresh in-memory SQLite per test."""

    async def asyncSetUp(self) -> None:
        self.engine = make_engine("sqlite+aiosqlite://")
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        self.session_maker = sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
        self.db = self.session_maker()

    async def asyncTearDown(self) -> None:
        await self.db.close()
        await self.engine.dispose()


class FakeRemote:
    """In-memory RemoteStore: table -> id -> row dict (timestamps as ISO strings)."""

    def __init__(self, user_id: Optional[str] = "user-1") -> None:
        self.user = RemoteUser(id=user_id) if user_id else None
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = defaultdict(dict)
        self.calls: List[tuple] = []
        self.auth_error: Optional[Exception] = None
        self.select_error: Optional[RemoteError] = None
        self.fail_upsert_ids: set[str] = set()
        self.fail_insert_fragment_ids: set[str] = set()
        self._seq = 0

    def put(self, table: str, row: Dict[str, Any]) -> None:
        self.tables[table][row["id"]] = dict(row)

    async def get_current_user(self) -> Optional[RemoteUser]:
        self.calls.append(("get_current_user",))
        if self.auth_error:
            raise self.auth_error
        return self.user

    async def select_since(self, table, user_id, since, limit=None, order_by="updated_at", since_column="updated_at"):
        self.calls.append(("select_since", table, since))
        if self.select_error:
            raise self.select_error
        rows = [r for r in self.tables[table].values() if r.get("user_id") == user_id]
        if since is not None:
            rows = [r for r in rows if parse_timestamp(r[since_column]) > since]
        rows.sort(key=lambda r: parse_timestamp(r[order_by]))
        if limit:
            rows = rows[:limit]
        return [dict(r) for r in rows]

    async def select_all(self, table, filters: Optional[Mapping[str, Any]] = None, order_by=None):
        self.calls.append(("select_all", table))
        if self.select_error:
            raise self.select_error
        rows = [
            r for r in self.tables[table].values()
            if all(r.get(k) == v for k, v in (filters or {}).items())
        ]
        if order_by:
            rows.sort(key=lambda r: r[order_by])
        return [dict(r) for r in rows]

    async def upsert(self, table, row, on_conflict="id"):
        self.calls.append(("upsert", table, row["id"]))
        if row["id"] in self.fail_upsert_ids:
            raise RemoteError("boom", status_code=500)
        self.tables[table][row["id"]] = dict(row)

    async def insert(self, table, row):
        self.calls.append(("insert", table, row.get("fragment_id")))
        if row.get("fragment_id") in self.fail_insert_fragment_ids:
            raise RemoteError("HTTP 500: boom", status_code=500)
        for existing in self.tables[table].values():
            if existing.get("user_id") == row.get("user_id") and existing.get("fragment_id") == row.get("fragment_id"):
                raise UniqueViolation("duplicate key value violates unique constraint", status_code=409, code="23505")
        self._seq += 1
        rid = f"remote-{self._seq}"
        self.tables[table][rid] = {"id": rid, "created_at": iso(_now()), **row}

    async def get_updated_at(self, table, row_id):
        self.calls.append(("get_updated_at", table, row_id))
        row = self.tables[table].get(row_id)
        return parse_timestamp(row["updated_at"]) if row else None

    def called(self, name: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == name]


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc).replace(tzinfo=None)


def later(hours: float = 1) -> datetime:
    return _now() + timedelta(hours=hours)
