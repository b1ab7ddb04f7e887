# sync/state.py
# Key-value records in the local `sync_state` table: per-table sync cursors
# plus small bits of device state (catalogue version, settings, practice swap).
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from margin.models import SyncStateRecord
from margin.schemas import SyncState, SyncTable
from margin.utils import parse_timestamp

CURSOR_PREFIX = "last_sync_at:"


def _cursor_key(table: SyncTable) -> str:
    return f"{CURSOR_PREFIX}{SyncTable(table).value}"


# ---------------------------------------------
# Generic key-value access
# ---------------------------------------------
async def kv_get(db: AsyncSession, key: str) -> Optional[str]:
    return (await db.execute(select(SyncStateRecord.value).where(SyncStateRecord.key == key))).scalar_one_or_none()

async def kv_set(db: AsyncSession, key: str, value: str) -> None:
    stmt = (
        sqlite_insert(SyncStateRecord.__table__)
        .values(key=key, value=value)
        .on_conflict_do_update(index_elements=["key"], set_={"value": value})
    )
    await db.execute(stmt)
    await db.commit()

async def kv_delete(db: AsyncSession, key: str) -> None:
    await db.execute(delete(SyncStateRecord).where(SyncStateRecord.key == key))
    await db.commit()

async def kv_delete_prefix(db: AsyncSession, prefix: str) -> int:
    res = await db.execute(delete(SyncStateRecord).where(SyncStateRecord.key.startswith(prefix, autoescape=True)))
    await db.commit()
    return res.rowcount or 0


# ---------------------------------------------
# Sync cursors
# ---------------------------------------------
async def get_sync_state(db: AsyncSession, table: SyncTable) -> SyncState:
    raw = await kv_get(db, _cursor_key(table))
    return SyncState(table=SyncTable(table), last_sync_at=parse_timestamp(raw))

async def set_sync_state(db: AsyncSession, table: SyncTable, last_sync_at: datetime) -> None:
    await kv_set(db, _cursor_key(table), last_sync_at.isoformat())

async def clear_sync_state(db: AsyncSession, table: SyncTable) -> None:
    """Forget one table's cursor so its next round is a full sync."""
    await kv_delete(db, _cursor_key(table))

async def clear_all_sync_state(db: AsyncSession) -> int:
    return await kv_delete_prefix(db, CURSOR_PREFIX)

async def list_sync_states(db: AsyncSession) -> list[SyncState]:
    return [await get_sync_state(db, t) for t in SyncTable]
