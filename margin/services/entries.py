# services/entries.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from margin.models import MeaningCategory, MeaningEntry, TimeOfDay
from margin.utils import _now, new_id, normalize_tags


def time_of_day_for(moment: datetime) -> TimeOfDay:
    hour = moment.hour
    if 5 <= hour < 12:
        return TimeOfDay.morning
    if 12 <= hour < 17:
        return TimeOfDay.afternoon
    if 17 <= hour < 21:
        return TimeOfDay.evening
    return TimeOfDay.night


async def create_entry(
    db: AsyncSession,
    category: MeaningCategory,
    text: Optional[str] = None,
    tags: Optional[list[str]] = None,
    time_of_day: Optional[TimeOfDay] = None,
    local_time: Optional[datetime] = None,
) -> MeaningEntry:
    now = _now()
    entry = MeaningEntry(
        id=new_id(),
        category=MeaningCategory(category),
        text=(text or None),
        tags=normalize_tags(tags),
        time_of_day=time_of_day or time_of_day_for(local_time or datetime.now()),
        created_at=now,
        updated_at=now,
    )
    db.add(entry)
    await db.commit()
    return entry


async def get_entry(db: AsyncSession, entry_id: str) -> MeaningEntry | None:
    return (await db.execute(
        select(MeaningEntry).where(MeaningEntry.id == entry_id, MeaningEntry.deleted_at.is_(None))
    )).scalars().first()


async def list_entries(db: AsyncSession, category: Optional[MeaningCategory] = None) -> list[MeaningEntry]:
    stmt = select(MeaningEntry).where(MeaningEntry.deleted_at.is_(None))
    if category is not None:
        stmt = stmt.where(MeaningEntry.category == MeaningCategory(category))
    stmt = stmt.order_by(MeaningEntry.created_at.desc(), MeaningEntry.id)
    return list((await db.execute(stmt)).scalars().all())


async def update_entry(
    db: AsyncSession,
    entry_id: str,
    category: Optional[MeaningCategory] = None,
    text: Optional[str] = None,
    tags: Optional[list[str]] = None,
) -> MeaningEntry | None:
    entry = await get_entry(db, entry_id)
    if not entry:
        return None
    if category is not None:
        entry.category = MeaningCategory(category)
    if text is not None:
        entry.text = text or None
    if tags is not None:
        entry.tags = normalize_tags(tags)
    entry.updated_at = _now()
    await db.commit()
    return entry


async def delete_entry(db: AsyncSession, entry_id: str) -> bool:
    """Soft delete: the tombstone still syncs to other devices."""
    entry = await get_entry(db, entry_id)
    if not entry:
        return False
    now = _now()
    entry.deleted_at = now
    entry.updated_at = now
    await db.commit()
    return True


async def count_entries(db: AsyncSession) -> int:
    return int((await db.execute(
        select(func.count()).select_from(MeaningEntry).where(MeaningEntry.deleted_at.is_(None))
    )).scalar_one())
