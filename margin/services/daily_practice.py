# services/daily_practice.py
# One practice per calendar day, stable within the day; one swap per day,
# persisted as a keyed record so it survives restarts.
from __future__ import annotations

import hashlib
from datetime import date
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from margin.models import Practice
from margin.sync.state import kv_delete_prefix, kv_get, kv_set

SWAP_PREFIX = "practice_swap:"


def _day_str(d: date | None = None) -> str:
    return (d or date.today()).isoformat()

def _seed_for_day(day: str, salt: str = "") -> int:
    msg = f"{day}{salt}".encode("utf-8")
    return int.from_bytes(hashlib.sha256(msg).digest()[:8], "big")

async def _all_practices(db: AsyncSession) -> list[Practice]:
    return list((await db.execute(select(Practice).order_by(Practice.id))).scalars().all())


async def select_practice_for_date(db: AsyncSession, day: date | None = None) -> Practice | None:
    practices = await _all_practices(db)
    if not practices:
        return None
    return practices[_seed_for_day(_day_str(day)) % len(practices)]


async def get_swap_alternative(db: AsyncSession, current_practice_id: str, day: date | None = None) -> Practice | None:
    alternatives = [p for p in await _all_practices(db) if p.id != current_practice_id]
    if not alternatives:
        return None  # nothing to swap to
    return alternatives[_seed_for_day(_day_str(day), "-swap") % len(alternatives)]


# ---------------------------------------------
# Swap state (date -> chosen practice id)
# ---------------------------------------------
async def get_swapped_practice_id(db: AsyncSession, day: date | None = None) -> Optional[str]:
    return await kv_get(db, f"{SWAP_PREFIX}{_day_str(day)}")

async def has_swapped_today(db: AsyncSession, day: date | None = None) -> bool:
    return (await get_swapped_practice_id(db, day)) is not None

async def set_swapped_practice(db: AsyncSession, practice_id: str, day: date | None = None) -> None:
    await kv_set(db, f"{SWAP_PREFIX}{_day_str(day)}", practice_id)

async def clear_swap_state(db: AsyncSession) -> int:
    return await kv_delete_prefix(db, SWAP_PREFIX)


async def get_todays_practice_with_swap(db: AsyncSession, day: date | None = None) -> Practice | None:
    swapped_id = await get_swapped_practice_id(db, day)
    if swapped_id:
        swapped = await db.get(Practice, swapped_id)
        if swapped:
            return swapped
    return await select_practice_for_date(db, day)


async def swap_todays_practice(db: AsyncSession, day: date | None = None) -> Practice | None:
    """Use today's single swap. Returns None when already swapped or nothing to swap to."""
    if await has_swapped_today(db, day):
        return None
    current = await select_practice_for_date(db, day)
    if current is None:
        return None
    alt = await get_swap_alternative(db, current.id, day)
    if alt is None:
        return None
    await set_swapped_practice(db, alt.id, day)
    return alt
