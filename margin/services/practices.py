# services/practices.py
# Read-only practice catalogue, seeded from data/practices.seed.json.
from __future__ import annotations

import json
import logging
import pathlib
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from margin.models import Practice, PracticeMode
from margin.utils import _now

logger = logging.getLogger(__name__)

SEED_PATH = pathlib.Path(__file__).resolve().parents[1] / "data" / "practices.seed.json"


async def get_all(db: AsyncSession) -> list[Practice]:
    return list((await db.execute(
        select(Practice).order_by(Practice.difficulty.asc(), Practice.title.asc())
    )).scalars().all())

async def get_by_id(db: AsyncSession, practice_id: str) -> Optional[Practice]:
    return await db.get(Practice, practice_id)

async def get_by_mode(db: AsyncSession, mode: PracticeMode) -> list[Practice]:
    return list((await db.execute(
        select(Practice).where(Practice.mode == PracticeMode(mode)).order_by(Practice.difficulty.asc())
    )).scalars().all())

async def count(db: AsyncSession) -> int:
    return int((await db.execute(select(func.count()).select_from(Practice))).scalar_one())


async def seed_practices_from_local(db: AsyncSession, path: pathlib.Path = SEED_PATH) -> dict:
    """
    Upsert every practice in the seed file. Safe to run on each startup:
    existing rows get the seed's text, created_at is kept.
    """
    items = json.loads(path.read_text(encoding="utf-8"))
    now = _now()
    for it in items:
        values = {
            "title": it["title"].strip(),
            "instruction": it["instruction"].strip(),
            "mode": PracticeMode(it["mode"]),
            "difficulty": int(it.get("difficulty") or 1),
            "duration_seconds": it.get("duration_seconds"),
            "contra_notes": it.get("contra_notes"),
            "updated_at": now,
        }
        stmt = (
            sqlite_insert(Practice.__table__)
            .values(id=it["id"], created_at=now, **values)
            .on_conflict_do_update(index_elements=["id"], set_=values)
        )
        await db.execute(stmt)
    await db.commit()
    total = await count(db)
    logger.info("Practice seed complete: seeded=%d total=%d", len(items), total)
    return {"seeded": len(items), "total": total}
