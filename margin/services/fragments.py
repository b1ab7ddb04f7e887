"""
Found Fragments: local catalogue cache, reveal history and the glue that
feeds the release engine.

- The catalogue is global, read-only content refreshed wholesale from the
  remote store (or seeded from data/fragments.seed.json on first launch).
- A reveal is append-only and unique per fragment: once shown, a fragment
  is never shown again on any device.

Usage:
    from margin.services.fragments import check_for_fragment, dismiss_fragment
    fragment = await check_for_fragment(db, rng=random.Random())
    if fragment:
        ...show it...
        await dismiss_fragment(db, fragment.id)
"""
from __future__ import annotations

import json
import logging
import pathlib
import random
from datetime import datetime, timedelta
from typing import Dict, Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from margin.models import Fragment, FragmentReveal, FragmentVoice
from margin.schemas import FragmentEngineState, ReleaseReveal
from margin.services import release_engine
from margin.services.sessions import count_completed_practices, get_first_practice_at
from margin.sync.state import kv_get, kv_set
from margin.utils import _now, new_id, parse_timestamp

logger = logging.getLogger(__name__)

CATALOG_VERSION_KEY = "fragments_catalog_version"
FRAGMENTS_ENABLED_KEY = "fragments_enabled"
SEED_PATH = pathlib.Path(__file__).resolve().parents[1] / "data" / "fragments.seed.json"


class FragmentAlreadyRevealed(Exception):
    def __init__(self, fragment_id: str):
        super().__init__(f"fragment {fragment_id} was already revealed")
        self.fragment_id = fragment_id


# ------------------------------------------------------------
# Catalogue cache
# ------------------------------------------------------------
async def has_cached_catalogue(db: AsyncSession) -> bool:
    n = (await db.execute(select(func.count()).select_from(Fragment))).scalar_one()
    return int(n) > 0

async def get_catalogue_version(db: AsyncSession) -> Optional[int]:
    raw = await kv_get(db, CATALOG_VERSION_KEY)
    return int(raw) if raw is not None else None

async def set_catalogue_version(db: AsyncSession, version: int) -> None:
    await kv_set(db, CATALOG_VERSION_KEY, str(int(version)))

async def replace_catalogue(db: AsyncSession, fragments: Iterable[dict]) -> int:
    """Clear and rewrite every cached fragment in one transaction."""
    rows = list(fragments)
    try:
        for old in (await db.execute(select(Fragment))).scalars().all():
            await db.delete(old)
        await db.flush()
        db.add_all([Fragment(**f) for f in rows])
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return len(rows)

async def get_all_cached(db: AsyncSession) -> list[Fragment]:
    return list((await db.execute(select(Fragment).order_by(Fragment.id))).scalars().all())

async def get_fragment(db: AsyncSession, fragment_id: str) -> Fragment | None:
    return await db.get(Fragment, fragment_id)

async def get_by_voice(db: AsyncSession, voice: FragmentVoice) -> list[Fragment]:
    return list((await db.execute(
        select(Fragment)
        .where(Fragment.voice == FragmentVoice(voice), Fragment.enabled.is_(True))
        .order_by(Fragment.id)
    )).scalars().all())


def _load_seed(path: pathlib.Path = SEED_PATH) -> dict:
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict) or not isinstance(data.get("fragments"), list):
        raise ValueError("fragments.seed.json must be an object with a 'fragments' list.")
    return data

def get_local_seed_version(path: pathlib.Path = SEED_PATH) -> int:
    return int(_load_seed(path).get("version", 0))

async def seed_fragments_from_local(db: AsyncSession, path: pathlib.Path = SEED_PATH) -> int:
    """Offline bootstrap: fill the cache from the packaged seed file."""
    data = _load_seed(path)
    now = _now()
    fragments = [
        {
            "id": f["id"],
            "voice": FragmentVoice(f["voice"]),
            "text": f["text"],
            "enabled": bool(f.get("enabled", True)),
            "created_at": now,
            "updated_at": now,
        }
        for f in data["fragments"]
    ]
    n = await replace_catalogue(db, fragments)
    await set_catalogue_version(db, int(data.get("version", 0)))
    logger.info("Seeded %d fragments (version %s)", n, data.get("version"))
    return n


# ------------------------------------------------------------
# Reveals
# ------------------------------------------------------------
async def mark_revealed(db: AsyncSession, fragment_id: str, revealed_at: Optional[datetime] = None) -> FragmentReveal:
    if await is_revealed(db, fragment_id):
        raise FragmentAlreadyRevealed(fragment_id)
    now = _now()
    reveal = FragmentReveal(
        id=new_id(),
        fragment_id=fragment_id,
        revealed_at=revealed_at or now,
        created_at=now,
        synced=False,
    )
    db.add(reveal)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise FragmentAlreadyRevealed(fragment_id)
    return reveal

async def is_revealed(db: AsyncSession, fragment_id: str) -> bool:
    n = (await db.execute(
        select(func.count()).select_from(FragmentReveal).where(FragmentReveal.fragment_id == fragment_id)
    )).scalar_one()
    return int(n) > 0

async def get_all_reveals(db: AsyncSession) -> list[FragmentReveal]:
    return list((await db.execute(
        select(FragmentReveal).order_by(FragmentReveal.revealed_at.desc())
    )).scalars().all())

async def get_revealed_fragment_ids(db: AsyncSession) -> set[str]:
    return set((await db.execute(select(FragmentReveal.fragment_id))).scalars().all())

async def get_reveal_times(db: AsyncSession) -> Dict[str, datetime]:
    rows = (await db.execute(select(FragmentReveal.fragment_id, FragmentReveal.revealed_at))).all()
    return {fid: at for fid, at in rows}

async def get_last_reveal(db: AsyncSession) -> FragmentReveal | None:
    return (await db.execute(
        select(FragmentReveal).order_by(FragmentReveal.revealed_at.desc()).limit(1)
    )).scalars().first()

async def count_reveals_in_last_days(db: AsyncSession, days: int, now: Optional[datetime] = None) -> int:
    cutoff = (now or _now()) - timedelta(days=days)
    n = (await db.execute(
        select(func.count()).select_from(FragmentReveal).where(FragmentReveal.revealed_at >= cutoff)
    )).scalar_one()
    return int(n)

async def get_unrevealed_counts_by_voice(db: AsyncSession) -> Dict[FragmentVoice, int]:
    revealed = await get_revealed_fragment_ids(db)
    counts = {v: 0 for v in FragmentVoice}
    for f in await get_all_cached(db):
        if f.enabled and f.id not in revealed:
            counts[FragmentVoice(f.voice)] += 1
    return counts

async def get_random_unrevealed_by_voice(
    db: AsyncSession,
    voice: FragmentVoice,
    rng: Optional[random.Random] = None,
) -> Fragment | None:
    revealed = await get_revealed_fragment_ids(db)
    candidates = [f for f in await get_by_voice(db, voice) if f.id not in revealed]
    if not candidates:
        return None
    return (rng or random.Random()).choice(candidates)

async def get_unsynced_reveals(db: AsyncSession) -> list[FragmentReveal]:
    return list((await db.execute(
        select(FragmentReveal).where(FragmentReveal.synced.is_(False)).order_by(FragmentReveal.revealed_at)
    )).scalars().all())

async def mark_reveals_synced(db: AsyncSession, reveal_ids: list[str]) -> None:
    if not reveal_ids:
        return
    rows = (await db.execute(select(FragmentReveal).where(FragmentReveal.id.in_(reveal_ids)))).scalars().all()
    for r in rows:
        r.synced = True
    await db.commit()

async def merge_remote_reveals(db: AsyncSession, reveals: Iterable[dict]) -> int:
    """
    Insert remote reveals whose fragment is not yet revealed locally.
    Idempotent; returns how many were newly merged.
    """
    known = await get_revealed_fragment_ids(db)
    merged = 0
    for r in reveals:
        fid = r["fragment_id"]
        if fid in known:
            continue
        db.add(FragmentReveal(
            id=new_id(),
            fragment_id=fid,
            revealed_at=parse_timestamp(r["revealed_at"]),
            created_at=_now(),
            synced=True,
        ))
        known.add(fid)
        merged += 1
    if merged:
        await db.commit()
    return merged

async def clear_reveals(db: AsyncSession) -> None:
    for r in (await db.execute(select(FragmentReveal))).scalars().all():
        await db.delete(r)
    await db.commit()


# ------------------------------------------------------------
# Settings
# ------------------------------------------------------------
async def get_fragments_enabled(db: AsyncSession) -> bool:
    return (await kv_get(db, FRAGMENTS_ENABLED_KEY)) != "false"

async def set_fragments_enabled(db: AsyncSession, enabled: bool) -> None:
    await kv_set(db, FRAGMENTS_ENABLED_KEY, "true" if enabled else "false")


# ------------------------------------------------------------
# Engine glue
# ------------------------------------------------------------
async def build_engine_state(db: AsyncSession, now: Optional[datetime] = None) -> FragmentEngineState:
    now = now or _now()
    last = await get_last_reveal(db)
    return FragmentEngineState(
        now=now,
        practices_completed=await count_completed_practices(db),
        first_practice_at=await get_first_practice_at(db),
        last_reveal_at=last.revealed_at if last else None,
        reveals_in_last_7_days=await count_reveals_in_last_days(db, 7, now=now),
        unrevealed_counts_by_voice=await get_unrevealed_counts_by_voice(db),
    )

async def check_for_fragment(
    db: AsyncSession,
    rng: Optional[random.Random] = None,
    now: Optional[datetime] = None,
) -> Fragment | None:
    """Run the release engine once; returns the fragment to show, not yet recorded."""
    rng = rng or random.Random()
    enabled = await get_fragments_enabled(db)
    state = await build_engine_state(db, now=now)
    result = release_engine.should_release(state, rng.random(), fragments_enabled=enabled)
    if not isinstance(result, ReleaseReveal):
        logger.debug("No fragment: %s", result.reason.value)
        return None
    fragment = await get_random_unrevealed_by_voice(db, result.voice, rng=rng)
    if fragment is None:
        logger.warning("Engine chose voice %s but no unrevealed fragment was found", result.voice.value)
    return fragment

async def dismiss_fragment(db: AsyncSession, fragment_id: str) -> FragmentReveal:
    """The user has seen it: record the reveal."""
    return await mark_revealed(db, fragment_id)
