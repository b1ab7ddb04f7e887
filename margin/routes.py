import logging
from typing import AsyncIterator, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from .background import spawn
from .database import async_session_maker, get_db
from .models import MeaningCategory, PracticeMode, SessionStatus
from .schemas import (
    Cluster, FragmentRead, FragmentRevealRead, FragmentsSetting, FullSyncResult, MapStats,
    MeaningEntryCreate, MeaningEntryRead, MeaningEntryUpdate, PracticeRead, PracticeSessionRead,
    SessionComplete, SessionStart, SyncResult, SyncState,
)
from .services import daily_practice, entries as entries_repo, fragments as fragments_repo
from .services import practices as practices_repo, sessions as sessions_repo
from .services.clustering import compute_clusters, get_entries_for_cluster
from .services.map_stats import compute_map_stats
from .sync import state as sync_state
from .sync.engine import run_full_sync
from .sync.remote import RemoteStore, RestRemoteStore
from .sync.scheduler import foreground_throttle
from .sync.tables import force_refresh_catalog

router = APIRouter(prefix="/api")
logger = logging.getLogger(__name__)


async def get_remote() -> AsyncIterator[RemoteStore]:
    remote = RestRemoteStore()
    try:
        yield remote
    finally:
        await remote.aclose()


# ---------------------------
# SYNC
# ---------------------------
@router.post("/sync", response_model=FullSyncResult)
async def sync_now(db: AsyncSession = Depends(get_db), remote: RemoteStore = Depends(get_remote)):
    return await run_full_sync(db, remote)


async def _background_full_sync() -> None:
    remote = RestRemoteStore()
    try:
        async with async_session_maker() as db:
            result = await run_full_sync(db, remote)
        if result.success:
            logger.info("Background sync complete: pulled=%d pushed=%d", result.total_pulled, result.total_pushed)
        else:
            logger.warning("Background sync failed: %s", result.errors)
    finally:
        await remote.aclose()


@router.post("/sync/foreground")
async def sync_on_foreground():
    """App came to the foreground: sync in the background, at most once per interval."""
    if not foreground_throttle.try_acquire():
        return {
            "started": False,
            "reason": "throttled",
            "retryAfterSeconds": round(foreground_throttle.seconds_until_ready(), 1),
        }
    task = spawn(_background_full_sync, name="foreground_sync")
    return {"started": task is not None, "reason": None if task else "already_running"}


@router.post("/sync/catalog/refresh", response_model=SyncResult)
async def refresh_catalog(db: AsyncSession = Depends(get_db), remote: RemoteStore = Depends(get_remote)):
    return await force_refresh_catalog(db, remote)


@router.get("/sync/state", response_model=List[SyncState])
async def get_sync_states(db: AsyncSession = Depends(get_db)):
    return await sync_state.list_sync_states(db)


@router.delete("/sync/state")
async def reset_sync_states(db: AsyncSession = Depends(get_db)):
    cleared = await sync_state.clear_all_sync_state(db)
    return {"cleared": cleared}


# ---------------------------
# MAP
# ---------------------------
@router.get("/map", response_model=MapStats)
async def map_stats(top_n: int = Query(10, ge=1, le=100), db: AsyncSession = Depends(get_db)):
    return compute_map_stats(await entries_repo.list_entries(db), top_n=top_n)


@router.get("/map/clusters", response_model=List[Cluster])
async def map_clusters(
    threshold: float = Query(0.3, ge=0.0, le=1.0),
    max_clusters: int = Query(5, ge=0, le=50),
    db: AsyncSession = Depends(get_db),
):
    return compute_clusters(await entries_repo.list_entries(db), threshold=threshold, max_clusters=max_clusters)


@router.get("/map/clusters/{cluster_id}/entries", response_model=List[MeaningEntryRead])
async def map_cluster_entries(
    cluster_id: int,
    threshold: float = Query(0.3, ge=0.0, le=1.0),
    max_clusters: int = Query(5, ge=0, le=50),
    db: AsyncSession = Depends(get_db),
):
    entries = await entries_repo.list_entries(db)
    clusters = compute_clusters(entries, threshold=threshold, max_clusters=max_clusters)
    cluster = next((c for c in clusters if c.id == cluster_id), None)
    if not cluster:
        raise HTTPException(status_code=404, detail="Cluster not found")
    return get_entries_for_cluster(entries, cluster)


# ---------------------------
# FRAGMENTS
# ---------------------------
@router.post("/fragments/check", response_model=Optional[FragmentRead])
async def check_fragment(db: AsyncSession = Depends(get_db)):
    return await fragments_repo.check_for_fragment(db)


@router.post("/fragments/{fragment_id}/reveal", response_model=FragmentRevealRead)
async def reveal_fragment(fragment_id: str, db: AsyncSession = Depends(get_db)):
    if not await fragments_repo.get_fragment(db, fragment_id):
        raise HTTPException(status_code=404, detail="Fragment not found")
    try:
        return await fragments_repo.dismiss_fragment(db, fragment_id)
    except fragments_repo.FragmentAlreadyRevealed:
        raise HTTPException(status_code=409, detail="Fragment already revealed")


@router.get("/settings/fragments", response_model=FragmentsSetting)
async def get_fragments_setting(db: AsyncSession = Depends(get_db)):
    return FragmentsSetting(enabled=await fragments_repo.get_fragments_enabled(db))


@router.put("/settings/fragments", response_model=FragmentsSetting)
async def put_fragments_setting(payload: FragmentsSetting, db: AsyncSession = Depends(get_db)):
    await fragments_repo.set_fragments_enabled(db, payload.enabled)
    return payload


# ---------------------------
# ENTRIES
# ---------------------------
@router.post("/entries", response_model=MeaningEntryRead, status_code=201)
async def create_entry(payload: MeaningEntryCreate, db: AsyncSession = Depends(get_db)):
    return await entries_repo.create_entry(
        db, payload.category, text=payload.text, tags=payload.tags, time_of_day=payload.time_of_day,
    )


@router.get("/entries", response_model=List[MeaningEntryRead])
async def list_entries(category: Optional[MeaningCategory] = None, db: AsyncSession = Depends(get_db)):
    return await entries_repo.list_entries(db, category=category)


@router.patch("/entries/{entry_id}", response_model=MeaningEntryRead)
async def update_entry(entry_id: str, payload: MeaningEntryUpdate, db: AsyncSession = Depends(get_db)):
    entry = await entries_repo.update_entry(
        db, entry_id, category=payload.category, text=payload.text, tags=payload.tags,
    )
    if not entry:
        raise HTTPException(status_code=404, detail="Entry not found")
    return entry


@router.delete("/entries/{entry_id}", status_code=204)
async def delete_entry(entry_id: str, db: AsyncSession = Depends(get_db)):
    if not await entries_repo.delete_entry(db, entry_id):
        raise HTTPException(status_code=404, detail="Entry not found")


# ---------------------------
# SESSIONS
# ---------------------------
@router.get("/sessions", response_model=List[PracticeSessionRead])
async def list_sessions(status: Optional[SessionStatus] = None, db: AsyncSession = Depends(get_db)):
    return await sessions_repo.list_sessions(db, status=status)


@router.post("/sessions", response_model=PracticeSessionRead, status_code=201)
async def start_session(payload: SessionStart, db: AsyncSession = Depends(get_db)):
    if not await practices_repo.get_by_id(db, payload.practice_id):
        raise HTTPException(status_code=404, detail="Practice not found")
    return await sessions_repo.start_session(db, payload.practice_id)


@router.post("/sessions/{session_id}/complete", response_model=PracticeSessionRead)
async def complete_session(session_id: str, payload: SessionComplete, db: AsyncSession = Depends(get_db)):
    try:
        s = await sessions_repo.complete_session(db, session_id, user_rating=payload.user_rating, notes=payload.notes)
    except sessions_repo.InvalidSessionTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    if not s:
        raise HTTPException(status_code=404, detail="Session not found")
    return s


@router.post("/sessions/{session_id}/abandon", response_model=PracticeSessionRead)
async def abandon_session(session_id: str, db: AsyncSession = Depends(get_db)):
    try:
        s = await sessions_repo.abandon_session(db, session_id)
    except sessions_repo.InvalidSessionTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    if not s:
        raise HTTPException(status_code=404, detail="Session not found")
    return s


# ---------------------------
# PRACTICES
# ---------------------------
@router.get("/practices", response_model=List[PracticeRead])
async def list_practices(mode: Optional[PracticeMode] = None, db: AsyncSession = Depends(get_db)):
    if mode is not None:
        return await practices_repo.get_by_mode(db, mode)
    return await practices_repo.get_all(db)


@router.get("/practice/today", response_model=PracticeRead)
async def todays_practice(db: AsyncSession = Depends(get_db)):
    p = await daily_practice.get_todays_practice_with_swap(db)
    if not p:
        raise HTTPException(status_code=404, detail="No practices available")
    return p


@router.post("/practice/today/swap", response_model=PracticeRead)
async def swap_todays_practice(db: AsyncSession = Depends(get_db)):
    if await daily_practice.has_swapped_today(db):
        raise HTTPException(status_code=409, detail="Already swapped today")
    p = await daily_practice.swap_todays_practice(db)
    if not p:
        raise HTTPException(status_code=404, detail="No alternative practice available")
    return p
