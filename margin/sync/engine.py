# sync/engine.py
# Full sync round: one auth check, then each table module in a fixed order.
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from margin.schemas import FullSyncResult, SyncResult, SyncTable
from margin.sync.remote import RemoteStore
from margin.sync.tables import (
    NOT_AUTHENTICATED,
    sync_fragment_reveals,
    sync_fragments_catalog,
    sync_meaning_entries,
    sync_practice_sessions,
)

logger = logging.getLogger(__name__)

SyncModule = Callable[[AsyncSession, RemoteStore], Awaitable[SyncResult]]

# order matters: reveals go last so a refreshed catalogue is already in place
DEFAULT_MODULES: Tuple[Tuple[SyncTable, SyncModule], ...] = (
    (SyncTable.meaning_entries, sync_meaning_entries),
    (SyncTable.practice_sessions, sync_practice_sessions),
    (SyncTable.fragments_catalog, sync_fragments_catalog),
    (SyncTable.fragment_reveals, sync_fragment_reveals),
)

ALREADY_RUNNING = "Sync already in progress"

_sync_lock = asyncio.Lock()


def is_sync_running() -> bool:
    return _sync_lock.locked()


async def _can_sync(remote: RemoteStore) -> Optional[str]:
    """None when a user is signed in, otherwise the reason we can't sync."""
    try:
        user = await remote.get_current_user()
    except Exception as e:
        return f"Auth check failed: {e}"
    if not user:
        return NOT_AUTHENTICATED
    return None


def _accumulate(full: FullSyncResult, result: SyncResult) -> None:
    full.results.append(result)
    full.total_pulled += result.pulled
    full.total_pushed += result.pushed
    full.total_conflicts += result.conflicts_resolved
    full.errors.extend(result.errors)


async def run_full_sync(
    db: AsyncSession,
    remote: RemoteStore,
    modules: Optional[Sequence[Tuple[SyncTable, SyncModule]]] = None,
) -> FullSyncResult:
    """
    Run every table module once. Never raises; one table failing does not stop
    the others. Overlapping calls are refused rather than queued.
    """
    if _sync_lock.locked():
        logger.info("Sync requested while another round is running; skipping")
        return FullSyncResult(success=False, errors=[ALREADY_RUNNING])

    async with _sync_lock:
        full = FullSyncResult()
        reason = await _can_sync(remote)
        if reason:
            full.errors.append(reason)
            logger.info("Sync skipped: %s", reason)
            return full

        for table, module in (modules if modules is not None else DEFAULT_MODULES):
            try:
                result = await module(db, remote)
            except Exception as e:
                logger.exception("Sync module %s raised", SyncTable(table).value)
                result = SyncResult(table=table, errors=[f"{SyncTable(table).value}: {e}"])
            _accumulate(full, result)

        full.success = not full.errors
        if full.success:
            logger.info("Sync complete: pulled=%d pushed=%d conflicts=%d",
                        full.total_pulled, full.total_pushed, full.total_conflicts)
        else:
            logger.warning("Sync finished with errors: %s", full.errors)
        return full


# ---------------------------------------------
# Single-table entry points
# ---------------------------------------------
async def sync_entries(db: AsyncSession, remote: RemoteStore) -> SyncResult:
    return await sync_meaning_entries(db, remote)

async def sync_sessions(db: AsyncSession, remote: RemoteStore) -> SyncResult:
    return await sync_practice_sessions(db, remote)

async def sync_catalog(db: AsyncSession, remote: RemoteStore) -> SyncResult:
    return await sync_fragments_catalog(db, remote)

async def sync_reveals(db: AsyncSession, remote: RemoteStore) -> SyncResult:
    return await sync_fragment_reveals(db, remote)
