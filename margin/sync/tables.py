"""
Per-table sync modules. Each one is `async def sync_x(db, remote) -> SyncResult`
and never raises: failures end up in `SyncResult.errors`.

Three protocols live here:

* last-write-wins on `updated_at` (meaning_entries, practice_sessions), shared
  through `TimestampedTable` + `sync_timestamped_table`;
* uniqueness merge for append-only reveals (fragment_reveals);
* read-only wholesale refresh for the catalogue (fragments_catalog).

The cursor of a table only moves when its whole round finished without errors,
so a failed round re-pulls the same batch next time (upserts are idempotent).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional, Type

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from margin.models import MeaningEntry, PracticeSession
from margin.schemas import SyncResult, SyncTable
from margin.services import fragments as fragments_repo
from margin.settings.config import settings
from margin.sync.remote import RemoteError, RemoteStore, UniqueViolation
from margin.sync.rows import (
    RemoteFragment, RemoteFragmentReveal, RemoteMeaningEntry, RemotePracticeSession, RemoteRow,
)
from margin.sync.state import get_sync_state, set_sync_state
from margin.utils import _now, parse_timestamp

logger = logging.getLogger(__name__)

NOT_AUTHENTICATED = "Not authenticated"


def _log_round(result: SyncResult) -> None:
    logger.info(
        "%s sync: pulled=%d pushed=%d conflicts=%d errors=%d",
        result.table.value, result.pulled, result.pushed, result.conflicts_resolved, len(result.errors),
    )


# ------------------------------------------------------------
# Last-write-wins tables
# ------------------------------------------------------------
@dataclass(frozen=True)
class TimestampedTable:
    table: SyncTable
    model: Type[Any]          # ORM class with id / updated_at
    row: Type[RemoteRow]      # remote struct with from_local / to_local_values

    @property
    def remote_name(self) -> str:
        return self.table.value


MEANING_ENTRIES = TimestampedTable(SyncTable.meaning_entries, MeaningEntry, RemoteMeaningEntry)
PRACTICE_SESSIONS = TimestampedTable(SyncTable.practice_sessions, PracticeSession, RemotePracticeSession)


async def _apply_remote_row(db: AsyncSession, tdef: TimestampedTable, raw: Dict[str, Any]) -> tuple[bool, bool]:
    """Returns (written, conflict). Remote wins ties; a conflict is remote strictly newer."""
    incoming = tdef.row.model_validate(raw)
    values = incoming.to_local_values()
    local = await db.get(tdef.model, incoming.id)
    if local is None:
        db.add(tdef.model(id=incoming.id, **values))
        await db.commit()
        return True, False
    if incoming.updated_at < local.updated_at:
        return False, False
    conflict = incoming.updated_at > local.updated_at
    for k, v in values.items():
        setattr(local, k, v)
    await db.commit()
    return True, conflict


async def _local_changes_since(db: AsyncSession, tdef: TimestampedTable, since: Optional[datetime]) -> list:
    # tombstones included: deletes must reach other devices
    stmt = select(tdef.model)
    if since is not None:
        stmt = stmt.where(tdef.model.updated_at > since)
    stmt = stmt.order_by(tdef.model.updated_at.asc()).limit(settings.SYNC_MAX_BATCH_SIZE)
    return list((await db.execute(stmt)).scalars().all())


async def _remote_pages(
    remote: RemoteStore, tdef: TimestampedTable, user_id: str, since: Optional[datetime],
) -> AsyncIterator[List[Dict[str, Any]]]:
    """Pages of remote rows, each starting after the last `updated_at` of the previous one."""
    limit = settings.SYNC_MAX_BATCH_SIZE
    while True:
        rows = await remote.select_since(tdef.remote_name, user_id, since, limit=limit)
        if rows:
            yield rows
        if len(rows) < limit:
            return
        since = parse_timestamp(rows[-1]["updated_at"])


async def sync_timestamped_table(db: AsyncSession, remote: RemoteStore, tdef: TimestampedTable) -> SyncResult:
    result = SyncResult(table=tdef.table)
    try:
        user = await remote.get_current_user()
        if not user:
            result.errors.append(NOT_AUTHENTICATED)
            return result

        cursor = (await get_sync_state(db, tdef.table)).last_sync_at
        sync_started_at = _now()

        # ---------- pull ----------
        try:
            async for page in _remote_pages(remote, tdef, user.id, cursor):
                for raw in page:
                    try:
                        written, conflict = await _apply_remote_row(db, tdef, raw)
                    except Exception as e:
                        await db.rollback()
                        logger.warning("%s pull failed for %s: %s", tdef.remote_name, raw.get("id"), e)
                        result.errors.append(f"Pull error for {raw.get('id')}: {e}")
                        continue
                    if written:
                        result.pulled += 1
                    if conflict:
                        result.conflicts_resolved += 1
        except RemoteError as e:
            result.errors.append(f"Pull error: {e.message}")

        # ---------- push ----------
        since = cursor
        while True:
            batch = await _local_changes_since(db, tdef, since)
            for local in batch:
                try:
                    remote_updated_at = await remote.get_updated_at(tdef.remote_name, local.id)
                    if remote_updated_at is not None and local.updated_at <= remote_updated_at:
                        continue
                    payload = tdef.row.from_local(local, user.id).to_payload()
                    await remote.upsert(tdef.remote_name, payload, on_conflict="id")
                except Exception as e:
                    message = e.message if isinstance(e, RemoteError) else str(e)
                    logger.warning("%s push failed for %s: %s", tdef.remote_name, local.id, message)
                    result.errors.append(f"Push error for {local.id}: {message}")
                    continue
                result.pushed += 1
            if len(batch) < settings.SYNC_MAX_BATCH_SIZE:
                break
            since = batch[-1].updated_at

        if not result.errors:
            await set_sync_state(db, tdef.table, sync_started_at)
    except Exception as e:
        logger.exception("%s sync aborted", tdef.remote_name)
        result.errors.append(f"Sync exception: {e}")

    _log_round(result)
    return result


async def sync_meaning_entries(db: AsyncSession, remote: RemoteStore) -> SyncResult:
    return await sync_timestamped_table(db, remote, MEANING_ENTRIES)


async def sync_practice_sessions(db: AsyncSession, remote: RemoteStore) -> SyncResult:
    return await sync_timestamped_table(db, remote, PRACTICE_SESSIONS)


# ------------------------------------------------------------
# Fragment reveals (append-only, unique per fragment)
# ------------------------------------------------------------
async def sync_fragment_reveals(db: AsyncSession, remote: RemoteStore) -> SyncResult:
    table = SyncTable.fragment_reveals
    result = SyncResult(table=table)
    try:
        user = await remote.get_current_user()
        if not user:
            result.errors.append(NOT_AUTHENTICATED)
            return result

        cursor = (await get_sync_state(db, table)).last_sync_at
        sync_started_at = _now()

        # ---------- pull ----------
        try:
            raw = await remote.select_since(
                table.value, user.id, cursor, order_by="revealed_at", since_column="created_at",
            )
            incoming = [RemoteFragmentReveal.model_validate(r) for r in raw]
            local_times = await fragments_repo.get_reveal_times(db)
            # already revealed here by another device: converged, not an error.
            # Our own pushes come back with the same revealed_at and are not conflicts.
            result.conflicts_resolved += sum(
                1 for r in incoming
                if r.fragment_id in local_times and local_times[r.fragment_id] != r.revealed_at
            )
            result.pulled = await fragments_repo.merge_remote_reveals(db, [r.to_merge_values() for r in incoming])
        except RemoteError as e:
            result.errors.append(f"Pull error: {e.message}")
        except Exception as e:
            await db.rollback()
            result.errors.append(f"Pull exception: {e}")

        # ---------- push ----------
        synced_ids: list[str] = []
        for reveal in await fragments_repo.get_unsynced_reveals(db):
            row = RemoteFragmentReveal(
                user_id=user.id, fragment_id=reveal.fragment_id, revealed_at=reveal.revealed_at,
            )
            try:
                await remote.insert(table.value, row.insert_payload())
            except UniqueViolation:
                # revealed on another device first
                result.conflicts_resolved += 1
                synced_ids.append(reveal.id)
            except RemoteError as e:
                logger.warning("fragment_reveals push failed for %s: %s", reveal.fragment_id, e.message)
                result.errors.append(f"Push error for {reveal.fragment_id}: {e.message}")
            else:
                result.pushed += 1
                synced_ids.append(reveal.id)
        await fragments_repo.mark_reveals_synced(db, synced_ids)

        if not result.errors:
            await set_sync_state(db, table, sync_started_at)
    except Exception as e:
        logger.exception("fragment_reveals sync aborted")
        result.errors.append(f"Sync exception: {e}")

    _log_round(result)
    return result


# ------------------------------------------------------------
# Fragments catalogue (read-only)
# ------------------------------------------------------------
def reference_catalogue_version() -> int:
    if settings.FRAGMENTS_CATALOG_VERSION is not None:
        return int(settings.FRAGMENTS_CATALOG_VERSION)
    return fragments_repo.get_local_seed_version()


async def sync_fragments_catalog(
    db: AsyncSession,
    remote: RemoteStore,
    reference_version: Optional[int] = None,
) -> SyncResult:
    table = SyncTable.fragments_catalog
    result = SyncResult(table=table)
    try:
        user = await remote.get_current_user()
        if not user:
            result.errors.append(NOT_AUTHENTICATED)
            return result

        reference = reference_version if reference_version is not None else reference_catalogue_version()
        local_version = await fragments_repo.get_catalogue_version(db)
        if local_version is not None and local_version >= reference:
            logger.debug("Fragment catalogue current (local=%s reference=%s)", local_version, reference)
            return result

        try:
            raw = await remote.select_all(table.value, filters={"enabled": True}, order_by="id")
        except RemoteError as e:
            result.errors.append(f"Pull error: {e.message}")
            return result
        if not raw:
            logger.info("Remote fragment catalogue is empty; keeping local cache")
            return result

        try:
            rows = [RemoteFragment.model_validate(r).to_local_values() for r in raw]
            result.pulled = await fragments_repo.replace_catalogue(db, rows)
            await fragments_repo.set_catalogue_version(db, reference)
        except Exception as e:
            result.errors.append(f"Pull exception: {e}")
    except Exception as e:
        logger.exception("fragments_catalog sync aborted")
        result.errors.append(f"Sync exception: {e}")

    _log_round(result)
    return result


async def force_refresh_catalog(
    db: AsyncSession,
    remote: RemoteStore,
    reference_version: Optional[int] = None,
) -> SyncResult:
    """Reset the stored version so the next sync refetches regardless of version."""
    await fragments_repo.set_catalogue_version(db, 0)
    return await sync_fragments_catalog(db, remote, reference_version=reference_version)
