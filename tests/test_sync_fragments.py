from __future__ import annotations

import unittest
from unittest import mock

from margin.schemas import SyncTable
from margin.services import fragments as repo
from margin.sync import tables
from margin.sync.remote import RemoteError
from margin.sync.state import get_sync_state

from support import DbTestCase, FakeRemote, iso, utc


def remote_reveal(rid: str, fragment_id: str, user_id: str = "user-1") -> dict:
    return {
        "id": rid,
        "user_id": user_id,
        "fragment_id": fragment_id,
        "revealed_at": iso(utc(2025, 3, 1)),
        "created_at": iso(utc(2025, 3, 1)),
    }


def remote_fragment(fid: str, voice: str = "observer", enabled: bool = True) -> dict:
    return {
        "id": fid,
        "voice": voice,
        "text": f"text of {fid}",
        "enabled": enabled,
        "created_at": iso(utc(2025, 1, 1)),
        "updated_at": iso(utc(2025, 1, 1)),
    }


class RevealSyncTest(DbTestCase):
    async def asyncSetUp(self) -> None:
        await super().asyncSetUp()
        await repo.seed_fragments_from_local(self.db)

    async def test_pull_merges_and_counts_skips_as_conflicts(self) -> None:
        await repo.mark_revealed(self.db, "frag_0001")
        remote = FakeRemote()
        remote.put("fragment_reveals", remote_reveal("a", "frag_0001"))
        remote.put("fragment_reveals", remote_reveal("b", "frag_0002"))

        result = await tables.sync_fragment_reveals(self.db, remote)

        self.assertEqual(result.errors, [])
        self.assertEqual(result.pulled, 1)
        self.assertTrue(await repo.is_revealed(self.db, "frag_0002"))
        # frag_0001: skipped on pull, then already there on push
        self.assertEqual(result.conflicts_resolved, 2)
        self.assertEqual(result.pushed, 0)
        self.assertEqual(await repo.get_unsynced_reveals(self.db), [])

    async def test_push_inserts_and_marks_synced(self) -> None:
        await repo.mark_revealed(self.db, "frag_0005")
        remote = FakeRemote()

        result = await tables.sync_fragment_reveals(self.db, remote)

        self.assertEqual((result.pushed, result.errors), (1, []))
        self.assertEqual(await repo.get_unsynced_reveals(self.db), [])
        rows = list(remote.tables["fragment_reveals"].values())
        self.assertEqual([(r["user_id"], r["fragment_id"]) for r in rows], [("user-1", "frag_0005")])
        self.assertIsNotNone((await get_sync_state(self.db, SyncTable.fragment_reveals)).last_sync_at)

    async def test_own_pushes_coming_back_are_not_conflicts(self) -> None:
        await repo.mark_revealed(self.db, "frag_0005")
        remote = FakeRemote()
        first = await tables.sync_fragment_reveals(self.db, remote)
        self.assertEqual((first.pushed, first.errors), (1, []))

        # the pushed row was created remotely after this round's cursor
        second = await tables.sync_fragment_reveals(self.db, remote)
        self.assertEqual(second.errors, [])
        self.assertEqual((second.pulled, second.pushed, second.conflicts_resolved), (0, 0, 0))
        self.assertIsNotNone(remote.called("select_since")[-1][2])

    async def test_unique_violation_is_not_an_error(self) -> None:
        await repo.mark_revealed(self.db, "frag_0007")
        remote = FakeRemote()
        # revealed on another device after our last pull
        remote.put("fragment_reveals", remote_reveal("x", "frag_0007"))
        with mock.patch.object(remote, "select_since", mock.AsyncMock(return_value=[])):
            result = await tables.sync_fragment_reveals(self.db, remote)

        self.assertEqual(result.errors, [])
        self.assertEqual((result.pushed, result.conflicts_resolved), (0, 1))
        self.assertEqual(await repo.get_unsynced_reveals(self.db), [])

    async def test_other_push_errors_keep_reveal_unsynced(self) -> None:
        await repo.mark_revealed(self.db, "frag_0008")
        remote = FakeRemote()
        remote.fail_insert_fragment_ids.add("frag_0008")

        result = await tables.sync_fragment_reveals(self.db, remote)

        self.assertEqual(result.errors, ["Push error for frag_0008: HTTP 500: boom"])
        self.assertEqual([r.fragment_id for r in await repo.get_unsynced_reveals(self.db)], ["frag_0008"])
        self.assertIsNone((await get_sync_state(self.db, SyncTable.fragment_reveals)).last_sync_at)

    async def test_unauthenticated(self) -> None:
        result = await tables.sync_fragment_reveals(self.db, FakeRemote(user_id=None))
        self.assertEqual(result.errors, ["Not authenticated"])


class CatalogueSyncTest(DbTestCase):
    def _remote(self) -> FakeRemote:
        remote = FakeRemote()
        remote.put("fragments_catalog", remote_fragment("f2", "witness"))
        remote.put("fragments_catalog", remote_fragment("f1"))
        remote.put("fragments_catalog", remote_fragment("f3", "naturalist"))
        remote.put("fragments_catalog", remote_fragment("off", enabled=False))
        return remote

    async def test_refresh_when_behind(self) -> None:
        remote = self._remote()
        result = await tables.sync_fragments_catalog(self.db, remote, reference_version=2)

        self.assertEqual((result.pulled, result.pushed, result.conflicts_resolved), (3, 0, 0))
        self.assertEqual([f.id for f in await repo.get_all_cached(self.db)], ["f1", "f2", "f3"])
        self.assertEqual(await repo.get_catalogue_version(self.db), 2)

    async def test_current_version_skips_network(self) -> None:
        await repo.set_catalogue_version(self.db, 3)
        remote = self._remote()
        result = await tables.sync_fragments_catalog(self.db, remote, reference_version=2)
        self.assertEqual((result.pulled, result.errors), (0, []))
        self.assertEqual(remote.called("select_all"), [])

    async def test_empty_remote_keeps_local_cache(self) -> None:
        await repo.seed_fragments_from_local(self.db)
        await repo.set_catalogue_version(self.db, 0)
        result = await tables.sync_fragments_catalog(self.db, FakeRemote(), reference_version=2)
        self.assertEqual((result.pulled, result.errors), (0, []))
        self.assertEqual(len(await repo.get_all_cached(self.db)), 12)
        self.assertEqual(await repo.get_catalogue_version(self.db), 0)

    async def test_force_refresh_ignores_version(self) -> None:
        await repo.set_catalogue_version(self.db, 9)
        remote = self._remote()
        result = await tables.force_refresh_catalog(self.db, remote, reference_version=2)
        self.assertEqual(result.pulled, 3)
        self.assertEqual(await repo.get_catalogue_version(self.db), 2)

    async def test_refresh_replaces_rows_with_same_ids(self) -> None:
        await repo.seed_fragments_from_local(self.db)
        await repo.set_catalogue_version(self.db, 0)
        remote = FakeRemote()
        remote.put("fragments_catalog", remote_fragment("frag_0001", "witness"))
        result = await tables.sync_fragments_catalog(self.db, remote, reference_version=1)
        self.assertEqual(result.pulled, 1)
        cached = await repo.get_all_cached(self.db)
        self.assertEqual([(f.id, f.text) for f in cached], [("frag_0001", "text of frag_0001")])

    async def test_pull_error(self) -> None:
        remote = self._remote()
        remote.select_error = RemoteError("HTTP 500: nope", status_code=500)
        result = await tables.sync_fragments_catalog(self.db, remote, reference_version=2)
        self.assertEqual(result.errors, ["Pull error: HTTP 500: nope"])

    async def test_reference_defaults_to_seed_version(self) -> None:
        with mock.patch.object(tables.settings, "FRAGMENTS_CATALOG_VERSION", None):
            self.assertEqual(tables.reference_catalogue_version(), repo.get_local_seed_version())
        with mock.patch.object(tables.settings, "FRAGMENTS_CATALOG_VERSION", 7):
            self.assertEqual(tables.reference_catalogue_version(), 7)


if __name__ == "__main__":
    unittest.main()
