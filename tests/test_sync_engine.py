from __future__ import annotations

import asyncio
import unittest

from margin.models import MeaningEntry
from margin.schemas import SyncResult, SyncTable
from margin.sync import engine
from margin.sync.scheduler import SyncThrottle

from support import DbTestCase, FakeRemote


def fixed(table: SyncTable, pulled: int = 0, pushed: int = 0, conflicts: int = 0, errors=None):
    calls = []

    async def module(db, remote):
        calls.append(table)
        return SyncResult(table=table, pulled=pulled, pushed=pushed,
                          conflicts_resolved=conflicts, errors=list(errors or []))

    module.calls = calls
    return module


class RunFullSyncTest(DbTestCase):
    async def test_not_signed_in_runs_nothing(self) -> None:
        m = fixed(SyncTable.meaning_entries, pulled=1)
        result = await engine.run_full_sync(self.db, FakeRemote(user_id=None),
                                            modules=[(SyncTable.meaning_entries, m)])
        self.assertFalse(result.success)
        self.assertEqual(result.errors, ["Not authenticated"])
        self.assertEqual(result.results, [])
        self.assertEqual(m.calls, [])

    async def test_auth_exception(self) -> None:
        remote = FakeRemote()
        remote.auth_error = RuntimeError("dns")
        result = await engine.run_full_sync(self.db, remote, modules=[])
        self.assertFalse(result.success)
        self.assertEqual(result.errors, ["Auth check failed: dns"])

    async def test_totals_are_summed(self) -> None:
        modules = [
            (SyncTable.meaning_entries, fixed(SyncTable.meaning_entries, 5, 2, 1)),
            (SyncTable.practice_sessions, fixed(SyncTable.practice_sessions, 3, 1, 0)),
        ]
        result = await engine.run_full_sync(self.db, FakeRemote(), modules=modules)
        self.assertTrue(result.success)
        self.assertEqual((result.total_pulled, result.total_pushed, result.total_conflicts), (8, 3, 1))
        self.assertEqual([r.table for r in result.results],
                         [SyncTable.meaning_entries, SyncTable.practice_sessions])

    async def test_failing_module_does_not_stop_the_rest(self) -> None:
        async def explodes(db, remote):
            raise RuntimeError("boom")

        after = fixed(SyncTable.fragment_reveals, pushed=1)
        modules = [
            (SyncTable.fragments_catalog, explodes),
            (SyncTable.meaning_entries, fixed(SyncTable.meaning_entries, errors=["Push error for x: nope"])),
            (SyncTable.fragment_reveals, after),
        ]
        result = await engine.run_full_sync(self.db, FakeRemote(), modules=modules)

        self.assertFalse(result.success)
        self.assertEqual(result.errors, ["fragments_catalog: boom", "Push error for x: nope"])
        self.assertEqual(after.calls, [SyncTable.fragment_reveals])
        self.assertEqual(result.total_pushed, 1)
        self.assertEqual(len(result.results), 3)

    async def test_overlapping_call_is_refused(self) -> None:
        entered = asyncio.Event()
        release = asyncio.Event()

        async def slow(db, remote):
            entered.set()
            await release.wait()
            return SyncResult(table=SyncTable.meaning_entries, pulled=1)

        first = asyncio.create_task(
            engine.run_full_sync(self.db, FakeRemote(), modules=[(SyncTable.meaning_entries, slow)])
        )
        await entered.wait()
        self.assertTrue(engine.is_sync_running())

        second = await engine.run_full_sync(self.db, FakeRemote(), modules=[])
        self.assertFalse(second.success)
        self.assertEqual(second.errors, [engine.ALREADY_RUNNING])

        release.set()
        done = await first
        self.assertTrue(done.success)
        self.assertEqual(done.total_pulled, 1)
        self.assertFalse(engine.is_sync_running())

    async def test_default_round_against_empty_remote(self) -> None:
        result = await engine.run_full_sync(self.db, FakeRemote())
        self.assertTrue(result.success, result.errors)
        self.assertEqual([r.table for r in result.results], [
            SyncTable.meaning_entries,
            SyncTable.practice_sessions,
            SyncTable.fragments_catalog,
            SyncTable.fragment_reveals,
        ])

    async def test_camel_case_dump(self) -> None:
        result = await engine.run_full_sync(self.db, FakeRemote(user_id=None), modules=[])
        dumped = result.model_dump(by_alias=True, mode="json")
        self.assertEqual(set(dumped), {"success", "results", "totalPulled", "totalPushed",
                                       "totalConflicts", "errors"})


class SingleTableEntryPointsTest(DbTestCase):
    async def test_each_runs_its_own_table(self) -> None:
        remote = FakeRemote()
        remote.put("meaning_entries", {
            "id": "r1", "user_id": "user-1", "category": "joyful", "text": None, "tags": [],
            "time_of_day": None, "created_at": "2025-01-01T00:00:00+00:00",
            "updated_at": "2025-01-01T00:00:00+00:00", "deleted_at": None,
        })
        cases = [
            (engine.sync_entries, SyncTable.meaning_entries),
            (engine.sync_sessions, SyncTable.practice_sessions),
            (engine.sync_catalog, SyncTable.fragments_catalog),
            (engine.sync_reveals, SyncTable.fragment_reveals),
        ]
        for fn, table in cases:
            result = await fn(self.db, remote)
            self.assertEqual((result.table, result.errors), (table, []))
        self.assertEqual(remote.called("upsert"), [])
        self.assertIsNotNone(await self.db.get(MeaningEntry, "r1"))

    async def test_single_table_needs_a_user(self) -> None:
        result = await engine.sync_reveals(self.db, FakeRemote(user_id=None))
        self.assertEqual(result.errors, ["Not authenticated"])


class ThrottleTest(unittest.TestCase):
    def test_min_interval(self) -> None:
        now = [100.0]
        throttle = SyncThrottle(60, clock=lambda: now[0])

        self.assertTrue(throttle.try_acquire())
        now[0] = 130.0
        self.assertFalse(throttle.try_acquire())
        self.assertEqual(throttle.seconds_until_ready(), 30.0)
        now[0] = 160.0
        self.assertTrue(throttle.try_acquire())
        self.assertEqual(throttle.seconds_until_ready(), 60.0)

        throttle.reset()
        self.assertEqual(throttle.seconds_until_ready(), 0.0)
        self.assertTrue(throttle.try_acquire())


if __name__ == "__main__":
    unittest.main()
