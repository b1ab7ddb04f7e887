from __future__ import annotations

import unittest

import httpx

from margin.database import get_db
from margin.main import app
from margin.routes import get_remote
from margin.services import fragments as fragments_repo
from margin.services import practices
from margin.sync.scheduler import foreground_throttle

from support import DbTestCase, FakeRemote


class ApiTest(DbTestCase):
    async def asyncSetUp(self) -> None:
        await super().asyncSetUp()
        self.remote = FakeRemote()

        async def db_override():
            yield self.db

        async def remote_override():
            yield self.remote

        app.dependency_overrides[get_db] = db_override
        app.dependency_overrides[get_remote] = remote_override
        self.client = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")

    async def asyncTearDown(self) -> None:
        await self.client.aclose()
        app.dependency_overrides.clear()
        foreground_throttle.reset()
        await super().asyncTearDown()

    async def test_healthz(self) -> None:
        r = await self.client.get("/healthz")
        self.assertEqual(r.json(), {"ok": True})

    async def test_entry_lifecycle(self) -> None:
        r = await self.client.post("/api/entries", json={"category": "joyful", "tags": ["Tea", "tea"]})
        self.assertEqual(r.status_code, 201)
        created = r.json()
        self.assertEqual(created["tags"], ["tea"])

        r = await self.client.patch(f"/api/entries/{created['id']}", json={"text": "green"})
        self.assertEqual(r.json()["text"], "green")

        r = await self.client.get("/api/entries", params={"category": "joyful"})
        self.assertEqual([e["id"] for e in r.json()], [created["id"]])

        r = await self.client.delete(f"/api/entries/{created['id']}")
        self.assertEqual(r.status_code, 204)
        r = await self.client.delete(f"/api/entries/{created['id']}")
        self.assertEqual(r.status_code, 404)

    async def test_map_and_clusters(self) -> None:
        for tags, category in [(["morning", "quiet"], "meaningful"), (["morning", "quiet", "work"], "meaningful")]:
            await self.client.post("/api/entries", json={"category": category, "tags": tags})

        stats = (await self.client.get("/api/map")).json()
        self.assertEqual(stats["totalEntries"], 2)

        clusters = (await self.client.get("/api/map/clusters")).json()
        self.assertEqual(len(clusters), 1)
        members = (await self.client.get(f"/api/map/clusters/{clusters[0]['id']}/entries")).json()
        self.assertEqual(len(members), 2)
        r = await self.client.get("/api/map/clusters/99/entries")
        self.assertEqual(r.status_code, 404)

    async def test_sessions_and_daily_practice(self) -> None:
        r = await self.client.get("/api/practice/today")
        self.assertEqual(r.status_code, 404)

        await practices.seed_practices_from_local(self.db)
        today = (await self.client.get("/api/practice/today")).json()

        r = await self.client.post("/api/practice/today/swap")
        self.assertEqual(r.status_code, 200)
        self.assertNotEqual(r.json()["id"], today["id"])
        r = await self.client.post("/api/practice/today/swap")
        self.assertEqual(r.status_code, 409)

        r = await self.client.post("/api/sessions", json={"practice_id": "nope"})
        self.assertEqual(r.status_code, 404)
        s = (await self.client.post("/api/sessions", json={"practice_id": today["id"]})).json()
        r = await self.client.post(f"/api/sessions/{s['id']}/complete", json={"user_rating": "easy"})
        self.assertEqual(r.json()["status"], "completed")
        r = await self.client.post(f"/api/sessions/{s['id']}/abandon")
        self.assertEqual(r.status_code, 409)

        listed = (await self.client.get("/api/sessions", params={"status": "completed"})).json()
        self.assertEqual([x["id"] for x in listed], [s["id"]])

        focus = (await self.client.get("/api/practices", params={"mode": "focus"})).json()
        self.assertTrue(focus)
        self.assertTrue(all(p["mode"] == "focus" for p in focus))

    async def test_reveal_endpoint(self) -> None:
        await fragments_repo.seed_fragments_from_local(self.db)
        r = await self.client.post("/api/fragments/missing/reveal")
        self.assertEqual(r.status_code, 404)
        r = await self.client.post("/api/fragments/frag_0004/reveal")
        self.assertEqual(r.json()["fragment_id"], "frag_0004")
        r = await self.client.post("/api/fragments/frag_0004/reveal")
        self.assertEqual(r.status_code, 409)

    async def test_fragments_setting(self) -> None:
        self.assertEqual((await self.client.get("/api/settings/fragments")).json(), {"enabled": True})
        await self.client.put("/api/settings/fragments", json={"enabled": False})
        self.assertEqual((await self.client.get("/api/settings/fragments")).json(), {"enabled": False})
        r = await self.client.post("/api/fragments/check")
        self.assertIsNone(r.json())

    async def test_sync_now_and_state(self) -> None:
        r = await self.client.post("/api/sync")
        body = r.json()
        self.assertTrue(body["success"], body["errors"])
        self.assertEqual(len(body["results"]), 4)

        states = (await self.client.get("/api/sync/state")).json()
        self.assertEqual(len(states), 4)
        self.assertTrue(any(s["lastSyncAt"] for s in states))

        r = await self.client.delete("/api/sync/state")
        self.assertGreater(r.json()["cleared"], 0)

    async def test_sync_not_signed_in(self) -> None:
        self.remote = FakeRemote(user_id=None)
        body = (await self.client.post("/api/sync")).json()
        self.assertFalse(body["success"])
        self.assertEqual(body["errors"], ["Not authenticated"])

    async def test_foreground_sync_is_throttled(self) -> None:
        foreground_throttle.reset()
        foreground_throttle.try_acquire()
        body = (await self.client.post("/api/sync/foreground")).json()
        self.assertFalse(body["started"])
        self.assertEqual(body["reason"], "throttled")
        self.assertGreater(body["retryAfterSeconds"], 0)


if __name__ == "__main__":
    unittest.main()
