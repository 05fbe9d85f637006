import asyncio
import os
import unittest
import uuid
from types import SimpleNamespace

from sqlalchemy import delete
from sqlalchemy.dialects import postgresql
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from shared.db import Base
from shared.errors import NotFoundError
from shared.models import Document, DocumentChange
from shared.store.base import OrderBy
from shared.store.memory import MemoryStore
from shared.store.sql import SqlDocumentStore, build_query, recent_changes_query


TEST_DB_URL = os.environ.get("SHIFTSWAP_TEST_DATABASE_URL", "")


def _compile(stmt):
    return stmt.compile(dialect=postgresql.dialect())


class TestQueryCompilation(unittest.TestCase):
    def test_filter_uses_jsonb_containment(self):
        compiled = _compile(build_query("shifts", {"employeeId": "john"}))
        sql = str(compiled)
        self.assertIn("documents.collection = ", sql)
        self.assertIn("documents.data @> ", sql)
        self.assertIn({"employeeId": "john"}, list(compiled.params.values()))
        self.assertTrue(sql.endswith("ORDER BY documents.seq ASC"), sql)

    def test_ascending_order_breaks_ties_by_insertion(self):
        compiled = _compile(build_query("shifts", {"employeeId": "john"}, OrderBy("date")))
        sql = str(compiled)
        self.assertIn("->>", sql)
        self.assertIn("date", list(compiled.params.values()))
        self.assertTrue(sql.endswith("ASC NULLS LAST, documents.seq ASC"), sql)

    def test_descending_order_is_reverse_of_ascending(self):
        sql = str(_compile(build_query("activityLogs", None, OrderBy("timestamp", descending=True))))
        self.assertNotIn("@>", sql)
        self.assertTrue(sql.endswith("DESC NULLS LAST, documents.seq DESC"), sql)

    def test_change_feed_window(self):
        sql = str(_compile(recent_changes_query()))
        self.assertIn("FROM document_changes", sql)
        self.assertIn("document_changes.created_at >= now() - ", sql)
        self.assertTrue(sql.endswith("ORDER BY document_changes.id ASC"), sql)


class _Result:
    def __init__(self, rows):
        self._rows = rows

    def all(self):
        return list(self._rows)


class FeedSession:
    """Session stand-in that answers every statement with the current feed rows."""

    def __init__(self, feed):
        self.feed = feed

    async def execute(self, stmt):
        return _Result(self.feed)

    async def commit(self):
        pass

    async def rollback(self):
        pass

    async def close(self):
        pass


class CountingSubscription:
    def __init__(self):
        self.notified = 0

    def notify(self):
        self.notified += 1


def _change(change_id, collection, origin):
    return SimpleNamespace(id=change_id, collection=collection, origin=origin)


class TestChangeFeed(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.feed = [_change(1, "shifts", "web")]
        self.store = SqlDocumentStore(lambda: FeedSession(self.feed))
        self.shifts_sub = CountingSubscription()
        self.requests_sub = CountingSubscription()
        self.store._subscriptions = {"shifts": [self.shifts_sub], "swapRequests": [self.requests_sub]}

    async def test_first_poll_only_marks_existing_changes(self):
        self.assertEqual(await self.store.poll_changes(), set())
        self.assertEqual(self.shifts_sub.notified, 0)

    async def test_changes_from_other_processes_notify_once(self):
        await self.store.poll_changes()
        self.feed.append(_change(2, "swapRequests", "bot"))
        self.feed.append(_change(3, "shifts", self.store.origin))

        self.assertEqual(await self.store.poll_changes(), {"swapRequests"})
        self.assertEqual(self.requests_sub.notified, 1)
        # own writes were already delivered locally
        self.assertEqual(self.shifts_sub.notified, 0)

        self.assertEqual(await self.store.poll_changes(), set())
        self.assertEqual(self.requests_sub.notified, 1)

    async def test_late_commit_inside_window_is_picked_up(self):
        await self.store.poll_changes()
        # a lower id that committed after a higher one
        self.feed.append(_change(5, "shifts", "bot"))
        await self.store.poll_changes()
        self.feed.insert(1, _change(4, "swapRequests", "bot"))
        self.assertEqual(await self.store.poll_changes(), {"swapRequests"})


@unittest.skipUnless(TEST_DB_URL, "SHIFTSWAP_TEST_DATABASE_URL is not set")
class TestSqlDocumentStoreLive(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.engine = create_async_engine(TEST_DB_URL)
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        self.maker = async_sessionmaker(self.engine, expire_on_commit=False)
        self.collection = f"test_{uuid.uuid4().hex[:12]}"
        self.store = SqlDocumentStore(self.maker, poll_interval=0.05)
        self.other = SqlDocumentStore(self.maker, poll_interval=0.05)

    async def asyncTearDown(self):
        await self.store.close()
        await self.other.close()
        async with self.engine.begin() as conn:
            await conn.execute(delete(Document).where(Document.collection == self.collection))
            await conn.execute(delete(DocumentChange).where(DocumentChange.collection == self.collection))
        await self.engine.dispose()

    async def _fill(self, store):
        rows = [
            ("john", "2024-11-28", 1),
            ("sarah", "2024-11-27", 2),
            ("john", "2024-11-27", 3),
            ("john", "2024-11-28", 4),
            ("john", "2024-11-26", 5),
        ]
        for owner, day, n in rows:
            await store.insert(self.collection, {"employeeId": owner, "date": day, "n": n})

    async def test_filter_and_order_match_memory_store(self):
        memory = MemoryStore()
        await self._fill(memory)
        await self._fill(self.store)

        for order in (OrderBy("date"), OrderBy("date", descending=True)):
            with self.subTest(descending=order.descending):
                expected = [r["n"] for r in await memory.query(self.collection, {"employeeId": "john"}, order)]
                got = [r["n"] for r in await self.store.query(self.collection, {"employeeId": "john"}, order)]
                self.assertEqual(got, expected)
        self.assertEqual(len(await self.store.get_all(self.collection)), 5)

    async def test_update_get_delete(self):
        doc_id = await self.store.insert(self.collection, {"status": "pending"})
        await self.store.update(self.collection, doc_id, {"status": "accepted", "id": "ignored"})
        self.assertEqual(await self.store.get_by_id(self.collection, doc_id), {"id": doc_id, "status": "accepted"})

        with self.assertRaises(NotFoundError):
            await self.store.update(self.collection, "missing", {"status": "x"})

        await self.store.delete(self.collection, doc_id)
        await self.store.delete(self.collection, doc_id)
        self.assertIsNone(await self.store.get_by_id(self.collection, doc_id))

    async def test_transaction_rolls_back_on_error(self):
        doc_id = await self.store.insert(self.collection, {"employeeId": "john"})
        with self.assertRaises(RuntimeError):
            async with self.store.transaction() as tx:
                await tx.update(self.collection, doc_id, {"employeeId": "sarah"})
                await tx.insert(self.collection, {"employeeId": "ghost"})
                raise RuntimeError("abort")

        self.assertEqual((await self.store.get_by_id(self.collection, doc_id))["employeeId"], "john")
        self.assertEqual(len(await self.store.get_all(self.collection)), 1)

    async def test_writes_reach_other_instances(self):
        await self.other.poll_changes()
        await self.store.poll_changes()

        await self.store.insert(self.collection, {"employeeId": "john"})
        self.assertEqual(await self.other.poll_changes(), {self.collection})
        self.assertEqual(await self.store.poll_changes(), set())

    async def test_subscription_sees_other_instance_writes(self):
        snapshots = []
        got_two = asyncio.Event()

        def on_snapshot(rows):
            snapshots.append(rows)
            if len(snapshots) >= 2:
                got_two.set()

        sub = self.other.subscribe(self.collection, None, None, on_snapshot)
        # let the poller take its first look at the feed
        await asyncio.sleep(0.2)
        await self.store.insert(self.collection, {"employeeId": "sarah"})
        await asyncio.wait_for(got_two.wait(), timeout=5)
        sub.cancel()

        self.assertEqual(snapshots[0], [])
        self.assertEqual([r["employeeId"] for r in snapshots[-1]], ["sarah"])


if __name__ == "__main__":
    unittest.main()
