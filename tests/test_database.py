"""
Unit tests for the asyncpg document source, against a fake pool.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, patch

import pytest

from app import database
from app.errors import RecordNotFoundError


class FakeConnection:
    def __init__(self, rows=None, fetchrow=None, fetchval=None):
        self.fetch = AsyncMock(return_value=rows or [])
        self.fetchrow = AsyncMock(return_value=fetchrow)
        self.fetchval = AsyncMock(return_value=fetchval)
        self.execute = AsyncMock()
        self.add_listener = AsyncMock()
        self.remove_listener = AsyncMock()

    @asynccontextmanager
    async def transaction(self):
        yield


class FakePool:
    def __init__(self, conn):
        self.conn = conn
        self.release = AsyncMock()

    def acquire(self):
        conn = self.conn

        class _Acquire:
            def __await__(self):
                async def _get():
                    return conn
                return _get().__await__()

            async def __aenter__(self):
                return conn

            async def __aexit__(self, *exc):
                return False

        return _Acquire()


@pytest.fixture
def use_conn():
    def install(conn):
        return patch.object(database, "_pool", FakePool(conn))
    return install


class TestPoolLifecycle:

    def test_get_pool_without_connection(self):
        with patch.object(database, "_pool", None):
            assert database.is_db_available() is False
            with pytest.raises(RuntimeError):
                database.get_pool()

    @pytest.mark.asyncio
    async def test_create_pool_failure_is_not_fatal(self):
        with patch.object(database, "_pool", None), \
             patch("app.database.asyncpg.create_pool", AsyncMock(side_effect=OSError("refused"))):
            await database.create_pool()
            assert database.is_db_available() is False


class TestReadWrite:

    @pytest.mark.asyncio
    async def test_read_attaches_keys(self, use_conn):
        conn = FakeConnection(rows=[
            {"key": "d1", "data": {"name": "Alice"}},
            {"key": "d2", "data": {"name": "Bob", "id": "stale"}},
        ])
        with use_conn(conn):
            records = await database.read("donors")

        assert records == [{"name": "Alice", "id": "d1"}, {"name": "Bob", "id": "d2"}]
        conn.fetch.assert_awaited_once_with(database._SQL_READ, "donors")

    @pytest.mark.asyncio
    async def test_add_notifies(self, use_conn):
        conn = FakeConnection()
        with use_conn(conn):
            key = await database.add("inventory", {"id": "ignored", "name": "Tins"})

        insert_call, notify_call = conn.execute.await_args_list
        assert insert_call.args == (database._SQL_INSERT, "inventory", key, {"name": "Tins"})
        assert notify_call.args == (database._SQL_NOTIFY, database.NOTIFY_CHANNEL, "inventory")

    @pytest.mark.asyncio
    async def test_update_returns_merged_record(self, use_conn):
        conn = FakeConnection(fetchrow={"key": "i1", "data": {"name": "Tins", "quantity": 3}})
        with use_conn(conn):
            record = await database.update("inventory", "i1", {"quantity": 3})

        assert record == {"name": "Tins", "quantity": 3, "id": "i1"}
        conn.execute.assert_awaited_once_with(
            database._SQL_NOTIFY, database.NOTIFY_CHANNEL, "inventory"
        )

    @pytest.mark.asyncio
    async def test_update_missing_raises_not_found(self, use_conn):
        conn = FakeConnection(fetchrow=None)
        with use_conn(conn):
            with pytest.raises(RecordNotFoundError) as exc_info:
                await database.update("inventory", "nope", {"quantity": 3})

        assert exc_info.value.key == "nope"
        conn.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_remove_missing_raises_not_found(self, use_conn):
        conn = FakeConnection(fetchval=None)
        with use_conn(conn):
            with pytest.raises(RecordNotFoundError):
                await database.remove("finances", "nope")

        conn.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_remove_notifies(self, use_conn):
        conn = FakeConnection(fetchval="f1")
        with use_conn(conn):
            await database.remove("finances", "f1")

        conn.execute.assert_awaited_once_with(
            database._SQL_NOTIFY, database.NOTIFY_CHANNEL, "finances"
        )


class TestSubscribe:

    @pytest.mark.asyncio
    async def test_initial_snapshot_and_unsubscribe(self, use_conn):
        conn = FakeConnection(rows=[{"key": "d1", "data": {"name": "Alice"}}])
        received = []
        pool = FakePool(conn)

        with patch.object(database, "_pool", pool):
            unsubscribe = await database.subscribe("donors", received.append)
            assert received == [[{"name": "Alice", "id": "d1"}]]

            channel, listener = conn.add_listener.await_args.args
            assert channel == database.NOTIFY_CHANNEL

            await unsubscribe()

        conn.remove_listener.assert_awaited_once_with(database.NOTIFY_CHANNEL, listener)
        pool.release.assert_awaited_once_with(conn)

    @pytest.mark.asyncio
    async def test_notifications_for_other_collections_ignored(self, use_conn):
        conn = FakeConnection(rows=[])
        callback = AsyncMock()

        with use_conn(conn):
            await database.subscribe("donors", callback)
            _, listener = conn.add_listener.await_args.args
            listener(conn, 1, database.NOTIFY_CHANNEL, "inventory")

        callback.assert_awaited_once_with([])

    @pytest.mark.asyncio
    async def test_notification_delivers_fresh_snapshot(self, use_conn):
        conn = FakeConnection(rows=[{"key": "d1", "data": {"name": "Alice"}}])
        received = []

        with use_conn(conn):
            await database.subscribe("donors", received.append)
            _, listener = conn.add_listener.await_args.args
            conn.fetch.return_value = [
                {"key": "d1", "data": {"name": "Alice"}},
                {"key": "d2", "data": {"name": "Bob"}},
            ]

            listener(conn, 1, database.NOTIFY_CHANNEL, "donors")
            assert database._deliveries
            await asyncio.gather(*database._deliveries)

        assert received[-1] == [{"name": "Alice", "id": "d1"}, {"name": "Bob", "id": "d2"}]

    @pytest.mark.asyncio
    async def test_notify_only_mode_skips_reads(self, use_conn):
        conn = FakeConnection(rows=[{"key": "d1", "data": {"name": "Alice"}}])
        received = []

        with use_conn(conn):
            await database.subscribe("donors", received.append, snapshot=False)
            assert received == []

            _, listener = conn.add_listener.await_args.args
            listener(conn, 1, database.NOTIFY_CHANNEL, "donors")
            await asyncio.gather(*database._deliveries)

        assert received == [None]
        conn.fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failing_subscriber_is_logged(self, use_conn, caplog):
        conn = FakeConnection(rows=[])
        callback = AsyncMock(side_effect=RuntimeError("boom"))

        with use_conn(conn), caplog.at_level(logging.ERROR, logger="app.database"):
            await database.subscribe("donors", callback, snapshot=False)
            _, listener = conn.add_listener.await_args.args
            listener(conn, 1, database.NOTIFY_CHANNEL, "donors")
            await asyncio.gather(*database._deliveries, return_exceptions=True)
            await asyncio.sleep(0)

        assert "Change subscriber failed" in caplog.text
        assert not database._deliveries
