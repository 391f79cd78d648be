"""
Tests for the Database execution channel and SQLite adapter.
"""

import asyncio

import pytest
import pytest_asyncio

from tessera.config import StoreConfig
from tessera.db import Database, ExecuteResult
from tessera.faults import DatabaseConnectionFault, QueryFault


@pytest_asyncio.fixture
async def db(tmp_path):
    database = Database(str(tmp_path / "engine.db"))
    await database.connect()
    await database.execute("CREATE TABLE items (id INTEGER PRIMARY KEY, label TEXT UNIQUE, qty INTEGER DEFAULT 0)")
    yield database
    await database.disconnect()


class TestConnection:

    @pytest.mark.asyncio
    async def test_connect_and_disconnect(self, tmp_path):
        database = Database(str(tmp_path / "a.db"))
        assert not database.is_connected
        await database.connect()
        assert database.is_connected
        await database.disconnect()
        assert not database.is_connected

    @pytest.mark.asyncio
    async def test_connect_failure(self, tmp_path):
        config = StoreConfig(connect_retries=2, connect_retry_delay=0)
        database = Database(str(tmp_path / "missing" / "dir" / "a.db"), config)
        with pytest.raises(DatabaseConnectionFault) as exc_info:
            await database.connect()
        assert "2 attempts" in exc_info.value.message
        assert not database.is_connected

    @pytest.mark.asyncio
    async def test_use_before_connect(self, tmp_path):
        with pytest.raises(DatabaseConnectionFault):
            await Database(str(tmp_path / "a.db")).fetch_all("SELECT 1")


class TestExecution:

    @pytest.mark.asyncio
    async def test_fetch_helpers(self, db):
        await db.execute_many("INSERT INTO items (label, qty) VALUES (?, ?)", [("a", 1), ("b", 2)])
        assert await db.fetch_all("SELECT label, qty FROM items ORDER BY id") == [
            {"label": "a", "qty": 1},
            {"label": "b", "qty": 2},
        ]
        assert await db.fetch_one("SELECT label FROM items WHERE qty = ?", [2]) == {"label": "b"}
        assert await db.fetch_one("SELECT label FROM items WHERE qty = ?", [9]) is None
        assert await db.fetch_column("SELECT label FROM items ORDER BY id") == ["a", "b"]
        assert await db.fetch_val("SELECT SUM(qty) FROM items") == 3

    @pytest.mark.asyncio
    async def test_execute_returns_result(self, db):
        result = await db.execute("INSERT INTO items (label) VALUES (?)", ["a"])
        assert isinstance(result, ExecuteResult)
        assert result.lastrowid == 1
        result = await db.execute("UPDATE items SET qty = 5")
        assert result.rowcount == 1
        result = await db.execute("DELETE FROM items WHERE label = ?", ["zz"])
        assert result.rowcount == 0

    @pytest.mark.asyncio
    async def test_errors_become_query_faults(self, db):
        with pytest.raises(QueryFault) as exc_info:
            await db.execute("INSERT INTO nowhere VALUES (1)", model="Item")
        assert exc_info.value.metadata["model"] == "Item"
        assert "nowhere" in exc_info.value.reason

    @pytest.mark.asyncio
    async def test_attempt_returns_fault(self, db):
        assert await db.attempt("INSERT INTO items (label) VALUES ('a')") is None
        fault = await db.attempt("INSERT INTO items (label) VALUES ('a')")
        assert isinstance(fault, QueryFault)
        assert "UNIQUE" in fault.reason

    @pytest.mark.asyncio
    async def test_run_raw_operation(self, db):
        async def bulk(conn):
            await conn.executemany("INSERT INTO items (label) VALUES (?)", [("x",), ("y",)])
            return "ok"

        assert await db.run(bulk) == "ok"
        assert await db.fetch_val("SELECT COUNT(*) FROM items") == 2

    @pytest.mark.asyncio
    async def test_run_wraps_sqlite_errors(self, db):
        async def broken(conn):
            await conn.execute("SELECT * FROM nowhere")

        with pytest.raises(QueryFault):
            await db.run(broken)

    @pytest.mark.asyncio
    async def test_transaction_rollback(self, db):
        async def half_done(conn):
            await conn.execute("INSERT INTO items (label) VALUES ('kept?')")
            raise RuntimeError("abort")

        with pytest.raises(RuntimeError):
            await db.run_in_transaction(half_done)
        assert await db.fetch_val("SELECT COUNT(*) FROM items") == 0
        assert not db.adapter.in_transaction

    @pytest.mark.asyncio
    async def test_transaction_commit(self, db):
        async def work(conn):
            await conn.execute("INSERT INTO items (label) VALUES ('a')")
            await conn.execute("INSERT INTO items (label) VALUES ('b')")

        await db.run_in_transaction(work)
        assert await db.fetch_val("SELECT COUNT(*) FROM items") == 2

    @pytest.mark.asyncio
    async def test_operations_are_serialized(self, db):
        active = []
        overlaps = []

        async def slow(conn):
            if active:
                overlaps.append(True)
            active.append(1)
            await asyncio.sleep(0.01)
            await conn.execute("INSERT INTO items (label) VALUES (NULL)")
            active.pop()

        await asyncio.gather(*(db.run(slow) for _ in range(5)))
        assert overlaps == []
        assert await db.fetch_val("SELECT COUNT(*) FROM items") == 5


class TestIntrospection:

    @pytest.mark.asyncio
    async def test_get_columns(self, db):
        columns = {column.name: column for column in await db.get_columns("items")}
        assert columns["id"].primary_key
        assert columns["label"].data_type == "TEXT"
        assert columns["qty"].default == "0"
        assert columns["qty"].nullable

    @pytest.mark.asyncio
    async def test_get_columns_missing_table(self, db):
        assert await db.get_columns("nowhere") == []

    @pytest.mark.asyncio
    async def test_user_version(self, db):
        assert await db.get_user_version() == 0
        await db.run(lambda conn: conn.execute("PRAGMA user_version = 3"))
        assert await db.get_user_version() == 3
