"""
Tests for opening stores, schema building and model binding.
"""

import asyncio

import pytest

from tessera import get_store, open_store
from tessera.config import StoreConfig
from tessera.faults import (
    ModelNotRegisteredFault,
    SchemaFault,
    StoreAlreadyOpenFault,
    StoreNotOpenFault,
)
from tessera.models import FieldInfo, FieldType, Model, TextField
from tessera.store import SchemaVersion, Store

from sample_models import Gadget, Note, Person, build_schema, seed_people


class TestOpen:

    @pytest.mark.asyncio
    async def test_open_builds_schema(self, tmp_path):
        store = await open_store(str(tmp_path / "a.db"), build_schema)
        try:
            assert store.is_open
            assert store.version.value == 1
            assert await store.database.get_user_version() == 1
            assert get_store() is store
            assert Person._store is store
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_reopen_keeps_version(self, tmp_path):
        path = str(tmp_path / "a.db")
        calls = []

        async def builder(conn, version):
            calls.append(version.value)
            await build_schema(conn, version)

        store = await open_store(path, builder)
        await store.close()
        store = await open_store(path, builder)
        await store.close()
        assert calls == [0, 1]

    @pytest.mark.asyncio
    async def test_open_twice_fails(self, tmp_path):
        path = str(tmp_path / "a.db")
        store = await open_store(path, build_schema)
        try:
            with pytest.raises(StoreAlreadyOpenFault):
                await open_store(path, build_schema)
        finally:
            await store.close()
        reopened = await open_store(path, build_schema)
        await reopened.close()

    @pytest.mark.asyncio
    async def test_in_memory_stores_are_independent(self):
        first = await open_store(":memory:", build_schema)
        try:
            second = await open_store(":memory:", build_schema)
            try:
                await first.database.execute("INSERT INTO contacts (name) VALUES ('only-first')")
                assert await first.database.fetch_val("SELECT COUNT(*) FROM contacts") == 1
                assert await second.database.fetch_val("SELECT COUNT(*) FROM contacts") == 0
            finally:
                await second.close()
        finally:
            await first.close()

    @pytest.mark.asyncio
    async def test_failing_builder(self, tmp_path):
        path = str(tmp_path / "a.db")

        async def broken(conn, version):
            await conn.execute("CREATE TABLE half (id INTEGER PRIMARY KEY)")
            version.value = 1
            raise RuntimeError("migration bug")

        with pytest.raises(SchemaFault):
            await open_store(path, broken)

        store = await open_store(path, build_schema)
        try:
            assert store.version.value == 1
            assert await store.database.fetch_all("PRAGMA table_info(half)") == []
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_initializer(self, tmp_path):
        seen = []

        async def initializer(conn):
            seen.append(conn)
            await conn.execute("PRAGMA cache_size = 100")

        store = await open_store(str(tmp_path / "a.db"), build_schema, initializer=initializer)
        try:
            assert seen == [store.database.adapter.connection]
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_sync_builder(self, tmp_path):
        def builder(conn, version):
            assert isinstance(version, SchemaVersion)

        store = await Store.open(str(tmp_path / "empty.db"), builder)
        try:
            assert store.version.value == 0
            assert Person._store is None
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_config(self, tmp_path):
        config = StoreConfig(journal_mode="DELETE", primary_key_chunk_size=10)
        store = await open_store(str(tmp_path / "a.db"), build_schema, config=config)
        try:
            assert store.config.primary_key_chunk_size == 10
            assert await store.database.fetch_val("PRAGMA journal_mode") == "delete"
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_context_manager(self, tmp_path):
        async with await open_store(str(tmp_path / "a.db"), build_schema) as store:
            assert store.is_open
        assert not store.is_open
        with pytest.raises(StoreNotOpenFault):
            get_store()


class TestMetadataLookups:

    @pytest.mark.asyncio
    async def test_field_info(self, store):
        info = store.field_info(Person)
        assert info["name"] == FieldInfo(FieldType.TEXT, nullable=False, default="")
        assert info["active"] == FieldInfo(FieldType.BOOLEAN, nullable=False, default=True)
        assert info["age"] == FieldInfo(FieldType.INTEGER, nullable=True, default=None)
        assert Gadget.field_info()["weight"].default == 0.0
        assert Gadget.field_info()["label"].default == "gadget"

    @pytest.mark.asyncio
    async def test_primary_key_field_name(self, store):
        assert store.primary_key_field_name(Note) == "key"
        assert Person.primary_key_field_name() == "id"

    @pytest.mark.asyncio
    async def test_lookups_before_open(self, tmp_path):
        with pytest.raises(StoreNotOpenFault):
            Person.field_info()
        with pytest.raises(StoreNotOpenFault):
            Store(str(tmp_path / "a.db")).field_info(Person)

    @pytest.mark.asyncio
    async def test_lookups_after_close(self, tmp_path):
        store = await open_store(str(tmp_path / "a.db"), build_schema)
        await store.close()
        with pytest.raises(StoreNotOpenFault):
            store.primary_key_field_name(Person)
        with pytest.raises(StoreNotOpenFault):
            await Person.all_instances()

    @pytest.mark.asyncio
    async def test_new_instance_uses_schema_defaults(self, store):
        person = Person()
        assert person.name == ""
        assert person.active is True
        gadget = Gadget()
        assert (gadget.label, gadget.weight) == ("gadget", 0.0)


class TestModelBinding:

    @pytest.mark.asyncio
    async def test_register_model_after_open(self, store):
        await store.database.execute("CREATE TABLE late_items (id INTEGER PRIMARY KEY, label TEXT)")

        class LateItem(Model):
            table = "late_items"
            label = TextField()

        with pytest.raises(ModelNotRegisteredFault):
            await LateItem.all_instances()

        await store.register_model(LateItem)
        item = LateItem(label="x")
        assert (await item.save()).value == "succeeded"
        assert await LateItem.all_instances() == [item]

    @pytest.mark.asyncio
    async def test_register_model_without_table(self, store):
        class Missing(Model):
            table = "nowhere"
            label = TextField()

        with pytest.raises(SchemaFault):
            await store.register_model(Missing)

    @pytest.mark.asyncio
    async def test_register_model_with_missing_column(self, store):
        class Mismatch(Model):
            table = "notes_mismatch"
            key = TextField(primary_key=True)
            title = TextField()

        await store.database.execute("CREATE TABLE notes_mismatch (key TEXT PRIMARY KEY, body TEXT)")
        with pytest.raises(SchemaFault):
            await store.register_model(Mismatch)

    @pytest.mark.asyncio
    async def test_close_unbinds(self, store):
        await seed_people(store)
        person = await Person.instance_with_primary_key(1)
        await store.close()
        assert Person._store is None
        assert store.cache.count() == 0
        with pytest.raises(StoreNotOpenFault):
            await person.save()


class TestThreads:

    @pytest.mark.asyncio
    async def test_submit_threadsafe(self, store):
        await seed_people(store)

        def from_thread():
            future = store.submit_threadsafe(Person.first_value_from_query("SELECT COUNT(*) FROM $T"))
            return future.result(timeout=5)

        assert await asyncio.to_thread(from_thread) == 3

    @pytest.mark.asyncio
    async def test_concurrent_saves_are_serialized(self, store):
        people = [Person(name=f"P{i}", email=f"p{i}@example.com") for i in range(20)]
        results = await asyncio.gather(*(person.save() for person in people))
        assert all(result.value == "succeeded" for result in results)
        assert len({person.id for person in people}) == 20
        assert await Person.first_value_from_query("SELECT COUNT(*) FROM $T") == 20
