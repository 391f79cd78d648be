"""
Tests for the save/delete pipeline.

Covers:
- NO_CHANGES / REFUSED / FAILED / SUCCEEDED outcomes and their hooks
- Round-trips through the database
- Primary-key assignment and instance uniqueness
- Delete idempotence
- Change events
- save_all scopes
"""

import datetime
import gc

import pytest

from tessera.faults import DuplicateInstanceFault, QueryFault
from tessera.models import Model, ModelEvent, SaveResult

from sample_models import Contact, Employee, Gadget, Note, Person, seed_contacts, seed_people


# ============================================================================
# Save
# ============================================================================


class TestSave:

    @pytest.mark.asyncio
    async def test_insert_assigns_integer_key(self, store):
        person = Person(name="Ann", age=34)
        assert await person.save() is SaveResult.SUCCEEDED
        assert person.id == 1
        assert person.exists_in_database
        assert not person.has_unsaved_changes
        assert store.cache.get(Person, 1) is person

    @pytest.mark.asyncio
    async def test_insert_assigns_text_key(self, store):
        note = Note(body="hello")
        assert await note.save() is SaveResult.SUCCEEDED
        assert isinstance(note.key, str) and len(note.key) == 32
        assert await Note.first_value_from_query("SELECT body FROM $T WHERE $PK = ?", [note.key]) == "hello"

    @pytest.mark.asyncio
    async def test_insert_with_explicit_key(self, store):
        person = Person(id=40, name="Forty")
        assert store.cache.get(Person, 40) is person
        assert await person.save() is SaveResult.SUCCEEDED
        assert await Person.first_column_from_query("SELECT $PK FROM $T") == [40]

    @pytest.mark.asyncio
    async def test_round_trip(self, store):
        created = datetime.datetime(2024, 5, 1, 12, 30, tzinfo=datetime.timezone.utc)
        person = Person(name="Ann", age=34, email="ann@example.com", active=False, tags={"x": [1, 2]})
        note = Note(key="n1", body="text", created=created)
        assert await person.save() is SaveResult.SUCCEEDED
        assert await note.save() is SaveResult.SUCCEEDED
        pk = person.id

        del person, note
        gc.collect()
        assert store.cache.count() == 0

        loaded = await Person.instance_with_primary_key(pk)
        assert loaded.exists_in_database
        assert (loaded.name, loaded.age, loaded.email, loaded.active, loaded.tags) == (
            "Ann", 34, "ann@example.com", False, {"x": [1, 2]},
        )
        loaded_note = await Note.instance_with_primary_key("n1")
        assert loaded_note.created == created

    @pytest.mark.asyncio
    async def test_update_writes_only_dirty_fields(self, store, executed):
        await seed_people(store)
        person = await Person.instance_with_primary_key(1)
        person.age = 35
        assert await person.save() is SaveResult.SUCCEEDED
        assert executed == ['UPDATE "people" SET "age" = ? WHERE "id" = ?']
        assert await Person.first_value_from_query("SELECT age FROM $T WHERE $PK = 1") == 35

    @pytest.mark.asyncio
    async def test_no_changes_issues_no_write(self, store, executed):
        await seed_people(store)
        person = await Person.instance_with_primary_key(1)
        assert await person.save() is SaveResult.NO_CHANGES
        person.name = "Other"
        person.name = "Ann"
        assert await person.save() is SaveResult.NO_CHANGES
        assert executed == []

    @pytest.mark.asyncio
    async def test_in_place_change_is_saved(self, store):
        person = Person(name="Ann", tags={"a": 1})
        await person.save()
        person.tags["b"] = 2
        assert await person.save() is SaveResult.SUCCEEDED
        assert await Person.first_value_from_query("SELECT tags FROM $T") == '{"a": 1, "b": 2}'

    @pytest.mark.asyncio
    async def test_new_instance_saves_without_edits(self, store):
        gadget = Gadget()
        assert await gadget.save() is SaveResult.SUCCEEDED
        row = (await Gadget.result_dicts_from_query("SELECT * FROM $T"))[0]
        assert row == {"id": gadget.id, "label": "gadget", "weight": 0.0}


class TestHooks:

    @pytest.mark.asyncio
    async def test_insert_hooks(self, store):
        gadget = Gadget(label="g", weight=1.5)
        assert await gadget.save() is SaveResult.SUCCEEDED
        assert gadget.calls == ["should_insert", "did_insert"]

    @pytest.mark.asyncio
    async def test_update_hooks(self, store):
        gadget = Gadget(label="g", weight=1.5)
        await gadget.save()
        gadget.weight = 2.0
        assert await gadget.save() is SaveResult.SUCCEEDED
        assert gadget.calls[2:] == ["should_update", "did_update"]

    @pytest.mark.asyncio
    async def test_refused_insert(self, store, executed):
        gadget = Gadget(label="g")
        gadget.allow = False
        assert await gadget.save() is SaveResult.REFUSED
        assert gadget.calls == ["should_insert", "save_was_refused"]
        assert not gadget.exists_in_database
        assert gadget.dirty_fields == {"label"}
        assert gadget.last_error is None
        assert executed == []

    @pytest.mark.asyncio
    async def test_refused_update_keeps_dirty_set(self, store, executed):
        gadget = Gadget(label="g")
        await gadget.save()
        gadget.allow = False
        gadget.label = "changed"
        assert await gadget.save() is SaveResult.REFUSED
        assert gadget.dirty_fields == {"label"}
        assert gadget.label == "changed"
        assert len(executed) == 1

    @pytest.mark.asyncio
    async def test_failed_insert(self, store):
        await seed_people(store)
        duplicate = Person(name="Copy", email="ann@example.com")
        assert await duplicate.save() is SaveResult.FAILED
        assert isinstance(duplicate.last_error, QueryFault)
        assert "UNIQUE" in duplicate.last_error.reason
        assert not duplicate.exists_in_database
        assert duplicate.primary_key is None
        assert duplicate.dirty_fields == {"name", "email"}

        duplicate.email = "copy@example.com"
        assert await duplicate.save() is SaveResult.SUCCEEDED
        assert duplicate.last_error is None

    @pytest.mark.asyncio
    async def test_failed_update_of_vanished_row(self, store):
        gadget = Gadget(label="g")
        await gadget.save()
        await store.database.execute("DELETE FROM gadgets")
        gadget.label = "changed"
        assert await gadget.save() is SaveResult.FAILED
        assert gadget.calls[-1] == "save_did_fail"
        assert "not found" in gadget.last_error.reason
        assert gadget.dirty_fields == {"label"}
        assert gadget.exists_in_database

    @pytest.mark.asyncio
    async def test_duplicate_instance_rejected(self, store):
        await seed_people(store)
        person = await Person.instance_with_primary_key(1)
        with pytest.raises(DuplicateInstanceFault):
            Person(id=1, name="Twin")
        assert store.cache.get(Person, 1) is person

    @pytest.mark.asyncio
    async def test_insert_over_live_key_fails_without_sql(self, store, executed):
        placeholder = await Person.instance_with_primary_key(7)
        assert not placeholder.exists_in_database
        other = Person(name="Other")
        other._values["id"] = 7
        assert await other.save() is SaveResult.FAILED
        assert isinstance(other.last_error, DuplicateInstanceFault)
        assert executed == []

    @pytest.mark.asyncio
    async def test_generated_key_skips_unsaved_placeholder(self, store):
        placeholder = await Person.instance_with_primary_key(1)
        person = Person(name="Zed")
        assert await person.save() is SaveResult.SUCCEEDED
        assert person.primary_key == 2
        assert store.cache.get(Person, 1) is placeholder
        assert store.cache.get(Person, 2) is person
        assert not placeholder.exists_in_database

        placeholder.name = "First"
        assert await placeholder.save() is SaveResult.SUCCEEDED
        assert await Person.first_column_from_query("SELECT name FROM $T ORDER BY $PK") == ["First", "Zed"]

    @pytest.mark.asyncio
    async def test_generated_key_above_rows_and_placeholders(self, store):
        await seed_people(store)
        placeholder = await Person.instance_with_primary_key(10)
        person = Person(name="Next")
        await person.save()
        assert person.primary_key == 11
        assert (await Person.instance_with_primary_key(11)) is person
        assert store.cache.get(Person, 10) is placeholder


# ============================================================================
# Delete
# ============================================================================


class TestDelete:

    @pytest.mark.asyncio
    async def test_delete(self, store):
        gadget = Gadget(label="g")
        await gadget.save()
        pk = gadget.id
        assert await gadget.delete() is SaveResult.SUCCEEDED
        assert not gadget.exists_in_database
        assert store.cache.get(Gadget, pk) is None
        assert gadget.calls[-2:] == ["should_delete", "did_delete"]
        assert await Gadget.first_value_from_query("SELECT COUNT(*) FROM $T") == 0

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, store, executed):
        gadget = Gadget(label="g")
        await gadget.save()
        await gadget.delete()
        assert await gadget.delete() is SaveResult.NO_CHANGES
        assert gadget.calls.count("should_delete") == 1
        assert sum(sql.startswith("DELETE") for sql in executed) == 1

    @pytest.mark.asyncio
    async def test_delete_unsaved(self, store, executed):
        gadget = Gadget(label="g")
        assert await gadget.delete() is SaveResult.NO_CHANGES
        assert "should_delete" not in gadget.calls
        assert executed == []

    @pytest.mark.asyncio
    async def test_refused_delete(self, store):
        gadget = Gadget(label="g")
        await gadget.save()
        gadget.allow = False
        assert await gadget.delete() is SaveResult.REFUSED
        assert gadget.exists_in_database
        assert store.cache.get(Gadget, gadget.id) is gadget
        assert gadget.calls[-1] == "save_was_refused"

    @pytest.mark.asyncio
    async def test_reinsert_after_delete(self, store):
        await seed_people(store)
        person = await Person.instance_with_primary_key(2)
        await person.delete()
        assert await person.save() is SaveResult.SUCCEEDED
        assert person.exists_in_database
        assert store.cache.get(Person, 2) is person


# ============================================================================
# Events
# ============================================================================


class TestEvents:

    @pytest.mark.asyncio
    async def test_insert_update_delete_events(self, store):
        seen = []
        for kind in (ModelEvent.INSERT, ModelEvent.UPDATE, ModelEvent.DELETE, ModelEvent.SAVE):
            store.events.connect(kind, lambda sender, instance, kind=kind, **kw: seen.append((kind, sender, kw)))

        person = Person(name="Ann")
        await person.save()
        person.name = "Bea"
        person.age = 3
        await person.save()
        await person.delete()

        assert seen == [
            (ModelEvent.INSERT, Person, {}),
            (ModelEvent.SAVE, Person, {"created": True}),
            (ModelEvent.UPDATE, Person, {"changed_fields": ["age", "name"]}),
            (ModelEvent.SAVE, Person, {"created": False}),
            (ModelEvent.DELETE, Person, {}),
        ]

    @pytest.mark.asyncio
    async def test_sender_filtered_subscription(self, store):
        seen = []
        store.events.connect(ModelEvent.INSERT, lambda sender, instance, **kw: seen.append(instance), sender=Note)
        await Person(name="Ann").save()
        note = Note(key="k")
        await note.save()
        assert seen == [note]

    @pytest.mark.asyncio
    async def test_failing_receiver_does_not_fail_save(self, store):
        def broken(sender, **kwargs):
            raise RuntimeError("listener bug")

        store.events.connect(ModelEvent.SAVE, broken)
        assert await Person(name="Ann").save() is SaveResult.SUCCEEDED

    @pytest.mark.asyncio
    async def test_no_events_for_refusals_and_failures(self, store):
        seen = []
        store.events.connect(ModelEvent.SAVE, lambda sender, **kw: seen.append(sender))
        gadget = Gadget()
        gadget.allow = False
        await gadget.save()
        await seed_people(store)
        await Person(email="ann@example.com").save()
        assert seen == []


# ============================================================================
# save_all
# ============================================================================


class TestSaveAll:

    @pytest.mark.asyncio
    async def test_scoped_to_type_and_subtypes(self, store):
        await seed_people(store)
        await seed_contacts(store)
        await store.database.execute(
            "INSERT INTO employees (id, name, title) VALUES (1, 'Eve', 'CTO')"
        )
        ann, ben = await Person.instances_with_primary_key_values([1, 2])
        eve = await Employee.instance_with_primary_key(1)
        alice = await Contact.instance_with_primary_key(1)
        ann.age = 1
        eve.title = "CEO"
        alice.city = "Nice"

        results = await Person.save_all()
        assert {(instance, result) for instance, result in results} == {
            (ann, SaveResult.SUCCEEDED),
            (eve, SaveResult.SUCCEEDED),
        }
        assert not ben.has_unsaved_changes
        assert alice.has_unsaved_changes

        results = await Model.save_all()
        assert results == [(alice, SaveResult.SUCCEEDED)]
        assert await Contact.first_value_from_query("SELECT city FROM $T WHERE $PK = 1") == "Nice"

    @pytest.mark.asyncio
    async def test_nothing_to_save(self, store):
        await seed_people(store)
        await Person.all_instances()
        assert await Model.save_all() == []
