"""
Unit tests for core/stores.py - EntityStore and Catalog
"""
import asyncio

import pytest

from core.ontology import EntityType
from core.schemas import Persona, CatalogDocument
from core.stores import Catalog, DuplicateEntityError, EntityStore
from infrastructure.event_bus import EventBus, EventType


# =============================================================================
# ENTITY STORE
# =============================================================================

def test_create_assigns_id_and_timestamps():
    store = EntityStore(Persona, "persona")

    alice = store.create(name="Alice")

    assert alice.id
    assert alice.created_at == alice.updated_at
    assert store.get(alice.id) == alice
    assert store.revision == 1


def test_get_all_keeps_insertion_order():
    store = EntityStore(Persona, "persona")
    for name in ("c", "a", "b"):
        store.create(id=name, name=name)

    assert [p.id for p in store.get_all()] == ["c", "a", "b"]
    assert store.ids() == ["c", "a", "b"]


def test_update_replaces_supplied_fields_only():
    store = EntityStore(Persona, "persona")
    alice = store.create(id="P1", name="Alice", description="Clerk")

    updated = store.update("P1", description="Senior clerk", id="other", created_at="x")

    assert updated.name == "Alice"
    assert updated.description == "Senior clerk"
    assert updated.id == "P1"
    assert updated.created_at == alice.created_at


def test_missing_ids_are_noops():
    store = EntityStore(Persona, "persona")

    assert store.update("nope", name="x") is None
    assert store.delete("nope") is None
    assert store.get("") is None
    assert store.revision == 0


def test_duplicate_add_raises():
    store = EntityStore(Persona, "persona")
    store.create(id="P1", name="Alice")

    with pytest.raises(DuplicateEntityError):
        store.add(Persona(id="P1", name="Again"))


def test_subscribers_receive_snapshots():
    store = EntityStore(Persona, "persona")
    snapshots = []
    store.subscribe(snapshots.append)

    store.create(id="P1", name="Alice")
    store.delete("P1")

    assert [len(s) for s in snapshots] == [1, 0]


def test_subscriber_errors_do_not_propagate():
    store = EntityStore(Persona, "persona")

    def broken(snapshot):
        raise RuntimeError("boom")

    store.subscribe(broken)
    store.create(id="P1", name="Alice")

    assert "P1" in store


def test_sync_persist_hook_called_and_errors_swallowed():
    calls = []

    def persist(operation, store_name, record, entity_id):
        calls.append((operation, store_name, entity_id))
        raise OSError("disk full")

    store = EntityStore(Persona, "persona", persist=persist)
    store.create(id="P1", name="Alice")
    store.update("P1", name="Alicia")

    assert calls == [("create", "persona", "P1"), ("update", "persona", "P1")]


def test_async_persist_hook_is_fire_and_forget():
    """Writes return before the coroutine hook has run."""
    seen = []

    async def persist(operation, store_name, record, entity_id):
        seen.append(entity_id)

    async def scenario():
        store = EntityStore(Persona, "persona", persist=persist)
        store.create(id="P1", name="Alice")
        assert seen == []
        await asyncio.sleep(0)
        return seen

    assert asyncio.run(scenario()) == ["P1"]


def test_writes_publish_events():
    bus = EventBus()
    received = []
    for event_type in (EventType.ENTITY_CREATED, EventType.ENTITY_UPDATED, EventType.ENTITY_DELETED):
        bus.subscribe(event_type, received.append)
    store = EntityStore(Persona, "persona", event_bus=bus)

    store.create(id="P1", name="Alice")
    store.update("P1", name="Alicia")
    store.delete("P1")

    assert [e.type for e in received] == [
        EventType.ENTITY_CREATED, EventType.ENTITY_UPDATED, EventType.ENTITY_DELETED,
    ]
    assert received[0].payload == {"type": "persona", "id": "P1"}


# =============================================================================
# CATALOG
# =============================================================================

def test_catalog_revision_sums_stores():
    catalog = Catalog()
    catalog.personas.create(name="Alice")
    catalog.tools.create(name="Excel")

    assert catalog.revision == 2
    assert catalog.store_for(EntityType.TOOL) is catalog.tools
    assert catalog.store_for("dataModel") is catalog.data_models


def test_document_round_trip_through_catalog(scenario_catalog):
    catalog, _ = scenario_catalog
    document = catalog.to_document()

    copy = Catalog()
    copy.load_document(document)

    assert copy.to_document() == document
    assert isinstance(document, CatalogDocument)


def test_load_document_replaces_contents():
    catalog = Catalog()
    catalog.personas.create(id="old", name="Old")

    catalog.load_document(CatalogDocument(personas=[Persona(id="P1", name="Alice")]))

    assert catalog.personas.ids() == ["P1"]


def test_load_document_with_repeated_id_changes_nothing(scenario_catalog):
    catalog, _ = scenario_catalog
    before = catalog.to_document()
    document = CatalogDocument(personas=[Persona(id="X", name="One"), Persona(id="X", name="Two")])

    with pytest.raises(DuplicateEntityError):
        catalog.load_document(document)

    assert catalog.to_document() == before


def test_set_persist_attaches_hook_everywhere():
    calls = []
    catalog = Catalog()
    catalog.set_persist(lambda op, store, record, entity_id: calls.append(store))

    catalog.tools.create(name="Excel")
    catalog.implementations.create(tool_id="T1", data_model_id="DM1")

    assert calls == ["tool", "implementation"]
