"""
Unit tests for infrastructure/data_loader.py - catalog import/export
"""
import asyncio
import json
import time

import pytest

from core.stores import Catalog
from infrastructure.data_loader import (
    CatalogFileWriter,
    CatalogFormatError,
    DataLoadError,
    decode_catalog,
    load_catalog,
    migrate_data_model,
    migrate_persona,
    migrate_use_case,
    save_catalog,
)


# =============================================================================
# MIGRATION
# =============================================================================

def test_persona_legacy_tool_mappings_are_folded():
    record = migrate_persona({
        "id": "P1",
        "useCaseToolMappings": [
            {"useCaseId": "U1", "toolId": "T1"},
            {"useCaseId": "U1", "toolId": "T2"},
            {"useCaseId": "U2", "toolId": "T1"},
        ],
    })

    assert record["personaUseCaseMappings"] == [
        {"useCaseId": "U1", "toolIds": ["T1", "T2"]},
        {"useCaseId": "U2", "toolIds": ["T1"]},
    ]
    assert "useCaseToolMappings" not in record


def test_persona_use_case_ids_become_mappings():
    record = migrate_persona({"id": "P1", "useCaseIds": ["U1"]})
    assert record["personaUseCaseMappings"] == [{"useCaseId": "U1", "toolIds": []}]


def test_use_case_legacy_fields():
    record = migrate_use_case({"id": "U1", "name": "Review invoice", "toolIds": ["T1"]})

    assert record["action"] == "Review invoice"
    assert record["persona"] == ""
    assert record["goal"] == ""
    assert record["useCaseToolMappings"] == [{"useCaseId": "U1", "toolId": "T1"}]


def test_data_model_relationships_become_attributes():
    record = migrate_data_model({
        "id": "DM1",
        "version": "2",
        "attributes": [{"name": "email", "type": "string"}],
        "relationships": [{"name": "orders", "targetDataModelId": "DM2", "relationshipType": "one-to-many"}],
    })

    assert "version" not in record
    assert record["attributes"][1]["type"] == "relationship"
    assert record["attributes"][1]["targetDataModelId"] == "DM2"


# =============================================================================
# DECODE / LOAD / SAVE
# =============================================================================

def test_decode_rejects_non_documents():
    with pytest.raises(CatalogFormatError):
        decode_catalog(b"not json")
    with pytest.raises(CatalogFormatError):
        decode_catalog(b"[1, 2]")
    with pytest.raises(CatalogFormatError):
        decode_catalog(b'{"personas": [{"name": "no id"}]}')


def test_load_reconciles_by_default(tmp_path):
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps({
        "personas": [{"id": "P1", "name": "Alice"}],
        "useCases": [{"id": "U1", "action": "Review invoice", "persona": "P1", "toolIds": ["T1"]}],
        "tools": [{"id": "T1", "name": "Excel", "useCaseToolMappings": [{"useCaseId": "U1", "toolId": "T1"}]}],
    }))

    catalog = load_catalog(path)

    mapping = catalog.personas.get("P1").mapping_for("U1")
    assert mapping is not None
    assert mapping.tool_ids == ("T1",)


def test_load_without_reconcile_keeps_drift(tmp_path):
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps({
        "personas": [{"id": "P1", "name": "Alice"}],
        "useCases": [{"id": "U1", "action": "Review invoice", "persona": "P1"}],
    }))

    catalog = load_catalog(path, reconcile=False)

    assert catalog.personas.get("P1").persona_use_case_mappings == ()


def test_load_missing_file(tmp_path):
    with pytest.raises(DataLoadError):
        load_catalog(tmp_path / "missing.json")


def test_save_then_load(scenario_catalog, tmp_path):
    catalog, _ = scenario_catalog
    path = save_catalog(catalog, tmp_path / "nested" / "catalog.json")

    loaded = load_catalog(path, Catalog())

    assert loaded.to_document() == catalog.to_document()
    assert json.loads(path.read_text())["useCases"][0]["useCaseToolMappings"]


def test_file_writer_coalesces_writes(tmp_path):
    path = tmp_path / "catalog.json"
    writer = CatalogFileWriter(path)
    catalog = Catalog(persist=writer.persist)
    writer.bind(catalog)

    async def scenario():
        catalog.personas.create(id="P1", name="Alice")
        catalog.personas.create(id="P2", name="Bob")
        # Let the scheduled persist tasks and the worker thread finish
        for _ in range(20):
            await asyncio.sleep(0.01)

    asyncio.run(scenario())

    saved = json.loads(path.read_text())
    assert [p["id"] for p in saved["personas"]] == ["P1", "P2"]


def test_decode_rejects_records_that_are_not_objects():
    with pytest.raises(CatalogFormatError, match=r"personas\[0\]"):
        decode_catalog(b'{"personas": ["ab"]}')
    with pytest.raises(CatalogFormatError):
        decode_catalog(b'{"tools": [1]}')
    with pytest.raises(CatalogFormatError):
        decode_catalog(b'{"useCases": {"id": "U1"}}')


def test_decode_rejects_repeated_ids():
    with pytest.raises(CatalogFormatError, match="duplicate id 'X'"):
        decode_catalog(b'{"personas": [{"id": "X"}, {"id": "X"}]}')


def test_same_id_in_different_collections_is_fine():
    document = decode_catalog(b'{"personas": [{"id": "X"}], "tools": [{"id": "X"}]}')
    assert document.personas[0].id == document.tools[0].id == "X"


def test_failed_load_keeps_existing_catalog(scenario_catalog, tmp_path):
    catalog, _ = scenario_catalog
    before = catalog.to_document()
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps({"personas": [{"id": "X"}, {"id": "X"}]}))

    with pytest.raises(CatalogFormatError):
        load_catalog(path, catalog)

    assert catalog.to_document() == before


def test_file_writer_never_lets_an_older_snapshot_win(tmp_path):
    path = tmp_path / "catalog.json"
    writer = CatalogFileWriter(path)
    catalog = Catalog(persist=writer.persist)
    writer.bind(catalog)
    written = []

    def slow_first_write(data):
        # The first snapshot takes longest to reach disk
        if not written:
            time.sleep(0.1)
        written.append(data)
        path.write_bytes(data)

    writer._write = slow_first_write

    async def scenario():
        catalog.personas.create(id="P1", name="Alice")
        await asyncio.sleep(0.02)
        catalog.personas.create(id="P2", name="Bob")
        for _ in range(30):
            await asyncio.sleep(0.01)

    asyncio.run(scenario())

    assert len(written) == 2
    saved = json.loads(path.read_text())
    assert [p["id"] for p in saved["personas"]] == ["P1", "P2"]
