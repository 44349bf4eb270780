"""
Tests for API routes.

Tests:
1. Entity CRUD with camelCase bodies and mirrored relationships
2. Validation failures map to 400, unknown ids to 404
3. Connections, reconcile, import/export
4. Graph snapshot / highlight / Arrow stream endpoints
"""
import io
import json
import struct

import polars as pl
import pytest
from starlette.testclient import TestClient

from api.routes import create_app


@pytest.fixture
def client(scenario_catalog):
    catalog, _ = scenario_catalog
    with TestClient(create_app(catalog)) as client:
        yield client


# =============================================================================
# HEALTH & STATS
# =============================================================================

def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_stats(client):
    data = client.get("/stats").json()

    assert data["personas"] == 3
    assert data["implementations"] == 2
    assert data["node_count"] == 9
    assert data["edge_count"] == 6
    assert data["component_count"] == 3


# =============================================================================
# ENTITY CRUD
# =============================================================================

def test_list_and_filter(client):
    assert len(client.get("/api/personas").json()) == 3

    matches = client.get("/api/useCases", params={"q": "invoice"}).json()
    assert [u["id"] for u in matches] == ["U1"]


def test_get_one_uses_camel_case(client):
    data = client.get("/api/useCases/U1").json()

    assert data["useCaseToolMappings"] == [{"useCaseId": "U1", "toolId": "T1"}]
    assert data["persona"] == "P1"


def test_unknown_collection_and_id(client):
    assert client.get("/api/widgets").status_code == 404
    assert client.get("/api/tools/nope").status_code == 404
    assert client.delete("/api/tools/nope").status_code == 404
    assert client.patch("/api/tools/nope", json={"name": "x"}).status_code == 404


def test_create_use_case_mirrors(client):
    response = client.post("/api/useCases", json={
        "action": "Approve invoice",
        "persona": "P2",
        "toolIds": ["T1"],
    })

    assert response.status_code == 201
    use_case_id = response.json()["id"]
    persona = client.get("/api/personas/P2").json()
    tool = client.get("/api/tools/T1").json()
    assert persona["personaUseCaseMappings"] == [{"useCaseId": use_case_id, "toolIds": ["T1"]}]
    assert {"useCaseId": use_case_id, "toolId": "T1"} in tool["useCaseToolMappings"]


def test_patch_reassigns_persona(client):
    response = client.patch("/api/useCases/U1", json={"persona": "P2"})

    assert response.status_code == 200
    assert client.get("/api/personas/P1").json()["personaUseCaseMappings"] == []
    assert client.get("/api/personas/P2").json()["personaUseCaseMappings"][0]["useCaseId"] == "U1"


def test_delete_cascades(client):
    response = client.delete("/api/tools/T1")

    assert response.status_code == 200
    assert client.get("/api/useCases/U1").json()["useCaseToolMappings"] == []
    assert all(i["toolId"] != "T1" for i in client.get("/api/implementations").json())


def test_invalid_bodies_are_400(client):
    assert client.post("/api/personas", content=b"{oops").status_code == 400
    assert client.post("/api/personas", json=["not", "an", "object"]).status_code == 400
    assert client.post("/api/personas", json={"colour": "red"}).status_code == 400
    assert client.post("/api/personas", json={"name": 42}).status_code == 400
    assert client.post("/api/personas", json={"toolIds": ["T1"]}).status_code == 400
    assert client.patch("/api/useCases/U1", json={"toolIds": "T1"}).status_code == 400


def test_relationship_attribute_without_target_is_400(client):
    response = client.post("/api/dataModels", json={
        "name": "Order",
        "attributes": [{"name": "customer", "type": "relationship"}],
    })

    assert response.status_code == 400
    assert "customer" in response.json()["error"]


def test_create_implementation(client):
    response = client.post("/api/implementations", json={"toolId": "T2", "dataModelId": "DM2"})
    assert response.status_code == 201

    missing = client.post("/api/implementations", json={"toolId": "T2", "dataModelId": "ghost"})
    assert missing.status_code == 404


def test_read_only_fields_are_ignored(client):
    response = client.patch("/api/tools/T1", json={"id": "other", "name": "Excel 365"})

    assert response.status_code == 200
    assert response.json()["id"] == "T1"
    assert response.json()["name"] == "Excel 365"


# =============================================================================
# CONNECTIONS, RECONCILE, IMPORT/EXPORT
# =============================================================================

def test_create_and_delete_connection(client):
    created = client.post("/api/connections", json={"source": "usecase_U2", "target": "tool_T1"})
    assert created.status_code == 201
    assert "T1" in [m["toolId"] for m in created.json()["useCaseToolMappings"]]

    deleted = client.delete("/api/connections", params={"edge_id": "usecase_U2_tool_T1"})
    assert deleted.status_code == 200
    assert client.delete("/api/connections", params={"edge_id": "usecase_U2_tool_T1"}).status_code == 404


def test_illegal_connection_is_400(client):
    response = client.post("/api/connections", json={"source": "persona_P1", "target": "tool_T1"})
    assert response.status_code == 400
    assert client.post("/api/connections", json={}).status_code == 400


def test_reconcile_endpoint(client, scenario_catalog):
    catalog, _ = scenario_catalog
    catalog.use_cases.update("U1", persona="P2")

    report = client.post("/api/reconcile").json()

    assert sorted(report["rewritten"]) == ["P1", "P2"]
    assert client.post("/api/reconcile").json()["rewritten"] == []


def test_export_then_import(client):
    exported = client.get("/api/export").content
    client.delete("/api/personas/P1")

    response = client.post("/api/import", content=exported)

    assert response.status_code == 200
    assert response.json()["personas"] == 3
    assert client.get("/api/personas/P1").status_code == 200


def test_import_rejects_garbage(client):
    assert client.post("/api/import", content=b"[]").status_code == 400
    assert client.post("/api/import", content=b'{"personas": ["ab"]}').status_code == 400


def test_import_with_repeated_id_keeps_catalog(client):
    response = client.post("/api/import", json={"personas": [{"id": "X"}, {"id": "X"}]})

    assert response.status_code == 400
    assert len(client.get("/api/personas").json()) == 3
    assert len(client.get("/api/useCases").json()) == 2
    assert len(client.get("/api/tools").json()) == 2


# =============================================================================
# GRAPH ENDPOINTS
# =============================================================================

def test_snapshot_with_search(client):
    data = client.get("/api/graph/snapshot", params={"q": "customer"}).json()

    assert data["mode"] == "searching"
    ids = {n["id"] for n in data["nodes"] if not n["append_for"]}
    assert ids == {"datamodel_DM1", "tool_T2", "usecase_U2", "persona_P3"}


def test_snapshot_with_highlight(client):
    data = client.get("/api/graph/snapshot", params={"highlight": "persona_P2"}).json()

    assert data["mode"] == "highlighted"
    assert [n["id"] for n in data["nodes"] if n["highlighted"]] == ["persona_P2"]


def test_highlight_endpoint(client):
    data = client.get("/api/graph/highlight/tool_T1").json()

    assert data["nodes"] == sorted(["persona_P1", "usecase_U1", "tool_T1", "datamodel_DM2"])
    assert len(data["edges"]) == 3
    assert client.get("/api/graph/highlight/add_tool").status_code == 404


def test_arrow_stream(client):
    response = client.get("/api/graph/stream")

    assert response.headers["content-type"] == "application/vnd.apache.arrow.stream"
    body = response.content
    (nodes_len,) = struct.unpack("<I", body[:4])
    nodes = pl.read_ipc(io.BytesIO(body[4:4 + nodes_len]))
    edges = pl.read_ipc(io.BytesIO(body[4 + nodes_len:]))
    assert nodes.height == 13
    assert edges.height == 6


def test_websocket_sends_snapshot(client):
    with client.websocket_connect("/api/graph/ws") as ws:
        first = ws.receive_json()
        assert first["type"] == "snapshot"
        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"type": "pong"}
