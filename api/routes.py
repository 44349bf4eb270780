"""
ARCHGRAPH API ROUTES - The HTTP Interface

RESTful API over the catalog using Starlette.

Endpoints:
- GET    /health                     - Health check
- GET    /stats                      - Catalog and graph statistics
- GET    /api/{entity}               - List records (?q= filters by text)
- POST   /api/{entity}               - Create a record
- GET    /api/{entity}/{id}          - Get one record
- PATCH  /api/{entity}/{id}          - Partial update
- DELETE /api/{entity}/{id}          - Delete with cascade
- POST   /api/connections            - Connect two graph nodes
- DELETE /api/connections            - Delete an edge by edge id
- POST   /api/reconcile              - Run a reconciliation pass
- GET    /api/export                 - Whole catalog document
- POST   /api/import                 - Replace the catalog with a document

    {entity} is one of personas, useCases, tools, dataModels, implementations.

Graph Endpoints:
- GET  /api/graph/snapshot           - View snapshot (?q=&filters=&highlight=)
- GET  /api/graph/stream             - Snapshot as Arrow IPC
- GET  /api/graph/highlight/{node}   - Component of one node
- WS   /api/graph/ws                 - Event stream

Design:
- Starlette routes for ASGI compatibility with Granian
- msgspec for JSON encoding and request validation
- All relationship work delegated to the synchronizer
"""
from starlette.applications import Starlette
from starlette.responses import JSONResponse, Response
from starlette.routing import Route, WebSocketRoute
from starlette.requests import Request
from starlette.websockets import WebSocket, WebSocketDisconnect
from typing import Optional, Dict, Any, List, Set, Tuple, Type
from pathlib import Path
import msgspec
import asyncio
import struct
import os
import logging

from core.ontology import EntityType, parse_node_id
from core.schemas import (
    Persona,
    UseCase,
    Tool,
    DataModel,
    DataModelImplementation,
    AttributeValidationError,
)
from core.stores import Catalog, DuplicateEntityError, EntityStore, get_catalog, set_catalog
from core.sync import RelationshipSynchronizer
from core.search import SearchFilters, entity_matches, normalize_query
from infrastructure.data_loader import (
    CatalogFileWriter,
    CatalogFormatError,
    decode_catalog,
    load_catalog,
)
from infrastructure.event_bus import GraphEvent, EventType
from viz.core import FlowGraphView, serialize_to_arrow


# =============================================================================
# LOGGING
# =============================================================================

logger = logging.getLogger("archgraph.api")


# =============================================================================
# GLOBAL STATE
# =============================================================================

IMPLEMENTATIONS = "implementations"

# Set by `main.py serve` for the server workers
CATALOG_ENV = "ARCHGRAPH_CATALOG"
PERSIST_ENV = "ARCHGRAPH_PERSIST"

# URL segment -> (entity type or None for implementations, record type)
ENTITY_PATHS: Dict[str, Tuple[Optional[EntityType], Type]] = {
    "personas": (EntityType.PERSONA, Persona),
    "useCases": (EntityType.USE_CASE, UseCase),
    "tools": (EntityType.TOOL, Tool),
    "dataModels": (EntityType.DATA_MODEL, DataModel),
    IMPLEMENTATIONS: (None, DataModelImplementation),
}

# Accepted on input, not record fields
_CONVENIENCE_FIELDS = {
    UseCase: {"toolIds": "tool_ids"},
    Tool: {"useCaseIds": "use_case_ids"},
}
_READ_ONLY_FIELDS = {"id", "createdAt", "updatedAt"}

# WebSocket connections for event streaming
_ws_connections: Set[WebSocket] = set()

_sync: Optional[RelationshipSynchronizer] = None


def get_sync() -> RelationshipSynchronizer:
    """Synchronizer bound to the shared catalog (rebuilt if the catalog changed)."""
    global _sync
    catalog = get_catalog()
    if _sync is None or _sync.catalog is not catalog:
        _sync = RelationshipSynchronizer(catalog)
    return _sync


def reset_state() -> None:
    """Drop cached state (for tests and catalog reloads)."""
    global _sync
    _sync = None
    _ws_connections.clear()


# =============================================================================
# RESPONSES
# =============================================================================

_json_encoder = msgspec.json.Encoder()


def json_response(data: Any, status_code: int = 200) -> Response:
    """Create JSON response using msgspec for speed."""
    return Response(
        content=_json_encoder.encode(data),
        status_code=status_code,
        media_type="application/json"
    )


def error_response(message: str, status_code: int = 400) -> JSONResponse:
    """Create error response."""
    return JSONResponse(
        {"error": message},
        status_code=status_code
    )


class RequestError(Exception):
    """A request that cannot be served; carries its HTTP status."""
    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


# =============================================================================
# REQUEST PARSING
# =============================================================================

async def _read_json(request: Request) -> Any:
    body = await request.body()
    if not body:
        return {}
    try:
        return msgspec.json.decode(body)
    except msgspec.DecodeError as e:
        raise RequestError(f"Invalid JSON: {e}")


def _resolve_entity(request: Request) -> Tuple[str, Optional[EntityType], Type]:
    segment = request.path_params["entity"]
    if segment not in ENTITY_PATHS:
        raise RequestError(f"Unknown entity collection: {segment}", 404)
    entity_type, record_type = ENTITY_PATHS[segment]
    return segment, entity_type, record_type


def _store(catalog: Catalog, entity_type: Optional[EntityType]) -> EntityStore:
    if entity_type is None:
        return catalog.implementations
    return catalog.store_for(entity_type)


def _parse_fields(record_type: Type, body: Any, base: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Validate a camelCase request body against a record type and return the
    supplied fields as snake_case keyword arguments.

    `base` is the current record (as builtins) for partial updates, so the
    merged result is what gets type-checked.
    """
    if not isinstance(body, dict):
        raise RequestError("Request body must be a JSON object")

    names = {f.encode_name: f.name for f in msgspec.structs.fields(record_type)}
    convenience = _CONVENIENCE_FIELDS.get(record_type, {})
    fields: Dict[str, Any] = {}
    for key, value in body.items():
        if key in _READ_ONLY_FIELDS:
            continue
        if key in convenience:
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                raise RequestError(f"{key} must be a list of ids")
            fields[convenience[key]] = value
        elif key in names:
            fields[names[key]] = value
        else:
            raise RequestError(f"Unknown field for {record_type.__name__}: {key}")

    candidate = dict(base or {"id": "pending"})
    candidate.update({k: v for k, v in body.items() if k in names and k not in _READ_ONLY_FIELDS})
    try:
        msgspec.convert(candidate, type=record_type)
    except msgspec.ValidationError as e:
        raise RequestError(f"Invalid {record_type.__name__}: {e}")
    return fields


def _parse_filters(raw: Optional[str]) -> SearchFilters:
    if not raw:
        return SearchFilters()
    return SearchFilters.only(raw.split(","))


def _request_view(request: Request) -> FlowGraphView:
    """A view configured from ?q=, ?filters= and ?highlight=."""
    view = FlowGraphView(get_catalog(), sync=get_sync())
    query = request.query_params.get("q", "")
    view.set_search(query, _parse_filters(request.query_params.get("filters")))
    highlight = request.query_params.get("highlight")
    if highlight:
        view.set_highlight(highlight)
    return view


# =============================================================================
# HEALTH & STATS
# =============================================================================

async def health(request: Request) -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse({
        "status": "healthy",
        "service": "archgraph",
        "version": "0.1.0"
    })


async def stats(request: Request) -> JSONResponse:
    """Get catalog statistics."""
    catalog = get_catalog()
    view = FlowGraphView(catalog, sync=get_sync())
    graph = view.graph
    return JSONResponse({
        "revision": catalog.revision,
        "personas": len(catalog.personas),
        "use_cases": len(catalog.use_cases),
        "tools": len(catalog.tools),
        "data_models": len(catalog.data_models),
        "implementations": len(catalog.implementations),
        "node_count": len(graph.nodes),
        "edge_count": len(graph.edges),
        "component_count": len(view.index.components()),
    })


# =============================================================================
# ENTITY OPERATIONS
# =============================================================================

async def list_entities(request: Request) -> Response:
    """
    List records of one collection.

    Query params:
        q: Optional text filter (same matching as graph search)
    """
    try:
        _, entity_type, _ = _resolve_entity(request)
    except RequestError as e:
        return error_response(e.message, e.status_code)

    records = _store(get_catalog(), entity_type).get_all()
    needle = normalize_query(request.query_params.get("q"))
    if needle and entity_type is not None:
        records = [r for r in records if entity_matches(entity_type, r, needle)]
    return json_response(records)


async def get_entity(request: Request) -> Response:
    try:
        segment, entity_type, _ = _resolve_entity(request)
    except RequestError as e:
        return error_response(e.message, e.status_code)

    entity_id = request.path_params["entity_id"]
    record = _store(get_catalog(), entity_type).get(entity_id)
    if record is None:
        return error_response(f"Not found in {segment}: {entity_id}", 404)
    return json_response(record)


async def create_entity(request: Request) -> Response:
    """
    Create a record. Relationship fields are mirrored onto the other side.

    Body: camelCase fields of the record; use cases also accept "toolIds",
    tools "useCaseIds". Implementations need "toolId" and "dataModelId".
    """
    try:
        segment, entity_type, record_type = _resolve_entity(request)
        body = await _read_json(request)
        if entity_type is None:
            fields = _parse_fields(record_type, body)
            if "tool_id" not in fields or "data_model_id" not in fields:
                raise RequestError("Implementations need toolId and dataModelId")
            record = get_sync().add_implementation(**fields)
            if record is None:
                raise RequestError("Tool or data model not found", 404)
        else:
            fields = _parse_fields(record_type, body)
            creators = {
                EntityType.PERSONA: get_sync().create_persona,
                EntityType.USE_CASE: get_sync().create_use_case,
                EntityType.TOOL: get_sync().create_tool,
                EntityType.DATA_MODEL: get_sync().create_data_model,
            }
            record = creators[entity_type](**fields)
    except RequestError as e:
        return error_response(e.message, e.status_code)
    except AttributeValidationError as e:
        return error_response(str(e), 400)

    logger.info(f"Created {segment} {record.id}")
    return json_response(record, 201)


async def update_entity(request: Request) -> Response:
    try:
        segment, entity_type, record_type = _resolve_entity(request)
        entity_id = request.path_params["entity_id"]
        current = _store(get_catalog(), entity_type).get(entity_id)
        if current is None:
            raise RequestError(f"Not found in {segment}: {entity_id}", 404)

        body = await _read_json(request)
        fields = _parse_fields(record_type, body, base=msgspec.to_builtins(current))
        updaters = {
            EntityType.PERSONA: get_sync().update_persona,
            EntityType.USE_CASE: get_sync().update_use_case,
            EntityType.TOOL: get_sync().update_tool,
            EntityType.DATA_MODEL: get_sync().update_data_model,
            None: get_sync().update_implementation,
        }
        record = updaters[entity_type](entity_id, **fields)
    except RequestError as e:
        return error_response(e.message, e.status_code)
    except AttributeValidationError as e:
        return error_response(str(e), 400)

    return json_response(record)


async def delete_entity(request: Request) -> Response:
    try:
        segment, entity_type, _ = _resolve_entity(request)
    except RequestError as e:
        return error_response(e.message, e.status_code)

    entity_id = request.path_params["entity_id"]
    if entity_type is None:
        record = get_sync().delete_implementation(entity_id)
    else:
        record = get_sync().delete_entity(entity_type, entity_id)
    if record is None:
        return error_response(f"Not found in {segment}: {entity_id}", 404)

    logger.info(f"Deleted {segment} {entity_id}")
    return JSONResponse({"deleted": entity_id, "collection": segment})


# =============================================================================
# CONNECTIONS & RECONCILIATION
# =============================================================================

async def create_connection(request: Request) -> Response:
    """
    Connect two graph nodes.

    Body: {"source": "usecase_u1", "target": "tool_t1"}
    """
    try:
        body = await _read_json(request)
    except RequestError as e:
        return error_response(e.message, e.status_code)
    source = body.get("source") if isinstance(body, dict) else None
    target = body.get("target") if isinstance(body, dict) else None
    if not source or not target:
        return error_response("Missing source or target", 400)

    view = FlowGraphView(get_catalog(), sync=get_sync())
    if not view.can_connect(source, target):
        return error_response(f"Illegal connection: {source} -> {target}", 400)
    record = view.connect(source, target)
    if record is None:
        return error_response(f"Endpoint not found: {source} -> {target}", 404)
    return json_response(record, 201)


async def delete_connection(request: Request) -> Response:
    """
    Delete an edge.

    Body: {"edgeId": "usecase_u1_tool_t1"} (or ?edge_id=)
    """
    edge_id = request.query_params.get("edge_id")
    if not edge_id:
        try:
            body = await _read_json(request)
        except RequestError as e:
            return error_response(e.message, e.status_code)
        edge_id = body.get("edgeId") if isinstance(body, dict) else None
    if not edge_id:
        return error_response("Missing edgeId", 400)

    view = FlowGraphView(get_catalog(), sync=get_sync())
    if not view.delete_edge(edge_id):
        return error_response(f"Edge not found: {edge_id}", 404)
    return JSONResponse({"deleted": edge_id})


async def reconcile(request: Request) -> Response:
    report = get_sync().reconcile()
    return json_response(report)


async def export_catalog(request: Request) -> Response:
    return json_response(get_catalog().to_document())


async def import_catalog(request: Request) -> Response:
    """Replace the catalog contents with a posted document, then reconcile."""
    try:
        document = decode_catalog(await request.body(), "request body")
    except CatalogFormatError as e:
        return error_response(str(e), 400)

    catalog = get_catalog()
    try:
        catalog.load_document(document)
    except DuplicateEntityError as e:
        return error_response(str(e), 400)
    report = get_sync().reconcile()
    return JSONResponse({
        "personas": len(document.personas),
        "use_cases": len(document.use_cases),
        "tools": len(document.tools),
        "data_models": len(document.data_models),
        "implementations": len(document.implementations),
        "reconciled": list(report.rewritten),
    })


# =============================================================================
# GRAPH ENDPOINTS
# =============================================================================

async def graph_snapshot(request: Request) -> JSONResponse:
    """
    View snapshot.

    Query params:
        q: Search query
        filters: Comma-separated types to search (personas,useCases,tools,dataModels)
        highlight: Node id to highlight (ignored while searching)
    """
    return JSONResponse(_request_view(request).snapshot().to_dict())


async def graph_stream(request: Request) -> Response:
    """
    Snapshot as Apache Arrow IPC.

    Query params: as for /api/graph/snapshot, plus
        format: "nodes" | "edges" | "both" (default: "both"; nodes length-prefixed)
    """
    snapshot = _request_view(request).snapshot()
    nodes_bytes, edges_bytes = serialize_to_arrow(snapshot)
    format_type = request.query_params.get("format", "both")

    if format_type == "nodes":
        return Response(
            content=nodes_bytes,
            media_type="application/vnd.apache.arrow.stream",
            headers={"Content-Disposition": "attachment; filename=nodes.arrow"}
        )
    elif format_type == "edges":
        return Response(
            content=edges_bytes,
            media_type="application/vnd.apache.arrow.stream",
            headers={"Content-Disposition": "attachment; filename=edges.arrow"}
        )
    combined = struct.pack("<I", len(nodes_bytes)) + nodes_bytes + edges_bytes
    return Response(
        content=combined,
        media_type="application/vnd.apache.arrow.stream",
        headers={"Content-Disposition": "attachment; filename=graph.arrow"}
    )


async def graph_highlight(request: Request) -> JSONResponse:
    """
    GET /api/graph/highlight/{node_id}

    Response:
    {
        "node_id": str,
        "nodes": List[str],            # the weakly-connected component
        "edges": List[str]             # edges inside it
    }
    """
    node_id = request.path_params["node_id"]
    view = FlowGraphView(get_catalog(), sync=get_sync())
    if parse_node_id(node_id) is None or not view.graph.has_node(node_id):
        return error_response(f"Node not found: {node_id}", 404)

    component = view.index.component_of(node_id)
    edges = [e.id for e in view.graph.edges if e.source in component and e.target in component]
    return JSONResponse({
        "node_id": node_id,
        "nodes": sorted(component),
        "edges": edges,
    })


# =============================================================================
# WEBSOCKET
# =============================================================================

async def graph_websocket(websocket: WebSocket) -> None:
    """
    Event stream for the presentation layer.

    Protocol:
    1. Client connects, server sends a snapshot
    2. Server forwards catalog and interaction events
    3. Client may send {"type": "ping"}
    """
    await websocket.accept()
    _ws_connections.add(websocket)

    try:
        view = FlowGraphView(get_catalog(), sync=get_sync())
        await websocket.send_json({
            "type": "snapshot",
            "data": view.snapshot().to_dict()
        })

        while True:
            try:
                data = await asyncio.wait_for(websocket.receive_json(), timeout=30.0)
                if isinstance(data, dict) and data.get("type") == "ping":
                    await websocket.send_json({"type": "pong"})
            except asyncio.TimeoutError:
                await websocket.send_json({"type": "heartbeat"})

    except WebSocketDisconnect:
        pass
    finally:
        _ws_connections.discard(websocket)


async def broadcast_graph_event(event: GraphEvent) -> None:
    """Forward an event bus event to every connected client."""
    if not _ws_connections:
        return

    message = {
        "type": "event",
        "event": event.type.value,
        "payload": event.payload,
        "source": event.source,
        "timestamp": event.timestamp,
    }
    dead = set()
    for ws in list(_ws_connections):
        try:
            await ws.send_json(message)
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.debug(f"Dropping websocket: {e}")
            dead.add(ws)
    _ws_connections.difference_update(dead)


# =============================================================================
# APPLICATION
# =============================================================================

BROADCAST_EVENTS = (
    EventType.ENTITY_CREATED,
    EventType.ENTITY_UPDATED,
    EventType.ENTITY_DELETED,
    EventType.CATALOG_RECONCILED,
    EventType.CONNECTION_CREATED,
    EventType.CONNECTION_DELETED,
)


def create_routes() -> List[Route]:
    """Create HTTP routes. Fixed paths come before /api/{entity}."""
    return [
        Route("/health", health, methods=["GET"]),
        Route("/stats", stats, methods=["GET"]),

        Route("/api/connections", create_connection, methods=["POST"]),
        Route("/api/connections", delete_connection, methods=["DELETE"]),
        Route("/api/reconcile", reconcile, methods=["POST"]),
        Route("/api/export", export_catalog, methods=["GET"]),
        Route("/api/import", import_catalog, methods=["POST"]),

        Route("/api/graph/snapshot", graph_snapshot, methods=["GET"]),
        Route("/api/graph/stream", graph_stream, methods=["GET"]),
        Route("/api/graph/highlight/{node_id}", graph_highlight, methods=["GET"]),

        Route("/api/{entity}", list_entities, methods=["GET"]),
        Route("/api/{entity}", create_entity, methods=["POST"]),
        Route("/api/{entity}/{entity_id}", get_entity, methods=["GET"]),
        Route("/api/{entity}/{entity_id}", update_entity, methods=["PATCH"]),
        Route("/api/{entity}/{entity_id}", delete_entity, methods=["DELETE"]),
    ]


def create_websocket_routes() -> List[WebSocketRoute]:
    """Create WebSocket routes."""
    return [
        WebSocketRoute("/api/graph/ws", graph_websocket),
    ]


def catalog_from_environment() -> Optional[Catalog]:
    """
    Catalog named by ARCHGRAPH_CATALOG, for server workers started by `main.py serve`.

    With ARCHGRAPH_PERSIST=1 every write rewrites the file.
    """
    path = os.environ.get(CATALOG_ENV)
    if not path:
        return None
    catalog = Catalog()
    if Path(path).exists():
        load_catalog(path, catalog)
    else:
        logger.info(f"Catalog {path} does not exist yet, starting empty")
    if os.environ.get(PERSIST_ENV) == "1":
        catalog.set_persist(CatalogFileWriter(path).bind(catalog).persist)
    return catalog


def create_app(catalog: Optional[Catalog] = None) -> Starlette:
    """Create the Starlette application, optionally over a given catalog."""
    from starlette.middleware import Middleware
    from starlette.middleware.cors import CORSMiddleware

    if catalog is None:
        catalog = catalog_from_environment()
    if catalog is not None:
        set_catalog(catalog)
    reset_state()

    # CORS middleware for frontend access
    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=["http://localhost:3000", "http://localhost:5173", "http://127.0.0.1:3000", "http://127.0.0.1:5173"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    ]

    app = Starlette(
        routes=create_routes() + create_websocket_routes(),
        middleware=middleware,
        debug=False,
    )

    event_bus = get_catalog().event_bus
    for event_type in BROADCAST_EVENTS:
        event_bus.subscribe_async(event_type, broadcast_graph_event)
    logger.info("Subscribed to catalog events for WebSocket broadcasting")

    return app


# Module-level app for Granian (api.routes:app)
app = create_app()
