"""
ARCHGRAPH MAIN - Entry Point and CLI

Commands:
    serve     - Start the API server over a catalog file
    reconcile - Repair persona mappings from use case assignments
    layout    - Print the layered layout (node positions per column)
    search    - Show which nodes a search keeps visible
    export    - Write the catalog (JSON) or its graph snapshot (Arrow IPC)

Usage:
    # Serve a catalog, rewriting the file after every change
    python main.py --catalog data/catalog.json serve --persist

    # Reconcile and save the result back
    python main.py --catalog data/catalog.json reconcile --write

    # Positions as JSON
    python main.py --catalog data/catalog.json layout --json

    # Search only use cases and tools
    python main.py --catalog data/catalog.json search invoice --filters useCases,tools

    # Snapshot as Arrow for notebooks
    python main.py --catalog data/catalog.json export --format arrow -o ./export
"""
import sys
import os
import logging
from pathlib import Path

import msgspec

# Add archgraph to path for imports
sys.path.insert(0, str(Path(__file__).parent))

logger = logging.getLogger("archgraph.cli")

DEFAULT_CATALOG = "./data/catalog.json"


def _load(args, reconcile=None):
    """Load the --catalog file, exiting with a message when it is unusable."""
    from infrastructure.data_loader import DataLoadError, load_catalog

    try:
        return load_catalog(args.catalog, reconcile=reconcile)
    except DataLoadError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


def run_server(host: str, port: int, workers: int, reload: bool):
    """Run the API server with Granian."""
    from granian import Granian
    from granian.constants import Interfaces

    print(f"Starting Archgraph API server on {host}:{port}")
    print("Press Ctrl+C to stop")

    granian = Granian(
        target="api.routes:app",
        address=host,
        port=port,
        interface=Interfaces.ASGI,
        workers=workers,
        reload=reload,
    )

    granian.serve()


def cmd_serve(args):
    """Handle serve command."""
    from api.routes import CATALOG_ENV, PERSIST_ENV

    # Workers are separate interpreters; they pick the catalog up from the environment
    os.environ[CATALOG_ENV] = str(Path(args.catalog).resolve())
    os.environ[PERSIST_ENV] = "1" if args.persist else "0"

    if args.persist and args.workers > 1:
        print("Warning: --persist with several workers gives each worker its own catalog copy")

    if args.prod:
        run_server(args.host, args.port, args.workers, reload=False)
    else:
        run_server(args.host, args.port, 1, reload=True)


def cmd_reconcile(args):
    """Handle reconcile command."""
    from core.sync import RelationshipSynchronizer
    from infrastructure.data_loader import DataLoadError, save_catalog

    catalog = _load(args, reconcile=False)
    report = RelationshipSynchronizer(catalog).reconcile()

    if not report.changed:
        print(f"Catalog is consistent ({report.personas_checked} personas checked)")
        return

    print(f"Rewrote {len(report.rewritten)} of {report.personas_checked} personas:")
    for persona_id in report.rewritten:
        persona = catalog.personas.get(persona_id)
        print(f"  {persona_id}  {persona.name if persona else ''}")

    if args.write:
        try:
            save_catalog(catalog, args.catalog)
        except DataLoadError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
        print(f"Saved {args.catalog}")


def cmd_layout(args):
    """Handle layout command."""
    from core.graph_builder import build_graph, node_label
    from core.layout import compute_layout
    from core.ontology import LAYER_ORDER

    catalog = _load(args)
    graph = build_graph(catalog)
    layout = compute_layout(graph)

    if args.json:
        positions = {**layout.positions, **layout.append_positions}
        print(msgspec.json.encode(positions).decode())
        return

    for entity_type in LAYER_ORDER:
        print(f"[{entity_type.value}]")
        for node_id in layout.order.get(entity_type, []):
            position = layout.positions[node_id]
            node = graph.get_node(node_id)
            print(f"  {position.order:>3}  ({position.x:>6.0f}, {position.y:>6.0f})  {node_label(node.entity_type, node.entity)}")
        for append in graph.append_nodes:
            if append.entity_type == entity_type:
                position = layout.append_positions[append.id]
                print(f"       ({position.x:>6.0f}, {position.y:>6.0f})  +")


def cmd_search(args):
    """Handle search command."""
    from core.search import SearchFilters
    from viz.core import FlowGraphView

    catalog = _load(args)
    view = FlowGraphView(catalog)
    filters = SearchFilters.only(args.filters.split(",")) if args.filters else SearchFilters()
    view.set_search(args.query, filters)
    snapshot = view.snapshot()

    print(f"{snapshot.matching_count} matching, {snapshot.node_count} visible")
    for node in snapshot.nodes:
        if node.append_for:
            continue
        marker = "*" if node.matched else " "
        print(f"  {marker} {node.id:<48} {node.label}")


def cmd_export(args):
    """Handle export command - catalog document or graph snapshot."""
    from infrastructure.data_loader import DataLoadError, save_catalog
    from viz.core import FlowGraphView, serialize_to_arrow

    catalog = _load(args)
    output_dir = Path(args.output)
    output_dir.mkdir(parents=True, exist_ok=True)

    if args.format == "json":
        try:
            path = save_catalog(catalog, output_dir / "catalog.json")
        except DataLoadError as e:
            print(f"Export failed: {e}", file=sys.stderr)
            sys.exit(1)
        print(f"Exported catalog to {path}")
        return

    snapshot = FlowGraphView(catalog).snapshot()
    nodes_bytes, edges_bytes = serialize_to_arrow(snapshot)
    nodes_path = output_dir / "nodes.arrow"
    edges_path = output_dir / "edges.arrow"
    nodes_path.write_bytes(nodes_bytes)
    edges_path.write_bytes(edges_bytes)
    print(f"Exported {snapshot.node_count} nodes, {snapshot.edge_count} edges")
    print(f"  Nodes: {nodes_path}")
    print(f"  Edges: {edges_path}")


def main():
    """Main entry point with subcommands."""
    import argparse
    from infrastructure.config import configure_logging, get_config, load_toml_config, parse_config, set_config

    parser = argparse.ArgumentParser(
        description="Archgraph - Layered architecture catalog graph",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--catalog", default=DEFAULT_CATALOG, help="Catalog JSON file")
    parser.add_argument("--config", help="Path to an alternative archgraph.toml")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Start API server")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    serve_parser.add_argument("--workers", type=int, default=1, help="Number of workers (prod)")
    serve_parser.add_argument("--prod", action="store_true", help="Run in production mode")
    serve_parser.add_argument("--persist", action="store_true", help="Rewrite the catalog file after changes")
    serve_parser.set_defaults(func=cmd_serve)

    # reconcile command
    reconcile_parser = subparsers.add_parser("reconcile", help="Repair persona mappings")
    reconcile_parser.add_argument("--write", action="store_true", help="Save the reconciled catalog")
    reconcile_parser.set_defaults(func=cmd_reconcile)

    # layout command
    layout_parser = subparsers.add_parser("layout", help="Print node positions")
    layout_parser.add_argument("--json", action="store_true", help="Print positions as JSON")
    layout_parser.set_defaults(func=cmd_layout)

    # search command
    search_parser = subparsers.add_parser("search", help="Search the graph")
    search_parser.add_argument("query", help="Case-insensitive text")
    search_parser.add_argument("--filters", help="Comma-separated types: personas,useCases,tools,dataModels")
    search_parser.set_defaults(func=cmd_search)

    # export command
    export_parser = subparsers.add_parser("export", help="Export catalog or graph")
    export_parser.add_argument("--output", "-o", default="./export", help="Output directory")
    export_parser.add_argument("--format", choices=["json", "arrow"], default="json")
    export_parser.set_defaults(func=cmd_export)

    args = parser.parse_args()

    if args.config:
        set_config(parse_config(load_toml_config(Path(args.config))))
    configure_logging(get_config())

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    args.func(args)


if __name__ == "__main__":
    main()
