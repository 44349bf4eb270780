"""
ARCHGRAPH DATA LOADER - Catalog Import and Export

A catalog file is one JSON document:

    {"personas": [...], "useCases": [...], "tools": [...],
     "dataModels": [...], "implementations": [...]}

Records written by older versions are migrated on load:
- Persona: useCaseToolMappings / useCaseIds -> personaUseCaseMappings
- UseCase: toolIds -> useCaseToolMappings, name -> action, blank persona/goal
- DataModel: relationships -> relationship attributes, version dropped

After loading, the catalog is reconciled (UseCase.persona wins) unless the
[sync] reconcile_on_load setting is off.
"""
import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import msgspec

from core.schemas import CatalogDocument, serialize_document
from core.stores import Catalog, DuplicateEntityError
from core.sync import RelationshipSynchronizer
from infrastructure.config import get_config


logger = logging.getLogger("archgraph.loader")


# =============================================================================
# ERRORS
# =============================================================================

class DataLoadError(Exception):
    """Base exception for data loading errors."""
    pass


class CatalogFormatError(DataLoadError):
    """Raised when a file is not a catalog document."""
    def __init__(self, source: str, detail: str):
        self.source = source
        self.detail = detail
        super().__init__(f"Invalid catalog document {source}: {detail}")


# =============================================================================
# LEGACY MIGRATION
# =============================================================================

def migrate_persona(raw: Dict[str, Any]) -> Dict[str, Any]:
    record = dict(raw)
    mappings = record.get("personaUseCaseMappings")
    legacy = record.pop("useCaseToolMappings", None)
    use_case_ids = record.pop("useCaseIds", None)

    if not mappings and legacy:
        # Old entries were {useCaseId, toolId}; fold them per use case
        merged: Dict[str, List[str]] = {}
        for entry in legacy:
            use_case_id = entry.get("useCaseId")
            if not use_case_id:
                continue
            tool_ids = merged.setdefault(use_case_id, [])
            for tool_id in entry.get("toolIds") or ([entry["toolId"]] if entry.get("toolId") else []):
                if tool_id not in tool_ids:
                    tool_ids.append(tool_id)
        mappings = [{"useCaseId": u, "toolIds": t} for u, t in merged.items()]

    if not mappings and use_case_ids:
        mappings = [{"useCaseId": u, "toolIds": []} for u in use_case_ids]

    record["personaUseCaseMappings"] = mappings or []
    return record


def migrate_use_case(raw: Dict[str, Any]) -> Dict[str, Any]:
    record = dict(raw)
    mappings = record.get("useCaseToolMappings") or []
    tool_ids = record.pop("toolIds", None)
    if tool_ids and not mappings:
        mappings = [{"useCaseId": record.get("id"), "toolId": t} for t in tool_ids]
    # Stamp the owner into every mapping
    record["useCaseToolMappings"] = [
        {**m, "useCaseId": record.get("id")} for m in mappings
    ]
    record["action"] = record.get("action") or record.get("name") or ""
    record["persona"] = record.get("persona") or ""
    record["goal"] = record.get("goal") or ""
    return record


def migrate_data_model(raw: Dict[str, Any]) -> Dict[str, Any]:
    record = dict(raw)
    record.pop("version", None)
    attributes = list(record.get("attributes") or [])
    for rel in record.pop("relationships", None) or []:
        attribute = {
            "name": rel.get("name", ""),
            "type": "relationship",
            "description": rel.get("description"),
            "required": bool(rel.get("required", False)),
            "targetDataModelId": rel.get("targetDataModelId"),
            "relationshipType": rel.get("relationshipType"),
        }
        if rel.get("id"):
            attribute["id"] = rel["id"]
        attributes.append(attribute)
    record["attributes"] = attributes
    return record


DOCUMENT_SECTIONS = ("personas", "useCases", "tools", "dataModels", "implementations")

_MIGRATIONS = {
    "personas": migrate_persona,
    "useCases": migrate_use_case,
    "dataModels": migrate_data_model,
}


def migrate_document(raw: Dict[str, Any], source: str = "<document>") -> Dict[str, Any]:
    """
    Bring every record of a raw document up to the current format.

    Raises:
        CatalogFormatError: A section is not a list, a record is not an
            object, or an id repeats within a section
    """
    document = {}
    for section in DOCUMENT_SECTIONS:
        records = raw.get(section) or []
        if not isinstance(records, list):
            raise CatalogFormatError(source, f"{section} must be a list")

        migrate = _MIGRATIONS.get(section, dict)
        migrated = []
        seen = set()
        for index, record in enumerate(records):
            if not isinstance(record, dict):
                raise CatalogFormatError(source, f"{section}[{index}] must be an object")
            record_id = record.get("id")
            if isinstance(record_id, str):
                if record_id in seen:
                    raise CatalogFormatError(source, f"duplicate id {record_id!r} in {section}")
                seen.add(record_id)
            migrated.append(migrate(record))
        document[section] = migrated
    return document


# =============================================================================
# DECODE / LOAD
# =============================================================================

def decode_catalog(data: bytes, source: str = "<bytes>") -> CatalogDocument:
    """
    Parse and migrate a catalog document.

    Raises:
        CatalogFormatError: Not JSON, not an object, or records of the wrong shape
    """
    try:
        raw = msgspec.json.decode(data)
    except msgspec.DecodeError as e:
        raise CatalogFormatError(source, str(e)) from e
    if not isinstance(raw, dict):
        raise CatalogFormatError(source, "top level must be an object")
    try:
        return msgspec.convert(migrate_document(raw, source), type=CatalogDocument)
    except (msgspec.ValidationError, AttributeError, TypeError, ValueError) as e:
        raise CatalogFormatError(source, str(e)) from e


def load_catalog(
    path: str | Path,
    catalog: Optional[Catalog] = None,
    reconcile: Optional[bool] = None,
) -> Catalog:
    """
    Load a catalog file into `catalog` (a new one when omitted).

    Raises:
        DataLoadError: The file cannot be read
        CatalogFormatError: The file is not a catalog document
    """
    path = Path(path)
    try:
        data = path.read_bytes()
    except OSError as e:
        raise DataLoadError(f"Cannot read catalog {path}: {e}") from e

    document = decode_catalog(data, str(path))
    catalog = catalog if catalog is not None else Catalog()
    try:
        catalog.load_document(document)
    except DuplicateEntityError as e:
        raise CatalogFormatError(str(path), str(e)) from e
    logger.info(
        f"Loaded {path}: {len(document.personas)} personas, {len(document.use_cases)} use cases, "
        f"{len(document.tools)} tools, {len(document.data_models)} data models, "
        f"{len(document.implementations)} implementations"
    )

    if reconcile is None:
        reconcile = get_config().sync.reconcile_on_load
    if reconcile:
        report = RelationshipSynchronizer(catalog).reconcile()
        if report.changed:
            logger.info(f"Reconciled {len(report.rewritten)} personas after load")
    return catalog


# =============================================================================
# SAVE
# =============================================================================

def encode_catalog(catalog: Catalog) -> bytes:
    """Pretty-printed JSON for a catalog's current contents."""
    return msgspec.json.format(serialize_document(catalog.to_document()), indent=2)


def save_catalog(catalog: Catalog, path: str | Path) -> Path:
    """
    Write the catalog document to `path`, creating parent directories.

    Raises:
        DataLoadError: The file cannot be written
    """
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(encode_catalog(catalog))
    except OSError as e:
        raise DataLoadError(f"Cannot write catalog {path}: {e}") from e
    logger.debug(f"Saved catalog to {path}")
    return path


class CatalogFileWriter:
    """
    Persistence hook that rewrites the catalog file after writes.

    Usage:
        writer = CatalogFileWriter("catalog.json")
        catalog = Catalog(persist=writer.persist)
        writer.bind(catalog)

    Writes that land in the same loop iteration are coalesced into one save.
    The document is encoded on the loop and written from a worker thread.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.catalog: Optional[Catalog] = None
        self._pending = False
        self._lock = asyncio.Lock()
        self._sequence = 0
        self._written = 0

    def bind(self, catalog: Catalog) -> "CatalogFileWriter":
        self.catalog = catalog
        return self

    async def persist(self, operation: str, store: str, record: Any, entity_id: str) -> None:
        if self.catalog is None or self._pending:
            return
        self._pending = True
        try:
            # Let the rest of the current mutation land first
            await asyncio.sleep(0)
            data = encode_catalog(self.catalog)
            self._sequence += 1
            sequence = self._sequence
        finally:
            self._pending = False

        # One write at a time; a snapshot older than the file is dropped
        async with self._lock:
            if sequence <= self._written:
                return
            await asyncio.to_thread(self._write, data)
            self._written = sequence

    def _write(self, data: bytes) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_bytes(data)
        except OSError as e:
            logger.error(f"Cannot persist catalog to {self.path}: {e}", exc_info=True)
