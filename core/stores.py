"""
ARCHGRAPH ENTITY STORES - The Catalog's Memory

Four independent collections (Persona, UseCase, Tool, DataModel) plus the
DataModelImplementation join records. Each store supports:
- get_all(): insertion-ordered snapshot (the "reactive view" via subscribe())
- create(**fields): assigns id + timestamps
- update(id, **changes): partial update, supplied fields replace wholesale
- delete(id)

Stores know nothing about relationships; keeping mirrored edges consistent
is the Relationship Synchronizer's job (core/sync.py).

Persistence Model:
    Writes apply in memory immediately. An optional persist hook is then
    called without blocking: coroutine hooks are scheduled on the running
    loop, plain callables are called inline. Correctness invariants hold for
    the in-memory state, not for what has reached storage.
"""
import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, Generic, List, Optional, Type, TypeVar

import msgspec

from core.ontology import EntityType
from core.schemas import (
    Persona,
    UseCase,
    Tool,
    DataModel,
    DataModelImplementation,
    CatalogDocument,
    generate_id,
    now_utc,
)
from infrastructure.event_bus import EventBus, EventType, get_event_bus, publish_entity_event
from infrastructure.logger import MutationLogger, get_logger as get_mutation_logger


logger = logging.getLogger("archgraph.stores")

E = TypeVar("E")

# Persist hook signature: (operation, store name, record or None, id)
PersistHook = Callable[[str, str, Optional[Any], str], Any]

IMPLEMENTATION_STORE = "implementation"


# =============================================================================
# CUSTOM EXCEPTIONS
# =============================================================================

class StoreError(Exception):
    """Base exception for store operations."""
    pass


class DuplicateEntityError(StoreError):
    """Raised when adding a record whose id already exists."""
    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(f"Entity already exists: {entity_id}")


# =============================================================================
# ENTITY STORE
# =============================================================================

class EntityStore(Generic[E]):
    """
    In-memory, insertion-ordered collection of one record type.

    Usage:
        store = EntityStore(Persona, "persona")
        alice = store.create(name="Alice")
        store.update(alice.id, description="Reviews invoices")
        store.get_all()   # [Persona(id=..., name="Alice", ...)]

    Thread Safety:
        NOT thread-safe. The catalog runs on a single logical thread.
    """

    def __init__(
        self,
        record_type: Type[E],
        name: str,
        persist: Optional[PersistHook] = None,
        event_bus: Optional[EventBus] = None,
        journal: Optional[MutationLogger] = None,
    ):
        self.record_type = record_type
        self.name = name
        self._records: Dict[str, E] = {}
        self._persist = persist
        self._event_bus = event_bus
        self._journal = journal
        self._subscribers: List[Callable[[List[E]], None]] = []
        self._revision = 0

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def revision(self) -> int:
        """Monotonic write counter."""
        return self._revision

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, entity_id: str) -> bool:
        return entity_id in self._records

    def __repr__(self) -> str:
        return f"<EntityStore {self.name}: {len(self)} records, rev {self._revision}>"

    # =========================================================================
    # READS
    # =========================================================================

    def get_all(self) -> List[E]:
        """All records in insertion order (a snapshot list)."""
        return list(self._records.values())

    def get(self, entity_id: str) -> Optional[E]:
        """Look up a record; missing ids resolve to None."""
        if not entity_id:
            return None
        return self._records.get(entity_id)

    def has(self, entity_id: str) -> bool:
        return entity_id in self._records

    def ids(self) -> List[str]:
        return list(self._records.keys())

    # =========================================================================
    # WRITES
    # =========================================================================

    def create(self, **fields: Any) -> E:
        """
        Create a record with a generated id and current timestamps.

        An explicit id may be supplied (imports, tests).
        """
        entity_id = fields.pop("id", None) or generate_id()
        stamp = now_utc()
        fields.setdefault("created_at", stamp)
        fields.setdefault("updated_at", stamp)
        record = self.record_type(id=entity_id, **fields)
        return self.add(record)

    def add(self, record: E) -> E:
        """
        Insert an already-built record.

        Raises:
            DuplicateEntityError: If the id already exists
        """
        entity_id = record.id
        if entity_id in self._records:
            raise DuplicateEntityError(entity_id)
        self._records[entity_id] = record
        self._after_write("create", record, entity_id)
        if self._journal:
            self._journal.log_entity_created(entity_id, self.name)
        self._publish(EventType.ENTITY_CREATED, entity_id)
        return record

    def update(self, entity_id: str, **changes: Any) -> Optional[E]:
        """
        Replace the supplied fields and refresh updated_at.

        Fields not supplied are preserved; supplied collections replace the
        old ones wholesale. A missing id is a no-op returning None.
        """
        current = self._records.get(entity_id)
        if current is None:
            logger.debug(f"Update skipped, {self.name} {entity_id} not found")
            return None
        changes.pop("id", None)
        changes.pop("created_at", None)
        record = msgspec.structs.replace(current, updated_at=now_utc(), **changes)
        self._records[entity_id] = record
        self._after_write("update", record, entity_id)
        if self._journal:
            self._journal.log_entity_updated(entity_id, self.name, sorted(changes))
        self._publish(EventType.ENTITY_UPDATED, entity_id)
        return record

    def delete(self, entity_id: str) -> Optional[E]:
        """Remove a record. A missing id is a no-op returning None."""
        record = self._records.pop(entity_id, None)
        if record is None:
            return None
        self._after_write("delete", None, entity_id)
        if self._journal:
            self._journal.log_entity_deleted(entity_id, self.name)
        self._publish(EventType.ENTITY_DELETED, entity_id)
        return record

    def clear(self) -> None:
        """Drop every record (used when reloading a catalog)."""
        for entity_id in list(self._records):
            self.delete(entity_id)

    # =========================================================================
    # REACTIVE VIEW
    # =========================================================================

    def subscribe(self, callback: Callable[[List[E]], None]) -> None:
        """Call `callback(snapshot)` after every write."""
        if callback not in self._subscribers:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[List[E]], None]) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _after_write(self, operation: str, record: Optional[E], entity_id: str) -> None:
        self._revision += 1
        self._schedule_persist(operation, record, entity_id)
        if self._subscribers:
            snapshot = self.get_all()
            for callback in list(self._subscribers):
                try:
                    callback(snapshot)
                except Exception as e:
                    logger.error(f"Error in {self.name} store subscriber: {e}", exc_info=True)

    def _schedule_persist(self, operation: str, record: Optional[E], entity_id: str) -> None:
        """Fire-and-forget persistence. Failures are logged, never raised."""
        if self._persist is None:
            return
        if inspect.iscoroutinefunction(self._persist):
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.warning(
                    f"Cannot persist {operation} of {self.name} {entity_id}: no event loop running"
                )
                return
            task = loop.create_task(self._persist(operation, self.name, record, entity_id))
            task.add_done_callback(self._log_persist_failure)
            return
        try:
            self._persist(operation, self.name, record, entity_id)
        except Exception as e:
            logger.error(f"Error persisting {operation} of {self.name} {entity_id}: {e}", exc_info=True)

    def _log_persist_failure(self, task: "asyncio.Task") -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Error persisting {self.name} record: {exc}", exc_info=exc)

    def _publish(self, event_type: EventType, entity_id: str) -> None:
        if self._event_bus is not None:
            publish_entity_event(event_type, self.name, entity_id, bus=self._event_bus)


# =============================================================================
# CATALOG (the five stores together)
# =============================================================================

class Catalog:
    """
    The five stores the core consumes.

    Usage:
        catalog = Catalog()
        alice = catalog.personas.create(name="Alice")
        catalog.store_for(EntityType.PERSONA) is catalog.personas   # True
    """

    def __init__(
        self,
        persist: Optional[PersistHook] = None,
        event_bus: Optional[EventBus] = None,
        journal: Optional[MutationLogger] = None,
    ):
        bus = event_bus if event_bus is not None else get_event_bus()
        journal = journal if journal is not None else get_mutation_logger()
        self.event_bus = bus
        self.journal = journal

        def make(record_type, name):
            return EntityStore(record_type, name, persist=persist, event_bus=bus, journal=journal)

        self.personas: EntityStore[Persona] = make(Persona, EntityType.PERSONA.value)
        self.use_cases: EntityStore[UseCase] = make(UseCase, EntityType.USE_CASE.value)
        self.tools: EntityStore[Tool] = make(Tool, EntityType.TOOL.value)
        self.data_models: EntityStore[DataModel] = make(DataModel, EntityType.DATA_MODEL.value)
        self.implementations: EntityStore[DataModelImplementation] = make(
            DataModelImplementation, IMPLEMENTATION_STORE
        )

    @property
    def revision(self) -> int:
        """Sum of store revisions; changes whenever any store is written."""
        return sum(store.revision for store in self.stores())

    def stores(self) -> List[EntityStore]:
        return [self.personas, self.use_cases, self.tools, self.data_models, self.implementations]

    def store_for(self, entity_type: EntityType) -> EntityStore:
        """The store holding one entity type."""
        return {
            EntityType.PERSONA: self.personas,
            EntityType.USE_CASE: self.use_cases,
            EntityType.TOOL: self.tools,
            EntityType.DATA_MODEL: self.data_models,
        }[EntityType(entity_type)]

    def get_entity(self, entity_type: EntityType, entity_id: str) -> Optional[Any]:
        return self.store_for(entity_type).get(entity_id)

    def set_persist(self, persist: Optional[PersistHook]) -> None:
        """Attach (or with None, detach) the persistence hook on every store."""
        for store in self.stores():
            store._persist = persist

    # =========================================================================
    # DOCUMENT CONVERSION
    # =========================================================================

    def to_document(self) -> CatalogDocument:
        return CatalogDocument(
            personas=self.personas.get_all(),
            use_cases=self.use_cases.get_all(),
            tools=self.tools.get_all(),
            data_models=self.data_models.get_all(),
            implementations=self.implementations.get_all(),
        )

    def load_document(self, document: CatalogDocument) -> None:
        """
        Replace the catalog contents with a document's records.

        Raises:
            DuplicateEntityError: A collection repeats an id; nothing is changed
        """
        sections = (
            (self.personas, document.personas),
            (self.use_cases, document.use_cases),
            (self.tools, document.tools),
            (self.data_models, document.data_models),
            (self.implementations, document.implementations),
        )
        for _, records in sections:
            seen = set()
            for record in records:
                if record.id in seen:
                    raise DuplicateEntityError(record.id)
                seen.add(record.id)

        for store in self.stores():
            store.clear()
        for store, records in sections:
            for record in records:
                store.add(record)

    def __repr__(self) -> str:
        counts = ", ".join(f"{s.name}={len(s)}" for s in self.stores())
        return f"<Catalog {counts}>"


# =============================================================================
# SHARED INSTANCE
# =============================================================================

_catalog: Optional[Catalog] = None


def get_catalog() -> Catalog:
    """Get the shared catalog, creating an empty one on first use."""
    global _catalog
    if _catalog is None:
        _catalog = Catalog()
    return _catalog


def set_catalog(catalog: Optional[Catalog]) -> None:
    """Replace (or with None, drop) the shared catalog."""
    global _catalog
    _catalog = catalog
