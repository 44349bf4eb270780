"""
ARCHGRAPH RELATIONSHIP SYNCHRONIZER - Keeping Mirrored Edges Honest

Every cross-entity edge in the catalog is stored on BOTH endpoints:

    Persona.persona_use_case_mappings  <->  UseCase.persona
    UseCase.use_case_tool_mappings     <->  Tool.use_case_tool_mappings
    DataModelImplementation            (its own record, Tool -> DataModel)

This module is the single place that knows about all four stores, so
persona, use case and tool logic never call into each other. It exposes:

1. Mirroring primitives, each taking a completed mutation:
   - set_use_case_persona(): move a use case between personas
   - apply_tool_mapping_diff(): mirror a use case's tool list onto tools
   - apply_use_case_mapping_diff(): mirror a tool's use case list onto use cases
   - on_entity_deleted(): scrub every reference to a deleted id
2. reconcile(): rebuild persona mappings from UseCase.persona (ground truth)
3. Entity operations (create/update/delete, connect/disconnect) that write
   a record and then call the primitives above

Failure Policy:
    Unresolvable ids are skipped with a warning, never raised. Drift left
    behind by a partial write is repaired by the next reconcile().
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

import msgspec

from core.ontology import (
    EntityType,
    EdgeType,
    get_connection_rule,
    node_id_for,
)
from core.schemas import (
    Persona,
    PersonaUseCaseMapping,
    UseCase,
    UseCaseToolMapping,
    Tool,
    DataModel,
    DataModelAttribute,
    DataModelImplementation,
    generate_id,
    validate_attributes,
)
from core.stores import Catalog
from infrastructure.event_bus import EventType


logger = logging.getLogger("archgraph.sync")


class ReconcileReport(msgspec.Struct, kw_only=True):
    """Outcome of one reconciliation pass."""
    personas_checked: int = 0
    rewritten: List[str] = msgspec.field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.rewritten)


# =============================================================================
# INPUT NORMALIZATION
# =============================================================================

def _unique(ids: Iterable[str]) -> List[str]:
    """Drop blanks and duplicates, keeping first occurrence order."""
    seen = set()
    out = []
    for item in ids:
        if item and item not in seen:
            seen.add(item)
            out.append(item)
    return out


def _persona_ref(value: Optional[str]) -> Optional[str]:
    """Blank persona references mean "unassigned"."""
    if value and value.strip():
        return value
    return None


def _tool_ids_from(mappings: Iterable[Any]) -> List[str]:
    ids = []
    for item in mappings or ():
        if isinstance(item, UseCaseToolMapping):
            ids.append(item.tool_id)
        elif isinstance(item, dict):
            ids.append(item.get("toolId") or item.get("tool_id") or "")
        else:
            ids.append(str(item))
    return _unique(ids)


def _use_case_ids_from(mappings: Iterable[Any]) -> List[str]:
    ids = []
    for item in mappings or ():
        if isinstance(item, (UseCaseToolMapping, PersonaUseCaseMapping)):
            ids.append(item.use_case_id)
        elif isinstance(item, dict):
            ids.append(item.get("useCaseId") or item.get("use_case_id") or "")
        else:
            ids.append(str(item))
    return _unique(ids)


def _persona_mappings_from(mappings: Iterable[Any]) -> List[PersonaUseCaseMapping]:
    out = []
    seen = set()
    for item in mappings or ():
        if isinstance(item, PersonaUseCaseMapping):
            mapping = item
        elif isinstance(item, dict):
            mapping = msgspec.convert(item, PersonaUseCaseMapping)
        else:
            mapping = PersonaUseCaseMapping(use_case_id=str(item))
        if mapping.use_case_id and mapping.use_case_id not in seen:
            seen.add(mapping.use_case_id)
            out.append(msgspec.structs.replace(mapping, tool_ids=tuple(_unique(mapping.tool_ids))))
    return out


def _attributes_from(attributes: Iterable[Any]) -> tuple:
    return tuple(
        item if isinstance(item, DataModelAttribute) else msgspec.convert(item, DataModelAttribute)
        for item in attributes or ()
    )


def _coerce_type(entity_type: Any) -> Optional[EntityType]:
    try:
        return EntityType(entity_type)
    except ValueError:
        return None


# =============================================================================
# RELATIONSHIP SYNCHRONIZER
# =============================================================================

class RelationshipSynchronizer:
    """
    Owns mirrored-edge consistency across the catalog stores.

    Usage:
        sync = RelationshipSynchronizer(catalog)
        alice = sync.create_persona(name="Alice")
        excel = sync.create_tool(name="Excel")
        review = sync.create_use_case(action="Review invoice",
                                      persona=alice.id, tool_ids=[excel.id])
        sync.delete_tool(excel.id)   # scrubs review, alice and implementations
    """

    def __init__(self, catalog: Catalog):
        self.catalog = catalog
        self.journal = catalog.journal

    # =========================================================================
    # PERSONA <-> USE CASE
    # =========================================================================

    def set_use_case_persona(
        self,
        use_case_id: str,
        old_persona_id: Optional[str],
        new_persona_id: Optional[str],
        current_tool_ids: Sequence[str] = (),
    ) -> None:
        """
        Move a use case's membership entry from one persona to another.

        An existing entry on the new persona has its tool ids merged
        (ordered union) rather than overwritten.
        """
        old_persona_id = _persona_ref(old_persona_id)
        new_persona_id = _persona_ref(new_persona_id)
        if old_persona_id == new_persona_id:
            return
        if old_persona_id:
            self._remove_use_case_from_persona(old_persona_id, use_case_id)
        if new_persona_id:
            self._add_use_case_to_persona(new_persona_id, use_case_id, current_tool_ids)

    def _add_use_case_to_persona(
        self,
        persona_id: str,
        use_case_id: str,
        tool_ids: Sequence[str],
    ) -> Optional[Persona]:
        persona = self.catalog.personas.get(persona_id)
        if persona is None:
            logger.warning(f"Persona {persona_id} not found when adding use case {use_case_id}")
            return None

        existing = persona.mapping_for(use_case_id)
        if existing is None:
            mappings = persona.persona_use_case_mappings + (
                PersonaUseCaseMapping(use_case_id=use_case_id, tool_ids=tuple(_unique(tool_ids))),
            )
            self._log_edge(True, EntityType.PERSONA, persona_id,
                           EntityType.USE_CASE, use_case_id, EdgeType.PERFORMS)
        else:
            merged = tuple(_unique(list(existing.tool_ids) + list(tool_ids)))
            mappings = tuple(
                msgspec.structs.replace(m, tool_ids=merged) if m.use_case_id == use_case_id else m
                for m in persona.persona_use_case_mappings
            )
        return self._write_persona_mappings(persona, mappings)

    def _remove_use_case_from_persona(self, persona_id: str, use_case_id: str) -> Optional[Persona]:
        persona = self.catalog.personas.get(persona_id)
        if persona is None:
            return None
        mappings = tuple(m for m in persona.persona_use_case_mappings if m.use_case_id != use_case_id)
        if len(mappings) != len(persona.persona_use_case_mappings):
            self._log_edge(False, EntityType.PERSONA, persona_id,
                           EntityType.USE_CASE, use_case_id, EdgeType.PERFORMS)
        return self._write_persona_mappings(persona, mappings)

    def _write_persona_mappings(self, persona: Persona, mappings: tuple) -> Persona:
        if mappings == persona.persona_use_case_mappings:
            return persona
        logger.debug(f"Persona {persona.id} mappings -> {[m.use_case_id for m in mappings]}")
        return self.catalog.personas.update(persona.id, persona_use_case_mappings=mappings)

    def _mirror_persona_tools(
        self,
        use_case_id: str,
        added: Sequence[str],
        removed: Sequence[str],
    ) -> None:
        """Apply a tool diff to the owning persona's toolIds for one use case."""
        use_case = self.catalog.use_cases.get(use_case_id)
        if use_case is None or use_case.assigned_persona is None:
            return
        persona = self.catalog.personas.get(use_case.assigned_persona)
        if persona is None:
            logger.warning(
                f"Use case {use_case_id} references missing persona {use_case.assigned_persona}"
            )
            return

        mapping = persona.mapping_for(use_case_id)
        if mapping is None:
            self._add_use_case_to_persona(persona.id, use_case_id, use_case.tool_ids)
            return

        removed = set(removed)
        tool_ids = [t for t in mapping.tool_ids if t not in removed]
        tool_ids += [t for t in added if t not in tool_ids]
        mappings = tuple(
            msgspec.structs.replace(m, tool_ids=tuple(tool_ids)) if m.use_case_id == use_case_id else m
            for m in persona.persona_use_case_mappings
        )
        self._write_persona_mappings(persona, mappings)

    # =========================================================================
    # USE CASE <-> TOOL
    # =========================================================================

    def apply_tool_mapping_diff(
        self,
        use_case_id: str,
        old_tool_ids: Sequence[str],
        new_tool_ids: Sequence[str],
    ) -> None:
        """
        Mirror a change of a use case's tool list onto the tools and onto
        the owning persona's toolIds.
        """
        new_set = set(new_tool_ids)
        old_set = set(old_tool_ids)
        removed = [t for t in _unique(old_tool_ids) if t not in new_set]
        added = [t for t in _unique(new_tool_ids) if t not in old_set]
        if not removed and not added:
            return

        for tool_id in removed:
            self._remove_use_case_from_tool(tool_id, use_case_id)
        for tool_id in added:
            self._add_use_case_to_tool(tool_id, use_case_id)
        self._mirror_persona_tools(use_case_id, added, removed)

    def apply_use_case_mapping_diff(
        self,
        tool_id: str,
        old_use_case_ids: Sequence[str],
        new_use_case_ids: Sequence[str],
    ) -> None:
        """Mirror a change of a tool's use case list onto the use cases."""
        new_set = set(new_use_case_ids)
        old_set = set(old_use_case_ids)
        for use_case_id in _unique(old_use_case_ids):
            if use_case_id not in new_set:
                self._remove_tool_from_use_case(use_case_id, tool_id)
        for use_case_id in _unique(new_use_case_ids):
            if use_case_id not in old_set:
                self._add_tool_to_use_case(use_case_id, tool_id)

    def _add_use_case_to_tool(self, tool_id: str, use_case_id: str) -> Optional[Tool]:
        tool = self.catalog.tools.get(tool_id)
        if tool is None:
            logger.warning(f"Tool {tool_id} not found when adding use case {use_case_id}")
            return None
        if use_case_id in tool.use_case_ids:
            return tool
        self._log_edge(True, EntityType.USE_CASE, use_case_id,
                       EntityType.TOOL, tool_id, EdgeType.REALIZED_BY)
        mappings = tool.use_case_tool_mappings + (
            UseCaseToolMapping(use_case_id=use_case_id, tool_id=tool_id),
        )
        return self.catalog.tools.update(tool_id, use_case_tool_mappings=mappings)

    def _remove_use_case_from_tool(self, tool_id: str, use_case_id: str) -> Optional[Tool]:
        tool = self.catalog.tools.get(tool_id)
        if tool is None or use_case_id not in tool.use_case_ids:
            return tool
        self._log_edge(False, EntityType.USE_CASE, use_case_id,
                       EntityType.TOOL, tool_id, EdgeType.REALIZED_BY)
        mappings = tuple(m for m in tool.use_case_tool_mappings if m.use_case_id != use_case_id)
        return self.catalog.tools.update(tool_id, use_case_tool_mappings=mappings)

    def _add_tool_to_use_case(self, use_case_id: str, tool_id: str) -> Optional[UseCase]:
        use_case = self.catalog.use_cases.get(use_case_id)
        if use_case is None:
            logger.warning(f"Use case {use_case_id} not found when adding tool {tool_id}")
            return None
        if tool_id in use_case.tool_ids:
            return use_case
        self._log_edge(True, EntityType.USE_CASE, use_case_id,
                       EntityType.TOOL, tool_id, EdgeType.REALIZED_BY)
        mappings = use_case.use_case_tool_mappings + (
            UseCaseToolMapping(use_case_id=use_case_id, tool_id=tool_id),
        )
        updated = self.catalog.use_cases.update(use_case_id, use_case_tool_mappings=mappings)
        self._mirror_persona_tools(use_case_id, [tool_id], [])
        return updated

    def _remove_tool_from_use_case(self, use_case_id: str, tool_id: str) -> Optional[UseCase]:
        use_case = self.catalog.use_cases.get(use_case_id)
        if use_case is None or tool_id not in use_case.tool_ids:
            return use_case
        self._log_edge(False, EntityType.USE_CASE, use_case_id,
                       EntityType.TOOL, tool_id, EdgeType.REALIZED_BY)
        mappings = tuple(m for m in use_case.use_case_tool_mappings if m.tool_id != tool_id)
        updated = self.catalog.use_cases.update(use_case_id, use_case_tool_mappings=mappings)
        self._mirror_persona_tools(use_case_id, [], [tool_id])
        return updated

    # =========================================================================
    # CASCADE DELETE
    # =========================================================================

    def on_entity_deleted(self, entity_type: EntityType, entity_id: str) -> int:
        """
        Remove every reference to a deleted entity from the other stores.

        Returns the number of records rewritten or removed.
        """
        entity_type = EntityType(entity_type)
        touched = 0

        if entity_type == EntityType.PERSONA:
            for use_case in self.catalog.use_cases.get_all():
                if use_case.assigned_persona == entity_id:
                    self.catalog.use_cases.update(use_case.id, persona="")
                    self._log_edge(False, EntityType.PERSONA, entity_id,
                                   EntityType.USE_CASE, use_case.id, EdgeType.PERFORMS)
                    touched += 1

        elif entity_type == EntityType.USE_CASE:
            for persona in self.catalog.personas.get_all():
                if persona.mapping_for(entity_id) is not None:
                    self._remove_use_case_from_persona(persona.id, entity_id)
                    touched += 1
            for tool in self.catalog.tools.get_all():
                if entity_id in tool.use_case_ids:
                    self._remove_use_case_from_tool(tool.id, entity_id)
                    touched += 1

        elif entity_type == EntityType.TOOL:
            for use_case in self.catalog.use_cases.get_all():
                if entity_id in use_case.tool_ids:
                    self._remove_tool_from_use_case(use_case.id, entity_id)
                    touched += 1
            # Stale toolIds on personas whose use case no longer lists the tool
            for persona in self.catalog.personas.get_all():
                if any(entity_id in m.tool_ids for m in persona.persona_use_case_mappings):
                    mappings = tuple(
                        msgspec.structs.replace(
                            m, tool_ids=tuple(t for t in m.tool_ids if t != entity_id)
                        )
                        for m in persona.persona_use_case_mappings
                    )
                    self._write_persona_mappings(persona, mappings)
                    touched += 1
            touched += self._delete_implementations(tool_id=entity_id)

        elif entity_type == EntityType.DATA_MODEL:
            touched += self._delete_implementations(data_model_id=entity_id)

        logger.debug(f"Cascade for {entity_type.value} {entity_id} touched {touched} records")
        return touched

    def _delete_implementations(
        self,
        tool_id: Optional[str] = None,
        data_model_id: Optional[str] = None,
    ) -> int:
        doomed = [
            impl for impl in self.catalog.implementations.get_all()
            if (tool_id is None or impl.tool_id == tool_id)
            and (data_model_id is None or impl.data_model_id == data_model_id)
        ]
        for impl in doomed:
            self.catalog.implementations.delete(impl.id)
            self._log_edge(False, EntityType.TOOL, impl.tool_id,
                           EntityType.DATA_MODEL, impl.data_model_id, EdgeType.IMPLEMENTS)
        return len(doomed)

    # =========================================================================
    # RECONCILIATION
    # =========================================================================

    def reconcile(self) -> ReconcileReport:
        """
        Rebuild every persona's mapping list from UseCase.persona.

        Canonical and stored lists are compared after sorting by use case
        id; a persona is rewritten only when they differ, so a second call
        with no intervening writes changes nothing.
        """
        canonical: Dict[str, List[PersonaUseCaseMapping]] = {
            persona.id: [] for persona in self.catalog.personas.get_all()
        }
        for use_case in self.catalog.use_cases.get_all():
            persona_id = use_case.assigned_persona
            if persona_id is None:
                continue
            if persona_id not in canonical:
                logger.warning(f"Use case {use_case.id} references missing persona {persona_id}")
                continue
            canonical[persona_id].append(
                PersonaUseCaseMapping(use_case_id=use_case.id, tool_ids=tuple(use_case.tool_ids))
            )

        report = ReconcileReport(personas_checked=len(canonical))
        for persona_id, mappings in canonical.items():
            persona = self.catalog.personas.get(persona_id)
            wanted = tuple(sorted(mappings, key=lambda m: m.use_case_id))
            stored = tuple(sorted(persona.persona_use_case_mappings, key=lambda m: m.use_case_id))
            if wanted == stored:
                continue
            logger.info(
                f"Rebuilding persona {persona_id} mappings: "
                f"{[m.use_case_id for m in stored]} -> {[m.use_case_id for m in wanted]}"
            )
            self.catalog.personas.update(persona_id, persona_use_case_mappings=wanted)
            report.rewritten.append(persona_id)

        if report.changed:
            if self.journal:
                self.journal.log_reconciled(len(report.rewritten))
            self.catalog.event_bus.emit(
                EventType.CATALOG_RECONCILED,
                {"rewritten": list(report.rewritten)},
                source="sync",
            )
        return report

    # =========================================================================
    # PERSONA OPERATIONS
    # =========================================================================

    def create_persona(self, **fields: Any) -> Persona:
        """
        Create a persona. Listed use cases are reassigned to it, since
        UseCase.persona is the ground truth of membership.
        """
        mappings = _persona_mappings_from(fields.pop("persona_use_case_mappings", ()))
        persona = self.catalog.personas.create(**fields)
        for mapping in mappings:
            self._assign_use_case(mapping.use_case_id, persona.id, mapping.tool_ids)
        return self.catalog.personas.get(persona.id)

    def update_persona(self, persona_id: str, **changes: Any) -> Optional[Persona]:
        """
        Partial update. A supplied mapping list is written, then use cases
        that joined are reassigned here and those that left are unassigned.
        """
        current = self.catalog.personas.get(persona_id)
        if current is None:
            return None
        if "persona_use_case_mappings" not in changes:
            return self.catalog.personas.update(persona_id, **changes)

        mappings = _persona_mappings_from(changes.pop("persona_use_case_mappings"))
        self.catalog.personas.update(persona_id, persona_use_case_mappings=tuple(mappings), **changes)

        old_ids = set(current.use_case_ids)
        new_ids = {m.use_case_id for m in mappings}
        for use_case_id in old_ids - new_ids:
            use_case = self.catalog.use_cases.get(use_case_id)
            if use_case is not None and use_case.assigned_persona == persona_id:
                self.catalog.use_cases.update(use_case_id, persona="")
                self._log_edge(False, EntityType.PERSONA, persona_id,
                               EntityType.USE_CASE, use_case_id, EdgeType.PERFORMS)
        for mapping in mappings:
            if mapping.use_case_id not in old_ids:
                self._assign_use_case(mapping.use_case_id, persona_id, mapping.tool_ids)
        return self.catalog.personas.get(persona_id)

    def delete_persona(self, persona_id: str) -> Optional[Persona]:
        persona = self.catalog.personas.delete(persona_id)
        if persona is not None:
            self.on_entity_deleted(EntityType.PERSONA, persona_id)
        return persona

    def _assign_use_case(
        self,
        use_case_id: str,
        persona_id: Optional[str],
        tool_ids: Sequence[str] = (),
    ) -> Optional[UseCase]:
        """Point a use case at a persona (or at none) and mirror it."""
        use_case = self.catalog.use_cases.get(use_case_id)
        if use_case is None:
            logger.warning(f"Use case {use_case_id} not found when assigning persona {persona_id}")
            return None
        old_persona_id = use_case.assigned_persona
        if old_persona_id != _persona_ref(persona_id):
            use_case = self.catalog.use_cases.update(use_case_id, persona=persona_id or "")
        self.set_use_case_persona(use_case_id, old_persona_id, persona_id,
                                  _unique(list(use_case.tool_ids) + list(tool_ids)))
        return use_case

    # =========================================================================
    # USE CASE OPERATIONS
    # =========================================================================

    def create_use_case(self, **fields: Any) -> UseCase:
        """
        Create a use case from `use_case_tool_mappings` or `tool_ids`.

        The new id is stamped into every tool mapping before the record is
        written; the persona and the tools are then mirrored.
        """
        use_case_id = fields.pop("id", None) or generate_id()
        tool_ids = _tool_ids_from(fields.pop("use_case_tool_mappings", None) or fields.pop("tool_ids", ()))
        fields.pop("tool_ids", None)
        fields["use_case_tool_mappings"] = tuple(
            UseCaseToolMapping(use_case_id=use_case_id, tool_id=t) for t in tool_ids
        )
        use_case = self.catalog.use_cases.create(id=use_case_id, **fields)

        if use_case.assigned_persona:
            self.set_use_case_persona(use_case_id, None, use_case.persona, tool_ids)
        else:
            logger.debug(f"Use case {use_case_id} has no persona assigned")
        for tool_id in tool_ids:
            self._add_use_case_to_tool(tool_id, use_case_id)
        return use_case

    def update_use_case(self, use_case_id: str, **changes: Any) -> Optional[UseCase]:
        """
        Partial update. Only fields that are supplied count as changes, so
        an update that omits `persona` never unassigns the use case.
        """
        current = self.catalog.use_cases.get(use_case_id)
        if current is None:
            return None

        new_tool_ids = None
        if "use_case_tool_mappings" in changes or "tool_ids" in changes:
            raw = changes.pop("use_case_tool_mappings", None)
            if raw is None:
                raw = changes.get("tool_ids", ())
            changes.pop("tool_ids", None)
            new_tool_ids = _tool_ids_from(raw)
            changes["use_case_tool_mappings"] = tuple(
                UseCaseToolMapping(use_case_id=use_case_id, tool_id=t) for t in new_tool_ids
            )

        updated = self.catalog.use_cases.update(use_case_id, **changes)

        if "persona" in changes:
            self.set_use_case_persona(
                use_case_id, current.persona, updated.persona, updated.tool_ids
            )
        if new_tool_ids is not None:
            self.apply_tool_mapping_diff(use_case_id, current.tool_ids, new_tool_ids)
        return self.catalog.use_cases.get(use_case_id)

    def delete_use_case(self, use_case_id: str) -> Optional[UseCase]:
        use_case = self.catalog.use_cases.delete(use_case_id)
        if use_case is not None:
            self.on_entity_deleted(EntityType.USE_CASE, use_case_id)
        return use_case

    # =========================================================================
    # TOOL OPERATIONS
    # =========================================================================

    def create_tool(self, **fields: Any) -> Tool:
        """Create a tool from `use_case_tool_mappings` or `use_case_ids`."""
        tool_id = fields.pop("id", None) or generate_id()
        use_case_ids = _use_case_ids_from(
            fields.pop("use_case_tool_mappings", None) or fields.pop("use_case_ids", ())
        )
        fields.pop("use_case_ids", None)
        fields["use_case_tool_mappings"] = tuple(
            UseCaseToolMapping(use_case_id=u, tool_id=tool_id) for u in use_case_ids
        )
        tool = self.catalog.tools.create(id=tool_id, **fields)
        self.apply_use_case_mapping_diff(tool_id, (), use_case_ids)
        return tool

    def update_tool(self, tool_id: str, **changes: Any) -> Optional[Tool]:
        current = self.catalog.tools.get(tool_id)
        if current is None:
            return None

        new_use_case_ids = None
        if "use_case_tool_mappings" in changes or "use_case_ids" in changes:
            raw = changes.pop("use_case_tool_mappings", None)
            if raw is None:
                raw = changes.get("use_case_ids", ())
            changes.pop("use_case_ids", None)
            new_use_case_ids = _use_case_ids_from(raw)
            changes["use_case_tool_mappings"] = tuple(
                UseCaseToolMapping(use_case_id=u, tool_id=tool_id) for u in new_use_case_ids
            )

        self.catalog.tools.update(tool_id, **changes)
        if new_use_case_ids is not None:
            self.apply_use_case_mapping_diff(tool_id, current.use_case_ids, new_use_case_ids)
        return self.catalog.tools.get(tool_id)

    def delete_tool(self, tool_id: str) -> Optional[Tool]:
        tool = self.catalog.tools.delete(tool_id)
        if tool is not None:
            self.on_entity_deleted(EntityType.TOOL, tool_id)
        return tool

    # =========================================================================
    # DATA MODEL OPERATIONS
    # =========================================================================

    def create_data_model(self, **fields: Any) -> DataModel:
        """
        Raises:
            AttributeValidationError: before anything is written
        """
        fields["attributes"] = _attributes_from(fields.get("attributes", ()))
        validate_attributes(fields["attributes"])
        return self.catalog.data_models.create(**fields)

    def update_data_model(self, data_model_id: str, **changes: Any) -> Optional[DataModel]:
        """
        Raises:
            AttributeValidationError: before anything is written
        """
        if "attributes" in changes:
            changes["attributes"] = _attributes_from(changes["attributes"])
            validate_attributes(changes["attributes"])
        return self.catalog.data_models.update(data_model_id, **changes)

    def delete_data_model(self, data_model_id: str) -> Optional[DataModel]:
        data_model = self.catalog.data_models.delete(data_model_id)
        if data_model is not None:
            self.on_entity_deleted(EntityType.DATA_MODEL, data_model_id)
        return data_model

    # =========================================================================
    # IMPLEMENTATIONS (Tool -> DataModel)
    # =========================================================================

    def find_implementation(self, tool_id: str, data_model_id: str) -> Optional[DataModelImplementation]:
        for impl in self.catalog.implementations.get_all():
            if impl.tool_id == tool_id and impl.data_model_id == data_model_id:
                return impl
        return None

    def add_implementation(
        self,
        tool_id: str,
        data_model_id: str,
        implementation_details: str = "",
        schema: Optional[Dict[str, Any]] = None,
    ) -> Optional[DataModelImplementation]:
        """
        Link a tool to a data model. An existing pair is returned unchanged;
        a missing endpoint is a no-op returning None.
        """
        existing = self.find_implementation(tool_id, data_model_id)
        if existing is not None:
            return existing
        if not self.catalog.tools.has(tool_id) or not self.catalog.data_models.has(data_model_id):
            logger.warning(f"Cannot implement data model {data_model_id} on tool {tool_id}: endpoint missing")
            return None
        self._log_edge(True, EntityType.TOOL, tool_id,
                       EntityType.DATA_MODEL, data_model_id, EdgeType.IMPLEMENTS)
        return self.catalog.implementations.create(
            tool_id=tool_id,
            data_model_id=data_model_id,
            implementation_details=implementation_details,
            schema=dict(schema or {}),
        )

    def update_implementation(self, implementation_id: str, **changes: Any) -> Optional[DataModelImplementation]:
        # Endpoints are identity; re-pointing is delete + add
        changes.pop("tool_id", None)
        changes.pop("data_model_id", None)
        return self.catalog.implementations.update(implementation_id, **changes)

    def delete_implementation(self, implementation_id: str) -> Optional[DataModelImplementation]:
        impl = self.catalog.implementations.delete(implementation_id)
        if impl is not None:
            self._log_edge(False, EntityType.TOOL, impl.tool_id,
                           EntityType.DATA_MODEL, impl.data_model_id, EdgeType.IMPLEMENTS)
        return impl

    # =========================================================================
    # GENERIC EDGE / ENTITY OPERATIONS
    # =========================================================================

    def connect(
        self,
        source_type: Any,
        source_id: str,
        target_type: Any,
        target_id: str,
    ) -> Optional[Any]:
        """
        Create the edge source -> target for a legal layer pair.

        Returns the record that now carries the edge (the UseCase, or the
        DataModelImplementation), or None for an illegal pair.
        """
        source_type, target_type = _coerce_type(source_type), _coerce_type(target_type)
        if source_type is None or target_type is None or source_type == target_type:
            return None
        rule = get_connection_rule(source_type, target_type)
        if rule is None:
            logger.debug(f"Rejected connection {source_type.value} -> {target_type.value}")
            return None

        if rule.edge_type == EdgeType.PERFORMS:
            use_case = self.catalog.use_cases.get(target_id)
            if use_case is None or not self.catalog.personas.has(source_id):
                return None
            if use_case.assigned_persona == source_id:
                return use_case
            return self.update_use_case(target_id, persona=source_id)

        if rule.edge_type == EdgeType.REALIZED_BY:
            use_case = self.catalog.use_cases.get(source_id)
            if use_case is None or not self.catalog.tools.has(target_id):
                return None
            if target_id in use_case.tool_ids:
                return use_case
            return self.update_use_case(source_id, tool_ids=use_case.tool_ids + [target_id])

        return self.add_implementation(source_id, target_id)

    def disconnect(
        self,
        source_type: Any,
        source_id: str,
        target_type: Any,
        target_id: str,
    ) -> Optional[Any]:
        """Remove the edge source -> target. Returns the affected record or None."""
        source_type, target_type = _coerce_type(source_type), _coerce_type(target_type)
        if source_type is None or target_type is None or source_type == target_type:
            return None
        rule = get_connection_rule(source_type, target_type)
        if rule is None:
            return None

        if rule.edge_type == EdgeType.PERFORMS:
            use_case = self.catalog.use_cases.get(target_id)
            if use_case is None or use_case.assigned_persona != source_id:
                return None
            return self.update_use_case(target_id, persona="")

        if rule.edge_type == EdgeType.REALIZED_BY:
            use_case = self.catalog.use_cases.get(source_id)
            if use_case is None or target_id not in use_case.tool_ids:
                return None
            return self.update_use_case(
                source_id, tool_ids=[t for t in use_case.tool_ids if t != target_id]
            )

        impl = self.find_implementation(source_id, target_id)
        if impl is None:
            return None
        return self.delete_implementation(impl.id)

    def delete_entity(self, entity_type: Any, entity_id: str) -> Optional[Any]:
        """Delete any entity by type, cascading its references."""
        entity_type = _coerce_type(entity_type)
        if entity_type is None:
            return None
        return {
            EntityType.PERSONA: self.delete_persona,
            EntityType.USE_CASE: self.delete_use_case,
            EntityType.TOOL: self.delete_tool,
            EntityType.DATA_MODEL: self.delete_data_model,
        }[entity_type](entity_id)

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _log_edge(
        self,
        created: bool,
        source_type: EntityType,
        source_id: str,
        target_type: EntityType,
        target_id: str,
        edge_type: EdgeType,
    ) -> None:
        if self.journal is None:
            return
        source = node_id_for(source_type, source_id)
        target = node_id_for(target_type, target_id)
        if created:
            self.journal.log_edge_created(source, target, edge_type.value)
        else:
            self.journal.log_edge_deleted(source, target, edge_type.value)
