"""
ARCHGRAPH SCHEMAS - The Grammar of the Catalog

If ontology.py is the Dictionary (defining the words we can use),
schemas.py is the Grammar (defining how records are structured).

This module defines the records held by the entity stores:
- PersonaUseCaseMapping / UseCaseToolMapping: the mirrored edge records
- Persona, UseCase, Tool, DataModel: the four layer entities
- DataModelImplementation: the standalone Tool <-> DataModel join record
- CatalogDocument: a whole catalog, for import/export

Design Principles:
1. VALUE TYPES: frozen msgspec.Struct, structural equality, never mutated
2. WHOLESALE UPDATES: a change is a new record (msgspec.structs.replace)
3. KW_ONLY: Enforce keyword arguments to prevent positional mix-ups
4. CAMEL ON THE WIRE: snake_case in Python, camelCase in JSON
"""
import msgspec
from typing import Optional, Dict, Any, List, Tuple
from datetime import datetime, timezone
import uuid

from core.ontology import AttributeType, RelationshipType


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def now_utc() -> str:
    """Fast UTC timestamp as ISO8601 string."""
    return datetime.now(timezone.utc).isoformat()


def generate_id() -> str:
    """Generate a new UUID hex string for entity ids."""
    return uuid.uuid4().hex


# =============================================================================
# EDGE RECORDS (stored on the endpoint entities)
# =============================================================================

class PersonaUseCaseMapping(msgspec.Struct, kw_only=True, frozen=True, rename="camel"):
    """
    A use case performed by a persona, with the tools used to realize it.

    Stored on the Persona. tool_ids is advisory: it is expected to be a
    subset of the use case's own tool mappings but is never forced to be.
    """
    use_case_id: str
    tool_ids: Tuple[str, ...] = ()


class UseCaseToolMapping(msgspec.Struct, kw_only=True, frozen=True, rename="camel"):
    """
    A use case realized by a tool.

    Stored on BOTH endpoints: an equal record must exist on the UseCase
    and on the Tool.
    """
    use_case_id: str
    tool_id: str


# =============================================================================
# ENTITIES
# =============================================================================

class Persona(msgspec.Struct, kw_only=True, frozen=True, rename="camel"):
    """A role that performs use cases."""
    id: str
    name: str = ""
    description: str = ""
    persona_use_case_mappings: Tuple[PersonaUseCaseMapping, ...] = ()
    created_at: str = msgspec.field(default_factory=now_utc)
    updated_at: str = msgspec.field(default_factory=now_utc)

    @property
    def use_case_ids(self) -> List[str]:
        return [m.use_case_id for m in self.persona_use_case_mappings]

    def mapping_for(self, use_case_id: str) -> Optional[PersonaUseCaseMapping]:
        for mapping in self.persona_use_case_mappings:
            if mapping.use_case_id == use_case_id:
                return mapping
        return None


class UseCase(msgspec.Struct, kw_only=True, frozen=True, rename="camel"):
    """
    Something a persona wants to do ("action") and why ("goal").

    `persona` is the ground truth of the Persona <-> UseCase relationship.
    An empty (or blank) string means no persona is assigned.
    """
    id: str
    name: str = ""
    persona: str = ""
    action: str = ""
    goal: str = ""
    use_case_tool_mappings: Tuple[UseCaseToolMapping, ...] = ()
    created_at: str = msgspec.field(default_factory=now_utc)
    updated_at: str = msgspec.field(default_factory=now_utc)

    @property
    def assigned_persona(self) -> Optional[str]:
        """The persona id, or None when unassigned."""
        if self.persona and self.persona.strip():
            return self.persona
        return None

    @property
    def tool_ids(self) -> List[str]:
        return [m.tool_id for m in self.use_case_tool_mappings]


class Tool(msgspec.Struct, kw_only=True, frozen=True, rename="camel"):
    """A system or application that realizes use cases."""
    id: str
    name: str = ""
    description: str = ""
    use_case_tool_mappings: Tuple[UseCaseToolMapping, ...] = ()
    created_at: str = msgspec.field(default_factory=now_utc)
    updated_at: str = msgspec.field(default_factory=now_utc)

    @property
    def use_case_ids(self) -> List[str]:
        return [m.use_case_id for m in self.use_case_tool_mappings]


class DataModelAttribute(msgspec.Struct, kw_only=True, frozen=True, rename="camel"):
    """
    One field of a DataModel.

    A "relationship" attribute points at another DataModel. That is a
    same-type reference and is not part of the cross-entity graph.
    """
    id: str = msgspec.field(default_factory=generate_id)
    name: str
    type: str = AttributeType.STRING.value
    description: Optional[str] = None
    required: bool = False
    default_value: Any = None
    target_data_model_id: Optional[str] = None
    relationship_type: Optional[RelationshipType] = None

    @property
    def is_relationship(self) -> bool:
        return self.type == AttributeType.RELATIONSHIP.value


class DataModel(msgspec.Struct, kw_only=True, frozen=True, rename="camel"):
    """A logical data entity implemented by tools."""
    id: str
    name: str = ""
    description: str = ""
    domain_id: Optional[str] = None
    attributes: Tuple[DataModelAttribute, ...] = ()
    created_at: str = msgspec.field(default_factory=now_utc)
    updated_at: str = msgspec.field(default_factory=now_utc)


class DataModelImplementation(msgspec.Struct, kw_only=True, frozen=True, rename="camel"):
    """The Tool -> DataModel edge, stored as its own record."""
    id: str
    data_model_id: str
    tool_id: str
    implementation_details: str = ""
    schema: Dict[str, Any] = msgspec.field(default_factory=dict)
    created_at: str = msgspec.field(default_factory=now_utc)
    updated_at: str = msgspec.field(default_factory=now_utc)


# =============================================================================
# VALIDATION (creation-time preconditions)
# =============================================================================

_ATTRIBUTE_TYPES = {t.value for t in AttributeType}


class AttributeValidationError(ValueError):
    """Raised when a DataModel attribute is malformed. Nothing is written."""
    def __init__(self, attribute_name: str, message: str):
        self.attribute_name = attribute_name
        super().__init__(f"Invalid attribute '{attribute_name}': {message}")


def validate_attribute(attribute: DataModelAttribute) -> None:
    """
    Check a single attribute.

    Raises:
        AttributeValidationError: unknown type, or a relationship with no target
    """
    if attribute.type not in _ATTRIBUTE_TYPES:
        raise AttributeValidationError(attribute.name, f"unknown type {attribute.type!r}")
    if attribute.is_relationship and not attribute.target_data_model_id:
        raise AttributeValidationError(
            attribute.name,
            "relationship attributes require a target data model",
        )


def validate_attributes(attributes: Tuple[DataModelAttribute, ...]) -> None:
    """Validate every attribute; the first failure is raised."""
    for attribute in attributes:
        validate_attribute(attribute)


# =============================================================================
# CATALOG DOCUMENT (import/export)
# =============================================================================

class CatalogDocument(msgspec.Struct, kw_only=True, rename="camel"):
    """A whole catalog as one JSON document."""
    personas: List[Persona] = msgspec.field(default_factory=list)
    use_cases: List[UseCase] = msgspec.field(default_factory=list)
    tools: List[Tool] = msgspec.field(default_factory=list)
    data_models: List[DataModel] = msgspec.field(default_factory=list)
    implementations: List[DataModelImplementation] = msgspec.field(default_factory=list)


# Pre-compiled encoders/decoders, reused across the application
_encoder = msgspec.json.Encoder()
_document_decoder = msgspec.json.Decoder(type=CatalogDocument)


def serialize_document(document: CatalogDocument) -> bytes:
    """Serialize a CatalogDocument to JSON bytes."""
    return _encoder.encode(document)


def deserialize_document(data: bytes) -> CatalogDocument:
    """Deserialize JSON bytes to a CatalogDocument."""
    return _document_decoder.decode(data)


def to_builtins(record: Any) -> Any:
    """Convert a record (or list of records) to JSON-ready builtins."""
    return msgspec.to_builtins(record)
