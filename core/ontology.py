"""
ARCHGRAPH ONTOLOGY - The Dictionary of the Catalog

If schemas.py is the Grammar (how records are shaped),
ontology.py is the Dictionary (the words the catalog can use).

This module defines:
- Enums: The vocabulary (EntityType, EdgeType, AttributeType)
- Layer order: Persona -> UseCase -> Tool -> DataModel
- Node id scheme: "<prefix>_<entity id>" for graph nodes
- ConnectionRule: The only three legal edge directions

Key Principle: the four layers ARE the graph shape.
Every edge joins adjacent layers and points left to right; anything else
is not a relationship this catalog can express.
"""
from typing import Dict, Optional, Tuple, Literal
from enum import Enum

import msgspec


# =============================================================================
# ENUMS (The Vocabulary)
# =============================================================================

class EntityType(str, Enum):
    """Types of catalog entities (one graph layer each)."""
    PERSONA = "persona"
    USE_CASE = "useCase"
    TOOL = "tool"
    DATA_MODEL = "dataModel"


class EdgeType(str, Enum):
    """Types of edges between layers."""
    PERFORMS = "PERFORMS"            # Persona -> UseCase (PersonaUseCaseMapping)
    REALIZED_BY = "REALIZED_BY"      # UseCase -> Tool (UseCaseToolMapping)
    IMPLEMENTS = "IMPLEMENTS"        # Tool -> DataModel (DataModelImplementation)


class AttributeType(str, Enum):
    """Attribute types a DataModel may declare."""
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "Date"
    OBJECT = "object"
    ARRAY = "array"
    CUSTOM = "CustomType"
    RELATIONSHIP = "relationship"    # Same-type reference to another DataModel


RelationshipType = Literal[
    "one-to-one",
    "one-to-many",
    "many-to-one",
    "many-to-many",
    "composition",
    "aggregation",
    "inheritance",
]


# =============================================================================
# LAYERS
# =============================================================================

LAYER_ORDER: Tuple[EntityType, ...] = (
    EntityType.PERSONA,
    EntityType.USE_CASE,
    EntityType.TOOL,
    EntityType.DATA_MODEL,
)

LAYER_INDEX: Dict[EntityType, int] = {t: i for i, t in enumerate(LAYER_ORDER)}


def get_layer(entity_type: EntityType) -> int:
    """Layer index of an entity type (0=Persona ... 3=DataModel)."""
    return LAYER_INDEX[EntityType(entity_type)]


# =============================================================================
# NODE IDS
# =============================================================================

# Graph node ids are "<prefix>_<entity id>". Entity ids may themselves
# contain underscores, so parsing only splits on the first one.
NODE_ID_PREFIX: Dict[EntityType, str] = {
    EntityType.PERSONA: "persona",
    EntityType.USE_CASE: "usecase",
    EntityType.TOOL: "tool",
    EntityType.DATA_MODEL: "datamodel",
}

_PREFIX_TO_TYPE: Dict[str, EntityType] = {v: k for k, v in NODE_ID_PREFIX.items()}

# One synthetic "append" node per layer
APPEND_NODE_ID: Dict[EntityType, str] = {
    t: f"add_{prefix}" for t, prefix in NODE_ID_PREFIX.items()
}


def node_id_for(entity_type: EntityType, entity_id: str) -> str:
    """Build the graph node id for an entity."""
    return f"{NODE_ID_PREFIX[EntityType(entity_type)]}_{entity_id}"


def parse_node_id(node_id: str) -> Optional[Tuple[EntityType, str]]:
    """
    Split a graph node id into (entity type, entity id).

    Returns None for append nodes and for anything that is not a node id.
    """
    prefix, sep, entity_id = node_id.partition("_")
    if not sep or not entity_id:
        return None
    entity_type = _PREFIX_TO_TYPE.get(prefix)
    if entity_type is None:
        return None
    return entity_type, entity_id


def edge_id_for(
    source_type: EntityType,
    source_id: str,
    target_type: EntityType,
    target_id: str,
) -> str:
    """Edge ids concatenate the two node ids: "persona_P1_usecase_U1"."""
    return f"{node_id_for(source_type, source_id)}_{node_id_for(target_type, target_id)}"


# =============================================================================
# CONNECTION RULES (The Physics of Edges)
# =============================================================================

class ConnectionRule(msgspec.Struct, kw_only=True, frozen=True):
    """A legal edge direction between two adjacent layers."""
    source: EntityType
    target: EntityType
    edge_type: EdgeType
    description: str = ""


CONNECTION_RULES: Tuple[ConnectionRule, ...] = (
    ConnectionRule(
        source=EntityType.PERSONA,
        target=EntityType.USE_CASE,
        edge_type=EdgeType.PERFORMS,
        description="Persona performs a use case",
    ),
    ConnectionRule(
        source=EntityType.USE_CASE,
        target=EntityType.TOOL,
        edge_type=EdgeType.REALIZED_BY,
        description="Use case is realized by a tool",
    ),
    ConnectionRule(
        source=EntityType.TOOL,
        target=EntityType.DATA_MODEL,
        edge_type=EdgeType.IMPLEMENTS,
        description="Tool implements a data model",
    ),
)


def get_connection_rule(
    source_type: EntityType,
    target_type: EntityType,
) -> Optional[ConnectionRule]:
    """Return the rule for a source/target pair, or None if the pair is illegal."""
    for rule in CONNECTION_RULES:
        if rule.source == source_type and rule.target == target_type:
            return rule
    return None


def parse_edge_id(edge_id: str) -> Optional[Tuple[EntityType, str, EntityType, str]]:
    """
    Split an edge id back into (source type, source id, target type, target id).

    The split point is the separator naming the target layer, e.g. "_usecase_"
    inside an edge that starts with "persona_".
    """
    for rule in CONNECTION_RULES:
        source_prefix = NODE_ID_PREFIX[rule.source] + "_"
        target_marker = "_" + NODE_ID_PREFIX[rule.target] + "_"
        if not edge_id.startswith(source_prefix):
            continue
        idx = edge_id.find(target_marker, len(source_prefix))
        if idx < 0:
            continue
        source_id = edge_id[len(source_prefix):idx]
        target_id = edge_id[idx + len(target_marker):]
        if source_id and target_id:
            return rule.source, source_id, rule.target, target_id
    return None
