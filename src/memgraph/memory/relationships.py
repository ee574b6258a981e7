"""Relationship type vocabulary and its static metadata.

Semantic weight, transitivity and inverse types are used for display and
ranking only. They never affect what the storage layer accepts.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class RelationshipType(Enum):
    """Fixed vocabulary of edge types between memory nodes."""
    RELATES_TO = "relates_to"
    SUPPORTS = "supports"
    CONFLICTS_WITH = "conflicts_with"
    REFINES = "refines"
    SYNTHESIZES = "synthesizes"
    FOLLOWS = "follows"
    PRECEDES = "precedes"
    TRIGGERED_BY = "triggered_by"
    CONTAINS = "contains"
    PART_OF = "part_of"
    GENERALIZES = "generalizes"
    SPECIALIZES = "specializes"
    CAUSES = "causes"
    CAUSED_BY = "caused_by"
    ENABLES = "enables"
    PREVENTS = "prevents"
    REFERENCES = "references"
    REFERENCED_BY = "referenced_by"
    EXPLAINS = "explains"
    EXAMPLE_OF = "example_of"
    CONTEXT_FOR = "context_for"
    APPLIES_TO = "applies_to"
    SIMILAR_TO = "similar_to"
    ALTERNATIVE_TO = "alternative_to"


@dataclass(frozen=True)
class RelationshipTypeInfo:
    """Static metadata describing one relationship type.

    Attributes:
        type: The relationship type
        description: Human-readable meaning of the relationship
        is_bidirectional: Whether A->B implies B->A with the same type
        is_transitive: Whether A->B and B->C imply A->C
        inverse_type: Type that reads the relationship in reverse, if any
        semantic_weight: Importance used for ranking, 0.0 to 1.0
    """
    type: RelationshipType
    description: str
    is_bidirectional: bool
    is_transitive: bool
    inverse_type: Optional[RelationshipType]
    semantic_weight: float


def _info(
    rel: RelationshipType,
    description: str,
    weight: float,
    bidirectional: bool = False,
    transitive: bool = False,
    inverse: Optional[RelationshipType] = None,
) -> RelationshipTypeInfo:
    return RelationshipTypeInfo(
        type=rel,
        description=description,
        is_bidirectional=bidirectional,
        is_transitive=transitive,
        inverse_type=inverse,
        semantic_weight=weight,
    )


_R = RelationshipType

RELATIONSHIP_TYPES: dict[RelationshipType, RelationshipTypeInfo] = {
    info.type: info
    for info in (
        _info(_R.RELATES_TO, "General relationship between memories", 0.5, bidirectional=True),
        _info(_R.SUPPORTS, "Provides evidence or backing for the target", 0.8, transitive=True),
        _info(_R.CONFLICTS_WITH, "Contradicts or is incompatible with the target", 0.9, bidirectional=True),
        _info(_R.REFINES, "Improves or adds precision to the target", 0.7, transitive=True),
        _info(_R.SYNTHESIZES, "Combines the target with other memories into new insight", 0.9),
        _info(_R.FOLLOWS, "Comes after the target in a sequence", 0.6, transitive=True, inverse=_R.PRECEDES),
        _info(_R.PRECEDES, "Comes before the target in a sequence", 0.6, transitive=True, inverse=_R.FOLLOWS),
        _info(_R.TRIGGERED_BY, "Was prompted by the target", 0.8),
        _info(_R.CONTAINS, "Includes the target as a component", 0.8, transitive=True, inverse=_R.PART_OF),
        _info(_R.PART_OF, "Is a component of the target", 0.8, transitive=True, inverse=_R.CONTAINS),
        _info(_R.GENERALIZES, "Is a broader form of the target", 0.7, transitive=True, inverse=_R.SPECIALIZES),
        _info(_R.SPECIALIZES, "Is a narrower form of the target", 0.7, transitive=True, inverse=_R.GENERALIZES),
        _info(_R.CAUSES, "Directly leads to the target", 0.9, transitive=True, inverse=_R.CAUSED_BY),
        _info(_R.CAUSED_BY, "Is a direct result of the target", 0.9, transitive=True, inverse=_R.CAUSES),
        _info(_R.ENABLES, "Makes the target possible", 0.7, transitive=True),
        _info(_R.PREVENTS, "Stops the target from happening", 0.8),
        _info(_R.REFERENCES, "Mentions or cites the target", 0.4, inverse=_R.REFERENCED_BY),
        _info(_R.REFERENCED_BY, "Is mentioned or cited by the target", 0.4, inverse=_R.REFERENCES),
        _info(_R.EXPLAINS, "Clarifies the target", 0.8),
        _info(_R.EXAMPLE_OF, "Is a concrete instance of the target", 0.6),
        _info(_R.CONTEXT_FOR, "Provides background for the target", 0.6),
        _info(_R.APPLIES_TO, "Is relevant to or used by the target", 0.7),
        _info(_R.SIMILAR_TO, "Shares characteristics with the target", 0.6, bidirectional=True),
        _info(_R.ALTERNATIVE_TO, "Is a different option for the same purpose", 0.7, bidirectional=True),
    )
}

DEFAULT_RELATIONSHIP_TYPE = RelationshipType.RELATES_TO


def is_valid_type(value: str) -> bool:
    """Check whether a string names a known relationship type."""
    return value in _VALUES


def get_type_info(value: str) -> Optional[RelationshipTypeInfo]:
    """Look up metadata for a relationship type name, or None if unknown."""
    if not is_valid_type(value):
        return None
    return RELATIONSHIP_TYPES[RelationshipType(value)]


def get_inverse_type(value: str) -> Optional[str]:
    """Return the inverse type name, the type itself when bidirectional, else None."""
    info = get_type_info(value)
    if info is None:
        return None
    if info.is_bidirectional:
        return info.type.value
    return info.inverse_type.value if info.inverse_type else None


def types_by_semantic_weight() -> list[RelationshipTypeInfo]:
    """All relationship types ordered by semantic weight, heaviest first."""
    return sorted(RELATIONSHIP_TYPES.values(), key=lambda info: -info.semantic_weight)


_VALUES = frozenset(rel.value for rel in RelationshipType)
