"""Edge predicate shared by recall, traversal and diagram rendering."""

from dataclasses import dataclass
from typing import Iterable, Optional

from memgraph.errors import InvalidArgumentError
from memgraph.memory.relationships import is_valid_type
from memgraph.memory.types import GraphEdge


def check_strength(value: Optional[float], name: str = "min_strength") -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidArgumentError(f"{name} must be a number, got {value!r}")
    if not 0.0 <= value <= 1.0:
        raise InvalidArgumentError(f"{name} must be between 0.0 and 1.0, got {value}")
    return float(value)


def check_relationship_types(types: Optional[Iterable[str]]) -> Optional[frozenset[str]]:
    if types is None:
        return None
    if isinstance(types, str):
        types = [types]
    selected = frozenset(types)
    unknown = sorted(t for t in selected if not isinstance(t, str) or not is_valid_type(t))
    if unknown:
        raise InvalidArgumentError(f"Unknown relationship type(s): {', '.join(map(str, unknown))}")
    return selected or None


@dataclass(frozen=True)
class EdgeFilter:
    """Accepts edges of the given types at or above a strength."""
    relationship_types: Optional[frozenset[str]] = None
    min_strength: Optional[float] = None

    @classmethod
    def build(
        cls,
        relationship_types: Optional[Iterable[str]] = None,
        min_strength: Optional[float] = None,
    ) -> "EdgeFilter":
        """Validate arguments and build a filter.

        Raises:
            InvalidArgumentError: On unknown types or strength outside [0, 1]
        """
        return cls(check_relationship_types(relationship_types), check_strength(min_strength))

    def accepts(self, edge: GraphEdge) -> bool:
        if self.relationship_types is not None and edge.type not in self.relationship_types:
            return False
        if self.min_strength is not None and edge.strength < self.min_strength:
            return False
        return True
