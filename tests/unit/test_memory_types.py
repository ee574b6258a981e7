"""Tests for memory graph data types and the relationship vocabulary."""

from datetime import timezone

import pytest

from memgraph.memory.relationships import (
    DEFAULT_RELATIONSHIP_TYPE,
    RELATIONSHIP_TYPES,
    RelationshipType,
    get_inverse_type,
    get_type_info,
    is_valid_type,
    types_by_semantic_weight,
)
from memgraph.memory.types import (
    Domain,
    DomainRef,
    GraphEdge,
    MemoryNode,
    PersistenceState,
    parse_timestamp,
    utc_now,
)


class TestTimestamps:
    """Tests for timestamp helpers."""

    def test_utc_now_is_zulu_with_milliseconds(self):
        """Test utc_now format."""
        stamp = utc_now()
        assert stamp.endswith("Z")
        # 2024-01-01T00:00:00.000Z
        assert len(stamp) == 24

    def test_parse_timestamp_zulu(self):
        """Test Z suffix parses as UTC."""
        parsed = parse_timestamp("2024-03-01T12:30:00.000Z")
        assert parsed.tzinfo == timezone.utc
        assert parsed.hour == 12

    def test_parse_timestamp_naive_is_utc(self):
        """Test naive timestamps are treated as UTC."""
        assert parse_timestamp("2024-03-01T12:30:00").tzinfo == timezone.utc

    def test_parse_timestamp_invalid(self):
        """Test invalid timestamps raise ValueError."""
        with pytest.raises(ValueError):
            parse_timestamp("yesterday")

    def test_timestamps_sort_lexically(self):
        """Test generated timestamps order the same as text and as time."""
        first = utc_now()
        second = utc_now()
        assert first <= second


class TestDomain:
    """Tests for Domain serialization."""

    def test_to_dict_uses_camel_case(self):
        domain = Domain(id="work", name="Work", description="Job notes")
        data = domain.to_dict()
        assert data["id"] == "work"
        assert "lastAccess" in data
        assert "last_access" not in data

    def test_from_dict_defaults(self):
        """Test missing optional fields get defaults."""
        domain = Domain.from_dict({"id": "work"})
        assert domain.name == "work"
        assert domain.description == ""
        assert domain.created

    def test_round_trip(self):
        domain = Domain(id="work", name="Work", description="d")
        assert Domain.from_dict(domain.to_dict()) == domain


class TestMemoryNode:
    """Tests for MemoryNode."""

    def test_defaults(self):
        node = MemoryNode(id="n1", content="hello")
        assert node.path == "/"
        assert node.tags == []
        assert node.domain_refs == []

    def test_tags_are_deduplicated_in_order(self):
        """Test tags are a set that keeps insertion order."""
        node = MemoryNode(id="n1", content="x", tags=["b", "a", "b"])
        assert node.tags == ["b", "a"]

    def test_to_dict_omits_empty_domain_refs(self):
        data = MemoryNode(id="n1", content="x").to_dict()
        assert "domainRefs" not in data

    def test_domain_refs_round_trip(self):
        """Test domain references survive serialization."""
        node = MemoryNode(
            id="n1",
            content="x",
            domain_refs=[DomainRef(domain="other", node_id="n9", description="see", bidirectional=False)],
        )
        data = node.to_dict()
        assert data["domainRefs"][0]["nodeId"] == "n9"
        restored = MemoryNode.from_dict(data)
        assert restored.domain_refs == node.domain_refs

    def test_domain_ref_accepts_entry_point_id(self):
        """Test the older entryPointId key is read as node_id."""
        ref = DomainRef.from_dict({"domain": "other", "entryPointId": "n2"})
        assert ref.node_id == "n2"
        assert ref.bidirectional is True


class TestGraphEdge:
    """Tests for GraphEdge."""

    def test_key_identifies_edge(self):
        edge = GraphEdge(source="a", target="b", type="relates_to", strength=0.7)
        assert edge.key == ("a", "b", "relates_to")

    def test_from_dict_coerces_strength(self):
        edge = GraphEdge.from_dict({"source": "a", "target": "b", "type": "supports", "strength": "0.25"})
        assert edge.strength == 0.25

    def test_default_strength(self):
        assert GraphEdge(source="a", target="b", type="supports").strength == 0.5


class TestPersistenceState:
    """Tests for PersistenceState."""

    def test_last_memory_id_optional(self):
        data = PersistenceState(current_domain="general").to_dict()
        assert data["currentDomain"] == "general"
        assert "lastMemoryId" not in data

    def test_round_trip(self):
        state = PersistenceState(current_domain="work", last_memory_id="n1")
        assert PersistenceState.from_dict(state.to_dict()) == state


class TestRelationshipTypes:
    """Tests for the relationship vocabulary."""

    def test_every_type_has_info(self):
        assert set(RELATIONSHIP_TYPES) == set(RelationshipType)

    def test_is_valid_type(self):
        assert is_valid_type("relates_to")
        assert is_valid_type("part_of")
        assert not is_valid_type("loves")

    def test_default_type(self):
        assert DEFAULT_RELATIONSHIP_TYPE is RelationshipType.RELATES_TO

    def test_inverse_of_directional_type(self):
        assert get_inverse_type("contains") == "part_of"
        assert get_inverse_type("part_of") == "contains"

    def test_inverse_of_bidirectional_type_is_itself(self):
        assert get_inverse_type("relates_to") == "relates_to"

    def test_unknown_type_info(self):
        assert get_type_info("loves") is None
        assert get_inverse_type("loves") is None

    def test_semantic_weights_in_range_and_sorted(self):
        ordered = types_by_semantic_weight()
        weights = [info.semantic_weight for info in ordered]
        assert weights == sorted(weights, reverse=True)
        assert all(0.0 <= w <= 1.0 for w in weights)
