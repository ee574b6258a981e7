"""Tests for Mermaid diagram rendering."""

import pytest

from memgraph.errors import InvalidArgumentError
from memgraph.graph.filters import EdgeFilter
from memgraph.graph.mermaid import (
    MermaidFormatter,
    check_direction,
    escape_label,
    render_recall_diagram,
    truncate,
)
from memgraph.memory.types import (
    ContentFormat,
    CrossDomainConnection,
    DomainTraversal,
    GraphEdge,
    MemoryNode,
    RecallResult,
    TraversalEntry,
    TraversalResult,
)


def _node(node_id: str, content: str = "") -> MemoryNode:
    return MemoryNode(id=node_id, content=content or f"content of {node_id}", timestamp="2024-03-05T14:30:00.000Z")


class TestLabels:
    """Tests for label escaping and truncation."""

    def test_escape(self):
        assert escape_label('say "hi" <b>\nnow') == "say #quot;hi#quot; #lt;b#gt; now"

    def test_truncate(self):
        assert truncate("abcdefghij", 6) == "abc..."
        assert truncate("short", 10) == "short"
        assert truncate("abcdefghij", None) == "abcdefghij"

    def test_truncate_suffix_longer_than_limit(self):
        assert truncate("abcdefghij", 2) == "ab"

    def test_node_label_options(self):
        formatter = MermaidFormatter(
            content_format=ContentFormat(max_length=10, include_id=True, include_timestamp=True),
        )
        assert formatter.node_label(_node("n1", "a long piece of content")) == (
            "[n1] a long ... (2024-03-05 14:30:00 UTC)"
        )

    def test_edge_label(self):
        edge = GraphEdge(source="a", target="b", type="supports", strength=0.75)
        assert MermaidFormatter().edge_label(edge) == "supports (0.75)"
        assert MermaidFormatter(include_strength=False).edge_label(edge) == "supports"

    def test_invalid_max_length(self):
        with pytest.raises(InvalidArgumentError):
            MermaidFormatter(content_format=ContentFormat(max_length=0))


class TestDirection:
    """Tests for flowchart direction."""

    @pytest.mark.parametrize("direction", ["TB", "BT", "LR", "RL"])
    def test_valid(self, direction):
        assert MermaidFormatter(direction).render([("d", [_node("a")])], []).startswith(f"graph {direction}")

    def test_invalid(self):
        with pytest.raises(InvalidArgumentError):
            check_direction("UP")


class TestRender:
    """Tests for single and multi-domain rendering."""

    def test_single_domain(self):
        edge = GraphEdge(source="a", target="b", type="relates_to", strength=0.7)
        diagram = MermaidFormatter().render(
            [("general", [_node("a"), _node("b")])],
            [("general", edge)],
        )
        assert diagram.splitlines() == [
            "graph LR",
            '    a["content of a"]',
            '    b["content of b"]',
            '    a -->|"relates_to (0.7)"| b',
        ]

    def test_unsafe_ids_are_sanitized_and_unique(self):
        diagram = MermaidFormatter().render([("d", [_node("x-1"), _node("x_1")])], [])
        assert 'x_1["content of x-1"]' in diagram
        assert 'x_1_2["content of x_1"]' in diagram

    def test_edges_with_undeclared_endpoint_skipped(self):
        edge = GraphEdge(source="a", target="zzz", type="relates_to")
        diagram = MermaidFormatter().render([("d", [_node("a")])], [("d", edge)])
        assert "-->" not in diagram

    def test_duplicate_edges_drawn_once(self):
        edge = GraphEdge(source="a", target="b", type="relates_to", strength=0.5)
        diagram = MermaidFormatter().render([("d", [_node("a"), _node("b")])], [("d", edge), ("d", edge)])
        assert diagram.count("-->") == 1

    def test_edge_filter(self):
        edges = [
            ("d", GraphEdge(source="a", target="b", type="relates_to", strength=0.9)),
            ("d", GraphEdge(source="a", target="b", type="supports", strength=0.2)),
        ]
        formatter = MermaidFormatter(edge_filter=EdgeFilter.build(None, 0.5))
        diagram = formatter.render([("d", [_node("a"), _node("b")])], edges)
        assert "relates_to" in diagram
        assert "supports" not in diagram

    def test_multi_domain_subgraphs_and_dashed_links(self):
        connections = [
            CrossDomainConnection("general", "a", "work", "w", description="see also"),
            CrossDomainConnection("work", "w", "general", "a", bidirectional=False),
        ]
        diagram = MermaidFormatter().render(
            [("general", [_node("a")]), ("work", [_node("w")])],
            [],
            connections,
            primary_domain="general",
        )
        lines = diagram.splitlines()
        assert '    subgraph general_domain["general"]' in lines
        assert '        a["content of a"]' in lines
        assert '    subgraph work_domain["work"]' in lines
        assert '        work__w["content of w"]' in lines
        assert '    a <-.->|"see also"| work__w' in lines
        assert '    work__w -.->|"points to general"| a' in lines

    def test_same_id_in_two_domains(self):
        diagram = MermaidFormatter().render(
            [("general", [_node("n")]), ("work", [_node("n")])],
            [],
            primary_domain="general",
        )
        assert '        n["content of n"]' in diagram
        assert '        work__n["content of n"]' in diagram

    def test_deterministic(self):
        groups = [("general", [_node("a"), _node("b")])]
        edges = [("general", GraphEdge(source="b", target="a", type="refines", strength=0.4))]
        formatter = MermaidFormatter()
        assert formatter.render(groups, edges) == formatter.render(groups, edges)


class TestResultRendering:
    """Tests for rendering traversal and recall results."""

    def test_render_traversal(self):
        edge = GraphEdge(source="a", target="b", type="contains", strength=1.0)
        result = TraversalResult(
            start_domain="general",
            start_node_id="a",
            domains=[
                DomainTraversal(
                    "general",
                    [
                        TraversalEntry(_node("a"), 0, outgoing=[edge]),
                        TraversalEntry(_node("b"), 1, incoming=[edge]),
                    ],
                )
            ],
        )
        diagram = MermaidFormatter("TB").render_traversal(result)
        assert diagram.startswith("graph TB")
        assert 'a -->|"contains (1)"| b' in diagram
        assert "subgraph" not in diagram

    def test_render_recall_diagram(self):
        edge = GraphEdge(source="a", target="b", type="example_of", strength=0.5)
        results = [
            RecallResult(_node("a"), edges=[edge]),
            RecallResult(_node("b"), edges=[edge]),
        ]
        diagram = render_recall_diagram("general", results, direction="RL")
        assert diagram.splitlines()[0] == "graph RL"
        assert diagram.count("-->") == 1
