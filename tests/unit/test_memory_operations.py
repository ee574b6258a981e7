"""Unit tests for memory operations module."""

import re
from pathlib import Path

import pytest

from memgraph.errors import (
    ConflictError,
    IntegrityViolationError,
    InvalidArgumentError,
    NotFoundError,
)
from memgraph.graph.recall import RecallQuery
from memgraph.graph.registry import DomainRegistry
from memgraph.memory.operations import (
    build_recall_query,
    create_domain,
    edit_memory,
    forget_memory,
    generate_graph_diagram,
    list_domains,
    normalize_domain_refs,
    normalize_relationships,
    recall_memories,
    search_content,
    select_domain,
    store_memory,
    traverse_memories,
)
from memgraph.memory.types import DomainRef, Relationship
from memgraph.storage.json_store import JsonMemoryStorage
from memgraph.storage.sqlite import SQLiteMemoryStorage


async def make_registry(storage) -> DomainRegistry:
    registry = DomainRegistry(storage)
    await registry.initialize()
    return registry


@pytest.fixture(params=["json", "sqlite"])
def storage(request, tmp_path: Path):
    """Every operation test runs against both file-backed stores."""
    if request.param == "json":
        s = JsonMemoryStorage(tmp_path / "store")
    else:
        s = SQLiteMemoryStorage(tmp_path / "memory.db")
    yield s
    s.close()


class TestNormalization:
    """Tests for argument normalization helpers."""

    def test_relationships_by_type(self):
        rels = normalize_relationships({"supports": [{"target_id": "a", "strength": 0.9}, {"targetId": "b"}]})
        assert rels == [
            Relationship(target_id="a", type="supports", strength=0.9),
            Relationship(target_id="b", type="supports", strength=0.5),
        ]

    def test_relationships_as_list(self):
        rels = normalize_relationships([{"target_id": "a", "type": "refines"}])
        assert rels[0].type == "refines"

    @pytest.mark.parametrize(
        "relationships",
        [
            {"loves": [{"target_id": "a"}]},
            {"supports": [{"strength": 0.5}]},
            {"supports": [{"target_id": "a", "strength": 1.5}]},
            [{"target_id": "a"}],
            ["a"],
        ],
    )
    def test_invalid_relationships(self, relationships):
        with pytest.raises(InvalidArgumentError):
            normalize_relationships(relationships)

    def test_domain_refs(self):
        refs = normalize_domain_refs([{"domain": "work", "nodeId": "n1", "description": "d"}, DomainRef("x")])
        assert refs[0] == DomainRef(domain="work", node_id="n1", description="d", bidirectional=True)
        assert refs[1].domain == "x"

    def test_domain_ref_requires_domain(self):
        with pytest.raises(InvalidArgumentError):
            normalize_domain_refs([{"node_id": "n1"}])


class TestDomainOperations:
    """Tests for create/select/list."""

    @pytest.mark.asyncio
    async def test_create_select_list(self, storage):
        registry = await make_registry(storage)
        await create_domain(registry, "work", "Work", "Job")
        await select_domain(registry, "work")
        listing = await list_domains(registry)
        assert {d.id for d in listing.domains} == {"general", "work"}
        assert listing.current_domain == "work"

    @pytest.mark.asyncio
    async def test_create_conflict(self, storage):
        registry = await make_registry(storage)
        with pytest.raises(ConflictError):
            await create_domain(registry, "general", "General")


class TestStoreMemory:
    """Tests for store_memory."""

    @pytest.mark.asyncio
    async def test_store_defaults(self, storage):
        registry = await make_registry(storage)
        node = await store_memory(registry, "First memory")
        assert re.fullmatch(r"[0-9a-f]{32}", node.id)
        assert node.path == "/"
        assert node.tags == []
        assert node.timestamp.endswith("Z")
        assert storage.get_persistence_state().last_memory_id == node.id
        nodes, _ = storage.get_memories("general")
        assert nodes[node.id].content == "First memory"

    @pytest.mark.asyncio
    async def test_store_with_relationships(self, storage):
        registry = await make_registry(storage)
        first = await store_memory(registry, "Base fact", path="/facts", tags=["a", "a", "b"])
        second = await store_memory(
            registry,
            "Derived fact",
            relationships={"derives_from": [{"target_id": first.id, "strength": 0.8}]},
        )
        assert first.tags == ["a", "b"]
        _, edges = storage.get_memories("general")
        assert [(e.source, e.target, e.type, e.strength) for e in edges] == [
            (second.id, first.id, "derives_from", 0.8)
        ]

    @pytest.mark.asyncio
    async def test_store_with_missing_target_stores_nothing(self, storage):
        registry = await make_registry(storage)
        with pytest.raises(IntegrityViolationError):
            await store_memory(registry, "Orphan", relationships=[{"target_id": "missing", "type": "supports"}])
        nodes, _ = storage.get_memories("general")
        assert nodes == {}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", ["", "   ", None])
    async def test_store_requires_content(self, storage, content):
        registry = await make_registry(storage)
        with pytest.raises(InvalidArgumentError):
            await store_memory(registry, content)

    @pytest.mark.asyncio
    async def test_domain_refs_are_checked(self, storage):
        registry = await make_registry(storage)
        await create_domain(registry, "work", "Work")
        with pytest.raises(IntegrityViolationError):
            await store_memory(registry, "x", domain_refs=[{"domain": "nowhere"}])
        with pytest.raises(IntegrityViolationError):
            await store_memory(registry, "x", domain_refs=[{"domain": "work", "node_id": "ghost"}])

    @pytest.mark.asyncio
    async def test_domain_pointer(self, storage):
        registry = await make_registry(storage)
        await create_domain(registry, "work", "Work")
        node = await store_memory(
            registry,
            "See the work notes",
            domain_refs=[{"domain": "work"}],
            domain_pointer={"domain": "general", "description": "self"},
        )
        assert [r.domain for r in node.domain_refs] == ["work", "general"]


class TestEditMemory:
    """Tests for edit_memory."""

    @pytest.mark.asyncio
    async def test_edit_fields(self, storage):
        registry = await make_registry(storage)
        node = await store_memory(registry, "Old text", path="/old", tags=["x"])
        edited = await edit_memory(registry, node.id, content="New text", tags=["y"])
        assert edited.content == "New text"
        assert edited.path == "/old"
        assert edited.tags == ["y"]
        assert edited.timestamp == node.timestamp

    @pytest.mark.asyncio
    async def test_edit_replaces_outgoing_edges(self, storage):
        registry = await make_registry(storage)
        a = await store_memory(registry, "A")
        b = await store_memory(registry, "B")
        c = await store_memory(registry, "C", relationships={"relates_to": [{"target_id": a.id}]})
        await edit_memory(registry, c.id, relationships={"supports": [{"target_id": b.id, "strength": 0.9}]})
        _, edges = storage.get_memories("general")
        assert [(e.source, e.target, e.type) for e in edges] == [(c.id, b.id, "supports")]

    @pytest.mark.asyncio
    async def test_edit_updates_search_index(self, storage):
        registry = await make_registry(storage)
        node = await store_memory(registry, "aardvark habits")
        await edit_memory(registry, node.id, content="zebra habits")
        assert await search_content(registry, "aardvark") == []
        assert [h.node.id for h in await search_content(registry, "zebra")] == [node.id]

    @pytest.mark.asyncio
    async def test_edit_missing(self, storage):
        registry = await make_registry(storage)
        with pytest.raises(NotFoundError):
            await edit_memory(registry, "missing", content="x")


class TestForgetMemory:
    """Tests for forget_memory."""

    @pytest.mark.asyncio
    async def test_forget_removes_node_and_edges(self, storage):
        registry = await make_registry(storage)
        a = await store_memory(registry, "A")
        b = await store_memory(registry, "B", relationships={"relates_to": [{"target_id": a.id}]})
        result = await forget_memory(registry, a.id)
        assert result.deleted_ids == [a.id]
        assert result.removed_edges == 1
        nodes, edges = storage.get_memories("general")
        assert list(nodes) == [b.id]
        assert edges == []

    @pytest.mark.asyncio
    async def test_forget_cascade(self, storage):
        registry = await make_registry(storage)
        a = await store_memory(registry, "A")
        b = await store_memory(registry, "B", relationships={"relates_to": [{"target_id": a.id}]})
        c = await store_memory(registry, "C", relationships={"relates_to": [{"target_id": b.id}]})
        result = await forget_memory(registry, a.id, cascade=True)
        assert result.deleted_ids == [a.id, b.id]
        nodes, _ = storage.get_memories("general")
        assert list(nodes) == [c.id]

    @pytest.mark.asyncio
    async def test_forget_clears_last_memory(self, storage):
        registry = await make_registry(storage)
        node = await store_memory(registry, "A")
        await forget_memory(registry, node.id)
        assert storage.get_persistence_state().last_memory_id is None

    @pytest.mark.asyncio
    async def test_forget_reports_dangling_references(self, storage):
        registry = await make_registry(storage)
        target = await store_memory(registry, "Referenced")
        await create_domain(registry, "work", "Work")
        await select_domain(registry, "work")
        holder = await store_memory(registry, "Holder", domain_refs=[{"domain": "general", "node_id": target.id}])
        await select_domain(registry, "general")

        result = await forget_memory(registry, target.id)
        assert [(r.domain, r.node_id) for r in result.dangling_references] == [("work", holder.id)]

    @pytest.mark.asyncio
    async def test_forget_missing(self, storage):
        registry = await make_registry(storage)
        with pytest.raises(NotFoundError):
            await forget_memory(registry, "missing")


class TestRecallMemories:
    """Tests for recall_memories and build_recall_query."""

    def test_build_query_from_dicts(self):
        query = build_recall_query(
            {
                "strategy": "content",
                "search": {"keywords": ["x"], "fuzzy_match": True},
                "combined_strategy": [{"strategy": "recent"}],
            }
        )
        assert query.search.fuzzy_match is True
        assert isinstance(query.combined_strategy[0], RecallQuery)

    @pytest.mark.parametrize("params", [{"bogus": 1}, {"search": {"nope": True}}])
    def test_build_query_rejects_unknown_keys(self, params):
        with pytest.raises(InvalidArgumentError):
            build_recall_query(params)

    @pytest.mark.asyncio
    async def test_recall_with_params(self, storage):
        registry = await make_registry(storage)
        first = await store_memory(registry, "Old", tags=["keep"])
        await store_memory(registry, "New")
        results = await recall_memories(registry, strategy="tag", tags=["keep"])
        assert [r.node.id for r in results] == [first.id]

    @pytest.mark.asyncio
    async def test_recall_content_with_details(self, storage):
        registry = await make_registry(storage)
        node = await store_memory(registry, "Kafka consumers rebalance on join")
        await store_memory(registry, "Unrelated note")
        results = await recall_memories(
            registry, strategy="content", search={"keywords": ["rebalance"]}, match_details=True
        )
        assert [r.node.id for r in results] == [node.id]
        assert results[0].match_details.positions == {"rebalance": [16]}

    @pytest.mark.asyncio
    async def test_recall_invalid(self, storage):
        registry = await make_registry(storage)
        with pytest.raises(InvalidArgumentError):
            await recall_memories(registry, strategy="path")


class TestSearchContent:
    """Tests for search_content."""

    @pytest.mark.asyncio
    async def test_search_across_domains(self, storage):
        registry = await make_registry(storage)
        general = await store_memory(registry, "Deploying with kubernetes")
        await create_domain(registry, "work", "Work")
        await select_domain(registry, "work")
        work = await store_memory(registry, "Kubernetes upgrade plan")

        hits = await search_content(registry, "kubernetes")
        assert {(h.domain, h.node.id) for h in hits} == {("general", general.id), ("work", work.id)}
        only_work = await search_content(registry, "kubernetes", domain="work")
        assert [h.node.id for h in only_work] == [work.id]

    @pytest.mark.asyncio
    async def test_hits_in_current_domain_carry_edges(self, storage):
        registry = await make_registry(storage)
        a = await store_memory(registry, "Caching layer design")
        await store_memory(registry, "Cache eviction", relationships={"refines": [{"target_id": a.id}]})
        hits = await search_content(registry, "design")
        assert [e.type for e in hits[0].edges] == ["refines"]

    @pytest.mark.asyncio
    async def test_search_unknown_domain(self, storage):
        registry = await make_registry(storage)
        with pytest.raises(NotFoundError):
            await search_content(registry, "x", domain="nowhere")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("query,max_results", [("", 5), ("!!!", 5), ("ok", 0)])
    async def test_search_invalid(self, storage, query, max_results):
        registry = await make_registry(storage)
        with pytest.raises(InvalidArgumentError):
            await search_content(registry, query, max_results=max_results)


class TestTraverseAndDiagram:
    """Tests for traverse_memories and generate_graph_diagram."""

    @pytest.mark.asyncio
    async def test_traverse(self, storage):
        registry = await make_registry(storage)
        a = await store_memory(registry, "A")
        b = await store_memory(registry, "B", relationships={"relates_to": [{"target_id": a.id}]})
        await store_memory(registry, "C", relationships={"relates_to": [{"target_id": b.id}]})
        result = await traverse_memories(registry, a.id, max_depth=1)
        assert result.node_ids() == [a.id, b.id]

    @pytest.mark.asyncio
    async def test_diagram(self, storage):
        registry = await make_registry(storage)
        a = await store_memory(registry, "Start here")
        b = await store_memory(registry, "Then this", relationships={"relates_to": [{"target_id": a.id, "strength": 0.7}]})
        diagram = await generate_graph_diagram(
            registry, a.id, direction="TB", content_format={"maxLength": 5, "includeId": True}
        )
        assert diagram.startswith("graph TB")
        assert f'{a.id}["[{a.id}] St..."]' in diagram
        assert f'{b.id} -->|"relates_to (0.7)"| {a.id}' in diagram

    @pytest.mark.asyncio
    async def test_diagram_without_strength(self, storage):
        registry = await make_registry(storage)
        a = await store_memory(registry, "A")
        b = await store_memory(registry, "B", relationships={"supports": [{"target_id": a.id}]})
        diagram = await generate_graph_diagram(registry, b.id, include_strength=False)
        assert f'{b.id} -->|"supports"| {a.id}' in diagram

    @pytest.mark.asyncio
    async def test_diagram_errors(self, storage):
        registry = await make_registry(storage)
        node = await store_memory(registry, "A")
        with pytest.raises(InvalidArgumentError):
            await generate_graph_diagram(registry, node.id, direction="UP")
        with pytest.raises(InvalidArgumentError):
            await generate_graph_diagram(registry, "")
        with pytest.raises(NotFoundError):
            await generate_graph_diagram(registry, "missing")
