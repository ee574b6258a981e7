"""Tests for DomainRegistry - default domain, switch protocol and failure handling."""

import asyncio
import threading
import time
from pathlib import Path
from unittest.mock import patch

import pytest

from memgraph.errors import ConflictError, InvalidArgumentError, NotFoundError, StorageError
from memgraph.graph.registry import DomainRegistry, SwitchState
from memgraph.graph.store import GraphStore
from memgraph.memory.operations import recall_memories, store_memory
from memgraph.memory.types import Domain, MemoryNode, PersistenceState
from memgraph.storage.json_store import JsonMemoryStorage
from memgraph.storage.sqlite import SQLiteMemoryStorage


async def make_registry(storage) -> DomainRegistry:
    registry = DomainRegistry(storage)
    await registry.initialize()
    return registry


@pytest.fixture
def storage():
    s = SQLiteMemoryStorage(ephemeral=True)
    yield s
    s.close()


class TestInitialize:
    """Tests for registry start-up."""

    @pytest.mark.asyncio
    async def test_creates_default_domain(self, storage):
        registry = await make_registry(storage)
        domains = await registry.get_domains()
        assert list(domains) == ["general"]
        assert domains["general"].name == "General"
        assert registry.current_domain == "general"
        assert storage.get_persistence_state().current_domain == "general"

    @pytest.mark.asyncio
    async def test_restores_persisted_domain(self, storage):
        storage.initialize()
        storage.create_domain(Domain(id="general", name="General"))
        storage.create_domain(Domain(id="work", name="Work"))
        storage.save_persistence_state(PersistenceState(current_domain="work"))
        registry = await make_registry(storage)
        assert registry.current_domain == "work"

    @pytest.mark.asyncio
    async def test_repairs_state_pointing_at_missing_domain(self, storage):
        storage.initialize()
        storage.create_domain(Domain(id="general", name="General"))
        storage.save_persistence_state(PersistenceState(current_domain="deleted"))
        registry = await make_registry(storage)
        assert registry.current_domain == "general"
        assert storage.get_persistence_state().current_domain == "general"

    @pytest.mark.asyncio
    async def test_json_backend(self, tmp_path: Path):
        registry = await make_registry(JsonMemoryStorage(tmp_path))
        assert registry.current_domain == "general"
        assert (tmp_path / "memories" / "general.json").exists()


class TestDomains:
    """Tests for creating and listing domains."""

    @pytest.mark.asyncio
    async def test_create_and_list(self, storage):
        registry = await make_registry(storage)
        await registry.create_domain("work", "Work", "Job notes")
        listing = await registry.list_domains()
        assert [d.id for d in listing.domains] == ["general", "work"]
        assert listing.current_domain == "general"

    @pytest.mark.asyncio
    async def test_create_does_not_switch(self, storage):
        registry = await make_registry(storage)
        await registry.create_domain("work", "Work")
        assert registry.current_domain == "general"

    @pytest.mark.asyncio
    async def test_create_duplicate(self, storage):
        registry = await make_registry(storage)
        with pytest.raises(ConflictError):
            await registry.create_domain("general", "Again")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("domain_id,name", [("", "Name"), ("id", "  ")])
    async def test_create_requires_id_and_name(self, storage, domain_id, name):
        registry = await make_registry(storage)
        with pytest.raises(InvalidArgumentError):
            await registry.create_domain(domain_id, name)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("domain_id", ["a/b", "..", ".hidden", "back\\slash", "two words", "-flag"])
    async def test_malformed_domain_id_rejected_on_every_backend(self, tmp_path: Path, domain_id):
        """Test the same id rule applies to file and database storage."""
        for backend in (JsonMemoryStorage(tmp_path / "json"), SQLiteMemoryStorage(ephemeral=True)):
            registry = await make_registry(backend)
            with pytest.raises(InvalidArgumentError):
                await registry.create_domain(domain_id, "Name")
            assert list(await registry.get_domains()) == ["general"]
            await registry.close()

    @pytest.mark.asyncio
    async def test_domain_id_with_dots_and_hyphens(self, storage):
        registry = await make_registry(storage)
        domain = await registry.create_domain("  client-a.v2  ", "Client A")
        assert domain.id == "client-a.v2"


class TestSelectDomain:
    """Tests for the persist-then-load switch protocol."""

    @pytest.mark.asyncio
    async def test_select_switches_and_persists(self, storage):
        registry = await make_registry(storage)
        await registry.create_domain("work", "Work")
        domain = await registry.select_domain("work")
        assert domain.id == "work"
        assert registry.current_domain == "work"
        assert registry.state is SwitchState.IDLE
        assert storage.get_persistence_state().current_domain == "work"
        assert (await registry.current_graph()).domain == "work"

    @pytest.mark.asyncio
    async def test_select_unknown_domain(self, storage):
        registry = await make_registry(storage)
        with pytest.raises(NotFoundError):
            await registry.select_domain("nope")
        assert registry.current_domain == "general"

    @pytest.mark.asyncio
    async def test_select_updates_last_access(self, storage):
        registry = await make_registry(storage)
        created = await registry.create_domain("work", "Work")
        with patch("memgraph.graph.registry.utc_now", return_value="2999-01-01T00:00:00.000Z"):
            domain = await registry.select_domain("work")
        assert domain.last_access == "2999-01-01T00:00:00.000Z"
        assert domain.last_access != created.last_access

    @pytest.mark.asyncio
    async def test_persist_failure_aborts_switch(self, storage):
        """Test a failed flush leaves the current domain and cache untouched."""
        registry = await make_registry(storage)
        await registry.create_domain("work", "Work")
        graph = await registry.current_graph()

        with patch.object(storage, "save_memories", side_effect=StorageError("disk full")):
            with pytest.raises(StorageError):
                await registry.select_domain("work")

        assert registry.current_domain == "general"
        assert registry.state is SwitchState.IDLE
        assert await registry.current_graph() is graph
        assert storage.get_persistence_state().current_domain == "general"

    @pytest.mark.asyncio
    async def test_load_failure_points_at_target_without_cache(self, storage):
        """Test a failed load leaves no stale graph and retries on next read."""
        registry = await make_registry(storage)
        await registry.create_domain("work", "Work")
        storage.save_memories("work", {"w1": MemoryNode(id="w1", content="work memory")}, [])

        with patch.object(storage, "get_memories", side_effect=StorageError("corrupt")):
            with pytest.raises(StorageError):
                await registry.select_domain("work")
            assert registry.current_domain == "work"
            assert registry.state is SwitchState.IDLE
            with pytest.raises(StorageError):
                await registry.current_graph()

        # The persisted state is only updated by a completed switch
        assert storage.get_persistence_state().current_domain == "general"
        graph = await registry.current_graph()
        assert graph.domain == "work"
        assert "w1" in graph

    @pytest.mark.asyncio
    async def test_unsaved_changes_are_flushed_before_switch(self, storage):
        registry = await make_registry(storage)
        await registry.create_domain("work", "Work")
        await registry.mutate(lambda g: g.add_node(MemoryNode(id="g1", content="general memory")))
        await registry.select_domain("work")
        nodes, _ = storage.get_memories("general")
        assert "g1" in nodes


class TestMutate:
    """Tests for copy-on-write mutation."""

    @pytest.mark.asyncio
    async def test_failed_flush_keeps_cache(self, storage):
        registry = await make_registry(storage)
        with patch.object(storage, "save_memories", side_effect=StorageError("disk full")):
            with pytest.raises(StorageError):
                await registry.mutate(lambda g: g.add_node(MemoryNode(id="x", content="lost")))
        assert "x" not in await registry.current_graph()

    @pytest.mark.asyncio
    async def test_failed_change_keeps_cache(self, storage):
        registry = await make_registry(storage)
        await registry.mutate(lambda g: g.add_node(MemoryNode(id="x", content="kept")))
        with pytest.raises(ConflictError):
            await registry.mutate(lambda g: g.add_node(MemoryNode(id="x", content="dup")))
        assert (await registry.current_graph()).nodes["x"].content == "kept"

    @pytest.mark.asyncio
    async def test_last_memory_id_recorded(self, storage):
        registry = await make_registry(storage)
        await registry.mutate(lambda g: g.add_node(MemoryNode(id="x", content="c")), last_memory_id="x")
        assert storage.get_persistence_state().last_memory_id == "x"

    @pytest.mark.asyncio
    async def test_load_snapshot_of_other_domain(self, storage):
        registry = await make_registry(storage)
        await registry.create_domain("work", "Work")
        storage.save_memories("work", {"w1": MemoryNode(id="w1", content="w")}, [])
        snapshot = await registry.load_snapshot("work")
        assert "w1" in snapshot
        assert registry.current_domain == "general"
        with pytest.raises(NotFoundError):
            await registry.load_snapshot("nope")


class SlowDomainsSQLite(SQLiteMemoryStorage):
    """Domain reads take long enough for another operation to interleave."""

    def get_domains(self):
        time.sleep(0.05)
        return super().get_domains()


class SlowDomainsJson(JsonMemoryStorage):
    def get_domains(self):
        time.sleep(0.05)
        return super().get_domains()


class TestConcurrency:
    """Tests for operations that overlap in time."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("backend", ["sqlite", "json"])
    async def test_domain_created_during_store_is_kept(self, tmp_path: Path, backend):
        """Test refreshing last access never drops a domain created meanwhile."""
        slow = SlowDomainsSQLite(ephemeral=True) if backend == "sqlite" else SlowDomainsJson(tmp_path)
        registry = await make_registry(slow)

        stored = asyncio.create_task(store_memory(registry, "hello"))
        await asyncio.sleep(0.02)
        await registry.create_domain("proj", "Project")
        node = await stored

        listing = await registry.list_domains()
        assert sorted(d.id for d in listing.domains) == ["general", "proj"]
        assert "proj" in slow.get_domains()
        assert node.id in (await registry.current_graph()).nodes
        await registry.close()

    @pytest.mark.asyncio
    async def test_concurrent_creates_all_survive(self, storage):
        registry = await make_registry(storage)
        await asyncio.gather(
            *(registry.create_domain(f"d{i}", f"Domain {i}") for i in range(5)),
            *(store_memory(registry, f"memory {i}") for i in range(5)),
        )
        listing = await registry.list_domains()
        assert sorted(d.id for d in listing.domains) == ["d0", "d1", "d2", "d3", "d4", "general"]

    @pytest.mark.asyncio
    async def test_reader_waits_for_switch_to_finish(self, storage):
        """Test a recall during a switch sees the target domain, never a half-loaded cache."""
        registry = await make_registry(storage)
        await registry.create_domain("work", "Work")
        await registry.mutate(lambda g: g.add_node(MemoryNode(id="g1", content="general memory")))
        storage.save_memories("work", {"w1": MemoryNode(id="w1", content="work memory")}, [])

        loading = threading.Event()
        release = threading.Event()
        original_load = GraphStore.load

        def slow_load(backend, domain):
            if domain == "work":
                loading.set()
                release.wait(5)
            return original_load(backend, domain)

        with patch.object(GraphStore, "load", side_effect=slow_load):
            switch = asyncio.create_task(registry.select_domain("work"))
            assert await asyncio.to_thread(loading.wait, 5)
            assert registry.state is SwitchState.LOADING_TARGET

            recall = asyncio.create_task(recall_memories(registry, strategy="recent", max_nodes=10))
            listing = asyncio.create_task(registry.list_domains())
            for _ in range(10):
                await asyncio.sleep(0)
            assert not recall.done()
            assert not listing.done()

            release.set()
            await switch
            results = await recall

        assert [r.node.id for r in results] == ["w1"]
        assert (await listing).current_domain == "work"
        assert registry.state is SwitchState.IDLE
