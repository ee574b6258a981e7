"""Tests for converting memory graphs between storage backends."""

import json
from pathlib import Path

import pytest

from memgraph.convert import convert_storage, json_to_sqlite, main, sqlite_to_json
from memgraph.errors import InvalidArgumentError, StorageError
from memgraph.memory.types import Domain, DomainRef, GraphEdge, MemoryNode, PersistenceState
from memgraph.storage.json_store import JsonMemoryStorage
from memgraph.storage.sqlite import SQLiteMemoryStorage


def populate(storage) -> None:
    """Two domains with an edge, tags and a cross-domain reference."""
    storage.initialize()
    storage.create_domain(Domain(id="general", name="General", created="2024-01-01T00:00:00.000Z"))
    storage.create_domain(Domain(id="work", name="Work", description="Job notes", created="2024-01-02T00:00:00.000Z"))
    storage.save_memories(
        "general",
        {
            "g1": MemoryNode(id="g1", content="First", tags=["a"], timestamp="2024-01-01T00:00:00.000Z"),
            "g2": MemoryNode(
                id="g2",
                content="Second",
                path="/notes",
                timestamp="2024-01-02T00:00:00.000Z",
                domain_refs=[DomainRef(domain="work", node_id="w1", description="see work")],
            ),
        },
        [GraphEdge(source="g2", target="g1", type="derives_from", strength=0.8, timestamp="2024-01-02T00:00:00.000Z")],
    )
    storage.save_memories("work", {"w1": MemoryNode(id="w1", content="Work item")}, [])
    storage.save_persistence_state(PersistenceState(current_domain="work", last_memory_id="w1"))


def write_json(path: Path, data) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data))


class TestConvertStorage:
    """Tests for convert_storage."""

    def test_json_to_sqlite_to_json_round_trip(self, tmp_path: Path):
        source = JsonMemoryStorage(tmp_path / "json")
        populate(source)
        source.close()

        report = json_to_sqlite(tmp_path / "json", tmp_path / "graph.db")
        assert (report.domains, report.nodes, report.edges) == (2, 3, 1)
        assert report.persistence_copied
        assert report.skipped == []

        back = sqlite_to_json(tmp_path / "graph.db", tmp_path / "copy")
        assert back.skipped == []

        original = JsonMemoryStorage(tmp_path / "json")
        copy = JsonMemoryStorage(tmp_path / "copy")
        assert copy.get_domains() == original.get_domains()
        assert copy.get_persistence_state() == original.get_persistence_state()
        for domain_id in ("general", "work"):
            assert copy.get_memories(domain_id) == original.get_memories(domain_id)
        assert copy.verify_layout() == []

    def test_default_sqlite_file(self, tmp_path: Path):
        source = JsonMemoryStorage(tmp_path)
        populate(source)
        json_to_sqlite(tmp_path)
        assert (tmp_path / "memory-graph.db").is_file()

    def test_destination_domains_are_replaced(self, tmp_path: Path):
        source = JsonMemoryStorage(tmp_path / "json")
        populate(source)
        destination = SQLiteMemoryStorage(ephemeral=True)
        destination.initialize()
        destination.create_domain(Domain(id="stale", name="Stale"))
        convert_storage(source, destination)
        assert list(destination.get_domains()) == ["general", "work"]
        destination.close()

    def test_invalid_items_are_skipped(self, tmp_path: Path):
        """Test bad edges and references are reported instead of aborting."""
        root = tmp_path / "json"
        write_json(root / "domains.json", {"general": Domain(id="general", name="General").to_dict()})
        write_json(root / "persistence.json", {"currentDomain": "general"})
        write_json(
            root / "memories" / "general.json",
            {
                "nodes": {
                    "n1": {"id": "n1", "content": "one", "domainRefs": [{"domain": "gone"}]},
                    "wrong": {"id": "n2", "content": "two"},
                },
                "edges": [
                    {"source": "n1", "target": "n2", "type": "relates_to", "strength": 0.5},
                    {"source": "n1", "target": "n2", "type": "relates_to", "strength": 0.6},
                    {"source": "n1", "target": "ghost", "type": "supports"},
                    {"source": "n2", "target": "n1", "type": "supports", "strength": 1.5},
                ],
            },
        )
        destination = SQLiteMemoryStorage(ephemeral=True)
        report = convert_storage(JsonMemoryStorage(root), destination)

        reasons = [(s.kind, s.reason) for s in report.skipped]
        assert ("reference", "unknown domain gone") in reasons
        assert ("edge", "duplicate") in reasons
        assert ("edge", "missing endpoint") in reasons
        assert ("edge", "strength 1.5 outside [0, 1]") in reasons
        assert ("node key", "stored under a different key than its id n2") in reasons

        nodes, edges = destination.get_memories("general")
        assert sorted(nodes) == ["n1", "n2"]
        assert nodes["n1"].domain_refs == []
        assert [(e.source, e.target, e.strength) for e in edges] == [("n1", "n2", 0.5)]
        assert report.nodes == 2
        assert report.edges == 1
        destination.close()

    def test_unmapped_sources_reported(self, tmp_path: Path):
        source = JsonMemoryStorage(tmp_path)
        populate(source)
        (tmp_path / "memories" / "orphan.json").write_text('{"nodes": {}, "edges": []}')
        (tmp_path / "memories" / "notes.txt").write_text("scratch")
        destination = SQLiteMemoryStorage(ephemeral=True)
        report = convert_storage(source, destination)
        assert sorted(Path(p).name for p in report.unmapped) == ["notes.txt", "orphan.json"]
        assert "unmapped source items (2)" in report.summary()
        destination.close()

    def test_persistence_state_for_unknown_domain_is_skipped(self, tmp_path: Path):
        source = JsonMemoryStorage(tmp_path)
        populate(source)
        source.save_persistence_state(PersistenceState(current_domain="deleted"))
        destination = SQLiteMemoryStorage(ephemeral=True)
        report = convert_storage(source, destination)
        assert not report.persistence_copied
        assert destination.get_persistence_state() is None
        destination.close()

    def test_incomplete_source(self, tmp_path: Path):
        destination = SQLiteMemoryStorage(tmp_path / "out.db")
        with pytest.raises(StorageError):
            convert_storage(JsonMemoryStorage(tmp_path / "missing"), destination)
        destination.close()

    def test_missing_json_memory_file(self, tmp_path: Path):
        source = JsonMemoryStorage(tmp_path)
        populate(source)
        (tmp_path / "memories" / "work.json").unlink()
        with pytest.raises(StorageError, match="work.json"):
            convert_storage(source, SQLiteMemoryStorage(ephemeral=True))

    def test_missing_sqlite_file(self, tmp_path: Path):
        with pytest.raises(StorageError):
            sqlite_to_json(tmp_path / "nope.db", tmp_path / "json")

    def test_same_store(self, tmp_path: Path):
        with pytest.raises(InvalidArgumentError):
            convert_storage(JsonMemoryStorage(tmp_path), JsonMemoryStorage(tmp_path))


class TestMain:
    """Tests for the memgraph-convert command line."""

    def test_json_to_sqlite(self, tmp_path: Path, capsys):
        populate(JsonMemoryStorage(tmp_path))
        code = main(["--from", "json", "--to", "sqlite", "--dir", str(tmp_path), "--db", str(tmp_path / "x.db")])
        assert code == 0
        out = capsys.readouterr().out
        assert "nodes:   3" in out
        assert "persistence state: copied" in out
        with SQLiteMemoryStorage(tmp_path / "x.db") as converted:
            assert set(converted.get_domains()) == {"general", "work"}

    def test_same_format_rejected(self, tmp_path: Path):
        assert main(["--from", "json", "--to", "json", "--dir", str(tmp_path)]) == 1

    def test_failure_returns_error_code(self, tmp_path: Path):
        assert main(["--from", "json", "--to", "sqlite", "--dir", str(tmp_path / "empty")]) == 1

    def test_unknown_format(self, tmp_path: Path):
        with pytest.raises(SystemExit):
            main(["--from", "yaml", "--to", "json", "--dir", str(tmp_path)])
