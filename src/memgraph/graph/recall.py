"""Recall engine: strategy-driven flat-list queries over a domain graph.

Each query is validated in full before any storage access. The pipeline is
strategy (or combined strategies) -> before/after filter -> sort -> cap.
"""

import logging
import re
from collections import deque
from dataclasses import dataclass, field
from typing import Optional, Union

from memgraph.errors import InvalidArgumentError
from memgraph.graph.filters import EdgeFilter
from memgraph.graph.store import GraphStore
from memgraph.memory.types import MatchDetails, MemoryNode, RecallResult, parse_timestamp
from memgraph.storage.base import MemoryStorage, search_terms

logger = logging.getLogger(__name__)

STRATEGIES = ("recent", "related", "path", "tag", "content")
SORT_KEYS = ("relevance", "date", "strength")

FUZZY_TOLERANCE = 0.3

_WORD_PATTERN = re.compile(r"\w+", re.UNICODE)


@dataclass
class SearchOptions:
    """Content matching options.

    Attributes:
        keywords: Terms matched through the full-text index (any term matches)
        fuzzy_match: Match keywords by Levenshtein distance instead of the index
        regex: Regular expression matched against node content
        case_sensitive: Require exact case for keyword and regex matches
    """
    keywords: list[str] = field(default_factory=list)
    fuzzy_match: bool = False
    regex: Optional[str] = None
    case_sensitive: bool = False


@dataclass
class RecallQuery:
    """Parameters of a recall request.

    ``combined_strategy`` is either a list of sub-queries, each run with its
    own ``max_nodes``, or True to derive sub-queries from the path, tags,
    search and start_node_id supplied on this query.
    """
    strategy: Optional[str] = "recent"
    max_nodes: int = 10
    start_node_id: Optional[str] = None
    relationship_types: Optional[list[str]] = None
    min_strength: Optional[float] = None
    max_depth: int = 1
    path: Optional[str] = None
    tags: Optional[list[str]] = None
    search: Optional[SearchOptions] = None
    before: Optional[str] = None
    after: Optional[str] = None
    sort_by: Optional[str] = None
    match_details: bool = False
    combined_strategy: Union[bool, list["RecallQuery"], None] = None


def levenshtein(a: str, b: str) -> int:
    """Edit distance between two strings."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, 1):
        current = [i]
        for j, cb in enumerate(b, 1):
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + (ca != cb)))
        previous = current
    return previous[-1]


def _positive_int(value: object, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise InvalidArgumentError(f"{name} must be a positive integer, got {value!r}")
    return value


def _check_timestamp(value: Optional[str], name: str) -> None:
    if value is None:
        return
    try:
        parse_timestamp(value)
    except (TypeError, ValueError, AttributeError) as e:
        raise InvalidArgumentError(f"{name} is not an ISO-8601 timestamp: {value!r}") from e


class RecallEngine:
    """Runs recall queries against a graph and the storage full-text index."""

    def __init__(self, storage: MemoryStorage):
        self.storage = storage

    # =========================================================================
    # Validation
    # =========================================================================

    def validate(self, query: RecallQuery, nested: bool = False) -> None:
        """Check every parameter the query's strategies require.

        Raises:
            InvalidArgumentError: On a missing or malformed parameter
        """
        _positive_int(query.max_nodes, "max_nodes")
        _positive_int(query.max_depth, "max_depth")
        EdgeFilter.build(query.relationship_types, query.min_strength)
        _check_timestamp(query.before, "before")
        _check_timestamp(query.after, "after")
        if query.path is not None and not isinstance(query.path, str):
            raise InvalidArgumentError(f"path must be a string, got {query.path!r}")
        if query.tags is not None and (
            isinstance(query.tags, str)
            or not isinstance(query.tags, (list, tuple, set))
            or not all(isinstance(t, str) for t in query.tags)
        ):
            raise InvalidArgumentError(f"tags must be a list of strings, got {query.tags!r}")
        if query.sort_by is not None and query.sort_by not in SORT_KEYS:
            raise InvalidArgumentError(
                f"Invalid sort_by: {query.sort_by}. Must be one of: {list(SORT_KEYS)}"
            )

        if query.combined_strategy:
            if nested:
                raise InvalidArgumentError("Combined strategies cannot be nested")
            subqueries = self._subqueries(query)
            if not subqueries:
                raise InvalidArgumentError(
                    "combined_strategy needs at least one of path, tags, search or start_node_id"
                )
            for sub in subqueries:
                self.validate(sub, nested=True)
            return

        strategy = query.strategy
        if strategy not in STRATEGIES:
            raise InvalidArgumentError(
                f"Invalid strategy: {strategy}. Must be one of: {list(STRATEGIES)}"
            )
        if strategy == "related" and not query.start_node_id:
            raise InvalidArgumentError("Strategy 'related' requires start_node_id")
        if strategy == "path" and not query.path:
            raise InvalidArgumentError("Strategy 'path' requires path")
        if strategy == "tag" and not query.tags:
            raise InvalidArgumentError("Strategy 'tag' requires tags")
        if strategy == "content":
            search = query.search
            if search is None or not (search.keywords or search.regex):
                raise InvalidArgumentError("Strategy 'content' requires search keywords or regex")
            if search.keywords:
                search_terms(" ".join(search.keywords))
            if search.regex is not None:
                self._compile(search)

    @staticmethod
    def _compile(search: SearchOptions) -> re.Pattern:
        flags = 0 if search.case_sensitive else re.IGNORECASE
        try:
            return re.compile(search.regex or "", flags)
        except re.error as e:
            raise InvalidArgumentError(f"Invalid regex {search.regex!r}: {e}") from e

    def _subqueries(self, query: RecallQuery) -> list[RecallQuery]:
        if isinstance(query.combined_strategy, list):
            return list(query.combined_strategy)
        derived = []
        if query.search is not None and (query.search.keywords or query.search.regex):
            derived.append(RecallQuery(strategy="content", max_nodes=query.max_nodes, search=query.search))
        if query.path:
            derived.append(RecallQuery(strategy="path", max_nodes=query.max_nodes, path=query.path))
        if query.tags:
            derived.append(RecallQuery(strategy="tag", max_nodes=query.max_nodes, tags=query.tags))
        if query.start_node_id:
            derived.append(
                RecallQuery(
                    strategy="related",
                    max_nodes=query.max_nodes,
                    start_node_id=query.start_node_id,
                    relationship_types=query.relationship_types,
                    min_strength=query.min_strength,
                    max_depth=query.max_depth,
                )
            )
        return derived

    # =========================================================================
    # Execution
    # =========================================================================

    def recall(self, graph: GraphStore, query: RecallQuery) -> list[RecallResult]:
        self.validate(query)
        if query.combined_strategy:
            results = self._combined(graph, query)
        else:
            results = self._run_strategy(graph, query)
        results = self._filter_time(results, query.before, query.after)
        if query.sort_by:
            results = self._sort(graph, results, query.sort_by)
        results = results[: query.max_nodes]
        for result in results:
            result.edges = graph.edges_for(result.node.id)
            if not query.match_details:
                result.match_details = None
        return results

    def _combined(self, graph: GraphStore, query: RecallQuery) -> list[RecallResult]:
        merged: dict[str, RecallResult] = {}
        for sub in self._subqueries(query):
            found = self._filter_time(self._run_strategy(graph, sub), sub.before, sub.after)
            if sub.sort_by:
                found = self._sort(graph, found, sub.sort_by)
            for result in found[: sub.max_nodes]:
                existing = merged.get(result.node.id)
                if existing is None:
                    merged[result.node.id] = result
                elif result.score > existing.score:
                    existing.score = result.score
                    existing.match_details = result.match_details or existing.match_details
        return list(merged.values())

    def _run_strategy(self, graph: GraphStore, query: RecallQuery) -> list[RecallResult]:
        if query.strategy == "recent":
            return self._recent(graph)
        if query.strategy == "related":
            return self._related(graph, query)
        if query.strategy == "path":
            return self._by_path(graph, query.path or "/")
        if query.strategy == "tag":
            return self._by_tags(graph, query.tags or [])
        return self._by_content(graph, query.search or SearchOptions())

    def _recent(self, graph: GraphStore) -> list[RecallResult]:
        ordered = sorted(
            graph.nodes.values(),
            key=lambda n: (n.timestamp, graph.position(n.id)),
            reverse=True,
        )
        return [RecallResult(node=n, score=1.0) for n in ordered]

    def _related(self, graph: GraphStore, query: RecallQuery) -> list[RecallResult]:
        start = graph.get_node(query.start_node_id or "")
        edge_filter = EdgeFilter.build(query.relationship_types, query.min_strength)
        visited = {start.id}
        queue = deque([(start.id, 0)])
        results = []
        while queue:
            node_id, depth = queue.popleft()
            if depth >= query.max_depth:
                continue
            for edge in graph.edges_for(node_id):
                if not edge_filter.accepts(edge):
                    continue
                neighbour = edge.target if edge.source == node_id else edge.source
                if neighbour in visited or neighbour not in graph:
                    continue
                visited.add(neighbour)
                results.append(RecallResult(node=graph.nodes[neighbour], score=1.0 / (depth + 2)))
                queue.append((neighbour, depth + 1))
        return results

    def _by_path(self, graph: GraphStore, path: str) -> list[RecallResult]:
        prefix = path.rstrip("/") + "/"
        return [
            RecallResult(node=n, score=1.0)
            for n in graph.nodes.values()
            if n.path == path or n.path.startswith(prefix)
        ]

    def _by_tags(self, graph: GraphStore, tags: list[str]) -> list[RecallResult]:
        wanted = set(tags)
        return [
            RecallResult(node=n, score=1.0)
            for n in graph.nodes.values()
            if wanted.issubset(n.tags)
        ]

    # =========================================================================
    # Content matching
    # =========================================================================

    def _by_content(self, graph: GraphStore, search: SearchOptions) -> list[RecallResult]:
        details: dict[str, MatchDetails] = {}

        if search.keywords and search.fuzzy_match:
            for node in graph.nodes.values():
                found = self._fuzzy_details(node, search)
                if found is not None:
                    details[node.id] = found
        elif search.keywords:
            hits = self.storage.search_content(
                " ".join(search.keywords),
                domain=graph.domain,
                max_results=max(len(graph), 1),
            )
            terms = search_terms(" ".join(search.keywords))
            for hit in hits:
                node = graph.nodes.get(hit.node.id)
                if node is None:
                    continue
                found = self._term_details(node, terms, search.case_sensitive)
                if found is not None:
                    details[node.id] = found

        if search.regex:
            pattern = self._compile(search)
            for node in graph.nodes.values():
                found = self._regex_details(node, pattern)
                if found is None:
                    continue
                current = details.get(node.id)
                details[node.id] = found if current is None else self._merge(current, found)

        ordered = sorted(
            details.items(),
            key=lambda item: (-item[1].relevance, graph.position(item[0])),
        )
        return [
            RecallResult(node=graph.nodes[node_id], score=found.relevance, match_details=found)
            for node_id, found in ordered
        ]

    @staticmethod
    def _word_count(node: MemoryNode) -> int:
        return max(len(_WORD_PATTERN.findall(node.content)), 1)

    def _term_details(
        self,
        node: MemoryNode,
        terms: list[str],
        case_sensitive: bool,
    ) -> Optional[MatchDetails]:
        haystack = node.content if case_sensitive else node.content.lower()
        positions: dict[str, list[int]] = {}
        for term in terms:
            needle = term if case_sensitive else term.lower()
            found = [m.start() for m in re.finditer(re.escape(needle), haystack)]
            if found:
                positions[term] = found
        if case_sensitive and not positions:
            # Index matching ignores case; require an exact-case hit somewhere
            extra = " ".join([node.path, *node.tags])
            if not any(term in extra for term in terms):
                return None
        occurrences = sum(len(p) for p in positions.values())
        words = self._word_count(node)
        relevance = occurrences / words if occurrences else 1.0 / (words + 1)
        return MatchDetails(terms=list(positions), positions=positions, relevance=relevance)

    def _fuzzy_details(self, node: MemoryNode, search: SearchOptions) -> Optional[MatchDetails]:
        positions: dict[str, list[int]] = {}
        for match in _WORD_PATTERN.finditer(node.content):
            word = match.group(0)
            for keyword in search.keywords:
                a, b = (word, keyword) if search.case_sensitive else (word.lower(), keyword.lower())
                if levenshtein(a, b) <= int(len(b) * FUZZY_TOLERANCE):
                    positions.setdefault(word, []).append(match.start())
                    break
        if not positions:
            return None
        occurrences = sum(len(p) for p in positions.values())
        return MatchDetails(
            terms=list(positions),
            positions=positions,
            relevance=occurrences / self._word_count(node),
        )

    def _regex_details(self, node: MemoryNode, pattern: re.Pattern) -> Optional[MatchDetails]:
        positions: dict[str, list[int]] = {}
        for match in pattern.finditer(node.content):
            if match.group(0):
                positions.setdefault(match.group(0), []).append(match.start())
        if not positions:
            return None
        occurrences = sum(len(p) for p in positions.values())
        return MatchDetails(
            terms=list(positions),
            positions=positions,
            relevance=occurrences / self._word_count(node),
        )

    @staticmethod
    def _merge(left: MatchDetails, right: MatchDetails) -> MatchDetails:
        positions = {term: list(found) for term, found in left.positions.items()}
        for term, found in right.positions.items():
            positions[term] = sorted(set(positions.get(term, [])) | set(found))
        return MatchDetails(
            terms=list(positions),
            positions=positions,
            relevance=max(left.relevance, right.relevance),
        )

    # =========================================================================
    # Filtering and sorting
    # =========================================================================

    @staticmethod
    def _filter_time(
        results: list[RecallResult],
        before: Optional[str],
        after: Optional[str],
    ) -> list[RecallResult]:
        if before is None and after is None:
            return results
        upper = parse_timestamp(before) if before else None
        lower = parse_timestamp(after) if after else None
        kept = []
        for result in results:
            try:
                stamp = parse_timestamp(result.node.timestamp)
            except ValueError:
                logger.warning(f"Skipping node {result.node.id} with malformed timestamp")
                continue
            if upper is not None and not stamp < upper:
                continue
            if lower is not None and not stamp > lower:
                continue
            kept.append(result)
        return kept

    @staticmethod
    def _sort(graph: GraphStore, results: list[RecallResult], sort_by: str) -> list[RecallResult]:
        if sort_by == "relevance":
            return sorted(results, key=lambda r: -r.score)
        if sort_by == "date":
            return sorted(
                results,
                key=lambda r: (r.node.timestamp, graph.position(r.node.id)),
                reverse=True,
            )

        def best_strength(result: RecallResult) -> float:
            return max((e.strength for e in graph.edges_for(result.node.id)), default=0.0)

        return sorted(results, key=lambda r: -best_strength(r))
