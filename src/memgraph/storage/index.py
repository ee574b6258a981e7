"""In-process inverted index used by the file backend."""

import re
from collections import Counter, defaultdict
from typing import Iterable, Optional

from memgraph.memory.types import MemoryNode

_TOKEN_PATTERN = re.compile(r"\w+", re.UNICODE)


def tokenize(node: MemoryNode) -> Counter:
    """Count lowercase word tokens over content, path and tags."""
    text = " ".join([node.content, node.path, *node.tags])
    return Counter(t.lower() for t in _TOKEN_PATTERN.findall(text))


class ContentIndex:
    """Postings map of token -> {node id: occurrences}, kept per domain.

    The owner replaces a domain's postings in the same critical section that
    writes the domain file, so searches never see a half-updated domain.
    """

    def __init__(self) -> None:
        self._postings: dict[str, dict[str, dict[str, int]]] = {}
        self._order: dict[str, dict[str, int]] = {}

    def has_domain(self, domain: str) -> bool:
        return domain in self._postings

    def replace_domain(self, domain: str, nodes: Iterable[MemoryNode]) -> None:
        postings: dict[str, dict[str, int]] = defaultdict(dict)
        order: dict[str, int] = {}
        for position, node in enumerate(nodes):
            order[node.id] = position
            for token, count in tokenize(node).items():
                postings[token][node.id] = count
        self._postings[domain] = dict(postings)
        self._order[domain] = order

    def drop_domain(self, domain: str) -> None:
        self._postings.pop(domain, None)
        self._order.pop(domain, None)

    def clear(self) -> None:
        self._postings.clear()
        self._order.clear()

    def search(
        self,
        terms: list[str],
        domains: Optional[Iterable[str]] = None,
    ) -> list[tuple[str, str, float]]:
        """Score nodes by prefix-matched term occurrences.

        Returns:
            (domain, node id, score) tuples, best first; ties keep domain and
            insertion order
        """
        selected = list(self._postings) if domains is None else [
            d for d in domains if d in self._postings
        ]
        hits: list[tuple[str, str, float, int, int]] = []
        for domain_rank, domain in enumerate(selected):
            scores: Counter = Counter()
            for token, entries in self._postings[domain].items():
                if any(token.startswith(term) for term in terms):
                    scores.update(entries)
            order = self._order[domain]
            for node_id, score in scores.items():
                hits.append((domain, node_id, float(score), domain_rank, order.get(node_id, 0)))
        hits.sort(key=lambda h: (-h[2], h[3], h[4]))
        return [(domain, node_id, score) for domain, node_id, score, _, _ in hits]
