"""
In-Memory Graph Backend
=======================

Adjacency-set graph for tests and for small, precomputed relationship maps.

Example:
    >>> graph = InMemoryGraphBackend()
    >>> graph.add_relation("squat", "quadriceps", "TARGETS")
    >>> graph.link_source("quadriceps", "k-quads")
    >>> graph.neighbors("squat")
    ['quadriceps']
"""

from collections import defaultdict
from typing import Dict, List, Set, Tuple


def _key(name: str) -> str:
    return name.strip().lower()


class InMemoryGraphBackend:
    """Undirected entity graph with entity → source document links."""

    def __init__(self):
        self._edges: Dict[str, Set[str]] = defaultdict(set)
        self._relations: Set[Tuple[str, str, str]] = set()
        self._sources: Dict[str, Set[str]] = defaultdict(set)

    def add_relation(self, source: str, target: str, relation: str = "RELATED_TO") -> None:
        a, b = _key(source), _key(target)
        if a == b:
            return
        self._edges[a].add(b)
        self._edges[b].add(a)
        self._relations.add((a, relation, b))

    def link_source(self, entity: str, source_id: str) -> None:
        """Record that ``entity`` was extracted from document ``source_id``."""
        self._sources[_key(entity)].add(source_id)

    def neighbors(self, entity: str) -> List[str]:
        return sorted(self._edges.get(_key(entity), ()))

    def sources_for(self, entity: str) -> List[str]:
        return sorted(self._sources.get(_key(entity), ()))

    @property
    def relation_count(self) -> int:
        return len(self._relations)
