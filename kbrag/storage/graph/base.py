"""
Graph Backend Protocol
======================

Relationship graph consulted by the GraphExpander.

Nodes are canonical entity names (muscles, exercises, concepts); documents
are linked to the entities extracted from them. Implementations are
synchronous and read-only.
"""

from typing import List, Protocol, runtime_checkable


@runtime_checkable
class GraphBackend(Protocol):
    """Read-only relationship graph."""

    def neighbors(self, entity: str) -> List[str]:
        """Entities one hop away from ``entity`` (empty when unknown)."""
        ...

    def sources_for(self, entity: str) -> List[str]:
        """Source document ids the entity was extracted from."""
        ...
