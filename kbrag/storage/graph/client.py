"""
FalkorDB Graph Backend
======================

``GraphBackend`` served by a FalkorDB (Cypher over the Redis protocol) graph.

Expected graph shape:
    (:Muscle|:Exercise|:Concept {name})-[:TARGETS|:COMPLEMENTS|...]-(...)
    (entity)-[:EXTRACTED_FROM]->(:KnowledgeItem {id})

The falkordb driver is synchronous; the GraphExpander calls this backend
from a worker thread. The connection is opened lazily on the first query.
"""

import threading
from typing import Any, Dict, List, Optional

import structlog
from falkordb import FalkorDB, Graph

from kbrag.retrieval.errors import GraphBackendError
from kbrag.storage.graph.config import FalkorDBConfig

log = structlog.get_logger()


NEIGHBORS_QUERY = """
    MATCH (e)-[r]-(related)
    WHERE toLower(e.name) = $name AND type(r) <> $source_relation
      AND related.name IS NOT NULL
    RETURN DISTINCT toLower(related.name) AS name
    ORDER BY name
    LIMIT $limit
"""

SOURCES_QUERY = """
    MATCH (e)-[r]->(k:KnowledgeItem)
    WHERE toLower(e.name) = $name AND type(r) = $source_relation
    RETURN DISTINCT k.id AS source_id
    ORDER BY source_id
"""


class FalkorDBGraphBackend:
    """
    Relationship graph stored in FalkorDB.

    Example:
        backend = FalkorDBGraphBackend(FalkorDBConfig(graph_name="coach_kg"))
        backend.neighbors("squat")     # ['glutes', 'quadriceps']
        backend.sources_for("glutes")  # ['k-12', 'k-40']
        backend.close()
    """

    def __init__(self, config: Optional[FalkorDBConfig] = None):
        self.config = config or FalkorDBConfig()
        self._db: Optional[FalkorDB] = None
        self._graph: Optional[Graph] = None
        self._lock = threading.Lock()

        log.info(
            f"FalkorDBGraphBackend initialized - "
            f"host={self.config.host}:{self.config.port}, "
            f"graph={self.config.graph_name}"
        )

    @property
    def connected(self) -> bool:
        return self._graph is not None

    def _connect(self) -> Graph:
        with self._lock:
            if self._graph is None:
                try:
                    self._db = FalkorDB(
                        host=self.config.host,
                        port=self.config.port,
                        password=self.config.password,
                    )
                    self._graph = self._db.select_graph(self.config.graph_name)
                except Exception as e:
                    raise GraphBackendError(
                        f"Cannot connect to FalkorDB at {self.config.host}:{self.config.port}: {e}"
                    ) from e
                log.info(f"Connected to FalkorDB at {self.config.host}:{self.config.port}")
            return self._graph

    def close(self) -> None:
        # Connections belong to the driver's redis pool
        with self._lock:
            self._db = None
            self._graph = None

    def _query(self, cypher: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        graph = self._connect()
        try:
            result = graph.query(cypher, params)
        except Exception as e:
            log.error(f"Graph query failed: {cypher.strip()[:80]}... Error: {e}")
            raise GraphBackendError(str(e)) from e

        records = []
        if result.result_set:
            headers = result.header
            for row in result.result_set:
                record = {}
                for i, header in enumerate(headers):
                    # header format is [type, alias]
                    col_name = header[1] if len(header) > 1 else f"col_{i}"
                    record[col_name] = row[i]
                records.append(record)

        log.debug(
            "Graph query executed",
            params=sorted(params),
            records=len(records),
        )
        return records

    def neighbors(self, entity: str) -> List[str]:
        records = self._query(
            NEIGHBORS_QUERY,
            {
                "name": entity.strip().lower(),
                "source_relation": self.config.source_relation,
                "limit": self.config.neighbor_limit,
            },
        )
        return [r["name"] for r in records if r.get("name")]

    def sources_for(self, entity: str) -> List[str]:
        records = self._query(
            SOURCES_QUERY,
            {
                "name": entity.strip().lower(),
                "source_relation": self.config.source_relation,
            },
        )
        return [str(r["source_id"]) for r in records if r.get("source_id") is not None]
