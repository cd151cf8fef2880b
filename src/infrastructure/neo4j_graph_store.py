"""Neo4j implementation of the graph store adapter.

Each transaction scope opens its own session and explicit transaction.
Labels and relationship types cannot be passed as Cypher parameters, so they
are interpolated with backtick quoting.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Iterable, List, Mapping, Optional, Tuple

from neo4j import READ_ACCESS, WRITE_ACCESS, AsyncGraphDatabase
from neo4j.exceptions import AuthError, ServiceUnavailable, SessionExpired

from domain.closure_errors import StoreUnavailableError
from domain.graph_store import GraphStore, GraphTransaction
from domain.ontology_models import Direction, GraphNode, NodeId

logger = logging.getLogger(__name__)


def quote(name: str) -> str:
    """Backtick-quote a label, relationship type or property key for Cypher."""
    return "`" + name.replace("`", "``") + "`"


def to_graph_node(node) -> GraphNode:
    """Convert a driver node into the adapter's node type."""
    return GraphNode(
        id=node.element_id,
        labels=frozenset(node.labels),
        properties=dict(node),
    )


class Neo4jGraphStore(GraphStore):
    """Neo4j-backed graph store for the closure core."""

    name = "neo4j"

    def __init__(self, uri: str, username: str, password: str, database: str = "neo4j"):
        """Initialize Neo4j graph store.

        Args:
            uri: Neo4j connection URI (e.g., "bolt://localhost:7687")
            username: Neo4j username
            password: Neo4j password
            database: Neo4j database name (default: "neo4j")
        """
        self.uri = uri
        self.username = username
        self.password = password
        self.database = database
        self._driver = None

    async def _get_driver(self):
        """Get or create Neo4j driver."""
        if self._driver is None:
            self._driver = AsyncGraphDatabase.driver(
                self.uri,
                auth=(self.username, self.password)
            )
        return self._driver

    async def close(self) -> None:
        """Close Neo4j driver."""
        if self._driver:
            await self._driver.close()
            self._driver = None

    @asynccontextmanager
    async def _transaction(self, access_mode: str) -> AsyncIterator[GraphTransaction]:
        driver = await self._get_driver()
        session = driver.session(database=self.database, default_access_mode=access_mode)
        try:
            try:
                tx = await session.begin_transaction()
            except (ServiceUnavailable, SessionExpired, AuthError) as e:
                raise StoreUnavailableError(f"Cannot open Neo4j transaction at {self.uri}: {e}") from e

            try:
                yield Neo4jTransaction(tx)
            except BaseException:
                try:
                    await tx.rollback()
                except Exception as rollback_error:
                    logger.warning(f"Rollback failed after aborted transaction: {rollback_error}")
                raise
            await tx.commit()
        finally:
            await session.close()

    def read(self):
        return self._transaction(READ_ACCESS)

    def write(self):
        return self._transaction(WRITE_ACCESS)


class Neo4jTransaction(GraphTransaction):
    """Adapter operations expressed as Cypher over one driver transaction."""

    def __init__(self, tx):
        self._tx = tx

    async def _records(self, query: str, **params) -> List[Any]:
        result = await self._tx.run(query, **params)
        return [record async for record in result]

    async def find_nodes(
        self, label: str, properties: Optional[Mapping[str, Any]] = None
    ) -> List[GraphNode]:
        params: Dict[str, Any] = {}
        clauses = []
        for index, (key, value) in enumerate((properties or {}).items()):
            clauses.append(f"n.{quote(key)} = $p{index}")
            params[f"p{index}"] = value
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        query = f"MATCH (n:{quote(label)}) {where} RETURN n"
        records = await self._records(query, **params)
        return [to_graph_node(record["n"]) for record in records]

    async def get_node(self, node_id: NodeId) -> Optional[GraphNode]:
        records = await self._records(
            "MATCH (n) WHERE elementId(n) = $id RETURN n", id=node_id
        )
        if not records:
            return None
        return to_graph_node(records[0]["n"])

    async def neighbours(
        self, node_ids: Iterable[NodeId], rel_type: str, direction: Direction
    ) -> Dict[NodeId, List[GraphNode]]:
        ids = list(node_ids)
        if not ids:
            return {}
        pattern = (
            f"(n)-[:{quote(rel_type)}]->(m)"
            if direction == Direction.OUTGOING
            else f"(n)<-[:{quote(rel_type)}]-(m)"
        )
        query = f"""
        UNWIND $ids AS id
        MATCH (n) WHERE elementId(n) = id
        OPTIONAL MATCH {pattern}
        RETURN id, collect(m) AS others
        """
        result: Dict[NodeId, List[GraphNode]] = {node_id: [] for node_id in ids}
        for record in await self._records(query, ids=ids):
            result[record["id"]] = [to_graph_node(other) for other in record["others"]]
        return result

    async def stream_nodes(
        self,
        label: str,
        rel_type: Optional[str] = None,
        direction: Direction = Direction.OUTGOING,
        neighbour_label: Optional[str] = None,
    ) -> AsyncIterator[Tuple[GraphNode, List[GraphNode]]]:
        if rel_type is None:
            query = f"MATCH (n:{quote(label)}) RETURN n, [] AS others"
        else:
            target = f"(m:{quote(neighbour_label)})" if neighbour_label else "(m)"
            arrow = (
                f"-[:{quote(rel_type)}]->"
                if direction == Direction.OUTGOING
                else f"<-[:{quote(rel_type)}]-"
            )
            query = f"""
            MATCH (n:{quote(label)})
            OPTIONAL MATCH (n){arrow}{target}
            RETURN n, collect(m) AS others
            """
        result = await self._tx.run(query)
        async for record in result:
            yield (
                to_graph_node(record["n"]),
                [to_graph_node(other) for other in record["others"]],
            )

    async def add_label(self, node_ids: Iterable[NodeId], label: str) -> int:
        ids = list(node_ids)
        if not ids:
            return 0
        query = f"""
        UNWIND $ids AS id
        MATCH (n) WHERE elementId(n) = id
        SET n:{quote(label)}
        RETURN count(n) AS labelled
        """
        records = await self._records(query, ids=ids)
        return records[0]["labelled"] if records else 0

    async def remove_label(self, label: str) -> int:
        query = f"MATCH (n:{quote(label)}) REMOVE n:{quote(label)} RETURN count(n) AS removed"
        records = await self._records(query)
        return records[0]["removed"] if records else 0

    async def labels(self) -> List[str]:
        records = await self._records("CALL db.labels() YIELD label RETURN label")
        return [record["label"] for record in records]

    async def set_properties(self, node_id: NodeId, properties: Mapping[str, Any]) -> None:
        await self._records(
            "MATCH (n) WHERE elementId(n) = $id SET n += $props",
            id=node_id,
            props=dict(properties),
        )

    async def increment_property(self, node_id: NodeId, key: str) -> int:
        prop = f"n.{quote(key)}"
        # Writing the lock property first takes the node write lock before the read
        query = f"""
        MATCH (n) WHERE elementId(n) = $id
        SET n.`_closure_lock` = true
        WITH n
        SET {prop} = coalesce({prop}, 0) + 1
        REMOVE n.`_closure_lock`
        RETURN {prop} AS value
        """
        records = await self._records(query, id=node_id)
        if not records:
            raise KeyError(f"Node {node_id} not found")
        return records[0]["value"]

    async def count_neighbours(
        self,
        label: str,
        rel_type: str,
        neighbour_label: str,
        neighbour_prefix: Optional[Tuple[str, str]] = None,
    ) -> AsyncIterator[int]:
        params: Dict[str, Any] = {}
        where = ""
        if neighbour_prefix is not None:
            key, prefix = neighbour_prefix
            where = f"WHERE c.{quote(key)} STARTS WITH $prefix"
            params["prefix"] = prefix
        query = f"""
        MATCH (d:{quote(label)})-[:{quote(rel_type)}]->(c:{quote(neighbour_label)})
        {where}
        RETURN elementId(d) AS id, count(DISTINCT c) AS count
        """
        result = await self._tx.run(query, **params)
        async for record in result:
            yield record["count"]


def create_neo4j_graph_store(
    uri: Optional[str] = None,
    username: Optional[str] = None,
    password: Optional[str] = None,
    database: Optional[str] = None,
) -> Neo4jGraphStore:
    """Create a Neo4j graph store with environment variable fallbacks.

    Args:
        uri: Neo4j URI (defaults to NEO4J_URI env var)
        username: Neo4j username (defaults to NEO4J_USERNAME env var)
        password: Neo4j password (defaults to NEO4J_PASSWORD env var)
        database: Neo4j database name (defaults to NEO4J_DATABASE env var)

    Returns:
        Configured Neo4jGraphStore instance
    """
    uri = uri or os.environ.get("NEO4J_URI", "bolt://localhost:7687")
    username = username or os.environ.get("NEO4J_USERNAME", "neo4j")
    password = password or os.environ.get("NEO4J_PASSWORD", "password")
    database = database or os.environ.get("NEO4J_DATABASE", "neo4j")

    return Neo4jGraphStore(uri, username, password, database)
