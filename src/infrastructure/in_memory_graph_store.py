"""In-memory implementation of the graph store adapter.

Used by the test suite and for local development without a database. Write
transactions are serialized by a lock and stage their changes; the staged
changes are applied on commit and dropped on rollback.
"""

import asyncio
import itertools
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from domain.closure_errors import StoreUnavailableError
from domain.graph_store import GraphStore, GraphTransaction
from domain.ontology_models import Direction, GraphNode, NodeId

logger = logging.getLogger(__name__)


class InMemoryGraphStore(GraphStore):
    """Dictionary-backed graph with labels, properties and typed edges."""

    name = "memory"

    def __init__(self) -> None:
        self._labels: Dict[NodeId, Set[str]] = {}
        self._properties: Dict[NodeId, Dict[str, Any]] = {}
        self._outgoing: Dict[Tuple[NodeId, str], List[NodeId]] = defaultdict(list)
        self._incoming: Dict[Tuple[NodeId, str], List[NodeId]] = defaultdict(list)
        self._ids = itertools.count(1)
        # Every label name ever committed; Neo4j keeps label tokens the same way
        self.label_tokens: Set[str] = set()
        self._write_lock = asyncio.Lock()
        self.available = True
        self.commits = 0
        self.rollbacks = 0

    # --- Fixture building (not part of the adapter interface) ---

    def add_node(self, *labels: str, **properties: Any) -> NodeId:
        """Create a node and return its id."""
        node_id = next(self._ids)
        self._labels[node_id] = set(labels)
        self.label_tokens.update(labels)
        self._properties[node_id] = dict(properties)
        return node_id

    def add_relationship(self, source_id: NodeId, rel_type: str, target_id: NodeId) -> None:
        """Create a directed edge `source -[rel_type]-> target`."""
        if source_id not in self._labels or target_id not in self._labels:
            raise KeyError(f"Unknown node in edge {source_id} -[{rel_type}]-> {target_id}")
        self._outgoing[(source_id, rel_type)].append(target_id)
        self._incoming[(target_id, rel_type)].append(source_id)

    def node_labels(self, node_id: NodeId) -> Set[str]:
        """Committed labels of a node."""
        return set(self._labels[node_id])

    def nodes_with_label(self, label: str) -> Set[NodeId]:
        """Committed ids of nodes carrying `label`."""
        return {node_id for node_id, labels in self._labels.items() if label in labels}

    def node_property(self, node_id: NodeId, key: str, default: Any = None) -> Any:
        return self._properties[node_id].get(key, default)

    # --- Transactions ---

    def _check_available(self) -> None:
        if not self.available:
            raise StoreUnavailableError("In-memory graph store is marked unavailable")

    @asynccontextmanager
    async def read(self) -> AsyncIterator[GraphTransaction]:
        self._check_available()
        yield _InMemoryTransaction(self, writable=False)

    @asynccontextmanager
    async def write(self) -> AsyncIterator[GraphTransaction]:
        self._check_available()
        async with self._write_lock:
            tx = _InMemoryTransaction(self, writable=True)
            try:
                yield tx
            except BaseException:
                self.rollbacks += 1
                logger.debug(f"Rolled back in-memory transaction ({len(tx.touched)} staged nodes)")
                raise
            tx.commit()
            self.commits += 1

    async def close(self) -> None:
        return None


class _InMemoryTransaction(GraphTransaction):
    """A transaction over `InMemoryGraphStore`.

    Reads see committed state overlaid with this transaction's own staged
    writes.
    """

    def __init__(self, store: InMemoryGraphStore, writable: bool):
        self._store = store
        self._writable = writable
        self._staged_labels: Dict[NodeId, Set[str]] = {}
        self._staged_properties: Dict[NodeId, Dict[str, Any]] = {}

    @property
    def touched(self) -> Set[NodeId]:
        return set(self._staged_labels) | set(self._staged_properties)

    def _require_writable(self) -> None:
        if not self._writable:
            raise PermissionError("Write attempted in a read transaction")

    def _labels_of(self, node_id: NodeId) -> Set[str]:
        if node_id in self._staged_labels:
            return self._staged_labels[node_id]
        return self._store._labels[node_id]

    def _properties_of(self, node_id: NodeId) -> Dict[str, Any]:
        if node_id in self._staged_properties:
            return self._staged_properties[node_id]
        return self._store._properties[node_id]

    def _stage_labels(self, node_id: NodeId) -> Set[str]:
        if node_id not in self._staged_labels:
            self._staged_labels[node_id] = set(self._store._labels[node_id])
        return self._staged_labels[node_id]

    def _stage_properties(self, node_id: NodeId) -> Dict[str, Any]:
        if node_id not in self._staged_properties:
            self._staged_properties[node_id] = dict(self._store._properties[node_id])
        return self._staged_properties[node_id]

    def _node(self, node_id: NodeId) -> GraphNode:
        return GraphNode(
            id=node_id,
            labels=frozenset(self._labels_of(node_id)),
            properties=dict(self._properties_of(node_id)),
        )

    def _ids_with_label(self, label: str) -> List[NodeId]:
        return [node_id for node_id in self._store._labels if label in self._labels_of(node_id)]

    def _adjacent(self, node_id: NodeId, rel_type: str, direction: Direction) -> List[NodeId]:
        edges = self._store._outgoing if direction == Direction.OUTGOING else self._store._incoming
        return list(edges.get((node_id, rel_type), ()))

    def commit(self) -> None:
        for node_id, labels in self._staged_labels.items():
            self._store._labels[node_id] = labels
            self._store.label_tokens.update(labels)
        for node_id, properties in self._staged_properties.items():
            self._store._properties[node_id] = properties

    async def find_nodes(
        self, label: str, properties: Optional[Mapping[str, Any]] = None
    ) -> List[GraphNode]:
        wanted = dict(properties or {})
        found = []
        for node_id in self._ids_with_label(label):
            props = self._properties_of(node_id)
            if all(props.get(key) == value for key, value in wanted.items()):
                found.append(self._node(node_id))
        return found

    async def get_node(self, node_id: NodeId) -> Optional[GraphNode]:
        if node_id not in self._store._labels:
            return None
        return self._node(node_id)

    async def neighbours(
        self, node_ids: Iterable[NodeId], rel_type: str, direction: Direction
    ) -> Dict[NodeId, List[GraphNode]]:
        result: Dict[NodeId, List[GraphNode]] = {}
        for node_id in node_ids:
            result[node_id] = [
                self._node(other) for other in self._adjacent(node_id, rel_type, direction)
            ]
        return result

    async def stream_nodes(
        self,
        label: str,
        rel_type: Optional[str] = None,
        direction: Direction = Direction.OUTGOING,
        neighbour_label: Optional[str] = None,
    ) -> AsyncIterator[Tuple[GraphNode, List[GraphNode]]]:
        for node_id in self._ids_with_label(label):
            others: List[GraphNode] = []
            if rel_type is not None:
                for other in self._adjacent(node_id, rel_type, direction):
                    if neighbour_label is None or neighbour_label in self._labels_of(other):
                        others.append(self._node(other))
            yield self._node(node_id), others
            # Give cancellation a chance between rows, as a network cursor would.
            await asyncio.sleep(0)

    async def add_label(self, node_ids: Iterable[NodeId], label: str) -> int:
        self._require_writable()
        count = 0
        for node_id in node_ids:
            if node_id in self._store._labels:
                self._stage_labels(node_id).add(label)
                count += 1
        return count

    async def remove_label(self, label: str) -> int:
        self._require_writable()
        ids = self._ids_with_label(label)
        for node_id in ids:
            self._stage_labels(node_id).discard(label)
        return len(ids)

    async def labels(self) -> List[str]:
        found: Set[str] = set()
        for node_id in self._store._labels:
            found.update(self._labels_of(node_id))
        return sorted(found)

    async def set_properties(self, node_id: NodeId, properties: Mapping[str, Any]) -> None:
        self._require_writable()
        staged = self._stage_properties(node_id)
        for key, value in properties.items():
            if value is None:
                staged.pop(key, None)
            else:
                staged[key] = value

    async def increment_property(self, node_id: NodeId, key: str) -> int:
        self._require_writable()
        staged = self._stage_properties(node_id)
        staged[key] = int(staged.get(key) or 0) + 1
        return staged[key]

    async def count_neighbours(
        self,
        label: str,
        rel_type: str,
        neighbour_label: str,
        neighbour_prefix: Optional[Tuple[str, str]] = None,
    ) -> AsyncIterator[int]:
        for node_id in self._ids_with_label(label):
            matched = set()
            for other in self._adjacent(node_id, rel_type, Direction.OUTGOING):
                if neighbour_label not in self._labels_of(other):
                    continue
                if neighbour_prefix is not None:
                    key, prefix = neighbour_prefix
                    value = self._properties_of(other).get(key)
                    if not isinstance(value, str) or not value.startswith(prefix):
                        continue
                matched.add(other)
            if matched:
                yield len(matched)
