"""Graph store adapter interface.

The closure core never talks to a database directly. It consumes this
interface, which covers node lookup by label and property, relationship
traversal by type and direction, label maintenance and transaction scoping.

Every unit of work runs inside `GraphStore.read()` or `GraphStore.write()`.
Leaving the block normally commits; leaving it with any exception, including
task cancellation, rolls back.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from typing import Any, AsyncIterator, Dict, Iterable, List, Mapping, Optional, Tuple

from domain.ontology_models import Direction, GraphNode, NodeId


class GraphTransaction(ABC):
    """Operations available inside a transaction scope."""

    @abstractmethod
    async def find_nodes(
        self, label: str, properties: Optional[Mapping[str, Any]] = None
    ) -> List[GraphNode]:
        """Return nodes carrying `label` whose properties match `properties`."""

    @abstractmethod
    async def get_node(self, node_id: NodeId) -> Optional[GraphNode]:
        """Return a node by id, or None if it does not exist."""

    @abstractmethod
    async def neighbours(
        self, node_ids: Iterable[NodeId], rel_type: str, direction: Direction
    ) -> Dict[NodeId, List[GraphNode]]:
        """Return the nodes across `rel_type` edges for each of `node_ids`.

        Every requested id appears in the result, with an empty list when it
        has no such edges.
        """

    @abstractmethod
    def stream_nodes(
        self,
        label: str,
        rel_type: Optional[str] = None,
        direction: Direction = Direction.OUTGOING,
        neighbour_label: Optional[str] = None,
    ) -> AsyncIterator[Tuple[GraphNode, List[GraphNode]]]:
        """Iterate nodes carrying `label` without materializing them all.

        When `rel_type` is given each node comes with its neighbours across
        that relationship, restricted to those carrying `neighbour_label`.
        """

    @abstractmethod
    async def add_label(self, node_ids: Iterable[NodeId], label: str) -> int:
        """Add `label` to the given nodes; return how many were labelled."""

    @abstractmethod
    async def remove_label(self, label: str) -> int:
        """Remove `label` from every node carrying it; return the count."""

    @abstractmethod
    async def labels(self) -> List[str]:
        """Return every label currently known to the store."""

    @abstractmethod
    async def set_properties(self, node_id: NodeId, properties: Mapping[str, Any]) -> None:
        """Merge `properties` into a node. A None value removes the key."""

    @abstractmethod
    async def increment_property(self, node_id: NodeId, key: str) -> int:
        """Atomically add one to an integer property (missing counts as 0).

        The node stays write-locked until the transaction ends, so other
        writers of the same node wait for this transaction to finish.
        """

    @abstractmethod
    def count_neighbours(
        self,
        label: str,
        rel_type: str,
        neighbour_label: str,
        neighbour_prefix: Optional[Tuple[str, str]] = None,
    ) -> AsyncIterator[int]:
        """Yield, per `label` node with at least one match, its distinct neighbour count.

        `neighbour_prefix` is an optional `(property, prefix)` pair that
        neighbours must match to be counted.
        """


class GraphStore(ABC):
    """A transactional graph database."""

    name: str = "abstract"

    @abstractmethod
    def read(self) -> AbstractAsyncContextManager[GraphTransaction]:
        """Open a read-only transaction scope."""

    @abstractmethod
    def write(self) -> AbstractAsyncContextManager[GraphTransaction]:
        """Open a read-write transaction scope."""

    @abstractmethod
    async def close(self) -> None:
        """Release connections held by the store."""
