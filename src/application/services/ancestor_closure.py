"""Ancestor Closure Computer.

Expands a set of leaf terms into the reflexive set of all their transitive
superclasses over `subClassOf`.

The traversal is an explicit worklist with a visited set owned by the call.
A term already visited is never expanded again, which both bounds the work
on re-converging hierarchies and terminates on cyclic ones. Parent lookups
are batched in waves, each wave in its own short read transaction.
"""

import logging
from collections import deque
from typing import AsyncIterator, Dict, FrozenSet, Iterable, List, Optional, Tuple

from domain.graph_store import GraphStore
from domain.ontology_models import Direction, GraphNode, NodeId, OntologySchema

logger = logging.getLogger(__name__)


class AncestorClosure:
    """Computes upward closures over the subclass hierarchy."""

    def __init__(
        self,
        store: GraphStore,
        schema: Optional[OntologySchema] = None,
        wave_size: int = 500,
    ):
        if wave_size < 1:
            raise ValueError("wave_size must be >= 1")
        self.store = store
        self.schema = schema or OntologySchema()
        self.wave_size = wave_size

    async def _parents(self, node_ids: List[NodeId]) -> Dict[NodeId, List[GraphNode]]:
        async with self.store.read() as tx:
            return await tx.neighbours(node_ids, self.schema.subclass_of, Direction.OUTGOING)

    async def ancestors(self, leaf_ids: Iterable[NodeId]) -> FrozenSet[NodeId]:
        """Return the leaves plus every term reachable from them upward."""
        visited = set()
        frontier = deque()
        for leaf_id in leaf_ids:
            if leaf_id not in visited:
                visited.add(leaf_id)
                frontier.append(leaf_id)

        waves = 0
        while frontier:
            wave = [frontier.popleft() for _ in range(min(self.wave_size, len(frontier)))]
            parents = await self._parents(wave)
            waves += 1
            for node_id in wave:
                for parent in parents.get(node_id, []):
                    if parent.id not in visited:
                        visited.add(parent.id)
                        frontier.append(parent.id)

        logger.debug(f"Ancestor closure: {len(visited)} terms in {waves} waves")
        return frozenset(visited)

    async def walk(
        self, leaves: Iterable[GraphNode]
    ) -> AsyncIterator[Tuple[GraphNode, List[GraphNode]]]:
        """Yield each closure term once, with its direct parents, on first visit.

        A branch stops at a term that was already yielded. Since the closure
        is closed upward, every parent yielded alongside a term is itself a
        closure member.
        """
        visited = set()
        frontier = deque()
        for leaf in leaves:
            if leaf.id not in visited:
                visited.add(leaf.id)
                frontier.append(leaf)

        while frontier:
            wave = [frontier.popleft() for _ in range(min(self.wave_size, len(frontier)))]
            parents = await self._parents([node.id for node in wave])
            for node in wave:
                node_parents = parents.get(node.id, [])
                yield node, node_parents
                for parent in node_parents:
                    if parent.id not in visited:
                        visited.add(parent.id)
                        frontier.append(parent)
