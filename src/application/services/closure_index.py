"""Closure Index Materializer.

Materializes each principal's ancestor closure as a label on the term nodes,
so that reading the closure costs one label scan instead of a traversal.

Every rebuild is a new generation of the principal's index. The closure is
computed with reads only; the generation is then written in one write
transaction that reserves the generation number, clears the labels of the
previous generation, tags the new one and points the principal's
`closure_generation` property at it. Readers see either the old or the new
generation, and a failed or cancelled rebuild leaves the old one in place.

Reserving the generation write-locks the principal node, so rebuilds and
invalidations of the same principal commit one at a time and the last one
to commit wins. Generations alternate between `INDEX_SLOTS` labels, which
keeps the number of label names per principal fixed.

Usage:
    index = ClosureIndex(store, discoverer, closure)
    report = await index.rebuild("alice")
    await index.invalidate("alice")
"""

import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable, FrozenSet, List, Optional, TypeVar

from domain.graph_store import GraphStore, GraphTransaction
from domain.ontology_models import (
    Direction,
    GraphNode,
    IndexKey,
    NodeId,
    OntologySchema,
    RebuildReport,
)
from application.services.ancestor_closure import AncestorClosure
from application.services.closure_discoverer import ClosureDiscoverer

logger = logging.getLogger(__name__)

GENERATION_PROPERTY = "closure_generation"
SEQUENCE_PROPERTY = "closure_generation_seq"

T = TypeVar("T")


class ClosureIndex:
    """Builds, reads the key of, and clears per-principal closure indexes."""

    def __init__(
        self,
        store: GraphStore,
        discoverer: ClosureDiscoverer,
        closure: AncestorClosure,
        schema: Optional[OntologySchema] = None,
        tag_batch_size: int = 1000,
        rebuild_concurrency: int = 4,
    ):
        self.store = store
        self.discoverer = discoverer
        self.closure = closure
        self.schema = schema or OntologySchema()
        self.tag_batch_size = tag_batch_size
        self.rebuild_concurrency = rebuild_concurrency

    def _principal_name(self, principal: GraphNode) -> str:
        return str(principal.get(self.schema.principal_name_property, principal.id))

    # --- Read side ---

    async def current_key(self, principal: GraphNode) -> Optional[IndexKey]:
        """Key of the generation readers should use, or None if not indexed."""
        async with self.store.read() as tx:
            node = await tx.get_node(principal.id)
        if node is None:
            return None
        generation = node.get(GENERATION_PROPERTY)
        if generation is None:
            return None
        return IndexKey(principal.id, int(generation))

    async def current_key_for(self, principal_name: str) -> Optional[IndexKey]:
        principal = await self.discoverer.find_principal(principal_name)
        if principal is None:
            return None
        return await self.current_key(principal)

    # --- Rebuild ---

    async def rebuild(self, principal_name: str) -> RebuildReport:
        """Recompute and materialize the closure of one principal.

        Rebuilding an unknown principal does nothing.
        """
        principal = await self.discoverer.find_principal(principal_name)
        if principal is None:
            logger.info(f"Skipping rebuild for unknown principal '{principal_name}'")
            return RebuildReport(principal=principal_name, found=False)
        return await self.rebuild_node(principal)

    async def rebuild_node(self, principal: GraphNode) -> RebuildReport:
        name = self._principal_name(principal)
        direct = await self.discoverer.direct_terms_for_node(principal)
        visited = await self.closure.ancestors(direct.term_ids)
        order = await self._top_down_order(visited)

        async with self.store.write() as tx:
            # Bumping the sequence write-locks the principal, so rebuilds and
            # invalidations of one principal commit one after another
            generation = await tx.increment_property(principal.id, SEQUENCE_PROPERTY)
            key = IndexKey(principal.id, generation)
            current = await tx.get_node(principal.id)
            previous = current.get(GENERATION_PROPERTY) if current is not None else None

            await tx.remove_label(key.label)
            if previous is not None:
                await tx.remove_label(IndexKey(principal.id, int(previous)).label)
            tagged = await self._write_tags(tx, order, key.label)
            await tx.set_properties(principal.id, {GENERATION_PROPERTY: generation})

        reached = set(order)
        unreachable = tuple(node_id for node_id in visited if node_id not in reached)
        if unreachable:
            logger.warning(
                f"{len(unreachable)} closure terms of '{name}' are not reachable from any "
                f"'{self.schema.root_name}' root and were not indexed"
            )

        logger.info(
            f"Indexed closure for '{name}' (generation {generation}): {len(direct)} direct terms, "
            f"{len(visited)} in closure, {tagged} tagged as {key.label}"
        )
        return RebuildReport(
            principal=name,
            key=key,
            direct_count=len(direct),
            visited_count=len(visited),
            tagged_count=tagged,
            unreachable=unreachable,
        )

    async def rebuild_all(self) -> List[RebuildReport]:
        """Rebuild the index of every principal."""
        principals = await self.discoverer.list_principals()
        reports = await self._bounded(principals, self.rebuild_node)
        logger.info(f"Rebuilt closure index for {len(reports)} principals")
        return reports

    async def _top_down_order(self, visited: FrozenSet[NodeId]) -> List[NodeId]:
        """Closure members reachable from a root, in top-down order.

        Walks incoming subclass edges from every root, entering a child only
        if it belongs to `visited`.
        """
        if not visited:
            return []
        async with self.store.read() as tx:
            roots = await tx.find_nodes(
                self.schema.term_label, {self.schema.name_property: self.schema.root_name}
            )

        order: List[NodeId] = []
        seen = set()
        frontier = deque()
        for root in roots:
            if root.id in visited and root.id not in seen:
                seen.add(root.id)
                order.append(root.id)
                frontier.append(root.id)

        wave_size = self.closure.wave_size
        while frontier:
            wave = [frontier.popleft() for _ in range(min(wave_size, len(frontier)))]
            async with self.store.read() as tx:
                children = await tx.neighbours(wave, self.schema.subclass_of, Direction.INCOMING)
            for node_id in wave:
                for child in children.get(node_id, []):
                    if child.id in visited and child.id not in seen:
                        seen.add(child.id)
                        order.append(child.id)
                        frontier.append(child.id)
        return order

    async def _write_tags(self, tx: GraphTransaction, order: List[NodeId], label: str) -> int:
        """Label all ids inside `tx`, in batches."""
        tagged = 0
        for start in range(0, len(order), self.tag_batch_size):
            tagged += await tx.add_label(order[start:start + self.tag_batch_size], label)
        return tagged

    # --- Invalidation ---

    async def invalidate(self, principal_name: str) -> int:
        """Remove a principal's index. Returns the number of labels removed."""
        principal = await self.discoverer.find_principal(principal_name)
        if principal is None:
            return 0
        return await self.invalidate_node(principal)

    async def invalidate_node(self, principal: GraphNode) -> int:
        prefix = IndexKey.prefix_for(principal.id)
        removed = 0
        async with self.store.write() as tx:
            # Clearing the pointer write-locks the principal against a concurrent rebuild
            await tx.set_properties(principal.id, {GENERATION_PROPERTY: None})
            for label in await tx.labels():
                if label.startswith(prefix):
                    removed += await tx.remove_label(label)
        logger.info(f"Invalidated closure index for '{self._principal_name(principal)}' ({removed} tags)")
        return removed

    async def invalidate_all(self) -> int:
        """Remove every principal's index, including those of deleted principals."""
        principals = await self.discoverer.list_principals()
        removed = sum(await self._bounded(principals, self.invalidate_node))

        async with self.store.read() as tx:
            leftovers = [label for label in await tx.labels() if IndexKey.is_index_label(label)]
        swept = 0
        if leftovers:
            async with self.store.write() as tx:
                for label in leftovers:
                    count = await tx.remove_label(label)
                    if count:
                        swept += 1
                        removed += count
        if swept:
            logger.info(f"Swept {swept} index labels without a principal")
        return removed

    async def _bounded(
        self, principals: List[GraphNode], action: Callable[[GraphNode], Awaitable[T]]
    ) -> List[T]:
        semaphore = asyncio.Semaphore(self.rebuild_concurrency)

        async def run(principal: GraphNode) -> T:
            async with semaphore:
                return await action(principal)

        return list(await asyncio.gather(*(run(p) for p in principals)))
