"""Closure Discoverer.

Finds the ontology terms annotated directly to the datasets a principal can
read, and which datasets justify each of them.

Usage:
    discoverer = ClosureDiscoverer(store)
    direct = await discoverer.direct_terms("alice")
    direct.term_ids, direct.datasets_for(term_id)
"""

import logging
from typing import List, Optional

from domain.graph_store import GraphStore
from domain.ontology_models import Direction, DirectTerms, GraphNode, OntologySchema

logger = logging.getLogger(__name__)


class ClosureDiscoverer:
    """Discovers directly annotated terms and their provenance."""

    def __init__(self, store: GraphStore, schema: Optional[OntologySchema] = None):
        self.store = store
        self.schema = schema or OntologySchema()

    async def find_principal(self, principal_name: str) -> Optional[GraphNode]:
        """Look up a principal by name; None when it does not exist."""
        async with self.store.read() as tx:
            principals = await tx.find_nodes(
                self.schema.principal_label,
                {self.schema.principal_name_property: principal_name},
            )
        if not principals:
            logger.debug(f"Principal '{principal_name}' not found")
            return None
        if len(principals) > 1:
            logger.warning(
                f"{len(principals)} principals named '{principal_name}', using the first"
            )
        return principals[0]

    async def list_principals(self) -> List[GraphNode]:
        """Return every principal node."""
        async with self.store.read() as tx:
            return await tx.find_nodes(self.schema.principal_label)

    async def accessible_datasets(self, principal: GraphNode) -> List[GraphNode]:
        """Datasets reachable over `read_access` from the principal."""
        async with self.store.read() as tx:
            reached = await tx.neighbours(
                [principal.id], self.schema.read_access, Direction.OUTGOING
            )
        datasets = {}
        for dataset in reached.get(principal.id, []):
            datasets.setdefault(dataset.id, dataset)
        return list(datasets.values())

    async def direct_terms(self, principal_name: str) -> DirectTerms:
        """Directly annotated terms for a principal name.

        An unknown principal has no access, so the result is empty.
        """
        principal = await self.find_principal(principal_name)
        if principal is None:
            return DirectTerms()
        return await self.direct_terms_for_node(principal)

    async def direct_terms_for_node(self, principal: GraphNode) -> DirectTerms:
        """Directly annotated terms for an already resolved principal node."""
        datasets = await self.accessible_datasets(principal)
        direct = DirectTerms()
        if not datasets:
            return direct

        async with self.store.read() as tx:
            annotations = await tx.neighbours(
                [dataset.id for dataset in datasets],
                self.schema.annotated_with,
                Direction.OUTGOING,
            )

        for dataset in datasets:
            external_id = dataset.get(self.schema.dataset_id_property)
            if external_id is None:
                logger.warning(
                    f"DataSet node {dataset.id} has no '{self.schema.dataset_id_property}' "
                    f"property; its terms are included without provenance"
                )
            seen = set()
            for term in annotations.get(dataset.id, []):
                # Parallel edges from one dataset count once
                if term.id in seen:
                    continue
                seen.add(term.id)
                direct.add(term, external_id)

        logger.debug(
            f"Principal {principal.id}: {len(datasets)} datasets, {len(direct)} direct terms"
        )
        return direct
