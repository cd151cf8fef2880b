"""
Shared fixtures for the annotation closure tests.

The closure core runs against the in-memory graph store; `GraphBuilder`
creates ontology terms, datasets and principals in the shape the Neo4j
deployment uses (Class / DataSet / User nodes).
"""

from typing import Iterable, Optional

import pytest

from composition_root import ClosureServices, bootstrap_closure_services
from config.closure_config import ClosureServiceConfig, GraphBackendType
from domain.ontology_models import OntologySchema
from infrastructure.in_memory_graph_store import InMemoryGraphStore


class GraphBuilder:
    """Builds ontology fixtures in an in-memory store."""

    def __init__(self, store: InMemoryGraphStore, schema: OntologySchema = OntologySchema()):
        self.store = store
        self.schema = schema

    def term(
        self,
        name: str,
        parents: Iterable[int] = (),
        uri: Optional[str] = None,
        label: Optional[str] = None,
    ) -> int:
        properties = {
            self.schema.name_property: name,
            self.schema.uri_property: uri or f"http://purl.obolibrary.org/obo/{name.replace(':', '_')}",
        }
        if label is not None:
            properties[self.schema.label_property] = label
        term_id = self.store.add_node(self.schema.term_label, **properties)
        for parent in parents:
            self.subclass(term_id, parent)
        return term_id

    def root(self) -> int:
        return self.term(self.schema.root_name, uri="http://www.w3.org/2002/07/owl#Thing")

    def subclass(self, child: int, parent: int) -> None:
        self.store.add_relationship(child, self.schema.subclass_of, parent)

    def dataset(self, external_id: Optional[int], *terms: int) -> int:
        properties = {}
        if external_id is not None:
            properties[self.schema.dataset_id_property] = external_id
        dataset_id = self.store.add_node(self.schema.dataset_label, **properties)
        for term in terms:
            self.store.add_relationship(dataset_id, self.schema.annotated_with, term)
        return dataset_id

    def principal(self, name: str, *datasets: int) -> int:
        principal_id = self.store.add_node(
            self.schema.principal_label, **{self.schema.principal_name_property: name}
        )
        for dataset in datasets:
            self.grant(principal_id, dataset)
        return principal_id

    def grant(self, principal: int, dataset: int) -> None:
        self.store.add_relationship(principal, self.schema.read_access, dataset)

    def uri(self, term_id: int) -> str:
        return self.store.node_property(term_id, self.schema.uri_property)


@pytest.fixture
def store() -> InMemoryGraphStore:
    """Empty in-memory graph store."""
    return InMemoryGraphStore()


@pytest.fixture
def graph(store) -> GraphBuilder:
    """Fixture builder over the store."""
    return GraphBuilder(store)


@pytest.fixture
def services(store) -> ClosureServices:
    """Closure core wired to the in-memory store."""
    config = ClosureServiceConfig(backend=GraphBackendType.MEMORY)
    return bootstrap_closure_services(config=config, store=store)


@pytest.fixture
def small_ontology(graph):
    """R <- A <- B, dataset 7 annotated with B, principal alice reads it.

    Also holds an unrelated branch R <- X that nobody can see.
    """
    r = graph.root()
    a = graph.term("CL:A", parents=[r], label="Term A")
    b = graph.term("CL:B", parents=[a])
    x = graph.term("CL:X", parents=[r])
    d = graph.dataset(7, b)
    alice = graph.principal("alice", d)
    return {"R": r, "A": a, "B": b, "X": x, "D": d, "alice": alice}
