"""Closure Reader/Serializer.

Streams a principal's closure as `{"nodes": ...}` JSON, one term at a time.

Each output shape has its own writer:
- ArrayTermWriter: `nodes` is a list of term objects
- KeyedTermWriter: `nodes` is an object keyed by term uri
- DeepTermWriter: keyed, with `dataSets` and `parents` as `{key: true}` maps

Closure membership comes either from the materialized index (default) or
from a direct traversal that emits each term as it is first reached.
Everything that can fail cleanly (principal lookup, provenance, index key)
happens in `prepare()`, before the first byte is produced.
"""

import json
import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional

from domain.graph_store import GraphStore
from domain.ontology_models import (
    ClosureSource,
    Direction,
    DirectTerms,
    GraphNode,
    IndexKey,
    OntologySchema,
    OntologyTerm,
    TermShape,
)
from application.services.ancestor_closure import AncestorClosure
from application.services.closure_discoverer import ClosureDiscoverer
from application.services.closure_index import ClosureIndex

logger = logging.getLogger(__name__)


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


class TermWriter:
    """Renders the `nodes` container and its entries for one shape."""

    opener = '{"nodes":['
    closer = "]}"

    def __init__(self) -> None:
        self._first = True

    def open(self) -> str:
        return self.opener

    def close(self) -> str:
        return self.closer

    def term_object(self, term: OntologyTerm, datasets: List[Any], parents: List[str]) -> Dict[str, Any]:
        return {
            "uri": term.uri,
            "ontId": term.ont_id,
            "label": term.label,
            "dataSets": list(datasets),
            "parents": list(parents),
        }

    def member(self, term: OntologyTerm, body: str) -> str:
        return body

    def entry(self, term: OntologyTerm, datasets: List[Any], parents: List[str]) -> str:
        text = self.member(term, _dumps(self.term_object(term, datasets, parents)))
        if self._first:
            self._first = False
            return text
        return "," + text


class ArrayTermWriter(TermWriter):
    """`nodes` as a JSON array."""


class KeyedTermWriter(TermWriter):
    """`nodes` as a JSON object keyed by term uri."""

    opener = '{"nodes":{'
    closer = "}}"

    def member(self, term: OntologyTerm, body: str) -> str:
        return f"{_dumps(term.uri)}:{body}"


class DeepTermWriter(KeyedTermWriter):
    """Keyed, with inner lists turned into membership maps."""

    def term_object(self, term: OntologyTerm, datasets: List[Any], parents: List[str]) -> Dict[str, Any]:
        return {
            "uri": term.uri,
            "ontId": term.ont_id,
            "label": term.label,
            "dataSets": {str(dataset_id): True for dataset_id in datasets},
            "parents": {uri: True for uri in parents},
        }


WRITERS = {
    TermShape.ARRAY: ArrayTermWriter,
    TermShape.KEYED: KeyedTermWriter,
    TermShape.DEEP: DeepTermWriter,
}


def writer_for(shape: TermShape) -> TermWriter:
    return WRITERS[shape]()


@dataclass
class ClosurePlan:
    """Everything resolved for a closure response before streaming starts."""
    principal: str
    shape: TermShape
    source: ClosureSource
    found: bool = False
    key: Optional[IndexKey] = None
    direct: DirectTerms = field(default_factory=DirectTerms)


class ClosureSerializer:
    """Reads a principal's closure and serializes it incrementally."""

    def __init__(
        self,
        store: GraphStore,
        discoverer: ClosureDiscoverer,
        closure: AncestorClosure,
        index: ClosureIndex,
        schema: Optional[OntologySchema] = None,
    ):
        self.store = store
        self.discoverer = discoverer
        self.closure = closure
        self.index = index
        self.schema = schema or OntologySchema()

    async def prepare(
        self,
        principal_name: str,
        shape: TermShape = TermShape.ARRAY,
        source: ClosureSource = ClosureSource.INDEX,
    ) -> ClosurePlan:
        plan = ClosurePlan(principal=principal_name, shape=shape, source=source)
        principal = await self.discoverer.find_principal(principal_name)
        if principal is None:
            return plan

        plan.found = True
        if source == ClosureSource.INDEX:
            plan.key = await self.index.current_key(principal)
            if plan.key is None:
                logger.info(f"No closure index for '{principal_name}'; answering with no terms")
                return plan
        plan.direct = await self.discoverer.direct_terms_for_node(principal)
        return plan

    async def stream(self, plan: ClosurePlan) -> AsyncIterator[bytes]:
        """Yield UTF-8 JSON chunks for a prepared plan."""
        writer = writer_for(plan.shape)
        yield writer.open().encode("utf-8")

        count = 0
        if plan.source == ClosureSource.INDEX:
            entries = self._index_entries(plan, writer)
        else:
            entries = self._direct_entries(plan, writer)
        # Closing this stream closes the entries and with them their read transaction
        async with aclosing(entries) as rows:
            async for chunk in rows:
                count += 1
                yield chunk.encode("utf-8")

        yield writer.close().encode("utf-8")
        logger.debug(f"Streamed {count} terms for '{plan.principal}' ({plan.shape.value}, {plan.source.value})")

    async def stream_closure(
        self,
        principal_name: str,
        shape: TermShape = TermShape.ARRAY,
        source: ClosureSource = ClosureSource.INDEX,
    ) -> AsyncIterator[bytes]:
        plan = await self.prepare(principal_name, shape, source)
        async with aclosing(self.stream(plan)) as chunks:
            async for chunk in chunks:
                yield chunk

    async def collect_closure(
        self,
        principal_name: str,
        shape: TermShape = TermShape.ARRAY,
        source: ClosureSource = ClosureSource.INDEX,
    ) -> Dict[str, Any]:
        """Parsed closure payload; for callers that want the whole document."""
        chunks = [chunk async for chunk in self.stream_closure(principal_name, shape, source)]
        return json.loads(b"".join(chunks).decode("utf-8"))

    def _parent_uris(self, parents: Iterable[GraphNode]) -> List[str]:
        uris: List[str] = []
        for parent in parents:
            uri = OntologyTerm.from_node(parent, self.schema).uri
            if uri not in uris:
                uris.append(uri)
        return uris

    async def _index_entries(self, plan: ClosurePlan, writer: TermWriter) -> AsyncIterator[str]:
        if plan.key is None:
            return
        label = plan.key.label
        async with self.store.read() as tx:
            rows = tx.stream_nodes(
                label, self.schema.subclass_of, Direction.OUTGOING, neighbour_label=label
            )
            async with aclosing(rows):
                async for node, parents in rows:
                    term = OntologyTerm.from_node(node, self.schema)
                    yield writer.entry(term, plan.direct.datasets_for(node.id), self._parent_uris(parents))

    async def _direct_entries(self, plan: ClosurePlan, writer: TermWriter) -> AsyncIterator[str]:
        async with aclosing(self.closure.walk(plan.direct.terms.values())) as walk:
            async for node, parents in walk:
                term = OntologyTerm.from_node(node, self.schema)
                yield writer.entry(term, plan.direct.datasets_for(node.id), self._parent_uris(parents))
