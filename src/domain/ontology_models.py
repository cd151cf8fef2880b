"""Domain models for the per-principal annotation closure.

The ontology lives in the graph store as term nodes joined by subclass edges.
Principals reach terms through the datasets they can read; the set of terms a
principal can see is materialized as a label on the term nodes (the closure
index). These models describe that vocabulary independently of any store.
"""

import hashlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple

from domain.closure_errors import InvalidShapeError, MalformedTermError

NodeId = Any

TAG_PREFIX = "AnnotationSets"

# Label slots per principal; generations take turns so label names stay bounded
INDEX_SLOTS = 2


class Direction(str, Enum):
    """Direction of a relationship relative to the starting node."""
    OUTGOING = "OUTGOING"
    INCOMING = "INCOMING"


class TermShape(str, Enum):
    """JSON representation of the `nodes` value of a closure response."""
    ARRAY = "array"   # list of term objects
    KEYED = "keyed"   # object keyed by term uri
    DEEP = "deep"     # keyed, inner lists rendered as {key: true} maps

    @classmethod
    def parse(cls, value: Optional[str]) -> "TermShape":
        if value is None or value == "":
            return cls.ARRAY
        try:
            return cls(value.lower())
        except ValueError:
            allowed = ", ".join(shape.value for shape in cls)
            raise InvalidShapeError(f"Unknown shape '{value}' (expected one of: {allowed})")

    @classmethod
    def from_objectification(cls, level: int) -> "TermShape":
        """Map the legacy integer objectification level to a shape."""
        if level <= 0:
            return cls.ARRAY
        if level == 1:
            return cls.KEYED
        return cls.DEEP


class ClosureSource(str, Enum):
    """Where the read path takes closure membership from."""
    INDEX = "index"     # terms tagged by the last rebuild
    DIRECT = "direct"   # computed on the fly, nothing read from the index

    @classmethod
    def parse(cls, value: Optional[str]) -> "ClosureSource":
        if value is None or value == "":
            return cls.INDEX
        try:
            return cls(value.lower())
        except ValueError:
            allowed = ", ".join(source.value for source in cls)
            raise ValueError(f"Unknown source '{value}' (expected one of: {allowed})")


@dataclass(frozen=True)
class OntologySchema:
    """Names of labels, relationship types and properties in the store."""
    term_label: str = "Class"
    dataset_label: str = "DataSet"
    principal_label: str = "User"
    subclass_of: str = "RDFS:subClassOf"
    annotated_with: str = "annotated_with"
    read_access: str = "read_access"
    root_name: str = "OWL:Thing"
    uri_property: str = "uri"
    name_property: str = "name"
    label_property: str = "rdfs:label"
    dataset_id_property: str = "id"
    principal_name_property: str = "name"


@dataclass(frozen=True)
class GraphNode:
    """A node as returned by the graph store adapter."""
    id: NodeId
    labels: FrozenSet[str] = frozenset()
    properties: Mapping[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.properties.get(key, default)

    def has_label(self, label: str) -> bool:
        return label in self.labels


@dataclass(frozen=True)
class OntologyTerm:
    """An ontology class as exposed to clients."""
    id: NodeId
    uri: str
    ont_id: str
    label: str

    @classmethod
    def from_node(cls, node: GraphNode, schema: OntologySchema = OntologySchema()) -> "OntologyTerm":
        """Read a term from its store node.

        Raises:
            MalformedTermError: if `uri` or the ontology-local name is absent.
        """
        uri = node.get(schema.uri_property)
        if uri is None:
            raise MalformedTermError(node.id, schema.uri_property)
        ont_id = node.get(schema.name_property)
        if ont_id is None:
            raise MalformedTermError(node.id, schema.name_property)
        label = node.get(schema.label_property)
        if label is None:
            label = ont_id
        return cls(id=node.id, uri=str(uri), ont_id=str(ont_id), label=str(label))


@dataclass
class DirectTerms:
    """Terms annotated directly to a principal's datasets, with provenance.

    `terms` keeps first-seen order and holds each term once. `provenance`
    maps a term id to the external ids of the datasets annotating it, in
    dataset enumeration order.
    """
    terms: Dict[NodeId, GraphNode] = field(default_factory=dict)
    provenance: Dict[NodeId, List[Any]] = field(default_factory=dict)

    def add(self, term: GraphNode, dataset_id: Any = None) -> None:
        self.terms.setdefault(term.id, term)
        ids = self.provenance.setdefault(term.id, [])
        if dataset_id is not None:
            ids.append(dataset_id)

    @property
    def term_ids(self) -> List[NodeId]:
        return list(self.terms)

    def datasets_for(self, term_id: NodeId) -> List[Any]:
        return self.provenance.get(term_id, [])

    def __len__(self) -> int:
        return len(self.terms)


def principal_digest(principal_id: NodeId) -> str:
    """Stable, label-safe token for a principal node id."""
    return hashlib.sha1(str(principal_id).encode("utf-8")).hexdigest()[:16]


@dataclass(frozen=True)
class IndexKey:
    """Identifies one generation of one principal's closure index.

    The label only carries the generation's slot, so a principal never has
    more than `INDEX_SLOTS` distinct index labels however often it is rebuilt.
    """
    principal_id: NodeId
    generation: int

    @staticmethod
    def prefix_for(principal_id: NodeId) -> str:
        return f"{TAG_PREFIX}_{principal_digest(principal_id)}_s"

    @property
    def slot(self) -> int:
        return self.generation % INDEX_SLOTS

    @property
    def label(self) -> str:
        return f"{self.prefix_for(self.principal_id)}{self.slot}"

    @staticmethod
    def is_index_label(label: str) -> bool:
        return label.startswith(f"{TAG_PREFIX}_")


@dataclass
class RebuildReport:
    """Outcome of materializing one principal's closure."""
    principal: str
    found: bool = True
    key: Optional[IndexKey] = None
    direct_count: int = 0
    visited_count: int = 0
    tagged_count: int = 0
    unreachable: Tuple[NodeId, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "principal": self.principal,
            "found": self.found,
            "label": self.key.label if self.key else None,
            "direct_count": self.direct_count,
            "visited_count": self.visited_count,
            "tagged_count": self.tagged_count,
            "unreachable_count": len(self.unreachable),
        }
