"""Unit tests for the closure domain models."""

import pytest

from domain.closure_errors import InvalidShapeError, MalformedTermError
from domain.ontology_models import (
    ClosureSource,
    DirectTerms,
    GraphNode,
    INDEX_SLOTS,
    IndexKey,
    OntologyTerm,
    RebuildReport,
    TermShape,
)


class TestTermShape:
    """Test TermShape parsing."""

    def test_shape_values(self):
        assert TermShape.ARRAY == "array"
        assert TermShape.KEYED == "keyed"
        assert TermShape.DEEP == "deep"

    def test_parse_defaults_to_array(self):
        assert TermShape.parse(None) == TermShape.ARRAY
        assert TermShape.parse("") == TermShape.ARRAY

    def test_parse_is_case_insensitive(self):
        assert TermShape.parse("Keyed") == TermShape.KEYED

    def test_parse_rejects_unknown(self):
        with pytest.raises(InvalidShapeError) as exc_info:
            TermShape.parse("tree")
        assert "array, keyed, deep" in str(exc_info.value)
        assert isinstance(exc_info.value, ValueError)

    @pytest.mark.parametrize("level,shape", [
        (0, TermShape.ARRAY),
        (1, TermShape.KEYED),
        (2, TermShape.DEEP),
        (5, TermShape.DEEP),
    ])
    def test_from_objectification(self, level, shape):
        assert TermShape.from_objectification(level) == shape

    def test_closure_source_values(self):
        assert ClosureSource("index") == ClosureSource.INDEX
        assert ClosureSource("direct") == ClosureSource.DIRECT

    def test_source_parse(self):
        assert ClosureSource.parse(None) == ClosureSource.INDEX
        assert ClosureSource.parse("DIRECT") == ClosureSource.DIRECT
        with pytest.raises(ValueError):
            ClosureSource.parse("cache")


class TestOntologyTerm:
    """Test reading terms from store nodes."""

    def test_from_node_reads_properties(self):
        node = GraphNode(id=3, properties={
            "uri": "http://purl.obolibrary.org/obo/CL_0000000",
            "name": "CL:0000000",
            "rdfs:label": "cell",
        })
        term = OntologyTerm.from_node(node)
        assert term.id == 3
        assert term.uri == "http://purl.obolibrary.org/obo/CL_0000000"
        assert term.ont_id == "CL:0000000"
        assert term.label == "cell"

    def test_label_falls_back_to_ont_id(self):
        node = GraphNode(id=1, properties={"uri": "u", "name": "OWL:Thing"})
        assert OntologyTerm.from_node(node).label == "OWL:Thing"

    def test_missing_uri_is_malformed(self):
        node = GraphNode(id=9, properties={"name": "CL:1"})
        with pytest.raises(MalformedTermError) as exc_info:
            OntologyTerm.from_node(node)
        assert exc_info.value.node_id == 9
        assert exc_info.value.property_name == "uri"

    def test_missing_name_is_malformed(self):
        node = GraphNode(id=9, properties={"uri": "u"})
        with pytest.raises(MalformedTermError) as exc_info:
            OntologyTerm.from_node(node)
        assert exc_info.value.property_name == "name"


class TestDirectTerms:
    """Test provenance accumulation."""

    def test_accumulates_datasets_per_term(self):
        direct = DirectTerms()
        term = GraphNode(id=1)
        direct.add(term, 10)
        direct.add(term, 11)
        direct.add(GraphNode(id=2), 10)

        assert direct.term_ids == [1, 2]
        assert direct.datasets_for(1) == [10, 11]
        assert direct.datasets_for(2) == [10]
        assert direct.datasets_for(3) == []
        assert len(direct) == 2

    def test_missing_dataset_id_adds_term_only(self):
        direct = DirectTerms()
        direct.add(GraphNode(id=1), None)
        assert direct.term_ids == [1]
        assert direct.datasets_for(1) == []


class TestIndexKey:
    """Test index key labels."""

    def test_label_format(self):
        key = IndexKey(principal_id=42, generation=3)
        assert key.label.startswith("AnnotationSets_")
        assert key.label.endswith("_s1")
        assert key.label.startswith(IndexKey.prefix_for(42))
        assert IndexKey.is_index_label(key.label)

    def test_generations_alternate_between_slots(self):
        labels = {IndexKey(42, generation).label for generation in range(1, 10)}
        assert len(labels) == INDEX_SLOTS
        assert IndexKey(42, 4).label != IndexKey(42, 5).label
        assert IndexKey(42, 4).label == IndexKey(42, 6).label

    def test_principals_differing_by_case_get_distinct_labels(self):
        assert IndexKey("4:abc:1", 1).label != IndexKey("4:ABC:1", 1).label

    def test_prefix_does_not_match_other_principals(self):
        assert not IndexKey(1, 1).label.startswith(IndexKey.prefix_for(2))

    def test_other_labels_are_not_index_labels(self):
        assert not IndexKey.is_index_label("Class")
        assert not IndexKey.is_index_label("AnnotationSetsAlice")


class TestRebuildReport:
    """Test RebuildReport serialization."""

    def test_to_dict(self):
        report = RebuildReport(
            principal="alice",
            key=IndexKey(1, 2),
            direct_count=1,
            visited_count=3,
            tagged_count=3,
            unreachable=(),
        )
        data = report.to_dict()
        assert data["principal"] == "alice"
        assert data["label"] == IndexKey(1, 2).label
        assert data["tagged_count"] == 3
        assert data["unreachable_count"] == 0

    def test_not_found_report(self):
        data = RebuildReport(principal="ghost", found=False).to_dict()
        assert data["found"] is False
        assert data["label"] is None
