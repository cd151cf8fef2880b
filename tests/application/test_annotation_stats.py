"""Unit tests for the annotation-count histogram."""

import pytest

from application.services.annotation_stats import AnnotationStatsService


@pytest.fixture
def annotated(graph):
    """Three datasets: two with one class each, one with three classes."""
    r = graph.root()
    cl1 = graph.term("CL:1", parents=[r])
    cl2 = graph.term("CL:2", parents=[r])
    go1 = graph.term("GO:1", parents=[r])
    graph.dataset(1, cl1)
    graph.dataset(2, go1)
    graph.dataset(3, cl1, cl2, go1)
    graph.dataset(4)    # no annotations
    return {"CL:1": cl1, "CL:2": cl2, "GO:1": go1}


class TestAnnotationCountHistogram:

    @pytest.mark.asyncio
    async def test_dense_histogram(self, store, annotated):
        histogram = await AnnotationStatsService(store).annotation_count_histogram()

        assert histogram == [2, 0, 1]

    @pytest.mark.asyncio
    async def test_no_annotations(self, store, graph):
        graph.dataset(1)

        assert await AnnotationStatsService(store).annotation_count_histogram() == []

    @pytest.mark.asyncio
    async def test_ontology_filter(self, store, annotated):
        service = AnnotationStatsService(store)

        assert await service.annotation_count_histogram("CL") == [1, 1]
        assert await service.annotation_count_histogram("GO") == [2]
        assert await service.annotation_count_histogram("UBERON") == []

    @pytest.mark.asyncio
    async def test_blank_ontology_means_no_filter(self, store, annotated):
        service = AnnotationStatsService(store)

        assert await service.annotation_count_histogram("") == [2, 0, 1]
        assert await service.annotation_count_histogram("  ") == [2, 0, 1]

    @pytest.mark.asyncio
    async def test_invalid_acronym(self, store, annotated):
        with pytest.raises(ValueError):
            await AnnotationStatsService(store).annotation_count_histogram("CL' OR 1=1")

    @pytest.mark.asyncio
    async def test_parallel_edges_count_once(self, store, graph, annotated):
        d = graph.dataset(5, annotated["CL:2"])
        store.add_relationship(d, "annotated_with", annotated["CL:2"])

        histogram = await AnnotationStatsService(store).annotation_count_histogram()

        assert histogram == [3, 0, 1]

    @pytest.mark.asyncio
    async def test_ignores_closure_index(self, services, small_ontology):
        before = await services.stats.annotation_count_histogram()
        await services.index.rebuild("alice")

        assert await services.stats.annotation_count_histogram() == before == [1]
