"""Annotation statistics.

Reporting queries over dataset annotations. They read the graph only and
share no state with the closure index.
"""

import logging
import re
from typing import List, Optional

from domain.graph_store import GraphStore
from domain.ontology_models import OntologySchema

logger = logging.getLogger(__name__)

ACRONYM_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


class AnnotationStatsService:
    """Aggregate statistics about dataset annotations."""

    def __init__(self, store: GraphStore, schema: Optional[OntologySchema] = None):
        self.store = store
        self.schema = schema or OntologySchema()

    async def annotation_count_histogram(self, ontology: Optional[str] = None) -> List[int]:
        """Distribution of the number of annotated classes per dataset.

        Index `i` holds the number of datasets annotated with exactly `i + 1`
        distinct classes. The list is as long as the largest count, with
        zeros for counts no dataset has.

        Args:
            ontology: Optional ontology acronym (e.g. "CL"). Only classes
                whose ontology-local name starts with "<acronym>:" are
                counted, and datasets without such classes are left out.

        Raises:
            ValueError: if the acronym contains unsupported characters.
        """
        prefix = None
        if ontology is not None and ontology.strip():
            acronym = ontology.strip()
            if not ACRONYM_PATTERN.match(acronym):
                raise ValueError(f"Invalid ontology acronym: {ontology!r}")
            prefix = (self.schema.name_property, f"{acronym}:")

        histogram: List[int] = []
        datasets = 0
        async with self.store.read() as tx:
            async for count in tx.count_neighbours(
                self.schema.dataset_label,
                self.schema.annotated_with,
                self.schema.term_label,
                neighbour_prefix=prefix,
            ):
                if count < 1:
                    continue
                if count > len(histogram):
                    histogram.extend([0] * (count - len(histogram)))
                histogram[count - 1] += 1
                datasets += 1

        logger.debug(
            f"Annotation histogram over {datasets} datasets"
            + (f" (ontology {ontology})" if prefix else "")
        )
        return histogram
