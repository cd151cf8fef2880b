# src/composition_root.py

from dataclasses import dataclass
from typing import Optional
import logging

from config.closure_config import ClosureServiceConfig, GraphBackendType, get_closure_config
from domain.graph_store import GraphStore
from application.services.ancestor_closure import AncestorClosure
from application.services.annotation_stats import AnnotationStatsService
from application.services.closure_discoverer import ClosureDiscoverer
from application.services.closure_index import ClosureIndex
from application.services.closure_serializer import ClosureSerializer

logger = logging.getLogger(__name__)


@dataclass
class ClosureServices:
    """The wired closure core, sharing one graph store."""
    config: ClosureServiceConfig
    store: GraphStore
    discoverer: ClosureDiscoverer
    closure: AncestorClosure
    index: ClosureIndex
    serializer: ClosureSerializer
    stats: AnnotationStatsService

    async def close(self) -> None:
        await self.store.close()


def create_graph_store(config: ClosureServiceConfig) -> GraphStore:
    """Create the graph store selected by configuration."""
    if config.backend == GraphBackendType.MEMORY:
        from infrastructure.in_memory_graph_store import InMemoryGraphStore
        logger.info("Using in-memory graph store")
        return InMemoryGraphStore()

    from infrastructure.neo4j_graph_store import create_neo4j_graph_store
    logger.info(f"Using Neo4j graph store at {config.neo4j.uri} (database {config.neo4j.database})")
    return create_neo4j_graph_store(
        uri=config.neo4j.uri,
        username=config.neo4j.username,
        password=config.neo4j.password,
        database=config.neo4j.database,
    )


def bootstrap_closure_services(
    config: Optional[ClosureServiceConfig] = None,
    store: Optional[GraphStore] = None,
) -> ClosureServices:
    """Wire the closure core. A ready store may be passed in (tests do)."""
    config = config or get_closure_config()
    store = store or create_graph_store(config)
    schema = config.schema

    discoverer = ClosureDiscoverer(store, schema)
    closure = AncestorClosure(store, schema, wave_size=config.index.wave_size)
    index = ClosureIndex(
        store,
        discoverer,
        closure,
        schema,
        tag_batch_size=config.index.tag_batch_size,
        rebuild_concurrency=config.index.rebuild_concurrency,
    )
    serializer = ClosureSerializer(store, discoverer, closure, index, schema)
    stats = AnnotationStatsService(store, schema)

    return ClosureServices(
        config=config,
        store=store,
        discoverer=discoverer,
        closure=closure,
        index=index,
        serializer=serializer,
        stats=stats,
    )
