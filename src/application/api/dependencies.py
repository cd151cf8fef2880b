"""Dependency injection for FastAPI application."""

from typing import Optional

from composition_root import ClosureServices, bootstrap_closure_services
from application.services.annotation_stats import AnnotationStatsService
from application.services.closure_index import ClosureIndex
from application.services.closure_serializer import ClosureSerializer

# Global instance to hold state
_services: Optional[ClosureServices] = None


def set_closure_services(services: Optional[ClosureServices]) -> None:
    """Replace the wired services (startup code and tests call this)."""
    global _services
    _services = services


def get_closure_services() -> ClosureServices:
    """Dependency to get the wired closure core."""
    global _services
    if _services is None:
        _services = bootstrap_closure_services()
    return _services


def get_closure_index() -> ClosureIndex:
    return get_closure_services().index


def get_closure_serializer() -> ClosureSerializer:
    return get_closure_services().serializer


def get_annotation_stats() -> AnnotationStatsService:
    return get_closure_services().stats


async def shutdown_closure_services() -> None:
    """Close the graph store on application shutdown."""
    global _services
    if _services is not None:
        await _services.close()
        _services = None
