"""Main FastAPI application entry point."""

import logging

from dotenv import load_dotenv
from fastapi import Depends, FastAPI
from fastapi.middleware.gzip import GZipMiddleware

from config.closure_config import get_closure_config
from composition_root import ClosureServices
from .annotation_router import router as annotation_router
from .api_models import HealthResponse
from .stats_router import router as stats_router
from .dependencies import get_closure_services, shutdown_closure_services

logger = logging.getLogger(__name__)

load_dotenv()
config = get_closure_config()

logging.basicConfig(
    level=getattr(logging, config.api.log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

app = FastAPI(
    title="Annotation Closure API",
    description="Per-principal ontology closures over accessible datasets",
    version="1.0.0"
)

# Compress large closure responses
app.add_middleware(GZipMiddleware, minimum_size=config.api.gzip_minimum_size)

# Include routers
app.include_router(annotation_router)
app.include_router(stats_router)


# ========================================
# Lifecycle Events
# ========================================

@app.on_event("startup")
async def startup_event():
    """Wire the closure core on application startup."""
    services = get_closure_services()
    logger.info(f"🚀 Annotation Closure API started ({services.store.name} graph store)")


@app.on_event("shutdown")
async def shutdown_event():
    """Release the graph store connection."""
    await shutdown_closure_services()
    logger.info("Annotation Closure API stopped")


@app.get("/health", response_model=HealthResponse)
async def health(services: ClosureServices = Depends(get_closure_services)):
    """Liveness check reporting the configured graph store."""
    return HealthResponse(backend=services.store.name)
