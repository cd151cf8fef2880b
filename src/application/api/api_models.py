"""
Pydantic response models for the annotation closure API.

Closure payloads are streamed as raw JSON and have no model here; these
cover the small fixed-shape responses.
"""

from pydantic import BaseModel, Field


# ========================================
# Service Models
# ========================================

class HealthResponse(BaseModel):
    """Liveness status of the service."""
    status: str = Field(default="ok")
    backend: str = Field(..., description="Graph store implementation in use")
