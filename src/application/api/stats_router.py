"""FastAPI router for annotation statistics."""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from domain.closure_errors import ClosureError
from application.services.annotation_stats import AnnotationStatsService
from .annotation_router import to_http_error
from .dependencies import get_annotation_stats

router = APIRouter(prefix="/stats", tags=["Statistics"])


@router.get("/annotation-count-histogram", response_model=List[int])
async def get_annotation_count_histogram(
    ontology: Optional[str] = Query(None, description="Restrict to an ontology acronym, e.g. CL"),
    stats: AnnotationStatsService = Depends(get_annotation_stats),
):
    """Distribution of the number of annotated classes per dataset."""
    try:
        return await stats.annotation_count_histogram(ontology=ontology)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except ClosureError as e:
        raise to_http_error(e)
