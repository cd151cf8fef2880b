"""FastAPI router for per-principal annotation closures.

GET streams a principal's closure; POST rebuilds closure indexes; DELETE
invalidates them. Rebuild and invalidate answer 200 with an empty body,
including for principals that do not exist.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from fastapi.responses import StreamingResponse

from domain.closure_errors import ClosureError, StoreUnavailableError
from domain.ontology_models import ClosureSource, TermShape
from application.services.closure_index import ClosureIndex
from application.services.closure_serializer import ClosureSerializer
from .dependencies import get_closure_index, get_closure_serializer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/annotations", tags=["Annotations"])


def to_http_error(error: Exception) -> HTTPException:
    """Map core failures to HTTP errors."""
    if isinstance(error, StoreUnavailableError):
        return HTTPException(status_code=503, detail=str(error))
    if isinstance(error, ValueError):
        return HTTPException(status_code=422, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))


@router.get("/{principal}")
async def get_annotation_sets(
    principal: str,
    shape: Optional[str] = Query(None, description="array, keyed or deep (any case)"),
    objectification: Optional[int] = Query(
        None, ge=0, le=2, description="Legacy shape selector: 0=array, 1=keyed, 2=deep"
    ),
    source: Optional[str] = Query(None, description="index (default) or direct"),
    serializer: ClosureSerializer = Depends(get_closure_serializer),
):
    """Stream the ontology closure visible to a principal."""
    try:
        if shape:
            term_shape = TermShape.parse(shape)
        elif objectification is not None:
            term_shape = TermShape.from_objectification(objectification)
        else:
            term_shape = TermShape.ARRAY
        closure_source = ClosureSource.parse(source)
    except ValueError as e:
        raise to_http_error(e)

    try:
        plan = await serializer.prepare(principal, shape=term_shape, source=closure_source)
    except ClosureError as e:
        logger.error(f"Failed to prepare closure for '{principal}': {e}")
        raise to_http_error(e)

    return StreamingResponse(serializer.stream(plan), media_type="application/json")


@router.post("")
async def rebuild_all_annotation_sets(index: ClosureIndex = Depends(get_closure_index)):
    """Rebuild the closure index of every principal."""
    try:
        await index.rebuild_all()
    except ClosureError as e:
        logger.error(f"Rebuilding all closure indexes failed: {e}")
        raise to_http_error(e)
    return Response(status_code=200)


@router.post("/{principal}")
async def rebuild_annotation_sets(
    principal: str,
    index: ClosureIndex = Depends(get_closure_index),
):
    """Rebuild the closure index of one principal."""
    try:
        await index.rebuild(principal)
    except ClosureError as e:
        logger.error(f"Rebuilding closure index for '{principal}' failed: {e}")
        raise to_http_error(e)
    return Response(status_code=200)


@router.delete("")
async def remove_all_annotation_sets(index: ClosureIndex = Depends(get_closure_index)):
    """Invalidate every principal's closure index."""
    try:
        await index.invalidate_all()
    except ClosureError as e:
        logger.error(f"Invalidating closure indexes failed: {e}")
        raise to_http_error(e)
    return Response(status_code=200)


@router.delete("/{principal}")
async def remove_annotation_sets(
    principal: str,
    index: ClosureIndex = Depends(get_closure_index),
):
    """Invalidate one principal's closure index."""
    try:
        await index.invalidate(principal)
    except ClosureError as e:
        logger.error(f"Invalidating closure index for '{principal}' failed: {e}")
        raise to_http_error(e)
    return Response(status_code=200)
