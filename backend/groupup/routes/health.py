"""
GroupUp Backend - Health Check Route
====================================

Status levels:
    healthy     relational database reachable, spatial store open with data
    degraded    database reachable, spatial store empty or unavailable
                (groups still work, just without building association)
    unhealthy   database unreachable (HTTP 503)
"""

import logging
import time

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from groupup import __version__
from groupup.database import check_connection
from groupup.exceptions import SpatialStoreError
from groupup.schemas.common import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
    description="Reports database and spatial store status for container health checks.",
)
async def health_check(request: Request):
    db_status = "connected"
    spatial_status = "ready"
    overall = "healthy"

    try:
        await check_connection()
    except (SQLAlchemyError, OSError) as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", e)

    store = getattr(request.app.state, "spatial_store", None)
    if store is None or not store.is_initialized:
        spatial_status = "unavailable"
    else:
        try:
            bounds = await store.bounds()
            if bounds.total == 0:
                spatial_status = "empty"
        except SpatialStoreError as e:
            spatial_status = "unavailable"
            logger.warning("Health check: spatial store query failed: %s", e.context.get("error"))
    if spatial_status != "ready" and overall == "healthy":
        overall = "degraded"

    body = HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        spatial_store=spatial_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
    if overall == "unhealthy":
        return JSONResponse(status_code=503, content=body.model_dump(by_alias=True))
    return body
