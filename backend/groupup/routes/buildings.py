"""
GroupUp Backend - Building Routes
=================================

What:  The nearest-building lookup and the spatial store's operational
       endpoints (status, debug, self-test, bounds, load, reset).
Who:   The lookup is called by the web client before creating a group; the
       rest by operators while importing footprint data.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends

from groupup.dependencies import get_spatial_store
from groupup.schemas.building import (
    DatasetBoundsResponse,
    LoadBuildingsRequest,
    LoadBuildingsResponse,
    NearestBuilding,
    NearestBuildingRequest,
    SpatialDebugResponse,
    SpatialSelfTestResponse,
    SpatialStatusResponse,
)
from groupup.schemas.common import ErrorResponse, SuccessResponse
from groupup.services.building_service import building_service
from groupup.services.spatial_store import SpatialStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/buildings", tags=["Buildings"])


@router.post(
    "/nearest",
    response_model=Optional[NearestBuilding],
    responses={
        400: {"description": "Missing location", "model": ErrorResponse},
        500: {"description": "Spatial query failed", "model": ErrorResponse},
    },
    summary="Building containing, or nearest to, a point",
    description=(
        "Returns the building whose footprint contains the point (isInside=true), "
        "otherwise the closest one within bufferMeters (isInside=false), "
        "otherwise null."
    ),
)
async def nearest_building(
    body: NearestBuildingRequest,
    store: SpatialStore = Depends(get_spatial_store),
) -> Optional[NearestBuilding]:
    return await building_service.find_nearest(
        store, body.latitude, body.longitude, body.buffer_meters
    )


@router.get("/status", response_model=SpatialStatusResponse, summary="Spatial store status")
async def spatial_status(store: SpatialStore = Depends(get_spatial_store)) -> SpatialStatusResponse:
    return await building_service.status(store)


@router.get("/debug", response_model=SpatialDebugResponse, summary="Counts, bounds and samples")
async def spatial_debug(store: SpatialStore = Depends(get_spatial_store)) -> SpatialDebugResponse:
    return await building_service.debug(store)


@router.get("/test", response_model=SpatialSelfTestResponse, summary="Spatial store self-test")
async def spatial_self_test(
    store: SpatialStore = Depends(get_spatial_store),
) -> SpatialSelfTestResponse:
    return await building_service.self_test(store)


@router.get(
    "/bounds",
    response_model=DatasetBoundsResponse,
    responses={404: {"description": "No buildings loaded", "model": ErrorResponse}},
    summary="Coverage of the loaded footprints",
)
async def dataset_bounds(store: SpatialStore = Depends(get_spatial_store)) -> DatasetBoundsResponse:
    return await building_service.dataset_bounds(store)


@router.post(
    "/load",
    response_model=LoadBuildingsResponse,
    summary="Reload footprints from the GeoJSON source",
)
async def load_buildings(
    body: Optional[LoadBuildingsRequest] = None,
    store: SpatialStore = Depends(get_spatial_store),
) -> LoadBuildingsResponse:
    body = body or LoadBuildingsRequest()
    return await building_service.load(store, body.limit, body.load_all)


@router.post("/reset", response_model=SuccessResponse, summary="Reopen the spatial store")
async def reset_store(store: SpatialStore = Depends(get_spatial_store)) -> SuccessResponse:
    return await building_service.reset(store)
