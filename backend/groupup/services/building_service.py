"""
GroupUp Backend - Building Service
==================================

What:  Nearest-building lookup plus the diagnostic operations behind
       /api/buildings/*.
Who:   Called by the building routes and by GroupService.create_group.

Lookup order (find_nearest):
    1. A footprint that strictly contains the point   -> is_inside = True
    2. Else the closest footprint within the buffer   -> is_inside = False
    3. Else None

    If the spatial store cannot be opened the lookup answers None, so group
    creation keeps working without building data. Query errors on an open
    store still propagate (SpatialStoreError -> 500).
"""

import json
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from groupup.config import settings
from groupup.exceptions import NotFoundError, SpatialStoreUnavailableError
from groupup.models.building import Building
from groupup.schemas.building import (
    BuildingBounds,
    BuildingSample,
    DatasetBoundsResponse,
    LoadBuildingsResponse,
    NearestBuilding,
    SampleLocation,
    SpatialDebugResponse,
    SpatialSelfTestResponse,
    SpatialStatusResponse,
)
from groupup.schemas.common import SuccessResponse
from groupup.services.geo import round_meters
from groupup.services.spatial_store import (
    BuildingMatch,
    SpatialStore,
    StoreBounds,
    approx_area_km2,
)

logger = logging.getLogger(__name__)


def _to_bounds(bounds: StoreBounds) -> BuildingBounds:
    return BuildingBounds(
        min_lon=bounds.min_lon,
        max_lon=bounds.max_lon,
        min_lat=bounds.min_lat,
        max_lat=bounds.max_lat,
    )


def _to_nearest(match: BuildingMatch) -> NearestBuilding:
    return NearestBuilding(
        id=match.id,
        name=match.name,
        address=match.address,
        geometry=match.geometry,
        is_inside=match.is_inside,
        distance=round_meters(match.distance),
        centroid=[match.centroid[0], match.centroid[1]],
    )


class BuildingService:
    """Stateless; the spatial store is passed in by the caller."""

    async def find_nearest(
        self,
        store: SpatialStore,
        latitude: float,
        longitude: float,
        buffer_meters: Optional[float] = None,
    ) -> Optional[NearestBuilding]:
        buffer = buffer_meters or settings.default_buffer_meters

        try:
            match = await store.find_containing(latitude, longitude)
            if match is None:
                match = await store.find_nearest_within(latitude, longitude, buffer)
        except SpatialStoreUnavailableError as e:
            logger.error(
                "Building lookup skipped, spatial store unavailable: %s",
                e.context.get("error", e.message),
            )
            return None

        if match is None:
            logger.debug("No building within %.0fm of (%f, %f)", buffer, latitude, longitude)
            return None
        return _to_nearest(match)

    async def ensure_relational_building(
        self, db: AsyncSession, building: NearestBuilding
    ) -> Building:
        """
        Mirrors a spatial-store building into the relational `buildings`
        table, once. The caller's transaction owns the insert.
        """
        existing = await db.get(Building, building.id)
        if existing is not None:
            return existing

        row = Building(
            id=building.id,
            name=building.name,
            address=building.address,
            polygon=json.dumps(building.geometry),
            area=0.0,
        )
        db.add(row)
        await db.flush()
        logger.info("Building %s mirrored into the relational store", building.id)
        return row

    # ── Diagnostics ───────────────────────────────────────────────────────

    async def status(self, store: SpatialStore) -> SpatialStatusResponse:
        bounds = await store.bounds()
        ready = bounds.total > 0
        return SpatialStatusResponse(
            status="ready" if ready else "empty",
            total_buildings=bounds.total,
            bounds=_to_bounds(bounds),
            message=(
                f"{bounds.total} buildings loaded"
                if ready
                else "No buildings loaded. POST /api/buildings/load to import the dataset."
            ),
        )

    async def debug(self, store: SpatialStore) -> SpatialDebugResponse:
        bounds = await store.bounds()
        samples = await store.sample(5)
        return SpatialDebugResponse(
            total_buildings=bounds.total,
            bounds=_to_bounds(bounds),
            sample_buildings=[BuildingSample(**s) for s in samples],
            status="ready" if bounds.total > 0 else "empty",
        )

    async def self_test(self, store: SpatialStore) -> SpatialSelfTestResponse:
        return SpatialSelfTestResponse(**await store.self_test())

    async def dataset_bounds(self, store: SpatialStore) -> DatasetBoundsResponse:
        bounds = await store.bounds()
        if bounds.total == 0:
            raise NotFoundError(resource="buildings", message="No buildings loaded")

        samples = await store.sample(1)
        sample_location = None
        if samples and samples[0]["centroid_lat"] is not None:
            sample_location = SampleLocation(
                latitude=samples[0]["centroid_lat"],
                longitude=samples[0]["centroid_lon"],
            )
        return DatasetBoundsResponse(
            bounds=_to_bounds(bounds),
            center=SampleLocation(latitude=bounds.center_lat, longitude=bounds.center_lon),
            sample_location=sample_location,
            approx_area_km2=approx_area_km2(bounds),
        )

    async def load(
        self, store: SpatialStore, limit: Optional[int], load_all: bool
    ) -> LoadBuildingsResponse:
        effective_limit = None if load_all else (limit or settings.buildings_startup_limit)
        logger.info("Loading buildings (limit=%s)", effective_limit or "all")

        result = await store.load_geojson(limit=effective_limit, replace=True)
        return LoadBuildingsResponse(
            success=True,
            loaded=result.loaded,
            errors=result.errors,
            error_samples=result.error_samples,
            total_in_db=result.total,
            message=f"Loaded {result.loaded} buildings ({result.errors} errors)",
        )

    async def reset(self, store: SpatialStore) -> SuccessResponse:
        bounds = await store.reset()
        logger.warning("Spatial store reset; %d buildings after reopen", bounds.total)
        return SuccessResponse(
            success=True,
            message=f"Spatial store reinitialised with {bounds.total} buildings",
        )


# ── Singleton Instance ────────────────────────────────────────────────────
building_service = BuildingService()
