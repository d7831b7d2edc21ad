"""
GroupUp Backend - Building API Schemas
======================================

Request and response contracts for /api/buildings/*.

The nearest-building record is the one piece of this module other code
depends on: GroupService uses `is_inside` to decide whether a new group is
associated with the building.
"""

from typing import Any, Dict, List, Optional

from pydantic import Field

from groupup.schemas.common import CamelModel


class NearestBuildingRequest(CamelModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    buffer_meters: Optional[float] = Field(
        default=None,
        gt=0,
        le=5000,
        description="Search buffer around the point in meters (default 40)",
    )


class NearestBuilding(CamelModel):
    """
    Result of the nearest-building lookup.

    is_inside is True only when the point lies strictly inside the footprint
    polygon; otherwise the building is merely the closest one within the
    buffer, and `distance` is the metric distance to its bounding box.
    """
    id: str
    name: Optional[str] = None
    address: Optional[str] = None
    geometry: Dict[str, Any] = Field(description="GeoJSON geometry of the footprint")
    is_inside: bool
    distance: int = Field(description="Meters from the point to the building (0 when inside)")
    centroid: List[float] = Field(description="[longitude, latitude]")


class BuildingBounds(CamelModel):
    min_lon: Optional[float] = None
    max_lon: Optional[float] = None
    min_lat: Optional[float] = None
    max_lat: Optional[float] = None


class SpatialStatusResponse(CamelModel):
    status: str = Field(description="ready or empty")
    total_buildings: int
    bounds: BuildingBounds
    message: str


class BuildingSample(CamelModel):
    id: str
    centroid_lon: Optional[float] = None
    centroid_lat: Optional[float] = None
    area: Optional[float] = None


class SpatialDebugResponse(CamelModel):
    total_buildings: int
    bounds: BuildingBounds
    sample_buildings: List[BuildingSample]
    status: str


class SpatialSelfTestResponse(CamelModel):
    basic_test: Dict[str, Any]
    spatial_test: Dict[str, Any]
    table_exists: bool
    insert_test: Dict[str, Any]
    building_count: int


class LoadBuildingsRequest(CamelModel):
    limit: Optional[int] = Field(default=None, gt=0)
    load_all: bool = Field(default=False, alias="all")


class LoadBuildingsResponse(CamelModel):
    success: bool
    loaded: int
    errors: int
    error_samples: List[str]
    total_in_db: int
    message: str


class SampleLocation(CamelModel):
    latitude: float
    longitude: float


class DatasetBoundsResponse(CamelModel):
    """Coverage of the loaded footprints, for picking test coordinates."""
    bounds: BuildingBounds
    center: SampleLocation
    sample_location: Optional[SampleLocation] = None
    approx_area_km2: float
