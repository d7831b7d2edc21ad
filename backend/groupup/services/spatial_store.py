"""
GroupUp Backend - Spatial Store (DuckDB + spatial extension)
============================================================

What:  Embedded analytical database holding building footprints, and the two
       geometric queries the API needs (point-in-polygon and nearest-within-
       buffer).
Why:   Footprint tables for a whole city are large and read-only; an embedded
       columnar engine with a spatial extension answers bbox-prefiltered
       geometry queries without a PostGIS deployment.
How:   One DuckDB connection per process, owned by a SpatialStore instance
       that lives on `app.state` for the lifetime of the application.

Concurrency:
    DuckDB calls block, so every call runs in Starlette's threadpool. A
    single asyncio.Lock serialises them: the connection is shared, and
    (re-)initialisation must never race with a query or with another
    initialisation.

Lifecycle:
    ┌────────────┐  initialize()   ┌───────┐   reset()    ┌───────┐
    │ not opened │ ──────────────▶ │ ready │ ───────────▶ │ ready │
    └────────────┘                 └───────┘  (reopen)    └───────┘
          ▲                            │
          └──────── close() ───────────┘

    Queries on a store that is not opened try to initialise it first; if
    that fails they raise SpatialStoreUnavailableError.

Table layout (`buildings`):
    id, name, address, geometry (GEOMETRY),
    bbox_minx/miny/maxx/maxy, centroid_lon/lat, area
"""

import asyncio
import json
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import duckdb
from starlette.concurrency import run_in_threadpool

from groupup.exceptions import SpatialStoreError, SpatialStoreUnavailableError
from groupup.services.geo import (
    METERS_PER_DEGREE,
    buffer_degrees,
    meters_per_degree_lon,
    ring_bbox_and_centroid,
)

logger = logging.getLogger(__name__)

IN_MEMORY = ":memory:"
MAX_ERROR_SAMPLES = 5
# Width of buildings.id and groups.building_id in the relational store
MAX_BUILDING_ID_LENGTH = 64

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS buildings (
    id VARCHAR PRIMARY KEY,
    name VARCHAR,
    address VARCHAR,
    geometry GEOMETRY,
    bbox_minx DOUBLE,
    bbox_miny DOUBLE,
    bbox_maxx DOUBLE,
    bbox_maxy DOUBLE,
    centroid_lon DOUBLE,
    centroid_lat DOUBLE,
    area DOUBLE DEFAULT 0
)
"""

_INSERT = """
INSERT OR REPLACE INTO buildings
VALUES (?, ?, ?, ST_GeomFromGeoJSON(?), ?, ?, ?, ?, ?, ?, ?)
"""

# Point strictly inside the footprint. The bbox predicate lets DuckDB skip
# the polygon test for almost every row.
_FIND_CONTAINING = """
SELECT id, name, address, ST_AsGeoJSON(geometry), centroid_lon, centroid_lat
FROM buildings
WHERE bbox_minx <= ? AND bbox_maxx >= ?
  AND bbox_miny <= ? AND bbox_maxy >= ?
  AND ST_Contains(geometry, ST_Point(?, ?))
ORDER BY (bbox_maxx - bbox_minx) * (bbox_maxy - bbox_miny), id
LIMIT 1
"""

# Closest footprint by metric distance from the point to its bbox, among
# the footprints whose bbox intersects the buffer square.
_FIND_NEAREST = """
WITH candidates AS (
    SELECT
        id, name, address, geometry, centroid_lon, centroid_lat,
        GREATEST(bbox_minx - ?, 0, ? - bbox_maxx) * ? AS dx_m,
        GREATEST(bbox_miny - ?, 0, ? - bbox_maxy) * ? AS dy_m
    FROM buildings
    WHERE bbox_minx <= ? AND bbox_maxx >= ?
      AND bbox_miny <= ? AND bbox_maxy >= ?
)
SELECT id, name, address, ST_AsGeoJSON(geometry), centroid_lon, centroid_lat,
       sqrt(dx_m * dx_m + dy_m * dy_m) AS distance_m
FROM candidates
WHERE sqrt(dx_m * dx_m + dy_m * dy_m) <= ?
ORDER BY distance_m, id
LIMIT 1
"""

_BOUNDS = """
SELECT COUNT(*), MIN(bbox_minx), MAX(bbox_maxx), MIN(bbox_miny), MAX(bbox_maxy),
       AVG(centroid_lon), AVG(centroid_lat)
FROM buildings
"""


@dataclass
class BuildingMatch:
    id: str
    name: Optional[str]
    address: Optional[str]
    geometry: Dict[str, Any]
    is_inside: bool
    distance: float
    centroid: Tuple[float, float]


@dataclass
class StoreBounds:
    total: int
    min_lon: Optional[float] = None
    max_lon: Optional[float] = None
    min_lat: Optional[float] = None
    max_lat: Optional[float] = None
    center_lon: Optional[float] = None
    center_lat: Optional[float] = None


@dataclass
class LoadResult:
    loaded: int = 0
    errors: int = 0
    error_samples: List[str] = field(default_factory=list)
    total: int = 0

    def record_error(self, message: str) -> None:
        self.errors += 1
        if len(self.error_samples) < MAX_ERROR_SAMPLES:
            self.error_samples.append(message)


# ── GeoJSON → rows ────────────────────────────────────────────────────────


def _outer_ring(geometry: Dict[str, Any]) -> List[Sequence[float]]:
    geom_type = geometry.get("type")
    coordinates = geometry.get("coordinates") or []
    if geom_type == "Polygon":
        return list(coordinates[0]) if coordinates else []
    if geom_type == "MultiPolygon":
        # bbox and centroid over every member polygon's outer ring
        return [point for polygon in coordinates if polygon for point in polygon[0]]
    raise ValueError(f"unsupported geometry type {geom_type!r}")


def _feature_id(feature: Dict[str, Any], index: int) -> str:
    properties = feature.get("properties") or {}
    for candidate in (feature.get("id"), properties.get("id"), properties.get("@id")):
        if candidate not in (None, ""):
            building_id = str(candidate)
            if len(building_id) > MAX_BUILDING_ID_LENGTH:
                raise ValueError(
                    f"feature id longer than {MAX_BUILDING_ID_LENGTH} characters: {building_id[:20]}..."
                )
            return building_id
    return f"bldg_{index}"


def _feature_address(properties: Dict[str, Any]) -> Optional[str]:
    street = properties.get("addr:street")
    if not street:
        return properties.get("address")
    number = properties.get("addr:housenumber")
    return f"{number} {street}" if number else street


def feature_to_row(feature: Dict[str, Any], index: int) -> Tuple[Any, ...]:
    """
    Converts one GeoJSON Feature into a `buildings` row.

    Raises:
        ValueError: missing geometry, unsupported type, empty ring or an id
                    too long for the relational store
    """
    geometry = feature.get("geometry")
    if not geometry:
        raise ValueError("feature has no geometry")

    min_x, min_y, max_x, max_y, c_x, c_y = ring_bbox_and_centroid(_outer_ring(geometry))
    properties = feature.get("properties") or {}
    return (
        _feature_id(feature, index),
        properties.get("name"),
        _feature_address(properties),
        json.dumps(geometry),
        min_x,
        min_y,
        max_x,
        max_y,
        c_x,
        c_y,
        0.0,
    )


def _row_to_match(row: Sequence[Any], is_inside: bool, distance: float) -> BuildingMatch:
    geometry = row[3]
    if isinstance(geometry, str):
        geometry = json.loads(geometry)
    return BuildingMatch(
        id=row[0],
        name=row[1],
        address=row[2],
        geometry=geometry,
        is_inside=is_inside,
        distance=distance,
        centroid=(row[4], row[5]),
    )


class SpatialStore:
    """
    Owner of the DuckDB connection for building footprints.

    Args:
        db_path:          DuckDB file, or ":memory:"
        geojson_path:     FeatureCollection loaded when the table is empty
        startup_limit:    Max features loaded during initialize() (0 = none)
        batch_size:       Rows per executemany() while loading
    """

    def __init__(
        self,
        db_path: str,
        geojson_path: str,
        startup_limit: int = 50_000,
        batch_size: int = 100,
    ):
        self.db_path = db_path
        self.geojson_path = Path(geojson_path)
        self.startup_limit = startup_limit
        self.batch_size = batch_size
        self._conn: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = asyncio.Lock()

    @property
    def is_initialized(self) -> bool:
        return self._conn is not None

    # ── Lifecycle ─────────────────────────────────────────────────────────

    async def initialize(self) -> None:
        """Opens the store; a no-op when it is already open."""
        async with self._lock:
            await self._ensure_open()

    async def close(self) -> None:
        async with self._lock:
            self._close_connection()

    async def reset(self) -> StoreBounds:
        """Drops the connection and opens it again, re-running the startup load."""
        async with self._lock:
            self._close_connection()
            conn = await self._ensure_open()
            return await self._call(self._bounds, conn)

    def _close_connection(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.info("Spatial store closed")

    async def _ensure_open(self) -> duckdb.DuckDBPyConnection:
        # Caller holds self._lock
        if self._conn is None:
            try:
                self._conn = await run_in_threadpool(self._open)
            except (duckdb.Error, OSError) as e:
                logger.error("Spatial store initialisation failed: %s", e)
                raise SpatialStoreUnavailableError(context={"error": str(e)}) from e
        return self._conn

    def _open(self) -> duckdb.DuckDBPyConnection:
        if self.db_path != IN_MEMORY:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        conn = duckdb.connect(self.db_path)
        try:
            try:
                conn.execute("INSTALL spatial")
            except duckdb.Error as e:
                # Offline hosts may already ship the extension
                logger.debug("INSTALL spatial skipped: %s", e)
            conn.execute("LOAD spatial")
            conn.execute(_CREATE_TABLE)

            count = conn.execute("SELECT COUNT(*) FROM buildings").fetchone()[0]
            if count == 0 and self.startup_limit > 0:
                self._startup_load(conn)
            else:
                logger.info("Spatial store opened with %d buildings", count)
        except BaseException:
            conn.close()
            raise
        return conn

    def _startup_load(self, conn: duckdb.DuckDBPyConnection) -> None:
        # A missing or unreadable source leaves an empty, usable store
        if not self.geojson_path.exists():
            logger.warning(
                "Building source %s not found; spatial store starts empty",
                self.geojson_path,
            )
            return
        try:
            result = self._load(conn, self.startup_limit, replace=False)
        except ValueError as e:
            logger.error("Could not read building source %s: %s", self.geojson_path, e)
            return
        logger.info(
            "Startup load: %d buildings loaded, %d errors, %d total",
            result.loaded,
            result.errors,
            result.total,
        )

    # ── Query plumbing ────────────────────────────────────────────────────

    async def _run(self, fn, *args):
        async with self._lock:
            conn = await self._ensure_open()
            return await self._call(fn, conn, *args)

    async def _call(self, fn, conn, *args):
        try:
            return await run_in_threadpool(fn, conn, *args)
        except duckdb.Error as e:
            logger.error("Spatial query %s failed: %s", fn.__name__, e)
            raise SpatialStoreError(context={"error": str(e)}) from e

    # ── Loading ───────────────────────────────────────────────────────────

    async def load_geojson(self, limit: Optional[int] = None, replace: bool = False) -> LoadResult:
        """
        Loads footprints from the configured GeoJSON file.

        Args:
            limit:   Max features to read (None = all)
            replace: Empty the table first

        Raises:
            SpatialStoreError: the file is missing or not a FeatureCollection
        """
        if not self.geojson_path.exists():
            raise SpatialStoreError(
                message="Building source file not found",
                context={"path": str(self.geojson_path)},
            )
        try:
            return await self._run(self._load, limit, replace)
        except ValueError as e:
            raise SpatialStoreError(
                message="Building source file could not be parsed",
                context={"error": str(e), "path": str(self.geojson_path)},
            ) from e

    def _load(
        self, conn: duckdb.DuckDBPyConnection, limit: Optional[int], replace: bool
    ) -> LoadResult:
        with self.geojson_path.open("r", encoding="utf-8") as fh:
            collection = json.load(fh)
        features = collection.get("features") if isinstance(collection, dict) else None
        if not isinstance(features, list):
            raise ValueError("expected a GeoJSON FeatureCollection")
        if limit is not None:
            features = features[:limit]

        if replace:
            conn.execute("DELETE FROM buildings")

        result = LoadResult()
        batch: List[Tuple[Any, ...]] = []
        for index, feature in enumerate(features):
            try:
                batch.append(feature_to_row(feature, index))
            except (ValueError, TypeError, IndexError) as e:
                result.record_error(f"feature {index}: {e}")
                continue
            if len(batch) >= self.batch_size:
                self._insert_batch(conn, batch, result)
                batch = []
                if result.loaded % 10_000 < self.batch_size:
                    logger.info("Loaded %d/%d buildings", result.loaded, len(features))
        if batch:
            self._insert_batch(conn, batch, result)

        result.total = conn.execute("SELECT COUNT(*) FROM buildings").fetchone()[0]
        return result

    @staticmethod
    def _insert_batch(
        conn: duckdb.DuckDBPyConnection, batch: List[Tuple[Any, ...]], result: LoadResult
    ) -> None:
        try:
            conn.executemany(_INSERT, [list(row) for row in batch])
        except duckdb.Error as e:
            logger.debug("Batch insert failed (%s); retrying %d rows one by one", e, len(batch))
        else:
            result.loaded += len(batch)
            return
        # Row by row, to isolate the bad geometries
        for row in batch:
            try:
                conn.execute(_INSERT, list(row))
                result.loaded += 1
            except duckdb.Error as e:
                result.record_error(f"building {row[0]}: {e}")

    # ── Lookups ───────────────────────────────────────────────────────────

    async def find_containing(self, latitude: float, longitude: float) -> Optional[BuildingMatch]:
        return await self._run(self._find_containing, latitude, longitude)

    @staticmethod
    def _find_containing(conn, latitude: float, longitude: float) -> Optional[BuildingMatch]:
        row = conn.execute(
            _FIND_CONTAINING,
            [longitude, longitude, latitude, latitude, longitude, latitude],
        ).fetchone()
        if row is None:
            return None
        return _row_to_match(row, is_inside=True, distance=0.0)

    async def find_nearest_within(
        self, latitude: float, longitude: float, buffer_meters: float
    ) -> Optional[BuildingMatch]:
        return await self._run(self._find_nearest, latitude, longitude, buffer_meters)

    @staticmethod
    def _find_nearest(
        conn, latitude: float, longitude: float, buffer_meters: float
    ) -> Optional[BuildingMatch]:
        lon_scale = meters_per_degree_lon(latitude)
        lat_buffer = buffer_degrees(buffer_meters)
        lon_buffer = buffer_meters / lon_scale
        row = conn.execute(
            _FIND_NEAREST,
            [
                longitude, longitude, lon_scale,
                latitude, latitude, METERS_PER_DEGREE,
                longitude + lon_buffer, longitude - lon_buffer,
                latitude + lat_buffer, latitude - lat_buffer,
                buffer_meters,
            ],
        ).fetchone()
        if row is None:
            return None
        return _row_to_match(row, is_inside=False, distance=float(row[6]))

    # ── Diagnostics ───────────────────────────────────────────────────────

    async def bounds(self) -> StoreBounds:
        return await self._run(self._bounds)

    @staticmethod
    def _bounds(conn) -> StoreBounds:
        total, min_lon, max_lon, min_lat, max_lat, c_lon, c_lat = conn.execute(_BOUNDS).fetchone()
        return StoreBounds(
            total=total,
            min_lon=min_lon,
            max_lon=max_lon,
            min_lat=min_lat,
            max_lat=max_lat,
            center_lon=c_lon,
            center_lat=c_lat,
        )

    async def sample(self, limit: int = 5) -> List[Dict[str, Any]]:
        return await self._run(self._sample, limit)

    @staticmethod
    def _sample(conn, limit: int) -> List[Dict[str, Any]]:
        rows = conn.execute(
            f"SELECT id, centroid_lon, centroid_lat, area FROM buildings ORDER BY id LIMIT {int(limit)}"
        ).fetchall()
        return [
            {"id": r[0], "centroid_lon": r[1], "centroid_lat": r[2], "area": r[3]}
            for r in rows
        ]

    async def self_test(self) -> Dict[str, Any]:
        return await self._run(self._self_test)

    @staticmethod
    def _self_test(conn) -> Dict[str, Any]:
        """Each check reports its own failure instead of aborting the report."""
        report: Dict[str, Any] = {}

        try:
            report["basic_test"] = {"ok": conn.execute("SELECT 1").fetchone()[0] == 1}
        except duckdb.Error as e:
            report["basic_test"] = {"ok": False, "error": str(e)}

        try:
            wkt = conn.execute("SELECT ST_AsText(ST_Point(-86.78, 36.16))").fetchone()[0]
            report["spatial_test"] = {"ok": True, "result": wkt}
        except duckdb.Error as e:
            report["spatial_test"] = {"ok": False, "error": str(e)}

        report["table_exists"] = bool(
            conn.execute(
                "SELECT COUNT(*) FROM information_schema.tables WHERE table_name = 'buildings'"
            ).fetchone()[0]
        )

        test_polygon = {
            "type": "Polygon",
            "coordinates": [[[0, 0], [0, 0.001], [0.001, 0.001], [0.001, 0], [0, 0]]],
        }
        try:
            conn.execute(
                _INSERT,
                list(feature_to_row({"id": "__self_test__", "geometry": test_polygon, "properties": {}}, 0)),
            )
            conn.execute("DELETE FROM buildings WHERE id = '__self_test__'")
            report["insert_test"] = {"ok": True}
        except duckdb.Error as e:
            report["insert_test"] = {"ok": False, "error": str(e)}

        report["building_count"] = conn.execute("SELECT COUNT(*) FROM buildings").fetchone()[0]
        return report


def approx_area_km2(bounds: StoreBounds) -> float:
    """Area of the dataset's bounding box, for the coverage endpoint."""
    if bounds.min_lon is None or bounds.min_lat is None:
        return 0.0
    mid_lat = (bounds.min_lat + bounds.max_lat) / 2
    width_m = (bounds.max_lon - bounds.min_lon) * METERS_PER_DEGREE * math.cos(math.radians(mid_lat))
    height_m = (bounds.max_lat - bounds.min_lat) * METERS_PER_DEGREE
    return round(abs(width_m * height_m) / 1_000_000, 2)
