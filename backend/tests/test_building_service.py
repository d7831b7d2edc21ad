"""
GroupUp Backend - Building Service Tests
========================================

The two-step lookup (containing footprint, then nearest within the buffer)
against a mocked SpatialStore, plus the relational mirror.
"""

from unittest.mock import AsyncMock

import pytest

from groupup.exceptions import (
    NotFoundError,
    SpatialStoreError,
    SpatialStoreUnavailableError,
)
from groupup.models.building import Building
from groupup.services.building_service import BuildingService
from groupup.services.spatial_store import BuildingMatch, StoreBounds

SQUARE = {
    "type": "Polygon",
    "coordinates": [[[-86.782, 36.162], [-86.782, 36.163], [-86.781, 36.163], [-86.781, 36.162], [-86.782, 36.162]]],
}


def match(is_inside: bool, distance: float = 0.0) -> BuildingMatch:
    return BuildingMatch(
        id="bldg_7",
        name=None,
        address=None,
        geometry=SQUARE,
        is_inside=is_inside,
        distance=distance,
        centroid=(-86.7814, 36.1624),
    )


class TestFindNearest:

    def setup_method(self):
        self.service = BuildingService()

    @pytest.mark.asyncio
    async def test_containing_building_wins(self, mock_store):
        mock_store.find_containing.return_value = match(is_inside=True)

        result = await self.service.find_nearest(mock_store, 36.1625, -86.7815)

        assert result.id == "bldg_7"
        assert result.is_inside is True
        assert result.distance == 0
        assert result.geometry["type"] == "Polygon"
        mock_store.find_nearest_within.assert_not_called()

    @pytest.mark.asyncio
    async def test_falls_back_to_nearest_within_buffer(self, mock_store):
        mock_store.find_nearest_within.return_value = match(is_inside=False, distance=17.6)

        result = await self.service.find_nearest(mock_store, 36.1618, -86.7815, buffer_meters=25)

        assert result.is_inside is False
        assert result.distance == 18
        mock_store.find_nearest_within.assert_awaited_once_with(36.1618, -86.7815, 25)

    @pytest.mark.asyncio
    async def test_default_buffer_is_forty_meters(self, mock_store):
        await self.service.find_nearest(mock_store, 36.0, -86.0)

        mock_store.find_nearest_within.assert_awaited_once_with(36.0, -86.0, 40.0)

    @pytest.mark.asyncio
    async def test_nothing_nearby_returns_none(self, mock_store):
        assert await self.service.find_nearest(mock_store, 0.0, 0.0) is None

    @pytest.mark.asyncio
    async def test_unavailable_store_returns_none(self, mock_store):
        mock_store.find_containing.side_effect = SpatialStoreUnavailableError(
            context={"error": "Extension \"spatial\" not found"}
        )

        assert await self.service.find_nearest(mock_store, 36.1625, -86.7815) is None

    @pytest.mark.asyncio
    async def test_query_error_propagates(self, mock_store):
        mock_store.find_containing.side_effect = SpatialStoreError(context={"error": "boom"})

        with pytest.raises(SpatialStoreError):
            await self.service.find_nearest(mock_store, 36.1625, -86.7815)


class TestRelationalMirror:

    @pytest.mark.asyncio
    async def test_inserts_once(self, db_session, mock_store):
        service = BuildingService()
        mock_store.find_containing.return_value = match(is_inside=True)
        nearest = await service.find_nearest(mock_store, 36.1625, -86.7815)

        first = await service.ensure_relational_building(db_session, nearest)
        second = await service.ensure_relational_building(db_session, nearest)

        assert first is second
        row = await db_session.get(Building, "bldg_7")
        assert '"Polygon"' in row.polygon
        assert row.area == 0.0


class TestDiagnostics:

    def setup_method(self):
        self.service = BuildingService()

    @pytest.mark.asyncio
    async def test_status_empty(self, mock_store):
        mock_store.bounds = AsyncMock(return_value=StoreBounds(total=0))

        status = await self.service.status(mock_store)

        assert status.status == "empty"
        assert status.total_buildings == 0

    @pytest.mark.asyncio
    async def test_status_ready(self, mock_store):
        mock_store.bounds = AsyncMock(
            return_value=StoreBounds(total=3, min_lon=-87.0, max_lon=-86.5, min_lat=36.0, max_lat=36.3)
        )

        status = await self.service.status(mock_store)

        assert status.status == "ready"
        assert status.bounds.min_lon == -87.0

    @pytest.mark.asyncio
    async def test_dataset_bounds_requires_data(self, mock_store):
        mock_store.bounds = AsyncMock(return_value=StoreBounds(total=0))

        with pytest.raises(NotFoundError):
            await self.service.dataset_bounds(mock_store)

    @pytest.mark.asyncio
    async def test_load_all_passes_no_limit(self, mock_store):
        from groupup.services.spatial_store import LoadResult

        mock_store.load_geojson = AsyncMock(return_value=LoadResult(loaded=2, errors=1, total=2))

        response = await self.service.load(mock_store, limit=10, load_all=True)

        mock_store.load_geojson.assert_awaited_once_with(limit=None, replace=True)
        assert response.loaded == 2
        assert response.total_in_db == 2
