"""Geometry Provider contract and a planar shapely/pyproj implementation.

Every area and distance in the engine comes from here. Boundaries are projected
to the UTM zone of the first (candidate) boundary's centroid so that one planar
formula is used for every rule in a run.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Protocol

from pyproj import Transformer
from shapely import make_valid
from shapely.geometry import LinearRing, Polygon

from .models import Boundary, SpatialRecord

SQUARE_METERS_PER_HECTARE = 10_000


class GeometryProvider(Protocol):
    async def area(self, boundary: Boundary) -> float:
        """Planar area in hectares."""

    async def distance(self, boundary: Boundary, other: Boundary) -> float:
        """Minimum distance in meters; 0 when the boundaries touch or intersect."""

    async def intersects(self, boundary: Boundary, other: Boundary) -> bool: ...

    async def intersection_area(self, boundary: Boundary, other: Boundary) -> float:
        """Area of the intersection in hectares."""

    async def is_simple(self, boundary: Boundary) -> bool:
        """True when no two non-adjacent segments of the ring intersect."""

    async def nearby(self, boundary: Boundary, radius_m: float) -> list[SpatialRecord]: ...


class SpatialRecordSource(Protocol):
    async def find_spatial_records_near(self, boundary: Boundary, radius_m: float) -> list[SpatialRecord]: ...


def utm_epsg(lon: float, lat: float) -> int:
    """EPSG code of the WGS84 UTM zone containing ``(lon, lat)``."""
    zone = min(int((lon + 180) // 6) + 1, 60)
    return (32600 if lat >= 0 else 32700) + zone


@lru_cache(maxsize=64)
def _transformer(source_crs: str, target_epsg: int) -> Transformer:
    return Transformer.from_crs(source_crs, f"EPSG:{target_epsg}", always_xy=True)


def _centroid_epsg(boundary: Boundary) -> int:
    ring = boundary.lonlat()
    lon = sum(x for x, _ in ring) / len(ring)
    lat = sum(y for _, y in ring) / len(ring)
    return utm_epsg(lon, lat)


def _project(boundary: Boundary, epsg: int) -> list[tuple[float, float]]:
    ring = boundary.lonlat()
    xs, ys = _transformer(boundary.crs, epsg).transform([x for x, _ in ring], [y for _, y in ring])
    return list(zip(xs, ys))


def _polygon(boundary: Boundary, epsg: int) -> Polygon:
    return Polygon(_project(boundary, epsg))


def _valid(polygon: Polygon):
    return polygon if polygon.is_valid else make_valid(polygon)


class PlanarGeometryProvider:
    """Geometry Provider backed by shapely, projecting through pyproj."""

    def __init__(self, records: SpatialRecordSource):
        self.records = records

    async def area(self, boundary: Boundary) -> float:
        return _polygon(boundary, _centroid_epsg(boundary)).area / SQUARE_METERS_PER_HECTARE

    async def distance(self, boundary: Boundary, other: Boundary) -> float:
        epsg = _centroid_epsg(boundary)
        return _polygon(boundary, epsg).distance(_polygon(other, epsg))

    async def intersects(self, boundary: Boundary, other: Boundary) -> bool:
        epsg = _centroid_epsg(boundary)
        return _polygon(boundary, epsg).intersects(_polygon(other, epsg))

    async def intersection_area(self, boundary: Boundary, other: Boundary) -> float:
        epsg = _centroid_epsg(boundary)
        a = _valid(_polygon(boundary, epsg))
        b = _valid(_polygon(other, epsg))
        if not a.intersects(b):
            return 0.0
        return a.intersection(b).area / SQUARE_METERS_PER_HECTARE

    async def is_simple(self, boundary: Boundary) -> bool:
        return LinearRing(_project(boundary, _centroid_epsg(boundary))).is_simple

    async def nearby(self, boundary: Boundary, radius_m: float) -> list[SpatialRecord]:
        """Stored records within ``radius_m`` of ``boundary``, nearest first."""
        epsg = _centroid_epsg(boundary)
        candidate = _polygon(boundary, epsg)
        found: list[tuple[float, str, SpatialRecord]] = []
        for record in await self.records.find_spatial_records_near(boundary, radius_m):
            d = candidate.distance(_polygon(record.boundary, epsg))
            if d <= radius_m:
                found.append((d, record.id, record))
        found.sort(key=lambda item: (item[0], item[1]))
        return [record for _, _, record in found]
