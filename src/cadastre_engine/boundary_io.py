"""Boundary import from coordinate text, KML/KMZ and polygon shapefiles.

All readers return WGS84 boundaries. KML coordinates are always WGS84 in
``longitude,latitude[,altitude]`` order; shapefiles are reprojected from the
CRS in their ``.prj`` when it is not WGS84.
"""

from __future__ import annotations

import io
import re
import zipfile
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import BinaryIO

import shapefile
from pyproj import CRS, Transformer

from .exceptions import MalformedBoundaryError
from .models import Boundary, Coordinate

KML_NS = "{http://www.opengis.net/kml/2.2}"

_NUMBER = r"([+-]?\d+(?:\.\d+)?)"
_POINT = re.compile(
    rf"^\s*{_NUMBER}\s*°?\s*([NSns])?\s*[,\s]\s*{_NUMBER}\s*°?\s*([EWew])?\s*$"
)


# ── Coordinate text ───────────────────────────────────────────────────────────


def parse_coordinates(text: str) -> Boundary:
    """Parse survey coordinate text into a boundary.

    Points are separated by ``;`` or newlines. Each point is ``lat, lon`` in
    decimal degrees, either signed (``6.8319, -9.3658``) or with hemisphere
    letters (``6.8319°N, 9.3658°W``).
    """
    coordinates: list[Coordinate] = []
    for i, token in enumerate(t for t in re.split(r"[;\n]", text) if t.strip()):
        match = _POINT.match(token)
        if match is None:
            raise MalformedBoundaryError(f"point {i + 1} is not a coordinate pair: {token.strip()!r}")
        lat, ns, lon, ew = match.groups()
        lat, lon = float(lat), float(lon)
        if ns and ns.upper() == "S":
            lat = -abs(lat)
        if ew and ew.upper() == "W":
            lon = -abs(lon)
        coordinates.append(Coordinate(lat=lat, lon=lon))

    if not coordinates:
        raise MalformedBoundaryError("no coordinates found")
    return Boundary(coordinates=tuple(coordinates))


# ── KML / KMZ ─────────────────────────────────────────────────────────────────


def read_kml_boundary(file: str | bytes | BinaryIO) -> Boundary:
    """Read the outer ring of the first Polygon in a KMZ (or plain KML) file.

    Args:
        file: Path to a .kmz/.kml file, raw bytes, or a file-like object.
    """
    data = _read_bytes(file)

    # KMZ is a ZIP; plain KML is XML text
    if _is_zip(data):
        kml_text = _extract_kml_from_kmz(data)
    else:
        kml_text = data.decode("utf-8", errors="replace")

    try:
        root = ET.fromstring(kml_text)
    except ET.ParseError as e:
        raise MalformedBoundaryError(f"KML is not well-formed XML: {e}") from e
    ring = _outer_ring(root)
    if ring is None:
        raise MalformedBoundaryError("No Polygon found in KML")

    coords_elem = ring.find(f"{KML_NS}coordinates")
    if coords_elem is None or not coords_elem.text:
        raise MalformedBoundaryError("Polygon has no coordinates")
    return Boundary(coordinates=tuple(_parse_coordinates_text(coords_elem.text)))


def _read_bytes(file: str | bytes | BinaryIO) -> bytes:
    if isinstance(file, (str, bytes)):
        if isinstance(file, str):
            with open(file, "rb") as f:
                return f.read()
        return file
    return file.read()


def _is_zip(data: bytes) -> bool:
    return data[:4] == b"PK\x03\x04"


def _extract_kml_from_kmz(data: bytes) -> str:
    """Extract the first .kml file from a KMZ (ZIP) archive."""
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        # Prefer doc.kml, fall back to any .kml
        names = zf.namelist()
        kml_name = next((n for n in names if n.lower() == "doc.kml"), None)
        if kml_name is None:
            kml_name = next((n for n in names if n.lower().endswith(".kml")), None)
        if kml_name is None:
            raise MalformedBoundaryError("No .kml file found in KMZ archive")
        return zf.read(kml_name).decode("utf-8", errors="replace")


def _outer_ring(root: ET.Element) -> ET.Element | None:
    for polygon in root.iter(f"{KML_NS}Polygon"):
        ring = polygon.find(f"{KML_NS}outerBoundaryIs/{KML_NS}LinearRing")
        if ring is not None:
            return ring
    return next(root.iter(f"{KML_NS}LinearRing"), None)


def _parse_coordinates_text(text: str) -> list[Coordinate]:
    """Parse a KML ``<coordinates>`` block: ``lon,lat[,alt] lon,lat[,alt] ...``."""
    coordinates: list[Coordinate] = []
    for token in text.strip().split():
        parts = token.split(",")
        if len(parts) < 2:
            continue
        try:
            lon, lat = float(parts[0]), float(parts[1])
        except ValueError:
            raise MalformedBoundaryError(f"KML coordinate is not numeric: {token!r}") from None
        coordinates.append(Coordinate(lat=lat, lon=lon))
    return coordinates


# ── Shapefile ─────────────────────────────────────────────────────────────────


def detect_crs(prj_path: Path) -> CRS | None:
    """Parse the CRS from a .prj file, or None when missing or unreadable."""
    if not prj_path.exists():
        return None
    wkt = prj_path.read_text()
    if not wkt.strip():
        return None
    try:
        return CRS.from_wkt(wkt)
    except Exception:
        return None


def read_shapefile_boundary(shp_path: str | Path, record: int = 0) -> Boundary:
    """Read the outer ring of one POLYGON record as a WGS84 boundary.

    Shapefiles without a readable ``.prj`` are assumed to be WGS84 already.
    """
    shp_path = Path(shp_path)
    base = shp_path.with_suffix("") if shp_path.suffix.lower() == ".shp" else shp_path
    crs = detect_crs(base.with_suffix(".prj"))

    with shapefile.Reader(str(base)) as sf:
        if "POLYGON" not in sf.shapeTypeName.upper():
            raise MalformedBoundaryError(
                f"Unsupported shape type: {sf.shapeTypeName}. Only POLYGON shapes carry boundaries."
            )
        if record >= len(sf):
            raise MalformedBoundaryError(f"Shapefile has {len(sf)} record(s), no record {record}")
        shape = sf.shape(record)

    parts = list(shape.parts) + [len(shape.points)]
    xs = [x for x, _ in shape.points[parts[0]:parts[1]]]
    ys = [y for _, y in shape.points[parts[0]:parts[1]]]

    if crs is not None and crs.to_epsg() != 4326:
        transformer = Transformer.from_crs(crs, "EPSG:4326", always_xy=True)
        xs, ys = transformer.transform(xs, ys)

    return Boundary(coordinates=tuple(Coordinate(lat=lat, lon=lon) for lon, lat in zip(xs, ys)))
