"""Regions of interest: river corridors as projected polygons.

A Region holds its geometry in a projected CRS (metres) so that corridor
buffers and pixel-centre tests happen in linear units. Lines given in
WGS-84 are projected to their UTM zone before buffering.

Only depends on: numpy, shapely, pyproj.
"""

from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np
import shapely
from pyproj import Transformer
from shapely.geometry import LineString, Polygon
from shapely.geometry.base import BaseGeometry

from .errors import ConfigurationError
from .models import GridSpec

# Simplification tolerance (m) applied to every corridor outline
SIMPLIFY_TOLERANCE_M = 1.0
DEFAULT_BUFFER_M = 500.0


def utm_epsg_for(lon: float, lat: float) -> int:
    """EPSG code of the WGS-84 UTM zone containing (lon, lat)."""
    zone = int((lon + 180) / 6) + 1
    return (32600 if lat >= 0 else 32700) + zone


@dataclass(frozen=True)
class Region:
    """Named area of interest in a projected CRS."""
    name: str
    geometry: BaseGeometry
    crs_epsg: int

    @classmethod
    def from_geometry(
        cls,
        name: str,
        geometry: BaseGeometry,
        crs_epsg: int,
        buffer_m: float = DEFAULT_BUFFER_M,
    ) -> "Region":
        """Corridor rule: polygons are used as-is, lines/points are buffered."""
        if geometry.is_empty:
            raise ConfigurationError(f"Region '{name}' has an empty geometry")
        if geometry.area <= 0:
            if buffer_m <= 0:
                raise ConfigurationError(
                    f"Region '{name}' has no area and buffer_m={buffer_m}"
                )
            geometry = geometry.buffer(buffer_m)
        return cls(name, geometry.simplify(SIMPLIFY_TOLERANCE_M), crs_epsg)

    @classmethod
    def from_line_wgs84(
        cls,
        name: str,
        lonlat: Sequence[Tuple[float, float]],
        buffer_m: float = DEFAULT_BUFFER_M,
        crs_epsg: int = 0,
    ) -> "Region":
        """Buffer a WGS-84 polyline into a corridor polygon.

        Args:
            name: Region name used in output rows.
            lonlat: Sequence of (lon, lat) vertices, at least two.
            buffer_m: Corridor half-width in metres.
            crs_epsg: Target projected CRS. 0 = UTM zone of the line centroid.
        """
        if len(lonlat) < 2:
            raise ConfigurationError(
                f"Region '{name}': a line needs at least two vertices"
            )
        if not crs_epsg:
            centroid = LineString(lonlat).centroid
            crs_epsg = utm_epsg_for(centroid.x, centroid.y)
        to_proj = Transformer.from_crs("EPSG:4326", f"EPSG:{crs_epsg}", always_xy=True)
        xs, ys = to_proj.transform(
            [p[0] for p in lonlat], [p[1] for p in lonlat]
        )
        line = LineString(list(zip(xs, ys)))
        return cls.from_geometry(name, line, crs_epsg, buffer_m=buffer_m)

    @classmethod
    def from_polygon(cls, name: str, coords, crs_epsg: int) -> "Region":
        return cls.from_geometry(name, Polygon(coords), crs_epsg)

    @property
    def area_m2(self) -> float:
        return float(self.geometry.area)

    def intersects(self, footprint) -> bool:
        return footprint is not None and self.geometry.intersects(footprint)

    def mask_for(self, grid: GridSpec) -> np.ndarray:
        """Boolean grid, True where the pixel centre falls in the region."""
        if grid.crs_epsg and self.crs_epsg and grid.crs_epsg != self.crs_epsg:
            raise ConfigurationError(
                f"Region '{self.name}' is in EPSG:{self.crs_epsg} but the "
                f"grid is EPSG:{grid.crs_epsg}"
            )
        xs, ys = grid.pixel_centers()
        xx, yy = np.meshgrid(xs, ys)
        return shapely.intersects_xy(self.geometry, xx, yy)
