"""
Utility classes for field-data map generation.

This module provides the bounding region used to request basemaps and clip
overlays, and the coordinate transformer that maps display-CRS coordinates
onto SVG document coordinates.
"""

import math
from dataclasses import dataclass
from typing import Tuple, Optional

import geopandas as gpd
from pyproj import CRS, Transformer
from pyproj.exceptions import CRSError
from shapely.geometry import Polygon, box

WGS84 = "EPSG:4326"


def normalize_crs(crs) -> str:
    """Resolve a CRS-like value to an 'AUTHORITY:CODE' string.

    Raises:
        ValueError: if pyproj cannot resolve the value
    """
    try:
        resolved = CRS.from_user_input(crs)
    except CRSError as e:
        raise ValueError(f"Unresolvable CRS: {crs!r}") from e
    authority = resolved.to_authority()
    if authority is None:
        return resolved.to_wkt()
    return f"{authority[0]}:{authority[1]}"


def same_crs(a, b) -> bool:
    """Check whether two CRS-like values describe the same CRS."""
    return normalize_crs(a) == normalize_crs(b)


@dataclass(frozen=True)
class BoundingRegion:
    """Rectangular extent in a coordinate reference system.

    Attributes:
        min_x: Western boundary (min longitude for geographic CRSs)
        min_y: Southern boundary (min latitude)
        max_x: Eastern boundary (max longitude)
        max_y: Northern boundary (max latitude)
        crs: CRS identifier, WGS84 unless stated
    """
    min_x: float
    min_y: float
    max_x: float
    max_y: float
    crs: str = WGS84

    def __post_init__(self):
        if not (self.min_x < self.max_x and self.min_y < self.max_y):
            raise ValueError(
                f"Region must have min < max on both axes, got "
                f"({self.min_x}, {self.min_y}, {self.max_x}, {self.max_y})"
            )
        object.__setattr__(self, "crs", normalize_crs(self.crs))

    @classmethod
    def from_center(
        cls,
        lon: float,
        lat: float,
        half_width: float,
        half_height: Optional[float] = None,
        crs: str = WGS84
    ) -> 'BoundingRegion':
        """Build a region around a center point."""
        if half_height is None:
            half_height = half_width
        return cls(lon - half_width, lat - half_height,
                   lon + half_width, lat + half_height, crs)

    @classmethod
    def from_geodataframe(cls, gdf: gpd.GeoDataFrame, buffer: float = 0.0) -> 'BoundingRegion':
        """Bounding region of a set of prepared features, in their own CRS.

        Args:
            gdf: Features with a CRS (e.g. nest locations)
            buffer: Extra margin on every side, in CRS units

        Returns:
            BoundingRegion covering all features plus the buffer
        """
        if gdf.crs is None:
            raise ValueError("Cannot derive a region from features without a CRS")
        if gdf.empty:
            raise ValueError("Cannot derive a region from an empty feature set")
        min_x, min_y, max_x, max_y = gdf.total_bounds
        if min_x == max_x or min_y == max_y:
            # Single point or collinear points need a buffer to have an extent
            buffer = buffer or 1e-4
        return cls(min_x - buffer, min_y - buffer, max_x + buffer, max_y + buffer,
                   normalize_crs(gdf.crs))

    @property
    def width(self) -> float:
        """Width of the region (east-west extent)."""
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        """Height of the region (north-south extent)."""
        return self.max_y - self.min_y

    @property
    def center(self) -> Tuple[float, float]:
        """Center point of the region as (x, y)."""
        return (
            (self.min_x + self.max_x) / 2,
            (self.min_y + self.max_y) / 2
        )

    def contains(self, x: float, y: float) -> bool:
        """Check if a point is within the region."""
        return (self.min_x <= x <= self.max_x and
                self.min_y <= y <= self.max_y)

    def contains_region(self, other: 'BoundingRegion', tolerance: float = 0.0) -> bool:
        """Check if another region (same CRS) lies inside this one."""
        return (other.min_x >= self.min_x - tolerance and
                other.min_y >= self.min_y - tolerance and
                other.max_x <= self.max_x + tolerance and
                other.max_y <= self.max_y + tolerance)

    def expand(self, buffer: float) -> 'BoundingRegion':
        """Return a new region expanded by buffer in all directions."""
        return BoundingRegion(
            self.min_x - buffer,
            self.min_y - buffer,
            self.max_x + buffer,
            self.max_y + buffer,
            self.crs
        )

    def as_tuple(self) -> Tuple[float, float, float, float]:
        """Return region as (min_x, min_y, max_x, max_y) tuple."""
        return (self.min_x, self.min_y, self.max_x, self.max_y)

    def to_polygon(self) -> Polygon:
        """Region as a shapely box in its own CRS."""
        return box(*self.as_tuple())

    def to_crs(self, crs: str) -> 'BoundingRegion':
        """Transform the region into another CRS.

        Edges are densified so the result covers the curved outline of the
        original rectangle.
        """
        if same_crs(self.crs, crs):
            return self
        transformer = Transformer.from_crs(self.crs, crs, always_xy=True)
        bounds = transformer.transform_bounds(*self.as_tuple(), densify_pts=21)
        return BoundingRegion(*bounds, crs=crs)


class CoordinateTransformer:
    """Maps display-CRS coordinates onto SVG document coordinates.

    SVG Y-axis is inverted (increases downward), so Y is flipped. For
    geographic display CRSs the vertical scale is stretched by
    1/cos(mid-latitude) so that map shapes keep their ground proportions.

    Attributes:
        display_crs: CRS of the coordinates passed to to_svg
        map_bounds: Visible extent in the display CRS
        width_px: Width of the plot panel in SVG units
        height_px: Height of the plot panel (derived from the aspect)
        offset_x: X offset of the plot panel inside the document
        offset_y: Y offset of the plot panel inside the document
    """

    def __init__(
        self,
        display_crs: str,
        map_bounds: BoundingRegion,
        width_px: float,
        offset_x: float = 0,
        offset_y: float = 0
    ):
        """Initialize the coordinate transformer.

        Args:
            display_crs: CRS string of the display (e.g. "EPSG:4326")
            map_bounds: Visible extent in the display CRS
            width_px: Plot panel width in SVG units
            offset_x: Left offset of the plot panel
            offset_y: Top offset of the plot panel
        """
        self.display_crs = display_crs
        self.map_bounds = map_bounds
        self.width_px = width_px
        self.offset_x = offset_x
        self.offset_y = offset_y

        self.aspect = self._aspect_ratio(display_crs, map_bounds)
        self.scale_x = width_px / map_bounds.width
        self.scale_y = self.scale_x * self.aspect
        self.height_px = map_bounds.height * self.scale_y

    @staticmethod
    def _aspect_ratio(display_crs: str, bounds: BoundingRegion) -> float:
        if not CRS.from_user_input(display_crs).is_geographic:
            return 1.0
        mid_lat = max(-89.0, min(89.0, bounds.center[1]))
        return 1.0 / math.cos(math.radians(mid_lat))

    def to_svg(self, x: float, y: float) -> Tuple[float, float]:
        """Convert display-CRS coordinates to SVG coordinates.

        Args:
            x: Easting or longitude
            y: Northing or latitude

        Returns:
            Tuple of (svg_x, svg_y)
        """
        svg_x = (x - self.map_bounds.min_x) * self.scale_x + self.offset_x
        svg_y = (self.map_bounds.max_y - y) * self.scale_y + self.offset_y
        return (svg_x, svg_y)
