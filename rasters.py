"""
Georeferenced raster container shared by the basemap fetchers.

A RasterImage is never modified in place: reprojection and clipping return
new images. Scalar rasters are float32 with NaN marking missing data; RGB
rasters are uint8 with shape (rows, cols, 3).
"""

from dataclasses import dataclass, replace
from typing import Optional, Tuple

import numpy as np

from rasterio.io import MemoryFile
from rasterio.transform import Affine, array_bounds, from_bounds
from rasterio.warp import Resampling, calculate_default_transform, reproject

from map_utils import BoundingRegion, normalize_crs, same_crs


@dataclass(frozen=True)
class RasterImage:
    """2-D grid of pixel values with a spatial extent and CRS.

    Attributes:
        data: (rows, cols) scalar grid or (rows, cols, 3) RGB grid
        transform: Affine mapping pixel (col, row) to CRS coordinates
        crs: CRS identifier of the grid
        nodata: Missing-data sentinel in addition to NaN
        source: Short description of where the grid came from
    """
    data: np.ndarray
    transform: Affine
    crs: str
    nodata: Optional[float] = None
    source: str = ""

    def __post_init__(self):
        if self.data.ndim not in (2, 3) or (self.data.ndim == 3 and self.data.shape[2] != 3):
            raise ValueError(f"Expected (rows, cols) or (rows, cols, 3) data, got {self.data.shape}")
        object.__setattr__(self, "crs", normalize_crs(self.crs))

    @property
    def height(self) -> int:
        return self.data.shape[0]

    @property
    def width(self) -> int:
        return self.data.shape[1]

    @property
    def is_rgb(self) -> bool:
        return self.data.ndim == 3

    @property
    def resolution(self) -> Tuple[float, float]:
        """Pixel size as (x_size, y_size) in CRS units."""
        return (abs(self.transform.a), abs(self.transform.e))

    @property
    def bounds(self) -> BoundingRegion:
        """Outer edge of the grid as a region in the raster CRS."""
        west, south, east, north = array_bounds(self.height, self.width, self.transform)
        return BoundingRegion(west, south, east, north, self.crs)

    @property
    def extent(self) -> Tuple[float, float, float, float]:
        """Grid extent as (min_x, min_y, max_x, max_y)."""
        return self.bounds.as_tuple()

    @classmethod
    def from_geotiff_bytes(cls, content: bytes, source: str = "") -> 'RasterImage':
        """Decode a single-band GeoTIFF held in memory."""
        with MemoryFile(content) as memfile:
            with memfile.open() as dataset:
                band = dataset.read(1).astype(np.float32)
                if dataset.nodata is not None:
                    band[band == dataset.nodata] = np.nan
                crs = dataset.crs.to_string() if dataset.crs else None
                transform = dataset.transform
        if crs is None:
            raise ValueError("GeoTIFF has no embedded CRS")
        return cls(band, transform, crs, nodata=None, source=source)

    def _bands(self) -> np.ndarray:
        if self.is_rgb:
            return np.moveaxis(self.data, 2, 0)
        return self.data[np.newaxis, ...]

    def warp_to_grid(
        self,
        dst_crs: str,
        dst_transform: Affine,
        width: int,
        height: int
    ) -> 'RasterImage':
        """Resample onto an explicit destination grid.

        Args:
            dst_crs: CRS of the destination grid
            dst_transform: Affine transform of the destination grid
            width: Destination columns
            height: Destination rows

        Returns:
            New RasterImage on the destination grid
        """
        src = self._bands()
        if self.is_rgb:
            destination = np.zeros((3, height, width), dtype=np.uint8)
            src_nodata, dst_nodata = None, 0
            resampling = Resampling.bilinear
        else:
            src = src.astype(np.float32)
            destination = np.full((1, height, width), np.nan, dtype=np.float32)
            src_nodata, dst_nodata = (self.nodata if self.nodata is not None else np.nan), np.nan
            resampling = Resampling.bilinear

        reproject(
            source=src,
            destination=destination,
            src_transform=self.transform,
            src_crs=self.crs,
            src_nodata=src_nodata,
            dst_transform=dst_transform,
            dst_crs=dst_crs,
            dst_nodata=dst_nodata,
            resampling=resampling,
        )

        data = np.moveaxis(destination, 0, 2) if self.is_rgb else destination[0]
        return RasterImage(data, dst_transform, dst_crs, nodata=None, source=self.source)

    def reproject(self, dst_crs: str) -> 'RasterImage':
        """Reproject the whole grid into another CRS.

        Returns self unchanged when the CRS already matches.
        """
        if same_crs(self.crs, dst_crs):
            return self
        west, south, east, north = self.extent
        dst_transform, width, height = calculate_default_transform(
            self.crs, dst_crs, self.width, self.height,
            left=west, bottom=south, right=east, top=north,
        )
        return self.warp_to_grid(dst_crs, dst_transform, width, height)

    def clip(self, region: BoundingRegion) -> 'RasterImage':
        """Resample onto a grid whose extent is exactly the region.

        The output uses the region's CRS at the resolution the source would
        have after reprojection, so the extent is contained in, and matches,
        the requested box.
        """
        if same_crs(self.crs, region.crs):
            res_x, res_y = self.resolution
        else:
            west, south, east, north = self.extent
            dst_transform, _, _ = calculate_default_transform(
                self.crs, region.crs, self.width, self.height,
                left=west, bottom=south, right=east, top=north,
            )
            res_x, res_y = abs(dst_transform.a), abs(dst_transform.e)

        width = max(1, int(round(region.width / res_x)))
        height = max(1, int(round(region.height / res_y)))
        dst_transform = from_bounds(*region.as_tuple(), width, height)
        return self.warp_to_grid(region.crs, dst_transform, width, height)

    def with_data(self, data: np.ndarray) -> 'RasterImage':
        """Copy of this image with a replacement grid of the same shape."""
        if data.shape != self.data.shape:
            raise ValueError(f"Shape mismatch: {data.shape} != {self.data.shape}")
        return replace(self, data=data)
