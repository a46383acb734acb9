"""
fetch_bathymetry.py - Download bathymetric depth grids from NOAA (free, no auth)

Requests ETOPO 2022 bedrock elevation from NOAA's ImageServer at a grid
spacing given in arc-minutes. Positive values are elevation above sea level,
negative values depth below it.
"""

import json

import numpy as np
import requests
from rasterio.errors import RasterioIOError
from rasterio.transform import from_bounds

from errors import AcquisitionError
from map_utils import WGS84
from rasters import RasterImage

NOAA_EXPORT_URL = (
    "https://gis.ngdc.noaa.gov/arcgis/rest/services/"
    "DEM_mosaics/ETOPO_2022/ImageServer/exportImage"
)
ETOPO_RASTER = "ETOPO_2022_v1_60s_bed"
REQUEST_TIMEOUT = 180


def grid_shape(lon1: float, lon2: float, lat1: float, lat2: float, resolution: float):
    """Grid (width, height) for bounds at a resolution in arc-minutes."""
    width = int(round((lon2 - lon1) * 60 / resolution))
    height = int(round((lat2 - lat1) * 60 / resolution))
    return width, height


def fetch_bathymetry(
    lon1: float,
    lon2: float,
    lat1: float,
    lat2: float,
    resolution: float = 4
) -> RasterImage:
    """Download a depth grid for longitude/latitude bounds.

    Args:
        lon1, lon2: Longitude bounds (any order)
        lat1, lat2: Latitude bounds (any order)
        resolution: Grid spacing in arc-minutes

    Returns:
        RasterImage in EPSG:4326 whose extent is exactly the requested bounds

    Raises:
        ValueError: on empty bounds or non-positive resolution
        AcquisitionError: if the service fails or returns an unexpected grid
    """
    if resolution <= 0:
        raise ValueError(f"Resolution must be positive, got {resolution}")
    lon1, lon2 = sorted((lon1, lon2))
    lat1, lat2 = sorted((lat1, lat2))
    width, height = grid_shape(lon1, lon2, lat1, lat2, resolution)
    if width < 1 or height < 1:
        raise ValueError(
            f"Bounds ({lon1}, {lon2}, {lat1}, {lat2}) are smaller than one "
            f"{resolution}' cell"
        )

    print(f"  Querying NOAA for bathymetry ({width}x{height} cells at {resolution}')...")
    params = {
        "bbox": f"{lon1},{lat1},{lon2},{lat2}",
        "bboxSR": 4326,
        "imageSR": 4326,
        "size": f"{width},{height}",
        "format": "tiff",
        "pixelType": "F32",
        "interpolation": "RSP_NearestNeighbor",
        "mosaicRule": json.dumps({"where": f"Name='{ETOPO_RASTER}'"}),
        "f": "image",
    }
    try:
        response = requests.get(NOAA_EXPORT_URL, params=params, timeout=REQUEST_TIMEOUT)
    except requests.RequestException as e:
        raise AcquisitionError(f"NOAA bathymetry request failed: {e}") from e
    if response.status_code != 200:
        raise AcquisitionError(
            f"NOAA bathymetry request returned HTTP {response.status_code}: {response.text[:200]}"
        )

    try:
        grid = RasterImage.from_geotiff_bytes(response.content, source="NOAA ETOPO 2022")
    except (RasterioIOError, ValueError) as e:
        raise AcquisitionError(f"NOAA response is not a readable GeoTIFF: {e}") from e

    if grid.data.shape != (height, width):
        raise AcquisitionError(
            f"NOAA returned a {grid.data.shape[1]}x{grid.data.shape[0]} grid, "
            f"expected {width}x{height}"
        )

    # Pin the grid to the requested bounds; the service may round its own
    # georeferencing tags.
    transform = from_bounds(lon1, lat1, lon2, lat2, width, height)
    depth = RasterImage(grid.data, transform, WGS84, source=grid.source)
    print(f"    Depth range: {np.nanmin(depth.data):.0f} to {np.nanmax(depth.data):.0f} m")
    return depth
