"""
tiles.py - Web-Mercator slippy tile math and mosaic download

Shared by the satellite (ESRI World Imagery) and elevation (AWS Terrain
Tiles) fetchers. Tiles are stitched into one grid georeferenced in
EPSG:3857.
"""

import math
from io import BytesIO
from typing import Callable, Tuple

import numpy as np
import requests
from PIL import Image
from rasterio.transform import from_bounds

from errors import AcquisitionError
from map_utils import BoundingRegion
from rasters import RasterImage

WEB_MERCATOR = "EPSG:3857"
TILE_SIZE = 256
ORIGIN_SHIFT = 20037508.342789244  # half the Web-Mercator world width in meters
MAX_LATITUDE = 85.05112878
MAX_TILES = 400

REQUEST_HEADERS = {
    'User-Agent': 'coastal-field-maps/0.1',
    'Accept': 'image/png,image/*',
}
REQUEST_TIMEOUT = 30


def lon_lat_to_tile(lon: float, lat: float, zoom: int) -> Tuple[int, int]:
    """Tile (x, y) containing a WGS84 point at the given zoom."""
    lat = max(-MAX_LATITUDE, min(MAX_LATITUDE, lat))
    n = 2 ** zoom
    x = int((lon + 180) / 360 * n)
    y = int((1 - math.asinh(math.tan(math.radians(lat))) / math.pi) / 2 * n)
    return min(max(x, 0), n - 1), min(max(y, 0), n - 1)


def tile_to_lon_lat(x: int, y: int, zoom: int) -> Tuple[float, float]:
    """WGS84 (lon, lat) of the north-west corner of a tile."""
    n = 2 ** zoom
    lon = x / n * 360 - 180
    lat = math.degrees(math.atan(math.sinh(math.pi * (1 - 2 * y / n))))
    return lon, lat


def tile_bounds_mercator(x: int, y: int, zoom: int) -> Tuple[float, float, float, float]:
    """Tile extent in EPSG:3857 as (min_x, min_y, max_x, max_y)."""
    span = 2 * ORIGIN_SHIFT / (2 ** zoom)
    min_x = -ORIGIN_SHIFT + x * span
    max_y = ORIGIN_SHIFT - y * span
    return (min_x, max_y - span, min_x + span, max_y)


def mercator_to_global_pixel(mx: float, my: float, zoom: int) -> Tuple[float, float]:
    """EPSG:3857 meters to global pixel coordinates at a zoom level."""
    world = TILE_SIZE * 2 ** zoom
    px = (mx + ORIGIN_SHIFT) / (2 * ORIGIN_SHIFT) * world
    py = (ORIGIN_SHIFT - my) / (2 * ORIGIN_SHIFT) * world
    return px, py


def global_pixel_to_mercator(px: float, py: float, zoom: int) -> Tuple[float, float]:
    """Global pixel coordinates at a zoom level to EPSG:3857 meters."""
    world = TILE_SIZE * 2 ** zoom
    mx = px / world * 2 * ORIGIN_SHIFT - ORIGIN_SHIFT
    my = ORIGIN_SHIFT - py / world * 2 * ORIGIN_SHIFT
    return mx, my


def tile_range(region: BoundingRegion, zoom: int) -> Tuple[int, int, int, int]:
    """Inclusive tile index range (x_min, x_max, y_min, y_max) covering a region."""
    wgs = region.to_crs("EPSG:4326")
    x_min, y_min = lon_lat_to_tile(wgs.min_x, wgs.max_y, zoom)
    x_max, y_max = lon_lat_to_tile(wgs.max_x, wgs.min_y, zoom)
    return x_min, x_max, y_min, y_max


def fetch_tile(url: str) -> bytes:
    """Download one tile.

    Raises:
        AcquisitionError: on a network failure or non-200 response
    """
    try:
        response = requests.get(url, timeout=REQUEST_TIMEOUT, headers=REQUEST_HEADERS)
    except requests.RequestException as e:
        raise AcquisitionError(f"Tile request failed for {url}: {e}") from e
    if response.status_code != 200:
        raise AcquisitionError(f"Tile request for {url} returned HTTP {response.status_code}")
    return response.content


def decode_rgb_tile(content: bytes) -> np.ndarray:
    """Decode an image tile into a (rows, cols, 3) uint8 array."""
    with Image.open(BytesIO(content)) as img:
        return np.asarray(img.convert("RGB"), dtype=np.uint8)


def fetch_tile_mosaic(
    url_template: str,
    region: BoundingRegion,
    zoom: int,
    decode: Callable[[bytes], np.ndarray],
    source: str = ""
) -> RasterImage:
    """Download and stitch every tile covering a region.

    Args:
        url_template: URL with {z}, {x} and {y} placeholders
        region: Area to cover (any CRS)
        zoom: Tile zoom level
        decode: Turns tile bytes into a (256, 256) or (256, 256, 3) array
        source: Description stored on the result

    Returns:
        RasterImage in EPSG:3857 covering the smallest tile set that
        contains the region

    Raises:
        AcquisitionError: if any tile fails; no partial mosaic is returned
    """
    x_min, x_max, y_min, y_max = tile_range(region, zoom)
    num_tiles = (x_max - x_min + 1) * (y_max - y_min + 1)
    print(f"    Need {num_tiles} tiles at zoom {zoom}...")

    if num_tiles > MAX_TILES:
        if zoom == 0:
            raise AcquisitionError("Region needs too many tiles even at zoom 0")
        print(f"    Too many tiles, reducing zoom level to {zoom - 1}")
        return fetch_tile_mosaic(url_template, region, zoom - 1, decode, source)

    rows = []
    for y in range(y_min, y_max + 1):
        row = []
        for x in range(x_min, x_max + 1):
            content = fetch_tile(url_template.format(z=zoom, x=x, y=y))
            row.append(decode(content))
        rows.append(np.concatenate(row, axis=1))
    mosaic = np.concatenate(rows, axis=0)
    print(f"    Downloaded {num_tiles} tiles")

    west, _, _, north = tile_bounds_mercator(x_min, y_min, zoom)
    _, south, east, _ = tile_bounds_mercator(x_max, y_max, zoom)
    transform = from_bounds(west, south, east, north, mosaic.shape[1], mosaic.shape[0])
    return RasterImage(mosaic, transform, WEB_MERCATOR, source=source)
