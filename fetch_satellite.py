"""
fetch_satellite.py - Download satellite basemap imagery

Two providers:
- google: Google Static Maps (needs an API key, passed explicitly)
- esri:   ESRI World Imagery tiles (no key)

Images are georeferenced in Web Mercator, their native framing.
"""

import math
from io import BytesIO
from typing import Optional, Tuple

import numpy as np
import requests
from PIL import Image
from pyproj import Transformer
from rasterio.transform import from_bounds

from errors import AcquisitionError
from map_utils import BoundingRegion, WGS84
from rasters import RasterImage
from tiles import (
    ORIGIN_SHIFT, REQUEST_TIMEOUT, TILE_SIZE, WEB_MERCATOR,
    decode_rgb_tile, fetch_tile_mosaic,
    global_pixel_to_mercator, mercator_to_global_pixel,
)

GOOGLE_STATIC_URL = "https://maps.googleapis.com/maps/api/staticmap"
ESRI_IMAGERY_URL = (
    "https://server.arcgisonline.com/ArcGIS/rest/services/"
    "World_Imagery/MapServer/tile/{z}/{y}/{x}"
)

PROVIDERS = ("google", "esri")
GOOGLE_STYLES = ("satellite", "hybrid", "terrain", "roadmap")
MAX_ZOOM = {"google": 21, "esri": 19}
DEFAULT_SIZE = 640   # logical pixels per side (Google's free-tier maximum)
DEFAULT_SCALE = 2


def image_bounds_mercator(
    lon: float,
    lat: float,
    zoom: int,
    size: int = DEFAULT_SIZE
) -> Tuple[float, float, float, float]:
    """EPSG:3857 extent of a square image of `size` pixels centered on a point."""
    to_merc = Transformer.from_crs(WGS84, WEB_MERCATOR, always_xy=True)
    cx, cy = mercator_to_global_pixel(*to_merc.transform(lon, lat), zoom)
    half = size / 2
    west, north = global_pixel_to_mercator(cx - half, cy - half, zoom)
    east, south = global_pixel_to_mercator(cx + half, cy + half, zoom)
    return (west, south, east, north)


def zoom_to_fit(region: BoundingRegion, size: int = DEFAULT_SIZE, max_zoom: int = 21) -> int:
    """Largest zoom at which a `size`-pixel image covers the region."""
    merc = region.to_crs(WEB_MERCATOR)
    span = max(merc.width, merc.height)
    zoom = math.floor(math.log2(size * 2 * ORIGIN_SHIFT / (TILE_SIZE * span)))
    return max(0, min(max_zoom, zoom))


def _fetch_google(
    lon: float,
    lat: float,
    zoom: int,
    api_key: Optional[str],
    style: str,
    size: int,
    scale: int
) -> np.ndarray:
    if not api_key:
        raise AcquisitionError("Google Static Maps requires an API key")
    if style not in GOOGLE_STYLES:
        raise ValueError(f"Unknown map style {style!r}; expected one of {GOOGLE_STYLES}")

    params = {
        "center": f"{lat:.6f},{lon:.6f}",
        "zoom": zoom,
        "size": f"{size}x{size}",
        "scale": scale,
        "maptype": style,
        "format": "png",
        "key": api_key,
    }
    try:
        response = requests.get(GOOGLE_STATIC_URL, params=params, timeout=REQUEST_TIMEOUT)
    except requests.RequestException as e:
        raise AcquisitionError(f"Static map request failed: {e}") from e

    content_type = response.headers.get("Content-Type", "")
    if response.status_code != 200 or not content_type.startswith("image/"):
        raise AcquisitionError(
            f"Static map request returned HTTP {response.status_code}: {response.text[:200]}"
        )

    with Image.open(BytesIO(response.content)) as img:
        return np.asarray(img.convert("RGB"), dtype=np.uint8)


def fetch_satellite_image(
    lon: float,
    lat: float,
    zoom: int,
    api_key: Optional[str] = None,
    style: str = "satellite",
    provider: str = "google",
    size: int = DEFAULT_SIZE,
    scale: int = DEFAULT_SCALE
) -> RasterImage:
    """Download a satellite image centered on a point.

    Args:
        lon: Center longitude (WGS84)
        lat: Center latitude (WGS84)
        zoom: Map zoom level
        api_key: Credential for the google provider
        style: Google map type (satellite, hybrid, terrain, roadmap); esri
            serves satellite only
        provider: "google" or "esri"
        size: Image side length in logical pixels
        scale: Google pixel density multiplier

    Returns:
        RGB RasterImage in EPSG:3857 covering at least the requested frame

    Raises:
        AcquisitionError: on a missing key, bad key, or unreachable service
    """
    if provider not in PROVIDERS:
        raise ValueError(f"Unknown imagery provider {provider!r}; expected one of {PROVIDERS}")
    if not 0 <= zoom <= MAX_ZOOM[provider]:
        raise ValueError(f"Zoom {zoom} out of range for {provider}")
    if provider == "esri" and style != "satellite":
        raise ValueError(f"ESRI World Imagery only provides 'satellite', not {style!r}")

    print(f"  Fetching {provider} {style} imagery at ({lat:.4f}, {lon:.4f}), zoom {zoom}...")
    bounds = image_bounds_mercator(lon, lat, zoom, size)

    if provider == "esri":
        frame = BoundingRegion(*bounds, crs=WEB_MERCATOR)
        image = fetch_tile_mosaic(
            ESRI_IMAGERY_URL, frame, zoom, decode_rgb_tile,
            source=f"ESRI World Imagery z{zoom}",
        )
        print(f"    Imagery: {image.width}x{image.height}")
        return image

    pixels = _fetch_google(lon, lat, zoom, api_key, style, size, scale)
    transform = from_bounds(*bounds, pixels.shape[1], pixels.shape[0])
    print(f"    Imagery: {pixels.shape[1]}x{pixels.shape[0]}")
    return RasterImage(pixels, transform, WEB_MERCATOR, source=f"Google {style} z{zoom}")


def fetch_satellite_for_region(
    region: BoundingRegion,
    api_key: Optional[str] = None,
    style: str = "satellite",
    provider: str = "google",
    zoom: Optional[int] = None,
    size: int = DEFAULT_SIZE
) -> RasterImage:
    """Download a satellite image covering a bounding region.

    The image is centered on the region; without an explicit zoom the
    largest zoom whose frame still covers the region is used.
    """
    if zoom is None:
        zoom = zoom_to_fit(region, size, MAX_ZOOM.get(provider, 21))
    merc = region.to_crs(WEB_MERCATOR)
    to_wgs = Transformer.from_crs(WEB_MERCATOR, WGS84, always_xy=True)
    lon, lat = to_wgs.transform(*merc.center)
    return fetch_satellite_image(lon, lat, zoom, api_key=api_key, style=style,
                                 provider=provider, size=size)
