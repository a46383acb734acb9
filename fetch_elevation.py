"""
fetch_elevation.py - Download elevation data from AWS Terrain Tiles (free, no auth)

Fetches Terrarium-encoded PNG tiles covering a bounding region, stitches them
in Web Mercator and warps the result into the region's CRS.
"""

import argparse
from io import BytesIO

import numpy as np
from PIL import Image

from map_utils import BoundingRegion
from rasters import RasterImage
from tiles import fetch_tile_mosaic

# AWS Terrain Tiles (free, no authentication required)
TERRARIUM_URL = "https://s3.amazonaws.com/elevation-tiles-prod/terrarium/{z}/{x}/{y}.png"
MAX_ZOOM = 15


def decode_terrarium(content: bytes) -> np.ndarray:
    """Decode a Terrarium PNG tile into elevations in meters.

    Terrarium packs elevation as R * 256 + G + B / 256 - 32768.
    """
    with Image.open(BytesIO(content)) as img:
        rgb = np.asarray(img.convert("RGB"), dtype=np.float32)
    return rgb[..., 0] * 256 + rgb[..., 1] + rgb[..., 2] / 256 - 32768


def fetch_elevation(region: BoundingRegion, zoom: int, clip: bool = True) -> RasterImage:
    """Download a DEM covering a bounding region.

    Args:
        region: Bounding geometry of the area of interest, in any CRS
        zoom: Detail level (0-15), as for slippy map tiles
        clip: Clip the result exactly to the region; otherwise return the
            smallest covering tile set

    Returns:
        Elevation RasterImage in the region's CRS

    Raises:
        ValueError: if zoom is out of range
        AcquisitionError: if any tile download fails
    """
    if not 0 <= zoom <= MAX_ZOOM:
        raise ValueError(f"Elevation zoom must be between 0 and {MAX_ZOOM}, got {zoom}")

    print(f"  Fetching elevation tiles (zoom {zoom})...")
    mosaic = fetch_tile_mosaic(
        TERRARIUM_URL, region, zoom, decode_terrarium,
        source=f"AWS Terrain Tiles z{zoom}",
    )

    if clip:
        dem = mosaic.clip(region)
    else:
        dem = mosaic.reproject(region.crs)

    print(f"    DEM: {dem.width}x{dem.height} in {dem.crs}")
    return dem


def main():
    parser = argparse.ArgumentParser(description="Download a DEM for a bounding box")
    parser.add_argument("min_lon", type=float)
    parser.add_argument("min_lat", type=float)
    parser.add_argument("max_lon", type=float)
    parser.add_argument("max_lat", type=float)
    parser.add_argument("--zoom", type=int, default=14)
    parser.add_argument("--no-clip", action="store_true", help="Keep the full tile set")
    args = parser.parse_args()

    print("=" * 60)
    print("Elevation Downloader (AWS Terrain Tiles)")
    print("=" * 60)

    region = BoundingRegion(args.min_lon, args.min_lat, args.max_lon, args.max_lat)
    dem = fetch_elevation(region, args.zoom, clip=not args.no_clip)
    print(f"\nElevation range: {np.nanmin(dem.data):.1f} to {np.nanmax(dem.data):.1f} m")


if __name__ == "__main__":
    main()
