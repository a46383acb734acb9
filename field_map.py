"""
field_map.py - Seabird and fisheries field-data map generator

Builds three map products from field data:
- Nest locations over satellite imagery
- Nest locations over a sea-level-clamped elevation fill
- Fishing zones and fishing sites over bathymetry
"""

import argparse
import json
import os
import sys
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import geopandas as gpd

from color_scales import ContinuousColorScale, bathymetry_scale, elevation_palette
from errors import AcquisitionError
from fetch_bathymetry import fetch_bathymetry
from fetch_elevation import fetch_elevation
from fetch_satellite import fetch_satellite_for_region
from map_product import MapProduct, MarkerStyle, PolygonStyle
from map_utils import BoundingRegion, WGS84
from overlays import load_point_table, load_polygons, subset_by_attribute
from raster_points import clamp_sea_level, flatten_raster

# === Configuration ===
CONFIG_FILE = Path("map_config.json")
API_KEY_ENV = "GOOGLE_MAPS_API_KEY"
PRODUCTS = ("satellite", "elevation", "bathymetry")

# Marker and outline styles
NEST_STYLE = MarkerStyle(shape="circle", fill="#ffd700", outline="#000000", size=7)
SITE_STYLE = MarkerStyle(shape="triangle", fill="#ff4500", outline="#000000", size=8)
COASTLINE_STYLE = PolygonStyle(fill="#d9d0c1", outline="#4d4d4d", line_width=0.6)
ZONE_COLORS = ["#e41a1c", "#4daf4a", "#984ea3", "#ff7f00", "#ffff33", "#a65628", "#f781bf"]
ZONE_LINE_WIDTH = 1.5


@dataclass
class MapConfig:
    """Configuration for a set of field maps."""
    name: str = "isles_of_shoals"
    data_dir: str = "data"
    output_dir: str = "output"
    display_crs: str = WGS84

    # Nest observations (delimited text)
    nests_file: str = "nests.csv"
    nest_lon_col: str = "longitude"
    nest_lat_col: str = "latitude"
    nest_rename: Dict[str, str] = field(default_factory=dict)

    # Fishing site logs (delimited text)
    sites_file: str = "fishing_sites.csv"
    site_lon_col: str = "longitude"
    site_lat_col: str = "latitude"
    site_rename: Dict[str, str] = field(default_factory=dict)

    # Polygon files; *_crs is assumed only when a file has no embedded CRS
    zones_file: str = "fishing_zones.shp"
    zone_column: str = "ZONENAME"
    zones_crs: Optional[str] = None
    coastline_file: str = "coastline.shp"
    coastline_crs: Optional[str] = None

    # Study area around the nests (min_lon, min_lat, max_lon, max_lat)
    study_region: Tuple[float, float, float, float] = (-70.619, 42.9842, -70.6094, 42.9928)

    # Elevation
    dem_zoom: int = 14
    dem_clip: bool = True
    sea_level_threshold: float = 0.1

    # Bathymetry (lon1, lon2, lat1, lat2) and grid spacing in arc-minutes
    bathy_bounds: Tuple[float, float, float, float] = (-74, -62, 37, 46)
    bathy_resolution: float = 1

    # Satellite imagery
    satellite_provider: str = "google"
    satellite_style: str = "satellite"
    satellite_zoom: Optional[int] = None
    google_api_key: Optional[str] = None

    def __post_init__(self):
        self.study_region = tuple(self.study_region)
        self.bathy_bounds = tuple(self.bathy_bounds)
        if not self.google_api_key:
            self.google_api_key = os.environ.get(API_KEY_ENV)

    @property
    def region(self) -> BoundingRegion:
        return BoundingRegion(*self.study_region)

    @property
    def bathy_region(self) -> BoundingRegion:
        lon1, lon2, lat1, lat2 = self.bathy_bounds
        return BoundingRegion(min(lon1, lon2), min(lat1, lat2), max(lon1, lon2), max(lat1, lat2))

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir)

    @property
    def output_path(self) -> Path:
        return Path(self.output_dir) / self.name


def load_config_from_file(config_path: Path = CONFIG_FILE) -> Optional[MapConfig]:
    """Load configuration from a JSON file if it exists."""
    config_path = Path(config_path)
    if not config_path.exists():
        return None

    print(f"Loading configuration from {config_path}...")
    with open(config_path) as f:
        data = json.load(f)

    known = {f.name for f in fields(MapConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown keys in {config_path}: {unknown}")
    return MapConfig(**data)


# === Data loading ===

def load_nests(config: MapConfig) -> gpd.GeoDataFrame:
    return load_point_table(
        config.data_path / config.nests_file,
        lon_col=config.nest_lon_col,
        lat_col=config.nest_lat_col,
        rename=config.nest_rename,
    )


def load_sites(config: MapConfig) -> gpd.GeoDataFrame:
    return load_point_table(
        config.data_path / config.sites_file,
        lon_col=config.site_lon_col,
        lat_col=config.site_lat_col,
        rename=config.site_rename,
    )


# === Map products ===

def build_satellite_map(config: MapConfig, nests: gpd.GeoDataFrame) -> MapProduct:
    """Nest locations over satellite imagery of the study region."""
    print("\nBuilding satellite map...")
    imagery = fetch_satellite_for_region(
        config.region,
        api_key=config.google_api_key,
        style=config.satellite_style,
        provider=config.satellite_provider,
        zoom=config.satellite_zoom,
    )
    return (
        MapProduct(display_crs=config.display_crs)
        .with_basemap(imagery)
        .with_points(nests, NEST_STYLE, label="Nest")
        .with_region(config.region)
        .with_title(f"{config.name}: nest locations")
    )


def build_elevation_map(config: MapConfig, nests: gpd.GeoDataFrame,
                        region: Optional[BoundingRegion] = None) -> MapProduct:
    """Nest locations over a flattened, sea-level-clamped elevation fill.

    Args:
        config: Map configuration
        nests: Nest point features
        region: Bounding geometry for the DEM request; defaults to the
            configured study region
    """
    print("\nBuilding elevation map...")
    region = region or config.region
    dem = fetch_elevation(region, config.dem_zoom, clip=config.dem_clip)

    points = clamp_sea_level(flatten_raster(dem), config.sea_level_threshold)
    print(f"    {len(points)} elevation samples")
    scale = ContinuousColorScale.for_values(elevation_palette(), points["value"])

    return (
        MapProduct(display_crs=config.display_crs)
        .with_raster_fill(points, scale, crs=dem.crs, label="Elevation",
                          cell_size=dem.resolution)
        .with_points(nests, NEST_STYLE, label="Nest")
        .with_region(region)
        .with_title(f"{config.name}: elevation")
    )


def build_bathymetry_map(
    config: MapConfig,
    zones: gpd.GeoDataFrame,
    sites: gpd.GeoDataFrame,
    coastline: Optional[gpd.GeoDataFrame] = None
) -> MapProduct:
    """Fishing zones and sites over bucketed bathymetry."""
    print("\nBuilding bathymetry map...")
    lon1, lon2, lat1, lat2 = config.bathy_bounds
    depth = fetch_bathymetry(lon1, lon2, lat1, lat2, config.bathy_resolution)
    points = flatten_raster(depth)

    product = (
        MapProduct(display_crs=config.display_crs)
        .with_raster_fill(points, bathymetry_scale(), crs=depth.crs, label="Depth",
                          cell_size=depth.resolution)
    )
    if coastline is not None and not coastline.empty:
        product = product.with_polygons(coastline, COASTLINE_STYLE)

    for index, (zone_name, zone) in enumerate(subset_by_attribute(zones, config.zone_column).items()):
        color = ZONE_COLORS[index % len(ZONE_COLORS)]
        style = PolygonStyle(fill=None, outline=color, line_width=ZONE_LINE_WIDTH)
        product = product.with_polygons(zone, style, label=str(zone_name))

    return (
        product
        .with_points(sites, SITE_STYLE, label="Fishing site")
        .with_region(config.bathy_region)
        .with_title(f"{config.name}: fishing zones and bathymetry")
    )


def generate_products(config: MapConfig, products: List[str]) -> List[Path]:
    """Build and render the requested products; returns written files."""
    config.output_path.mkdir(parents=True, exist_ok=True)
    written = []

    print("\nLoading data...")
    nests = None
    if "satellite" in products or "elevation" in products:
        nests = load_nests(config)

    if "satellite" in products:
        product = build_satellite_map(config, nests)
        written.append(product.render(config.output_path / f"{config.name}_satellite.svg"))

    if "elevation" in products:
        product = build_elevation_map(config, nests)
        written.append(product.render(config.output_path / f"{config.name}_elevation.svg"))

    if "bathymetry" in products:
        zones = load_polygons(config.data_path / config.zones_file,
                              assume_crs=config.zones_crs,
                              target_crs=config.display_crs)
        coastline = None
        coastline_path = config.data_path / config.coastline_file
        if coastline_path.exists():
            coastline = load_polygons(coastline_path, assume_crs=config.coastline_crs,
                                      region=config.bathy_region,
                                      target_crs=config.display_crs)
        else:
            print(f"  No coastline file at {coastline_path}, skipping")
        sites = load_sites(config)
        product = build_bathymetry_map(config, zones, sites, coastline)
        for line in product.describe():
            print(f"    {line}")
        written.append(product.render(config.output_path / f"{config.name}_bathymetry.svg"))

    return written


def main(argv: Optional[List[str]] = None) -> int:
    """Generate field maps."""
    parser = argparse.ArgumentParser(description="Generate seabird and fisheries field maps")
    parser.add_argument("--config", type=Path, default=CONFIG_FILE,
                        help="JSON configuration file (default: map_config.json)")
    parser.add_argument("--products", nargs="+", choices=PRODUCTS, default=list(PRODUCTS),
                        help="Map products to build")
    parser.add_argument("--api-key", help=f"Google Static Maps key (default: ${API_KEY_ENV})")
    args = parser.parse_args(argv)

    config = load_config_from_file(args.config)
    if config is None:
        print(f"No {args.config} found, using default configuration...")
        config = MapConfig()
    if args.api_key:
        config.google_api_key = args.api_key

    print("=" * 60)
    print(f"Field Map Generator: {config.name}")
    print("=" * 60)
    print(f"Study region: {config.region.as_tuple()}")
    print(f"Products: {', '.join(args.products)}")

    try:
        written = generate_products(config, args.products)
    except (AcquisitionError, FileNotFoundError) as e:
        print(f"\n{'=' * 60}")
        print(f"ERROR: {e}")
        print(f"{'=' * 60}")
        return 1

    print("\n" + "=" * 60)
    print(f"Done! Wrote {len(written)} maps")
    print("=" * 60)
    return 0


if __name__ == "__main__":
    sys.exit(main())
