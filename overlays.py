"""
Vector overlay preparation: point tables and polygon files.

Every loader tags its output with an explicit CRS at load time, repairs
polygon geometry before use, and can reproject into a display CRS.
"""

from pathlib import Path
from typing import Dict, Iterable, Optional

import geopandas as gpd
import pandas as pd
from shapely.geometry import MultiPolygon, Polygon
from shapely.ops import unary_union

from errors import CRSMismatchError, MissingCRSError
from map_utils import BoundingRegion, WGS84, normalize_crs, same_crs

POLYGON_TYPES = ("Polygon", "MultiPolygon")


def points_from_frame(
    df: pd.DataFrame,
    lon_col: str,
    lat_col: str,
    crs: str = WGS84
) -> gpd.GeoDataFrame:
    """Turn a table with coordinate columns into point features.

    Rows with a missing coordinate are dropped with a warning.
    """
    missing = [c for c in (lon_col, lat_col) if c not in df.columns]
    if missing:
        raise ValueError(f"Coordinate columns {missing} not found; have {list(df.columns)}")

    complete = df[lon_col].notna() & df[lat_col].notna()
    dropped = int((~complete).sum())
    if dropped:
        print(f"    Warning: dropped {dropped} rows without coordinates")
    df = df[complete].reset_index(drop=True)

    return gpd.GeoDataFrame(
        df,
        geometry=gpd.points_from_xy(df[lon_col], df[lat_col]),
        crs=normalize_crs(crs),
    )


def load_point_table(
    path,
    lon_col: str = "longitude",
    lat_col: str = "latitude",
    rename: Optional[Dict[str, str]] = None,
    crs: str = WGS84,
    sep: str = ","
) -> gpd.GeoDataFrame:
    """Read delimited text into point features.

    Args:
        path: CSV (or other delimited) file
        lon_col: Longitude column name after renaming
        lat_col: Latitude column name after renaming
        rename: Column renames applied first, for sources with inconsistent
            headers (e.g. {"Long": "longitude"})
        crs: CRS of the coordinate columns; plain lon/lat is WGS84
        sep: Field delimiter

    Returns:
        Point GeoDataFrame tagged with `crs`
    """
    path = Path(path)
    print(f"  Loading points from {path.name}...")
    df = pd.read_csv(path, sep=sep)
    if rename:
        df = df.rename(columns=rename)
    points = points_from_frame(df, lon_col, lat_col, crs)
    print(f"    Loaded {len(points)} points")
    return points


def _polygonal_part(geom):
    """Polygonal content of a geometry, or None if it has none."""
    if geom is None or geom.is_empty:
        return None
    if geom.geom_type in POLYGON_TYPES:
        return geom
    if hasattr(geom, "geoms"):
        parts = [g for g in geom.geoms if g.geom_type in POLYGON_TYPES and not g.is_empty]
        if parts:
            merged = unary_union(parts)
            if isinstance(merged, (Polygon, MultiPolygon)):
                return merged
    return None


def repair_geometries(gdf: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
    """Repair invalid polygon geometries and drop what cannot be repaired.

    Only invalid rows are passed through make_valid, so already-valid
    features are untouched and a second pass changes nothing. Features that
    are empty, non-polygonal after repair, or still invalid are reported and
    excluded.
    """
    if gdf.empty:
        return gdf.copy()

    repaired = gdf.copy()
    invalid = repaired.geometry.notna() & ~repaired.geometry.is_valid
    if invalid.any():
        print(f"    Repairing {int(invalid.sum())} invalid geometries")
        fixed = repaired.geometry[invalid].make_valid()
        repaired.loc[invalid, repaired.geometry.name] = fixed.apply(_polygonal_part)

    geoms = repaired.geometry
    keep = geoms.notna() & ~geoms.is_empty & geoms.is_valid & geoms.geom_type.isin(POLYGON_TYPES)
    if not keep.all():
        dropped = list(repaired.index[~keep])
        print(f"    Warning: excluded {len(dropped)} unrepairable features: {dropped[:10]}")
    return repaired[keep]


def reconcile_crs(gdf: gpd.GeoDataFrame, target_crs: str) -> gpd.GeoDataFrame:
    """Return features in the target CRS.

    Features already in the target CRS are returned unchanged.

    Raises:
        MissingCRSError: if the features carry no CRS
    """
    if gdf.crs is None:
        raise MissingCRSError("Features have no CRS; assign one when loading")
    if same_crs(gdf.crs, target_crs):
        return gdf
    return gdf.to_crs(target_crs)


def crop_to_region(gdf: gpd.GeoDataFrame, region: BoundingRegion) -> gpd.GeoDataFrame:
    """Clip features to a bounding region given in any CRS."""
    if gdf.crs is None:
        raise MissingCRSError("Features have no CRS; cannot crop to a region")
    local = region.to_crs(normalize_crs(gdf.crs))
    return gdf.clip(local.to_polygon(), keep_geom_type=True)


def load_polygons(
    path,
    assume_crs: Optional[str] = None,
    region: Optional[BoundingRegion] = None,
    target_crs: Optional[str] = None
) -> gpd.GeoDataFrame:
    """Read a polygon file (shapefile, GeoPackage, GeoJSON).

    Args:
        path: File to read
        assume_crs: CRS for files without one; if the file has a CRS it
            must agree with this value
        region: Crop to this region after repair
        target_crs: Reproject to this CRS at the end

    Returns:
        Repaired polygon GeoDataFrame with an explicit CRS

    Raises:
        MissingCRSError: file has no CRS and none was assumed
        CRSMismatchError: file CRS disagrees with assume_crs
    """
    path = Path(path)
    print(f"  Loading polygons from {path.name}...")
    polygons = gpd.read_file(path)

    if polygons.crs is None:
        if assume_crs is None:
            raise MissingCRSError(f"{path} has no CRS; pass assume_crs to assign one")
        polygons = polygons.set_crs(normalize_crs(assume_crs))
    elif assume_crs is not None and not same_crs(polygons.crs, assume_crs):
        raise CRSMismatchError(
            f"{path} is in {normalize_crs(polygons.crs)}, expected {normalize_crs(assume_crs)}"
        )

    polygons = repair_geometries(polygons)
    if region is not None:
        polygons = repair_geometries(crop_to_region(polygons, region))
    if target_crs is not None:
        polygons = reconcile_crs(polygons, target_crs)

    print(f"    Loaded {len(polygons)} polygons in {normalize_crs(polygons.crs)}")
    return polygons


def select_features(gdf: gpd.GeoDataFrame, column: str, value) -> gpd.GeoDataFrame:
    """Features whose attribute equals a value, as an independent copy."""
    if column not in gdf.columns:
        raise ValueError(f"Column {column!r} not found; have {list(gdf.columns)}")
    return gdf[gdf[column] == value].copy()


def subset_by_attribute(
    gdf: gpd.GeoDataFrame,
    column: str,
    values: Optional[Iterable] = None
) -> Dict[object, gpd.GeoDataFrame]:
    """Split features into named sub-collections by attribute equality.

    Args:
        gdf: Features to split
        column: Attribute to match on (e.g. zone name)
        values: Values to extract; defaults to every distinct non-null value,
            which makes the result a partition of the non-null features

    Returns:
        Dict mapping each value to its own GeoDataFrame
    """
    if column not in gdf.columns:
        raise ValueError(f"Column {column!r} not found; have {list(gdf.columns)}")
    if values is None:
        values = gdf[column].dropna().unique()
    return {value: select_features(gdf, column, value) for value in values}
