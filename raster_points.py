"""
Raster-to-point flattening and sea-level recoloring.

A PointSample table is a pandas DataFrame with columns x, y and value, one
row per defined raster cell, at the cell center.
"""

from typing import Optional, Tuple

import numpy as np
import pandas as pd

from rasters import RasterImage

SEA_LEVEL_THRESHOLD = 0.1
POINT_COLUMNS = ["x", "y", "value"]


def flatten_raster(image: RasterImage) -> pd.DataFrame:
    """Convert a scalar raster into a PointSample table.

    Cells holding NaN or the image's nodata sentinel are dropped.

    Args:
        image: Scalar (elevation/depth) RasterImage

    Returns:
        DataFrame with columns x, y, value in the image CRS
    """
    if image.is_rgb:
        raise ValueError("Only scalar rasters can be flattened into point samples")

    rows, cols = np.indices(image.data.shape)
    xs, ys = image.transform * (cols.ravel() + 0.5, rows.ravel() + 0.5)
    values = image.data.ravel().astype(float)

    valid = ~np.isnan(values)
    if image.nodata is not None and not np.isnan(image.nodata):
        valid &= values != image.nodata

    return pd.DataFrame({
        "x": np.asarray(xs)[valid],
        "y": np.asarray(ys)[valid],
        "value": values[valid],
    }, columns=POINT_COLUMNS)


def clamp_sea_level(
    points: pd.DataFrame,
    threshold: float = SEA_LEVEL_THRESHOLD,
    column: str = "value"
) -> pd.DataFrame:
    """Set values within `threshold` of zero to exactly zero.

    Gives the sea surface a single color bucket. Returns a copy; applying it
    twice gives the same table as applying it once.
    """
    if threshold < 0:
        raise ValueError(f"Threshold must be non-negative, got {threshold}")
    clamped = points.copy()
    near_zero = clamped[column].abs() < threshold
    clamped.loc[near_zero, column] = 0.0
    return clamped


def clamp_raster_sea_level(image: RasterImage, threshold: float = SEA_LEVEL_THRESHOLD) -> RasterImage:
    """Raster counterpart of clamp_sea_level, returning a derived image."""
    if image.is_rgb:
        raise ValueError("Only scalar rasters can be clamped")
    data = image.data.astype(np.float32)
    return image.with_data(np.where(np.abs(data) < threshold, np.float32(0), data))


def _spacing(coords: np.ndarray) -> Optional[float]:
    if len(coords) < 2:
        return None
    return float(np.min(np.diff(coords)))


def points_to_rgba(
    points: pd.DataFrame,
    scale,
    cell_size: Optional[Tuple[float, float]] = None
) -> Tuple[np.ndarray, Tuple[float, float, float, float]]:
    """Rebuild a colored cell grid from a PointSample table.

    Without an explicit cell size the spacing is inferred from the samples.
    An axis with a single coordinate borrows the other axis's spacing; a
    lone sample needs `cell_size`.

    Args:
        points: PointSample DataFrame on a regular grid
        scale: Color scale with a color_for(values) method
        cell_size: Optional (dx, dy) of the source raster cells

    Returns:
        (rgba, extent) where rgba is (rows, cols, 4) uint8 with transparent
        empty cells and extent is (min_x, min_y, max_x, max_y) of the cell edges
    """
    if points.empty:
        raise ValueError("Cannot build a grid from an empty point table")

    xs = np.unique(points["x"].to_numpy())
    ys = np.unique(points["y"].to_numpy())
    if cell_size is not None:
        dx, dy = abs(float(cell_size[0])), abs(float(cell_size[1]))
    else:
        dx, dy = _spacing(xs), _spacing(ys)
        if dx is None and dy is None:
            raise ValueError("A single point sample needs an explicit cell_size")
        dx = dx if dx is not None else dy
        dy = dy if dy is not None else dx

    col = np.round((points["x"].to_numpy() - xs[0]) / dx).astype(int)
    # Rows count down from the northernmost cell
    row = np.round((ys[-1] - points["y"].to_numpy()) / dy).astype(int)
    width, height = col.max() + 1, row.max() + 1

    rgba = np.zeros((height, width, 4), dtype=np.uint8)
    rgba[row, col] = scale.color_for(points["value"].to_numpy())

    extent = (xs[0] - dx / 2, ys[0] - dy / 2, xs[-1] + dx / 2, ys[-1] + dy / 2)
    return rgba, extent
