"""
Color scales for raster fills.

Bathymetry uses fixed depth breakpoints with a hand-picked blue palette;
elevation uses a slice of a reversed matplotlib diverging colormap.
"""

import math
from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np
from matplotlib import colormaps
from matplotlib.colors import to_hex, to_rgba_array

# Depth breakpoints in meters, shallowest first. Consecutive pairs bound the
# 13 intervals (lower, upper].
BATHYMETRY_BREAKS = [
    0, -30, -55, -75, -90, -120, -150, -180,
    -780, -1380, -1980, -2580, -3180, -math.inf,
]

# One color per interval, deepest (index 0) to shallowest
BATHYMETRY_COLORS = [
    "#08041f",  # < -3180 m
    "#0b0f3a",
    "#0e1a52",
    "#12296b",
    "#173a83",
    "#1d4d9a",
    "#2662b0",
    "#3277c3",
    "#428dd3",
    "#56a3e0",
    "#6fb8ea",
    "#8ccbf1",
    "#addcf6",  # -30 to 0 m
]

LAND_BUCKET = -1
LAND_COLOR = "#d9d0c1"

ELEVATION_CMAP = "RdYlBu"
ELEVATION_STEPS = 100
ELEVATION_INDEX_RANGE = (30, 89)


def bucket_values(values, breaks: Sequence[float]) -> np.ndarray:
    """Assign each value to a break interval.

    Args:
        values: Array-like of numbers
        breaks: Strictly decreasing breakpoints; interval k counts from the
            bottom, so index 0 is (breaks[-1], breaks[-2]]

    Returns:
        Integer array of interval indices; values above breaks[0], at or
        below a finite breaks[-1], or NaN get LAND_BUCKET
    """
    breaks = list(breaks)
    if any(b <= a for a, b in zip(breaks[1:], breaks[:-1])):
        raise ValueError("Breakpoints must be strictly decreasing")
    values = np.asarray(values, dtype=float)
    inner_edges = np.array(breaks[1:-1][::-1], dtype=float)
    buckets = np.searchsorted(inner_edges, values, side="left")

    outside = np.isnan(values) | (values > breaks[0])
    if math.isfinite(breaks[-1]):
        outside |= values <= breaks[-1]
    return np.where(outside, LAND_BUCKET, buckets)


def bucket_depths(values) -> np.ndarray:
    """Bathymetry interval index for each depth value (0 = deepest)."""
    return bucket_values(values, BATHYMETRY_BREAKS)


def elevation_palette(
    name: str = ELEVATION_CMAP,
    steps: int = ELEVATION_STEPS,
    index_range: Tuple[int, int] = ELEVATION_INDEX_RANGE,
    reverse: bool = True
) -> List[str]:
    """Sample a colormap into discrete steps and keep a contiguous slice.

    Args:
        name: matplotlib colormap name
        steps: Number of colors to sample
        index_range: Inclusive (first, last) indices to keep
        reverse: Reverse the colormap before sampling

    Returns:
        List of hex colors
    """
    first, last = index_range
    if not 0 <= first <= last < steps:
        raise ValueError(f"Index range {index_range} is not within 0..{steps - 1}")
    cmap = colormaps[name]
    if reverse:
        cmap = cmap.reversed()
    colors = [to_hex(cmap(i / (steps - 1))) for i in range(steps)]
    return colors[first:last + 1]


def _to_rgba_bytes(colors: Sequence[str]) -> np.ndarray:
    return np.round(to_rgba_array(list(colors)) * 255).astype(np.uint8)


@dataclass(frozen=True)
class DiscreteColorScale:
    """Breakpoint intervals mapped to fixed colors."""
    breaks: Tuple[float, ...]
    colors: Tuple[str, ...]
    outside_color: str = LAND_COLOR
    unit: str = "m"

    def __post_init__(self):
        object.__setattr__(self, "breaks", tuple(self.breaks))
        object.__setattr__(self, "colors", tuple(self.colors))
        if len(self.colors) != len(self.breaks) - 1:
            raise ValueError(
                f"{len(self.breaks)} breaks need {len(self.breaks) - 1} colors, got {len(self.colors)}"
            )

    def buckets(self, values) -> np.ndarray:
        return bucket_values(values, self.breaks)

    def color_for(self, values) -> np.ndarray:
        """RGBA (uint8) color for each value."""
        buckets = self.buckets(values)
        table = _to_rgba_bytes(self.colors + (self.outside_color,))
        return table[np.where(buckets == LAND_BUCKET, len(self.colors), buckets)]

    def legend_entries(self) -> List[Tuple[str, str]]:
        """(color, label) pairs, shallowest interval first."""
        entries = []
        # Interval k is bounded by breaks[n - k] below and breaks[n - k - 1] above
        n = len(self.colors)
        for k in reversed(range(n)):
            upper = self.breaks[n - k - 1]
            lower = self.breaks[n - k]
            if math.isinf(lower):
                label = f"< {upper:g} {self.unit}"
            else:
                label = f"{lower:g} to {upper:g} {self.unit}"
            entries.append((self.colors[k], label))
        return entries


@dataclass(frozen=True)
class ContinuousColorScale:
    """Evenly spaced colors stretched linearly between vmin and vmax."""
    colors: Tuple[str, ...]
    vmin: float
    vmax: float
    unit: str = "m"

    def __post_init__(self):
        object.__setattr__(self, "colors", tuple(self.colors))
        if not self.colors:
            raise ValueError("A continuous scale needs at least one color")
        if not self.vmin < self.vmax:
            raise ValueError(f"vmin must be below vmax, got {self.vmin}, {self.vmax}")

    @classmethod
    def for_values(cls, colors: Sequence[str], values, unit: str = "m") -> 'ContinuousColorScale':
        """Scale spanning the finite range of some values."""
        values = np.asarray(values, dtype=float)
        vmin, vmax = float(np.nanmin(values)), float(np.nanmax(values))
        if vmin == vmax:
            vmax = vmin + 1.0
        return cls(tuple(colors), vmin, vmax, unit)

    def color_for(self, values) -> np.ndarray:
        """RGBA (uint8) color for each value; NaN is fully transparent."""
        values = np.asarray(values, dtype=float)
        table = _to_rgba_bytes(self.colors)
        t = np.clip((values - self.vmin) / (self.vmax - self.vmin), 0, 1)
        index = np.round(np.nan_to_num(t) * (len(self.colors) - 1)).astype(int)
        rgba = table[index]
        rgba[np.isnan(values)] = 0
        return rgba

    def legend_entries(self, ticks: int = 5) -> List[Tuple[str, str]]:
        """(color, label) pairs at evenly spaced values, highest first."""
        entries = []
        for value in np.linspace(self.vmax, self.vmin, ticks):
            color = to_hex(self.color_for([value])[0] / 255)
            entries.append((color, f"{value:.0f} {self.unit}"))
        return entries


def bathymetry_scale() -> DiscreteColorScale:
    """Default depth scale."""
    return DiscreteColorScale(tuple(BATHYMETRY_BREAKS), tuple(BATHYMETRY_COLORS))
