"""
Map composition: an immutable builder of layers and display settings.

Each with_* call returns a new MapProduct, so intermediate products stay
valid and can be branched. Layers draw in the order they were added (later
layers on top). All layers are reconciled to the display CRS at render time.
"""

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import List, Optional, Tuple, Union

import geopandas as gpd
import numpy as np
import pandas as pd
import svgwrite
from pyproj import CRS
from rasterio.transform import array_bounds, from_bounds
from rasterio.warp import Resampling, calculate_default_transform, reproject

from color_scales import ContinuousColorScale, elevation_palette
from errors import MissingCRSError
from map_utils import BoundingRegion, CoordinateTransformer, WGS84, normalize_crs, same_crs
from overlays import reconcile_crs, repair_geometries
from raster_points import points_to_rgba
from rasters import RasterImage
from render_helpers import (
    dash_pattern, render_axes, render_image, render_legend, render_points, render_polygons,
)

# Document layout in SVG units
PANEL_WIDTH = 800
MARGIN_LEFT = 80
MARGIN_TOP = 40
MARGIN_BOTTOM = 40
MARGIN_RIGHT = 20
LEGEND_WIDTH = 190
TITLE_FONT_SIZE = 16


@dataclass(frozen=True)
class PolygonStyle:
    """Styling for polygon and line overlays."""
    fill: Optional[str] = None
    outline: Optional[str] = "#000000"
    line_width: float = 1.0
    line_style: str = "solid"
    opacity: float = 1.0

    def __post_init__(self):
        dash_pattern(self.line_style)


@dataclass(frozen=True)
class MarkerStyle:
    """Styling for point markers."""
    shape: str = "circle"
    fill: str = "#ffffff"
    outline: Optional[str] = "#000000"
    size: float = 6.0

    def __post_init__(self):
        if self.shape not in ("circle", "square", "triangle"):
            raise ValueError(f"Unknown marker shape {self.shape!r}")


@dataclass(frozen=True, eq=False)
class BasemapLayer:
    image: RasterImage
    scale: Optional[object] = None
    opacity: float = 1.0
    label: str = ""


@dataclass(frozen=True, eq=False)
class RasterFillLayer:
    points: pd.DataFrame = field(repr=False)
    crs: str
    scale: object
    opacity: float = 1.0
    label: str = ""
    cell_size: Optional[Tuple[float, float]] = None


@dataclass(frozen=True, eq=False)
class PolygonLayer:
    features: gpd.GeoDataFrame = field(repr=False)
    style: PolygonStyle = PolygonStyle()
    label: str = ""


@dataclass(frozen=True, eq=False)
class PointLayer:
    features: gpd.GeoDataFrame = field(repr=False)
    style: MarkerStyle = MarkerStyle()
    label: str = ""


Layer = Union[BasemapLayer, RasterFillLayer, PolygonLayer, PointLayer]


def _require_crs(features: gpd.GeoDataFrame, what: str):
    if features.crs is None:
        raise MissingCRSError(f"{what} has no CRS; assign one when loading")


def warp_rgba(
    rgba: np.ndarray,
    extent: Tuple[float, float, float, float],
    src_crs: str,
    dst_crs: str
) -> Tuple[np.ndarray, Tuple[float, float, float, float]]:
    """Reproject an RGBA image; cells outside the source become transparent."""
    if same_crs(src_crs, dst_crs):
        return rgba, extent
    height, width = rgba.shape[:2]
    src_transform = from_bounds(*extent, width, height)
    dst_transform, dst_width, dst_height = calculate_default_transform(
        src_crs, dst_crs, width, height, *extent
    )
    destination = np.zeros((4, dst_height, dst_width), dtype=np.uint8)
    reproject(
        source=np.moveaxis(rgba, 2, 0),
        destination=destination,
        src_transform=src_transform,
        src_crs=src_crs,
        dst_transform=dst_transform,
        dst_crs=dst_crs,
        resampling=Resampling.nearest,
    )
    return np.moveaxis(destination, 0, 2), array_bounds(dst_height, dst_width, dst_transform)


def _image_rgba(layer: BasemapLayer) -> np.ndarray:
    image = layer.image
    if image.is_rgb:
        alpha = np.full(image.data.shape[:2] + (1,), 255, dtype=np.uint8)
        return np.concatenate([image.data.astype(np.uint8), alpha], axis=2)
    scale = layer.scale or ContinuousColorScale.for_values(elevation_palette(), image.data)
    return scale.color_for(image.data.ravel()).reshape(image.data.shape + (4,))


@dataclass(frozen=True)
class MapProduct:
    """Layers plus display configuration for one rendered map.

    Attributes:
        layers: Layers in draw order
        display_crs: CRS everything is drawn in
        xlim: Optional (min, max) x limits in the display CRS
        ylim: Optional (min, max) y limits in the display CRS
        show_legend: Draw the legend panel
        show_axis_labels: Draw tick labels on the frame
        title: Title drawn above the panel
        width_px: Plot panel width in SVG units
    """
    layers: Tuple[Layer, ...] = ()
    display_crs: str = WGS84
    xlim: Optional[Tuple[float, float]] = None
    ylim: Optional[Tuple[float, float]] = None
    show_legend: bool = True
    show_axis_labels: bool = True
    title: str = ""
    width_px: float = PANEL_WIDTH

    def _add(self, layer: Layer) -> 'MapProduct':
        return replace(self, layers=self.layers + (layer,))

    # === Layers ===

    def with_basemap(self, image: RasterImage, scale=None, opacity: float = 1.0,
                     label: str = "") -> 'MapProduct':
        return self._add(BasemapLayer(image, scale, opacity, label))

    def with_raster_fill(self, points: pd.DataFrame, scale, crs: str,
                         label: str = "", opacity: float = 1.0,
                         cell_size: Optional[Tuple[float, float]] = None) -> 'MapProduct':
        """Add a cell fill built from a PointSample table in `crs`.

        `cell_size` is the (x, y) size of the source raster cells; pass the
        raster's resolution so one-row or one-column tables keep their real
        cell size.
        """
        missing = {"x", "y", "value"} - set(points.columns)
        if missing:
            raise ValueError(f"Point samples missing columns {sorted(missing)}")
        if cell_size is not None:
            cell_size = (abs(float(cell_size[0])), abs(float(cell_size[1])))
        return self._add(RasterFillLayer(points, normalize_crs(crs), scale, opacity, label,
                                         cell_size))

    def with_polygons(self, features: gpd.GeoDataFrame, style: PolygonStyle = PolygonStyle(),
                      label: str = "") -> 'MapProduct':
        _require_crs(features, "Polygon layer")
        return self._add(PolygonLayer(features, style, label))

    def with_points(self, features: gpd.GeoDataFrame, style: MarkerStyle = MarkerStyle(),
                    label: str = "") -> 'MapProduct':
        _require_crs(features, "Point layer")
        return self._add(PointLayer(features, style, label))

    # === Display settings ===

    def with_crs(self, crs: str) -> 'MapProduct':
        return replace(self, display_crs=normalize_crs(crs))

    def with_limits(self, xlim: Optional[Tuple[float, float]] = None,
                    ylim: Optional[Tuple[float, float]] = None) -> 'MapProduct':
        """Set axis limits in the display CRS; unspecified axes keep their value."""
        for name, lim in (("xlim", xlim), ("ylim", ylim)):
            if lim is not None and not lim[0] < lim[1]:
                raise ValueError(f"{name} must be increasing, got {lim}")
        return replace(self,
                       xlim=tuple(xlim) if xlim is not None else self.xlim,
                       ylim=tuple(ylim) if ylim is not None else self.ylim)

    def with_region(self, region: BoundingRegion) -> 'MapProduct':
        """Set both axis limits from a region, transformed to the display CRS."""
        local = region.to_crs(self.display_crs)
        return self.with_limits((local.min_x, local.max_x), (local.min_y, local.max_y))

    def with_legend(self, show: bool = True) -> 'MapProduct':
        return replace(self, show_legend=show)

    def with_axis_labels(self, show: bool = True) -> 'MapProduct':
        return replace(self, show_axis_labels=show)

    def with_title(self, title: str) -> 'MapProduct':
        return replace(self, title=title)

    # === Rendering ===

    def _layer_extent(self, layer: Layer) -> Optional[Tuple[float, float, float, float]]:
        if isinstance(layer, BasemapLayer):
            return layer.image.bounds.to_crs(self.display_crs).as_tuple()
        if isinstance(layer, RasterFillLayer):
            if layer.points.empty:
                return None
            p = layer.points
            min_x, max_x = p["x"].min(), p["x"].max()
            min_y, max_y = p["y"].min(), p["y"].max()
            if layer.cell_size is not None:
                half_x, half_y = layer.cell_size[0] / 2, layer.cell_size[1] / 2
                min_x, max_x = min_x - half_x, max_x + half_x
                min_y, max_y = min_y - half_y, max_y + half_y
            if min_x == max_x or min_y == max_y:
                return None
            region = BoundingRegion(min_x, min_y, max_x, max_y, layer.crs)
            return region.to_crs(self.display_crs).as_tuple()
        features = reconcile_crs(layer.features, self.display_crs)
        if features.empty:
            return None
        return tuple(features.total_bounds)

    def view_bounds(self) -> BoundingRegion:
        """Visible extent: explicit limits, else the union of layer extents."""
        if self.xlim is not None and self.ylim is not None:
            return BoundingRegion(self.xlim[0], self.ylim[0], self.xlim[1], self.ylim[1],
                                  self.display_crs)

        extents = [e for e in (self._layer_extent(layer) for layer in self.layers) if e]
        if not extents:
            raise ValueError("Map has no limits and no layers with an extent")
        arr = np.array(extents)
        min_x, min_y = arr[:, 0].min(), arr[:, 1].min()
        max_x, max_y = arr[:, 2].max(), arr[:, 3].max()
        if self.xlim is not None:
            min_x, max_x = self.xlim
        if self.ylim is not None:
            min_y, max_y = self.ylim
        if min_x == max_x or min_y == max_y:
            pad = max(max_x - min_x, max_y - min_y) * 0.05 or 0.01
            min_x, max_x, min_y, max_y = min_x - pad, max_x + pad, min_y - pad, max_y + pad
        return BoundingRegion(min_x, min_y, max_x, max_y, self.display_crs)

    def _draw_layer(self, layer: Layer, group, dwg, transformer) -> int:
        to_svg = transformer.to_svg
        if isinstance(layer, BasemapLayer):
            rgba, extent = warp_rgba(_image_rgba(layer), layer.image.extent,
                                     layer.image.crs, self.display_crs)
            render_image(rgba, extent, group, dwg, to_svg, opacity=layer.opacity)
            return 1
        if isinstance(layer, RasterFillLayer):
            if layer.points.empty:
                return 0
            rgba, extent = points_to_rgba(layer.points, layer.scale, layer.cell_size)
            rgba, extent = warp_rgba(rgba, extent, layer.crs, self.display_crs)
            render_image(rgba, extent, group, dwg, to_svg, opacity=layer.opacity)
            return len(layer.points)

        features = reconcile_crs(layer.features, self.display_crs)
        if isinstance(layer, PointLayer):
            style = layer.style
            return render_points(features, group, dwg, to_svg, shape=style.shape,
                                 fill_color=style.fill, stroke_color=style.outline,
                                 size=style.size)

        # Reprojection can invalidate rings, so repair after reconciling
        features = repair_geometries(features)
        style = layer.style
        return render_polygons(features, group, dwg, style.fill, to_svg,
                               stroke_color=style.outline, stroke_width=style.line_width,
                               dash=dash_pattern(style.line_style), opacity=style.opacity)

    def legend_sections(self) -> List[Tuple[str, List[Tuple[str, str, str]]]]:
        """Legend content: one section per color scale, then labeled overlays."""
        sections = []
        overlay_entries = []
        for layer in self.layers:
            if isinstance(layer, RasterFillLayer):
                entries = [("fill", color, text) for color, text in layer.scale.legend_entries()]
                sections.append((layer.label, entries))
            elif isinstance(layer, BasemapLayer) and layer.scale is not None:
                entries = [("fill", color, text) for color, text in layer.scale.legend_entries()]
                sections.append((layer.label, entries))
            elif isinstance(layer, PolygonLayer) and layer.label:
                if layer.style.fill:
                    overlay_entries.append(("fill", layer.style.fill, layer.label))
                else:
                    overlay_entries.append(("line", layer.style.outline or "#000000", layer.label))
            elif isinstance(layer, PointLayer) and layer.label:
                overlay_entries.append((layer.style.shape, layer.style.fill, layer.label))
        if overlay_entries:
            sections.append(("", overlay_entries))
        return sections

    def to_drawing(self, filename: str = "map.svg") -> svgwrite.Drawing:
        """Compose every layer into an svgwrite Drawing."""
        bounds = self.view_bounds()
        transformer = CoordinateTransformer(self.display_crs, bounds, self.width_px,
                                            offset_x=MARGIN_LEFT, offset_y=MARGIN_TOP)
        sections = self.legend_sections() if self.show_legend else []
        right = LEGEND_WIDTH if sections else MARGIN_RIGHT

        dwg = svgwrite.Drawing(str(filename))

        # Clip map content to the plot panel
        clip_path = dwg.defs.add(dwg.clipPath(id="panel-clip"))
        clip_path.add(dwg.rect((transformer.offset_x, transformer.offset_y),
                               (transformer.width_px, transformer.height_px)))

        content = dwg.g(id="Map_Layers", clip_path="url(#panel-clip)")
        for index, layer in enumerate(self.layers):
            group = dwg.g(id=f"Layer_{index:02d}_{type(layer).__name__}")
            self._draw_layer(layer, group, dwg, transformer)
            content.add(group)
        dwg.add(content)

        geographic = CRS.from_user_input(self.display_crs).is_geographic
        axes = dwg.g(id="Axes")
        render_axes(dwg, axes, transformer, geographic=geographic,
                    show_labels=self.show_axis_labels)
        dwg.add(axes)

        doc_height = MARGIN_TOP + transformer.height_px + MARGIN_BOTTOM
        if sections:
            legend = dwg.g(id="Legend")
            legend_bottom = render_legend(dwg, legend, sections,
                                          MARGIN_LEFT + transformer.width_px + 15, MARGIN_TOP)
            dwg.add(legend)
            doc_height = max(doc_height, legend_bottom + MARGIN_BOTTOM)

        if self.title:
            dwg.add(dwg.text(self.title, insert=(MARGIN_LEFT, MARGIN_TOP - 12),
                             font_size=TITLE_FONT_SIZE, font_family="sans-serif",
                             font_weight="bold", fill="#222222"))

        doc_width = MARGIN_LEFT + transformer.width_px + right
        dwg["width"] = doc_width
        dwg["height"] = doc_height
        dwg.viewbox(0, 0, doc_width, doc_height)
        return dwg

    def render(self, path) -> Path:
        """Write the composed map to an SVG file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        dwg = self.to_drawing(str(path))
        dwg.save()
        print(f"  Saved map to {path}")
        return path

    def describe(self) -> List[str]:
        """One line per layer, in draw order."""
        lines = []
        for layer in self.layers:
            name = type(layer).__name__
            label = f" '{layer.label}'" if layer.label else ""
            if isinstance(layer, BasemapLayer):
                detail = f"{layer.image.width}x{layer.image.height} {layer.image.crs}"
            elif isinstance(layer, RasterFillLayer):
                detail = f"{len(layer.points)} cells {layer.crs}"
            else:
                detail = f"{len(layer.features)} features {normalize_crs(layer.features.crs)}"
            lines.append(f"{name}{label}: {detail}")
        return lines
