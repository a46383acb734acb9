"""
Rendering helper functions for map SVG generation.

Each function draws one kind of content (polygons, point markers,
embedded raster images, axes, legend) into an svgwrite group, using a
coordinate transform function (x, y) -> (svg_x, svg_y).
"""

import base64
import math
from io import BytesIO
from typing import List, Tuple, Callable, Optional

import numpy as np
from PIL import Image

LINE_DASHES = {
    "solid": None,
    "dashed": "6,3",
    "dotted": "1,3",
    "dotdash": "1,3,6,3",
    "longdash": "12,4",
}

AXIS_COLOR = "#333333"
AXIS_FONT_SIZE = 11
TICK_LENGTH = 5
LEGEND_FONT_SIZE = 11
LEGEND_SWATCH = 12
LEGEND_LINE_HEIGHT = 16


def dash_pattern(line_style: str) -> Optional[str]:
    """SVG stroke-dasharray for a named line style."""
    if line_style not in LINE_DASHES:
        raise ValueError(f"Unknown line style {line_style!r}; expected one of {list(LINE_DASHES)}")
    return LINE_DASHES[line_style]


def polygon_path_data(poly, to_svg: Callable) -> str:
    """SVG path data for a polygon, holes included.

    Args:
        poly: shapely Polygon
        to_svg: Coordinate transform function

    Returns:
        Path "d" string with one closed subpath per ring
    """
    commands = []
    for ring in [poly.exterior] + list(poly.interiors):
        points = [to_svg(x, y) for x, y in ring.coords]
        if len(points) < 3:
            continue
        head = f"M{points[0][0]:.2f},{points[0][1]:.2f}"
        body = " ".join(f"L{x:.2f},{y:.2f}" for x, y in points[1:])
        commands.append(f"{head} {body} Z")
    return " ".join(commands)


def render_polygons(
    gdf,
    layer,
    dwg,
    fill_color: Optional[str],
    to_svg: Callable,
    stroke_color: Optional[str] = None,
    stroke_width: float = 0,
    dash: Optional[str] = None,
    opacity: float = 1.0
) -> int:
    """Render polygon features to an SVG layer.

    Args:
        gdf: GeoDataFrame containing polygon geometries
        layer: SVG group to add polygons to
        dwg: svgwrite Drawing object
        fill_color: Fill color, or None for outline only
        to_svg: Coordinate transform function (x, y) -> (svg_x, svg_y)
        stroke_color: Optional outline color
        stroke_width: Outline width in SVG units
        dash: Optional dash pattern (e.g., "6,3")
        opacity: Fill opacity

    Returns:
        Number of polygons rendered
    """
    if gdf is None or gdf.empty:
        return 0

    count = 0
    for geom in gdf.geometry:
        if geom is None:
            continue

        if geom.geom_type == "Polygon":
            polygons = [geom]
        elif geom.geom_type == "MultiPolygon":
            polygons = list(geom.geoms)
        else:
            continue

        for poly in polygons:
            if poly.is_empty:
                continue

            props = {
                'd': polygon_path_data(poly, to_svg),
                'fill': fill_color or 'none',
                'fill_rule': 'evenodd',
            }
            if fill_color and opacity < 1:
                props['fill_opacity'] = opacity

            if stroke_color:
                props['stroke'] = stroke_color
                props['stroke_width'] = stroke_width
                if dash:
                    props['stroke_dasharray'] = dash

            layer.add(dwg.path(**props))
            count += 1

    return count


def marker_element(dwg, shape: str, cx: float, cy: float, size: float, **style):
    """Create one SVG marker element centered on (cx, cy)."""
    half = size / 2
    if shape == "circle":
        return dwg.circle(center=(cx, cy), r=half, **style)
    if shape == "square":
        return dwg.rect(insert=(cx - half, cy - half), size=(size, size), **style)
    if shape == "triangle":
        h = size * math.sqrt(3) / 2
        points = [(cx, cy - 2 * h / 3), (cx - half, cy + h / 3), (cx + half, cy + h / 3)]
        return dwg.polygon(points=points, **style)
    raise ValueError(f"Unknown marker shape {shape!r}")


def render_points(
    gdf,
    layer,
    dwg,
    to_svg: Callable,
    shape: str = "circle",
    fill_color: str = "#ffffff",
    stroke_color: Optional[str] = "#000000",
    size: float = 6,
    stroke_width: float = 0.75
) -> int:
    """Render point features as markers.

    Multi-point geometries get one marker per member point.

    Returns:
        Number of markers rendered
    """
    if gdf is None or gdf.empty:
        return 0

    style = {'fill': fill_color}
    if stroke_color:
        style['stroke'] = stroke_color
        style['stroke_width'] = stroke_width

    count = 0
    for geom in gdf.geometry:
        if geom is None or geom.is_empty:
            continue
        if geom.geom_type == "Point":
            points = [geom]
        elif geom.geom_type == "MultiPoint":
            points = list(geom.geoms)
        else:
            continue
        for point in points:
            sx, sy = to_svg(point.x, point.y)
            layer.add(marker_element(dwg, shape, sx, sy, size, **style))
            count += 1
    return count


def encode_png(pixels: np.ndarray) -> str:
    """Base64 PNG for a (rows, cols, 3) RGB or (rows, cols, 4) RGBA uint8 array."""
    buffer = BytesIO()
    Image.fromarray(np.ascontiguousarray(pixels, dtype=np.uint8)).save(buffer, format="PNG")
    return base64.b64encode(buffer.getvalue()).decode("utf-8")


def render_image(
    pixels: np.ndarray,
    extent: Tuple[float, float, float, float],
    layer,
    dwg,
    to_svg: Callable,
    opacity: float = 1.0
):
    """Embed a raster image stretched over its extent.

    Args:
        pixels: RGB or RGBA uint8 array, north-up
        extent: (min_x, min_y, max_x, max_y) in display coordinates
        layer: SVG group to add the image to
        dwg: svgwrite Drawing object
        to_svg: Coordinate transform function
        opacity: Image opacity

    Returns:
        The created image element
    """
    min_x, min_y, max_x, max_y = extent
    left, top = to_svg(min_x, max_y)
    right, bottom = to_svg(max_x, min_y)
    image = dwg.image(
        href=f"data:image/png;base64,{encode_png(pixels)}",
        insert=(left, top),
        size=(right - left, bottom - top),
    )
    image['preserveAspectRatio'] = 'none'
    if opacity < 1:
        image['opacity'] = opacity
    layer.add(image)
    return image


def nice_ticks(low: float, high: float, target: int = 5) -> List[float]:
    """Round tick positions covering [low, high].

    Steps are 1, 2, 2.5 or 5 times a power of ten.
    """
    if not high > low:
        return []
    raw_step = (high - low) / max(target, 1)
    magnitude = 10 ** math.floor(math.log10(raw_step))
    step = magnitude * 10
    for multiple in (1, 2, 2.5, 5, 10):
        if multiple * magnitude >= raw_step:
            step = multiple * magnitude
            break
    first = math.ceil(low / step) * step
    ticks = []
    value = first
    while value <= high + step * 1e-9:
        ticks.append(round(value, 10))
        value += step
    return ticks


def format_coordinate(value: float, axis: str, geographic: bool = True) -> str:
    """Axis label text: hemisphere-suffixed degrees or plain projected units."""
    if not geographic:
        return f"{value:,.0f}"
    if axis == "x":
        hemisphere = "E" if value > 0 else "W" if value < 0 else ""
    else:
        hemisphere = "N" if value > 0 else "S" if value < 0 else ""
    text = f"{abs(value):.4f}".rstrip("0").rstrip(".")
    return f"{text}°{hemisphere}"


def render_axes(dwg, layer, transformer, geographic: bool = True, show_labels: bool = True) -> int:
    """Draw the panel frame with tick marks and coordinate labels.

    Returns:
        Number of ticks drawn
    """
    bounds = transformer.map_bounds
    left, top = transformer.offset_x, transformer.offset_y
    width, height = transformer.width_px, transformer.height_px

    layer.add(dwg.rect(insert=(left, top), size=(width, height),
                       fill='none', stroke=AXIS_COLOR, stroke_width=1))
    if not show_labels:
        return 0

    count = 0
    for x in nice_ticks(bounds.min_x, bounds.max_x):
        sx, _ = transformer.to_svg(x, bounds.min_y)
        bottom = top + height
        layer.add(dwg.line((sx, bottom), (sx, bottom + TICK_LENGTH), stroke=AXIS_COLOR))
        layer.add(dwg.text(format_coordinate(x, "x", geographic),
                           insert=(sx, bottom + TICK_LENGTH + AXIS_FONT_SIZE),
                           text_anchor="middle", font_size=AXIS_FONT_SIZE,
                           font_family="sans-serif", fill=AXIS_COLOR))
        count += 1

    for y in nice_ticks(bounds.min_y, bounds.max_y):
        _, sy = transformer.to_svg(bounds.min_x, y)
        layer.add(dwg.line((left - TICK_LENGTH, sy), (left, sy), stroke=AXIS_COLOR))
        layer.add(dwg.text(format_coordinate(y, "y", geographic),
                           insert=(left - TICK_LENGTH - 2, sy),
                           text_anchor="end", dominant_baseline="middle",
                           font_size=AXIS_FONT_SIZE, font_family="sans-serif",
                           fill=AXIS_COLOR))
        count += 1
    return count


def render_legend(
    dwg,
    layer,
    sections: List[Tuple[str, List[Tuple[str, str, str]]]],
    x: float,
    y: float
) -> float:
    """Draw legend sections stacked downward from (x, y).

    Args:
        dwg: svgwrite Drawing object
        layer: SVG group to add the legend to
        sections: (title, entries) pairs; each entry is (kind, color, label)
            where kind is "fill", "line", or a marker shape
        x: Left edge
        y: Top edge

    Returns:
        Y coordinate below the last entry
    """
    for title, entries in sections:
        if title:
            layer.add(dwg.text(title, insert=(x, y + LEGEND_FONT_SIZE),
                               font_size=LEGEND_FONT_SIZE, font_weight="bold",
                               font_family="sans-serif", fill=AXIS_COLOR))
            y += LEGEND_LINE_HEIGHT
        for kind, color, label in entries:
            cy = y + LEGEND_SWATCH / 2
            if kind == "fill":
                layer.add(dwg.rect(insert=(x, y), size=(LEGEND_SWATCH, LEGEND_SWATCH),
                                   fill=color, stroke=AXIS_COLOR, stroke_width=0.5))
            elif kind == "line":
                layer.add(dwg.line((x, cy), (x + LEGEND_SWATCH, cy), stroke=color, stroke_width=2))
            else:
                layer.add(marker_element(dwg, kind, x + LEGEND_SWATCH / 2, cy, LEGEND_SWATCH * 0.75,
                                         fill=color, stroke=AXIS_COLOR, stroke_width=0.5))
            layer.add(dwg.text(label, insert=(x + LEGEND_SWATCH + 6, cy),
                               dominant_baseline="middle", font_size=LEGEND_FONT_SIZE,
                               font_family="sans-serif", fill=AXIS_COLOR))
            y += LEGEND_LINE_HEIGHT
        y += LEGEND_LINE_HEIGHT / 2
    return y
