"""
Tests for render_helpers module.

Run with: pytest tests/test_render_helpers.py -v
"""

import base64

import geopandas as gpd
import numpy as np
import pytest
import svgwrite
from shapely.geometry import LineString, MultiPolygon, Point, Polygon

from map_utils import BoundingRegion, CoordinateTransformer
from render_helpers import (
    dash_pattern, encode_png, format_coordinate, marker_element, nice_ticks,
    polygon_path_data, render_axes, render_image, render_legend, render_points, render_polygons,
)


def identity(x, y):
    return (x, y)


@pytest.fixture
def dwg():
    return svgwrite.Drawing("test.svg")


class TestDashPattern:
    """Tests for dash_pattern function."""

    def test_solid(self):
        assert dash_pattern("solid") is None

    def test_dashed(self):
        assert dash_pattern("dashed") == "6,3"

    def test_unknown_style(self):
        with pytest.raises(ValueError):
            dash_pattern("wavy")


class TestPolygonPathData:
    """Tests for polygon_path_data function."""

    def test_simple_square(self):
        """Test one closed subpath for a polygon without holes."""
        poly = Polygon([(0, 0), (10, 0), (10, 10), (0, 10)])
        d = polygon_path_data(poly, identity)
        assert d.startswith("M0.00,0.00")
        assert d.count("M") == 1
        assert d.endswith("Z")

    def test_polygon_with_hole(self):
        """Test holes become extra subpaths."""
        poly = Polygon(
            [(0, 0), (10, 0), (10, 10), (0, 10)],
            [[(2, 2), (4, 2), (4, 4), (2, 4)]],
        )
        d = polygon_path_data(poly, identity)
        assert d.count("M") == 2
        assert d.count("Z") == 2


class TestRenderPolygons:
    """Tests for render_polygons function."""

    def test_renders_each_part(self, dwg):
        """Test multipolygon parts are rendered separately."""
        square = Polygon([(0, 0), (1, 0), (1, 1), (0, 1)])
        other = Polygon([(2, 2), (3, 2), (3, 3), (2, 3)])
        gdf = gpd.GeoDataFrame(geometry=[square, MultiPolygon([square, other])])
        group = dwg.g()
        count = render_polygons(gdf, group, dwg, "#ff0000", identity)
        assert count == 3
        assert len(group.elements) == 3

    def test_outline_only(self, dwg):
        """Test a missing fill renders as fill none with a stroke."""
        gdf = gpd.GeoDataFrame(geometry=[Polygon([(0, 0), (1, 0), (1, 1)])])
        group = dwg.g()
        render_polygons(gdf, group, dwg, None, identity,
                        stroke_color="#000000", stroke_width=2, dash="6,3")
        path = group.elements[0]
        assert path['fill'] == 'none'
        assert path['stroke'] == '#000000'
        assert path['stroke-dasharray'] == '6,3'

    def test_skips_non_polygons(self, dwg):
        gdf = gpd.GeoDataFrame(geometry=[Point(0, 0), LineString([(0, 0), (1, 1)])])
        assert render_polygons(gdf, dwg.g(), dwg, "#ff0000", identity) == 0

    def test_empty(self, dwg):
        assert render_polygons(gpd.GeoDataFrame(geometry=[]), dwg.g(), dwg, "#fff", identity) == 0


class TestMarkers:
    """Tests for marker_element and render_points."""

    @pytest.mark.parametrize("shape", ["circle", "square", "triangle"])
    def test_marker_shapes(self, dwg, shape):
        element = marker_element(dwg, shape, 10, 10, 6, fill="#ffffff")
        assert element['fill'] == '#ffffff'

    def test_unknown_shape(self, dwg):
        with pytest.raises(ValueError):
            marker_element(dwg, "star", 0, 0, 5)

    def test_render_points(self, dwg):
        """Test one marker per point, multipoints expanded."""
        gdf = gpd.GeoDataFrame(geometry=[Point(1, 1), Point(2, 2), None])
        group = dwg.g()
        count = render_points(gdf, group, dwg, identity, shape="square", fill_color="#ffd700")
        assert count == 2
        assert len(group.elements) == 2


class TestRenderImage:
    """Tests for encode_png and render_image."""

    def test_encode_png(self):
        encoded = encode_png(np.zeros((4, 5, 4), dtype=np.uint8))
        assert base64.b64decode(encoded).startswith(b"\x89PNG")

    def test_image_stretched_over_extent(self, dwg):
        """Test image placement from the top-left corner of its extent."""
        group = dwg.g()
        image = render_image(np.zeros((2, 2, 3), dtype=np.uint8), (0, 0, 10, 20),
                             group, dwg, lambda x, y: (x, 100 - y), opacity=0.5)
        assert image['x'] == 0
        assert image['y'] == 80
        assert image['width'] == 10
        assert image['height'] == 20
        assert image['preserveAspectRatio'] == 'none'
        assert image['opacity'] == 0.5


class TestNiceTicks:
    """Tests for nice_ticks function."""

    def test_unit_range(self):
        assert nice_ticks(0, 10) == [0, 2, 4, 6, 8, 10]

    def test_ticks_within_range(self):
        ticks = nice_ticks(-70.619, -70.6094)
        assert len(ticks) >= 2
        assert all(-70.619 <= t <= -70.6094 for t in ticks)

    def test_degenerate_range(self):
        assert nice_ticks(5, 5) == []


class TestFormatCoordinate:
    """Tests for format_coordinate function."""

    def test_west_longitude(self):
        assert format_coordinate(-70.61, "x") == "70.61°W"

    def test_north_latitude(self):
        assert format_coordinate(42.5, "y") == "42.5°N"

    def test_projected(self):
        assert format_coordinate(4750000, "y", geographic=False) == "4,750,000"


class TestAxesAndLegend:
    """Tests for render_axes and render_legend."""

    def test_axes_ticks(self, dwg):
        bounds = BoundingRegion(0, 0, 10, 10, "EPSG:3857")
        transformer = CoordinateTransformer("EPSG:3857", bounds, 100)
        group = dwg.g()
        assert render_axes(dwg, group, transformer, geographic=False) == 12

    def test_axes_without_labels(self, dwg):
        bounds = BoundingRegion(0, 0, 10, 10, "EPSG:3857")
        transformer = CoordinateTransformer("EPSG:3857", bounds, 100)
        group = dwg.g()
        assert render_axes(dwg, group, transformer, show_labels=False) == 0
        assert len(group.elements) == 1

    def test_legend_height(self, dwg):
        """Test legend stacks entries downward."""
        sections = [
            ("Depth", [("fill", "#000000", "a"), ("fill", "#ffffff", "b")]),
            ("", [("circle", "#ffd700", "Nest"), ("line", "#ff0000", "Zone")]),
        ]
        group = dwg.g()
        bottom = render_legend(dwg, group, sections, 0, 0)
        # title + 4 entries + 2 section gaps
        assert bottom == pytest.approx(16 + 4 * 16 + 2 * 8)
