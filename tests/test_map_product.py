"""
Tests for map_product module.

Run with: pytest tests/test_map_product.py -v
"""

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest
from rasterio.transform import from_bounds
from shapely.geometry import Point, Polygon, box

from color_scales import ContinuousColorScale, bathymetry_scale
from errors import MissingCRSError
from map_product import (
    BasemapLayer, MapProduct, MarkerStyle, PointLayer, PolygonLayer, PolygonStyle,
    RasterFillLayer, warp_rgba,
)
from map_utils import BoundingRegion
from rasters import RasterImage


@pytest.fixture
def depth_points():
    """4x3 grid of depth samples over (-70, 42)-(-69.6, 42.3)."""
    xs, ys = np.meshgrid(np.arange(-69.95, -69.6, 0.1), np.arange(42.05, 42.3, 0.1))
    values = np.linspace(-400, -10, xs.size)
    return pd.DataFrame({"x": xs.ravel(), "y": ys.ravel(), "value": values})


@pytest.fixture
def utm_zones():
    """Zones in UTM 19N around (-69.8, 42.15)."""
    return gpd.GeoDataFrame(
        {"zone": ["North", "South"]},
        geometry=[box(428000, 4667000, 432000, 4671000), box(428000, 4660000, 432000, 4664000)],
        crs="EPSG:26919",
    )


@pytest.fixture
def sites():
    return gpd.GeoDataFrame(
        {"site": ["A", "B"]},
        geometry=[Point(-69.9, 42.1), Point(-69.7, 42.2)],
        crs="EPSG:4326",
    )


@pytest.fixture
def product(depth_points, utm_zones, sites):
    return (
        MapProduct()
        .with_raster_fill(depth_points, bathymetry_scale(), crs="EPSG:4326", label="Depth")
        .with_polygons(utm_zones, PolygonStyle(outline="#e41a1c", line_style="dashed"),
                       label="Zones")
        .with_points(sites, MarkerStyle(shape="triangle", fill="#ff4500"), label="Fishing site")
    )


class TestStyles:
    """Tests for style validation."""

    def test_unknown_line_style(self):
        with pytest.raises(ValueError):
            PolygonStyle(line_style="zigzag")

    def test_unknown_marker(self):
        with pytest.raises(ValueError):
            MarkerStyle(shape="hexagon")


class TestBuilder:
    """Tests for the immutable builder."""

    def test_each_call_returns_new_product(self, depth_points):
        base = MapProduct()
        filled = base.with_raster_fill(depth_points, bathymetry_scale(), crs=4326)
        assert base.layers == ()
        assert len(filled.layers) == 1
        assert isinstance(filled.layers[0], RasterFillLayer)

    def test_branching(self, product):
        """Test one intermediate product can be extended two ways."""
        a = product.with_title("A")
        b = product.with_legend(False)
        assert a.title == "A" and a.show_legend is True
        assert b.title == "" and b.show_legend is False
        assert a.layers == b.layers == product.layers

    def test_layer_order(self, product):
        kinds = [type(layer) for layer in product.layers]
        assert kinds == [RasterFillLayer, PolygonLayer, PointLayer]

    def test_raster_fill_requires_columns(self):
        with pytest.raises(ValueError):
            MapProduct().with_raster_fill(pd.DataFrame({"x": [0]}), bathymetry_scale(), crs=4326)

    def test_overlay_requires_crs(self):
        bare = gpd.GeoDataFrame(geometry=[box(0, 0, 1, 1)])
        with pytest.raises(MissingCRSError):
            MapProduct().with_polygons(bare)
        with pytest.raises(MissingCRSError):
            MapProduct().with_points(gpd.GeoDataFrame(geometry=[Point(0, 0)]))

    def test_limits(self):
        limited = MapProduct().with_limits(xlim=(-70, -69)).with_limits(ylim=(42, 43))
        assert limited.xlim == (-70, -69)
        assert limited.ylim == (42, 43)
        with pytest.raises(ValueError):
            MapProduct().with_limits(xlim=(1, 0))

    def test_last_limits_win(self):
        limited = MapProduct().with_limits((-70, -69), (42, 43)).with_limits((-71, -70), (41, 42))
        assert limited.xlim == (-71, -70)
        assert limited.ylim == (41, 42)

    def test_last_crs_wins(self):
        assert MapProduct().with_crs(3857).with_crs(26919).display_crs == "EPSG:26919"

    def test_raster_fill_cell_size(self):
        """Test a one-row fill keeps the source cell height."""
        row = pd.DataFrame({"x": [-70.0025, -70.0015, -70.0005], "y": [42.0] * 3,
                            "value": [-5.0, -10.0, -20.0]})
        product = MapProduct().with_raster_fill(row, bathymetry_scale(), crs=4326,
                                                cell_size=(0.001, 0.001))
        assert product.layers[0].cell_size == (0.001, 0.001)
        bounds = product.view_bounds()
        assert bounds.height == pytest.approx(0.001)
        assert bounds.width == pytest.approx(0.003)

    def test_with_region_transforms(self):
        region = BoundingRegion(-70, 42, -69, 43)
        merc = MapProduct().with_crs(3857).with_region(region)
        assert merc.display_crs == "EPSG:3857"
        assert merc.xlim[0] == pytest.approx(-7792364.36, rel=1e-6)

    def test_describe(self, product):
        lines = product.describe()
        assert lines[0] == "RasterFillLayer 'Depth': 12 cells EPSG:4326"
        assert lines[1] == "PolygonLayer 'Zones': 2 features EPSG:26919"


class TestViewBounds:
    """Tests for the visible extent."""

    def test_explicit_limits(self, product):
        bounds = product.with_limits((-70, -69), (42, 43)).view_bounds()
        assert bounds.as_tuple() == (-70, 42, -69, 43)

    def test_union_of_layers(self, product, depth_points):
        bounds = product.view_bounds()
        assert bounds.crs == "EPSG:4326"
        assert bounds.min_x <= depth_points["x"].min()
        assert bounds.max_y >= depth_points["y"].max()

    def test_no_layers(self):
        with pytest.raises(ValueError):
            MapProduct().view_bounds()


class TestLegend:
    """Tests for legend content."""

    def test_sections(self, product):
        sections = product.legend_sections()
        title, entries = sections[0]
        assert title == "Depth"
        assert len(entries) == 13
        assert sections[1][1] == [("line", "#e41a1c", "Zones"),
                                  ("triangle", "#ff4500", "Fishing site")]

    def test_unlabeled_overlays_omitted(self, utm_zones):
        assert MapProduct().with_polygons(utm_zones).legend_sections() == []


class TestRendering:
    """Tests for SVG composition."""

    def test_layer_groups_in_draw_order(self, product):
        dwg = product.to_drawing()
        ids = [getattr(e, "attribs", {}).get("id") for e in dwg.elements]
        assert "Map_Layers" in ids
        assert "Axes" in ids
        assert "Legend" in ids
        content = next(e for e in dwg.elements if e.attribs.get("id") == "Map_Layers")
        assert [g["id"] for g in content.elements] == [
            "Layer_00_RasterFillLayer", "Layer_01_PolygonLayer", "Layer_02_PointLayer",
        ]
        assert len(content.elements[2].elements) == 2

    def test_no_legend(self, product):
        dwg = product.with_legend(False).to_drawing()
        ids = [getattr(e, "attribs", {}).get("id") for e in dwg.elements]
        assert "Legend" not in ids

    def test_axis_labels_hidden(self, product):
        """Test tick labels are drawn only when axis labels are shown."""
        def axis_texts(p):
            dwg = p.with_limits((-70, -69), (42, 43)).to_drawing()
            axes = next(e for e in dwg.elements if getattr(e, "attribs", {}).get("id") == "Axes")
            return [e for e in axes.elements if e.elementname == "text"]

        assert len(axis_texts(product)) > 0
        assert axis_texts(product.with_axis_labels(False)) == []

    def test_invalid_polygons_repaired_before_drawing(self):
        """Test a self-intersecting ring is drawn as its repaired parts."""
        bow_tie = Polygon([(0, 0), (1, 1), (1, 0), (0, 1), (0, 0)])
        gdf = gpd.GeoDataFrame(geometry=[bow_tie], crs="EPSG:4326")
        dwg = (MapProduct().with_polygons(gdf, PolygonStyle(fill="#ff0000"))
               .with_limits((-0.5, 1.5), (-0.5, 1.5)).to_drawing())
        content = next(e for e in dwg.elements if e.attribs.get("id") == "Map_Layers")
        paths = content.elements[0].elements
        assert len(paths) == 2
        assert not gdf.geometry.iloc[0].is_valid

    def test_collapsed_polygons_not_drawn(self):
        """Test a zero-area ring that cannot be repaired emits no path."""
        flat = Polygon([(0, 0), (1, 1), (2, 2), (0, 0)])
        gdf = gpd.GeoDataFrame(geometry=[flat], crs="EPSG:4326")
        svg = (MapProduct().with_polygons(gdf, PolygonStyle(fill="#ff0000"))
               .with_limits((-1, 3), (-1, 3)).to_drawing().tostring())
        assert svg.count("<path") == 0

    def test_geographic_aspect(self, product):
        """Test document height follows the 1/cos(latitude) stretch."""
        dwg = product.with_limits((-70, -69), (42, 43)).with_legend(False).to_drawing()
        panel_height = dwg["height"] - 40 - 40
        assert panel_height == pytest.approx(800 / np.cos(np.radians(42.5)))

    def test_render_writes_svg(self, product, tmp_path):
        path = product.with_title("Fishing zones").render(tmp_path / "out" / "map.svg")
        text = path.read_text()
        assert text.startswith("<?xml")
        assert "Fishing zones" in text
        assert "data:image/png;base64," in text

    def test_mercator_basemap_in_geographic_display(self, tmp_path):
        """Test an RGB basemap in EPSG:3857 is warped for a lon/lat display."""
        merc = BoundingRegion(-70.62, 42.98, -70.60, 43.0).to_crs("EPSG:3857")
        data = np.full((64, 64, 3), 120, dtype=np.uint8)
        image = RasterImage(data, from_bounds(*merc.as_tuple(), 64, 64), "EPSG:3857")
        product = MapProduct().with_basemap(image)
        assert isinstance(product.layers[0], BasemapLayer)
        bounds = product.view_bounds()
        assert bounds.min_x == pytest.approx(-70.62, abs=1e-6)
        assert product.render(tmp_path / "sat.svg").exists()

    def test_scalar_basemap_colored(self):
        data = np.linspace(0, 50, 16, dtype=np.float32).reshape(4, 4)
        image = RasterImage(data, from_bounds(-70, 42, -69, 43, 4, 4), "EPSG:4326")
        scale = ContinuousColorScale.for_values(("#000000", "#ffffff"), data)
        dwg = MapProduct().with_basemap(image, scale=scale, label="Elevation").to_drawing()
        assert dwg["height"] > 0


class TestWarpRgba:
    """Tests for warp_rgba."""

    def test_same_crs_noop(self):
        rgba = np.zeros((2, 2, 4), dtype=np.uint8)
        out, extent = warp_rgba(rgba, (0, 0, 1, 1), "EPSG:4326", "EPSG:4326")
        assert out is rgba
        assert extent == (0, 0, 1, 1)

    def test_to_mercator(self):
        rgba = np.full((10, 10, 4), 255, dtype=np.uint8)
        out, extent = warp_rgba(rgba, (-70, 42, -69, 43), "EPSG:4326", "EPSG:3857")
        assert out.shape[2] == 4
        assert extent[0] == pytest.approx(-7792364.36, rel=1e-4)
        assert out[out.shape[0] // 2, out.shape[1] // 2, 3] == 255
