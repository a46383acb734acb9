"""
Shared fixtures: fake HTTP responses and in-memory image payloads.

No test touches the network; fetchers are fed these payloads through
monkeypatched request functions.
"""

from io import BytesIO

import numpy as np
import pytest
from PIL import Image
from rasterio.io import MemoryFile
from rasterio.transform import from_bounds


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, content=b"", status_code=200, content_type="image/png", text=""):
        self.content = content
        self.status_code = status_code
        self.headers = {"Content-Type": content_type}
        self.text = text


@pytest.fixture
def fake_response():
    return FakeResponse


@pytest.fixture
def png_bytes():
    """Encode a (rows, cols, 3) uint8 array as PNG bytes."""
    def encode(rgb):
        buffer = BytesIO()
        Image.fromarray(np.asarray(rgb, dtype=np.uint8)).save(buffer, format="PNG")
        return buffer.getvalue()
    return encode


@pytest.fixture
def terrarium_png(png_bytes):
    """Encode elevations in meters as a Terrarium PNG tile."""
    def encode(elevation):
        v = np.asarray(elevation, dtype=np.float64) + 32768
        r = np.floor(v / 256)
        g = np.floor(v - r * 256)
        b = np.round((v - r * 256 - g) * 256).clip(0, 255)
        return png_bytes(np.stack([r, g, b], axis=-1).astype(np.uint8))
    return encode


@pytest.fixture
def geotiff_bytes():
    """Write a single-band float32 GeoTIFF into memory."""
    def encode(data, bounds, crs="EPSG:4326", nodata=None):
        data = np.asarray(data, dtype=np.float32)
        height, width = data.shape
        profile = {
            "driver": "GTiff",
            "height": height,
            "width": width,
            "count": 1,
            "dtype": "float32",
            "transform": from_bounds(*bounds, width, height),
        }
        if crs is not None:
            profile["crs"] = crs
        if nodata is not None:
            profile["nodata"] = nodata
        with MemoryFile() as memfile:
            with memfile.open(**profile) as dataset:
                dataset.write(data, 1)
            return bytes(memfile.getbuffer())
    return encode
