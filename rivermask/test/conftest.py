"""Test configuration for RiverMask.

Everything runs on a synthetic 20 x 20 grid of 10 m pixels in UTM 16N
with a north-south "river" four columns wide. No network, no GDAL.
"""

import datetime

import numpy as np
import pytest

from rivermask.core.classify import DYNAMIC_WORLD, JRC_GSW
from rivermask.core.composite import S2_SR
from rivermask.core.config import config_from_dict
from rivermask.core.engine import InMemoryRasterEngine
from rivermask.domain.models import GridSpec, ImageMetadata, RasterImage
from rivermask.domain.region import Region

EPSG = 32616
RIVER_COLS = slice(8, 12)
SQUARE = [[0, 0], [200, 0], [200, 200], [0, 200]]


@pytest.fixture
def grid():
    return GridSpec((0.0, 10.0, 200.0, -10.0), 20, 20, EPSG)


@pytest.fixture
def region():
    return Region.from_polygon("TestRiver", SQUARE, EPSG)


@pytest.fixture
def river(grid):
    """Boolean truth: True on the river columns."""
    water = np.zeros(grid.shape, dtype=bool)
    water[:, RIVER_COLS] = True
    return water


@pytest.fixture
def make_image(grid):
    """Factory: make_image({"band": array}, date="2024-08-15", ...)."""
    def _make(bands, date=None, sensor="", image_id="img", valid=None,
              cloud_cover=None, properties=None):
        metadata = ImageMetadata(
            image_id=image_id,
            capture_date=datetime.date.fromisoformat(date) if date else None,
            sensor_id=sensor,
            cloud_cover=cloud_cover,
            properties=dict(properties or {}),
        )
        if valid is None:
            valid = np.ones(grid.shape, dtype=bool)
        return RasterImage(dict(bands), valid, grid, metadata)
    return _make


@pytest.fixture
def s2_dn(river):
    """Sentinel-2 L2A digital numbers: dark water, bright vegetated banks."""
    def pick(water_dn, land_dn):
        return np.where(river, water_dn, land_dn).astype(np.float64)
    return {
        "B2": pick(600, 700),
        "B3": pick(800, 900),
        "B4": pick(500, 800),
        "B8": pick(200, 3000),
        "B11": pick(100, 2500),
        "B12": pick(50, 1500),
        "SCL": pick(6, 4),
    }


@pytest.fixture
def s2_images(make_image, s2_dn):
    dates = ["2024-08-05", "2024-09-10", "2024-10-20"]
    return [
        make_image(s2_dn, date=d, sensor="S2_SR", image_id=f"s2_{i}", cloud_cover=10.0)
        for i, d in enumerate(dates)
    ]


@pytest.fixture
def dw_images(make_image, river):
    prob = np.where(river, 0.8, 0.1)
    dates = ["2024-08-02", "2024-09-01", "2024-10-31"]
    return [
        make_image({"water": prob.copy()}, date=d, image_id=f"dw_{i}")
        for i, d in enumerate(dates)
    ]


@pytest.fixture
def jrc_image(make_image, river):
    occurrence = np.where(river, 90.0, 0.0)
    return make_image({"occurrence": occurrence}, image_id=JRC_GSW)


@pytest.fixture
def engine(grid, dw_images, s2_images, jrc_image):
    return InMemoryRasterEngine(
        grid,
        collections={DYNAMIC_WORLD: dw_images, S2_SR: s2_images},
        images={JRC_GSW: jrc_image},
    )


@pytest.fixture
def raw_config():
    return {
        "regions": {"TestRiver": {"polygon": SQUARE, "crs_epsg": EPSG}},
        "years": [2024],
        "seasons": ["dry"],
        "season_templates": {"dry": ["08-01", "10-31"], "wet": ["01-01", "04-30"]},
        "samples_per_class": 30,
        "seed": 42,
        "retry_delay_s": 0.0,
    }


@pytest.fixture
def run_config(raw_config):
    return config_from_dict(raw_config)


@pytest.fixture
def simple_2class_matrix():
    """Simple 2-class confusion matrix for basic tests."""
    # 80% overall accuracy
    # Reference=rows, Predicted=cols
    #          Predicted
    #            C0   C1
    # Ref  R0 [ 40,  10 ]
    #      R1 [ 10,  40 ]
    return np.array([[40, 10], [10, 40]], dtype=np.int64)


@pytest.fixture
def perfect_matrix():
    """Perfect 3-class confusion matrix (100% accuracy)."""
    return np.array([[50, 0, 0], [0, 30, 0], [0, 0, 20]], dtype=np.int64)


@pytest.fixture
def river_matrix():
    """tp=80, fp=10, fn=5, tn=905 in the rows = reference layout."""
    return np.array([[905, 10], [5, 80]], dtype=np.int64)
