"""Tests for sensor fusion, fallback and median compositing."""

import numpy as np
import pytest

from rivermask.core.composite import (
    LANDSAT5_C2_L2,
    LANDSAT7_C2_L2,
    S2_SR_HARMONIZED,
    S2_TOA_HARMONIZED,
    SensorSource,
    build_composite,
    landsat_sources,
    select_sources,
    sentinel2_hybrid_sources,
    sentinel2_sr_sources,
)
from rivermask.core.engine import CollectionRef, InMemoryRasterEngine
from rivermask.domain.errors import ConfigurationError
from rivermask.domain.masking import no_mask
from rivermask.domain.models import CompositeSource, TimeWindow
from rivermask.domain.reflectance import CANONICAL_BANDS

S2_BANDS = ("B2", "B3", "B4", "B8", "B11", "B12")
TM_BANDS = ("SR_B1", "SR_B2", "SR_B3", "SR_B4", "SR_B5", "SR_B7")


@pytest.fixture
def window():
    return TimeWindow.from_inclusive("2024-08-01", "2024-10-31")


@pytest.fixture
def s2(make_image, grid):
    """Factory for Sentinel-2 scenes with a flat DN and a QA band."""
    def _make(dn, qa_band, qa_value=0, date="2024-08-15", cloud=10.0, image_id="s2"):
        bands = {b: np.full(grid.shape, float(dn)) for b in S2_BANDS}
        bands[qa_band] = np.full(grid.shape, float(qa_value))
        return make_image(bands, date=date, image_id=image_id, cloud_cover=cloud)
    return _make


@pytest.fixture
def tm(make_image, grid):
    def _make(dn, date="2024-08-15", image_id="tm"):
        bands = {b: np.full(grid.shape, float(dn)) for b in TM_BANDS}
        bands["QA_PIXEL"] = np.zeros(grid.shape)
        return make_image(bands, date=date, image_id=image_id)
    return _make


class RecordingEngine(InMemoryRasterEngine):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls = []

    def evaluate(self, expr):
        self.calls.append(expr)
        return super().evaluate(expr)


class TestSelectSources:

    def test_primary_with_secondary_merges(self):
        sel = select_sources(CollectionRef("A"), 2, CollectionRef("B"), 3)
        assert sel.source == CompositeSource.PRIMARY
        assert not sel.fallback_used
        assert sel.expression.left == CollectionRef("A")

    def test_primary_only(self):
        sel = select_sources(CollectionRef("A"), 2, CollectionRef("B"), 0)
        assert sel.source == CompositeSource.PRIMARY
        assert sel.expression == CollectionRef("A")

    def test_fallback(self):
        sel = select_sources(CollectionRef("A"), 0, CollectionRef("B"), 1)
        assert sel.source == CompositeSource.SECONDARY
        assert sel.fallback_used
        assert sel.expression == CollectionRef("B")

    def test_none(self):
        sel = select_sources(CollectionRef("A"), 0, None, 0)
        assert sel.source == CompositeSource.NONE
        assert sel.expression is None


class TestBuildComposite:

    def test_fallback_is_secondary_only_median(self, grid, region, window, s2):
        eng = InMemoryRasterEngine(grid, collections={
            S2_SR_HARMONIZED: [],
            S2_TOA_HARMONIZED: [
                s2(1000, "QA60", image_id="toa_a"),
                s2(3000, "QA60", image_id="toa_b"),
            ],
        })
        result = build_composite(eng, region, window, sentinel2_hybrid_sources())
        assert result.source == CompositeSource.SECONDARY
        assert result.fallback_used
        assert result.image_counts == {S2_TOA_HARMONIZED: 2}
        assert result.image.band("green")[0, 0] == pytest.approx(0.2)

    def test_all_empty_is_none(self, grid, region, window):
        eng = InMemoryRasterEngine(grid, collections={
            S2_SR_HARMONIZED: [], S2_TOA_HARMONIZED: [],
        })
        result = build_composite(eng, region, window, sentinel2_hybrid_sources())
        assert result.source == CompositeSource.NONE
        assert result.image is None
        assert result.is_empty
        assert result.n_images == 0

    def test_primary_merges_secondary(self, grid, region, window, s2):
        eng = InMemoryRasterEngine(grid, collections={
            S2_SR_HARMONIZED: [s2(1000, "SCL", 4, image_id="sr")],
            S2_TOA_HARMONIZED: [s2(2000, "QA60", image_id="toa_a"),
                                s2(3000, "QA60", image_id="toa_b")],
        })
        result = build_composite(eng, region, window, sentinel2_hybrid_sources())
        assert result.source == CompositeSource.PRIMARY
        assert not result.fallback_used
        assert result.n_images == 3
        assert result.image.band("green")[0, 0] == pytest.approx(0.2)

    def test_cloud_cover_filter(self, grid, region, window, s2):
        eng = InMemoryRasterEngine(grid, collections={
            S2_SR_HARMONIZED: [s2(1000, "SCL", 4, cloud=95.0)],
            S2_TOA_HARMONIZED: [s2(2000, "QA60", cloud=20.0)],
        })
        result = build_composite(eng, region, window, sentinel2_hybrid_sources(80))
        assert result.source == CompositeSource.SECONDARY

    def test_cloudy_pixels_excluded(self, grid, region, window, s2):
        cloudy = s2(9000, "SCL", 4, image_id="cloudy")
        cloudy.bands["SCL"][:2, :] = 9
        clear = s2(1000, "SCL", 4, image_id="clear", date="2024-09-01")
        eng = InMemoryRasterEngine(grid, collections={"COPERNICUS/S2_SR": [cloudy, clear]})
        result = build_composite(eng, region, window, sentinel2_sr_sources())
        assert result.image.band("green")[0, 0] == pytest.approx(0.1)
        assert result.image.band("green")[5, 5] == pytest.approx(0.5)

    def test_landsat_peers_merged(self, grid, region, window, tm):
        eng = InMemoryRasterEngine(grid, collections={
            LANDSAT5_C2_L2: [tm(10000, image_id="l5")],
            LANDSAT7_C2_L2: [tm(20000, image_id="l7")],
        })
        result = build_composite(eng, region, window, landsat_sources())
        assert result.source == CompositeSource.PRIMARY
        assert result.image_counts == {LANDSAT5_C2_L2: 1, LANDSAT7_C2_L2: 1}
        # median of 0.075 and 0.35
        assert result.image.band("blue")[0, 0] == pytest.approx(0.2125)

    def test_output_schema_canonical(self, engine, region, window):
        result = build_composite(engine, region, window, sentinel2_sr_sources())
        assert result.image.band_names == CANONICAL_BANDS
        assert result.n_images == 3

    def test_unknown_sensor_before_engine(self, grid, region, window):
        eng = RecordingEngine(grid)
        sources = (SensorSource("X/Y", "NOT_A_SENSOR", no_mask),)
        with pytest.raises(ConfigurationError, match="Unrecognized sensor"):
            build_composite(eng, region, window, sources)
        assert eng.calls == []

    def test_no_sources(self, engine, region, window):
        with pytest.raises(ConfigurationError):
            build_composite(engine, region, window, ())

    def test_window_outside_archive(self, engine, region):
        winter = TimeWindow.from_inclusive("2024-01-01", "2024-04-30")
        result = build_composite(engine, region, winter, sentinel2_sr_sources())
        assert result.is_empty
