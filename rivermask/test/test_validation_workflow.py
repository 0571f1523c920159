"""Tests for sample-based validation of a predicted mask."""

import numpy as np
import pytest

from rivermask.core.validation_workflow import samples_to_records, validate
from rivermask.domain.errors import ConfigurationError, DegenerateSampleError
from rivermask.domain.models import GridSpec, ImageMetadata, RasterImage
from rivermask.domain.water_index import MASK_BAND


@pytest.fixture
def mask_of(make_image):
    def _mask(values, valid=None):
        return make_image({MASK_BAND: np.asarray(values, dtype=np.uint8)}, valid=valid)
    return _mask


class TestValidate:

    def test_perfect_prediction(self, region, river, mask_of):
        truth = mask_of(river)
        samples, acc = validate(region, truth, truth, samples_per_class=30)
        assert samples.size == 60
        assert acc.overall_accuracy == 1.0
        assert acc.kappa == pytest.approx(1.0)
        assert acc.f1 == 1.0 and acc.iou == 1.0

    def test_cells_sum_to_samples(self, region, river, mask_of):
        shifted = np.roll(river, 1, axis=1)
        samples, acc = validate(region, mask_of(shifted), mask_of(river), 40)
        assert acc.matrix.sum() == samples.size == acc.n_samples
        assert acc.tp + acc.fp + acc.fn + acc.tn == samples.size

    def test_labels_read_at_points(self, region, river, mask_of, grid):
        shifted = np.roll(river, 1, axis=1)
        samples, _ = validate(region, mask_of(shifted), mask_of(river), 40)
        for p in samples.points:
            row, col = grid.rowcol(p.x, p.y)
            assert p.reference == river[row, col]
            assert p.predicted == shifted[row, col]
            assert p.stratum_class == p.reference

    def test_reproducible(self, region, river, mask_of):
        pred, ref = mask_of(np.roll(river, 2, axis=1)), mask_of(river)
        a_samples, a_acc = validate(region, pred, ref, 25, seed=42)
        b_samples, b_acc = validate(region, pred, ref, 25, seed=42)
        assert [(p.x, p.y) for p in a_samples.points] == [(p.x, p.y) for p in b_samples.points]
        np.testing.assert_array_equal(a_acc.matrix, b_acc.matrix)

    def test_seed_changes_sample(self, region, river, mask_of):
        pred, ref = mask_of(river), mask_of(river)
        a, _ = validate(region, pred, ref, 25, seed=1)
        b, _ = validate(region, pred, ref, 25, seed=2)
        assert {(p.x, p.y) for p in a.points} != {(p.x, p.y) for p in b.points}

    def test_scarce_stratum(self, region, grid, mask_of):
        ref = np.zeros(grid.shape, dtype=bool)
        ref[0, :5] = True
        samples, acc = validate(region, mask_of(ref), mask_of(ref), samples_per_class=30)
        assert samples.strata_info[1]["n_generated"] == 5
        assert samples.strata_info[0]["n_generated"] == 30
        assert samples.size == 35
        assert any("only 5 of 30" in w for w in samples.warnings)

    def test_no_water_in_reference(self, region, grid, mask_of):
        zeros = np.zeros(grid.shape, dtype=bool)
        samples, acc = validate(region, mask_of(zeros), mask_of(zeros), 10)
        assert samples.size == 10
        assert acc.recall is None
        assert acc.kappa is None

    def test_unmask_counts_gaps_as_land(self, region, grid, river, mask_of):
        valid = np.ones(grid.shape, dtype=bool)
        valid[:, 15:] = False
        ref = mask_of(river, valid=valid)
        unmasked, _ = validate(region, mask_of(river), ref, 1000)
        kept, _ = validate(region, mask_of(river), ref, 1000, unmask_to_zero=False)
        assert unmasked.strata_info[0]["pixel_count"] == 320
        assert kept.strata_info[0]["pixel_count"] == 320 - 5 * 20

    def test_all_undefined_is_degenerate(self, region, grid, river, mask_of):
        nothing = np.zeros(grid.shape, dtype=bool)
        ref = mask_of(river, valid=nothing)
        with pytest.raises(DegenerateSampleError):
            validate(region, mask_of(river), ref, 10, unmask_to_zero=False)

    def test_misaligned_grids(self, region, river, mask_of, grid):
        other = GridSpec((5.0, 10.0, 200.0, -10.0), grid.width, grid.height, grid.crs_epsg)
        moved = RasterImage(
            {MASK_BAND: river.astype(np.uint8)},
            np.ones(grid.shape, dtype=bool), other, ImageMetadata("moved"),
        )
        with pytest.raises(ConfigurationError, match="not aligned"):
            validate(region, moved, mask_of(river), 10)


class TestSampleRecords:

    def test_columns(self, region, river, mask_of):
        samples, _ = validate(region, mask_of(river), mask_of(river), 5)
        records = samples_to_records(samples)
        assert len(records) == 10
        assert set(records[0]) == {"id", "x", "y", "stratum", "ref", "pred"}
        assert records[0]["id"] == 1
