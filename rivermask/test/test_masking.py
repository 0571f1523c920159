"""Tests for QA bit and scene-classification mask predicates."""

import numpy as np
import pytest

from rivermask.domain.masking import (
    LANDSAT_QA_BITS,
    all_of,
    any_of,
    apply_mask,
    bit_clear,
    bits_clear,
    class_in,
    class_not_in,
    landsat_c2_qa_mask,
    s2_qa60_mask,
    s2_scl_exclude_mask,
    s2_scl_keep_mask,
)


class TestPrimitives:

    def test_bit_clear(self):
        qa = np.array([0, 1 << 3, 1 << 2, (1 << 3) | 1])
        np.testing.assert_array_equal(bit_clear(qa, 3), [True, False, True, False])

    def test_bits_clear_any_flag_rejects(self):
        qa = np.array([0, 1 << 1, 1 << 4, 1 << 5, 1 << 6])
        np.testing.assert_array_equal(
            bits_clear(qa, LANDSAT_QA_BITS), [True, False, False, False, True]
        )

    def test_nan_qa_never_usable(self):
        qa = np.array([0.0, np.nan, 8.0])
        np.testing.assert_array_equal(bits_clear(qa, (3,)), [True, False, False])
        np.testing.assert_array_equal(class_in(qa, (0,)), [True, False, False])
        np.testing.assert_array_equal(class_not_in(qa, (3,)), [True, False, True])

    def test_class_in_and_not_in(self):
        scl = np.array([4, 6, 8, 11, 3])
        np.testing.assert_array_equal(class_in(scl, (4, 5, 6)), [True, True, False, False, False])
        np.testing.assert_array_equal(class_not_in(scl, (3, 8)), [True, True, False, True, False])

    def test_combinators(self):
        a = np.array([True, True, False])
        b = np.array([True, False, False])
        np.testing.assert_array_equal(all_of(a, b), [True, False, False])
        np.testing.assert_array_equal(any_of(a, b), [True, True, False])

    def test_combinators_need_input(self):
        with pytest.raises(ValueError):
            all_of()
        with pytest.raises(ValueError):
            any_of()


class TestImagePredicates:

    def test_landsat_cloud_shadow_snow_rejected(self, make_image, grid):
        qa = np.zeros(grid.shape)
        qa[0, 0] = 1 << 3      # cloud
        qa[0, 1] = 1 << 4      # shadow
        qa[0, 2] = 1 << 5      # snow
        qa[0, 3] = 1 << 1      # dilated cloud
        qa[0, 4] = 1 << 7      # water bit, unrelated
        mask = landsat_c2_qa_mask(make_image({"QA_PIXEL": qa}))
        assert not mask[0, :4].any()
        assert mask[0, 4]
        assert mask.sum() == grid.width * grid.height - 4

    def test_scl_keep_vs_exclude(self, make_image, grid):
        scl = np.full(grid.shape, 4.0)
        scl[0, 0] = 2          # dark area: not kept, not excluded
        scl[0, 1] = 9          # cloud high probability
        scl[0, 2] = 11         # snow: kept by one rule, excluded by the other
        img = make_image({"SCL": scl})
        keep = s2_scl_keep_mask(img)
        exclude = s2_scl_exclude_mask(img)
        assert list(keep[0, :3]) == [False, False, True]
        assert list(exclude[0, :3]) == [True, False, False]

    def test_qa60(self, make_image, grid):
        qa = np.zeros(grid.shape)
        qa[1, 1] = 1 << 10
        qa[1, 2] = 1 << 11
        mask = s2_qa60_mask(make_image({"QA60": qa}))
        assert not mask[1, 1] and not mask[1, 2]
        assert mask[1, 3]

    def test_outside_validity_never_usable(self, make_image, grid):
        valid = np.ones(grid.shape, dtype=bool)
        valid[5, 5] = False
        img = make_image({"QA_PIXEL": np.zeros(grid.shape)}, valid=valid)
        assert not landsat_c2_qa_mask(img)[5, 5]


class TestApplyMask:

    def test_idempotent(self, make_image, grid):
        qa = np.zeros(grid.shape)
        qa[2:4, :] = 1 << 3
        img = make_image({"QA_PIXEL": qa})
        once = apply_mask(img, landsat_c2_qa_mask)
        twice = apply_mask(once, landsat_c2_qa_mask)
        np.testing.assert_array_equal(once.valid, twice.valid)
        assert once.valid_pixel_count == grid.width * (grid.height - 2)

    def test_never_widens_validity(self, make_image, grid):
        valid = np.zeros(grid.shape, dtype=bool)
        valid[0, 0] = True
        img = make_image({"QA_PIXEL": np.zeros(grid.shape)}, valid=valid)
        assert apply_mask(img, landsat_c2_qa_mask).valid_pixel_count == 1

    def test_bands_untouched(self, make_image, grid):
        qa = np.full(grid.shape, float(1 << 3))
        img = make_image({"QA_PIXEL": qa, "SR_B2": np.ones(grid.shape)})
        masked = apply_mask(img, landsat_c2_qa_mask)
        assert masked.valid_pixel_count == 0
        np.testing.assert_array_equal(masked.band("SR_B2"), img.band("SR_B2"))
