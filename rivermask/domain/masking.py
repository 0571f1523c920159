"""Per-sensor cloud and quality mask predicates.

Every predicate returns a boolean array where True means the pixel is
usable. A QA value that is missing (NaN, or outside the image's validity
mask) is never usable.

Bit layouts:
  Landsat Collection 2 QA_PIXEL: 1 dilated cloud, 3 cloud, 4 cloud
  shadow, 5 snow.
  Sentinel-2 QA60: 10 opaque cloud, 11 cirrus.
  Sentinel-2 SCL classes: 0 no data, 1 saturated/defective, 2 dark area,
  3 cloud shadow, 4 vegetation, 5 not vegetated, 6 water, 7 unclassified,
  8 cloud medium prob., 9 cloud high prob., 10 thin cirrus, 11 snow.

No I/O. Only depends on: numpy.
"""

from typing import Callable, Iterable

import numpy as np

from .models import RasterImage

MaskPredicate = Callable[[RasterImage], np.ndarray]

LANDSAT_QA_BITS = (1, 3, 4, 5)
S2_QA60_BITS = (10, 11)
S2_SCL_KEEP = (4, 5, 6, 7, 11)
S2_SCL_EXCLUDE = (0, 1, 3, 8, 9, 10, 11)


def _present(band: np.ndarray) -> np.ndarray:
    band = np.asarray(band)
    if np.issubdtype(band.dtype, np.floating):
        return np.isfinite(band)
    return np.ones(band.shape, dtype=bool)


def _as_int(band: np.ndarray) -> np.ndarray:
    band = np.asarray(band)
    if np.issubdtype(band.dtype, np.floating):
        band = np.where(np.isfinite(band), band, 0)
    return band.astype(np.int64)


def bit_clear(qa: np.ndarray, bit: int) -> np.ndarray:
    """True where the given QA bit is 0 and the QA value is present."""
    return _present(qa) & ((_as_int(qa) & (1 << bit)) == 0)


def bits_clear(qa: np.ndarray, bits: Iterable[int]) -> np.ndarray:
    """True where every listed bit is 0."""
    flags = 0
    for bit in bits:
        flags |= 1 << bit
    return _present(qa) & ((_as_int(qa) & flags) == 0)


def class_in(codes: np.ndarray, classes: Iterable[int]) -> np.ndarray:
    """True where the class code belongs to the allowed set."""
    return _present(codes) & np.isin(_as_int(codes), list(classes))


def class_not_in(codes: np.ndarray, classes: Iterable[int]) -> np.ndarray:
    """True where the class code is present and not in the excluded set."""
    return _present(codes) & ~np.isin(_as_int(codes), list(classes))


def all_of(*masks: np.ndarray) -> np.ndarray:
    if not masks:
        raise ValueError("all_of() needs at least one mask")
    return np.logical_and.reduce([np.asarray(m, dtype=bool) for m in masks])


def any_of(*masks: np.ndarray) -> np.ndarray:
    if not masks:
        raise ValueError("any_of() needs at least one mask")
    return np.logical_or.reduce([np.asarray(m, dtype=bool) for m in masks])


# ---------------------------------------------------------------------------
# Ready-made predicates on raw archive images
# ---------------------------------------------------------------------------

def landsat_c2_qa_mask(image: RasterImage) -> np.ndarray:
    """Landsat C2 L2: drop dilated cloud, cloud, shadow and snow."""
    return image.valid & bits_clear(image.band("QA_PIXEL"), LANDSAT_QA_BITS)


def s2_scl_keep_mask(image: RasterImage) -> np.ndarray:
    """Sentinel-2 L2A: keep vegetation, bare, water, unclassified, snow."""
    return image.valid & class_in(image.band("SCL"), S2_SCL_KEEP)


def s2_scl_exclude_mask(image: RasterImage) -> np.ndarray:
    """Sentinel-2 L2A: drop no-data, defective, shadow, cloud, cirrus, snow."""
    return image.valid & class_not_in(image.band("SCL"), S2_SCL_EXCLUDE)


def s2_qa60_mask(image: RasterImage) -> np.ndarray:
    """Sentinel-2 L1C: drop opaque clouds and cirrus."""
    return image.valid & bits_clear(image.band("QA60"), S2_QA60_BITS)


def no_mask(image: RasterImage) -> np.ndarray:
    return image.valid.copy()


def apply_mask(image: RasterImage, predicate: MaskPredicate) -> RasterImage:
    """Restrict an image's validity to the pixels the predicate accepts."""
    return image.with_mask(predicate(image))
