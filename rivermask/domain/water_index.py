"""Automated Water Extraction Index (Feyisa et al., 2014) and binary masks.

Index variants are linear combinations of canonical reflectance bands.
Their coefficients live in AWEI_COEFFICIENTS; nothing else in the package
repeats them.

A binary mask is a single-band image named "mask" holding 0/1 where the
image is defined. Undefined pixels stay undefined through every function
here.

No I/O. Only depends on: numpy.
"""

from typing import Dict

import numpy as np

from .errors import ConfigurationError
from .models import RasterImage

MASK_BAND = "mask"
INDEX_BAND = "awei"

# AWEI_sh  = 4 (green - swir1) - (0.25 nir + 2.75 swir2)
# AWEI_nsh = blue + 2.5 green - 1.5 nir - swir1 - 0.25 swir2
AWEI_COEFFICIENTS: Dict[str, Dict[str, float]] = {
    "AWEI_sh": {"green": 4.0, "swir1": -4.0, "nir": -0.25, "swir2": -2.75},
    "AWEI_nsh": {"blue": 1.0, "green": 2.5, "nir": -1.5, "swir1": -1.0, "swir2": -0.25},
}

DEFAULT_PROB_CUTOFF = 0.50
DEFAULT_OCCURRENCE_CUTOFF = 50.0
# JRC occurrence at or below this is treated as stable land
STABLE_LAND_MAX_OCCURRENCE = 1.0


def compute_index(image: RasterImage, variant: str = "AWEI_sh") -> RasterImage:
    """Compute a water index from a normalized image."""
    try:
        coefficients = AWEI_COEFFICIENTS[variant]
    except KeyError:
        raise ConfigurationError(
            f"Unknown water index variant '{variant}'. "
            f"Known variants: {sorted(AWEI_COEFFICIENTS)}"
        ) from None

    index = np.zeros(image.grid.shape, dtype=np.float64)
    for band, weight in coefficients.items():
        index = index + weight * np.asarray(image.band(band), dtype=np.float64)
    return image.with_bands({INDEX_BAND: index})


def _binary(image: RasterImage, values: np.ndarray) -> RasterImage:
    return image.with_bands({MASK_BAND: values.astype(np.uint8)})


def threshold(index_image: RasterImage, cutoff: float, band: str = INDEX_BAND) -> RasterImage:
    """1 where index >= cutoff, 0 elsewhere. Undefined pixels stay undefined."""
    values = np.asarray(index_image.band(band), dtype=np.float64)
    defined = index_image.valid & np.isfinite(values)
    water = defined & (values >= cutoff)
    return _binary(index_image, water).with_mask(defined)


def probability_mask(
    prob_image: RasterImage,
    cutoff: float = DEFAULT_PROB_CUTOFF,
    band: str = "water",
) -> RasterImage:
    """Threshold an external per-pixel water probability into a binary mask."""
    if not 0.0 <= cutoff <= 1.0:
        raise ConfigurationError(f"Probability cutoff must be in [0, 1], got {cutoff}")
    return threshold(prob_image, cutoff, band=band)


def stable_reference(
    occurrence_image: RasterImage,
    occ_thresh: float = DEFAULT_OCCURRENCE_CUTOFF,
    band: str = "occurrence",
) -> RasterImage:
    """Reference mask from surface-water occurrence (percent of time wet).

    1 where occurrence >= occ_thresh (stable water), 0 where occurrence is
    at most 1 % (stable land). Everything in between is ambiguous and
    left undefined.
    """
    occ = np.asarray(occurrence_image.band(band), dtype=np.float64)
    defined = occurrence_image.valid & np.isfinite(occ)
    water = defined & (occ >= occ_thresh)
    land = defined & (occ <= STABLE_LAND_MAX_OCCURRENCE)
    return _binary(occurrence_image, water).with_mask(water | land)


def disagreement(mask_a: RasterImage, mask_b: RasterImage) -> RasterImage:
    """1 where two binary masks disagree; defined where both are defined."""
    a = np.asarray(mask_a.band(MASK_BAND)).astype(bool)
    b = np.asarray(mask_b.band(MASK_BAND)).astype(bool)
    return _binary(mask_a, a ^ b).with_mask(mask_b.valid)


def water_fraction(mask: RasterImage) -> float:
    """Share of defined pixels classified as water (nan if none defined)."""
    n = mask.valid_pixel_count
    if n == 0:
        return float("nan")
    return float(np.asarray(mask.band(MASK_BAND))[mask.valid].sum()) / n
