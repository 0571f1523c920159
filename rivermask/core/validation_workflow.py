"""Sample-based validation workflow.

Coordinates: alignment check -> unmask -> stratified sampling on the
reference mask -> value extraction -> confusion matrix -> metrics.
This is the bridge between the raster masks and the domain math.

Depends on: core.alignment, core.input_validator, domain.*.
"""

import logging
from typing import Dict, List, Tuple

import numpy as np

from ..domain import confusion_matrix
from ..domain.confusion_matrix import BINARY_LABELS
from ..domain.errors import ConfigurationError, DegenerateSampleError
from ..domain.models import (
    BinaryAccuracy,
    RasterImage,
    SampleDesign,
    SamplePoint,
    SampleSet,
)
from ..domain.region import Region
from ..domain.sampling import generate_stratified_random
from ..domain.water_index import MASK_BAND
from .alignment import check_alignment
from .input_validator import validate_sample

logger = logging.getLogger(__name__)


def _candidates(
    reference: RasterImage,
    usable: np.ndarray,
) -> Tuple[Dict[int, np.ndarray], Dict[int, int]]:
    """Pixel-centre coordinates per reference class, in row-major order."""
    xs, ys = reference.grid.pixel_centers()
    ref_vals = np.asarray(reference.band(MASK_BAND))
    candidates, pixel_counts = {}, {}
    for cls in BINARY_LABELS:
        rows, cols = np.nonzero(usable & (ref_vals == cls))
        candidates[cls] = np.column_stack([xs[cols], ys[rows]])
        pixel_counts[cls] = int(len(rows))
    return candidates, pixel_counts


def validate(
    region: Region,
    prediction: RasterImage,
    reference: RasterImage,
    samples_per_class: int,
    seed: int = 42,
    min_distance: float = 0.0,
    unmask_to_zero: bool = True,
    confidence_level: float = 0.95,
) -> Tuple[SampleSet, BinaryAccuracy]:
    """Compare a predicted water mask against a reference mask.

    Args:
        region: Sampling region; only pixel centres inside it are drawn.
        prediction: Binary mask (band "mask") under test.
        reference: Binary reference mask (band "mask"), same grid.
        samples_per_class: Points requested per reference class.
        seed: Random seed. Same inputs and seed give the same samples.
        min_distance: Minimum spacing between sample points (map units).
        unmask_to_zero: Fill undefined pixels of both masks with 0 first,
            so gaps count as non-water instead of being skipped.
        confidence_level: Confidence level for the reported intervals.

    Returns:
        (sample_set, accuracy)

    Raises:
        ConfigurationError: If the masks are not on the same grid.
        DegenerateSampleError: If no sample point could be drawn.
    """
    report = check_alignment(prediction.grid, reference.grid)
    if not report.is_aligned:
        raise ConfigurationError(
            f"Prediction and reference are not aligned: {report.summary()}"
        )

    if unmask_to_zero:
        prediction = prediction.unmask(0)
        reference = reference.unmask(0)

    usable = region.mask_for(reference.grid) & prediction.valid & reference.valid
    candidates, pixel_counts = _candidates(reference, usable)
    n_per_class = {cls: int(samples_per_class) for cls in BINARY_LABELS}

    points, warnings = generate_stratified_random(
        candidates, n_per_class, min_distance=min_distance, seed=seed,
    )
    if not points:
        raise DegenerateSampleError(
            f"No sample points in {region.name}: reference has "
            f"{pixel_counts} usable pixels per class"
        )

    # Read both masks at the drawn pixel centres
    xy = np.array([(p.x, p.y) for p in points])
    rows, cols = reference.grid.rowcol(xy[:, 0], xy[:, 1])
    ref_at = np.asarray(reference.band(MASK_BAND))[rows, cols].astype(np.int64)
    pred_at = np.asarray(prediction.band(MASK_BAND))[rows, cols].astype(np.int64)

    labelled: List[SamplePoint] = [
        SamplePoint(p.id, p.x, p.y, p.stratum_class, int(r), int(c))
        for p, r, c in zip(points, ref_at, pred_at)
    ]

    strata_info = {
        cls: {
            "pixel_count": pixel_counts[cls],
            "n_requested": n_per_class[cls],
            "n_generated": sum(1 for p in labelled if p.stratum_class == cls),
        }
        for cls in BINARY_LABELS
    }
    design = SampleDesign(
        scheme="stratified_random",
        strata_band="ref",
        n_per_class=n_per_class,
        min_distance_m=min_distance,
        random_seed=seed,
    )
    sample_set = SampleSet(design, tuple(labelled), strata_info, tuple(warnings))

    for issue in validate_sample(sample_set).warnings:
        logger.warning("%s: %s", region.name, issue.message)

    matrix = confusion_matrix.build_matrix(pred_at, ref_at, BINARY_LABELS)
    accuracy = confusion_matrix.binary_metrics(matrix, confidence_level)
    logger.info(
        "Validated %s: %d samples, OA=%s", region.name, accuracy.n_samples,
        "n/a" if accuracy.overall_accuracy is None else f"{accuracy.overall_accuracy:.4f}",
    )
    return sample_set, accuracy


SAMPLE_COLUMNS = ("id", "x", "y", "stratum", "ref", "pred")


def samples_to_records(sample_set: SampleSet) -> List[dict]:
    """Flat per-point records for the sample table export."""
    return [
        {
            "id": p.id,
            "x": p.x,
            "y": p.y,
            "stratum": p.stratum_class,
            "ref": p.reference,
            "pred": p.predicted,
        }
        for p in sample_set.points
    ]
