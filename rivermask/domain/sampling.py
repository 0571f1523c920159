"""Stratified random sampling point generation.

Draws up to a target count of points from each stratum's candidate pixel
centres. Strata with too few candidates give what they have and a
warning, never an error. An optional minimum distance between points is
enforced with a k-d tree over the points already drawn.

No I/O. Only depends on: numpy, scipy.spatial.
"""

from typing import Callable, Dict, List, Optional, Tuple

import numpy as np
from scipy.spatial import cKDTree

from .models import SamplePoint


def generate_stratified_random(
    candidates_per_class: Dict[int, np.ndarray],
    n_per_class: Dict[int, int],
    min_distance: float = 0.0,
    seed: int = 42,
    progress_callback: Optional[Callable[[int, int], None]] = None,
) -> Tuple[List[SamplePoint], List[str]]:
    """Generate stratified random sample points from candidate coordinates.

    Args:
        candidates_per_class: {class_value: Nx2 array of (x, y) coordinates}
            in a deterministic order (e.g. row-major pixel order).
        n_per_class: {class_value: desired sample count}.
        min_distance: Minimum distance between any two selected points (map units).
        seed: Random seed. Same inputs and seed give the same points.
        progress_callback: Optional (current, total) progress reporter.

    Returns:
        (list of SamplePoints, list of warning messages)
    """
    rng = np.random.RandomState(seed)
    all_selected: List[np.ndarray] = []
    all_points: List[SamplePoint] = []
    warnings: List[str] = []
    point_id = 1

    classes = sorted(n_per_class.keys())

    for cls_idx, class_val in enumerate(classes):
        n_desired = n_per_class[class_val]
        coords = candidates_per_class.get(class_val)

        if coords is None or len(coords) == 0:
            warnings.append(
                f"Class {class_val}: no candidate pixels. "
                f"0 of {n_desired} samples generated."
            )
            if progress_callback:
                progress_callback(cls_idx + 1, len(classes))
            continue

        coords = np.asarray(coords, dtype=float)[rng.permutation(len(coords))]

        if min_distance > 0:
            selected = _select_with_distance(
                coords, n_desired, min_distance, all_selected
            )
        else:
            selected = coords[:n_desired]

        if len(selected) < n_desired:
            warnings.append(
                f"Class {class_val}: only {len(selected)} of {n_desired} "
                f"samples generated (insufficient candidates or "
                f"distance constraint too strict)."
            )

        for xy in selected:
            all_selected.append(xy)
            all_points.append(SamplePoint(
                id=point_id,
                x=float(xy[0]),
                y=float(xy[1]),
                stratum_class=class_val,
            ))
            point_id += 1

        if progress_callback:
            progress_callback(cls_idx + 1, len(classes))

    return all_points, warnings


def _select_with_distance(
    candidates: np.ndarray,
    n_desired: int,
    min_distance: float,
    existing_points: List[np.ndarray],
) -> np.ndarray:
    """Greedy selection honouring min_distance to every earlier point.

    Points from other strata are queried through one k-d tree; points of
    this stratum are checked directly as they are accepted.
    """
    tree = cKDTree(np.array(existing_points)) if existing_points else None
    selected: List[np.ndarray] = []

    for coord in candidates:
        if len(selected) >= n_desired:
            break
        if tree is not None and tree.query(coord)[0] < min_distance:
            continue
        if selected:
            d = np.sqrt(((np.array(selected) - coord) ** 2).sum(axis=1))
            if d.min() < min_distance:
                continue
        selected.append(coord)

    return np.array(selected, dtype=float).reshape(-1, 2)
