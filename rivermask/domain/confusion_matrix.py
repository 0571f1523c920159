"""Confusion matrix construction and accuracy metrics.

Convention: rows = reference (true), columns = predicted.
This follows Congalton & Green (2019). For the binary water case the
class labels are (0, 1) = (non-water, water), so

    matrix = [[tn, fp],
              [fn, tp]]

No I/O. Only depends on: numpy, confidence and kappa modules.
"""

import math
from typing import Dict, Optional, Tuple

import numpy as np

from . import kappa as _kappa
from .confidence import wilson_ci, z_score_for_confidence
from .models import BinaryAccuracy

NON_WATER = 0
WATER = 1
BINARY_LABELS = (NON_WATER, WATER)


def build_matrix(
    predicted: np.ndarray,
    reference: np.ndarray,
    class_labels: Tuple[int, ...] = BINARY_LABELS,
) -> np.ndarray:
    """Build a confusion matrix from paired predicted/reference values.

    Args:
        predicted: 1D array of predicted values.
        reference: 1D array of reference (true) values.
        class_labels: Ordered tuple of all class values.

    Returns:
        k x k integer array where matrix[i, j] counts samples with
        reference=class_labels[i] and predicted=class_labels[j].
        Pairs with a value outside class_labels are skipped.
    """
    predicted = np.asarray(predicted)
    reference = np.asarray(reference)
    if len(predicted) != len(reference):
        raise ValueError(
            f"Array length mismatch: predicted={len(predicted)}, "
            f"reference={len(reference)}"
        )
    if len(predicted) == 0:
        raise ValueError("Cannot build confusion matrix from empty arrays")

    k = len(class_labels)
    label_to_idx = {label: i for i, label in enumerate(class_labels)}
    keep = np.isin(reference, class_labels) & np.isin(predicted, class_labels)

    r_idx = [label_to_idx[v] for v in reference[keep].tolist()]
    p_idx = [label_to_idx[v] for v in predicted[keep].tolist()]

    matrix = np.zeros((k, k), dtype=np.int64)
    np.add.at(matrix, (np.asarray(r_idx, dtype=np.int64),
                       np.asarray(p_idx, dtype=np.int64)), 1)
    return matrix


def compute_metrics(
    matrix: np.ndarray,
    class_labels: Tuple[int, ...],
    confidence_level: float = 0.95,
) -> dict:
    """Compute OA and per-class metrics from a confusion matrix.

    Args:
        matrix: k x k confusion matrix (reference=rows, predicted=cols).
        class_labels: Ordered class labels matching matrix dimensions.
        confidence_level: For Wilson CIs (default 0.95).

    Returns:
        Dictionary with keys:
          overall_accuracy, overall_accuracy_ci,
          precision_per_class, recall_per_class, f1_per_class,
          iou_per_class
        Undefined per-class values (zero denominators) are NaN.
    """
    k = len(class_labels)
    if matrix.shape != (k, k):
        raise ValueError(
            f"Matrix shape {matrix.shape} does not match "
            f"{k} class labels"
        )

    N = int(matrix.sum())
    if N == 0:
        raise ValueError("Confusion matrix has zero total samples")

    z = z_score_for_confidence(confidence_level)

    row_totals = matrix.sum(axis=1)    # reference totals
    col_totals = matrix.sum(axis=0)    # predicted totals
    diagonal = matrix.diagonal()

    oa = float(diagonal.sum()) / N

    precision: Dict[int, float] = {}
    recall: Dict[int, float] = {}
    f1: Dict[int, float] = {}
    iou: Dict[int, float] = {}

    for i, label in enumerate(class_labels):
        hits = float(diagonal[i])
        fp = float(col_totals[i]) - hits
        fn = float(row_totals[i]) - hits

        # Recall = producer's accuracy, precision = user's accuracy
        recall[label] = hits / row_totals[i] if row_totals[i] > 0 else float("nan")
        precision[label] = hits / col_totals[i] if col_totals[i] > 0 else float("nan")

        if math.isnan(precision[label]) or math.isnan(recall[label]):
            f1[label] = float("nan")
        else:
            # 2PR/(P+R) written in counts; 0 when P = R = 0
            f1[label] = 2.0 * hits / (2.0 * hits + fp + fn)

        union = hits + fp + fn
        iou[label] = hits / union if union > 0 else float("nan")

    return {
        "overall_accuracy": oa,
        "overall_accuracy_ci": wilson_ci(oa, N, z),
        "precision_per_class": precision,
        "recall_per_class": recall,
        "f1_per_class": f1,
        "iou_per_class": iou,
    }


def _defined(value: float) -> Optional[float]:
    return None if math.isnan(value) else float(value)


def binary_metrics(
    matrix: np.ndarray,
    confidence_level: float = 0.95,
) -> BinaryAccuracy:
    """Water-class accuracy from a 2 x 2 matrix (rows = reference).

    OA and Kappa describe both classes; precision, recall, F1 and IoU
    are for the water class. Undefined metrics are None.

    Raises:
        ValueError: If the matrix is not 2 x 2 or holds no samples.
    """
    metrics = compute_metrics(matrix, BINARY_LABELS, confidence_level)
    kappa_val, kappa_ci = _kappa.compute(
        matrix, z_score_for_confidence(confidence_level)
    )

    return BinaryAccuracy(
        matrix=matrix.copy(),
        n_samples=int(matrix.sum()),
        tp=int(matrix[WATER, WATER]),
        fp=int(matrix[NON_WATER, WATER]),
        fn=int(matrix[WATER, NON_WATER]),
        tn=int(matrix[NON_WATER, NON_WATER]),
        overall_accuracy=metrics["overall_accuracy"],
        overall_accuracy_ci=metrics["overall_accuracy_ci"],
        kappa=kappa_val,
        kappa_ci=kappa_ci,
        precision=_defined(metrics["precision_per_class"][WATER]),
        recall=_defined(metrics["recall_per_class"][WATER]),
        f1=_defined(metrics["f1_per_class"][WATER]),
        iou=_defined(metrics["iou_per_class"][WATER]),
    )


def matrix_from_counts(tp: int, fp: int, fn: int, tn: int) -> np.ndarray:
    """Assemble a binary matrix in the rows = reference layout."""
    return np.array([[tn, fp], [fn, tp]], dtype=np.int64)
