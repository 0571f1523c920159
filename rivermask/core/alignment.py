"""Grid alignment checks between rasters that must be co-registered.

Detects CRS, resolution, origin and size mismatches between the grids of
a prediction and a reference mask. NEVER resamples; a mismatch is
reported and the caller decides.

Depends on: domain.models.
"""

from dataclasses import dataclass, field
from typing import List

from ..domain.models import GridSpec

# Tolerance for comparing pixel sizes and origins (map units)
_TOL = 1e-6


@dataclass
class AlignmentIssue:
    severity: str     # 'FATAL' | 'WARNING'
    message: str
    suggestion: str


@dataclass
class AlignmentReport:
    issues: List[AlignmentIssue] = field(default_factory=list)

    @property
    def is_aligned(self) -> bool:
        return not any(i.severity == "FATAL" for i in self.issues)

    def summary(self) -> str:
        return "; ".join(f"[{i.severity}] {i.message}" for i in self.issues)


def check_alignment(grid_a: GridSpec, grid_b: GridSpec) -> AlignmentReport:
    """Check that two grids describe the same pixels.

    Args:
        grid_a: First grid (typically the prediction).
        grid_b: Second grid (typically the reference).

    Returns:
        AlignmentReport. Any difference in CRS, pixel size, origin or
        dimensions is FATAL because pixels are paired by position.
    """
    issues = []

    if grid_a.crs_epsg != grid_b.crs_epsg:
        issues.append(AlignmentIssue(
            severity="FATAL",
            message=f"CRS mismatch: EPSG:{grid_a.crs_epsg} vs EPSG:{grid_b.crs_epsg}",
            suggestion="Reproject one raster onto the other's grid.",
        ))

    (ax, ay), (bx, by) = grid_a.pixel_size, grid_b.pixel_size
    if abs(ax - bx) > _TOL or abs(ay - by) > _TOL:
        issues.append(AlignmentIssue(
            severity="FATAL",
            message=(
                f"Resolution mismatch: {ax:.4f} x {ay:.4f} "
                f"vs {bx:.4f} x {by:.4f}"
            ),
            suggestion=(
                "Resample categorical masks with nearest neighbour "
                "before validation."
            ),
        ))

    if (abs(grid_a.transform[0] - grid_b.transform[0]) > _TOL
            or abs(grid_a.transform[2] - grid_b.transform[2]) > _TOL):
        issues.append(AlignmentIssue(
            severity="FATAL",
            message="Grid origins differ; pixels are not co-registered.",
            suggestion="Snap both rasters to the same origin.",
        ))

    if grid_a.shape != grid_b.shape:
        issues.append(AlignmentIssue(
            severity="FATAL",
            message=f"Grid size mismatch: {grid_a.shape} vs {grid_b.shape}",
            suggestion="Crop both rasters to the same extent.",
        ))

    return AlignmentReport(issues=issues)
