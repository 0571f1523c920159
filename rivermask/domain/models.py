"""Domain data models for RiverMask.

All models are frozen dataclasses (immutable once created). Raster
helpers always return new objects; arrays handed to a model are never
written to afterwards.

Only depends on: numpy, shapely (footprints), typing, dataclasses.
"""

import datetime
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Tuple

import numpy as np
from shapely.geometry import box

from .errors import ConfigurationError


# ---------------------------------------------------------------------------
# Time windows
# ---------------------------------------------------------------------------

def _as_date(value) -> datetime.date:
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    try:
        return datetime.date.fromisoformat(str(value))
    except ValueError as exc:
        raise ConfigurationError(f"Malformed date: {value!r}") from exc


@dataclass(frozen=True)
class TimeWindow:
    """Date range [start, end). End is exclusive."""
    start: datetime.date
    end: datetime.date

    def __post_init__(self):
        object.__setattr__(self, "start", _as_date(self.start))
        object.__setattr__(self, "end", _as_date(self.end))
        if self.start >= self.end:
            raise ConfigurationError(
                f"Malformed date window: start {self.start} is not "
                f"before end {self.end}"
            )

    @classmethod
    def from_inclusive(cls, start, end_inclusive) -> "TimeWindow":
        """Build a window from an inclusive end date (end + 1 day)."""
        end = _as_date(end_inclusive) + datetime.timedelta(days=1)
        return cls(_as_date(start), end)

    @property
    def end_inclusive(self) -> datetime.date:
        return self.end - datetime.timedelta(days=1)

    def contains(self, day: datetime.date) -> bool:
        return self.start <= day < self.end


# ---------------------------------------------------------------------------
# Rasters
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GridSpec:
    """Pixel grid shared by co-registered rasters.

    transform is (x_origin, pixel_width, y_origin, pixel_height) with
    pixel_height negative for north-up grids, as in a GDAL geotransform
    without rotation terms.
    """
    transform: Tuple[float, float, float, float]
    width: int
    height: int
    crs_epsg: int

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.height, self.width)

    @property
    def pixel_size(self) -> Tuple[float, float]:
        return (abs(self.transform[1]), abs(self.transform[3]))

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        """(xmin, ymin, xmax, ymax) of the full grid."""
        x0, dx, y0, dy = self.transform
        xs = (x0, x0 + dx * self.width)
        ys = (y0, y0 + dy * self.height)
        return (min(xs), min(ys), max(xs), max(ys))

    def pixel_centers(self) -> Tuple[np.ndarray, np.ndarray]:
        """Column x-centres (width,) and row y-centres (height,)."""
        x0, dx, y0, dy = self.transform
        xs = x0 + (np.arange(self.width) + 0.5) * dx
        ys = y0 + (np.arange(self.height) + 0.5) * dy
        return xs, ys

    def rowcol(self, x: np.ndarray, y: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """World to pixel (row, col). Out-of-grid values are not clipped."""
        x0, dx, y0, dy = self.transform
        cols = np.floor((np.asarray(x, dtype=float) - x0) / dx).astype(np.int64)
        rows = np.floor((np.asarray(y, dtype=float) - y0) / dy).astype(np.int64)
        return rows, cols


@dataclass(frozen=True)
class ImageMetadata:
    """Provenance carried by every raster image."""
    image_id: str
    capture_date: Optional[datetime.date] = None
    sensor_id: str = ""
    cloud_cover: Optional[float] = None      # scene cloud percentage
    properties: Dict[str, Any] = field(default_factory=dict)

    def get(self, name: str, default=None):
        if name == "cloud_cover":
            return self.cloud_cover
        return self.properties.get(name, default)


@dataclass(frozen=True)
class RasterImage:
    """Multi-band 2-D grid plus a per-pixel validity mask."""
    bands: Dict[str, np.ndarray]
    valid: np.ndarray                         # bool, True = defined
    grid: GridSpec
    metadata: ImageMetadata

    def __post_init__(self):
        for name, arr in self.bands.items():
            if arr.shape != self.grid.shape:
                raise ValueError(
                    f"Band '{name}' shape {arr.shape} does not match "
                    f"grid shape {self.grid.shape}"
                )
        if self.valid.shape != self.grid.shape:
            raise ValueError(
                f"Validity mask shape {self.valid.shape} does not match "
                f"grid shape {self.grid.shape}"
            )

    @property
    def band_names(self) -> Tuple[str, ...]:
        return tuple(self.bands.keys())

    @property
    def valid_pixel_count(self) -> int:
        return int(self.valid.sum())

    def band(self, name: str) -> np.ndarray:
        if name not in self.bands:
            raise KeyError(
                f"Band '{name}' not in image {self.metadata.image_id} "
                f"(bands: {list(self.bands)})"
            )
        return self.bands[name]

    def select(self, names: Sequence[str]) -> "RasterImage":
        return replace(self, bands={n: self.band(n) for n in names})

    def rename(self, mapping: Mapping[str, str]) -> "RasterImage":
        return replace(
            self, bands={mapping.get(n, n): a for n, a in self.bands.items()}
        )

    def with_bands(self, bands: Dict[str, np.ndarray]) -> "RasterImage":
        return replace(self, bands=dict(bands))

    def with_mask(self, mask: np.ndarray) -> "RasterImage":
        """AND an extra mask into the validity mask (never widens it)."""
        return replace(self, valid=self.valid & np.asarray(mask, dtype=bool))

    def unmask(self, value: float = 0) -> "RasterImage":
        """Fill undefined pixels with value and mark every pixel valid."""
        filled = {
            n: np.where(self.valid, a, value).astype(a.dtype, copy=False)
            for n, a in self.bands.items()
        }
        return replace(
            self, bands=filled, valid=np.ones(self.grid.shape, dtype=bool)
        )

    def footprint(self):
        """Bounding box of the defined pixels, or None if nothing is defined."""
        rows = np.flatnonzero(self.valid.any(axis=1))
        cols = np.flatnonzero(self.valid.any(axis=0))
        if len(rows) == 0:
            return None
        x0, dx, y0, dy = self.grid.transform
        xa, xb = x0 + cols[0] * dx, x0 + (cols[-1] + 1) * dx
        ya, yb = y0 + rows[0] * dy, y0 + (rows[-1] + 1) * dy
        return box(min(xa, xb), min(ya, yb), max(xa, xb), max(ya, yb))


@dataclass(frozen=True)
class ImageCollection:
    """Keyed multiset of raster images. Operations return new collections."""
    collection_id: str
    images: Tuple[RasterImage, ...] = ()

    @property
    def size(self) -> int:
        return len(self.images)

    def merge(self, other: "ImageCollection") -> "ImageCollection":
        return ImageCollection(
            collection_id=f"{self.collection_id}+{other.collection_id}",
            images=self.images + other.images,
        )


# ---------------------------------------------------------------------------
# Composites
# ---------------------------------------------------------------------------

class CompositeSource(str, Enum):
    PRIMARY = "PRIMARY"
    SECONDARY = "SECONDARY"
    NONE = "NONE"


@dataclass(frozen=True)
class CompositeResult:
    """Median composite plus the record of which sources fed it."""
    image: Optional[RasterImage]
    source: CompositeSource
    image_counts: Dict[str, int]              # collection_id -> n images
    fallback_used: bool = False

    @property
    def n_images(self) -> int:
        return sum(self.image_counts.values())

    @property
    def valid_pixel_count(self) -> int:
        return self.image.valid_pixel_count if self.image is not None else 0

    @property
    def is_empty(self) -> bool:
        return self.source == CompositeSource.NONE or self.valid_pixel_count == 0


# ---------------------------------------------------------------------------
# Sampling models
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SampleDesign:
    """Configuration for a sample generation run."""
    scheme: str                       # "stratified_random"
    strata_band: str                  # "ref"
    n_per_class: Dict[int, int]       # class_value -> requested count
    min_distance_m: float
    random_seed: int


@dataclass(frozen=True)
class SamplePoint:
    """A single sample location, with the labels read at it."""
    id: int
    x: float
    y: float
    stratum_class: int
    reference: Optional[int] = None
    predicted: Optional[int] = None


@dataclass(frozen=True)
class SampleSet:
    """Result of a sample generation run."""
    design: SampleDesign
    points: Tuple[SamplePoint, ...]
    strata_info: Dict[int, dict]      # class -> {pixel_count, n_requested, n_generated}
    warnings: Tuple[str, ...]         # e.g. "only 18 of 2000 samples"

    @property
    def size(self) -> int:
        return len(self.points)


# ---------------------------------------------------------------------------
# Binary accuracy
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BinaryAccuracy:
    """Water / non-water accuracy assessment result.

    None marks a metric that could not be computed (zero denominator),
    which is distinct from a computed 0.0.
    """
    matrix: np.ndarray                # 2 x 2, reference=rows, predicted=columns
    n_samples: int
    tp: int
    fp: int
    fn: int
    tn: int
    overall_accuracy: Optional[float]
    overall_accuracy_ci: Optional[Tuple[float, float]]
    kappa: Optional[float]
    kappa_ci: Optional[Tuple[float, float]]
    precision: Optional[float]
    recall: Optional[float]
    f1: Optional[float]
    iou: Optional[float]


# ---------------------------------------------------------------------------
# Run records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RunKey:
    """One planned iteration of the outer loop."""
    region: str
    year: int
    season: str


METRIC_COLUMNS = (
    "OA", "Kappa", "Precision_water", "Recall_water", "F1_water", "IoU_water",
)

ROW_COLUMNS = (
    "region", "year", "season", "window_start", "window_end",
    "dw_prob_thresh", "jrc_occ_thresh", "awei_variant", "awei_thresh",
) + METRIC_COLUMNS + (
    "nSamples", "status", "stage", "composite_source", "n_images", "message",
)


@dataclass(frozen=True)
class MetricsRow:
    """One output record per (region, year, season)."""
    region: str
    year: int
    season: str
    window_start: Optional[str]
    window_end: Optional[str]         # inclusive, as configured
    thresholds: Dict[str, Any]
    oa: Optional[float] = None
    kappa: Optional[float] = None
    precision_water: Optional[float] = None
    recall_water: Optional[float] = None
    f1_water: Optional[float] = None
    iou_water: Optional[float] = None
    n_samples: int = 0
    status: str = "ok"                # ok | no_data | degenerate | service_error | error
    stage: str = ""
    composite_source: str = CompositeSource.NONE.value
    n_images: int = 0
    message: str = ""

    @property
    def key(self) -> RunKey:
        return RunKey(self.region, self.year, self.season)

    @property
    def has_metrics(self) -> bool:
        return self.status == "ok"

    def to_record(self) -> Dict[str, Any]:
        """Flat record in ROW_COLUMNS order, ready for a table sink."""
        values = {
            "region": self.region,
            "year": self.year,
            "season": self.season,
            "window_start": self.window_start,
            "window_end": self.window_end,
            "dw_prob_thresh": self.thresholds.get("dw_prob_thresh"),
            "jrc_occ_thresh": self.thresholds.get("jrc_occ_thresh"),
            "awei_variant": self.thresholds.get("awei_variant"),
            "awei_thresh": self.thresholds.get("awei_thresh"),
            "OA": self.oa,
            "Kappa": self.kappa,
            "Precision_water": self.precision_water,
            "Recall_water": self.recall_water,
            "F1_water": self.f1_water,
            "IoU_water": self.iou_water,
            "nSamples": self.n_samples,
            "status": self.status,
            "stage": self.stage,
            "composite_source": self.composite_source,
            "n_images": self.n_images,
            "message": self.message,
        }
        return {col: values[col] for col in ROW_COLUMNS}


@dataclass(frozen=True)
class RunSummary:
    """Folded result of a batch run."""
    rows: Tuple[MetricsRow, ...]

    @property
    def n_ok(self) -> int:
        return sum(1 for r in self.rows if r.has_metrics)

    @property
    def n_failed(self) -> int:
        return len(self.rows) - self.n_ok

    def for_region(self, region: str) -> Tuple[MetricsRow, ...]:
        return tuple(r for r in self.rows if r.region == region)

    def records(self, rows: Optional[Iterable[MetricsRow]] = None) -> list:
        return [r.to_record() for r in (self.rows if rows is None else rows)]


COMPOSITE_COLUMNS = (
    "region", "sensor", "year", "window_start", "window_end", "description",
    "composite_source", "n_images", "valid_pixels", "status", "message",
)


@dataclass(frozen=True)
class CompositeRow:
    """Inventory record for one exported reflectance composite."""
    region: str
    sensor: str
    year: int
    window_start: str
    window_end: str                   # inclusive, as configured
    description: str
    composite_source: str = CompositeSource.NONE.value
    n_images: int = 0
    valid_pixels: int = 0
    status: str = "ok"                # ok | no_data | service_error | error
    message: str = ""

    @property
    def exported(self) -> bool:
        return self.status == "ok"

    def to_record(self) -> Dict[str, Any]:
        return {col: getattr(self, col) for col in COMPOSITE_COLUMNS}
