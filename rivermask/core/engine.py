"""Raster engine: declarative expressions and their evaluation.

Workflows never touch pixels of the archive directly. They build an
immutable expression (a small tree of the nodes below) and hand it to a
RasterEngine, which materialises the result. This keeps the raster
algebra swappable: InMemoryRasterEngine evaluates with numpy over images
already on a shared grid, a remote backend would translate the same tree
into service calls.

Any failure inside evaluation surfaces as ServiceError; package errors
(e.g. ConfigurationError raised by a mapped function) pass through.

Depends on: numpy, domain.*.
"""

import datetime
import json
import logging
import os
import warnings
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from ..domain.errors import RiverMaskError, ServiceError
from ..domain.models import (
    GridSpec,
    ImageCollection,
    ImageMetadata,
    RasterImage,
    TimeWindow,
)
from ..domain.region import Region

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Expression nodes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CollectionRef:
    collection_id: str


@dataclass(frozen=True)
class ImageRef:
    image_id: str


@dataclass(frozen=True)
class FilterBounds:
    source: "Expr"
    region: Region


@dataclass(frozen=True)
class FilterDate:
    source: "Expr"
    window: TimeWindow


@dataclass(frozen=True)
class FilterMetadata:
    """Keep images whose metadata property is strictly below max_value."""
    source: "Expr"
    prop: str
    max_value: float


@dataclass(frozen=True)
class MapImages:
    source: "Expr"
    fn: Callable[[RasterImage], RasterImage]
    label: str = ""


@dataclass(frozen=True)
class Merge:
    left: "Expr"
    right: "Expr"


@dataclass(frozen=True)
class Size:
    source: "Expr"


@dataclass(frozen=True)
class Median:
    """Pixel-wise median of a collection over the bands all images share."""
    source: "Expr"


@dataclass(frozen=True)
class Clip:
    source: "Expr"
    region: Region


Expr = Union[
    CollectionRef, ImageRef, FilterBounds, FilterDate, FilterMetadata,
    MapImages, Merge, Size, Median, Clip,
]


def describe(expr) -> str:
    """Compact one-line rendering of an expression, for logs."""
    if isinstance(expr, CollectionRef):
        return expr.collection_id
    if isinstance(expr, ImageRef):
        return f"image({expr.image_id})"
    if isinstance(expr, FilterBounds):
        return f"{describe(expr.source)}.filterBounds({expr.region.name})"
    if isinstance(expr, FilterDate):
        return (f"{describe(expr.source)}.filterDate("
                f"{expr.window.start}, {expr.window.end})")
    if isinstance(expr, FilterMetadata):
        return f"{describe(expr.source)}.filter({expr.prop} < {expr.max_value})"
    if isinstance(expr, MapImages):
        return f"{describe(expr.source)}.map({expr.label or 'fn'})"
    if isinstance(expr, Merge):
        return f"{describe(expr.left)}.merge({describe(expr.right)})"
    if isinstance(expr, Size):
        return f"{describe(expr.source)}.size()"
    if isinstance(expr, Median):
        return f"{describe(expr.source)}.median()"
    if isinstance(expr, Clip):
        return f"{describe(expr.source)}.clip({expr.region.name})"
    return repr(expr)


# ---------------------------------------------------------------------------
# Engines
# ---------------------------------------------------------------------------

class RasterEngine:
    """Collaborator interface: evaluate an expression, return its value.

    Collections evaluate to ImageCollection, images to RasterImage and
    Size to int. Calls may block for as long as the backend needs.
    """

    def evaluate(self, expr):
        raise NotImplementedError


class InMemoryRasterEngine(RasterEngine):
    """numpy backend over an archive held in memory on one shared grid."""

    def __init__(
        self,
        grid: GridSpec,
        collections: Optional[Mapping[str, Sequence[RasterImage]]] = None,
        images: Optional[Mapping[str, RasterImage]] = None,
    ):
        self.grid = grid
        self._collections: Dict[str, Tuple[RasterImage, ...]] = {
            cid: tuple(imgs) for cid, imgs in (collections or {}).items()
        }
        self._images: Dict[str, RasterImage] = dict(images or {})

        for img in self._all_images():
            if img.grid != grid:
                raise ValueError(
                    f"Image {img.metadata.image_id} is not on the engine grid"
                )

    def _all_images(self):
        for imgs in self._collections.values():
            yield from imgs
        yield from self._images.values()

    def evaluate(self, expr):
        try:
            return self._eval(expr)
        except RiverMaskError:
            raise
        except Exception as e:
            raise ServiceError(
                f"Evaluation failed for {describe(expr)}: {e}"
            ) from e

    # --- node handlers ---

    def _eval(self, expr):
        handler = getattr(self, f"_eval_{type(expr).__name__}", None)
        if handler is None:
            raise ServiceError(f"Unsupported expression node: {type(expr).__name__}")
        return handler(expr)

    def _eval_CollectionRef(self, expr: CollectionRef) -> ImageCollection:
        if expr.collection_id not in self._collections:
            raise ServiceError(f"Collection not found: {expr.collection_id}")
        return ImageCollection(expr.collection_id, self._collections[expr.collection_id])

    def _eval_ImageRef(self, expr: ImageRef) -> RasterImage:
        if expr.image_id not in self._images:
            raise ServiceError(f"Image not found: {expr.image_id}")
        return self._images[expr.image_id]

    def _eval_FilterBounds(self, expr: FilterBounds) -> ImageCollection:
        col = self._eval(expr.source)
        kept = tuple(i for i in col.images if expr.region.intersects(i.footprint()))
        return ImageCollection(col.collection_id, kept)

    def _eval_FilterDate(self, expr: FilterDate) -> ImageCollection:
        col = self._eval(expr.source)
        kept = tuple(
            i for i in col.images
            if i.metadata.capture_date is not None
            and expr.window.contains(i.metadata.capture_date)
        )
        return ImageCollection(col.collection_id, kept)

    def _eval_FilterMetadata(self, expr: FilterMetadata) -> ImageCollection:
        col = self._eval(expr.source)
        kept = []
        for img in col.images:
            value = img.metadata.get(expr.prop)
            if value is not None and value < expr.max_value:
                kept.append(img)
        return ImageCollection(col.collection_id, tuple(kept))

    def _eval_MapImages(self, expr: MapImages) -> ImageCollection:
        col = self._eval(expr.source)
        return ImageCollection(col.collection_id, tuple(expr.fn(i) for i in col.images))

    def _eval_Merge(self, expr: Merge) -> ImageCollection:
        return self._eval(expr.left).merge(self._eval(expr.right))

    def _eval_Size(self, expr: Size) -> int:
        return self._eval(expr.source).size

    def _eval_Median(self, expr: Median) -> RasterImage:
        col = self._eval(expr.source)
        metadata = ImageMetadata(
            image_id=f"median({col.collection_id})",
            sensor_id="+".join(sorted({i.metadata.sensor_id for i in col.images})),
            properties={"n_images": col.size},
        )
        if col.size == 0:
            return RasterImage({}, np.zeros(self.grid.shape, dtype=bool), self.grid, metadata)

        names = [n for n in col.images[0].band_names
                 if all(n in i.bands for i in col.images[1:])]
        valid_stack = np.stack([i.valid for i in col.images])
        bands = {}
        with warnings.catch_warnings():
            # all-masked pixels give NaN; validity already says so
            warnings.simplefilter("ignore", category=RuntimeWarning)
            for name in names:
                stack = np.stack([
                    np.where(i.valid, np.asarray(i.band(name), dtype=np.float64), np.nan)
                    for i in col.images
                ])
                bands[name] = np.nanmedian(stack, axis=0)
        return RasterImage(bands, valid_stack.any(axis=0), self.grid, metadata)

    def _eval_Clip(self, expr: Clip) -> RasterImage:
        img = self._eval(expr.source)
        return img.with_mask(expr.region.mask_for(img.grid))


# ---------------------------------------------------------------------------
# Archive loading
# ---------------------------------------------------------------------------

MANIFEST_NAME = "manifest.json"
VALID_ARRAY = "_valid"


def _load_scene(directory: str, entry: dict, grid: GridSpec) -> RasterImage:
    path = os.path.join(directory, entry["file"])
    with np.load(path) as data:
        bands = {k: data[k] for k in data.files if k != VALID_ARRAY}
        if VALID_ARRAY in data.files:
            valid = data[VALID_ARRAY].astype(bool)
        else:
            valid = np.ones(grid.shape, dtype=bool)
    date = entry.get("date")
    metadata = ImageMetadata(
        image_id=entry.get("id", os.path.splitext(entry["file"])[0]),
        capture_date=datetime.date.fromisoformat(date) if date else None,
        sensor_id=entry.get("sensor", ""),
        cloud_cover=entry.get("cloud_cover"),
        properties=dict(entry.get("properties", {})),
    )
    return RasterImage(bands, valid, grid, metadata)


def load_archive(directory: str) -> InMemoryRasterEngine:
    """Load a local archive: manifest.json plus one .npz file per scene.

    Manifest layout::

        {"grid": {"transform": [x0, dx, y0, dy], "width": W, "height": H,
                  "crs_epsg": 32616},
         "collections": {"COPERNICUS/S2_SR_HARMONIZED": [
             {"id": "...", "file": "s2_0001.npz", "date": "2024-08-03",
              "sensor": "S2_SR", "cloud_cover": 12.5}]},
         "images": {"JRC/GSW1_4/GlobalSurfaceWater": {"file": "jrc.npz"}}}

    Each .npz holds one array per band plus an optional boolean "_valid".
    """
    manifest_path = os.path.join(directory, MANIFEST_NAME)
    if not os.path.exists(manifest_path):
        raise FileNotFoundError(f"No {MANIFEST_NAME} in archive: {directory}")
    with open(manifest_path) as f:
        manifest = json.load(f)

    g = manifest["grid"]
    grid = GridSpec(tuple(g["transform"]), int(g["width"]), int(g["height"]),
                    int(g.get("crs_epsg", 0)))

    collections = {
        cid: [_load_scene(directory, e, grid) for e in entries]
        for cid, entries in manifest.get("collections", {}).items()
    }
    images = {
        iid: _load_scene(directory, dict(entry, id=iid), grid)
        for iid, entry in manifest.get("images", {}).items()
    }
    logger.info(
        "Loaded archive %s: %d collections, %d scenes, %d single images",
        directory, len(collections),
        sum(len(v) for v in collections.values()), len(images),
    )
    return InMemoryRasterEngine(grid, collections, images)
