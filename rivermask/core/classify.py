"""Classification paths producing interchangeable binary water masks.

  awei_path         optical composite -> AWEI -> threshold
  probability_path  median land-cover water probability -> threshold
  reference_mask    surface-water occurrence -> stable water / stable land

All three return masks with band "mask" on the engine grid, clipped to
the region, so any of them can feed the validator.

Depends on: core.engine, core.composite, domain.water_index.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from ..domain import water_index
from ..domain.errors import NoDataError
from ..domain.models import CompositeResult, RasterImage, TimeWindow
from ..domain.region import Region
from .composite import SensorSource, build_composite
from .engine import (
    Clip,
    CollectionRef,
    FilterBounds,
    FilterDate,
    ImageRef,
    MapImages,
    Median,
    RasterEngine,
    Size,
)

logger = logging.getLogger(__name__)

DYNAMIC_WORLD = "GOOGLE/DYNAMICWORLD/V1"
JRC_GSW = "JRC/GSW1_4/GlobalSurfaceWater"


@dataclass(frozen=True)
class ClassifiedMask:
    """Binary mask plus where it came from."""
    mask: RasterImage
    n_images: int
    composite: Optional[CompositeResult] = None
    index: Optional[RasterImage] = None


def awei_path(
    engine: RasterEngine,
    region: Region,
    window: TimeWindow,
    sources: Sequence[SensorSource],
    variant: str = "AWEI_sh",
    cutoff: float = 0.0,
) -> ClassifiedMask:
    """Water mask from a spectral index over the optical composite.

    Raises:
        NoDataError: If the composite has no images or no valid pixels.
    """
    composite = build_composite(engine, region, window, sources)
    if composite.is_empty:
        raise NoDataError(
            f"No optical composite for {region.name} "
            f"{window.start}..{window.end_inclusive} "
            f"(source={composite.source.value}, images={composite.n_images})"
        )
    index = water_index.compute_index(composite.image, variant)
    mask = water_index.threshold(index, cutoff)
    logger.info(
        "AWEI %s for %s: %d images, water fraction %.3f",
        variant, region.name, composite.n_images, water_index.water_fraction(mask),
    )
    return ClassifiedMask(mask, composite.n_images, composite, index)


def _select_band(image: RasterImage, band: str) -> RasterImage:
    return image.select([band])


def probability_path(
    engine: RasterEngine,
    region: Region,
    window: TimeWindow,
    collection_id: str = DYNAMIC_WORLD,
    cutoff: float = water_index.DEFAULT_PROB_CUTOFF,
    band: str = "water",
) -> ClassifiedMask:
    """Water mask from a land-cover model's seasonal median probability.

    Raises:
        NoDataError: If no probability images cover the region and window.
    """
    filtered = FilterDate(FilterBounds(CollectionRef(collection_id), region), window)
    n = int(engine.evaluate(Size(filtered)))
    if n == 0:
        raise NoDataError(
            f"No {collection_id} images for {region.name} "
            f"{window.start}..{window.end_inclusive}"
        )
    selected = MapImages(filtered, lambda img: _select_band(img, band), label=f"select[{band}]")
    prob = engine.evaluate(Clip(Median(selected), region))
    if prob.valid_pixel_count == 0:
        raise NoDataError(
            f"{collection_id} median has no valid pixels in {region.name}"
        )
    mask = water_index.probability_mask(prob, cutoff, band=band)
    logger.info(
        "Probability mask for %s: %d images, water fraction %.3f",
        region.name, n, water_index.water_fraction(mask),
    )
    return ClassifiedMask(mask, n)


def reference_mask(
    engine: RasterEngine,
    region: Region,
    image_id: str = JRC_GSW,
    occ_thresh: float = water_index.DEFAULT_OCCURRENCE_CUTOFF,
    band: str = "occurrence",
) -> RasterImage:
    """Stable-water reference mask clipped to the region."""
    occurrence = engine.evaluate(Clip(ImageRef(image_id), region))
    return water_index.stable_reference(occurrence, occ_thresh, band=band)
