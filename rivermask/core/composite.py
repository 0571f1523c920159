"""Cloud-filtered, sensor-fused median composites.

For each sensor source the archive is filtered to the region and window
(and optionally scene cloud cover), masked with the sensor's quality
predicate and normalized to canonical reflectance. Sources with the same
role are merged as peers. The fallback decision is explicit:

  primary has images            -> PRIMARY   (secondary merged in to fill gaps)
  primary empty, secondary not  -> SECONDARY (fallback recorded)
  both empty                    -> NONE      (no composite; caller records no-data)

The merged stack is reduced by median and clipped to the region.

Depends on: core.engine, domain.*.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from functools import partial, reduce
from typing import Dict, Optional, Sequence, Tuple

from ..domain.errors import ConfigurationError
from ..domain.masking import (
    MaskPredicate,
    apply_mask,
    landsat_c2_qa_mask,
    s2_qa60_mask,
    s2_scl_exclude_mask,
    s2_scl_keep_mask,
)
from ..domain.models import (
    CompositeResult,
    CompositeSource,
    RasterImage,
    TimeWindow,
)
from ..domain.reflectance import get_profile, normalize
from ..domain.region import Region
from .engine import (
    Clip,
    CollectionRef,
    Expr,
    FilterBounds,
    FilterDate,
    FilterMetadata,
    MapImages,
    Median,
    Merge,
    RasterEngine,
    Size,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_CLOUD_COVER = 80.0


class SourceRole(str, Enum):
    PRIMARY = "PRIMARY"
    SECONDARY = "SECONDARY"


@dataclass(frozen=True)
class SensorSource:
    """One archive collection feeding a composite."""
    collection_id: str
    sensor_id: str
    mask: MaskPredicate
    role: SourceRole = SourceRole.PRIMARY
    max_cloud_cover: Optional[float] = None
    cloud_property: str = "cloud_cover"


@dataclass(frozen=True)
class SourceSelection:
    """Outcome of the fallback decision."""
    source: CompositeSource
    expression: Optional[Expr]
    fallback_used: bool


def prepare_image(image: RasterImage, mask: MaskPredicate, sensor_id: str) -> RasterImage:
    """Mask then normalize one raw archive image."""
    return normalize(apply_mask(image, mask), sensor_id)


def source_expression(region: Region, window: TimeWindow, source: SensorSource) -> Expr:
    """Filtered, masked and normalized collection for one source."""
    expr = FilterDate(FilterBounds(CollectionRef(source.collection_id), region), window)
    if source.max_cloud_cover is not None:
        expr = FilterMetadata(expr, source.cloud_property, source.max_cloud_cover)
    return MapImages(
        expr,
        partial(prepare_image, mask=source.mask, sensor_id=source.sensor_id),
        label=f"mask+normalize[{source.sensor_id}]",
    )


def _merge_all(exprs: Sequence[Expr]) -> Optional[Expr]:
    if not exprs:
        return None
    return reduce(Merge, exprs)


def select_sources(
    primary: Optional[Expr],
    primary_count: int,
    secondary: Optional[Expr],
    secondary_count: int,
) -> SourceSelection:
    """Decide which collections a composite is reduced from."""
    if primary is not None and primary_count > 0:
        if secondary is not None and secondary_count > 0:
            return SourceSelection(CompositeSource.PRIMARY, Merge(primary, secondary), False)
        return SourceSelection(CompositeSource.PRIMARY, primary, False)
    if secondary is not None and secondary_count > 0:
        return SourceSelection(CompositeSource.SECONDARY, secondary, True)
    return SourceSelection(CompositeSource.NONE, None, False)


def build_composite(
    engine: RasterEngine,
    region: Region,
    window: TimeWindow,
    sources: Sequence[SensorSource],
) -> CompositeResult:
    """Median composite of all usable images for a region and window.

    Raises:
        ConfigurationError: If a source names an unknown sensor (checked
            before any engine call) or no sources are given.
        ServiceError: If the engine fails.
    """
    if not sources:
        raise ConfigurationError("build_composite() needs at least one sensor source")
    for source in sources:
        get_profile(source.sensor_id)

    counts: Dict[str, int] = {}
    by_role: Dict[SourceRole, list] = {SourceRole.PRIMARY: [], SourceRole.SECONDARY: []}
    role_counts = {SourceRole.PRIMARY: 0, SourceRole.SECONDARY: 0}

    for source in sources:
        expr = source_expression(region, window, source)
        n = int(engine.evaluate(Size(expr)))
        counts[source.collection_id] = counts.get(source.collection_id, 0) + n
        by_role[source.role].append(expr)
        role_counts[source.role] += n

    selection = select_sources(
        _merge_all(by_role[SourceRole.PRIMARY]), role_counts[SourceRole.PRIMARY],
        _merge_all(by_role[SourceRole.SECONDARY]), role_counts[SourceRole.SECONDARY],
    )

    logger.info(
        "Composite %s %s..%s: primary=%d secondary=%d -> %s",
        region.name, window.start, window.end_inclusive,
        role_counts[SourceRole.PRIMARY], role_counts[SourceRole.SECONDARY],
        selection.source.value,
    )

    if selection.source == CompositeSource.NONE:
        logger.warning(
            "No images from any source for %s %s..%s",
            region.name, window.start, window.end_inclusive,
        )
        return CompositeResult(None, CompositeSource.NONE, counts, False)

    if selection.fallback_used:
        logger.warning(
            "Primary sources empty for %s %s..%s; using secondary sources only",
            region.name, window.start, window.end_inclusive,
        )

    # Only the sources that were actually reduced count toward the composite
    if selection.source == CompositeSource.SECONDARY:
        counts = {
            s.collection_id: counts[s.collection_id]
            for s in sources if s.role == SourceRole.SECONDARY
        }

    image = engine.evaluate(Clip(Median(selection.expression), region))
    return CompositeResult(image, selection.source, counts, selection.fallback_used)


# ---------------------------------------------------------------------------
# Preset source lists
# ---------------------------------------------------------------------------

LANDSAT5_C2_L2 = "LANDSAT/LT05/C02/T1_L2"
LANDSAT7_C2_L2 = "LANDSAT/LE07/C02/T1_L2"
S2_SR_HARMONIZED = "COPERNICUS/S2_SR_HARMONIZED"
S2_TOA_HARMONIZED = "COPERNICUS/S2_HARMONIZED"
S2_SR = "COPERNICUS/S2_SR"


def landsat_sources() -> Tuple[SensorSource, ...]:
    """Landsat 5 TM and Landsat 7 ETM+ surface reflectance, merged as peers."""
    return (
        SensorSource(LANDSAT5_C2_L2, "LANDSAT_C2_L2_TM", landsat_c2_qa_mask),
        SensorSource(LANDSAT7_C2_L2, "LANDSAT_C2_L2_ETM", landsat_c2_qa_mask),
    )


def sentinel2_hybrid_sources(
    max_cloud_cover: float = DEFAULT_MAX_CLOUD_COVER,
) -> Tuple[SensorSource, ...]:
    """Sentinel-2 surface reflectance, gap-filled with top-of-atmosphere."""
    return (
        SensorSource(S2_SR_HARMONIZED, "S2_SR", s2_scl_keep_mask,
                     SourceRole.PRIMARY, max_cloud_cover),
        SensorSource(S2_TOA_HARMONIZED, "S2_TOA", s2_qa60_mask,
                     SourceRole.SECONDARY, max_cloud_cover),
    )


def sentinel2_sr_sources() -> Tuple[SensorSource, ...]:
    """Sentinel-2 L2A only, SCL exclusion mask, no scene cloud filter."""
    return (SensorSource(S2_SR, "S2_SR", s2_scl_exclude_mask),)


SOURCE_PRESETS = {
    "sentinel2_sr": sentinel2_sr_sources,
    "landsat": landsat_sources,
    "sentinel2_hybrid": sentinel2_hybrid_sources,
}
