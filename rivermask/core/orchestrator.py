"""Batch run orchestrator.

Plans one window per (region, year, season), runs each through the
stages below, and folds the results into one summary table per region:

  WindowSelected -> CompositesBuilt -> MasksComputed -> Validated -> RowEmitted

A window that hits no-data, a degenerate sample, an exhausted service
retry or an unexpected failure still yields a row (null metrics, status
says why); only a ConfigurationError stops the batch.

Depends on: core.*, domain.*, tasks.window_task.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Callable, Optional, Tuple

import numpy as np

from ..domain import water_index
from ..domain.errors import ConfigurationError, NoDataError, ServiceError
from ..domain.models import (
    COMPOSITE_COLUMNS,
    ROW_COLUMNS,
    CompositeRow,
    CompositeSource,
    MetricsRow,
    RunKey,
    RunSummary,
)
from .classify import awei_path, probability_path, reference_mask
from .composite import build_composite
from .config import CompositeSpec, RunConfig
from .engine import RasterEngine
from .export import ExportSink
from .validation_workflow import SAMPLE_COLUMNS, samples_to_records, validate

logger = logging.getLogger(__name__)

PREDICTION_TAGS = {"dynamic_world": "DW", "awei": "AWEI"}


class Stage(str, Enum):
    WINDOW_SELECTED = "WindowSelected"
    COMPOSITES_BUILT = "CompositesBuilt"
    MASKS_COMPUTED = "MasksComputed"
    VALIDATED = "Validated"
    ROW_EMITTED = "RowEmitted"


StageCallback = Callable[..., None]


def plan_runs(config: RunConfig) -> Tuple[RunKey, ...]:
    """Every (region, year, season) in configuration order."""
    return tuple(
        RunKey(region, year, season)
        for region in config.regions
        for year in config.years
        for season in config.seasons
    )


def window_prefix(key: RunKey) -> str:
    return f"{key.region}_{key.year}_{key.season}"


def null_row(
    key: RunKey,
    config: RunConfig,
    status: str,
    stage: Stage,
    message: str = "",
    composite_source: str = CompositeSource.NONE.value,
    n_images: int = 0,
) -> MetricsRow:
    """Row for a window whose metrics could not be computed."""
    start, end = config.windows.get(key.region, {}).get(key.year, {}).get(
        key.season, (None, None)
    )
    return MetricsRow(
        region=key.region,
        year=key.year,
        season=key.season,
        window_start=start,
        window_end=end,
        thresholds=config.threshold_params(),
        n_samples=0,
        status=status,
        stage=stage.value,
        composite_source=composite_source,
        n_images=n_images,
        message=message,
    )


def _self_mask(mask):
    """Keep only the pixels whose mask value is 1."""
    return mask.with_mask(np.asarray(mask.band(water_index.MASK_BAND)) == 1)


def run_window(
    key: RunKey,
    config: RunConfig,
    engine: RasterEngine,
    sink: Optional[ExportSink] = None,
    stage_callback: Optional[StageCallback] = None,
) -> MetricsRow:
    """Run one window to a metrics row.

    stage_callback(stage, **info) is called as each stage completes.

    Raises:
        ConfigurationError: Missing window, unknown region or sensor.
        NoDataError: The prediction path has no usable imagery.
        DegenerateSampleError: No sample point could be drawn.
        ServiceError: The engine failed.
    """
    def report(stage: Stage, **info):
        if stage_callback is not None:
            stage_callback(stage, **info)

    region = config.region(key.region)
    start, end = config.window_bounds(key.region, key.year, key.season)
    window = config.window_for(key.region, key.year, key.season)
    thr = config.thresholds
    prefix = window_prefix(key)
    logger.info("%s: window %s..%s", prefix, start, end)
    report(Stage.WINDOW_SELECTED)

    # Prediction and optional AWEI comparison masks
    prob = None
    if config.prediction == "dynamic_world":
        prob = probability_path(
            engine, region, window,
            config.probability_collection, thr.dw_prob_thresh,
        )

    awei = None
    if config.prediction == "awei" or thr.use_awei:
        try:
            awei = awei_path(
                engine, region, window, config.optical_sources(),
                thr.awei_variant, thr.awei_thresh,
            )
        except NoDataError as e:
            if config.prediction == "awei":
                raise
            logger.warning("%s: AWEI comparison skipped: %s", prefix, e)

    predicted = prob if prob is not None else awei
    composite_source = (
        awei.composite.source.value if awei is not None else CompositeSource.NONE.value
    )
    report(
        Stage.COMPOSITES_BUILT,
        composite_source=composite_source,
        n_images=predicted.n_images,
    )

    reference = reference_mask(
        engine, region, config.reference_image, thr.jrc_occ_thresh,
    )
    report(Stage.MASKS_COMPUTED)

    sample_set, accuracy = validate(
        region, predicted.mask, reference,
        samples_per_class=config.samples_per_class,
        seed=config.seed,
        min_distance=config.min_distance_m,
        unmask_to_zero=config.unmask_to_zero,
    )
    report(Stage.VALIDATED, n_samples=accuracy.n_samples)

    if sink is not None and config.export_masks:
        if prob is not None:
            sink.export_image(prob.mask, region, f"{prefix}_DW_WaterMask")
        if awei is not None:
            sink.export_image(_self_mask(awei.mask), region, f"{prefix}_AWEI_WaterMask")
        if prob is not None and awei is not None:
            disagree = water_index.disagreement(prob.mask, awei.mask)
            sink.export_image(_self_mask(disagree), region, f"{prefix}_DWxAWEI_Disagree")

    if sink is not None:
        tag = PREDICTION_TAGS[config.prediction]
        sink.export_table(
            samples_to_records(sample_set),
            f"{prefix}_ValSamples_{tag}_vs_JRC",
            columns=SAMPLE_COLUMNS,
        )

    row = MetricsRow(
        region=key.region,
        year=key.year,
        season=key.season,
        window_start=start,
        window_end=end,
        thresholds=config.threshold_params(),
        oa=accuracy.overall_accuracy,
        kappa=accuracy.kappa,
        precision_water=accuracy.precision,
        recall_water=accuracy.recall,
        f1_water=accuracy.f1,
        iou_water=accuracy.iou,
        n_samples=accuracy.n_samples,
        status="ok",
        stage=Stage.ROW_EMITTED.value,
        composite_source=composite_source,
        n_images=predicted.n_images,
        message="; ".join(sample_set.warnings),
    )
    report(Stage.ROW_EMITTED)
    logger.info(
        "%s: OA=%s Kappa=%s F1=%s (n=%d)", prefix,
        _fmt(row.oa), _fmt(row.kappa), _fmt(row.f1_water), row.n_samples,
    )
    return row


def _fmt(value: Optional[float]) -> str:
    return "n/a" if value is None else f"{value:.4f}"


def run_batch(
    config: RunConfig,
    engine: RasterEngine,
    sink: Optional[ExportSink] = None,
    max_workers: Optional[int] = None,
) -> RunSummary:
    """Run every planned window and export one summary table per region.

    Windows are independent and may run concurrently; rows come back
    sorted by (region, year, season) regardless of completion order.

    Raises:
        ConfigurationError: From any window; remaining windows are cancelled.
    """
    from ..tasks.window_task import WindowTask

    keys = plan_runs(config)
    workers = max(1, max_workers if max_workers is not None else config.max_workers)
    tasks = [WindowTask(key, config, engine, sink) for key in keys]
    logger.info("Running %d windows with %d worker(s)", len(tasks), workers)

    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [pool.submit(task.run) for task in tasks]
        try:
            for future in futures:
                future.result()
        except BaseException:
            for task in tasks:
                task.cancel()
            raise

    rows = sorted(
        (task.row for task in tasks if task.row is not None),
        key=lambda r: (r.region, r.year, r.season),
    )
    summary = RunSummary(tuple(rows))
    logger.info("Batch complete: %d ok, %d without metrics", summary.n_ok, summary.n_failed)

    if sink is not None:
        tag = PREDICTION_TAGS[config.prediction]
        for region in config.regions:
            sink.export_table(
                summary.records(summary.for_region(region)),
                f"{region}_{tag}_JRC_SummaryMetrics",
                columns=ROW_COLUMNS,
            )
    return summary


# ---------------------------------------------------------------------------
# Reflectance composites
# ---------------------------------------------------------------------------

def composite_name(region: str, spec: CompositeSpec, pixel_size: float) -> str:
    """Export name, e.g. "CahabaRiver_Sentinel2_2024_10m"."""
    return f"{region}_{spec.sensor}_{spec.year}_{pixel_size:g}m"


def run_composite(
    region_name: str,
    spec: CompositeSpec,
    config: RunConfig,
    engine: RasterEngine,
    sink: Optional[ExportSink] = None,
) -> CompositeRow:
    """Build one configured composite for one region and export it.

    Raises:
        ConfigurationError: Unknown region, preset or sensor.
        ServiceError: The engine failed.
    """
    region = config.region(region_name)
    result = build_composite(engine, region, spec.window, config.sources_for(spec.preset))
    if result.is_empty:
        raise NoDataError(
            f"No usable {spec.sensor} imagery for {region_name} "
            f"{spec.start}..{spec.end}"
        )

    name = composite_name(region_name, spec, result.image.grid.pixel_size[0])
    if sink is not None:
        sink.export_composite(result.image, region, name)
    logger.info(
        "%s: %s from %d image(s), %d valid pixels",
        name, result.source.value, result.n_images, result.valid_pixel_count,
    )
    return CompositeRow(
        region=region_name,
        sensor=spec.sensor,
        year=spec.year,
        window_start=spec.start,
        window_end=spec.end,
        description=name,
        composite_source=result.source.value,
        n_images=result.n_images,
        valid_pixels=result.valid_pixel_count,
    )


def run_composites(
    config: RunConfig,
    engine: RasterEngine,
    sink: Optional[ExportSink] = None,
) -> Tuple[CompositeRow, ...]:
    """Export every configured composite for every region.

    One inventory row per (region, composite); a composite that cannot be
    built is recorded and the rest still run. The inventory is exported
    per region as "{region}_Composites".

    Raises:
        ConfigurationError: Unknown region, preset or sensor.
    """
    rows = []
    for region_name in config.regions:
        region_rows = []
        for spec in config.composites:
            try:
                row = run_composite(region_name, spec, config, engine, sink)
            except ConfigurationError:
                raise
            except NoDataError as e:
                logger.warning("%s %s/%d: %s", region_name, spec.sensor, spec.year, e)
                row = _failed_composite(region_name, spec, "no_data", e)
            except ServiceError as e:
                logger.error("%s %s/%d: service error: %s",
                             region_name, spec.sensor, spec.year, e)
                row = _failed_composite(region_name, spec, "service_error", e)
            except Exception as e:
                logger.exception("%s %s/%d: composite failed",
                                 region_name, spec.sensor, spec.year)
                row = _failed_composite(region_name, spec, "error", e)
            region_rows.append(row)

        if sink is not None and region_rows:
            sink.export_table(
                [r.to_record() for r in region_rows],
                f"{region_name}_Composites",
                columns=COMPOSITE_COLUMNS,
            )
        rows.extend(region_rows)

    logger.info(
        "Composites complete: %d exported, %d failed",
        sum(1 for r in rows if r.exported), sum(1 for r in rows if not r.exported),
    )
    return tuple(rows)


def _failed_composite(
    region_name: str, spec: CompositeSpec, status: str, exc: Exception,
) -> CompositeRow:
    return CompositeRow(
        region=region_name,
        sensor=spec.sensor,
        year=spec.year,
        window_start=spec.start,
        window_end=spec.end,
        description="",
        status=status,
        message=str(exc),
    )
