"""Run configuration: regions, windows, thresholds, sampling, execution.

Configuration is read once at run start from a JSON document (or a dict)
and is read-only afterwards. Validation is delegated to
core.input_validator; any FATAL issue raises ConfigurationError.

Example::

    {
      "regions": {
        "CahabaRiver": {"line_wgs84": [[-87.198, 32.533], [-87.094, 32.318]],
                        "buffer_m": 500, "crs_epsg": 32616},
        "Pond": {"polygon": [[0, 0], [100, 0], [100, 100]], "crs_epsg": 32616}
      },
      "years": [2016, 2020, 2024],
      "seasons": ["dry", "wet"],
      "season_templates": {"dry": ["08-01", "10-31"], "wet": ["01-01", "04-30"]},
      "windows": {"CahabaRiver": {"2024": {"dry": ["2024-07-15", "2024-10-31"]}}},
      "thresholds": {"dw_prob_thresh": 0.5, "jrc_occ_thresh": 50,
                     "awei_variant": "AWEI_sh", "awei_thresh": 0.0},
      "composites": [{"sensor": "Landsat", "preset": "landsat", "year": 2000},
                     {"sensor": "Sentinel2", "preset": "sentinel2_hybrid", "year": 2024}],
      "samples_per_class": 2000,
      "seed": 42
    }

Depends on: domain.*, core.composite (source presets), core.input_validator.
"""

import json
import logging
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, Mapping, Optional, Tuple

from ..domain.errors import ConfigurationError
from ..domain.models import TimeWindow
from ..domain.region import DEFAULT_BUFFER_M, Region
from .classify import DYNAMIC_WORLD, JRC_GSW
from .composite import DEFAULT_MAX_CLOUD_COVER, SOURCE_PRESETS, SensorSource
from .input_validator import ensure_valid, validate_run_config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Thresholds:
    dw_prob_thresh: float = 0.50        # land-cover water probability cutoff
    jrc_occ_thresh: float = 50.0        # stable-water occurrence cutoff (%)
    awei_variant: str = "AWEI_sh"
    awei_thresh: float = 0.0            # AWEI >= cutoff -> water
    use_awei: bool = True


@dataclass(frozen=True)
class CompositeSpec:
    """One reflectance composite exported for every region."""
    sensor: str                         # label in the export name, e.g. "Sentinel2"
    preset: str                         # key of SOURCE_PRESETS
    year: int
    start: str                          # inclusive ISO dates
    end: str

    @property
    def window(self) -> TimeWindow:
        return TimeWindow.from_inclusive(self.start, self.end)


@dataclass(frozen=True)
class RunConfig:
    """Static, read-only configuration for one batch run."""
    regions: Dict[str, Region]
    years: Tuple[int, ...]
    seasons: Tuple[str, ...]
    # region -> year -> season -> (start, end_inclusive), ISO dates
    windows: Dict[str, Dict[int, Dict[str, Tuple[str, str]]]]
    thresholds: Thresholds = field(default_factory=Thresholds)
    samples_per_class: int = 2000
    seed: int = 42
    min_distance_m: float = 0.0
    prediction: str = "dynamic_world"
    optical_preset: str = "sentinel2_sr"
    max_cloud_cover: float = DEFAULT_MAX_CLOUD_COVER
    probability_collection: str = DYNAMIC_WORLD
    reference_image: str = JRC_GSW
    unmask_to_zero: bool = True
    export_masks: bool = True
    max_workers: int = 1
    service_retries: int = 2
    retry_delay_s: float = 1.0
    composites: Tuple[CompositeSpec, ...] = ()

    def window_bounds(self, region: str, year: int, season: str) -> Tuple[str, str]:
        try:
            return self.windows[region][year][season]
        except KeyError:
            raise ConfigurationError(
                f"No date window configured for {region}/{year}/{season}"
            ) from None

    def window_for(self, region: str, year: int, season: str) -> TimeWindow:
        start, end = self.window_bounds(region, year, season)
        return TimeWindow.from_inclusive(start, end)

    def region(self, name: str) -> Region:
        try:
            return self.regions[name]
        except KeyError:
            raise ConfigurationError(f"Unknown region '{name}'") from None

    def optical_sources(self) -> Tuple[SensorSource, ...]:
        return self.sources_for(self.optical_preset)

    def sources_for(self, preset_name: str) -> Tuple[SensorSource, ...]:
        try:
            preset = SOURCE_PRESETS[preset_name]
        except KeyError:
            raise ConfigurationError(
                f"Unknown optical source preset '{preset_name}'. "
                f"Known presets: {sorted(SOURCE_PRESETS)}"
            ) from None
        if preset_name == "sentinel2_hybrid":
            return preset(self.max_cloud_cover)
        return preset()

    def threshold_params(self) -> Dict[str, Any]:
        return asdict(self.thresholds)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def _build_region(name: str, spec: Mapping[str, Any]) -> Region:
    buffer_m = float(spec.get("buffer_m", DEFAULT_BUFFER_M))
    crs_epsg = int(spec.get("crs_epsg", 0))
    if "line_wgs84" in spec:
        return Region.from_line_wgs84(name, spec["line_wgs84"], buffer_m, crs_epsg)
    if "polygon" in spec:
        if not crs_epsg:
            raise ConfigurationError(f"Region '{name}': polygon needs crs_epsg")
        return Region.from_polygon(name, spec["polygon"], crs_epsg)
    raise ConfigurationError(
        f"Region '{name}' needs either 'line_wgs84' or 'polygon'"
    )


def _expand_windows(
    raw: Mapping[str, Any],
    regions,
    years,
    seasons,
) -> Dict[str, Dict[int, Dict[str, Tuple[str, str]]]]:
    """Explicit windows win; season templates ("MM-DD") fill the rest."""
    templates = raw.get("season_templates", {})
    explicit = raw.get("windows", {})
    windows: Dict[str, Dict[int, Dict[str, Tuple[str, str]]]] = {}

    for region in regions:
        per_year = {}
        for year in years:
            per_season = {}
            region_windows = explicit.get(region, {})
            year_windows = region_windows.get(str(year), region_windows.get(year, {}))
            for season in seasons:
                if season in year_windows:
                    start, end = year_windows[season]
                elif season in templates:
                    start, end = (f"{year}-{d}" for d in templates[season])
                else:
                    continue
                per_season[season] = (str(start), str(end))
            per_year[year] = per_season
        windows[region] = per_year
    return windows


def _build_composites(entries) -> Tuple[CompositeSpec, ...]:
    """Whole calendar year unless "start"/"end" narrow it."""
    specs = []
    for entry in entries:
        missing = [k for k in ("sensor", "preset", "year") if k not in entry]
        if missing:
            raise ConfigurationError(f"Composite entry {entry} is missing {missing}")
        year = int(entry["year"])
        specs.append(CompositeSpec(
            sensor=str(entry["sensor"]),
            preset=str(entry["preset"]),
            year=year,
            start=str(entry.get("start", f"{year}-01-01")),
            end=str(entry.get("end", f"{year}-12-31")),
        ))
    return tuple(specs)


_SCALAR_KEYS = (
    "samples_per_class", "seed", "min_distance_m", "prediction",
    "optical_preset", "max_cloud_cover", "probability_collection",
    "reference_image", "unmask_to_zero", "export_masks", "max_workers",
    "service_retries", "retry_delay_s",
)


def config_from_dict(raw: Mapping[str, Any]) -> RunConfig:
    """Build and validate a RunConfig.

    Raises:
        ConfigurationError: On any FATAL validation issue.
    """
    if "regions" not in raw or not raw["regions"]:
        raise ConfigurationError("Configuration defines no regions")

    regions = {name: _build_region(name, spec) for name, spec in raw["regions"].items()}
    years = tuple(int(y) for y in raw.get("years", ()))
    seasons = tuple(str(s) for s in raw.get("seasons", ()))

    known = {f.name for f in fields(Thresholds)}
    thr_raw = dict(raw.get("thresholds", {}))
    unknown = set(thr_raw) - known
    if unknown:
        raise ConfigurationError(f"Unknown threshold keys: {sorted(unknown)}")

    config = RunConfig(
        regions=regions,
        years=years,
        seasons=seasons,
        windows=_expand_windows(raw, regions, years, seasons),
        thresholds=Thresholds(**thr_raw),
        composites=_build_composites(raw.get("composites", ())),
        **{k: raw[k] for k in _SCALAR_KEYS if k in raw},
    )
    ensure_valid(validate_run_config(config))
    return config


def load_config(path: str, overrides: Optional[Mapping[str, Any]] = None) -> RunConfig:
    """Read a JSON configuration file, apply overrides, validate."""
    try:
        with open(path) as f:
            raw = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot read configuration {path}: {e}") from e
    if overrides:
        raw.update(overrides)
    logger.info("Loaded configuration from %s", path)
    return config_from_dict(raw)
