"""Input validation for RiverMask.

Validates run configuration before any engine call and sample sets
before metrics are reported. Returns structured validation results
(never silently proceeds); ensure_valid() turns FATAL issues into a
ConfigurationError.

Depends on: domain.*, core.composite (source presets).
"""

from dataclasses import dataclass, field
from typing import List

from ..domain.errors import ConfigurationError
from ..domain.models import SampleSet, TimeWindow
from ..domain.water_index import AWEI_COEFFICIENTS
from .composite import SOURCE_PRESETS

VALID_PREDICTIONS = ("dynamic_world", "awei")

# Minimum recommended samples per class (Olofsson et al. 2014)
MIN_SAMPLES_PER_CLASS = 25


@dataclass
class ValidationIssue:
    """A single validation finding."""
    severity: str     # 'FATAL' | 'ERROR' | 'WARNING'
    message: str
    suggestion: str = ""


@dataclass
class ValidationResult:
    """Aggregated validation result."""
    issues: List[ValidationIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not any(i.severity == "FATAL" for i in self.issues)

    @property
    def has_warnings(self) -> bool:
        return any(i.severity == "WARNING" for i in self.issues)

    @property
    def fatal_issues(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == "FATAL"]

    @property
    def warnings(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == "WARNING"]

    def fatal(self, message: str, suggestion: str = ""):
        self.issues.append(ValidationIssue("FATAL", message, suggestion))

    def warn(self, message: str, suggestion: str = ""):
        self.issues.append(ValidationIssue("WARNING", message, suggestion))


def ensure_valid(result: ValidationResult) -> ValidationResult:
    """Raise ConfigurationError listing every FATAL issue, else pass through."""
    if not result.is_valid:
        raise ConfigurationError(
            "Validation failed:\n" +
            "\n".join(f"  [{i.severity}] {i.message}" for i in result.fatal_issues)
        )
    return result


def validate_run_config(config) -> ValidationResult:
    """Validate a RunConfig. Every problem is collected, not just the first."""
    result = ValidationResult()

    if not config.years:
        result.fatal("No years configured.")
    if not config.seasons:
        result.fatal("No seasons configured.")

    # Every planned window must exist and parse
    for region in config.regions:
        for year in config.years:
            for season in config.seasons:
                bounds = config.windows.get(region, {}).get(year, {}).get(season)
                if bounds is None:
                    result.fatal(
                        f"No date window for {region}/{year}/{season}.",
                        "Add it under 'windows' or define a season template.",
                    )
                    continue
                try:
                    TimeWindow.from_inclusive(*bounds)
                except (ConfigurationError, TypeError) as e:
                    result.fatal(f"{region}/{year}/{season}: {e}")

    thr = config.thresholds
    if not 0.0 <= thr.dw_prob_thresh <= 1.0:
        result.fatal(f"dw_prob_thresh must be in [0, 1], got {thr.dw_prob_thresh}.")
    if not 0.0 <= thr.jrc_occ_thresh <= 100.0:
        result.fatal(f"jrc_occ_thresh must be in [0, 100], got {thr.jrc_occ_thresh}.")
    if thr.awei_variant not in AWEI_COEFFICIENTS:
        result.fatal(
            f"Unknown AWEI variant '{thr.awei_variant}'.",
            f"Use one of {sorted(AWEI_COEFFICIENTS)}.",
        )

    if config.prediction not in VALID_PREDICTIONS:
        result.fatal(
            f"Unknown prediction source '{config.prediction}'.",
            f"Use one of {list(VALID_PREDICTIONS)}.",
        )
    elif config.prediction == "awei" and not thr.use_awei:
        result.warn("prediction='awei' computes AWEI even though use_awei is false.")

    if config.optical_preset not in SOURCE_PRESETS:
        result.fatal(
            f"Unknown optical source preset '{config.optical_preset}'.",
            f"Use one of {sorted(SOURCE_PRESETS)}.",
        )

    seen = set()
    for spec in config.composites:
        label = f"composite {spec.sensor}/{spec.year}"
        if spec.preset not in SOURCE_PRESETS:
            result.fatal(
                f"{label}: unknown source preset '{spec.preset}'.",
                f"Use one of {sorted(SOURCE_PRESETS)}.",
            )
        if (spec.sensor, spec.year) in seen:
            result.fatal(f"{label} is listed twice; export names would collide.")
        seen.add((spec.sensor, spec.year))
        try:
            TimeWindow.from_inclusive(spec.start, spec.end)
        except (ConfigurationError, TypeError) as e:
            result.fatal(f"{label}: {e}")

    if int(config.samples_per_class) <= 0:
        result.fatal(f"samples_per_class must be positive, got {config.samples_per_class}.")
    elif config.samples_per_class < MIN_SAMPLES_PER_CLASS:
        result.warn(
            f"samples_per_class={config.samples_per_class} is below the "
            f"recommended minimum of {MIN_SAMPLES_PER_CLASS}.",
            "Per-class metrics may be unreliable.",
        )

    if config.min_distance_m < 0:
        result.fatal(f"min_distance_m must be >= 0, got {config.min_distance_m}.")
    if config.max_workers < 1:
        result.fatal(f"max_workers must be >= 1, got {config.max_workers}.")
    if config.service_retries < 0 or config.retry_delay_s < 0:
        result.fatal("service_retries and retry_delay_s must be >= 0.")

    return result


def validate_sample(
    sample_set: SampleSet,
    min_samples_per_class: int = MIN_SAMPLES_PER_CLASS,
) -> ValidationResult:
    """Flag scarce strata and prediction/reference class mismatches."""
    result = ValidationResult()

    for cls_val, info in sorted(sample_set.strata_info.items()):
        n = info["n_generated"]
        if n == 0:
            result.warn(
                f"Reference class {cls_val} is absent from the sample.",
                "Metrics for this class are undefined.",
            )
        elif n < min_samples_per_class:
            result.warn(
                f"Reference class {cls_val} has only {n} samples. "
                f"Minimum recommended: {min_samples_per_class}.",
                "Per-class metrics may be unreliable.",
            )

    predicted = {p.predicted for p in sample_set.points}
    reference = {p.reference for p in sample_set.points}
    pred_only = predicted - reference
    ref_only = reference - predicted
    if ref_only:
        result.warn(f"Reference classes {ref_only} never predicted at sample points.")
    if pred_only:
        result.warn(f"Predicted classes {pred_only} absent from reference samples.")

    return result
