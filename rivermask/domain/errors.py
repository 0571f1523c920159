"""Error taxonomy for RiverMask.

ConfigurationError is fatal and always reaches the caller. The other
errors are recoverable: the orchestrator converts them into a
null-metrics row for the affected window and moves on.
"""


class RiverMaskError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(RiverMaskError):
    """Unrecognized sensor, malformed date window, missing table entry."""


class NoDataError(RiverMaskError):
    """No usable images for a region/window across all fallback sources."""


class DegenerateSampleError(RiverMaskError):
    """The stratified sample cannot support a confusion matrix."""


class ServiceError(RiverMaskError):
    """The raster engine failed or timed out while evaluating an expression."""
