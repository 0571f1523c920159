"""Digital numbers to physical reflectance, per sensor.

Two conventions are kept apart:
  scale/offset  reflectance = DN * scale + offset   (Landsat C2 L2)
  divisor       reflectance = DN / divisor           (Sentinel-2)

Output bands always use the canonical schema below, in canonical order,
so normalized images from different sensors can be merged and reduced
together.

No I/O. Only depends on: numpy.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import numpy as np

from .errors import ConfigurationError
from .models import RasterImage

CANONICAL_BANDS = ("blue", "green", "red", "nir", "swir1", "swir2")


@dataclass(frozen=True)
class SensorProfile:
    """How to turn one archive family's DNs into canonical reflectance."""
    sensor_id: str
    band_map: Dict[str, str]          # canonical name -> raw band name
    qa_band: str
    scale: Optional[float] = None
    offset: Optional[float] = None
    divisor: Optional[float] = None

    def __post_init__(self):
        additive = self.scale is not None or self.offset is not None
        if additive == (self.divisor is not None):
            raise ConfigurationError(
                f"Sensor {self.sensor_id}: set either scale/offset or "
                f"divisor, not both and not neither"
            )
        unknown = set(self.band_map) - set(CANONICAL_BANDS)
        if unknown:
            raise ConfigurationError(
                f"Sensor {self.sensor_id}: non-canonical bands {sorted(unknown)}"
            )

    @property
    def canonical_bands(self) -> Tuple[str, ...]:
        return tuple(b for b in CANONICAL_BANDS if b in self.band_map)

    def to_reflectance(self, dn: np.ndarray) -> np.ndarray:
        dn = np.asarray(dn, dtype=np.float64)
        if self.divisor is not None:
            return dn / self.divisor
        return dn * (self.scale if self.scale is not None else 1.0) + (self.offset or 0.0)


# Landsat Collection 2 Level-2 surface reflectance
LANDSAT_C2_SCALE = 0.0000275
LANDSAT_C2_OFFSET = -0.2
# Sentinel-2 L1C / L2A quantification value
S2_DIVISOR = 10000.0

_TM_ETM_BANDS = {
    "blue": "SR_B1", "green": "SR_B2", "red": "SR_B3",
    "nir": "SR_B4", "swir1": "SR_B5", "swir2": "SR_B7",
}
_OLI_BANDS = {
    "blue": "SR_B2", "green": "SR_B3", "red": "SR_B4",
    "nir": "SR_B5", "swir1": "SR_B6", "swir2": "SR_B7",
}
_S2_BANDS = {
    "blue": "B2", "green": "B3", "red": "B4",
    "nir": "B8", "swir1": "B11", "swir2": "B12",
}

SENSOR_PROFILES: Dict[str, SensorProfile] = {
    p.sensor_id: p for p in (
        SensorProfile("LANDSAT_C2_L2_TM", _TM_ETM_BANDS, "QA_PIXEL",
                      scale=LANDSAT_C2_SCALE, offset=LANDSAT_C2_OFFSET),
        SensorProfile("LANDSAT_C2_L2_ETM", _TM_ETM_BANDS, "QA_PIXEL",
                      scale=LANDSAT_C2_SCALE, offset=LANDSAT_C2_OFFSET),
        SensorProfile("LANDSAT_C2_L2_OLI", _OLI_BANDS, "QA_PIXEL",
                      scale=LANDSAT_C2_SCALE, offset=LANDSAT_C2_OFFSET),
        SensorProfile("S2_SR", _S2_BANDS, "SCL", divisor=S2_DIVISOR),
        SensorProfile("S2_TOA", _S2_BANDS, "QA60", divisor=S2_DIVISOR),
    )
}


def get_profile(sensor_id: str) -> SensorProfile:
    """Look up a sensor profile. Unknown ids are a configuration error."""
    try:
        return SENSOR_PROFILES[sensor_id]
    except KeyError:
        raise ConfigurationError(
            f"Unrecognized sensor id '{sensor_id}'. "
            f"Known sensors: {sorted(SENSOR_PROFILES)}"
        ) from None


def normalize(image: RasterImage, sensor_id: str) -> RasterImage:
    """Scale a raw image to reflectance and rename to the canonical schema.

    Raw bands the profile does not map (QA, SCL, extra channels) are
    dropped. Validity and metadata carry over unchanged.
    """
    profile = get_profile(sensor_id)
    bands = {
        name: profile.to_reflectance(image.band(profile.band_map[name]))
        for name in profile.canonical_bands
    }
    return image.with_bands(bands)
