import math
from enum import Enum, auto
from dataclasses import dataclass

import numpy as np

EARTH_RADIUS_KM = 6371.0
LOG_EPSILON = 1e-6
SIGMOID_TRANSFORM_STEEPNESS = 10.0


class TransformType(Enum):
    LINEAR = auto()
    LOGARITHMIC = auto()
    SIGMOID = auto()
    EXPONENTIAL = auto()
    SQRT = auto()

    @classmethod
    def parse(cls, name) -> "TransformType":
        """Accept an enum member or its case-insensitive name."""
        if isinstance(name, cls):
            return name
        try:
            return cls[str(name).strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown transform type: {name}") from None


@dataclass(frozen=True)
class Coordinate:
    """Geographic position in decimal degrees."""
    latitude: float
    longitude: float

    def __post_init__(self):
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"Latitude must be within [-90, 90] (got {self.latitude})")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"Longitude must be within [-180, 180] (got {self.longitude})")

    def distance_to(self, other: "Coordinate") -> float:
        return distance_km(self, other)


def distance_km(a: Coordinate, b: Coordinate) -> float:
    """Great-circle (haversine) distance in kilometres."""
    lat1, lat2 = math.radians(a.latitude), math.radians(b.latitude)
    d_lat = lat2 - lat1
    d_lon = math.radians(b.longitude - a.longitude)

    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2) ** 2
    # Rounding can push h marginally past 1 for antipodal points
    h = min(1.0, max(0.0, h))
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(h))


def normalize(value: float, min_value: float, max_value: float,
              transform: TransformType = TransformType.LINEAR) -> float:
    """
    Map a raw factor value into [0, 1].
    The raw value is clamped to [min_value, max_value] before the transform.
    """
    value = float(np.clip(value, min_value, max_value))
    value_range = max_value - min_value
    if value_range <= 0:
        return 0.0

    ratio = (value - min_value) / value_range

    if transform == TransformType.LINEAR:
        result = ratio
    elif transform == TransformType.LOGARITHMIC:
        denominator = math.log(value_range + LOG_EPSILON)
        # Ranges at or below 1 have no usable log scale
        if denominator <= 0:
            result = ratio
        else:
            result = math.log(value - min_value + LOG_EPSILON) / denominator
    elif transform == TransformType.SIGMOID:
        result = 1.0 / (1.0 + math.exp(-SIGMOID_TRANSFORM_STEEPNESS * (ratio - 0.5)))
    elif transform == TransformType.EXPONENTIAL:
        result = (math.exp(ratio) - 1.0) / (math.e - 1.0)
    elif transform == TransformType.SQRT:
        result = math.sqrt(ratio)
    else:
        raise ValueError(f"Unsupported transform: {transform}")

    return float(np.clip(result, 0.0, 1.0))
