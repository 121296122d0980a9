"""
Cities, factor definitions and population units.
Passive data holders consumed by the attraction, migration and feedback models.
"""

import math
from enum import Enum, auto
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, Iterator, Optional, Protocol

from geography import Coordinate, TransformType, normalize


class FactorDirection(Enum):
    POSITIVE = auto()  # Pull
    NEGATIVE = auto()  # Push

    @classmethod
    def parse(cls, name) -> "FactorDirection":
        if isinstance(name, cls):
            return name
        try:
            return cls[str(name).strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown factor direction: {name}") from None


@dataclass(frozen=True, eq=False)
class FactorDefinition:
    """
    A named city characteristic. Compared and hashed by identity:
    one definition is shared by every city and unit in a world.
    """
    name: str
    direction: FactorDirection
    min_value: float = 0.0
    max_value: float = 1.0
    transform: TransformType = TransformType.LINEAR

    def __post_init__(self):
        if not self.name:
            raise ValueError("Factor name must not be empty")
        object.__setattr__(self, "direction", FactorDirection.parse(self.direction))
        object.__setattr__(self, "transform", TransformType.parse(self.transform))
        if not (math.isfinite(self.min_value) and math.isfinite(self.max_value)):
            raise ValueError(f"Factor '{self.name}' range must be finite")
        if self.max_value <= self.min_value:
            raise ValueError(
                f"Factor '{self.name}' max_value ({self.max_value}) must exceed min_value ({self.min_value})"
            )

    @property
    def is_pull(self) -> bool:
        return self.direction == FactorDirection.POSITIVE

    def normalize(self, raw: float) -> float:
        """Raw value -> intensity in [0, 1]."""
        return normalize(raw, self.min_value, self.max_value, self.transform)

    def __repr__(self) -> str:
        return f"FactorDefinition({self.name!r}, {self.direction.name})"


class UnitKind(Enum):
    PERSON = auto()
    GROUP = auto()
    CUSTOM = auto()


@dataclass(frozen=True)
class UnitThresholds:
    moving_willingness: float = 0.5
    retention_rate: float = 0.0
    sensitivity_scaling: float = 1.0
    attraction_threshold: float = 0.0
    min_acceptable_attraction: float = 0.0


class UnitProfile(Protocol):
    """Extension point for custom unit kinds."""

    def sensitivities(self) -> Dict[FactorDefinition, float]:
        ...

    def thresholds(self) -> UnitThresholds:
        ...


def _check_unit_interval(name: str, value: float) -> float:
    value = float(value)
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be within [0, 1] (got {value})")
    return value


class PopulationUnit:
    """
    A person or an aggregated group living in one city.
    `city` is the name of the current city, a key into the world.
    """

    def __init__(
        self,
        unit_id: int,
        kind: UnitKind,
        sensitivities: Dict[FactorDefinition, float],
        count: int = 1,
        city: Optional[str] = None,
        moving_willingness: float = 0.5,
        retention_rate: float = 0.0,
        sensitivity_scaling: float = 1.0,
        attraction_threshold: float = 0.0,
        min_acceptable_attraction: float = 0.0,
        tags: Optional[Iterable[str]] = None,
        lineage: Optional[int] = None,
    ):
        self.unit_id = int(unit_id)
        self.kind = kind
        self.count = int(count)
        if self.count < 1:
            raise ValueError(f"Unit {unit_id} count must be at least 1 (got {count})")
        if kind == UnitKind.PERSON and self.count != 1:
            raise ValueError(f"Person unit {unit_id} must have count 1 (got {count})")

        self._sensitivities: Dict[FactorDefinition, float] = {}
        for factor, value in sensitivities.items():
            self._sensitivities[factor] = _check_unit_interval(f"Sensitivity '{factor.name}'", value)

        self.moving_willingness = _check_unit_interval("moving_willingness", moving_willingness)
        self.retention_rate = _check_unit_interval("retention_rate", retention_rate)
        self.sensitivity_scaling = _check_unit_interval("sensitivity_scaling", sensitivity_scaling)
        self.attraction_threshold = _check_unit_interval("attraction_threshold", attraction_threshold)
        self.min_acceptable_attraction = _check_unit_interval(
            "min_acceptable_attraction", min_acceptable_attraction
        )

        self.city = city
        self.tags: FrozenSet[str] = frozenset(tags or ())
        self.lineage = self.unit_id if lineage is None else int(lineage)

    @classmethod
    def person(cls, unit_id: int, sensitivities: Dict[FactorDefinition, float], **kwargs) -> "PopulationUnit":
        return cls(unit_id, UnitKind.PERSON, sensitivities, count=1, **kwargs)

    @classmethod
    def group(cls, unit_id: int, count: int, sensitivities: Dict[FactorDefinition, float],
              **kwargs) -> "PopulationUnit":
        return cls(unit_id, UnitKind.GROUP, sensitivities, count=count, **kwargs)

    @classmethod
    def from_profile(cls, unit_id: int, profile: UnitProfile, count: int = 1,
                     city: Optional[str] = None, tags: Optional[Iterable[str]] = None) -> "PopulationUnit":
        """Build a CUSTOM unit from any object implementing UnitProfile."""
        t = profile.thresholds()
        return cls(
            unit_id,
            UnitKind.CUSTOM,
            dict(profile.sensitivities()),
            count=count,
            city=city,
            moving_willingness=t.moving_willingness,
            retention_rate=t.retention_rate,
            sensitivity_scaling=t.sensitivity_scaling,
            attraction_threshold=t.attraction_threshold,
            min_acceptable_attraction=t.min_acceptable_attraction,
            tags=tags,
        )

    @property
    def is_person(self) -> bool:
        return self.kind == UnitKind.PERSON

    @property
    def sensitivities(self) -> Dict[FactorDefinition, float]:
        return dict(self._sensitivities)

    def sensitivity(self, factor: FactorDefinition) -> float:
        return self._sensitivities.get(factor, 0.0)

    def has_sensitivity(self, factor: FactorDefinition) -> bool:
        return factor in self._sensitivities

    def update_sensitivity(self, factor: FactorDefinition, value: float) -> None:
        self._sensitivities[factor] = _check_unit_interval(f"Sensitivity '{factor.name}'", value)

    def thresholds(self) -> UnitThresholds:
        return UnitThresholds(
            moving_willingness=self.moving_willingness,
            retention_rate=self.retention_rate,
            sensitivity_scaling=self.sensitivity_scaling,
            attraction_threshold=self.attraction_threshold,
            min_acceptable_attraction=self.min_acceptable_attraction,
        )

    def split(self, new_id: int, count: int) -> "PopulationUnit":
        """Detach `count` members into a new unit of the same lineage."""
        if self.is_person:
            raise ValueError("A person cannot be split")
        if not 0 < count < self.count:
            raise ValueError(f"Split size must be in (0, {self.count}) (got {count})")
        self.count -= count
        t = self.thresholds()
        return PopulationUnit(
            new_id,
            self.kind,
            self._sensitivities,
            count=count,
            moving_willingness=t.moving_willingness,
            retention_rate=t.retention_rate,
            sensitivity_scaling=t.sensitivity_scaling,
            attraction_threshold=t.attraction_threshold,
            min_acceptable_attraction=t.min_acceptable_attraction,
            tags=self.tags,
            lineage=self.lineage,
        )

    def __repr__(self) -> str:
        return f"PopulationUnit(id={self.unit_id}, kind={self.kind.name}, count={self.count}, city={self.city!r})"


@dataclass
class City:
    """A city with normalized factor intensities and resident population units."""
    name: str
    location: Coordinate
    area: float = 1.0
    capacity: Optional[int] = None  # None or 0 = unlimited
    _intensities: Dict[FactorDefinition, float] = field(default_factory=dict, init=False, repr=False)
    _units: Dict[int, PopulationUnit] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self):
        if not self.name:
            raise ValueError("City name must not be empty")
        if self.area <= 0:
            raise ValueError(f"City '{self.name}' area must be positive (got {self.area})")
        if self.capacity is not None and self.capacity < 0:
            raise ValueError(f"City '{self.name}' capacity must be non-negative (got {self.capacity})")

    # Factors

    @property
    def factors(self) -> Dict[FactorDefinition, float]:
        return dict(self._intensities)

    def set_factor_raw(self, factor: FactorDefinition, raw_value: float) -> float:
        """Normalize a raw value through the factor's transform and store it."""
        intensity = factor.normalize(raw_value)
        self._intensities[factor] = intensity
        return intensity

    def set_factor_intensity(self, factor: FactorDefinition, intensity: float) -> None:
        self._intensities[factor] = _check_unit_interval(f"Intensity '{factor.name}'", intensity)

    def try_get_factor_intensity(self, factor: FactorDefinition) -> Optional[float]:
        return self._intensities.get(factor)

    def update_factor_intensity(self, factor: FactorDefinition, intensity: float) -> float:
        if factor not in self._intensities:
            raise KeyError(f"City '{self.name}' has no intensity for factor '{factor.name}'")
        value = min(1.0, max(0.0, float(intensity)))
        self._intensities[factor] = value
        return value

    # Residents

    @property
    def units(self) -> Dict[int, PopulationUnit]:
        return dict(self._units)

    def iter_units(self) -> Iterator[PopulationUnit]:
        return iter(list(self._units.values()))

    def get_unit(self, unit_id: int) -> Optional[PopulationUnit]:
        return self._units.get(unit_id)

    def add_population_unit(self, unit: PopulationUnit) -> None:
        if unit.unit_id in self._units:
            raise ValueError(f"Unit {unit.unit_id} already lives in '{self.name}'")
        self._units[unit.unit_id] = unit
        unit.city = self.name

    def remove_population_unit(self, unit: PopulationUnit) -> bool:
        return self._units.pop(unit.unit_id, None) is not None

    @property
    def population(self) -> int:
        return sum(u.count for u in self._units.values())

    @property
    def has_capacity_limit(self) -> bool:
        return bool(self.capacity)

    @property
    def remaining_capacity(self) -> Optional[int]:
        """None when unlimited; may be negative when over capacity."""
        if not self.has_capacity_limit:
            return None
        return self.capacity - self.population

    @property
    def density(self) -> float:
        return self.population / self.area
