"""
World state for the migration simulation.
Owns cities, factor definitions and the population unit arena, and is the
single entry point for moving people between cities.
"""

import threading
from contextlib import contextmanager, ExitStack
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from city import City, FactorDefinition, PopulationUnit
from errors import SimulationError, StructuralValidationError
from geography import distance_km
from logger import get_logger

logger = get_logger()


class World:
    """Cities, factors and the unit arena keyed by unit id."""

    def __init__(self, factors: Iterable[FactorDefinition], cities: Iterable[City]):
        self.factors: List[FactorDefinition] = list(factors)
        self.cities: List[City] = list(cities)
        self._by_name: Dict[str, City] = {}
        self._units: Dict[int, PopulationUnit] = {}
        self._distances: Dict[Tuple[str, str], float] = {}

        self.validate()

        self._next_unit_id = max(self._units, default=-1) + 1
        self._locks: Dict[str, threading.Lock] = {c.name: threading.Lock() for c in self.cities}
        self._closed = False

    def validate(self):
        """Rebuild the lookup tables, raising StructuralValidationError on any broken invariant."""
        if not self.factors:
            raise StructuralValidationError("World must define at least one factor")
        if not self.cities:
            raise StructuralValidationError("World must contain at least one city")

        factor_names = [f.name for f in self.factors]
        if len(set(factor_names)) != len(factor_names):
            raise StructuralValidationError(f"Duplicate factor names: {factor_names}")
        known = set(self.factors)

        by_name: Dict[str, City] = {}
        units: Dict[int, PopulationUnit] = {}
        for city in self.cities:
            if city.name in by_name:
                raise StructuralValidationError(f"Duplicate city name '{city.name}'", city_name=city.name)
            by_name[city.name] = city

            present = set(city.factors)
            missing = [f.name for f in self.factors if f not in present]
            if missing:
                raise StructuralValidationError.missing(city.name, missing)
            unknown = [f.name for f in present - known]
            if unknown:
                raise StructuralValidationError(
                    f"City '{city.name}' holds intensities for unknown factors: {', '.join(unknown)}",
                    city_name=city.name,
                )

            for unit in city.units.values():
                if unit.unit_id in units:
                    raise StructuralValidationError(
                        f"Unit {unit.unit_id} appears in more than one city", city_name=city.name
                    )
                if unit.city != city.name:
                    raise StructuralValidationError(
                        f"Unit {unit.unit_id} lives in '{city.name}' but points at '{unit.city}'",
                        city_name=city.name,
                    )
                unit_missing = [f.name for f in self.factors if not unit.has_sensitivity(f)]
                if unit_missing:
                    raise StructuralValidationError(
                        f"Unit {unit.unit_id} in '{city.name}' has no sensitivity for: {', '.join(unit_missing)}",
                        city_name=city.name,
                        missing_factors=unit_missing,
                    )
                units[unit.unit_id] = unit

        self._by_name = by_name
        self._units = units

    # Lookups

    def city(self, name: str) -> City:
        try:
            return self._by_name[name]
        except KeyError:
            raise KeyError(f"Unknown city '{name}'") from None

    def get_city(self, name: str) -> Optional[City]:
        return self._by_name.get(name)

    def factor(self, name: str) -> FactorDefinition:
        for factor in self.factors:
            if factor.name == name:
                return factor
        raise KeyError(f"Unknown factor '{name}'")

    def unit(self, unit_id: int) -> PopulationUnit:
        return self._units[unit_id]

    @property
    def units(self) -> Dict[int, PopulationUnit]:
        return dict(self._units)

    def iter_units(self) -> Iterator[PopulationUnit]:
        """Units in world order: city order, then residence order."""
        for city in self.cities:
            yield from city.iter_units()

    @property
    def population(self) -> int:
        return sum(c.population for c in self.cities)

    def population_by_city(self) -> Dict[str, int]:
        return {c.name: c.population for c in self.cities}

    def distance(self, origin: str, destination: str) -> float:
        """Cached great-circle distance between two cities (km)."""
        key = (origin, destination) if origin <= destination else (destination, origin)
        if key not in self._distances:
            self._distances[key] = distance_km(self.city(key[0]).location, self.city(key[1]).location)
        return self._distances[key]

    # Mutation

    @property
    def closed(self) -> bool:
        return self._closed

    @contextmanager
    def city_lock(self, *names: str):
        """Hold the exclusive locks of the named cities, taken in sorted name order."""
        if self._closed:
            raise SimulationError("World has been closed")
        with ExitStack() as stack:
            for name in sorted(set(names)):
                stack.enter_context(self._locks[name])
            yield

    def residents(self, name: str) -> List[PopulationUnit]:
        """Consistent view of a city's residents."""
        with self.city_lock(name):
            return list(self.city(name).iter_units())

    def relocate(self, unit_id: int, origin: str, destination: str, migrants: int) -> int:
        """
        Move `migrants` members of a unit from origin to destination.
        A full move relocates the unit itself; a partial move splits a group and
        merges the movers into a same-lineage unit at the destination when one exists.
        Returns the number of people moved.
        """
        if origin == destination:
            raise ValueError(f"Origin and destination are both '{origin}'")
        if migrants <= 0:
            return 0

        unit = self._units[unit_id]
        if unit.city != origin:
            raise ValueError(f"Unit {unit_id} lives in '{unit.city}', not '{origin}'")
        if migrants > unit.count:
            raise ValueError(f"Cannot move {migrants} of unit {unit_id} (count {unit.count})")

        origin_city = self.city(origin)
        destination_city = self.city(destination)

        with self.city_lock(origin, destination):
            if migrants == unit.count:
                origin_city.remove_population_unit(unit)
                destination_city.add_population_unit(unit)
            else:
                kin = self._find_kin(destination_city, unit)
                if kin is not None:
                    unit.count -= migrants
                    kin.count += migrants
                else:
                    moved = unit.split(self._next_unit_id, migrants)
                    self._next_unit_id += 1
                    destination_city.add_population_unit(moved)
                    self._units[moved.unit_id] = moved

        logger.debug(f"Relocated {migrants} of unit {unit_id}: {origin} -> {destination}")
        return migrants

    @staticmethod
    def _find_kin(city: City, unit: PopulationUnit) -> Optional[PopulationUnit]:
        for candidate in city.iter_units():
            if candidate.lineage == unit.lineage and candidate.kind == unit.kind:
                return candidate
        return None

    def close(self):
        """Drain and release per-city locks. Later mutation raises SimulationError."""
        if self._closed:
            return
        for name in sorted(self._locks):
            lock = self._locks[name]
            with lock:
                pass
        self._locks.clear()
        self._closed = True
