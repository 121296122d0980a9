"""
Synthetic world generation.
Creates cities with realistic factor distributions and seeds each one with
population groups (and optionally individual persons).
"""

from typing import List, Optional, Tuple

import numpy as np

from city import City, FactorDefinition, PopulationUnit
from config import DEFAULT_FACTORS, DEFAULT_FEEDBACK, CITY_NAME_PARTS
from feedback import FeedbackRule, rules_from_mapping
from geography import Coordinate
from world import World
from logger import get_logger

logger = get_logger()


class WorldGenerator:
    """Seeded generator for demo and CLI worlds."""

    def __init__(self, seed: Optional[int] = None):
        self.rng = np.random.default_rng(seed)
        self._next_unit_id = 0

    def factors(self) -> List[FactorDefinition]:
        return [FactorDefinition(name, direction, lo, hi, transform)
                for name, direction, lo, hi, transform in DEFAULT_FACTORS]

    def _city_name(self, used: set) -> str:
        parts = CITY_NAME_PARTS
        for _ in range(100):
            root = parts["roots"][self.rng.integers(len(parts["roots"]))]
            roll = self.rng.random()
            if roll < 0.3:
                name = f"{parts['prefixes'][self.rng.integers(len(parts['prefixes']))]} {root}"
            elif roll < 0.7:
                name = f"{root}{parts['suffixes'][self.rng.integers(len(parts['suffixes']))]}"
            else:
                name = root
            if name not in used:
                return name
        return f"City {len(used) + 1}"

    def _raw_value(self, name: str) -> float:
        """Raw factor values from skewed real-world style distributions."""
        rng = self.rng
        if name == "income":
            return rng.lognormal(np.log(40_000), 0.5)
        if name == "employment":
            return rng.beta(8, 2)
        if name in ("education", "healthcare"):
            return rng.uniform(20, 95)
        if name == "housing_cost":
            return rng.lognormal(np.log(1_500), 0.5)
        if name == "pollution":
            return rng.gamma(2.0, 30.0)
        return rng.random()

    def _unit(self, factors: List[FactorDefinition], count: Optional[int]) -> PopulationUnit:
        rng = self.rng
        unit_id = self._next_unit_id
        self._next_unit_id += 1
        sensitivities = {f: float(rng.uniform(0.0, 1.0)) for f in factors}
        params = dict(
            moving_willingness=float(rng.uniform(0.1, 0.9)),
            retention_rate=float(rng.uniform(0.6, 0.95)),
            sensitivity_scaling=float(rng.uniform(0.5, 1.0)),
            attraction_threshold=float(rng.uniform(0.02, 0.15)),
            min_acceptable_attraction=float(rng.uniform(0.0, 0.1)),
        )
        if count is None:
            return PopulationUnit.person(unit_id, sensitivities, **params)
        return PopulationUnit.group(unit_id, count, sensitivities, **params)

    def generate(self, num_cities: int = 8, groups_per_city: int = 4,
                 persons_per_city: int = 0, capacity_share: float = 0.5) -> Tuple[World, List[FeedbackRule]]:
        """Build a validated world and the default feedback rules for its factors."""
        if num_cities < 2:
            raise ValueError("A migration world needs at least two cities")
        rng = self.rng
        factors = self.factors()
        cities = []
        used = set()

        for _ in range(num_cities):
            name = self._city_name(used)
            used.add(name)
            city = City(
                name=name,
                location=Coordinate(float(rng.uniform(35, 60)), float(rng.uniform(-10, 30))),
                area=float(rng.uniform(50, 1_500)),
            )
            for factor in factors:
                city.set_factor_raw(factor, self._raw_value(factor.name))

            # Group sizes are log-normal
            for _ in range(groups_per_city):
                size = int(np.clip(rng.lognormal(np.log(5_000), 1.0), 50, 200_000))
                city.add_population_unit(self._unit(factors, size))
            for _ in range(persons_per_city):
                city.add_population_unit(self._unit(factors, None))

            if rng.random() < capacity_share:
                city.capacity = int(city.population * rng.uniform(1.1, 1.6))
            cities.append(city)

        world = World(factors, cities)
        logger.info(f"Generated world: {num_cities} cities, {len(world.units)} units, "
                    f"population {world.population:,}")
        return world, rules_from_mapping(factors, DEFAULT_FEEDBACK)
