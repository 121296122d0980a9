"""
Pull-push attraction model.
"""

import math
from dataclasses import dataclass
from typing import List

from city import City, PopulationUnit
from world import World


@dataclass(frozen=True)
class AttractionResult:
    city: str
    unit_id: int
    attraction: float
    pull: float
    push: float


def sigmoid(x: float) -> float:
    # Split on sign so exp never overflows
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    z = math.exp(x)
    return z / (1.0 + z)


def capacity_resistance(city: City, steepness: float) -> float:
    """Soft capacity: sigmoid(steepness * (population / capacity - 1)); 0 without a limit."""
    if not city.has_capacity_limit:
        return 0.0
    load = city.population / city.capacity
    return sigmoid(steepness * (load - 1.0))


class AttractionScorer:
    """
    Scores a city from one unit's point of view.

    Pull sums sensitivity * intensity over positive factors, push sums
    sensitivity * (1 - intensity) over negative factors, and
    attraction = sensitivity_scaling * (pull - push).
    """

    def score(self, city: City, unit: PopulationUnit, world: World) -> AttractionResult:
        pull = 0.0
        push = 0.0
        for factor in world.factors:
            intensity = city.try_get_factor_intensity(factor)
            if intensity is None:
                continue
            weight = unit.sensitivity(factor)
            if factor.is_pull:
                pull += weight * intensity
            else:
                push += weight * (1.0 - intensity)

        attraction = unit.sensitivity_scaling * (pull - push)
        return AttractionResult(city.name, unit.unit_id, attraction, pull, push)

    def score_all(self, world: World, unit: PopulationUnit) -> List[AttractionResult]:
        """Scores for every city in world order."""
        return [self.score(city, unit, world) for city in world.cities]
