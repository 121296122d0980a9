"""
Migration decisions and capacity allocation.
Turns attraction differentials into probabilities, samples migrant counts and
scales inflows down to what destination cities can still hold.
"""

import math
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

import numpy as np

from attraction import AttractionResult, AttractionScorer, capacity_resistance, sigmoid
from city import City, PopulationUnit
from config import SimulationConfig
from world import World


@dataclass
class MigrationFlow:
    """A decided movement of `migrants` people of one unit between two cities."""
    origin: str
    destination: str
    unit_id: int
    raw_rate: float
    probability: float
    attraction_difference: float
    decided: int
    migrants: int

    @property
    def was_scaled(self) -> bool:
        return self.migrants < self.decided

    def to_dict(self) -> Dict:
        return {
            "origin": self.origin,
            "destination": self.destination,
            "unit_id": self.unit_id,
            "raw_rate": self.raw_rate,
            "probability": self.probability,
            "attraction_difference": self.attraction_difference,
            "decided": self.decided,
            "migrants": self.migrants,
        }


class MigrationDecisionEngine:
    """Emigration gate, migration probability and population-size dependent sampling."""

    def __init__(self, config: SimulationConfig, scorer: Optional[AttractionScorer] = None):
        self.config = config
        self.scorer = scorer or AttractionScorer()

    def passes_gate(self, origin_attraction: float, destination_attraction: float,
                    unit: PopulationUnit) -> bool:
        delta = destination_attraction - origin_attraction
        return delta > unit.attraction_threshold and destination_attraction > unit.min_acceptable_attraction

    def probability(self, delta: float, distance: float, unit: PopulationUnit,
                    destination: Optional[City] = None) -> Tuple[float, float]:
        """Return (raw rate, effective probability) for an attraction difference and distance."""
        raw_rate = sigmoid(self.config.sigmoid_steepness * delta)
        cost = distance * self.config.base_migration_cost
        p = raw_rate * math.exp(-self.config.cost_sensitivity * cost)

        if self.config.soft_capacity and destination is not None:
            p *= 1.0 - capacity_resistance(destination, self.config.capacity_steepness)

        effective = (1.0 - unit.retention_rate) * p
        return raw_rate, min(1.0, max(0.0, effective))

    def sample(self, n: int, p: float, rng: np.random.Generator) -> int:
        """
        Number of successes out of n trials with probability p.
        Small populations and single persons run one Bernoulli trial per individual; above
        `sampling_threshold` a Box-Muller normal approximation is used.
        """
        if n <= 0 or p <= 0.0:
            return 0
        if p >= 1.0:
            return n

        if n <= self.config.sampling_threshold or n == 1:
            return int(np.count_nonzero(rng.random(n) < p))

        mean = n * p
        std = math.sqrt(n * p * (1.0 - p))
        u1 = 1.0 - rng.random()  # (0, 1], keeps log finite
        u2 = rng.random()
        z = math.sqrt(-2.0 * math.log(u1)) * math.cos(2.0 * math.pi * u2)
        x = mean + std * z
        return int(min(n, max(0, math.floor(x + 0.5))))

    def decide(self, origin: City, destination: City, unit: PopulationUnit, world: World,
               rng: np.random.Generator, available: Optional[int] = None) -> Optional[MigrationFlow]:
        """Decide a single origin -> destination pair. Returns None when nobody moves."""
        origin_score = self.scorer.score(origin, unit, world).attraction
        destination_score = self.scorer.score(destination, unit, world).attraction
        return self._decide_pair(origin, destination, unit, world, rng,
                                 origin_score, destination_score,
                                 unit.count if available is None else available)

    def _decide_pair(self, origin: City, destination: City, unit: PopulationUnit, world: World,
                     rng: np.random.Generator, origin_score: float, destination_score: float,
                     n: int) -> Optional[MigrationFlow]:
        candidate = self._candidate(origin, destination, unit, world, origin_score, destination_score)
        if candidate is None:
            return None
        raw_rate, probability, delta = candidate
        migrants = self.sample(n, probability, rng)
        if migrants == 0:
            return None
        return MigrationFlow(origin.name, destination.name, unit.unit_id,
                             raw_rate, probability, delta, migrants, migrants)

    def _candidate(self, origin: City, destination: City, unit: PopulationUnit, world: World,
                   origin_score: float, destination_score: float) -> Optional[Tuple[float, float, float]]:
        if origin.name == destination.name:
            return None
        if not self.passes_gate(origin_score, destination_score, unit):
            return None
        delta = destination_score - origin_score
        distance = world.distance(origin.name, destination.name)
        raw_rate, probability = self.probability(delta, distance, unit, destination)
        return raw_rate, probability, delta

    def decide_unit(self, unit: PopulationUnit, world: World, rng: np.random.Generator,
                    attractions: Optional[Mapping[str, AttractionResult]] = None) -> List[MigrationFlow]:
        """
        All flows for one unit this step.

        Persons only consider their single most probable destination. Groups
        walk destinations in descending probability order, sampling from the
        members not yet committed, so a group never sends more than its count.
        """
        if attractions is None:
            attractions = {r.city: r for r in self.scorer.score_all(world, unit)}

        origin = world.city(unit.city)
        origin_score = attractions[origin.name].attraction

        candidates = []
        for destination in world.cities:
            candidate = self._candidate(origin, destination, unit, world,
                                        origin_score, attractions[destination.name].attraction)
            if candidate is not None:
                candidates.append((destination, candidate))
        if not candidates:
            return []

        # Stable sort keeps world order between equal probabilities
        candidates.sort(key=lambda item: item[1][1], reverse=True)
        if unit.is_person:
            candidates = candidates[:1]

        flows = []
        pool = unit.count
        for destination, (raw_rate, probability, delta) in candidates:
            if pool == 0:
                break
            migrants = self.sample(pool, probability, rng)
            if migrants == 0:
                continue
            flows.append(MigrationFlow(origin.name, destination.name, unit.unit_id,
                                       raw_rate, probability, delta, migrants, migrants))
            pool -= migrants
        return flows


class CapacityAllocator:
    """Proportional scaling of inflows against remaining destination capacity."""

    def allocate(self, flows: Iterable[MigrationFlow], world: World,
                 remaining: Optional[Mapping[str, Optional[int]]] = None) -> List[MigrationFlow]:
        """
        Scale each flow's `migrants` in place. `remaining` overrides the
        capacity left per destination; by default it is read from the world.
        Returns the flows in their original order.
        """
        flows = list(flows)
        by_destination: Dict[str, List[MigrationFlow]] = defaultdict(list)
        for flow in flows:
            by_destination[flow.destination].append(flow)

        for name, inflows in by_destination.items():
            if remaining is not None and name in remaining:
                left = remaining[name]
            else:
                left = world.city(name).remaining_capacity
            self.scale(inflows, left)
        return flows

    @staticmethod
    def scale(inflows: List[MigrationFlow], remaining: Optional[int]) -> None:
        if remaining is None:
            return
        if remaining <= 0:
            for flow in inflows:
                flow.migrants = 0
            return
        total = sum(f.migrants for f in inflows)
        if total <= remaining:
            return
        for flow in inflows:
            flow.migrants = flow.migrants * remaining // total
