"""
Per-run simulation state shared by pipeline stages, and the read-only
snapshot of it handed to observers.
"""

import time
from dataclasses import dataclass, replace, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

import numpy as np

from config import SimulationConfig
from migration import MigrationFlow
from world import World


class PerformanceMetrics:
    """Wall-clock timing of a run and of each step."""

    def __init__(self):
        self._step_durations: List[float] = []
        self._run_started: Optional[float] = None
        self._run_stopped: Optional[float] = None
        self._step_started: Optional[float] = None

    def start_simulation(self):
        self._run_started = time.perf_counter()
        self._run_stopped = None

    def stop_simulation(self):
        if self._run_started is not None and self._run_stopped is None:
            self._run_stopped = time.perf_counter()

    def start_step(self):
        self._step_started = time.perf_counter()

    def complete_step(self):
        if self._step_started is None:
            return
        self._step_durations.append(time.perf_counter() - self._step_started)
        self._step_started = None

    @property
    def total_elapsed(self) -> float:
        if self._run_started is None:
            return 0.0
        end = self._run_stopped if self._run_stopped is not None else time.perf_counter()
        return end - self._run_started

    @property
    def total_steps(self) -> int:
        return len(self._step_durations)

    @property
    def step_durations(self) -> List[float]:
        return list(self._step_durations)

    @property
    def average_step_duration(self) -> float:
        return float(np.mean(self._step_durations)) if self._step_durations else 0.0

    @property
    def min_step_duration(self) -> float:
        return min(self._step_durations) if self._step_durations else 0.0

    @property
    def max_step_duration(self) -> float:
        return max(self._step_durations) if self._step_durations else 0.0

    @property
    def steps_per_second(self) -> float:
        elapsed = self.total_elapsed
        return self.total_steps / elapsed if elapsed > 0 else 0.0

    def summary(self) -> str:
        return (f"Performance: {self.total_steps} steps in {self.total_elapsed:.2f}s "
                f"(Avg: {self.average_step_duration * 1000:.2f}ms/step, "
                f"Rate: {self.steps_per_second:.2f} steps/sec)")

    def to_dict(self) -> Dict[str, float]:
        return {
            "total_steps": self.total_steps,
            "total_elapsed": self.total_elapsed,
            "average_step_duration": self.average_step_duration,
            "min_step_duration": self.min_step_duration,
            "max_step_duration": self.max_step_duration,
            "steps_per_second": self.steps_per_second,
        }


@dataclass(frozen=True)
class ContextSnapshot:
    """Immutable view of the context at one instant."""
    step: int
    total_population_change: int
    cumulative_population_change: int
    max_city_population_change: int
    flows: Tuple[MigrationFlow, ...]
    is_stabilized: bool
    population: int
    city_populations: Mapping[str, int]
    performance: Mapping[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step,
            "total_population_change": self.total_population_change,
            "cumulative_population_change": self.cumulative_population_change,
            "max_city_population_change": self.max_city_population_change,
            "flows": [f.to_dict() for f in self.flows],
            "is_stabilized": self.is_stabilized,
            "population": self.population,
            "city_populations": dict(self.city_populations),
            "performance": dict(self.performance),
        }


class SimulationContext:
    """
    Mutable state of one run. Stages read the world and rng from here and
    write the fields they own: the decision stage fills `flows`, the
    execution stage the population change counters.
    """

    def __init__(self, world: World, config: SimulationConfig, rng: np.random.Generator,
                 executor=None):
        self.world = world
        self.config = config
        self.rng = rng
        self.executor = executor

        self.step = 0
        self.total_population_change = 0
        self.cumulative_population_change = 0
        self.max_city_population_change = 0
        self.flows: List[MigrationFlow] = []
        self.is_stabilized = False
        self.performance = PerformanceMetrics()

        self._shared: Dict[str, Any] = {}

    # Stage hand-off data, cleared at the end of every step

    def set_data(self, key: str, value: Any):
        self._shared[key] = value

    def get_data(self, key: str, default: Any = None) -> Any:
        return self._shared.get(key, default)

    def remove_data(self, key: str) -> bool:
        return self._shared.pop(key, None) is not None

    def clear_shared_data(self):
        self._shared.clear()

    def begin_step(self, step: int):
        self.step = step
        self.flows = []
        self.total_population_change = 0
        self.max_city_population_change = 0

    def snapshot(self) -> ContextSnapshot:
        return ContextSnapshot(
            step=self.step,
            total_population_change=self.total_population_change,
            cumulative_population_change=self.cumulative_population_change,
            max_city_population_change=self.max_city_population_change,
            flows=tuple(replace(f) for f in self.flows),
            is_stabilized=self.is_stabilized,
            population=self.world.population,
            city_populations=MappingProxyType(self.world.population_by_city()),
            performance=MappingProxyType(self.performance.to_dict()),
        )
