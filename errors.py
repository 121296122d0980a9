"""
Exception types raised by the migration simulation.
"""

from typing import Iterable, List, Optional


class SimulationError(Exception):
    """Base class for all simulation errors."""


class ConfigurationError(SimulationError):
    """Invalid configuration value; raised before the loop starts."""


class StructuralValidationError(SimulationError):
    """A world violates a structural invariant (e.g. a city is missing a factor)."""

    def __init__(self, message: str, city_name: Optional[str] = None,
                 missing_factors: Optional[Iterable[str]] = None):
        super().__init__(message)
        self.city_name = city_name
        self.missing_factors: List[str] = list(missing_factors or [])

    @classmethod
    def missing(cls, city_name: str, missing_factors: Iterable[str]) -> "StructuralValidationError":
        names = list(missing_factors)
        return cls(
            f"City '{city_name}' is missing values for factors: {', '.join(names)}",
            city_name=city_name,
            missing_factors=names,
        )


class StageExecutionError(SimulationError):
    """
    A pipeline stage raised during a step.
    Carries the step index, stage name and world population at the time of failure.
    """

    def __init__(self, message: str, step: Optional[int] = None,
                 stage_name: Optional[str] = None, population: Optional[int] = None):
        super().__init__(message)
        self.base_message = message
        self.step = step
        self.stage_name = stage_name
        self.population = population

    def __str__(self) -> str:
        parts = []
        if self.step is not None:
            parts.append(f"Step: {self.step}")
        if self.stage_name:
            parts.append(f"Stage: {self.stage_name}")
        if self.population is not None:
            parts.append(f"Population: {self.population:,}")
        if not parts:
            return self.base_message
        return f"{self.base_message} (Context: {', '.join(parts)})"


class CancellationRequested(SimulationError):
    """Cooperative cancellation observed at a step boundary."""

    def __init__(self, step: int):
        super().__init__(f"Simulation cancelled before step {step}")
        self.step = step


class SnapshotVersionMismatch(SimulationError):
    """A persisted snapshot was written by an incompatible format version."""

    def __init__(self, expected: str, found: Optional[str]):
        super().__init__(f"Snapshot version mismatch: expected {expected}, found {found}")
        self.expected = expected
        self.found = found
