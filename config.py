"""
Configuration and constants for the migration simulation.
Default parameters follow the pull-push attraction model and its feedback rules.
"""

from dataclasses import dataclass, asdict
from typing import Optional, Dict, Any

from errors import ConfigurationError


@dataclass
class SimulationConfig:
    """Run-level simulation configuration."""

    # Loop control
    max_steps: int = 1000
    check_stability: bool = True
    stability_threshold: int = 10  # Trailing window length (steps)
    stability_check_interval: int = 1
    min_steps_before_stability_check: int = 10
    stability_tolerance: float = 0.0  # Max |population change| inside the window

    # Migration probability
    sigmoid_steepness: float = 1.0  # k
    cost_sensitivity: float = 0.01  # lambda
    base_migration_cost: float = 1.0  # Cost per km
    sampling_threshold: int = 100  # Above this, use the normal approximation

    # Capacity
    capacity_steepness: float = 5.0
    soft_capacity: bool = False  # Damp probability as destinations fill up

    # Feedback
    factor_smoothing_alpha: float = 0.2

    # Decision stage parallelism
    use_parallel_processing: bool = False
    max_degree_of_parallelism: Optional[int] = None

    seed: Optional[int] = None

    def validate(self) -> "SimulationConfig":
        """Check single values and cross-field constraints, raising ConfigurationError."""
        if self.max_steps <= 0:
            raise ConfigurationError(f"max_steps must be greater than 0 (got {self.max_steps})")
        if self.stability_threshold < 0:
            raise ConfigurationError("stability_threshold must be >= 0")
        if self.stability_check_interval <= 0:
            raise ConfigurationError("stability_check_interval must be greater than 0")
        if self.min_steps_before_stability_check < 0:
            raise ConfigurationError("min_steps_before_stability_check must be >= 0")
        if self.stability_tolerance < 0:
            raise ConfigurationError("stability_tolerance must be >= 0")
        if self.sigmoid_steepness <= 0:
            raise ConfigurationError("sigmoid_steepness must be greater than 0")
        if self.cost_sensitivity < 0:
            raise ConfigurationError("cost_sensitivity must be >= 0")
        if self.base_migration_cost < 0:
            raise ConfigurationError("base_migration_cost must be >= 0")
        if self.sampling_threshold < 0:
            raise ConfigurationError("sampling_threshold must be >= 0")
        if self.capacity_steepness <= 0:
            raise ConfigurationError("capacity_steepness must be greater than 0")
        if not 0.0 <= self.factor_smoothing_alpha <= 1.0:
            raise ConfigurationError(
                f"factor_smoothing_alpha must be in [0, 1] (got {self.factor_smoothing_alpha})"
            )
        if self.max_degree_of_parallelism is not None and self.max_degree_of_parallelism <= 0:
            raise ConfigurationError("max_degree_of_parallelism must be positive when set")

        if self.check_stability and self.min_steps_before_stability_check >= self.max_steps:
            raise ConfigurationError(
                "min_steps_before_stability_check must be less than max_steps "
                "when stability checks are enabled"
            )
        return self

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# Factor catalogue used by the synthetic world generator.
# (name, direction, raw min, raw max, transform)
DEFAULT_FACTORS = [
    ("income", "positive", 10_000.0, 120_000.0, "logarithmic"),
    ("employment", "positive", 0.0, 1.0, "linear"),
    ("education", "positive", 0.0, 100.0, "sqrt"),
    ("healthcare", "positive", 0.0, 100.0, "linear"),
    ("housing_cost", "negative", 200.0, 5_000.0, "sigmoid"),
    ("pollution", "negative", 0.0, 300.0, "exponential"),
]

# Feedback policy applied to each generated factor
DEFAULT_FEEDBACK = {
    "income": "positive_externality",
    "employment": "none",
    "education": "none",
    "healthcare": "per_capita_resource",
    "housing_cost": "price_cost",
    "pollution": "negative_externality",
}

# Procedural city name pool
CITY_NAME_PARTS = {
    "prefixes": ["North", "South", "East", "West", "New", "Port", "Upper", "Lower"],
    "roots": ["Aria", "Boren", "Calid", "Drakos", "Elaria", "Fendor", "Garvon",
              "Halcyon", "Ithara", "Jorvik", "Kalmar", "Lumeria", "Mordian",
              "Navaria", "Ostara", "Pyrrhia", "Quelmar", "Rhovana", "Solvaria",
              "Tarsus", "Urland", "Vesperia", "Westmark", "Xandria", "Yvoria", "Zephyria"],
    "suffixes": ["ville", "ton", "burg", "haven", "field", "ford", "port"]
}
