"""
Post-migration factor feedback.
Each factor follows one policy that maps the population change of a city onto
a target intensity; targets are exponentially smoothed before being written.
"""

import math
from enum import Enum
from dataclasses import dataclass
from typing import Dict, Iterable, Mapping, Optional

from city import City, FactorDefinition
from logger import get_logger

logger = get_logger()


class FeedbackPolicy(Enum):
    NONE = "none"
    PER_CAPITA_RESOURCE = "per_capita_resource"
    PRICE_COST = "price_cost"
    NEGATIVE_EXTERNALITY = "negative_externality"
    POSITIVE_EXTERNALITY = "positive_externality"

    @classmethod
    def parse(cls, value) -> "FeedbackPolicy":
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().lower())


@dataclass(frozen=True)
class FeedbackRule:
    """Feedback policy for one factor with its tuning parameters."""
    factor: FactorDefinition
    policy: FeedbackPolicy = FeedbackPolicy.NONE
    elasticity: float = 0.3  # PRICE_COST epsilon
    externality_coefficient: float = 0.0001  # NEGATIVE_EXTERNALITY beta
    saturation_point: float = 1_000_000  # POSITIVE_EXTERNALITY

    def __post_init__(self):
        object.__setattr__(self, "policy", FeedbackPolicy.parse(self.policy))


def target_value(rule: FeedbackRule, current: float, population_before: int, population_after: int) -> float:
    """Unsmoothed target intensity. Undefined ratios leave the value unchanged."""
    before, after = population_before, population_after
    policy = rule.policy

    if policy == FeedbackPolicy.NONE:
        return current

    if policy == FeedbackPolicy.PER_CAPITA_RESOURCE:
        if after == 0:
            return current
        return current * (before / after)

    if policy == FeedbackPolicy.PRICE_COST:
        if before == 0:
            return current
        return current + rule.elasticity * ((after - before) / before) * current

    if policy == FeedbackPolicy.NEGATIVE_EXTERNALITY:
        return current + rule.externality_coefficient * (after - before)

    if policy == FeedbackPolicy.POSITIVE_EXTERNALITY:
        if after == 0 or rule.saturation_point <= 0:
            return current
        growth_factor = 1.0 - math.tanh(after / rule.saturation_point)
        relative_growth = (after - before) / after
        return current * (1.0 + relative_growth * growth_factor)

    raise ValueError(f"Unsupported feedback policy: {policy}")


def rules_by_factor(rules: Iterable[FeedbackRule]) -> Dict[FactorDefinition, FeedbackRule]:
    """Index rules by factor; policies are exclusive, so a factor may carry only one rule."""
    indexed: Dict[FactorDefinition, FeedbackRule] = {}
    for rule in rules:
        if rule.factor in indexed:
            raise ValueError(f"Factor '{rule.factor.name}' has more than one feedback rule")
        indexed[rule.factor] = rule
    return indexed


class FactorFeedbackUpdater:
    """Applies feedback rules to one city after migration, with smoothing alpha."""

    def __init__(self, smoothing_alpha: float = 0.2):
        if not 0.0 <= smoothing_alpha <= 1.0:
            raise ValueError(f"smoothing_alpha must be within [0, 1] (got {smoothing_alpha})")
        self.smoothing_alpha = smoothing_alpha

    def smooth(self, current: float, target: float) -> float:
        value = current + self.smoothing_alpha * (target - current)
        return min(1.0, max(0.0, value))

    def apply(self, city: City, population_before: int, population_after: int,
              rules: Iterable[FeedbackRule]) -> Dict[FactorDefinition, float]:
        """Update the city's intensities in place; returns the factors that changed."""
        indexed = rules_by_factor(rules)
        changed: Dict[FactorDefinition, float] = {}
        if population_before == population_after:
            return changed

        for rule in indexed.values():
            if rule.policy == FeedbackPolicy.NONE:
                continue
            current = city.try_get_factor_intensity(rule.factor)
            if current is None:
                continue
            target = target_value(rule, current, population_before, population_after)
            final = self.smooth(current, target)
            if final != current:
                city.update_factor_intensity(rule.factor, final)
                changed[rule.factor] = final

        if changed:
            logger.debug(
                f"{city.name}: population {population_before:,} -> {population_after:,}, "
                f"{len(changed)} factor(s) adjusted"
            )
        return changed


def rules_from_mapping(factors: Iterable[FactorDefinition],
                       policies: Mapping[str, str],
                       overrides: Optional[Mapping[str, Mapping[str, float]]] = None) -> list:
    """Build one rule per factor from a name -> policy mapping; unlisted factors get NONE."""
    overrides = overrides or {}
    rules = []
    for factor in factors:
        policy = policies.get(factor.name, FeedbackPolicy.NONE.value)
        rules.append(FeedbackRule(factor, FeedbackPolicy.parse(policy), **overrides.get(factor.name, {})))
    return rules
