"""
Scheduled world events.
An event pairs a trigger (when) with an effect (what happens to city factors)
and runs as a pipeline stage ahead of the migration decision.
"""

import math
from enum import Enum, auto
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from city import City, FactorDefinition
from context import SimulationContext
from feedback import FactorFeedbackUpdater, FeedbackRule, rules_by_factor
from pipeline import SimulationStage
from logger import get_logger

logger = get_logger()


# Triggers

class EventTrigger:
    """Decides whether an event fires at the current step."""

    def should_execute(self, context: SimulationContext) -> bool:
        raise NotImplementedError

    def on_executed(self, context: SimulationContext):
        pass

    @property
    def one_shot(self) -> bool:
        return False


class StepTrigger(EventTrigger):
    """Fires once, at exactly `step`."""

    def __init__(self, step: int):
        if step < 0:
            raise ValueError("Trigger step must be non-negative")
        self.step = step

    def should_execute(self, context: SimulationContext) -> bool:
        return context.step == self.step

    @property
    def one_shot(self) -> bool:
        return True


class PeriodicTrigger(EventTrigger):
    """Fires every `interval` steps inside the optional [start, end] window."""

    def __init__(self, interval: int, start: Optional[int] = None, end: Optional[int] = None):
        if interval <= 0:
            raise ValueError("Trigger interval must be positive")
        self.interval = interval
        self.start = start
        self.end = end

    def should_execute(self, context: SimulationContext) -> bool:
        if self.start is not None and context.step < self.start:
            return False
        if self.end is not None and context.step > self.end:
            return False
        return context.step % self.interval == 0


class ContinuousTrigger(EventTrigger):
    """Fires on every step inside the optional [start, end] window."""

    def __init__(self, start: Optional[int] = None, end: Optional[int] = None):
        self.start = start
        self.end = end

    def should_execute(self, context: SimulationContext) -> bool:
        if self.start is not None and context.step < self.start:
            return False
        if self.end is not None and context.step > self.end:
            return False
        return True


class ConditionalTrigger(EventTrigger):
    """Fires when `condition(context)` holds, at most once per cooldown period."""

    def __init__(self, condition: Callable[[SimulationContext], bool], cooldown: Optional[int] = None):
        self.condition = condition
        self.cooldown = cooldown
        self.last_executed: Optional[int] = None

    def should_execute(self, context: SimulationContext) -> bool:
        if (self.cooldown is not None and self.last_executed is not None
                and context.step - self.last_executed < self.cooldown):
            return False
        return bool(self.condition(context))

    def on_executed(self, context: SimulationContext):
        self.last_executed = context.step


# Effects

class EffectApplication(Enum):
    ABSOLUTE = auto()
    DELTA = auto()
    MULTIPLY = auto()
    LINEAR_TRANSITION = auto()
    LOGARITHMIC_TRANSITION = auto()


class EventEffect:
    def apply(self, context: SimulationContext) -> List[str]:
        """Apply to the world; returns the names of the affected cities."""
        raise NotImplementedError


class FactorChangeEffect(EventEffect):
    """
    Changes one factor's intensity in every city passing `city_filter`.

    `value` is either a fixed number or a (low, high) range; a range is drawn
    from the run's rng the first time the effect touches a city. Transitions
    move from the intensity seen at first application towards the target
    over `duration` steps (immediately when duration is None).
    """

    def __init__(self, factor: FactorDefinition, value: Union[float, Tuple[float, float]],
                 application: EffectApplication = EffectApplication.ABSOLUTE,
                 duration: Optional[int] = None,
                 city_filter: Optional[Callable[[City], bool]] = None):
        if duration is not None and duration <= 0:
            raise ValueError("Effect duration must be positive")
        self.factor = factor
        self.value = value
        self.application = application
        self.duration = duration
        self.city_filter = city_filter
        # city name -> (initial intensity, target, start step)
        self._states: Dict[str, Tuple[float, float, int]] = {}

    def _target(self, context: SimulationContext) -> float:
        if isinstance(self.value, tuple):
            low, high = self.value
            return float(low + context.rng.random() * (high - low))
        return float(self.value)

    def _progress(self, elapsed: int) -> float:
        if self.duration is None:
            return 1.0
        if self.application == EffectApplication.LOGARITHMIC_TRANSITION:
            progress = math.log(elapsed + 1) / math.log(self.duration + 1)
        else:
            progress = elapsed / self.duration
        return min(1.0, progress)

    def new_value(self, city_name: str, current: float, context: SimulationContext) -> float:
        if city_name not in self._states:
            self._states[city_name] = (current, self._target(context), context.step)
        initial, target, start = self._states[city_name]

        if self.application == EffectApplication.ABSOLUTE:
            return target
        if self.application == EffectApplication.DELTA:
            return current + target
        if self.application == EffectApplication.MULTIPLY:
            return current * target

        progress = self._progress(context.step - start)
        return initial + (target - initial) * progress

    def apply(self, context: SimulationContext) -> List[str]:
        affected = []
        for city in context.world.cities:
            if self.city_filter is not None and not self.city_filter(city):
                continue
            current = city.try_get_factor_intensity(self.factor)
            if current is None:
                continue
            city.update_factor_intensity(self.factor, self.new_value(city.name, current, context))
            affected.append(city.name)
        return affected


class FeedbackEffect(EventEffect):
    """
    Runs factor feedback as an event, e.g. a periodic policy review.

    The population change fed to the rules is measured between consecutive
    applications; the first application only records the baseline.
    """

    def __init__(self, rules: Iterable[FeedbackRule], updater: Optional[FactorFeedbackUpdater] = None,
                 city_filter: Optional[Callable[[City], bool]] = None):
        self.rules = list(rules_by_factor(rules).values())
        self.updater = updater or FactorFeedbackUpdater()
        self.city_filter = city_filter
        self._last_populations: Dict[str, int] = {}

    def apply(self, context: SimulationContext) -> List[str]:
        affected = []
        for city in context.world.cities:
            if self.city_filter is not None and not self.city_filter(city):
                continue
            population = city.population
            before = self._last_populations.get(city.name, population)
            self._last_populations[city.name] = population
            if self.updater.apply(city, before, population, self.rules):
                affected.append(city.name)
        return affected


class CompositeEffect(EventEffect):
    """Applies several effects in order."""

    def __init__(self, effects: Iterable[EventEffect]):
        self.effects = list(effects)

    def apply(self, context: SimulationContext) -> List[str]:
        affected: List[str] = []
        for effect in self.effects:
            for name in effect.apply(context):
                if name not in affected:
                    affected.append(name)
        return affected


class SimulationEvent:
    def __init__(self, name: str, trigger: EventTrigger, effect: EventEffect):
        self.name = name
        self.trigger = trigger
        self.effect = effect
        self.completed = False

    def __repr__(self) -> str:
        return f"SimulationEvent({self.name!r}, completed={self.completed})"


class EventStage(SimulationStage):
    """Fires due events each step and records them in `event_log`."""

    name = "Events"

    def __init__(self, events: Iterable[SimulationEvent], stage_id: Optional[str] = None):
        super().__init__(stage_id or "events")
        self.events: List[SimulationEvent] = list(events)
        self.event_log: List[Dict] = []

    def execute(self, context: SimulationContext):
        for event in self.events:
            if event.completed or not event.trigger.should_execute(context):
                continue

            affected = event.effect.apply(context)
            event.trigger.on_executed(context)
            if event.trigger.one_shot:
                event.completed = True

            self.event_log.append({"step": context.step, "event": event.name, "cities": affected})
            logger.info(f"EVENT (step {context.step}): {event.name} affected {len(affected)} city(ies)")
