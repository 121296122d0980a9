"""
Ordered step pipeline and the built-in migration stages.
"""

import uuid
from typing import Callable, Dict, Iterable, List, Optional

from attraction import AttractionResult, AttractionScorer
from context import SimulationContext
from feedback import FactorFeedbackUpdater, FeedbackRule, rules_by_factor
from migration import CapacityAllocator, MigrationDecisionEngine
from logger import get_logger

logger = get_logger()

POPULATION_BEFORE_KEY = "population_before"
POPULATION_AFTER_KEY = "population_after"
ATTRACTIONS_KEY = "attractions"


class SimulationStage:
    """
    Base class for pipeline stages. `stage_id` is the identity used for
    uniqueness; `name` is only for display.
    """

    name = "Stage"

    def __init__(self, stage_id: Optional[str] = None, name: Optional[str] = None):
        self.stage_id = stage_id or f"{type(self).__name__}-{uuid.uuid4().hex[:8]}"
        if name:
            self.name = name

    def execute(self, context: SimulationContext):
        raise NotImplementedError

    def on_simulation_start(self, context: SimulationContext):
        pass

    def on_simulation_end(self, context: SimulationContext, reason: str):
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}(stage_id={self.stage_id!r}, name={self.name!r})"


class StepPipeline:
    """Stages run strictly in order against one shared context; errors propagate."""

    def __init__(self, stages: Iterable[SimulationStage] = ()):
        self._stages: List[SimulationStage] = []
        self.current_stage: Optional[SimulationStage] = None
        for stage in stages:
            self.add(stage)

    @property
    def stages(self) -> List[SimulationStage]:
        return list(self._stages)

    def __len__(self) -> int:
        return len(self._stages)

    def __iter__(self):
        return iter(list(self._stages))

    def add(self, stage: SimulationStage):
        if any(s.stage_id == stage.stage_id for s in self._stages):
            raise ValueError(f"Stage '{stage.stage_id}' is already in the pipeline")
        self._stages.append(stage)

    def remove(self, stage_id: str) -> bool:
        before = len(self._stages)
        self._stages = [s for s in self._stages if s.stage_id != stage_id]
        return len(self._stages) < before

    def insert_before(self, predicate: Callable[[SimulationStage], bool], stage: SimulationStage):
        """Insert ahead of the first stage matching predicate, or append if none does."""
        if any(s.stage_id == stage.stage_id for s in self._stages):
            raise ValueError(f"Stage '{stage.stage_id}' is already in the pipeline")
        for index, existing in enumerate(self._stages):
            if predicate(existing):
                self._stages.insert(index, stage)
                return
        self._stages.append(stage)

    def clear(self):
        self._stages.clear()

    def execute_all(self, context: SimulationContext,
                    on_stage_complete: Optional[Callable[[SimulationStage], None]] = None):
        for stage in list(self._stages):
            self.current_stage = stage
            stage.execute(context)
            if on_stage_complete is not None:
                on_stage_complete(stage)
        self.current_stage = None


class MigrationDecisionStage(SimulationStage):
    """
    Scores every unit against every city, then samples flows.
    Scoring may fan out over the context's thread pool; sampling always runs
    sequentially in world order so a seed fixes the outcome.
    """

    name = "MigrationDecision"

    def __init__(self, engine: MigrationDecisionEngine, stage_id: Optional[str] = None):
        super().__init__(stage_id)
        self.engine = engine

    def execute(self, context: SimulationContext):
        world = context.world
        units = list(world.iter_units())
        scorer: AttractionScorer = self.engine.scorer

        def score(unit) -> Dict[str, AttractionResult]:
            return {r.city: r for r in scorer.score_all(world, unit)}

        if context.executor is not None and len(units) > 1:
            scores = list(context.executor.map(score, units))
        else:
            scores = [score(unit) for unit in units]

        flows = []
        for unit, attractions in zip(units, scores):
            flows.extend(self.engine.decide_unit(unit, world, context.rng, attractions))

        context.flows = flows
        context.set_data(ATTRACTIONS_KEY, dict(zip((u.unit_id for u in units), scores)))
        logger.debug(f"Step {context.step}: {len(flows)} flow(s) decided for {len(units)} unit(s)")


class MigrationExecutionStage(SimulationStage):
    """Applies capacity scaling, then relocates migrants through the world."""

    name = "MigrationExecution"

    def __init__(self, allocator: Optional[CapacityAllocator] = None, stage_id: Optional[str] = None):
        super().__init__(stage_id)
        self.allocator = allocator or CapacityAllocator()

    def execute(self, context: SimulationContext):
        world = context.world
        before = world.population_by_city()
        context.set_data(POPULATION_BEFORE_KEY, before)

        remaining = {c.name: c.remaining_capacity for c in world.cities}
        self.allocator.allocate(context.flows, world, remaining)

        moved = 0
        for flow in context.flows:
            if flow.migrants <= 0:
                continue
            moved += world.relocate(flow.unit_id, flow.origin, flow.destination, flow.migrants)

        after = world.population_by_city()
        context.set_data(POPULATION_AFTER_KEY, after)

        context.total_population_change = moved
        context.cumulative_population_change += moved
        context.max_city_population_change = max(
            (abs(after[name] - before[name]) for name in after), default=0
        )


class FeedbackStage(SimulationStage):
    """Adjusts city factor intensities from the step's population change."""

    name = "Feedback"

    def __init__(self, rules: Iterable[FeedbackRule], updater: FactorFeedbackUpdater,
                 stage_id: Optional[str] = None):
        super().__init__(stage_id)
        self.rules = list(rules_by_factor(rules).values())
        self.updater = updater

    def execute(self, context: SimulationContext):
        before = context.get_data(POPULATION_BEFORE_KEY)
        after = context.get_data(POPULATION_AFTER_KEY)
        if before is None or after is None or not self.rules:
            return
        for city in context.world.cities:
            self.updater.apply(city, before[city.name], after[city.name], self.rules)


def default_pipeline(engine: MigrationDecisionEngine, rules: Iterable[FeedbackRule],
                     updater: FactorFeedbackUpdater) -> StepPipeline:
    """Decision, execution and feedback, in that order."""
    return StepPipeline([
        MigrationDecisionStage(engine, stage_id="migration-decision"),
        MigrationExecutionStage(stage_id="migration-execution"),
        FeedbackStage(rules, updater, stage_id="feedback"),
    ])
