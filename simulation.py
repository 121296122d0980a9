"""
Simulation loop.
Drives the step pipeline one step at a time, notifies observers, detects
convergence and produces the terminal result of a run.
"""

import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, List, Optional

import numpy as np

from config import SimulationConfig
from context import ContextSnapshot, SimulationContext
from errors import CancellationRequested, SimulationError, StageExecutionError
from events import EventStage, SimulationEvent
from feedback import FactorFeedbackUpdater, FeedbackRule
from migration import MigrationDecisionEngine
from pipeline import MigrationDecisionStage, StepPipeline, default_pipeline
from stability import StabilityDetector
from world import World
from logger import get_logger

logger = get_logger()


class StepResult(Enum):
    CONTINUE = "continue"
    STABILIZED = "stabilized"
    MAX_STEPS = "max_steps"


class TerminationReason(str, Enum):
    STABILIZED = "Stabilized"
    MAX_STEPS_REACHED = "MaxStepsReached"
    CANCELLED = "Cancelled"
    ERRORED = "Errored"


@dataclass(frozen=True)
class SimulationResult:
    reason: TerminationReason
    steps_completed: int
    final_population: int
    cumulative_population_change: int
    performance: str


@dataclass(frozen=True)
class SimulationCheckpoint:
    """Everything an external snapshot service needs to persist a run."""
    step: int
    created_at: datetime
    context: ContextSnapshot
    config: SimulationConfig
    is_stabilized: bool
    performance: str


class SimulationLoop:
    """
    One run over one world. Drive it with `step()` or let `run()` /
    `run_async()` loop until a terminal result. Not safe to drive from
    more than one thread.
    """

    def __init__(self, world: World, config: SimulationConfig,
                 pipeline: Optional[StepPipeline] = None,
                 observers: Iterable = (),
                 seed: Optional[int] = None,
                 feedback_rules: Iterable[FeedbackRule] = (),
                 events: Iterable[SimulationEvent] = ()):
        self.config = config.validate()
        self.world = world
        self.observers: List = list(observers)
        self.seed = seed if seed is not None else config.seed

        self._executor = None
        if config.use_parallel_processing:
            self._executor = ThreadPoolExecutor(max_workers=config.max_degree_of_parallelism,
                                                thread_name_prefix="migrasim")

        self.engine = MigrationDecisionEngine(config)
        self.updater = FactorFeedbackUpdater(config.factor_smoothing_alpha)
        self.pipeline = pipeline or default_pipeline(self.engine, feedback_rules, self.updater)

        events = list(events)
        if events:
            self.pipeline.insert_before(lambda s: isinstance(s, MigrationDecisionStage), EventStage(events))

        self.context = SimulationContext(world, config, np.random.default_rng(self.seed), self._executor)
        self.detector = StabilityDetector(config)

        self.result: Optional[SimulationResult] = None
        self._next_step = 0
        self._completed_steps = 0
        self._started = False
        self._closed = False

    # Properties

    @property
    def current_step(self) -> int:
        return self.context.step

    @property
    def steps_completed(self) -> int:
        return self._completed_steps

    @property
    def is_finished(self) -> bool:
        return self.result is not None

    def add_observer(self, observer):
        self.observers.append(observer)

    # Notification

    def _notify(self, hook: str, *args):
        for observer in list(self.observers):
            method = getattr(observer, hook, None)
            if method is None:
                continue
            try:
                method(*args)
            except Exception as exc:
                logger.warning(f"Observer {type(observer).__name__}.{hook} failed: {exc}")

    def _stage_hook(self, hook: str, *args):
        for stage in self.pipeline:
            try:
                getattr(stage, hook)(self.context, *args)
            except Exception as exc:
                logger.warning(f"Stage {stage.name}.{hook} failed: {exc}")

    # Lifecycle

    def _ensure_usable(self):
        if self._closed:
            raise SimulationError("Simulation loop has been closed")
        if self.result is not None:
            raise SimulationError(f"Simulation already finished ({self.result.reason.value})")

    def _start(self):
        self._started = True
        self.context.performance.start_simulation()
        logger.info(f"Starting simulation: {len(self.world.cities)} cities, "
                    f"population {self.world.population:,}, max {self.config.max_steps} steps, seed {self.seed}")
        self._stage_hook("on_simulation_start")
        self._notify("on_simulation_start", self.context.snapshot())

    def _finish(self, reason: TerminationReason) -> SimulationResult:
        performance = self.context.performance
        performance.stop_simulation()
        self.result = SimulationResult(
            reason=reason,
            steps_completed=self._completed_steps,
            final_population=self.world.population,
            cumulative_population_change=self.context.cumulative_population_change,
            performance=performance.summary(),
        )
        self._stage_hook("on_simulation_end", reason.value)
        self._notify("on_simulation_end", self.context.snapshot(), reason.value)
        logger.info(f"Simulation finished: {reason.value} after {self._completed_steps} step(s). "
                    f"{performance.summary()}")
        return self.result

    def step(self) -> StepResult:
        """Execute exactly one step."""
        self._ensure_usable()
        if not self._started:
            self._start()

        context = self.context
        step = self._next_step
        context.begin_step(step)
        context.performance.start_step()
        self._notify("on_step_start", context.snapshot())

        try:
            self.pipeline.execute_all(
                context,
                on_stage_complete=lambda stage: self._notify("on_stage_complete", stage.name, context.snapshot()),
            )
        except Exception as exc:
            stage = self.pipeline.current_stage
            self.pipeline.current_stage = None
            stage_name = stage.name if stage is not None else None
            error = StageExecutionError(f"Stage '{stage_name}' failed: {exc}",
                                        step=step, stage_name=stage_name,
                                        population=self.world.population)
            logger.error(str(error))
            context.performance.complete_step()
            self._notify("on_error", context.snapshot(), error)
            self._finish(TerminationReason.ERRORED)
            raise error from exc

        context.performance.complete_step()
        self._completed_steps += 1
        self._next_step += 1
        self._notify("on_step_complete", context.snapshot())

        self.detector.observe(step, context.total_population_change)
        context.is_stabilized = self.detector.is_converged
        context.clear_shared_data()

        logger.debug(f"Step {step}: moved {context.total_population_change:,}, "
                     f"stability {self.detector.state.value}")

        if context.is_stabilized:
            self._finish(TerminationReason.STABILIZED)
            return StepResult.STABILIZED
        if self._next_step >= self.config.max_steps:
            self._finish(TerminationReason.MAX_STEPS_REACHED)
            return StepResult.MAX_STEPS
        return StepResult.CONTINUE

    def cancel(self):
        """End the run with reason Cancelled; end notifications fire before this returns."""
        self._ensure_usable()
        if not self._started:
            self._start()
        self._finish(TerminationReason.CANCELLED)

    def _cancel_and_raise(self):
        self.cancel()
        raise CancellationRequested(self._next_step)

    def run(self, cancel: Optional[threading.Event] = None) -> SimulationResult:
        """Step until a terminal result; `cancel` is checked between steps."""
        while True:
            if cancel is not None and cancel.is_set():
                self._cancel_and_raise()
            if self.step() != StepResult.CONTINUE:
                return self.result

    async def run_async(self, cancel=None) -> SimulationResult:
        """
        Same as run(), yielding to the event loop between steps only.
        `cancel` may be a threading.Event or an asyncio.Event.
        """
        while True:
            if cancel is not None and cancel.is_set():
                self._cancel_and_raise()
            if self.step() != StepResult.CONTINUE:
                return self.result
            try:
                await asyncio.sleep(0)
            except asyncio.CancelledError:
                self.cancel()
                raise

    # Checkpoint & disposal

    def checkpoint(self) -> SimulationCheckpoint:
        if self._completed_steps == 0:
            raise SimulationError("Checkpoint requires at least one completed step")
        return SimulationCheckpoint(
            step=self._completed_steps - 1,
            created_at=datetime.now(timezone.utc),
            context=self.context.snapshot(),
            config=replace(self.config),
            is_stabilized=self.context.is_stabilized,
            performance=self.context.performance.summary(),
        )

    def close(self):
        """Flush observers and stages, stop the worker pool and release the world's locks."""
        if self._closed:
            return
        for target in list(self.observers) + list(self.pipeline):
            flush = getattr(target, "flush", None)
            if flush is None:
                continue
            try:
                flush()
            except Exception as exc:
                logger.warning(f"{type(target).__name__}.flush failed: {exc}")
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        self.world.close()
        self._closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
