import math

import numpy as np
import pytest

from city import City, FactorDefinition, PopulationUnit
from config import SimulationConfig
from context import SimulationContext
from events import (
    CompositeEffect,
    ConditionalTrigger,
    ContinuousTrigger,
    EffectApplication,
    EventStage,
    FactorChangeEffect,
    FeedbackEffect,
    PeriodicTrigger,
    SimulationEvent,
    StepTrigger,
)
from feedback import FactorFeedbackUpdater, FeedbackPolicy, FeedbackRule
from geography import Coordinate
from simulation import SimulationLoop
from world import World


@pytest.fixture
def housing():
    return FactorDefinition("housing", "negative")


@pytest.fixture
def jobs():
    return FactorDefinition("jobs", "positive")


@pytest.fixture
def context(housing, jobs):
    cities = []
    for i, name in enumerate(["Aria", "Boren"]):
        city = City(name, Coordinate(48.0 + i, 2.0))
        city.set_factor_intensity(housing, 0.4)
        city.set_factor_intensity(jobs, 0.5)
        city.add_population_unit(PopulationUnit.group(i, 200, {housing: 0.5, jobs: 0.5}))
        cities.append(city)
    world = World([housing, jobs], cities)
    return SimulationContext(world, SimulationConfig(), np.random.default_rng(0))


def at_step(context, step):
    context.begin_step(step)
    return context


def intensity(context, city, factor):
    return context.world.city(city).try_get_factor_intensity(factor)


class TestTriggers:
    """When events fire."""

    def test_step_trigger(self, context):
        """Test that a step trigger fires once at its step."""
        trigger = StepTrigger(3)
        assert [trigger.should_execute(at_step(context, s)) for s in range(5)] == [False, False, False, True, False]
        assert trigger.one_shot

    def test_step_trigger_rejects_negative(self):
        """Test step trigger validation."""
        with pytest.raises(ValueError):
            StepTrigger(-1)

    def test_periodic_trigger_window(self, context):
        """Test periodic firing inside a start/end window."""
        trigger = PeriodicTrigger(3, start=2, end=10)
        fired = [s for s in range(15) if trigger.should_execute(at_step(context, s))]
        assert fired == [3, 6, 9]
        assert not trigger.one_shot

    def test_continuous_trigger(self, context):
        """Test continuous firing inside a window."""
        trigger = ContinuousTrigger(start=1, end=3)
        fired = [s for s in range(6) if trigger.should_execute(at_step(context, s))]
        assert fired == [1, 2, 3]

    def test_conditional_trigger_cooldown(self, context):
        """Test that a conditional trigger respects its cooldown."""
        trigger = ConditionalTrigger(lambda ctx: ctx.world.population > 0, cooldown=3)
        fired = []
        for s in range(8):
            at_step(context, s)
            if trigger.should_execute(context):
                trigger.on_executed(context)
                fired.append(s)
        assert fired == [0, 3, 6]
        assert trigger.last_executed == 6


class TestEffects:
    """What events do to city factors."""

    def test_absolute(self, context, housing):
        """Test absolute factor replacement."""
        effect = FactorChangeEffect(housing, 0.9)
        assert effect.apply(at_step(context, 0)) == ["Aria", "Boren"]
        assert intensity(context, "Aria", housing) == 0.9

    def test_delta_is_clamped(self, context, jobs):
        """Test additive changes clamped to the unit interval."""
        effect = FactorChangeEffect(jobs, 0.8, EffectApplication.DELTA)
        effect.apply(at_step(context, 0))
        assert intensity(context, "Aria", jobs) == 1.0

    def test_multiply(self, context, jobs):
        """Test multiplicative factor changes."""
        FactorChangeEffect(jobs, 0.5, EffectApplication.MULTIPLY).apply(at_step(context, 0))
        assert intensity(context, "Boren", jobs) == pytest.approx(0.25)

    def test_city_filter(self, context, housing):
        """Test that only filtered cities are affected."""
        effect = FactorChangeEffect(housing, 1.0, city_filter=lambda c: c.name == "Boren")
        assert effect.apply(at_step(context, 0)) == ["Boren"]
        assert intensity(context, "Aria", housing) == 0.4
        assert intensity(context, "Boren", housing) == 1.0

    def test_linear_transition(self, context, housing):
        """Test a linear transition over its duration."""
        effect = FactorChangeEffect(housing, 0.8, EffectApplication.LINEAR_TRANSITION, duration=4)
        values = []
        for s in range(2, 8):
            effect.apply(at_step(context, s))
            values.append(intensity(context, "Aria", housing))
        assert values == pytest.approx([0.4, 0.5, 0.6, 0.7, 0.8, 0.8])

    def test_logarithmic_transition(self, context, housing):
        """Test the front-loaded logarithmic transition."""
        effect = FactorChangeEffect(housing, 0.8, EffectApplication.LOGARITHMIC_TRANSITION, duration=3)
        effect.apply(at_step(context, 0))
        effect.apply(at_step(context, 1))
        expected = 0.4 + 0.4 * math.log(2) / math.log(4)
        assert intensity(context, "Aria", housing) == pytest.approx(expected)
        # Front-loaded compared to the linear path
        assert expected > 0.4 + 0.4 / 3

    def test_range_value_is_drawn_once_per_city(self, context, jobs):
        """Test that a ranged target is drawn once and then reused."""
        effect = FactorChangeEffect(jobs, (0.1, 0.3))
        effect.apply(at_step(context, 0))
        first = intensity(context, "Aria", jobs)
        assert 0.1 <= first <= 0.3
        effect.apply(at_step(context, 1))
        assert intensity(context, "Aria", jobs) == first

    def test_invalid_duration(self, housing):
        """Test effect duration validation."""
        with pytest.raises(ValueError):
            FactorChangeEffect(housing, 0.5, EffectApplication.LINEAR_TRANSITION, duration=0)

    def test_composite(self, context, housing, jobs):
        """Test composite effects and their merged city list."""
        effect = CompositeEffect([
            FactorChangeEffect(housing, 0.9, city_filter=lambda c: c.name == "Aria"),
            FactorChangeEffect(jobs, 0.1),
        ])
        assert effect.apply(at_step(context, 0)) == ["Aria", "Boren"]
        assert intensity(context, "Aria", housing) == 0.9
        assert intensity(context, "Boren", jobs) == 0.1


class TestFeedbackEffect:
    """Feedback rules run as an event effect."""

    def test_first_application_records_baseline(self, context, housing):
        """Nothing changes until population has moved between two applications."""
        effect = FeedbackEffect([FeedbackRule(housing, FeedbackPolicy.PRICE_COST)], FactorFeedbackUpdater(1.0))
        assert effect.apply(at_step(context, 0)) == []
        assert intensity(context, "Aria", housing) == 0.4

    def test_applies_rules_to_population_change(self, context, housing):
        """Price pressure follows the change since the previous firing."""
        rule = FeedbackRule(housing, FeedbackPolicy.PRICE_COST, elasticity=0.3)
        effect = FeedbackEffect([rule], FactorFeedbackUpdater(1.0))
        effect.apply(at_step(context, 0))

        context.world.relocate(0, "Aria", "Boren", 100)
        assert effect.apply(at_step(context, 5)) == ["Aria", "Boren"]
        assert intensity(context, "Aria", housing) == pytest.approx(0.4 - 0.3 * 0.5 * 0.4)
        assert intensity(context, "Boren", housing) == pytest.approx(0.4 + 0.3 * 0.5 * 0.4)

        assert effect.apply(at_step(context, 10)) == []

    def test_city_filter(self, context, housing):
        """Filtered-out cities keep their factors."""
        rule = FeedbackRule(housing, FeedbackPolicy.PRICE_COST)
        effect = FeedbackEffect([rule], FactorFeedbackUpdater(1.0), city_filter=lambda c: c.name == "Boren")
        effect.apply(at_step(context, 0))
        context.world.relocate(0, "Aria", "Boren", 100)
        assert effect.apply(at_step(context, 1)) == ["Boren"]
        assert intensity(context, "Aria", housing) == 0.4

    def test_duplicate_rules_rejected(self, housing):
        """One rule per factor, as in the feedback stage."""
        with pytest.raises(ValueError):
            FeedbackEffect([FeedbackRule(housing, FeedbackPolicy.PRICE_COST), FeedbackRule(housing)])


class TestEventStage:
    """Event scheduling inside the pipeline."""

    def test_one_shot_event_completes(self, context, housing):
        """Test one-shot completion and the event log entry."""
        event = SimulationEvent("Housing Crisis", StepTrigger(1), FactorChangeEffect(housing, 0.95))
        stage = EventStage([event])
        for s in range(4):
            stage.execute(at_step(context, s))
        assert event.completed
        assert stage.event_log == [{"step": 1, "event": "Housing Crisis", "cities": ["Aria", "Boren"]}]

    def test_periodic_event_keeps_firing(self, context, jobs):
        """Test that periodic events fire repeatedly."""
        event = SimulationEvent("Boom", PeriodicTrigger(2), FactorChangeEffect(jobs, 0.05, EffectApplication.DELTA))
        stage = EventStage([event])
        for s in range(6):
            stage.execute(at_step(context, s))
        assert not event.completed
        assert [entry["step"] for entry in stage.event_log] == [0, 2, 4]
        assert intensity(context, "Aria", jobs) == pytest.approx(0.65)

    def test_loop_runs_events_before_decisions(self, context, housing):
        """Test that the loop schedules events ahead of migration decisions."""
        event = SimulationEvent("Shock", StepTrigger(0), FactorChangeEffect(housing, 1.0))
        config = SimulationConfig(max_steps=2, check_stability=False)
        with SimulationLoop(context.world, config, events=[event], seed=4) as loop:
            stage_ids = [stage.stage_id for stage in loop.pipeline]
            assert stage_ids.index("events") < stage_ids.index("migration-decision")
            loop.run()
        assert event.completed
        assert intensity(context, "Aria", housing) == 1.0
