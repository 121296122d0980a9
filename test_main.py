import json
import tempfile
from pathlib import Path

import matplotlib
matplotlib.use('Agg')  # Non-interactive backend
import pytest

from generator import WorldGenerator
from main import build_events, main, parse_args


@pytest.fixture
def output_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


class TestWorldGenerator:
    def test_generated_world_is_valid(self):
        """Test generated world structure and normalized factors."""
        world, rules = WorldGenerator(seed=3).generate(num_cities=5, groups_per_city=2, persons_per_city=3)
        assert len(world.cities) == 5
        assert len(world.units) == 25
        assert {r.factor.name for r in rules} == {f.name for f in world.factors}
        for city in world.cities:
            for factor in world.factors:
                assert 0.0 <= city.try_get_factor_intensity(factor) <= 1.0

    def test_same_seed_same_world(self):
        """Test generator reproducibility."""
        a, _ = WorldGenerator(seed=12).generate(num_cities=4)
        b, _ = WorldGenerator(seed=12).generate(num_cities=4)
        assert a.population_by_city() == b.population_by_city()

    def test_needs_two_cities(self):
        """Test that a one-city world is refused."""
        with pytest.raises(ValueError):
            WorldGenerator(seed=1).generate(num_cities=1)


class TestCommandLine:
    def test_parse_args_defaults(self):
        """Test command-line defaults."""
        args = parse_args([])
        assert args.cities == 8
        assert args.steps == 200
        assert not args.parallel

    def test_shock_event_targets_largest_city(self):
        """Test the housing shock event setup."""
        world, _ = WorldGenerator(seed=4).generate(num_cities=3)
        assert build_events(world, None) == []
        (event,) = build_events(world, 5)
        largest = max(world.cities, key=lambda c: c.population)
        assert largest.name in event.name

    def test_full_run_writes_outputs(self, output_dir):
        """Test a complete CLI run and the files it writes."""
        code = main(["--cities", "3", "--groups-per-city", "2", "--steps", "4", "--seed", "1",
                     "--shock-step", "1", "--output-dir", str(output_dir), "--no-viz"])

        assert code == 0
        history = json.loads((output_dir / "simulation.json").read_text())
        assert [h["step"] for h in history] == [0, 1, 2, 3]
        assert (output_dir / "metrics.csv").exists()
        assert (output_dir / "index.html").exists()
        checkpoint = json.loads((output_dir / "checkpoint.json").read_text())
        assert checkpoint["step"] == 3
        assert not (output_dir / "timeline_analysis.png").exists()

    def test_invalid_configuration_exit_code(self, output_dir):
        """Test the exit code for an invalid configuration."""
        assert main(["--steps", "0", "--output-dir", str(output_dir)]) == 2
