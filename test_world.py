"""
Tests for geography, cities and world structure.
"""

import math
import threading

import pytest

from city import City, FactorDefinition, FactorDirection, PopulationUnit, UnitKind, UnitThresholds
from errors import SimulationError, StructuralValidationError
from geography import Coordinate, TransformType, distance_km, normalize
from world import World


@pytest.fixture
def factors():
    return [
        FactorDefinition("income", FactorDirection.POSITIVE),
        FactorDefinition("pollution", FactorDirection.NEGATIVE),
    ]


def make_city(name, factors, lat=50.0, lon=10.0, capacity=None, intensity=0.5):
    city = City(name, Coordinate(lat, lon), area=100.0, capacity=capacity)
    for f in factors:
        city.set_factor_intensity(f, intensity)
    return city


@pytest.fixture
def world(factors):
    a = make_city("Aria", factors, 50.0, 10.0)
    b = make_city("Boren", factors, 51.0, 11.0)
    a.add_population_unit(PopulationUnit.group(1, 100, {f: 0.5 for f in factors}))
    a.add_population_unit(PopulationUnit.person(2, {f: 0.5 for f in factors}))
    return World(factors, [a, b])


class TestGeography:
    """Coordinates, haversine distance and factor transforms."""

    def test_coordinate_bounds(self):
        """Test latitude and longitude validation."""
        with pytest.raises(ValueError):
            Coordinate(91.0, 0.0)
        with pytest.raises(ValueError):
            Coordinate(0.0, -181.0)

    def test_london_paris_distance(self):
        """Test haversine distance against a known value."""
        london = Coordinate(51.5074, -0.1278)
        paris = Coordinate(48.8566, 2.3522)
        assert 340 < distance_km(london, paris) < 347
        assert distance_km(london, paris) == pytest.approx(distance_km(paris, london))

    def test_zero_distance(self):
        """Test the distance from a point to itself."""
        p = Coordinate(10.0, 20.0)
        assert distance_km(p, p) == 0.0

    def test_linear_and_clamping(self):
        """Test linear normalization and clamping."""
        assert normalize(5, 0, 10, TransformType.LINEAR) == pytest.approx(0.5)
        assert normalize(-3, 0, 10, TransformType.LINEAR) == 0.0
        assert normalize(42, 0, 10, TransformType.LINEAR) == 1.0

    def test_shaped_transforms(self):
        """Test the non-linear transforms."""
        assert normalize(5, 0, 10, TransformType.SIGMOID) == pytest.approx(0.5)
        assert normalize(2.5, 0, 10, TransformType.SQRT) == pytest.approx(0.5)
        assert normalize(10, 0, 10, TransformType.EXPONENTIAL) == pytest.approx(1.0)
        assert normalize(0, 0, 10, TransformType.EXPONENTIAL) == pytest.approx(0.0)
        assert normalize(1000, 0, 1000, TransformType.LOGARITHMIC) == pytest.approx(1.0)
        # Logarithmic rises faster than linear early in the range
        assert normalize(100, 0, 1000, TransformType.LOGARITHMIC) > 0.1

    def test_transform_parse(self):
        """Test transform parsing from strings."""
        assert TransformType.parse("sqrt") == TransformType.SQRT
        with pytest.raises(ValueError):
            TransformType.parse("cubic")


class TestCity:
    """City and population unit data contracts."""

    def test_factor_identity(self):
        """Test that factors compare by identity."""
        a = FactorDefinition("income", "positive")
        b = FactorDefinition("income", "positive")
        assert a != b
        assert len({a, b}) == 2
        assert a.direction == FactorDirection.POSITIVE

    def test_factor_range_validation(self):
        """Test factor range validation."""
        with pytest.raises(ValueError):
            FactorDefinition("x", "positive", 5.0, 5.0)
        with pytest.raises(ValueError):
            FactorDefinition("x", "positive", 0.0, math.inf)

    def test_set_factor_raw_normalizes(self):
        """Test raw value normalization on a city."""
        factor = FactorDefinition("income", "positive", 0.0, 200.0)
        city = City("Aria", Coordinate(0, 0))
        assert city.set_factor_raw(factor, 50.0) == pytest.approx(0.25)
        assert city.try_get_factor_intensity(factor) == pytest.approx(0.25)

    def test_update_factor_intensity_clamps(self, factors):
        """Test clamped intensity updates."""
        city = make_city("Aria", factors)
        assert city.update_factor_intensity(factors[0], 1.7) == 1.0
        assert city.update_factor_intensity(factors[0], -0.2) == 0.0

    def test_update_unknown_factor(self, factors):
        """Test updating a factor the city does not have."""
        city = make_city("Aria", factors)
        with pytest.raises(KeyError):
            city.update_factor_intensity(FactorDefinition("other", "positive"), 0.5)

    def test_population_is_derived(self, factors):
        """Test that population is summed from units."""
        city = make_city("Aria", factors)
        unit = PopulationUnit.group(1, 40, {})
        city.add_population_unit(unit)
        city.add_population_unit(PopulationUnit.person(2, {}))
        assert city.population == 41
        assert unit.city == "Aria"
        with pytest.raises(ValueError):
            city.add_population_unit(unit)
        assert city.remove_population_unit(unit)
        assert not city.remove_population_unit(unit)
        assert city.population == 1

    def test_capacity(self, factors):
        """Test capacity, remaining capacity and density."""
        unlimited = make_city("Aria", factors, capacity=0)
        assert not unlimited.has_capacity_limit
        assert unlimited.remaining_capacity is None

        limited = make_city("Boren", factors, capacity=50)
        limited.add_population_unit(PopulationUnit.group(1, 30, {}))
        assert limited.remaining_capacity == 20

    def test_unit_validation(self, factors):
        """Test population unit validation."""
        with pytest.raises(ValueError):
            PopulationUnit.person(1, {factors[0]: 1.5})
        with pytest.raises(ValueError):
            PopulationUnit(1, UnitKind.PERSON, {}, count=3)
        with pytest.raises(ValueError):
            PopulationUnit.group(1, 0, {})
        with pytest.raises(ValueError):
            PopulationUnit.group(1, 10, {}, retention_rate=1.2)

    def test_update_sensitivity(self, factors):
        """Test sensitivity updates."""
        unit = PopulationUnit.person(1, {factors[0]: 0.2})
        unit.update_sensitivity(factors[0], 0.9)
        assert unit.sensitivity(factors[0]) == 0.9
        with pytest.raises(ValueError):
            unit.update_sensitivity(factors[0], -0.1)

    def test_custom_profile(self, factors):
        """Test building a unit from a custom profile."""
        class Commuter:
            def sensitivities(self):
                return {factors[0]: 0.8, factors[1]: 0.1}

            def thresholds(self):
                return UnitThresholds(retention_rate=0.4, attraction_threshold=0.1)

        unit = PopulationUnit.from_profile(9, Commuter(), count=25)
        assert unit.kind == UnitKind.CUSTOM
        assert unit.count == 25
        assert unit.retention_rate == 0.4
        assert unit.sensitivity(factors[0]) == 0.8


class TestWorldValidation:
    """Structural invariants enforced at construction time."""

    def test_valid_world(self, world):
        """Test construction of a valid world."""
        assert world.population == 101
        assert set(world.units) == {1, 2}

    def test_missing_factor(self, factors):
        """Test rejection of a city missing a factor."""
        a = make_city("Aria", factors)
        b = City("Boren", Coordinate(0, 0))
        b.set_factor_intensity(factors[0], 0.3)
        with pytest.raises(StructuralValidationError) as excinfo:
            World(factors, [a, b])
        assert excinfo.value.city_name == "Boren"
        assert excinfo.value.missing_factors == ["pollution"]

    def test_duplicate_city_names(self, factors):
        """Test rejection of duplicate city names."""
        with pytest.raises(StructuralValidationError):
            World(factors, [make_city("Aria", factors), make_city("Aria", factors)])

    def test_unit_missing_sensitivity(self, factors):
        """Test rejection of a unit missing a sensitivity."""
        a = make_city("Aria", factors)
        a.add_population_unit(PopulationUnit.group(1, 10, {factors[0]: 0.5}))
        with pytest.raises(StructuralValidationError):
            World(factors, [a])

    def test_empty_world(self, factors):
        """Test rejection of empty worlds."""
        with pytest.raises(StructuralValidationError):
            World(factors, [])
        with pytest.raises(StructuralValidationError):
            World([], [City("Aria", Coordinate(0, 0))])


class TestRelocation:
    """World.relocate is the only way people move."""

    def test_full_move_relocates_unit(self, world):
        """Test moving a whole unit."""
        moved = world.relocate(2, "Aria", "Boren", 1)
        assert moved == 1
        assert world.unit(2).city == "Boren"
        assert world.city("Boren").population == 1
        assert world.population == 101

    def test_partial_move_splits_group(self, world):
        """Test splitting a group on a partial move."""
        world.relocate(1, "Aria", "Boren", 30)
        assert world.unit(1).count == 70
        boren_units = list(world.city("Boren").iter_units())
        assert len(boren_units) == 1
        assert boren_units[0].count == 30
        assert boren_units[0].lineage == 1
        assert boren_units[0].unit_id not in (1, 2)
        assert world.population == 101

    def test_partial_move_merges_into_kin(self, world):
        """Test merging movers into a same-lineage unit."""
        world.relocate(1, "Aria", "Boren", 30)
        world.relocate(1, "Aria", "Boren", 20)
        boren_units = list(world.city("Boren").iter_units())
        assert len(boren_units) == 1
        assert boren_units[0].count == 50
        assert world.unit(1).count == 50

    def test_invalid_moves(self, world):
        """Test rejection of invalid moves."""
        with pytest.raises(ValueError):
            world.relocate(1, "Aria", "Aria", 5)
        with pytest.raises(ValueError):
            world.relocate(1, "Boren", "Aria", 5)
        with pytest.raises(ValueError):
            world.relocate(1, "Aria", "Boren", 500)
        assert world.relocate(1, "Aria", "Boren", 0) == 0

    def test_concurrent_relocations_preserve_population(self, world):
        """Test concurrent relocations across threads."""
        def move():
            for _ in range(10):
                world.relocate(1, "Aria", "Boren", 1)

        threads = [threading.Thread(target=move) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert world.city("Aria").population == 61
        assert world.city("Boren").population == 40

    def test_close_blocks_mutation(self, world):
        """Test that a closed world refuses moves."""
        world.close()
        assert world.closed
        with pytest.raises(SimulationError):
            world.relocate(1, "Aria", "Boren", 5)
