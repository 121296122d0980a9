import pytest

from config import SimulationConfig
from stability import StabilityDetector, StabilityState


def detector(**kwargs):
    params = dict(max_steps=100, stability_threshold=3, stability_check_interval=1,
                  min_steps_before_stability_check=5)
    params.update(kwargs)
    return StabilityDetector(SimulationConfig(**params))


class TestStabilityDetector:
    """State machine transitions."""

    def test_not_eligible_before_minimum(self):
        """Test that early steps are not recorded."""
        d = detector()
        for step in range(5):
            assert d.observe(step, 0) == StabilityState.NOT_YET_ELIGIBLE
        assert d.window == []

    def test_converges_after_full_quiet_window(self):
        """Test convergence after a full quiet window."""
        d = detector()
        for step in range(5):
            d.observe(step, 0)
        assert d.observe(5, 0) == StabilityState.RUNNING
        assert d.observe(6, 0) == StabilityState.RUNNING
        assert d.observe(7, 0) == StabilityState.CONVERGED
        assert d.converged_at == 7

    def test_movement_resets_progress(self):
        """Test that movement inside the window delays convergence."""
        d = detector()
        states = [d.observe(step, change) for step, change in
                  enumerate([0, 0, 0, 0, 0, 0, 0, 12, 0, 0, 0])]
        assert states[7] == StabilityState.RUNNING
        assert states[9] == StabilityState.RUNNING
        assert states[10] == StabilityState.CONVERGED

    def test_converged_is_terminal(self):
        """Test that convergence is final."""
        d = detector(min_steps_before_stability_check=0, stability_threshold=1)
        assert d.observe(0, 0) == StabilityState.CONVERGED
        assert d.observe(1, 500) == StabilityState.CONVERGED
        assert d.is_converged

    def test_tolerance(self):
        """Test the movement tolerance."""
        d = detector(min_steps_before_stability_check=0, stability_tolerance=5)
        for step, change in enumerate([3, -4, 5]):
            state = d.observe(step, change)
        assert state == StabilityState.CONVERGED

    def test_polling_interval(self):
        """Test that convergence is only checked on polling steps."""
        d = detector(min_steps_before_stability_check=0, stability_check_interval=4)
        states = [d.observe(step, 0) for step in range(5)]
        # Window is full at step 2, but the first poll is step 4
        assert states[2] == StabilityState.RUNNING
        assert states[3] == StabilityState.RUNNING
        assert states[4] == StabilityState.CONVERGED

    def test_disabled_never_converges(self):
        """Test disabled stability checks."""
        d = detector(check_stability=False, min_steps_before_stability_check=0)
        for step in range(50):
            assert d.observe(step, 0) != StabilityState.CONVERGED

    def test_reset(self):
        """Test detector reset."""
        d = detector(min_steps_before_stability_check=0, stability_threshold=1)
        d.observe(0, 0)
        d.reset()
        assert d.state == StabilityState.NOT_YET_ELIGIBLE
        assert d.window == []

    @pytest.mark.parametrize("threshold", [0, 1])
    def test_window_has_at_least_one_step(self, threshold):
        """Test the minimum window size."""
        assert detector(stability_threshold=threshold).window_size == 1
