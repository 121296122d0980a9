"""
Convergence detection over a trailing window of population change.
"""

from collections import deque
from enum import Enum
from typing import Deque, List

from config import SimulationConfig


class StabilityState(Enum):
    NOT_YET_ELIGIBLE = "NotYetEligible"
    RUNNING = "Running"
    CONVERGED = "Converged"


class StabilityDetector:
    """
    NOT_YET_ELIGIBLE until `min_steps_before_stability_check`, then RUNNING.
    Eligible steps feed a window of `stability_threshold` changes; on poll
    steps (multiples of `stability_check_interval`) a full window whose
    changes all stay within `stability_tolerance` moves to CONVERGED, which
    is terminal.
    """

    def __init__(self, config: SimulationConfig):
        self.config = config
        self.window_size = max(1, config.stability_threshold)
        self._window: Deque[int] = deque(maxlen=self.window_size)
        self._state = StabilityState.NOT_YET_ELIGIBLE
        self.converged_at = None

    @property
    def state(self) -> StabilityState:
        return self._state

    @property
    def is_converged(self) -> bool:
        return self._state == StabilityState.CONVERGED

    @property
    def window(self) -> List[int]:
        return list(self._window)

    def is_eligible(self, step: int) -> bool:
        return step >= self.config.min_steps_before_stability_check

    def should_poll(self, step: int) -> bool:
        if not self.config.check_stability or not self.is_eligible(step):
            return False
        return step % self.config.stability_check_interval == 0

    def observe(self, step: int, population_change: int) -> StabilityState:
        """Record one completed step and return the resulting state."""
        if self._state == StabilityState.CONVERGED:
            return self._state

        if not self.is_eligible(step):
            self._state = StabilityState.NOT_YET_ELIGIBLE
            return self._state

        self._state = StabilityState.RUNNING
        self._window.append(abs(population_change))

        if self.should_poll(step) and self._window_is_stable():
            self._state = StabilityState.CONVERGED
            self.converged_at = step
        return self._state

    def _window_is_stable(self) -> bool:
        if len(self._window) < self.window_size:
            return False
        return all(change <= self.config.stability_tolerance for change in self._window)

    def reset(self):
        self._window.clear()
        self._state = StabilityState.NOT_YET_ELIGIBLE
        self.converged_at = None
